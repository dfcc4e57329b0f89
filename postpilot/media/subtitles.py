"""Timed captions estimated from script text.

No audio analysis: word durations come from a speaking rate per voice style
and a rough syllable count, with short pauses after punctuation.  Everything
here is pure and deterministic except ``write_subtitle_files``.
"""

from __future__ import annotations

import json
import logging
import re
import uuid
from enum import StrEnum
from typing import TYPE_CHECKING

from postpilot.capabilities import Caption

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

# Words per minute
SPEAKING_RATES: dict[str, int] = {
    "slow": 120,
    "normal": 150,
    "fast": 180,
    "energetic": 170,
    "calm": 130,
    "professional": 145,
    "friendly": 155,
}

SENTENCE_PAUSE = 0.3
CLAUSE_PAUSE = 0.15

_SENTENCE_RE = re.compile(r"[^.!?]+(?:[.!?]+|$)")


class CaptionFormat(StrEnum):
    SENTENCE = "sentence"
    WORD = "word"
    KARAOKE = "karaoke"
    HIGHLIGHTED = "highlighted"


def words_per_minute(style: str) -> int:
    return SPEAKING_RATES.get(style, SPEAKING_RATES["normal"])


def count_syllables(word: str) -> int:
    """Approximate syllable count: vowel groups, adjusted for a silent e."""
    letters = re.sub(r"[^a-z]", "", word.lower())
    if len(letters) <= 3:
        return 1
    count = len(re.findall(r"[aeiouy]+", letters)) or 1
    if letters.endswith("e") and count > 1:
        count -= 1
    if letters.endswith("le") and letters[-3] not in "aeiouy":
        count += 1
    return max(1, count)


def word_duration(word: str, wpm: int = 150) -> float:
    """Seconds to speak *word*; an average word is taken to have two syllables."""
    return (60 / wpm) * (count_syllables(word) / 2)


def _pause_after(word: str) -> float:
    if word[-1] in ".!?":
        return SENTENCE_PAUSE
    if word[-1] in ",;:":
        return CLAUSE_PAUSE
    return 0.0


def word_timings(text: str, style: str = "normal", start: float = 0.0) -> list[Caption]:
    """One caption per word, with punctuation pauses between them."""
    wpm = words_per_minute(style)
    current = start
    captions: list[Caption] = []
    for word in text.split():
        duration = word_duration(word, wpm)
        captions.append(Caption(word, round(current, 3), round(current + duration, 3)))
        current += duration + _pause_after(word)
    return captions


def sentence_captions(text: str, style: str = "normal", max_words: int = 6) -> list[Caption]:
    """Sentence-level captions, long sentences split into *max_words* chunks."""
    wpm = words_per_minute(style)
    sentences = [s for s in _SENTENCE_RE.findall(text) if s.strip()] or [text]
    current = 0.0
    captions: list[Caption] = []
    for sentence in sentences:
        words = sentence.split()
        for index in range(0, len(words), max_words):
            chunk = words[index : index + max_words]
            duration = sum(word_duration(w, wpm) for w in chunk)
            if index + max_words >= len(words):
                duration += SENTENCE_PAUSE
            captions.append(
                Caption(" ".join(chunk), round(current, 3), round(current + duration, 3))
            )
            current += duration
    return captions


def highlighted_captions(text: str, style: str = "normal", words_per_line: int = 5) -> list[Caption]:
    """Reels-style lines where the word being spoken is wrapped in ``**``."""
    timings = word_timings(text, style)
    words = text.split()
    captions: list[Caption] = []
    for line_start in range(0, len(words), words_per_line):
        line = words[line_start : line_start + words_per_line]
        for offset, timing in enumerate(timings[line_start : line_start + words_per_line]):
            marked = " ".join(f"**{w}**" if i == offset else w for i, w in enumerate(line))
            captions.append(Caption(marked, timing.start, timing.end))
    return captions


# -- Subtitle file formats -----------------------------------------------------


def _split_time(seconds: float) -> tuple[int, int, int, int]:
    total_ms = round(seconds * 1000)
    hours, rest = divmod(total_ms, 3_600_000)
    minutes, rest = divmod(rest, 60_000)
    secs, millis = divmod(rest, 1000)
    return hours, minutes, secs, millis


def format_srt_time(seconds: float) -> str:
    """``HH:MM:SS,mmm``"""
    h, m, s, ms = _split_time(seconds)
    return f"{h:02d}:{m:02d}:{s:02d},{ms:03d}"


def format_vtt_time(seconds: float) -> str:
    """``HH:MM:SS.mmm``"""
    h, m, s, ms = _split_time(seconds)
    return f"{h:02d}:{m:02d}:{s:02d}.{ms:03d}"


def to_srt(captions: list[Caption]) -> str:
    blocks = [
        f"{i}\n{format_srt_time(c.start)} --> {format_srt_time(c.end)}\n{c.text}\n"
        for i, c in enumerate(captions, start=1)
    ]
    return "\n".join(blocks)


def to_vtt(captions: list[Caption]) -> str:
    blocks = [
        f"{i}\n{format_vtt_time(c.start)} --> {format_vtt_time(c.end)}\n{c.text}\n"
        for i, c in enumerate(captions, start=1)
    ]
    return "WEBVTT\n\n" + "\n".join(blocks)


def write_subtitle_files(captions: list[Caption], directory: Path) -> dict[str, Path]:
    """Write JSON, SRT and VTT versions of *captions* under *directory*.

    Returns the written paths keyed by format.
    """
    directory.mkdir(parents=True, exist_ok=True)
    base = f"sub_{uuid.uuid4().hex}"
    paths = {
        "json": directory / f"{base}.json",
        "srt": directory / f"{base}.srt",
        "vtt": directory / f"{base}.vtt",
    }
    paths["json"].write_text(json.dumps([c.to_dict() for c in captions], indent=2), encoding="utf-8")
    paths["srt"].write_text(to_srt(captions), encoding="utf-8")
    paths["vtt"].write_text(to_vtt(captions), encoding="utf-8")
    logger.info("Wrote %d caption(s) to %s.*", len(captions), directory / base)
    return paths


class SubtitleGenerator:
    """``CaptionGenerator`` backed by the estimators above.

    Args:
        caption_format: Which caption layout ``compute_captions`` produces.
        max_words_per_caption: Chunk size for sentence captions.
        words_per_line: Line length for highlighted captions.
    """

    def __init__(
        self,
        caption_format: CaptionFormat | str = CaptionFormat.SENTENCE,
        max_words_per_caption: int = 6,
        words_per_line: int = 5,
    ) -> None:
        self.caption_format = CaptionFormat(caption_format)
        self.max_words_per_caption = max_words_per_caption
        self.words_per_line = words_per_line

    def compute_captions(self, text: str, style: str) -> list[Caption]:
        if not text.strip():
            return []
        if self.caption_format in (CaptionFormat.WORD, CaptionFormat.KARAOKE):
            return word_timings(text, style)
        if self.caption_format == CaptionFormat.HIGHLIGHTED:
            return highlighted_captions(text, style, self.words_per_line)
        return sentence_captions(text, style, self.max_words_per_caption)
