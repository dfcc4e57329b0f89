"""Postpilot entry point."""

import argparse
import asyncio
import dataclasses
import json
import logging

from postpilot.config import settings

logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
)
logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="postpilot", description=__doc__)
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("run", help="Run the dispatch loop until interrupted")
    sub.add_parser("tick", help="Run a single dispatch tick and print the counts")
    sub.add_parser("recover", help="Release or fail items stuck in processing")

    list_cmd = sub.add_parser("list", help="List scheduled items")
    list_cmd.add_argument("--user", dest="user_id")
    list_cmd.add_argument("--status")
    list_cmd.add_argument("--limit", type=int, default=50)

    reel = sub.add_parser("reel", help="Generate a reel for a topic")
    reel.add_argument("topic")
    reel.add_argument("--script", dest="custom_script")
    reel.add_argument("--voice-style", default="energetic")
    reel.add_argument("--no-subtitles", action="store_true")
    reel.add_argument("--no-compose", action="store_true")
    return parser


async def _run_command(args: argparse.Namespace) -> int:
    from postpilot import app

    if args.command == "run":
        logger.info("Starting postpilot dispatch loop (every %ss)", settings.dispatch_interval_seconds)
        await app.run_forever()
        return 0

    if args.command == "tick":
        report = await app.build_dispatcher().tick()
        print(json.dumps(dataclasses.asdict(report)))
        return 0

    if args.command == "recover":
        from postpilot.scheduler.recovery import recover_stalled_items
        from postpilot.scheduler.store import ScheduledItemStore

        report = await recover_stalled_items(ScheduledItemStore.get())
        print(json.dumps({"requeued": report.requeued, "failed": report.failed}))
        return 0

    if args.command == "list":
        from postpilot.scheduler.models import ItemStatus
        from postpilot.scheduler.store import ScheduledItemStore

        items = await ScheduledItemStore.get().list_items(
            user_id=args.user_id,
            status=ItemStatus(args.status) if args.status else None,
            limit=args.limit,
        )
        print(json.dumps([item.to_dict() for item in items], indent=2))
        return 0

    # reel
    from postpilot.media.pipeline import ReelRequest

    result = await app.build_reel_pipeline().create_reel(
        ReelRequest(
            topic=args.topic,
            custom_script=args.custom_script,
            voice_style=args.voice_style,
            generate_subtitles=not args.no_subtitles,
            compose=not args.no_compose,
        )
    )
    print(json.dumps(result.to_dict(), indent=2))
    return 0 if result.success else 1


def main(argv: list[str] | None = None) -> int:
    """Parse the command line and run the chosen command."""
    args = build_parser().parse_args(argv)
    return asyncio.run(_run_command(args))


if __name__ == "__main__":
    raise SystemExit(main())
