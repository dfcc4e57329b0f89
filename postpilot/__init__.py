"""Postpilot: scheduled publishing and reel generation for content marketing."""

__version__ = "0.1.0"
