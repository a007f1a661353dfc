"""Utility modules for webpaste."""

from webpaste.utils.durations import parse_duration
from webpaste.utils.mimetype import guess_mimetype

__all__ = [
    "guess_mimetype",
    "parse_duration",
]
