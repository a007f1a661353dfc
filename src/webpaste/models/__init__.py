"""Database models for webpaste."""

from webpaste.models.base import Base
from webpaste.models.file import StoredFile
from webpaste.models.url import Url

__all__ = [
    "Base",
    "StoredFile",
    "Url",
]
