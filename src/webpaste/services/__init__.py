"""Business logic services for webpaste."""

from webpaste.services.blob_store import BlobStore
from webpaste.services.cleanup import Cleaner, cleanup_expired_urls, cleanup_unreachable_files
from webpaste.services.paste import PasteService, hash_bytes
from webpaste.services.retention import default_retention, resolve_expires_at
from webpaste.services.tails import allocate_tail
from webpaste.services.url_index import UrlIndex

__all__ = [
    "allocate_tail",
    "BlobStore",
    "Cleaner",
    "cleanup_expired_urls",
    "cleanup_unreachable_files",
    "default_retention",
    "hash_bytes",
    "PasteService",
    "resolve_expires_at",
    "UrlIndex",
]
