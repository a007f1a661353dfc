"""Upload and access: the transactional unit of work over blobs and urls.

Usage:
    service = PasteService(session_factory, BlobDirectory(settings.upload_file_dir), settings)
    tail = await service.upload(b"hello")
    data, mimetype = await service.access(tail)
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import time
from typing import TYPE_CHECKING

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from webpaste.db import begin_read_only
from webpaste.errors import FileTooLarge, TailLenParseError, TailNotFound
from webpaste.services.blob_store import BlobStore
from webpaste.services.retention import resolve_expires_at
from webpaste.services.tails import MAX_TAIL_LEN, allocate_tail, is_valid_tail
from webpaste.services.url_index import UrlIndex
from webpaste.utils.mimetype import guess_mimetype

if TYPE_CHECKING:
    from webpaste.config import Settings
    from webpaste.storage import BlobDirectory

logger = logging.getLogger(__name__)


def hash_bytes(data: bytes) -> str:
    """Content address of ``data``: lowercase hex SHA-256."""
    return hashlib.sha256(data).hexdigest()


class PasteService:
    """Stores uploads and resolves tails back to their content."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        directory: BlobDirectory,
        settings: Settings,
    ) -> None:
        self._session_factory = session_factory
        self._directory = directory
        self._settings = settings

    async def add_url(
        self,
        tail_len: int,
        file_hash: str,
        mimetype: str,
        expires_at: int,
    ) -> str:
        """Allocate a tail, reference the blob and index the tail, atomically.

        The uniqueness check, the ref-count upsert and the index insert share
        one transaction: either all three are applied or none is.

        Raises:
            TailDrained: No free tail of ``tail_len`` within the attempt budget.
        """
        async with self._session_factory() as session, session.begin():
            index = UrlIndex(session)
            blobs = BlobStore(session)
            tail = await allocate_tail(
                tail_len,
                index.is_taken,
                max_attempts=self._settings.gen_tail_max_attempts,
            )
            await blobs.put_or_ref(file_hash)
            await index.insert(tail, file_hash, mimetype, expires_at)
        return tail

    async def upload(
        self,
        data: bytes,
        *,
        mimetype: str | None = None,
        tail_len: int | None = None,
        expires: str | None = None,
        now: int | None = None,
    ) -> str:
        """Store ``data`` and return the tail that serves it.

        Args:
            data: Upload content.
            mimetype: Sniffed content type; computed from ``data`` if omitted.
            tail_len: Requested tail length, ``default_tail_len`` if omitted.
            expires: Absolute UNIX seconds or a relative duration string.
                Defaults to the size-based retention curve.
            now: Current UNIX time, for tests.

        Raises:
            FileTooLarge: ``data`` exceeds ``max_file_size``; nothing is stored.
            TailLenParseError: ``tail_len`` is not in ``1..MAX_TAIL_LEN``.
            ExpiresParseError: ``expires`` cannot be parsed.
            TailDrained: See ``add_url``.
            OSError: The blob file could not be written. The index entry is
                already committed at this point; a later upload of the same
                content rewrites the file.
        """
        size = len(data)
        if size > self._settings.max_file_size:
            raise FileTooLarge(size, self._settings.max_file_size)

        if tail_len is None:
            tail_len = self._settings.default_tail_len
        if not 1 <= tail_len <= MAX_TAIL_LEN:
            raise TailLenParseError(
                f"tail_len must be between 1 and {MAX_TAIL_LEN}, got {tail_len}"
            )

        if now is None:
            now = int(time.time())
        expires_at = resolve_expires_at(expires, size, now, self._settings)

        file_hash = hash_bytes(data)
        if mimetype is None:
            mimetype = guess_mimetype(data)

        tail = await self.add_url(tail_len, file_hash, mimetype, expires_at)

        created = await asyncio.to_thread(self._directory.write_bytes_if_absent, file_hash, data)
        logger.info(
            "Stored %s -> %s (%d bytes, %s, expires_at=%d%s)",
            tail, file_hash[:12], size, mimetype, expires_at, "" if created else ", dedup",
        )
        return tail

    async def lookup(self, tail: str, *, now: int | None = None) -> tuple[str, str]:
        """Resolve a tail to ``(file_hash, mimetype)``.

        Raises:
            TailNotFound: Unknown or expired tail.
        """
        if not is_valid_tail(tail):
            raise TailNotFound(tail)
        if now is None:
            now = int(time.time())
        async with self._session_factory() as session:
            await begin_read_only(session)
            found = await UrlIndex(session).lookup(tail, now=now)
        if found is None:
            raise TailNotFound(tail)
        return found

    async def access(self, tail: str, *, now: int | None = None) -> tuple[bytes, str]:
        """Return ``(bytes, mimetype)`` for a tail.

        Raises:
            TailNotFound: Unknown or expired tail.
            OSError: The blob file is missing or unreadable.
        """
        file_hash, mimetype = await self.lookup(tail, now=now)
        data = await asyncio.to_thread(self._directory.read_bytes, file_hash)
        return data, mimetype
