"""Expiring tail -> blob index."""

from __future__ import annotations

import logging

from sqlalchemy import delete, exists, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from webpaste.models import Url

logger = logging.getLogger(__name__)


class UrlIndex:
    """Operations on the ``urls`` table.

    Like BlobStore, every method runs on the caller's session and leaves
    commit/rollback to the unit of work.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def is_taken(self, tail: str) -> bool:
        result = await self._session.execute(select(exists().where(Url.tail == tail)))
        return bool(result.scalar())

    async def insert(self, tail: str, file_hash: str, mimetype: str, expires_at: int) -> None:
        self._session.add(
            Url(tail=tail, file_hash=file_hash, mimetype=mimetype, expires_at=expires_at)
        )
        await self._session.flush()

    async def lookup(self, tail: str, *, now: int | None = None) -> tuple[str, str] | None:
        """Return ``(file_hash, mimetype)`` for a tail, or None.

        When ``now`` is given, rows that have expired but were not swept yet
        are treated as absent.
        """
        stmt = select(Url.file_hash, Url.mimetype).where(Url.tail == tail)
        if now is not None:
            stmt = stmt.where(Url.expires_at > now)
        row = (await self._session.execute(stmt)).one_or_none()
        if row is None:
            return None
        return row.file_hash, row.mimetype

    async def get(self, tail: str) -> Url | None:
        return await self._session.get(Url, tail)

    async def sweep_expired(self, now: int) -> dict[str, int]:
        """Delete every row with ``expires_at <= now``.

        Returns:
            Mapping of file hash to the number of rows removed for it, to be
            passed to ``BlobStore.deref_many`` in the same transaction.
        """
        result = await self._session.execute(
            select(Url.file_hash, func.count())
            .where(Url.expires_at <= now)
            .group_by(Url.file_hash)
        )
        counts = {file_hash: count for file_hash, count in result.all()}
        if counts:
            await self._session.execute(delete(Url).where(Url.expires_at <= now))
            logger.debug(
                "Swept %d expired urls across %d blobs", sum(counts.values()), len(counts)
            )
        return counts

    async def count(self) -> int:
        result = await self._session.execute(select(func.count()).select_from(Url))
        return result.scalar_one()
