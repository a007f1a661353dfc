"""Reference-counted blob rows.

One ``files`` row exists per unique blob. Every method runs on the
caller's session and never commits; the unit of work that owns the
transaction decides when to commit.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping

from sqlalchemy import delete, select, update
from sqlalchemy.dialects.sqlite import insert
from sqlalchemy.ext.asyncio import AsyncSession

from webpaste.models import StoredFile

logger = logging.getLogger(__name__)

# Keeps IN (...) lists well below SQLite's bound-parameter limit
_CHUNK_SIZE = 500


def _chunks(items: list[str]) -> Iterable[list[str]]:
    for i in range(0, len(items), _CHUNK_SIZE):
        yield items[i : i + _CHUNK_SIZE]


class BlobStore:
    """Reference counts for content-addressed blobs.

    Usage:
        async with session.begin():
            store = BlobStore(session)
            await store.put_or_ref(file_hash)
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def put_or_ref(self, file_hash: str) -> None:
        """Insert the blob with ``ref_count=1``, or add one reference.

        A single upsert statement, so concurrent uploads of identical
        content never lose an increment.
        """
        stmt = insert(StoredFile).values(file_hash=file_hash, ref_count=1)
        stmt = stmt.on_conflict_do_update(
            index_elements=[StoredFile.file_hash],
            set_={"ref_count": StoredFile.ref_count + 1},
        )
        await self._session.execute(stmt)

    async def deref_many(self, counts: Mapping[str, int]) -> list[str]:
        """Subtract ``counts`` from each blob's ``ref_count``.

        Rows that land exactly on zero are deleted and their hashes
        returned; the caller is responsible for removing the files.
        """
        if not counts:
            return []

        for file_hash, decrement in counts.items():
            await self._session.execute(
                update(StoredFile)
                .where(StoredFile.file_hash == file_hash)
                .values(ref_count=StoredFile.ref_count - decrement)
            )

        zeroed: list[str] = []
        for chunk in _chunks(sorted(counts)):
            result = await self._session.execute(
                select(StoredFile.file_hash, StoredFile.ref_count).where(
                    StoredFile.file_hash.in_(chunk), StoredFile.ref_count <= 0
                )
            )
            for file_hash, ref_count in result.all():
                if ref_count < 0:
                    logger.error(
                        "ref_count for %s dropped below zero (%d); leaving row in place",
                        file_hash, ref_count,
                    )
                    continue
                zeroed.append(file_hash)

        for chunk in _chunks(zeroed):
            await self._session.execute(
                delete(StoredFile).where(StoredFile.file_hash.in_(chunk))
            )

        return zeroed

    async def ref_count(self, file_hash: str) -> int | None:
        """Current reference count, or None if the blob row does not exist."""
        result = await self._session.execute(
            select(StoredFile.ref_count).where(StoredFile.file_hash == file_hash)
        )
        return result.scalar_one_or_none()

    async def exists(self, file_hash: str) -> bool:
        return await self.ref_count(file_hash) is not None

    async def live_hashes(self, candidates: Iterable[str]) -> set[str]:
        """Subset of ``candidates`` that still have a blob row."""
        live: set[str] = set()
        for chunk in _chunks(list(candidates)):
            result = await self._session.execute(
                select(StoredFile.file_hash).where(StoredFile.file_hash.in_(chunk))
            )
            live.update(result.scalars().all())
        return live
