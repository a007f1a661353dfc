"""Garbage collection of expired urls and unreachable blob files.

Two sweeps run on independent fixed intervals:

- ``cleanup_expired_urls`` removes urls with ``expires_at <= now``,
  dereferences their blobs and deletes the files of blobs that reached
  zero references.
- ``cleanup_unreachable_files`` deletes blob files that have no ``files``
  row (left behind by crashes or write-after-commit races), plus temp
  files abandoned by crashed writers. It never touches database rows.

Both sweeps delete files while their write transaction is still open.
An upload commits its row before writing the file, so it cannot slip a new
reference in between the check and the deletion.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Final

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from webpaste.services.blob_store import BlobStore
from webpaste.services.url_index import UrlIndex
from webpaste.storage import BlobDirectory

logger = logging.getLogger(__name__)

# Age after which a leftover temp file is assumed to belong to a dead writer
TMP_GRACE_SECONDS: Final[float] = 60 * 60


def _remove_files(directory: BlobDirectory, hashes: list[str]) -> None:
    for file_hash in hashes:
        try:
            directory.remove(file_hash)
        except OSError:
            logger.exception("Failed to remove blob file %s", file_hash)


def _remove_stale_temp_files(directory: BlobDirectory, older_than: float) -> list[str]:
    removed: list[str] = []
    for name in list(directory.iter_stale_temp_names(older_than)):
        try:
            if directory.remove_name(name):
                removed.append(name)
        except OSError:
            logger.exception("Failed to remove stale temp file %s", name)
    if removed:
        logger.info("Removed %d stale temp files", len(removed))
    return removed


async def cleanup_expired_urls(
    session_factory: async_sessionmaker[AsyncSession],
    directory: BlobDirectory,
    now: int | None = None,
) -> list[str]:
    """Expire urls and release their blob references.

    Returns:
        Hashes whose blob row was deleted in this sweep.
    """
    if now is None:
        now = int(time.time())

    async with session_factory() as session, session.begin():
        counts = await UrlIndex(session).sweep_expired(now)
        zeroed = await BlobStore(session).deref_many(counts)
        # Per-file failures are logged inside; they never abort the sweep
        await asyncio.to_thread(_remove_files, directory, zeroed)

    if counts:
        logger.info(
            "Expired %d urls, released %d blobs",
            sum(counts.values()), len(zeroed),
        )
    return zeroed


async def cleanup_unreachable_files(
    session_factory: async_sessionmaker[AsyncSession],
    directory: BlobDirectory,
    *,
    tmp_grace: float = TMP_GRACE_SECONDS,
    now: float | None = None,
) -> list[str]:
    """Delete blob files with no surviving ``files`` row.

    Temp files untouched for ``tmp_grace`` seconds are deleted as well.

    Returns:
        Names of the files that were deleted.
    """
    if now is None:
        now = time.time()

    removed = await asyncio.to_thread(_remove_stale_temp_files, directory, now - tmp_grace)
    names = await asyncio.to_thread(lambda: list(directory.iter_names()))
    if not names:
        return removed

    async with session_factory() as session, session.begin():
        live = await BlobStore(session).live_hashes(names)
        for name in names:
            if name in live:
                continue
            try:
                if await asyncio.to_thread(directory.remove_name, name):
                    removed.append(name)
            except OSError:
                logger.exception("Failed to remove orphan file %s", name)

    if removed:
        logger.info("Removed %d unreachable files", len(removed))
    return removed


@dataclass
class Cleaner:
    """Owns the two periodic sweep tasks.

    Usage:
        cleaner = Cleaner(session_factory, directory, urls_interval=30, files_interval=60)
        cleaner.start()
        ...
        await cleaner.stop()
    """

    session_factory: async_sessionmaker[AsyncSession]
    directory: BlobDirectory
    urls_interval: float
    files_interval: float
    _tasks: list[asyncio.Task[None]] = field(default_factory=list, init=False, repr=False)

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    def start(self) -> None:
        if self.running:
            raise RuntimeError("cleaner already started")
        self._tasks = [
            asyncio.create_task(
                _run_periodically("cleanup-urls", self.urls_interval, self._sweep_urls),
                name="webpaste-cleanup-urls",
            ),
            asyncio.create_task(
                _run_periodically("cleanup-files", self.files_interval, self._sweep_files),
                name="webpaste-cleanup-files",
            ),
        ]
        logger.info(
            "Cleanup started (urls every %ss, files every %ss)",
            self.urls_interval, self.files_interval,
        )

    async def stop(self) -> None:
        """Cancel both loops and wait for them to finish."""
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("Cleanup stopped")

    async def _sweep_urls(self) -> None:
        await cleanup_expired_urls(self.session_factory, self.directory)

    async def _sweep_files(self) -> None:
        await cleanup_unreachable_files(self.session_factory, self.directory)


async def _run_periodically(
    name: str,
    interval: float,
    tick: Callable[[], Awaitable[None]],
) -> None:
    """Run ``tick`` now and then every ``interval`` seconds, forever.

    A failing tick is logged and the loop carries on with the next one.
    Ticks are scheduled on a fixed grid; a tick that overruns its slot
    skips the missed slots rather than bursting.
    """
    loop = asyncio.get_running_loop()
    next_at = loop.time()
    while True:
        try:
            await tick()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("%s tick failed", name)

        next_at += interval
        now = loop.time()
        if next_at < now:
            next_at += ((now - next_at) // interval + 1) * interval
        await asyncio.sleep(next_at - now)
