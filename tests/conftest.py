"""Shared pytest fixtures for webpaste tests."""

from __future__ import annotations

from collections.abc import AsyncGenerator, Awaitable, Callable
from typing import TYPE_CHECKING

import pytest
from sqlalchemy import select

from webpaste.config import Settings
from webpaste.db import create_engine, create_session_factory, init_db
from webpaste.models import StoredFile, Url
from webpaste.services.paste import PasteService
from webpaste.storage import BlobDirectory

if TYPE_CHECKING:
    from pathlib import Path

    from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings pointing at a throwaway database and upload directory."""
    return Settings(
        _env_file=None,
        upload_file_dir=tmp_path / "uploads",
        database_file=tmp_path / "webpaste.db",
    )


@pytest.fixture
async def engine(settings: Settings) -> AsyncGenerator[AsyncEngine, None]:
    """File-backed SQLite engine with the schema created."""
    engine = create_engine(settings)
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(engine)


@pytest.fixture
def directory(settings: Settings) -> BlobDirectory:
    directory = BlobDirectory(settings.upload_file_dir)
    directory.ensure()
    return directory


@pytest.fixture
def service(
    session_factory: async_sessionmaker[AsyncSession],
    directory: BlobDirectory,
    settings: Settings,
) -> PasteService:
    return PasteService(session_factory, directory, settings)


# Type aliases for helper fixtures
GetFile = Callable[[str], Awaitable[StoredFile | None]]
GetUrl = Callable[[str], Awaitable[Url | None]]


@pytest.fixture
def get_file(session_factory: async_sessionmaker[AsyncSession]) -> GetFile:
    """Fetch a ``files`` row by hash in a fresh session."""

    async def _get(file_hash: str) -> StoredFile | None:
        async with session_factory() as session:
            result = await session.execute(
                select(StoredFile).where(StoredFile.file_hash == file_hash)
            )
            return result.scalar_one_or_none()

    return _get


@pytest.fixture
def get_url(session_factory: async_sessionmaker[AsyncSession]) -> GetUrl:
    """Fetch a ``urls`` row by tail in a fresh session."""

    async def _get(tail: str) -> Url | None:
        async with session_factory() as session:
            return await session.get(Url, tail)

    return _get
