"""Tests for the upload/access unit of work."""

from __future__ import annotations

import asyncio
import hashlib
from typing import TYPE_CHECKING

import pytest

from webpaste.errors import ExpiresParseError, FileTooLarge, TailDrained, TailLenParseError, TailNotFound
from webpaste.services.paste import PasteService, hash_bytes
from webpaste.services.retention import default_retention
from webpaste.services.tails import MAX_TAIL_LEN
from webpaste.services.url_index import UrlIndex

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from tests.conftest import GetFile, GetUrl
    from webpaste.config import Settings
    from webpaste.storage import BlobDirectory

NOW = 1_700_000_000
HELLO_HASH = hashlib.sha256(b"hello").hexdigest()


class TestUpload:
    """Tests for PasteService.upload."""

    async def test_hello_scenario(
        self,
        service: PasteService,
        settings: Settings,
        directory: BlobDirectory,
        get_file: GetFile,
        get_url: GetUrl,
    ) -> None:
        tail = await service.upload(b"hello", now=NOW)

        assert len(tail) == settings.default_tail_len == 4
        assert tail.isalpha()

        row = await get_file(HELLO_HASH)
        assert row is not None and row.ref_count == 1

        url = await get_url(tail)
        assert url is not None
        assert url.file_hash == HELLO_HASH
        assert url.mimetype == "text/plain; charset=utf-8"
        expected = NOW + default_retention(
            5,
            min_expire=settings.min_expire_duration,
            max_expire=settings.max_expire_duration,
            max_file_size=settings.max_file_size,
        )
        assert url.expires_at == expected
        assert NOW + settings.max_expire_duration - url.expires_at <= 1

        assert directory.read_bytes(HELLO_HASH) == b"hello"
        assert await service.access(tail, now=NOW) == (b"hello", "text/plain; charset=utf-8")

    async def test_same_content_twice_shares_blob(
        self,
        service: PasteService,
        directory: BlobDirectory,
        get_file: GetFile,
        get_url: GetUrl,
    ) -> None:
        first = await service.upload(b"hello", now=NOW)
        mtime = directory.path_for(HELLO_HASH).stat().st_mtime_ns

        second = await service.upload(b"hello", now=NOW)

        assert first != second
        row = await get_file(HELLO_HASH)
        assert row is not None and row.ref_count == 2
        url_a, url_b = await get_url(first), await get_url(second)
        assert url_a is not None and url_b is not None
        assert url_a.file_hash == url_b.file_hash == HELLO_HASH
        assert directory.path_for(HELLO_HASH).stat().st_mtime_ns == mtime

    async def test_explicit_mimetype_and_tail_len(
        self, service: PasteService, get_url: GetUrl
    ) -> None:
        tail = await service.upload(b"{}", mimetype="application/x-custom", tail_len=9, now=NOW)
        assert len(tail) == 9
        url = await get_url(tail)
        assert url is not None and url.mimetype == "application/x-custom"

    async def test_relative_expires(self, service: PasteService, get_url: GetUrl) -> None:
        tail = await service.upload(b"data", expires="1h", now=NOW)
        url = await get_url(tail)
        assert url is not None and url.expires_at == NOW + 3600

    async def test_absolute_expires(self, service: PasteService, get_url: GetUrl) -> None:
        tail = await service.upload(b"data", expires=str(NOW + 42), now=NOW)
        url = await get_url(tail)
        assert url is not None and url.expires_at == NOW + 42

    async def test_too_large_stores_nothing(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        directory: BlobDirectory,
        settings: Settings,
        get_file: GetFile,
    ) -> None:
        small = settings.model_copy(update={"max_file_size": 4})
        service = PasteService(session_factory, directory, small)

        with pytest.raises(FileTooLarge):
            await service.upload(b"hello", now=NOW)

        assert await get_file(HELLO_HASH) is None
        assert list(directory.iter_names()) == []

    async def test_invalid_tail_len(self, service: PasteService, get_file: GetFile) -> None:
        with pytest.raises(TailLenParseError):
            await service.upload(b"hello", tail_len=0, now=NOW)
        assert await get_file(HELLO_HASH) is None

    async def test_invalid_expires(self, service: PasteService, get_file: GetFile) -> None:
        with pytest.raises(ExpiresParseError):
            await service.upload(b"hello", expires="whenever", now=NOW)
        assert await get_file(HELLO_HASH) is None

    @pytest.mark.parametrize(
        "expires",
        ["99999999999999999999", "99999999999999999999y", "9223372036854775807s", "\u00b2"],
    )
    async def test_out_of_range_expires(
        self, service: PasteService, get_file: GetFile, expires: str
    ) -> None:
        with pytest.raises(ExpiresParseError):
            await service.upload(b"hello", expires=expires, now=NOW)
        assert await get_file(HELLO_HASH) is None

    async def test_tail_len_bounded_by_column_width(
        self, service: PasteService, get_file: GetFile
    ) -> None:
        with pytest.raises(TailLenParseError):
            await service.upload(b"hello", tail_len=MAX_TAIL_LEN + 1, now=NOW)
        assert await get_file(HELLO_HASH) is None

        tail = await service.upload(b"hello", tail_len=MAX_TAIL_LEN, now=NOW)
        assert len(tail) == MAX_TAIL_LEN

    async def test_drained_rolls_back(
        self,
        service: PasteService,
        session_factory: async_sessionmaker[AsyncSession],
        get_file: GetFile,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        async def always_taken(self: UrlIndex, tail: str) -> bool:
            return True

        monkeypatch.setattr(UrlIndex, "is_taken", always_taken)

        with pytest.raises(TailDrained):
            await service.upload(b"hello", now=NOW)

        assert await get_file(HELLO_HASH) is None
        async with session_factory() as session:
            assert await UrlIndex(session).count() == 0

    async def test_write_failure_after_commit_heals_on_reupload(
        self,
        service: PasteService,
        directory: BlobDirectory,
        get_file: GetFile,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        def broken_write(file_hash: str, data: bytes) -> bool:
            raise OSError("disk full")

        monkeypatch.setattr(directory, "write_bytes_if_absent", broken_write)
        with pytest.raises(OSError):
            await service.upload(b"hello", now=NOW)

        # Committed before the write: the row and url exist, the file does not
        row = await get_file(HELLO_HASH)
        assert row is not None and row.ref_count == 1
        assert not directory.exists(HELLO_HASH)

        monkeypatch.undo()
        tail = await service.upload(b"hello", now=NOW)
        assert directory.read_bytes(HELLO_HASH) == b"hello"
        assert await service.access(tail, now=NOW) == (b"hello", "text/plain; charset=utf-8")

        row = await get_file(HELLO_HASH)
        assert row is not None and row.ref_count == 2


class TestAccess:
    """Tests for PasteService.access."""

    async def test_unknown_tail(self, service: PasteService) -> None:
        with pytest.raises(TailNotFound):
            await service.access("nope", now=NOW)

    @pytest.mark.parametrize("tail", ["", "ab-1", "abc1", "x" * (MAX_TAIL_LEN + 1)])
    async def test_malformed_tail(self, service: PasteService, tail: str) -> None:
        with pytest.raises(TailNotFound):
            await service.access(tail, now=NOW)

    async def test_expired_but_unswept_tail(self, service: PasteService) -> None:
        tail = await service.upload(b"hello", expires="10s", now=NOW)
        assert (await service.access(tail, now=NOW + 9))[0] == b"hello"
        with pytest.raises(TailNotFound):
            await service.access(tail, now=NOW + 10)

    async def test_missing_file_is_an_io_error(
        self, service: PasteService, directory: BlobDirectory
    ) -> None:
        tail = await service.upload(b"hello", now=NOW)
        directory.remove(HELLO_HASH)
        with pytest.raises(OSError):
            await service.access(tail, now=NOW)

    async def test_binary_roundtrip(self, service: PasteService) -> None:
        data = b"\x89PNG\r\n\x1a\n" + bytes(range(256))
        tail = await service.upload(data, now=NOW)
        assert await service.access(tail, now=NOW) == (data, "image/png")


class TestConcurrency:
    """Concurrent uploads against one database."""

    async def test_no_duplicate_tails_with_short_length(
        self, service: PasteService, get_file: GetFile
    ) -> None:
        n = 25
        tails = await asyncio.gather(
            *(service.upload(b"same content", tail_len=2, now=NOW) for _ in range(n))
        )

        assert len(set(tails)) == n
        row = await get_file(hash_bytes(b"same content"))
        assert row is not None and row.ref_count == n

    async def test_distinct_content_concurrently(
        self, service: PasteService, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        payloads = [f"paste {i}".encode() for i in range(20)]
        tails = await asyncio.gather(*(service.upload(p, now=NOW) for p in payloads))

        assert len(set(tails)) == len(payloads)
        for tail, payload in zip(tails, payloads):
            assert (await service.access(tail, now=NOW))[0] == payload
        async with session_factory() as session:
            assert await UrlIndex(session).count() == len(payloads)

    async def test_access_does_not_wait_for_writer(
        self, service: PasteService, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        tail = await service.upload(b"hello", now=NOW)

        async with session_factory() as session, session.begin():
            # Takes the write lock and holds it until the block exits
            assert await UrlIndex(session).is_taken(tail)
            data, _ = await asyncio.wait_for(service.access(tail, now=NOW), timeout=5)
            assert data == b"hello"


def test_hash_bytes() -> None:
    assert hash_bytes(b"hello") == (
        "2cf24dba5fb0a30e26e83b2ac5b9e29e1b161e5c1fa7425e73043362938b9824"
    )
