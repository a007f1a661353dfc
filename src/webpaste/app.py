"""FastAPI application for webpaste."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Annotated

import httpx
from fastapi import Depends, FastAPI, Request
from fastapi.responses import HTMLResponse, PlainTextResponse, Response
from sqlalchemy.exc import SQLAlchemyError
from starlette.datastructures import UploadFile

from webpaste import __version__
from webpaste.config import Settings, get_settings
from webpaste.db import create_engine, create_session_factory, init_db
from webpaste.errors import (
    FetchError,
    FileTooLarge,
    NoFileUploaded,
    NonSuccessfulStatusCode,
    ParseError,
    RequestTimeout,
    TailDrained,
    TailLenParseError,
    TailNotFound,
)
from webpaste.fetch import fetch_url
from webpaste.services.cleanup import Cleaner
from webpaste.services.paste import PasteService
from webpaste.storage import BlobDirectory

logger = logging.getLogger(__name__)

_INDEX_HTML = """<!doctype html>
<html>
<head><meta charset="utf-8"><title>webpaste</title></head>
<body>
<pre>
webpaste {version}

Upload a file:
    curl -F 'file=@path/to/file' {base_url}

Upload from a URL:
    curl -F 'url=https://example.com/image.png' {base_url}

Optional fields:
    tail_len=N      length of the generated link tail (default {tail_len})
    expires=...     UNIX timestamp in seconds, or a duration like '1h 30m'

Without 'expires', small files live up to {max_days} days and files near
the {max_mib} MiB limit at least {min_days} days.
</pre>
<form method="post" enctype="multipart/form-data">
<input type="file" name="file"> <input type="submit" value="upload">
</form>
</body>
</html>
"""


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the application around an explicit ``Settings`` object."""
    if settings is None:
        settings = get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Open the database, start cleanup; stop both on shutdown."""
        engine = create_engine(settings)
        await init_db(engine)
        session_factory = create_session_factory(engine)
        directory = BlobDirectory(settings.upload_file_dir)
        directory.ensure()

        app.state.paste_service = PasteService(session_factory, directory, settings)
        cleaner = Cleaner(
            session_factory,
            directory,
            urls_interval=settings.cleanup_urls_duration,
            files_interval=settings.cleanup_files_duration,
        )
        cleaner.start()
        try:
            yield
        finally:
            await cleaner.stop()
            await engine.dispose()

    app = FastAPI(
        title="webpaste",
        description="Paste service with short expiring links",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    _register_error_handlers(app)
    _register_routes(app)
    return app


def get_paste_service(request: Request) -> PasteService:
    return request.app.state.paste_service


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def _register_routes(app: FastAPI) -> None:
    @app.get("/", response_class=HTMLResponse)
    async def index(settings: Annotated[Settings, Depends(get_app_settings)]) -> str:
        """Usage page."""
        day = 24 * 60 * 60
        return _INDEX_HTML.format(
            version=__version__,
            base_url=settings.base_url,
            tail_len=settings.default_tail_len,
            max_days=settings.max_expire_duration // day,
            min_days=settings.min_expire_duration // day,
            max_mib=settings.max_file_size // (1024 * 1024),
        )

    @app.post("/", response_class=PlainTextResponse)
    async def upload(
        request: Request,
        service: Annotated[PasteService, Depends(get_paste_service)],
        settings: Annotated[Settings, Depends(get_app_settings)],
    ) -> str:
        """Store a ``file`` or the content behind a ``url``; return its link."""
        data, tail_len, expires = await _parse_upload_form(request, settings)
        tail = await service.upload(data, tail_len=tail_len, expires=expires)
        return f"{settings.base_url}/{tail}\n"

    @app.get("/health")
    async def health() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "ok", "version": __version__}

    @app.get("/{tail}")
    async def access(
        tail: str,
        service: Annotated[PasteService, Depends(get_paste_service)],
    ) -> Response:
        """Serve the content behind a tail with its cached mimetype."""
        data, mimetype = await service.access(tail)
        return Response(content=data, media_type=mimetype)


async def _parse_upload_form(
    request: Request,
    settings: Settings,
) -> tuple[bytes, int | None, str | None]:
    """Pull ``file``/``url``, ``tail_len`` and ``expires`` out of the form.

    The first ``file`` or ``url`` field wins; later ones are ignored, as
    are repeated ``expires`` fields.
    """
    data: bytes | None = None
    tail_len: int | None = None
    expires: str | None = None

    async with request.form() as form:
        for name, value in form.multi_items():
            if name == "file" and data is None:
                if isinstance(value, UploadFile):
                    data = await _read_limited(value, settings.max_file_size)
                else:
                    data = value.encode()
            elif name == "url" and data is None:
                data = await fetch_url(
                    str(value),
                    max_size=settings.max_file_size,
                    timeout=settings.fetch_timeout,
                )
            elif name == "tail_len":
                raw = str(value).strip()
                if not (raw.isascii() and raw.isdigit()):
                    raise TailLenParseError(f"invalid tail_len: {raw!r}")
                tail_len = int(raw)
            elif name == "expires" and expires is None:
                expires = str(value)

    if data is None:
        raise NoFileUploaded()
    return data, tail_len, expires


async def _read_limited(upload: UploadFile, max_size: int) -> bytes:
    """Read an uploaded part, failing fast once it exceeds ``max_size``."""
    if upload.size is not None and upload.size > max_size:
        raise FileTooLarge(upload.size, max_size)
    data = await upload.read(max_size + 1)
    if len(data) > max_size:
        raise FileTooLarge(len(data), max_size)
    return data


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(TailNotFound)
    async def _not_found(request: Request, exc: TailNotFound) -> Response:
        return PlainTextResponse("not found\n", status_code=404)

    @app.exception_handler(NoFileUploaded)
    @app.exception_handler(ParseError)
    async def _bad_request(request: Request, exc: Exception) -> Response:
        return PlainTextResponse(f"{exc}\n", status_code=400)

    @app.exception_handler(FileTooLarge)
    async def _too_large(request: Request, exc: FileTooLarge) -> Response:
        return PlainTextResponse("file too large\n", status_code=413)

    @app.exception_handler(TailDrained)
    async def _drained(request: Request, exc: TailDrained) -> Response:
        return PlainTextResponse(
            "cannot generate an unique url, try specifying a larger 'tail_len'\n",
            status_code=503,
        )

    @app.exception_handler(FetchError)
    async def _fetch_failed(request: Request, exc: FetchError) -> Response:
        if isinstance(exc, RequestTimeout | NonSuccessfulStatusCode):
            return PlainTextResponse(f"{exc}\n", status_code=503)
        return PlainTextResponse(f"{exc}\n", status_code=400)

    @app.exception_handler(httpx.HTTPError)
    @app.exception_handler(SQLAlchemyError)
    @app.exception_handler(OSError)
    async def _internal_error(request: Request, exc: Exception) -> Response:
        logger.error("%s %s failed", request.method, request.url.path, exc_info=exc)
        return PlainTextResponse("internal server error\n", status_code=500)


app = create_app()
