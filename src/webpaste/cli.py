"""CLI for webpaste.

Commands:
    serve                 - Run the HTTP server with background cleanup
    init-db               - Create the database schema and upload directory
    upload <path>         - Store a local file and print its link
    show <tail>           - Show url and blob details for a tail
    sweep                 - Run both cleanup sweeps once
    stats                 - Show store statistics
"""

from __future__ import annotations

import asyncio
import datetime as dt
import logging
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from sqlalchemy import func, select

from webpaste.config import Settings, load_settings
from webpaste.db import begin_read_only, create_engine, create_session_factory, init_db
from webpaste.errors import WebpasteError
from webpaste.models import StoredFile, Url
from webpaste.services.blob_store import BlobStore
from webpaste.services.cleanup import cleanup_expired_urls, cleanup_unreachable_files
from webpaste.services.paste import PasteService
from webpaste.services.url_index import UrlIndex
from webpaste.storage import BlobDirectory

app = typer.Typer(
    name="webpaste",
    help="webpaste: paste service with short expiring links",
    no_args_is_help=True,
)
console = Console()


def run_async(coro):
    """Run an async coroutine in sync context."""
    return asyncio.run(coro)


def _settings(ctx: typer.Context) -> Settings:
    return ctx.obj


def _format_ts(ts: int) -> str:
    return dt.datetime.fromtimestamp(ts, tz=dt.UTC).strftime("%Y-%m-%d %H:%M:%S UTC")


@app.callback()
def main(
    ctx: typer.Context,
    config: Annotated[
        Path | None,
        typer.Option("--config", "-c", help="TOML config file", exists=True, dir_okay=False),
    ] = None,
    log_level: Annotated[str, typer.Option("--log-level", help="Logging level")] = "INFO",
):
    """Load settings and configure logging for every command."""
    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.obj = load_settings(config)


@app.command()
def serve(ctx: typer.Context):
    """Run the HTTP server.

    Listens on ``listen_addr`` and runs both cleanup loops until shutdown.
    """
    import uvicorn

    from webpaste.app import create_app

    settings = _settings(ctx)
    host, _, port = settings.listen_addr.rpartition(":")
    console.print(f"[blue]webpaste listening on {settings.listen_addr}[/blue]")
    uvicorn.run(create_app(settings), host=host or "127.0.0.1", port=int(port), log_config=None)


@app.command("init-db")
def init_db_command(ctx: typer.Context):
    """Create the database schema and the upload directory."""
    settings = _settings(ctx)

    async def _init():
        engine = create_engine(settings)
        try:
            await init_db(engine)
        finally:
            await engine.dispose()
        BlobDirectory(settings.upload_file_dir).ensure()

    run_async(_init())
    console.print(f"[green]Initialized[/green] {settings.database_file} and {settings.upload_file_dir}")


@app.command()
def upload(
    ctx: typer.Context,
    path: Annotated[Path, typer.Argument(help="File to upload", exists=True, dir_okay=False)],
    tail_len: Annotated[int | None, typer.Option("--tail-len", "-l", help="Tail length")] = None,
    expires: Annotated[
        str | None,
        typer.Option("--expires", "-e", help="UNIX timestamp or duration, e.g. '1h 30m'"),
    ] = None,
):
    """Store a local file and print its link."""
    settings = _settings(ctx)

    async def _upload() -> str:
        engine = create_engine(settings)
        try:
            await init_db(engine)
            directory = BlobDirectory(settings.upload_file_dir)
            directory.ensure()
            service = PasteService(create_session_factory(engine), directory, settings)
            return await service.upload(path.read_bytes(), tail_len=tail_len, expires=expires)
        finally:
            await engine.dispose()

    try:
        tail = run_async(_upload())
    except WebpasteError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1) from e
    console.print(f"{settings.base_url}/{tail}")


@app.command()
def show(
    ctx: typer.Context,
    tail: Annotated[str, typer.Argument(help="Tail of the link")],
):
    """Show url and blob details for a tail."""
    settings = _settings(ctx)

    async def _show():
        engine = create_engine(settings)
        try:
            await init_db(engine)
            async with create_session_factory(engine)() as session:
                await begin_read_only(session)
                url = await UrlIndex(session).get(tail)
                if url is None:
                    return None
                ref_count = await BlobStore(session).ref_count(url.file_hash)
                return url, ref_count
        finally:
            await engine.dispose()

    found = run_async(_show())
    if found is None:
        console.print(f"[red]Error:[/red] Tail not found: {tail}")
        raise typer.Exit(code=1)

    url, ref_count = found
    on_disk = BlobDirectory(settings.upload_file_dir).exists(url.file_hash)
    panel_content = [
        f"[bold]Tail:[/bold] {url.tail}",
        f"[bold]Link:[/bold] {settings.base_url}/{url.tail}",
        f"[bold]Hash:[/bold] {url.file_hash}",
        f"[bold]Mimetype:[/bold] {url.mimetype}",
        f"[bold]Expires:[/bold] {_format_ts(url.expires_at)}",
        f"[bold]Ref count:[/bold] {ref_count if ref_count is not None else '[red]missing[/red]'}",
        f"[bold]On disk:[/bold] {'yes' if on_disk else '[red]no[/red]'}",
    ]
    console.print(Panel("\n".join(panel_content), title="Url Details"))


@app.command()
def sweep(ctx: typer.Context):
    """Run the expiry sweep and the orphan-file sweep once."""
    settings = _settings(ctx)

    async def _sweep() -> tuple[list[str], list[str]]:
        engine = create_engine(settings)
        try:
            await init_db(engine)
            session_factory = create_session_factory(engine)
            directory = BlobDirectory(settings.upload_file_dir)
            directory.ensure()
            released = await cleanup_expired_urls(session_factory, directory)
            orphans = await cleanup_unreachable_files(session_factory, directory)
            return released, orphans
        finally:
            await engine.dispose()

    released, orphans = run_async(_sweep())
    console.print(f"[bold]Released blobs:[/bold] {len(released)}")
    console.print(f"[bold]Orphan files removed:[/bold] {len(orphans)}")


@app.command()
def stats(ctx: typer.Context):
    """Show store statistics."""
    settings = _settings(ctx)

    async def _stats() -> dict[str, int]:
        engine = create_engine(settings)
        try:
            await init_db(engine)
            async with create_session_factory(engine)() as session:
                await begin_read_only(session)
                urls = await UrlIndex(session).count()
                files = (
                    await session.execute(select(func.count()).select_from(StoredFile))
                ).scalar_one()
                refs = (
                    await session.execute(select(func.coalesce(func.sum(StoredFile.ref_count), 0)))
                ).scalar_one()
                next_expiry = (await session.execute(select(func.min(Url.expires_at)))).scalar()
            return {"urls": urls, "files": files, "refs": refs, "next_expiry": next_expiry}
        finally:
            await engine.dispose()

    counts = run_async(_stats())
    directory = BlobDirectory(settings.upload_file_dir)
    on_disk = len(list(directory.iter_names())) if directory.root.is_dir() else 0

    table = Table(title="webpaste")
    table.add_column("Metric")
    table.add_column("Value", justify="right")
    table.add_row("Live urls", str(counts["urls"]))
    table.add_row("Unique blobs", str(counts["files"]))
    table.add_row("Total references", str(counts["refs"]))
    table.add_row("Files on disk", str(on_disk))
    if counts["next_expiry"] is not None:
        table.add_row("Next expiry", _format_ts(counts["next_expiry"]))
    console.print(table)


if __name__ == "__main__":
    app()
