"""Command-line interface for ShelfReader."""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, Tuple, TypeVar
from urllib.parse import urljoin

import click
import structlog
import yaml
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from shelfreader import __version__
from shelfreader.config import Config, find_config_file
from shelfreader.container import DependencyContainer
from shelfreader.exceptions import ShelfReaderError
from shelfreader.models import ChapterRef
from shelfreader.observability import configure_logging, start_metrics_server
from shelfreader.storage import BookRecord, ChapterRecord

console = Console()
logger = structlog.get_logger(__name__)

T = TypeVar("T")


def load_config(config_path: Optional[Path], log_level: Optional[str] = None) -> Config:
    config = Config.from_yaml(config_path) if config_path else Config()
    if log_level:
        config.monitoring.log_level = log_level
    return config


def run_with_container(ctx: click.Context, action: Callable[[DependencyContainer], Awaitable[T]]) -> T:
    """Run ``action`` inside a container lifecycle and exit non-zero on ShelfReader errors."""

    async def runner() -> T:
        container = DependencyContainer(ctx.obj["config_path"], config=ctx.obj["config"])
        async with container.lifecycle():
            return await action(container)

    try:
        return asyncio.run(runner())
    except ShelfReaderError as e:
        console.print(f"[red]❌ {e}[/red]")
        sys.exit(1)


@click.group()
@click.version_option(version=__version__)
@click.option("--config", "-c", type=click.Path(exists=True, path_type=Path), help="Configuration file path")
@click.option(
    "--log-level",
    default=None,
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]),
    help="Logging level (overrides the configuration file)",
)
@click.pass_context
def cli(ctx: click.Context, config: Optional[Path], log_level: Optional[str]) -> None:
    """ShelfReader - read web novels from any site, offline-friendly."""
    ctx.ensure_object(dict)
    config = config or find_config_file()
    ctx.obj["config_path"] = config
    try:
        ctx.obj["config"] = load_config(config, log_level)
    except (ValidationError, ValueError, yaml.YAMLError) as e:
        console.print(f"[red]❌ Invalid configuration: {e}[/red]")
        sys.exit(1)
    configure_logging(ctx.obj["config"].monitoring)
    start_metrics_server(ctx.obj["config"].monitoring)


@cli.command()
@click.argument("url")
@click.pass_context
def info(ctx: click.Context, url: str) -> None:
    """Show the title and author of the book at URL."""

    async def action(container: DependencyContainer) -> None:
        parser = await container.get_parser()
        summary = await parser.parse_book(url)
        table = Table(title="Book")
        table.add_column("Field", style="cyan")
        table.add_column("Value", style="magenta")
        table.add_row("Title", summary.title)
        table.add_row("Author", summary.author)
        table.add_row("URL", url)
        console.print(table)

    run_with_container(ctx, action)


@cli.command()
@click.argument("url")
@click.option("--limit", default=0, help="Show at most this many chapters (0 for all)")
@click.pass_context
def chapters(ctx: click.Context, url: str, limit: int) -> None:
    """List the chapters linked from the index page at URL."""

    async def action(container: DependencyContainer) -> None:
        parser = await container.get_parser()
        refs = await parser.parse_chapter_list(url)
        if not refs:
            console.print("[yellow]No chapters found[/yellow]")
            return
        table = Table(title=f"Chapters ({len(refs)})")
        table.add_column("#", justify="right", style="cyan")
        table.add_column("Title", style="magenta")
        table.add_column("URL")
        for index, ref in enumerate(refs[:limit] if limit else refs, start=1):
            table.add_row(str(index), ref.title, ref.url)
        console.print(table)

    run_with_container(ctx, action)


@cli.command()
@click.argument("url")
@click.option("--book-id", default=None, help="Cache namespace; defaults to the chapter's directory URL")
@click.option("--title", default=None, help="Chapter title to strip from the text")
@click.option("--refresh", is_flag=True, help="Refetch even when a fresh cached copy exists")
@click.option("--preload/--no-preload", default=True, help="Cache the chapters around a shelf book's current one")
@click.pass_context
def read(
    ctx: click.Context, url: str, book_id: Optional[str], title: Optional[str], refresh: bool, preload: bool
) -> None:
    """Print the normalized text of the chapter at URL."""
    book = book_id or BookRecord.id_for_url(urljoin(url, "."))
    chapter = ChapterRef(title=title or "", url=url)

    async def action(container: DependencyContainer) -> None:
        service = await container.get_service()
        if refresh:
            text = await service.refresh(book, chapter)
        else:
            text = await service.get_content(book, chapter)

        # Shelf books remember where the reader stopped.
        store = await container.get_book_store()
        record = store.get(book)
        index: Optional[int] = None
        if record is not None:
            urls = [item.url for item in record.chapter_list]
            if url in urls:
                index = urls.index(url)
                store.update_progress(book, index, url)

        preloader = await container.get_preloader()
        if preload and record is not None and index is not None:
            await preloader.start(book, record.chapters(), index)
        console.print(text, markup=False, highlight=False)
        if preloader.running:
            loaded = await preloader.wait()
            console.print(f"[blue]Preloaded {loaded} chapters[/blue]")

    run_with_container(ctx, action)


@cli.command()
@click.argument("url")
@click.option("--preload", is_flag=True, help="Also cache the first chapters")
@click.pass_context
def add(ctx: click.Context, url: str, preload: bool) -> None:
    """Add the book at URL to the shelf."""

    async def action(container: DependencyContainer) -> Tuple[BookRecord, int]:
        parser = await container.get_parser()
        summary = await parser.parse_book(url)
        refs = await parser.parse_chapter_list(url)
        record = BookRecord(
            id=BookRecord.id_for_url(url),
            title=summary.title,
            author=summary.author,
            url=url,
            chapter_list=[ChapterRecord.from_ref(ref) for ref in refs],
        )
        store = await container.get_book_store()
        store.save(record)
        loaded = 0
        if preload and refs:
            preloader = await container.get_preloader()
            loaded = await preloader.preload(record.id, refs, 0)
            service = await container.get_service()
            await service.get_content(record.id, refs[0])
        return record, loaded

    record, loaded = run_with_container(ctx, action)
    console.print(
        f"[green]✅ Added {record.title} by {record.author} "
        f"({len(record.chapter_list)} chapters, id {record.id})[/green]"
    )
    if preload:
        console.print(f"[blue]Preloaded {loaded} chapters[/blue]")


@cli.command()
@click.pass_context
def books(ctx: click.Context) -> None:
    """List the books on the shelf."""

    async def action(container: DependencyContainer) -> None:
        store = await container.get_book_store()
        records = store.list_books()
        if not records:
            console.print("[yellow]The shelf is empty[/yellow]")
            return
        table = Table(title="Shelf")
        table.add_column("ID", style="cyan")
        table.add_column("Title", style="magenta")
        table.add_column("Author")
        table.add_column("Chapters", justify="right")
        table.add_column("Position", justify="right")
        for record in records:
            table.add_row(
                record.id, record.title, record.author, str(len(record.chapter_list)), str(record.last_read_position)
            )
        console.print(table)

    run_with_container(ctx, action)


@cli.group()
def cache() -> None:
    """Inspect and maintain the chapter cache."""


@cache.command("stats")
@click.pass_context
def cache_stats(ctx: click.Context) -> None:
    """Show cache size and location."""

    async def action(container: DependencyContainer) -> dict[str, Any]:
        store = await container.get_cache()
        return store.stats()

    stats = run_with_container(ctx, action)
    table = Table(title="Chapter cache")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="magenta")
    table.add_row("Path", str(stats["path"]))
    table.add_row("Books", str(stats["books"]))
    table.add_row("Entries", str(stats["entries"]))
    table.add_row("Size", f"{stats['size_bytes'] / 1024:.1f} KiB")
    console.print(table)


@cache.command("cleanup")
@click.pass_context
def cache_cleanup(ctx: click.Context) -> None:
    """Remove expired entries and evict old ones when space is short."""

    async def action(container: DependencyContainer) -> Any:
        store = await container.get_cache()
        return store.cleanup()

    report = run_with_container(ctx, action)
    console.print(
        f"[green]✅ Removed {report.expired_removed} expired and evicted {report.evicted} entries "
        f"({report.freed_bytes} bytes freed)[/green]"
    )


@cache.command("clear")
@click.argument("book_id", required=False)
@click.confirmation_option(prompt="Delete cached chapters?")
@click.pass_context
def cache_clear(ctx: click.Context, book_id: Optional[str]) -> None:
    """Delete cached chapters of BOOK_ID, or of every book."""

    async def action(container: DependencyContainer) -> None:
        store = await container.get_cache()
        if book_id:
            store.clear(book_id)
        else:
            store.clear_all()

    run_with_container(ctx, action)
    console.print(f"[green]✅ Cleared {'book ' + book_id if book_id else 'all books'}[/green]")


@cli.command()
@click.argument("urls", nargs=-1)
@click.pass_context
def stats(ctx: click.Context, urls: Tuple[str, ...]) -> None:
    """Fetch URLS and print network performance statistics."""

    async def action(container: DependencyContainer) -> str:
        fetcher = await container.get_fetcher()
        results = await asyncio.gather(*(fetcher.fetch(url) for url in urls), return_exceptions=True)
        for url, result in zip(urls, results):
            if isinstance(result, BaseException):
                logger.warning("Probe failed", url=url, error=str(result))
        monitor = await container.get_monitor()
        return monitor.report()

    console.print(run_with_container(ctx, action), markup=False, highlight=False)


@cli.command()
@click.pass_context
def validate_config(ctx: click.Context) -> None:
    """Validate the current configuration."""
    console.print("[blue]🔍 Validating configuration...[/blue]")
    config: Config = ctx.obj["config"]

    table = Table(title="Configuration Status")
    table.add_column("Section", style="cyan")
    table.add_column("Settings", style="magenta")
    for name in ("cache", "fetcher", "encoding", "extraction", "preload", "storage", "monitoring"):
        section = getattr(config, name)
        table.add_row(name, ", ".join(f"{key}={value}" for key, value in section.model_dump().items()))
    console.print(table)

    async def action(container: DependencyContainer) -> dict[str, Any]:
        return container.get_health_status()

    health = run_with_container(ctx, action)
    if health["config_loaded"]:
        console.print("[green]✅ Configuration is valid![/green]")
    else:
        console.print("[red]❌ Configuration has issues![/red]")
        sys.exit(1)


def main() -> None:
    """Main entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
