"""CLI interface for riddlefeed."""

import asyncio
import json
import logging
from collections.abc import Coroutine
from datetime import datetime
from pathlib import Path
from typing import Annotated, Any, Optional, TypeVar

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from riddlefeed.config import RiddlefeedConfig, load_config, merge_cli_overrides
from riddlefeed.content.feed import categories_in
from riddlefeed.content.fetcher import ContentFetcher
from riddlefeed.content.models import Category, ContentItem, LifecycleStatus
from riddlefeed.content.prompts import category_prompt, refresh_prompt, today_prompt
from riddlefeed.content.services import FeedService
from riddlefeed.content.store import LocalContentStore
from riddlefeed.errors import FetchNotPersisted, RiddlefeedError
from riddlefeed.shared.images import ImageGenerator
from riddlefeed.shared.llm import build_generator
from riddlefeed.shared.retry import RetryableInvoker

T = TypeVar("T")

app = typer.Typer(
    name="riddlefeed",
    help="Fetch, keep, and back up a feed of AI-generated quizzes and riddles.",
    no_args_is_help=True,
)

console = Console()
err_console = Console(stderr=True)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        from riddlefeed import __version__

        console.print(f"riddlefeed {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    config_path: Annotated[
        Optional[Path],
        typer.Option("--config", "-c", help="Path to a .riddlefeed.toml file."),
    ] = None,
    storage_dir: Annotated[
        Optional[Path],
        typer.Option("--storage-dir", "-s", help="Directory holding the local store."),
    ] = None,
    backend: Annotated[
        Optional[str],
        typer.Option("--backend", help="Generation backend: gemini or anthropic."),
    ] = None,
    model: Annotated[
        Optional[str],
        typer.Option("--model", "-m", help="Generation model override."),
    ] = None,
    max_attempts: Annotated[
        Optional[int],
        typer.Option("--max-attempts", min=1, help="Attempts per remote call, retries included."),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", help="Show debug logging."),
    ] = False,
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            "-v",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = False,
) -> None:
    """riddlefeed - a locally persisted quiz and riddle feed."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=err_console, show_path=False)],
    )
    config = load_config(config_path)
    ctx.obj = merge_cli_overrides(
        config,
        storage_dir=storage_dir,
        backend=backend,
        model=model,
        max_attempts=max_attempts,
    )


def build_service(config: RiddlefeedConfig) -> FeedService:
    """Wire store, backends, and retry policy from config."""
    store = LocalContentStore(config.storage.path)
    generator = build_generator(
        config.generation.backend,
        config.generation.model,
        timeout=config.generation.timeout,
    )
    fetcher = ContentFetcher(
        generator,
        RetryableInvoker(config.retry.to_policy()),
        images=ImageGenerator(config.images.model, timeout=config.images.timeout),
        aspect_ratio=config.images.aspect_ratio,
    )
    return FeedService(store, fetcher)


def _run(coro: Coroutine[Any, Any, T]) -> T:
    """Run a service coroutine, turning domain errors into exit code 1."""
    try:
        return asyncio.run(coro)
    except FetchNotPersisted as exc:
        console.print(f"[red]Error:[/red] {exc}")
        console.print(f"{len(exc.items)} fetched item(s) were not saved.")
        raise typer.Exit(1) from exc
    except RiddlefeedError as exc:
        console.print(f"[red]Error:[/red] {exc}")
        raise typer.Exit(1) from exc
    except KeyError as exc:
        console.print(f"[red]Error:[/red] No item with id {exc.args[0]!r}")
        raise typer.Exit(1) from exc


def _service(ctx: typer.Context) -> FeedService:
    return build_service(ctx.obj)


def _render(items: list[ContentItem], title: str) -> None:
    if not items:
        console.print(f"[yellow]No items in {title}.[/yellow]")
        return
    table = Table(title=title, show_lines=True)
    table.add_column("ID", style="dim", no_wrap=True)
    table.add_column("Category")
    table.add_column("Prompt")
    table.add_column("Hook", style="cyan")
    table.add_column("Created")
    table.add_column("Img", justify="center")
    for item in items:
        created = datetime.fromtimestamp(item.created_at / 1000).strftime("%Y-%m-%d %H:%M")
        table.add_row(
            item.id,
            item.category,
            item.prompt,
            item.hook,
            created,
            "✓" if item.generated_image else "",
        )
    console.print(table)


@app.command()
def fetch(
    ctx: typer.Context,
    category: Annotated[
        Optional[str],
        typer.Option("--category", help="Fetch a batch for one category."),
    ] = None,
    refresh: Annotated[
        bool,
        typer.Option("--refresh", help="Ask for a fresh mixed batch."),
    ] = False,
    more: Annotated[
        bool,
        typer.Option("--more", help="With --category, push for rarer variations."),
    ] = False,
) -> None:
    """Fetch new items and show the active feed."""
    feed = ctx.obj.feed
    if refresh:
        prompt_spec = refresh_prompt(feed.batch_count)
    elif category and category != Category.ALL:
        prompt_spec = category_prompt(category, feed.batch_count, more=more)
    else:
        prompt_spec = today_prompt(feed.today_count)

    service = _service(ctx)
    result = _run(service.refresh(prompt_spec, LifecycleStatus.ACTIVE, category))
    _render(result.items, category or "Active feed")
    if result.error:
        console.print(f"[red]Fetch failed:[/red] {result.error}")
        console.print("Showing stored items only.")
        raise typer.Exit(1)
    console.print(f"[green]Fetched {result.fetched} new item(s).[/green]")


@app.command()
def custom(
    ctx: typer.Context,
    request: Annotated[str, typer.Argument(help="What the puzzle should be about.")],
) -> None:
    """Generate one item from a free-text request."""
    if not request.strip():
        console.print("[red]Error:[/red] Request must not be empty.")
        raise typer.Exit(1)
    item = _run(_service(ctx).request_custom(request))
    _render([item], "Custom item")
    if item.solution:
        console.print(f"[bold]Solution:[/bold] {item.solution}")


@app.command(name="list")
def list_cmd(
    ctx: typer.Context,
    archived: Annotated[
        bool,
        typer.Option("--archived", help="Show archived items instead."),
    ] = False,
    category: Annotated[
        Optional[str],
        typer.Option("--category", help="Only this category (active view only)."),
    ] = None,
    as_json: Annotated[
        bool,
        typer.Option("--json", help="Print items as JSON."),
    ] = False,
) -> None:
    """Show stored items, newest first."""
    status = LifecycleStatus.ARCHIVED if archived else LifecycleStatus.ACTIVE
    items = _run(_service(ctx).list_view(status, category))
    if as_json:
        typer.echo(json.dumps([item.model_dump(mode="json") for item in items], indent=2))
        return
    title = "Archive" if archived else (category or "Active feed")
    _render(items, title)


@app.command()
def categories(ctx: typer.Context) -> None:
    """List the categories present in the store."""
    items = _run(_service(ctx).store.get_all())
    for name in categories_in(items):
        console.print(f"  - {name}")


@app.command()
def archive(
    ctx: typer.Context,
    item_id: Annotated[str, typer.Argument(help="Item id.")],
) -> None:
    """Archive an active item, or restore an archived one."""
    item = _run(_service(ctx).toggle_archive(item_id))
    console.print(f"[green]{item.id}[/green] is now {item.status.value}.")


@app.command()
def remove(
    ctx: typer.Context,
    item_id: Annotated[str, typer.Argument(help="Item id.")],
) -> None:
    """Delete an item permanently."""
    _run(_service(ctx).remove(item_id))
    console.print(f"Removed {item_id}.")


@app.command()
def enrich(
    ctx: typer.Context,
    item_id: Annotated[str, typer.Argument(help="Item id.")],
    force: Annotated[
        bool,
        typer.Option("--force", help="Regenerate even if an image exists."),
    ] = False,
) -> None:
    """Generate a background image for an item."""
    item = _run(_service(ctx).enrich(item_id, force=force))
    if item is None:
        console.print(f"[yellow]{item_id} was removed before the image arrived.[/yellow]")
        return
    console.print(f"[green]Image attached to {item.id}.[/green]")


@app.command(name="export")
def export_cmd(
    ctx: typer.Context,
    output: Annotated[
        Optional[Path],
        typer.Option("--output", "-o", help="Write the backup to this file instead of stdout."),
    ] = None,
) -> None:
    """Export every item as a backup file."""
    blob = _run(_service(ctx).export_now())
    if output is None:
        typer.echo(blob)
        return
    try:
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(blob, encoding="utf-8")
    except OSError as exc:
        console.print(f"[red]Error:[/red] Cannot write {output}: {exc}")
        raise typer.Exit(1) from exc
    console.print(f"[green]Backup written to {output}[/green]")


@app.command(name="import")
def import_cmd(
    ctx: typer.Context,
    backup: Annotated[
        Path,
        typer.Argument(help="Backup file to restore.", exists=True, dir_okay=False),
    ],
) -> None:
    """Replace the store with the contents of a backup file."""
    count = _run(_service(ctx).import_from(backup.read_text(encoding="utf-8")))
    console.print(f"[green]Restored {count} item(s).[/green]")


if __name__ == "__main__":
    app()
