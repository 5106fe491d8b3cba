"""CLI entry point for the digest engine."""

import asyncio
import json
import signal
from pathlib import Path
from typing import Awaitable, Callable, Optional, TypeVar

import typer

from digest_engine.bootstrap import AppContext, build_context
from digest_engine.config import get_settings
from digest_engine.core.entities import DigestResult, TimeWindow
from digest_engine.core.errors import DigestEngineError
from digest_engine.logging_config import configure_logging
from digest_engine.use_cases import HealthService

T = TypeVar("T")

app = typer.Typer(help="Personalized digest engine.", no_args_is_help=True)
watchlist_app = typer.Typer(help="Inspect and edit a user's watchlist.", no_args_is_help=True)
enqueue_app = typer.Typer(help="Queue background jobs.", no_args_is_help=True)
app.add_typer(watchlist_app, name="watchlist")
app.add_typer(enqueue_app, name="enqueue")

_state: dict[str, Path] = {"config": Path("config.yaml")}


@app.callback()
def main(
    config: Path = typer.Option(Path("config.yaml"), "--config", "-c", help="Path to config.yaml"),
) -> None:
    """Personalized digest engine."""
    _state["config"] = config


def _run(action: Callable[[AppContext], Awaitable[T]], run_worker: bool = False) -> T:
    settings = get_settings(_state["config"])
    configure_logging(settings.logging.level, settings.logging.json)

    async def runner() -> T:
        ctx = build_context(settings)
        await ctx.start(run_worker=run_worker)
        try:
            return await action(ctx)
        finally:
            await ctx.stop()

    try:
        return asyncio.run(runner())
    except DigestEngineError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1) from e


def _print_digest(digest: DigestResult) -> None:
    typer.echo(digest.summary)
    window = digest.time_window
    typer.echo(f"Window: {window.start.isoformat()} .. {window.end.isoformat()}")
    for n, highlight in enumerate(digest.highlights, 1):
        typer.echo(f"\n{n}. {highlight.item.title}  [{highlight.score:.2f}]")
        typer.echo(f"   {highlight.tldr}")
        typer.echo(f"   {highlight.provenance.reason}")
    if digest.continue_token:
        typer.echo(f"\nMore available: --continue-token {digest.continue_token}")


@app.command()
def digest(
    user: str = typer.Argument(..., help="User id"),
    start: Optional[str] = typer.Option(None, "--start", help="Window start (ISO 8601)"),
    end: Optional[str] = typer.Option(None, "--end", help="Window end (ISO 8601)"),
    max_items: Optional[int] = typer.Option(None, "--max-items", help="Highlights per page"),
    continue_token: Optional[str] = typer.Option(None, "--continue-token", help="Next page token"),
    as_json: bool = typer.Option(False, "--json", help="Print the digest as JSON"),
) -> None:
    """Build (or fetch the cached) digest for a user."""
    result = _run(lambda ctx: ctx.digests.generate_digest(
        user, start=start, end=end, max_items=max_items, continue_token=continue_token,
    ))
    if as_json:
        typer.echo(json.dumps(result.to_dict(), indent=2, ensure_ascii=False))
    else:
        _print_digest(result)


@app.command()
def worker(
    concurrency: Optional[int] = typer.Option(None, "--concurrency", help="Number of workers"),
) -> None:
    """Run the background worker pool until interrupted."""

    async def serve(ctx: AppContext) -> None:
        if concurrency is not None:
            ctx.worker.concurrency = concurrency
        await ctx.worker.start()
        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop.set)
        await stop.wait()

    _run(serve)


@watchlist_app.command("list")
def watchlist_list(user: str = typer.Argument(..., help="User id")) -> None:
    """Show a user's watchlist."""
    entries = _run(lambda ctx: ctx.watchlists.get_entries(user))
    if not entries:
        typer.echo("Watchlist is empty")
        return
    for entry in entries:
        typer.echo(f"{entry.kind.value:<9} {entry.value}  (weight {entry.weight:g})")


@watchlist_app.command("add")
def watchlist_add(
    user: str = typer.Argument(..., help="User id"),
    kind: str = typer.Argument(..., help="tag, person, category or keyword"),
    value: str = typer.Argument(..., help="Value to watch"),
    weight: Optional[float] = typer.Option(None, "--weight", help="Weight between 0 and 2"),
) -> None:
    """Add an entry to a user's watchlist."""
    entry = _run(lambda ctx: ctx.watchlists.add(user, kind, value, weight))
    typer.echo(f"Added {entry.kind.value} '{entry.value}' (weight {entry.weight:g})")


@watchlist_app.command("update")
def watchlist_update(
    user: str = typer.Argument(..., help="User id"),
    kind: str = typer.Argument(..., help="tag, person, category or keyword"),
    value: str = typer.Argument(..., help="Watched value"),
    weight: float = typer.Option(..., "--weight", help="Weight between 0 and 2"),
) -> None:
    """Change the weight of a watchlist entry."""
    entry = _run(lambda ctx: ctx.watchlists.update(user, kind, value, weight))
    typer.echo(f"Updated {entry.kind.value} '{entry.value}' to weight {entry.weight:g}")


@watchlist_app.command("remove")
def watchlist_remove(
    user: str = typer.Argument(..., help="User id"),
    kind: str = typer.Argument(..., help="tag, person, category or keyword"),
    value: str = typer.Argument(..., help="Watched value"),
) -> None:
    """Remove an entry from a user's watchlist."""
    _run(lambda ctx: ctx.watchlists.remove(user, kind, value))
    typer.echo(f"Removed {kind} '{value}'")


@enqueue_app.command("digest")
def enqueue_digest(
    user: str = typer.Argument(..., help="User id"),
    start: Optional[str] = typer.Option(None, "--start", help="Window start (ISO 8601)"),
    end: Optional[str] = typer.Option(None, "--end", help="Window end (ISO 8601)"),
    max_items: Optional[int] = typer.Option(None, "--max-items", help="Highlights per page"),
    priority: Optional[int] = typer.Option(None, "--priority", help="Queue priority"),
) -> None:
    """Queue a digest generation job."""
    if (start is None) != (end is None):
        typer.echo("Error: --start and --end must be given together", err=True)
        raise typer.Exit(code=2)
    try:
        window = TimeWindow(start=start, end=end) if start else None
    except ValueError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=2) from e

    job_id = _run(lambda ctx: ctx.queue.enqueue_digest_generation(
        user, window=window, max_items=max_items, priority=priority,
    ))
    typer.echo(job_id)


@app.command()
def health() -> None:
    """Report cache status."""
    report = _run(lambda ctx: HealthService(ctx.cache).check())
    typer.echo(json.dumps(report, indent=2, default=str))
    if report["status"] != "healthy":
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
