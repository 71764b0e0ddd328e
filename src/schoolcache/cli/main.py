"""
CLI for the offline cache.

Commands:
    schoolcache stats - Show per-store counts and size
    schoolcache sweep - Delete expired entries now
    schoolcache clear STORE | --all - Clear cached data
    schoolcache get STORE KEY [--meta] - Print a cached value
    schoolcache warm STORE TABLE - Cache rows fetched from the backend
    schoolcache cleanup-exams - Remove old encrypted exams
    schoolcache device init|show|reset - Manage device keys
    schoolcache config - Show current configuration
    schoolcache version - Print version
"""

from __future__ import annotations

import asyncio
from typing import Annotated, Any, Optional

import orjson
import typer
from rich.console import Console
from rich.table import Table

from schoolcache import __version__
from schoolcache.cache import CachedQuery, CacheStore, NullCacheStore, end_session, initialize
from schoolcache.config import Settings, clear_settings_cache, get_settings
from schoolcache.exams import DeviceKeyring, ExamStore
from schoolcache.exceptions import CacheError
from schoolcache.logging import setup_logging
from schoolcache.remote import BackendClient
from schoolcache.types import CacheEntry, StoreName

app = typer.Typer(
    name="schoolcache",
    help="School records offline cache - inspect and maintain local data",
    no_args_is_help=True,
)
device_app = typer.Typer(help="Manage this device's exam keys", no_args_is_help=True)
app.add_typer(device_app, name="device")

console = Console()
error_console = Console(stderr=True)


def _load_settings() -> Settings:
    """Load settings or exit with a readable error."""
    try:
        clear_settings_cache()
        settings = get_settings()
    except Exception as e:
        error_console.print(f"[red]Error:[/red] Configuration is invalid: {e}")
        raise typer.Exit(1)
    setup_logging(settings.LOG_LEVEL, console_output=False)
    return settings


def _store_name(value: str) -> StoreName:
    try:
        return StoreName.coerce(value)
    except ValueError as e:
        raise typer.BadParameter(str(e)) from e


def _run(coro: Any) -> Any:
    try:
        return asyncio.run(coro)
    except CacheError as e:
        error_console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)


async def _open_cache(settings: Settings) -> CacheStore:
    store = CacheStore.from_settings(settings)
    await store.open()
    return store


@app.command()
def stats() -> None:
    """Show entry counts per store and the cache size estimate."""
    settings = _load_settings()

    async def _stats() -> dict[str, Any]:
        cache = await initialize(settings)
        try:
            return await cache.stats()
        finally:
            await cache.close()

    result = _run(_stats())

    table = Table(title="Cache Stores", show_header=True)
    table.add_column("Store", style="cyan")
    table.add_column("Entries", justify="right", style="green")
    table.add_column("Expired", justify="right", style="yellow")
    for name, counts in result["stores"].items():
        table.add_row(name, str(counts["entries"]), str(counts["expired"]))

    console.print(table)
    if not result["enabled"]:
        console.print(f"[yellow]Cache unavailable:[/yellow] {result.get('reason')}")
    console.print(f"[bold]Size:[/bold] {result['size_bytes']} bytes")


@app.command()
def sweep() -> None:
    """Delete every expired entry."""
    settings = _load_settings()

    async def _sweep() -> int:
        cache = await _open_cache(settings)
        try:
            return await cache.sweep_expired()
        finally:
            await cache.close()

    removed = _run(_sweep())
    console.print(f"Removed {removed} expired entries")


@app.command()
def clear(
    store: Annotated[
        Optional[str], typer.Argument(help="Store to clear (students, marks, ...)")
    ] = None,
    all_stores: Annotated[
        bool, typer.Option("--all", "-a", help="Clear every store")
    ] = False,
) -> None:
    """Clear one store, or every store with --all."""
    if store is None and not all_stores:
        raise typer.BadParameter("Pass a store name or --all")
    targets = list(StoreName) if all_stores else [_store_name(store or "")]
    settings = _load_settings()

    async def _clear() -> list[StoreName]:
        cache = await _open_cache(settings)
        try:
            return await end_session(cache, targets)
        finally:
            await cache.close()

    cleared = _run(_clear())
    console.print(f"Cleared: {', '.join(s.value for s in cleared)}")
    if len(cleared) != len(targets):
        raise typer.Exit(1)


@app.command()
def get(
    store: Annotated[str, typer.Argument(help="Store name")],
    key: Annotated[str, typer.Argument(help="Entry key")],
    meta: Annotated[
        bool, typer.Option("--meta", "-m", help="Also show write time and expiry")
    ] = False,
) -> None:
    """Print a cached value as JSON."""
    store_name = _store_name(store)
    settings = _load_settings()

    async def _get() -> CacheEntry[Any] | None:
        cache = await _open_cache(settings)
        try:
            return await cache.get_entry(store_name, key)
        finally:
            await cache.close()

    entry = _run(_get())
    if entry is None:
        error_console.print(f"[yellow]No cached value for[/yellow] {store_name.value}/{key}")
        raise typer.Exit(1)
    if meta:
        console.print(f"[bold]Written:[/bold] {entry.timestamp}")
        console.print(f"[bold]Expires:[/bold] {entry.expires_at or 'never'}")
    console.print_json(orjson.dumps(entry.data).decode("utf-8"))


@app.command()
def warm(
    store: Annotated[str, typer.Argument(help="Store to populate")],
    table_name: Annotated[str, typer.Argument(metavar="TABLE", help="Backend table")],
    filters: Annotated[
        Optional[list[str]],
        typer.Option("--filter", "-f", help="Equality filter, column=value"),
    ] = None,
    key: Annotated[
        Optional[str], typer.Option("--key", "-k", help="Cache key (defaults to TABLE)")
    ] = None,
    ttl: Annotated[
        Optional[float], typer.Option("--ttl", help="TTL in seconds")
    ] = None,
) -> None:
    """Fetch rows from the backend and write them to the cache."""
    store_name = _store_name(store)
    parsed: dict[str, str] = {}
    for item in filters or []:
        column, sep, value = item.partition("=")
        if not sep or not column:
            raise typer.BadParameter(f"Filter must be column=value, got {item!r}")
        parsed[column] = value
    settings = _load_settings()

    async def _warm() -> int | None:
        cache = await initialize(settings)
        if isinstance(cache, NullCacheStore):
            error_console.print(
                f"[yellow]Cache unavailable ({cache.reason}), nothing cached[/yellow]"
            )
            return None
        try:
            async with BackendClient.from_settings(settings) as backend:
                query = CachedQuery(
                    cache,
                    store_name,
                    key or table_name,
                    lambda: backend.fetch_rows(table_name, filters=parsed),
                    ttl_seconds=ttl,
                )
                rows = await query.refresh()
        finally:
            await cache.close()
        return len(rows)

    count = _run(_warm())
    if count is None:
        raise typer.Exit(1)
    console.print(f"Cached {count} rows from {table_name} in {store_name.value}/{key or table_name}")


@app.command("cleanup-exams")
def cleanup_exams(
    days: Annotated[
        Optional[int], typer.Option("--days", "-d", help="Days of exams to keep")
    ] = None,
) -> None:
    """Remove encrypted exams older than the retention window."""
    settings = _load_settings()
    days_to_keep = days if days is not None else settings.EXAM_RETENTION_DAYS

    async def _cleanup() -> int:
        store = ExamStore.from_settings(settings)
        await store.init()
        try:
            return await store.cleanup_old(days_to_keep)
        finally:
            await store.close()

    removed = _run(_cleanup())
    console.print(f"Removed {removed} exams older than {days_to_keep} days")


@device_app.command("init")
def device_init() -> None:
    """Register this device, generating keys on first use."""
    settings = _load_settings()
    info = DeviceKeyring.from_settings(settings).initialize()
    console.print(f"[bold]Device:[/bold] {info.device_name} ({info.device_id})")


@device_app.command("show")
def device_show() -> None:
    """Show this device's identity and public key."""
    settings = _load_settings()
    info = DeviceKeyring.from_settings(settings).info()
    if info is None:
        error_console.print("[yellow]Device not initialized.[/yellow] Run 'schoolcache device init'.")
        raise typer.Exit(1)
    console.print(f"[bold]Device ID:[/bold] {info.device_id}")
    console.print(f"[bold]Name:[/bold] {info.device_name}")
    console.print(f"[bold]Public key:[/bold] {info.public_key}")


@device_app.command("reset")
def device_reset(
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation")] = False,
) -> None:
    """Delete this device's keys. Exams sealed for it can no longer be opened."""
    if not yes:
        typer.confirm("Delete device keys?", abort=True)
    settings = _load_settings()
    DeviceKeyring.from_settings(settings).reset()
    console.print("Device keys removed")


@app.command()
def config() -> None:
    """Show current configuration with secrets redacted."""
    settings = _load_settings()

    table = Table(title="Settings", show_header=True)
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")

    for name, value in settings.redacted_display().items():
        display_value = str(value) if value is not None else "[dim]not set[/dim]"
        table.add_row(name, display_value)

    console.print(table)


@app.command()
def version() -> None:
    """Print the version number."""
    console.print(f"schoolcache version {__version__}")


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
