"""Main CLI entry point for filecache.

Provides command-line inspection and maintenance of a cache directory.
"""

import os
import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.table import Table

from filecache import CacheConfig, FileCache
from filecache.config import DEFAULT_PERSIST_MAX_INTERVAL
from filecache.utils import SNAPSHOT_FILE, format_size, format_timestamp

# Global console for Rich output
console = Console()


def find_cache_dir(ctx_dir: Optional[str] = None) -> Path:
    """Find cache directory from multiple sources.

    Priority:
    1. Explicit --dir/-C flag
    2. FILECACHE_DIR environment variable
    3. The library default, ./cache

    Args:
        ctx_dir: Cache directory from CLI context

    Returns:
        Path to cache directory

    Raises:
        click.ClickException: If the chosen directory does not exist
    """
    if ctx_dir:
        path = Path(ctx_dir)
        if path.is_dir():
            return path
        raise click.ClickException(f"Cache directory not found: {ctx_dir}")

    env_dir = os.environ.get("FILECACHE_DIR")
    if env_dir:
        path = Path(env_dir)
        if path.is_dir():
            return path
        raise click.ClickException(
            f"Cache directory not found (from FILECACHE_DIR): {env_dir}"
        )

    path = CacheConfig().cache_dir
    if path.is_dir():
        return path
    raise click.ClickException(
        f"Cache directory not found: {path} (use --dir/-C or set FILECACHE_DIR)"
    )


def open_cache(cache_dir: Path, **limits) -> FileCache:
    """Open a cache without background timers.

    An existing snapshot is kept current by enabling persistence.
    """
    persist_interval = None
    if (cache_dir / SNAPSHOT_FILE).exists():
        persist_interval = DEFAULT_PERSIST_MAX_INTERVAL
    config = CacheConfig(
        cache_dir=cache_dir, persist_interval=persist_interval, **limits
    )
    return FileCache(config, start_timers=False)


@click.group()
@click.option(
    "--dir",
    "-C",
    "cache_dir",
    type=click.Path(),
    help="Path to cache directory (default: FILECACHE_DIR env var or ./cache)",
)
@click.pass_context
def cli(ctx, cache_dir):
    """filecache CLI - Inspect and maintain a file cache directory.

    Use --dir/-C to specify the cache, or set FILECACHE_DIR environment variable.
    """
    ctx.ensure_object(dict)
    ctx.obj["cache_dir"] = cache_dir


@cli.command("stats")
@click.pass_context
def stats(ctx):
    """Show size, file count and oldest access time.

    Example:
        filecache -C ./cache stats
    """
    try:
        cache = open_cache(find_cache_dir(ctx.obj.get("cache_dir")))
        info = cache.stats()

        console.print(f"\n[bold cyan]Cache: {info['cache_dir']}[/bold cyan]")
        console.print("=" * 60)
        console.print(f"[bold]Files:[/bold] {info['file_count']}")
        console.print(
            f"[bold]Used space:[/bold] {format_size(info['used_space'])} "
            f"({info['used_space']} bytes)"
        )
        console.print(
            f"[bold]Oldest access:[/bold] {format_timestamp(info['oldest_access_time'])}"
        )
        console.print()

    except click.ClickException:
        raise
    except Exception as e:
        console.print(f"[red]✗[/red] Error: {e}", style="red")
        sys.exit(1)


@cli.command("ls")
@click.option("--limit", "-n", type=int, default=20, help="Maximum rows to show")
@click.pass_context
def ls(ctx, limit):
    """List cached files, least recently accessed first.

    Example:
        filecache ls -n 50
    """
    try:
        cache = open_cache(find_cache_dir(ctx.obj.get("cache_dir")))
        entries = cache.entries()

        if not entries:
            console.print("[yellow]Cache is empty[/yellow]")
            return

        table = Table(title=f"Cached files ({len(entries)})")
        table.add_column("Path", style="cyan")
        table.add_column("Size", justify="right", style="green")
        table.add_column("Last access", style="blue")

        for entry in entries[:limit]:
            rel = os.path.relpath(entry.path, cache.cache_dir)
            table.add_row(
                rel, format_size(entry.size), format_timestamp(entry.last_access_time)
            )

        console.print(table)
        if len(entries) > limit:
            console.print(f"  ... and {len(entries) - limit} more")

    except click.ClickException:
        raise
    except Exception as e:
        console.print(f"[red]✗[/red] Error: {e}", style="red")
        sys.exit(1)


@cli.command("clean")
@click.option("--max-files", type=int, help="Keep at most this many files")
@click.option("--max-size", help="Keep at most this much data (e.g. '2GB', '512MiB')")
@click.option("--max-age", help="Remove files not accessed within this duration (e.g. '7d')")
@click.option("--dry-run", is_flag=True, help="Only show what would be removed")
@click.pass_context
def clean(ctx, max_files, max_size, max_age, dry_run):
    """Evict files exceeding the given limits.

    Example:
        filecache clean --max-size 1GB --max-age 30d
    """
    try:
        cache = open_cache(
            find_cache_dir(ctx.obj.get("cache_dir")),
            max_files=max_files,
            max_size=max_size,
            max_age=max_age,
        )
        if not cache.eviction.enabled:
            console.print("[yellow]No limits given, nothing to do[/yellow]")
            return

        if dry_run:
            _, victims = cache.eviction.plan()
            freed = sum(v.size for v in victims)
            console.print(
                f"Would remove {len(victims)} files, freeing {format_size(freed)}"
            )
            for victim in victims:
                console.print(f"  - {os.path.relpath(victim.path, cache.cache_dir)}")
            return

        result = cache.evict()
        console.print(
            f"[green]✓[/green] Removed {len(result.removed)} files, "
            f"freed {format_size(result.freed_bytes)}"
        )
        if result.failed:
            console.print(
                f"[yellow]Failed to remove {len(result.failed)} files[/yellow]"
            )
            sys.exit(1)

    except click.ClickException:
        raise
    except Exception as e:
        console.print(f"[red]✗[/red] Error: {e}", style="red")
        sys.exit(1)


@cli.command("purge")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt")
@click.pass_context
def purge(ctx, yes):
    """Delete the cache directory and everything in it.

    Example:
        filecache -C ./cache purge --yes
    """
    try:
        cache_dir = find_cache_dir(ctx.obj.get("cache_dir"))
        if not yes:
            if not click.confirm(f"Delete everything in {cache_dir}?"):
                console.print("Cancelled")
                return

        cache = open_cache(cache_dir)
        count = cache.stats()["file_count"]
        cache.purge()
        console.print(f"[green]✓[/green] Purged {count} files from {cache_dir}")

    except click.ClickException:
        raise
    except Exception as e:
        console.print(f"[red]✗[/red] Error: {e}", style="red")
        sys.exit(1)


if __name__ == "__main__":
    cli()
