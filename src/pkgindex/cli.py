"""Command-line interface for pkgindex.

Provides subcommands for fetching module versions into the local store,
retrying failed fetches and inspecting what has been stored.
"""

import asyncio
import dataclasses
import logging
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from pkgindex import version as semver
from pkgindex.config import STATE_WRITE_GRACE, Config, load_exclusions
from pkgindex.errors import is_retryable
from pkgindex.fetcher import Fetcher
from pkgindex.licenses import accepted_licenses
from pkgindex.persistence import SqlitePersistence
from pkgindex.proxy import ProxyClient
from pkgindex.queue import InMemoryQueue, requeue as requeue_versions

app = typer.Typer(
    name="pkgindex",
    help="Fetch Go module versions from a module proxy and index their packages.",
    no_args_is_help=True,
)

console = Console()
err_console = Console(stderr=True)

# Configure logging
logging.basicConfig(
    level=logging.WARNING,
    format="%(levelname)s: %(message)s",
)
logger = logging.getLogger("pkgindex")

ProxyOption = Annotated[
    Optional[str],
    typer.Option("--proxy", envvar="PKGINDEX_PROXY_URL", help="Module proxy URL"),
]
DbOption = Annotated[
    Optional[Path],
    typer.Option("--db", envvar="PKGINDEX_DB", help="Path to the SQLite database"),
]
ExcludedOption = Annotated[
    Optional[Path],
    typer.Option(
        "--excluded",
        envvar="PKGINDEX_EXCLUDED_FILE",
        help="File of excluded module path prefixes",
        exists=True,
        readable=True,
    ),
]
DisableFetchOption = Annotated[
    bool,
    typer.Option(
        "--disable-proxy-fetch",
        envvar="PKGINDEX_DISABLE_PROXY_FETCH",
        help="Only use modules the proxy already has",
    ),
]
VerboseOption = Annotated[
    bool,
    typer.Option("--verbose", "-v", help="Enable verbose output"),
]


def _setup_logging(verbose: bool) -> None:
    """Configure logging level based on verbosity flag."""
    level = logging.DEBUG if verbose else logging.WARNING
    logging.getLogger("pkgindex").setLevel(level)


def _load_config(
    proxy: Optional[str] = None,
    db: Optional[Path] = None,
    excluded: Optional[Path] = None,
    disable_proxy_fetch: bool = False,
    **overrides,
) -> Config:
    """Build the configuration from the environment and command-line options."""
    try:
        config = Config.from_env()
    except ValueError as e:
        err_console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=2)
    changes = {k: v for k, v in overrides.items() if v is not None}
    if proxy:
        changes["proxy_url"] = proxy.rstrip("/")
    if db:
        changes["db_path"] = db
    if excluded:
        changes["exclusions_file"] = excluded
    if disable_proxy_fetch:
        changes["disable_proxy_fetch"] = True
    return dataclasses.replace(config, **changes)


def _make_fetcher(config: Config, client: ProxyClient) -> Fetcher:
    exclusions = load_exclusions(config.exclusions_file)
    return Fetcher(
        client,
        SqlitePersistence(config.db_path),
        exclusions=exclusions,
        limits=config.limits,
        timeout=config.fetch_timeout,
    )


async def _fetch(config: Config, module_path: str, version: str) -> tuple[int, Optional[Exception]]:
    """Fetch one module version and record its state."""
    async with ProxyClient(
        config.proxy_url,
        disable_fetch=config.disable_proxy_fetch,
        timeout=config.fetch_timeout,
    ) as client:
        fetcher = _make_fetcher(config, client)
        return await fetcher.fetch_and_update_state(module_path, version)


async def _requeue(config: Config, limit: int) -> dict[str, int]:
    """Fetch the versions that are due and return their statuses by task name."""
    async with ProxyClient(
        config.proxy_url,
        disable_fetch=config.disable_proxy_fetch,
        timeout=config.fetch_timeout,
    ) as client:
        fetcher = _make_fetcher(config, client)
        queue = InMemoryQueue(
            fetcher.fetch_and_update_state,
            workers=config.workers,
            timeout=config.fetch_timeout + STATE_WRITE_GRACE,
        )
        await requeue_versions(fetcher.db, queue, limit)
        await queue.wait_for_testing()
        return queue.results


async def _enqueue(config: Config, module_path: str) -> int:
    """Record every version the proxy knows for module_path."""
    async with ProxyClient(config.proxy_url, timeout=config.fetch_timeout) as client:
        versions = await client.list_versions(module_path)
    valid = [(module_path, v) for v in versions if semver.is_valid(v)]
    return await SqlitePersistence(config.db_path).insert_index_versions(valid)


def _status_style(status: int) -> str:
    if status == 200:
        return "green"
    if is_retryable(status):
        return "red"
    return "yellow"


@app.command()
def fetch(
    module: Annotated[str, typer.Argument(help="Module path")],
    version: Annotated[
        str, typer.Argument(help="Version, or 'latest'")
    ] = semver.LATEST,
    proxy: ProxyOption = None,
    db: DbOption = None,
    excluded: ExcludedOption = None,
    disable_proxy_fetch: DisableFetchOption = False,
    verbose: VerboseOption = False,
) -> None:
    """Fetch a module version and store its packages.

    Exit codes:
        0 - Fetched, or failed in a way that will not be retried
        1 - Failed in a way that may succeed on retry
    """
    _setup_logging(verbose)
    config = _load_config(proxy, db, excluded, disable_proxy_fetch)

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
        transient=True,
    ) as progress:
        progress.add_task(f"Fetching {module}@{version}...", total=None)
        try:
            status, err = asyncio.run(_fetch(config, module, version))
        except (ValueError, OSError) as e:
            err_console.print(f"[red]Error:[/red] {e}")
            raise typer.Exit(code=2)

    style = _status_style(status)
    console.print(f"[{style}]{module}@{version}: status {status}[/{style}]")
    if err is not None:
        console.print(f"  {err}", markup=False)
    raise typer.Exit(code=1 if is_retryable(status) else 0)


@app.command()
def enqueue(
    module: Annotated[str, typer.Argument(help="Module path")],
    proxy: ProxyOption = None,
    db: DbOption = None,
    verbose: VerboseOption = False,
) -> None:
    """Record every known version of a module for fetching by requeue."""
    _setup_logging(verbose)
    config = _load_config(proxy, db)
    try:
        count = asyncio.run(_enqueue(config, module))
    except Exception as e:
        err_console.print(f"[red]Error listing versions of {module}:[/red] {e}")
        raise typer.Exit(code=1)
    console.print(f"Recorded [bold]{count}[/bold] new versions of {module}")


@app.command()
def requeue(
    limit: Annotated[
        int, typer.Option("--limit", "-n", help="Most versions to fetch", min=1)
    ] = 10,
    workers: Annotated[
        Optional[int],
        typer.Option("--workers", "-w", envvar="PKGINDEX_WORKERS", help="Concurrent fetches", min=1),
    ] = None,
    proxy: ProxyOption = None,
    db: DbOption = None,
    excluded: ExcludedOption = None,
    disable_proxy_fetch: DisableFetchOption = False,
    verbose: VerboseOption = False,
) -> None:
    """Fetch versions that were never fetched or failed with a retryable status.

    Exit codes:
        0 - No fetch failed with a retryable status
        1 - At least one fetch failed with a retryable status
    """
    _setup_logging(verbose)
    config = _load_config(proxy, db, excluded, disable_proxy_fetch, workers=workers)
    try:
        results = asyncio.run(_requeue(config, limit))
    except (ValueError, OSError) as e:
        err_console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=2)

    if not results:
        console.print("[green]Nothing to fetch[/green]")
        raise typer.Exit(code=0)

    table = Table(title=f"Fetched {len(results)} versions")
    table.add_column("Version")
    table.add_column("Status", justify="right")
    for name, status in sorted(results.items()):
        style = _status_style(status)
        table.add_row(name, f"[{style}]{status}[/{style}]")
    console.print(table)
    failed = any(is_retryable(s) for s in results.values())
    raise typer.Exit(code=1 if failed else 0)


@app.command()
def state(
    module: Annotated[str, typer.Argument(help="Module path")],
    version: Annotated[str, typer.Argument(help="Version")],
    db: DbOption = None,
) -> None:
    """Show the recorded state of a module version."""
    config = _load_config(db=db)
    store = SqlitePersistence(config.db_path)
    vs = asyncio.run(store.get_version_state(module, version))
    if vs is None:
        err_console.print(f"[red]No state recorded for[/red] {module}@{version}")
        raise typer.Exit(code=1)

    style = _status_style(vs.status)
    console.print(f"[bold]{vs.module_path}@{vs.version}[/bold]")
    console.print(f"[bold]Status:[/bold] [{style}]{vs.status}[/{style}]")
    console.print(f"[bold]Tries:[/bold] {vs.try_count}")
    if vs.last_processed_at is not None:
        console.print(f"[bold]Last processed:[/bold] {vs.last_processed_at.isoformat()}")
    console.print(f"[bold]Next processed after:[/bold] {vs.next_processed_after.isoformat()}")
    if vs.go_mod_path:
        console.print(f"[bold]go.mod path:[/bold] {vs.go_mod_path}")
    if vs.error:
        console.print(f"[bold]Error:[/bold] {vs.error}")

    if vs.package_states:
        table = Table(title="Packages")
        table.add_column("Package")
        table.add_column("Status", justify="right")
        table.add_column("Error")
        for ps in vs.package_states:
            style = _status_style(ps.status)
            table.add_row(ps.package_path, f"[{style}]{ps.status}[/{style}]", ps.error)
        console.print(table)


@app.command()
def licenses() -> None:
    """List the license types that allow redistribution."""
    table = Table(title="Accepted licenses")
    table.add_column("License")
    table.add_column("URL")
    for lic in accepted_licenses():
        table.add_row(lic.name, lic.url)
    console.print(table)


if __name__ == "__main__":
    app()
