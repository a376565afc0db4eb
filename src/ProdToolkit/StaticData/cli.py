# === NAVMAP v1 ===
# {
#   "module": "ProdToolkit.StaticData.cli",
#   "purpose": "Typer CLI for syncing and inspecting static game data",
#   "sections": [
#     {"id": "clicontext", "name": "CliContext", "anchor": "class-clicontext", "kind": "class"},
#     {"id": "main", "name": "main", "anchor": "function-main", "kind": "function"},
#     {"id": "sync", "name": "sync_cmd", "anchor": "function-sync-cmd", "kind": "function"},
#     {"id": "resolve", "name": "resolve_cmd", "anchor": "function-resolve-cmd", "kind": "function"},
#     {"id": "show", "name": "show_cmd", "anchor": "function-show-cmd", "kind": "function"},
#     {"id": "pin", "name": "pin_cmd", "anchor": "function-pin-cmd", "kind": "function"},
#     {"id": "version", "name": "version_cmd", "anchor": "function-version-cmd", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""Command line entry point for static data sync.

Global options come before the subcommand:

    staticdata --config settings.yaml -v sync --store config.json
    staticdata resolve --store config.json
    staticdata show --store config.json --json
    staticdata pin 14.1.1 --store config.json

Exit codes: ``0`` ready (fresh or stale), ``1`` sync or resolution failure,
``2`` invalid configuration, ``3`` another sync holds the destination.
"""

import contextlib
import enum
import json
from pathlib import Path
from typing import Iterator, Optional

import typer
from rich.console import Console
from rich.table import Table

from ._version import __version__
from .bundle import load_static_bundle
from .config_store import JsonConfigStore
from .errors import ConfigurationError, ResolutionError, SyncAbortedError, SyncInProgressError
from .layout import StaticDataLayout
from .logging_config import setup_logging
from .orchestrator import StaticDataSync, SyncState
from .progress import LoggingProgressSink, ProgressSink, RichProgressSink
from .settings import DATA_ROOT, StaticDataSettings, load_settings
from .versions import VersionResolver

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG = 2
EXIT_LOCKED = 3

_DEFAULT_STORE = DATA_ROOT / "config.json"


class ProgressMode(str, enum.Enum):
    BAR = "bar"
    LOG = "log"
    NONE = "none"

_console = Console()
_err_console = Console(stderr=True)


class CliContext:
    """Shared state for one CLI invocation."""

    def __init__(self, settings: StaticDataSettings, verbosity: int = 0):
        self.settings = settings
        self.verbosity = verbosity
        self.console = _console

    def with_destination(self, destination: Optional[Path]) -> StaticDataSettings:
        """Return settings with ``sync.destination_root`` overridden when given."""
        if destination is None:
            return self.settings
        settings = self.settings.model_copy(deep=True)
        settings.sync.destination_root = destination
        return settings


app = typer.Typer(
    name="staticdata",
    help="Synchronise versioned static game data into a local directory",
    no_args_is_help=True,
)

_context: Optional[CliContext] = None


def get_context() -> CliContext:
    if _context is None:
        raise RuntimeError("CLI context not initialized")
    return _context


def _fail(message: str, code: int) -> typer.Exit:
    _err_console.print(f"[red]{message}[/red]")
    return typer.Exit(code)


@app.callback(invoke_without_command=False)
def main(
    config: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        envvar="STATICDATA_CONFIG",
        help="Path to settings file (YAML or JSON)",
    ),
    verbosity: int = typer.Option(
        0,
        "--verbose",
        "-v",
        count=True,
        help="Increase verbosity (-v for INFO, -vv for DEBUG)",
    ),
) -> None:
    """Static data sync CLI."""
    global _context

    try:
        settings = load_settings(config)
    except ConfigurationError as exc:
        raise _fail(str(exc), EXIT_CONFIG) from exc

    if verbosity:
        settings = settings.model_copy(deep=True)
        settings.logging.level = "DEBUG" if verbosity >= 2 else "INFO"
    setup_logging(settings.logging, console=verbosity > 0)
    _context = CliContext(settings, verbosity=verbosity)


@contextlib.contextmanager
def _progress_sink(mode: ProgressMode, ctx: CliContext) -> Iterator[Optional[ProgressSink]]:
    if mode is ProgressMode.BAR:
        with RichProgressSink(ctx.console) as sink:
            yield sink
    elif mode is ProgressMode.LOG:
        yield LoggingProgressSink()
    else:
        yield None


def _ask_update(previous: Optional[str], candidate: str) -> bool:
    return typer.confirm(f"Update static data from {previous} to {candidate}?", default=True)


@app.command("sync")
def sync_cmd(
    store: Path = typer.Option(_DEFAULT_STORE, "--store", "-s", help="JSON config store"),
    destination: Optional[Path] = typer.Option(
        None, "--destination", "-d", help="Override the destination root"
    ),
    yes: bool = typer.Option(False, "--yes", "-y", help="Install updates without asking"),
    progress: ProgressMode = typer.Option(
        ProgressMode.BAR,
        "--progress",
        case_sensitive=False,
        help="Report download progress as a bar, as log records, or not at all",
    ),
) -> None:
    """Run one sync and wait until the data is ready."""
    ctx = get_context()
    settings = ctx.with_destination(destination)
    prompt = None if yes else _ask_update

    try:
        with _progress_sink(progress, ctx) as sink:
            outcome = StaticDataSync(
                JsonConfigStore(store), settings=settings, prompt=prompt, progress=sink
            ).run()
    except SyncInProgressError as exc:
        raise _fail(str(exc), EXIT_LOCKED) from exc
    except ConfigurationError as exc:
        raise _fail(str(exc), EXIT_CONFIG) from exc
    except SyncAbortedError as exc:
        raise _fail(f"sync failed: {exc}", EXIT_FAILED) from exc

    if outcome.state is SyncState.DEGRADED:
        ctx.console.print(
            f"[yellow]Ready with stale data {outcome.version}[/yellow] ({outcome.reason})"
        )
    elif outcome.reason:
        ctx.console.print(f"[green]Ready[/green] {outcome.version} ({outcome.reason})")
    else:
        ctx.console.print(f"[green]Ready[/green] {outcome.version}")


@app.command("resolve")
def resolve_cmd(
    store: Path = typer.Option(_DEFAULT_STORE, "--store", "-s", help="JSON config store"),
) -> None:
    """Print the version a sync would target."""
    ctx = get_context()
    try:
        snapshot = JsonConfigStore(store).snapshot()
        version = VersionResolver(ctx.settings.sources, ctx.settings.http).resolve(snapshot)
    except ConfigurationError as exc:
        raise _fail(str(exc), EXIT_CONFIG) from exc
    except ResolutionError as exc:
        raise _fail(str(exc), EXIT_FAILED) from exc
    typer.echo(version)


@app.command("show")
def show_cmd(
    store: Path = typer.Option(_DEFAULT_STORE, "--store", "-s", help="JSON config store"),
    destination: Optional[Path] = typer.Option(
        None, "--destination", "-d", help="Override the destination root"
    ),
    as_json: bool = typer.Option(False, "--json", help="Print the full bundle as JSON"),
) -> None:
    """Summarise the static data bundle of the last synced version."""
    ctx = get_context()
    sync = ctx.with_destination(destination).sync
    try:
        version = JsonConfigStore(store).snapshot().last_synced_version
        if version is None:
            raise ConfigurationError(f"no synced version recorded in {store}")
        bundle = load_static_bundle(StaticDataLayout(sync.destination_root, sync.language), version)
    except ConfigurationError as exc:
        raise _fail(str(exc), EXIT_CONFIG) from exc

    if as_json:
        typer.echo(json.dumps(bundle.to_payload(), indent=2, sort_keys=True))
        return

    table = Table(title=f"Static data {version}")
    table.add_column("Resource")
    table.add_column("Entries", justify="right")
    for name, count in bundle.summary().items():
        table.add_row(name, str(count))
    ctx.console.print(table)


@app.command("pin")
def pin_cmd(
    version: Optional[str] = typer.Argument(None, help="Version every later sync should target"),
    clear: bool = typer.Option(False, "--clear", help="Remove the pin and follow upstream again"),
    store: Path = typer.Option(_DEFAULT_STORE, "--store", "-s", help="JSON config store"),
) -> None:
    """Pin the version future syncs install, or clear the pin."""
    if clear == (version is not None):
        raise _fail("give either a VERSION or --clear", EXIT_CONFIG)
    try:
        JsonConfigStore(store).set_desired_version(None if clear else version)
    except ConfigurationError as exc:
        raise _fail(str(exc), EXIT_CONFIG) from exc
    get_context().console.print("Pin cleared" if clear else f"Pinned {version}")


@app.command("version")
def version_cmd() -> None:
    """Show version information."""
    typer.echo(f"staticdata {__version__}")


__all__ = ["app", "CliContext", "get_context", "main"]
