"""pluginsync download / lock - Plugin download commands."""

import signal
import threading
from pathlib import Path

import click
from click.core import ParameterSource
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from pluginsync.config.loader import (
    DEFAULT_SETTINGS_FILE,
    ConfigError,
    load_download_options,
    load_root_manifest,
)
from pluginsync.config.models import DownloadOptions
from pluginsync.download.lockfile import Lockfile
from pluginsync.download.models import DownloadReport, Phase
from pluginsync.download.orchestrator import PluginDownloadOrchestrator

console = Console()

IGNORE_ERRORS_HINT = (
    "Errors downloading some plugins. To make these errors non fatal, "
    "re-run with --ignore-errors"
)

_PHASE_BANNERS = {
    Phase.DOWNLOADING_ROOT: "downloading plugins",
    Phase.SCANNING_PACKS: "collecting extension-packs",
    Phase.DOWNLOADING_PACKS: "resolving extension-packs",
    Phase.SCANNING_DEPENDENCIES: "collecting extension dependencies",
    Phase.DOWNLOADING_DEPENDENCIES: "resolving extension dependencies",
}

# Options forwarded to DownloadOptions when given on the command line.
_OVERRIDE_PARAMS = (
    "packed",
    "ignore_errors",
    "api_version",
    "api_url",
    "parallel",
    "rate_limit",
    "max_attempts",
    "retry_delay",
    "target_platform",
)


def _print_phase(phase: Phase) -> None:
    banner = _PHASE_BANNERS.get(phase)
    if banner:
        console.print(f"[dim]--- {banner} ---[/dim]")


def _command_line_overrides(ctx: click.Context) -> dict:
    overrides = {}
    for name in _OVERRIDE_PARAMS:
        if ctx.get_parameter_source(name) != ParameterSource.DEFAULT:
            overrides[name] = ctx.params[name]
    return overrides


def _print_report(report: DownloadReport) -> None:
    console.print()
    console.print(
        f"[bold]Plugins:[/bold] {len(report.succeeded)} present "
        f"({len(report.downloaded)} downloaded), {len(report.failures)} failed"
    )
    for failure in report.failures:
        console.print(f"  [red]x {escape(failure.id)}: {escape(failure.reason)}[/red]")
    if report.lockfile_error:
        console.print(f"[red]{escape(report.lockfile_error)}[/red]")
    elif report.lockfile_path:
        console.print(f"[dim]Lockfile: {report.lockfile_path}[/dim]")


@click.command()
@click.option(
    "--manifest",
    "manifest_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default="package.json",
    show_default=True,
    help="Root package.json listing theiaPlugins",
)
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help=f"Settings file (defaults to {DEFAULT_SETTINGS_FILE} beside the manifest)",
)
@click.option("--packed", is_flag=True, help="Keep archives instead of extracting them")
@click.option("--ignore-errors", is_flag=True, help="Exit 0 even if some plugins fail")
@click.option("--api-version", default=None, help="Supported VS Code API version")
@click.option("--api-url", default=None, help="Open VSX API base URL")
@click.option(
    "--parallel/--no-parallel",
    default=True,
    help="Download plugins concurrently",
)
@click.option("--rate-limit", type=float, default=None, help="Requests per second")
@click.option("--max-attempts", type=int, default=None, help="Attempts per download")
@click.option("--retry-delay", type=float, default=None, help="Seconds between attempts")
@click.option(
    "--target-platform",
    default=None,
    help="Platform tag such as linux-x64 (detected by default)",
)
@click.option("--verbose", is_flag=True, help="Enable debug logging")
@click.pass_context
def download(ctx, manifest_path, config_path, verbose, **_):
    """Download the plugins listed in the root package.json."""
    from pluginsync.cli.main import _setup_logging

    _setup_logging(verbose)

    if config_path is None:
        candidate = manifest_path.resolve().parent / DEFAULT_SETTINGS_FILE
        if candidate.is_file():
            config_path = candidate

    try:
        manifest = load_root_manifest(manifest_path)
        options = load_download_options(config_path, **_command_line_overrides(ctx))
    except ConfigError as e:
        console.print(f"[red]{escape(str(e))}[/red]")
        raise SystemExit(1)

    cancel_event = threading.Event()

    def _handle_sigint(signum, frame):
        console.print("[yellow]Cancelling, waiting for running downloads...[/yellow]")
        cancel_event.set()

    previous_handler = None
    if threading.current_thread() is threading.main_thread():
        previous_handler = signal.signal(signal.SIGINT, _handle_sigint)

    orchestrator = PluginDownloadOrchestrator(
        manifest=manifest,
        options=options,
        base_dir=manifest_path.resolve().parent,
        cancel_event=cancel_event,
        on_phase=_print_phase,
    )
    try:
        report = orchestrator.run()
    finally:
        if previous_handler is not None:
            signal.signal(signal.SIGINT, previous_handler)

    _print_report(report)

    if report.cancelled:
        console.print("[yellow]Download cancelled[/yellow]")
        raise SystemExit(1)
    if report.lockfile_error:
        raise SystemExit(1)
    if not report.ok:
        console.print(f"[red]{IGNORE_ERRORS_HINT}[/red]")
        raise SystemExit(1)
    console.print("[green]Plugins up to date[/green]")


@click.group()
def lock():
    """Inspect the plugin lockfile."""


@lock.command("show")
@click.option(
    "--manifest",
    "manifest_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default="package.json",
    show_default=True,
    help="Root package.json the lockfile belongs to",
)
@click.option(
    "--lockfile",
    "lockfile_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Explicit lockfile path",
)
def show_lock(manifest_path, lockfile_path):
    """Show pinned plugin URLs and integrity digests."""
    path = lockfile_path or (
        manifest_path.resolve().parent / DownloadOptions().lockfile_name
    )
    if not path.exists():
        console.print(f"[yellow]No lockfile found at {path}[/yellow]")
        return

    entries = Lockfile.load(path).to_dict()
    if not entries:
        console.print(f"[yellow]Lockfile has no entries: {path}[/yellow]")
        return

    table = Table(title=f"Plugin Lockfile ({path.name})")
    table.add_column("Spec", style="cyan")
    table.add_column("Resolved")
    table.add_column("Integrity", style="dim")

    for spec, entry in entries.items():
        integrity = entry["integrity"]
        if len(integrity) > 24:
            integrity = integrity[:24] + "..."
        table.add_row(spec, entry["resolved"], integrity or "-")

    console.print(table)
