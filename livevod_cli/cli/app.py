"""
Defines the command-line interface for the application using Typer.
"""

import asyncio
import logging
import os
from pathlib import Path
from typing import Any

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler

from livevod_cli import __version__
from livevod_cli.api.client import LiveApiClient
from livevod_cli.core.scheduler import DownloadScheduler
from livevod_cli.core.supervisor import SupervisorSettings
from livevod_cli.exceptions import FFmpegNotFoundError, LiveVodError
from livevod_cli.media.ffmpeg import CaptureOptions, FFmpegCapture
from livevod_cli.models.config import DownloadConfig
from livevod_cli.models.job import JobDescriptor, JobStatus
from livevod_cli.models.stats import SessionStats
from livevod_cli.storage.config_manager import DEFAULT_SAVE_PATH, ConfigManager
from livevod_cli.utils.path import create_dir
from livevod_cli.utils.structured_logger import create_structured_logger

from .formatters import (
    print_config,
    print_failures,
    print_replay_table,
    print_summary_panel,
    print_validation_table,
)
from .progress_manager import ProgressManager

console = Console()

logging.basicConfig(
    level="WARNING",
    format="%(message)s",
    datefmt="[%X]",
    handlers=[
        RichHandler(
            console=console,
            rich_tracebacks=True,
            show_path=False,
            show_level=False,
            markup=True,
        )
    ],
)
log = logging.getLogger("livevod_cli")
log.setLevel("INFO")

app = typer.Typer(
    name="livevod",
    help=(
        "Download live-stream replays with ffmpeg, several at a time. Use 'livevod"
        " <command> --help' for more info."
    ),
    rich_markup_mode="rich",
    pretty_exceptions_show_locals=False,
    add_completion=False,
)

COOKIE_ENVVAR = "LIVEVOD_COOKIE"


def get_config_dir() -> Path:
    if os.name == "nt":
        base_dir = Path(os.getenv("APPDATA", "~\\AppData\\Roaming"))
    else:
        base_dir = Path(os.getenv("XDG_CONFIG_HOME", "~/.config"))
    return base_dir.expanduser() / "livevod-cli"


CONFIG_DIR = get_config_dir()
CONFIG_FILE = CONFIG_DIR / "config.ini"


def _load_config(cli_options: dict[str, Any] | None = None) -> DownloadConfig:
    try:
        return ConfigManager(CONFIG_FILE).load_config(cli_options)
    except LiveVodError as e:
        console.print(f"[bold red]Error: {e}[/bold red]")
        raise typer.Exit(code=1) from e


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    verbose: int = typer.Option(
        0,
        "--verbose",
        "-v",
        count=True,
        help="Increase logging verbosity (-vv for debug).",
    ),
    version: bool = typer.Option(
        False, "--version", help="Show version and exit.", is_eager=True
    ),
    show_config: bool = typer.Option(
        False, "--show-config", help="Display the current configuration."
    ),
):
    """Live Replay Downloader CLI"""
    if version:
        console.print(f"[bold]livevod-cli[/bold] version [cyan]{__version__}[/cyan]")
        raise typer.Exit()

    log_level = "INFO"
    if verbose >= 2:
        log_level = "DEBUG"
    logging.getLogger("livevod_cli").setLevel(log_level)

    if show_config:
        if not CONFIG_FILE.is_file():
            console.print(
                "[red]✗ Config file not found.[/] Run [cyan]livevod init[/cyan] first."
            )
            raise typer.Exit(code=1)
        config = _load_config()
        print_config(CONFIG_FILE, config.model_dump(exclude={"config_path"}))
        raise typer.Exit()

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())


@app.command()
def init(
    save_path: str = typer.Option(
        DEFAULT_SAVE_PATH, "--save-path", "-o", help="Directory replays are saved to."
    ),
    ffmpeg_path: str = typer.Option(
        "ffmpeg", "--ffmpeg", help="Path to the ffmpeg executable."
    ),
    workers: int = typer.Option(
        3, "--workers", "-w", help="Number of simultaneous captures (1-16)."
    ),
    container: str = typer.Option(
        "mp4", "--container", "-c", help="Output container: mp4, mkv, flv or ts."
    ),
    force: bool = typer.Option(
        False, "--force", "-f", help="Overwrite an existing configuration file."
    ),
):
    """Create the configuration file."""
    if (
        CONFIG_FILE.exists()
        and not force
        and not typer.confirm("Configuration file already exists. Overwrite it?")
    ):
        raise typer.Abort()

    settings = {
        "save_path": save_path,
        "ffmpeg_path": ffmpeg_path,
        "max_concurrent": workers,
        "container": container,
    }
    try:
        DownloadConfig(**settings, config_path=str(CONFIG_DIR))
    except ValidationError as e:
        console.print(f"[red]✗ Invalid settings:[/red]\n{e}")
        raise typer.Exit(code=1) from e

    try:
        ConfigManager(CONFIG_FILE).save_new_config(settings)
    except LiveVodError as e:
        console.print(f"[red]✗ {e}[/red]")
        raise typer.Exit(code=1) from e
    console.print(f"\n[bold green]✓ Configuration saved to '{CONFIG_FILE}'[/bold green]")
    console.print("Ready to download! Try: [cyan]livevod list <UID>[/cyan]")


@app.command(name="list")
def list_command(
    uid: str = typer.Argument(..., help="Account id of the streamer."),
    pages: int | None = typer.Option(
        None, "--pages", "-p", help="Stop after this many pages (20 replays each)."
    ),
    cookie: str | None = typer.Option(
        None,
        "--cookie",
        envvar=COOKIE_ENVVAR,
        help="Cookie header of a logged-in browser session.",
    ),
):
    """List the replays an account has published."""

    async def _list_async() -> list[dict[str, Any]]:
        async with LiveApiClient(cookies=cookie) as api_client:
            return [r async for r in api_client.iter_replays(uid, max_pages=pages)]

    try:
        replays = asyncio.run(_list_async())
    except LiveVodError as e:
        console.print(f"[bold red]Error: {e}[/bold red]")
        raise typer.Exit(code=1) from e
    print_replay_table(uid, replays)


def _select_replays(
    replays: list[dict[str, Any]], keys: list[str], download_all: bool
) -> list[dict[str, Any]]:
    if download_all:
        return replays
    by_key = {str(r.get("live_key")): r for r in replays}
    selected = []
    for key in keys:
        if key in by_key:
            selected.append(by_key[key])
        else:
            log.warning(f"[yellow]⚠ Replay '{key}' was not found; skipping.[/yellow]")
    return selected


def _build_descriptors(
    replays: list[dict[str, Any]], uid: str
) -> list[JobDescriptor]:
    descriptors = []
    for replay in replays:
        try:
            descriptors.append(JobDescriptor.from_replay(replay, uid))
        except ValidationError as e:
            log.warning(
                f"[yellow]⚠ Skipping malformed replay "
                f"'{replay.get('live_key', '?')}': {e.error_count()} error(s).[/yellow]"
            )
    return descriptors


@app.command(name="download")
def download_command(
    uid: str = typer.Argument(..., help="Account id of the streamer."),
    keys: list[str] | None = typer.Argument(  # noqa: B008
        None, help="Live keys of the replays to download (see 'livevod list')."
    ),
    download_all: bool = typer.Option(
        False, "--all", "-a", help="Download every listed replay."
    ),
    output: str | None = typer.Option(
        None, "-o", "--output", help="Directory to save replays to."
    ),
    workers: int | None = typer.Option(
        None, "-w", "--workers", help="Number of simultaneous captures."
    ),
    cookie: str | None = typer.Option(
        None,
        "--cookie",
        envvar=COOKIE_ENVVAR,
        help="Cookie header of a logged-in browser session.",
    ),
    verify: bool | None = typer.Option(
        None,
        "--verify/--no-verify",
        help="Probe finished files and compare their duration to the replay's.",
    ),
    log_json: Path | None = typer.Option(  # noqa: B008
        None, "--log-json", help="Write a JSON-lines event log into this directory."
    ),
):
    """Download replays of an account."""
    if not keys and not download_all:
        console.print(
            "[red]✗ No replays selected.[/red] "
            "Pass live keys or use [cyan]--all[/cyan]."
        )
        raise typer.Exit(code=1)

    config = _load_config(
        {"save_path": output, "max_concurrent": workers, "verify_integrity": verify}
    )

    async def _download_async():
        stats = SessionStats()
        capture = FFmpegCapture.from_config(config)
        if not await capture.check_available():
            raise FFmpegNotFoundError(
                f"ffmpeg is not usable (ffmpeg: {capture.ffmpeg_path}, "
                f"ffprobe: {capture.ffprobe_path})."
            )
        create_dir(Path(config.save_path))

        base_logger = job_logger = session_logger = None
        if log_json:
            base_logger, job_logger, session_logger = create_structured_logger(
                log_json, enable_json=True
            )

        try:
            async with LiveApiClient(cookies=cookie) as api_client:
                console.print(f"[cyan]Fetching replay list of {uid}...[/cyan]")
                replays = [r async for r in api_client.iter_replays(uid)]
                descriptors = _build_descriptors(
                    _select_replays(replays, keys or [], download_all), uid
                )
                if not descriptors:
                    console.print("[yellow]Nothing to download.[/yellow]")
                    return None, stats

                scheduler = DownloadScheduler(
                    api_client=api_client,
                    capture=capture,
                    max_concurrent=config.max_concurrent,
                    settings=SupervisorSettings(
                        capture_options=CaptureOptions.from_config(config),
                        headers=api_client.stream_headers,
                        verify_integrity=config.verify_integrity,
                        tolerance=config.tolerance,
                    ),
                )
                if job_logger:
                    job_logger.attach(scheduler.event_bus)
                    session_logger.session_started(
                        uid, len(descriptors), config.max_concurrent
                    )

                progress_manager = ProgressManager(console, stats)
                progress_manager.attach(scheduler.event_bus)
                console.print(
                    f"[bold cyan]📺 Downloading {len(descriptors)} replay(s)...[/bold cyan]"
                )
                async with progress_manager:
                    for descriptor in descriptors:
                        scheduler.add_job(descriptor, config.save_path)
                    try:
                        await scheduler.wait_until_idle()
                    except asyncio.CancelledError:
                        # Ctrl-C: stop every capture and clean up its temp file
                        log.warning("[yellow]Interrupted, cancelling downloads...[/yellow]")
                        await scheduler.cancel_all()

                snapshots = scheduler.list_jobs()
                stats.jobs_unverified = sum(
                    1 for s in snapshots if s.verified is False
                )
                if session_logger:
                    session_logger.session_completed(stats)
                return snapshots, stats
        finally:
            if base_logger:
                base_logger.close()

    try:
        snapshots, stats = asyncio.run(_download_async())
    except LiveVodError as e:
        console.print(f"[bold red]Error: {e}[/bold red]")
        raise typer.Exit(code=1) from e

    if snapshots is None:
        return
    print_failures(snapshots)
    print_summary_panel(stats)
    if any(s.status is JobStatus.FAILED for s in snapshots):
        raise typer.Exit(code=1)


@app.command()
def probe(
    file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Media file."),  # noqa: B008
    expected: float | None = typer.Option(
        None, "--expected", "-e", help="Expected duration in seconds."
    ),
    tolerance: float = typer.Option(
        0.01, "--tolerance", "-t", help="Allowed relative deviation (0.01 = 1%)."
    ),
):
    """Probe a media file's duration and optionally verify it."""
    if CONFIG_FILE.is_file():
        capture = FFmpegCapture.from_config(_load_config())
    else:
        capture = FFmpegCapture()

    async def _probe_async() -> tuple[float, bool | None]:
        duration = await capture.get_duration(file)
        if expected is None:
            return duration, None
        return duration, await capture.verify_integrity(file, expected, tolerance)

    try:
        duration, verified = asyncio.run(_probe_async())
    except LiveVodError as e:
        console.print(f"[red]✗ Could not probe '{file}': {e}[/red]")
        raise typer.Exit(code=1) from e

    console.print(f"[bold]{file.name}[/bold]: [cyan]{duration:.2f}s[/cyan]")
    if verified is None:
        return
    if verified:
        console.print(f"[green]✓ Matches the expected {expected:.2f}s.[/green]")
    else:
        console.print(
            f"[red]✗ Differs from the expected {expected:.2f}s "
            f"by more than {tolerance:.1%}.[/red]"
        )
        raise typer.Exit(code=1)


@app.command()
def diagnose():
    """Diagnose common configuration and connectivity issues."""
    console.print("\n[bold cyan]Running diagnostics...[/bold cyan]\n")
    issues_found = False
    if CONFIG_FILE.is_file():
        console.print(f"[green]✓[/] Config file exists at: [dim]{CONFIG_FILE}[/dim]")
    else:
        console.print("[red]✗ Config file not found.[/] Run [cyan]livevod init[/cyan].")
        raise typer.Exit(code=1)

    try:
        config = ConfigManager(CONFIG_FILE).load_config()
        console.print("[green]✓[/] Configuration file is valid and can be loaded.")
    except LiveVodError as e:
        console.print(f"[red]✗ Configuration validation failed: {e}[/red]")
        raise typer.Exit(code=1) from e

    capture = FFmpegCapture.from_config(config)
    ffmpeg_ok = asyncio.run(capture.check_available())
    if not ffmpeg_ok:
        issues_found = True
    print_validation_table(config, ffmpeg_ok, capture.ffprobe_path)

    console.print("\n[dim]Testing connectivity to the replay API...[/dim]")

    async def test_connection():
        import aiohttp

        try:
            timeout = aiohttp.ClientTimeout(total=10)
            async with (
                aiohttp.ClientSession(timeout=timeout) as session,
                session.get(LiveApiClient.BASE_URL) as resp,
            ):
                console.print(
                    f"[green]✓[/] Reached {LiveApiClient.BASE_URL} "
                    f"(Status: {resp.status})."
                )
                return True
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            console.print(f"[red]✗ Connection test failed: {e}[/red]")
            return False

    if not asyncio.run(test_connection()):
        issues_found = True
    console.print()
    if not issues_found:
        console.print(
            "[bold green]✓ All checks passed! Your setup looks good.[/bold green]\n"
        )
    else:
        console.print(
            "[bold red]✗ Some issues were found. "
            "Please review the messages above.[/bold red]\n"
        )
        raise typer.Exit(code=1)
