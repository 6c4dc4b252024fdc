"""
Functions for formatting and displaying data in the console using Rich.
"""

from pathlib import Path
from typing import Any, Iterable

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from livevod_cli.models.config import DownloadConfig
from livevod_cli.models.job import JobSnapshot, JobStatus
from livevod_cli.models.stats import SessionStats
from livevod_cli.utils.formatting import (
    format_clock,
    format_duration,
    format_size,
    format_timestamp,
)


def format_error_with_suggestions(
    error: Exception, context: dict | None = None
) -> Panel:
    """Formats an error with actionable suggestions into a Rich Panel."""
    error_type = type(error).__name__
    error_msg = str(error)

    suggestions_map = {
        "ConfigurationError": [
            "• Run `livevod init` to create a configuration file.",
            "• Check the values in the file with `livevod --show-config`.",
        ],
        "UpstreamError": [
            "• Your cookies may be missing or expired. Pass fresh ones with --cookie.",
            "• The replay may have been removed or is older than three months.",
            "• The platform API might be temporarily unavailable.",
        ],
        "FFmpegNotFoundError": [
            "• Install ffmpeg and make sure it is on your PATH.",
            "• Or set `ffmpeg_path` in the configuration file.",
            "• Run `livevod diagnose` to check the setup.",
        ],
        "ProcessError": [
            "• ffmpeg could not read the stream; the URL may have expired.",
            "• Run the command with -vv to see ffmpeg's diagnostics.",
        ],
        "OutputFileError": [
            "• Check that the output directory exists and is writable.",
            "• Make sure the disk is not full.",
        ],
        "JobValidationError": [
            "• The replay entry is missing its stream key or time window.",
        ],
    }

    suggestions = suggestions_map.get(
        error_type, ["• Run the command with -vv for detailed logs."]
    )

    error_text = Text()
    error_text.append(f"{error_type}: ", style="bold red")
    error_text.append(error_msg)

    content = Table.grid(padding=(1, 0))
    content.add_row(error_text)
    content.add_row()
    content.add_row(Text("Suggestions", style="bold yellow"))
    content.add_row(Text("\n".join(suggestions)))

    if context:
        content.add_row()
        content.add_row(Text(f"Context: {context}", style="dim"))

    return Panel(
        content,
        title="[bold red]An Error Occurred[/bold red]",
        border_style="red",
        expand=False,
    )


def print_config(config_path: Path, config_data: dict[str, Any]):
    """Displays the current configuration."""
    console = Console()
    content = "\n".join(f"{key} = {value}" for key, value in config_data.items())
    console.print(
        Panel(
            content,
            title=f"Configuration ([dim]{config_path}[/dim])",
            border_style="cyan",
        )
    )


def print_replay_table(owner_id: str, replays: list[dict[str, Any]]):
    """Lists an account's replays with the keys used to select them."""
    console = Console()
    if not replays:
        console.print(f"[yellow]No replays found for account {owner_id}.[/yellow]")
        return

    table = Table(title=f"Replays of {owner_id}", box=box.ROUNDED)
    table.add_column("#", style="dim", justify="right")
    table.add_column("Live Key", style="magenta", no_wrap=True)
    table.add_column("Title", style="cyan")
    table.add_column("Start", style="green")
    table.add_column("Length", justify="right")

    for i, replay in enumerate(replays, 1):
        live_info = replay.get("live_info") or {}
        video_info = replay.get("video_info") or {}
        start, end = replay.get("start_time") or 0, replay.get("end_time") or 0
        length = video_info.get("duration") or max(end - start, 0)
        table.add_row(
            str(i),
            str(replay.get("live_key", "")),
            live_info.get("title") or "[dim]Untitled[/dim]",
            format_timestamp(start),
            format_clock(length),
        )
    console.print(table)


def print_validation_table(config: DownloadConfig, ffmpeg_ok: bool, ffprobe_path: str):
    """Displays a summary of the current settings and tool availability."""
    console = Console()
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column(style="bold cyan")
    table.add_column()

    status = "[green]✓ Available[/green]" if ffmpeg_ok else "[red]✗ Not usable[/red]"
    table.add_row("ffmpeg:", f"{config.ffmpeg_path} {status}")
    table.add_row("ffprobe:", ffprobe_path)
    table.add_row("Save Path:", config.save_path)
    table.add_row("Max Concurrent:", str(config.max_concurrent))
    table.add_row("Container:", config.container)
    table.add_row(
        "Integrity Check:",
        f"✓ Enabled (±{config.tolerance:.1%})"
        if config.verify_integrity
        else "✗ Disabled",
    )

    border = "green" if ffmpeg_ok else "red"
    console.print(
        Panel(table, title="[bold]Diagnostics[/bold]", border_style=border)
    )


def print_failures(snapshots: Iterable[JobSnapshot]):
    """Lists failed jobs with their recorded errors."""
    failed = [s for s in snapshots if s.status is JobStatus.FAILED]
    if not failed:
        return
    console = Console()
    table = Table(title="Failed Downloads", box=box.SIMPLE, title_style="bold red")
    table.add_column("Title", style="cyan")
    table.add_column("Error", style="red")
    for snapshot in failed:
        table.add_row(snapshot.title, snapshot.error or "Unknown error")
    console.print(table)


def print_summary_panel(stats: SessionStats):
    """Displays the final summary of a download session."""
    console = Console()

    stats_table = Table(show_header=False, box=None, padding=(0, 2))
    stats_table.add_column(style="bold cyan", justify="right", width=20)
    stats_table.add_column(style="white", justify="left")

    stats_table.add_row(
        "✓ Completed:", f"[bold green]{stats.jobs_completed}[/bold green]"
    )
    if stats.jobs_unverified > 0:
        stats_table.add_row(
            "⚠ Unverified:", f"[yellow]{stats.jobs_unverified}[/yellow]"
        )
    if stats.jobs_cancelled > 0:
        stats_table.add_row("○ Cancelled:", f"[yellow]{stats.jobs_cancelled}[/yellow]")
    if stats.jobs_failed > 0:
        stats_table.add_row("✗ Failed:", f"[bold red]{stats.jobs_failed}[/bold red]")

    stats_table.add_row("", "")  # Spacer
    stats_table.add_row(
        "Total Size:", f"[cyan]{format_size(stats.total_size_downloaded)}[/cyan]"
    )
    if stats.peak_speed > 0:
        stats_table.add_row(
            "Peak Speed:", f"[magenta]{stats.peak_speed:.2f} MB/s[/magenta]"
        )
    stats_table.add_row(
        "Time Elapsed:", f"[blue]{format_duration(stats.elapsed)}[/blue]"
    )
    stats_table.add_row(
        "Peak Concurrent:", f"[green]{stats.peak_concurrent}[/green]"
    )

    if stats.jobs_failed or stats.jobs_cancelled:
        title = "⚠ [bold]Download Finished With Issues[/bold]"
        border_color = "yellow"
    else:
        title = "📺 [bold]Download Complete![/bold]"
        border_color = "green"

    console.print()
    console.print(
        Panel(
            stats_table,
            title=title,
            border_style=border_color,
            box=box.DOUBLE,
            expand=False,
            padding=(1, 2),
        )
    )
    console.print()
