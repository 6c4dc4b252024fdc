"""
Manages a Rich Live display for concurrent replay captures.
Shows session statistics, overall progress and one bar per running job,
all driven by events from the scheduler's EventBus.
"""

import asyncio
import logging
from pathlib import Path
from typing import Callable

from rich.console import Console
from rich.layout import Layout
from rich.live import Live
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table
from rich.text import Text

from livevod_cli.core.events import (
    EventBus,
    JobAdded,
    JobCancelled,
    JobCompleted,
    JobEvent,
    JobFailed,
    JobProgress,
    JobStarted,
)
from livevod_cli.models.stats import SessionStats
from livevod_cli.utils.formatting import format_clock, format_duration

log = logging.getLogger(__name__)


class ProgressManager:
    """
    Renders live progress for a download session and keeps its SessionStats
    current. Subscribe it to a bus with `attach()` before submitting jobs.
    """

    def __init__(self, console: Console, stats: SessionStats | None = None):
        self.console = console
        self.stats = stats or SessionStats()

        self.progress = Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}", justify="left"),
            BarColumn(bar_width=24),
            "[progress.percentage]{task.percentage:>5.1f}%",
            "•",
            TextColumn("{task.fields[clock]}", style="cyan"),
            "•",
            TextColumn("{task.fields[speed]}", style="magenta"),
            "•",
            TimeElapsedColumn(),
            console=console,
            transient=False,
        )

        self.overall_progress = Progress(
            TextColumn("[bold blue]{task.description}"),
            BarColumn(bar_width=40),
            "[progress.percentage]{task.percentage:>3.0f}%",
            console=console,
        )

        self._live: Live | None = None
        self._layout: Layout | None = None
        self._overall_task_id: TaskID | None = None
        self._titles: dict[str, str] = {}
        self._tasks: dict[str, TaskID] = {}
        self._unsubscribe: Callable[[], None] | None = None

    def attach(self, event_bus: EventBus) -> None:
        self._unsubscribe = event_bus.subscribe(self.handle)

    def detach(self) -> None:
        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None

    def handle(self, event: JobEvent) -> None:
        """Applies one engine event to the statistics and the display."""
        if isinstance(event, JobAdded):
            self._titles[event.job_id] = event.snapshot.title
            self.stats.jobs_submitted += 1
            self._update_overall()
        elif isinstance(event, JobStarted):
            self.stats.job_started(event.job_id)
            self._add_job_task(event.job_id)
        elif isinstance(event, JobProgress):
            self.stats.update_speed(event.job_id, event.speed)
            if (task_id := self._tasks.get(event.job_id)) is not None:
                self.progress.update(
                    task_id,
                    completed=event.percent,
                    clock=(
                        f"{format_clock(event.current_time)}"
                        f"/{format_clock(event.duration)}"
                    ),
                    speed=f"{event.speed:.2f} MB/s",
                )
        elif isinstance(event, JobCompleted):
            self.stats.jobs_completed += 1
            self._record_size(event.output_path)
            self._finish_job_task(event.job_id)
        elif isinstance(event, JobFailed):
            self.stats.jobs_failed += 1
            self._finish_job_task(event.job_id)
        elif isinstance(event, JobCancelled):
            self.stats.jobs_cancelled += 1
            self._finish_job_task(event.job_id)
        self._update_display()

    def _add_job_task(self, job_id: str) -> None:
        title = self._titles.get(job_id, job_id)
        if len(title) > 40:
            title = title[:38] + "…"
        self._tasks[job_id] = self.progress.add_task(
            title, total=100, clock="--:--", speed="-- MB/s"
        )

    def _finish_job_task(self, job_id: str) -> None:
        self.stats.job_finished(job_id)
        task_id = self._tasks.pop(job_id, None)
        if task_id is not None:
            self.progress.remove_task(task_id)
        self._update_overall()

    def _record_size(self, output_path: str) -> None:
        try:
            self.stats.total_size_downloaded += Path(output_path).stat().st_size
        except OSError as e:
            log.debug(f"Could not stat '{output_path}': {e}")

    def _update_overall(self) -> None:
        if self._overall_task_id is None:
            return
        finished = (
            self.stats.jobs_completed
            + self.stats.jobs_failed
            + self.stats.jobs_cancelled
        )
        self.overall_progress.update(
            self._overall_task_id,
            total=max(self.stats.jobs_submitted, 1),
            completed=finished,
        )

    def _create_layout(self) -> Layout:
        layout = Layout()
        layout.split_column(
            Layout(name="header", size=3),
            Layout(name="stats", size=8),
            Layout(name="progress", ratio=1),
        )
        return layout

    def _generate_header(self) -> Panel:
        header_text = Text()
        header_text.append("📺 Live Replay Downloader ", style="bold cyan")
        header_text.append("│ ", style="dim")
        header_text.append(
            f"Session: {format_duration(self.stats.elapsed)}", style="yellow"
        )
        if self.stats.current_speed > 0:
            header_text.append(" │ ", style="dim")
            header_text.append(f"⚡ {self.stats.current_speed:.2f} MB/s", style="magenta")
        return Panel(header_text, border_style="cyan")

    def _generate_stats_panel(self) -> Panel:
        stats = self.stats
        stats_table = Table.grid(padding=(0, 2))
        stats_table.add_column(style="bold cyan", justify="right")
        stats_table.add_column(style="white")
        stats_table.add_column(style="bold cyan", justify="right")
        stats_table.add_column(style="white")

        finished = stats.jobs_completed + stats.jobs_failed + stats.jobs_cancelled
        stats_table.add_row(
            "Completed:",
            f"[green]{stats.jobs_completed}[/green]",
            "Failed:",
            f"[red]{stats.jobs_failed}[/red]",
        )
        stats_table.add_row(
            "Cancelled:",
            f"[yellow]{stats.jobs_cancelled}[/yellow]",
            "Remaining:",
            f"[cyan]{stats.jobs_submitted - finished}[/cyan]",
        )
        stats_table.add_row(
            "Active:",
            f"[cyan]{len(self._tasks)}[/cyan]",
            "Peak Speed:",
            f"[magenta]{stats.peak_speed:.2f} MB/s[/magenta]",
        )

        combined = Table.grid()
        combined.add_row(stats_table)
        combined.add_row("")
        if self._overall_task_id is not None:
            combined.add_row(self.overall_progress)
        return Panel(
            combined, title="[bold]📊 Session Statistics[/bold]", border_style="blue"
        )

    def _generate_progress_panel(self) -> Panel:
        if not self._tasks:
            return Panel(
                Text(
                    "Waiting for captures to start...",
                    style="dim italic",
                    justify="center",
                ),
                title="[bold]📥 Active Captures[/bold]",
                border_style="green",
            )
        return Panel(
            self.progress,
            title=f"[bold]📥 Active Captures ({len(self._tasks)})[/bold]",
            border_style="green",
        )

    def _update_display(self) -> None:
        """Updates all panels; the Live object handles the refresh rate."""
        if not self._layout:
            return
        self._layout["header"].update(self._generate_header())
        self._layout["stats"].update(self._generate_stats_panel())
        self._layout["progress"].update(self._generate_progress_panel())

    async def __aenter__(self):
        self._overall_task_id = self.overall_progress.add_task(
            "Overall Progress", total=max(self.stats.jobs_submitted, 1)
        )
        self._layout = self._create_layout()
        self._update_display()
        self._live = Live(
            self._layout,
            console=self.console,
            refresh_per_second=8,
            vertical_overflow="visible",
        )
        self._live.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        self.detach()
        if self._live:
            self._update_display()
            await asyncio.sleep(0.2)
            self._live.stop()
