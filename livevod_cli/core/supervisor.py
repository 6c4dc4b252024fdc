"""
Drives a single admitted job from Running to its terminal status.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Mapping, Protocol

from livevod_cli.exceptions import DownloadCancelledError, LiveVodError, UpstreamError
from livevod_cli.media.ffmpeg import CaptureOptions
from livevod_cli.media.progress import ProgressSample
from livevod_cli.models.job import Job, JobStatus
from livevod_cli.utils.path import reserve_output_path

from .events import (
    EventBus,
    JobCancelled,
    JobCompleted,
    JobFailed,
    JobProgress,
    JobStarted,
)

log = logging.getLogger(__name__)


class StreamInfoClient(Protocol):
    async def fetch_stream_info(
        self, live_key: str, start_time: int, end_time: int, owner_id: str
    ) -> Mapping[str, Any]: ...


class CaptureControl(Protocol):
    async def wait(self) -> Path: ...

    async def cancel(self) -> None: ...


class CaptureAdapter(Protocol):
    def download_stream(
        self,
        url: str,
        destination_path: str | Path,
        options: CaptureOptions | None = None,
        on_progress: Callable[[ProgressSample], None] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> CaptureControl: ...

    async def verify_integrity(
        self, path: str | Path, expected_duration: float, tolerance: float = 0.01
    ) -> bool: ...


@dataclass(frozen=True)
class SupervisorSettings:
    """Settings shared by every job a scheduler runs."""

    capture_options: CaptureOptions = CaptureOptions()
    headers: Mapping[str, str] | None = None
    verify_integrity: bool = False
    tolerance: float = 0.01


class JobSupervisor:
    """
    Owns one job while it is Running.

    The supervisor resolves the stream URL, hands the capture to the process
    adapter, mirrors progress onto the job and publishes lifecycle events. Its
    release callback runs exactly once, whichever way the job ends.
    """

    def __init__(
        self,
        job: Job,
        api_client: StreamInfoClient,
        capture: CaptureAdapter,
        event_bus: EventBus,
        on_release: Callable[[str], None],
        settings: SupervisorSettings | None = None,
        claimed_paths: set[Path] | None = None,
    ):
        self.job = job
        self.api_client = api_client
        self.capture = capture
        self.event_bus = event_bus
        self.settings = settings or SupervisorSettings()
        self._on_release = on_release
        self._claimed_paths = claimed_paths if claimed_paths is not None else set()
        self._destination: Path | None = None
        self._handle: CaptureControl | None = None
        self._resolve_task: asyncio.Future | None = None
        self._task: asyncio.Task | None = None
        self._cancel_requested = False
        self._finished = asyncio.Event()

    @property
    def handle(self) -> CaptureControl | None:
        return self._handle

    @property
    def task(self) -> asyncio.Task | None:
        return self._task

    def start(self) -> asyncio.Task:
        """Moves the job to Running and schedules its run. Called on admission only."""
        self.job.transition(JobStatus.RUNNING)
        self.job.start_time = datetime.now()
        log.info(f"▶ Started: {self.job.title} [dim]({self.job.id})[/dim]")
        self.event_bus.publish(JobStarted(self.job.id))
        self._task = asyncio.create_task(self._run(), name=f"job:{self.job.id}")
        return self._task

    async def cancel(self) -> bool:
        """
        Cancels the running job and waits until it is terminal.

        Returns:
            True if this call moved the job to Cancelled; False if the job had
            already finished or a cancellation was already under way.
        """
        if self._cancel_requested or self.job.status.is_terminal:
            return False
        self._cancel_requested = True
        log.info(f"Cancelling: {self.job.title} ({self.job.id})")

        if self._handle is not None:
            await self._handle.cancel()
        elif self._resolve_task is not None:
            self._resolve_task.cancel()
        await self._finished.wait()
        return self.job.status is JobStatus.CANCELLED

    async def _run(self) -> None:
        job = self.job
        try:
            self._raise_if_cancel_requested()
            stream_url = await self._resolve_stream_url()
            self._raise_if_cancel_requested()

            self._destination = reserve_output_path(
                job.output_dir,
                job.title,
                self.settings.capture_options.container,
                self._claimed_paths,
            )
            self._handle = self.capture.download_stream(
                stream_url,
                self._destination,
                self.settings.capture_options,
                self._on_progress,
                self.settings.headers,
            )
            output_path = await self._handle.wait()
            await self._complete(Path(output_path))
        except DownloadCancelledError:
            self._finish(JobStatus.CANCELLED)
        except asyncio.CancelledError:
            # The task itself was cancelled (shutdown); stop the capture first
            if self._handle is not None:
                await self._handle.cancel()
            self._finish(JobStatus.CANCELLED)
            raise
        except LiveVodError as e:
            self._finish(JobStatus.FAILED, str(e))
        except Exception as e:
            log.error(
                f"[red]✗ Unexpected error in job {job.id}: {e}[/red]",
                exc_info=log.getEffectiveLevel() == logging.DEBUG,
            )
            self._finish(JobStatus.FAILED, f"Unexpected error: {e}")
        finally:
            self._handle = None
            if self._destination is not None:
                self._claimed_paths.discard(self._destination.resolve())
            self._finished.set()
            self._on_release(job.id)

    def _raise_if_cancel_requested(self) -> None:
        if self._cancel_requested:
            raise DownloadCancelledError(f"Job {self.job.id} was cancelled.")

    async def _resolve_stream_url(self) -> str:
        """
        Asks the API client for a time-bounded stream URL.

        Raises:
            UpstreamError: For any failure to obtain a usable URL.
            DownloadCancelledError: If the job is cancelled while waiting.
        """
        descriptor = self.job.descriptor
        self._resolve_task = asyncio.ensure_future(
            self.api_client.fetch_stream_info(
                descriptor.live_key,
                descriptor.start_time,
                descriptor.end_time,
                descriptor.owner_id,
            )
        )
        try:
            stream_info = await self._resolve_task
        except asyncio.CancelledError:
            if self._cancel_requested and self._resolve_task.cancelled():
                raise DownloadCancelledError(
                    f"Job {self.job.id} was cancelled while resolving its stream."
                ) from None
            raise
        except UpstreamError:
            raise
        except Exception as e:
            raise UpstreamError(
                f"Failed to resolve stream URL: {e or type(e).__name__}"
            ) from e
        finally:
            self._resolve_task = None

        stream_url = str((stream_info or {}).get("stream_url") or "").strip()
        if not stream_url:
            raise UpstreamError("Platform returned no stream URL for this replay.")
        return stream_url

    def _on_progress(self, sample: ProgressSample) -> None:
        job = self.job
        if job.status is not JobStatus.RUNNING:
            return
        job.progress = sample.progress
        job.speed = sample.speed
        job.current_time = sample.current_time
        job.duration = sample.duration
        self.event_bus.publish(
            JobProgress(
                job.id,
                percent=sample.progress,
                current_time=sample.current_time,
                duration=sample.duration,
                speed=sample.speed,
            )
        )

    async def _complete(self, output_path: Path) -> None:
        job = self.job
        job.output_path = output_path
        expected = job.descriptor.expected_duration
        if self.settings.verify_integrity and expected:
            job.verified = await self.capture.verify_integrity(
                output_path, expected, self.settings.tolerance
            )
            if not job.verified:
                log.warning(
                    f"[yellow]⚠ Could not verify '{output_path.name}' against the "
                    f"expected duration.[/yellow]"
                )
        job.progress = 100.0
        self._finish(JobStatus.COMPLETED)

    def _finish(self, status: JobStatus, error: str | None = None) -> None:
        job = self.job
        self._handle = None
        job.end_time = datetime.now()
        job.transition(status)

        if status is JobStatus.COMPLETED:
            log.info(f"[green]✓ Completed:[/] {job.title} -> {job.output_path}")
            self.event_bus.publish(JobCompleted(job.id, output_path=str(job.output_path)))
        elif status is JobStatus.FAILED:
            job.error = error
            log.error(f"[red]✗ Failed:[/] {job.title} ({error})")
            self.event_bus.publish(JobFailed(job.id, message=error or "Unknown error"))
        else:
            log.info(f"[yellow]○ Cancelled:[/] {job.title}")
            self.event_bus.publish(JobCancelled(job.id))
