"""
Bounded-concurrency scheduler for replay downloads.

All queue and slot bookkeeping happens on the event loop thread, and no
`await` separates an admission check from the mutation it guards.
"""

import asyncio
import logging
import uuid
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

from pydantic import ValidationError

from livevod_cli.exceptions import ConfigurationError, JobValidationError
from livevod_cli.models.job import Job, JobDescriptor, JobSnapshot, JobStatus

from .events import EventBus, JobAdded, JobCancelled, JobRemoved
from .registry import JobRegistry
from .supervisor import (
    CaptureAdapter,
    JobSupervisor,
    StreamInfoClient,
    SupervisorSettings,
)

log = logging.getLogger(__name__)


@dataclass
class _QueuedJob:
    job: Job
    api_client: StreamInfoClient
    capture: CaptureAdapter


class DownloadScheduler:
    """
    Queues download jobs and admits them in submission order while fewer than
    `max_concurrent` are running.

    Collaborators given here are used for every job that does not bring its
    own. The scheduler must be used from inside a running event loop.
    """

    def __init__(
        self,
        api_client: StreamInfoClient | None = None,
        capture: CaptureAdapter | None = None,
        max_concurrent: int = 3,
        event_bus: EventBus | None = None,
        registry: JobRegistry | None = None,
        settings: SupervisorSettings | None = None,
    ):
        if max_concurrent < 1:
            raise ConfigurationError("max_concurrent must be at least 1.")
        self.api_client = api_client
        self.capture = capture
        self.event_bus = event_bus or EventBus()
        self.registry = registry or JobRegistry()
        self.settings = settings or SupervisorSettings()
        self._max_concurrent = max_concurrent
        self._queue: deque[str] = deque()
        self._queued: dict[str, _QueuedJob] = {}
        self._running: dict[str, JobSupervisor] = {}
        # Output paths held by running captures
        self._claimed_paths: set[Path] = set()
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def max_concurrent(self) -> int:
        return self._max_concurrent

    @property
    def running_count(self) -> int:
        return len(self._running)

    @property
    def pending_count(self) -> int:
        return len(self._queue)

    def add_job(
        self,
        descriptor: JobDescriptor | Mapping[str, Any],
        output_dir: str | Path,
        api_client: StreamInfoClient | None = None,
        capture: CaptureAdapter | None = None,
    ) -> JobSnapshot:
        """
        Submits a job and returns a snapshot of it.

        Raises:
            JobValidationError: If the descriptor is malformed or a collaborator
            is missing. The job is never queued in that case.
        """
        if not isinstance(descriptor, JobDescriptor):
            try:
                descriptor = JobDescriptor.model_validate(descriptor)
            except ValidationError as e:
                errors = "; ".join(
                    f"{'.'.join(map(str, err['loc'])) or 'descriptor'}: {err['msg']}"
                    for err in e.errors()
                )
                raise JobValidationError(f"Invalid job descriptor: {errors}") from e

        api_client = api_client or self.api_client
        capture = capture or self.capture
        if api_client is None:
            raise JobValidationError("No API client was provided for the job.")
        if capture is None:
            raise JobValidationError("No capture adapter was provided for the job.")
        if not output_dir:
            raise JobValidationError("No output directory was provided for the job.")

        job = Job(id=uuid.uuid4().hex, descriptor=descriptor, output_dir=Path(output_dir))
        self.registry.add(job)
        self._queue.append(job.id)
        self._queued[job.id] = _QueuedJob(job, api_client, capture)
        self._idle.clear()
        log.debug(f"Queued job {job.id}: {job.title}")

        snapshot = job.snapshot()
        self.event_bus.publish(JobAdded(job.id, snapshot=snapshot))
        self._process_queue()
        return snapshot

    def set_concurrency(self, max_concurrent: int) -> None:
        """Changes the limit. Running jobs are never preempted when it drops."""
        if max_concurrent < 1:
            raise ConfigurationError("max_concurrent must be at least 1.")
        log.info(f"Concurrency limit: {self._max_concurrent} -> {max_concurrent}")
        self._max_concurrent = max_concurrent
        self._process_queue()

    async def cancel(self, job_id: str) -> bool:
        """
        Cancels a pending or running job.

        A pending job leaves the queue immediately. For a running job this
        returns only after the capture process has exited and its temporary
        file is gone.

        Returns:
            False if the job is unknown, already terminal or already being
            cancelled.
        """
        if job_id in self._queued:
            entry = self._queued.pop(job_id)
            self._queue.remove(job_id)
            entry.job.transition(JobStatus.CANCELLED)
            log.info(f"[yellow]○ Cancelled before start:[/] {entry.job.title}")
            self.event_bus.publish(JobCancelled(job_id))
            self._update_idle()
            return True

        supervisor = self._running.get(job_id)
        if supervisor is None:
            return False
        return await supervisor.cancel()

    async def cancel_all(self) -> int:
        """Cancels every pending and running job. Returns how many were cancelled."""
        cancelled = 0
        for job_id in list(self._queue):
            if await self.cancel(job_id):
                cancelled += 1
        results = await asyncio.gather(
            *(self.cancel(job_id) for job_id in list(self._running))
        )
        return cancelled + sum(results)

    async def remove_job(self, job_id: str) -> bool:
        """Cancels the job if it is still active, then forgets it."""
        job = self.registry.get(job_id)
        if job is None:
            return False
        if not job.status.is_terminal:
            await self.cancel(job_id)
            # A concurrent cancel may still be in flight; wait for it to settle
            supervisor = self._running.get(job_id)
            if supervisor is not None and supervisor.task is not None:
                await asyncio.wait({supervisor.task})

        if self.registry.remove(job_id) is None:
            return False
        self.event_bus.publish(JobRemoved(job_id))
        return True

    def clear_finished(self) -> int:
        """Drops every terminal job from the registry."""
        finished = self.registry.by_status(
            JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED
        )
        for job in finished:
            self.registry.remove(job.id)
            self.event_bus.publish(JobRemoved(job.id))
        return len(finished)

    def get_job(self, job_id: str) -> JobSnapshot | None:
        job = self.registry.get(job_id)
        return job.snapshot() if job else None

    def list_jobs(self) -> list[JobSnapshot]:
        return self.registry.snapshots()

    def running_jobs(self) -> list[JobSnapshot]:
        return [s.job.snapshot() for s in self._running.values()]

    def pending_jobs(self) -> list[JobSnapshot]:
        return [self._queued[job_id].job.snapshot() for job_id in self._queue]

    async def wait_until_idle(self) -> None:
        """Waits until the queue is empty and no job is running."""
        while self._queue or self._running:
            await self._idle.wait()

    def _process_queue(self) -> None:
        while len(self._running) < self._max_concurrent and self._queue:
            job_id = self._queue.popleft()
            entry = self._queued.pop(job_id)
            supervisor = JobSupervisor(
                entry.job,
                entry.api_client,
                entry.capture,
                self.event_bus,
                self._release,
                self.settings,
                self._claimed_paths,
            )
            self._running[job_id] = supervisor
            supervisor.start()
        self._update_idle()

    def _release(self, job_id: str) -> None:
        if self._running.pop(job_id, None) is None:
            return
        log.debug(f"Released slot of job {job_id}")
        self._process_queue()

    def _update_idle(self) -> None:
        if self._queue or self._running:
            self._idle.clear()
        else:
            self._idle.set()
