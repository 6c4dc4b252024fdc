"""
Session statistics collected from job lifecycle events.
"""

import time
from dataclasses import dataclass, field


@dataclass
class SessionStats:
    """Tracks outcome counts and throughput for a download session."""

    jobs_submitted: int = 0
    jobs_completed: int = 0
    jobs_failed: int = 0
    jobs_cancelled: int = 0
    jobs_unverified: int = 0
    total_size_downloaded: int = 0
    peak_concurrent: int = 0

    # Real-time speed fields (MB/s, as reported by the capture tool)
    current_speed: float = 0.0
    peak_speed: float = 0.0
    _speed_by_job: dict[str, float] = field(default_factory=dict, repr=False)
    _running: set[str] = field(default_factory=set, repr=False)
    started_at: float = field(default_factory=time.monotonic, repr=False)

    def job_started(self, job_id: str) -> None:
        self._running.add(job_id)
        self.peak_concurrent = max(self.peak_concurrent, len(self._running))

    def job_finished(self, job_id: str) -> None:
        self._running.discard(job_id)
        self._speed_by_job.pop(job_id, None)
        self._recompute_speed()

    def update_speed(self, job_id: str, speed: float) -> None:
        """Records the latest speed sample of one job and refreshes the aggregate."""
        self._speed_by_job[job_id] = speed
        self._recompute_speed()

    def _recompute_speed(self) -> None:
        self.current_speed = sum(self._speed_by_job.values())
        self.peak_speed = max(self.peak_speed, self.current_speed)

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self.started_at
