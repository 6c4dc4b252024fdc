"""
Process-lifetime record of every job, independent of queue membership.
"""

from typing import Iterator

from livevod_cli.models.job import Job, JobSnapshot, JobStatus


class JobRegistry:
    """Maps job ids to job records. Insertion order is submission order."""

    def __init__(self):
        self._jobs: dict[str, Job] = {}

    def __contains__(self, job_id: str) -> bool:
        return job_id in self._jobs

    def __len__(self) -> int:
        return len(self._jobs)

    def __iter__(self) -> Iterator[Job]:
        return iter(list(self._jobs.values()))

    def add(self, job: Job) -> None:
        if job.id in self._jobs:
            raise KeyError(f"Job id {job.id} is already registered.")
        self._jobs[job.id] = job

    def get(self, job_id: str) -> Job | None:
        return self._jobs.get(job_id)

    def remove(self, job_id: str) -> Job | None:
        return self._jobs.pop(job_id, None)

    def by_status(self, *statuses: JobStatus) -> list[Job]:
        return [job for job in self._jobs.values() if job.status in statuses]

    def snapshots(self) -> list[JobSnapshot]:
        return [job.snapshot() for job in self._jobs.values()]
