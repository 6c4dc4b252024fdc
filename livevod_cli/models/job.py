"""
Data models for download jobs: the immutable descriptor a caller submits, the
mutable job record the engine drives, and the snapshot handed to observers.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from livevod_cli.exceptions import InvalidTransitionError

DEFAULT_TITLE = "Untitled Replay"


class JobStatus(str, Enum):
    """Lifecycle states of a download job."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)


# Allowed transitions; terminal statuses have no successors.
_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.RUNNING, JobStatus.CANCELLED}),
    JobStatus.RUNNING: frozenset(
        {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED}
    ),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
    JobStatus.CANCELLED: frozenset(),
}


class JobDescriptor(BaseModel):
    """Identifies the replay segment to capture. Immutable once submitted."""

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True, extra="ignore")

    title: str = DEFAULT_TITLE
    live_key: str = Field(..., min_length=1)
    start_time: int = Field(..., ge=0)
    end_time: int = Field(..., ge=0)
    owner_id: str = Field(..., min_length=1)
    room_id: str | None = None
    duration: float | None = Field(default=None, ge=0)

    @field_validator("title", mode="before")
    @classmethod
    def default_title(cls, v: Any) -> str:
        """Falls back to a generic title when the platform sends none."""
        if v is None or not str(v).strip():
            return DEFAULT_TITLE
        return str(v)

    @field_validator("owner_id", "room_id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any) -> Any:
        """Account and room ids arrive as ints from the API; store them as text."""
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v

    @model_validator(mode="after")
    def validate_time_window(self) -> "JobDescriptor":
        if self.end_time < self.start_time:
            raise ValueError(
                f"end_time ({self.end_time}) precedes start_time ({self.start_time})."
            )
        return self

    @property
    def expected_duration(self) -> float | None:
        """Duration announced by the platform, else the length of the time window."""
        if self.duration:
            return float(self.duration)
        window = self.end_time - self.start_time
        return float(window) if window > 0 else None

    @classmethod
    def from_replay(cls, replay: dict[str, Any], owner_id: str) -> "JobDescriptor":
        """Builds a descriptor from one entry of the platform's replay list."""
        live_info = replay.get("live_info") or {}
        video_info = replay.get("video_info") or {}
        return cls(
            title=live_info.get("title"),
            live_key=replay.get("live_key", ""),
            start_time=replay.get("start_time", 0),
            end_time=replay.get("end_time", 0),
            owner_id=owner_id,
            room_id=live_info.get("room_id"),
            duration=video_info.get("duration"),
        )


@dataclass(frozen=True)
class JobSnapshot:
    """A read-only copy of a job's observable state."""

    id: str
    status: JobStatus
    progress: float
    speed: float
    title: str
    start_time: datetime | None
    end_time: datetime | None
    error: str | None
    output_path: str | None = None
    verified: bool | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "status": self.status.value,
            "progress": self.progress,
            "speed": self.speed,
            "title": self.title,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "error": self.error,
            "output_path": self.output_path,
            "verified": self.verified,
        }


@dataclass
class Job:
    """The engine's mutable record of a single download."""

    id: str
    descriptor: JobDescriptor
    output_dir: Path
    status: JobStatus = JobStatus.PENDING
    progress: float = 0.0
    speed: float = 0.0
    current_time: float = 0.0
    duration: float = 0.0
    start_time: datetime | None = None
    end_time: datetime | None = None
    error: str | None = None
    output_path: Path | None = None
    verified: bool | None = None
    history: list[JobStatus] = field(default_factory=list, repr=False)

    def __post_init__(self):
        self.history.append(self.status)

    @property
    def title(self) -> str:
        return self.descriptor.title

    def transition(self, new_status: JobStatus) -> None:
        """
        Moves the job to `new_status`.

        Raises:
            InvalidTransitionError: If the state machine does not allow the move,
            which includes every attempt to leave a terminal status.
        """
        if new_status not in _TRANSITIONS[self.status]:
            raise InvalidTransitionError(
                f"Job {self.id} cannot move from {self.status.value} "
                f"to {new_status.value}."
            )
        self.status = new_status
        self.history.append(new_status)

    def snapshot(self) -> JobSnapshot:
        return JobSnapshot(
            id=self.id,
            status=self.status,
            progress=self.progress,
            speed=self.speed,
            title=self.title,
            start_time=self.start_time,
            end_time=self.end_time,
            error=self.error,
            output_path=str(self.output_path) if self.output_path else None,
            verified=self.verified,
        )
