"""
Structured logging system for better log analysis and debugging.
Provides JSON-lines logs of job lifecycle events with session context.
"""

import json
import logging
import sys
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Callable

from livevod_cli.core.events import (
    EventBus,
    JobAdded,
    JobCancelled,
    JobCompleted,
    JobEvent,
    JobFailed,
    JobProgress,
    JobRemoved,
    JobStarted,
)
from livevod_cli.models.stats import SessionStats


class StructuredLogger:
    """
    Logger that outputs both human-readable and machine-parseable logs.

    Usage:
        logger = StructuredLogger("livevod_cli", log_dir=Path("logs"))
        logger.info("job_completed", job_id="3f2a...", output_path="/tmp/a.mp4")
    """

    def __init__(
        self,
        name: str,
        log_dir: Path | None = None,
        enable_json: bool = True,
        enable_console: bool = True,
    ):
        """
        Initialize structured logger.

        Args:
            name: Logger name
            log_dir: Directory for JSON log files (None = disabled)
            enable_json: Enable JSON file logging
            enable_console: Enable console output through the standard logger
        """
        self.name = name
        self.log_dir = log_dir
        self.enable_json = enable_json and log_dir is not None
        self.enable_console = enable_console

        self._logger = logging.getLogger(name)

        self._json_file = None
        self.json_log_path: Path | None = None
        if self.enable_json:
            log_dir.mkdir(parents=True, exist_ok=True)
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            self.json_log_path = log_dir / f"livevod_{timestamp}.jsonl"
            self._json_file = open(self.json_log_path, "a", encoding="utf-8")  # noqa: SIM115

        # Session context (added to all log entries)
        self._session_context: dict[str, Any] = {
            "session_id": f"{int(time.time())}_{id(self)}",
            "start_time": datetime.now().isoformat(),
        }

    def set_session_context(self, **kwargs) -> None:
        """Set session-level context that appears in all logs."""
        self._session_context.update(kwargs)

    def _format_message(self, event: str, **context) -> str:
        parts = [f"[{event}]"]
        for key, value in context.items():
            if key not in ("level", "timestamp"):
                parts.append(f"{key}={value}")
        return " ".join(parts)

    def _write_json(self, level: str, event: str, **context) -> None:
        if not self._json_file or self._json_file.closed:
            return

        entry = {
            "timestamp": datetime.now().isoformat(),
            "level": level,
            "event": event,
            **self._session_context,
            **context,
        }

        try:
            self._json_file.write(json.dumps(entry, default=str) + "\n")
            self._json_file.flush()
        except (OSError, TypeError, ValueError) as e:
            # Fallback to stderr if JSON logging fails
            print(f"JSON logging failed: {e}", file=sys.stderr)

    def _log(self, level: int, event: str, **context) -> None:
        if self.enable_console:
            self._logger.log(level, self._format_message(event, **context))
        if self.enable_json:
            self._write_json(logging.getLevelName(level), event, **context)

    def debug(self, event: str, **context) -> None:
        self._log(logging.DEBUG, event, **context)

    def info(self, event: str, **context) -> None:
        self._log(logging.INFO, event, **context)

    def warning(self, event: str, **context) -> None:
        self._log(logging.WARNING, event, **context)

    def error(self, event: str, **context) -> None:
        self._log(logging.ERROR, event, **context)

    def close(self) -> None:
        """Close JSON log file."""
        if self._json_file and not self._json_file.closed:
            self._json_file.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


class JobEventLogger:
    """
    Records every job lifecycle event published on an EventBus.

    Progress events are thinned to one entry per 10% step per job.
    """

    PROGRESS_STEP = 10

    def __init__(self, logger: StructuredLogger):
        self.logger = logger
        self._last_step: dict[str, int] = {}
        self._unsubscribe: Callable[[], None] | None = None

    def attach(self, event_bus: EventBus) -> None:
        self.detach()
        self._unsubscribe = event_bus.subscribe(self.handle)

    def detach(self) -> None:
        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None

    def handle(self, event: JobEvent) -> None:
        if isinstance(event, JobAdded):
            self.logger.info(
                "job_added",
                job_id=event.job_id,
                title=event.snapshot.title,
            )
        elif isinstance(event, JobStarted):
            self.logger.info("job_started", job_id=event.job_id)
        elif isinstance(event, JobProgress):
            step = int(event.percent) // self.PROGRESS_STEP
            if self._last_step.get(event.job_id) == step:
                return
            self._last_step[event.job_id] = step
            self.logger.debug(
                "job_progress",
                job_id=event.job_id,
                percent=round(event.percent, 1),
                current_time_s=round(event.current_time, 2),
                duration_s=round(event.duration, 2),
                speed_mbps=event.speed,
            )
        elif isinstance(event, JobCompleted):
            self._last_step.pop(event.job_id, None)
            self.logger.info(
                "job_completed", job_id=event.job_id, output_path=event.output_path
            )
        elif isinstance(event, JobFailed):
            self._last_step.pop(event.job_id, None)
            self.logger.error("job_failed", job_id=event.job_id, error=event.message)
        elif isinstance(event, JobCancelled):
            self._last_step.pop(event.job_id, None)
            self.logger.warning("job_cancelled", job_id=event.job_id)
        elif isinstance(event, JobRemoved):
            self.logger.debug("job_removed", job_id=event.job_id)


class SessionLogger:
    """Specialized logger for session events."""

    def __init__(self, logger: StructuredLogger):
        self.logger = logger

    def session_started(self, owner_id: str, total_jobs: int, max_concurrent: int):
        self.logger.info(
            "session_started",
            owner_id=owner_id,
            total_jobs=total_jobs,
            max_concurrent=max_concurrent,
        )

    def session_completed(self, stats: SessionStats):
        self.logger.info(
            "session_completed",
            duration_s=round(stats.elapsed, 2),
            jobs_completed=stats.jobs_completed,
            jobs_failed=stats.jobs_failed,
            jobs_cancelled=stats.jobs_cancelled,
            jobs_unverified=stats.jobs_unverified,
            total_size_mb=round(stats.total_size_downloaded / (1024 * 1024), 2),
            peak_speed_mbps=round(stats.peak_speed, 2),
        )


def create_structured_logger(
    log_dir: Path | None = None, enable_json: bool = False
) -> tuple[StructuredLogger, JobEventLogger, SessionLogger]:
    """
    Create all structured loggers.

    Returns:
        Tuple of (base_logger, job_event_logger, session_logger)
    """
    # Console output is already handled by the engine's own log records
    base = StructuredLogger(
        "livevod_cli", log_dir=log_dir, enable_json=enable_json, enable_console=False
    )
    return base, JobEventLogger(base), SessionLogger(base)
