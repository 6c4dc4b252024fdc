"""
Data Models Layer.

This package contains the Pydantic models and dataclasses that define the core
data structures used throughout the application: configuration, download jobs
and session statistics.
"""

from .config import DownloadConfig
from .job import Job, JobDescriptor, JobSnapshot, JobStatus
from .stats import SessionStats

__all__ = [
    "DownloadConfig",
    "Job",
    "JobDescriptor",
    "JobSnapshot",
    "JobStatus",
    "SessionStats",
]
