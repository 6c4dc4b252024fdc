"""
Tests for the job data models and their state machine.
"""

from pathlib import Path

import pytest
from pydantic import ValidationError

from livevod_cli.exceptions import InvalidTransitionError
from livevod_cli.models.job import DEFAULT_TITLE, Job, JobDescriptor, JobStatus

REPLAY = {
    "live_key": "a1b2c3",
    "start_time": 1_714_560_000,
    "end_time": 1_714_567_200,
    "live_info": {"title": "Friday night", "room_id": 21452505},
    "video_info": {"duration": 7195},
}


def make_job(**overrides) -> Job:
    descriptor = JobDescriptor(
        live_key="k", start_time=0, end_time=60, owner_id="1", **overrides
    )
    return Job(id="job-1", descriptor=descriptor, output_dir=Path("."))


# =============================================================================
# JobDescriptor
# =============================================================================


def test_descriptor_from_replay():
    descriptor = JobDescriptor.from_replay(REPLAY, owner_id=12345)

    assert descriptor.title == "Friday night"
    assert descriptor.live_key == "a1b2c3"
    assert descriptor.owner_id == "12345"
    assert descriptor.room_id == "21452505"
    assert descriptor.expected_duration == 7195.0


def test_descriptor_falls_back_to_window_length():
    replay = {**REPLAY, "video_info": {}}
    assert JobDescriptor.from_replay(replay, "1").expected_duration == 7200.0


@pytest.mark.parametrize("title", [None, "", "   "])
def test_descriptor_default_title(title):
    descriptor = JobDescriptor(
        title=title, live_key="k", start_time=0, end_time=1, owner_id="1"
    )
    assert descriptor.title == DEFAULT_TITLE


def test_descriptor_is_immutable():
    descriptor = make_job().descriptor
    with pytest.raises(ValidationError):
        descriptor.live_key = "other"


@pytest.mark.parametrize(
    "fields",
    [
        {"live_key": "", "start_time": 0, "end_time": 1, "owner_id": "1"},
        {"live_key": "k", "start_time": 0, "end_time": 1, "owner_id": " "},
        {"live_key": "k", "start_time": 10, "end_time": 5, "owner_id": "1"},
        {"live_key": "k", "start_time": -1, "end_time": 5, "owner_id": "1"},
    ],
)
def test_descriptor_validation(fields):
    with pytest.raises(ValidationError):
        JobDescriptor(**fields)


def test_zero_length_window_has_no_expected_duration():
    descriptor = JobDescriptor(live_key="k", start_time=5, end_time=5, owner_id="1")
    assert descriptor.expected_duration is None


# =============================================================================
# Job state machine
# =============================================================================


@pytest.mark.parametrize(
    "terminal", [JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED]
)
def test_running_job_reaches_each_terminal_status(terminal):
    job = make_job()
    job.transition(JobStatus.RUNNING)
    job.transition(terminal)

    assert job.status is terminal
    assert job.status.is_terminal
    assert job.history == [JobStatus.PENDING, JobStatus.RUNNING, terminal]


def test_pending_job_can_be_cancelled():
    job = make_job()
    job.transition(JobStatus.CANCELLED)
    assert job.status is JobStatus.CANCELLED


@pytest.mark.parametrize("target", [JobStatus.COMPLETED, JobStatus.FAILED])
def test_pending_job_cannot_skip_running(target):
    with pytest.raises(InvalidTransitionError):
        make_job().transition(target)


@pytest.mark.parametrize("target", list(JobStatus))
def test_terminal_status_is_final(target):
    job = make_job()
    job.transition(JobStatus.RUNNING)
    job.transition(JobStatus.FAILED)

    with pytest.raises(InvalidTransitionError):
        job.transition(target)
    assert job.status is JobStatus.FAILED


def test_snapshot_is_detached_copy():
    job = make_job(title="Replay")
    snapshot = job.snapshot()
    job.transition(JobStatus.RUNNING)
    job.progress = 42.0

    assert snapshot.status is JobStatus.PENDING
    assert snapshot.progress == 0.0
    assert snapshot.to_dict() == {
        "id": "job-1",
        "status": "pending",
        "progress": 0.0,
        "speed": 0.0,
        "title": "Replay",
        "start_time": None,
        "end_time": None,
        "error": None,
        "output_path": None,
        "verified": None,
    }
