"""
Shared fixtures and in-memory collaborators for the test suite.
"""

import asyncio
import os
import stat
from pathlib import Path

import pytest

from livevod_cli.core.events import EventBus, JobEvent
from livevod_cli.exceptions import DownloadCancelledError, ProcessError


class FakeHandle:
    """Stands in for a CaptureHandle; the test decides how the capture ends."""

    def __init__(self, url, destination, on_progress=None):
        self.url = url
        self.destination = Path(destination)
        self.on_progress = on_progress
        self.cancel_calls = 0
        self.future = asyncio.get_running_loop().create_future()

    async def wait(self) -> Path:
        return await asyncio.shield(self.future)

    async def cancel(self) -> None:
        self.cancel_calls += 1
        if self.future.done():
            return
        self.future.set_exception(DownloadCancelledError("cancelled"))
        self.future.exception()

    def finish(self) -> None:
        self.destination.parent.mkdir(parents=True, exist_ok=True)
        self.destination.write_bytes(b"media")
        self.future.set_result(self.destination)

    def fail(self, message: str, returncode: int = 1) -> None:
        self.future.set_exception(ProcessError(message, returncode))


class FakeCapture:
    def __init__(self, verify_result: bool = True):
        self.handles: list[FakeHandle] = []
        self.verify_result = verify_result
        self.verify_calls = []

    def download_stream(
        self, url, destination_path, options=None, on_progress=None, headers=None
    ):
        handle = FakeHandle(url, destination_path, on_progress)
        self.handles.append(handle)
        return handle

    async def verify_integrity(self, path, expected_duration, tolerance=0.01):
        self.verify_calls.append((Path(path), expected_duration, tolerance))
        return self.verify_result


class FakeApiClient:
    def __init__(self, stream_url="https://cdn.example.com/replay.m3u8", error=None):
        self.stream_url = stream_url
        self.error = error
        self.gate: asyncio.Event | None = None
        self.calls = []

    async def fetch_stream_info(self, live_key, start_time, end_time, owner_id):
        self.calls.append(live_key)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return {"stream_url": self.stream_url, "raw": {}}


class EventRecorder:
    def __init__(self, bus: EventBus):
        self.events: list[JobEvent] = []
        bus.subscribe(self.events.append)

    def names(self, job_id: str | None = None) -> list[str]:
        return [e.name for e in self.events if job_id is None or e.job_id == job_id]

    def of_type(self, event_type) -> list[JobEvent]:
        return [e for e in self.events if isinstance(e, event_type)]


async def settle(rounds: int = 20) -> None:
    """Lets scheduled tasks run until they block again."""
    for _ in range(rounds):
        await asyncio.sleep(0)


def make_descriptor(key: str = "key-1", title: str = "Replay", **overrides) -> dict:
    descriptor = {
        "title": title,
        "live_key": key,
        "start_time": 1_700_000_000,
        "end_time": 1_700_003_600,
        "owner_id": "12345",
    }
    descriptor.update(overrides)
    return descriptor


@pytest.fixture
def fake_api():
    return FakeApiClient()


@pytest.fixture
def fake_capture():
    return FakeCapture()


@pytest.fixture
def write_script(tmp_path):
    """Writes an executable POSIX shell script into tmp_path."""
    if os.name == "nt":
        pytest.skip("shell-script fakes need a POSIX shell")

    def _write(name: str, body: str) -> Path:
        script = tmp_path / "bin" / name
        script.parent.mkdir(exist_ok=True)
        script.write_text("#!/bin/sh\n" + body, encoding="utf-8")
        script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return script

    return _write
