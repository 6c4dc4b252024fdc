"""
Tests for the ffmpeg process adapter.

The capture tests run small shell scripts that behave like ffmpeg: they print
diagnostic lines to stderr and write to the last argument, which is where the
adapter passes its temporary output path.
"""

import asyncio
import os
from pathlib import Path

import pytest

from livevod_cli.exceptions import (
    DownloadCancelledError,
    FFmpegNotFoundError,
    ProcessError,
    UpstreamError,
)
from livevod_cli.media.ffmpeg import (
    CaptureOptions,
    FFmpegCapture,
    build_capture_args,
    clean_stream_url,
    default_ffprobe_path,
    format_headers,
    temp_path_for,
)

LAST_ARG = 'for last; do :; done\n'

SUCCESS_SCRIPT = LAST_ARG + (
    'echo "  Duration: 00:02:00.00, start: 0.000000, bitrate: 2048 kb/s" >&2\n'
    "printf 'frame=  10 fps=0.0 q=-1.0 size=    256kB time=00:01:00.00 "
    "bitrate=2048.0kbits/s speed=2x\\r' >&2\n"
    "printf 'frame=  20 fps=0.0 q=-1.0 size=    512kB time=00:02:00.00 "
    "bitrate=2048.0kbits/s speed=2x\\r' >&2\n"
    'printf media > "$last"\n'
    "exit 0\n"
)

FAILURE_SCRIPT = LAST_ARG + (
    'printf partial > "$last"\n'
    'echo "[https @ 0x1] HTTP error 403 Forbidden" >&2\n'
    'echo "https://cdn.example.com/a.m3u8: Server returned 403 Forbidden" >&2\n'
    "exit 1\n"
)

HANGING_SCRIPT = LAST_ARG + (
    'echo "  Duration: 01:00:00.00, start: 0.000000, bitrate: 2048 kb/s" >&2\n'
    'printf partial > "$last"\n'
    "exec sleep 30\n"
)


async def wait_for_file(path: Path, timeout: float = 5.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not path.exists():
        if loop.time() > deadline:
            raise AssertionError(f"{path} was never created")
        await asyncio.sleep(0.02)


# =============================================================================
# Command line helpers
# =============================================================================


def test_clean_stream_url_strips_debris():
    raw = "  `https://cdn.example.com/live\ufeff/a b.m3u8?x=1\u00a0`.. "
    assert clean_stream_url(raw) == "https://cdn.example.com/live/ab.m3u8?x=1"


def test_format_headers_uses_crlf():
    block = format_headers({"User-Agent": "UA", "Referer": "https://live.example/"})
    assert block == "User-Agent: UA\r\nReferer: https://live.example/\r\n"


def test_build_capture_args():
    options = CaptureOptions(container="mkv", connect_timeout=2.5, reconnect_delay_max=7)
    args = build_capture_args(
        "ffmpeg", "https://x/y.flv", Path("/out/a.mkv.tmp"), {"A": "b"}, options
    )

    assert args[:5] == ["ffmpeg", "-hide_banner", "-nostdin", "-loglevel", "info"]
    assert args[args.index("-headers") + 1] == "A: b\r\n"
    assert args[args.index("-rw_timeout") + 1] == "2500000"
    assert args[args.index("-reconnect_delay_max") + 1] == "7"
    assert args.index("-rw_timeout") < args.index("-i")
    assert args[args.index("-i") + 1] == "https://x/y.flv"
    assert args[args.index("-f") + 1] == "matroska"
    assert args[-2:] == ["-y", str(Path("/out/a.mkv.tmp"))]


def test_build_capture_args_without_headers():
    args = build_capture_args(
        "ffmpeg", "https://x/y.flv", Path("a.mp4.tmp"), None, CaptureOptions()
    )
    assert "-headers" not in args


def test_default_ffprobe_path():
    assert default_ffprobe_path("ffmpeg") == "ffprobe"
    assert default_ffprobe_path("/opt/ff/bin/ffmpeg") == str(Path("/opt/ff/bin/ffprobe"))
    assert default_ffprobe_path("C:/tools/ffmpeg.exe").endswith("ffprobe.exe")


def test_temp_path_for():
    assert temp_path_for(Path("/a/b.mp4")) == Path("/a/b.mp4.tmp")
    assert temp_path_for(Path("/a/b.mp4"), "3f2a") == Path("/a/b.mp4.3f2a.tmp")


# =============================================================================
# Captures
# =============================================================================


async def test_capture_renames_temp_file_on_success(tmp_path, write_script):
    ffmpeg = write_script("ffmpeg", SUCCESS_SCRIPT)
    capture = FFmpegCapture(ffmpeg_path=str(ffmpeg))
    destination = tmp_path / "out" / "replay.mp4"
    samples = []

    handle = capture.download_stream(
        "https://cdn.example.com/a.m3u8",
        destination,
        on_progress=samples.append,
        headers={"User-Agent": "test"},
    )
    result = await asyncio.wait_for(handle.wait(), timeout=10)

    assert result == destination
    assert destination.read_bytes() == b"media"
    assert not handle.temp_path.exists()
    assert list(destination.parent.glob("*.tmp")) == []
    assert [s.progress for s in samples] == [50.0, 100.0]
    assert samples[0].current_time == 60.0
    assert samples[0].duration == 120.0
    assert samples[0].speed == 0.25
    assert handle.done


async def test_capture_failure_removes_temp_file(tmp_path, write_script):
    ffmpeg = write_script("ffmpeg", FAILURE_SCRIPT)
    capture = FFmpegCapture(ffmpeg_path=str(ffmpeg))
    destination = tmp_path / "replay.mp4"
    samples = []

    handle = capture.download_stream(
        "https://cdn.example.com/a.m3u8", destination, on_progress=samples.append
    )
    with pytest.raises(ProcessError) as exc_info:
        await asyncio.wait_for(handle.wait(), timeout=10)

    assert exc_info.value.returncode == 1
    assert "403 Forbidden" in str(exc_info.value)
    assert samples == []
    assert not destination.exists()
    assert list(tmp_path.glob("*.tmp")) == []


async def test_capture_missing_temp_file_is_an_output_error(tmp_path, write_script):
    from livevod_cli.exceptions import OutputFileError

    ffmpeg = write_script("ffmpeg", "exit 0\n")
    capture = FFmpegCapture(ffmpeg_path=str(ffmpeg))

    handle = capture.download_stream("https://x/a.flv", tmp_path / "replay.mp4")
    with pytest.raises(OutputFileError):
        await asyncio.wait_for(handle.wait(), timeout=10)


async def test_cancel_terminates_process_and_removes_temp(tmp_path, write_script):
    ffmpeg = write_script("ffmpeg", HANGING_SCRIPT)
    capture = FFmpegCapture(
        ffmpeg_path=str(ffmpeg), options=CaptureOptions(kill_timeout=2.0)
    )
    destination = tmp_path / "replay.mp4"

    handle = capture.download_stream("https://x/a.flv", destination)
    await wait_for_file(handle.temp_path)

    await asyncio.wait_for(handle.cancel(), timeout=10)

    assert not handle.temp_path.exists()
    assert not destination.exists()
    with pytest.raises(DownloadCancelledError):
        await handle.wait()
    # A second cancel is a no-op
    await handle.cancel()


async def test_capture_runs_in_its_own_session(tmp_path, write_script):
    ffmpeg = write_script("ffmpeg", HANGING_SCRIPT)
    capture = FFmpegCapture(
        ffmpeg_path=str(ffmpeg), options=CaptureOptions(kill_timeout=2.0)
    )
    handle = capture.download_stream("https://x/a.flv", tmp_path / "replay.mp4")
    await wait_for_file(handle.temp_path)

    try:
        # Ctrl-C in the terminal must not reach ffmpeg directly
        assert os.getsid(handle.pid) == handle.pid
        assert os.getpgid(handle.pid) != os.getpgrp()
    finally:
        await asyncio.wait_for(handle.cancel(), timeout=10)


async def test_captures_to_one_destination_use_separate_temp_files(
    tmp_path, write_script
):
    ffmpeg = write_script("ffmpeg", HANGING_SCRIPT)
    capture = FFmpegCapture(
        ffmpeg_path=str(ffmpeg), options=CaptureOptions(kill_timeout=2.0)
    )
    destination = tmp_path / "replay.mp4"

    first = capture.download_stream("https://x/a.flv", destination)
    second = capture.download_stream("https://x/b.flv", destination)
    assert first.temp_path != second.temp_path
    assert first.temp_path.name.endswith(".tmp")
    await wait_for_file(first.temp_path)
    await wait_for_file(second.temp_path)

    await asyncio.wait_for(first.cancel(), timeout=10)
    assert second.temp_path.exists()
    await asyncio.wait_for(second.cancel(), timeout=10)
    assert list(tmp_path.glob("*.tmp")) == []


async def test_cancel_after_completion_is_a_no_op(tmp_path, write_script):
    ffmpeg = write_script("ffmpeg", SUCCESS_SCRIPT)
    capture = FFmpegCapture(ffmpeg_path=str(ffmpeg))
    destination = tmp_path / "replay.mp4"

    handle = capture.download_stream("https://x/a.flv", destination)
    await asyncio.wait_for(handle.wait(), timeout=10)
    await handle.cancel()

    assert await handle.wait() == destination
    assert destination.exists()


async def test_missing_executable(tmp_path):
    capture = FFmpegCapture(ffmpeg_path=str(tmp_path / "no-such-ffmpeg"))
    handle = capture.download_stream("https://x/a.flv", tmp_path / "replay.mp4")

    with pytest.raises(FFmpegNotFoundError):
        await asyncio.wait_for(handle.wait(), timeout=10)


async def test_empty_url_is_rejected(tmp_path):
    capture = FFmpegCapture()
    with pytest.raises(UpstreamError):
        capture.download_stream(" `` ", tmp_path / "replay.mp4")


# =============================================================================
# Probing
# =============================================================================


async def test_get_duration_and_verify(tmp_path, write_script):
    write_script("ffprobe", 'echo "120.48"\n')
    ffmpeg = write_script("ffmpeg", "exit 0\n")
    capture = FFmpegCapture(ffmpeg_path=str(ffmpeg))
    media = tmp_path / "replay.mp4"
    media.write_bytes(b"media")

    assert await capture.get_duration(media) == pytest.approx(120.48)
    assert await capture.verify_integrity(media, 120.0) is True
    assert await capture.verify_integrity(media, 100.0) is False
    assert await capture.check_available() is True


async def test_probe_failure_is_unverified(tmp_path, write_script):
    write_script("ffprobe", 'echo "Invalid data found" >&2\nexit 1\n')
    ffmpeg = write_script("ffmpeg", "exit 0\n")
    capture = FFmpegCapture(ffmpeg_path=str(ffmpeg))

    with pytest.raises(ProcessError):
        await capture.get_duration(tmp_path / "broken.mp4")
    assert await capture.verify_integrity(tmp_path / "broken.mp4", 60.0) is False


async def test_check_available_without_binaries(tmp_path):
    capture = FFmpegCapture(ffmpeg_path=str(tmp_path / "ffmpeg"))
    assert await capture.check_available() is False
