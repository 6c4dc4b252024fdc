"""
Drives the external ffmpeg process that captures a remote stream into a local file.

Each capture writes to a temporary file next to its destination and is renamed
into place only after ffmpeg exits cleanly, so a partially written file is never
visible under its final name.
"""

import asyncio
import codecs
import logging
import os
import re
import shutil
import subprocess
import uuid
from collections import deque
from contextlib import suppress
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, Callable, Mapping

from livevod_cli.exceptions import (
    DownloadCancelledError,
    FFmpegNotFoundError,
    OutputFileError,
    ProcessError,
    UpstreamError,
)
from livevod_cli.models.config import CONTAINER_FORMATS, DownloadConfig

from .integrity import FileIntegrityChecker
from .progress import ProgressParser, ProgressSample

log = logging.getLogger(__name__)

TEMP_SUFFIX = ".tmp"

_LINE_SPLIT_RE = re.compile(r"[\r\n]+")
_WHITESPACE_RE = re.compile(r"[\s\ufeff\u00a0\u200b]+")

ProgressCallback = Callable[[ProgressSample], None]


@dataclass(frozen=True)
class CaptureOptions:
    """Per-capture ffmpeg settings."""

    container: str = "mp4"
    connect_timeout: float = 10.0
    reconnect_delay_max: int = 5
    kill_timeout: float = 5.0
    loglevel: str = "info"

    @classmethod
    def from_config(cls, config: DownloadConfig) -> "CaptureOptions":
        return cls(
            container=config.container,
            connect_timeout=config.connect_timeout,
            reconnect_delay_max=config.reconnect_delay_max,
            kill_timeout=config.kill_timeout,
        )


def clean_stream_url(url: str) -> str:
    """
    Removes the debris the platform API occasionally leaves around stream URLs:
    embedded whitespace (including BOM and NBSP), wrapping backticks or quotes,
    and trailing punctuation.
    """
    cleaned = _WHITESPACE_RE.sub("", url)
    return cleaned.lstrip("`'\"").rstrip("`'\".,;")


def temp_path_for(destination: Path, token: str | None = None) -> Path:
    """Temporary sibling of `destination`; `token` keeps concurrent captures apart."""
    infix = f".{token}" if token else ""
    return destination.with_name(destination.name + infix + TEMP_SUFFIX)


def process_group_kwargs() -> dict:
    """
    Starts ffmpeg outside the terminal's process group. Ctrl-C then reaches only
    this process, which stops every capture through `CaptureHandle.cancel`.
    """
    if os.name == "nt":
        return {"creationflags": subprocess.CREATE_NEW_PROCESS_GROUP}
    return {"start_new_session": True}


def format_headers(headers: Mapping[str, str]) -> str:
    """Builds the CRLF-terminated header block ffmpeg's http protocol expects."""
    return "".join(f"{key}: {value}\r\n" for key, value in headers.items())


def default_ffprobe_path(ffmpeg_path: str) -> str:
    """Assumes ffprobe is installed next to ffmpeg, as in every official build."""
    path = Path(ffmpeg_path)
    name = "ffprobe.exe" if path.suffix.lower() == ".exe" else "ffprobe"
    if path.parent == Path("."):
        return name
    return str(path.with_name(name))


def build_capture_args(
    ffmpeg_path: str,
    url: str,
    temp_path: Path,
    headers: Mapping[str, str] | None,
    options: CaptureOptions,
) -> list[str]:
    """Assembles the ffmpeg command line for a stream-copy capture."""
    args = [ffmpeg_path, "-hide_banner", "-nostdin", "-loglevel", options.loglevel]
    if headers:
        args += ["-headers", format_headers(headers)]
    args += [
        # Input options must precede -i
        "-rw_timeout",
        str(int(options.connect_timeout * 1_000_000)),
        "-reconnect",
        "1",
        "-reconnect_at_eof",
        "1",
        "-reconnect_streamed",
        "1",
        "-reconnect_delay_max",
        str(options.reconnect_delay_max),
        "-i",
        url,
        "-c",
        "copy",
        "-bsf:a",
        "aac_adtstoasc",
        "-f",
        CONTAINER_FORMATS.get(options.container, options.container),
        "-y",
        str(temp_path),
    ]
    return args


async def _iter_lines(stream: asyncio.StreamReader) -> AsyncIterator[str]:
    """
    Yields non-empty lines from ffmpeg's stderr. Status lines end in a bare
    carriage return, so both CR and LF are treated as terminators.
    """
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    buffer = ""
    while chunk := await stream.read(4096):
        buffer += decoder.decode(chunk)
        *lines, buffer = _LINE_SPLIT_RE.split(buffer)
        for line in lines:
            if line := line.strip():
                yield line
    buffer += decoder.decode(b"", final=True)
    if buffer := buffer.strip():
        yield buffer


class CaptureHandle:
    """
    Controls one running ffmpeg capture.

    The handle resolves to the final file path when ffmpeg exits cleanly. It is
    rejected with ProcessError on a failed exit, with OutputFileError when the
    output cannot be finalized and with DownloadCancelledError after `cancel()`.
    """

    def __init__(
        self,
        args: list[str],
        destination: Path,
        on_progress: ProgressCallback | None = None,
        kill_timeout: float = 5.0,
        temp_path: Path | None = None,
    ):
        self.destination = destination
        self.temp_path = temp_path or temp_path_for(destination)
        self.kill_timeout = kill_timeout
        self._on_progress = on_progress
        self._process: asyncio.subprocess.Process | None = None
        self._cancelled = False
        self._stderr_tail: deque[str] = deque(maxlen=12)
        self._future: asyncio.Future[Path] = asyncio.get_running_loop().create_future()
        self._task = asyncio.create_task(
            self._run(args), name=f"ffmpeg:{destination.name}"
        )

    @property
    def done(self) -> bool:
        return self._future.done()

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process else None

    async def wait(self) -> Path:
        """Waits for the capture to finish and returns the final file path."""
        return await asyncio.shield(self._future)

    async def cancel(self) -> None:
        """
        Stops the capture. Returns only after ffmpeg has exited and the temporary
        file is gone. Calling it again, or after the capture finished, does nothing.
        """
        if self._future.done():
            return
        self._cancelled = True
        await self._terminate()
        await asyncio.wait({self._task})
        self._remove_temp()
        self._reject(
            DownloadCancelledError(f"Capture of '{self.destination.name}' was cancelled.")
        )

    async def _run(self, args: list[str]) -> None:
        try:
            self._process = await asyncio.create_subprocess_exec(
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
                **process_group_kwargs(),
            )
        except FileNotFoundError as e:
            self._reject(FFmpegNotFoundError(f"ffmpeg executable not found: {args[0]}"))
            log.debug(f"Spawning ffmpeg failed: {e}")
            return
        except OSError as e:
            self._reject(ProcessError(f"Could not start ffmpeg: {e}"))
            return

        log.debug(f"ffmpeg started (pid {self._process.pid}) -> {self.temp_path.name}")

        if self._cancelled:
            await self._terminate()
            return

        parser = ProgressParser()
        try:
            async for line in _iter_lines(self._process.stderr):
                self._stderr_tail.append(line)
                sample = parser.feed(line)
                if sample and self._on_progress:
                    try:
                        self._on_progress(sample)
                    except Exception as e:
                        log.warning(f"Progress callback failed: {e}", exc_info=True)
            returncode = await self._process.wait()
        except asyncio.CancelledError:
            if self._process.returncode is None:
                with suppress(ProcessLookupError):
                    self._process.kill()
            self._remove_temp()
            raise

        if self._cancelled:
            return

        if returncode == 0:
            self._finalize()
        else:
            self._remove_temp()
            self._reject(ProcessError(self._error_message(returncode), returncode))

    async def _terminate(self) -> None:
        process = self._process
        if process is None or process.returncode is not None:
            return
        log.info(f"Terminating ffmpeg (pid {process.pid})")
        try:
            process.terminate()
        except ProcessLookupError:
            return
        try:
            await asyncio.wait_for(process.wait(), timeout=self.kill_timeout)
        except asyncio.TimeoutError:
            log.warning(
                f"ffmpeg (pid {process.pid}) ignored terminate for "
                f"{self.kill_timeout}s. Killing it."
            )
            process.kill()
            await process.wait()

    def _finalize(self) -> None:
        if not self.temp_path.is_file():
            self._reject(
                OutputFileError(
                    f"Temporary file '{self.temp_path}' is missing after capture."
                )
            )
            return
        try:
            os.replace(self.temp_path, self.destination)
        except OSError as e:
            self._remove_temp()
            self._reject(
                OutputFileError(f"Could not move capture to '{self.destination}': {e}")
            )
            return
        log.info(f"Capture finished: {self.destination}")
        if not self._future.done():
            self._future.set_result(self.destination)

    def _remove_temp(self) -> None:
        try:
            self.temp_path.unlink(missing_ok=True)
        except OSError as e:
            log.error(f"Could not remove temporary file '{self.temp_path}': {e}")

    def _reject(self, error: Exception) -> None:
        if not self._future.done():
            self._future.set_exception(error)
            # Mark as retrieved; callers that never await wait() should not warn
            self._future.exception()

    def _error_message(self, returncode: int) -> str:
        diagnostics = [line for line in self._stderr_tail if "time=" not in line]
        if diagnostics:
            return " | ".join(diagnostics[-3:])
        return f"ffmpeg exited with code {returncode}"


class FFmpegCapture:
    """Process adapter around the ffmpeg and ffprobe executables."""

    def __init__(
        self,
        ffmpeg_path: str = "ffmpeg",
        ffprobe_path: str | None = None,
        options: CaptureOptions | None = None,
    ):
        self.ffmpeg_path = ffmpeg_path
        self.ffprobe_path = ffprobe_path or default_ffprobe_path(ffmpeg_path)
        self.options = options or CaptureOptions()

    @classmethod
    def from_config(cls, config: DownloadConfig) -> "FFmpegCapture":
        return cls(
            ffmpeg_path=config.ffmpeg_path,
            ffprobe_path=config.ffprobe_path or None,
            options=CaptureOptions.from_config(config),
        )

    def download_stream(
        self,
        url: str,
        destination_path: str | Path,
        options: CaptureOptions | None = None,
        on_progress: ProgressCallback | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> CaptureHandle:
        """
        Starts capturing `url` into `destination_path` and returns its handle.

        Must be called from a running event loop.

        Raises:
            UpstreamError: If nothing usable is left of the URL after cleaning.
            OutputFileError: If the destination directory cannot be created.
        """
        options = options or self.options
        clean_url = clean_stream_url(url)
        if not clean_url:
            raise UpstreamError("Stream URL is empty.")

        destination = Path(destination_path)
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise OutputFileError(
                f"Could not create output directory '{destination.parent}': {e}"
            ) from e

        temp_path = temp_path_for(destination, uuid.uuid4().hex[:8])
        args = build_capture_args(self.ffmpeg_path, clean_url, temp_path, headers, options)
        log.debug(f"Starting capture: {clean_url} -> {destination}")
        return CaptureHandle(
            args, destination, on_progress, options.kill_timeout, temp_path
        )

    async def get_duration(self, path: str | Path) -> float:
        """
        Probes a media file's real duration in seconds.

        Raises:
            FFmpegNotFoundError: If ffprobe cannot be executed.
            ProcessError: If ffprobe fails or reports no duration.
        """
        try:
            process = await asyncio.create_subprocess_exec(
                self.ffprobe_path,
                "-v",
                "error",
                "-show_entries",
                "format=duration",
                "-of",
                "default=noprint_wrappers=1:nokey=1",
                str(path),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise FFmpegNotFoundError(
                f"ffprobe executable not found: {self.ffprobe_path}"
            ) from e

        stdout, stderr = await process.communicate()
        if process.returncode != 0:
            message = stderr.decode("utf-8", errors="replace").strip()
            raise ProcessError(
                message or f"ffprobe exited with code {process.returncode}",
                process.returncode,
            )

        output = stdout.decode("utf-8", errors="replace").strip()
        try:
            return float(output)
        except ValueError as e:
            raise ProcessError(f"ffprobe reported no duration for '{path}'.") from e

    async def verify_integrity(
        self, path: str | Path, expected_duration: float, tolerance: float = 0.01
    ) -> bool:
        """Checks the probed duration against the expected one; never raises."""
        return await FileIntegrityChecker(self).check_duration(
            str(path), expected_duration, tolerance
        )

    async def check_available(self) -> bool:
        """Returns True if both executables exist and ffmpeg runs."""
        for executable in (self.ffmpeg_path, self.ffprobe_path):
            if not (shutil.which(executable) or Path(executable).is_file()):
                log.warning(f"Executable not found: {executable}")
                return False
        try:
            process = await asyncio.create_subprocess_exec(
                self.ffmpeg_path,
                "-version",
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
            return await process.wait() == 0
        except OSError as e:
            log.debug(f"ffmpeg availability check failed: {e}")
            return False
