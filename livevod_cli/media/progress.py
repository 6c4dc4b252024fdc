"""
Parsing of ffmpeg's diagnostic output into progress samples.

ffmpeg announces the input duration once (``Duration: 01:02:03.45``) and then
prints status lines such as::

    frame= 1234 fps= 50 q=-1.0 size=   10240kB time=00:00:41.20 bitrate=2036.1kbits/s

The functions here are pure so they can be exercised without a subprocess.
"""

import re
from dataclasses import dataclass

_TIMESTAMP = r"(\d+):(\d{2}):(\d{2}(?:\.\d+)?)"
DURATION_RE = re.compile(r"Duration:\s*" + _TIMESTAMP)
TIME_RE = re.compile(r"time=\s*" + _TIMESTAMP)
BITRATE_RE = re.compile(r"bitrate=\s*([\d.]+)\s*kbits/s")


@dataclass(frozen=True)
class ProgressSample:
    """One progress observation for a running capture."""

    current_time: float
    duration: float
    progress: float
    speed: float


def _to_seconds(hours: str, minutes: str, seconds: str) -> float:
    return int(hours) * 3600 + int(minutes) * 60 + float(seconds)


def parse_duration_line(line: str) -> float | None:
    """Returns the announced input duration in seconds, or None if `line` has none."""
    match = DURATION_RE.search(line)
    if not match:
        return None
    return _to_seconds(*match.groups())


def parse_progress_line(line: str, duration: float) -> ProgressSample | None:
    """
    Extracts a progress sample from a single status line.

    Args:
        line: One line of ffmpeg's stderr.
        duration: Total media duration in seconds, as announced earlier.

    Returns:
        A ProgressSample, or None if the line carries no elapsed time or the
        duration is not yet known.
    """
    if duration <= 0 or "time=" not in line:
        return None
    time_match = TIME_RE.search(line)
    if not time_match:
        return None

    current_time = _to_seconds(*time_match.groups())
    progress = min(100.0, current_time / duration * 100)

    speed = 0.0
    if bitrate_match := BITRATE_RE.search(line):
        speed = round(float(bitrate_match.group(1)) / 8 / 1024, 2)

    return ProgressSample(
        current_time=current_time,
        duration=duration,
        progress=progress,
        speed=speed,
    )


class ProgressParser:
    """Stateful wrapper remembering the duration announced at the start of a run."""

    def __init__(self):
        self.duration = 0.0

    def feed(self, line: str) -> ProgressSample | None:
        if self.duration <= 0 and "Duration:" in line:
            if (duration := parse_duration_line(line)) is not None:
                self.duration = duration
            return None
        return parse_progress_line(line, self.duration)
