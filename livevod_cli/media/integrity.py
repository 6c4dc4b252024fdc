"""
Provides methods for checking the integrity of finished captures.
"""

import logging
from typing import Protocol

from livevod_cli.exceptions import LiveVodError

log = logging.getLogger(__name__)


class DurationProber(Protocol):
    async def get_duration(self, path: str) -> float: ...


class FileIntegrityChecker:
    """Validates finished media files by comparing probed and expected durations."""

    def __init__(self, prober: DurationProber):
        self.prober = prober

    async def check_duration(
        self, filepath: str, expected_duration: float, tolerance: float = 0.01
    ) -> bool:
        """
        Checks that a file's real duration matches the expected one.

        A capture cut short by a dropped connection still produces a playable
        file, so its duration is the most reliable completeness signal.

        Args:
            filepath: Path to the media file.
            expected_duration: Duration the file should have, in seconds.
            tolerance: Allowed relative deviation (0.01 = 1%).

        Returns:
            True if the durations match within tolerance. False if they do not,
            or if the file could not be probed (unverified).
        """
        if expected_duration <= 0:
            log.debug(f"No expected duration for '{filepath}'; skipping check.")
            return False
        try:
            actual_duration = await self.prober.get_duration(filepath)
        except (LiveVodError, OSError) as e:
            log.warning(f"Integrity check could not probe '{filepath}': {e}")
            return False

        difference = abs(actual_duration - expected_duration)
        allowed = expected_duration * tolerance
        log.debug(
            f"Integrity check for '{filepath}': actual={actual_duration:.2f}s "
            f"expected={expected_duration:.2f}s diff={difference:.2f}s "
            f"allowed={allowed:.2f}s"
        )
        if difference > allowed:
            log.warning(
                f"Duration mismatch for '{filepath}': got {actual_duration:.1f}s, "
                f"expected {expected_duration:.1f}s."
            )
            return False
        return True
