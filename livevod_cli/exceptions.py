"""
Defines custom exceptions for the application to allow for more specific error handling.
"""


class LiveVodError(Exception):
    """Base exception for all application-specific errors."""


class ConfigurationError(LiveVodError):
    """Raised for issues related to configuration loading or validation."""


class JobValidationError(LiveVodError):
    """Raised when a download job is submitted with missing or malformed fields."""


class InvalidTransitionError(LiveVodError):
    """Raised when a job is asked to move to a status its state machine forbids."""


class UpstreamError(LiveVodError):
    """
    Raised when the platform API fails to resolve replay metadata or a stream URL.
    """


class ProcessError(LiveVodError):
    """Raised when ffmpeg or ffprobe exits with an error."""

    def __init__(self, message: str, returncode: int | None = None):
        super().__init__(message)
        self.returncode = returncode


class OutputFileError(LiveVodError):
    """Raised for filesystem failures while preparing or finalizing an output file."""


class DownloadCancelledError(LiveVodError):
    """Raised when a capture is stopped by an explicit cancellation request."""


class FFmpegNotFoundError(LiveVodError):
    """Raised when the ffmpeg or ffprobe executable cannot be located."""
