"""
Media Processing Layer.

This package is responsible for all media file operations: driving ffmpeg
captures, parsing their progress output and validating finished files.
"""

from .ffmpeg import CaptureHandle, CaptureOptions, FFmpegCapture
from .integrity import FileIntegrityChecker
from .progress import ProgressParser, ProgressSample, parse_progress_line

__all__ = [
    "CaptureHandle",
    "CaptureOptions",
    "FFmpegCapture",
    "FileIntegrityChecker",
    "ProgressParser",
    "ProgressSample",
    "parse_progress_line",
]
