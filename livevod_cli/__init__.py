"""
livevod-cli: a concurrent downloader for archived live-stream replays.
"""

__version__ = "0.3.0"
