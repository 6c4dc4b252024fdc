"""
Storage Layer.

This package handles data persistence, which is limited to the INI
configuration file. Downloaded media is written by the media layer.
"""

from .config_manager import ConfigManager

__all__ = ["ConfigManager"]
