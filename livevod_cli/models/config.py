"""
Pydantic model for application configuration.
Provides robust validation for all settings.
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator

SUPPORTED_CONTAINERS = ("mp4", "mkv", "flv", "ts")

# ffmpeg muxer names differ from file extensions for some containers
CONTAINER_FORMATS = {
    "mp4": "mp4",
    "mkv": "matroska",
    "flv": "flv",
    "ts": "mpegts",
}


class DownloadConfig(BaseModel):
    """A validated configuration model for the application."""

    model_config = ConfigDict(validate_assignment=True, str_strip_whitespace=True)

    # Download Settings
    save_path: str
    max_concurrent: int = 3
    container: str = "mp4"
    verify_integrity: bool = True
    tolerance: float = 0.01

    # ffmpeg Settings
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = ""
    connect_timeout: float = 10.0
    reconnect_delay_max: int = 5
    kill_timeout: float = 5.0

    # Internal fields not loaded from INI file
    config_path: str = Field(..., repr=False)

    @field_validator("max_concurrent")
    @classmethod
    def validate_concurrency(cls, v: int) -> int:
        """Ensures a reasonable number of simultaneous captures."""
        if v < 1 or v > 16:
            raise ValueError("Max concurrent downloads must be between 1 and 16.")
        return v

    @field_validator("save_path")
    @classmethod
    def validate_save_path(cls, v: str) -> str:
        if not v:
            raise ValueError("Save path cannot be empty.")
        return v

    @field_validator("container")
    @classmethod
    def validate_container(cls, v: str) -> str:
        v = v.lower().lstrip(".")
        if v not in SUPPORTED_CONTAINERS:
            raise ValueError(
                f"Container must be one of: {', '.join(SUPPORTED_CONTAINERS)}."
            )
        return v

    @field_validator("tolerance")
    @classmethod
    def validate_tolerance(cls, v: float) -> float:
        if not 0 <= v < 1:
            raise ValueError("Duration tolerance must be between 0 and 1.")
        return v

    @field_validator("connect_timeout", "kill_timeout")
    @classmethod
    def validate_timeouts(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("Timeouts must be positive.")
        return v

    @field_validator("reconnect_delay_max")
    @classmethod
    def validate_reconnect_delay(cls, v: int) -> int:
        if v < 0 or v > 600:
            raise ValueError("reconnect_delay_max must be between 0 and 600 seconds.")
        return v

    @classmethod
    def get_ini_keys(cls) -> set[str]:
        """Returns a set of all keys that are expected in the INI file."""
        internal_fields = {"config_path"}
        return {key for key in cls.model_fields if key not in internal_fields}
