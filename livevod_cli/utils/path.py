"""
Utilities for building safe output paths.
"""

import re
from pathlib import Path

from pathvalidate import sanitize_filename

from livevod_cli.models.job import DEFAULT_TITLE

_ILLEGAL_CHARS_RE = re.compile(r'[<>:"/\\|?*]')


def sanitize_title(title: str) -> str:
    """
    Turns a replay title into a filename stem that is valid on every platform.

    Characters Windows forbids are replaced with '_' so titles stay readable;
    pathvalidate then drops control characters and reserved names.
    """
    replaced = _ILLEGAL_CHARS_RE.sub("_", title).strip()
    sanitized = sanitize_filename(replaced, platform="universal").strip()
    return sanitized or DEFAULT_TITLE


def build_output_path(output_dir: Path, title: str, container: str) -> Path:
    """Returns the final path of a capture named after its replay title."""
    return Path(output_dir) / f"{sanitize_title(title)}.{container}"


def reserve_output_path(
    output_dir: Path, title: str, container: str, claimed: set[Path]
) -> Path:
    """
    Picks a final path that no live capture has claimed and no file occupies.

    Replays often share a title, so clashes get " (2)", " (3)"... appended to the
    stem. The resolved path is added to `claimed`; the caller discards it once
    its capture has ended.
    """
    base = build_output_path(output_dir, title, container)
    candidate = base
    counter = 2
    while candidate.resolve() in claimed or candidate.exists():
        candidate = base.with_name(f"{base.stem} ({counter}){base.suffix}")
        counter += 1
    claimed.add(candidate.resolve())
    return candidate


def create_dir(directory_path: Path) -> None:
    """Creates a directory if it does not already exist."""
    directory_path.mkdir(parents=True, exist_ok=True)
