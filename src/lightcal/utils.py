"""
Utility functions for lightcal.

Includes:
- Version info
- Platform and timestamp helpers
- File/path helpers

Author: Olivier Vitrac, PhD, HDR
        Generative Simulation Initiative
        olivier.vitrac@gmail.com
"""

from __future__ import annotations

import platform
import sys
from datetime import datetime, timezone
from pathlib import Path

__version__ = "0.3.0-beta"
__version_info__ = {
    "major": 0,
    "minor": 3,
    "patch": 0,
    "status": "beta",
    "date": "2026-10-19",
}


def get_version() -> str:
    """Return the library version string."""
    return __version__


def get_platform_info() -> str:
    """Return platform information string."""
    return f"{platform.system()} {platform.release()} / Python {sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}"


def get_timestamp_iso() -> str:
    """Return current UTC timestamp in ISO format."""
    return datetime.now(timezone.utc).isoformat()


def sanitize_filename(name: str) -> str:
    """
    Sanitize a string for use as a filename.

    Replaces problematic characters with underscores.
    """
    # Characters that are problematic on various filesystems
    bad_chars = '<>:"/\\|?*'
    result = name
    for char in bad_chars:
        result = result.replace(char, "_")
    return result


def calibrated_path(source: str | Path, output_dir: str | Path, suffix: str = "_cal") -> Path:
    """
    Output path of a calibrated frame.

    Parameters
    ----------
    source : str or Path
        Path of the light frame.
    output_dir : str or Path
        Output directory.
    suffix : str, default "_cal"
        Appended to the file stem.

    Returns
    -------
    Path
        ``output_dir / <stem><suffix>.fits``
    """
    stem = sanitize_filename(Path(source).stem)
    return Path(output_dir) / f"{stem}{suffix}.fits"


def format_duration(seconds: float) -> str:
    """
    Format duration in human-readable form.

    Returns
    -------
    str
        Formatted string like "2h 15m 30s" or "45.2s".
    """
    if seconds < 60:
        return f"{seconds:.1f}s"
    elif seconds < 3600:
        minutes = int(seconds // 60)
        secs = seconds % 60
        return f"{minutes}m {secs:.0f}s"
    else:
        hours = int(seconds // 3600)
        minutes = int((seconds % 3600) // 60)
        secs = seconds % 60
        return f"{hours}h {minutes}m {secs:.0f}s"
