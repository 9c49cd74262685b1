"""
Utility functions for chronophoto.

Includes:
- Version info
- Platform and timestamp helpers for run records
- Duration formatting
"""

from __future__ import annotations

import platform
import sys
from datetime import datetime, timezone

__version__ = "0.1.0"
__version_info__ = {
    "major": 0,
    "minor": 1,
    "patch": 0,
    "status": "alpha",
    "date": "2026-10-16",
}


def get_version_banner() -> str:
    """Return a formatted version banner for logging."""
    return f"chronophoto v{__version__} | Time-lapse compositing"


def get_version() -> str:
    """Return the library version string."""
    return __version__


def get_platform_info() -> str:
    """Return platform information string."""
    return f"{platform.system()} {platform.release()} / Python {sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}"


def get_timestamp_iso() -> str:
    """Return current UTC timestamp in ISO format."""
    return datetime.now(timezone.utc).isoformat()


def format_duration(seconds: float) -> str:
    """
    Format duration in human-readable form.

    Parameters
    ----------
    seconds : float
        Duration in seconds.

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
