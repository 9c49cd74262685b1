"""
Exception hierarchy for the chronophoto pipeline.

Every error raised by the slicing and aggregation stages derives from
:class:`ChronoError`, so callers can catch the whole family with one clause
and still tell the stages apart when they need to.
"""

from __future__ import annotations

from typing import Any


class ChronoError(Exception):
    """
    Base exception for all chronophoto errors.

    Parameters
    ----------
    message : str
        Human-readable error description.
    details : dict, optional
        Additional context (paths, offending values, ...).
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} [{details_str}]"
        return self.message


class PatternError(ChronoError):
    """Raised when an input pattern matches no files."""

    def __init__(self, pattern: str):
        super().__init__(
            f"No input files match pattern: {pattern}",
            details={"pattern": pattern},
        )


class DecodeError(ChronoError):
    """Raised when a frame cannot be decoded into a sample buffer."""

    def __init__(self, path: str, reason: str):
        super().__init__(
            f"Unable to decode frame {path}: {reason}",
            details={"path": path},
        )


class EncodeError(ChronoError):
    """Raised when an output buffer cannot be written in the requested format."""

    def __init__(self, path: str, reason: str):
        super().__init__(
            f"Unable to write image {path}: {reason}",
            details={"path": path},
        )


class LayoutError(ChronoError):
    """Raised when sample data disagrees with the run's layout."""


class LayoutMismatchError(LayoutError):
    """Raised when a frame's layout differs from the first frame's."""

    def __init__(self, index: int, expected: Any, actual: Any, source: str = ""):
        details = {"frame": index, "expected": expected, "actual": actual}
        if source:
            details["source"] = source
        super().__init__("Frame layout differs from the run layout", details=details)


class StorageError(ChronoError):
    """Raised when a time-slice file cannot be created, written or read."""

    def __init__(self, path: str, reason: str):
        super().__init__(
            f"Time-slice storage failure for {path}: {reason}",
            details={"path": path},
        )


class CompressionError(ChronoError):
    """Raised when a time-slice payload is corrupt or truncated."""


class ConfigError(ChronoError, ValueError):
    """Raised for invalid mode, policy or threshold combinations."""


class StreamConsumedError(ChronoError):
    """Raised when a single-pass frame stream is iterated twice."""
