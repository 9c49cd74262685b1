"""
Configuration dataclasses for the chronophoto pipeline.

Each behaviour axis (compositing, background, outlier detection, outlier
selection, compression) is a closed :class:`~enum.Enum`; the reductions that
implement them live in :mod:`chronophoto.compositing`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from .exceptions import ConfigError


class CompositeMode(Enum):
    """Reduction applied to a pixel's temporal sequence."""

    LIGHTEN = "lighten"  # Per-channel maximum
    DARKEN = "darken"  # Per-channel minimum
    AVERAGE = "average"  # Per-channel rounded mean
    OUTLIER = "outlier"  # Selected outlier sample, else background


class BackgroundKind(Enum):
    """Source of the per-pixel reference used by outlier detection."""

    FRAME = "frame"  # A fixed reference frame
    MEDIAN = "median"  # Per-pixel median over time
    MEAN = "mean"  # Per-pixel mean over time
    DISABLED = "disabled"


class OutlierKind(Enum):
    """How the outlier threshold is interpreted."""

    NONE = "none"
    ABSOLUTE = "absolute"  # Threshold in sample units
    RELATIVE = "relative"  # Threshold as a fraction of the max sample value


class OutlierSelect(Enum):
    """Which flagged sample the outlier compositing mode keeps."""

    EXTREME = "extreme"
    FIRST = "first"
    LAST = "last"
    AVERAGE = "average"


class Compression(Enum):
    """On-disk encoding of time-slice payloads."""

    NONE = "none"
    GZIP = "gzip"
    ZLIB = "zlib"
    DEFLATE = "deflate"


@dataclass(frozen=True)
class BackgroundConfig:
    """Background policy and its parameters."""

    kind: BackgroundKind = BackgroundKind.MEDIAN
    """Background source."""

    frame_index: int = 0
    """Reference frame for kind=FRAME. Negative values count from the end."""

    @property
    def enabled(self) -> bool:
        return self.kind is not BackgroundKind.DISABLED


@dataclass(frozen=True)
class OutlierConfig:
    """Outlier detection policy and its parameters."""

    kind: OutlierKind = OutlierKind.ABSOLUTE
    """Threshold interpretation, or NONE to disable detection."""

    threshold: float = 50.0
    """Deviation above which a sample is flagged (strictly greater)."""

    select: OutlierSelect = OutlierSelect.EXTREME
    """Sample kept by CompositeMode.OUTLIER when a pixel has outliers."""

    @property
    def enabled(self) -> bool:
        return self.kind is not OutlierKind.NONE

    def absolute_threshold(self, max_value: int) -> float:
        """
        Threshold in sample units for a given sample range.

        Parameters
        ----------
        max_value : int
            Largest representable sample (255 or 65535).
        """
        if self.kind is OutlierKind.RELATIVE:
            return self.threshold * max_value
        return self.threshold


@dataclass(frozen=True)
class SliceConfig:
    """
    Chunking of the pixel space into time slices.

    At most one of ``chunks`` and ``rows`` should be set; when neither is set,
    chunks are sized from the memory budget.
    """

    budget_mb: float = 256.0
    """Compositing memory budget in MiB, divided between the workers to size one
    chunk's temporal stack."""

    chunks: int | None = None
    """Explicit number of chunks."""

    rows: int | None = None
    """Image rows per chunk."""

    @property
    def budget_bytes(self) -> int:
        return int(self.budget_mb * 1024 * 1024)


@dataclass(frozen=True)
class ChronoConfig:
    """
    Configuration for one compositing run.

    Immutable for the duration of the run.
    """

    mode: CompositeMode = CompositeMode.LIGHTEN
    """Compositing reduction."""

    background: BackgroundConfig = field(default_factory=BackgroundConfig)
    """Background policy."""

    outlier: OutlierConfig = field(default_factory=OutlierConfig)
    """Outlier policy."""

    compression: Compression = Compression.NONE
    """Time-slice encoding. Writer and reader share this value."""

    slicing: SliceConfig = field(default_factory=SliceConfig)
    """Chunking of the pixel space."""

    workers: int | None = None
    """Aggregation workers. None = auto-detect (CPU count - 1)."""

    def validate(self) -> None:
        """Validate configuration parameters."""
        if self.outlier.enabled:
            if not self.background.enabled:
                raise ConfigError(
                    "Outlier detection requires a background policy",
                    details={"outlier": self.outlier.kind.value, "background": "disabled"},
                )
            if self.outlier.threshold <= 0:
                raise ConfigError(
                    f"threshold must be positive, got {self.outlier.threshold}",
                    details={"threshold": self.outlier.threshold},
                )
            if self.outlier.kind is OutlierKind.RELATIVE and self.outlier.threshold > 1.0:
                raise ConfigError(
                    f"relative threshold must be in (0, 1], got {self.outlier.threshold}",
                    details={"threshold": self.outlier.threshold},
                )
        if self.mode is CompositeMode.OUTLIER and not self.outlier.enabled:
            raise ConfigError(
                "Outlier compositing requires outlier detection",
                details={"mode": self.mode.value, "outlier": self.outlier.kind.value},
            )
        if self.slicing.budget_mb <= 0:
            raise ConfigError(f"budget_mb must be positive, got {self.slicing.budget_mb}")
        if self.slicing.chunks is not None and self.slicing.rows is not None:
            raise ConfigError(
                "Set at most one of chunks and rows",
                details={"chunks": self.slicing.chunks, "rows": self.slicing.rows},
            )
        if self.slicing.chunks is not None and self.slicing.chunks < 1:
            raise ConfigError(f"chunks must be >= 1, got {self.slicing.chunks}")
        if self.slicing.rows is not None and self.slicing.rows < 1:
            raise ConfigError(f"rows must be >= 1, got {self.slicing.rows}")
        if self.workers is not None and self.workers < 1:
            raise ConfigError(f"workers must be >= 1, got {self.workers}")


@dataclass
class ChronoResult:
    """
    Record of a compositing run.

    Contains what is needed to understand and reproduce the result.
    """

    pattern: str
    """Input file pattern."""

    # --- Frame accounting ---
    inputs: list[str] = field(default_factory=list)
    """Matched input files, in temporal order."""

    frame_count: int = 0
    """Frames consumed by the transpose stage."""

    layout: str = ""
    """Shared frame layout (e.g. '4000x3000x3 uint8')."""

    # --- Staging ---
    temp_dir: str = ""
    """Directory holding the time slices."""

    n_slices: int = 0
    """Number of time slices written."""

    # --- Outputs ---
    outputs: dict[str, str] = field(default_factory=dict)
    """Map of output type to path (e.g. 'composite' -> '/path/to/out.png')."""

    # --- Statistics ---
    stats: dict[str, float] = field(default_factory=dict)
    """Computed statistics (e.g. 'outlier_fraction', 'slice_seconds')."""

    # --- Configuration ---
    config: ChronoConfig | None = None
    """Configuration used for this run."""

    # --- Metadata ---
    version: str = ""
    timestamp: str = ""
    platform: str = ""
