"""
chronophoto - Long-exposure compositing of time-lapse photo sequences.

Transposes a frame sequence into disk-backed time slices, then composites
every pixel's temporal sequence (lighten, darken, average or outlier) and
flags anomalous samples into a mask, all in bounded memory.

Example
-------
>>> from chronophoto import run_chrono, ChronoConfig, CompositeMode
>>> config = ChronoConfig(mode=CompositeMode.LIGHTEN)
>>> result = run_chrono("night/IMG_*.jpg", "trails.jpg", outlier_output="mask.png", config=config)
>>> print(result.outputs["composite"])

Example (library use)
---------------------
>>> stream = FrameStream.from_pattern("night/IMG_*.png")
>>> with TempStore() as store:
...     slices = write_time_slices(stream, store.path)
...     store.register(slices.paths)
...     output = ChronoProcessor(config).process(slices.layout, slices.paths)
"""

from .config import (
    BackgroundConfig,
    BackgroundKind,
    ChronoConfig,
    ChronoResult,
    CompositeMode,
    Compression,
    OutlierConfig,
    OutlierKind,
    OutlierSelect,
    SliceConfig,
)
from .exceptions import (
    ChronoError,
    CompressionError,
    ConfigError,
    DecodeError,
    EncodeError,
    LayoutError,
    LayoutMismatchError,
    PatternError,
    StorageError,
    StreamConsumedError,
)
from .layout import Layout
from .utils import __version__, __version_info__, get_version_banner

# Primary entry point
from .cli import run_chrono

# I/O
from .io import FrameStream, list_frames, read_frame, write_image

# Time slices
from .timeslice import (
    TimeSlice,
    TimeSliceHeader,
    TimeSliceWriter,
    read_header,
    read_time_slice,
)
from .slicer import PixelRange, SliceSet, plan_chunks, write_time_slices
from .staging import TempStore, default_temp_dir

# Compositing
from .compositing import (
    BlockResult,
    compute_background,
    detect_outliers,
    reduce_block,
    reduce_sequence,
)
from .processor import ChronoOutput, ChronoProcessor

# Reports
from .report import write_manifest, write_report, write_report_markdown

__all__ = [
    # Version
    "__version__",
    "__version_info__",
    "get_version_banner",
    # Config
    "BackgroundConfig",
    "BackgroundKind",
    "ChronoConfig",
    "ChronoResult",
    "CompositeMode",
    "Compression",
    "OutlierConfig",
    "OutlierKind",
    "OutlierSelect",
    "SliceConfig",
    # Errors
    "ChronoError",
    "CompressionError",
    "ConfigError",
    "DecodeError",
    "EncodeError",
    "LayoutError",
    "LayoutMismatchError",
    "PatternError",
    "StorageError",
    "StreamConsumedError",
    # Main entry point
    "run_chrono",
    # I/O
    "Layout",
    "FrameStream",
    "list_frames",
    "read_frame",
    "write_image",
    # Time slices
    "TimeSlice",
    "TimeSliceHeader",
    "TimeSliceWriter",
    "read_header",
    "read_time_slice",
    "PixelRange",
    "SliceSet",
    "plan_chunks",
    "write_time_slices",
    "TempStore",
    "default_temp_dir",
    # Compositing
    "BlockResult",
    "compute_background",
    "detect_outliers",
    "reduce_block",
    "reduce_sequence",
    "ChronoOutput",
    "ChronoProcessor",
    # Reports
    "write_manifest",
    "write_report",
    "write_report_markdown",
]
