"""
Frame discovery, decoding and output encoding.

Handles:
- Frame discovery from a glob pattern in deterministic (lexicographic) order
- Decoding image files into (H, W, C) sample arrays via imageio
- Single-pass frame streams with layout validation
- Encoding output buffers
"""

from __future__ import annotations

import glob
import logging
from collections.abc import Iterable, Iterator
from pathlib import Path

import imageio.v3 as iio
import numpy as np

from .exceptions import (
    DecodeError,
    EncodeError,
    LayoutMismatchError,
    PatternError,
    StreamConsumedError,
)
from .layout import Layout

logger = logging.getLogger(__name__)

JPEG_SUFFIXES = {".jpg", ".jpeg"}


def list_frames(pattern: str) -> list[Path]:
    """
    Discover input frames matching a glob pattern.

    Parameters
    ----------
    pattern : str
        Glob-style pattern, e.g. ``"frames/IMG_*.jpg"``. ``**`` matches
        nested directories.

    Returns
    -------
    list[Path]
        Matching files sorted lexicographically, which establishes the
        temporal order.

    Raises
    ------
    PatternError
        If no file matches.
    """
    matches = sorted(
        Path(p) for p in glob.glob(pattern, recursive=True) if Path(p).is_file()
    )
    if not matches:
        raise PatternError(pattern)

    logger.info("Discovered %d frames matching %s", len(matches), pattern)
    return matches


def _normalize_samples(samples: np.ndarray, source: str) -> np.ndarray:
    """Bring a decoded image to an (H, W, C) uint8/uint16 array."""
    if samples.dtype == np.bool_:
        samples = samples.astype(np.uint8) * 255
    if samples.dtype not in (np.uint8, np.uint16):
        raise DecodeError(source, f"unsupported sample type {samples.dtype}")
    if samples.ndim == 2:
        samples = samples[:, :, np.newaxis]
    elif samples.ndim != 3:
        raise DecodeError(source, f"unsupported array shape {samples.shape}")
    return np.ascontiguousarray(samples)


def read_frame(path: str | Path) -> np.ndarray:
    """
    Decode an image file into raw samples.

    Parameters
    ----------
    path : str or Path
        Image file (any format imageio can read).

    Returns
    -------
    np.ndarray
        Samples of shape (H, W, C), dtype uint8 or uint16.

    Raises
    ------
    DecodeError
        If the file cannot be decoded or has an unsupported sample type.
    """
    path = Path(path)
    try:
        samples = iio.imread(path)
    except Exception as e:
        raise DecodeError(str(path), str(e)) from e

    return _normalize_samples(np.asarray(samples), str(path))


class FrameStream:
    """
    Lazy, ordered, single-pass sequence of decoded frames.

    Iterating yields ``(layout, samples)`` pairs. The first frame establishes
    the layout of the run; any later frame with a different layout raises
    :class:`LayoutMismatchError`. A stream can be iterated once; a fresh
    stream is needed to iterate again.

    ``len(stream)`` is the number of frames the stream expects to produce.

    Examples
    --------
    >>> stream = FrameStream.from_pattern("night/IMG_*.png")
    >>> for layout, samples in stream:
    ...     pass
    """

    def __init__(self, sources: list, loader, labels: list[str] | None = None):
        self._sources = sources
        self._loader = loader
        self._labels = labels or [f"frame[{i}]" for i in range(len(sources))]
        self._consumed = False
        self.layout: Layout | None = None

    @classmethod
    def from_pattern(cls, pattern: str) -> FrameStream:
        """Create a stream decoding the files matched by ``pattern``."""
        paths = list_frames(pattern)
        return cls(paths, read_frame, labels=[str(p) for p in paths])

    @classmethod
    def from_paths(cls, paths: Iterable[str | Path]) -> FrameStream:
        """Create a stream over explicit files, kept in the given order."""
        paths = [Path(p) for p in paths]
        return cls(paths, read_frame, labels=[str(p) for p in paths])

    @classmethod
    def from_arrays(cls, arrays: Iterable[np.ndarray]) -> FrameStream:
        """Create a stream over frames that are already decoded."""
        arrays = list(arrays)
        return cls(arrays, lambda a: _normalize_samples(np.asarray(a), "array"))

    @property
    def sources(self) -> list[str]:
        return list(self._labels)

    def __len__(self) -> int:
        return len(self._sources)

    def __iter__(self) -> Iterator[tuple[Layout, np.ndarray]]:
        if self._consumed:
            raise StreamConsumedError("Frame stream has already been consumed")
        self._consumed = True
        return self._iterate()

    def _iterate(self) -> Iterator[tuple[Layout, np.ndarray]]:
        for index, (source, label) in enumerate(zip(self._sources, self._labels)):
            samples = self._loader(source)
            layout = Layout.from_array(samples)

            if self.layout is None:
                self.layout = layout
                logger.debug("Run layout from %s: %s", label, layout.describe())
            elif layout != self.layout:
                raise LayoutMismatchError(
                    index,
                    expected=self.layout.describe(),
                    actual=layout.describe(),
                    source=label,
                )

            yield layout, samples


def write_image(
    path: str | Path,
    buffer: np.ndarray,
    quality: int = 95,
) -> Path:
    """
    Encode an output buffer to an image file.

    Parameters
    ----------
    path : str or Path
        Output path. The format follows the extension.
    buffer : np.ndarray
        Samples of shape (H, W, C). Single-channel buffers are written as
        grayscale.
    quality : int, default 95
        JPEG quality (ignored for other formats).

    Returns
    -------
    Path
        The written path.

    Raises
    ------
    EncodeError
        If the directory cannot be created or the format cannot hold the
        buffer (e.g. 16-bit or 4-channel JPEG, unknown extension).
    """
    path = Path(path)

    if buffer.ndim == 3 and buffer.shape[2] == 1:
        buffer = buffer[:, :, 0]

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        if path.suffix.lower() in JPEG_SUFFIXES:
            iio.imwrite(path, buffer, quality=quality)
        else:
            iio.imwrite(path, buffer)
    except Exception as e:
        raise EncodeError(str(path), str(e)) from e

    logger.info("Wrote image: %s", path)
    return path
