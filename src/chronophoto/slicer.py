"""
Frame-major to pixel-major transpose through disk-backed time slices.

The pixel-index space ``[0, width*height)`` is partitioned into contiguous
chunks whose full temporal stack fits a working-set budget. A single pass over
the frames appends each frame's samples for a chunk to that chunk's
:class:`~chronophoto.timeslice.TimeSliceWriter`, then drops the frame. Memory
therefore stays at one decoded frame plus the writers' buffers, whatever the
number of frames.
"""

from __future__ import annotations

import logging
import math
from contextlib import ExitStack
from dataclasses import dataclass
from itertools import chain
from pathlib import Path

from .cli_output import create_progress_bar
from .config import Compression
from .exceptions import ConfigError, LayoutMismatchError, PatternError
from .layout import Layout
from .staging import slice_filename
from .timeslice import TimeSliceWriter

logger = logging.getLogger(__name__)

DEFAULT_BUDGET_BYTES = 256 * 1024 * 1024
OPEN_FILES_WARNING = 1000


@dataclass(frozen=True)
class PixelRange:
    """Contiguous range of flattened pixel indices."""

    start: int
    count: int

    @property
    def stop(self) -> int:
        return self.start + self.count


@dataclass
class SliceSet:
    """Outcome of the transpose stage."""

    paths: list[Path]
    """Time-slice files, in pixel order."""

    layout: Layout
    """Layout shared by every frame."""

    frame_count: int
    """Frames consumed."""

    ranges: list[PixelRange]
    """Pixel range covered by each slice (parallel to ``paths``)."""

    compression: Compression = Compression.NONE

    def __len__(self) -> int:
        return len(self.paths)


def _even_split(n_pixels: int, n_chunks: int) -> list[PixelRange]:
    """Split ``n_pixels`` into ``n_chunks`` ranges whose sizes differ by at most one."""
    base, extra = divmod(n_pixels, n_chunks)
    ranges = []
    start = 0
    for i in range(n_chunks):
        count = base + 1 if i < extra else base
        ranges.append(PixelRange(start, count))
        start += count
    return ranges


def plan_chunks(
    n_pixels: int,
    frame_count: int,
    channels: int,
    sample_bytes: int = 1,
    *,
    budget_bytes: int | None = None,
    chunk_count: int | None = None,
    pixels_per_chunk: int | None = None,
) -> list[PixelRange]:
    """
    Partition the pixel-index space into contiguous chunks.

    Parameters
    ----------
    n_pixels : int
        Pixels per frame (width * height).
    frame_count : int
        Expected number of frames (used for budget sizing).
    channels : int
        Samples per pixel.
    sample_bytes : int, default 1
        Bytes per sample.
    budget_bytes : int, optional
        Maximum bytes of one chunk's temporal stack. Default 256 MiB.
    chunk_count : int, optional
        Explicit number of chunks (clamped to [1, n_pixels]).
    pixels_per_chunk : int, optional
        Explicit chunk size. Chunks are this size except a shorter last one.

    Returns
    -------
    list[PixelRange]
        Between 1 and ``n_pixels`` non-empty ranges that exactly cover
        ``[0, n_pixels)`` in order.

    Notes
    -----
    Precedence is ``pixels_per_chunk``, then ``chunk_count``, then the budget.
    With the budget, each chunk holds ``budget // (frames * channels *
    sample_bytes)`` pixels at most (at least one), and pixels are spread
    evenly over the resulting number of chunks.
    """
    if n_pixels < 1:
        raise ConfigError(f"n_pixels must be >= 1, got {n_pixels}")

    if pixels_per_chunk is not None:
        size = min(max(1, pixels_per_chunk), n_pixels)
        return [
            PixelRange(start, min(size, n_pixels - start))
            for start in range(0, n_pixels, size)
        ]

    if chunk_count is not None:
        n_chunks = min(max(1, chunk_count), n_pixels)
    else:
        budget = budget_bytes if budget_bytes is not None else DEFAULT_BUDGET_BYTES
        stack_bytes = max(1, frame_count) * channels * sample_bytes
        max_pixels = max(1, budget // stack_bytes)
        n_chunks = math.ceil(n_pixels / max_pixels)

    return _even_split(n_pixels, n_chunks)


def write_time_slices(
    frames,
    temp_dir: str | Path,
    compression: Compression = Compression.NONE,
    *,
    frame_count: int | None = None,
    budget_bytes: int | None = None,
    chunk_count: int | None = None,
    pixels_per_chunk: int | None = None,
    rows_per_chunk: int | None = None,
    show_progress: bool = False,
) -> SliceSet:
    """
    Transpose a frame sequence into time slices on disk.

    Parameters
    ----------
    frames : iterable of (Layout, np.ndarray)
        Decoded frames in temporal order, e.g. a
        :class:`~chronophoto.io.FrameStream`. Consumed once.
    temp_dir : str or Path
        Existing directory receiving the slice files.
    compression : Compression, default NONE
        Payload encoding of the slices.
    frame_count : int, optional
        Expected number of frames. Defaults to ``len(frames)``; required when
        chunks are sized from the budget and ``frames`` has no length.
    budget_bytes, chunk_count, pixels_per_chunk
        Chunk sizing, see :func:`plan_chunks`.
    rows_per_chunk : int, optional
        Chunk size in image rows, resolved against the first frame's width.
        Takes precedence over the other sizing options.
    show_progress : bool, default False
        Show a progress bar.

    Returns
    -------
    SliceSet
        Slice paths, shared layout, and the number of frames consumed.

    Raises
    ------
    PatternError
        If ``frames`` is empty.
    LayoutMismatchError
        If a frame's layout differs from the first frame's.
    StorageError
        If a slice file cannot be created or written. Slices already written
        are left on disk.
    """
    temp_dir = Path(temp_dir)

    if frame_count is None:
        try:
            frame_count = len(frames)
        except TypeError:
            frame_count = None
    explicit = (pixels_per_chunk, chunk_count, rows_per_chunk)
    if frame_count is None and all(v is None for v in explicit):
        raise ConfigError("frame_count is required to size chunks from a memory budget")

    iterator = iter(frames)
    try:
        first = next(iterator)
    except StopIteration:
        raise PatternError("<empty frame sequence>") from None

    layout = first[0]
    if rows_per_chunk is not None:
        pixels_per_chunk = max(1, rows_per_chunk) * layout.width
    ranges = plan_chunks(
        layout.n_pixels,
        frame_count or 1,
        layout.channels,
        layout.sample_bytes,
        budget_bytes=budget_bytes,
        chunk_count=chunk_count,
        pixels_per_chunk=pixels_per_chunk,
    )
    paths = [temp_dir / slice_filename(i) for i in range(len(ranges))]

    logger.info(
        "Slicing %s frames (%s) into %d chunks of ~%d pixels, compression=%s",
        frame_count if frame_count is not None else "?",
        layout.describe(),
        len(ranges),
        ranges[0].count,
        compression.value,
    )
    if len(ranges) > OPEN_FILES_WARNING:
        logger.warning(
            "%d time slices will be open at once; consider a larger budget", len(ranges)
        )

    n_frames = 0
    with ExitStack() as stack:
        writers = [
            stack.enter_context(
                TimeSliceWriter(path, r.start, r.count, layout.channels, layout.np_dtype, compression)
            )
            for path, r in zip(paths, ranges)
        ]

        pbar = stack.enter_context(
            create_progress_bar(
                total=frame_count or 0,
                desc="Slicing",
                unit="frame",
                disable=not show_progress,
            )
        )

        for frame_layout, samples in chain([first], iterator):
            if frame_layout != layout:
                raise LayoutMismatchError(
                    n_frames, expected=layout.describe(), actual=frame_layout.describe()
                )

            flat = samples.reshape(layout.n_pixels, layout.channels)
            for writer, r in zip(writers, ranges):
                writer.append(flat[r.start:r.stop])

            n_frames += 1
            pbar.update(1)

    if frame_count is not None and n_frames != frame_count:
        logger.warning("Expected %d frames, consumed %d", frame_count, n_frames)

    logger.info("Wrote %d time slices for %d frames to %s", len(paths), n_frames, temp_dir)

    return SliceSet(
        paths=paths,
        layout=layout,
        frame_count=n_frames,
        ranges=ranges,
        compression=compression,
    )
