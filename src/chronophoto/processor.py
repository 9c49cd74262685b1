"""
Aggregation of time slices into the composite and outlier-mask buffers.

Each slice is processed end to end by one task: read its temporal stack,
reduce it, and write the rows of the output buffers it owns. Slices cover
disjoint pixel ranges, so tasks write without synchronization and the result
does not depend on the number of workers.
"""

from __future__ import annotations

import logging
import os
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from pathlib import Path

import numpy as np

from .cli_output import create_progress_bar
from .compositing import reduce_block
from .config import ChronoConfig
from .exceptions import LayoutError
from .layout import Layout
from .timeslice import read_header, read_time_slice

logger = logging.getLogger(__name__)

# Use all available CPUs but leave one free for system
DEFAULT_WORKERS = max(1, os.cpu_count() - 1) if os.cpu_count() else 4


def slice_budget(budget_bytes: int, workers: int | None = None) -> int:
    """
    Per-slice share of the compositing memory budget.

    Each worker holds one loaded slice at a time, so the budget is divided
    between ``workers`` (default :data:`DEFAULT_WORKERS`). Background and
    deviation buffers come on top of the slice itself.
    """
    workers = workers if workers else DEFAULT_WORKERS
    return max(1, budget_bytes // workers)


def check_partition(ranges: list[tuple[int, int]], n_pixels: int) -> None:
    """
    Verify that pixel ranges exactly partition ``[0, n_pixels)``.

    Raises
    ------
    LayoutError
        On a gap, an overlap, or coverage past the end.
    """
    position = 0
    for start, stop in sorted(ranges):
        if start != position:
            kind = "gap" if start > position else "overlap"
            raise LayoutError(
                f"Time slices leave a {kind} at pixel {min(start, position)}",
                details={"expected_start": position, "start": start},
            )
        position = stop
    if position != n_pixels:
        raise LayoutError(
            "Time slices do not cover the frame exactly",
            details={"covered": position, "n_pixels": n_pixels},
        )


@dataclass
class ChronoOutput:
    """Output buffers of a run, all sharing the input layout."""

    composite: np.ndarray
    """Composite image, (H, W, C)."""

    mask: np.ndarray
    """Outlier mask, (H, W, C): max sample value where a pixel had outliers, else 0."""

    outlier_frame: np.ndarray
    """Most deviant flagged frame per pixel or -1, (H, W) int32."""

    frame_count: int

    @property
    def outlier_pixels(self) -> int:
        return int(np.count_nonzero(self.outlier_frame >= 0))

    @property
    def outlier_fraction(self) -> float:
        return self.outlier_pixels / self.outlier_frame.size


class ChronoProcessor:
    """
    Reduces time slices into output buffers.

    Parameters
    ----------
    config : ChronoConfig
        Run configuration. Validated on construction.

    Examples
    --------
    >>> processor = ChronoProcessor(ChronoConfig(mode=CompositeMode.LIGHTEN))
    >>> output = processor.process(slices.layout, slices.paths, slices.frame_count)
    >>> output.composite.shape
    (3000, 4000, 3)
    """

    def __init__(self, config: ChronoConfig):
        config.validate()
        self.config = config

    def _resolve_workers(self, n_slices: int) -> int:
        workers = self.config.workers if self.config.workers else DEFAULT_WORKERS
        return max(1, min(workers, n_slices))

    def _process_slice(
        self,
        path: Path,
        layout: Layout,
        frame_count: int | None,
        composite: np.ndarray,
        mask: np.ndarray,
        outlier_frame: np.ndarray,
    ) -> tuple[int, int]:
        """Reduce one slice into its region of the output buffers. Returns its pixel range."""
        time_slice = read_time_slice(
            path,
            compression=self.config.compression,
            channels=layout.channels,
            frame_count=frame_count,
            dtype=layout.np_dtype,
        )
        if time_slice.stop > layout.n_pixels:
            raise LayoutError(
                "Time slice extends past the end of the frame",
                details={"path": str(path), "stop": time_slice.stop, "n_pixels": layout.n_pixels},
            )

        result = reduce_block(time_slice.frames_major(), self.config, layout.max_value)

        region = slice(time_slice.start, time_slice.stop)
        composite[region] = result.composite
        mask[region] = np.where(result.mask[:, np.newaxis], layout.max_value, 0)
        outlier_frame[region] = result.outlier_frame

        logger.debug(
            "Reduced %s: pixels %d-%d, %d outliers",
            path.name, time_slice.start, time_slice.stop - 1, int(result.mask.sum()),
        )
        return time_slice.start, time_slice.stop

    def process(
        self,
        layout: Layout,
        slice_paths: list[Path],
        frame_count: int | None = None,
        show_progress: bool = False,
    ) -> ChronoOutput:
        """
        Composite all time slices.

        Parameters
        ----------
        layout : Layout
            Layout shared by the input frames.
        slice_paths : list[Path]
            Time slices covering every pixel exactly once.
        frame_count : int, optional
            Number of input frames. When given, every slice must hold exactly
            this many frames.
        show_progress : bool, default False
            Show a progress bar.

        Returns
        -------
        ChronoOutput
            Composite, mask and outlier-frame buffers.

        Raises
        ------
        ChronoError
            The first error raised while processing any slice. Remaining
            slices are cancelled and no output is returned.
        LayoutError
            If the slices do not cover every pixel exactly once.
        """
        slice_paths = [Path(p) for p in slice_paths]
        n_slices = len(slice_paths)
        if n_slices == 0:
            raise LayoutError("No time slices to process")

        if frame_count is None:
            # Every slice must match the first one
            frame_count = read_header(slice_paths[0]).frame_count

        n_pixels = layout.n_pixels
        composite = np.zeros((n_pixels, layout.channels), dtype=layout.np_dtype)
        mask = np.zeros((n_pixels, layout.channels), dtype=layout.np_dtype)
        outlier_frame = np.full(n_pixels, -1, dtype=np.int32)

        workers = self._resolve_workers(n_slices)
        logger.info(
            "Processing %d time slices (%s, mode=%s, background=%s, outlier=%s) with %d workers",
            n_slices,
            layout.describe(),
            self.config.mode.value,
            self.config.background.kind.value,
            self.config.outlier.kind.value,
            workers,
        )

        args = (layout, frame_count, composite, mask, outlier_frame)
        ranges: list[tuple[int, int]] = []

        pbar = create_progress_bar(
            total=n_slices,
            desc=f"Compositing ({workers} workers)",
            unit="slice",
            disable=not show_progress,
        )
        with pbar:
            if workers <= 1:
                for path in slice_paths:
                    ranges.append(self._process_slice(path, *args))
                    pbar.update(1)
            else:
                with ThreadPoolExecutor(max_workers=workers) as executor:
                    futures = {
                        executor.submit(self._process_slice, path, *args): path
                        for path in slice_paths
                    }
                    for future in as_completed(futures):
                        try:
                            ranges.append(future.result())
                        except Exception:
                            for pending in futures:
                                pending.cancel()
                            logger.error("Aborting: failed while processing %s", futures[future].name)
                            raise
                        pbar.update(1)

        check_partition(ranges, n_pixels)

        output = ChronoOutput(
            composite=composite.reshape(layout.shape),
            mask=mask.reshape(layout.shape),
            outlier_frame=outlier_frame.reshape(layout.height, layout.width),
            frame_count=frame_count,
        )
        logger.info(
            "Compositing complete. Outlier pixels: %d (%.2f%%)",
            output.outlier_pixels, 100.0 * output.outlier_fraction,
        )
        return output
