"""
Per-pixel temporal reductions.

Every reduction works on a block of shape (T, P, C): T frames, P pixels,
C channels, as loaded from a time slice. A single pixel's sequence is the
P = 1 case, see :func:`reduce_sequence`.

Components:
- Compositing reducers (lighten, darken, average, outlier), one per
  :class:`~chronophoto.config.CompositeMode`
- Background estimators, one per :class:`~chronophoto.config.BackgroundKind`
- Outlier detection against the background

Flagged samples never alter lighten, darken or average results; they are
reported through the mask. Only the outlier mode consumes them.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

import numpy as np

from .config import (
    BackgroundConfig,
    BackgroundKind,
    ChronoConfig,
    CompositeMode,
    OutlierSelect,
)
from .exceptions import ConfigError, LayoutError

logger = logging.getLogger(__name__)


def round_half_up(values: np.ndarray) -> np.ndarray:
    """Round non-negative floats to the nearest integer, halves upward."""
    return np.floor(values + 0.5)


def rounded_mean(block: np.ndarray, axis: int = 0) -> np.ndarray:
    """
    Mean of integer samples rounded half-up, using exact integer arithmetic.

    Parameters
    ----------
    block : np.ndarray
        Unsigned integer samples.
    axis : int, default 0
        Axis to average over.

    Returns
    -------
    np.ndarray
        Rounded mean with the dtype of ``block``.
    """
    n = block.shape[axis]
    total = block.sum(axis=axis, dtype=np.int64)
    return ((2 * total + n) // (2 * n)).astype(block.dtype)


# ----------------------------------------------------------------------------
# Background
# ----------------------------------------------------------------------------


def _background_frame(block: np.ndarray, config: BackgroundConfig) -> np.ndarray:
    n_frames = block.shape[0]
    index = config.frame_index
    if not -n_frames <= index < n_frames:
        raise ConfigError(
            f"Background frame index {index} out of range for {n_frames} frames",
            details={"frame_index": index, "frame_count": n_frames},
        )
    return block[index].astype(np.float64)


def _background_median(block: np.ndarray, config: BackgroundConfig) -> np.ndarray:
    return np.median(block, axis=0)


def _background_mean(block: np.ndarray, config: BackgroundConfig) -> np.ndarray:
    # Exact integer sum keeps the result independent of how pixels are chunked
    return block.sum(axis=0, dtype=np.int64) / block.shape[0]


BACKGROUNDS: dict[BackgroundKind, Callable[[np.ndarray, BackgroundConfig], np.ndarray] | None] = {
    BackgroundKind.FRAME: _background_frame,
    BackgroundKind.MEDIAN: _background_median,
    BackgroundKind.MEAN: _background_mean,
    BackgroundKind.DISABLED: None,
}


def compute_background(block: np.ndarray, config: BackgroundConfig) -> np.ndarray | None:
    """
    Per-pixel background reference.

    Parameters
    ----------
    block : np.ndarray
        Samples of shape (T, P, C).
    config : BackgroundConfig
        Background policy.

    Returns
    -------
    np.ndarray or None
        Float64 background of shape (P, C), or None when disabled.
    """
    estimator = BACKGROUNDS[config.kind]
    if estimator is None:
        return None
    return estimator(block, config)


# ----------------------------------------------------------------------------
# Outlier detection
# ----------------------------------------------------------------------------


@dataclass
class OutlierScan:
    """Per-slot outlier flags of a block."""

    deviation: np.ndarray
    """Largest per-channel absolute deviation from the background, (T, P)."""

    flagged: np.ndarray
    """Slots whose deviation exceeds the threshold, (T, P) bool."""

    @property
    def any(self) -> np.ndarray:
        """Pixels with at least one flagged slot, (P,) bool."""
        return self.flagged.any(axis=0)

    @property
    def count(self) -> np.ndarray:
        """Flagged slots per pixel, (P,)."""
        return self.flagged.sum(axis=0)

    @property
    def extreme_index(self) -> np.ndarray:
        """
        Most deviant flagged slot per pixel, earliest on ties; -1 when the
        pixel has no outlier. Shape (P,), int32.
        """
        masked = np.where(self.flagged, self.deviation, -1.0)
        index = masked.argmax(axis=0).astype(np.int32)
        index[~self.any] = -1
        return index

    @property
    def first_index(self) -> np.ndarray:
        index = self.flagged.argmax(axis=0).astype(np.int32)
        index[~self.any] = -1
        return index

    @property
    def last_index(self) -> np.ndarray:
        n_frames = self.flagged.shape[0]
        index = (n_frames - 1 - self.flagged[::-1].argmax(axis=0)).astype(np.int32)
        index[~self.any] = -1
        return index


def detect_outliers(
    block: np.ndarray,
    background: np.ndarray,
    threshold: float,
) -> OutlierScan:
    """
    Flag samples deviating from the background by more than ``threshold``.

    Parameters
    ----------
    block : np.ndarray
        Samples of shape (T, P, C).
    background : np.ndarray
        Background of shape (P, C).
    threshold : float
        Absolute threshold in sample units. A slot is flagged when its
        deviation is strictly greater.

    Returns
    -------
    OutlierScan
        Deviation and flags per (frame, pixel).

    Notes
    -----
    The deviation of a slot is the maximum over channels of
    ``|sample - background|``. A single frame never yields outliers.
    """
    n_frames, n_pixels, n_channels = block.shape

    background = np.asarray(background, dtype=np.float64)
    deviation = np.zeros((n_frames, n_pixels), dtype=np.float64)
    for c in range(n_channels):
        channel_dev = np.abs(block[:, :, c].astype(np.float64) - background[np.newaxis, :, c])
        np.maximum(deviation, channel_dev, out=deviation)

    if n_frames < 2:
        flagged = np.zeros((n_frames, n_pixels), dtype=bool)
    else:
        flagged = deviation > threshold

    return OutlierScan(deviation=deviation, flagged=flagged)


# ----------------------------------------------------------------------------
# Compositing reducers
# ----------------------------------------------------------------------------


@dataclass
class ReductionContext:
    """Inputs shared by the reducers of one block."""

    max_value: int
    background: np.ndarray | None = None
    scan: OutlierScan | None = None
    select: OutlierSelect = OutlierSelect.EXTREME


Reducer = Callable[[np.ndarray, ReductionContext], np.ndarray]


def lighten(block: np.ndarray, ctx: ReductionContext) -> np.ndarray:
    """Per-channel maximum over time."""
    return block.max(axis=0)


def darken(block: np.ndarray, ctx: ReductionContext) -> np.ndarray:
    """Per-channel minimum over time."""
    return block.min(axis=0)


def average(block: np.ndarray, ctx: ReductionContext) -> np.ndarray:
    """Per-channel mean over time, rounded half-up."""
    return rounded_mean(block, axis=0)


def _flagged_mean(block: np.ndarray, flagged: np.ndarray) -> np.ndarray:
    """Rounded mean of the flagged samples of each pixel (0 where none)."""
    n_frames, n_pixels, n_channels = block.shape
    sums = np.zeros((n_pixels, n_channels), dtype=np.int64)
    for t in range(n_frames):
        np.add(sums, block[t], out=sums, where=flagged[t][:, np.newaxis])
    counts = flagged.sum(axis=0, dtype=np.int64)[:, np.newaxis]
    safe = np.maximum(counts, 1)
    return ((2 * sums + safe) // (2 * safe)).astype(block.dtype)


def outlier(block: np.ndarray, ctx: ReductionContext) -> np.ndarray:
    """
    Background-aware compositing.

    Pixels with at least one outlier take the selected outlier sample;
    all others take the rounded background.
    """
    if ctx.background is None or ctx.scan is None:
        raise ConfigError("Outlier compositing requires a background and outlier detection")

    result = np.clip(round_half_up(ctx.background), 0, ctx.max_value).astype(block.dtype)
    has_outlier = ctx.scan.any
    if not has_outlier.any():
        return result

    if ctx.select is OutlierSelect.AVERAGE:
        picked = _flagged_mean(block, ctx.scan.flagged)
    else:
        index = {
            OutlierSelect.EXTREME: ctx.scan.extreme_index,
            OutlierSelect.FIRST: ctx.scan.first_index,
            OutlierSelect.LAST: ctx.scan.last_index,
        }[ctx.select]
        picked = block[np.maximum(index, 0), np.arange(block.shape[1])]

    result[has_outlier] = picked[has_outlier]
    return result


REDUCERS: dict[CompositeMode, Reducer] = {
    CompositeMode.LIGHTEN: lighten,
    CompositeMode.DARKEN: darken,
    CompositeMode.AVERAGE: average,
    CompositeMode.OUTLIER: outlier,
}


def _check_complete(table: dict, enum_cls) -> None:
    missing = set(enum_cls) - set(table)
    if missing:
        raise RuntimeError(f"No entry for {sorted(m.value for m in missing)} in {enum_cls.__name__} table")


_check_complete(REDUCERS, CompositeMode)
_check_complete(BACKGROUNDS, BackgroundKind)


# ----------------------------------------------------------------------------
# Block entry point
# ----------------------------------------------------------------------------


@dataclass
class BlockResult:
    """Reduction of one block."""

    composite: np.ndarray
    """Composite samples, (P, C)."""

    mask: np.ndarray
    """Pixels with at least one outlier, (P,) bool."""

    outlier_frame: np.ndarray
    """Most deviant flagged frame per pixel or -1, (P,) int32."""


def reduce_block(block: np.ndarray, config: ChronoConfig, max_value: int) -> BlockResult:
    """
    Composite a block and detect its outliers.

    Parameters
    ----------
    block : np.ndarray
        Samples of shape (T, P, C), uint8 or uint16.
    config : ChronoConfig
        Run configuration.
    max_value : int
        Largest representable sample value.

    Returns
    -------
    BlockResult
        Composite samples, outlier mask and outlier frame indices.
    """
    if block.ndim != 3:
        raise LayoutError(
            f"Expected a (frames, pixels, channels) block, got shape {block.shape}"
        )
    n_frames, n_pixels, _ = block.shape
    if n_frames == 0:
        raise LayoutError("Cannot reduce an empty temporal sequence")

    needs_background = config.outlier.enabled or config.mode is CompositeMode.OUTLIER
    background = compute_background(block, config.background) if needs_background else None

    scan = None
    if config.outlier.enabled and background is not None:
        scan = detect_outliers(block, background, config.outlier.absolute_threshold(max_value))

    ctx = ReductionContext(
        max_value=max_value,
        background=background,
        scan=scan,
        select=config.outlier.select,
    )
    composite = REDUCERS[config.mode](block, ctx)

    if scan is not None:
        mask = scan.any
        outlier_frame = scan.extreme_index
    else:
        mask = np.zeros(n_pixels, dtype=bool)
        outlier_frame = np.full(n_pixels, -1, dtype=np.int32)

    return BlockResult(composite=composite, mask=mask, outlier_frame=outlier_frame)


def reduce_sequence(
    sequence: np.ndarray,
    config: ChronoConfig,
    max_value: int | None = None,
) -> tuple[np.ndarray, bool]:
    """
    Reduce the temporal sequence of a single pixel.

    Parameters
    ----------
    sequence : np.ndarray
        Samples of shape (T,) or (T, C).
    config : ChronoConfig
        Run configuration.
    max_value : int, optional
        Largest representable sample. Defaults to the dtype maximum.

    Returns
    -------
    tuple[np.ndarray, bool]
        (samples of shape (C,), outlier flag)
    """
    sequence = np.asarray(sequence)
    if sequence.ndim == 1:
        sequence = sequence[:, np.newaxis]
    if max_value is None:
        max_value = int(np.iinfo(sequence.dtype).max)
    result = reduce_block(sequence[:, np.newaxis, :], config, max_value)
    return result.composite[0], bool(result.mask[0])
