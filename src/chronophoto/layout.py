"""
Sample layout of decoded frames.

A :class:`Layout` describes the geometry and sample type shared by every frame
of a run. The slicer stores it implicitly (channels and sample width go into
each time-slice header) and the processor uses it to allocate output buffers.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from .exceptions import LayoutError

# Sample types accepted on input, keyed by bytes per sample
SAMPLE_DTYPES = {
    1: np.dtype(np.uint8),
    2: np.dtype(np.uint16),
}


@dataclass(frozen=True)
class Layout:
    """Geometry and sample type of a decoded frame."""

    width: int
    height: int
    channels: int
    dtype: str = "uint8"
    """Sample type name: 'uint8' or 'uint16'."""

    def __post_init__(self) -> None:
        if self.width < 1 or self.height < 1:
            raise LayoutError(
                "Frame dimensions must be positive",
                details={"width": self.width, "height": self.height},
            )
        if self.channels < 1:
            raise LayoutError(
                "Frame must have at least one channel",
                details={"channels": self.channels},
            )
        try:
            supported = np.dtype(self.dtype) in SAMPLE_DTYPES.values()
        except TypeError:
            supported = False
        if not supported:
            raise LayoutError(
                "Unsupported sample type",
                details={"dtype": self.dtype},
            )

    @classmethod
    def from_array(cls, samples: np.ndarray) -> Layout:
        """
        Derive the layout of a decoded frame.

        Parameters
        ----------
        samples : np.ndarray
            Frame of shape (H, W) or (H, W, C).

        Returns
        -------
        Layout
            Layout of the frame. 2D frames have one channel.
        """
        if samples.ndim == 2:
            height, width = samples.shape
            channels = 1
        elif samples.ndim == 3:
            height, width, channels = samples.shape
        else:
            raise LayoutError(
                f"Expected a 2D or 3D frame, got {samples.ndim} dimensions",
                details={"shape": samples.shape},
            )
        return cls(width=width, height=height, channels=channels, dtype=samples.dtype.name)

    @property
    def np_dtype(self) -> np.dtype:
        return np.dtype(self.dtype)

    @property
    def sample_bytes(self) -> int:
        return self.np_dtype.itemsize

    @property
    def max_value(self) -> int:
        """Largest representable sample value."""
        return int(np.iinfo(self.np_dtype).max)

    @property
    def stride(self) -> int:
        """Samples per row."""
        return self.width * self.channels

    @property
    def n_pixels(self) -> int:
        return self.width * self.height

    @property
    def shape(self) -> tuple[int, int, int]:
        """Array shape (H, W, C) of a frame or output buffer with this layout."""
        return (self.height, self.width, self.channels)

    @property
    def frame_bytes(self) -> int:
        return self.n_pixels * self.channels * self.sample_bytes

    def describe(self) -> str:
        return f"{self.width}x{self.height}x{self.channels} {self.dtype}"


def dtype_for_sample_bytes(sample_bytes: int) -> np.dtype:
    """
    Return the sample dtype stored with the given width.

    Raises
    ------
    LayoutError
        If the width does not correspond to a supported sample type.
    """
    try:
        return SAMPLE_DTYPES[sample_bytes]
    except KeyError:
        raise LayoutError(
            "Unsupported sample width",
            details={"sample_bytes": sample_bytes},
        ) from None
