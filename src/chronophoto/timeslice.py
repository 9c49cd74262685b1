"""
Binary time-slice files.

A time slice holds the full temporal sample sequence of a contiguous range of
pixels. The transpose stage appends one record per frame; the processor reads
the whole slice back and sees it pixel-major.

File layout (version 1, little-endian)::

    offset  size  field
    0       4     magic b"CHSL"
    4       2     format version
    6       1     compression code (0 none, 1 gzip, 2 zlib, 3 deflate)
    7       1     bytes per sample (1 or 2)
    8       2     channels
    10      2     reserved
    12      8     first pixel index
    20      8     pixel count
    28      4     frame count       (patched on close)
    32      4     CRC32 of payload  (patched on close)
    36      ...   payload

The payload is ``frame_count`` records of ``pixel_count * channels`` samples,
in frame order, optionally compressed as a single zlib-family stream.
"""

from __future__ import annotations

import logging
import struct
import zlib
from dataclasses import dataclass
from pathlib import Path

import numpy as np

from .config import Compression
from .exceptions import CompressionError, ConfigError, LayoutError, StorageError
from .layout import dtype_for_sample_bytes

logger = logging.getLogger(__name__)

MAGIC = b"CHSL"
FORMAT_VERSION = 1

_HEADER = struct.Struct("<4sHBBHHQQII")
_TRAILER = struct.Struct("<II")
HEADER_SIZE = _HEADER.size
_FRAME_COUNT_OFFSET = 28

COMPRESSION_CODES = {
    Compression.NONE: 0,
    Compression.GZIP: 1,
    Compression.ZLIB: 2,
    Compression.DEFLATE: 3,
}
_CODE_TO_COMPRESSION = {code: comp for comp, code in COMPRESSION_CODES.items()}

# zlib window bits selecting the container format
_WBITS = {
    Compression.GZIP: 16 + zlib.MAX_WBITS,
    Compression.ZLIB: zlib.MAX_WBITS,
    Compression.DEFLATE: -zlib.MAX_WBITS,
}

COMPRESSION_LEVEL = 6
IO_BUFFER_SIZE = 1 << 20


@dataclass(frozen=True)
class TimeSliceHeader:
    """Fixed-size header of a time-slice file."""

    compression: Compression
    sample_bytes: int
    channels: int
    start: int
    pixel_count: int
    frame_count: int = 0
    crc32: int = 0
    version: int = FORMAT_VERSION

    @property
    def record_bytes(self) -> int:
        """Payload bytes contributed by one frame."""
        return self.pixel_count * self.channels * self.sample_bytes

    @property
    def payload_bytes(self) -> int:
        return self.frame_count * self.record_bytes

    def pack(self) -> bytes:
        return _HEADER.pack(
            MAGIC,
            self.version,
            COMPRESSION_CODES[self.compression],
            self.sample_bytes,
            self.channels,
            0,
            self.start,
            self.pixel_count,
            self.frame_count,
            self.crc32,
        )

    @classmethod
    def unpack(cls, raw: bytes, source: str = "") -> TimeSliceHeader:
        if len(raw) < HEADER_SIZE:
            raise CompressionError(
                "Time-slice header is truncated",
                details={"path": source, "size": len(raw)},
            )
        (magic, version, code, sample_bytes, channels, _reserved,
         start, pixel_count, frame_count, crc) = _HEADER.unpack(raw[:HEADER_SIZE])

        if magic != MAGIC:
            raise CompressionError(
                "Not a time-slice file (bad magic)",
                details={"path": source, "magic": magic},
            )
        if version != FORMAT_VERSION:
            raise CompressionError(
                f"Unsupported time-slice format version {version}",
                details={"path": source},
            )
        if code not in _CODE_TO_COMPRESSION:
            raise CompressionError(
                f"Unknown compression code {code}",
                details={"path": source},
            )
        return cls(
            compression=_CODE_TO_COMPRESSION[code],
            sample_bytes=sample_bytes,
            channels=channels,
            start=start,
            pixel_count=pixel_count,
            frame_count=frame_count,
            crc32=crc,
            version=version,
        )


@dataclass(frozen=True)
class TimeSlice:
    """
    Temporal stack of a contiguous pixel range, loaded in memory.

    ``samples`` has shape (frame_count, pixel_count, channels) as stored on
    disk; :attr:`pixels` is the pixel-major view.
    """

    start: int
    samples: np.ndarray

    @property
    def frame_count(self) -> int:
        return self.samples.shape[0]

    @property
    def pixel_count(self) -> int:
        return self.samples.shape[1]

    @property
    def channels(self) -> int:
        return self.samples.shape[2]

    @property
    def stop(self) -> int:
        """One past the last pixel index covered."""
        return self.start + self.pixel_count

    @property
    def pixels(self) -> np.ndarray:
        """Pixel-major view of shape (pixel_count, frame_count, channels)."""
        return self.samples.transpose(1, 0, 2)

    def frames_major(self) -> np.ndarray:
        """Stored view of shape (frame_count, pixel_count, channels)."""
        return self.samples

    def sequence(self, index: int) -> np.ndarray:
        """
        Temporal sequence of one pixel.

        Parameters
        ----------
        index : int
            Absolute pixel index within ``[start, stop)``.

        Returns
        -------
        np.ndarray
            Samples of shape (frame_count, channels).
        """
        if not self.start <= index < self.stop:
            raise IndexError(f"Pixel {index} outside slice [{self.start}, {self.stop})")
        return self.samples[:, index - self.start, :]


class TimeSliceWriter:
    """
    Incremental writer for one time-slice file.

    One record is appended per frame. The frame count and checksum are written
    into the header by :meth:`close`. Use as a context manager; leaving the
    block through an exception closes the file without finalizing it.

    Parameters
    ----------
    path : Path
        File to create (truncated if present).
    start : int
        First pixel index covered.
    pixel_count : int
        Number of pixels covered.
    channels : int
        Samples per pixel.
    dtype : np.dtype
        Sample type (uint8 or uint16).
    compression : Compression
        Payload encoding.
    """

    def __init__(
        self,
        path: Path,
        start: int,
        pixel_count: int,
        channels: int,
        dtype: np.dtype,
        compression: Compression = Compression.NONE,
    ):
        self.path = Path(path)
        self.dtype = np.dtype(dtype)
        self.compression = compression
        self.frame_count = 0
        self._header = TimeSliceHeader(
            compression=compression,
            sample_bytes=self.dtype.itemsize,
            channels=channels,
            start=start,
            pixel_count=pixel_count,
        )
        self._record_size = pixel_count * channels
        self._crc = 0
        self._closed = False

        if compression is Compression.NONE:
            self._compressor = None
        else:
            self._compressor = zlib.compressobj(
                COMPRESSION_LEVEL, zlib.DEFLATED, _WBITS[compression]
            )

        try:
            self._file = open(self.path, "wb", buffering=IO_BUFFER_SIZE)
            self._file.write(self._header.pack())
        except OSError as e:
            raise StorageError(str(self.path), str(e)) from e

    def __enter__(self) -> TimeSliceWriter:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            self.close()
        else:
            self.abort()

    @property
    def header(self) -> TimeSliceHeader:
        return self._header

    def append(self, samples: np.ndarray) -> None:
        """
        Append the samples of one frame.

        Parameters
        ----------
        samples : np.ndarray
            ``pixel_count * channels`` samples of the writer's dtype, in pixel
            order (any shape).
        """
        if self._closed:
            raise StorageError(str(self.path), "append after close")
        if samples.size != self._record_size:
            raise LayoutError(
                "Frame record has the wrong number of samples",
                details={
                    "path": str(self.path),
                    "expected": self._record_size,
                    "actual": samples.size,
                },
            )
        data = np.ascontiguousarray(samples, dtype=self.dtype.newbyteorder("<")).tobytes()
        self._crc = zlib.crc32(data, self._crc)
        if self._compressor is not None:
            data = self._compressor.compress(data)
        try:
            self._file.write(data)
        except OSError as e:
            raise StorageError(str(self.path), str(e)) from e
        self.frame_count += 1

    def close(self) -> TimeSliceHeader:
        """
        Flush the payload and write frame count and checksum into the header.

        Returns
        -------
        TimeSliceHeader
            The final header.
        """
        if self._closed:
            return self._header
        try:
            if self._compressor is not None:
                self._file.write(self._compressor.flush())
            self._file.seek(_FRAME_COUNT_OFFSET)
            self._file.write(_TRAILER.pack(self.frame_count, self._crc))
            self._file.close()
        except OSError as e:
            raise StorageError(str(self.path), str(e)) from e
        finally:
            self._closed = True

        self._header = TimeSliceHeader(
            compression=self._header.compression,
            sample_bytes=self._header.sample_bytes,
            channels=self._header.channels,
            start=self._header.start,
            pixel_count=self._header.pixel_count,
            frame_count=self.frame_count,
            crc32=self._crc,
        )
        logger.debug(
            "Closed time slice %s (%d frames, %d pixels)",
            self.path.name, self.frame_count, self._header.pixel_count,
        )
        return self._header

    def abort(self) -> None:
        """Close the file without finalizing the header."""
        if self._closed:
            return
        self._closed = True
        try:
            self._file.close()
        except OSError as e:
            logger.warning("Failed to close aborted time slice %s: %s", self.path, e)


def read_header(path: str | Path) -> TimeSliceHeader:
    """Read the header of a time-slice file without loading the payload."""
    path = Path(path)
    try:
        with open(path, "rb") as f:
            raw = f.read(HEADER_SIZE)
    except OSError as e:
        raise StorageError(str(path), str(e)) from e
    return TimeSliceHeader.unpack(raw, source=str(path))


def _read_payload(f, header: TimeSliceHeader, source: str) -> bytearray:
    """Read and decompress a payload with buffered sequential reads."""
    expected = header.payload_bytes
    payload = bytearray()

    if header.compression is Compression.NONE:
        while True:
            chunk = f.read(IO_BUFFER_SIZE)
            if not chunk:
                break
            payload += chunk
        return payload

    decompressor = zlib.decompressobj(_WBITS[header.compression])
    try:
        while True:
            chunk = f.read(IO_BUFFER_SIZE)
            if not chunk:
                break
            payload += decompressor.decompress(chunk)
            if len(payload) > expected:
                raise CompressionError(
                    "Time-slice payload is longer than its header declares",
                    details={"path": source, "expected": expected},
                )
        payload += decompressor.flush()
    except zlib.error as e:
        raise CompressionError(
            f"Corrupt {header.compression.value} payload: {e}",
            details={"path": source},
        ) from e

    if not decompressor.eof:
        raise CompressionError(
            "Time-slice payload is truncated (incomplete stream)",
            details={"path": source},
        )
    if decompressor.unused_data:
        raise CompressionError(
            "Unexpected data after compressed payload",
            details={"path": source, "extra_bytes": len(decompressor.unused_data)},
        )
    return payload


def read_time_slice(
    path: str | Path,
    compression: Compression | None = None,
    channels: int | None = None,
    frame_count: int | None = None,
    dtype: np.dtype | str | None = None,
) -> TimeSlice:
    """
    Load a time slice, validating it against the run's expectations.

    Parameters
    ----------
    path : str or Path
        Time-slice file.
    compression : Compression, optional
        Compression the run was configured with. Must match the header.
    channels : int, optional
        Expected channel count (run layout).
    frame_count : int, optional
        Expected number of frames.
    dtype : np.dtype or str, optional
        Expected sample type.

    Returns
    -------
    TimeSlice
        The slice, with samples of shape (frame_count, pixel_count, channels).

    Raises
    ------
    StorageError
        If the file cannot be read.
    CompressionError
        If the header or payload is corrupt or truncated.
    ConfigError
        If the stored compression differs from ``compression``.
    LayoutError
        If channels, sample type or frame count disagree with the run.
    """
    path = Path(path)
    source = str(path)
    try:
        with open(path, "rb", buffering=IO_BUFFER_SIZE) as f:
            header = TimeSliceHeader.unpack(f.read(HEADER_SIZE), source=source)

            if compression is not None and header.compression is not compression:
                raise ConfigError(
                    "Time slice was written with a different compression",
                    details={
                        "path": source,
                        "stored": header.compression.value,
                        "configured": compression.value,
                    },
                )
            if channels is not None and header.channels != channels:
                raise LayoutError(
                    "Time-slice channel count differs from the run layout",
                    details={"path": source, "expected": channels, "actual": header.channels},
                )
            stored_dtype = dtype_for_sample_bytes(header.sample_bytes)
            if dtype is not None and np.dtype(dtype) != stored_dtype:
                raise LayoutError(
                    "Time-slice sample type differs from the run layout",
                    details={"path": source, "expected": np.dtype(dtype).name,
                             "actual": stored_dtype.name},
                )
            if frame_count is not None and header.frame_count != frame_count:
                raise LayoutError(
                    "Time-slice frame count differs from the run frame count",
                    details={"path": source, "expected": frame_count,
                             "actual": header.frame_count},
                )

            payload = _read_payload(f, header, source)
    except OSError as e:
        raise StorageError(source, str(e)) from e

    if len(payload) != header.payload_bytes:
        raise CompressionError(
            "Time-slice payload size does not match its header",
            details={"path": source, "expected": header.payload_bytes, "actual": len(payload)},
        )
    if zlib.crc32(payload) != header.crc32:
        raise CompressionError("Time-slice payload checksum mismatch", details={"path": source})

    samples = np.frombuffer(payload, dtype=stored_dtype.newbyteorder("<"))
    samples = samples.astype(stored_dtype, copy=False).reshape(
        header.frame_count, header.pixel_count, header.channels
    )
    return TimeSlice(start=header.start, samples=samples)
