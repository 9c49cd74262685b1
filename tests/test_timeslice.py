"""
Tests for the timeslice module.

Tests cover:
- Write/read round trip for every compression mode
- Header validation against the run (compression, channels, dtype, frames)
- Detection of corrupt and truncated files
"""

import numpy as np
import pytest

from chronophoto.config import Compression
from chronophoto.exceptions import (
    CompressionError,
    ConfigError,
    LayoutError,
    StorageError,
)
from chronophoto.timeslice import (
    HEADER_SIZE,
    MAGIC,
    TimeSliceHeader,
    TimeSliceWriter,
    read_header,
    read_time_slice,
)


def write_block(path, block, start=0, compression=Compression.NONE):
    """Write a (T, P, C) block as a time slice, one record per frame."""
    n_frames, n_pixels, channels = block.shape
    with TimeSliceWriter(path, start, n_pixels, channels, block.dtype, compression) as writer:
        for t in range(n_frames):
            writer.append(block[t])
    return writer.header


def random_block(n_frames, n_pixels=7, channels=3, dtype=np.uint8, seed=0):
    rng = np.random.default_rng(seed)
    high = np.iinfo(dtype).max + 1
    return rng.integers(0, high, size=(n_frames, n_pixels, channels), dtype=dtype)


class TestRoundTrip:
    """Tests for writing then reading time slices."""

    @pytest.mark.parametrize("compression", list(Compression))
    @pytest.mark.parametrize("n_frames", [1, 2, 16, 257])
    def test_samples_preserved(self, slice_dir, compression, n_frames):
        """Every sample comes back unchanged."""
        block = random_block(n_frames, seed=n_frames)
        path = slice_dir / "slice.chs"
        write_block(path, block, start=40, compression=compression)

        ts = read_time_slice(path, compression=compression)

        assert ts.start == 40
        assert ts.frame_count == n_frames
        assert ts.pixel_count == 7
        assert ts.channels == 3
        np.testing.assert_array_equal(ts.frames_major(), block)

    @pytest.mark.parametrize("compression", [Compression.NONE, Compression.GZIP])
    def test_uint16_single_channel(self, slice_dir, compression):
        """16-bit grayscale samples survive the round trip."""
        block = random_block(5, n_pixels=11, channels=1, dtype=np.uint16)
        path = slice_dir / "slice.chs"
        write_block(path, block, compression=compression)

        ts = read_time_slice(path, dtype=np.uint16, channels=1)

        assert ts.samples.dtype == np.uint16
        np.testing.assert_array_equal(ts.samples, block)

    def test_pixel_major_view(self, slice_dir):
        """The pixel view exposes each pixel's sequence contiguously in time."""
        block = random_block(4, n_pixels=3)
        path = slice_dir / "slice.chs"
        write_block(path, block, start=100)

        ts = read_time_slice(path)

        assert ts.pixels.shape == (3, 4, 3)
        np.testing.assert_array_equal(ts.pixels[1], block[:, 1, :])
        np.testing.assert_array_equal(ts.sequence(102), block[:, 2, :])
        assert ts.stop == 103

    def test_sequence_out_of_range(self, slice_dir):
        path = slice_dir / "slice.chs"
        write_block(path, random_block(2), start=10)
        ts = read_time_slice(path)

        with pytest.raises(IndexError):
            ts.sequence(9)

    def test_compression_reduces_size(self, slice_dir):
        """Repetitive samples compress."""
        block = np.full((20, 50, 3), 7, dtype=np.uint8)
        raw = slice_dir / "raw.chs"
        packed = slice_dir / "packed.chs"
        write_block(raw, block)
        write_block(packed, block, compression=Compression.ZLIB)

        assert packed.stat().st_size < raw.stat().st_size


class TestHeader:
    """Tests for the fixed-size header."""

    def test_header_patched_on_close(self, slice_dir):
        block = random_block(3)
        path = slice_dir / "slice.chs"
        write_block(path, block, start=5, compression=Compression.GZIP)

        header = read_header(path)

        assert header.frame_count == 3
        assert header.pixel_count == 7
        assert header.channels == 3
        assert header.sample_bytes == 1
        assert header.start == 5
        assert header.compression is Compression.GZIP

    def test_header_size(self):
        assert HEADER_SIZE == 36

    def test_pack_unpack(self):
        header = TimeSliceHeader(
            compression=Compression.DEFLATE,
            sample_bytes=2,
            channels=4,
            start=2**40,
            pixel_count=123,
            frame_count=9,
            crc32=0xDEADBEEF,
        )
        raw = header.pack()

        assert raw[:4] == MAGIC
        assert TimeSliceHeader.unpack(raw) == header

    def test_bad_magic(self, slice_dir):
        path = slice_dir / "bogus.chs"
        path.write_bytes(b"NOPE" + bytes(HEADER_SIZE))

        with pytest.raises(CompressionError):
            read_time_slice(path)

    def test_truncated_header(self, slice_dir):
        path = slice_dir / "short.chs"
        path.write_bytes(MAGIC + b"\x01\x00")

        with pytest.raises(CompressionError):
            read_header(path)

    def test_missing_file(self, slice_dir):
        with pytest.raises(StorageError):
            read_time_slice(slice_dir / "absent.chs")


class TestValidation:
    """Tests for checks against the run's expectations."""

    def test_compression_mismatch(self, slice_dir):
        path = slice_dir / "slice.chs"
        write_block(path, random_block(2), compression=Compression.GZIP)

        with pytest.raises(ConfigError):
            read_time_slice(path, compression=Compression.ZLIB)

    def test_channel_mismatch(self, slice_dir):
        path = slice_dir / "slice.chs"
        write_block(path, random_block(2, channels=3))

        with pytest.raises(LayoutError):
            read_time_slice(path, channels=1)

    def test_dtype_mismatch(self, slice_dir):
        path = slice_dir / "slice.chs"
        write_block(path, random_block(2))

        with pytest.raises(LayoutError):
            read_time_slice(path, dtype=np.uint16)

    def test_ragged_frame_count(self, slice_dir):
        path = slice_dir / "slice.chs"
        write_block(path, random_block(4))

        with pytest.raises(LayoutError):
            read_time_slice(path, frame_count=5)

    def test_wrong_record_size(self, slice_dir):
        path = slice_dir / "slice.chs"
        with pytest.raises(LayoutError):
            with TimeSliceWriter(path, 0, 10, 3, np.uint8) as writer:
                writer.append(np.zeros(29, dtype=np.uint8))

    def test_append_after_close(self, slice_dir):
        writer = TimeSliceWriter(slice_dir / "slice.chs", 0, 2, 1, np.uint8)
        writer.close()

        with pytest.raises(StorageError):
            writer.append(np.zeros(2, dtype=np.uint8))

    def test_unwritable_path(self, tmp_path):
        with pytest.raises(StorageError):
            TimeSliceWriter(tmp_path / "missing" / "slice.chs", 0, 2, 1, np.uint8)


class TestCorruption:
    """Tests for corrupt and truncated payloads."""

    @pytest.mark.parametrize("compression", list(Compression))
    def test_truncated_payload(self, slice_dir, compression):
        path = slice_dir / "slice.chs"
        write_block(path, random_block(16, n_pixels=50), compression=compression)
        data = path.read_bytes()
        path.write_bytes(data[: HEADER_SIZE + (len(data) - HEADER_SIZE) // 2])

        with pytest.raises(CompressionError):
            read_time_slice(path, compression=compression)

    @pytest.mark.parametrize("compression", list(Compression))
    def test_flipped_payload_byte(self, slice_dir, compression):
        path = slice_dir / "slice.chs"
        write_block(path, random_block(16, n_pixels=50), compression=compression)
        data = bytearray(path.read_bytes())
        middle = HEADER_SIZE + (len(data) - HEADER_SIZE) // 2
        data[middle] ^= 0xFF
        path.write_bytes(bytes(data))

        with pytest.raises(CompressionError):
            read_time_slice(path, compression=compression)

    def test_trailing_garbage(self, slice_dir):
        path = slice_dir / "slice.chs"
        write_block(path, random_block(3), compression=Compression.ZLIB)
        with open(path, "ab") as f:
            f.write(b"extra")

        with pytest.raises(CompressionError):
            read_time_slice(path)

    def test_unfinalized_writer(self, slice_dir):
        """A writer aborted by an exception leaves a slice that declares no frames."""
        path = slice_dir / "slice.chs"
        with pytest.raises(RuntimeError):
            with TimeSliceWriter(path, 0, 4, 1, np.uint8) as writer:
                writer.append(np.arange(4, dtype=np.uint8))
                raise RuntimeError("boom")

        assert read_header(path).frame_count == 0
        with pytest.raises(CompressionError):
            read_time_slice(path)
