"""
Tests for the slicer module.

Tests cover:
- Chunk planning (partition invariant, budget sizing, precedence)
- Frame-major to pixel-major transpose through time slices
- Failure modes (empty input, layout mismatch)
"""

import numpy as np
import pytest

from chronophoto.config import Compression
from chronophoto.exceptions import ConfigError, LayoutMismatchError, PatternError
from chronophoto.io import FrameStream
from chronophoto.slicer import plan_chunks, write_time_slices
from chronophoto.timeslice import read_time_slice


def assert_partition(ranges, n_pixels):
    """Ranges are non-empty, contiguous, in order, and cover [0, n_pixels)."""
    position = 0
    for r in ranges:
        assert r.count >= 1
        assert r.start == position
        position = r.stop
    assert position == n_pixels


class TestPlanChunks:
    """Tests for chunk planning."""

    @pytest.mark.parametrize("n_chunks", [1, 2, 3, 7, 64, 120, 500])
    def test_partition_for_any_chunk_count(self, n_chunks):
        ranges = plan_chunks(120, 10, 3, chunk_count=n_chunks)

        assert_partition(ranges, 120)
        assert len(ranges) == min(n_chunks, 120)
        sizes = [r.count for r in ranges]
        assert max(sizes) - min(sizes) <= 1

    def test_chunk_count_clamped_low(self):
        ranges = plan_chunks(50, 10, 1, chunk_count=0)

        assert len(ranges) == 1
        assert_partition(ranges, 50)

    def test_budget_bounds_chunk_bytes(self):
        n_pixels, frames, channels = 10_000, 40, 3
        budget = 64 * 1024
        ranges = plan_chunks(n_pixels, frames, channels, budget_bytes=budget)

        assert_partition(ranges, n_pixels)
        assert all(r.count * frames * channels <= budget for r in ranges)

    def test_budget_smaller_than_one_pixel(self):
        """A budget below one pixel's stack still yields one pixel per chunk."""
        ranges = plan_chunks(5, 1000, 3, budget_bytes=10)

        assert len(ranges) == 5
        assert_partition(ranges, 5)

    def test_large_budget_single_chunk(self):
        ranges = plan_chunks(1000, 10, 3)

        assert len(ranges) == 1

    def test_sample_bytes_count_toward_budget(self):
        narrow = plan_chunks(1000, 100, 1, sample_bytes=1, budget_bytes=10_000)
        wide = plan_chunks(1000, 100, 1, sample_bytes=2, budget_bytes=10_000)

        assert len(wide) == 2 * len(narrow)

    def test_pixels_per_chunk(self):
        ranges = plan_chunks(25, 10, 1, pixels_per_chunk=10)

        assert [r.count for r in ranges] == [10, 10, 5]
        assert_partition(ranges, 25)

    def test_pixels_per_chunk_takes_precedence(self):
        ranges = plan_chunks(25, 10, 1, pixels_per_chunk=5, chunk_count=2)

        assert len(ranges) == 5

    def test_zero_pixels(self):
        with pytest.raises(ConfigError):
            plan_chunks(0, 10, 1)


class TestWriteTimeSlices:
    """Tests for the transpose stage."""

    @pytest.mark.parametrize("n_chunks", [1, 4, 120])
    def test_every_sequence_preserved(self, slice_dir, synthetic_frames, n_chunks):
        """Each pixel's sequence in the slices equals its samples across frames."""
        frames = synthetic_frames(n_frames=6)
        slices = write_time_slices(
            FrameStream.from_arrays(frames), slice_dir, chunk_count=n_chunks
        )

        stacked = np.stack(frames).reshape(6, -1, 3)
        assert slices.frame_count == 6
        assert len(slices) == n_chunks
        for path, r in zip(slices.paths, slices.ranges):
            ts = read_time_slice(path, frame_count=6, channels=3)
            assert ts.start == r.start
            np.testing.assert_array_equal(ts.samples, stacked[:, r.start:r.stop])

    def test_slice_files_named_in_pixel_order(self, slice_dir, synthetic_frames):
        slices = write_time_slices(
            FrameStream.from_arrays(synthetic_frames(n_frames=2)), slice_dir, chunk_count=3
        )

        assert [p.name for p in slices.paths] == [
            "slice-00000.chs", "slice-00001.chs", "slice-00002.chs",
        ]
        assert all(p.exists() for p in slices.paths)

    def test_rows_per_chunk(self, slice_dir, synthetic_frames):
        """Row-based sizing uses the frame width."""
        slices = write_time_slices(
            FrameStream.from_arrays(synthetic_frames(n_frames=2, height=12, width=10)),
            slice_dir,
            rows_per_chunk=5,
        )

        assert [r.count for r in slices.ranges] == [50, 50, 20]

    def test_compressed_slices(self, slice_dir, synthetic_frames):
        frames = synthetic_frames(n_frames=3, channels=1)
        slices = write_time_slices(
            FrameStream.from_arrays(frames), slice_dir, Compression.GZIP, chunk_count=2
        )

        assert slices.compression is Compression.GZIP
        ts = read_time_slice(slices.paths[1], compression=Compression.GZIP)
        expected = np.stack(frames).reshape(3, -1, 1)[:, slices.ranges[1].start:]
        np.testing.assert_array_equal(ts.samples, expected)

    def test_generator_input(self, slice_dir, synthetic_frames):
        """Unsized iterables work with explicit sizing."""
        frames = synthetic_frames(n_frames=4)
        stream = iter(FrameStream.from_arrays(frames))

        slices = write_time_slices(stream, slice_dir, chunk_count=2)

        assert slices.frame_count == 4

    def test_generator_needs_frame_count_for_budget(self, slice_dir, synthetic_frames):
        stream = iter(FrameStream.from_arrays(synthetic_frames(n_frames=2)))

        with pytest.raises(ConfigError):
            write_time_slices(stream, slice_dir)

    def test_empty_input(self, slice_dir):
        with pytest.raises(PatternError):
            write_time_slices(FrameStream.from_arrays([]), slice_dir)

    def test_layout_mismatch_aborts(self, slice_dir):
        frames = [
            np.zeros((4, 4, 3), dtype=np.uint8),
            np.zeros((4, 5, 3), dtype=np.uint8),
        ]

        with pytest.raises(LayoutMismatchError):
            write_time_slices(FrameStream.from_arrays(frames), slice_dir, chunk_count=2)

        # Partial slices stay on disk for the caller
        assert len(list(slice_dir.glob("*.chs"))) == 2

    def test_single_frame(self, slice_dir, synthetic_frames):
        frames = synthetic_frames(n_frames=1)
        slices = write_time_slices(FrameStream.from_arrays(frames), slice_dir)

        ts = read_time_slice(slices.paths[0])
        assert ts.frame_count == 1
        np.testing.assert_array_equal(ts.samples[0], frames[0].reshape(-1, 3))
