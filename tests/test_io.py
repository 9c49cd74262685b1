"""
Tests for frame discovery, decoding and layout handling.
"""

import imageio.v3 as iio
import numpy as np
import pytest

from chronophoto.exceptions import (
    DecodeError,
    EncodeError,
    LayoutError,
    LayoutMismatchError,
    PatternError,
    StreamConsumedError,
)
from chronophoto.io import FrameStream, list_frames, read_frame, write_image
from chronophoto.layout import Layout, dtype_for_sample_bytes


class TestLayout:
    """Tests for the Layout descriptor."""

    def test_from_rgb_array(self):
        layout = Layout.from_array(np.zeros((4, 6, 3), dtype=np.uint8))

        assert layout == Layout(width=6, height=4, channels=3, dtype="uint8")
        assert layout.n_pixels == 24
        assert layout.stride == 18
        assert layout.shape == (4, 6, 3)
        assert layout.max_value == 255

    def test_from_grayscale_array(self):
        layout = Layout.from_array(np.zeros((4, 6), dtype=np.uint16))

        assert layout.channels == 1
        assert layout.sample_bytes == 2
        assert layout.max_value == 65535
        assert layout.frame_bytes == 48

    def test_unsupported_dtype(self):
        with pytest.raises(LayoutError):
            Layout(width=2, height=2, channels=1, dtype="float32")

    def test_invalid_dtype_name(self):
        with pytest.raises(LayoutError):
            Layout(width=2, height=2, channels=1, dtype="not-a-type")

    def test_non_positive_dimensions(self):
        with pytest.raises(LayoutError):
            Layout(width=0, height=2, channels=1)

    def test_bad_ndim(self):
        with pytest.raises(LayoutError):
            Layout.from_array(np.zeros(5, dtype=np.uint8))

    def test_dtype_for_sample_bytes(self):
        assert dtype_for_sample_bytes(1) == np.uint8
        assert dtype_for_sample_bytes(2) == np.uint16
        with pytest.raises(LayoutError):
            dtype_for_sample_bytes(4)


class TestListFrames:
    """Tests for frame discovery."""

    def test_sorted_lexicographically(self, tmp_path):
        for name in ["b.png", "a.png", "c.png"]:
            (tmp_path / name).write_bytes(b"")

        frames = list_frames(str(tmp_path / "*.png"))

        assert [p.name for p in frames] == ["a.png", "b.png", "c.png"]

    def test_directories_excluded(self, tmp_path):
        (tmp_path / "x.png").mkdir()
        (tmp_path / "y.png").write_bytes(b"")

        frames = list_frames(str(tmp_path / "*.png"))

        assert [p.name for p in frames] == ["y.png"]

    def test_recursive_pattern(self, tmp_path):
        nested = tmp_path / "night" / "part2"
        nested.mkdir(parents=True)
        (tmp_path / "night" / "a.png").write_bytes(b"")
        (nested / "b.png").write_bytes(b"")

        frames = list_frames(str(tmp_path / "night" / "**" / "*.png"))

        assert len(frames) == 2

    def test_no_match(self, tmp_path):
        with pytest.raises(PatternError):
            list_frames(str(tmp_path / "*.jpg"))


class TestReadFrame:
    """Tests for frame decoding."""

    def test_rgb_png(self, tmp_path):
        data = np.arange(4 * 5 * 3, dtype=np.uint8).reshape(4, 5, 3)
        path = tmp_path / "f.png"
        iio.imwrite(path, data)

        np.testing.assert_array_equal(read_frame(path), data)

    def test_grayscale_gets_channel_axis(self, tmp_path):
        data = np.arange(20, dtype=np.uint8).reshape(4, 5)
        path = tmp_path / "g.png"
        iio.imwrite(path, data)

        frame = read_frame(path)

        assert frame.shape == (4, 5, 1)
        np.testing.assert_array_equal(frame[:, :, 0], data)

    def test_undecodable_file(self, tmp_path):
        path = tmp_path / "broken.png"
        path.write_bytes(b"definitely not a png")

        with pytest.raises(DecodeError):
            read_frame(path)


class TestFrameStream:
    """Tests for single-pass frame streams."""

    def test_from_pattern(self, png_sequence, synthetic_frames):
        frames = synthetic_frames(n_frames=3)
        stream = FrameStream.from_pattern(png_sequence(frames))

        assert len(stream) == 3
        decoded = [samples for _, samples in stream]
        for got, expected in zip(decoded, frames):
            np.testing.assert_array_equal(got, expected)
        assert stream.layout == Layout(width=10, height=12, channels=3)

    def test_single_pass(self, synthetic_frames):
        stream = FrameStream.from_arrays(synthetic_frames(n_frames=2))
        list(stream)

        with pytest.raises(StreamConsumedError):
            iter(stream)

    def test_layout_mismatch(self):
        frames = [
            np.zeros((4, 4, 3), dtype=np.uint8),
            np.zeros((4, 4, 3), dtype=np.uint8),
            np.zeros((4, 4, 1), dtype=np.uint8),
        ]
        stream = FrameStream.from_arrays(frames)

        with pytest.raises(LayoutMismatchError) as excinfo:
            list(stream)
        assert excinfo.value.details["frame"] == 2

    def test_unsupported_array(self):
        stream = FrameStream.from_arrays([np.zeros((2, 2), dtype=np.float32)])

        with pytest.raises(DecodeError):
            list(stream)

    def test_bool_promoted(self):
        stream = FrameStream.from_arrays([np.array([[True, False]])])

        (layout, samples), = list(stream)

        assert layout.dtype == "uint8"
        assert samples[0, 0, 0] == 255


class TestWriteImage:
    """Tests for output encoding."""

    def test_single_channel_written_as_grayscale(self, tmp_path):
        buffer = np.full((3, 4, 1), 200, dtype=np.uint8)
        path = write_image(tmp_path / "out" / "mask.png", buffer)

        data = iio.imread(path)

        assert data.shape == (3, 4)
        assert np.all(data == 200)

    def test_jpeg_quality(self, tmp_path):
        buffer = np.random.default_rng(1).integers(0, 256, (32, 32, 3), dtype=np.uint8)
        low = write_image(tmp_path / "low.jpg", buffer, quality=10)
        high = write_image(tmp_path / "high.jpg", buffer, quality=95)

        assert low.stat().st_size < high.stat().st_size

    def test_16bit_jpeg_rejected(self, tmp_path):
        buffer = np.full((4, 4, 1), 40000, dtype=np.uint16)

        with pytest.raises(EncodeError) as excinfo:
            write_image(tmp_path / "out.jpg", buffer)

        assert excinfo.value.details["path"] == str(tmp_path / "out.jpg")

    def test_unknown_extension_rejected(self, tmp_path):
        buffer = np.zeros((4, 4, 3), dtype=np.uint8)

        with pytest.raises(EncodeError):
            write_image(tmp_path / "out.notanimage", buffer)
