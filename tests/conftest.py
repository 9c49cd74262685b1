"""
Pytest configuration and fixtures.
"""

import imageio.v3 as iio
import numpy as np
import pytest
from pathlib import Path


@pytest.fixture
def synthetic_frames():
    """Create a reproducible sequence of random frames."""
    def _create(n_frames=8, height=12, width=10, channels=3, dtype=np.uint8, seed=42):
        rng = np.random.default_rng(seed)
        high = np.iinfo(dtype).max + 1
        return [
            rng.integers(0, high, size=(height, width, channels), dtype=dtype)
            for _ in range(n_frames)
        ]

    return _create


@pytest.fixture
def star_trail_frames():
    """Create a dark sky with one bright star moving one column per frame."""
    def _create(n_frames=6, height=8, width=10, background=20, star=240):
        frames = []
        for t in range(n_frames):
            frame = np.full((height, width, 3), background, dtype=np.uint8)
            frame[height // 2, t % width] = star
            frames.append(frame)
        return frames

    return _create


@pytest.fixture
def example_frames():
    """
    Five single-channel 2x2 frames; pixel (0, 0) runs [10, 20, 15, 255, 12]
    and every other pixel stays at 10.
    """
    values = [10, 20, 15, 255, 12]
    frames = []
    for v in values:
        frame = np.full((2, 2, 1), 10, dtype=np.uint8)
        frame[0, 0, 0] = v
        frames.append(frame)
    return frames


@pytest.fixture
def png_sequence(tmp_path):
    """Write frames as a numbered PNG sequence and return its glob pattern."""
    def _write(frames, name="frame", subdir="frames"):
        folder = tmp_path / subdir
        folder.mkdir(parents=True, exist_ok=True)
        for i, frame in enumerate(frames):
            data = frame[:, :, 0] if frame.shape[2] == 1 else frame
            iio.imwrite(folder / f"{name}_{i:04d}.png", data)
        return str(folder / f"{name}_*.png")

    return _write


@pytest.fixture
def slice_dir(tmp_path) -> Path:
    """Empty directory for time-slice files."""
    path = tmp_path / "slices"
    path.mkdir()
    return path
