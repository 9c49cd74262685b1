"""
Temp-storage ownership for time slices.

A :class:`TempStore` is constructed once per run, its path is threaded through
the slicer, and :meth:`TempStore.cleanup` removes what the run wrote. Nothing
is deleted implicitly: after a failed run the caller decides whether to keep
the partial slices for inspection.
"""

from __future__ import annotations

import logging
import tempfile
from pathlib import Path

from .exceptions import StorageError

logger = logging.getLogger(__name__)

DEFAULT_DIR_NAME = "chronophoto"
SLICE_SUFFIX = ".chs"


def default_temp_dir() -> Path:
    """Return ``<system temp>/chronophoto``."""
    return Path(tempfile.gettempdir()) / DEFAULT_DIR_NAME


def slice_filename(index: int) -> str:
    """File name of the time slice for chunk ``index``."""
    return f"slice-{index:05d}{SLICE_SUFFIX}"


class TempStore:
    """
    Owned directory for the time slices of one run.

    The directory is created if absent (one level only: its parent must
    exist). :meth:`cleanup` deletes the slice files registered with the store
    and, when this store created the directory, the directory itself if it
    ended up empty.

    Parameters
    ----------
    path : Path, optional
        Directory to use. Defaults to :func:`default_temp_dir`.

    Examples
    --------
    >>> with TempStore() as store:
    ...     slices = write_time_slices(stream, store.path)
    ...     store.register(slices.paths)
    ...     output = processor.process(slices.layout, slices.paths)
    """

    def __init__(self, path: str | Path | None = None):
        self.path = Path(path) if path is not None else default_temp_dir()
        self.created = False
        self._files: list[Path] = []

        if not self.path.is_dir():
            try:
                self.path.mkdir()
            except OSError as e:
                raise StorageError(str(self.path), f"cannot create temp directory: {e}") from e
            self.created = True
            logger.info("Created temp directory %s", self.path)
        else:
            logger.debug("Using existing temp directory %s", self.path)

    def __enter__(self) -> TempStore:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            self.cleanup()
        elif self._files:
            logger.warning(
                "Run failed; keeping %d time slices in %s", len(self._files), self.path
            )

    @property
    def files(self) -> list[Path]:
        """Slice files registered for cleanup."""
        return list(self._files)

    def register(self, paths) -> None:
        """Register written files so :meth:`cleanup` removes them."""
        for p in paths:
            p = Path(p)
            if p not in self._files:
                self._files.append(p)

    def leftovers(self) -> list[Path]:
        """Slice files currently present in the directory, registered or not."""
        if not self.path.is_dir():
            return []
        return sorted(self.path.glob(f"*{SLICE_SUFFIX}"))

    def cleanup(self) -> int:
        """
        Delete registered slice files.

        Returns
        -------
        int
            Number of files that could not be deleted.
        """
        failures = 0
        for fpath in self._files:
            try:
                fpath.unlink(missing_ok=True)
            except OSError as e:
                failures += 1
                logger.warning("Unable to delete file %s: %s", fpath, e)

        logger.info("Deleted %d time slices", len(self._files) - failures)
        self._files = [f for f in self._files if f.exists()]

        if self.created and self.path.is_dir() and not any(self.path.iterdir()):
            try:
                self.path.rmdir()
                logger.debug("Removed temp directory %s", self.path)
            except OSError as e:
                logger.warning("Unable to remove temp directory %s: %s", self.path, e)

        return failures
