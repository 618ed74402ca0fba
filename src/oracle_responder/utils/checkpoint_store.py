"""
Checkpoint persistence for the Oracle Responder.

This module provides the durable replay cursor: the next block height to
fetch, stored as a single integer in a text file.
"""

import logging
import os
import tempfile
from pathlib import Path

logger = logging.getLogger(__name__)


class CheckpointError(RuntimeError):
    """Raised when the checkpoint cannot be read or written."""


class CheckpointStore:
    """
    File-backed block height cursor.

    Only the replay ingestion loop writes to it, one block at a time, so no
    locking is needed. Writes go through a temporary file and ``os.replace``
    so a crash never leaves a half-written height behind.
    """

    def __init__(self, path: str | Path, start_height: int):
        """
        Initialize the checkpoint store.

        Args:
            path: Checkpoint file location
            start_height: Height returned by load() when no checkpoint exists
        """
        self.path = Path(path)
        self.start_height = start_height

    def load(self) -> int:
        """
        Read the next block height to process.

        Returns:
            Stored height, or the configured start height on first run

        Raises:
            CheckpointError: If the file exists but cannot be read or parsed
        """
        try:
            raw = self.path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            logger.info(
                f"No checkpoint at {self.path}, starting from height {self.start_height}"
            )
            return self.start_height
        except OSError as e:
            raise CheckpointError(f"Failed to read checkpoint {self.path}: {e}") from e

        try:
            height = int(raw)
        except ValueError:
            raise CheckpointError(
                f"Corrupt checkpoint {self.path}: expected an integer, got {raw!r}"
            ) from None

        if height < 0:
            raise CheckpointError(f"Corrupt checkpoint {self.path}: negative height {height}")

        logger.info(f"Resuming from checkpoint height {height}")
        return height

    def save(self, height: int) -> None:
        """
        Persist the next block height to process.

        Args:
            height: Height to store

        Raises:
            CheckpointError: If the height cannot be written
        """
        directory = self.path.parent
        try:
            directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=directory, prefix=f".{self.path.name}.")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as tmp:
                    tmp.write(str(height))
                    tmp.flush()
                    os.fsync(tmp.fileno())
                os.replace(tmp_name, self.path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise CheckpointError(f"Failed to write checkpoint {self.path}: {e}") from e

        logger.debug(f"Checkpoint saved: {height}")
