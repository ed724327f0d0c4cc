"""
File Service - the local file surface snapshots are written to and read from.

Writes are atomic: data goes to a temporary file in the target directory
which is then renamed over the final path. A snapshot file therefore either
does not exist yet or is complete; the rename is the "write complete" signal.

Usage:
    files = LocalFileSurface(config.export_dir, config.share_dir)
    path = files.write_file("products_export_2024-03-01.json", payload)
    payload = files.read_file(path)
"""

import errno
import os
import shutil
import tempfile
from pathlib import Path
from typing import Optional, Union

from src.services.exceptions import (
    ShareUnavailable,
    SnapshotFileNotFound,
    StorageSpaceInsufficient,
)
from src.services.logging_utils import get_service_logger, log_operation

logger = get_service_logger(__name__)

PathLike = Union[str, Path]


class LocalFileSurface:
    """
    File operations rooted at a base directory.

    Relative paths are resolved against ``base_dir``; absolute paths are
    used as given.

    Args:
        base_dir: Directory for relative paths (created on first write)
        share_dir: Outbox that ``share`` copies files into; None disables sharing
    """

    def __init__(self, base_dir: PathLike, share_dir: Optional[PathLike] = None):
        self.base_dir = Path(base_dir)
        self.share_dir = Path(share_dir) if share_dir is not None else None

    def resolve(self, path: PathLike) -> Path:
        path = Path(path)
        return path if path.is_absolute() else self.base_dir / path

    def write_file(self, path: PathLike, data: bytes) -> Path:
        """
        Atomically write bytes to a file.

        Returns:
            The absolute path written

        Raises:
            StorageSpaceInsufficient: If the device is full
        """
        target = self.resolve(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            fd, temp_name = tempfile.mkstemp(
                prefix=f".{target.name}.", suffix=".tmp", dir=target.parent
            )
            try:
                with os.fdopen(fd, "wb") as handle:
                    handle.write(data)
                    handle.flush()
                    os.fsync(handle.fileno())
                os.replace(temp_name, target)
            except BaseException:
                if os.path.exists(temp_name):
                    os.unlink(temp_name)
                raise
        except OSError as e:
            if e.errno in (errno.ENOSPC, errno.EDQUOT):
                raise StorageSpaceInsufficient(str(target)) from e
            raise

        log_operation(
            logger,
            operation="write_file",
            outcome="success",
            path=str(target),
            size=len(data),
        )
        return target

    def read_file(self, path: PathLike) -> bytes:
        """
        Read a whole file.

        Raises:
            SnapshotFileNotFound: If the file does not exist
        """
        target = self.resolve(path)
        try:
            return target.read_bytes()
        except FileNotFoundError as e:
            raise SnapshotFileNotFound(str(target)) from e

    def file_exists(self, path: PathLike) -> bool:
        return self.resolve(path).is_file()

    def file_size(self, path: PathLike) -> int:
        return self.resolve(path).stat().st_size

    def share(self, path: PathLike, title: str) -> Path:
        """
        Hand a file to the share outbox.

        Returns:
            Path of the shared copy

        Raises:
            ShareUnavailable: If no share directory is configured
            SnapshotFileNotFound: If the file does not exist
        """
        if self.share_dir is None:
            raise ShareUnavailable()

        source = self.resolve(path)
        if not source.is_file():
            raise SnapshotFileNotFound(str(source))

        self.share_dir.mkdir(parents=True, exist_ok=True)
        destination = self.share_dir / source.name
        shutil.copyfile(source, destination)

        log_operation(
            logger,
            operation="share",
            outcome="success",
            path=str(destination),
            title=title,
        )
        return destination
