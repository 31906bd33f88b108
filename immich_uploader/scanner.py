"""
Module for walking a directory tree and yielding candidate files.
"""
import logging
import os
from pathlib import Path
from typing import Iterator, List

from .errors import RootNotFoundError, RootPermissionError

logger = logging.getLogger(__name__)


class PathScanner:
    """Finds regular files under a root directory without following symlinks."""

    def scan(self, root: Path, recursive: bool = True) -> Iterator[Path]:
        """Validate the root and return a lazy iterator over its files.

        The root is checked immediately so that an unusable root fails
        before anything is dispatched; the walk itself only happens as
        the iterator is consumed. Calling scan again restarts the walk.

        Args:
            root: Directory to scan
            recursive: Whether to descend into subdirectories

        Returns:
            Iterator of absolute file paths, in sorted order per directory

        Raises:
            RootNotFoundError: If root is missing or not a directory
            RootPermissionError: If root cannot be listed
        """
        root = Path(root).absolute()
        if not root.exists():
            raise RootNotFoundError(root, f"Scan root does not exist: {root}")
        if not root.is_dir():
            raise RootNotFoundError(root, f"Scan root is not a directory: {root}")
        try:
            with os.scandir(root):
                pass
        except PermissionError as e:
            raise RootPermissionError(root, f"Cannot read scan root {root}: {e}") from e

        return self._walk(root, recursive)

    def _walk(self, root: Path, recursive: bool) -> Iterator[Path]:
        pending: List[Path] = [root]
        while pending:
            directory = pending.pop()
            try:
                with os.scandir(directory) as it:
                    entries = sorted(it, key=lambda e: e.name)
            except OSError as e:
                logger.warning(f"Skipping unreadable directory {directory}: {e}")
                continue

            subdirs = []
            for entry in entries:
                try:
                    if entry.is_file(follow_symlinks=False):
                        yield Path(entry.path)
                    elif recursive and entry.is_dir(follow_symlinks=False):
                        subdirs.append(Path(entry.path))
                except OSError as e:
                    logger.warning(f"Skipping unreadable entry {entry.path}: {e}")

            # Reversed so the stack pops subdirectories in name order.
            pending.extend(reversed(subdirs))

    @staticmethod
    def get_relative_path(file_path: Path, base_path: Path) -> str:
        """Get the POSIX-style path of a file relative to the scan root.

        Args:
            file_path: Path to the file
            base_path: Scan root

        Returns:
            Relative path with forward slashes
        """
        try:
            return file_path.relative_to(base_path).as_posix()
        except ValueError:
            logger.error(f"File {file_path} is not relative to {base_path}")
            return file_path.as_posix()
