"""
Module for deriving asset identity and MIME type for local files.
"""
import hashlib
import logging
import mimetypes
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath
from typing import Optional

import filetype

from .errors import IdentifyError
from .models import DEFAULT_DEVICE_ID, AssetCandidate
from .scanner import PathScanner

logger = logging.getLogger(__name__)

# filetype needs at most the first 261 bytes to match any signature.
HEADER_SIZE = 261
OCTET_STREAM = "application/octet-stream"


def sniff_mime_type(header: bytes) -> Optional[str]:
    """Detect a media type from the first bytes of a file.

    Args:
        header: Leading bytes of the file

    Returns:
        MIME type, or None if no known signature matches
    """
    if not header:
        return None
    return filetype.guess_mime(header)


def extension_mime_type(path: Path) -> Optional[str]:
    guessed, _ = mimetypes.guess_type(path.name)
    return guessed


def guess_mime_type(path: Path, header: bytes = b"") -> str:
    """Content signature first, then extension, then octet-stream."""
    return sniff_mime_type(header) or extension_mime_type(path) or OCTET_STREAM


class AssetIdentifier:
    """Builds AssetCandidates and their stable device asset ids."""

    def __init__(self, device_id: str = DEFAULT_DEVICE_ID, library_id: str = ""):
        """Initialize the identifier.

        Args:
            device_id: Salt mixed into every derived id, so two users
                uploading the same tree do not share ids
            library_id: Names the scan root, so equal relative paths
                under different roots do not share ids
        """
        self.device_id = device_id
        self.library_id = library_id

    def device_asset_id(self, relative_path: str) -> str:
        """Derive the id the server uses to recognise a re-upload.

        The result depends only on the device id, the library id and the
        normalised relative path, never on the clock or scan order.

        Args:
            relative_path: Path relative to the scan root

        Returns:
            Hex sha256 digest
        """
        normalised = PurePosixPath(relative_path.replace("\\", "/")).as_posix()
        digest = hashlib.sha256()
        for part in (self.device_id, self.library_id):
            digest.update(part.encode("utf-8"))
            digest.update(b"\x00")
        digest.update(normalised.encode("utf-8"))
        return digest.hexdigest()

    def identify(self, path: Path, root: Path) -> AssetCandidate:
        """Stat and sniff a file.

        Args:
            path: Absolute path of the file
            root: Scan root the relative path is computed from

        Returns:
            AssetCandidate for the file

        Raises:
            IdentifyError: If the file cannot be stat'ed or read
        """
        try:
            stat = path.stat()
            with open(path, "rb") as f:
                header = f.read(HEADER_SIZE)
        except OSError as e:
            raise IdentifyError(path, f"Cannot read {path}: {e}") from e

        modified = datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc)
        birth = getattr(stat, "st_birthtime", None)
        created = datetime.fromtimestamp(birth, tz=timezone.utc) if birth else modified

        return AssetCandidate(
            absolute_path=path,
            relative_path=PathScanner.get_relative_path(path, root),
            size_bytes=stat.st_size,
            modified_time=modified,
            created_time=created,
            mime_type=guess_mime_type(path, header),
        )
