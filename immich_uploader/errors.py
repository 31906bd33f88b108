"""
Exception hierarchy for the uploader.

Only ScanError and AuthError are fatal to a run; everything else is
recorded as a per-file failure by the scheduler.
"""
from pathlib import Path
from typing import Optional


class UploaderError(Exception):
    """Base class for all uploader errors."""


class ScanError(UploaderError):
    """The scan root cannot be walked."""

    def __init__(self, root: Path, message: str):
        super().__init__(message)
        self.root = root


class RootNotFoundError(ScanError):
    """The scan root does not exist or is not a directory."""


class RootPermissionError(ScanError):
    """The scan root exists but cannot be listed."""


class IdentifyError(UploaderError):
    """A single file could not be stat'ed or read."""

    def __init__(self, path: Path, message: str):
        super().__init__(message)
        self.path = path


class RemoteError(UploaderError):
    """Base class for failures talking to the server."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class NetworkError(RemoteError):
    """Connection refused, reset or timed out."""


class ServerError(RemoteError):
    """The server answered with a 5xx status."""


class AuthError(RemoteError):
    """The server rejected the API key (401/403)."""


class ClientError(RemoteError):
    """The server rejected the request with a non-auth 4xx status."""


class ConfigError(UploaderError):
    """Credentials or profiles could not be resolved."""
