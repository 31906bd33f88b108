"""
Module containing data models for the uploader.
"""
import enum
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Union

DEFAULT_DEVICE_ID = "immich-uploader"
DEFAULT_CONCURRENCY = 10
DEFAULT_LOOKAHEAD = 4
MEDIA_PREFIXES = ("image/", "video/")


def is_media_type(mime_type: str) -> bool:
    return mime_type.startswith(MEDIA_PREFIXES)


class ErrorKind(str, enum.Enum):
    """Why a single file ended up as a failure."""
    IDENTIFY = "identify"
    NETWORK = "network"
    SERVER_ERROR = "server_error"
    CLIENT_ERROR = "client_error"
    UNEXPECTED = "unexpected"


@dataclass(frozen=True)
class SessionContext:
    """Connection settings for one run, resolved by the CLI layer."""
    server_url: str
    api_key: str
    concurrency_limit: int = DEFAULT_CONCURRENCY
    device_id: str = DEFAULT_DEVICE_ID
    timeout: float = 60.0
    max_attempts: int = 3

    def __post_init__(self):
        """Validate the session settings."""
        if not self.server_url:
            raise ValueError("server_url cannot be empty")
        if not self.api_key:
            raise ValueError("api_key cannot be empty")
        if self.concurrency_limit <= 0:
            raise ValueError("concurrency_limit must be greater than zero")
        if self.max_attempts <= 0:
            raise ValueError("max_attempts must be greater than zero")

    @property
    def api_url(self) -> str:
        return self.server_url.rstrip("/") + "/api"


@dataclass(frozen=True)
class ScanOptions:
    """How the scan root is walked and filtered."""
    recursive: bool = True
    media_only: bool = True
    lookahead: int = DEFAULT_LOOKAHEAD
    # Mixed into every asset id; the absolute scan root when unset.
    library_id: Optional[str] = None


@dataclass(frozen=True)
class AssetCandidate:
    """A local file ready to be sent to the server."""
    absolute_path: Path
    relative_path: str
    size_bytes: int
    modified_time: datetime
    created_time: datetime
    mime_type: str

    @property
    def filename(self) -> str:
        return self.absolute_path.name

    @property
    def is_media(self) -> bool:
        return is_media_type(self.mime_type)


# Results of the existence pre-check.

@dataclass(frozen=True)
class Exists:
    asset_id: str


@dataclass(frozen=True)
class Absent:
    pass


ExistenceResult = Union[Exists, Absent]


# Decoded responses of the upload endpoint.

@dataclass(frozen=True)
class Created:
    asset_id: str


@dataclass(frozen=True)
class DuplicateAsset:
    asset_id: str


@dataclass(frozen=True)
class Rejected:
    reason: str
    status_code: int


UploadResponse = Union[Created, DuplicateAsset, Rejected]


# Terminal per-file outcomes.

@dataclass(frozen=True)
class Uploaded:
    asset_id: str


@dataclass(frozen=True)
class Duplicate:
    existing_asset_id: str


@dataclass(frozen=True)
class Failed:
    error_kind: ErrorKind
    message: str


@dataclass(frozen=True)
class Skipped:
    """The file was filtered out before any network call."""
    mime_type: str


UploadOutcome = Union[Uploaded, Duplicate, Failed, Skipped]


@dataclass(frozen=True)
class UploadJob:
    """Represents one file and the outcome it resolved to."""
    path: Path
    outcome: UploadOutcome


@dataclass(frozen=True)
class FailureDetail:
    path: Path
    error_kind: ErrorKind
    message: str


@dataclass
class RunSummary:
    """Represents a summary of an upload run."""
    uploaded: int = 0
    duplicate: int = 0
    failed: int = 0
    skipped: int = 0
    failures: List[FailureDetail] = field(default_factory=list)
    cancelled: bool = False

    @property
    def total(self) -> int:
        return self.uploaded + self.duplicate + self.failed + self.skipped
