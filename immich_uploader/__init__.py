from .client import UploadClient
from .errors import (
    AuthError,
    ClientError,
    IdentifyError,
    NetworkError,
    RootNotFoundError,
    RootPermissionError,
    ScanError,
    ServerError,
    UploaderError,
)
from .identifier import AssetIdentifier
from .models import AssetCandidate, RunSummary, ScanOptions, SessionContext
from .reporter import ResultReporter
from .scanner import PathScanner
from .scheduler import UploadScheduler, run_upload

__version__ = "0.1.0"

__all__ = [
    "AssetCandidate",
    "AssetIdentifier",
    "AuthError",
    "ClientError",
    "IdentifyError",
    "NetworkError",
    "PathScanner",
    "ResultReporter",
    "RootNotFoundError",
    "RootPermissionError",
    "RunSummary",
    "ScanError",
    "ScanOptions",
    "ServerError",
    "SessionContext",
    "UploadClient",
    "UploadScheduler",
    "UploaderError",
    "run_upload",
]
