"""
Module for dispatching uploads across a bounded worker pool.
"""
import logging
import threading
from concurrent.futures import FIRST_COMPLETED, CancelledError, Future, ThreadPoolExecutor, wait
from pathlib import Path
from typing import Callable, Dict, Iterable, Optional, Union

from .client import UploadClient
from .errors import AuthError, ClientError, IdentifyError, NetworkError, ServerError
from .identifier import AssetIdentifier, extension_mime_type
from .models import (
    DEFAULT_CONCURRENCY,
    DEFAULT_LOOKAHEAD,
    Absent,
    Created,
    Duplicate,
    DuplicateAsset,
    ErrorKind,
    Exists,
    Failed,
    Rejected,
    RunSummary,
    ScanOptions,
    SessionContext,
    Skipped,
    Uploaded,
    UploadJob,
    is_media_type,
)
from .reporter import ResultReporter
from .scanner import PathScanner

logger = logging.getLogger(__name__)

ResultCallback = Callable[[UploadJob], None]


class UploadScheduler:
    """Runs identify, check and upload for each file under a concurrency cap."""

    def __init__(self, client: UploadClient, identifier: AssetIdentifier,
                 concurrency_limit: int = DEFAULT_CONCURRENCY,
                 lookahead: int = DEFAULT_LOOKAHEAD, media_only: bool = True):
        """Initialize the scheduler.

        Args:
            client: API client shared by all workers
            identifier: Derives candidates and device asset ids
            concurrency_limit: Number of worker slots
            lookahead: Extra files queued beyond the worker slots
            media_only: Skip files that are not images or videos
        """
        if concurrency_limit <= 0:
            raise ValueError("concurrency_limit must be greater than zero")
        self.client = client
        self.identifier = identifier
        self.concurrency_limit = concurrency_limit
        self.lookahead = max(0, lookahead)
        self.media_only = media_only

    def process(self, path: Path, root: Path) -> UploadJob:
        """Carry one file to a terminal outcome.

        Runs inside a worker thread. Every failure except AuthError is
        turned into a Failed outcome for this file.

        Args:
            path: File to upload
            root: Scan root, for the relative path

        Returns:
            UploadJob with the file's outcome

        Raises:
            AuthError: If the server rejects the API key
        """
        # Files named as non-media are skipped without touching the disk.
        if self.media_only:
            named_type = extension_mime_type(path)
            if named_type and not is_media_type(named_type):
                return UploadJob(path, Skipped(named_type))

        try:
            candidate = self.identifier.identify(path, root)
        except IdentifyError as e:
            return UploadJob(path, Failed(ErrorKind.IDENTIFY, str(e)))

        if self.media_only and not candidate.is_media:
            return UploadJob(path, Skipped(candidate.mime_type))

        device_asset_id = self.identifier.device_asset_id(candidate.relative_path)

        # Best-effort: the upload endpoint reports duplicates on its own.
        try:
            existing = self.client.check_existing(device_asset_id)
        except (NetworkError, ServerError, ClientError) as e:
            logger.warning(f"Existence check failed for {path}, uploading anyway: {e}")
            existing = Absent()
        if isinstance(existing, Exists):
            return UploadJob(path, Duplicate(existing.asset_id))

        try:
            response = self.client.upload(candidate, device_asset_id)
        except NetworkError as e:
            return UploadJob(path, Failed(ErrorKind.NETWORK, str(e)))
        except ServerError as e:
            return UploadJob(path, Failed(ErrorKind.SERVER_ERROR, str(e)))
        except ClientError as e:
            return UploadJob(path, Failed(ErrorKind.CLIENT_ERROR, str(e)))
        except OSError as e:
            return UploadJob(path, Failed(ErrorKind.IDENTIFY, f"Cannot read {path}: {e}"))

        if isinstance(response, Created):
            return UploadJob(path, Uploaded(response.asset_id))
        if isinstance(response, DuplicateAsset):
            return UploadJob(path, Duplicate(response.asset_id))
        if isinstance(response, Rejected):
            return UploadJob(path, Failed(
                ErrorKind.CLIENT_ERROR, f"Rejected ({response.status_code}): {response.reason}"
            ))
        raise TypeError(f"Unknown upload response {response!r}")

    def run(self, paths: Iterable[Path], root: Path,
            cancel_event: Optional[threading.Event] = None,
            on_result: Optional[ResultCallback] = None) -> RunSummary:
        """Upload every path, pulling from the iterator only as slots free up.

        Args:
            paths: Files to upload, usually a PathScanner iterator
            root: Scan root the paths live under
            cancel_event: Once set, no further files are dispatched
            on_result: Called in this thread with each resolved job

        Returns:
            RunSummary of all resolved jobs

        Raises:
            AuthError: After running jobs drain, if any job hit an auth failure
        """
        cancel_event = cancel_event or threading.Event()
        reporter = ResultReporter()
        source = iter(paths)
        max_pending = self.concurrency_limit + self.lookahead
        future_to_file: Dict[Future, Path] = {}
        auth_error: Optional[AuthError] = None
        exhausted = False
        dropped = False

        with ThreadPoolExecutor(max_workers=self.concurrency_limit,
                                thread_name_prefix="upload") as executor:
            while True:
                while (not exhausted and auth_error is None and not cancel_event.is_set()
                       and len(future_to_file) < max_pending):
                    path = next(source, None)
                    if path is None:
                        exhausted = True
                        break
                    future_to_file[executor.submit(self.process, path, root)] = path

                if cancel_event.is_set() or auth_error is not None:
                    # Queued jobs have not touched the network yet.
                    for future in future_to_file:
                        future.cancel()

                if not future_to_file:
                    break

                done, _ = wait(future_to_file, return_when=FIRST_COMPLETED)
                for future in done:
                    path = future_to_file.pop(future)
                    result = self._collect(future, path)
                    if isinstance(result, AuthError):
                        if auth_error is None:
                            logger.error(f"Authentication failed, aborting run: {result}")
                        auth_error = auth_error or result
                    elif result is None:
                        dropped = True
                    else:
                        reporter.record(result)
                        if on_result:
                            on_result(result)

        if auth_error is not None:
            raise auth_error

        cancelled = cancel_event.is_set() and (dropped or not exhausted)
        if cancelled:
            logger.info("Upload cancelled; in-flight files were allowed to finish")
        return reporter.summary(cancelled=cancelled)

    @staticmethod
    def _collect(future: Future, path: Path) -> Union[UploadJob, AuthError, None]:
        try:
            return future.result()
        except CancelledError:
            return None
        except AuthError as e:
            return e
        except Exception as e:
            logger.error(f"Unexpected error uploading {path}: {e}")
            return UploadJob(path, Failed(ErrorKind.UNEXPECTED, str(e)))


def run_upload(root_path: Path, session: SessionContext,
               scan_options: Optional[ScanOptions] = None,
               client: Optional[UploadClient] = None,
               cancel_event: Optional[threading.Event] = None,
               on_result: Optional[ResultCallback] = None) -> RunSummary:
    """Upload every media file under root_path.

    The root is validated before any HTTP client is created, so an
    unusable root never produces network traffic.

    Args:
        root_path: Directory to upload from
        session: Server URL, API key and limits
        scan_options: Recursion, filtering and lookahead settings
        client: Client to use instead of one built from session
        cancel_event: Set to stop dispatching new files
        on_result: Called with each resolved job

    Returns:
        RunSummary with counts and failure details

    Raises:
        ScanError: If the root is missing or unreadable
        AuthError: If the server rejects the API key
    """
    scan_options = scan_options or ScanOptions()
    root = Path(root_path).absolute()
    paths = PathScanner().scan(root, recursive=scan_options.recursive)

    client = client or UploadClient(session)
    scheduler = UploadScheduler(
        client,
        AssetIdentifier(session.device_id, scan_options.library_id or root.as_posix()),
        concurrency_limit=session.concurrency_limit,
        lookahead=scan_options.lookahead,
        media_only=scan_options.media_only,
    )

    logger.info(
        f"Uploading from {root} to {session.server_url} "
        f"with {session.concurrency_limit} workers"
    )
    summary = scheduler.run(paths, root, cancel_event=cancel_event, on_result=on_result)
    logger.info(
        f"Finished {root}: {summary.uploaded} uploaded, {summary.duplicate} duplicate, "
        f"{summary.failed} failed"
    )
    return summary
