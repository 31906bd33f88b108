"""
Tests for the bounded upload scheduler.
"""
import threading
import time

import pytest

from conftest import JPEG_BYTES
from immich_uploader.errors import AuthError, ClientError, NetworkError, ServerError
from immich_uploader.identifier import AssetIdentifier
from immich_uploader.models import (
    DEFAULT_LOOKAHEAD,
    Absent,
    Created,
    Duplicate,
    DuplicateAsset,
    ErrorKind,
    Exists,
    Failed,
    Rejected,
    ScanOptions,
    Skipped,
    Uploaded,
)
from immich_uploader.scanner import PathScanner
from immich_uploader.scheduler import UploadScheduler


class RecordingClient:
    """Instrumented client that tracks concurrency and call order."""

    def __init__(self, existing=(), delay=0.01, upload_error=None, check_error=None,
                 upload_response=None):
        self.existing = set(existing)
        self.delay = delay
        self.upload_error = upload_error
        self.check_error = check_error
        self.upload_response = upload_response
        self.checked = []
        self.uploaded = []
        self.in_flight = 0
        self.peak = 0
        self._lock = threading.Lock()

    def _enter(self):
        with self._lock:
            self.in_flight += 1
            self.peak = max(self.peak, self.in_flight)

    def _exit(self):
        with self._lock:
            self.in_flight -= 1

    def check_existing(self, device_asset_id):
        self._enter()
        try:
            time.sleep(self.delay)
            with self._lock:
                self.checked.append(device_asset_id)
            if self.check_error:
                raise self.check_error
            if device_asset_id in self.existing:
                return Exists(device_asset_id)
            return Absent()
        finally:
            self._exit()

    def upload(self, candidate, device_asset_id):
        self._enter()
        try:
            time.sleep(self.delay)
            with self._lock:
                assert device_asset_id in self.checked or self.check_error
                self.uploaded.append(device_asset_id)
            if self.upload_error:
                raise self.upload_error
            return self.upload_response or Created(f"srv-{device_asset_id[:8]}")
        finally:
            self._exit()


def make_photos(directory, count):
    for i in range(count):
        (directory / f"IMG_{i:04d}.jpg").write_bytes(JPEG_BYTES)


def run(scheduler, root, **kwargs):
    return scheduler.run(PathScanner().scan(root), root, **kwargs)


@pytest.mark.parametrize("limit", [1, 3, 5])
def test_concurrency_never_exceeds_limit(tmp_upload_dir, identifier, limit):
    make_photos(tmp_upload_dir, 40)
    client = RecordingClient(delay=0.005)
    scheduler = UploadScheduler(client, identifier, concurrency_limit=limit)

    summary = run(scheduler, tmp_upload_dir)

    assert summary.uploaded == 40
    assert 1 <= client.peak <= limit


def test_existing_asset_is_duplicate_without_upload(tmp_upload_dir, identifier):
    make_photos(tmp_upload_dir, 2)
    existing_id = identifier.device_asset_id("IMG_0000.jpg")
    client = RecordingClient(existing={existing_id})
    scheduler = UploadScheduler(client, identifier, concurrency_limit=2)

    summary = run(scheduler, tmp_upload_dir)

    assert summary.duplicate == 1
    assert summary.uploaded == 1
    assert existing_id not in client.uploaded


def test_server_error_after_retries_is_one_failure(tmp_upload_dir, identifier):
    make_photos(tmp_upload_dir, 1)
    client = RecordingClient(upload_error=ServerError("503 from server", 503))
    scheduler = UploadScheduler(client, identifier, concurrency_limit=2)

    summary = run(scheduler, tmp_upload_dir)

    assert (summary.uploaded, summary.duplicate, summary.failed) == (0, 0, 1)
    assert summary.failures[0].error_kind == ErrorKind.SERVER_ERROR
    assert summary.failures[0].path == tmp_upload_dir / "IMG_0000.jpg"


def test_network_failure_is_recorded(tmp_upload_dir, identifier):
    make_photos(tmp_upload_dir, 1)
    client = RecordingClient(upload_error=NetworkError("refused"))
    summary = run(UploadScheduler(client, identifier), tmp_upload_dir)
    assert summary.failures[0].error_kind == ErrorKind.NETWORK


def test_rejected_upload_is_client_error(tmp_upload_dir, identifier):
    make_photos(tmp_upload_dir, 1)
    client = RecordingClient(upload_response=Rejected("bad file", 400))
    summary = run(UploadScheduler(client, identifier), tmp_upload_dir)
    assert summary.failed == 1
    assert summary.failures[0].error_kind == ErrorKind.CLIENT_ERROR
    assert "bad file" in summary.failures[0].message


def test_duplicate_reported_by_upload(tmp_upload_dir, identifier):
    make_photos(tmp_upload_dir, 1)
    client = RecordingClient(upload_response=DuplicateAsset("srv-old"))
    scheduler = UploadScheduler(client, identifier)
    job = scheduler.process(tmp_upload_dir / "IMG_0000.jpg", tmp_upload_dir)
    assert job.outcome == Duplicate("srv-old")


@pytest.mark.parametrize("error", [
    NetworkError("down"),
    ServerError("boom", 500),
    ClientError("no such route", 404),
])
def test_failed_precheck_falls_back_to_upload(tmp_upload_dir, identifier, error):
    make_photos(tmp_upload_dir, 1)
    client = RecordingClient(check_error=error)
    summary = run(UploadScheduler(client, identifier), tmp_upload_dir)
    assert summary.uploaded == 1


def test_unreadable_file_is_identify_failure(tmp_upload_dir, identifier):
    make_photos(tmp_upload_dir, 1)
    client = RecordingClient()
    scheduler = UploadScheduler(client, identifier)

    job = scheduler.process(tmp_upload_dir / "vanished.jpg", tmp_upload_dir)

    assert isinstance(job.outcome, Failed)
    assert job.outcome.error_kind == ErrorKind.IDENTIFY
    assert client.checked == []


def test_non_media_files_are_skipped(media_tree, identifier):
    client = RecordingClient()
    summary = run(UploadScheduler(client, identifier), media_tree)
    assert summary.uploaded == 3
    assert summary.skipped == 1
    assert len(client.checked) == 3


def test_media_only_disabled_uploads_everything(media_tree, identifier):
    client = RecordingClient()
    summary = run(UploadScheduler(client, identifier, media_only=False), media_tree)
    assert summary.uploaded == 4
    assert summary.skipped == 0


def test_auth_error_aborts_run(tmp_upload_dir, identifier):
    make_photos(tmp_upload_dir, 30)
    client = RecordingClient(check_error=AuthError("bad key", 401))
    scheduler = UploadScheduler(client, identifier, concurrency_limit=2, lookahead=0)

    with pytest.raises(AuthError):
        run(scheduler, tmp_upload_dir)

    assert len(client.checked) < 30
    assert client.uploaded == []


def test_cancel_stops_dispatch(tmp_upload_dir, identifier):
    make_photos(tmp_upload_dir, 50)
    cancel_event = threading.Event()
    client = RecordingClient(delay=0.01)
    results = []

    def on_result(job):
        results.append(job)
        if len(results) == 3:
            cancel_event.set()

    scheduler = UploadScheduler(client, identifier, concurrency_limit=2, lookahead=1)
    summary = run(scheduler, tmp_upload_dir, cancel_event=cancel_event, on_result=on_result)

    assert summary.cancelled
    assert summary.uploaded == len(results)
    assert summary.uploaded < 50
    assert len(client.uploaded) == summary.uploaded



def test_cancel_after_scan_exhausted_is_reported(tmp_upload_dir, identifier):
    """Files already queued when the scan ran dry still count as cancelled work."""
    make_photos(tmp_upload_dir, 3)
    cancel_event = threading.Event()
    client = RecordingClient(delay=0.05)

    def on_result(job):
        cancel_event.set()

    scheduler = UploadScheduler(client, identifier, concurrency_limit=1, lookahead=10)
    summary = run(scheduler, tmp_upload_dir, cancel_event=cancel_event, on_result=on_result)

    assert summary.cancelled
    assert summary.total < 3
    assert len(client.uploaded) == summary.uploaded


def test_cancel_after_all_results_is_not_cancelled(tmp_upload_dir, identifier):
    make_photos(tmp_upload_dir, 2)
    cancel_event = threading.Event()
    results = []

    def on_result(job):
        results.append(job)
        if len(results) == 2:
            cancel_event.set()

    scheduler = UploadScheduler(RecordingClient(), identifier, concurrency_limit=2)
    summary = run(scheduler, tmp_upload_dir, cancel_event=cancel_event, on_result=on_result)

    assert summary.uploaded == 2
    assert not summary.cancelled

def test_scan_is_pulled_lazily(tmp_upload_dir, identifier):
    """At most limit + lookahead files are pulled ahead of completion."""
    make_photos(tmp_upload_dir, 20)
    release = threading.Event()
    pulled = []

    class BlockingClient(RecordingClient):
        def check_existing(self, device_asset_id):
            release.wait(5)
            return super().check_existing(device_asset_id)

    def counting(paths):
        for path in paths:
            pulled.append(path)
            yield path

    scheduler = UploadScheduler(BlockingClient(), identifier, concurrency_limit=2, lookahead=3)
    worker = threading.Thread(
        target=scheduler.run,
        args=(counting(PathScanner().scan(tmp_upload_dir)), tmp_upload_dir),
    )
    worker.start()
    time.sleep(0.2)
    pulled_while_blocked = len(pulled)
    release.set()
    worker.join(10)

    assert pulled_while_blocked == 5
    assert len(pulled) == 20


def test_invalid_concurrency_limit(identifier):
    with pytest.raises(ValueError):
        UploadScheduler(RecordingClient(), identifier, concurrency_limit=0)


def test_skipped_outcome_carries_mime_type(media_tree, identifier):
    scheduler = UploadScheduler(RecordingClient(), identifier)
    job = scheduler.process(media_tree / "trip" / "notes.txt", media_tree)
    assert job.outcome == Skipped("text/plain")


def test_uploaded_outcome_carries_server_id(tmp_upload_dir, identifier):
    make_photos(tmp_upload_dir, 1)
    scheduler = UploadScheduler(RecordingClient(upload_response=Created("srv-42")), identifier)
    job = scheduler.process(tmp_upload_dir / "IMG_0000.jpg", tmp_upload_dir)
    assert job.outcome == Uploaded("srv-42")


def test_non_media_name_skipped_without_reading(tmp_upload_dir, identifier):
    """A .txt file is skipped on its name alone, even if it cannot be read."""
    client = RecordingClient()
    scheduler = UploadScheduler(client, identifier)

    job = scheduler.process(tmp_upload_dir / "missing-notes.txt", tmp_upload_dir)

    assert job.outcome == Skipped("text/plain")
    assert client.checked == []


def test_unnamed_type_still_sniffed(tmp_upload_dir, identifier):
    """Files with no known extension fall through to content sniffing."""
    (tmp_upload_dir / "IMG_0001").write_bytes(JPEG_BYTES)
    client = RecordingClient()
    scheduler = UploadScheduler(client, identifier)

    job = scheduler.process(tmp_upload_dir / "IMG_0001", tmp_upload_dir)

    assert isinstance(job.outcome, Uploaded)


def test_unexpected_client_error_is_one_failure(tmp_upload_dir, identifier):
    make_photos(tmp_upload_dir, 2)
    client = RecordingClient(check_error=RuntimeError("decoder crashed"))

    summary = run(UploadScheduler(client, identifier), tmp_upload_dir)

    assert summary.failed == 2
    assert {f.error_kind for f in summary.failures} == {ErrorKind.UNEXPECTED}
    assert "decoder crashed" in summary.failures[0].message
    assert client.uploaded == []


def test_default_lookahead_is_shared():
    scheduler = UploadScheduler(RecordingClient(), AssetIdentifier())
    assert scheduler.lookahead == DEFAULT_LOOKAHEAD
    assert ScanOptions().lookahead == DEFAULT_LOOKAHEAD
