"""
Test fixtures for the uploader.
"""
import json
import threading
import time
from unittest.mock import MagicMock

import pytest
import requests
from tenacity import wait_none

from immich_uploader.client import UploadClient
from immich_uploader.identifier import AssetIdentifier
from immich_uploader.models import SessionContext

SERVER_URL = "http://immich.test:2283"
API_KEY = "secret"

JPEG_BYTES = b"\xff\xd8\xff\xe0\x00\x10JFIF\x00" + b"\x00" * 64
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64
MP4_BYTES = b"\x00\x00\x00\x18ftypmp42" + b"\x00" * 64


def make_response(status_code, json_body=None, text=None):
    """Build a real requests.Response without touching the network."""
    response = requests.Response()
    response.status_code = status_code
    if json_body is not None:
        response._content = json.dumps(json_body).encode("utf-8")
    else:
        response._content = (text or "").encode("utf-8")
    response.encoding = "utf-8"
    return response


class FakeImmichServer:
    """In-memory stand-in for the Immich API, used as session.request."""

    def __init__(self, api_key=API_KEY, existing=(), delay=0.0):
        self.api_key = api_key
        self.existing = set(existing)
        self.delay = delay
        self.calls = []
        self.uploaded = []
        self.in_flight = 0
        self.peak = 0
        self._lock = threading.Lock()

    def request(self, method, url, headers=None, timeout=None,
                json=None, data=None, files=None):
        route = url.split("/api", 1)[1]
        with self._lock:
            self.calls.append((method, route))
            self.in_flight += 1
            self.peak = max(self.peak, self.in_flight)
        try:
            if self.delay:
                time.sleep(self.delay)
            if headers.get("x-api-key") != self.api_key:
                return make_response(401, {"message": "Invalid API key"})
            if route == "/server/ping":
                return make_response(200, {"res": "pong"})
            if route == "/assets/exist":
                ids = json["deviceAssetIds"]
                return make_response(200, {"existingIds": [i for i in ids if i in self.existing]})
            if route == "/assets":
                files["assetData"][1].read()
                device_asset_id = data["deviceAssetId"]
                with self._lock:
                    if device_asset_id in self.existing:
                        return make_response(200, {"id": "dup", "status": "duplicate"})
                    self.existing.add(device_asset_id)
                    self.uploaded.append(device_asset_id)
                    asset_id = f"asset-{len(self.uploaded)}"
                return make_response(201, {"id": asset_id, "status": "created"})
            return make_response(404, {"message": "Not found"})
        finally:
            with self._lock:
                self.in_flight -= 1


@pytest.fixture
def tmp_upload_dir(tmp_path):
    """Create a temporary directory for test files."""
    upload_dir = tmp_path / "uploads"
    upload_dir.mkdir()
    return upload_dir


@pytest.fixture
def session_context():
    return SessionContext(server_url=SERVER_URL, api_key=API_KEY, concurrency_limit=2)


@pytest.fixture
def fake_server():
    return FakeImmichServer()


@pytest.fixture
def http_session(fake_server):
    """Mock requests session routed to the fake server."""
    session = MagicMock()
    session.request.side_effect = fake_server.request
    return session


@pytest.fixture
def upload_client(session_context, http_session):
    """Client on the fake server with no backoff between retries."""
    return UploadClient(session_context, session=http_session, wait=wait_none())


@pytest.fixture
def identifier():
    return AssetIdentifier("test-device")


@pytest.fixture
def media_tree(tmp_upload_dir):
    """A small tree of photos and videos plus one non-media file."""
    files = {
        "a.jpg": JPEG_BYTES,
        "b.png": PNG_BYTES,
        "trip/c.mp4": MP4_BYTES,
        "trip/notes.txt": b"not a photo",
    }
    for rel_path, content in files.items():
        path = tmp_upload_dir / rel_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)
    return tmp_upload_dir
