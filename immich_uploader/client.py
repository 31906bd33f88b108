"""
Module for talking to the Immich HTTP API with retry logic.
"""
import logging
from typing import Any, Callable, Dict, Iterable, Optional

import requests
from requests.adapters import HTTPAdapter
from tenacity import (
    Retrying,
    after_log,
    before_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from .errors import AuthError, ClientError, NetworkError, ServerError
from .models import (
    Absent,
    AssetCandidate,
    Created,
    DuplicateAsset,
    ExistenceResult,
    Exists,
    Rejected,
    SessionContext,
    UploadResponse,
)

logger = logging.getLogger(__name__)


def is_retryable_error(exception: BaseException) -> bool:
    """Check if an exception should trigger a retry.

    Args:
        exception: The exception to check

    Returns:
        True for transient network and 5xx failures, False otherwise
    """
    return isinstance(exception, (NetworkError, ServerError))


def default_backoff():
    return wait_exponential(multiplier=1, min=1, max=10)


class UploadClient:
    """Wraps the remote API: ping, existence check and upload."""

    def __init__(self, context: SessionContext,
                 session: Optional[requests.Session] = None,
                 wait=None):
        """Initialize the client.

        Args:
            context: Server URL, API key and limits for this run
            session: HTTP session to reuse; one sized to the concurrency
                limit is created when omitted
            wait: tenacity wait strategy between attempts
        """
        self.context = context
        self.base_url = context.api_url
        self.wait = wait if wait is not None else default_backoff()
        if session is None:
            session = requests.Session()
            adapter = HTTPAdapter(pool_maxsize=context.concurrency_limit)
            session.mount("http://", adapter)
            session.mount("https://", adapter)
        self.session = session

    @property
    def headers(self) -> Dict[str, str]:
        return {"x-api-key": self.context.api_key, "Accept": "application/json"}

    def _retrying(self) -> Retrying:
        return Retrying(
            retry=retry_if_exception(is_retryable_error),
            stop=stop_after_attempt(self.context.max_attempts),
            wait=self.wait,
            before=before_log(logger, logging.DEBUG),
            after=after_log(logger, logging.DEBUG),
            reraise=True,
        )

    def _call(self, fn: Callable[..., Any], *args, **kwargs) -> Any:
        return self._retrying()(fn, *args, **kwargs)

    def _send(self, method: str, route: str, **kwargs) -> requests.Response:
        """Send one request and classify transport and status failures.

        Returns the response for 2xx and non-auth 4xx statuses; callers
        decide what a 4xx means for their endpoint.

        Raises:
            NetworkError: On connection failures and timeouts
            AuthError: On 401/403
            ServerError: On 5xx
        """
        url = f"{self.base_url}{route}"
        try:
            response = self.session.request(
                method, url, headers=self.headers,
                timeout=self.context.timeout, **kwargs
            )
        except (requests.ConnectionError, requests.Timeout) as e:
            raise NetworkError(f"{method} {url} failed: {e}") from e

        status = response.status_code
        if status in (401, 403):
            raise AuthError(f"Server rejected credentials ({status})", status)
        if status >= 500:
            raise ServerError(f"{method} {url} returned {status}: {_body(response)}", status)
        return response

    def ping(self) -> None:
        """Verify the server is reachable and is an Immich server.

        Raises:
            NetworkError: If the server is unreachable or answers oddly
        """
        def attempt():
            response = self._send("GET", "/server/ping")
            if not response.ok or "pong" not in response.text:
                raise NetworkError(
                    f"Unexpected ping response ({response.status_code}): {_body(response)}",
                    response.status_code,
                )

        self._call(attempt)

    def check_existing_many(self, device_asset_ids: Iterable[str]) -> Dict[str, bool]:
        """Ask the server which device asset ids it already holds.

        Args:
            device_asset_ids: Ids to look up

        Returns:
            Mapping of every requested id to whether it exists

        Raises:
            ClientError: If the server rejects the lookup
        """
        ids = list(device_asset_ids)
        if not ids:
            return {}

        def attempt():
            response = self._send(
                "POST", "/assets/exist",
                json={"deviceAssetIds": ids, "deviceId": self.context.device_id},
            )
            if not response.ok:
                raise ClientError(
                    f"Existence check rejected ({response.status_code}): {_body(response)}",
                    response.status_code,
                )
            return response.json()

        payload = self._call(attempt)
        existing = set(payload.get("existingIds", [])) if isinstance(payload, dict) else set()
        return {asset_id: asset_id in existing for asset_id in ids}

    def check_existing(self, device_asset_id: str) -> ExistenceResult:
        """Check a single device asset id.

        Args:
            device_asset_id: Id derived from the file's relative path

        Returns:
            Exists or Absent
        """
        found = self.check_existing_many([device_asset_id])
        if found.get(device_asset_id):
            return Exists(device_asset_id)
        return Absent()

    def upload(self, candidate: AssetCandidate, device_asset_id: str) -> UploadResponse:
        """Send a file and its metadata as one multipart request.

        Args:
            candidate: File to upload
            device_asset_id: Id derived from the file's relative path

        Returns:
            Created, DuplicateAsset or Rejected
        """
        data = {
            "deviceAssetId": device_asset_id,
            "deviceId": self.context.device_id,
            "fileCreatedAt": candidate.created_time.isoformat(),
            "fileModifiedAt": candidate.modified_time.isoformat(),
            "isFavorite": "false",
        }

        def attempt():
            # Reopened on each attempt so a retry resends from the start.
            with open(candidate.absolute_path, "rb") as f:
                files = {"assetData": (candidate.filename, f, candidate.mime_type)}
                response = self._send("POST", "/assets", data=data, files=files)
            return decode_upload_response(response)

        return self._call(attempt)


def decode_upload_response(response: requests.Response) -> UploadResponse:
    """Turn an upload response into its tagged variant.

    Args:
        response: A response with a 2xx or non-auth 4xx status

    Returns:
        Created, DuplicateAsset or Rejected
    """
    body = _json(response)
    asset_id = str(body.get("id", "")) if body else ""
    text = _body(response)

    if response.status_code == 409 or "already exists" in text.lower():
        return DuplicateAsset(asset_id)
    if response.ok:
        if body.get("status") == "duplicate" or body.get("duplicate") is True:
            return DuplicateAsset(asset_id)
        return Created(asset_id)
    return Rejected(text or response.reason or "rejected", response.status_code)


def _json(response: requests.Response) -> Dict[str, Any]:
    try:
        payload = response.json()
    except ValueError:
        return {}
    return payload if isinstance(payload, dict) else {}


def _body(response: requests.Response, limit: int = 200) -> str:
    return (response.text or "")[:limit]
