"""HTTP client for the cloud asset service.

Asset creation is asynchronous: the create request returns an operation
that is polled until it reports the new asset id. Decals are resolved to
the id of their underlying image through the asset-delivery document,
since that is the id game code can render.

HTTP failures are translated into the UploadError taxonomy so the upload
coordinator can decide whether to retry:

    401                 AuthenticationError (aborts the run)
    429                 RetryableUploadError, honouring Retry-After
    5xx, timeouts       RetryableUploadError
    400, 413, 415, 422  InvalidContentError
    other               TerminalUploadError

A 403 carrying an X-CSRF-Token header is a token handshake, not a
failure: the request is repeated once with the token.

Once the create request has been accepted, the asset exists remotely and
repeating the upload would create a second one. Operation polls and the
decal lookup therefore retry transient failures in place, and a failure
that outlasts those retries is reported as terminal.
"""

import json
import logging
import threading
import time
import xml.etree.ElementTree as ET
from typing import Any, Callable

import requests

from ...config import Creator
from ...core.errors import (
    AuthenticationError,
    InvalidContentError,
    ModerationRejectedError,
    RetryableUploadError,
    TerminalUploadError,
)
from ...core.types import AssetKind

logger = logging.getLogger(__name__)

UPLOAD_URL = "https://apis.roblox.com/assets/v1/assets"
ANIMATION_UPLOAD_URL = "https://apis.roblox.com/assets/user-auth/v1/assets"
OPERATION_URL = "https://apis.roblox.com/assets/v1/operations"
ASSET_DELIVERY_URL = "https://assetdelivery.roblox.com/v1/asset"

LEGACY_ASSET_URL_PREFIXES = ("http://www.roblox.com/asset/?id=", "rbxassetid://")

ASSET_DESCRIPTION = "Uploaded by asset-sync"
MAX_DISPLAY_NAME_LENGTH = 50
MAX_POLLS = 10
REQUEST_TIMEOUT = 60

MAX_ATTEMPTS = 5
BASE_RETRY_DELAY = 1.0
MAX_RETRY_DELAY = 60.0

CSRF_HEADER = "X-CSRF-Token"

ASSET_TYPES = {
    AssetKind.IMAGE: "Decal",
    AssetKind.AUDIO: "Audio",
    AssetKind.VIDEO: "Video",
    AssetKind.MODEL: "Model",
    AssetKind.ANIMATION: "Animation",
}

INVALID_CONTENT_STATUSES = frozenset({400, 413, 415, 422})


def trim_display_name(name: str) -> str:
    """Keep the last MAX_DISPLAY_NAME_LENGTH characters of a name."""
    return name[-MAX_DISPLAY_NAME_LENGTH:]


def _retry_after(response: requests.Response) -> float | None:
    value = response.headers.get("Retry-After")
    if value is None:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        return None


def _json(response: requests.Response, action: str) -> dict[str, Any]:
    try:
        document = response.json()
    except ValueError as e:
        raise TerminalUploadError(f"{action}: response is not JSON: {e}") from e
    if not isinstance(document, dict):
        raise TerminalUploadError(f"{action}: unexpected response: {document!r}")
    return document


def check_response(response: requests.Response, action: str) -> None:
    """Raise the UploadError matching a failed response."""
    if response.ok:
        return

    status = response.status_code
    message = f"{action} failed: {status} {response.reason} - {response.text[:500]}"

    if status == 401:
        raise AuthenticationError(message)
    if status == 429:
        raise RetryableUploadError(f"{action}: rate limited", retry_after=_retry_after(response))
    if status >= 500:
        raise RetryableUploadError(message)
    if status in INVALID_CONTENT_STATUSES:
        raise InvalidContentError(message)
    raise TerminalUploadError(message)


def operation_asset_id(operation: dict[str, Any]) -> int:
    """Extract the asset id from a finished operation.

    Raises:
        InvalidContentError: If the operation failed
        ModerationRejectedError: If moderation rejected the asset
        TerminalUploadError: If the operation carries no usable id
    """
    if operation.get("error"):
        error = operation["error"]
        message = error.get("message", error) if isinstance(error, dict) else error
        raise InvalidContentError(f"Asset creation failed: {message}")

    response = operation.get("response") or {}
    moderation = (response.get("moderationResult") or {}).get("moderationState")
    if moderation == "Rejected":
        raise ModerationRejectedError("Asset was rejected by moderation")

    asset_id = response.get("assetId")
    try:
        return int(asset_id)
    except (TypeError, ValueError):
        raise TerminalUploadError(f"Operation completed without an asset id: {operation!r}") from None


class CloudClient:
    """Client for the cloud asset API.

    Args:
        api_key: API key sent as x-api-key
        creator: Owner of created assets
        cookie: Session cookie, needed for animation and video uploads
        session: requests session (injectable for tests)
        sleep: Function used to wait between operation polls and retries
        timeout: Per-request timeout in seconds
        max_attempts: Attempts per follow-up request after the create
            request was accepted
    """

    def __init__(
        self,
        api_key: str,
        creator: Creator,
        cookie: str | None = None,
        session: requests.Session | None = None,
        sleep: Callable[[float], object] = time.sleep,
        timeout: float = REQUEST_TIMEOUT,
        max_attempts: int = MAX_ATTEMPTS,
    ):
        self.api_key = api_key
        self.creator = creator
        self.cookie = cookie
        self.session = session if session is not None else requests.Session()
        self.timeout = timeout
        self.max_attempts = max_attempts
        self._sleep = sleep
        self._csrf_token: str | None = None
        self._csrf_lock = threading.Lock()

    def _headers(self, kind: AssetKind | None = None) -> dict[str, str]:
        if kind is AssetKind.ANIMATION:
            if not self.cookie:
                raise AuthenticationError("A session cookie is required to upload animations")
            return {"Cookie": self.cookie}

        headers = {"x-api-key": self.api_key}
        if kind is AssetKind.VIDEO:
            if not self.cookie:
                raise AuthenticationError("A session cookie is required to upload videos")
            headers["Cookie"] = self.cookie
        elif kind is AssetKind.IMAGE and self.cookie:
            headers["Cookie"] = self.cookie
        return headers

    def _send(self, method: str, url: str, headers: dict[str, str], **kwargs: Any) -> requests.Response:
        """Send a request, completing a CSRF handshake if the service asks for one."""
        response = None
        for _ in range(2):
            with self._csrf_lock:
                token = self._csrf_token
            request_headers = dict(headers)
            if token:
                request_headers[CSRF_HEADER] = token

            try:
                response = self.session.request(
                    method, url, headers=request_headers, timeout=self.timeout, **kwargs
                )
            except requests.Timeout as e:
                raise RetryableUploadError(f"Request to {url} timed out: {e}") from e
            except requests.ConnectionError as e:
                raise RetryableUploadError(f"Could not connect to {url}: {e}") from e
            except requests.RequestException as e:
                raise TerminalUploadError(f"Request to {url} failed: {e}") from e

            new_token = response.headers.get(CSRF_HEADER)
            if response.status_code == 403 and new_token and new_token != token:
                logger.debug("Received CSRF token, repeating request")
                with self._csrf_lock:
                    self._csrf_token = new_token
                continue
            return response

        assert response is not None
        return response

    def _get_with_retry(
        self, url: str, headers: dict[str, str], action: str, **kwargs: Any
    ) -> requests.Response:
        """GET a resource, retrying rate limits and transient faults in place.

        Raises:
            RetryableUploadError: If the last attempt still failed transiently
            UploadError: Any other failure, unretried
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                response = self._send("GET", url, headers, **kwargs)
                check_response(response, action)
                return response
            except RetryableUploadError as e:
                if attempt >= self.max_attempts:
                    raise
                if e.retry_after is not None:
                    delay = e.retry_after
                else:
                    delay = min(BASE_RETRY_DELAY * 2 ** (attempt - 1), MAX_RETRY_DELAY)
                logger.warning(
                    "%s: %s, retrying in %.0fs (attempt %d/%d)",
                    action, e.cause, delay, attempt, self.max_attempts,
                )
                self._sleep(delay)

    def _creation_context(self, expected_price: int | None) -> dict[str, Any]:
        if self.creator.type == "group":
            creator = {"groupId": str(self.creator.id)}
        else:
            creator = {"userId": str(self.creator.id)}

        context: dict[str, Any] = {"creator": creator}
        if expected_price is not None:
            context["expectedPrice"] = expected_price
        return context

    def create_asset(
        self,
        kind: AssetKind,
        data: bytes,
        file_name: str,
        content_type: str,
        expected_price: int | None = None,
    ) -> int:
        """Create an asset and wait for its id.

        Args:
            kind: Upload kind of the asset
            data: File content
            file_name: File name (the display name is derived from it)
            content_type: MIME type of data
            expected_price: Price acknowledgement, sent when given

        Returns:
            The new asset id (for images, the id of the underlying image)

        Raises:
            UploadError: Subclass describing the failure
        """
        payload = {
            "assetType": ASSET_TYPES[kind],
            "displayName": trim_display_name(file_name),
            "description": ASSET_DESCRIPTION,
            "creationContext": self._creation_context(expected_price),
        }
        headers = self._headers(kind)
        url = ANIMATION_UPLOAD_URL if kind is AssetKind.ANIMATION else UPLOAD_URL

        response = self._send(
            "POST",
            url,
            headers,
            files={
                "request": (None, json.dumps(payload), "application/json"),
                "fileContent": (file_name, data, content_type),
            },
        )
        check_response(response, "Create asset")
        operation = _json(response, "Create asset")
        operation_id = operation.get("operationId") or str(operation.get("path", "")).removeprefix(
            "operations/"
        )

        try:
            if operation.get("done"):
                asset_id = operation_asset_id(operation)
            else:
                if not operation_id:
                    raise TerminalUploadError(f"Create asset returned no operation: {operation!r}")
                asset_id = self.poll_operation(operation_id, headers)

            if kind is AssetKind.IMAGE:
                return self.resolve_image_id(asset_id)
            return asset_id
        except RetryableUploadError as e:
            raise TerminalUploadError(
                f"Asset was created (operation {operation_id or 'unknown'}) but {e.cause}"
            ) from e

    def poll_operation(self, operation_id: str, headers: dict[str, str] | None = None) -> int:
        """Poll an operation until it is done, doubling the delay each time.

        Raises:
            TerminalUploadError: If the operation is not done after MAX_POLLS
        """
        headers = headers if headers is not None else self._headers()
        delay = 1.0

        for attempt in range(MAX_POLLS):
            response = self._get_with_retry(f"{OPERATION_URL}/{operation_id}", headers, "Poll operation")
            operation = _json(response, "Poll operation")

            if operation.get("done"):
                return operation_asset_id(operation)

            logger.debug("Operation %s not done yet", operation_id)
            if attempt < MAX_POLLS - 1:
                self._sleep(delay)
                delay *= 2

        raise TerminalUploadError(f"Operation {operation_id} did not finish after {MAX_POLLS} polls")

    def resolve_image_id(self, decal_id: int) -> int:
        """Resolve a decal to the id of the image it wraps.

        Raises:
            TerminalUploadError: If the asset document has no image url
        """
        response = self._get_with_retry(
            ASSET_DELIVERY_URL, self._headers(AssetKind.IMAGE), "Resolve image id", params={"id": decal_id}
        )

        try:
            document = ET.fromstring(response.content)
        except ET.ParseError as e:
            raise TerminalUploadError(f"Malformed asset document for decal {decal_id}: {e}") from e

        url = document.findtext("Item/Properties/Content/url", default="").strip()
        for prefix in LEGACY_ASSET_URL_PREFIXES:
            if url.startswith(prefix):
                try:
                    return int(url.removeprefix(prefix))
                except ValueError:
                    break

        raise TerminalUploadError(f"Could not find the image id of decal {decal_id} (url: {url!r})")
