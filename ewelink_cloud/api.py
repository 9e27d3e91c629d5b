"""REST client for the eWeLink cloud API.

This module provides the signed/authenticated request layer used by the
session manager, the device registry, and the real-time dispatch lookup,
including response validation and error-code translation.
"""

from __future__ import annotations

import json
import logging
from typing import Any

import httpx
from httpx_retries import Retry, RetryTransport

from .config import EwelinkConfig
from .const import DEFAULT_TIMEOUT
from .errors import EwelinkApiError, EwelinkAuthError, api_error_from_code
from .utils import encode_body, generate_nonce, sign

_LOGGER = logging.getLogger(__name__)

# HTTP status codes
HTTP_BAD_REQUEST = 400
HTTP_UNAUTHORIZED = 401


def create_headers(app_id: str) -> dict[str, str]:
    """Create the base HTTP headers for eWeLink API requests.

    Args:
        app_id: Application identifier sent as ``X-CK-Appid``.

    Returns:
        Dictionary containing HTTP headers, with a fresh nonce.

    """
    return {
        "Content-Type": "application/json; charset=utf-8",
        "X-CK-Appid": app_id,
        "X-CK-Nonce": generate_nonce(),
    }


def create_sign_headers(app_id: str, app_secret: str, body: str) -> dict[str, str]:
    """Create headers for an unauthenticated request signed with the app secret.

    Args:
        app_id: Application identifier.
        app_secret: Application secret used for HMAC-SHA256.
        body: Serialized request body, exactly as sent.

    Returns:
        Dictionary containing HTTP headers with ``Authorization: Sign``.

    """
    headers = create_headers(app_id)
    headers["Authorization"] = f"Sign {sign(body, app_secret)}"
    return headers


def create_bearer_headers(app_id: str, access_token: str) -> dict[str, str]:
    """Create headers for a request authorized with an access token."""
    headers = create_headers(app_id)
    headers["Authorization"] = f"Bearer {access_token}"
    return headers


def is_http_error(status: int) -> bool:
    """Check if HTTP status code indicates an error.

    Args:
        status: HTTP status code to check.

    Returns:
        True if status code is 400 or higher, False otherwise.

    """
    return status >= HTTP_BAD_REQUEST


def is_auth_error(status: int) -> bool:
    """Check if HTTP status code indicates authentication error."""
    return status == HTTP_UNAUTHORIZED


def is_api_error(data: dict[str, Any]) -> bool:
    """Check if API response carries a non-zero error code.

    Args:
        data: API response data dictionary.

    Returns:
        True if the ``error`` field is present and not 0, False otherwise.

    """
    return bool(data.get("error", 0))


def validate_response(
    response: httpx.Response,
    *,
    envelope: bool = True,
) -> dict[str, Any]:
    """Validate HTTP response and return the parsed payload.

    Args:
        response: HTTP response object to validate.
        envelope: If True, return the ``data`` member of the
            ``{error, msg, data}`` envelope; otherwise the whole document.

    Returns:
        Parsed JSON payload.

    Raises:
        EwelinkAuthError: If an authorization error is detected.
        EwelinkApiError: If any other API error is detected.

    """
    _validate_http_status(response)
    try:
        data = response.json()
    except json.JSONDecodeError as err:
        error_msg = "Malformed response body"
        raise EwelinkApiError(response.status_code, error_msg) from err
    if not isinstance(data, dict):
        error_msg = "Unexpected response document"
        raise EwelinkApiError(response.status_code, error_msg)
    _validate_api_status(data)
    if envelope:
        return data.get("data") or {}
    return data


def _validate_http_status(response: httpx.Response) -> None:
    if not is_http_error(response.status_code):
        return

    if is_auth_error(response.status_code):
        raise EwelinkAuthError(response.status_code)

    client_error = f"Request failed: {response.status_code}"
    raise EwelinkApiError(response.status_code, client_error)


def _validate_api_status(data: dict[str, Any]) -> None:
    if not is_api_error(data):
        return

    code = int(data["error"])
    _LOGGER.debug("API returned error %s: %s", code, data.get("msg"))
    raise api_error_from_code(code, data.get("msg"))


def create_session_client(
    timeout: float = DEFAULT_TIMEOUT,
    retry: Retry | None = None,
) -> httpx.Client:
    """Create the HTTP client used for eWeLink API requests.

    Args:
        timeout: Request timeout in seconds.
        retry: Optional retry policy. The client does not retry unless the
            caller opts in.

    Returns:
        Configured httpx Client.

    """
    transport: httpx.BaseTransport = httpx.HTTPTransport()
    if retry is not None:
        transport = RetryTransport(transport=transport, retry=retry)
    return httpx.Client(timeout=timeout, transport=transport)


class EwelinkApiClient:
    """Executes signed and bearer-authorized requests against a region."""

    def __init__(self, session: httpx.Client, config: EwelinkConfig) -> None:
        self._session = session
        self._config = config

    @property
    def config(self) -> EwelinkConfig:
        return self._config

    @property
    def base_url(self) -> str:
        return self._config.api_url

    def use_region(self, region: str) -> None:
        """Switch the region, e.g. after an OAuth redirect names one."""
        if region != self._config.region:
            _LOGGER.info("Switching API region to %s", region)
            self._config = self._config.with_region(region)

    def post_signed(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        """POST a body signed with the application secret.

        Raises:
            EwelinkApiError: If the backend reports an error.
            httpx.RequestError: If the request could not be sent.

        """
        url = f"{self.base_url}{path}"
        body = encode_body(payload)
        headers = create_sign_headers(
            self._config.app_id, self._config.app_secret, body
        )
        _LOGGER.debug("POST (signed) %s", path)
        response = self._session.post(url, headers=headers, content=body)
        return validate_response(response)

    def get(
        self,
        path: str,
        access_token: str,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """GET with bearer authorization and return the response data."""
        url = f"{self.base_url}{path}"
        headers = create_bearer_headers(self._config.app_id, access_token)
        _LOGGER.debug("GET %s %s", path, params or {})
        response = self._session.get(url, headers=headers, params=params)
        return validate_response(response)

    def post(
        self,
        path: str,
        access_token: str,
        payload: dict[str, Any],
    ) -> dict[str, Any]:
        """POST with bearer authorization and return the response data."""
        url = f"{self.base_url}{path}"
        headers = create_bearer_headers(self._config.app_id, access_token)
        _LOGGER.debug("POST %s", path)
        response = self._session.post(url, headers=headers, content=encode_body(payload))
        return validate_response(response)

    def get_url(self, url: str) -> dict[str, Any]:
        """GET a fully-qualified URL without authorization.

        Used for the dispatch lookup, which answers with a bare document
        rather than the ``data`` envelope.
        """
        _LOGGER.debug("GET %s", url)
        response = self._session.get(url)
        return validate_response(response, envelope=False)
