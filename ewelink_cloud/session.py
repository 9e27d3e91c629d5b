"""Session lifecycle for the eWeLink cloud API.

The manager owns the single live token pair of one account: it exchanges an
authorization code for a session, silently refreshes the access token while
the refresh token is valid, and tears the session down when the backend
reports an authorization error.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from collections.abc import Callable
from typing import Any

from .api import EwelinkApiClient
from .const import (
    DEFAULT_LOGIN_STATE,
    ENDPOINT_OAUTH_TOKEN,
    ENDPOINT_REFRESH,
    STORE_KEY_SESSION,
)
from .errors import (
    AuthExchangeFailed,
    EwelinkApiError,
    NoRefreshToken,
    NotAuthenticated,
    RefreshRejected,
)
from .models import Session
from .store import MemoryStore, SnapshotStore
from .utils import build_login_url, mask_token

_LOGGER = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


class SessionManager:
    """Manage one authenticated session with locked, single-flight refresh."""

    def __init__(
        self,
        client: EwelinkApiClient,
        store: SnapshotStore | None = None,
        *,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        """Initialize the manager and restore any persisted session.

        Args:
            client: REST client used for the token endpoints and for
                authenticated requests.
            store: Key-value store for the serialized session.
            clock: Returns the current time in epoch milliseconds.

        """
        self._client = client
        self._store = store if store is not None else MemoryStore()
        self._clock = clock
        self._lock = threading.RLock()
        self._session: Session | None = self._load()
        if self._session is not None and self._session.region:
            self._client.use_region(self._session.region)

    @property
    def session(self) -> Session | None:
        return self._session

    @property
    def client(self) -> EwelinkApiClient:
        return self._client

    def login_url(self, state: str = DEFAULT_LOGIN_STATE) -> str:
        """Return the OAuth login page URL for this application."""
        config = self._client.config
        return build_login_url(
            config.app_id, config.app_secret, config.redirect_url, state
        )

    def authorize(self, code: str, region: str | None = None) -> Session:
        """Exchange a one-time authorization code for a session.

        Args:
            code: Authorization code returned to the redirect URL.
            region: Region returned alongside the code, if any.

        Returns:
            The new session.

        Raises:
            AuthExchangeFailed: If the backend rejects the exchange.

        """
        if region:
            self._client.use_region(region)
        payload = {
            "grantType": "authorization_code",
            "code": code,
            "redirectUrl": self._client.config.redirect_url,
        }

        _LOGGER.debug("Exchanging authorization code for a session")
        try:
            data = self._client.post_signed(ENDPOINT_OAUTH_TOKEN, payload)
            session = Session.from_dict(data, region=self._client.config.region)
        except EwelinkApiError as err:
            raise AuthExchangeFailed(err.code, detail=err.detail) from err
        except KeyError as err:
            error_msg = f"Token response missing field {err}"
            raise AuthExchangeFailed(0, error_msg) from err

        with self._lock:
            self._session = session
            self._persist()
        _LOGGER.info("Session authorized for region %s", session.region)
        return session

    def refresh(self) -> Session:
        """Replace the access token using the refresh token.

        Expiry fields the backend omits are kept from the current session.

        Raises:
            NoRefreshToken: If no session has been obtained yet.
            RefreshRejected: If the backend rejects the refresh token.
            httpx.RequestError: If the request could not be sent.

        """
        with self._lock:
            if self._session is None or not self._session.refresh_token:
                error_msg = "Refresh token not available; authorize first"
                raise NoRefreshToken(error_msg)

            payload = {
                "grantType": "refresh_token",
                "rt": self._session.refresh_token,
            }
            _LOGGER.debug(
                "Refreshing access token %s", mask_token(self._session.access_token)
            )
            try:
                data = self._client.post_signed(ENDPOINT_REFRESH, payload)
            except EwelinkApiError as err:
                if err.is_auth_failure:
                    self.invalidate()
                raise RefreshRejected(err.code, detail=err.detail) from err

            self._session = self._session.merge_refresh(data)
            self._persist()
            _LOGGER.info("Access token refreshed")
            return self._session

    def ensure_valid(self) -> bool:
        """Check the session, refreshing it silently when needed.

        Returns:
            True if a usable access token is available, False if the
            authorization flow must be restarted.

        """
        with self._lock:
            session = self._session
            if session is None:
                return False

            now = self._clock()
            if now < session.access_expiry_ms:
                return True

            if now < session.refresh_expiry_ms:
                _LOGGER.debug("Access token expired, refreshing")
                self.refresh()
                return True

            _LOGGER.info("Refresh token expired, re-authorization required")
            return False

    def invalidate(self) -> None:
        """Clear the in-memory and persisted session."""
        with self._lock:
            if self._session is not None:
                _LOGGER.warning("Invalidating session for region %s", self._session.region)
            self._session = None
            self._store.delete(STORE_KEY_SESSION)

    def get_access_token(self) -> str:
        """Return a currently valid access token.

        Raises:
            NotAuthenticated: If there is no usable session.

        """
        with self._lock:
            if not self.ensure_valid():
                error_msg = "No valid session; authorization required"
                raise NotAuthenticated(error_msg)
            return self._session.access_token  # type: ignore[union-attr]

    def get(self, path: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        """Authenticated GET; authorization errors invalidate the session."""
        token = self.get_access_token()
        try:
            return self._client.get(path, token, params)
        except EwelinkApiError as err:
            self._handle_api_error(err)
            raise

    def post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        """Authenticated POST; authorization errors invalidate the session."""
        token = self.get_access_token()
        try:
            return self._client.post(path, token, payload)
        except EwelinkApiError as err:
            self._handle_api_error(err)
            raise

    def handle_error(self, err: EwelinkApiError) -> None:
        """Apply local recovery for a backend error seen by another transport."""
        self._handle_api_error(err)

    def _handle_api_error(self, err: EwelinkApiError) -> None:
        if err.is_auth_failure:
            _LOGGER.warning("Authorization error %s, session discarded", err.code)
            self.invalidate()

    def _load(self) -> Session | None:
        raw = self._store.load(STORE_KEY_SESSION)
        if not raw:
            return None
        try:
            session = Session.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError):
            _LOGGER.warning("Ignoring unreadable persisted session")
            return None
        _LOGGER.debug("Restored persisted session for region %s", session.region)
        return session

    def _persist(self) -> None:
        """Write the session only if its serialized form changed."""
        if self._session is None:
            return
        serialized = json.dumps(self._session.to_dict(), separators=(",", ":"))
        if serialized == self._store.load(STORE_KEY_SESSION):
            return
        self._store.save(STORE_KEY_SESSION, serialized)
