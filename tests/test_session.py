"""Tests for the session lifecycle manager."""

from __future__ import annotations

import json
import threading
from typing import Any
from urllib.parse import parse_qs, urlparse

import httpx
import pytest
from conftest import HOUR_MS, NOW_MS, FakeClock, envelope
from pytest_httpx import HTTPXMock

from ewelink_cloud.api import EwelinkApiClient
from ewelink_cloud.const import API_URLS, STORE_KEY_SESSION
from ewelink_cloud.errors import (
    AuthExchangeFailed,
    ErrorKind,
    EwelinkApiError,
    EwelinkAuthError,
    NoRefreshToken,
    NotAuthenticated,
    RefreshRejected,
)
from ewelink_cloud.session import SessionManager
from ewelink_cloud.store import MemoryStore
from ewelink_cloud.utils import sign

EU_URL = API_URLS["eu"]
TOKEN_URL = f"{EU_URL}/v2/user/oauth/token"
REFRESH_URL = f"{EU_URL}/v2/user/refresh"
FAMILY_URL = httpx.URL(f"{EU_URL}/v2/family", params={"lang": "en"})


@pytest.fixture
def fresh_manager(
    api_client: EwelinkApiClient,
    store: MemoryStore,
    clock: FakeClock,
) -> SessionManager:
    """Create a manager with no session."""
    return SessionManager(api_client, store, clock=clock)


class TestAuthorize:
    """Tests for SessionManager.authorize."""

    def test_authorize_exchanges_code_for_session(
        self,
        httpx_mock: HTTPXMock,
        fresh_manager: SessionManager,
        store: MemoryStore,
        sample_token_data: dict[str, Any],
    ) -> None:
        """Test that authorize stores the token pair and persists it."""
        httpx_mock.add_response(url=TOKEN_URL, method="POST", json=envelope(sample_token_data))

        session = fresh_manager.authorize("one_time_code")

        assert session.access_token == "access_token_1"
        assert session.refresh_token == "refresh_token_1"
        assert session.access_expiry_ms == NOW_MS + HOUR_MS
        assert session.region == "eu"
        assert json.loads(store.load(STORE_KEY_SESSION))["accessToken"] == "access_token_1"

    def test_authorize_sends_signed_grant(
        self,
        httpx_mock: HTTPXMock,
        fresh_manager: SessionManager,
        sample_token_data: dict[str, Any],
    ) -> None:
        """Test that the exchange is a signed authorization_code grant."""
        httpx_mock.add_response(url=TOKEN_URL, method="POST", json=envelope(sample_token_data))

        fresh_manager.authorize("one_time_code")

        request = httpx_mock.get_request()
        assert json.loads(request.content) == {
            "grantType": "authorization_code",
            "code": "one_time_code",
            "redirectUrl": "https://example.com/callback",
        }
        expected = sign(request.content, "test_app_secret")
        assert request.headers["Authorization"] == f"Sign {expected}"

    def test_authorize_uses_region_from_redirect(
        self,
        httpx_mock: HTTPXMock,
        fresh_manager: SessionManager,
        sample_token_data: dict[str, Any],
    ) -> None:
        """Test that a region returned with the code selects the API host."""
        httpx_mock.add_response(
            url=f"{API_URLS['us']}/v2/user/oauth/token",
            method="POST",
            json=envelope(sample_token_data),
        )

        session = fresh_manager.authorize("one_time_code", region="us")

        assert session.region == "us"
        assert fresh_manager.client.base_url == API_URLS["us"]

    def test_authorize_raises_on_backend_error(
        self,
        httpx_mock: HTTPXMock,
        fresh_manager: SessionManager,
        store: MemoryStore,
    ) -> None:
        """Test that a rejected exchange raises AuthExchangeFailed."""
        httpx_mock.add_response(
            url=TOKEN_URL, method="POST", json=envelope(error=400, msg="code invalid")
        )

        with pytest.raises(AuthExchangeFailed) as exc_info:
            fresh_manager.authorize("bad_code")

        assert exc_info.value.code == 400
        assert exc_info.value.detail == "code invalid"
        assert fresh_manager.session is None
        assert store.writes == 0

    def test_authorize_raises_on_incomplete_token_data(
        self,
        httpx_mock: HTTPXMock,
        fresh_manager: SessionManager,
    ) -> None:
        """Test that token data without a refresh token is rejected."""
        httpx_mock.add_response(
            url=TOKEN_URL, method="POST", json=envelope({"accessToken": "a"})
        )

        with pytest.raises(AuthExchangeFailed, match="missing field"):
            fresh_manager.authorize("one_time_code")

    def test_authorize_persists_only_on_change(
        self,
        httpx_mock: HTTPXMock,
        fresh_manager: SessionManager,
        store: MemoryStore,
        sample_token_data: dict[str, Any],
    ) -> None:
        """Test that an identical session is not written twice."""
        httpx_mock.add_response(url=TOKEN_URL, method="POST", json=envelope(sample_token_data))
        httpx_mock.add_response(url=TOKEN_URL, method="POST", json=envelope(sample_token_data))

        fresh_manager.authorize("one_time_code")
        fresh_manager.authorize("one_time_code")

        assert store.writes == 1


class TestEnsureValid:
    """Tests for SessionManager.ensure_valid expiry transitions."""

    def test_ensure_valid_without_session_is_false(
        self, fresh_manager: SessionManager
    ) -> None:
        """Test that ensure_valid is False before any authorization."""
        assert fresh_manager.ensure_valid() is False

    def test_ensure_valid_with_live_access_token_does_no_io(
        self, sessions: SessionManager
    ) -> None:
        """Test that a live access token is accepted without any request."""
        assert sessions.ensure_valid() is True

    def test_ensure_valid_refreshes_once_when_access_expired(
        self,
        httpx_mock: HTTPXMock,
        sessions: SessionManager,
        clock: FakeClock,
    ) -> None:
        """Test that an expired access token triggers exactly one refresh."""
        clock.advance(HOUR_MS)
        httpx_mock.add_response(
            url=REFRESH_URL,
            method="POST",
            json=envelope(
                {
                    "at": "access_token_2",
                    "rt": "refresh_token_2",
                    "atExpiredTime": NOW_MS + 2 * HOUR_MS,
                }
            ),
        )

        assert sessions.ensure_valid() is True
        assert sessions.ensure_valid() is True

        assert len(httpx_mock.get_requests()) == 1
        assert json.loads(httpx_mock.get_request().content) == {
            "grantType": "refresh_token",
            "rt": "refresh_token_1",
        }
        assert sessions.session.access_token == "access_token_2"
        assert sessions.session.refresh_token == "refresh_token_2"

    def test_refresh_keeps_expiry_fields_backend_omits(
        self,
        httpx_mock: HTTPXMock,
        sessions: SessionManager,
        sample_token_data: dict[str, Any],
    ) -> None:
        """Test that refresh merges rather than replaces the session."""
        httpx_mock.add_response(
            url=REFRESH_URL, method="POST", json=envelope({"at": "access_token_2"})
        )

        session = sessions.refresh()

        assert session.access_token == "access_token_2"
        assert session.refresh_token == "refresh_token_1"
        assert session.access_expiry_ms == sample_token_data["atExpiredTime"]
        assert session.refresh_expiry_ms == sample_token_data["rtExpiredTime"]

    def test_ensure_valid_after_refresh_expiry_is_false_without_io(
        self,
        sessions: SessionManager,
        clock: FakeClock,
    ) -> None:
        """Test that an expired refresh token requires re-authorization."""
        clock.advance(31 * 24 * HOUR_MS)
        assert sessions.ensure_valid() is False

    def test_concurrent_callers_share_one_refresh(
        self,
        httpx_mock: HTTPXMock,
        sessions: SessionManager,
        clock: FakeClock,
    ) -> None:
        """Test that callers queued behind a refresh observe its result."""
        clock.advance(HOUR_MS)
        httpx_mock.add_response(
            url=REFRESH_URL,
            method="POST",
            json=envelope({"at": "access_token_2", "atExpiredTime": NOW_MS + 2 * HOUR_MS}),
        )
        tokens: list[str] = []

        def worker() -> None:
            tokens.append(sessions.get_access_token())

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert tokens == ["access_token_2"] * 4
        assert len(httpx_mock.get_requests()) == 1


class TestRefresh:
    """Tests for SessionManager.refresh failures."""

    def test_refresh_without_session_raises(self, fresh_manager: SessionManager) -> None:
        """Test that refresh before authorization raises NoRefreshToken."""
        with pytest.raises(NoRefreshToken) as exc_info:
            fresh_manager.refresh()
        assert exc_info.value.kind is ErrorKind.NO_REFRESH_TOKEN

    def test_refresh_rejected_invalidates_session(
        self,
        httpx_mock: HTTPXMock,
        sessions: SessionManager,
        store: MemoryStore,
    ) -> None:
        """Test that a rejected refresh token clears the session."""
        httpx_mock.add_response(url=REFRESH_URL, method="POST", json=envelope(error=401))

        with pytest.raises(RefreshRejected) as exc_info:
            sessions.refresh()

        assert exc_info.value.is_auth_failure
        assert sessions.session is None
        assert store.load(STORE_KEY_SESSION) is None

    def test_refresh_transport_error_surfaces_unchanged(
        self,
        httpx_mock: HTTPXMock,
        sessions: SessionManager,
    ) -> None:
        """Test that transport errors are neither wrapped nor retried."""
        httpx_mock.add_exception(httpx.ConnectError("unreachable"), url=REFRESH_URL)

        with pytest.raises(httpx.ConnectError):
            sessions.refresh()

        assert sessions.session is not None


class TestAuthenticatedRequests:
    """Tests for SessionManager.get/post and invalidation."""

    def test_get_access_token_without_session_raises(
        self, fresh_manager: SessionManager
    ) -> None:
        """Test that get_access_token raises NotAuthenticated."""
        with pytest.raises(NotAuthenticated):
            fresh_manager.get_access_token()

    def test_get_uses_current_access_token(
        self,
        httpx_mock: HTTPXMock,
        sessions: SessionManager,
    ) -> None:
        """Test that get authorizes with the session's access token."""
        httpx_mock.add_response(url=FAMILY_URL, method="GET", json=envelope({"x": 1}))

        assert sessions.get("/v2/family", {"lang": "en"}) == {"x": 1}
        assert httpx_mock.get_request().headers["Authorization"] == "Bearer access_token_1"

    @pytest.mark.parametrize("code", [401, 402])
    def test_auth_error_code_invalidates_session(
        self,
        httpx_mock: HTTPXMock,
        sessions: SessionManager,
        store: MemoryStore,
        code: int,
    ) -> None:
        """Test that authorization codes clear memory and store."""
        httpx_mock.add_response(url=FAMILY_URL, method="GET", json=envelope(error=code))

        with pytest.raises(EwelinkAuthError):
            sessions.get("/v2/family", {"lang": "en"})

        assert sessions.session is None
        assert store.load(STORE_KEY_SESSION) is None
        with pytest.raises(NotAuthenticated):
            sessions.get_access_token()

    def test_http_401_invalidates_session(
        self,
        httpx_mock: HTTPXMock,
        sessions: SessionManager,
    ) -> None:
        """Test that an HTTP 401 also clears the session."""
        httpx_mock.add_response(
            url=f"{EU_URL}/v2/device/thing/status", method="POST", status_code=401
        )

        with pytest.raises(EwelinkAuthError):
            sessions.post("/v2/device/thing/status", {"id": "x"})

        assert sessions.session is None

    def test_other_backend_errors_keep_session(
        self,
        httpx_mock: HTTPXMock,
        sessions: SessionManager,
    ) -> None:
        """Test that non-authorization errors leave the session intact."""
        httpx_mock.add_response(url=FAMILY_URL, method="GET", json=envelope(error=406))

        with pytest.raises(EwelinkApiError) as exc_info:
            sessions.get("/v2/family", {"lang": "en"})

        assert exc_info.value.code == 406
        assert sessions.session is not None


class TestRestoreAndLogin:
    """Tests for session restore and the login URL."""

    def test_restores_persisted_session_and_region(
        self,
        api_client: EwelinkApiClient,
        clock: FakeClock,
        sample_token_data: dict[str, Any],
    ) -> None:
        """Test that a persisted session is loaded on construction."""
        store = MemoryStore()
        store.save(STORE_KEY_SESSION, json.dumps({**sample_token_data, "region": "as"}))

        manager = SessionManager(api_client, store, clock=clock)

        assert manager.session.access_token == "access_token_1"
        assert manager.client.base_url == API_URLS["as"]

    def test_ignores_unreadable_persisted_session(
        self, api_client: EwelinkApiClient, clock: FakeClock
    ) -> None:
        """Test that a corrupt snapshot is treated as no session."""
        store = MemoryStore()
        store.save(STORE_KEY_SESSION, "{not json")

        assert SessionManager(api_client, store, clock=clock).session is None

    def test_invalidate_clears_store(
        self, sessions: SessionManager, store: MemoryStore
    ) -> None:
        """Test that invalidate clears memory and store."""
        sessions.invalidate()
        assert sessions.session is None
        assert store.load(STORE_KEY_SESSION) is None

    def test_login_url_carries_signed_parameters(
        self, fresh_manager: SessionManager
    ) -> None:
        """Test that login_url signs ``<appid>_<seq>``."""
        url = urlparse(fresh_manager.login_url("my_state"))
        query = {key: values[0] for key, values in parse_qs(url.query).items()}

        assert query["state"] == "my_state"
        assert query["clientId"] == "test_app_id"
        assert query["redirectUrl"] == "https://example.com/callback"
        assert query["grantType"] == "authorization_code"
        assert query["authorization"] == sign(
            f"test_app_id_{query['seq']}", "test_app_secret"
        )
