"""Pytest configuration and fixtures for eWeLink cloud tests."""

from __future__ import annotations

import json
from collections.abc import Callable, Iterator
from typing import Any

import httpx
import pytest

from ewelink_cloud.api import EwelinkApiClient
from ewelink_cloud.config import EwelinkConfig
from ewelink_cloud.const import STORE_KEY_DEVICES, STORE_KEY_SESSION
from ewelink_cloud.frame import compute_accept_key, decode_frame, encode_frame
from ewelink_cloud.models import Opcode, WireFrame
from ewelink_cloud.session import SessionManager
from ewelink_cloud.store import MemoryStore

NOW_MS = 1_700_000_000_000
HOUR_MS = 3_600_000

SINGLE_DEVICE_ID = "1000aaaaaa"
MULTI_DEVICE_ID = "1000bbbbbb"
DISPATCH_DOMAIN = "eu-pconnect7.example.cc"
DISPATCH_IP = "203.0.113.7"


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, now: float) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, delta: float) -> None:
        self.now += delta


def envelope(data: dict[str, Any] | None = None, error: int = 0, msg: str = "") -> dict:
    """Wrap data in the backend's ``{error, msg, data}`` envelope."""
    return {"error": error, "msg": msg, "data": data or {}}


def upgrade_response(request: bytes, accept: str | None) -> bytes:
    """Build the gateway's answer to an upgrade request.

    Args:
        request: Raw upgrade request sent by the client.
        accept: ``"auto"`` to answer with the correct accept value, None to
            omit the header, or a literal value.

    Returns:
        Raw HTTP response bytes.

    """
    lines = ["HTTP/1.1 101 Switching Protocols", "Upgrade: websocket", "Connection: Upgrade"]
    if accept == "auto":
        key = ""
        for line in request.decode("ascii").split("\r\n"):
            if line.lower().startswith("sec-websocket-key:"):
                key = line.split(":", 1)[1].strip()
        accept = compute_accept_key(key)
    if accept is not None:
        lines.append(f"sec-websocket-accept: {accept}")
    lines.append("Sec-WebSocket-Protocol: chat")
    return ("\r\n".join(lines) + "\r\n\r\n").encode("ascii")


class FakeSocket:
    """In-memory stand-in for the TLS stream to the gateway.

    The first ``sendall`` is treated as the upgrade request and answered
    automatically. Later text frames are passed to ``reply``, whose returned
    messages are queued as server frames.
    """

    def __init__(self, accept: str | None = "auto") -> None:
        self.sent: list[bytes] = []
        self.incoming = bytearray()
        self.closed = False
        self.timeout: float | None = None
        self.reply: Callable[[dict[str, Any]], list[dict[str, Any]]] | None = None
        self._accept = accept
        self._upgraded = False

    def sendall(self, data: bytes) -> None:
        if self.closed:
            error_msg = "socket closed"
            raise OSError(error_msg)
        self.sent.append(bytes(data))
        if not self._upgraded:
            self._upgraded = True
            self.incoming += upgrade_response(bytes(data), self._accept)
            return
        frame = decode_frame(bytes(data))
        if frame.opcode is Opcode.TEXT and self.reply is not None:
            for message in self.reply(json.loads(frame.text)):
                self.queue(json.dumps(message))

    def recv(self, size: int) -> bytes:
        chunk = bytes(self.incoming[:size])
        del self.incoming[:size]
        return chunk

    def settimeout(self, timeout: float | None) -> None:
        self.timeout = timeout

    def close(self) -> None:
        self.closed = True

    def queue(self, payload: str | bytes, opcode: Opcode = Opcode.TEXT) -> None:
        """Queue an unmasked server frame."""
        self.incoming += encode_frame(payload, opcode, masked=False)

    @property
    def upgrade_request(self) -> str:
        return self.sent[0].decode("ascii")

    def frames(self) -> list[WireFrame]:
        """Decode every frame sent after the upgrade request."""
        return [decode_frame(data) for data in self.sent[1:]]

    def messages(self) -> list[dict[str, Any]]:
        return [json.loads(f.text) for f in self.frames() if f.opcode is Opcode.TEXT]


@pytest.fixture
def config() -> EwelinkConfig:
    """Fixture providing a valid configuration for the eu region."""
    return EwelinkConfig(
        app_id="test_app_id",
        app_secret="test_app_secret",
        redirect_url="https://example.com/callback",
        region="eu",
    )


@pytest.fixture
def store() -> MemoryStore:
    """Fixture providing an empty in-memory store."""
    return MemoryStore()


@pytest.fixture
def clock() -> FakeClock:
    """Fixture providing a millisecond clock fixed at ``NOW_MS``."""
    return FakeClock(NOW_MS)


@pytest.fixture
def http_client() -> Iterator[httpx.Client]:
    """Fixture providing a plain httpx client."""
    with httpx.Client() as client:
        yield client


@pytest.fixture
def api_client(http_client: httpx.Client, config: EwelinkConfig) -> EwelinkApiClient:
    """Fixture providing the REST client bound to the eu region."""
    return EwelinkApiClient(http_client, config)


@pytest.fixture
def sample_token_data() -> dict[str, Any]:
    """Fixture providing token fields as returned by the OAuth endpoint.

    Returns:
        Access token valid for one hour and refresh token valid for 30 days.

    """
    return {
        "accessToken": "access_token_1",
        "refreshToken": "refresh_token_1",
        "atExpiredTime": NOW_MS + HOUR_MS,
        "rtExpiredTime": NOW_MS + 30 * 24 * HOUR_MS,
    }


@pytest.fixture
def sessions(
    api_client: EwelinkApiClient,
    store: MemoryStore,
    clock: FakeClock,
    sample_token_data: dict[str, Any],
) -> SessionManager:
    """Fixture providing a session manager restored from a persisted session."""
    store.save(STORE_KEY_SESSION, json.dumps({**sample_token_data, "region": "eu"}))
    return SessionManager(api_client, store, clock=clock)


@pytest.fixture
def sample_things_data() -> dict[str, Any]:
    """Fixture providing ``/v2/device/thing`` data.

    Returns:
        One single-channel device, one multi-channel device and a group.

    """
    return {
        "thingList": [
            {
                "itemType": 1,
                "itemData": {
                    "deviceid": SINGLE_DEVICE_ID,
                    "apikey": "owner_apikey",
                    "name": "Desk lamp",
                    "online": True,
                    "productModel": "BASICR2",
                    "params": {"switch": "on", "startup": "off", "temperature": 21},
                },
            },
            {
                "itemType": 1,
                "itemData": {
                    "deviceid": MULTI_DEVICE_ID,
                    "apikey": "owner_apikey",
                    "name": "Power strip",
                    "online": False,
                    "isSupportChannelSplit": True,
                    "params": {
                        "switches": [
                            {"outlet": 0, "switch": "on"},
                            {"outlet": 1, "switch": "off"},
                            {"outlet": 2, "switch": "on"},
                            {"outlet": 3, "switch": "off"},
                        ],
                    },
                },
            },
            {"itemType": 3, "itemData": {"id": "group1", "name": "Living room"}},
        ],
        "total": 3,
    }


@pytest.fixture
def cached_store(store: MemoryStore, sample_things_data: dict[str, Any]) -> MemoryStore:
    """Fixture providing a store that already holds the device list."""
    store.save(STORE_KEY_DEVICES, json.dumps(sample_things_data))
    return store
