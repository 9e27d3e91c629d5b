"""Real-time channel client for eWeLink devices.

This module opens the persistent TLS channel to a region's dispatch
gateway, performs the HTTP Upgrade handshake, and exchanges frames for
device queries and updates. The heartbeat ping is piggybacked on send and
receive so the client stays single-threaded.
"""

from __future__ import annotations

import contextlib
import json
import logging
import socket
import ssl
import time
from collections.abc import Callable
from types import TracebackType
from typing import Any

from .config import dispatch_url
from .const import (
    CONNECT_TIMEOUT,
    HANDSHAKE_MAX_BYTES,
    HEARTBEAT_MARGIN_SECONDS,
    USER_AGENT,
    USER_ONLINE_VERSION,
    WS_PATH,
    WS_SUBPROTOCOL,
    WS_VERSION,
)
from .errors import (
    AcceptKeyMismatch,
    ConnectFailed,
    ConnectionClosed,
    EmptyDispatchResponse,
    EwelinkProtocolError,
    EwelinkTransportError,
    FrameError,
    HandshakeFailed,
    api_error_from_code,
)
from .frame import compute_accept_key, encode_frame, generate_key, read_frame
from .models import DeviceSnapshot, DispatchEndpoint, HeartbeatState, Opcode
from .session import SessionManager
from .utils import generate_nonce, sequence

_LOGGER = logging.getLogger(__name__)

HEADER_TERMINATOR = b"\r\n\r\n"
RECV_CHUNK = 4096


def parse_accept_header(response: bytes) -> str | None:
    """Extract the ``Sec-WebSocket-Accept`` value from an upgrade response."""
    text = response.decode("latin-1")
    for line in text.split("\r\n")[1:]:
        name, sep, value = line.partition(":")
        if sep and name.strip().lower() == "sec-websocket-accept":
            return value.strip()
    return None


class WireProtocolClient:
    """One real-time frame channel bound to a session.

    Frames are sent and received strictly in call order. Create one client
    per concurrent device operation.
    """

    def __init__(
        self,
        sessions: SessionManager,
        *,
        region: str | None = None,
        resolver: Callable[[str], str] = socket.gethostbyname,
        ssl_context: ssl.SSLContext | None = None,
        connect_timeout: float = CONNECT_TIMEOUT,
        read_timeout: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the client.

        Args:
            sessions: Session manager providing the access token.
            region: Region whose gateway to use; defaults to the API region.
            resolver: Resolves the dispatch domain to a numeric host.
            ssl_context: TLS context; the certificate is checked against the
                dispatch domain by default.
            connect_timeout: Seconds allowed for the TCP/TLS connect.
            read_timeout: Socket timeout for reads; None blocks.
            clock: Monotonic clock in seconds used for the heartbeat.

        """
        self._sessions = sessions
        self._region = region or sessions.client.config.region
        self._resolver = resolver
        self._ssl_context = ssl_context or ssl.create_default_context()
        self._connect_timeout = connect_timeout
        self._read_timeout = read_timeout
        self._clock = clock

        self._endpoint: DispatchEndpoint | None = None
        self._host: str | None = None
        self.url: str | None = None

        self._sock: Any = None
        self._buffer = bytearray()
        self._eof = False
        self._heartbeat: HeartbeatState | None = None

    @property
    def endpoint(self) -> DispatchEndpoint | None:
        return self._endpoint

    @property
    def host(self) -> str | None:
        return self._host

    @property
    def heartbeat(self) -> HeartbeatState | None:
        return self._heartbeat

    @property
    def connected(self) -> bool:
        """Return True if the socket is open and not at end-of-stream."""
        return self._sock is not None and not self._eof

    def resolve_endpoint(self, region: str | None = None) -> DispatchEndpoint:
        """Look up the region's gateway and resolve it to a numeric host once.

        Raises:
            UnknownRegion: If the region has no dispatch URL.
            EmptyDispatchResponse: If the response lacks a domain or port.
            ConnectFailed: If the domain cannot be resolved.

        """
        url = dispatch_url(region or self._region)
        data = self._sessions.client.get_url(url)
        domain = data.get("domain")
        port = data.get("port")
        if not domain or not port:
            error_msg = f"Dispatch response without domain/port: {data}"
            raise EmptyDispatchResponse(error_msg)

        try:
            host = self._resolver(domain)
        except OSError as err:
            error_msg = f"Unable to resolve {domain}: {err}"
            raise ConnectFailed(error_msg) from err

        self._endpoint = DispatchEndpoint(domain=domain, port=int(port))
        self._host = host
        self.url = f"wss://{self._host}:{self._endpoint.port}{WS_PATH}"
        _LOGGER.debug("Resolved %s to %s", domain, self.url)
        return self._endpoint

    def connect(self) -> None:
        """Open the TLS stream and upgrade it to a frame channel.

        Raises:
            ConnectFailed: If the TCP or TLS connection cannot be opened.
            HandshakeFailed: If the response carries no accept value.
            AcceptKeyMismatch: If the accept value does not match the key.

        """
        if self._endpoint is None:
            self.resolve_endpoint()
        self.close()

        port = self._endpoint.port  # type: ignore[union-attr]
        _LOGGER.info("Connecting to real-time gateway at %s", self.url)
        try:
            raw = socket.create_connection(
                (self._host, port), timeout=self._connect_timeout
            )
        except OSError as err:
            error_msg = f"Unable to connect to {self._host}:{port}: {err}"
            raise ConnectFailed(error_msg) from err

        try:
            self._sock = self._ssl_context.wrap_socket(
                raw, server_hostname=self._endpoint.domain  # type: ignore[union-attr]
            )
        except OSError as err:
            raw.close()
            error_msg = f"TLS negotiation with {self._host}:{port} failed: {err}"
            raise ConnectFailed(error_msg) from err

        self._sock.settimeout(self._read_timeout)
        self._buffer.clear()
        self._eof = False
        try:
            self._upgrade()
        except EwelinkTransportError as err:
            self.close()
            error_msg = f"Upgrade request to {self._host}:{port} failed: {err}"
            raise ConnectFailed(error_msg) from err

    def _upgrade(self) -> None:
        key = generate_key()
        lines = [
            f"GET {WS_PATH} HTTP/1.1",
            f"Host: {self._host}:{self._endpoint.port}",  # type: ignore[union-attr]
            "Upgrade: websocket",
            "Connection: Upgrade",
            f"Sec-WebSocket-Key: {key}",
            f"Sec-WebSocket-Version: {WS_VERSION}",
            f"Sec-WebSocket-Protocol: {WS_SUBPROTOCOL}",
            "Origin: null",
        ]
        self._write(("\r\n".join(lines) + "\r\n\r\n").encode("ascii"))

        try:
            response = self._read_http_response()
        except HandshakeFailed:
            self.close()
            raise
        except EwelinkTransportError as err:
            self.close()
            error_msg = f"No upgrade response: {err}"
            raise HandshakeFailed(error_msg) from err

        accept = parse_accept_header(response)
        if not accept:
            self.close()
            error_msg = "Upgrade response carried no Sec-WebSocket-Accept"
            raise HandshakeFailed(error_msg)
        if accept != compute_accept_key(key):
            self.close()
            error_msg = "Sec-WebSocket-Accept does not match the request key"
            raise AcceptKeyMismatch(error_msg)
        _LOGGER.debug("Upgrade to frame channel complete")

    def _read_http_response(self) -> bytes:
        while HEADER_TERMINATOR not in self._buffer:
            if len(self._buffer) > HANDSHAKE_MAX_BYTES:
                error_msg = "Upgrade response headers too large"
                raise HandshakeFailed(error_msg)
            self._fill()
        end = self._buffer.index(HEADER_TERMINATOR) + len(HEADER_TERMINATOR)
        response = bytes(self._buffer[:end])
        del self._buffer[:end]
        return response

    def handshake(self, device: DeviceSnapshot) -> dict[str, Any]:
        """Announce the session on the channel and start the heartbeat.

        Connects first if needed.

        Returns:
            The gateway's acknowledgement.

        Raises:
            EwelinkApiError: If the acknowledgement carries an error code.

        """
        if not self.connected:
            self.connect()
        response = self._request(self.create_handshake_data(device))

        interval = (response.get("config") or {}).get("hbInterval")
        if interval:
            seconds = float(interval) + HEARTBEAT_MARGIN_SECONDS
            self._heartbeat = HeartbeatState(
                interval_seconds=seconds, next_due=self._clock() + seconds
            )
            _LOGGER.debug("Heartbeat every %.0f seconds", seconds)
        return response

    def create_handshake_data(self, device: DeviceSnapshot) -> dict[str, Any]:
        return {
            "action": "userOnline",
            "version": USER_ONLINE_VERSION,
            "ts": int(time.time()),
            "at": self._sessions.get_access_token(),
            "userAgent": USER_AGENT,
            "apikey": device.apikey,
            "appid": self._sessions.client.config.app_id,
            "nonce": generate_nonce(),
            "sequence": sequence(),
        }

    @staticmethod
    def create_query_data(
        device: DeviceSnapshot, params: list[str] | str
    ) -> dict[str, Any]:
        return {
            "action": "query",
            "deviceid": device.device_id,
            "apikey": device.apikey,
            "sequence": sequence(),
            "params": params if isinstance(params, list) else [params],
            "userAgent": USER_AGENT,
        }

    @staticmethod
    def create_update_data(
        device: DeviceSnapshot, params: dict[str, Any], self_apikey: str
    ) -> dict[str, Any]:
        return {
            "action": "update",
            "apikey": device.apikey,
            "selfApikey": self_apikey,
            "deviceid": device.device_id,
            "params": params,
            "userAgent": USER_AGENT,
            "sequence": sequence(),
        }

    def query(self, device: DeviceSnapshot, params: list[str] | str) -> dict[str, Any]:
        """Ask the device for current parameter values over the channel."""
        response = self._request(self.create_query_data(device, params))
        return response.get("params") or {}

    def update(self, device: DeviceSnapshot, params: dict[str, Any]) -> dict[str, Any]:
        """Send a parameter update over the channel and return the ack."""
        return self._request(self.create_update_data(device, params, device.apikey))

    def _request(self, payload: dict[str, Any]) -> dict[str, Any]:
        self.send(json.dumps(payload))
        expected = payload.get("sequence")
        while True:
            raw = self.receive()
            try:
                response = json.loads(raw)
            except json.JSONDecodeError as err:
                error_msg = "Malformed message on real-time channel"
                raise EwelinkProtocolError(error_msg) from err
            seq = response.get("sequence")
            if seq == expected or (seq is None and "action" not in response):
                break
            _LOGGER.debug("Skipping unsolicited message %s", response.get("action"))

        code = response.get("error")
        if code:
            err = api_error_from_code(int(code), response.get("msg") or response.get("reason"))
            self._sessions.handle_error(err)
            raise err
        return response

    def send(self, payload: str | bytes = "", frame_type: str = "text") -> None:
        """Send one frame, pinging first if the heartbeat is due.

        Raises:
            ConnectionClosed: If there is no open channel.

        """
        self._maybe_ping()
        self._require_open()
        self._write(encode_frame(payload, frame_type))

    def receive(self) -> str:
        """Receive the next data frame as text, pinging first if due.

        Server pings are answered with pongs and pongs are skipped.

        Raises:
            ConnectionClosed: If there is no open channel or the peer closed it.
            FrameError: If a malformed frame arrives; the channel is closed.

        """
        self._maybe_ping()
        self._require_open()
        while True:
            try:
                frame = read_frame(self._read_exact)
            except FrameError:
                self.close()
                raise
            if frame.opcode is Opcode.PING:
                self._write(encode_frame(frame.payload, Opcode.PONG))
                continue
            if frame.opcode is Opcode.PONG:
                continue
            if frame.opcode is Opcode.CLOSE:
                self.close()
                error_msg = "Real-time channel closed by peer"
                raise ConnectionClosed(error_msg)
            return frame.text

    def close(self) -> None:
        """Release the socket; safe to call repeatedly."""
        sock, self._sock = self._sock, None
        self._heartbeat = None
        self._buffer.clear()
        if sock is not None:
            with contextlib.suppress(OSError):
                sock.close()
            _LOGGER.debug("Real-time channel closed")

    def __enter__(self) -> WireProtocolClient:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def _maybe_ping(self) -> None:
        if self._heartbeat is None or not self.connected:
            return
        now = self._clock()
        if not self._heartbeat.is_due(now):
            return
        _LOGGER.debug("Heartbeat due, sending ping")
        self._write(encode_frame(b"", Opcode.PING))
        self._heartbeat.reschedule(now)

    def _require_open(self) -> None:
        if self._sock is None:
            error_msg = "No valid real-time connection"
            raise ConnectionClosed(error_msg)

    def _write(self, data: bytes) -> None:
        try:
            self._sock.sendall(data)
        except OSError as err:
            error_msg = f"Failed to send on real-time channel: {err}"
            raise EwelinkTransportError(error_msg) from err

    def _fill(self) -> None:
        try:
            chunk = self._sock.recv(RECV_CHUNK)
        except OSError as err:
            error_msg = f"Failed to read from real-time channel: {err}"
            raise EwelinkTransportError(error_msg) from err
        if not chunk:
            self._eof = True
            self.close()
            error_msg = "Real-time channel reached end of stream"
            raise ConnectionClosed(error_msg)
        self._buffer += chunk

    def _read_exact(self, count: int) -> bytes:
        while len(self._buffer) < count:
            self._fill()
        data = bytes(self._buffer[:count])
        del self._buffer[:count]
        return data
