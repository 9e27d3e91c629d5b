"""Exceptions raised by the eWeLink cloud client."""

from __future__ import annotations

from enum import Enum

from .const import (
    ERROR_AUTH_EXPIRED,
    ERROR_AUTH_INVALID,
    ERROR_CODES,
    UNKNOWN_ERROR_MESSAGE,
)


class ErrorKind(Enum):
    """Closed set of failure kinds surfaced by the client."""

    CONFIGURATION = "configuration"
    UNKNOWN_REGION = "unknown_region"
    TRANSPORT = "transport"
    CONNECT_FAILED = "connect_failed"
    CONNECTION_CLOSED = "connection_closed"
    PROTOCOL = "protocol"
    EMPTY_DISPATCH_RESPONSE = "empty_dispatch_response"
    HANDSHAKE_FAILED = "handshake_failed"
    ACCEPT_KEY_MISMATCH = "accept_key_mismatch"
    MALFORMED_FRAME = "malformed_frame"
    BACKEND_ERROR = "backend_error"
    AUTH_INVALID = "auth_invalid"
    AUTH_EXPIRED = "auth_expired"
    NOT_AUTHENTICATED = "not_authenticated"
    NO_REFRESH_TOKEN = "no_refresh_token"
    DEVICE_NOT_FOUND = "device_not_found"


class EwelinkError(Exception):
    """Base exception for eWeLink client errors."""

    kind = ErrorKind.BACKEND_ERROR


class ConfigurationError(EwelinkError):
    """Configuration is missing or invalid; raised before any network I/O."""

    kind = ErrorKind.CONFIGURATION


class UnknownRegion(ConfigurationError):
    """Region code is not one of the supported regions."""

    kind = ErrorKind.UNKNOWN_REGION

    def __init__(self, region: str | None) -> None:
        super().__init__(f"Invalid region: {region!r}")
        self.region = region


class EwelinkTransportError(EwelinkError):
    """Socket-level failure; the caller decides whether to retry."""

    kind = ErrorKind.TRANSPORT


class ConnectFailed(EwelinkTransportError):
    """Unable to open the TLS stream to the real-time gateway."""

    kind = ErrorKind.CONNECT_FAILED


class ConnectionClosed(EwelinkTransportError):
    """The real-time channel is not open or was closed by the peer."""

    kind = ErrorKind.CONNECTION_CLOSED


class EwelinkProtocolError(EwelinkError):
    """Protocol violation; fatal for the current connection."""

    kind = ErrorKind.PROTOCOL


class EmptyDispatchResponse(EwelinkProtocolError):
    """The dispatch service did not return a domain and port."""

    kind = ErrorKind.EMPTY_DISPATCH_RESPONSE


class HandshakeFailed(EwelinkProtocolError):
    """The upgrade response carried no Sec-WebSocket-Accept header."""

    kind = ErrorKind.HANDSHAKE_FAILED


class AcceptKeyMismatch(EwelinkProtocolError):
    """The upgrade response carried an unexpected accept value."""

    kind = ErrorKind.ACCEPT_KEY_MISMATCH


class FrameError(EwelinkProtocolError):
    """A frame could not be encoded or decoded."""

    kind = ErrorKind.MALFORMED_FRAME


class EwelinkApiError(EwelinkError):
    """Backend reported a non-zero error code.

    Attributes:
        code: Backend error code (or HTTP status for HTTP-level failures).
        message: Human message from the error-code table.
        detail: Raw ``msg`` field returned by the backend, if any.
        kind: ``AUTH_INVALID``/``AUTH_EXPIRED`` for authorization codes,
            ``BACKEND_ERROR`` otherwise.

    """

    kind = ErrorKind.BACKEND_ERROR

    def __init__(
        self,
        code: int,
        message: str | None = None,
        detail: str | None = None,
    ) -> None:
        self.code = code
        self.message = message or error_message(code)
        self.detail = detail
        if code == ERROR_AUTH_INVALID:
            self.kind = ErrorKind.AUTH_INVALID
        elif code == ERROR_AUTH_EXPIRED:
            self.kind = ErrorKind.AUTH_EXPIRED
        super().__init__(f"Error {code}: {self.message}")

    @property
    def is_auth_failure(self) -> bool:
        """Return True if the access credential is no longer usable."""
        return self.kind in AUTH_ERROR_KINDS


class EwelinkAuthError(EwelinkApiError):
    """Backend rejected the access credential."""

    kind = ErrorKind.AUTH_INVALID


class AuthExchangeFailed(EwelinkApiError):
    """The authorization code could not be exchanged for a session."""


class RefreshRejected(EwelinkApiError):
    """The backend refused the refresh token."""


class NotAuthenticated(EwelinkError):
    """No valid session; the authorization flow must be restarted."""

    kind = ErrorKind.NOT_AUTHENTICATED


class NoRefreshToken(NotAuthenticated):
    """A refresh was requested before any session was obtained."""

    kind = ErrorKind.NO_REFRESH_TOKEN


class DeviceNotFound(EwelinkError):
    """No device with the requested identifier is known for the account."""

    kind = ErrorKind.DEVICE_NOT_FOUND

    def __init__(self, device_id: str) -> None:
        super().__init__(f"Device {device_id} not found")
        self.device_id = device_id


AUTH_ERROR_KINDS = frozenset({ErrorKind.AUTH_INVALID, ErrorKind.AUTH_EXPIRED})


def error_message(code: int) -> str:
    """Return the human message for a backend error code."""
    return ERROR_CODES.get(code, f"{UNKNOWN_ERROR_MESSAGE} (code {code})")


def is_auth_error_code(code: int) -> bool:
    """Return True if the backend code means the access token is unusable."""
    return code in (ERROR_AUTH_INVALID, ERROR_AUTH_EXPIRED)


def api_error_from_code(code: int, detail: str | None = None) -> EwelinkApiError:
    """Translate a backend error code into the matching exception."""
    if is_auth_error_code(code):
        return EwelinkAuthError(code, detail=detail)
    return EwelinkApiError(code, detail=detail)
