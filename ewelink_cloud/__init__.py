"""Device-cloud communication core for the eWeLink platform.

The package covers the session lifecycle (authorization, silent refresh,
invalidation), the real-time frame channel to a region's gateway, and the
reconciliation of desired device parameters with live device state.
"""

from __future__ import annotations

from .api import EwelinkApiClient, create_session_client
from .config import EwelinkConfig
from .devices import DeviceRegistry
from .errors import (
    AcceptKeyMismatch,
    AuthExchangeFailed,
    ConfigurationError,
    ConnectFailed,
    ConnectionClosed,
    DeviceNotFound,
    EmptyDispatchResponse,
    ErrorKind,
    EwelinkApiError,
    EwelinkAuthError,
    EwelinkError,
    EwelinkProtocolError,
    EwelinkTransportError,
    FrameError,
    HandshakeFailed,
    NoRefreshToken,
    NotAuthenticated,
    RefreshRejected,
    UnknownRegion,
)
from .models import (
    DeviceSnapshot,
    KeyResult,
    KeyStatus,
    MultiChannelParams,
    ReconcileOutcome,
    Session,
    SingleChannelParams,
)
from .reconciler import DeviceReconciler
from .session import SessionManager
from .store import JsonFileStore, MemoryStore
from .websocket import WireProtocolClient

__all__ = [
    "AcceptKeyMismatch",
    "AuthExchangeFailed",
    "ConfigurationError",
    "ConnectFailed",
    "ConnectionClosed",
    "DeviceNotFound",
    "DeviceReconciler",
    "DeviceRegistry",
    "DeviceSnapshot",
    "EmptyDispatchResponse",
    "ErrorKind",
    "EwelinkApiClient",
    "EwelinkApiError",
    "EwelinkAuthError",
    "EwelinkConfig",
    "EwelinkError",
    "EwelinkProtocolError",
    "EwelinkTransportError",
    "FrameError",
    "HandshakeFailed",
    "JsonFileStore",
    "KeyResult",
    "KeyStatus",
    "MemoryStore",
    "MultiChannelParams",
    "NoRefreshToken",
    "NotAuthenticated",
    "ReconcileOutcome",
    "RefreshRejected",
    "Session",
    "SessionManager",
    "SingleChannelParams",
    "UnknownRegion",
    "WireProtocolClient",
    "create_session_client",
]
