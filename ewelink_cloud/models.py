"""Data models for the eWeLink cloud client."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any


@dataclass(frozen=True)
class Credentials:
    """Account and application credentials used only to mint a session."""

    app_id: str
    app_secret: str
    account: str | None
    password: str | None
    region: str


@dataclass
class Session:
    """Represents the OAuth token pair with its expiry timestamps (epoch ms)."""

    access_token: str
    refresh_token: str
    access_expiry_ms: int
    refresh_expiry_ms: int
    region: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any], region: str | None = None) -> Session:
        """Build a session from backend (or persisted) token fields."""
        return cls(
            access_token=data["accessToken"],
            refresh_token=data["refreshToken"],
            access_expiry_ms=int(data["atExpiredTime"]),
            refresh_expiry_ms=int(data["rtExpiredTime"]),
            region=data.get("region", region),
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize using the backend field names."""
        return {
            "accessToken": self.access_token,
            "refreshToken": self.refresh_token,
            "atExpiredTime": self.access_expiry_ms,
            "rtExpiredTime": self.refresh_expiry_ms,
            "region": self.region,
        }

    def merge_refresh(self, data: dict[str, Any]) -> Session:
        """Return a new session with refreshed fields, keeping omitted ones."""
        return Session(
            access_token=data.get("at") or self.access_token,
            refresh_token=data.get("rt") or self.refresh_token,
            access_expiry_ms=int(data.get("atExpiredTime") or self.access_expiry_ms),
            refresh_expiry_ms=int(data.get("rtExpiredTime") or self.refresh_expiry_ms),
            region=self.region,
        )


@dataclass(frozen=True)
class DispatchEndpoint:
    """Host and port advertised by a region's real-time gateway."""

    domain: str
    port: int


class Opcode(IntEnum):
    """Frame opcodes used by the real-time channel."""

    TEXT = 0x1
    CLOSE = 0x8
    PING = 0x9
    PONG = 0xA


@dataclass(frozen=True)
class WireFrame:
    """One decoded frame of the real-time channel."""

    opcode: Opcode
    payload: bytes
    masked: bool

    @property
    def text(self) -> str:
        return self.payload.decode("utf-8")


@dataclass
class HeartbeatState:
    """Ping interval announced by the gateway and the next due time."""

    interval_seconds: float
    next_due: float

    def is_due(self, now: float) -> bool:
        return now >= self.next_due

    def reschedule(self, now: float) -> None:
        self.next_due = now + self.interval_seconds


@dataclass(frozen=True)
class SingleChannelParams:
    """Flat parameter map of a single-channel device."""

    values: dict[str, Any]


@dataclass(frozen=True)
class MultiChannelParams:
    """Per-outlet parameter maps of a multi-channel device."""

    outlets: list[dict[str, Any]]

    def outlet(self, index: int) -> dict[str, Any] | None:
        for entry in self.outlets:
            if entry.get("outlet") == index:
                return entry
        return None


DeviceParams = SingleChannelParams | MultiChannelParams


@dataclass
class DeviceSnapshot:
    """Cached view of a device as listed by the backend.

    Attributes:
        device_id: Unique device identifier.
        apikey: Owner API key used by the real-time channel.
        name: Human-readable device name.
        online: Whether the backend reports the device as connected.
        supports_channel_split: True for multi-channel (multi-outlet) devices.
        parameters: Last listed parameters, never trusted for reconciliation.
        product_model: Product model reported by the backend.

    """

    device_id: str
    apikey: str
    name: str
    online: bool
    supports_channel_split: bool
    parameters: DeviceParams
    product_model: str | None = None

    @classmethod
    def from_item_data(cls, item: dict[str, Any]) -> DeviceSnapshot:
        """Build a snapshot from a ``thingList[].itemData`` entry."""
        multi = bool(item.get("isSupportChannelSplit"))
        params = item.get("params") or {}
        return cls(
            device_id=item["deviceid"],
            apikey=item.get("apikey", ""),
            name=item.get("name", item["deviceid"]),
            online=bool(item.get("online")),
            supports_channel_split=multi,
            parameters=wrap_params(params, multi_channel=multi),
            product_model=item.get("productModel"),
        )


def wrap_params(params: dict[str, Any], *, multi_channel: bool) -> DeviceParams:
    """Select the parameter variant once from the channel-split flag."""
    if multi_channel:
        return MultiChannelParams(outlets=list(params.get("switches") or []))
    return SingleChannelParams(values=dict(params))


class KeyStatus(Enum):
    """Outcome of reconciling one parameter."""

    NOOP = "noop"
    UPDATED = "updated"
    FAILED = "failed"


@dataclass
class KeyResult:
    """Result for one parameter (optionally scoped to an outlet)."""

    key: str
    status: KeyStatus
    desired: Any = None
    actual: Any = None
    outlet: int | None = None
    message: str = ""


@dataclass
class ReconcileOutcome:
    """Per-key results of applying a desired parameter set to a device."""

    device_id: str
    results: list[KeyResult] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    delta: dict[str, Any] = field(default_factory=dict)

    @property
    def no_op(self) -> bool:
        """Return True if no write was needed."""
        return not self.delta and all(
            result.status is KeyStatus.NOOP for result in self.results
        )

    @property
    def ok(self) -> bool:
        return all(r.status is not KeyStatus.FAILED for r in self.results)

    @property
    def failed(self) -> list[KeyResult]:
        return [r for r in self.results if r.status is KeyStatus.FAILED]

    @property
    def updated(self) -> list[KeyResult]:
        return [r for r in self.results if r.status is KeyStatus.UPDATED]

    def result_for(self, key: str, outlet: int | None = None) -> KeyResult | None:
        for result in self.results:
            if result.key == key and result.outlet == outlet:
                return result
        return None
