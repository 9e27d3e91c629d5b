"""Reconcile desired device parameters with live device state.

A desired parameter set is diffed against freshly read values, only the
changed keys are written in a single request, and every changed key is read
back to confirm the device converged. Failures are reported per key.
"""

from __future__ import annotations

import logging
import re
import time
from collections.abc import Callable, Iterable, Mapping
from typing import Any

from .const import (
    DEFAULT_SETTLE_SECONDS,
    ENDPOINT_THING_STATUS,
    MULTI_CHANNEL_KEY,
    OUTLET_KEY,
    THING_TYPE_DEVICE,
)
from .devices import DeviceRegistry
from .errors import EwelinkApiError
from .models import (
    KeyResult,
    KeyStatus,
    MultiChannelParams,
    ReconcileOutcome,
    SingleChannelParams,
    wrap_params,
)
from .session import SessionManager
from .websocket import WireProtocolClient

_LOGGER = logging.getLogger(__name__)

_NUMERIC_RE = re.compile(r"^\s*[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?\s*$")

DesiredParams = Mapping[str, Any] | Iterable[Mapping[str, Any]]


def is_numeric_string(value: Any) -> bool:
    """Return True for strings that read as a number, e.g. ``"25"``."""
    return isinstance(value, str) and bool(_NUMERIC_RE.match(value))


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def values_match(current: Any, desired: Any) -> bool:
    """Compare a live value with a desired one.

    A numeric-looking string matches the number it spells; nothing else is
    coerced.
    """
    if current == desired:
        return True
    if _is_number(current) and is_numeric_string(desired):
        return float(desired) == float(current)
    return False


def _loose_type_warning(device_id: str, key: str, current: Any, desired: Any) -> str | None:
    if _is_number(current) and is_numeric_string(desired):
        return (
            f"Warning: Parameter {key} value is numeric but given as a string. "
            f"You may want to use a number for device {device_id}."
        )
    return None


class DeviceReconciler:
    """Turns a desired parameter set into a minimal, verified update."""

    def __init__(
        self,
        sessions: SessionManager,
        registry: DeviceRegistry,
        *,
        ws_factory: Callable[[], WireProtocolClient] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._sessions = sessions
        self._registry = registry
        self._ws_factory = ws_factory or (lambda: WireProtocolClient(sessions))
        self._sleep = sleep

    def read_live(
        self,
        device_id: str,
        params: Iterable[str] | str | None = None,
    ) -> dict[str, Any]:
        """Fetch named parameters, or all of them, from the backend.

        Named parameters the backend does not return are left out; no value
        is ever synthesized for them.

        Raises:
            EwelinkApiError: If the backend reports an error code.

        """
        query: dict[str, Any] = {"id": device_id, "type": THING_TYPE_DEVICE}
        names: list[str] | None = None
        if params is not None:
            names = [params] if isinstance(params, str) else list(params)
            query["params"] = "|".join(names)

        data = self._sessions.get(ENDPOINT_THING_STATUS, query)
        live = data.get("params") or {}
        if names is None:
            return dict(live)
        return {name: live[name] for name in names if name in live}

    def apply_desired(self, device_id: str, desired: DesiredParams) -> ReconcileOutcome:
        """Write only the parameters that differ from live values and verify them.

        Args:
            device_id: Target device.
            desired: A parameter mapping, or a list of them. Entries for
                multi-channel devices carry an ``outlet`` index.

        Returns:
            Per-key results, warnings, and the delta that was written (empty
            when nothing needed to change).

        """
        device = self._registry.get_device(device_id)
        entries = [desired] if isinstance(desired, Mapping) else list(desired)
        current = wrap_params(
            self.read_live(device_id), multi_channel=device.supports_channel_split
        )

        outcome = ReconcileOutcome(device_id=device_id)
        if isinstance(current, MultiChannelParams):
            delta = self._diff_outlets(device_id, current, entries, outcome)
        else:
            delta = self._diff_flat(device_id, current, entries, outcome)

        if not delta:
            _LOGGER.debug("Device %s already in desired state", device_id)
            return outcome

        outcome.delta = delta
        _LOGGER.debug("Writing %s to device %s", delta, device_id)
        self._sessions.post(
            ENDPOINT_THING_STATUS,
            {"type": THING_TYPE_DEVICE, "id": device_id, "params": delta},
        )
        self._verify(device_id, outcome)
        return outcome

    def _diff_flat(
        self,
        device_id: str,
        current: SingleChannelParams,
        entries: list[Mapping[str, Any]],
        outcome: ReconcileOutcome,
    ) -> dict[str, Any]:
        delta: dict[str, Any] = {}
        for entry in entries:
            for key, value in entry.items():
                self._diff_key(device_id, current.values, key, value, None, outcome, delta)
        return delta

    def _diff_outlets(
        self,
        device_id: str,
        current: MultiChannelParams,
        entries: list[Mapping[str, Any]],
        outcome: ReconcileOutcome,
    ) -> dict[str, Any]:
        changed: dict[int, dict[str, Any]] = {}
        for entry in entries:
            index = entry.get(OUTLET_KEY)
            keys = {key: value for key, value in entry.items() if key != OUTLET_KEY}
            switch = current.outlet(index) if index is not None else None

            if switch is None:
                message = f"Outlet {index} does not exist for device {device_id}."
                _LOGGER.warning(message)
                for key, value in (keys or {OUTLET_KEY: index}).items():
                    outcome.results.append(
                        KeyResult(
                            key=key,
                            status=KeyStatus.FAILED,
                            desired=value,
                            outlet=index,
                            message=message,
                        )
                    )
                continue

            outlet_delta: dict[str, Any] = {}
            for key, value in keys.items():
                self._diff_key(device_id, switch, key, value, index, outcome, outlet_delta)
            if outlet_delta:
                changed.setdefault(index, {OUTLET_KEY: index}).update(outlet_delta)

        if not changed:
            return {}
        return {MULTI_CHANNEL_KEY: list(changed.values())}

    @staticmethod
    def _diff_key(
        device_id: str,
        current: Mapping[str, Any],
        key: str,
        value: Any,
        outlet: int | None,
        outcome: ReconcileOutcome,
        delta: dict[str, Any],
    ) -> None:
        scope = f" for outlet {outlet}" if outlet is not None else ""
        if key not in current:
            outcome.results.append(
                KeyResult(
                    key=key,
                    status=KeyStatus.FAILED,
                    desired=value,
                    outlet=outlet,
                    message=f"Parameter {key} does not exist{scope} for device {device_id}.",
                )
            )
            return

        live = current[key]
        warning = _loose_type_warning(device_id, key, live, value)
        if warning:
            outcome.warnings.append(warning)

        if values_match(live, value):
            outcome.results.append(
                KeyResult(
                    key=key,
                    status=KeyStatus.NOOP,
                    desired=value,
                    actual=live,
                    outlet=outlet,
                    message=f"Parameter {key}{scope} is already set to {value} for device {device_id}.",
                )
            )
            return

        delta[key] = value
        outcome.results.append(
            KeyResult(
                key=key,
                status=KeyStatus.UPDATED,
                desired=value,
                actual=live,
                outlet=outlet,
                message=f"Parameter {key}{scope} changed from {live} to {value}.",
            )
        )

    def _verify(self, device_id: str, outcome: ReconcileOutcome) -> None:
        """Read back each written key and mark mismatches as failed."""
        pending = outcome.updated
        for key in outcome.delta:
            scoped = [
                result
                for result in pending
                if (key == MULTI_CHANNEL_KEY and result.outlet is not None)
                or (result.outlet is None and result.key == key)
            ]
            try:
                readback = self.read_live(device_id, [key])
            except EwelinkApiError as err:
                if err.is_auth_failure:
                    raise
                for result in scoped:
                    result.status = KeyStatus.FAILED
                    result.message = f"Could not verify {result.key}: {err}"
                continue

            if key == MULTI_CHANNEL_KEY:
                live = MultiChannelParams(outlets=list(readback.get(key) or []))
                for result in scoped:
                    switch = live.outlet(result.outlet) or {}  # type: ignore[arg-type]
                    self._check_readback(device_id, result, switch)
            else:
                for result in scoped:
                    self._check_readback(device_id, result, readback)

    @staticmethod
    def _check_readback(
        device_id: str, result: KeyResult, readback: Mapping[str, Any]
    ) -> None:
        actual = readback.get(result.key)
        if result.key in readback and values_match(actual, result.desired):
            result.actual = actual
            return
        scope = f" for outlet {result.outlet}" if result.outlet is not None else ""
        result.status = KeyStatus.FAILED
        result.actual = actual
        result.message = (
            f"Failed to update parameter {result.key}{scope} to {result.desired} "
            f"for device {device_id}. Current value is {actual}."
        )
        _LOGGER.warning(result.message)

    def query_realtime(
        self, device_id: str, params: Iterable[str] | str
    ) -> dict[str, Any]:
        """Query parameters directly from the device over the real-time channel."""
        device = self._registry.get_device(device_id)
        names = [params] if isinstance(params, str) else list(params)
        with self._ws_factory() as ws:
            ws.handshake(device)
            return ws.query(device, names)

    def update_realtime(
        self,
        device_id: str,
        params: Mapping[str, Any],
        settle_seconds: float = DEFAULT_SETTLE_SECONDS,
    ) -> dict[str, Any]:
        """Push an update over the real-time channel and return read-back values.

        Args:
            device_id: Target device.
            params: Parameters to send as-is.
            settle_seconds: Time allowed for the device to apply the update
                before it is queried again.

        Returns:
            The device's values for the updated keys after settling.

        """
        device = self._registry.get_device(device_id)
        with self._ws_factory() as ws:
            ws.handshake(device)
            ws.update(device, dict(params))
            self._sleep(settle_seconds)
            return ws.query(device, list(params))
