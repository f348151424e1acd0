"""The Hybrid OBD integration."""

from __future__ import annotations

import logging
import math
import time
from datetime import datetime
from typing import Any

import voluptuous as vol

from homeassistant.config_entries import ConfigEntry
from homeassistant.core import (
    HomeAssistant,
    ServiceCall,
    ServiceResponse,
    SupportsResponse,
    callback,
)
from homeassistant.exceptions import HomeAssistantError
from homeassistant.helpers.event import async_call_later
from homeassistant.helpers.update_coordinator import DataUpdateCoordinator
from homeassistant.util import dt as dt_util

from .analysis import BatteryHealthTracker, FuelEconomyTracker
from .const import (
    ATTR_ENTRY_ID,
    BLOCK_VOLTAGE_SIGNALS,
    CONF_DEVICE_NAME,
    CONF_HOST,
    CONF_POLL_INTERVAL,
    CONF_PORT,
    DEFAULT_PORT,
    DERIVED_BATTERY_SOH,
    DERIVED_BLOCK_DELTA,
    DERIVED_EV_RATIO,
    DERIVED_FUEL_AVERAGE,
    DERIVED_FUEL_INSTANT,
    DERIVED_INTERNAL_RESISTANCE,
    DOMAIN,
    PLATFORMS,
    RECONNECT_DELAY,
    SERVICE_CLEAR_DTCS,
    SERVICE_READ_DTCS,
    SERVICE_RESET_TRIP,
    SIGNAL_HV_CURRENT,
    SIGNAL_HV_VOLTAGE,
    SIGNAL_MAF,
    SIGNAL_RPM,
    SIGNAL_SPEED,
    clamp_poll_interval,
)
from .pid_tables.registry import PidRegistry, build_default_registry
from .protocol import DiagnosticTroubleCode, ObdError
from .session import ConnectionState, ObdSession
from .signal_keys import normalize_selected_signals
from .transport import TcpElm327Transport, TransportError

_LOGGER = logging.getLogger(__name__)

SERVICE_SCHEMA = vol.Schema({vol.Optional(ATTR_ENTRY_ID): str})


class HybridObdCoordinator(DataUpdateCoordinator[dict[str, Any]]):
    """Hold the latest decoded values of one adapter.

    The session pushes values in as they are decoded; nothing is polled by
    the coordinator itself. A failed read never clears the previous value.
    """

    def __init__(
        self,
        hass: HomeAssistant,
        entry: ConfigEntry,
        registry: PidRegistry,
    ) -> None:
        super().__init__(
            hass,
            _LOGGER,
            config_entry=entry,
            name=f"Hybrid OBD {entry.data.get(CONF_DEVICE_NAME, entry.data[CONF_HOST])}",
        )
        self._entry = entry
        self.registry = registry
        self.selected_signals = normalize_selected_signals(entry.data, registry)
        self.poll_interval_ms = clamp_poll_interval(entry.data.get(CONF_POLL_INTERVAL))

        self.connection_state = ConnectionState.DISCONNECTED
        self.last_error: str | None = None
        self.dtcs: list[DiagnosticTroubleCode] = []
        self.dtcs_updated: datetime | None = None
        self.signal_failures: dict[str, int] = {}
        self.signal_errors: dict[str, str] = {}
        self.fuel = FuelEconomyTracker()
        self.battery = BatteryHealthTracker()

        self.session: ObdSession | None = None
        self._reconnect_unsub: Any = None
        self._stopping = False
        self.data = {}

    def attach_session(self, session: ObdSession) -> None:
        self.session = session

    def is_adapter_ready(self) -> bool:
        """Return whether the adapter is connected and initialised."""
        return (
            self.connection_state == ConnectionState.CONNECTED
            and self.session is not None
            and self.session.elm_ready
        )

    async def async_start(self) -> None:
        """Connect in the background; setup does not wait for the vehicle."""
        self._stopping = False
        self._start_connect()

    async def async_stop(self) -> None:
        self._stopping = True
        self._cancel_reconnect()
        if self.session is not None:
            await self.session.disconnect()

    def _start_connect(self) -> None:
        if self.session is None:
            return
        self.hass.async_create_background_task(
            self.session.connect(),
            f"{DOMAIN} connect {self._entry.entry_id}",
        )

    def _cancel_reconnect(self) -> None:
        if self._reconnect_unsub is not None:
            self._reconnect_unsub()
            self._reconnect_unsub = None

    @callback
    def _reconnect(self, _now: Any = None) -> None:
        self._reconnect_unsub = None
        if self._stopping:
            return
        _LOGGER.debug("Reconnecting to %s", self.name)
        self._start_connect()

    def _publish(self) -> None:
        self.async_set_updated_data(dict(self.data or {}))

    @staticmethod
    def _is_valid_state_value(value: Any) -> bool:
        """Return whether a decoded value can be published as sensor state."""
        if value is None or isinstance(value, bool):
            return False
        if isinstance(value, (int, float)):
            return math.isfinite(float(value))
        return False

    @callback
    def set_connection_state(self, state: ConnectionState, error: str | None) -> None:
        self.connection_state = state
        self.last_error = error
        if state == ConnectionState.ERROR:
            self._cancel_reconnect()
            if not self._stopping:
                self._reconnect_unsub = async_call_later(
                    self.hass, RECONNECT_DELAY, self._reconnect
                )
        self._publish()

    @callback
    def update_signal(self, signal_id: str, value: float, raw: str) -> None:
        if not self._is_valid_state_value(value):
            _LOGGER.debug("Ignoring non-finite value for %s: %s (%r)", signal_id, value, raw)
            return
        merged = dict(self.data or {})
        merged[signal_id] = round(float(value), 3)
        self._update_derived(signal_id, merged)
        self.async_set_updated_data(merged)

    def _update_derived(self, signal_id: str, data: dict[str, Any]) -> None:
        """Feed the trackers with a new reading and store what they compute."""
        if signal_id == SIGNAL_SPEED and SIGNAL_MAF in data:
            rpm = data.get(SIGNAL_RPM)
            self.fuel.update(
                data[SIGNAL_SPEED],
                data[SIGNAL_MAF],
                rpm is not None and rpm < 1,
                time.monotonic(),
            )
            data[DERIVED_FUEL_INSTANT] = round(self.fuel.instant_km_per_l, 2)
            data[DERIVED_FUEL_AVERAGE] = round(self.fuel.average_km_per_l, 2)
            data[DERIVED_EV_RATIO] = round(self.fuel.ev_ratio * 100, 1)

        elif signal_id in BLOCK_VOLTAGE_SIGNALS:
            voltages = [data.get(block) for block in BLOCK_VOLTAGE_SIGNALS]
            if None in voltages:
                return
            self.battery.update_block_voltages(voltages)
            data[DERIVED_BATTERY_SOH] = round(self.battery.soh, 1)
            data[DERIVED_BLOCK_DELTA] = round(self.battery.block_delta, 3)

        elif signal_id == SIGNAL_HV_CURRENT and SIGNAL_HV_VOLTAGE in data:
            self.battery.update_pack_electrical(
                data[SIGNAL_HV_VOLTAGE], data[SIGNAL_HV_CURRENT]
            )
            if self.battery.internal_resistance_mohm is not None:
                data[DERIVED_INTERNAL_RESISTANCE] = round(
                    self.battery.internal_resistance_mohm, 1
                )

    @callback
    def reset_trip(self) -> None:
        self.fuel.reset()
        merged = dict(self.data or {})
        for key in (DERIVED_FUEL_INSTANT, DERIVED_FUEL_AVERAGE, DERIVED_EV_RATIO):
            merged.pop(key, None)
        self.async_set_updated_data(merged)

    def is_signal_polled(self, signal_id: str) -> bool:
        """Return False only for a signal the running session left out."""
        if self.session is None or not self.session.polled_signals:
            return True
        return signal_id in self.session.polled_signals

    @callback
    def signal_failed(self, signal_id: str, error: Exception) -> None:
        self.signal_failures[signal_id] = self.signal_failures.get(signal_id, 0) + 1
        self.signal_errors[signal_id] = str(error)
        _LOGGER.debug("Read of %s failed: %s", signal_id, error)

    @callback
    def update_dtcs(self, dtcs: list[DiagnosticTroubleCode]) -> None:
        self.dtcs = list(dtcs)
        self.dtcs_updated = dt_util.utcnow()
        self._publish()


def _dtc_payload(dtcs: list[DiagnosticTroubleCode]) -> list[dict[str, Any]]:
    return [{"code": dtc.code, "pending": dtc.is_pending} for dtc in dtcs]


def _target_coordinators(
    hass: HomeAssistant, call: ServiceCall
) -> dict[str, HybridObdCoordinator]:
    coordinators: dict[str, HybridObdCoordinator] = hass.data.get(DOMAIN, {})
    entry_id = call.data.get(ATTR_ENTRY_ID)
    if entry_id is None:
        return dict(coordinators)
    if entry_id not in coordinators:
        raise HomeAssistantError(f"Unknown {DOMAIN} entry: {entry_id}")
    return {entry_id: coordinators[entry_id]}


def _async_register_services(hass: HomeAssistant) -> None:
    if hass.services.has_service(DOMAIN, SERVICE_READ_DTCS):
        return

    async def _read_dtcs(call: ServiceCall) -> ServiceResponse:
        results: dict[str, Any] = {}
        for entry_id, coordinator in _target_coordinators(hass, call).items():
            if coordinator.session is None:
                continue
            try:
                dtcs = await coordinator.session.read_dtcs()
            except (ObdError, TransportError) as err:
                raise HomeAssistantError(f"Reading trouble codes failed: {err}") from err
            results[entry_id] = _dtc_payload(dtcs)
        return {"entries": results}

    async def _clear_dtcs(call: ServiceCall) -> None:
        for coordinator in _target_coordinators(hass, call).values():
            if coordinator.session is None:
                continue
            try:
                cleared = await coordinator.session.clear_dtcs()
            except (ObdError, TransportError) as err:
                raise HomeAssistantError(f"Clearing trouble codes failed: {err}") from err
            if not cleared:
                raise HomeAssistantError("The vehicle did not confirm clearing trouble codes")

    hass.services.async_register(
        DOMAIN,
        SERVICE_READ_DTCS,
        _read_dtcs,
        schema=SERVICE_SCHEMA,
        supports_response=SupportsResponse.OPTIONAL,
    )
    async def _reset_trip(call: ServiceCall) -> None:
        for coordinator in _target_coordinators(hass, call).values():
            coordinator.reset_trip()

    hass.services.async_register(
        DOMAIN, SERVICE_CLEAR_DTCS, _clear_dtcs, schema=SERVICE_SCHEMA
    )
    hass.services.async_register(
        DOMAIN, SERVICE_RESET_TRIP, _reset_trip, schema=SERVICE_SCHEMA
    )


async def async_setup_entry(hass: HomeAssistant, entry: ConfigEntry) -> bool:
    """Set up Hybrid OBD from a config entry."""
    registry = await hass.async_add_executor_job(build_default_registry)
    coordinator = HybridObdCoordinator(hass, entry, registry)

    transport = TcpElm327Transport(
        entry.data[CONF_HOST], int(entry.data.get(CONF_PORT, DEFAULT_PORT))
    )
    coordinator.attach_session(
        ObdSession(
            transport,
            registry,
            coordinator,
            poll_interval_ms=coordinator.poll_interval_ms,
            signal_ids=coordinator.selected_signals,
        )
    )

    hass.data.setdefault(DOMAIN, {})[entry.entry_id] = coordinator
    _async_register_services(hass)
    await hass.config_entries.async_forward_entry_setups(entry, PLATFORMS)
    await coordinator.async_start()
    return True


async def async_unload_entry(hass: HomeAssistant, entry: ConfigEntry) -> bool:
    """Unload a Hybrid OBD config entry."""
    coordinator: HybridObdCoordinator = hass.data[DOMAIN][entry.entry_id]
    await coordinator.async_stop()

    unload_ok = await hass.config_entries.async_unload_platforms(entry, PLATFORMS)
    if unload_ok:
        hass.data[DOMAIN].pop(entry.entry_id)
        if not hass.data[DOMAIN]:
            hass.services.async_remove(DOMAIN, SERVICE_READ_DTCS)
            hass.services.async_remove(DOMAIN, SERVICE_CLEAR_DTCS)
            hass.services.async_remove(DOMAIN, SERVICE_RESET_TRIP)

    return unload_ok
