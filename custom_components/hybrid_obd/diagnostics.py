"""Diagnostics support for the Hybrid OBD integration."""

from __future__ import annotations

from typing import Any

from homeassistant.config_entries import ConfigEntry
from homeassistant.core import HomeAssistant

from .const import (
    CONF_DEVICE_NAME,
    CONF_HOST,
    CONF_POLL_INTERVAL,
    CONF_PORT,
    CONF_SELECTED_SIGNALS,
    DOMAIN,
)


async def async_get_config_entry_diagnostics(
    hass: HomeAssistant, entry: ConfigEntry
) -> dict[str, Any]:
    """Return diagnostics for a config entry."""
    coordinator = hass.data[DOMAIN][entry.entry_id]
    session = coordinator.session

    failures: dict[str, Any] = {}
    for signal_id, count in sorted(coordinator.signal_failures.items()):
        failures[signal_id] = {
            "count": count,
            "last_error": coordinator.signal_errors.get(signal_id),
        }

    return {
        "config": {
            "device_name": entry.data.get(CONF_DEVICE_NAME),
            "host": entry.data.get(CONF_HOST),
            "port": entry.data.get(CONF_PORT),
            "poll_interval_ms": entry.data.get(CONF_POLL_INTERVAL),
            "selected_signals": entry.data.get(CONF_SELECTED_SIGNALS, []),
        },
        "connection": {
            "state": str(coordinator.connection_state),
            "last_error": coordinator.last_error,
            "adapter_ready": coordinator.is_adapter_ready(),
            "demo_mode": session.demo_mode if session is not None else False,
            "supported_pids": session.supported_pids if session is not None else None,
            "unsupported_signals": (
                session.unsupported_signals if session is not None else []
            ),
            "polled_signals": session.polled_signals if session is not None else [],
        },
        "current_values": coordinator.data or {},
        "signal_failures": failures,
        "trouble_codes": {
            "last_read": (
                coordinator.dtcs_updated.isoformat() if coordinator.dtcs_updated else None
            ),
            "codes": [
                {"code": dtc.code, "pending": dtc.is_pending} for dtc in coordinator.dtcs
            ],
        },
    }
