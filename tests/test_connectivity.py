"""Tests for the adapter connectivity binary sensor."""

from __future__ import annotations

from custom_components.hybrid_obd.binary_sensor import AdapterConnectivitySensor
from custom_components.hybrid_obd.session import ConnectionState


class _FakeCoordinator:
    """Minimal coordinator stub for binary sensor tests."""

    def __init__(self):
        self.ready = False
        self.connection_state = ConnectionState.DISCONNECTED
        self.last_error = None

    def is_adapter_ready(self) -> bool:
        return self.ready


def _sensor(coordinator):
    return AdapterConnectivitySensor(coordinator, "10.0.0.5:35000", {"name": "Prius"})


class TestAdapterConnectivity:
    def test_offline_by_default(self):
        assert _sensor(_FakeCoordinator()).is_on is False

    def test_online_when_adapter_ready(self):
        coord = _FakeCoordinator()
        coord.ready = True
        coord.connection_state = ConnectionState.CONNECTED
        sensor = _sensor(coord)
        assert sensor.is_on is True
        assert sensor.extra_state_attributes == {"state": "connected", "last_error": None}

    def test_error_is_exposed(self):
        coord = _FakeCoordinator()
        coord.connection_state = ConnectionState.ERROR
        coord.last_error = "ELM327 init command ATZ (Reset) failed"
        sensor = _sensor(coord)
        assert sensor.is_on is False
        assert sensor.extra_state_attributes["state"] == "error"
        assert sensor.extra_state_attributes["last_error"].startswith("ELM327 init")

    def test_unique_id_and_name(self):
        sensor = _sensor(_FakeCoordinator())
        assert sensor._attr_unique_id == "10.0.0.5:35000_connectivity"
        assert sensor._attr_name == "Adapter"
