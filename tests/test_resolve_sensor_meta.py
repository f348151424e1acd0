"""Tests for sensor metadata resolution and the sensor entities."""

from __future__ import annotations

from datetime import datetime, timezone

from homeassistant.components.sensor import SensorDeviceClass, SensorStateClass
from homeassistant.const import UnitOfTemperature

from custom_components.hybrid_obd.const import DERIVED_SENSORS
from custom_components.hybrid_obd.pid_tables.base import SOURCE_COMMUNITY, SignalDefinition
from custom_components.hybrid_obd.pid_tables.standard import STANDARD_PIDS
from custom_components.hybrid_obd.pid_tables.toyota import ZVW30_ALIAS_PIDS
from custom_components.hybrid_obd.protocol import DiagnosticTroubleCode
from custom_components.hybrid_obd.sensor import (
    DerivedSensor,
    ObdSignalSensor,
    TroubleCodeSensor,
    build_device_info,
    resolve_sensor_meta,
)


def _community(unit: str, name: str = "Battery Block Voltage V01") -> SignalDefinition:
    return SignalDefinition(
        id="PC_7E2_2181_V01",
        request="2181",
        header="7E2",
        name=name,
        unit=unit,
        min_value=0,
        max_value=20,
        decode=lambda data: 0,
        source=SOURCE_COMMUNITY,
    )


def test_temperature_signal():
    meta = resolve_sensor_meta(STANDARD_PIDS["0105"])
    assert meta.name == "Engine Coolant Temperature"
    assert meta.device_class == SensorDeviceClass.TEMPERATURE
    assert meta.unit == UnitOfTemperature.CELSIUS
    assert meta.state_class == SensorStateClass.MEASUREMENT
    assert meta.icon is None


def test_percentage_signal_has_no_device_class():
    meta = resolve_sensor_meta(ZVW30_ALIAS_PIDS["TOYOTA_HV_SOC"])
    assert meta.device_class is None
    assert meta.unit == "%"
    assert meta.icon == "mdi:car-electric"


def test_flag_signal_is_not_a_measurement():
    meta = resolve_sensor_meta(ZVW30_ALIAS_PIDS["TOYOTA_AC_STATUS"])
    assert meta.state_class is None
    assert meta.unit is None


def test_unknown_unit_is_kept_verbatim():
    meta = resolve_sensor_meta(_community("bar"))
    assert meta.device_class is None
    assert meta.unit == "bar"
    assert meta.state_class == SensorStateClass.MEASUREMENT
    assert meta.icon == "mdi:car-cog"


def test_unitless_signal_falls_back_to_id_name():
    meta = resolve_sensor_meta(_community("", name=""))
    assert meta.unit is None
    assert meta.name == "PC_7E2_2181_V01"


class _Entry:
    def __init__(self, unique_id=None):
        self.entry_id = "entry1"
        self.unique_id = unique_id
        self.data = {"device_name": "Prius"}


def test_device_info_prefers_unique_id():
    info = build_device_info(_Entry("10.0.0.5:35000"))
    assert info["identifiers"] == {("hybrid_obd", "10.0.0.5:35000")}
    assert info["name"] == "Prius"
    assert build_device_info(_Entry())["identifiers"] == {("hybrid_obd", "entry1")}


class _FakeCoordinator:
    def __init__(self):
        self.data = {}
        self.dtcs = []
        self.dtcs_updated = None
        self.last_update_success = True
        self.polled_signals: list[str] = []

    def is_signal_polled(self, signal_id):
        return not self.polled_signals or signal_id in self.polled_signals


def test_signal_sensor_reads_coordinator_value():
    coordinator = _FakeCoordinator()
    signal = ZVW30_ALIAS_PIDS["TOYOTA_HV_SOC"]
    sensor = ObdSignalSensor(
        coordinator, signal, resolve_sensor_meta(signal), "dev1", {"name": "Prius"}
    )
    assert sensor._attr_unique_id == "dev1_TOYOTA_HV_SOC"
    assert sensor.native_value is None

    coordinator.data = {"TOYOTA_HV_SOC": 58.824}
    assert sensor.native_value == 58.824
    assert sensor.extra_state_attributes == {
        "signal_id": "TOYOTA_HV_SOC",
        "request": "015B",
        "header": "7E2",
        "min": 0,
        "max": 100,
        "polled": True,
    }


def test_trouble_code_sensor():
    coordinator = _FakeCoordinator()
    sensor = TroubleCodeSensor(coordinator, "dev1", {"name": "Prius"})
    assert sensor._attr_unique_id == "dev1_trouble_codes"
    assert sensor.native_value is None

    coordinator.dtcs = [
        DiagnosticTroubleCode("P0301", False),
        DiagnosticTroubleCode("P0171", True),
    ]
    coordinator.dtcs_updated = datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    assert sensor.native_value == 2
    assert sensor.extra_state_attributes == {
        "stored": ["P0301"],
        "pending": ["P0171"],
        "last_read": "2026-01-02T03:04:05+00:00",
    }


def test_signal_sensor_unavailable_when_not_polled():
    coordinator = _FakeCoordinator()
    signal = ZVW30_ALIAS_PIDS["TOYOTA_HV_CURRENT"]
    sensor = ObdSignalSensor(
        coordinator, signal, resolve_sensor_meta(signal), "dev1", {"name": "Prius"}
    )
    assert sensor.available is True

    coordinator.polled_signals = ["010C", "TOYOTA_HV_SOC"]
    assert sensor.available is False
    assert sensor.extra_state_attributes["polled"] is False

    coordinator.last_update_success = False
    coordinator.polled_signals = ["TOYOTA_HV_CURRENT"]
    assert sensor.available is False


def test_derived_sensor_follows_its_inputs():
    description = next(d for d in DERIVED_SENSORS if d.key == "battery_internal_resistance")
    coordinator = _FakeCoordinator()
    sensor = DerivedSensor(coordinator, description, "dev1", {"name": "Prius"})
    assert sensor._attr_unique_id == "dev1_battery_internal_resistance"
    assert sensor._attr_native_unit_of_measurement == "mΩ"
    assert sensor.native_value is None

    coordinator.data = {"battery_internal_resistance": 312.5}
    assert sensor.native_value == 312.5

    coordinator.polled_signals = ["TOYOTA_HV_VOLTAGE"]
    assert sensor.available is False
    coordinator.polled_signals = ["TOYOTA_HV_VOLTAGE", "TOYOTA_HV_CURRENT"]
    assert sensor.available is True
