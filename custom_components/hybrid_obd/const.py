"""Constants for the Hybrid OBD integration."""

from __future__ import annotations

from dataclasses import dataclass

from homeassistant.components.sensor import SensorDeviceClass, SensorStateClass
from homeassistant.const import (
    DEGREE,
    PERCENTAGE,
    REVOLUTIONS_PER_MINUTE,
    EntityCategory,
    UnitOfElectricCurrent,
    UnitOfElectricPotential,
    UnitOfPower,
    UnitOfPressure,
    UnitOfSpeed,
    UnitOfTemperature,
    UnitOfTime,
)

DOMAIN = "hybrid_obd"
PLATFORMS = ["sensor", "binary_sensor"]

CONF_DEVICE_NAME = "device_name"
CONF_HOST = "host"
CONF_PORT = "port"
CONF_POLL_INTERVAL = "poll_interval_ms"
CONF_SELECTED_SIGNALS = "selected_signals"

DEFAULT_DEVICE_NAME = "Prius"
DEFAULT_PORT = 35000
DEFAULT_POLL_INTERVAL_MS = 1000
MIN_POLL_INTERVAL_MS = 50
MAX_POLL_INTERVAL_MS = 5000

# Seconds to wait before reconnecting after a connection error.
RECONNECT_DELAY = 30

SERVICE_READ_DTCS = "read_dtcs"
SERVICE_CLEAR_DTCS = "clear_dtcs"
SERVICE_RESET_TRIP = "reset_trip"
ATTR_ENTRY_ID = "entry_id"

DTC_SENSOR_KEY = "trouble_codes"


def clamp_poll_interval(value: object) -> int:
    """Return a polling interval in milliseconds within the allowed range."""
    try:
        interval = int(float(str(value)))
    except (TypeError, ValueError):
        return DEFAULT_POLL_INTERVAL_MS
    return max(MIN_POLL_INTERVAL_MS, min(MAX_POLL_INTERVAL_MS, interval))


@dataclass(frozen=True)
class SensorMeta:
    """Home Assistant presentation of a signal."""

    name: str
    device_class: SensorDeviceClass | None = None
    state_class: SensorStateClass | None = SensorStateClass.MEASUREMENT
    unit: str | None = None
    entity_category: EntityCategory | None = None
    icon: str | None = None


# Signal unit -> (device class, HA unit, state class)
UNIT_TO_HA: dict[str, tuple[SensorDeviceClass | None, str | None, SensorStateClass]] = {
    "rpm": (None, REVOLUTIONS_PER_MINUTE, SensorStateClass.MEASUREMENT),
    "°C": (
        SensorDeviceClass.TEMPERATURE,
        UnitOfTemperature.CELSIUS,
        SensorStateClass.MEASUREMENT,
    ),
    "km/h": (
        SensorDeviceClass.SPEED,
        UnitOfSpeed.KILOMETERS_PER_HOUR,
        SensorStateClass.MEASUREMENT,
    ),
    "V": (
        SensorDeviceClass.VOLTAGE,
        UnitOfElectricPotential.VOLT,
        SensorStateClass.MEASUREMENT,
    ),
    "A": (
        SensorDeviceClass.CURRENT,
        UnitOfElectricCurrent.AMPERE,
        SensorStateClass.MEASUREMENT,
    ),
    "W": (SensorDeviceClass.POWER, UnitOfPower.WATT, SensorStateClass.MEASUREMENT),
    "kPa": (
        SensorDeviceClass.PRESSURE,
        UnitOfPressure.KPA,
        SensorStateClass.MEASUREMENT,
    ),
    "s": (
        SensorDeviceClass.DURATION,
        UnitOfTime.SECONDS,
        SensorStateClass.MEASUREMENT,
    ),
    "%": (None, PERCENTAGE, SensorStateClass.MEASUREMENT),
    "°": (None, DEGREE, SensorStateClass.MEASUREMENT),
    "g/s": (None, "g/s", SensorStateClass.MEASUREMENT),
    "L/h": (None, "L/h", SensorStateClass.MEASUREMENT),
    "Nm": (None, "Nm", SensorStateClass.MEASUREMENT),
}

# Signal ids whose value is a flag or an enumeration rather than a measurement.
NON_MEASUREMENT_SIGNALS: frozenset[str] = frozenset({"TOYOTA_AC_STATUS"})

SIGNAL_RPM = "010C"
SIGNAL_SPEED = "010D"
SIGNAL_MAF = "0110"
SIGNAL_HV_VOLTAGE = "TOYOTA_HV_VOLTAGE"
SIGNAL_HV_CURRENT = "TOYOTA_HV_CURRENT"
BLOCK_VOLTAGE_SIGNALS: tuple[str, ...] = tuple(
    f"PC_7E2_2181_V{block:02d}" for block in range(1, 15)
)

DERIVED_FUEL_INSTANT = "fuel_economy_instant"
DERIVED_FUEL_AVERAGE = "fuel_economy_average"
DERIVED_EV_RATIO = "ev_ratio"
DERIVED_BATTERY_SOH = "battery_soh"
DERIVED_BLOCK_DELTA = "battery_block_delta"
DERIVED_INTERNAL_RESISTANCE = "battery_internal_resistance"


@dataclass(frozen=True)
class DerivedSensorDescription:
    """A value computed from other signals; offered when all inputs are polled."""

    key: str
    meta: SensorMeta
    inputs: tuple[str, ...]


DERIVED_SENSORS: tuple[DerivedSensorDescription, ...] = (
    DerivedSensorDescription(
        DERIVED_FUEL_INSTANT,
        SensorMeta(name="Fuel Economy", unit="km/L", icon="mdi:gas-station"),
        (SIGNAL_SPEED, SIGNAL_MAF),
    ),
    DerivedSensorDescription(
        DERIVED_FUEL_AVERAGE,
        SensorMeta(name="Trip Fuel Economy", unit="km/L", icon="mdi:gas-station-outline"),
        (SIGNAL_SPEED, SIGNAL_MAF),
    ),
    DerivedSensorDescription(
        DERIVED_EV_RATIO,
        SensorMeta(name="Trip EV Ratio", unit=PERCENTAGE, icon="mdi:leaf"),
        (SIGNAL_SPEED, SIGNAL_MAF, SIGNAL_RPM),
    ),
    DerivedSensorDescription(
        DERIVED_BATTERY_SOH,
        SensorMeta(name="HV Battery Health", unit=PERCENTAGE, icon="mdi:battery-heart"),
        BLOCK_VOLTAGE_SIGNALS,
    ),
    DerivedSensorDescription(
        DERIVED_BLOCK_DELTA,
        SensorMeta(
            name="HV Battery Block Spread",
            device_class=SensorDeviceClass.VOLTAGE,
            unit=UnitOfElectricPotential.VOLT,
        ),
        BLOCK_VOLTAGE_SIGNALS,
    ),
    DerivedSensorDescription(
        DERIVED_INTERNAL_RESISTANCE,
        SensorMeta(name="HV Battery Internal Resistance", unit="mΩ", icon="mdi:omega"),
        (SIGNAL_HV_VOLTAGE, SIGNAL_HV_CURRENT),
    ),
)
