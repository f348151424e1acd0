"""Toyota ZVW30 Prius alias signals.

These ids are stable names for the handful of hybrid signals most users want.
They map onto vendor requests that need a physical ECU header:
7E2 is the hybrid control ECU, 7C4 the A/C amplifier.
"""

from __future__ import annotations

from collections.abc import Sequence

from ..equation import compile_equation
from .base import SOURCE_ALIAS, SignalDefinition

HYBRID_ECU_HEADER = "7E2"
AC_ECU_HEADER = "7C4"

# 2181 carries 14 block voltages as 16-bit words.
_BLOCK_COUNT = 14
_BLOCK_VOLTAGE_SCALE = 79.99 / 65535
_BATTERY_TEMP_SCALE = 255.9 / 65535


def decode_hv_pack_voltage(data: Sequence[int]) -> float:
    """Sum the block voltages of a 2181 response."""
    needed = _BLOCK_COUNT * 2
    if len(data) < needed:
        return 0
    return sum(
        (data[i] * 256 + data[i + 1]) * _BLOCK_VOLTAGE_SCALE
        for i in range(0, needed, 2)
    )


def decode_hv_battery_temp_avg(data: Sequence[int]) -> float:
    """Average battery temperatures TB1..TB3 (bytes C..H) of a 2187 response."""
    if len(data) < 8:
        return 0
    temps = [
        (data[i] * 256 + data[i + 1]) * _BATTERY_TEMP_SCALE - 50
        for i in (2, 4, 6)
    ]
    return sum(temps) / len(temps)


ZVW30_ALIAS_PIDS: dict[str, SignalDefinition] = {
    "TOYOTA_HV_SOC": SignalDefinition(
        id="TOYOTA_HV_SOC",
        request="015B",
        header=HYBRID_ECU_HEADER,
        name="HV Battery State of Charge",
        short_name="SOC",
        unit="%",
        min_value=0,
        max_value=100,
        decode=compile_equation("A * 20 / 51"),
        source=SOURCE_ALIAS,
    ),
    "TOYOTA_HV_CURRENT": SignalDefinition(
        id="TOYOTA_HV_CURRENT",
        request="2198",
        header=HYBRID_ECU_HEADER,
        name="HV Battery Pack Current",
        short_name="HV Amp",
        unit="A",
        min_value=-200,
        max_value=200,
        decode=compile_equation("(A * 256 + B) / 100 - 327.68"),
        source=SOURCE_ALIAS,
    ),
    "TOYOTA_HV_VOLTAGE": SignalDefinition(
        id="TOYOTA_HV_VOLTAGE",
        request="2181",
        header=HYBRID_ECU_HEADER,
        name="HV Battery Pack Voltage",
        short_name="HV Volt",
        unit="V",
        min_value=0,
        max_value=300,
        decode=decode_hv_pack_voltage,
        source=SOURCE_ALIAS,
    ),
    "TOYOTA_HV_TEMP": SignalDefinition(
        id="TOYOTA_HV_TEMP",
        request="2187",
        header=HYBRID_ECU_HEADER,
        name="HV Battery Temperature (avg)",
        short_name="HV Temp",
        unit="°C",
        min_value=-50,
        max_value=80,
        decode=decode_hv_battery_temp_avg,
        source=SOURCE_ALIAS,
    ),
    "TOYOTA_CABIN_TEMP": SignalDefinition(
        id="TOYOTA_CABIN_TEMP",
        request="2121",
        header=AC_ECU_HEADER,
        name="Cabin Temperature (Room Sensor)",
        short_name="Cabin",
        unit="°C",
        min_value=-20,
        max_value=60,
        decode=compile_equation("A * 63.75 / 255 - 6.5"),
        source=SOURCE_ALIAS,
    ),
    "TOYOTA_AC_STATUS": SignalDefinition(
        id="TOYOTA_AC_STATUS",
        request="2175",
        header=HYBRID_ECU_HEADER,
        name="A/C Status",
        short_name="A/C",
        unit="",
        min_value=0,
        max_value=1,
        decode=compile_equation("{A:5}"),
        source=SOURCE_ALIAS,
    ),
    "TOYOTA_AC_SET_TEMP": SignalDefinition(
        id="TOYOTA_AC_SET_TEMP",
        request="2129",
        header=AC_ECU_HEADER,
        name="A/C Set Temperature (Driver)",
        short_name="SET",
        unit="°C",
        min_value=17.5,
        max_value=32.5,
        decode=compile_equation("A / 2 + 17.5"),
        source=SOURCE_ALIAS,
    ),
}
