"""Standard OBD-II Mode 01 signals (SAE J1979)."""

from __future__ import annotations

from collections.abc import Sequence

from .base import SOURCE_STANDARD, SignalDefinition

# Each query returns a 4-byte support bitmask for the next 32 PIDs.
SUPPORTED_PID_QUERIES: tuple[str, ...] = ("0100", "0120", "0140")


def _percent(data: Sequence[int]) -> float:
    return data[0] * 100 / 255


def _temperature(data: Sequence[int]) -> float:
    return data[0] - 40


def _fuel_trim(data: Sequence[int]) -> float:
    return (data[0] - 128) * 100 / 128


def _o2_voltage(data: Sequence[int]) -> float:
    return data[0] / 200


def _word(data: Sequence[int]) -> int:
    return data[0] * 256 + data[1]


def _std(
    pid: str,
    name: str,
    short_name: str,
    unit: str,
    min_value: float,
    max_value: float,
    decode,
) -> SignalDefinition:
    return SignalDefinition(
        id=pid,
        request=pid,
        decode=decode,
        name=name,
        short_name=short_name,
        unit=unit,
        min_value=min_value,
        max_value=max_value,
        source=SOURCE_STANDARD,
    )


_O2_SENSORS = (
    ("0114", "Bank 1, Sensor 1", "O2 B1S1"),
    ("0115", "Bank 1, Sensor 2", "O2 B1S2"),
    ("0116", "Bank 1, Sensor 3", "O2 B1S3"),
    ("0117", "Bank 1, Sensor 4", "O2 B1S4"),
    ("0118", "Bank 2, Sensor 1", "O2 B2S1"),
    ("0119", "Bank 2, Sensor 2", "O2 B2S2"),
    ("011A", "Bank 2, Sensor 3", "O2 B2S3"),
    ("011B", "Bank 2, Sensor 4", "O2 B2S4"),
)

_STANDARD_LIST: list[SignalDefinition] = [
    _std("0104", "Calculated Engine Load", "Load", "%", 0, 100, _percent),
    _std("0105", "Engine Coolant Temperature", "Coolant", "°C", -40, 215, _temperature),
    _std("0106", "Short Term Fuel Trim - Bank 1", "STFT B1", "%", -100, 99.2, _fuel_trim),
    _std("0107", "Long Term Fuel Trim - Bank 1", "LTFT B1", "%", -100, 99.2, _fuel_trim),
    _std("010A", "Fuel Pressure", "Fuel Pres", "kPa", 0, 765, lambda b: b[0] * 3),
    _std("010B", "Intake Manifold Absolute Pressure", "MAP", "kPa", 0, 255, lambda b: b[0]),
    _std("010C", "Engine RPM", "RPM", "rpm", 0, 16383.75, lambda b: _word(b) / 4),
    _std("010D", "Vehicle Speed", "Speed", "km/h", 0, 255, lambda b: b[0]),
    _std("010E", "Timing Advance", "Timing", "°", -64, 63.5, lambda b: b[0] / 2 - 64),
    _std("010F", "Intake Air Temperature", "IAT", "°C", -40, 215, _temperature),
    _std("0110", "MAF Air Flow Rate", "MAF", "g/s", 0, 655.35, lambda b: _word(b) / 100),
    _std("0111", "Throttle Position", "Throttle", "%", 0, 100, _percent),
    *(
        _std(pid, f"O2 Sensor Voltage - {label}", short, "V", 0, 1.275, _o2_voltage)
        for pid, label, short in _O2_SENSORS
    ),
    _std("011F", "Run Time Since Engine Start", "Run Time", "s", 0, 65535, _word),
    _std("012F", "Fuel Tank Level Input", "Fuel Lvl", "%", 0, 100, _percent),
    _std("0146", "Ambient Air Temperature", "Ambient", "°C", -40, 215, _temperature),
    _std("015C", "Engine Oil Temperature", "Oil Temp", "°C", -40, 210, _temperature),
    _std("015E", "Engine Fuel Rate", "Fuel Rate", "L/h", 0, 3276.75, lambda b: _word(b) / 20),
]

STANDARD_PIDS: dict[str, SignalDefinition] = {sig.id: sig for sig in _STANDARD_LIST}


def decode_supported_pids(query: str, data: Sequence[int]) -> list[str]:
    """Decode a supported-PIDs bitmask into the list of supported PIDs.

    The MSB of the first byte stands for ``base + 1`` and the LSB of the
    fourth byte for ``base + 0x20``. Fewer than four bytes yields no PIDs.
    """
    if len(data) < 4:
        return []

    mode = query[:2].upper()
    base = int(query[2:4], 16)
    bitmask = int.from_bytes(bytes(data[:4]), byteorder="big")

    supported: list[str] = []
    for bit in range(32):
        if bitmask & (1 << (31 - bit)):
            supported.append(f"{mode}{base + bit + 1:02X}")
    return supported


def next_range_query(query: str) -> str:
    """Return the query id whose support bit announces the next range."""
    return f"{query[:2].upper()}{int(query[2:4], 16) + 0x20:02X}"
