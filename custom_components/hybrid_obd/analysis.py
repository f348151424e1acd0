"""Derived telemetry: fuel economy and traction battery health."""

from __future__ import annotations

from collections.abc import Sequence

STOICHIOMETRIC_AFR = 14.7
FUEL_DENSITY_G_PER_L = 745.0
MIN_SPEED_KMH = 1.0
MIN_MAF_GPS = 0.1
MAX_INSTANT_KM_PER_L = 99.9
# Samples further apart than this are treated as a gap, not integrated.
MAX_SAMPLE_GAP_S = 10.0

# Block voltage spread at which health reads zero, and the spread a new pack
# still shows.
SOH_SPREAD_LIMIT_V = 1.2
SOH_SPREAD_RANGE_V = 1.0
# Current swing below this gives no usable resistance estimate.
MIN_CURRENT_SWING_A = 1.0


def fuel_flow_l_per_h(maf: float) -> float:
    """Fuel flow from mass air flow at a stoichiometric mixture."""
    return maf * 3600 / (STOICHIOMETRIC_AFR * FUEL_DENSITY_G_PER_L)


def instant_km_per_l(maf: float, speed: float) -> float:
    """Return the current fuel economy, 0 when stopped or running electric."""
    if speed < MIN_SPEED_KMH or maf < MIN_MAF_GPS:
        return 0.0
    flow = fuel_flow_l_per_h(maf)
    return min(MAX_INSTANT_KM_PER_L, speed / flow)


class FuelEconomyTracker:
    """Integrates speed and fuel flow into trip totals."""

    def __init__(self) -> None:
        self.distance_km = 0.0
        self.ev_distance_km = 0.0
        self.fuel_used_l = 0.0
        self.instant_km_per_l = 0.0
        self._last: tuple[float, float] | None = None

    def reset(self) -> None:
        self.distance_km = 0.0
        self.ev_distance_km = 0.0
        self.fuel_used_l = 0.0
        self.instant_km_per_l = 0.0
        self._last = None

    @property
    def average_km_per_l(self) -> float:
        if self.fuel_used_l <= 0:
            return 0.0
        return self.distance_km / self.fuel_used_l

    @property
    def ev_ratio(self) -> float:
        """Share of the distance driven with the engine off, 0..1."""
        if self.distance_km <= 0:
            return 0.0
        return self.ev_distance_km / self.distance_km

    def update(self, speed: float, maf: float, ev_mode: bool, timestamp: float) -> None:
        """Add one sample; ``timestamp`` is in seconds.

        The first sample only sets the reference point. Samples that go back
        in time or follow a gap longer than ``MAX_SAMPLE_GAP_S`` move the
        reference without adding distance or fuel.
        """
        self.instant_km_per_l = instant_km_per_l(maf, speed)
        previous = self._last
        self._last = (speed, timestamp)
        if previous is None:
            return

        last_speed, last_timestamp = previous
        elapsed = timestamp - last_timestamp
        if elapsed <= 0 or elapsed > MAX_SAMPLE_GAP_S:
            return

        hours = elapsed / 3600
        distance = (speed + last_speed) / 2 * hours
        self.distance_km += distance
        if ev_mode:
            self.ev_distance_km += distance
        if maf >= MIN_MAF_GPS:
            self.fuel_used_l += fuel_flow_l_per_h(maf) * hours


class BatteryHealthTracker:
    """Estimates pack health from block voltages and current swings."""

    def __init__(self) -> None:
        self.soh: float | None = None
        self.block_delta: float | None = None
        self.internal_resistance_mohm: float | None = None
        self._last_electrical: tuple[float, float] | None = None

    def update_block_voltages(self, voltages: Sequence[float]) -> None:
        """Score the pack from the spread between its 14 block voltages."""
        if not voltages:
            return
        spread = max(voltages) - min(voltages)
        self.block_delta = spread
        soh = (SOH_SPREAD_LIMIT_V - spread) / SOH_SPREAD_RANGE_V * 100
        self.soh = max(0.0, min(100.0, soh))

    def update_pack_electrical(self, voltage: float, current: float) -> None:
        """Estimate internal resistance from the change since the last sample.

        A swing under ``MIN_CURRENT_SWING_A`` or an unchanged voltage keeps the
        previous estimate.
        """
        previous = self._last_electrical
        self._last_electrical = (voltage, current)
        if previous is None:
            return
        delta_current = abs(current - previous[1])
        if delta_current < MIN_CURRENT_SWING_A:
            return
        resistance = abs(voltage - previous[0]) / delta_current * 1000
        if resistance > 0:
            self.internal_resistance_mohm = resistance
