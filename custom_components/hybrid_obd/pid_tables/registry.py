"""Signal registry merged from the standard, community and alias tables."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Mapping
from pathlib import Path
from types import MappingProxyType

from ..pid_profiles.loader import build_community_signals, discover_tables
from .base import SignalDefinition
from .standard import STANDARD_PIDS
from .toyota import ZVW30_ALIAS_PIDS

_LOGGER = logging.getLogger(__name__)

PID_PROFILE_DIR = Path(__file__).parent.parent / "pid_profiles"


class PidRegistry:
    """Read-only lookup from signal id to its definition."""

    def __init__(self, signals: Mapping[str, SignalDefinition]) -> None:
        self._signals: Mapping[str, SignalDefinition] = MappingProxyType(dict(signals))

    @classmethod
    def merge(cls, *sources: Mapping[str, SignalDefinition]) -> PidRegistry:
        """Merge sources in order; later sources override earlier ones."""
        merged: dict[str, SignalDefinition] = {}
        for source in sources:
            for signal_id, signal in source.items():
                previous = merged.get(signal_id)
                if previous is not None:
                    _LOGGER.debug(
                        "Signal %s from %s overrides %s definition",
                        signal_id,
                        signal.source,
                        previous.source,
                    )
                merged[signal_id] = signal
        return cls(merged)

    def get(self, signal_id: str) -> SignalDefinition | None:
        return self._signals.get(signal_id)

    def ids(self) -> list[str]:
        return list(self._signals)

    def __contains__(self, signal_id: object) -> bool:
        return signal_id in self._signals

    def __len__(self) -> int:
        return len(self._signals)

    def __iter__(self) -> Iterator[str]:
        return iter(self._signals)


def build_default_registry(
    table_dir: Path = PID_PROFILE_DIR,
    extra_sources: Iterable[Mapping[str, SignalDefinition]] = (),
) -> PidRegistry:
    """Build the shipped registry.

    Merge order is the standard table, the community tables found in
    ``table_dir``, any ``extra_sources``, and finally the alias table.
    """
    community: dict[str, SignalDefinition] = {}
    for table in discover_tables(table_dir).values():
        community.update(build_community_signals(table.rows))
        _LOGGER.debug("Loaded PID table %s (%d rows)", table.filename, len(table.rows))

    return PidRegistry.merge(
        STANDARD_PIDS,
        community,
        *extra_sources,
        ZVW30_ALIAS_PIDS,
    )
