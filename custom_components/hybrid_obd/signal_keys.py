"""Helpers for canonical signal ids in config entries."""

from __future__ import annotations

import re
from collections.abc import Container
from typing import Any, Mapping

from .const import CONF_SELECTED_SIGNALS
from .pid_tables.base import normalize_request

_SPACED_REQUEST = re.compile(r"^[0-9A-Fa-f]{2}(\s+[0-9A-Fa-f]{2})+$")


def to_canonical_signal_key(signal_key: str) -> str:
    """Convert a user supplied signal id to its registry form.

    Request-style keys such as ``01 0c`` become ``010C``; other ids are
    upper-cased.
    """
    key = signal_key.strip()
    if not key:
        return key
    if _SPACED_REQUEST.match(key):
        return normalize_request(key)
    return key.upper()


def normalize_selected_signals(
    entry_data: Mapping[str, Any],
    known_ids: Container[str] | None = None,
) -> list[str]:
    """Return selected signal ids in canonical form, de-duplicated in order.

    When ``known_ids`` is given, ids outside it are dropped.
    """
    raw_selected = entry_data.get(CONF_SELECTED_SIGNALS)
    if not isinstance(raw_selected, list):
        return []

    normalized: list[str] = []
    seen: set[str] = set()
    for item in raw_selected:
        canonical = to_canonical_signal_key(str(item))
        if not canonical or canonical in seen:
            continue
        if known_ids is not None and canonical not in known_ids:
            continue
        seen.add(canonical)
        normalized.append(canonical)

    return normalized
