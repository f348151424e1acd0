"""Community PID table loader.

Tables are JSON files exported from the PriusChat custom PID sheet. Each row
is a Torque-style definition: request (mode + PID), transmit header and an
equation over the response payload bytes.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ..equation import compile_equation
from ..pid_tables.base import SOURCE_COMMUNITY, SignalDefinition

_LOGGER = logging.getLogger(__name__)

_REQUEST_PATTERN = re.compile(r"^[0-9A-F]{4,}$")
_HEADER_PATTERN = re.compile(r"^[0-9A-F]{3,}$")
_ID_CLEANUP = re.compile(r"[^A-Z0-9]+")


@dataclass(frozen=True)
class CommunityRow:
    """One row of a community PID sheet."""

    name: str
    short_name: str
    mode_and_pid: str
    equation: str
    min_value: float
    max_value: float
    units: str
    header: str


@dataclass(frozen=True)
class CommunityTable:
    """A loaded community PID table."""

    filename: str
    name: str
    description: str
    rows: tuple[CommunityRow, ...]


def _to_number(value: Any) -> float:
    try:
        number = float(str(value).strip())
    except (TypeError, ValueError):
        return 0
    if number != number or number in (float("inf"), float("-inf")):
        return 0
    return number


def _parse_row(raw: Any, position: int, table_name: str) -> CommunityRow | None:
    if not isinstance(raw, dict):
        _LOGGER.warning("Skipping row %d in %s: not an object", position, table_name)
        return None

    mode_and_pid = str(raw.get("mode_and_pid", "")).strip().upper()
    header = str(raw.get("header", "")).strip().upper()

    if not _REQUEST_PATTERN.match(mode_and_pid) or len(mode_and_pid) % 2:
        _LOGGER.warning(
            "Skipping row %d in %s: invalid request %r", position, table_name, mode_and_pid
        )
        return None
    if not _HEADER_PATTERN.match(header):
        _LOGGER.warning(
            "Skipping row %d in %s: invalid header %r", position, table_name, header
        )
        return None

    return CommunityRow(
        name=str(raw.get("name", "")),
        short_name=str(raw.get("short_name", "")),
        mode_and_pid=mode_and_pid,
        equation=str(raw.get("equation", "")),
        min_value=_to_number(raw.get("min")),
        max_value=_to_number(raw.get("max")),
        units=str(raw.get("units", "")),
        header=header,
    )


def load_table(path: Path) -> CommunityTable:
    """Load a community table file.

    Raises:
        ValueError: If the file is not a table object with a ``rows`` list.
        OSError: If the file cannot be read.
        json.JSONDecodeError: If the JSON is malformed.
    """
    with open(path, encoding="utf-8") as table_file:
        payload = json.load(table_file)

    if not isinstance(payload, dict):
        raise ValueError("Table must be a JSON object")

    name = payload.get("name", path.stem)
    description = payload.get("description", "")
    raw_rows = payload.get("rows")

    if not isinstance(name, str):
        raise ValueError("'name' must be a string")
    if not isinstance(description, str):
        raise ValueError("'description' must be a string")
    if not isinstance(raw_rows, list):
        raise ValueError("'rows' must be a list")

    rows: list[CommunityRow] = []
    for position, raw in enumerate(raw_rows):
        row = _parse_row(raw, position, path.name)
        if row is not None:
            rows.append(row)

    return CommunityTable(
        filename=path.name,
        name=name,
        description=description,
        rows=tuple(rows),
    )


def discover_tables(table_dir: Path) -> dict[str, CommunityTable]:
    """Discover community table files in a directory."""
    tables: dict[str, CommunityTable] = {}
    if not table_dir.exists() or not table_dir.is_dir():
        return tables

    for table_path in sorted(table_dir.glob("*.json")):
        try:
            table = load_table(table_path)
            tables[table.filename] = table
        except (OSError, ValueError, json.JSONDecodeError) as err:
            _LOGGER.warning("Failed to read PID table %s: %s", table_path.name, err)
    return tables


def _sanitize_id_part(text: str) -> str:
    cleaned = _ID_CLEANUP.sub("_", text.strip().upper()).strip("_")
    return cleaned or "X"


def build_community_signals(rows: tuple[CommunityRow, ...] | list[CommunityRow]) -> dict[str, SignalDefinition]:
    """Convert community rows into signal definitions.

    Ids follow ``PC_<header>_<request>_<short name>``; repeated ids get a
    ``_2``, ``_3``, ... suffix in row order.
    """
    signals: dict[str, SignalDefinition] = {}
    for row in rows:
        base_id = f"PC_{row.header}_{row.mode_and_pid}_{_sanitize_id_part(row.short_name)}"
        signal_id = base_id
        suffix = 2
        while signal_id in signals:
            signal_id = f"{base_id}_{suffix}"
            suffix += 1

        signals[signal_id] = SignalDefinition(
            id=signal_id,
            request=row.mode_and_pid,
            header=row.header,
            name=row.name,
            short_name=row.short_name,
            unit=row.units,
            min_value=row.min_value,
            max_value=row.max_value,
            decode=compile_equation(row.equation),
            source=SOURCE_COMMUNITY,
        )
    return signals
