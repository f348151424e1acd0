"""Shared signal datatypes."""

from __future__ import annotations

import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

# Functional (broadcast) CAN header for Mode 01 requests.
DEFAULT_TX_HEADER = "7DF"

SOURCE_STANDARD = "standard"
SOURCE_COMMUNITY = "community"
SOURCE_ALIAS = "alias"

_WHITESPACE = re.compile(r"\s+")


def normalize_request(request: str) -> str:
    """Return a request as compact upper-case hex (``"01 0c"`` -> ``"010C"``)."""
    return _WHITESPACE.sub("", request).upper()


def normalize_header(header: str | None) -> str:
    """Return the effective transmit header, defaulting to the functional one."""
    if header is None:
        return DEFAULT_TX_HEADER
    cleaned = _WHITESPACE.sub("", header).upper()
    return cleaned or DEFAULT_TX_HEADER


@dataclass(frozen=True)
class SignalDefinition:
    """A decodable vehicle signal and the request that carries it."""

    id: str
    request: str
    decode: Callable[[Sequence[int]], float] = field(compare=False, repr=False)
    name: str = ""
    short_name: str = ""
    unit: str = ""
    min_value: float = 0
    max_value: float = 0
    header: str | None = None
    source: str = SOURCE_STANDARD

    @property
    def tx_header(self) -> str:
        """Header the request must be sent with."""
        return normalize_header(self.header)

    @property
    def mode(self) -> int:
        """OBD service number of the request."""
        return int(normalize_request(self.request)[:2], 16)
