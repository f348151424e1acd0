"""OBD-II request/response engine for ELM327 adapters.

The adapter is half-duplex: every exchange (optional ``ATSH`` header switch,
request, reply) runs under one lock so a restarted polling chain queues
behind the exchange in flight instead of colliding with it.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from .pid_tables.base import DEFAULT_TX_HEADER, normalize_header, normalize_request
from .pid_tables.registry import PidRegistry
from .pid_tables.standard import (
    SUPPORTED_PID_QUERIES,
    decode_supported_pids,
    next_range_query,
)
from .transport import Elm327Transport, TransportError, TransportTimeoutError

_LOGGER = logging.getLogger(__name__)

RESPONSE_ERRORS: tuple[str, ...] = ("NO DATA", "ERROR", "UNABLE TO CONNECT", "?")

STORED_DTC_COMMAND = "03"
PENDING_DTC_COMMAND = "07"
CLEAR_DTC_COMMAND = "04"
CLEAR_DTC_POSITIVE = "44"

_HEX_WORD = re.compile(r"^[0-9A-F]+$")
# Multi-frame line prefix; with spaces off it is glued to the data ("0:6181...").
_FRAME_INDEX = re.compile(r"^[0-9A-F]+:")
_DTC_TYPES = ("P", "C", "B", "U")


class ObdError(Exception):
    """Base error for protocol operations."""


class NotConnectedError(ObdError):
    """The adapter link is not connected."""


class UnknownSignalError(ObdError):
    """The signal id is not in the registry."""


class NoDataError(ObdError):
    """No payload could be located in the adapter reply."""


class DecodeError(ObdError):
    """A payload was received but the signal decoder rejected it."""


@dataclass(frozen=True)
class PidReadResult:
    value: float
    raw: str


@dataclass(frozen=True)
class DiagnosticTroubleCode:
    code: str
    is_pending: bool


@dataclass(frozen=True)
class RequestGroup:
    """Signals served by one wire exchange."""

    request: str
    header: str
    ids: tuple[str, ...]


PollingCallback = Callable[[str, PidReadResult | None, Exception | None], None]


def format_obd_command(request: str) -> str:
    """Format a request as space separated byte pairs (``010C`` -> ``01 0C``)."""
    compact = normalize_request(request)
    return " ".join(compact[i : i + 2] for i in range(0, len(compact), 2))


def _reply_bytes(raw: str) -> list[int]:
    """Extract byte values from a reply, with or without separating spaces.

    Frame indices (``0:`` or ``0:6181...``) are stripped; words that are not
    an even run of hex digits (``SEARCHING...``, byte counts) are ignored.
    """
    values: list[int] = []
    for word in raw.replace(">", " ").upper().split():
        word = _FRAME_INDEX.sub("", word)
        if not word or not _HEX_WORD.match(word) or len(word) % 2:
            continue
        values.extend(int(word[i : i + 2], 16) for i in range(0, len(word), 2))
    return values


def _has_error_text(raw: str) -> bool:
    upper = raw.upper()
    return any(token in upper for token in RESPONSE_ERRORS)


def parse_response_bytes(raw: str, request: str) -> list[int]:
    """Return the payload bytes answering ``request``.

    Locates the first ``[mode + 0x40, *pid bytes]`` sequence in the reply and
    returns every byte after it. Adapter error text, a malformed request or a
    missing sequence all yield an empty list.
    """
    if _has_error_text(raw):
        return []

    compact = normalize_request(request)
    if len(compact) < 2 or len(compact) % 2 or not _HEX_WORD.match(compact):
        return []

    expected = [int(compact[:2], 16) + 0x40]
    expected.extend(int(compact[i : i + 2], 16) for i in range(2, len(compact), 2))

    data = _reply_bytes(raw)
    width = len(expected)
    for start in range(len(data) - width + 1):
        if data[start : start + width] == expected:
            return data[start + width :]
    return []


def _format_dtc(first: int, second: int) -> str:
    kind = _DTC_TYPES[(first >> 6) & 0x03]
    return f"{kind}{(first >> 4) & 0x03}{first & 0x0F:X}{second >> 4:X}{second & 0x0F:X}"


def parse_dtc_response(raw: str, is_pending: bool) -> list[DiagnosticTroubleCode]:
    """Decode a Mode 03 or Mode 07 reply into trouble codes.

    CAN replies carry a count byte after the service byte, which leaves an
    odd number of bytes; it is dropped. ``00 00`` pairs are padding.
    """
    if "NO DATA" in raw.upper() or "ERROR" in raw.upper():
        return []

    data = _reply_bytes(raw)
    service = 0x47 if is_pending else 0x43
    try:
        start = data.index(service) + 1
    except ValueError:
        return []

    payload = data[start:]
    if len(payload) % 2:
        payload = payload[1:]

    codes: list[DiagnosticTroubleCode] = []
    for i in range(0, len(payload) - 1, 2):
        first, second = payload[i], payload[i + 1]
        if first == 0 and second == 0:
            continue
        codes.append(DiagnosticTroubleCode(_format_dtc(first, second), is_pending))
    return codes


def build_request_groups(
    signal_ids: Sequence[str], registry: PidRegistry
) -> list[RequestGroup]:
    """Group signal ids by (header, request) in order of first appearance.

    Ids missing from the registry are sent as their own request on the
    functional header, so the failure is reported against that id.
    """
    order: list[str] = []
    members: dict[str, list[str]] = {}
    keys: dict[str, tuple[str, str]] = {}

    for signal_id in signal_ids:
        signal = registry.get(signal_id)
        if signal is None:
            request = normalize_request(signal_id)
            header = DEFAULT_TX_HEADER
        else:
            request = normalize_request(signal.request)
            header = signal.tx_header
        key = f"{header}|{request}"
        if key not in members:
            order.append(key)
            members[key] = []
            keys[key] = (header, request)
        members[key].append(signal_id)

    return [
        RequestGroup(request=keys[key][1], header=keys[key][0], ids=tuple(members[key]))
        for key in order
    ]


def _deliver(
    callback: PollingCallback,
    signal_id: str,
    result: PidReadResult | None,
    error: Exception | None,
) -> None:
    """Hand one result to the polling callback; a raising callback is logged."""
    try:
        callback(signal_id, result, error)
    except Exception:
        _LOGGER.exception("Polling callback failed for %s", signal_id)


def _log_cycle_failure(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    if (err := task.exception()) is not None:
        _LOGGER.error("Polling cycle stopped unexpectedly", exc_info=err)


class ObdProtocol:
    """Owns the adapter addressing state and the polling loop."""

    def __init__(self, transport: Elm327Transport, registry: PidRegistry) -> None:
        self._transport = transport
        self._registry = registry
        self._lock = asyncio.Lock()
        self.current_header: str | None = None
        self.is_polling = False
        self._generation = 0
        self._timer: asyncio.TimerHandle | None = None
        self._cycle_task: asyncio.Task | None = None

    @property
    def registry(self) -> PidRegistry:
        return self._registry

    def _require_connection(self) -> None:
        if not self._transport.is_connected():
            raise NotConnectedError("ELM327 adapter is not connected")

    async def _switch_header(self, header: str | None) -> None:
        desired = normalize_header(header)
        if self.current_header == desired:
            return
        reply = await self._transport.send_command(f"ATSH {desired}")
        if "?" in reply or "ERROR" in reply.upper():
            raise ObdError(f"Adapter rejected header {desired}: {reply}")
        self.current_header = desired

    async def _exchange(self, request: str, header: str | None) -> tuple[str, list[int]]:
        await self._switch_header(header)
        raw = await self._transport.send_command(format_obd_command(request))
        return raw, parse_response_bytes(raw, request)

    async def ensure_header(self, header: str | None = None) -> None:
        """Send ``ATSH`` only if the wanted header differs from the cached one."""
        async with self._lock:
            await self._switch_header(header)

    async def query_supported_pids(self) -> list[str]:
        """Probe the supported-PID bitmasks on the functional header."""
        self._require_connection()
        supported: list[str] = []

        async with self._lock:
            await self._switch_header(DEFAULT_TX_HEADER)
            for query in SUPPORTED_PID_QUERIES:
                try:
                    raw = await self._transport.send_command(format_obd_command(query))
                except TransportError as err:
                    _LOGGER.debug("Supported PID query %s failed: %s", query, err)
                    break

                data = parse_response_bytes(raw, query)
                if len(data) < 4:
                    break
                pids = decode_supported_pids(query, data)
                supported.extend(pids)
                if next_range_query(query) not in pids:
                    break

        return supported

    async def detect_supported_signals(self, signal_ids: Sequence[str]) -> list[str]:
        """Send each distinct request once and return the ids that answered.

        A request counts as answered when its positive response carries a
        payload; ``NO DATA``, adapter errors and ``7F`` negative responses do
        not. Timeouts and rejected headers mark the request unsupported.

        Raises:
            NotConnectedError: The adapter is not connected.
            TransportError: The link failed for a reason other than a timeout.
        """
        self._require_connection()
        supported: list[str] = []

        for group in build_request_groups(signal_ids, self._registry):
            if group.ids[0] not in self._registry:
                continue
            try:
                async with self._lock:
                    raw, data = await self._exchange(group.request, group.header)
            except (ObdError, TransportTimeoutError) as err:
                _LOGGER.debug(
                    "Support check of %s on %s failed: %s", group.request, group.header, err
                )
                continue
            if data:
                supported.extend(group.ids)
            else:
                _LOGGER.debug(
                    "Request %s on %s not supported: %r", group.request, group.header, raw
                )

        return supported

    async def read_pid(self, signal_id: str) -> PidReadResult:
        """Read and decode one signal.

        Raises:
            NotConnectedError: The adapter is not connected.
            UnknownSignalError: The id is not in the registry.
            NoDataError: The reply held no payload for the request.
            DecodeError: The decoder could not handle the payload.
            TransportError: The exchange failed on the link.
        """
        self._require_connection()
        signal = self._registry.get(signal_id)
        if signal is None:
            raise UnknownSignalError(f"Unknown signal: {signal_id}")

        async with self._lock:
            raw, data = await self._exchange(signal.request, signal.header)

        if not data:
            raise NoDataError(f"No data received for {signal_id}")
        try:
            value = signal.decode(data)
        except (ArithmeticError, IndexError, TypeError, ValueError) as err:
            raise DecodeError(f"Cannot decode {signal_id}: {err}") from err
        return PidReadResult(value=value, raw=raw)

    def start_polling(
        self,
        signal_ids: Sequence[str],
        interval_ms: float,
        callback: PollingCallback,
    ) -> None:
        """Poll signals until stopped.

        Any running loop is stopped first. The first cycle starts
        immediately; each next cycle is scheduled ``interval_ms`` after the
        previous one finished.
        """
        self.stop_polling()
        if not signal_ids:
            return

        groups = build_request_groups(signal_ids, self._registry)
        self._generation += 1
        self.is_polling = True
        _LOGGER.debug(
            "Polling %d signals in %d requests every %s ms",
            len(signal_ids),
            len(groups),
            interval_ms,
        )
        self._launch_cycle(self._generation, groups, interval_ms, callback)

    def stop_polling(self) -> None:
        """Stop polling; the exchange in flight finishes without callbacks."""
        self.is_polling = False
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _is_current(self, generation: int) -> bool:
        return self.is_polling and generation == self._generation

    def _launch_cycle(
        self,
        generation: int,
        groups: list[RequestGroup],
        interval_ms: float,
        callback: PollingCallback,
    ) -> None:
        self._timer = None
        if not self._is_current(generation):
            return
        self._cycle_task = asyncio.get_running_loop().create_task(
            self._run_cycle(generation, groups, interval_ms, callback)
        )
        self._cycle_task.add_done_callback(_log_cycle_failure)

    async def _run_cycle(
        self,
        generation: int,
        groups: list[RequestGroup],
        interval_ms: float,
        callback: PollingCallback,
    ) -> None:
        for group in groups:
            if not self._is_current(generation):
                return
            await self._poll_group(generation, group, callback)

        if self._is_current(generation):
            self._timer = asyncio.get_running_loop().call_later(
                interval_ms / 1000,
                self._launch_cycle,
                generation,
                groups,
                interval_ms,
                callback,
            )

    async def _poll_group(
        self, generation: int, group: RequestGroup, callback: PollingCallback
    ) -> None:
        try:
            async with self._lock:
                if not self._is_current(generation):
                    return
                raw, data = await self._exchange(group.request, group.header)
            if not data:
                raise NoDataError(f"No data received for request {group.request}")
        except (ObdError, TransportError) as err:
            if not self._is_current(generation):
                return
            for signal_id in group.ids:
                _deliver(callback, signal_id, None, err)
            return

        for signal_id in group.ids:
            if not self._is_current(generation):
                return
            signal = self._registry.get(signal_id)
            if signal is None:
                error = UnknownSignalError(f"Unknown signal: {signal_id}")
                _deliver(callback, signal_id, None, error)
                continue
            try:
                value = signal.decode(data)
            except (ArithmeticError, IndexError, TypeError, ValueError) as err:
                _deliver(
                    callback, signal_id, None, DecodeError(f"Cannot decode {signal_id}: {err}")
                )
                continue
            _deliver(callback, signal_id, PidReadResult(value=value, raw=raw), None)

    async def read_dtcs(self) -> list[DiagnosticTroubleCode]:
        """Read stored then pending trouble codes.

        A failing category is skipped; the other is still returned.
        """
        self._require_connection()
        codes: list[DiagnosticTroubleCode] = []

        async with self._lock:
            await self._switch_header(DEFAULT_TX_HEADER)
            for command, is_pending in (
                (STORED_DTC_COMMAND, False),
                (PENDING_DTC_COMMAND, True),
            ):
                try:
                    raw = await self._transport.send_command(command)
                except TransportError as err:
                    _LOGGER.debug("DTC request %s failed: %s", command, err)
                    continue
                codes.extend(parse_dtc_response(raw, is_pending))

        return codes

    async def clear_dtcs(self) -> bool:
        """Clear trouble codes; True only on a positive ``44`` reply."""
        self._require_connection()
        try:
            async with self._lock:
                await self._switch_header(DEFAULT_TX_HEADER)
                raw = await self._transport.send_command(CLEAR_DTC_COMMAND)
        except (ObdError, TransportError) as err:
            _LOGGER.warning("Clearing trouble codes failed: %s", err)
            return False
        return CLEAR_DTC_POSITIVE in raw
