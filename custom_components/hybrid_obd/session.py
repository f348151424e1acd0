"""Connection lifecycle: connect, initialise, pick signals, poll, publish."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from enum import StrEnum
from typing import Protocol

from .elm327 import AdapterInitError, initialize_adapter
from .pid_tables.base import SOURCE_STANDARD
from .pid_tables.registry import PidRegistry
from .protocol import (
    DiagnosticTroubleCode,
    NotConnectedError,
    ObdError,
    ObdProtocol,
    PidReadResult,
)
from .transport import (
    Elm327Transport,
    TransportBusyError,
    TransportError,
    TransportTimeoutError,
)

_LOGGER = logging.getLogger(__name__)

DEFAULT_SIGNALS: tuple[str, ...] = (
    "010C",  # RPM
    "010D",  # Speed
    "0105",  # Coolant
    "0111",  # Throttle
    "0146",  # Ambient
    "0110",  # MAF
    "015E",  # Fuel rate
)
REQUIRED_SIGNALS: tuple[str, ...] = ("010C", "010D", "0105", "0111")

DEFAULT_POLL_INTERVAL_MS = 1000


class ConnectionState(StrEnum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


class TelemetrySink(Protocol):
    """Receives everything the session publishes."""

    def set_connection_state(self, state: ConnectionState, error: str | None) -> None:
        ...

    def update_signal(self, signal_id: str, value: float, raw: str) -> None:
        ...

    def signal_failed(self, signal_id: str, error: Exception) -> None:
        ...

    def update_dtcs(self, dtcs: list[DiagnosticTroubleCode]) -> None:
        ...


class DemoProvider(Protocol):
    """Feeds synthetic values into a sink while demo mode is active."""

    def start(self, sink: TelemetrySink) -> None:
        ...

    def stop(self) -> None:
        ...


def select_signals(
    requested: Sequence[str],
    supported: Sequence[str] | None,
    registry: PidRegistry,
    unsupported: Sequence[str] = (),
) -> list[str]:
    """Narrow the requested signals to what the vehicle reports as supported.

    Standard Mode 01 signals are checked against ``supported``; other signals
    are dropped only when listed in ``unsupported`` (their support check went
    unanswered). ``supported=None`` means the query failed and no standard
    signal is filtered. An empty result falls back to ``REQUIRED_SIGNALS``.
    """
    unsupported_set = set(unsupported)
    supported_set = None if supported is None else set(supported)
    selected = []
    for signal_id in requested:
        signal = registry.get(signal_id)
        if signal is not None and signal.source == SOURCE_STANDARD and signal.mode == 0x01:
            if supported_set is not None and signal_id not in supported_set:
                continue
        elif signal_id in unsupported_set:
            continue
        selected.append(signal_id)

    return selected or list(REQUIRED_SIGNALS)


class ObdSession:
    """Wires the transport, protocol engine and sink together.

    Each connect, disconnect or demo start takes a new session number. Work
    belonging to an older number stops at its next suspension point without
    touching the sink.
    """

    def __init__(
        self,
        transport: Elm327Transport,
        registry: PidRegistry,
        sink: TelemetrySink,
        *,
        poll_interval_ms: float = DEFAULT_POLL_INTERVAL_MS,
        signal_ids: Sequence[str] | None = None,
        reset_settle: float | None = None,
        command_interval: float | None = None,
    ) -> None:
        self._transport = transport
        self._registry = registry
        self._sink = sink
        self._poll_interval_ms = poll_interval_ms
        self._signal_ids: list[str] = list(signal_ids or DEFAULT_SIGNALS)
        self._init_delays: dict[str, float] = {}
        if reset_settle is not None:
            self._init_delays["reset_settle"] = reset_settle
        if command_interval is not None:
            self._init_delays["command_interval"] = command_interval

        self._session_id = 0
        self._wants_link = False
        self._protocol: ObdProtocol | None = None
        self._demo: DemoProvider | None = None

        self.state = ConnectionState.DISCONNECTED
        self.last_error: str | None = None
        self.elm_ready = False
        self.supported_pids: list[str] | None = None
        self.unsupported_signals: list[str] = []
        self.polled_signals: list[str] = []

    @property
    def session_id(self) -> int:
        return self._session_id

    @property
    def demo_mode(self) -> bool:
        return self._demo is not None

    @property
    def signal_ids(self) -> list[str]:
        return list(self._signal_ids)

    @property
    def poll_interval_ms(self) -> float:
        return self._poll_interval_ms

    def _is_stale(self, session: int) -> bool:
        return session != self._session_id

    def _set_state(self, state: ConnectionState, error: str | None = None) -> None:
        self.state = state
        self.last_error = error
        self._sink.set_connection_state(state, error)

    async def connect(self) -> None:
        """Connect, initialise the adapter and start polling.

        Failures end in the ``error`` state; they are not raised.
        """
        self._session_id += 1
        session = self._session_id
        self._wants_link = True

        await self._disconnect_internal()
        if self._is_stale(session):
            return
        self._set_state(ConnectionState.CONNECTING)

        try:
            await self._transport.connect()
            if self._is_stale(session):
                await self._release_stale_link()
                return
            await initialize_adapter(self._transport, **self._init_delays)
            if self._is_stale(session):
                await self._release_stale_link()
                return

            self.elm_ready = True
            self._set_state(ConnectionState.CONNECTED)

            protocol = ObdProtocol(self._transport, self._registry)
            self._protocol = protocol

            try:
                self.supported_pids = await protocol.query_supported_pids()
            except (ObdError, TransportError) as err:
                _LOGGER.debug("Supported PID query failed: %s", err)
                self.supported_pids = None

            if self._is_stale(session):
                protocol.stop_polling()
                await self._release_stale_link()
                return

            await self._detect_vendor_support(protocol)
            if self._is_stale(session):
                await self._release_stale_link()
                return

            try:
                dtcs = await protocol.read_dtcs()
            except (ObdError, TransportError) as err:
                _LOGGER.debug("Initial trouble code read failed: %s", err)
            else:
                if not self._is_stale(session):
                    self._sink.update_dtcs(dtcs)

            if self._is_stale(session):
                await self._release_stale_link()
                return

            self._start_polling(protocol, session)
        except (AdapterInitError, ObdError, TransportError, OSError) as err:
            if self._is_stale(session):
                return
            _LOGGER.error("Connection to ELM327 adapter failed: %s", err)
            self.elm_ready = False
            if self._protocol is not None:
                self._protocol.stop_polling()
                self._protocol = None
            await self._close_transport()
            self._set_state(ConnectionState.ERROR, str(err))

    async def disconnect(self) -> None:
        """Stop everything and cancel any connect attempt in flight."""
        self._session_id += 1
        self._wants_link = False
        await self._disconnect_internal()

    async def start_demo(self, provider: DemoProvider) -> None:
        """Replace any live connection with a demo data provider."""
        self._session_id += 1
        session = self._session_id
        self._wants_link = False

        await self._disconnect_internal()
        if self._is_stale(session):
            return

        self._demo = provider
        self.elm_ready = True
        self._set_state(ConnectionState.CONNECTED)
        provider.start(self._sink)

    async def read_dtcs(self) -> list[DiagnosticTroubleCode]:
        """Read trouble codes and publish them.

        Raises:
            NotConnectedError: No live adapter session.
        """
        protocol = self._require_protocol()
        dtcs = await protocol.read_dtcs()
        self._sink.update_dtcs(dtcs)
        return dtcs

    async def clear_dtcs(self) -> bool:
        protocol = self._require_protocol()
        cleared = await protocol.clear_dtcs()
        if cleared:
            self._sink.update_dtcs([])
        return cleared

    def update_signals(self, signal_ids: Sequence[str]) -> None:
        """Change the polled signals; a running loop restarts with them."""
        self._signal_ids = list(signal_ids)
        if self._protocol is not None and self._protocol.is_polling:
            self._start_polling(self._protocol, self._session_id)

    def _require_protocol(self) -> ObdProtocol:
        if self._protocol is None or not self.elm_ready:
            raise NotConnectedError("ELM327 adapter is not connected")
        return self._protocol

    def _start_polling(self, protocol: ObdProtocol, session: int) -> None:
        self.polled_signals = select_signals(
            self._signal_ids,
            self.supported_pids,
            self._registry,
            self.unsupported_signals,
        )

        def _on_result(
            signal_id: str, result: PidReadResult | None, error: Exception | None
        ) -> None:
            if self._is_stale(session):
                return
            if result is not None:
                self._sink.update_signal(signal_id, result.value, result.raw)
            elif error is not None:
                if self._is_link_lost(error):
                    self._handle_link_lost(protocol, error)
                    return
                self._sink.signal_failed(signal_id, error)

        protocol.start_polling(self.polled_signals, self._poll_interval_ms, _on_result)

    async def _detect_vendor_support(self, protocol: ObdProtocol) -> None:
        """Record which requested vendor signals the vehicle does not answer."""
        candidates = []
        for signal_id in self._signal_ids:
            signal = self._registry.get(signal_id)
            if signal is None:
                continue
            if signal.source == SOURCE_STANDARD and signal.mode == 0x01:
                continue
            candidates.append(signal_id)

        if not candidates:
            self.unsupported_signals = []
            return

        answered = set(await protocol.detect_supported_signals(candidates))
        self.unsupported_signals = [sid for sid in candidates if sid not in answered]
        if self.unsupported_signals:
            _LOGGER.info(
                "Vehicle did not answer %d of %d vendor signals: %s",
                len(self.unsupported_signals),
                len(candidates),
                ", ".join(self.unsupported_signals),
            )

    def _is_link_lost(self, error: Exception) -> bool:
        if isinstance(error, (TransportTimeoutError, TransportBusyError)):
            return False
        return isinstance(error, TransportError) or not self._transport.is_connected()

    def _handle_link_lost(self, protocol: ObdProtocol, error: Exception) -> None:
        # Later callbacks from this polling chain become stale.
        self._session_id += 1
        self._wants_link = False
        protocol.stop_polling()
        if self._protocol is protocol:
            self._protocol = None
        self.elm_ready = False
        self.polled_signals = []
        _LOGGER.error("Lost connection to ELM327 adapter: %s", error)
        self._set_state(ConnectionState.ERROR, str(error))

    async def _release_stale_link(self) -> None:
        # A newer connect owns the link; only a disconnect or demo start
        # leaves it for us to close.
        if not self._wants_link:
            await self._close_transport()

    async def _close_transport(self) -> None:
        try:
            await self._transport.disconnect()
        except (TransportError, OSError) as err:
            _LOGGER.debug("Error while closing adapter link: %s", err)

    async def _disconnect_internal(self) -> None:
        if self._demo is not None:
            self._demo.stop()
            self._demo = None

        if self._protocol is not None:
            self._protocol.stop_polling()
            self._protocol = None

        await self._close_transport()

        self.elm_ready = False
        self.polled_signals = []
        self._set_state(ConnectionState.DISCONNECTED)
