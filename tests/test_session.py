"""Tests for ObdSession connect/disconnect lifecycle and signal selection."""

from __future__ import annotations

import asyncio

import pytest

from custom_components.hybrid_obd.pid_tables.registry import PidRegistry
from custom_components.hybrid_obd.pid_tables.standard import STANDARD_PIDS
from custom_components.hybrid_obd.pid_tables.toyota import ZVW30_ALIAS_PIDS
from custom_components.hybrid_obd.protocol import NotConnectedError
from custom_components.hybrid_obd.session import (
    REQUIRED_SIGNALS,
    ConnectionState,
    ObdSession,
    select_signals,
)
from custom_components.hybrid_obd.transport import TransportError

REGISTRY = PidRegistry.merge(STANDARD_PIDS, ZVW30_ALIAS_PIDS)

VEHICLE_REPLIES = {
    "ATZ": "ELM327 v1.5",
    "01 00": "41 00 08 18 80 00",
    "03": "43 01 03 01",
    "07": "NO DATA",
    "04": "44",
    "01 0C": "410C1AF8",
    "01 0D": "410D32",
}


class FakeTransport:
    def __init__(self, replies: dict[str, str], hold: str | None = None) -> None:
        self.replies = dict(replies)
        self.sent: list[str] = []
        self.connected = False
        self.attempts = 0
        self.connect_calls = 0
        self.hold = hold
        self.reached = asyncio.Event()
        self.gate = asyncio.Event()

    async def connect(self) -> None:
        self.connect_calls += 1
        self.connected = True

    async def disconnect(self) -> None:
        self.connected = False

    def is_connected(self) -> bool:
        return self.connected

    async def send_command(self, command: str) -> str:
        self.attempts += 1
        if not self.connected:
            raise TransportError("Adapter is not connected")
        self.sent.append(command)
        if command == self.hold:
            self.hold = None
            self.reached.set()
            await self.gate.wait()
        await asyncio.sleep(0)
        if command in self.replies:
            return self.replies[command]
        return "OK" if command.startswith("AT") else "NO DATA"


class RecordingSink:
    def __init__(self) -> None:
        self.states: list[tuple[ConnectionState, str | None]] = []
        self.values: dict[str, float] = {}
        self.failures: dict[str, Exception] = {}
        self.dtc_updates: list[list] = []

    def set_connection_state(self, state, error) -> None:
        self.states.append((state, error))

    def update_signal(self, signal_id, value, raw) -> None:
        self.values[signal_id] = value

    def signal_failed(self, signal_id, error) -> None:
        self.failures[signal_id] = error

    def update_dtcs(self, dtcs) -> None:
        self.dtc_updates.append(list(dtcs))


class FakeDemo:
    def __init__(self) -> None:
        self.sink = None
        self.stopped = False

    def start(self, sink) -> None:
        self.sink = sink

    def stop(self) -> None:
        self.stopped = True


def _session(transport, sink, **kwargs):
    return ObdSession(
        transport,
        REGISTRY,
        sink,
        reset_settle=0,
        command_interval=0,
        **kwargs,
    )


def test_select_signals_filters_standard_pids():
    selected = select_signals(["010C", "0146", "010D"], ["010C", "010D"], REGISTRY)
    assert selected == ["010C", "010D"]


def test_select_signals_keeps_vendor_signals():
    selected = select_signals(["TOYOTA_HV_SOC", "0146", "PC_X"], ["010C"], REGISTRY)
    assert selected == ["TOYOTA_HV_SOC", "PC_X"]


def test_select_signals_drops_unanswered_vendor_signals():
    selected = select_signals(
        ["010C", "TOYOTA_HV_SOC", "TOYOTA_HV_CURRENT", "PC_X"],
        None,
        REGISTRY,
        unsupported=["TOYOTA_HV_CURRENT"],
    )
    assert selected == ["010C", "TOYOTA_HV_SOC", "PC_X"]


def test_select_signals_without_support_info():
    assert select_signals(["0146"], None, REGISTRY) == ["0146"]


def test_select_signals_falls_back_to_required():
    assert select_signals(["0146"], ["010C"], REGISTRY) == list(REQUIRED_SIGNALS)
    assert select_signals([], None, REGISTRY) == list(REQUIRED_SIGNALS)


def test_connect_initialises_and_polls():
    async def _run():
        transport = FakeTransport(VEHICLE_REPLIES)
        sink = RecordingSink()
        session = _session(transport, sink)
        await session.connect()
        await asyncio.sleep(0.05)
        snapshot = {
            "state": session.state,
            "elm_ready": session.elm_ready,
            "supported": session.supported_pids,
            "polled": session.polled_signals,
        }
        await session.disconnect()
        return transport, sink, session, snapshot

    transport, sink, session, snapshot = asyncio.run(_run())

    assert transport.sent[:6] == ["ATZ", "ATE0", "ATL0", "ATS0", "ATH0", "ATSP0"]
    assert transport.sent[6:10] == ["ATSH 7DF", "01 00", "03", "07"]
    assert snapshot["state"] == ConnectionState.CONNECTED
    assert snapshot["elm_ready"] is True
    assert snapshot["supported"] == ["0105", "010C", "010D", "0111"]
    assert snapshot["polled"] == ["010C", "010D", "0105", "0111"]

    assert [state for state, _ in sink.states] == [
        ConnectionState.DISCONNECTED,
        ConnectionState.CONNECTING,
        ConnectionState.CONNECTED,
        ConnectionState.DISCONNECTED,
    ]
    assert [dtc.code for dtc in sink.dtc_updates[0]] == ["P0301"]
    assert sink.values["010C"] == pytest.approx(1726)
    assert sink.values["010D"] == 50
    assert "0105" in sink.failures

    assert session.state == ConnectionState.DISCONNECTED
    assert session.elm_ready is False
    assert transport.connected is False


def test_init_failure_ends_in_error_state():
    async def _run():
        transport = FakeTransport({**VEHICLE_REPLIES, "ATE0": "?"})
        sink = RecordingSink()
        session = _session(transport, sink)
        await session.connect()
        return transport, sink, session

    transport, sink, session = asyncio.run(_run())
    assert session.state == ConnectionState.ERROR
    assert "ATE0" in session.last_error
    assert sink.states[-1][0] == ConnectionState.ERROR
    assert transport.connected is False
    assert "01 00" not in transport.sent


def test_disconnect_during_init_cancels_the_attempt():
    async def _run():
        transport = FakeTransport(VEHICLE_REPLIES, hold="ATZ")
        sink = RecordingSink()
        session = _session(transport, sink)
        connect_task = asyncio.create_task(session.connect())
        await transport.reached.wait()
        await session.disconnect()
        transport.gate.set()
        await connect_task
        await asyncio.sleep(0.02)
        return transport, sink, session

    transport, sink, session = asyncio.run(_run())
    assert session.state == ConnectionState.DISCONNECTED
    assert ConnectionState.CONNECTED not in [state for state, _ in sink.states]
    assert "01 00" not in transport.sent
    assert "01 0C" not in transport.sent
    assert transport.connected is False
    assert sink.values == {}


def test_newer_connect_keeps_the_link():
    async def _run():
        transport = FakeTransport(VEHICLE_REPLIES, hold="ATZ")
        sink = RecordingSink()
        session = _session(transport, sink, poll_interval_ms=5000)
        first = asyncio.create_task(session.connect())
        await transport.reached.wait()
        await session.connect()
        transport.gate.set()
        await first
        snapshot = (session.state, transport.connected, transport.connect_calls)
        await session.disconnect()
        return snapshot

    state, connected, connect_calls = asyncio.run(_run())
    assert state == ConnectionState.CONNECTED
    assert connected is True
    assert connect_calls == 2


def test_dtc_commands_require_connection():
    async def _run():
        session = _session(FakeTransport(VEHICLE_REPLIES), RecordingSink())
        with pytest.raises(NotConnectedError):
            await session.read_dtcs()
        with pytest.raises(NotConnectedError):
            await session.clear_dtcs()

    asyncio.run(_run())


def test_clear_dtcs_publishes_empty_list():
    async def _run():
        sink = RecordingSink()
        session = _session(FakeTransport(VEHICLE_REPLIES), sink, poll_interval_ms=5000)
        await session.connect()
        cleared = await session.clear_dtcs()
        await session.disconnect()
        return cleared, sink

    cleared, sink = asyncio.run(_run())
    assert cleared is True
    assert sink.dtc_updates[-1] == []


def test_update_signals_restarts_polling():
    async def _run():
        transport = FakeTransport(VEHICLE_REPLIES)
        sink = RecordingSink()
        session = _session(transport, sink, signal_ids=["010C"], poll_interval_ms=5000)
        await session.connect()
        await asyncio.sleep(0.02)
        session.update_signals(["010D"])
        await asyncio.sleep(0.02)
        polled = session.polled_signals
        await session.disconnect()
        return polled, sink

    polled, sink = asyncio.run(_run())
    assert polled == ["010D"]
    assert sink.values["010D"] == 50


def test_demo_mode_replaces_live_link():
    async def _run():
        transport = FakeTransport(VEHICLE_REPLIES)
        sink = RecordingSink()
        session = _session(transport, sink, poll_interval_ms=5000)
        await session.connect()
        demo = FakeDemo()
        await session.start_demo(demo)
        in_demo = (session.demo_mode, session.state, transport.connected)
        await session.disconnect()
        return demo, sink, in_demo, session

    demo, sink, in_demo, session = asyncio.run(_run())
    assert in_demo == (True, ConnectionState.CONNECTED, False)
    assert demo.sink is sink
    assert demo.stopped is True
    assert session.demo_mode is False


def test_connect_checks_vendor_signals():
    async def _run():
        transport = FakeTransport({**VEHICLE_REPLIES, "01 5B": "41 5B 99"})
        sink = RecordingSink()
        session = _session(
            transport,
            sink,
            signal_ids=["010C", "TOYOTA_HV_SOC", "TOYOTA_HV_CURRENT"],
            poll_interval_ms=5000,
        )
        await session.connect()
        await asyncio.sleep(0.02)
        snapshot = (session.unsupported_signals, session.polled_signals)
        await session.disconnect()
        return transport, sink, snapshot

    transport, sink, (unsupported, polled) = asyncio.run(_run())
    assert transport.sent[6:13] == [
        "ATSH 7DF",
        "01 00",
        "ATSH 7E2",
        "01 5B",
        "21 98",
        "ATSH 7DF",
        "03",
    ]
    assert unsupported == ["TOYOTA_HV_CURRENT"]
    assert polled == ["010C", "TOYOTA_HV_SOC"]
    assert sink.values["TOYOTA_HV_SOC"] == pytest.approx(60)
    assert "TOYOTA_HV_CURRENT" not in sink.failures


def test_lost_link_while_polling_ends_in_error():
    async def _run():
        transport = FakeTransport(VEHICLE_REPLIES)
        sink = RecordingSink()
        session = _session(transport, sink, signal_ids=["010C", "010D"], poll_interval_ms=10)
        await session.connect()
        await asyncio.sleep(0.05)
        transport.connected = False
        await asyncio.sleep(0.05)
        attempts_after_loss = transport.attempts
        await asyncio.sleep(0.05)
        snapshot = {
            "state": session.state,
            "elm_ready": session.elm_ready,
            "polled": session.polled_signals,
            "quiet": transport.attempts == attempts_after_loss,
        }
        await session.connect()
        await asyncio.sleep(0.02)
        reconnected = session.state
        await session.disconnect()
        return sink, session, snapshot, reconnected

    sink, session, snapshot, reconnected = asyncio.run(_run())
    assert snapshot["state"] == ConnectionState.ERROR
    assert snapshot["elm_ready"] is False
    assert snapshot["polled"] == []
    assert snapshot["quiet"] is True
    errors = [error for state, error in sink.states if state == ConnectionState.ERROR]
    assert errors == ["Adapter is not connected"]
    assert sink.failures == {}
    assert reconnected == ConnectionState.CONNECTED
