"""Tests for ObdProtocol request handling against a scripted adapter."""

from __future__ import annotations

import asyncio

import pytest

from custom_components.hybrid_obd.pid_tables.registry import PidRegistry
from custom_components.hybrid_obd.pid_tables.standard import STANDARD_PIDS
from custom_components.hybrid_obd.pid_tables.toyota import ZVW30_ALIAS_PIDS
from custom_components.hybrid_obd.protocol import (
    DecodeError,
    NoDataError,
    NotConnectedError,
    ObdError,
    ObdProtocol,
    UnknownSignalError,
)
from custom_components.hybrid_obd.transport import TransportError, TransportTimeoutError


class FakeTransport:
    """Answers commands from a reply table and records what was sent."""

    def __init__(self, replies: dict[str, object] | None = None) -> None:
        self.replies = dict(replies or {})
        self.sent: list[str] = []
        self.connected = True

    async def connect(self) -> None:
        self.connected = True

    async def disconnect(self) -> None:
        self.connected = False

    def is_connected(self) -> bool:
        return self.connected

    async def send_command(self, command: str) -> str:
        self.sent.append(command)
        reply = self.replies.get(command)
        if reply is None:
            return "OK" if command.startswith("AT") else "NO DATA"
        if isinstance(reply, Exception):
            raise reply
        return reply


REGISTRY = PidRegistry.merge(STANDARD_PIDS, ZVW30_ALIAS_PIDS)


def _protocol(replies: dict[str, object] | None = None):
    transport = FakeTransport(replies)
    return ObdProtocol(transport, REGISTRY), transport


def test_header_is_sent_once_per_change():
    protocol, transport = _protocol(
        {"01 0C": "41 0C 1A F8", "01 0D": "41 0D 32", "01 5B": "41 5B 99"}
    )

    async def _run():
        await protocol.read_pid("010C")
        await protocol.read_pid("010D")
        soc = await protocol.read_pid("TOYOTA_HV_SOC")
        await protocol.read_pid("010C")
        return soc

    soc = asyncio.run(_run())
    assert soc.value == pytest.approx(60)
    assert transport.sent == [
        "ATSH 7DF",
        "01 0C",
        "01 0D",
        "ATSH 7E2",
        "01 5B",
        "ATSH 7DF",
        "01 0C",
    ]
    assert protocol.current_header == "7DF"


def test_ensure_header_skips_cached_header():
    protocol, transport = _protocol()

    async def _run():
        await protocol.ensure_header("7e2")
        await protocol.ensure_header("7E2")
        await protocol.ensure_header(None)

    asyncio.run(_run())
    assert transport.sent == ["ATSH 7E2", "ATSH 7DF"]


def test_rejected_header_keeps_cache():
    protocol, _ = _protocol({"ATSH 7E2": "?"})

    with pytest.raises(ObdError):
        asyncio.run(protocol.ensure_header("7E2"))
    assert protocol.current_header is None


def test_read_pid_value_and_raw():
    protocol, _ = _protocol({"01 0C": "41 0C 1A F8"})
    result = asyncio.run(protocol.read_pid("010C"))
    assert result.value == pytest.approx(1726)
    assert result.raw == "41 0C 1A F8"


def test_read_pid_errors():
    protocol, transport = _protocol({"01 0C": "41 0C 1A"})

    with pytest.raises(UnknownSignalError):
        asyncio.run(protocol.read_pid("NOPE"))
    with pytest.raises(NoDataError):
        asyncio.run(protocol.read_pid("010D"))
    with pytest.raises(DecodeError):
        asyncio.run(protocol.read_pid("010C"))

    transport.connected = False
    with pytest.raises(NotConnectedError):
        asyncio.run(protocol.read_pid("010C"))


def test_read_pid_propagates_transport_errors():
    protocol, _ = _protocol({"01 0C": TransportError("link lost")})
    with pytest.raises(TransportError):
        asyncio.run(protocol.read_pid("010C"))


def test_supported_query_stops_without_next_range_bit():
    protocol, transport = _protocol({"01 00": "41 00 08 18 80 00"})
    supported = asyncio.run(protocol.query_supported_pids())
    assert supported == ["0105", "010C", "010D", "0111"]
    assert transport.sent == ["ATSH 7DF", "01 00"]


def test_supported_query_follows_next_range_bit():
    protocol, transport = _protocol(
        {"01 00": "41 00 00 00 00 01", "01 20": "41 20 80 00 00 00"}
    )
    supported = asyncio.run(protocol.query_supported_pids())
    assert supported == ["0120", "0121"]
    assert "01 40" not in transport.sent


def test_supported_query_without_reply():
    protocol, _ = _protocol()
    assert asyncio.run(protocol.query_supported_pids()) == []


def test_supported_query_requires_connection():
    protocol, transport = _protocol()
    transport.connected = False
    with pytest.raises(NotConnectedError):
        asyncio.run(protocol.query_supported_pids())


def test_read_dtcs_stored_then_pending():
    protocol, transport = _protocol({"03": "43 01 03 01", "07": "47 01 01 71"})
    codes = asyncio.run(protocol.read_dtcs())
    assert [(dtc.code, dtc.is_pending) for dtc in codes] == [
        ("P0301", False),
        ("P0171", True),
    ]
    assert transport.sent == ["ATSH 7DF", "03", "07"]


def test_read_dtcs_tolerates_failed_category():
    protocol, _ = _protocol({"03": "43 01 03 01", "07": TransportError("timeout")})
    codes = asyncio.run(protocol.read_dtcs())
    assert [dtc.code for dtc in codes] == ["P0301"]


def test_clear_dtcs():
    protocol, _ = _protocol({"04": "44"})
    assert asyncio.run(protocol.clear_dtcs()) is True

    protocol, _ = _protocol({"04": "NO DATA"})
    assert asyncio.run(protocol.clear_dtcs()) is False

    protocol, _ = _protocol({"04": TransportError("timeout")})
    assert asyncio.run(protocol.clear_dtcs()) is False


def test_read_pid_from_multiframe_reply_without_spaces():
    frames = "6181" + "2F00" * 14
    raw = "\n".join(
        [
            "01E",
            "0:" + frames[0:12],
            "1:" + frames[12:26],
            "2:" + frames[26:40],
            "3:" + frames[40:54],
            "4:" + frames[54:60] + "00000000",
        ]
    )
    protocol, transport = _protocol({"21 81": raw})
    result = asyncio.run(protocol.read_pid("TOYOTA_HV_VOLTAGE"))
    assert result.value == pytest.approx(14 * 0x2F00 * 79.99 / 65535)
    assert transport.sent == ["ATSH 7E2", "21 81"]


def test_detection_keeps_requests_with_a_positive_reply():
    protocol, transport = _protocol(
        {
            "21 81": "61 81 2F 00 2F 00",
            "21 98": "7F 21 12",
            "01 5B": "41 5B 99",
        }
    )
    answered = asyncio.run(
        protocol.detect_supported_signals(
            ["TOYOTA_HV_VOLTAGE", "TOYOTA_HV_CURRENT", "TOYOTA_HV_SOC", "TOYOTA_HV_TEMP"]
        )
    )
    assert answered == ["TOYOTA_HV_VOLTAGE", "TOYOTA_HV_SOC"]
    assert transport.sent.count("21 81") == 1
    assert "21 98" in transport.sent


def test_detection_treats_timeouts_as_unsupported():
    protocol, _ = _protocol(
        {"21 98": TransportTimeoutError("timeout"), "01 5B": "41 5B 99"}
    )
    answered = asyncio.run(
        protocol.detect_supported_signals(["TOYOTA_HV_CURRENT", "TOYOTA_HV_SOC"])
    )
    assert answered == ["TOYOTA_HV_SOC"]


def test_detection_propagates_link_failures():
    protocol, _ = _protocol({"21 98": TransportError("link lost")})
    with pytest.raises(TransportError):
        asyncio.run(protocol.detect_supported_signals(["TOYOTA_HV_CURRENT"]))


def test_detection_of_nothing_sends_nothing():
    protocol, transport = _protocol()
    assert asyncio.run(protocol.detect_supported_signals([])) == []
    assert transport.sent == []
