"""Link to an ELM327 adapter.

The protocol engine only needs to send a command and read back the text the
adapter printed before its ``>`` prompt. ELM327 links are half-duplex, so a
transport refuses a second command while one is still in flight.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol, runtime_checkable

_LOGGER = logging.getLogger(__name__)

ELM_PROMPT = b">"
COMMAND_TIMEOUT = 5.0
CONNECT_TIMEOUT = 10.0
_READ_CHUNK = 1024
_STALE_DRAIN_TIMEOUT = 0.05


class TransportError(Exception):
    """Base error for adapter link failures."""


class TransportBusyError(TransportError):
    """A command was issued while another one is awaiting its reply."""


class TransportTimeoutError(TransportError):
    """The adapter did not print its prompt in time."""


@runtime_checkable
class Elm327Transport(Protocol):
    """What the protocol engine and session need from an adapter link."""

    async def connect(self) -> None:
        ...

    async def disconnect(self) -> None:
        ...

    async def send_command(self, command: str) -> str:
        ...

    def is_connected(self) -> bool:
        ...


def clean_reply(raw: bytes) -> str:
    """Decode an adapter reply and strip the prompt and line breaks."""
    text = raw.decode("ascii", errors="ignore")
    text = text.replace(">", "").replace("\r", "\n")
    lines = [line.strip() for line in text.split("\n")]
    return "\n".join(line for line in lines if line)


class TcpElm327Transport:
    """ELM327 reachable over TCP (Wi-Fi adapters, ser2net bridges)."""

    def __init__(
        self,
        host: str,
        port: int,
        *,
        command_timeout: float = COMMAND_TIMEOUT,
        connect_timeout: float = CONNECT_TIMEOUT,
    ) -> None:
        self._host = host
        self._port = port
        self._command_timeout = command_timeout
        self._connect_timeout = connect_timeout
        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None
        self._in_flight = False
        self._stale = False

    @property
    def address(self) -> str:
        return f"{self._host}:{self._port}"

    def is_connected(self) -> bool:
        return self._writer is not None and not self._writer.is_closing()

    async def connect(self) -> None:
        if self.is_connected():
            return
        try:
            async with asyncio.timeout(self._connect_timeout):
                self._reader, self._writer = await asyncio.open_connection(
                    self._host, self._port
                )
        except TimeoutError as err:
            raise TransportTimeoutError(
                f"Timed out connecting to adapter at {self.address}"
            ) from err
        except OSError as err:
            raise TransportError(
                f"Cannot connect to adapter at {self.address}: {err}"
            ) from err
        _LOGGER.debug("Connected to ELM327 at %s", self.address)

    async def disconnect(self) -> None:
        writer = self._writer
        self._reader = None
        self._writer = None
        self._in_flight = False
        self._stale = False
        if writer is None:
            return
        writer.close()
        try:
            await writer.wait_closed()
        except OSError as err:
            _LOGGER.debug("Error closing adapter link %s: %s", self.address, err)

    async def send_command(self, command: str) -> str:
        """Send one command and return the cleaned reply.

        Raises:
            TransportBusyError: Another command is awaiting its reply.
            TransportTimeoutError: No prompt within the command timeout.
            TransportError: The link is closed or failed.
        """
        if self._in_flight:
            raise TransportBusyError(f"Adapter busy, cannot send {command!r}")
        if self._reader is None or self._writer is None or not self.is_connected():
            raise TransportError("Adapter is not connected")

        reader = self._reader
        writer = self._writer
        self._in_flight = True
        try:
            if self._stale:
                await self._drain_stale_reply(reader)
            writer.write(f"{command.strip()}\r".encode("ascii"))
            await writer.drain()
            async with asyncio.timeout(self._command_timeout):
                raw = await self._read_until_prompt(reader)
        except TimeoutError as err:
            self._stale = True
            raise TransportTimeoutError(
                f"No reply to {command!r} within {self._command_timeout}s"
            ) from err
        except (OSError, asyncio.IncompleteReadError) as err:
            raise TransportError(f"Adapter link failed on {command!r}: {err}") from err
        finally:
            self._in_flight = False

        reply = clean_reply(raw)
        _LOGGER.debug("ELM327 %s -> %r", command, reply)
        return reply

    @staticmethod
    async def _read_until_prompt(reader: asyncio.StreamReader) -> bytes:
        buffer = b""
        while ELM_PROMPT not in buffer:
            chunk = await reader.read(_READ_CHUNK)
            if not chunk:
                raise asyncio.IncompleteReadError(buffer, None)
            buffer += chunk
        return buffer

    async def _drain_stale_reply(self, reader: asyncio.StreamReader) -> None:
        """Drop what is left of a reply that arrived after its timeout."""
        self._stale = False
        while True:
            try:
                async with asyncio.timeout(_STALE_DRAIN_TIMEOUT):
                    chunk = await reader.read(_READ_CHUNK)
            except TimeoutError:
                return
            if not chunk:
                return
            _LOGGER.debug("Discarded late adapter output %r", chunk)
