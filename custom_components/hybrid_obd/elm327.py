"""ELM327 adapter initialisation."""

from __future__ import annotations

import asyncio
import logging

from .transport import Elm327Transport, TransportError

_LOGGER = logging.getLogger(__name__)

# Order matters: reset, echo off, linefeeds off, spaces off, headers off,
# automatic protocol detection.
INIT_COMMANDS: tuple[tuple[str, str], ...] = (
    ("ATZ", "Reset"),
    ("ATE0", "Echo off"),
    ("ATL0", "Linefeeds off"),
    ("ATS0", "Spaces off"),
    ("ATH0", "Headers off"),
    ("ATSP0", "Automatic protocol"),
)

RESET_SETTLE = 1.5
COMMAND_INTERVAL = 0.2

ADAPTER_ERRORS: tuple[str, ...] = (
    "NO DATA",
    "UNABLE TO CONNECT",
    "BUS INIT",
    "BUS ERROR",
    "CAN ERROR",
    "ERROR",
    "?",
)


class AdapterInitError(Exception):
    """The adapter rejected or did not answer an initialisation command."""


def is_error_response(response: str) -> bool:
    """Return True if the reply contains adapter error text."""
    upper = response.upper().strip()
    return any(token in upper for token in ADAPTER_ERRORS)


async def initialize_adapter(
    transport: Elm327Transport,
    *,
    reset_settle: float = RESET_SETTLE,
    command_interval: float = COMMAND_INTERVAL,
) -> None:
    """Run the initialisation sequence.

    Each command must complete before the next is sent. The reset needs a
    longer settle time than the others.

    Raises:
        AdapterInitError: A command failed or returned error text.
    """
    for command, description in INIT_COMMANDS:
        try:
            response = await transport.send_command(command)
        except TransportError as err:
            raise AdapterInitError(
                f"ELM327 init command {command} ({description}) failed: {err}"
            ) from err

        await asyncio.sleep(reset_settle if command == "ATZ" else command_interval)

        if is_error_response(response):
            raise AdapterInitError(
                f"ELM327 init command {command} ({description}) returned error: {response}"
            )
        _LOGGER.debug("ELM327 %s (%s) ok", command, description)
