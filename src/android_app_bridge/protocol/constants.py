"""Protocol constants and the command variant decoded from a command code."""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum

# Sent as int64 by the desktop before anything else on a connection
PROTOCOL_IDENTIFIER = 0x35107124
PROTOCOL_VERSION = 4


class CommandCode(IntEnum):
    """Command codes, sent as int32 at the start of every request."""

    PING = 2
    PATH_EXISTS = 3
    PATH_CHECKSUM = 4
    RESTART_ACTIVITY = 5
    SHOW_TOAST = 6
    EOF = 7


PRIVILEGED_COMMANDS = frozenset({CommandCode.RESTART_ACTIVITY})


@dataclass(frozen=True)
class UnknownCommand:
    """A command code with no known payload shape."""

    code: int


def parse_command(code: int) -> CommandCode | UnknownCommand:
    """Decode a raw command code into a known command or ``UnknownCommand``."""
    try:
        return CommandCode(code)
    except ValueError:
        return UnknownCommand(code)
