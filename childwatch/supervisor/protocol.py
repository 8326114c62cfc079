"""
The command protocol spoken between the application and its watchdog.

Every command is one ASCII line, ``<mode> <pid>\\n``, where mode is ``a``
(start tracking) or ``r`` (stop tracking) and pid is a positive decimal
integer. There is no escaping and no length prefix; a line that deviates in
any way is a protocol error.
"""
import re
from enum import Enum
from typing import NamedTuple

from childwatch.exceptions import InvalidIdentifierError, ProtocolError

LINE_TERMINATOR = b"\n"

_LINE_RE = re.compile(rb"\A([ar]) ([0-9]+)\n\Z")


class Mode(str, Enum):
    ADD = "a"
    REMOVE = "r"


class Command(NamedTuple):
    mode: Mode
    pid: int


def validate_identifier(pid: int) -> int:
    """Returns `pid` unchanged, or raises InvalidIdentifierError if it can never be tracked."""
    if isinstance(pid, bool) or not isinstance(pid, int):
        raise InvalidIdentifierError(f"Process identifier must be an int, got {pid!r}")
    if pid <= 0:
        raise InvalidIdentifierError(f"Invalid process identifier {pid}")
    return pid


def format_command(mode: Mode, pid: int) -> str:
    """Formats a command without its line terminator, e.g. ``a 1234``."""
    return f"{Mode(mode).value} {validate_identifier(pid)}"


def encode_command(mode: Mode, pid: int) -> bytes:
    """Encodes a complete protocol line, terminator included."""
    return format_command(mode, pid).encode("ascii") + LINE_TERMINATOR


def parse_command(line: bytes) -> Command:
    """
    Parses one protocol line as read from the pipe.

    :param line: The raw line, including its trailing newline.
    :return: The decoded Command.
    :raises ProtocolError: For an empty or truncated line, an unknown mode,
        a non-numeric identifier, an identifier of zero, or trailing data.
    """
    match = _LINE_RE.match(line)
    if match is None:
        if not line:
            raise ProtocolError("Command channel closed")
        if not line.endswith(LINE_TERMINATOR):
            raise ProtocolError(f"Truncated command line {line!r}")
        raise ProtocolError(f"Malformed command line {line!r}")

    pid = int(match.group(2))
    if pid == 0:
        raise ProtocolError("Process identifier 0 is never valid")
    return Command(Mode(match.group(1).decode("ascii")), pid)
