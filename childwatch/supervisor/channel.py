import os
import logging
from typing import BinaryIO, Optional

from childwatch.exceptions import ChannelError
from childwatch.supervisor.protocol import LINE_TERMINATOR, Mode, encode_command

log = logging.getLogger(__name__)


class CommandChannel:
    """
    The write end of the pipe to the watchdog.

    Writes are fire-and-forget: each line is written whole and flushed before
    `send` returns, and nothing ever comes back. The only failure the
    application can observe is the channel breaking.
    """

    def __init__(self, stream: BinaryIO) -> None:
        self._stream: Optional[BinaryIO] = stream

    @classmethod
    def from_fd(cls, fd: int) -> "CommandChannel":
        """Wraps a raw pipe descriptor; the channel takes ownership of it."""
        return cls(os.fdopen(fd, "wb"))

    @property
    def closed(self) -> bool:
        return self._stream is None or self._stream.closed

    def send(self, line: str) -> None:
        """
        Writes `line` plus the terminator and flushes it.

        :raises ChannelError: If the channel is closed or the write fails.
        """
        self.send_bytes(line.encode("ascii") + LINE_TERMINATOR)

    def send_command(self, mode: Mode, pid: int) -> None:
        """Encodes and writes a single add/remove command."""
        self.send_bytes(encode_command(mode, pid))

    def send_bytes(self, data: bytes) -> None:
        if self.closed:
            raise ChannelError("Command channel is closed")
        try:
            self._stream.write(data)
            self._stream.flush()
        except (OSError, ValueError) as e:
            raise ChannelError(f"Failed to write to command channel: {e}") from e
        log.debug(f"Sent command {data!r}")

    def close(self) -> None:
        """Closes the write end. Safe to call more than once."""
        stream, self._stream = self._stream, None
        if stream is None or stream.closed:
            return
        try:
            stream.close()
        except OSError as e:
            # A failed final flush still releases the descriptor.
            log.warning(f"Error while closing command channel: {e}")
