"""Shared test doubles for supervisor tests."""

import io
import os
from typing import List, Optional, Tuple

from childwatch.supervisor.watchdog import Watchdog


class FakeFork:
    """Stands in for `fork_watchdog`: hands out the write end of a pipe and keeps the read end."""

    def __init__(self, pid: int = 4242) -> None:
        self.pid = pid
        self.calls = 0
        self.read_fd: Optional[int]
        self.read_fd, self._write_fd = os.pipe()
        self._handed_out = False

    def __call__(self) -> Tuple[int, int]:
        self.calls += 1
        self._handed_out = True
        return self.pid, self._write_fd

    def read_all(self) -> bytes:
        """Reads everything sent; the supervisor must have closed the channel first."""
        fd, self.read_fd = self.read_fd, None
        with os.fdopen(fd, "rb") as stream:
            return stream.read()

    def lines(self) -> List[bytes]:
        return self.read_all().splitlines(keepends=True)

    def break_pipe(self) -> None:
        """Closes the read end, as if the watchdog had died."""
        fd, self.read_fd = self.read_fd, None
        os.close(fd)

    def close(self) -> None:
        if self.read_fd is not None:
            os.close(self.read_fd)
            self.read_fd = None
        # Once handed out, the write end belongs to the supervisor's channel.
        if not self._handed_out:
            os.close(self._write_fd)
            self._handed_out = True


def replay(data: bytes) -> List[int]:
    """Feeds recorded commands to a real Watchdog and returns the ids it would reap."""
    signalled: List[int] = []

    def _terminate(pid: int) -> bool:
        signalled.append(pid)
        return True

    Watchdog(io.BytesIO(data), terminate=_terminate).run()
    return signalled
