"""
The watchdog process.

`fork_watchdog` splits the application in two. The parent keeps the write end
of a pipe; the child becomes the watchdog, which reads add/remove commands
from the read end to maintain its live set of tracked processes. When the pipe
closes (the parent exited or crashed) or a command cannot be understood, the
watchdog sends SIGTERM to every process it still tracks and exits.
"""
import os
import signal
import logging
import threading
from enum import Enum
from typing import BinaryIO, Callable, List, Optional, Set, Tuple

from childwatch.config import effective_settings as config
from childwatch.exceptions import ProtocolError, WatchdogStartError
from childwatch.supervisor import process_utils
from childwatch.supervisor.protocol import Command, Mode, parse_command

log = logging.getLogger(__name__)


class WatchdogState(Enum):
    INIT = "init"
    LISTENING = "listening"
    TERMINAL = "terminal"


class Watchdog:
    """
    Owns the live set of tracked process ids and drives it from protocol lines.

    The live set is a plain list: duplicates are allowed and removal swaps the
    last element into the removed slot, so ordering carries no meaning.
    """

    def __init__(self, stream: BinaryIO, terminate: Callable[[int], bool] = process_utils.terminate_pid) -> None:
        """
        :param stream: The read end of the command pipe, opened in binary mode.
        :param terminate: Called once per tracked id when the watchdog reaps.
        """
        self._stream = stream
        self._terminate = terminate
        self._tracked: List[int] = []
        self.state = WatchdogState.INIT

    @property
    def live_set(self) -> Tuple[int, ...]:
        return tuple(self._tracked)

    def apply(self, command: Command) -> None:
        if command.mode is Mode.ADD:
            self._tracked.append(command.pid)
            log.debug(f"Tracking process {command.pid}")
        else:
            self._discard(command.pid)

    def _discard(self, pid: int) -> None:
        try:
            index = self._tracked.index(pid)
        except ValueError:
            return
        last = self._tracked.pop()
        if index < len(self._tracked):
            self._tracked[index] = last
        log.debug(f"Stopped tracking process {pid}")

    def step(self) -> bool:
        """
        Reads and applies one command.

        :return: False once the channel has closed or delivered anything it cannot parse.
        """
        try:
            line = self._stream.readline()
            command = parse_command(line)
        except ProtocolError as e:
            log.info(f"Watchdog stopping: {e}")
            return False
        except Exception as e:
            log.error(f"Watchdog failed to read from command channel: {e!r}")
            return False
        self.apply(command)
        return True

    def listen(self) -> None:
        """Applies commands until the channel closes or breaks."""
        self.state = WatchdogState.LISTENING
        while self.step():
            pass

    def reap(self) -> int:
        """
        Sends SIGTERM to every tracked process.

        :return: The number of processes that were signalled.
        """
        self.state = WatchdogState.TERMINAL
        signalled = 0
        for pid in self._tracked:
            log.warning(f"Reaping {pid}")
            if self._terminate(pid):
                signalled += 1
        return signalled

    def run(self) -> int:
        """Listens until the channel ends, reaps, and returns the exit status."""
        try:
            self.listen()
        finally:
            self.reap()
        return os.EX_OK


def watchdog_title(program_name: Optional[str] = None) -> str:
    return f"{program_name or config.PROGRAM_NAME}{config.WATCHDOG_TITLE_SUFFIX}"


def logging_fds() -> Set[int]:
    """Descriptors of every configured logging stream, kept open so the watchdog can still report."""
    loggers = [logging.getLogger()] + [
        logger for logger in logging.Logger.manager.loggerDict.values() if isinstance(logger, logging.Logger)
    ]
    fds: Set[int] = set()
    for logger in loggers:
        for handler in logger.handlers:
            stream = getattr(handler, "stream", None)
            if stream is None:
                continue
            try:
                fds.add(stream.fileno())
            except (AttributeError, OSError, ValueError):
                continue
    return fds


def _prepare_child(read_fd: int, write_fd: int) -> None:
    """Detaches the forked child from the parent's side of the channel and signal setup."""
    os.close(write_fd)

    # Ctrl-C reaches the whole process group; the watchdog waits for the pipe instead.
    signal.signal(signal.SIGINT, signal.SIG_IGN)
    signal.signal(signal.SIGTERM, signal.SIG_DFL)
    try:
        signal.set_wakeup_fd(-1)
    except ValueError:
        pass

    if config.WATCHDOG_CLOSE_FDS:
        process_utils.close_inherited_fds(keep=(read_fd, *logging_fds()))

    process_utils.set_process_title(watchdog_title())


def run_watchdog(read_fd: int, write_fd: int) -> int:
    """Entry point of the forked child. Returns the exit status."""
    _prepare_child(read_fd, write_fd)
    log.info(f"Watchdog {os.getpid()} listening for parent {os.getppid()}")
    with os.fdopen(read_fd, "rb") as stream:
        return Watchdog(stream).run()


def fork_watchdog() -> Tuple[int, int]:
    """
    Creates the command pipe and forks the watchdog process.

    Only returns in the parent. The child runs the watchdog and leaves
    through `os._exit`, never returning into the caller's stack.

    :return: A tuple of (watchdog pid, write end of the command pipe).
    :raises WatchdogStartError: If the pipe or the fork could not be created.
    """
    try:
        read_fd, write_fd = os.pipe()
    except OSError as e:
        raise WatchdogStartError(f"Failed to create command pipe: {e}") from e

    try:
        pid = os.fork()
    except OSError as e:
        os.close(read_fd)
        os.close(write_fd)
        raise WatchdogStartError(f"Failed to fork watchdog process: {e}") from e

    if pid == 0:
        status = 1
        try:
            status = run_watchdog(read_fd, write_fd)
        except BaseException:
            log.critical("Watchdog crashed", exc_info=True)
        finally:
            logging.shutdown()
            os._exit(status)

    os.close(read_fd)
    log.info(f"Watchdog process started with PID: {pid}")
    return pid, write_fd


class WatchdogReaper(threading.Thread):
    """
    Collects the exit status of a forked watchdog so it does not linger as a zombie.

    Runs as a daemon thread: the watchdog outlives the channel it waits on, so the
    application must be able to exit while this thread is still blocked.
    """

    def __init__(self, pid: int) -> None:
        super().__init__(name=f"WatchdogReaper-{pid}", daemon=True)
        self.pid = pid
        self.exit_code: Optional[int] = None

    def run(self) -> None:
        try:
            _, status = os.waitpid(self.pid, 0)
        except ChildProcessError:
            log.debug(f"Watchdog {self.pid} was already reaped elsewhere.")
            return
        self.exit_code = os.waitstatus_to_exitcode(status)
        log.info(f"Watchdog {self.pid} exited with code {self.exit_code}")


def reap_in_background(pid: int) -> WatchdogReaper:
    reaper = WatchdogReaper(pid)
    reaper.start()
    return reaper
