import asyncio
import logging
from enum import Enum
from typing import Any, Optional, Sequence, Set

from childwatch.exceptions import AlreadyRunningError, ChannelError
from childwatch.supervisor import launcher, process_utils, watchdog
from childwatch.supervisor.channel import CommandChannel
from childwatch.supervisor.protocol import Mode, validate_identifier
from childwatch.supervisor.registry import LaunchSpec, Registry

log = logging.getLogger(__name__)


class SupervisorState(Enum):
    NOT_RUNNING = "not_running"
    RUNNING = "running"
    SHUTTING_DOWN = "shutting_down"


class Supervisor:
    """
    Makes sure the processes an application starts die with it.

    Processes are registered either as launch specs, which the supervisor
    spawns itself, or as bare pids of processes started elsewhere. `start()`
    forks a watchdog process that outlives a crash of the application and
    terminates everything still registered once the application is gone.

    The supervisor assumes a single caller; it does no locking of its own.
    """

    def __init__(self) -> None:
        """Initializes the Supervisor state."""
        self.registry = Registry()
        self._state = SupervisorState.NOT_RUNNING
        self._channel: Optional[CommandChannel] = None
        self._watchdog_pid: Optional[int] = None
        self._watchdog_reaper: Optional[watchdog.WatchdogReaper] = None
        self._exit_waits: Set["asyncio.Task[None]"] = set()

    @property
    def state(self) -> SupervisorState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state is SupervisorState.RUNNING

    @property
    def watchdog_pid(self) -> Optional[int]:
        return self._watchdog_pid

    async def register_launch(self, spec: LaunchSpec, args: Sequence[str]) -> Optional[asyncio.subprocess.Process]:
        """
        Registers a launch spec. If the supervisor is running, the process is spawned right away.

        :param spec: The spawn configuration; registering it again replaces its arguments.
        :param args: The program and its arguments.
        :return: The spawned process when running and the spawn succeeded, else None.
        """
        args = self.registry.add_launch_spec(spec, args)
        if self.is_running:
            return await launcher.launch(self, spec, args)
        return None

    def register_identifier(self, pid: int) -> None:
        """
        Puts an already running process under supervision.

        :param pid: The process id; zero is rejected.
        :raises InvalidIdentifierError: If pid is not a positive integer.
        """
        validate_identifier(pid)
        if self.is_running:
            self.send_command(Mode.ADD, pid)
        else:
            self.registry.add_pending(pid)
            log.debug(f"Queued process {pid} until the watchdog starts.")

    def register_external_process(self, handle: Any) -> None:
        """
        Puts a process handle spawned outside the supervisor under supervision.

        A handle whose identifier is not a plain decimal number is logged and ignored.
        """
        identifier = process_utils.get_identifier(handle)
        pid = process_utils.parse_identifier(identifier)
        if pid is None:
            log.warning(f"Failed to parse pid {identifier!r}")
            return
        self.register_identifier(pid)

    async def start(self) -> None:
        """
        Forks the watchdog and hands every registered process over to it.

        :raises AlreadyRunningError: If the supervisor was already started.
        :raises WatchdogStartError: If the pipe or the fork failed; nothing is kept in that case.
        """
        if self._state is not SupervisorState.NOT_RUNNING:
            raise AlreadyRunningError(f"Supervisor is already running (watchdog PID {self._watchdog_pid})")

        pid, write_fd = watchdog.fork_watchdog()
        self._channel = CommandChannel.from_fd(write_fd)
        self._watchdog_pid = pid
        self._watchdog_reaper = watchdog.reap_in_background(pid)
        self._state = SupervisorState.RUNNING

        pending = self.registry.take_pending()
        for tracked_pid in pending:
            self.send_command(Mode.ADD, tracked_pid)

        launched = 0
        for spec, args in self.registry.launch_specs():
            if await launcher.launch(self, spec, args) is not None:
                launched += 1

        log.info(f"Supervisor started: {len(pending)} registered processes, {launched} launched.")

    def stop(self) -> None:
        """
        Closes the command channel and returns to the not running state.

        No signal is sent to the watchdog or to any supervised process, and
        outstanding exit waits are left alone.
        """
        if self._state is not SupervisorState.RUNNING:
            return
        self._state = SupervisorState.SHUTTING_DOWN
        pid = self._watchdog_pid
        channel, self._channel = self._channel, None
        try:
            channel.close()
        finally:
            self._watchdog_pid = None
            self._state = SupervisorState.NOT_RUNNING
        log.info(f"Supervisor stopped; command channel to watchdog {pid} closed.")

    def wait_watchdog_exit(self, timeout: Optional[float] = None) -> Optional[int]:
        """
        Blocks until the most recently started watchdog has exited and been reaped.

        :param timeout: Seconds to wait, or None to wait indefinitely.
        :return: The watchdog's exit code, or None if it is still running or was reaped elsewhere.
        """
        reaper = self._watchdog_reaper
        if reaper is None:
            return None
        reaper.join(timeout)
        return None if reaper.is_alive() else reaper.exit_code

    def close(self) -> None:
        """Stops the supervisor and drops every registered launch spec and pending pid."""
        self.stop()
        self.registry.clear()

    def send_command(self, mode: Mode, pid: int) -> None:
        """Writes one command to the watchdog. Failures are logged, never raised."""
        channel = self._channel
        if channel is None:
            log.debug(f"Supervisor not running; dropping '{mode.value} {pid}'.")
            return
        try:
            channel.send_command(mode, pid)
        except ChannelError as e:
            log.error(f"Could not send '{mode.value} {pid}' to watchdog: {e}")

    def track_wait(self, task: "asyncio.Task[None]") -> None:
        """Holds a reference to an exit wait until it finishes."""
        self._exit_waits.add(task)
        task.add_done_callback(self._exit_waits.discard)

    @property
    def pending_exit_waits(self) -> int:
        return len(self._exit_waits)

    async def wait_for_exits(self) -> None:
        """Waits until every process launched from a spec has exited and been reported."""
        while self._exit_waits:
            await asyncio.gather(*list(self._exit_waits), return_exceptions=True)
