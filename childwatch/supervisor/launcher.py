import asyncio
import logging
from typing import TYPE_CHECKING, Optional, Sequence

from childwatch.supervisor.protocol import Mode
from childwatch.supervisor.registry import LaunchSpec

if TYPE_CHECKING:
    from .supervisor import Supervisor

log = logging.getLogger(__name__)


async def launch(
    supervisor: "Supervisor",
    spec: LaunchSpec,
    args: Sequence[str]
) -> Optional[asyncio.subprocess.Process]:
    """
    Spawns a process from a launch spec and puts it under supervision.

    The new pid is sent to the watchdog as soon as it is known. A task on the
    running event loop then waits for the process to exit and sends the
    matching remove command, exactly once, whatever the exit status.

    :param supervisor: The running supervisor that owns the command channel.
    :param spec: The spawn configuration.
    :param args: The program and its arguments.
    :return: The spawned process, or None if it could not be started.
    """
    name = args[0]
    log.info(f"Starting process: {name}...")
    try:
        process = await asyncio.create_subprocess_exec(*args, **spec.spawn_kwargs())
    except (OSError, ValueError, TypeError) as e:
        log.error(f"Failed to start process '{name}': {e}")
        return None

    pid = process.pid
    supervisor.send_command(Mode.ADD, pid)
    log.info(f"{name} started successfully with PID: {pid}")

    # The task keeps the supervisor, and with it the channel, alive until the exit is reported.
    wait_task = asyncio.get_running_loop().create_task(
        _wait_for_exit(supervisor, process, name),
        name=f"childwatch-wait-{pid}"
    )
    supervisor.track_wait(wait_task)
    return process


async def _wait_for_exit(supervisor: "Supervisor", process: asyncio.subprocess.Process, name: str) -> None:
    pid = process.pid
    try:
        returncode = await process.wait()
    except asyncio.CancelledError:
        # The process may still be running, so it stays tracked.
        log.debug(f"Wait for {name} (PID {pid}) cancelled; leaving it tracked.")
        raise
    except Exception as e:
        log.warning(f"Failed waiting for {name} (PID {pid}): {e}")
    else:
        if returncode == 0:
            log.info(f"Process {name} (PID {pid}) exited cleanly.")
        else:
            log.warning(f"Process {name} (PID {pid}) exited with code {returncode}.")
    supervisor.send_command(Mode.REMOVE, pid)
