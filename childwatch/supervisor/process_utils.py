import os
import psutil
import logging
import setproctitle
from typing import Any, Iterable, Optional

log = logging.getLogger(__name__)


#* --- Process Signalling ---
def terminate_pid(pid: int) -> bool:
    """
    Sends SIGTERM to a single process. There is no escalation and no wait.

    :param pid: The process identifier to signal.
    :return: True if the signal was delivered, False if the process could not be signalled.
    """
    try:
        psutil.Process(pid).terminate()
        return True
    except psutil.NoSuchProcess:
        log.warning(f"Process {pid} no longer exists, skipping termination.")
    except psutil.AccessDenied:
        log.error(f"Permission denied while terminating process {pid}.")
    except (psutil.Error, ValueError, OverflowError) as e:
        log.error(f"Failed to terminate process {pid}: {e}")
    return False


#* --- Identifiers ---
def get_identifier(handle: Any) -> str:
    """
    Returns the runtime-assigned identifier of a process handle as a string.

    Works for `subprocess.Popen`, `asyncio.subprocess.Process` and
    `psutil.Process`; anything without a usable `pid` yields an empty string.
    """
    pid = getattr(handle, "pid", None)
    return "" if pid is None else str(pid)

def parse_identifier(identifier: str) -> Optional[int]:
    """Parses an unsigned decimal identifier string, returning None if it is not one."""
    identifier = identifier.strip()
    if not identifier.isascii() or not identifier.isdigit():
        return None
    return int(identifier)


#* --- Watchdog Process Setup ---
def set_process_title(title: str) -> None:
    """Renames the current process as shown by `ps` and `top`."""
    setproctitle.setproctitle(title)
    log.debug(f"Process title set to '{title}'")

def close_inherited_fds(keep: Iterable[int]) -> None:
    """
    Closes every descriptor above stdio except those in `keep`.

    Used by the forked watchdog so it does not hold other pipes of the
    application open after the application is gone.
    """
    keep_sorted = sorted(fd for fd in set(keep) if fd > 2)
    low = 3
    for fd in keep_sorted:
        os.closerange(low, fd)
        low = fd + 1
    os.closerange(low, _max_fd())

def _max_fd() -> int:
    try:
        max_fd = os.sysconf("SC_OPEN_MAX")
    except (ValueError, OSError):
        max_fd = 256
    return max_fd if max_fd > 0 else 256
