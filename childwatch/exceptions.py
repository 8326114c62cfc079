"""
Exception types raised by childwatch.

Structural failures (starting the watchdog twice, pipe or fork errors) are
raised to the caller. Per-process failures are logged where they happen and
never leave the supervisor.
"""


class SupervisorError(Exception):
    """Base class for all childwatch errors."""


class AlreadyRunningError(SupervisorError):
    """Raised when `start()` is called on a supervisor that is already running."""


class WatchdogStartError(SupervisorError):
    """Raised when the command pipe or the watchdog process could not be created."""


class InvalidIdentifierError(SupervisorError, ValueError):
    """Raised for a process identifier that can never be supervised (zero or negative)."""


class ChannelError(SupervisorError):
    """Raised when a command could not be written to the watchdog channel."""


class ProtocolError(SupervisorError):
    """Raised by the watchdog for a line that does not follow the command protocol."""
