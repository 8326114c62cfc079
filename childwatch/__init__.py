"""
childwatch: terminate an application's subprocesses when the application dies.

The public surface is the Supervisor facade and the LaunchSpec it spawns from.
"""

from .exceptions import (
    AlreadyRunningError,
    ChannelError,
    InvalidIdentifierError,
    ProtocolError,
    SupervisorError,
    WatchdogStartError,
)
from .supervisor import LaunchSpec, Supervisor, SupervisorState

__all__ = [
    "Supervisor",
    "SupervisorState",
    "LaunchSpec",
    "SupervisorError",
    "AlreadyRunningError",
    "WatchdogStartError",
    "InvalidIdentifierError",
    "ChannelError",
    "ProtocolError",
]
