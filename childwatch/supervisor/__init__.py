"""
The Supervisor package.
Keeps the subprocesses of an application from outliving it.

This package contains the Supervisor facade and its helper modules, which
together fork the watchdog process, speak the command protocol over a pipe,
and launch and track supervised subprocesses.
"""
from .registry import LaunchSpec, Registry
from .supervisor import Supervisor, SupervisorState
from .watchdog import Watchdog, WatchdogState

__all__ = ['Supervisor', 'SupervisorState', 'LaunchSpec', 'Registry', 'Watchdog', 'WatchdogState']
