import os
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple, Union

log = logging.getLogger(__name__)

StrPath = Union[str, "os.PathLike[str]"]


@dataclass(eq=False)
class LaunchSpec:
    """
    A reusable spawn configuration.

    Specs are compared and hashed by identity, so registering the same spec
    object twice replaces its arguments rather than adding a second entry.
    """
    cwd: Optional[StrPath] = None
    env: Optional[Mapping[str, str]] = None
    stdin: Optional[int] = None
    stdout: Optional[int] = None
    stderr: Optional[int] = None
    start_new_session: bool = False
    extra: Dict[str, Any] = field(default_factory=dict)

    def spawn_kwargs(self) -> Dict[str, Any]:
        """Keyword arguments for `asyncio.create_subprocess_exec`."""
        kwargs: Dict[str, Any] = {
            "stdin": self.stdin,
            "stdout": self.stdout,
            "stderr": self.stderr,
            "start_new_session": self.start_new_session,
        }
        if self.cwd is not None:
            kwargs["cwd"] = os.fspath(self.cwd)
        if self.env is not None:
            kwargs["env"] = dict(self.env)
        kwargs.update(self.extra)
        return kwargs


def normalize_args(args: Sequence[StrPath]) -> Tuple[str, ...]:
    """Validates and copies an argument vector."""
    if isinstance(args, (str, bytes)):
        raise TypeError("args must be a sequence of arguments, not a single string")
    normalized = tuple(os.fspath(arg) for arg in args)
    if not normalized:
        raise ValueError("args must contain at least the program to run")
    return normalized


class Registry:
    """
    Holds everything registered with a supervisor before it hands tracking over
    to the watchdog: launch specs with their arguments, and process ids waiting
    for the watchdog to start.
    """

    def __init__(self) -> None:
        self._launch_specs: Dict[LaunchSpec, Tuple[str, ...]] = {}
        self._pending: List[int] = []

    def add_launch_spec(self, spec: LaunchSpec, args: Sequence[StrPath]) -> Tuple[str, ...]:
        if not isinstance(spec, LaunchSpec):
            raise TypeError(f"Expected a LaunchSpec, got {type(spec).__name__}")
        normalized = normalize_args(args)
        if spec in self._launch_specs:
            log.debug(f"Replacing arguments of registered launch spec {normalized[0]}")
        self._launch_specs[spec] = normalized
        return normalized

    def launch_specs(self) -> Iterator[Tuple[LaunchSpec, Tuple[str, ...]]]:
        return iter(list(self._launch_specs.items()))

    def add_pending(self, pid: int) -> None:
        self._pending.append(pid)

    @property
    def pending(self) -> Tuple[int, ...]:
        return tuple(self._pending)

    def take_pending(self) -> List[int]:
        """Returns the pending ids in registration order and empties the list."""
        pending, self._pending = self._pending, []
        return pending

    def clear(self) -> None:
        self._launch_specs.clear()
        self._pending.clear()

    def __len__(self) -> int:
        return len(self._launch_specs)
