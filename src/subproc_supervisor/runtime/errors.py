"""Runtime exception classes.

subproc-supervisor runtime module v0.1.0
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .process_runner import ManagedProcess

__all__ = [
    "ProcessError",
    "ProcessLaunchError",
    "ProcessTimeoutError",
    "ProcessStillRunningError",
]


class ProcessError(Exception):
    """Base exception of the runtime module."""
    pass


class ProcessLaunchError(ProcessError):
    """The OS refused to start the process (bad path, permission denied).

    Attributes:
        argv: Command line that failed to start
    """

    def __init__(self, argv: Sequence[str], message: str) -> None:
        self.argv = tuple(argv)
        super().__init__(f"Failed to start {list(self.argv)}: {message}")


class ProcessTimeoutError(ProcessError, TimeoutError):
    """The process did not finish within its budget and was destroyed.

    Attributes:
        elapsed_ms: How long the process ran before it was destroyed
        timeout_ms: The configured timeout
        process: The destroyed handle, for post-mortem polling
    """

    def __init__(
        self,
        elapsed_ms: int,
        timeout_ms: int,
        process: ManagedProcess | None = None,
    ) -> None:
        self.elapsed_ms = elapsed_ms
        self.timeout_ms = timeout_ms
        self.process = process
        super().__init__(
            f"Process has timed out. It ran for {elapsed_ms}/{timeout_ms} ms."
        )


class ProcessStillRunningError(ProcessError):
    """Exit code requested before the process terminated."""
    pass
