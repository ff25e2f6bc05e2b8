"""subproc-supervisor - supervised subprocess execution.

Environment variables:
    PSV_TIMEOUT_MS: default timeout of the command line runner
    PSV_CHECK_RATIO: check interval as a fraction of the timeout
    PSV_LOG_DEBUG: debug logging to a temp file

Usage:
    subproc-supervisor run --timeout-ms 5000 -- make test
"""

__version__ = "0.1.0"

from .app import main
from .runtime import (
    NO_TIMEOUT,
    LineCollector,
    ManagedProcess,
    ProcessError,
    ProcessLaunchError,
    ProcessSpec,
    ProcessTimeoutError,
    RunResult,
    launch_background,
    relaunch,
    relaunch_collect,
    run,
    run_capture,
    run_collect,
    run_for_exit_code,
)

__all__ = [
    "__version__",
    "main",
    "NO_TIMEOUT",
    "LineCollector",
    "ManagedProcess",
    "ProcessError",
    "ProcessLaunchError",
    "ProcessSpec",
    "ProcessTimeoutError",
    "RunResult",
    "launch_background",
    "relaunch",
    "relaunch_collect",
    "run",
    "run_capture",
    "run_collect",
    "run_for_exit_code",
]
