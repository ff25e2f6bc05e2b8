"""Runtime module for supervised subprocess execution.

This module provides background launching with a line-by-line output
reader, timeout-aware blocking runners and relaunching of the running
interpreter.
"""

from __future__ import annotations

from .blocking import (
    NO_TIMEOUT,
    RunResult,
    run,
    run_capture,
    run_capture_sync,
    run_collect,
    run_collect_sync,
    run_for_exit_code,
    run_sync,
)
from .errors import (
    ProcessError,
    ProcessLaunchError,
    ProcessStillRunningError,
    ProcessTimeoutError,
)
from .process_runner import ManagedProcess, ProcessSpec, launch_background
from .relaunch import build_relaunch_spec, relaunch, relaunch_collect
from .sinks import LineCollector, LineFanout, LineSink, discard_line

__all__ = [
    "NO_TIMEOUT",
    "LineCollector",
    "LineFanout",
    "LineSink",
    "ManagedProcess",
    "ProcessError",
    "ProcessLaunchError",
    "ProcessSpec",
    "ProcessStillRunningError",
    "ProcessTimeoutError",
    "RunResult",
    "build_relaunch_spec",
    "discard_line",
    "launch_background",
    "relaunch",
    "relaunch_collect",
    "run",
    "run_capture",
    "run_capture_sync",
    "run_collect",
    "run_collect_sync",
    "run_for_exit_code",
    "run_sync",
]
