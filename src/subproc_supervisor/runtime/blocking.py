"""Run a command to completion, optionally under a timeout.

The runners here await a ManagedProcess until it exits on its own or its
timeout budget is used up, in which case the child is destroyed and
ProcessTimeoutError is raised. Timeouts and check intervals are milliseconds;
a timeout <= 0 means unbounded.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

import anyio

from ..config import Config, get_config
from .errors import ProcessTimeoutError
from .process_runner import ManagedProcess, ProcessSpec, launch_background
from .sinks import LineCollector, LineSink, discard_line

__all__ = [
    "NO_TIMEOUT",
    "RunResult",
    "run",
    "run_for_exit_code",
    "run_collect",
    "run_capture",
    "run_sync",
    "run_collect_sync",
    "run_capture_sync",
]

logger = logging.getLogger(__name__)

NO_TIMEOUT = -1

Command = ProcessSpec | Sequence[str]


@dataclass
class RunResult:
    """Exit code and collected output of a finished command.

    Attributes:
        exit_code: Exit code of the child
        lines: Merged stdout/stderr lines, in order
    """

    exit_code: int
    lines: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.exit_code == 0


async def run(
    command: Command,
    line_sink: LineSink | None = None,
    *,
    timeout_ms: int = 0,
    check_interval_ms: int | None = None,
    config: Config | None = None,
) -> int:
    """Launch command and wait for it, destroying it past its timeout.

    Waiting uses the exit notification of the child in slices of
    check_interval_ms, so a natural exit is seen at once and the deadline is
    noticed no later than timeout + check interval. A non-positive check
    interval waits out the whole remaining budget in one slice.

    If the awaiting task is cancelled the child is destroyed and the
    cancellation propagates.

    Args:
        command: Process specification or plain argument list
        line_sink: Called once per output line (None = discard output)
        timeout_ms: Timeout in milliseconds, <= 0 for unbounded
        check_interval_ms: Wait slice in milliseconds (default: a fraction
            of timeout_ms, see Config.check_ratio)
        config: Runtime configuration (default: global configuration)

    Returns:
        Exit code of the child

    Raises:
        ProcessLaunchError: If the OS could not start the process
        ProcessTimeoutError: If the timeout was reached
    """
    config = config or get_config()
    if check_interval_ms is None:
        check_interval_ms = config.check_interval_for(timeout_ms)

    process = await launch_background(command, line_sink, config=config)

    try:
        if timeout_ms <= 0:
            exit_code = await process.wait_for_exit()
        else:
            exit_code = await _wait_with_timeout(
                process, timeout_ms, check_interval_ms, config
            )
    except asyncio.CancelledError:
        logger.warning(f"Wait interrupted, destroying {process}")
        process.destroy()
        raise

    logger.info(
        f"Process completed in {process.elapsed_ms()} ms. ExitCode: {exit_code}"
    )
    return exit_code


async def _wait_with_timeout(
    process: ManagedProcess,
    timeout_ms: int,
    check_interval_ms: int,
    config: Config,
) -> int:
    """Wait for process within timeout_ms, destroying it when exceeded."""
    logger.debug(
        f"Monitoring process with timeout period of {timeout_ms} ms "
        f"with check interval: {check_interval_ms} ms."
    )

    while not process.is_done():
        remaining_ms = timeout_ms - process.elapsed_ms()
        if remaining_ms <= 0:
            break
        slice_ms = min(check_interval_ms, remaining_ms) if check_interval_ms > 0 else remaining_ms
        with anyio.move_on_after(slice_ms / 1000):
            await process.process.wait()

    if process.is_done():
        return await process.wait_for_exit()

    elapsed_ms = process.elapsed_ms()
    logger.debug(f"Process has timed out. It ran for {elapsed_ms}/{timeout_ms} ms.")

    # Still running, force termination
    process.destroy()
    await _reap(process, config.reap_timeout)

    raise ProcessTimeoutError(elapsed_ms, timeout_ms, process)


async def _reap(process: ManagedProcess, reap_timeout: float) -> None:
    """Wait briefly for a destroyed child so it does not outlive the runner."""
    with anyio.move_on_after(reap_timeout) as scope:
        await process.process.wait()
    if scope.cancelled_caught:
        logger.warning(f"{process} not reaped within {reap_timeout}s of destroy")


async def run_for_exit_code(
    command: Command,
    *,
    timeout_ms: int = 0,
    check_interval_ms: int | None = None,
    config: Config | None = None,
) -> int:
    """Run command ignoring its output and return the exit code."""
    return await run(
        command,
        discard_line,
        timeout_ms=timeout_ms,
        check_interval_ms=check_interval_ms,
        config=config,
    )


async def run_collect(
    command: Command,
    *,
    timeout_ms: int = 0,
    check_interval_ms: int | None = None,
    config: Config | None = None,
) -> list[str]:
    """Run command and return its output lines.

    The exit code is not reported; use run_capture() when it matters.
    """
    collector = LineCollector()
    await run(
        command,
        collector,
        timeout_ms=timeout_ms,
        check_interval_ms=check_interval_ms,
        config=config,
    )
    logger.debug(f"Process completed with output lines size {len(collector)}.")
    return collector.lines


async def run_capture(
    command: Command,
    *,
    timeout_ms: int = 0,
    check_interval_ms: int | None = None,
    config: Config | None = None,
) -> RunResult:
    """Run command and return both its exit code and output lines."""
    collector = LineCollector()
    exit_code = await run(
        command,
        collector,
        timeout_ms=timeout_ms,
        check_interval_ms=check_interval_ms,
        config=config,
    )
    return RunResult(exit_code=exit_code, lines=collector.lines)


# Synchronous wrappers for callers without an event loop


def run_sync(
    command: Command,
    line_sink: LineSink | None = None,
    *,
    timeout_ms: int = 0,
    check_interval_ms: int | None = None,
    config: Config | None = None,
) -> int:
    """Blocking variant of run(); must not be called from a running loop."""
    return anyio.run(
        functools.partial(
            run,
            command,
            line_sink,
            timeout_ms=timeout_ms,
            check_interval_ms=check_interval_ms,
            config=config,
        )
    )


def run_collect_sync(
    command: Command,
    *,
    timeout_ms: int = 0,
    check_interval_ms: int | None = None,
    config: Config | None = None,
) -> list[str]:
    """Blocking variant of run_collect()."""
    return anyio.run(
        functools.partial(
            run_collect,
            command,
            timeout_ms=timeout_ms,
            check_interval_ms=check_interval_ms,
            config=config,
        )
    )


def run_capture_sync(
    command: Command,
    *,
    timeout_ms: int = 0,
    check_interval_ms: int | None = None,
    config: Config | None = None,
) -> RunResult:
    """Blocking variant of run_capture()."""
    return anyio.run(
        functools.partial(
            run_capture,
            command,
            timeout_ms=timeout_ms,
            check_interval_ms=check_interval_ms,
            config=config,
        )
    )
