"""Process launcher with a background output reader and a managed handle.

subproc-supervisor runtime module v0.1.0

This module provides:
- Launching a child with stderr merged into stdout
- One output reader task per launch, forwarding decoded lines to a line sink
- ManagedProcess: non-blocking polling, waiting, exit code and destruction
- Graceful termination of the immediate child (SIGTERM -> timeout -> SIGKILL)

Key design points:
- Launch returns as soon as the child exists; it never waits for output
- A closed or broken stream ends the reader quietly, the child is gone
- destroy() does not wait for the OS; wait_for_exit() reaps and drains
- Reader tasks are neither pooled nor capped, callers throttle launches
"""

from __future__ import annotations

import asyncio
import logging
import sys
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

from ..config import DEFAULT_DRAIN_TIMEOUT, Config, get_config
from .errors import ProcessLaunchError, ProcessStillRunningError
from .sinks import LineSink, discard_line

__all__ = [
    "ManagedProcess",
    "ProcessSpec",
    "launch_background",
]

logger = logging.getLogger(__name__)

# Platform detection
IS_WINDOWS = sys.platform == "win32"

# Default timeouts
DEFAULT_TERM_TIMEOUT = 2.0  # seconds to wait after SIGTERM
DEFAULT_KILL_TIMEOUT = 1.0  # seconds to wait after SIGKILL


@dataclass(frozen=True)
class ProcessSpec:
    """Specification for a subprocess to run.

    Attributes:
        argv: Command line arguments (first element is the executable)
        cwd: Working directory for the process (None = inherit)
        env: Environment variables (None = inherit parent)
    """

    argv: tuple[str, ...]
    cwd: Path | None = None
    env: Mapping[str, str] | None = None

    def __post_init__(self) -> None:
        """Freeze argv into a tuple and reject an empty command."""
        if isinstance(self.argv, (str, bytes)):
            raise TypeError("argv must be a sequence of arguments, not a string")
        argv = tuple(str(arg) for arg in self.argv)
        if not argv:
            raise ValueError("argv must not be empty")
        object.__setattr__(self, "argv", argv)
        if isinstance(self.cwd, str):
            object.__setattr__(self, "cwd", Path(self.cwd))

    @classmethod
    def of(cls, command: ProcessSpec | Sequence[str]) -> ProcessSpec:
        """Return command as a ProcessSpec, wrapping a plain argument list."""
        if isinstance(command, ProcessSpec):
            return command
        return cls(argv=command)  # type: ignore[arg-type]


class ManagedProcess:
    """Handle of a launched child and its output reader.

    The handle is owned by whoever launched it. The only mutations are
    destroy() and the child exiting on its own, which is observed through
    is_done() and never pushed by a background watcher.

    Attributes:
        spec: The command that was launched
        process: The underlying asyncio subprocess
        reader_task: Task forwarding output lines to the line sink
        start_time: Wall clock launch time
        drain_timeout: Seconds the reader may keep draining after exit
    """

    def __init__(
        self,
        spec: ProcessSpec,
        process: asyncio.subprocess.Process,
        reader_task: asyncio.Task[int],
        *,
        drain_timeout: float = DEFAULT_DRAIN_TIMEOUT,
    ) -> None:
        self.spec = spec
        self.process = process
        self.reader_task = reader_task
        self.drain_timeout = drain_timeout
        self.start_time = datetime.now()
        self._started = time.monotonic()
        self._destroyed = False

    @property
    def argv(self) -> tuple[str, ...]:
        return self.spec.argv

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def returncode(self) -> int | None:
        return self.process.returncode

    @property
    def destroyed(self) -> bool:
        """Whether destroy() was called. Never reverts to False."""
        return self._destroyed

    def is_done(self) -> bool:
        """Return True once the OS reports the child as terminated.

        Never blocks. Right after destroy() this may still be False until the
        event loop has reaped the child.
        """
        return self.process.returncode is not None

    def elapsed_ms(self) -> int:
        """Milliseconds since launch (monotonic clock)."""
        return int((time.monotonic() - self._started) * 1000)

    async def wait_for_exit(self) -> int:
        """Wait until the child exits on its own and return its exit code.

        There is no timeout here; use the blocking runner when one is needed.
        Output written before exit has been delivered to the line sink by the
        time this returns, unless the stream stays open past drain_timeout
        (e.g. a grandchild inherited it).
        """
        returncode = await self.process.wait()
        await self._drain_reader()
        return returncode

    def get_exit_code(self) -> int:
        """Return the exit code of a terminated child.

        A child killed by a signal reports the negative signal number.

        Raises:
            ProcessStillRunningError: If the child has not terminated yet
        """
        returncode = self.process.returncode
        if returncode is None:
            raise ProcessStillRunningError(f"{self} has not terminated yet")
        return returncode

    def destroy(self) -> None:
        """Cancel the reader and kill the child without waiting for the OS.

        Safe to call more than once and on a child that already exited.
        """
        logger.debug(f"Destroying running process {self}")
        if not self.reader_task.done():
            self.reader_task.cancel()
        if self.process.returncode is None:
            try:
                self.process.kill()
            except ProcessLookupError:
                logger.debug(f"Subprocess already exited pid={self.pid}")
        self._destroyed = True
        logger.info(f"{self} destroyed.")

    async def terminate(
        self,
        term_timeout: float = DEFAULT_TERM_TIMEOUT,
        kill_timeout: float = DEFAULT_KILL_TIMEOUT,
    ) -> int | None:
        """Terminate the child gracefully, then forcefully if needed.

        Termination strategy on POSIX:
        1. Send SIGTERM
        2. Wait up to term_timeout for graceful exit
        3. If still running, destroy() (SIGKILL)
        4. Wait up to kill_timeout for forced exit

        On Windows both signals map to TerminateProcess, so the child is
        destroyed right away and only step 4 applies.

        Only the immediate child is signalled.

        Args:
            term_timeout: Seconds to wait after SIGTERM
            kill_timeout: Seconds to wait after SIGKILL

        Returns:
            The exit code, or None if the child outlived both waits
        """
        pid = self.pid

        if self.process.returncode is None:
            if IS_WINDOWS:
                self.destroy()
            else:
                await self._posix_terminate(term_timeout)

            if self.process.returncode is None:
                try:
                    await asyncio.wait_for(self.process.wait(), timeout=kill_timeout)
                except asyncio.TimeoutError:
                    logger.warning(f"Subprocess did not exit after kill pid={pid}")
                    return None

        await self._drain_reader()
        return self.process.returncode

    async def _posix_terminate(self, term_timeout: float) -> None:
        """SIGTERM, then destroy() if the child outlives term_timeout."""
        pid = self.pid
        logger.debug(f"Terminating subprocess pid={pid}")
        try:
            self.process.terminate()
        except ProcessLookupError:
            logger.debug(f"Subprocess already exited pid={pid}")

        try:
            await asyncio.wait_for(self.process.wait(), timeout=term_timeout)
            logger.debug(
                f"Subprocess terminated gracefully pid={pid} "
                f"returncode={self.process.returncode}"
            )
        except asyncio.TimeoutError:
            logger.debug(f"Force killing subprocess pid={pid}")
            self.destroy()

    async def _drain_reader(self) -> None:
        """Give the reader up to drain_timeout to hit end of stream."""
        if self.reader_task.done():
            return
        done, _ = await asyncio.wait({self.reader_task}, timeout=self.drain_timeout)
        if not done:
            logger.debug(
                f"Output still open {self.drain_timeout}s after exit, "
                f"cancelling reader pid={self.pid}"
            )
            self.reader_task.cancel()

    def __repr__(self) -> str:
        return (
            f"ManagedProcess[argv={list(self.argv)}, "
            f"start_time={self.start_time.isoformat(timespec='milliseconds')}, "
            f"pid={self.pid}]"
        )


async def launch_background(
    command: ProcessSpec | Sequence[str],
    line_sink: LineSink | None = None,
    *,
    config: Config | None = None,
) -> ManagedProcess:
    """Start command and return right away with its managed handle.

    This method:
    1. Starts the child with stderr merged into stdout and stdin on DEVNULL
    2. Starts one output reader task bound to the merged stream and line_sink
    3. Returns without waiting for output or exit

    Args:
        command: Process specification or plain argument list
        line_sink: Called once per output line (None = discard output)
        config: Runtime configuration (default: global configuration)

    Returns:
        The ManagedProcess handle

    Raises:
        ValueError: If the command is empty
        ProcessLaunchError: If the OS could not start the process
    """
    spec = ProcessSpec.of(command)
    config = config or get_config()
    sink = line_sink if line_sink is not None else discard_line

    kwargs = _build_subprocess_kwargs(spec)

    try:
        # stdin=None would hand our own stdin to the child
        process = await asyncio.create_subprocess_exec(
            *spec.argv,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
            limit=config.stream_limit,
            **kwargs,
        )
    except OSError as e:
        raise ProcessLaunchError(spec.argv, str(e)) from e

    assert process.stdout is not None
    reader_task = asyncio.create_task(
        _read_lines(process.stdout, sink, config.encoding, process.pid),
        name=f"output-reader-{process.pid}",
    )

    managed = ManagedProcess(
        spec,
        process,
        reader_task,
        drain_timeout=config.drain_timeout,
    )
    logger.debug(f"Command started: {managed}")
    return managed


def _build_subprocess_kwargs(spec: ProcessSpec) -> dict[str, Any]:
    """Build subprocess kwargs for the optional spec fields.

    Args:
        spec: Process specification

    Returns:
        Dict of kwargs for asyncio.create_subprocess_exec
    """
    kwargs: dict[str, Any] = {}

    if spec.cwd is not None:
        kwargs["cwd"] = spec.cwd

    if spec.env is not None:
        kwargs["env"] = dict(spec.env)

    return kwargs


def _decode_line(raw: bytes, encoding: str) -> str:
    """Decode one raw line, stripping its \\n or \\r\\n terminator."""
    if raw.endswith(b"\n"):
        raw = raw[:-1]
    if raw.endswith(b"\r"):
        raw = raw[:-1]
    return raw.decode(encoding, errors="replace")


async def _read_lines(
    stream: asyncio.StreamReader,
    line_sink: LineSink,
    encoding: str,
    pid: int,
) -> int:
    """Forward each line of stream to line_sink until end of stream.

    The sink is called before the next line is read. A line longer than the
    stream limit is dropped whole with a warning: everything up to its line
    terminator is discarded, however many reads it arrives in. An exception
    raised by the sink is logged and the stream keeps draining, so the child
    never blocks on a full pipe.

    Args:
        stream: Merged stdout/stderr of the child
        line_sink: Receiver of each decoded line
        encoding: Output encoding
        pid: Child pid, for log messages

    Returns:
        Number of lines delivered
    """
    count = 0
    skipping = False
    while True:
        at_eof = False
        try:
            raw = await stream.readuntil(b"\n")
        except asyncio.IncompleteReadError as e:
            # End of stream, the last line may lack its terminator
            raw = e.partial
            at_eof = True
        except asyncio.LimitOverrunError as e:
            if not skipping:
                logger.warning(f"Dropped over-long output line pid={pid}: {e}")
                skipping = True
            try:
                await stream.readexactly(e.consumed)
            except (asyncio.IncompleteReadError, OSError) as read_error:
                logger.debug(f"Output stream ended while skipping pid={pid}: {read_error}")
                break
            continue
        except OSError as e:
            # A broken stream means the child is gone
            logger.debug(f"Output stream failed pid={pid}: {e}")
            break

        if skipping:
            # Tail of the over-long line
            skipping = False
        elif raw:
            try:
                line_sink(_decode_line(raw, encoding))
            except Exception as e:
                logger.warning(f"Line sink failed pid={pid}: {e}")
            count += 1

        if at_eof:
            break

    logger.debug(f"Output reader finished pid={pid} lines={count}")
    return count
