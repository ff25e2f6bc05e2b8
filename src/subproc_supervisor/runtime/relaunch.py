"""Relaunch the running Python interpreter as a supervised child.

The child command is composed of:
- the interpreter running this process (sys.executable)
- optional interpreter options, right after the executable (e.g. -X dev, -u)
- the caller's trailing arguments (-m pkg.mod ..., -c code, script.py ...)

The module path of this process (sys.path) is handed to the child through
PYTHONPATH, in front of any value already set, so the child resolves the
same packages the parent does. Options such as -I or -E that make the
interpreter ignore PYTHONPATH defeat this.
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import Mapping, Sequence
from pathlib import Path

from ..config import Config, get_config
from .blocking import run
from .errors import ProcessLaunchError
from .process_runner import ProcessSpec
from .sinks import LineCollector, LineSink

__all__ = [
    "current_interpreter",
    "current_module_path",
    "build_relaunch_spec",
    "relaunch",
    "relaunch_collect",
]

logger = logging.getLogger(__name__)


def current_interpreter() -> str:
    """Return the path of the running interpreter.

    Raises:
        ProcessLaunchError: If the interpreter path cannot be determined
            (embedded interpreters may leave sys.executable empty)
    """
    if not sys.executable:
        raise ProcessLaunchError(["<python>"], "sys.executable is not available")
    return sys.executable


def current_module_path() -> list[str]:
    """Return sys.path with the empty entry resolved to the working directory."""
    entries: list[str] = []
    for entry in sys.path:
        resolved = entry or os.getcwd()
        if resolved not in entries:
            entries.append(resolved)
    return entries


def _merge_pythonpath(base: Mapping[str, str]) -> dict[str, str]:
    env = dict(base)
    merged = current_module_path()
    for part in env.get("PYTHONPATH", "").split(os.pathsep):
        if part.strip() and part not in merged:
            merged.append(part)
    env["PYTHONPATH"] = os.pathsep.join(merged)
    return env


def build_relaunch_spec(
    args: Sequence[str],
    interpreter_opts: Sequence[str] | None = None,
    *,
    cwd: Path | str | None = None,
    env: Mapping[str, str] | None = None,
) -> ProcessSpec:
    """Compose the command relaunching this interpreter.

    Args:
        args: Trailing arguments (entry point and its arguments)
        interpreter_opts: Interpreter options placed after the executable
        cwd: Working directory of the child (None = inherit)
        env: Base environment (None = this process's environment)

    Returns:
        The ProcessSpec to run
    """
    argv = [current_interpreter()]
    if interpreter_opts:
        argv.extend(interpreter_opts)
    argv.extend(args)

    base_env = os.environ if env is None else env
    return ProcessSpec(
        argv=tuple(argv),
        cwd=Path(cwd) if cwd is not None else None,
        env=_merge_pythonpath(base_env),
    )


async def relaunch(
    args: Sequence[str],
    line_sink: LineSink | None = None,
    *,
    interpreter_opts: Sequence[str] | None = None,
    timeout_ms: int = 0,
    check_interval_ms: int | None = None,
    cwd: Path | str | None = None,
    config: Config | None = None,
) -> int:
    """Run a child instance of this interpreter and return its exit code.

    interpreter_opts defaults to Config.interpreter_opts. See run() for the
    timeout semantics.
    """
    config = config or get_config()
    if interpreter_opts is None:
        interpreter_opts = config.interpreter_opts

    spec = build_relaunch_spec(args, interpreter_opts, cwd=cwd)
    return await run(
        spec,
        line_sink,
        timeout_ms=timeout_ms,
        check_interval_ms=check_interval_ms,
        config=config,
    )


async def relaunch_collect(
    args: Sequence[str],
    *,
    interpreter_opts: Sequence[str] | None = None,
    timeout_ms: int = 0,
    check_interval_ms: int | None = None,
    cwd: Path | str | None = None,
    config: Config | None = None,
) -> list[str]:
    """Run a child instance of this interpreter and return its output lines."""
    collector = LineCollector()
    await relaunch(
        args,
        collector,
        interpreter_opts=interpreter_opts,
        timeout_ms=timeout_ms,
        check_interval_ms=check_interval_ms,
        cwd=cwd,
        config=config,
    )
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug(f"Python process completed with output lines size {len(collector)}.")
        for line in collector.lines:
            logger.debug(f"OUT> {line}")
    return collector.lines
