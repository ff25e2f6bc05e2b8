"""Command line entry point.

Usage:
    subproc-supervisor run [--timeout-ms N] [--check-interval-ms N] -- CMD [ARGS...]
    subproc-supervisor relaunch [--opt OPT]... [--timeout-ms N] -- [-m MODULE | -c CODE] [ARGS...]

Child output is echoed to stdout as it arrives. The exit status is the
child's exit code, 124 on timeout, 127 when the command could not be
started and 130 when a signal cancelled the run.
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import sys
from collections.abc import Sequence
from typing import TextIO

from .config import get_config
from .runtime import (
    LineFanout,
    LineSink,
    ProcessLaunchError,
    ProcessTimeoutError,
    relaunch,
    run,
)
from .signal_manager import SignalManager

__all__ = ["run_cli", "main", "build_parser"]

logger = logging.getLogger(__name__)

EXIT_TIMEOUT = 124
EXIT_LAUNCH_FAILED = 127
EXIT_CANCELLED = 130  # 128 + SIGINT(2)


class _StreamEcho:
    """Line sink writing each line to a text stream."""

    def __init__(self, stream: TextIO) -> None:
        self.stream = stream

    def __call__(self, line: str) -> None:
        self.stream.write(line + "\n")
        self.stream.flush()


def build_parser() -> argparse.ArgumentParser:
    config = get_config()

    parser = argparse.ArgumentParser(
        prog="subproc-supervisor",
        description="Run a command under supervision, with an optional timeout.",
    )
    subparsers = parser.add_subparsers(dest="mode", required=True)

    def add_common(sub: argparse.ArgumentParser) -> None:
        sub.add_argument(
            "--timeout-ms",
            type=int,
            default=config.default_timeout_ms,
            help="Timeout in milliseconds, <= 0 for none (default: PSV_TIMEOUT_MS or 0)",
        )
        sub.add_argument(
            "--check-interval-ms",
            type=int,
            default=None,
            help="Check interval in milliseconds (default: PSV_CHECK_RATIO of the timeout)",
        )
        sub.add_argument(
            "--tee",
            metavar="FILE",
            default=None,
            help="Also append output lines to FILE",
        )

    run_parser = subparsers.add_parser("run", help="Run an external command")
    add_common(run_parser)
    run_parser.add_argument("command", nargs=argparse.REMAINDER, help="Command and arguments")

    relaunch_parser = subparsers.add_parser(
        "relaunch", help="Run a child of this interpreter with the same module path"
    )
    add_common(relaunch_parser)
    relaunch_parser.add_argument(
        "--opt",
        action="append",
        dest="opts",
        default=None,
        help="Interpreter option, repeatable (default: PSV_INTERPRETER_OPTS)",
    )
    relaunch_parser.add_argument("command", nargs=argparse.REMAINDER, help="Interpreter arguments")

    return parser


def _strip_separator(command: Sequence[str]) -> list[str]:
    command = list(command)
    if command and command[0] == "--":
        command = command[1:]
    return command


async def run_cli(args: argparse.Namespace, line_sink: LineSink) -> int:
    """Run the supervised command described by args and map the outcome.

    Uses two concurrent tasks:
    - run_task: the supervised run
    - shutdown_watcher: waits for a shutdown request and cancels run_task
    """
    command = _strip_separator(args.command)

    if args.mode == "relaunch":
        coro = relaunch(
            command,
            line_sink,
            interpreter_opts=args.opts,
            timeout_ms=args.timeout_ms,
            check_interval_ms=args.check_interval_ms,
        )
    else:
        coro = run(
            command,
            line_sink,
            timeout_ms=args.timeout_ms,
            check_interval_ms=args.check_interval_ms,
        )

    run_task = asyncio.create_task(coro, name="supervised-run")
    signal_manager = SignalManager(run_task)
    shutdown_watcher: asyncio.Task | None = None

    async def _watch_shutdown() -> None:
        await signal_manager.wait_for_shutdown()
        # Cancelling run() destroys the child, no mode leaves it running
        if not run_task.done():
            logger.info("Shutdown signal received, cancelling supervised run...")
            run_task.cancel()

    try:
        await signal_manager.start()
        shutdown_watcher = asyncio.create_task(_watch_shutdown(), name="shutdown-watcher")

        try:
            return await run_task
        except asyncio.CancelledError:
            if signal_manager.is_shutdown_requested or signal_manager.is_cancel_requested:
                logger.info("Supervised run cancelled by signal")
                return EXIT_CANCELLED
            raise

    except ProcessTimeoutError as e:
        logger.error(str(e))
        return EXIT_TIMEOUT

    except ProcessLaunchError as e:
        logger.error(str(e))
        return EXIT_LAUNCH_FAILED

    finally:
        if shutdown_watcher and not shutdown_watcher.done():
            shutdown_watcher.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await shutdown_watcher

        await signal_manager.stop()

        if signal_manager.is_force_exit:
            logger.warning("Force exit requested, terminating with exit code 130")
            sys.exit(EXIT_CANCELLED)


def _configure_logging() -> None:
    config = get_config()

    log_handlers: list[logging.Handler] = []

    if config.log_debug and config.log_file:
        # PSV_LOG_DEBUG: log to a temp file
        file_handler = logging.FileHandler(config.log_file, encoding="utf-8")
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
        )
        log_handlers.append(file_handler)
        log_level = logging.DEBUG
    else:
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(
            logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
        )
        log_handlers.append(stderr_handler)
        log_level = logging.INFO

    # Root logger (third party) stays at WARNING
    logging.basicConfig(
        level=logging.WARNING,
        handlers=log_handlers,
    )
    logging.getLogger("subproc_supervisor").setLevel(log_level)


def main(argv: Sequence[str] | None = None) -> None:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not _strip_separator(args.command):
        parser.error("a command is required")

    _configure_logging()
    logger.debug(f"Starting with {get_config()}")

    echo = _StreamEcho(sys.stdout)
    with contextlib.ExitStack() as stack:
        if args.tee:
            tee_stream = stack.enter_context(open(args.tee, "a", encoding="utf-8"))
            sink: LineSink = LineFanout([echo, _StreamEcho(tee_stream)])
        else:
            sink = echo

        exit_code = asyncio.run(run_cli(args, sink))

    # Killed by a signal: report it the way a shell does
    if exit_code < 0:
        exit_code = 128 - exit_code
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
