"""Signal management for the command line runner.

Turns OS signals into operations on the supervised run:
- SIGINT: cancel the supervised run (mode cancel) or request shutdown
  (mode exit, the target task is not touched here)
- SIGTERM: cancel the supervised run and request shutdown

Supported configuration:
- PSV_SIGNAL_MODE: cancel | exit
- PSV_SIGNAL_DOUBLE_TAP_WINDOW: double tap window in seconds
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
import time
from typing import Optional

from .config import SignalMode, get_config

__all__ = ["SignalManager", "SignalMode"]

logger = logging.getLogger(__name__)


class SignalManager:
    """Signal manager of a supervised run.

    Example:
        ```python
        async def main():
            task = asyncio.create_task(run(["sleep", "60"]))
            signal_manager = SignalManager(task)
            await signal_manager.start()
            try:
                await task
            finally:
                await signal_manager.stop()
        ```

    Attributes:
        target: The task to cancel on SIGINT/SIGTERM
        signal_mode: SIGINT handling mode
        double_tap_window: Double tap window in seconds
    """

    def __init__(
        self,
        target: Optional[asyncio.Task] = None,
        signal_mode: Optional[SignalMode] = None,
        double_tap_window: Optional[float] = None,
    ) -> None:
        """Create a signal manager.

        Args:
            target: The task to cancel (may be set later)
            signal_mode: SIGINT handling mode (default: from configuration)
            double_tap_window: Double tap window (default: from configuration)
        """
        self.target = target

        config = get_config()
        self.signal_mode = signal_mode if signal_mode is not None else config.signal_mode
        self.double_tap_window = (
            double_tap_window if double_tap_window is not None else config.signal_double_tap_window
        )

        self._last_sigint_time: float = 0.0
        self._shutdown_requested: bool = False
        self._cancel_requested: bool = False
        self._force_exit: bool = False
        self._shutdown_event: Optional[asyncio.Event] = None
        self._original_sigint_handler: Optional[signal.Handlers] = None
        self._running: bool = False
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    @property
    def is_shutdown_requested(self) -> bool:
        return self._shutdown_requested

    @property
    def is_cancel_requested(self) -> bool:
        """Whether a signal cancelled the target."""
        return self._cancel_requested

    @property
    def is_force_exit(self) -> bool:
        """Whether a double SIGINT requested a forced exit."""
        return self._force_exit

    async def start(self) -> None:
        """Install the SIGINT and SIGTERM handlers.

        Must be called from a running event loop.
        """
        if self._running:
            logger.warning("SignalManager already running")
            return

        self._loop = asyncio.get_running_loop()
        self._shutdown_event = asyncio.Event()
        self._running = True

        if sys.platform != "win32":
            self._loop.add_signal_handler(signal.SIGINT, self._handle_sigint)
            self._loop.add_signal_handler(signal.SIGTERM, self._handle_sigterm)
            logger.debug(
                f"Signal handlers installed (mode={self.signal_mode.value}, "
                f"double_tap_window={self.double_tap_window}s)"
            )
        else:
            # Windows: the loop has no add_signal_handler
            self._original_sigint_handler = signal.signal(
                signal.SIGINT,
                lambda sig, frame: self._loop.call_soon_threadsafe(self._handle_sigint),
            )
            logger.debug(
                f"SIGINT handler installed on Windows (mode={self.signal_mode.value})"
            )

    async def stop(self) -> None:
        """Restore the original signal handlers."""
        if not self._running:
            return

        self._running = False

        if sys.platform != "win32" and self._loop:
            try:
                self._loop.remove_signal_handler(signal.SIGINT)
                self._loop.remove_signal_handler(signal.SIGTERM)
            except Exception as e:
                logger.debug(f"Error removing signal handlers: {e}")
        elif sys.platform == "win32" and self._original_sigint_handler is not None:
            try:
                signal.signal(signal.SIGINT, self._original_sigint_handler)
            except Exception as e:
                logger.debug(f"Error restoring SIGINT handler: {e}")

        logger.debug("Signal handlers removed")

    async def wait_for_shutdown(self) -> None:
        """Return once shutdown was requested."""
        if self._shutdown_event:
            await self._shutdown_event.wait()

    def _cancel_target(self) -> bool:
        if self.target is None or self.target.done():
            return False
        self.target.cancel()
        self._cancel_requested = True
        return True

    def _handle_sigint(self) -> None:
        """Handle SIGINT.

        - a second SIGINT inside the double tap window forces exit
        - mode EXIT: request shutdown, leaving the target to whoever waits
          in wait_for_shutdown()
        - mode CANCEL: cancel the target, or request shutdown if there is none
        """
        current_time = time.time()
        time_since_last = current_time - self._last_sigint_time
        self._last_sigint_time = current_time

        if time_since_last < self.double_tap_window and self._shutdown_requested:
            logger.warning("Double SIGINT detected, forcing shutdown")
            self._force_shutdown()
            return

        if self.signal_mode == SignalMode.EXIT:
            logger.info("SIGINT received (mode=exit), requesting shutdown")
            self._request_shutdown()

        elif self.signal_mode == SignalMode.CANCEL:
            if self._cancel_target():
                logger.info(
                    f"SIGINT received (mode=cancel), cancelled the supervised run. "
                    f"Press Ctrl+C again within {self.double_tap_window}s to force exit."
                )
                self._shutdown_requested = True
            else:
                logger.info("SIGINT received (mode=cancel), nothing running, requesting shutdown")
                self._request_shutdown()

    def _handle_sigterm(self) -> None:
        """Handle SIGTERM: cancel the target and request shutdown."""
        logger.info("SIGTERM received, initiating graceful shutdown")
        if self._cancel_target():
            logger.info("Cancelled the supervised run for shutdown")
        self._request_shutdown()

    def _request_shutdown(self) -> None:
        self._shutdown_requested = True
        if self._shutdown_event and self._loop:
            self._loop.call_soon_threadsafe(self._shutdown_event.set)

    def _force_shutdown(self) -> None:
        """Set the force exit flag and request shutdown.

        The actual exit happens in the command line runner after cleanup.
        """
        logger.warning("Forcing immediate shutdown")
        self._force_exit = True
        self._cancel_target()
        self._request_shutdown()
