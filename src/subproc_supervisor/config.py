"""PSV environment variable configuration.

Environment variables:
    PSV_TIMEOUT_MS: default timeout of the command line runner in milliseconds
        - <= 0 / unset = unbounded (default)

    PSV_CHECK_RATIO: check interval as a fraction of the timeout
        - default 0.10, clamped to 0.01-1.0

    PSV_DRAIN_TIMEOUT: seconds the output reader may keep draining after exit
        - default 2.0

    PSV_REAP_TIMEOUT: seconds to wait for a destroyed child to be reaped
        - default 1.0

    PSV_ENCODING: encoding used to decode child output
        - default utf-8, undecodable bytes are replaced

    PSV_STREAM_LIMIT: maximum bytes buffered for a single output line
        - default 1048576

    PSV_INTERPRETER_OPTS: default interpreter options for self-relaunch
        - shell-style string, e.g. "-X dev -u"

    PSV_LOG_DEBUG: debug logging
        - true/1/yes = on (log to a temp file)
        - false/0/no = off (default, log to stderr)

    PSV_SIGNAL_MODE: SIGINT/SIGTERM handling of the command line runner
        - cancel = SIGINT cancels the supervised run, the child is destroyed (default)
        - exit = SIGINT requests shutdown; the runner stops waiting and destroys
          the child on the way out (nothing is left running)

    PSV_SIGNAL_DOUBLE_TAP_WINDOW: double tap window in seconds
        - default 1.0
        - a second SIGINT inside this window forces exit
"""

from __future__ import annotations

import os
import shlex
import tempfile
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path

__all__ = ["Config", "load_config", "get_config", "reload_config", "SignalMode"]

DEFAULT_CHECK_RATIO = 0.10
DEFAULT_DRAIN_TIMEOUT = 2.0
DEFAULT_REAP_TIMEOUT = 1.0
DEFAULT_ENCODING = "utf-8"
DEFAULT_STREAM_LIMIT = 1024 * 1024


class SignalMode(Enum):
    """Signal handling mode of the command line runner.

    - CANCEL: SIGINT cancels the target task directly
    - EXIT: SIGINT only requests shutdown; the target is left to the
      shutdown handler (the command line runner cancels it)
    """

    CANCEL = "cancel"
    EXIT = "exit"

    @classmethod
    def from_string(cls, value: str) -> "SignalMode":
        """Parse a mode string, falling back to CANCEL."""
        value = value.lower().strip()
        for mode in cls:
            if mode.value == value:
                return mode
        return cls.CANCEL


def _parse_bool(value: str | None, default: bool = False) -> bool:
    """Parse a boolean environment variable."""
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _parse_int(value: str | None, default: int) -> int:
    if not value:
        return default
    try:
        return int(value.strip())
    except ValueError:
        return default


def _parse_float(
    value: str | None,
    default: float,
    minimum: float,
    maximum: float,
) -> float:
    """Parse a float environment variable, clamped to [minimum, maximum]."""
    if not value:
        return default
    try:
        number = float(value)
    except ValueError:
        return default
    return max(minimum, min(number, maximum))


def _parse_encoding(value: str | None) -> str:
    if not value or not value.strip():
        return DEFAULT_ENCODING
    encoding = value.strip()
    try:
        "".encode(encoding)
    except LookupError:
        return DEFAULT_ENCODING
    return encoding


def _parse_opts(value: str | None) -> list[str]:
    if not value or not value.strip():
        return []
    try:
        return shlex.split(value)
    except ValueError:
        return []


def _parse_signal_mode(value: str | None) -> SignalMode:
    if not value:
        return SignalMode.CANCEL
    return SignalMode.from_string(value)


@dataclass
class Config:
    """PSV configuration.

    Attributes:
        default_timeout_ms: command line default timeout, <= 0 is unbounded
        check_ratio: check interval as a fraction of the timeout
        drain_timeout: seconds the reader may drain after the child exited
        reap_timeout: seconds to wait for a destroyed child to be reaped
        encoding: output decoding
        stream_limit: buffer limit for a single line
        interpreter_opts: default interpreter options for self-relaunch
        log_debug: debug logging to a temp file
        log_file: log file path (set when log_debug is on)
        signal_mode: SIGINT/SIGTERM handling mode
        signal_double_tap_window: double tap window in seconds
    """

    default_timeout_ms: int = 0
    check_ratio: float = DEFAULT_CHECK_RATIO
    drain_timeout: float = DEFAULT_DRAIN_TIMEOUT
    reap_timeout: float = DEFAULT_REAP_TIMEOUT
    encoding: str = DEFAULT_ENCODING
    stream_limit: int = DEFAULT_STREAM_LIMIT
    interpreter_opts: list[str] = field(default_factory=list)
    log_debug: bool = False
    log_file: str | None = None
    signal_mode: SignalMode = SignalMode.CANCEL
    signal_double_tap_window: float = 1.0

    def check_interval_for(self, timeout_ms: int) -> int:
        """Derive the check interval of a timeout, in milliseconds."""
        if timeout_ms <= 0:
            return 0
        return int(timeout_ms * self.check_ratio)

    def __repr__(self) -> str:
        return (
            f"Config(default_timeout_ms={self.default_timeout_ms}, "
            f"check_ratio={self.check_ratio}, "
            f"drain_timeout={self.drain_timeout}, "
            f"reap_timeout={self.reap_timeout}, "
            f"encoding={self.encoding}, "
            f"stream_limit={self.stream_limit}, "
            f"interpreter_opts={self.interpreter_opts}, "
            f"log_debug={self.log_debug}, "
            f"log_file={self.log_file}, "
            f"signal_mode={self.signal_mode.value}, "
            f"signal_double_tap_window={self.signal_double_tap_window})"
        )


def _generate_log_file_path() -> str:
    """Build a timestamped log file path under the temp directory."""
    log_dir = Path(tempfile.gettempdir()) / "subproc-supervisor"
    log_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = log_dir / f"psv_debug_{timestamp}.log"

    return str(log_file.resolve())


def load_config() -> Config:
    """Load configuration from the environment."""
    log_debug = _parse_bool(os.environ.get("PSV_LOG_DEBUG"), default=False)
    log_file = _generate_log_file_path() if log_debug else None

    return Config(
        default_timeout_ms=_parse_int(os.environ.get("PSV_TIMEOUT_MS"), 0),
        check_ratio=_parse_float(
            os.environ.get("PSV_CHECK_RATIO"), DEFAULT_CHECK_RATIO, 0.01, 1.0
        ),
        drain_timeout=_parse_float(
            os.environ.get("PSV_DRAIN_TIMEOUT"), DEFAULT_DRAIN_TIMEOUT, 0.0, 60.0
        ),
        reap_timeout=_parse_float(
            os.environ.get("PSV_REAP_TIMEOUT"), DEFAULT_REAP_TIMEOUT, 0.0, 60.0
        ),
        encoding=_parse_encoding(os.environ.get("PSV_ENCODING")),
        stream_limit=max(
            1024, _parse_int(os.environ.get("PSV_STREAM_LIMIT"), DEFAULT_STREAM_LIMIT)
        ),
        interpreter_opts=_parse_opts(os.environ.get("PSV_INTERPRETER_OPTS")),
        log_debug=log_debug,
        log_file=log_file,
        signal_mode=_parse_signal_mode(os.environ.get("PSV_SIGNAL_MODE")),
        signal_double_tap_window=_parse_float(
            os.environ.get("PSV_SIGNAL_DOUBLE_TAP_WINDOW"), 1.0, 0.1, 10.0
        ),
    )


# Global instance, loaded lazily
_config: Config | None = None


def get_config() -> Config:
    """Return the global configuration instance."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config() -> Config:
    """Reload the global configuration (used by tests)."""
    global _config
    _config = load_config()
    return _config
