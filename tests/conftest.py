"""Pytest configuration and fixtures."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

# Project root
PROJECT_ROOT = Path(__file__).parent.parent

# Put src on the Python path (development checkout)
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

FIXTURES_DIR = PROJECT_ROOT / "tests" / "fixtures"
FAKE_CHILD_PATH = FIXTURES_DIR / "fake_child.py"

from subproc_supervisor.config import Config  # noqa: E402


@pytest.fixture
def project_root() -> Path:
    return PROJECT_ROOT


@pytest.fixture
def config() -> Config:
    """Configuration independent of PSV_* environment variables."""
    return Config(drain_timeout=2.0, reap_timeout=2.0)


@pytest.fixture
def fake_child():
    """Build the argv of the fake child script.

    Example:
        fake_child("--lines", "3", "--exit-code", "2")
    """

    def build(*args: str) -> list[str]:
        return [sys.executable, str(FAKE_CHILD_PATH), *args]

    return build


@pytest.fixture
def python_code():
    """Build the argv running a Python snippet with this interpreter."""

    def build(code: str) -> list[str]:
        return [sys.executable, "-c", code]

    return build
