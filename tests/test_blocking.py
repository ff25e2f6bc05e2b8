"""Blocking runner tests.

Test coverage:
- Unbounded runs (timeout <= 0) return the true exit code
- Runs finishing within their timeout
- Timeouts destroy the child and raise ProcessTimeoutError
- Launch failure propagates without a handle
- Output order, collecting and capturing conveniences
- Cancellation of the awaiting task destroys the child
- Synchronous wrappers
"""

from __future__ import annotations

import asyncio
import time

import pytest

from subproc_supervisor.config import Config
from subproc_supervisor.runtime import (
    NO_TIMEOUT,
    LineCollector,
    ProcessLaunchError,
    ProcessTimeoutError,
    RunResult,
    run,
    run_capture,
    run_capture_sync,
    run_collect,
    run_collect_sync,
    run_for_exit_code,
    run_sync,
)
from subproc_supervisor.runtime import blocking


@pytest.fixture
def launched(monkeypatch) -> list:
    """Record every ManagedProcess the runners launch."""
    handles: list = []
    original = blocking.launch_background

    async def spy(*args, **kwargs):
        process = await original(*args, **kwargs)
        handles.append(process)
        return process

    monkeypatch.setattr(blocking, "launch_background", spy)
    return handles


# =============================================================================
# Unbounded Runs
# =============================================================================


class TestUnboundedRun:
    """Test runs without a timeout."""

    @pytest.mark.asyncio
    @pytest.mark.timeout(10)
    async def test_three_lines_exit_zero(self, fake_child, config: Config):
        """A child printing three lines, run without timeout."""
        result = await run_capture(fake_child("--lines", "3"), timeout_ms=0, config=config)

        assert result.exit_code == 0
        assert result.lines == ["line1", "line2", "line3"]
        assert result.success is True

    @pytest.mark.asyncio
    @pytest.mark.timeout(10)
    @pytest.mark.parametrize("timeout_ms", [0, -1, NO_TIMEOUT, -5000])
    async def test_non_positive_timeout_is_unbounded(
        self, fake_child, config: Config, timeout_ms: int
    ):
        exit_code = await run(
            fake_child("--sleep", "0.2", "--exit-code", "7"),
            timeout_ms=timeout_ms,
            config=config,
        )

        assert exit_code == 7

    @pytest.mark.asyncio
    @pytest.mark.timeout(10)
    async def test_line_sink_receives_output(self, fake_child, config: Config):
        collector = LineCollector()

        exit_code = await run(fake_child("--lines", "2", "--exit-code", "1"), collector, config=config)

        assert exit_code == 1
        assert collector.lines == ["line1", "line2"]


# =============================================================================
# Bounded Runs
# =============================================================================


class TestBoundedRun:
    """Test runs with a timeout."""

    @pytest.mark.asyncio
    @pytest.mark.timeout(10)
    async def test_finishes_within_timeout(self, fake_child, config: Config, launched: list):
        exit_code = await run(
            fake_child("--lines", "1", "--exit-code", "4"),
            timeout_ms=5000,
            check_interval_ms=50,
            config=config,
        )

        assert exit_code == 4
        assert len(launched) == 1
        assert launched[0].is_done() is True
        assert launched[0].destroyed is False

    @pytest.mark.asyncio
    @pytest.mark.timeout(10)
    async def test_exit_detected_before_check_interval(self, fake_child, config: Config):
        """Waiting is notified by exit, not by the next check."""
        started = time.monotonic()

        await run(
            fake_child("--sleep", "0.1"),
            timeout_ms=8000,
            check_interval_ms=4000,
            config=config,
        )

        assert time.monotonic() - started < 3.0

    @pytest.mark.asyncio
    @pytest.mark.timeout(10)
    async def test_timeout_destroys_child(self, fake_child, config: Config, launched: list):
        """A child sleeping 2000 ms, run with timeout=500 and check interval 50."""
        started = time.monotonic()

        with pytest.raises(ProcessTimeoutError) as exc_info:
            await run(
                fake_child("--sleep", "2"),
                timeout_ms=500,
                check_interval_ms=50,
                config=config,
            )

        wall_ms = (time.monotonic() - started) * 1000
        error = exc_info.value
        assert isinstance(error, TimeoutError)
        assert error.timeout_ms == 500
        assert 500 <= error.elapsed_ms < 2000
        assert wall_ms < 2000
        assert f"{error.elapsed_ms}/500 ms" in str(error)

        assert error.process is launched[0]
        assert error.process.destroyed is True
        assert error.process.is_done() is True

    @pytest.mark.asyncio
    @pytest.mark.timeout(10)
    async def test_timeout_keeps_output_seen_so_far(self, fake_child, config: Config):
        collector = LineCollector()

        with pytest.raises(ProcessTimeoutError):
            await run(
                fake_child("--text", "started", "--sleep", "5"),
                collector,
                timeout_ms=800,
                check_interval_ms=50,
                config=config,
            )

        assert collector.lines == ["started"]

    @pytest.mark.asyncio
    @pytest.mark.timeout(10)
    async def test_derived_check_interval(self, fake_child, config: Config):
        with pytest.raises(ProcessTimeoutError) as exc_info:
            await run(fake_child("--sleep", "5"), timeout_ms=300, config=config)

        # 10% of 300 ms; detection is well before the child would exit
        assert exc_info.value.elapsed_ms < 3000

    @pytest.mark.asyncio
    @pytest.mark.timeout(10)
    @pytest.mark.parametrize("check_interval_ms", [0, -10])
    async def test_non_positive_check_interval(
        self, fake_child, config: Config, check_interval_ms: int
    ):
        assert await run(
            fake_child("--exit-code", "2"),
            timeout_ms=5000,
            check_interval_ms=check_interval_ms,
            config=config,
        ) == 2

        with pytest.raises(ProcessTimeoutError):
            await run(
                fake_child("--sleep", "5"),
                timeout_ms=300,
                check_interval_ms=check_interval_ms,
                config=config,
            )


# =============================================================================
# Failures
# =============================================================================


class TestFailures:
    """Test launch failure and cancellation."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("timeout_ms", [0, 1000])
    async def test_launch_failure(self, config: Config, launched: list, timeout_ms: int):
        with pytest.raises(ProcessLaunchError):
            await run(["/nonexistent/path/to/binary"], timeout_ms=timeout_ms, config=config)

        assert launched == []

    @pytest.mark.asyncio
    @pytest.mark.timeout(10)
    @pytest.mark.parametrize("timeout_ms", [0, 30000])
    async def test_cancellation_destroys_child(
        self, fake_child, config: Config, launched: list, timeout_ms: int
    ):
        task = asyncio.create_task(
            run(fake_child("--sleep", "30"), timeout_ms=timeout_ms, config=config)
        )
        while not launched:
            await asyncio.sleep(0.05)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        process = launched[0]
        assert process.destroyed is True
        await asyncio.wait_for(process.process.wait(), timeout=5.0)
        assert process.is_done() is True


# =============================================================================
# Conveniences
# =============================================================================


class TestConveniences:
    """Test run_for_exit_code, run_collect and run_capture."""

    @pytest.mark.asyncio
    @pytest.mark.timeout(20)
    async def test_run_for_exit_code_ignores_output(self, fake_child, config: Config):
        """Heavy output is drained even though nobody reads it."""
        exit_code = await run_for_exit_code(
            fake_child("--lines", "20000", "--exit-code", "6"), config=config
        )

        assert exit_code == 6

    @pytest.mark.asyncio
    @pytest.mark.timeout(10)
    async def test_run_collect_returns_lines(self, fake_child, config: Config):
        lines = await run_collect(fake_child("--lines", "2", "--exit-code", "9"), config=config)

        assert lines == ["line1", "line2"]

    @pytest.mark.asyncio
    @pytest.mark.timeout(10)
    async def test_run_capture_keeps_exit_code(self, fake_child, config: Config):
        result = await run_capture(
            fake_child("--interleave", "2", "--exit-code", "9"), timeout_ms=5000, config=config
        )

        assert result == RunResult(exit_code=9, lines=["out1", "err1", "out2", "err2"])
        assert result.success is False

    @pytest.mark.asyncio
    @pytest.mark.timeout(20)
    async def test_order_preserved(self, fake_child, config: Config):
        lines = await run_collect(fake_child("--lines", "500"), timeout_ms=10000, config=config)

        assert lines == [f"line{i}" for i in range(1, 501)]


# =============================================================================
# Synchronous Wrappers
# =============================================================================


class TestSyncWrappers:
    """Test the anyio.run based wrappers."""

    @pytest.mark.timeout(10)
    def test_run_sync(self, fake_child, config: Config):
        collector = LineCollector()

        assert run_sync(fake_child("--lines", "1", "--exit-code", "3"), collector, config=config) == 3
        assert collector.lines == ["line1"]

    @pytest.mark.timeout(10)
    def test_run_collect_sync(self, fake_child, config: Config):
        assert run_collect_sync(fake_child("--lines", "2"), config=config) == ["line1", "line2"]

    @pytest.mark.timeout(10)
    def test_run_capture_sync_timeout(self, fake_child, config: Config):
        with pytest.raises(ProcessTimeoutError):
            run_capture_sync(fake_child("--sleep", "5"), timeout_ms=300, config=config)
