"""Line sinks consumed by the output reader.

A line sink is any callable taking one decoded line (terminator stripped).
Sinks are invoked from the reader task, never from the caller's own flow.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable

__all__ = [
    "LineSink",
    "LineCollector",
    "LineFanout",
    "discard_line",
]

logger = logging.getLogger(__name__)

LineSink = Callable[[str], None]


def discard_line(line: str) -> None:
    """Drop the line."""


class LineCollector:
    """Collect every line into an ordered list.

    Example:
        collector = LineCollector()
        await run(["sh", "-c", "echo a; echo b"], collector)
        assert collector.lines == ["a", "b"]
    """

    def __init__(self) -> None:
        self.lines: list[str] = []

    def __call__(self, line: str) -> None:
        logger.debug(f"Line: {line}")
        self.lines.append(line)

    def __len__(self) -> int:
        return len(self.lines)


class LineFanout:
    """Forward each line to several sinks, in the order given."""

    def __init__(self, sinks: Iterable[LineSink]) -> None:
        self.sinks: tuple[LineSink, ...] = tuple(sinks)

    def __call__(self, line: str) -> None:
        for sink in self.sinks:
            sink(line)
