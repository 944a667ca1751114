"""Progress remapping for composed operations.

A ``ProgressRange`` maps a local 0-100 scale onto ``[start, end]`` of its
parent and never reports a value lower than one already reported.
"""

import time
from typing import Callable, Optional, Union

ProgressCallback = Callable[[int], None]


class _Tracker:
    """Shared high-water mark for one logical operation."""

    def __init__(self, callback: Optional[ProgressCallback]):
        self.callback = callback
        self.last = -1

    def emit(self, value: int) -> None:
        value = max(0, min(100, value))
        if value <= self.last:
            return
        self.last = value
        if self.callback is not None:
            self.callback(value)


class ProgressRange:
    """Report progress of a sub-operation into a slice of the parent range."""

    def __init__(
        self,
        callback: Optional[ProgressCallback] = None,
        start: int = 0,
        end: int = 100,
        _tracker: Optional[_Tracker] = None,
    ):
        if start > end:
            raise ValueError(f"Invalid progress range: {start}-{end}")
        self.start = start
        self.end = end
        self._tracker = _tracker or _Tracker(callback)

    @property
    def last(self) -> int:
        return self._tracker.last

    def map(self, percent: float) -> int:
        percent = max(0.0, min(100.0, percent))
        return self.start + int((self.end - self.start) * percent / 100)

    def report(self, percent: float) -> None:
        """Report ``percent`` (0-100) of this range."""
        self._tracker.emit(self.map(percent))

    def complete(self) -> None:
        self._tracker.emit(self.end)

    def sub(self, start: float, end: float) -> "ProgressRange":
        """Child range covering ``start``-``end`` percent of this one."""
        return ProgressRange(
            start=self.map(start), end=self.map(end), _tracker=self._tracker
        )

    def split(self, count: int) -> list["ProgressRange"]:
        """Even slices, one per step."""
        if count <= 0:
            return []
        span = self.end - self.start
        bounds = [self.start + span * i // count for i in range(count + 1)]
        return [
            ProgressRange(start=lo, end=hi, _tracker=self._tracker)
            for lo, hi in zip(bounds, bounds[1:])
        ]


def as_range(
    progress: Union[ProgressRange, ProgressCallback, None], start: int = 0, end: int = 100
) -> ProgressRange:
    """Accept a ProgressRange, a plain callback, or None."""
    if isinstance(progress, ProgressRange):
        if (start, end) == (0, 100):
            return progress
        return progress.sub(start, end)
    return ProgressRange(progress, start, end)


class Throttle:
    """Allow an event at most every ``interval`` seconds or every ``every`` calls."""

    def __init__(
        self,
        interval: float = 1.0,
        every: int = 100,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.interval = interval
        self.every = every
        self._clock = clock
        self._count = 0
        self._last = clock()

    def ready(self) -> bool:
        self._count += 1
        now = self._clock()
        if self._count >= self.every or now - self._last >= self.interval:
            self._count = 0
            self._last = now
            return True
        return False
