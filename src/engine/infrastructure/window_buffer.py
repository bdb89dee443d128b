"""Time-bounded sample buffers and River-based rolling statistics for formula fields."""

from collections import deque
from datetime import datetime, timedelta, timezone
from typing import Any, Iterator

from loguru import logger
from river import stats, utils

from src.engine.domain.time import Statistic, TimeDelta


class WindowBuffer:
    """
    Time-ordered ``(timestamp, value)`` samples for one field of one entity.

    Timestamps are monotonically non-decreasing. Samples older than
    ``retention`` relative to the newest reference time are evicted.
    """

    def __init__(self, retention: TimeDelta):
        self.retention = retention
        # oldest sample ever appended, kept across evictions
        self.first_seen: datetime | None = None
        self._samples: deque[tuple[datetime, Any]] = deque()

    def append(self, timestamp: datetime, value: Any) -> bool:
        """
        Insert a sample.

        A sample with the same timestamp as the newest one replaces it, so
        redelivery is idempotent. An older sample is dropped.

        Returns:
            True if a new point was added (not a replacement or a drop)
        """
        if self._samples:
            newest = self._samples[-1][0]
            if timestamp < newest:
                logger.debug(f"Dropped out-of-order sample at {timestamp} (newest is {newest})")
                return False
            if timestamp == newest:
                self._samples[-1] = (timestamp, value)
                return False

        if self.first_seen is None:
            self.first_seen = timestamp
        self._samples.append((timestamp, value))
        self.evict(timestamp)
        return True

    def evict(self, now: datetime) -> int:
        """Drop samples older than ``now - retention``; returns how many were dropped."""
        horizon = now - self.retention.delta
        evicted = 0
        while self._samples and self._samples[0][0] < horizon:
            self._samples.popleft()
            evicted += 1
        return evicted

    def window(self, now: datetime, time_range: TimeDelta | None = None) -> list[tuple[datetime, Any]]:
        """
        Samples in ``(now - time_range, now]``, or every retained sample up to ``now``.

        A sample exactly ``time_range`` old is outside the window.
        """
        if time_range is None:
            horizon = now - self.retention.delta
            return [(ts, value) for ts, value in self._samples if horizon <= ts <= now]

        horizon = now - time_range.delta
        return [(ts, value) for ts, value in self._samples if horizon < ts <= now]

    def latest(self, now: datetime | None = None) -> tuple[datetime, Any] | None:
        """Newest sample, optionally ignoring samples stamped after ``now``."""
        for ts, value in reversed(self._samples):
            if now is None or ts <= now:
                return ts, value
        return None

    def __len__(self) -> int:
        return len(self._samples)

    def __iter__(self) -> Iterator[tuple[datetime, Any]]:
        return iter(self._samples)


def _naive_utc(timestamp: datetime) -> datetime:
    # River compares event times against a naive sentinel
    if timestamp.tzinfo is None:
        return timestamp
    return timestamp.astimezone(timezone.utc).replace(tzinfo=None)


class FormulaState:
    """
    Incrementally maintained statistic over the last ``period`` of a source field.

    mean/sum/variance/std use River's ``utils.TimeRolling``; max/min are read
    from the source field's WindowBuffer by the caller.
    """

    def __init__(self, statistic: Statistic, period: TimeDelta):
        self.statistic = statistic
        self.period = period
        self._rolling = self._create_river_stat(statistic, period.delta)

    @staticmethod
    def _create_river_stat(statistic: Statistic, period: timedelta) -> Any:
        if statistic not in Statistic.rolling_statistics():
            return None

        if statistic == Statistic.MEAN:
            return utils.TimeRolling(stats.Mean(), period=period)
        elif statistic == Statistic.SUM:
            return utils.TimeRolling(stats.Sum(), period=period)
        # std takes the square root of the variance on retrieval
        return utils.TimeRolling(stats.Var(ddof=1), period=period)

    def update(self, timestamp: datetime, value: float, source: WindowBuffer) -> float | None:
        """Feed one new source sample and return the statistic's current value."""
        if self._rolling is None:
            values = [v for _, v in source.window(timestamp, self.period)]
            if not values:
                return None
            return max(values) if self.statistic == Statistic.MAX else min(values)

        self._rolling.update(float(value), t=_naive_utc(timestamp))
        result = self._rolling.get()
        if self.statistic == Statistic.STD and result is not None:
            return max(result, 0.0) ** 0.5
        return result
