"""Window predicate evaluation against an entity's buffers."""

import operator
import re
from datetime import datetime
from typing import Any, Callable

from loguru import logger

from src.engine.application.entity_registry import EntityState
from src.engine.domain.exceptions import EvaluationError
from src.engine.domain.models import (
    ComparisonOperator,
    IncreasingAtLeastByValue,
    MinRateOfIncrease,
    Predicate,
    StaticCompare,
)
from src.engine.domain.time import TimeDelta
from src.engine.infrastructure.window_buffer import WindowBuffer

_COMPARATORS: dict[ComparisonOperator, Callable[[Any, Any], bool]] = {
    ComparisonOperator.GT: operator.gt,
    ComparisonOperator.GE: operator.ge,
    ComparisonOperator.LT: operator.lt,
    ComparisonOperator.LE: operator.le,
    ComparisonOperator.EQ: operator.eq,
    ComparisonOperator.NE: operator.ne,
    ComparisonOperator.MATCHES: lambda value, pattern: re.fullmatch(pattern, str(value)) is not None,
    ComparisonOperator.NOT_MATCHES: lambda value, pattern: re.fullmatch(pattern, str(value)) is None,
}


def evaluate_predicate(predicate: Predicate, entity: EntityState, now: datetime, cadence: TimeDelta) -> bool:
    """
    Evaluate one bound predicate for one entity at time ``now``.

    ``cadence`` is the expected interval between samples, the trigger's
    frequency. Missing or insufficient data always yields False.
    """
    if predicate.field in entity.constants:
        # constants hold one value for the entity's lifetime and have no buffer
        if not isinstance(predicate, StaticCompare):
            return False
        return _compare_all(predicate, [entity.constants[predicate.field]])

    buffer = entity.buffers.get(predicate.field)
    if buffer is None:
        return False

    if isinstance(predicate, StaticCompare):
        return static_compare(buffer, predicate, now)
    elif isinstance(predicate, IncreasingAtLeastByValue):
        return increasing_at_least_by_value(buffer, predicate.value, predicate.time_range, now)
    elif isinstance(predicate, MinRateOfIncrease):
        return min_rate_of_increase(buffer, predicate.value, predicate.time_range, now, cadence)

    raise EvaluationError(f"Unsupported predicate kind: {type(predicate).__name__}")


def static_compare(buffer: WindowBuffer, predicate: StaticCompare, now: datetime) -> bool:
    """Latest sample satisfies the comparison; with a time-range, every sample in it must."""
    if predicate.time_range is None:
        latest = buffer.latest(now)
        values = [latest[1]] if latest is not None else []
    else:
        values = [value for _, value in buffer.window(now, predicate.time_range)]

    return _compare_all(predicate, values)


def _compare_all(predicate: StaticCompare, values: list[Any]) -> bool:
    if not values:
        return False

    compare = _COMPARATORS[predicate.operator]
    try:
        return all(compare(value, predicate.value) for value in values)
    except TypeError as e:
        logger.debug(f"Cannot compare field '{predicate.field}' with {predicate.value!r}: {e}")
        return False


def increasing_at_least_by_value(
    buffer: WindowBuffer, value: float, time_range: TimeDelta | None, now: datetime
) -> bool:
    """
    With a time-range every consecutive pair in the range increases by at least
    ``value``; without one any consecutive pair in the retained buffer does.
    """
    samples = [v for _, v in buffer.window(now, time_range)]
    if len(samples) < 2:
        return False

    increases = (later - earlier >= value for earlier, later in zip(samples, samples[1:]))
    return all(increases) if time_range is not None else any(increases)


def min_rate_of_increase(
    buffer: WindowBuffer, rate: float, time_range: TimeDelta, now: datetime, cadence: TimeDelta
) -> bool:
    """
    Average per-second increase between the first and last sample in the range
    is at least ``rate``, and the samples cover the whole range.

    Covering the range means the field has history reaching back to the range
    start, the first sample in the range lies within one ``cadence`` of its
    start and the last sample is no older than one ``cadence``. A young entity,
    a partially filled window or a quiet feed is never true.
    """
    samples = buffer.window(now, time_range)
    if len(samples) < 2:
        return False

    start = now - time_range.delta
    if buffer.first_seen is None or buffer.first_seen > start:
        return False

    (first_ts, first), (last_ts, last) = samples[0], samples[-1]
    if first_ts - start > cadence.delta or now - last_ts > cadence.delta:
        return False

    span = (last_ts - first_ts).total_seconds()
    if span <= 0:
        return False

    return (last - first) / span >= rate
