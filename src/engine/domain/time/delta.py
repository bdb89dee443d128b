import re
from datetime import timedelta
from typing import Any, Self

from pydantic_core import CoreSchema, core_schema

from src.engine.domain.time.unit import TimeUnit


class TimeDelta:
    """Duration parsed from compact strings such as ``"60s"``, ``"3m"`` or ``"1h30m"``."""

    __REGEX_PATTERN = rf"(\d+(?:\.\d+)?)({TimeUnit.get_regex_pattern()})"

    delta: timedelta

    def __init__(self, delta: "str | int | float | timedelta | TimeDelta") -> None:
        if isinstance(delta, TimeDelta):
            self.delta = delta.delta
        elif isinstance(delta, str):
            self.delta = self.__class__.__parse_delta_str(delta)
        elif isinstance(delta, (int, float)) and not isinstance(delta, bool):
            self.delta = timedelta(seconds=delta)
        elif isinstance(delta, timedelta):
            self.delta = delta
        else:
            raise ValueError(f"Cannot convert {type(delta).__name__} to TimeDelta")

        if self.delta < timedelta():
            raise ValueError(f"Negative durations are not allowed: {delta}")

    @classmethod
    def __parse_delta_str(cls, delta_str: str) -> timedelta:
        delta_str = delta_str.strip()

        if not delta_str or delta_str == "0":
            return timedelta()

        matches = re.findall(cls.__REGEX_PATTERN, delta_str)

        if not matches:
            raise ValueError(f"Invalid duration format: {delta_str}")

        consumed = "".join(f"{value}{unit}" for value, unit in matches)
        if consumed != delta_str.replace(" ", ""):
            raise ValueError(f"Invalid characters in duration: {delta_str}")

        delta = timedelta()

        for value, unit in matches:
            value = float(value)
            if unit == "ms":
                delta += timedelta(milliseconds=value)
            elif unit == "s":
                delta += timedelta(seconds=value)
            elif unit == "m":
                delta += timedelta(minutes=value)
            elif unit == "h":
                delta += timedelta(hours=value)
            elif unit == "d":
                delta += timedelta(days=value)

        return delta

    def total_seconds(self) -> float:
        return self.delta.total_seconds()

    def __str__(self) -> str:
        total_ms = int(round(self.delta.total_seconds() * 1000))
        if total_ms == 0:
            return "0"

        parts = []
        for unit, size in ((TimeUnit.d, 86_400_000), (TimeUnit.h, 3_600_000), (TimeUnit.m, 60_000), (TimeUnit.s, 1000)):
            value, total_ms = divmod(total_ms, size)
            if value:
                parts.append(f"{value}{unit}")
        if total_ms:
            parts.append(f"{total_ms}{TimeUnit.ms}")
        return "".join(parts)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.__str__()})"

    def __add__(self, other: Self) -> Self:
        return self.__class__(self.delta + other.delta)

    def __ge__(self, other: Self) -> bool:
        return self.delta >= other.delta

    def __gt__(self, other: Self) -> bool:
        return self.delta > other.delta

    def __le__(self, other: Self) -> bool:
        return self.delta <= other.delta

    def __lt__(self, other: Self) -> bool:
        return self.delta < other.delta

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TimeDelta):
            return NotImplemented
        return self.delta == other.delta

    def __hash__(self) -> int:
        return hash(self.delta)

    def __bool__(self) -> bool:
        return self.delta != timedelta()

    def __float__(self) -> float:
        return float(self.delta.total_seconds())

    @classmethod
    def __get_pydantic_core_schema__(cls, source_type: Any, handler: Any) -> CoreSchema:
        return core_schema.no_info_after_validator_function(
            cls._validate,
            core_schema.union_schema(
                [
                    core_schema.is_instance_schema(cls),
                    core_schema.str_schema(),
                    core_schema.is_instance_schema(timedelta),
                    core_schema.int_schema(),
                    core_schema.float_schema(),
                ]
            ),
            serialization=core_schema.to_string_ser_schema(),
        )

    @classmethod
    def _validate(cls, value: Any) -> Self:
        if isinstance(value, cls):
            return value
        return cls(value)
