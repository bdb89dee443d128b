"""Sample feeds delivering telemetry records to the engine."""

import asyncio
from typing import AsyncIterator, Iterable

import pandas as pd

from src.engine.domain.models import Sample
from src.engine.domain.protocols import SampleFeed

_RESERVED_COLUMNS = ("timestamp", "sensor_path", "context")


def samples_from_dataframe(df: pd.DataFrame) -> list[Sample]:
    """
    Convert a long-format DataFrame into samples, ordered by timestamp.

    Columns ``timestamp`` and ``sensor_path`` are required, ``context`` is
    optional; every other column is an attribute. NaN cells are skipped.
    """
    missing = [c for c in ("timestamp", "sensor_path") if c not in df.columns]
    if missing:
        raise ValueError(f"DataFrame is missing columns: {missing}")

    df = df.sort_values("timestamp", kind="stable")
    attribute_columns = [c for c in df.columns if c not in _RESERVED_COLUMNS]

    samples = []
    for row in df.to_dict(orient="records"):
        attributes = {c: row[c] for c in attribute_columns if pd.notna(row[c])}
        context = row.get("context")
        samples.append(
            Sample(
                sensor_path=str(row["sensor_path"]),
                timestamp=pd.Timestamp(row["timestamp"]).to_pydatetime(),
                attributes=attributes,
                context=str(context) if context is not None and pd.notna(context) else "",
            )
        )
    return samples


class IterableSampleFeed(SampleFeed):
    """Replays a fixed sequence of samples, optionally pausing between them."""

    def __init__(self, samples: Iterable[Sample], delay: float = 0.0):
        self.samples = list(samples)
        self.delay = delay

    async def __aiter__(self) -> AsyncIterator[Sample]:
        for sample in self.samples:
            if self.delay:
                await asyncio.sleep(self.delay)
            yield sample


class QueueSampleFeed(SampleFeed):
    """Feed backed by an asyncio queue; producers ``put`` samples and ``close`` when done."""

    _CLOSED = object()

    def __init__(self, maxsize: int = 0):
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)

    async def put(self, sample: Sample) -> None:
        await self._queue.put(sample)

    async def close(self) -> None:
        await self._queue.put(self._CLOSED)

    async def __aiter__(self) -> AsyncIterator[Sample]:
        while True:
            item = await self._queue.get()
            if item is self._CLOSED:
                return
            yield item
