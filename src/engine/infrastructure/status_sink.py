"""Status sinks for emitted health statuses."""

import pandas as pd
from loguru import logger

from src.engine.domain.models import HealthStatus
from src.engine.domain.protocols import StatusSink


class InMemoryStatusSink(StatusSink):
    """Simple in-memory status storage for testing and replays."""

    def __init__(self):
        self.statuses: list[HealthStatus] = []

    def write_status(self, status: HealthStatus) -> None:
        self.statuses.append(status)

    def write_statuses(self, statuses: list[HealthStatus]) -> None:
        self.statuses.extend(statuses)

    def to_dataframe(self) -> pd.DataFrame:
        if not self.statuses:
            return pd.DataFrame()

        return pd.DataFrame([status.to_dict() for status in self.statuses])

    def latest(self) -> dict[tuple, HealthStatus]:
        """Most recent status per (entity_key, trigger_name)."""
        return {(s.entity_key, s.trigger_name): s for s in self.statuses}

    def clear(self):
        self.statuses.clear()

    def __len__(self):
        return len(self.statuses)


class CSVStatusSink(StatusSink):
    """Status sink that writes to a CSV file incrementally."""

    def __init__(self, filepath: str, mode: str = "w", buffer_size: int = 100):
        """
        Initialize CSV sink.

        Args:
            filepath: Path to CSV file
            mode: 'w' for overwrite, 'a' for append
            buffer_size: Write every N statuses
        """
        self.filepath = filepath
        self.mode = mode
        self._buffer: list[HealthStatus] = []
        self._buffer_size = buffer_size
        self._header_written = mode == "a"
        self._written = 0

    def write_status(self, status: HealthStatus) -> None:
        self._buffer.append(status)

        if len(self._buffer) >= self._buffer_size:
            self.flush()

    def write_statuses(self, statuses: list[HealthStatus]) -> None:
        self._buffer.extend(statuses)

        if len(self._buffer) >= self._buffer_size:
            self.flush()

    def flush(self):
        """Write buffered statuses to CSV."""
        if not self._buffer:
            return

        df = pd.DataFrame([status.to_dict() for status in self._buffer])
        df["entity_key"] = df["entity_key"].map(lambda key: "|".join(str(part) for part in key))

        df.to_csv(
            self.filepath,
            mode="a" if self._header_written else "w",
            header=not self._header_written,
            index=False,
        )

        self._header_written = True
        self._written += len(df)
        self._buffer.clear()
        logger.debug(f"Flushed {len(df)} statuses to {self.filepath}")

    def to_dataframe(self) -> pd.DataFrame:
        """Read all flushed statuses from CSV."""
        self.flush()
        try:
            return pd.read_csv(self.filepath)
        except FileNotFoundError:
            return pd.DataFrame()

    def __len__(self):
        return self._written + len(self._buffer)
