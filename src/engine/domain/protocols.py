"""Protocols (interfaces) for engine collaborators."""

from typing import Any, AsyncIterator, Protocol

import pandas as pd

from src.engine.domain.models import HealthStatus, RuleDefinition, Sample


class SampleFeed(Protocol):
    """Interface for the telemetry sample stream."""

    def __aiter__(self) -> AsyncIterator[Sample]:
        """Yield samples as they arrive; iteration ends when the feed closes."""
        ...


class StatusSink(Protocol):
    """Interface for emitting health statuses to notification/dashboard collaborators."""

    def write_status(self, status: HealthStatus) -> None:
        """Write a single status."""
        ...

    def write_statuses(self, statuses: list[HealthStatus]) -> None:
        """Write multiple statuses."""
        ...

    def to_dataframe(self) -> pd.DataFrame:
        """Convert emitted statuses to DataFrame."""
        ...


class RuleLoader(Protocol):
    """Interface for loading rule definitions from various sources."""

    async def load_rules(self, **kwargs: Any) -> list[RuleDefinition]:
        """
        Load and validate rules from source.

        Returns:
            List of validated rule definitions
        """
        ...
