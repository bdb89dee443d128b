"""Telemetry rule evaluation engine package."""

from src.engine.application import RuleEngine, create_engine_from_file
from src.engine.domain import Color, HealthStatus, RuleDefinition, Sample
from src.engine.infrastructure import (
    CSVStatusSink,
    DictRuleLoader,
    InMemoryStatusSink,
    JsonRuleLoader,
    QueueSampleFeed,
)

__all__ = [
    "RuleEngine",
    "create_engine_from_file",
    "Color",
    "HealthStatus",
    "RuleDefinition",
    "Sample",
    "CSVStatusSink",
    "InMemoryStatusSink",
    "DictRuleLoader",
    "JsonRuleLoader",
    "QueueSampleFeed",
]
