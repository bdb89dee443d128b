"""Infrastructure layer for the rule evaluation engine."""

from src.engine.infrastructure.rule_loader import DictRuleLoader, JsonRuleLoader, parse_rule
from src.engine.infrastructure.sample_feed import IterableSampleFeed, QueueSampleFeed, samples_from_dataframe
from src.engine.infrastructure.status_sink import CSVStatusSink, InMemoryStatusSink
from src.engine.infrastructure.window_buffer import FormulaState, WindowBuffer

__all__ = [
    "DictRuleLoader",
    "JsonRuleLoader",
    "parse_rule",
    "IterableSampleFeed",
    "QueueSampleFeed",
    "samples_from_dataframe",
    "CSVStatusSink",
    "InMemoryStatusSink",
    "FormulaState",
    "WindowBuffer",
]
