"""Application layer for the rule evaluation engine."""

from src.engine.application.rule_engine import RuleEngine, create_engine_from_file

__all__ = ["RuleEngine", "create_engine_from_file"]
