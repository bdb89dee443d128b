"""Domain layer for the rule evaluation engine."""

from src.engine.domain.exceptions import (
    EngineException,
    EvaluationError,
    InvalidRuleError,
    ResolutionError,
    RuleLoadError,
    UndefinedFieldError,
    UndefinedVariableError,
    VariableTypeError,
)
from src.engine.domain.models import (
    Color,
    ComparisonOperator,
    EntityKey,
    FieldSpec,
    FieldType,
    FormulaSpec,
    HealthStatus,
    IncreasingAtLeastByValue,
    MinRateOfIncrease,
    Outcome,
    Predicate,
    ResolvedField,
    RuleDefinition,
    Sample,
    StaticCompare,
    Term,
    TriggerSpec,
    VariableBinding,
    VariableSpec,
    WhereFilter,
)
from src.engine.domain.protocols import RuleLoader, SampleFeed, StatusSink

__all__ = [
    "Color",
    "ComparisonOperator",
    "EntityKey",
    "FieldSpec",
    "FieldType",
    "FormulaSpec",
    "HealthStatus",
    "IncreasingAtLeastByValue",
    "MinRateOfIncrease",
    "Outcome",
    "Predicate",
    "ResolvedField",
    "RuleDefinition",
    "Sample",
    "StaticCompare",
    "Term",
    "TriggerSpec",
    "VariableBinding",
    "VariableSpec",
    "WhereFilter",
    "RuleLoader",
    "SampleFeed",
    "StatusSink",
    "EngineException",
    "EvaluationError",
    "InvalidRuleError",
    "ResolutionError",
    "RuleLoadError",
    "UndefinedFieldError",
    "UndefinedVariableError",
    "VariableTypeError",
]
