"""Domain models for the rule evaluation engine."""

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from types import MappingProxyType
from typing import Annotated, Any, Literal, Mapping, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from src.engine.domain.time import Statistic, TimeDelta

EntityKey = tuple[Any, ...]

# Literal threshold or a "$name" reference to a declared variable
Operand = int | float | str

_REFERENCE_PATTERN = re.compile(r"^\$\{?([A-Za-z_][\w-]*)\}?$")


def reference_name(value: Any) -> str | None:
    """Return the variable name if ``value`` is a ``$name`` reference, else None."""
    if isinstance(value, str):
        match = _REFERENCE_PATTERN.match(value.strip())
        if match:
            return match.group(1)
    return None


class Color(StrEnum):
    """Traffic-light health state."""

    RED = "red"
    YELLOW = "yellow"
    GREEN = "green"


class FieldType(StrEnum):
    """Declared scalar type of a field or variable."""

    INTEGER = "integer"
    FLOAT = "float"
    STRING = "string"


class ComparisonOperator(StrEnum):
    GT = ">"
    GE = ">="
    LT = "<"
    LE = "<="
    EQ = "=="
    NE = "!="
    MATCHES = "matches"
    NOT_MATCHES = "not-matches"


class _RuleModel(BaseModel):
    """Base for declarative rule structures: immutable, kebab-case keys accepted."""

    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        extra="forbid",
        alias_generator=lambda name: name.replace("_", "-"),
    )


class VariableSpec(_RuleModel):
    """A rule template variable with its default value and declared type."""

    name: str = Field(..., min_length=1)
    value: Operand
    type: FieldType = FieldType.STRING
    description: str = ""


class WhereFilter(_RuleModel):
    """Extracts ``path`` from the sample and keeps it only if it matches the regex."""

    path: str
    matches: str


class FormulaSpec(_RuleModel):
    """Derives a field from a statistic over another field's recent samples."""

    statistic: Statistic
    field: str
    time_range: TimeDelta


class FieldSpec(_RuleModel):
    """How to compute one named field: from a sensor path, a constant or a formula."""

    name: str = Field(..., min_length=1)
    type: FieldType = FieldType.STRING
    sensor_path: str | None = None
    path: str | None = None
    where: WhereFilter | None = None
    zero_suppression: bool = False
    constant: Operand | None = None
    formula: FormulaSpec | None = None

    @model_validator(mode="after")
    def _check_single_source(self) -> "FieldSpec":
        sources = [s for s in (self.sensor_path, self.constant, self.formula) if s is not None]
        if len(sources) != 1:
            raise ValueError(f"field '{self.name}' needs exactly one of sensor-path, constant or formula")
        return self

    @property
    def attribute_path(self) -> str:
        return self.path or self.name

    @property
    def is_sensor(self) -> bool:
        return self.sensor_path is not None

    @property
    def is_constant(self) -> bool:
        return self.constant is not None

    @property
    def is_formula(self) -> bool:
        return self.formula is not None


class _PredicateBase(_RuleModel):
    field: str
    value: Operand
    time_range: TimeDelta | None = None


class StaticCompare(_PredicateBase):
    """Compares the latest sample (or every sample in ``time_range``) to a threshold."""

    kind: Literal["static-compare"] = "static-compare"
    operator: ComparisonOperator


class IncreasingAtLeastByValue(_PredicateBase):
    """Consecutive samples increase by at least ``value`` (all pairs in range, or any pair)."""

    kind: Literal["increasing-at-least-by-value"] = "increasing-at-least-by-value"


class MinRateOfIncrease(_PredicateBase):
    """Average per-second increase across a fully covered ``time_range`` is at least ``value``."""

    kind: Literal["min-rate-of-increase"] = "min-rate-of-increase"
    time_range: TimeDelta


Predicate = Annotated[
    Union[StaticCompare, IncreasingAtLeastByValue, MinRateOfIncrease],
    Field(discriminator="kind"),
]


class Outcome(_RuleModel):
    """Status effect of a term."""

    color: Color
    message: str = ""


class Term(_RuleModel):
    """Guard clause: all ``when`` predicates hold (or there are none) -> ``then``."""

    name: str | None = None
    when: tuple[Predicate, ...] = ()
    then: Outcome

    @property
    def is_unconditional(self) -> bool:
        return not self.when


class TriggerSpec(_RuleModel):
    """Ordered terms evaluated at a fixed frequency."""

    name: str = Field(..., min_length=1)
    frequency: TimeDelta
    terms: tuple[Term, ...] = Field(..., min_length=1)

    @model_validator(mode="after")
    def _check_frequency(self) -> "TriggerSpec":
        if not self.frequency:
            raise ValueError(f"trigger '{self.name}' needs a non-zero frequency")
        return self


class RuleDefinition(_RuleModel):
    """A complete rule: fields, entity keys, triggers and variables."""

    name: str = Field(..., min_length=1)
    description: str = ""
    keys: tuple[str, ...] = Field(..., min_length=1)
    fields: tuple[FieldSpec, ...] = Field(..., min_length=1)
    triggers: tuple[TriggerSpec, ...] = Field(..., min_length=1)
    variables: tuple[VariableSpec, ...] = ()

    def get_field(self, name: str) -> FieldSpec | None:
        return next((f for f in self.fields if f.name == name), None)

    @property
    def field_names(self) -> set[str]:
        return {f.name for f in self.fields}

    @property
    def variable_names(self) -> set[str]:
        return {v.name for v in self.variables}


@dataclass(frozen=True)
class VariableBinding:
    """Resolved variable values, read-only once the rule is active."""

    values: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "values", MappingProxyType(dict(self.values)))

    def __getitem__(self, name: str) -> Any:
        return self.values[name]

    def __contains__(self, name: object) -> bool:
        return name in self.values

    def get(self, name: str, default: Any = None) -> Any:
        return self.values.get(name, default)

    def resolve(self, operand: Any) -> Any:
        """Substitute a ``$name`` reference; literals pass through."""
        name = reference_name(operand)
        if name is None:
            return operand
        return self.values[name]


@dataclass
class Sample:
    """One telemetry record delivered by the sample feed."""

    sensor_path: str
    timestamp: datetime
    attributes: dict[str, Any] = field(default_factory=dict)
    context: str = ""

    @classmethod
    def point(
        cls, sensor_path: str, attribute_path: str, value: Any, timestamp: datetime, context: str = ""
    ) -> "Sample":
        """Build a single-attribute sample."""
        return cls(sensor_path=sensor_path, timestamp=timestamp, attributes={attribute_path: value}, context=context)


@dataclass
class ResolvedField:
    """A sample value mapped onto a rule field."""

    field_name: str
    value: Any
    timestamp: datetime
    context: str = ""
    suppressed: bool = False


@dataclass
class HealthStatus:
    """Result of one evaluation tick for one (entity, trigger)."""

    rule_name: str
    entity_key: EntityKey
    trigger_name: str
    color: Color
    message: str
    evaluated_at: datetime
    term: str | None = None
    carried_forward: bool = False

    def to_dict(self) -> dict:
        """Convert to dictionary for DataFrame/storage."""
        return {
            "evaluated_at": self.evaluated_at,
            "rule_name": self.rule_name,
            "entity_key": self.entity_key,
            "trigger_name": self.trigger_name,
            "color": self.color.value,
            "message": self.message,
            "term": self.term,
            "carried_forward": self.carried_forward,
        }
