"""Load-time validation and variable binding of rule definitions."""

import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping

from loguru import logger

from src.engine.application.variable_resolver import VariableResolver
from src.engine.domain.exceptions import InvalidRuleError, UndefinedFieldError, UndefinedVariableError
from src.engine.domain.models import (
    ComparisonOperator,
    FieldType,
    MinRateOfIncrease,
    RuleDefinition,
    StaticCompare,
    Term,
    TriggerSpec,
    VariableBinding,
    reference_name,
)
from src.engine.domain.time import TimeDelta

MESSAGE_TOKEN = re.compile(r"\$\{([A-Za-z_][\w-]*)\}|\$([A-Za-z_][\w-]*)")

_NUMERIC_TYPES = {FieldType.INTEGER, FieldType.FLOAT}


@dataclass(frozen=True)
class CompiledRule:
    """A rule ready to activate: variables substituted, references checked, windows sized."""

    definition: RuleDefinition
    variables: VariableBinding
    triggers: tuple[TriggerSpec, ...]
    constants: Mapping[str, Any] = field(default_factory=dict)
    where_patterns: Mapping[str, re.Pattern] = field(default_factory=dict)
    retention: Mapping[str, TimeDelta] = field(default_factory=dict)

    @property
    def name(self) -> str:
        return self.definition.name

    @property
    def keys(self) -> tuple[str, ...]:
        return self.definition.keys


class RuleCompiler:
    """
    Turns a RuleDefinition plus overrides into a CompiledRule.

    Any problem found here is load-time fatal: a RuleLoadError subclass is
    raised and the rule instance does not activate.
    """

    def __init__(self, default_retention: TimeDelta):
        self.default_retention = default_retention

    def compile(self, rule: RuleDefinition, overrides: Mapping[str, Any] | None = None) -> CompiledRule:
        self._check_structure(rule)
        binding = VariableResolver(rule).resolve(overrides)

        constants = {
            spec.name: self._coerce_constant(rule, spec.name, spec.type, binding, spec.constant)
            for spec in rule.fields
            if spec.is_constant
        }
        where_patterns = {
            spec.name: self._compile_regex(rule, binding, spec.where.matches, f"where filter of field '{spec.name}'")
            for spec in rule.fields
            if spec.where is not None
        }
        triggers = tuple(self._bind_trigger(rule, binding, trigger) for trigger in rule.triggers)
        retention = self._size_windows(rule, triggers)

        logger.info(
            f"Compiled rule '{rule.name}': {len(rule.fields)} fields, {len(triggers)} triggers, "
            f"{len(retention)} windowed fields"
        )

        return CompiledRule(
            definition=rule,
            variables=binding,
            triggers=triggers,
            constants=MappingProxyType(constants),
            where_patterns=MappingProxyType(where_patterns),
            retention=MappingProxyType(retention),
        )

    def _check_structure(self, rule: RuleDefinition) -> None:
        names = [f.name for f in rule.fields]
        duplicates = {n for n in names if names.count(n) > 1}
        if duplicates:
            raise InvalidRuleError(rule.name, f"duplicate fields: {sorted(duplicates)}")

        trigger_names = [t.name for t in rule.triggers]
        if len(set(trigger_names)) != len(trigger_names):
            raise InvalidRuleError(rule.name, "duplicate trigger names")

        for key in rule.keys:
            spec = rule.get_field(key)
            if spec is None:
                raise UndefinedFieldError(rule.name, key, "keys")
            if not spec.is_sensor:
                raise InvalidRuleError(rule.name, f"key field '{key}' must come from a sensor path")

        for spec in rule.fields:
            if spec.formula is None:
                continue
            source = rule.get_field(spec.formula.field)
            if source is None:
                raise UndefinedFieldError(rule.name, spec.formula.field, f"formula of field '{spec.name}'")
            if not source.is_sensor or source.type not in _NUMERIC_TYPES:
                raise InvalidRuleError(
                    rule.name, f"formula of field '{spec.name}' needs a numeric sensor field as its source"
                )

    def _bind_trigger(self, rule: RuleDefinition, binding: VariableBinding, trigger: TriggerSpec) -> TriggerSpec:
        terms = []
        for index, term in enumerate(trigger.terms):
            where = f"trigger '{trigger.name}' term {term.name or index}"
            self._check_message(rule, binding, term, where)
            bound = tuple(self._bind_predicate(rule, binding, predicate, where) for predicate in term.when)
            terms.append(term.model_copy(update={"when": bound}))
        return trigger.model_copy(update={"terms": tuple(terms)})

    def _bind_predicate(self, rule: RuleDefinition, binding: VariableBinding, predicate, where: str):
        spec = rule.get_field(predicate.field)
        if spec is None:
            raise UndefinedFieldError(rule.name, predicate.field, where)

        value = self._substitute(rule, binding, predicate.value, where)

        if spec.is_constant and not isinstance(predicate, StaticCompare):
            raise InvalidRuleError(
                rule.name, f"{predicate.kind} in {where} cannot watch constant field '{spec.name}'"
            )

        if isinstance(predicate, StaticCompare) and predicate.operator in (
            ComparisonOperator.MATCHES,
            ComparisonOperator.NOT_MATCHES,
        ):
            self._compile_regex(rule, binding, value, where)
            return predicate.model_copy(update={"value": value})

        if isinstance(predicate, StaticCompare) and spec.type == FieldType.STRING:
            return predicate.model_copy(update={"value": str(value)})

        if spec.type not in _NUMERIC_TYPES:
            raise InvalidRuleError(rule.name, f"{predicate.kind} in {where} needs a numeric field, not '{spec.name}'")
        try:
            value = float(value) if isinstance(value, str) else value
        except ValueError:
            raise InvalidRuleError(rule.name, f"threshold {value!r} in {where} is not numeric") from None
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise InvalidRuleError(rule.name, f"threshold {value!r} in {where} is not numeric")
        if isinstance(predicate, MinRateOfIncrease) and not predicate.time_range:
            raise InvalidRuleError(rule.name, f"min-rate-of-increase in {where} needs a non-zero time-range")

        return predicate.model_copy(update={"value": value})

    def _check_message(self, rule: RuleDefinition, binding: VariableBinding, term: Term, where: str) -> None:
        for match in MESSAGE_TOKEN.finditer(term.then.message):
            name = match.group(1) or match.group(2)
            if name not in rule.field_names and name not in binding:
                raise UndefinedFieldError(rule.name, name, f"message of {where}")

    def _substitute(self, rule: RuleDefinition, binding: VariableBinding, operand: Any, where: str) -> Any:
        name = reference_name(operand)
        if name is not None and name not in binding:
            raise UndefinedVariableError(rule.name, name, where)
        return binding.resolve(operand)

    def _coerce_constant(
        self, rule: RuleDefinition, name: str, declared: FieldType, binding: VariableBinding, operand: Any
    ) -> Any:
        value = self._substitute(rule, binding, operand, f"constant field '{name}'")
        try:
            if declared == FieldType.INTEGER:
                return int(value)
            if declared == FieldType.FLOAT:
                return float(value)
            return str(value)
        except (TypeError, ValueError):
            raise InvalidRuleError(rule.name, f"constant field '{name}' cannot hold {value!r}") from None

    def _compile_regex(self, rule: RuleDefinition, binding: VariableBinding, operand: Any, where: str) -> re.Pattern:
        pattern = self._substitute(rule, binding, operand, where)
        try:
            return re.compile(str(pattern))
        except re.error as e:
            raise InvalidRuleError(rule.name, f"invalid regex {pattern!r} in {where}: {e}") from None

    def _size_windows(self, rule: RuleDefinition, triggers: tuple[TriggerSpec, ...]) -> dict[str, TimeDelta]:
        """Retention per windowed field: the longest time-range any predicate or formula needs."""
        ranges: dict[str, list[TimeDelta]] = {}
        constants = {spec.name for spec in rule.fields if spec.is_constant}

        for trigger in triggers:
            for term in trigger.terms:
                for predicate in term.when:
                    if predicate.field in constants:
                        continue
                    ranges.setdefault(predicate.field, [])
                    if predicate.time_range:
                        ranges[predicate.field].append(predicate.time_range)

        for spec in rule.fields:
            if spec.formula is not None:
                ranges.setdefault(spec.formula.field, []).append(spec.formula.time_range)

        return {name: max(spans) if spans else self.default_retention for name, spans in ranges.items()}
