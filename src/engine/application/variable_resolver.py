"""Resolves rule variables into an immutable binding at activation time."""

from typing import Any, Mapping

from loguru import logger

from src.engine.domain.exceptions import UndefinedVariableError, VariableTypeError
from src.engine.domain.models import FieldType, RuleDefinition, VariableBinding


def check_type(value: Any, declared: FieldType) -> bool:
    """Return True if ``value`` is an instance of the declared scalar type."""
    if isinstance(value, bool):
        return False
    if declared == FieldType.INTEGER:
        return isinstance(value, int)
    if declared == FieldType.FLOAT:
        return isinstance(value, (int, float))
    return isinstance(value, str)


class VariableResolver:
    """
    Applies deployment overrides on top of declared variable defaults.

    Every default and every override must match the variable's declared type;
    a mismatch or an override for an undeclared name is fatal for the rule.
    """

    def __init__(self, rule: RuleDefinition):
        self.rule = rule

    def resolve(self, overrides: Mapping[str, Any] | None = None) -> VariableBinding:
        overrides = dict(overrides or {})
        values: dict[str, Any] = {}

        for spec in self.rule.variables:
            if not check_type(spec.value, spec.type):
                raise VariableTypeError(self.rule.name, spec.name, spec.type.value, spec.value)
            values[spec.name] = spec.value

        for name, value in overrides.items():
            spec = next((v for v in self.rule.variables if v.name == name), None)
            if spec is None:
                raise UndefinedVariableError(self.rule.name, name, "deployment overrides")
            if not check_type(value, spec.type):
                raise VariableTypeError(self.rule.name, name, spec.type.value, value)
            values[name] = float(value) if spec.type == FieldType.FLOAT else value

        if overrides:
            logger.info(f"Applied {len(overrides)} variable overrides to rule '{self.rule.name}'")

        return VariableBinding(values)
