"""Maps raw telemetry samples onto rule-declared fields."""

from typing import Any, Mapping

from loguru import logger

from src.engine.application.rule_compiler import CompiledRule
from src.engine.domain.exceptions import ResolutionError
from src.engine.domain.models import FieldSpec, FieldType, ResolvedField, Sample


def coerce_value(spec: FieldSpec, value: Any) -> Any:
    """
    Coerce a raw value to the field's declared type.

    Raises:
        ResolutionError: if the value cannot be represented in that type
    """
    if value is None:
        raise ResolutionError(spec.name, "missing value")

    try:
        if spec.type == FieldType.INTEGER:
            if isinstance(value, bool):
                raise ValueError("booleans are not integers")
            if isinstance(value, float):
                if not value.is_integer():
                    raise ValueError("non-integral float")
                return int(value)
            if isinstance(value, str):
                text = value.strip()
                try:
                    return int(text)
                except ValueError:
                    as_float = float(text)
                    if not as_float.is_integer():
                        raise
                    return int(as_float)
            return int(value)
        if spec.type == FieldType.FLOAT:
            if isinstance(value, bool):
                raise ValueError("booleans are not floats")
            return float(value)
        return str(value)
    except (TypeError, ValueError) as e:
        raise ResolutionError(spec.name, f"cannot coerce to {spec.type.value} ({e})", value) from None


def _normalize_path(path: str) -> str:
    return path.strip().rstrip("/")


class FieldResolver:
    """
    Resolves samples against the sensor fields of one compiled rule.

    Key fields are yielded before value fields so the registry can complete
    an entity key from the same record that carries the values.
    """

    def __init__(self, rule: CompiledRule):
        self.rule = rule
        self._by_path: dict[str, list[FieldSpec]] = {}
        key_names = set(rule.keys)

        for spec in rule.definition.fields:
            if spec.is_sensor:
                self._by_path.setdefault(_normalize_path(spec.sensor_path), []).append(spec)

        for specs in self._by_path.values():
            specs.sort(key=lambda s: s.name not in key_names)

        self.dropped = 0

    def resolve(self, sample: Sample, known: Mapping[str, Any] | None = None) -> list[ResolvedField]:
        """
        Resolve one sample into zero or more fields.

        Args:
            sample: Raw telemetry record
            known: Last raw attribute values seen for the sample's context,
                consulted by where filters when the record lacks the attribute

        Returns:
            Resolved fields; unmatched, filtered or uncoercible values are dropped
        """
        specs = self._by_path.get(_normalize_path(sample.sensor_path))
        if not specs:
            return []

        known = known or {}
        resolved = []

        for spec in specs:
            if spec.attribute_path not in sample.attributes:
                continue

            if spec.where is not None and not self._passes_filter(spec, sample, known):
                continue

            raw = sample.attributes[spec.attribute_path]
            try:
                value = coerce_value(spec, raw)
            except ResolutionError as e:
                self.dropped += 1
                logger.warning(f"Dropped sample for rule '{self.rule.name}': {e.message}")
                continue

            resolved.append(
                ResolvedField(
                    field_name=spec.name,
                    value=value,
                    timestamp=sample.timestamp,
                    context=sample.context,
                    suppressed=spec.zero_suppression and value == 0,
                )
            )

        return resolved

    def _passes_filter(self, spec: FieldSpec, sample: Sample, known: Mapping[str, Any]) -> bool:
        path = spec.where.path
        candidate = sample.attributes.get(path, known.get(path))
        if candidate is None:
            logger.debug(f"Field '{spec.name}' filtered: attribute '{path}' not present")
            return False
        return self.rule.where_patterns[spec.name].fullmatch(str(candidate)) is not None
