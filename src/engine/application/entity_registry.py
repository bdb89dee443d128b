"""Per-entity state keyed by the rule's composite entity key."""

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterator, Mapping

from loguru import logger

from src.engine.application.rule_compiler import CompiledRule
from src.engine.domain.models import EntityKey, HealthStatus, ResolvedField, Sample
from src.engine.domain.time import TimeDelta
from src.engine.infrastructure.window_buffer import FormulaState, WindowBuffer


@dataclass
class EntityState:
    """Window buffers, latest field values and last emitted statuses of one entity."""

    key: EntityKey
    created_at: datetime
    last_seen: datetime
    buffers: dict[str, WindowBuffer] = field(default_factory=dict)
    latest: dict[str, Any] = field(default_factory=dict)
    constants: Mapping[str, Any] = field(default_factory=dict)
    formulas: dict[str, FormulaState] = field(default_factory=dict)
    last_status: dict[str, HealthStatus] = field(default_factory=dict)


@dataclass
class ContextState:
    """What is known about one device/session context while assembling keys."""

    key_values: dict[str, Any] = field(default_factory=dict)
    attributes: dict[str, Any] = field(default_factory=dict)
    pending: deque[ResolvedField] = field(default_factory=deque)
    last_seen: datetime | None = None


class EntityRegistry:
    """
    Arena of EntityState indexed by EntityKey.

    Entities are created lazily when a context first reports a complete key
    and retired after an idle timeout. The registry is owned by a single event
    loop: ingestion and evaluation are synchronous, so they never interleave
    for the same entity.
    """

    def __init__(self, rule: CompiledRule, key_completion_timeout: TimeDelta, max_pending_per_context: int = 1000):
        self.rule = rule
        self.key_completion_timeout = key_completion_timeout
        self.max_pending_per_context = max_pending_per_context

        self._entities: dict[EntityKey, EntityState] = {}
        self._contexts: dict[str, ContextState] = {}
        self._key_names = set(rule.keys)
        self._formula_sources: dict[str, list[str]] = {}
        for spec in rule.definition.fields:
            if spec.formula is not None:
                self._formula_sources.setdefault(spec.formula.field, []).append(spec.name)

        self.discarded = 0

    def remember_attributes(self, sample: Sample) -> None:
        """Record the sample's raw attributes for where filters of later samples."""
        context = self._contexts.setdefault(sample.context, ContextState())
        context.attributes.update(sample.attributes)
        if context.last_seen is None or sample.timestamp > context.last_seen:
            context.last_seen = sample.timestamp

    def known_attributes(self, context: str) -> Mapping[str, Any]:
        state = self._contexts.get(context)
        return state.attributes if state else {}

    def ingest(self, fields: list[ResolvedField]) -> list[EntityKey]:
        """
        Apply resolved fields from one sample.

        Key fields update the context's key; other fields wait in the
        context's pending queue until the key is complete, then are applied
        to the entity.

        Returns:
            Keys of entities created by this call
        """
        created: list[EntityKey] = []
        touched: set[str] = set()

        for resolved in fields:
            context = self._contexts.setdefault(resolved.context, ContextState())
            if context.last_seen is None or resolved.timestamp > context.last_seen:
                context.last_seen = resolved.timestamp
            touched.add(resolved.context)

            if resolved.field_name in self._key_names:
                context.key_values[resolved.field_name] = resolved.value
            else:
                if len(context.pending) >= self.max_pending_per_context:
                    context.pending.popleft()
                    self.discarded += 1
                context.pending.append(resolved)

        for name in touched:
            key = self._flush(name, self._contexts[name])
            if key is not None:
                created.append(key)

        return created

    def _flush(self, name: str, context: ContextState) -> EntityKey | None:
        """Apply the context's pending fields if its key is complete; returns the key if newly created."""
        self._expire_pending(name, context)
        if any(k not in context.key_values for k in self.rule.keys):
            return None

        key = tuple(context.key_values[k] for k in self.rule.keys)
        entity = self._entities.get(key)
        created = entity is None
        if created:
            entity = self._create(key, context.last_seen)

        for k in self.rule.keys:
            entity.latest[k] = context.key_values[k]
        if context.last_seen > entity.last_seen:
            entity.last_seen = context.last_seen

        while context.pending:
            self._apply(entity, context.pending.popleft())

        return key if created else None

    def _expire_pending(self, name: str, context: ContextState) -> None:
        horizon = context.last_seen - self.key_completion_timeout.delta
        while context.pending and context.pending[0].timestamp < horizon:
            dropped = context.pending.popleft()
            self.discarded += 1
            logger.debug(
                f"Discarded '{dropped.field_name}' from context '{name}': key incomplete after "
                f"{self.key_completion_timeout}"
            )

    def _create(self, key: EntityKey, now: datetime) -> EntityState:
        entity = EntityState(key=key, created_at=now, last_seen=now)
        entity.buffers = {name: WindowBuffer(retention) for name, retention in self.rule.retention.items()}
        entity.constants = self.rule.constants
        entity.latest.update(self.rule.constants)
        for spec in self.rule.definition.fields:
            if spec.formula is not None:
                entity.formulas[spec.name] = FormulaState(spec.formula.statistic, spec.formula.time_range)

        self._entities[key] = entity
        logger.debug(f"Created entity {key} for rule '{self.rule.name}'")
        return entity

    def _apply(self, entity: EntityState, resolved: ResolvedField) -> None:
        if resolved.timestamp > entity.last_seen:
            entity.last_seen = resolved.timestamp

        if resolved.suppressed:
            return

        self._store(entity, resolved.field_name, resolved.timestamp, resolved.value)

    def _store(self, entity: EntityState, name: str, timestamp: datetime, value: Any) -> None:
        buffer = entity.buffers.get(name)
        if buffer is None:
            entity.latest[name] = value
            return

        newest = buffer.latest()
        if newest is None or timestamp >= newest[0]:
            entity.latest[name] = value
        if not buffer.append(timestamp, value):
            return

        # formula sources always have a buffer sized for the formula's period
        for derived in self._formula_sources.get(name, []):
            result = entity.formulas[derived].update(timestamp, value, buffer)
            if result is not None:
                self._store(entity, derived, timestamp, result)

    def get(self, key: EntityKey) -> EntityState | None:
        return self._entities.get(key)

    def keys(self) -> list[EntityKey]:
        return list(self._entities)

    def __contains__(self, key: object) -> bool:
        return key in self._entities

    def __len__(self) -> int:
        return len(self._entities)

    def __iter__(self) -> Iterator[EntityState]:
        return iter(list(self._entities.values()))

    @property
    def pending_count(self) -> int:
        return sum(len(c.pending) for c in self._contexts.values())

    def retire_idle(self, now: datetime, idle_timeout: TimeDelta) -> list[EntityKey]:
        """Remove entities and contexts with no samples since ``now - idle_timeout``."""
        horizon = now - idle_timeout.delta
        retired = [key for key, entity in self._entities.items() if entity.last_seen < horizon]
        for key in retired:
            del self._entities[key]

        stale = [name for name, c in self._contexts.items() if c.last_seen is not None and c.last_seen < horizon]
        for name in stale:
            del self._contexts[name]

        if retired:
            logger.info(f"Retired {len(retired)} idle entities from rule '{self.rule.name}'")
        return retired

    def clear(self) -> None:
        self._entities.clear()
        self._contexts.clear()
