"""Ordered term evaluation producing one health status per (entity, trigger)."""

from datetime import datetime
from typing import Any, Mapping

from src.engine.application.aggregator import evaluate_predicate
from src.engine.application.entity_registry import EntityState
from src.engine.application.rule_compiler import MESSAGE_TOKEN, CompiledRule
from src.engine.domain.models import HealthStatus, Term, TriggerSpec


def render_message(template: str, fields: Mapping[str, Any], variables: Mapping[str, Any]) -> str:
    """Substitute ``$name`` / ``${name}`` with entity field values, then variables."""

    def substitute(match) -> str:
        name = match.group(1) or match.group(2)
        if name in fields:
            return str(fields[name])
        if name in variables:
            return str(variables[name])
        return match.group(0)

    return MESSAGE_TOKEN.sub(substitute, template)


class TriggerEvaluator:
    """
    Evaluates a trigger's terms in declaration order for one entity.

    The first term whose predicates all hold wins; a term without predicates
    always matches. Colors are recomputed from buffer contents on every tick,
    except that when no term matches the previous status is carried forward.
    """

    def __init__(self, rule: CompiledRule):
        self.rule = rule

    def select_term(self, trigger: TriggerSpec, entity: EntityState, now: datetime) -> Term | None:
        for term in trigger.terms:
            if all(evaluate_predicate(predicate, entity, now, trigger.frequency) for predicate in term.when):
                return term
        return None

    def evaluate(self, trigger: TriggerSpec, entity: EntityState, now: datetime) -> HealthStatus | None:
        """
        Produce the status for one tick. Only a matched term updates the
        entity's last known status.

        Returns:
            The status to emit, or None if nothing matched and nothing was emitted before
        """
        previous = entity.last_status.get(trigger.name)
        # per (entity, trigger) emission timestamps never go backwards
        evaluated_at = max(now, previous.evaluated_at) if previous is not None else now

        term = self.select_term(trigger, entity, now)

        if term is None:
            if previous is None:
                return None
            return HealthStatus(
                rule_name=self.rule.name,
                entity_key=entity.key,
                trigger_name=trigger.name,
                color=previous.color,
                message=previous.message,
                evaluated_at=evaluated_at,
                term=previous.term,
                carried_forward=True,
            )

        status = HealthStatus(
            rule_name=self.rule.name,
            entity_key=entity.key,
            trigger_name=trigger.name,
            color=term.then.color,
            message=render_message(term.then.message, entity.latest, self.rule.variables.values),
            evaluated_at=evaluated_at,
            term=term.name,
        )
        entity.last_status[trigger.name] = status
        return status
