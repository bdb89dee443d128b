"""Main RuleEngine application service: ingestion, scheduling and evaluation."""

import asyncio
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Mapping

import pandas as pd
from loguru import logger

from src.engine.application.entity_registry import EntityRegistry
from src.engine.application.field_resolver import FieldResolver
from src.engine.application.rule_compiler import RuleCompiler
from src.engine.application.trigger_evaluator import TriggerEvaluator
from src.engine.domain.models import EntityKey, HealthStatus, RuleDefinition, Sample, TriggerSpec
from src.engine.domain.protocols import SampleFeed, StatusSink
from src.engine.infrastructure.logging import LoggingContext
from src.engine.infrastructure.rule_loader import parse_rule
from src.engine.infrastructure.sample_feed import samples_from_dataframe
from src.engine.infrastructure.status_sink import InMemoryStatusSink

if TYPE_CHECKING:
    from src.config import EngineConfig


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RuleEngine:
    """
    Evaluates one activated rule instance against a stream of telemetry samples.

    Samples flow through the field resolver into the entity registry. Every
    (trigger, entity) pair gets its own scheduling task that evaluates the
    trigger at its frequency and emits a HealthStatus to the status sink.
    """

    def __init__(
        self,
        rule: RuleDefinition | dict[str, Any],
        overrides: Mapping[str, Any] | None = None,
        config: "EngineConfig | None" = None,
        status_sink: StatusSink | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        """
        Activate a rule instance.

        Args:
            rule: Rule definition or raw rule document
            overrides: Per-instance variable overrides
            config: Engine operational parameters
            status_sink: Where statuses are emitted (defaults to in-memory)
            clock: Source of evaluation time for scheduled ticks

        Raises:
            RuleLoadError: if the rule cannot activate
        """
        if config is None:
            from src.config import EngineConfig

            config = EngineConfig()

        self.config = config
        self.status_sink = status_sink or InMemoryStatusSink()
        self._clock = clock or _utcnow

        definition = parse_rule(rule)
        self.rule = RuleCompiler(config.default_retention).compile(definition, overrides)

        self.resolver = FieldResolver(self.rule)
        self.registry = EntityRegistry(
            self.rule,
            key_completion_timeout=config.key_completion_timeout,
            max_pending_per_context=config.max_pending_per_context,
        )
        self.evaluator = TriggerEvaluator(self.rule)

        self._tasks: dict[tuple[str, EntityKey], asyncio.Task] = {}
        self._janitor: asyncio.Task | None = None
        self._running = False
        self._emitted = 0
        self._samples = 0

        logger.info(
            f"Activated rule '{self.rule.name}' with {len(self.rule.triggers)} triggers, "
            f"keys={list(self.rule.keys)}"
        )

    @property
    def name(self) -> str:
        return self.rule.name

    def ingest(self, sample: Sample) -> list[EntityKey]:
        """
        Route one sample into per-entity state.

        Returns:
            Keys of entities created by this sample
        """
        self._samples += 1
        with LoggingContext(rule=self.rule.name):
            resolved = self.resolver.resolve(sample, self.registry.known_attributes(sample.context))
            self.registry.remember_attributes(sample)
            created = self.registry.ingest(resolved) if resolved else []

        if self._running:
            for key in created:
                self._schedule(key)
        return created

    def evaluate(self, key: EntityKey, now: datetime | None = None) -> list[HealthStatus]:
        """Run one tick of every trigger for one entity and emit the results."""
        now = now or self._clock()
        statuses = [self._tick(trigger, key, now) for trigger in self.rule.triggers]
        return [status for status in statuses if status is not None]

    def evaluate_all(self, now: datetime | None = None) -> list[HealthStatus]:
        """Run one tick of every trigger for every entity."""
        now = now or self._clock()
        statuses = []
        for key in self.registry.keys():
            statuses.extend(self.evaluate(key, now))
        return statuses

    def _tick(self, trigger: TriggerSpec, key: EntityKey, now: datetime) -> HealthStatus | None:
        entity = self.registry.get(key)
        if entity is None:
            return None

        with LoggingContext(rule=self.rule.name, trigger=trigger.name, entity=key):
            try:
                status = self.evaluator.evaluate(trigger, entity, now)
            except Exception as e:
                logger.error(f"Error evaluating trigger '{trigger.name}' for {key} at {now}: {e}")
                return None

            if status is None:
                return None

            self.status_sink.write_status(status)
            self._emitted += 1
            logger.debug(f"{trigger.name} -> {status.color.value}: {status.message}")
            return status

    def retire_idle(self, now: datetime | None = None) -> list[EntityKey]:
        """Retire entities idle for longer than the configured timeout and stop their tasks."""
        retired = self.registry.retire_idle(now or self._clock(), self.config.idle_timeout)
        for key in retired:
            for trigger in self.rule.triggers:
                task = self._tasks.pop((trigger.name, key), None)
                if task is not None:
                    task.cancel()
        return retired

    def start(self) -> None:
        """Start scheduling contexts for known entities and the retirement janitor."""
        if self._running:
            return
        self._running = True
        for key in self.registry.keys():
            self._schedule(key)
        self._janitor = asyncio.create_task(self._janitor_loop(), name=f"{self.rule.name}:janitor")

    async def run(self, feed: SampleFeed) -> None:
        """
        Consume the feed until it is exhausted.

        Scheduling contexts keep running after the feed ends; call
        ``deactivate()`` to stop them.
        """
        self.start()
        async for sample in feed:
            self.ingest(sample)
        logger.info(f"Feed exhausted for rule '{self.rule.name}' after {self._samples} samples")

    async def deactivate(self) -> None:
        """Tear down all scheduling contexts and release entity state."""
        self._running = False
        tasks = list(self._tasks.values())
        if self._janitor is not None:
            tasks.append(self._janitor)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        self._tasks.clear()
        self._janitor = None
        self.registry.clear()

        flush = getattr(self.status_sink, "flush", None)
        if callable(flush):
            flush()

        logger.info(f"Deactivated rule '{self.rule.name}' ({len(tasks)} tasks stopped)")

    def _schedule(self, key: EntityKey) -> None:
        for trigger in self.rule.triggers:
            task_key = (trigger.name, key)
            if task_key not in self._tasks:
                self._tasks[task_key] = asyncio.create_task(
                    self._trigger_loop(trigger, key), name=f"{self.rule.name}:{trigger.name}:{key}"
                )

    async def _trigger_loop(self, trigger: TriggerSpec, key: EntityKey) -> None:
        interval = trigger.frequency.total_seconds()
        try:
            while key in self.registry:
                await asyncio.sleep(interval)
                self._tick(trigger, key, self._clock())
        finally:
            if self._tasks.get((trigger.name, key)) is asyncio.current_task():
                del self._tasks[(trigger.name, key)]

    async def _janitor_loop(self) -> None:
        interval = self.config.retirement_interval.total_seconds()
        while True:
            await asyncio.sleep(interval)
            self.retire_idle()

    def replay_dataframe(self, df: pd.DataFrame) -> pd.DataFrame:
        """
        Deterministic single pass over recorded samples.

        Triggers tick at their frequency on sample time, starting at the first
        sample. A tick sees every sample stamped at or before it.

        Args:
            df: Long-format DataFrame with ``timestamp``, ``sensor_path``,
                optional ``context`` and one column per attribute

        Returns:
            Status DataFrame from the status sink
        """
        samples = samples_from_dataframe(df)
        logger.info(f"Replaying {len(samples)} samples through rule '{self.rule.name}'...")
        if not samples:
            return self.status_sink.to_dataframe()

        schedule = {trigger.name: samples[0].timestamp for trigger in self.rule.triggers}
        for sample in samples:
            self._run_due_ticks(schedule, sample.timestamp, inclusive=False)
            self.ingest(sample)
        self._run_due_ticks(schedule, samples[-1].timestamp, inclusive=True)

        logger.info(f"✓ Replay complete: {self._emitted} statuses emitted")
        return self.status_sink.to_dataframe()

    def _run_due_ticks(self, schedule: dict[str, datetime], until: datetime, inclusive: bool) -> None:
        for trigger in self.rule.triggers:
            due = schedule[trigger.name]
            while due < until or (inclusive and due == until):
                self.retire_idle(due)
                for key in self.registry.keys():
                    self._tick(trigger, key, due)
                due += trigger.frequency.delta
            schedule[trigger.name] = due

    def get_statistics(self) -> dict:
        """Get statistics about engine state."""
        return {
            "rule_name": self.rule.name,
            "num_entities": len(self.registry),
            "num_tasks": len(self._tasks),
            "pending_fields": self.registry.pending_count,
            "samples_ingested": self._samples,
            "samples_dropped": self.resolver.dropped,
            "statuses_emitted": self._emitted,
        }


async def create_engine_from_file(
    path: str | Path,
    rule_name: str | None = None,
    overrides: Mapping[str, Any] | None = None,
    config: "EngineConfig | None" = None,
    status_sink: StatusSink | None = None,
) -> RuleEngine:
    """
    Convenience function to activate a rule from a JSON rule file.

    Args:
        path: JSON file with one rule or a list of rules
        rule_name: Which rule to activate (required if the file holds several)
        overrides: Per-instance variable overrides
        config: Engine configuration
        status_sink: Where to emit statuses

    Returns:
        Activated RuleEngine
    """
    from src.engine.infrastructure.rule_loader import JsonRuleLoader

    loader = JsonRuleLoader(path)
    rules = await loader.load_rules(names=[rule_name] if rule_name else None)
    if len(rules) != 1:
        raise ValueError(f"Expected exactly one rule in {path}, found {len(rules)}; pass rule_name")

    return RuleEngine(rules[0], overrides=overrides, config=config, status_sink=status_sink)
