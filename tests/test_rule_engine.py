import asyncio
import copy
import json

import pandas as pd
import pytest

from src.engine.application.aggregator import evaluate_predicate
from src.engine.application.rule_engine import RuleEngine, create_engine_from_file
from src.engine.domain.exceptions import RuleLoadError, VariableTypeError
from src.engine.domain.models import Color
from src.engine.infrastructure.sample_feed import IterableSampleFeed, QueueSampleFeed
from tests.helpers import SENSOR, at, interface_sample

KEY = ("ge-0/0/0", 0)


def feed_series(engine, values, index=0, context=""):
    for i, errors in enumerate(values):
        engine.ingest(interface_sample(i * 60, errors, index=index, context=context))


@pytest.fixture
def engine(interface_rule, engine_config):
    return RuleEngine(interface_rule, config=engine_config)


def test_sustained_anomaly_is_red(engine):
    feed_series(engine, [10, 12, 15, 19])
    [status] = engine.evaluate(KEY, now=at(180))
    assert status.color == Color.RED
    assert status.message == "ge-0/0/0.0 in-errors increasing (19)"
    assert status.entity_key == KEY
    assert status.trigger_name == "in-errors"
    assert status.evaluated_at == at(180)


def test_intermittent_anomaly_is_yellow(engine):
    feed_series(engine, [10, 10, 10, 12])
    [status] = engine.evaluate(KEY, now=at(180))
    assert status.color == Color.YELLOW
    assert status.term == "intermittent"


def test_stable_counter_is_green(engine):
    feed_series(engine, [10, 10, 10, 10])
    [status] = engine.evaluate(KEY, now=at(180))
    assert status.color == Color.GREEN
    assert status.message == "ge-0/0/0 in-errors stable"


def test_zero_suppressed_sample_changes_nothing(engine):
    feed_series(engine, [10, 12])
    entity = engine.registry.get(KEY)
    loose = engine.rule.triggers[0].terms[1].when[0]
    frequency = engine.rule.triggers[0].frequency
    before = (len(entity.buffers["in-errors-count"]), evaluate_predicate(loose, entity, at(120), frequency))

    engine.ingest(interface_sample(120, 0))

    after = (len(entity.buffers["in-errors-count"]), evaluate_predicate(loose, entity, at(120), frequency))
    assert after == before


def test_sub_interfaces_are_independent_entities(engine):
    for i, (first, second) in enumerate(zip([10, 12, 15, 19], [10, 10, 10, 10])):
        engine.ingest(interface_sample(i * 60, first, index=0, context="r1"))
        engine.ingest(interface_sample(i * 60, second, index=1, context="r1"))

    statuses = {s.entity_key: s.color for s in engine.evaluate_all(now=at(180))}
    assert statuses == {("ge-0/0/0", 0): Color.RED, ("ge-0/0/0", 1): Color.GREEN}


def test_status_reverts_after_window_passes(engine):
    feed_series(engine, [10, 12, 15, 19])
    assert engine.evaluate(KEY, now=at(180))[0].color == Color.RED
    assert engine.evaluate(KEY, now=at(180 + 181))[0].color == Color.GREEN


def test_overrides_change_thresholds(interface_rule, engine_config):
    engine = RuleEngine(interface_rule, overrides={"in-error-threshold": 4}, config=engine_config)
    feed_series(engine, [10, 12, 15, 19])
    # deltas 3, 4 inside the range: not all reach 4, one does
    assert engine.evaluate(KEY, now=at(180))[0].color == Color.YELLOW


def test_sustained_range_ignores_sample_exactly_range_old(engine):
    for seconds, errors in ((60, 10), (120, 10), (180, 12), (240, 14)):
        engine.ingest(interface_sample(seconds, errors))
    assert engine.evaluate(KEY, now=at(240))[0].color == Color.RED


def test_static_compare_on_constant_field(interface_rule, engine_config):
    rule = copy.deepcopy(interface_rule)
    rule["variables"].append({"name": "maintenance", "value": "yes", "type": "string"})
    rule["fields"].append({"name": "in-maintenance", "type": "string", "constant": "$maintenance"})
    rule["triggers"][0]["terms"].insert(
        0,
        {
            "name": "maintenance",
            "when": [{"kind": "static-compare", "field": "in-maintenance", "operator": "==", "value": "yes"}],
            "then": {"color": "green", "message": "$interface-name under maintenance"},
        },
    )

    engine = RuleEngine(rule, config=engine_config)
    assert "in-maintenance" not in engine.rule.retention
    feed_series(engine, [10, 12, 15, 19])
    [status] = engine.evaluate(KEY, now=at(180))
    assert status.term == "maintenance"
    assert status.message == "ge-0/0/0 under maintenance"

    quiet = RuleEngine(rule, overrides={"maintenance": "no"}, config=engine_config)
    feed_series(quiet, [10, 12, 15, 19])
    assert quiet.evaluate(KEY, now=at(180))[0].color == Color.RED


def test_bad_override_prevents_activation(interface_rule, engine_config):
    with pytest.raises(VariableTypeError):
        RuleEngine(interface_rule, overrides={"in-error-threshold": 2.5}, config=engine_config)


def test_evaluation_failure_is_isolated(engine, monkeypatch):
    feed_series(engine, [10, 12])

    def explode(*args, **kwargs):
        raise RuntimeError("boom")

    monkeypatch.setattr(engine.evaluator, "evaluate", explode)
    assert engine.evaluate(KEY, now=at(60)) == []
    assert len(engine.status_sink) == 0


def test_retire_idle_releases_entity(engine):
    feed_series(engine, [10, 12])
    assert engine.retire_idle(now=at(60 + 601)) == [KEY]
    assert engine.evaluate_all(now=at(700)) == []
    assert engine.get_statistics()["num_entities"] == 0


def test_replay_dataframe_ticks_on_sample_time(engine):
    rows = []
    for i, (first, second) in enumerate(zip([10, 12, 15, 19], [10, 10, 10, 12])):
        for index, errors in ((0, first), (1, second)):
            rows.append(
                {
                    "timestamp": at(i * 60),
                    "sensor_path": SENSOR,
                    "context": f"ge-0/0/0.{index}",
                    "name": "ge-0/0/0",
                    "index": index,
                    "in-errors": errors,
                }
            )

    df = engine.replay_dataframe(pd.DataFrame(rows))

    # ticks at 0, 60, 120 and 180 seconds for each of the two entities
    assert len(df) == 8
    latest = engine.status_sink.latest()
    assert latest[(("ge-0/0/0", 0), "in-errors")].color == Color.RED
    assert latest[(("ge-0/0/0", 1), "in-errors")].color == Color.YELLOW
    assert set(df["color"]) <= {"red", "yellow", "green"}


def test_statistics(engine):
    feed_series(engine, [10, "bad"])
    engine.evaluate_all(now=at(60))
    stats = engine.get_statistics()
    assert stats["rule_name"] == "check-in-errors"
    assert stats["num_entities"] == 1
    assert stats["samples_ingested"] == 2
    assert stats["samples_dropped"] == 1
    assert stats["statuses_emitted"] == 1


def fast_rule(interface_rule):
    rule = copy.deepcopy(interface_rule)
    rule["triggers"][0]["frequency"] = "20ms"
    return rule


@pytest.mark.anyio
async def test_run_schedules_one_context_per_trigger_and_entity(interface_rule, engine_config):
    engine = RuleEngine(fast_rule(interface_rule), config=engine_config, clock=lambda: at(180))

    feed = QueueSampleFeed()
    for i, (first, second) in enumerate(zip([10, 12, 15, 19], [10, 10, 10, 10])):
        await feed.put(interface_sample(i * 60, first, index=0))
        await feed.put(interface_sample(i * 60, second, index=1))
    await feed.close()

    await engine.run(feed)
    assert engine.get_statistics()["num_tasks"] == 2

    await asyncio.sleep(0.15)
    await engine.deactivate()

    latest = engine.status_sink.latest()
    assert latest[(("ge-0/0/0", 0), "in-errors")].color == Color.RED
    assert latest[(("ge-0/0/0", 1), "in-errors")].color == Color.GREEN
    assert len(engine.registry) == 0
    assert engine.get_statistics()["num_tasks"] == 0


@pytest.mark.anyio
async def test_statuses_monotonic_per_entity_and_trigger(interface_rule, engine_config):
    ticks = iter(at(180 + i) for i in range(1000))
    engine = RuleEngine(fast_rule(interface_rule), config=engine_config, clock=lambda: next(ticks))

    await engine.run(IterableSampleFeed([interface_sample(i * 60, v) for i, v in enumerate([10, 12, 15, 19])]))
    await asyncio.sleep(0.1)
    await engine.deactivate()

    stamps = [s.evaluated_at for s in engine.status_sink.statuses]
    assert stamps
    assert stamps == sorted(stamps)


@pytest.mark.anyio
async def test_create_engine_from_file(tmp_path, interface_rule, engine_config):
    path = tmp_path / "rules.json"
    path.write_text(json.dumps([interface_rule]))

    engine = await create_engine_from_file(path, rule_name="check-in-errors", config=engine_config)
    assert engine.name == "check-in-errors"

    with pytest.raises(ValueError):
        await create_engine_from_file(path, rule_name="missing", config=engine_config)


def test_malformed_rule_does_not_activate(engine_config):
    with pytest.raises(RuleLoadError):
        RuleEngine({"name": "broken", "keys": []}, config=engine_config)
