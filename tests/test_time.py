from datetime import timedelta

import pytest
from pydantic import ValidationError

from src.engine.domain.models import TriggerSpec
from src.engine.domain.time import TimeDelta


def test_parses_compound_durations():
    assert TimeDelta("1h30m").total_seconds() == 5400
    assert TimeDelta("500ms").delta == timedelta(milliseconds=500)
    assert TimeDelta("2d").delta == timedelta(days=2)
    assert TimeDelta("0").delta == timedelta()


def test_accepts_numbers_and_timedeltas():
    assert TimeDelta(90).delta == timedelta(seconds=90)
    assert TimeDelta(timedelta(minutes=3)) == TimeDelta("3m")


def test_rejects_garbage():
    with pytest.raises(ValueError):
        TimeDelta("5x")
    with pytest.raises(ValueError):
        TimeDelta("5m and then some")


def test_string_form_round_trips_units():
    assert str(TimeDelta("90s")) == "1m30s"
    assert str(TimeDelta("1500ms")) == "1s500ms"
    assert str(TimeDelta("0")) == "0"


def test_validates_inside_models():
    trigger = TriggerSpec.model_validate(
        {"name": "t", "frequency": "60s", "terms": [{"then": {"color": "green"}}]}
    )
    assert trigger.frequency == TimeDelta("1m")

    with pytest.raises(ValidationError):
        TriggerSpec.model_validate({"name": "t", "frequency": "0", "terms": [{"then": {"color": "green"}}]})
