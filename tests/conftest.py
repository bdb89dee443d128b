import pytest

from src.config import EngineConfig
from tests.helpers import SENSOR


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def engine_config():
    return EngineConfig(
        idle_timeout="10m",
        key_completion_timeout="30s",
        retirement_interval="1m",
        default_retention="5m",
    )


@pytest.fixture
def interface_rule() -> dict:
    """Sub-interface input error rule: sustained -> red, intermittent -> yellow, else green."""
    return {
        "name": "check-in-errors",
        "description": "Monitors input errors per sub-interface",
        "keys": ["interface-name", "sub-interface-index"],
        "variables": [
            {"name": "in-error-threshold", "value": 1, "type": "integer"},
            {"name": "interface-pattern", "value": "ge-.*", "type": "string"},
        ],
        "fields": [
            {"name": "interface-name", "sensor-path": SENSOR, "path": "name", "type": "string"},
            {"name": "sub-interface-index", "sensor-path": SENSOR, "path": "index", "type": "integer"},
            {
                "name": "in-errors-count",
                "sensor-path": SENSOR,
                "path": "in-errors",
                "type": "integer",
                "zero-suppression": True,
                "where": {"path": "name", "matches": "$interface-pattern"},
            },
        ],
        "triggers": [
            {
                "name": "in-errors",
                "frequency": "60s",
                "terms": [
                    {
                        "name": "sustained",
                        "when": [
                            {
                                "kind": "increasing-at-least-by-value",
                                "field": "in-errors-count",
                                "value": "$in-error-threshold",
                                "time-range": "180s",
                            }
                        ],
                        "then": {
                            "color": "red",
                            "message": "$interface-name.$sub-interface-index in-errors increasing ($in-errors-count)",
                        },
                    },
                    {
                        "name": "intermittent",
                        "when": [
                            {
                                "kind": "increasing-at-least-by-value",
                                "field": "in-errors-count",
                                "value": "$in-error-threshold",
                            }
                        ],
                        "then": {"color": "yellow", "message": "$interface-name intermittent in-errors"},
                    },
                    {"name": "normal", "then": {"color": "green", "message": "$interface-name in-errors stable"}},
                ],
            }
        ],
    }
