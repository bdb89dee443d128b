from datetime import datetime, timedelta, timezone

from src.engine.domain.models import Sample

T0 = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
SENSOR = "/interfaces/interface/subinterfaces/subinterface/"


def at(seconds: float) -> datetime:
    return T0 + timedelta(seconds=seconds)


def interface_sample(seconds: float, errors, name: str = "ge-0/0/0", index: int = 0, context: str = "") -> Sample:
    return Sample(
        sensor_path=SENSOR,
        timestamp=at(seconds),
        attributes={"name": name, "index": index, "in-errors": errors},
        context=context or f"{name}.{index}",
    )
