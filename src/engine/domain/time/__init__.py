from src.engine.domain.time.delta import TimeDelta
from src.engine.domain.time.statistic import Statistic
from src.engine.domain.time.unit import TimeUnit

__all__ = ["TimeDelta", "TimeUnit", "Statistic"]
