from enum import StrEnum


class Statistic(StrEnum):
    """Statistical aggregation functions available to formula fields."""

    MEAN = "mean"
    SUM = "sum"
    MAX = "max"
    MIN = "min"
    STD = "std"
    VARIANCE = "variance"

    @classmethod
    def rolling_statistics(cls) -> set["Statistic"]:
        """Statistics maintained incrementally rather than read from the window."""
        return {cls.MEAN, cls.SUM, cls.STD, cls.VARIANCE}
