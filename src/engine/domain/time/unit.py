import re
from enum import StrEnum


class TimeUnit(StrEnum):
    ms = "ms"  # milliseconds
    s = "s"
    m = "m"
    h = "h"
    d = "d"

    @classmethod
    def get_regex_pattern(cls) -> str:
        # "ms" must be tried before "m"
        return "|".join(re.escape(unit.value) for unit in sorted(cls, key=len, reverse=True))
