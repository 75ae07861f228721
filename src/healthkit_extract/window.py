from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional, Union

from .records import to_datetime


@dataclass(frozen=True, slots=True)
class RetentionPeriod:
    """Maximum age of a record relative to "now". Years are calendar years."""
    days: int = 0
    years: int = 0

    def __post_init__(self):
        if self.days < 0 or self.years < 0:
            raise ValueError("retention period cannot be negative")

    def cutoff(self, now: datetime) -> datetime:
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        cutoff = now - timedelta(days=self.days)
        if self.years:
            year = cutoff.year - self.years
            try:
                cutoff = cutoff.replace(year=year)
            except ValueError:
                # 29 February in a non-leap target year
                cutoff = cutoff.replace(year=year, day=28)
        return cutoff

    def describe(self) -> str:
        parts = []
        if self.years:
            parts.append(f"{self.years}y")
        if self.days or not parts:
            parts.append(f"{self.days}d")
        return " ".join(parts)


def passes_window(start: Optional[Union[str, datetime]], cutoff: datetime) -> bool:
    """Inclusive cutoff check; unparseable start dates never pass."""
    start_dt = to_datetime(start)
    if start_dt is None:
        return False
    return start_dt >= cutoff
