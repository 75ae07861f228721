import math
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Callable, Collection, Dict, FrozenSet, List, Optional, Tuple

from .exceptions import MalformedRecordError
from .records import RawRecord, to_datetime, to_iso_utc

SLEEP_TYPE = "HKCategoryTypeIdentifierSleepAnalysis"
ASLEEP_VALUES: FrozenSet[str] = frozenset({
    "HKCategoryValueSleepAnalysisAsleep",
    "HKCategoryValueSleepAnalysisAsleepUnspecified",
    "HKCategoryValueSleepAnalysisAsleepCore",
    "HKCategoryValueSleepAnalysisAsleepDeep",
    "HKCategoryValueSleepAnalysisAsleepREM",
})

LB_TO_KG = 0.45359237

# (value, unit) -> (value, unit), applied once per record before aggregation.
ValueTransform = Callable[[float, str], Tuple[float, str]]


@dataclass(frozen=True, slots=True)
class DataPoint:
    """One normalized observation in an output series."""
    date: str
    value: float
    source_name: str
    unit: str
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    activity_type: Optional[str] = None

    def __post_init__(self):
        if not math.isfinite(self.value):
            raise ValueError(f"DataPoint value must be finite, got {self.value!r}")

    @property
    def sort_key(self) -> Tuple[str, str]:
        return (self.start_time or self.date, self.date)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "date": self.date,
            "value": self.value,
            "sourceName": self.source_name,
            "unit": self.unit,
        }
        if self.start_time is not None:
            out["startTime"] = self.start_time
        if self.end_time is not None:
            out["endTime"] = self.end_time
        if self.activity_type is not None:
            out["activityType"] = self.activity_type
        return out

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DataPoint":
        if not isinstance(data, dict):
            raise TypeError("from_dict expects a dict")
        try:
            day, value = data["date"], float(data["value"])
        except KeyError as e:
            raise ValueError(f"missing field {e.args[0]!r}") from e
        return cls(
            date=day,
            value=value,
            source_name=data.get("sourceName", ""),
            unit=data.get("unit", ""),
            start_time=data.get("startTime"),
            end_time=data.get("endTime"),
            activity_type=data.get("activityType"),
        )


def parse_value(raw: str) -> float:
    try:
        value = float(raw)
    except (TypeError, ValueError) as e:
        raise MalformedRecordError(f"unparseable value {raw!r}") from e
    if not math.isfinite(value):
        raise MalformedRecordError(f"non-finite value {raw!r}")
    return value


# === Value transforms ===

def identity(value: float, unit: str) -> Tuple[float, str]:
    return value, unit


def fraction_to_percent(value: float, unit: str) -> Tuple[float, str]:
    """Body fat is exported as a fraction (unit '%', value 0.223)."""
    return round(value * 100, 2), "%"


def to_kilograms(value: float, unit: str) -> Tuple[float, str]:
    u = unit.strip().lower()
    if u in ("kg", ""):
        return value, "kg"
    if u in ("lb", "lbs"):
        return round(value * LB_TO_KG, 2), "kg"
    if u == "g":
        return value / 1000, "kg"
    raise MalformedRecordError(f"unsupported mass unit {unit!r}")


def require_unit(expected: str) -> ValueTransform:
    """Reject records whose unit differs from ``expected``."""
    def _check(value: float, unit: str) -> Tuple[float, str]:
        if unit != expected:
            raise MalformedRecordError(f"unexpected unit {unit!r}, wanted {expected!r}")
        return value, unit
    return _check


# === Aggregators ===

class MetricAggregator:
    """Reduces qualifying records into DataPoints.

    ``add`` returns True when the record contributed, False when it was
    legitimately ignored, and raises MalformedRecordError when unusable.
    """

    def __init__(self, transform: ValueTransform = identity):
        self.transform = transform

    def add(self, record: RawRecord, start: datetime) -> bool:
        raise NotImplementedError

    def points(self) -> List[DataPoint]:
        raise NotImplementedError

    def _value(self, record: RawRecord) -> Tuple[float, str]:
        value, unit = self.transform(parse_value(record.value), record.unit)
        if not math.isfinite(value):
            raise MalformedRecordError(f"non-finite value after conversion: {value!r}")
        return value, unit


class PointAggregator(MetricAggregator):
    """Every qualifying record becomes its own point."""

    def __init__(self, transform: ValueTransform = identity, keep_times: bool = False):
        super().__init__(transform)
        self.keep_times = keep_times
        self._points: List[DataPoint] = []

    def add(self, record: RawRecord, start: datetime) -> bool:
        value, unit = self._value(record)
        start_time = end_time = None
        if self.keep_times:
            end = to_datetime(record.end_date) or start
            start_time, end_time = to_iso_utc(start), to_iso_utc(end)
        self._points.append(DataPoint(
            date=start.date().isoformat(),
            value=value,
            source_name=record.source_name,
            unit=unit,
            start_time=start_time,
            end_time=end_time,
        ))
        return True

    def points(self) -> List[DataPoint]:
        return list(self._points)


class DailySumAggregator(MetricAggregator):
    """Same-day records are summed into one point per calendar day."""

    def __init__(self, transform: ValueTransform = identity):
        super().__init__(transform)
        self._by_day: Dict[str, DataPoint] = {}

    def add(self, record: RawRecord, start: datetime) -> bool:
        value, unit = self._value(record)
        day = start.date().isoformat()
        existing = self._by_day.get(day)
        if existing is None:
            self._by_day[day] = DataPoint(
                date=day, value=value, source_name=record.source_name, unit=unit,
            )
        else:
            total = existing.value + value
            if not math.isfinite(total):
                raise MalformedRecordError(f"daily total for {day} overflows: {existing.value!r} + {value!r}")
            self._by_day[day] = replace(existing, value=total)
        return True

    def points(self) -> List[DataPoint]:
        return list(self._by_day.values())


class IntervalAggregator(MetricAggregator):
    """Sleep: each "asleep" interval becomes a point of its duration in hours."""

    def __init__(self, asleep_values: Collection[str] = ASLEEP_VALUES):
        super().__init__()
        self.asleep_values = frozenset(asleep_values)
        self._points: List[DataPoint] = []

    def add(self, record: RawRecord, start: datetime) -> bool:
        if record.value not in self.asleep_values:
            return False
        end = to_datetime(record.end_date)
        if end is None:
            raise MalformedRecordError("interval without a parseable endDate")
        if end < start:
            raise MalformedRecordError(f"endDate {record.end_date} before startDate {record.start_date}")
        if end == start:
            return False
        hours = (end - start).total_seconds() / 3600
        self._points.append(DataPoint(
            date=start.date().isoformat(),
            value=hours,
            source_name=record.source_name,
            unit="hr",
            start_time=to_iso_utc(start),
            end_time=to_iso_utc(end),
        ))
        return True

    def points(self) -> List[DataPoint]:
        return list(self._points)


class WorkoutAggregator(PointAggregator):
    """One point per workout: its duration, tagged with the activity type."""

    def __init__(self):
        super().__init__(keep_times=True)

    def add(self, record: RawRecord, start: datetime) -> bool:
        super().add(record, start)
        point = self._points[-1]
        self._points[-1] = replace(
            point,
            unit=point.unit or "min",
            activity_type=record.record_type,
        )
        return True
