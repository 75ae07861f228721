"""Per-metric extraction settings.

Retention windows differ per metric: interactive charts look at the last
month, body-composition charts span years.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, FrozenSet, List, Optional

from .aggregators import (
    SLEEP_TYPE,
    DailySumAggregator,
    IntervalAggregator,
    MetricAggregator,
    PointAggregator,
    WorkoutAggregator,
    fraction_to_percent,
    identity,
    require_unit,
    to_kilograms,
)
from .exceptions import UnknownMetricError
from .records import RECORD_LAYOUT, WORKOUT_LAYOUT, RecordLayout
from .window import RetentionPeriod

HEART_RATE_TYPE = "HKQuantityTypeIdentifierHeartRate"
BODY_MASS_TYPE = "HKQuantityTypeIdentifierBodyMass"
BODY_FAT_TYPE = "HKQuantityTypeIdentifierBodyFatPercentage"
HRV_TYPE = "HKQuantityTypeIdentifierHeartRateVariabilitySDNN"
STEP_COUNT_TYPE = "HKQuantityTypeIdentifierStepCount"
VO2MAX_TYPE = "HKQuantityTypeIdentifierVO2Max"


@dataclass(frozen=True, slots=True)
class MetricSpec:
    name: str
    targets: Optional[FrozenSet[str]]
    retention: RetentionPeriod
    make_aggregator: Callable[[], MetricAggregator] = field(repr=False)
    unit: str
    descending: bool = False
    fallback_value: float = 0.0
    layout: RecordLayout = RECORD_LAYOUT

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "recordTypes": sorted(self.targets) if self.targets else [],
            "element": self.layout.tag,
            "retention": self.retention.describe(),
            "unit": self.unit,
            "order": "descending" if self.descending else "ascending",
        }


HEART_RATE = MetricSpec(
    name="heartRate",
    targets=frozenset({HEART_RATE_TYPE}),
    retention=RetentionPeriod(days=30),
    make_aggregator=lambda: PointAggregator(require_unit("count/min"), keep_times=True),
    unit="count/min",
)

WEIGHT = MetricSpec(
    name="weight",
    targets=frozenset({BODY_MASS_TYPE}),
    retention=RetentionPeriod(years=4),
    make_aggregator=lambda: PointAggregator(to_kilograms, keep_times=True),
    unit="kg",
    descending=True,
    fallback_value=70.0,
)

BODY_FAT = MetricSpec(
    name="bodyFat",
    targets=frozenset({BODY_FAT_TYPE}),
    retention=RetentionPeriod(years=4),
    make_aggregator=lambda: PointAggregator(fraction_to_percent),
    unit="%",
    descending=True,
)

SLEEP = MetricSpec(
    name="sleep",
    targets=frozenset({SLEEP_TYPE}),
    retention=RetentionPeriod(days=30),
    make_aggregator=IntervalAggregator,
    unit="hr",
)

HRV = MetricSpec(
    name="hrv",
    targets=frozenset({HRV_TYPE}),
    retention=RetentionPeriod(years=1),
    make_aggregator=lambda: PointAggregator(identity),
    unit="ms",
)

VO2MAX = MetricSpec(
    name="vo2max",
    targets=frozenset({VO2MAX_TYPE}),
    retention=RetentionPeriod(years=4),
    make_aggregator=lambda: PointAggregator(identity),
    unit="mL/min·kg",
)

STEPS = MetricSpec(
    name="steps",
    targets=frozenset({STEP_COUNT_TYPE}),
    retention=RetentionPeriod(days=7),
    make_aggregator=DailySumAggregator,
    unit="count",
)

WORKOUTS = MetricSpec(
    name="workouts",
    targets=None,
    retention=RetentionPeriod(years=1),
    make_aggregator=WorkoutAggregator,
    unit="min",
    layout=WORKOUT_LAYOUT,
)

METRICS: Dict[str, MetricSpec] = {
    m.name: m for m in (HEART_RATE, WEIGHT, BODY_FAT, SLEEP, HRV, VO2MAX, STEPS, WORKOUTS)
}

# Upload flow runs these, in this order.
DEFAULT_METRICS: List[str] = ["heartRate", "weight", "bodyFat", "sleep", "hrv", "workouts"]


def get_metric(name: str) -> MetricSpec:
    """Look up a metric by name, case-insensitively (``heartrate`` == ``heartRate``)."""
    if name in METRICS:
        return METRICS[name]
    lowered = name.lower()
    for key, spec in METRICS.items():
        if key.lower() == lowered:
            return spec
    raise UnknownMetricError(name)
