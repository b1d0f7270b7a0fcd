"""Pydantic schemas for health metric observations."""

from datetime import datetime
from enum import Enum
from typing import Any, NamedTuple

from pydantic import BaseModel, ConfigDict, Field, model_validator


class MetricType(str, Enum):
    """Kinds of physiological observation."""

    HEART_RATE = "heart_rate"
    STEPS = "steps"
    SLEEP = "sleep"
    GLUCOSE = "glucose"
    HRV = "hrv"


class MetricSource(str, Enum):
    """Where an observation came from."""

    WEARABLE = "wearable"
    CGM = "cgm"
    MOCK = "mock"  # Synthesized on a fallback path, never persisted
    CALCULATED = "calculated"


class GlucoseTrend(str, Enum):
    """Direction label attached to CGM readings."""

    RISING = "rising"
    STABLE = "stable"
    FALLING = "falling"


class MetricRange(NamedTuple):
    """Physiologically plausible bounds for one metric type."""

    low: float
    high: float | None
    unit: str

    def contains(self, value: float) -> bool:
        return value >= self.low and (self.high is None or value <= self.high)

    def clamp(self, value: float) -> float:
        value = max(self.low, value)
        return value if self.high is None else min(self.high, value)


PLAUSIBLE_RANGES: dict[MetricType, MetricRange] = {
    MetricType.HEART_RATE: MetricRange(55, 95, "bpm"),
    MetricType.STEPS: MetricRange(4000, None, "steps"),
    MetricType.SLEEP: MetricRange(60, 95, "/100"),
    MetricType.HRV: MetricRange(25, 65, "ms"),
    MetricType.GLUCOSE: MetricRange(70, 280, "mg/dL"),
}


class HealthMetricRecord(BaseModel):
    """One synthesized or recorded observation."""

    model_config = ConfigDict(frozen=True)

    user_id: str = Field(description="Identity provider user ID")
    metric_type: MetricType = Field(description="Kind of observation")
    value: float = Field(description="Observed value")
    unit: str = Field(description="Unit of the value")
    timestamp: datetime = Field(description="When the observation was taken")
    source: MetricSource = Field(description="Origin of the observation")
    metadata: dict[str, Any] = Field(default_factory=dict, description="Device and context")

    @model_validator(mode="after")
    def _check_plausible(self) -> "HealthMetricRecord":
        bounds = PLAUSIBLE_RANGES[self.metric_type]
        if not bounds.contains(self.value):
            raise ValueError(
                f"{self.metric_type.value} value {self.value} outside plausible range "
                f"[{bounds.low}, {bounds.high}]"
            )
        return self

    def to_api_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class MetricSummary(BaseModel):
    """Aggregates for one metric type."""

    metric_type: MetricType
    unit: str
    latest: float | None = Field(default=None, description="Most recent value")
    average: float | None = None
    minimum: float | None = None
    maximum: float | None = None
    count: int = 0
    trend_percent: float = Field(default=0.0, description="Change across recent samples")
