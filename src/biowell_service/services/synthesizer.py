"""Synthetic physiological telemetry.

Produces a plausible multi-day history for users without device data so
charts and insights always have something to render. Every model follows
the same recipe:

    structural signal (time of day, weekday/weekend, subject baseline)
    + bounded uniform noise
    -> rounded
    -> clamped to the metric's plausible range (always the last step)

Models:
    heart_rate  hourly 06:00-23:00, baseline 62 bpm, circadian offsets, [55, 95]
    steps       daily, 9200 weekday / 6500 weekend, 30% workout bonus, >= 4000
    sleep       daily at 07:00, baseline 78, weekend and recency effects, [60, 95]
    hrv         daily at 07:00, baseline 42 ms, paired with the sleep score, [25, 65]
    glucose     every 15 minutes, baseline 98 mg/dL, dawn rise, meal spikes, [70, 280]

All functions take a ``random.Random`` so a seed reproduces a history
exactly. Nothing here touches storage; deciding *whether* to synthesize
is left to the caller.
"""

import math
import random
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, time, timedelta
from typing import Any

from biowell_service.schemas.metrics import (
    PLAUSIBLE_RANGES,
    GlucoseTrend,
    HealthMetricRecord,
    MetricSource,
    MetricType,
)

WEARABLE_DEVICE = "Apple Watch Series 9"
CGM_DEVICE = "FreeStyle Libre 3"

HEART_RATE_HOURS = range(6, 24)
CGM_INTERVAL_MINUTES = 15
MORNING_READING = time(7, 0)

# Noise amplitudes (value varies uniformly within +/- amplitude)
HEART_RATE_NOISE = 4.0
STEPS_NOISE = 1500.0
SLEEP_NOISE = 7.5
HRV_NOISE = 6.0
GLUCOSE_NOISE = 6.0

WORKOUT_DAY_PROBABILITY = 0.3
WORKOUT_DAY_BONUS = 2500
EXERCISE_DIP_PROBABILITY = 0.4
EXERCISE_DIP = 20.0
RECENT_SLEEP_DEBT_DAYS = 3

GLUCOSE_RISING_ABOVE = 140
GLUCOSE_FALLING_BELOW = 85


@dataclass(frozen=True)
class MealResponse:
    """Glucose response to one daily meal.

    The contribution is ``intensity * exp(-t / decay_minutes)`` for
    ``0 <= t <= window_minutes`` after the meal, and zero otherwise. A
    larger decay constant models slower clearance.

    Attributes:
        name: Meal name
        hour: Hour of day the meal starts
        intensity: Peak rise in mg/dL
        decay_minutes: Exponential decay constant
        window_minutes: How long the response lasts
    """

    name: str
    hour: int
    intensity: float
    decay_minutes: float
    window_minutes: int

    def offset(self, minute_of_day: int) -> float:
        elapsed = minute_of_day - self.hour * 60
        if 0 <= elapsed <= self.window_minutes:
            return self.intensity * math.exp(-elapsed / self.decay_minutes)
        return 0.0


DEFAULT_MEALS: tuple[MealResponse, ...] = (
    MealResponse("breakfast", hour=7, intensity=65, decay_minutes=90, window_minutes=180),
    MealResponse("lunch", hour=12, intensity=75, decay_minutes=100, window_minutes=210),
    MealResponse("dinner", hour=19, intensity=70, decay_minutes=110, window_minutes=240),
)


@dataclass(frozen=True)
class SubjectProfile:
    """Baselines of the synthetic subject.

    Defaults describe a healthy adult; clamp ranges never change with the
    profile.
    """

    resting_heart_rate: float = 62
    weekday_steps: float = 9200
    weekend_steps: float = 6500
    sleep_score: float = 78
    hrv_ms: float = 42
    fasting_glucose: float = 98
    meals: tuple[MealResponse, ...] = field(default=DEFAULT_MEALS)


DEFAULT_PROFILE = SubjectProfile()


def is_weekend(day: date) -> bool:
    return day.weekday() >= 5


def _noise(rng: random.Random, amplitude: float) -> float:
    return (rng.random() - 0.5) * 2 * amplitude


def _finalize(metric_type: MetricType, value: float) -> int:
    """Round, then clamp to the plausible range."""
    return int(PLAUSIBLE_RANGES[metric_type].clamp(round(value)))


# =============================================================================
# Wearable models
# =============================================================================


def heart_rate_offset(hour: int, weekend: bool) -> float:
    """Circadian offset for an hour of the day, in bpm."""
    offset = 0.0
    if 6 <= hour <= 8:
        offset += 8  # Morning rise
    elif 9 <= hour <= 11:
        offset += 12  # Active morning
    elif 12 <= hour <= 14:
        offset += 5  # Post-lunch
    elif 15 <= hour <= 17:
        offset += 10  # Afternoon
    elif 18 <= hour <= 20:
        offset += 25  # Evening workout
    elif 21 <= hour <= 23:
        offset -= 5  # Wind-down

    # Sleeping in
    if weekend and 8 <= hour <= 10:
        offset -= 8
    return offset


def heart_rate_value(
    hour: int,
    weekend: bool,
    rng: random.Random,
    profile: SubjectProfile = DEFAULT_PROFILE,
) -> int:
    value = profile.resting_heart_rate + heart_rate_offset(hour, weekend)
    value += _noise(rng, HEART_RATE_NOISE)
    return _finalize(MetricType.HEART_RATE, value)


def steps_value(
    weekend: bool,
    rng: random.Random,
    profile: SubjectProfile = DEFAULT_PROFILE,
) -> int:
    value = profile.weekend_steps if weekend else profile.weekday_steps
    value += _noise(rng, STEPS_NOISE)
    if rng.random() < WORKOUT_DAY_PROBABILITY:
        value += WORKOUT_DAY_BONUS
    return _finalize(MetricType.STEPS, value)


def sleep_score_value(
    weekend: bool,
    days_ago: int,
    rng: random.Random,
    profile: SubjectProfile = DEFAULT_PROFILE,
) -> int:
    """Sleep score for the night ending on a morning ``days_ago`` days back."""
    value = profile.sleep_score
    if weekend:
        value += 8
    if days_ago < RECENT_SLEEP_DEBT_DAYS:
        value -= 5
    value += _noise(rng, SLEEP_NOISE)
    return _finalize(MetricType.SLEEP, value)


def hrv_value(
    sleep_score: float,
    weekend: bool,
    rng: random.Random,
    profile: SubjectProfile = DEFAULT_PROFILE,
) -> int:
    """Morning HRV paired with that morning's sleep score."""
    value = profile.hrv_ms
    if sleep_score > 85:
        value += 8
    if weekend:
        value += 3
    value += _noise(rng, HRV_NOISE)
    return _finalize(MetricType.HRV, value)


# =============================================================================
# CGM model
# =============================================================================


def dawn_offset(hour: int) -> float:
    """Early-morning glucose rise, a half-sine bump over hours 4-8."""
    if 4 <= hour <= 8:
        return 15 + math.sin((hour - 4) * math.pi / 4) * 10
    return 0.0


def meal_offset(minute_of_day: int, meals: tuple[MealResponse, ...] = DEFAULT_MEALS) -> float:
    return sum(meal.offset(minute_of_day) for meal in meals)


def glucose_value(
    hour: int,
    minute: int,
    rng: random.Random,
    profile: SubjectProfile = DEFAULT_PROFILE,
) -> int:
    value = profile.fasting_glucose
    value += dawn_offset(hour)
    value += meal_offset(hour * 60 + minute, profile.meals)
    if 17 <= hour <= 19 and rng.random() < EXERCISE_DIP_PROBABILITY:
        value -= EXERCISE_DIP
    value += _noise(rng, GLUCOSE_NOISE)
    return _finalize(MetricType.GLUCOSE, value)


def glucose_trend(value: float) -> GlucoseTrend:
    if value > GLUCOSE_RISING_ABOVE:
        return GlucoseTrend.RISING
    if value < GLUCOSE_FALLING_BELOW:
        return GlucoseTrend.FALLING
    return GlucoseTrend.STABLE


def synthesize_value(
    metric_type: MetricType,
    timestamp: datetime,
    rng: random.Random,
    profile: SubjectProfile = DEFAULT_PROFILE,
    days_ago: int = 0,
    sleep_score: float | None = None,
) -> int:
    """Synthesize one value for a metric type at a timestamp.

    Args:
        metric_type: Metric to synthesize
        timestamp: When the observation is taken
        rng: Random source
        profile: Subject baselines
        days_ago: Age of the observation in days (sleep debt)
        sleep_score: Paired sleep score for HRV (defaults to the profile baseline)

    Returns:
        Clamped integer value
    """
    weekend = is_weekend(timestamp.date())
    if metric_type is MetricType.HEART_RATE:
        return heart_rate_value(timestamp.hour, weekend, rng, profile)
    if metric_type is MetricType.STEPS:
        return steps_value(weekend, rng, profile)
    if metric_type is MetricType.SLEEP:
        return sleep_score_value(weekend, days_ago, rng, profile)
    if metric_type is MetricType.HRV:
        paired = profile.sleep_score if sleep_score is None else sleep_score
        return hrv_value(paired, weekend, rng, profile)
    return glucose_value(timestamp.hour, timestamp.minute, rng, profile)


# =============================================================================
# History generators
# =============================================================================


def _record(
    user_id: str,
    metric_type: MetricType,
    value: float,
    timestamp: datetime,
    source: MetricSource,
    metadata: dict[str, Any],
) -> HealthMetricRecord:
    return HealthMetricRecord(
        user_id=user_id,
        metric_type=metric_type,
        value=value,
        unit=PLAUSIBLE_RANGES[metric_type].unit,
        timestamp=timestamp,
        source=source,
        metadata=metadata,
    )


def _aware(now: datetime) -> datetime:
    return now if now.tzinfo is not None else now.replace(tzinfo=UTC)


def generate_wearable_history(
    user_id: str,
    now: datetime,
    days: int = 14,
    rng: random.Random | None = None,
    profile: SubjectProfile = DEFAULT_PROFILE,
    source: MetricSource = MetricSource.WEARABLE,
) -> list[HealthMetricRecord]:
    """Hourly heart rate plus daily steps, sleep score and HRV.

    Args:
        user_id: Owner of the records
        now: Generation time; no record is timestamped after it
        days: Number of days back, today included
        rng: Random source (a fresh unseeded one if omitted)
        profile: Subject baselines
        source: Source tag, ``MOCK`` on fallback paths

    Returns:
        Records ordered by day (newest first), then time of day
    """
    rng = rng or random.Random()
    now = _aware(now)
    tz = now.tzinfo
    records: list[HealthMetricRecord] = []

    for days_ago in range(days):
        day = now.date() - timedelta(days=days_ago)
        weekend = is_weekend(day)

        for hour in HEART_RATE_HOURS:
            timestamp = datetime.combine(day, time(hour, rng.randrange(60)), tzinfo=tz)
            value = heart_rate_value(hour, weekend, rng, profile)
            if timestamp > now:
                continue
            records.append(
                _record(
                    user_id,
                    MetricType.HEART_RATE,
                    value,
                    timestamp,
                    source,
                    {
                        "device": WEARABLE_DEVICE,
                        "activity": "workout" if 18 <= hour <= 20 else "active",
                    },
                )
            )

        device = {"device": WEARABLE_DEVICE}
        day_start = datetime.combine(day, time(0, 0), tzinfo=tz)
        records.append(
            _record(
                user_id,
                MetricType.STEPS,
                steps_value(weekend, rng, profile),
                day_start,
                source,
                dict(device),
            )
        )

        # Sleep is attributed to the morning that ends the night
        morning = datetime.combine(day, MORNING_READING, tzinfo=tz)
        sleep_score = sleep_score_value(weekend, days_ago, rng, profile)
        hrv = hrv_value(sleep_score, weekend, rng, profile)
        if morning <= now:
            records.append(
                _record(user_id, MetricType.SLEEP, sleep_score, morning, source, dict(device))
            )
            records.append(_record(user_id, MetricType.HRV, hrv, morning, source, dict(device)))

    return records


def generate_cgm_history(
    user_id: str,
    now: datetime,
    days: int = 7,
    rng: random.Random | None = None,
    profile: SubjectProfile = DEFAULT_PROFILE,
    source: MetricSource = MetricSource.CGM,
) -> list[HealthMetricRecord]:
    """Glucose readings every 15 minutes with a trend label.

    Args:
        user_id: Owner of the records
        now: Generation time; no record is timestamped after it
        days: Number of days back, today included
        rng: Random source (a fresh unseeded one if omitted)
        profile: Subject baselines and meal responses
        source: Source tag, ``MOCK`` on fallback paths

    Returns:
        Records ordered by day (newest first), then time of day
    """
    rng = rng or random.Random()
    now = _aware(now)
    tz = now.tzinfo
    records: list[HealthMetricRecord] = []

    for days_ago in range(days):
        day = now.date() - timedelta(days=days_ago)
        for minute_of_day in range(0, 24 * 60, CGM_INTERVAL_MINUTES):
            hour, minute = divmod(minute_of_day, 60)
            timestamp = datetime.combine(day, time(hour, minute), tzinfo=tz)
            if timestamp > now:
                break
            value = glucose_value(hour, minute, rng, profile)
            records.append(
                _record(
                    user_id,
                    MetricType.GLUCOSE,
                    value,
                    timestamp,
                    source,
                    {"device": CGM_DEVICE, "trend": glucose_trend(value).value},
                )
            )

    return records


def generate_history(
    user_id: str,
    now: datetime,
    wearable_days: int = 14,
    cgm_days: int = 7,
    rng: random.Random | None = None,
    profile: SubjectProfile = DEFAULT_PROFILE,
    mock: bool = False,
) -> list[HealthMetricRecord]:
    """Wearable and CGM history together.

    With ``mock=True`` every record is tagged ``MetricSource.MOCK``.
    """
    rng = rng or random.Random()
    wearable_source = MetricSource.MOCK if mock else MetricSource.WEARABLE
    cgm_source = MetricSource.MOCK if mock else MetricSource.CGM
    return [
        *generate_wearable_history(
            user_id, now, wearable_days, rng, profile, source=wearable_source
        ),
        *generate_cgm_history(user_id, now, cgm_days, rng, profile, source=cgm_source),
    ]
