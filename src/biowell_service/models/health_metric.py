"""Health metric observation model."""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Float, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from biowell_service.models.base import Base, TimestampMixin, UserScopedMixin, generate_uuid


class HealthMetric(Base, UserScopedMixin, TimestampMixin):
    """One physiological observation.

    Rows are written once (synthesized history or device data) and treated
    as immutable afterwards. The unique constraint makes re-inserting the
    same chunk a no-op.
    """

    __tablename__ = "health_metrics"
    __table_args__ = (
        UniqueConstraint(
            "user_id",
            "metric_type",
            "timestamp",
            "source",
            name="uq_health_metrics_user_type_ts_source",
        ),
        Index("ix_health_metrics_user_type_ts", "user_id", "metric_type", "timestamp"),
        {"comment": "Wearable, CGM and synthesized health observations"},
    )

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=generate_uuid,
    )

    metric_type: Mapped[str] = mapped_column(
        String(32), nullable=False, comment="heart_rate, steps, sleep, glucose or hrv"
    )
    value: Mapped[float] = mapped_column(Float, nullable=False)
    unit: Mapped[str] = mapped_column(String(16), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    source: Mapped[str] = mapped_column(
        String(16), nullable=False, comment="wearable, cgm, mock or calculated"
    )

    # "metadata" is reserved on declarative classes
    details: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSON, nullable=False, default=dict
    )

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"<HealthMetric(user_id={self.user_id}, type={self.metric_type}, "
            f"value={self.value}, timestamp={self.timestamp})>"
        )
