"""User profile model."""

from sqlalchemy import JSON, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from biowell_service.models.base import Base, TimestampMixin


class UserProfile(Base, TimestampMixin):
    """Profile record served by the persistent store.

    The primary key is the identity provider's user id.
    """

    __tablename__ = "user_profiles"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    first_name: Mapped[str | None] = mapped_column(String(100))
    last_name: Mapped[str | None] = mapped_column(String(100))
    age: Mapped[int | None] = mapped_column(Integer)
    gender: Mapped[str | None] = mapped_column(String(32))
    activity_level: Mapped[str | None] = mapped_column(String(32))
    health_goals: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    medical_conditions: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)

    def __repr__(self) -> str:
        """String representation."""
        return f"<UserProfile(id={self.id}, first_name={self.first_name})>"
