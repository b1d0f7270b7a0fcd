"""Pydantic schemas for user profiles."""

from datetime import datetime

from pydantic import BaseModel, Field


class Profile(BaseModel):
    """Profile as served to the dashboard."""

    id: str
    first_name: str | None = None
    last_name: str | None = None
    age: int | None = None
    gender: str | None = None
    activity_level: str | None = None
    health_goals: list[str] = Field(default_factory=list)
    medical_conditions: list[str] = Field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None


class ProfileUpdate(BaseModel):
    """Partial profile update; unset fields are left unchanged."""

    first_name: str | None = Field(default=None, max_length=100)
    last_name: str | None = Field(default=None, max_length=100)
    age: int | None = Field(default=None, ge=13, le=120)
    gender: str | None = Field(default=None, max_length=32)
    activity_level: str | None = Field(default=None, max_length=32)
    health_goals: list[str] | None = None
    medical_conditions: list[str] | None = None
