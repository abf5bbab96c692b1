"""
Lumen — User model.

``interests`` and ``interested_in`` are stored as JSON arrays; they are
validated into typed sequences by ``app.schemas.user.UserProfile`` at the
store boundary rather than parsed by each consumer.
"""

import uuid
from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, Float, Integer, String, Text, Uuid, false, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in local runs and tests).
JSONVariant = JSON().with_variant(JSONB(), "postgresql")


class User(Base):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    email: Mapped[str] = mapped_column(
        String, unique=True, index=True, nullable=False
    )
    name: Mapped[str] = mapped_column(String, nullable=False)
    age: Mapped[int] = mapped_column(Integer, nullable=False)
    gender: Mapped[str] = mapped_column(
        String, nullable=False, comment="Male / Female"
    )
    location: Mapped[str | None] = mapped_column(String, nullable=True)
    latitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    longitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    job_title: Mapped[str | None] = mapped_column(String, nullable=True)
    bio: Mapped[str | None] = mapped_column(Text, nullable=True)
    interests: Mapped[list | None] = mapped_column(
        JSONVariant, nullable=True, comment="Ordered array of interest tags"
    )
    looking_for_description: Mapped[str | None] = mapped_column(
        Text, nullable=True, comment="Free-text compatibility prompt seed"
    )
    photo_url: Mapped[str | None] = mapped_column(
        Text, nullable=True, comment="URL or base64 data URL"
    )
    interested_in: Mapped[list | None] = mapped_column(
        JSONVariant, nullable=True, comment="Array of genders"
    )
    age_range_min: Mapped[int | None] = mapped_column(Integer, nullable=True)
    age_range_max: Mapped[int | None] = mapped_column(Integer, nullable=True)
    onboarding_completed: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=false(), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), onupdate=func.now(), nullable=True
    )

    # ── Relationships ──────────────────────────────────────────────
    recommendations_as_source: Mapped[list["MatchRecommendation"]] = relationship(
        "MatchRecommendation",
        foreign_keys="MatchRecommendation.source_user_id",
        back_populates="source_user",
        cascade="all, delete-orphan",
    )
    recommendations_as_target: Mapped[list["MatchRecommendation"]] = relationship(
        "MatchRecommendation",
        foreign_keys="MatchRecommendation.target_user_id",
        back_populates="target_user",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<User {self.email!r} id={self.id}>"
