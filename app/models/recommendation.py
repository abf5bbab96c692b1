"""
Lumen — MatchRecommendation model.

One row per (source, target, algorithm).  Generation runs upsert on that
natural key, so re-scoring a pair overwrites the row in place.
"""

import enum
import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base
from app.models.user import JSONVariant


class Algorithm(str, enum.Enum):
    ONE_WAY = "one_way"
    TWO_WAY = "two_way"


class MatchRecommendation(Base):
    __tablename__ = "match_recommendations"
    __table_args__ = (
        UniqueConstraint(
            "source_user_id",
            "target_user_id",
            "algorithm",
            name="uq_recommendation_source_target_algorithm",
        ),
        Index(
            "ix_match_recommendations_source_algorithm_score",
            "source_user_id",
            "algorithm",
            "score",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    source_user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    target_user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    algorithm: Mapped[str] = mapped_column(
        String, nullable=False, comment="one_way / two_way"
    )
    score: Mapped[int] = mapped_column(Integer, nullable=False)
    reasoning: Mapped[str | None] = mapped_column(Text, nullable=True)
    match_factors: Mapped[dict | None] = mapped_column(
        JSONVariant,
        nullable=True,
        comment="shared_interests / personality_match / lifestyle_compatibility",
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    # ── Relationships ──────────────────────────────────────────────
    source_user: Mapped["User"] = relationship(
        "User",
        foreign_keys=[source_user_id],
        back_populates="recommendations_as_source",
    )
    target_user: Mapped["User"] = relationship(
        "User",
        foreign_keys=[target_user_id],
        back_populates="recommendations_as_target",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return (
            f"<MatchRecommendation {self.source_user_id} -> {self.target_user_id} "
            f"{self.algorithm}={self.score}>"
        )
