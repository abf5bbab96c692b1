"""Initial schema — users and match_recommendations.

Revision ID: 001_initial
Revises:
Create Date: 2025-01-01 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # ── 1. users ────────────────────────────────────────────────────
    op.create_table(
        "users",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("email", sa.String, unique=True, index=True, nullable=False),
        sa.Column("name", sa.String, nullable=False),
        sa.Column("age", sa.Integer, nullable=False),
        sa.Column("gender", sa.String, nullable=False, comment="Male / Female"),
        sa.Column("location", sa.String, nullable=True),
        sa.Column("latitude", sa.Float, nullable=True),
        sa.Column("longitude", sa.Float, nullable=True),
        sa.Column("job_title", sa.String, nullable=True),
        sa.Column("bio", sa.Text, nullable=True),
        sa.Column(
            "interests",
            postgresql.JSONB,
            nullable=True,
            comment="Ordered array of interest tags",
        ),
        sa.Column(
            "looking_for_description",
            sa.Text,
            nullable=True,
            comment="Free-text compatibility prompt seed",
        ),
        sa.Column(
            "photo_url",
            sa.Text,
            nullable=True,
            comment="URL or base64 data URL",
        ),
        sa.Column(
            "interested_in",
            postgresql.JSONB,
            nullable=True,
            comment="Array of genders",
        ),
        sa.Column("age_range_min", sa.Integer, nullable=True),
        sa.Column("age_range_max", sa.Integer, nullable=True),
        sa.Column(
            "onboarding_completed",
            sa.Boolean,
            server_default=sa.false(),
            nullable=False,
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )

    # ── 2. match_recommendations ────────────────────────────────────
    op.create_table(
        "match_recommendations",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "source_user_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "target_user_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "algorithm",
            sa.String,
            nullable=False,
            comment="one_way / two_way",
        ),
        sa.Column("score", sa.Integer, nullable=False),
        sa.Column("reasoning", sa.Text, nullable=True),
        sa.Column(
            "match_factors",
            postgresql.JSONB,
            nullable=True,
            comment="shared_interests / personality_match / lifestyle_compatibility",
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.UniqueConstraint(
            "source_user_id",
            "target_user_id",
            "algorithm",
            name="uq_recommendation_source_target_algorithm",
        ),
    )
    op.create_index(
        "ix_match_recommendations_source_algorithm_score",
        "match_recommendations",
        ["source_user_id", "algorithm", "score"],
    )


def downgrade() -> None:
    op.drop_index(
        "ix_match_recommendations_source_algorithm_score",
        table_name="match_recommendations",
    )
    op.drop_table("match_recommendations")
    op.drop_table("users")
