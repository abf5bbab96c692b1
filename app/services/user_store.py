"""
Lumen — User store.

Read access to user profiles for the matching pipeline.  Rows are validated
into ``UserProfile`` here so downstream code works with typed interest lists
and gender sets instead of raw JSON columns.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass

import structlog
from pydantic import ValidationError
from sqlalchemy import and_, case, exists, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.models.recommendation import Algorithm, MatchRecommendation
from app.models.user import User
from app.schemas.user import UserProfile

logger = structlog.get_logger("lumen.user_store")


@dataclass(frozen=True)
class CandidateFilter:
    """Hard filters the store applies when fetching the candidate pool."""

    exclude_id: uuid.UUID
    age_min: int
    age_max: int
    exclude_already_scored_by: uuid.UUID | None = None
    algorithm: Algorithm = Algorithm.ONE_WAY


class UserStore:
    """SQLAlchemy-backed user lookups.

    Each call opens its own short-lived session so the store can be used from
    background tasks that outlive the request which started them.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def find_by_id(self, user_id: uuid.UUID) -> UserProfile | None:
        async with self._session_factory() as session:
            user = await session.get(User, user_id)

        if user is None:
            return None

        try:
            return UserProfile.model_validate(user)
        except ValidationError as exc:
            logger.warning(
                "user_profile_invalid",
                user_id=str(user_id),
                errors=exc.error_count(),
            )
            return None

    async def find_candidates(self, candidate_filter: CandidateFilter) -> list[UserProfile]:
        """Return users passing the id, age and already-scored filters.

        Rows come back in creation order; rows that fail profile validation
        are skipped with a warning rather than failing the whole query.
        """
        stmt = select(User).where(
            User.id != candidate_filter.exclude_id,
            User.age >= candidate_filter.age_min,
            User.age <= candidate_filter.age_max,
        )

        if candidate_filter.exclude_already_scored_by is not None:
            already_scored = exists().where(
                and_(
                    MatchRecommendation.target_user_id == User.id,
                    MatchRecommendation.source_user_id
                    == candidate_filter.exclude_already_scored_by,
                    MatchRecommendation.algorithm == candidate_filter.algorithm.value,
                )
            )
            stmt = stmt.where(~already_scored)

        stmt = stmt.order_by(User.created_at, User.id)

        async with self._session_factory() as session:
            result = await session.execute(stmt)
            rows = result.scalars().all()

        profiles: list[UserProfile] = []
        for row in rows:
            try:
                profiles.append(UserProfile.model_validate(row))
            except ValidationError as exc:
                logger.warning(
                    "candidate_profile_invalid",
                    user_id=str(row.id),
                    errors=exc.error_count(),
                )

        logger.debug(
            "candidates_fetched",
            exclude_id=str(candidate_filter.exclude_id),
            age_min=candidate_filter.age_min,
            age_max=candidate_filter.age_max,
            count=len(profiles),
        )
        return profiles

    async def count_users(self) -> tuple[int, int]:
        """Total users and how many of them have completed onboarding."""
        stmt = select(
            func.count(User.id),
            func.coalesce(
                func.sum(case((User.onboarding_completed.is_(True), 1), else_=0)), 0
            ),
        )
        async with self._session_factory() as session:
            total, onboarded = (await session.execute(stmt)).one()
        return total, int(onboarded)
