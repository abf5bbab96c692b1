"""
Lumen — Recommendation store.

Persists per-(source, target, algorithm) scores with insert-or-update
semantics on that natural key.  Each row is written with
``INSERT ... ON CONFLICT DO UPDATE`` so concurrent writers on disjoint keys
never contend and repeat writers on the same key never duplicate rows.  The
one-way and two-way rows of a pair share one transaction.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

import structlog
from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.models.recommendation import Algorithm, MatchRecommendation
from app.schemas.recommendation import MatchFactors, RecommendationView, TargetPublicProfile

logger = structlog.get_logger("lumen.recommendation_store")

_NATURAL_KEY = ("source_user_id", "target_user_id", "algorithm")


def _insert_for(session: AsyncSession):
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert
    if dialect == "sqlite":
        return sqlite_insert
    raise NotImplementedError(f"Upsert is not supported on dialect {dialect!r}")


class RecommendationStore:
    """SQLAlchemy-backed recommendation persistence."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    @staticmethod
    def _upsert_statement(
        insert,
        source_id: uuid.UUID,
        target_id: uuid.UUID,
        algorithm: Algorithm,
        score: int,
        reasoning: str,
        factors: dict,
        now: datetime,
    ):
        stmt = insert(MatchRecommendation).values(
            id=uuid.uuid4(),
            source_user_id=source_id,
            target_user_id=target_id,
            algorithm=algorithm.value,
            score=score,
            reasoning=reasoning,
            match_factors=factors,
            created_at=now,
            updated_at=now,
        )
        return stmt.on_conflict_do_update(
            index_elements=list(_NATURAL_KEY),
            set_={
                "score": stmt.excluded.score,
                "reasoning": stmt.excluded.reasoning,
                "match_factors": stmt.excluded.match_factors,
                "updated_at": stmt.excluded.updated_at,
            },
        )

    async def upsert(
        self,
        source_id: uuid.UUID,
        target_id: uuid.UUID,
        algorithm: Algorithm,
        score: int,
        reasoning: str,
        match_factors: MatchFactors,
    ) -> None:
        """Insert the row for the key triple, or overwrite its score,
        reasoning and factors and refresh ``updated_at``."""
        await self.upsert_scores(
            source_id, target_id, {algorithm: score}, reasoning, match_factors
        )

    async def upsert_scores(
        self,
        source_id: uuid.UUID,
        target_id: uuid.UUID,
        scores: dict[Algorithm, int],
        reasoning: str,
        match_factors: MatchFactors,
    ) -> None:
        """Upsert one row per algorithm in ``scores`` in a single transaction.

        Either every row is written or none is, so a pair is never left with
        a one-way score but no two-way score.
        """
        now = datetime.now(timezone.utc)
        factors = match_factors.model_dump()

        async with self._session_factory() as session:
            insert = _insert_for(session)
            try:
                for algorithm, score in scores.items():
                    await session.execute(
                        self._upsert_statement(
                            insert, source_id, target_id, algorithm,
                            score, reasoning, factors, now,
                        )
                    )
                await session.commit()
            except Exception:
                await session.rollback()
                raise

        logger.debug(
            "recommendations_upserted",
            source_id=str(source_id),
            target_id=str(target_id),
            scores={a.value: s for a, s in scores.items()},
        )

    async def score_summary(self) -> tuple[int, float | None]:
        """Total recommendation rows and their mean score (``None`` if empty)."""
        stmt = select(func.count(MatchRecommendation.id), func.avg(MatchRecommendation.score))
        async with self._session_factory() as session:
            count, average = (await session.execute(stmt)).one()
        return count, (float(average) if average is not None else None)

    async def list_for_source(
        self,
        source_id: uuid.UUID,
        algorithm: Algorithm,
    ) -> list[RecommendationView]:
        """Recommendations for ``source_id`` under ``algorithm``, best first,
        each joined with the target user's public profile fields."""
        stmt = (
            select(MatchRecommendation)
            .where(
                MatchRecommendation.source_user_id == source_id,
                MatchRecommendation.algorithm == algorithm.value,
            )
            .order_by(
                MatchRecommendation.score.desc(),
                MatchRecommendation.updated_at.desc(),
            )
        )

        async with self._session_factory() as session:
            result = await session.execute(stmt)
            rows = result.scalars().all()

            views = [
                RecommendationView(
                    id=row.id,
                    source_user_id=row.source_user_id,
                    target_user_id=row.target_user_id,
                    algorithm=Algorithm(row.algorithm),
                    score=row.score,
                    reasoning=row.reasoning,
                    match_factors=(
                        MatchFactors.model_validate(row.match_factors)
                        if row.match_factors is not None
                        else None
                    ),
                    updated_at=row.updated_at,
                    target_user=TargetPublicProfile.model_validate(row.target_user),
                )
                for row in rows
            ]

        logger.debug(
            "recommendations_listed",
            source_id=str(source_id),
            algorithm=algorithm.value,
            count=len(views),
        )
        return views
