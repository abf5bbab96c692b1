"""
Lumen — Candidate selection.

Picks the bounded, ordered set of users a source user should be scored
against in one generation run:

  1. Eligibility gate — the source needs a looking-for description and a
     location, otherwise the run is a silent no-op.
  2. Hard filters — not the source, inside the source's age range, a gender
     in the source's interest set (an empty set means no gender filter), and
     not already scored by this source under the default algorithm.
  3. Ranking — ascending great-circle distance; anyone without coordinates
     (on either side) sorts last rather than being dropped.
  4. Limit — the first N survive.

Because already-scored candidates are excluded, repeated runs walk further
into the pool instead of re-scoring the same nearest users.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import structlog

from app.config import get_settings
from app.models.recommendation import Algorithm
from app.schemas.user import UserProfile
from app.services.geo import distance_between
from app.services.user_store import CandidateFilter

logger = structlog.get_logger("lumen.candidate_selector")

DEFAULT_ALGORITHM = Algorithm.ONE_WAY


@dataclass(frozen=True)
class CandidateRecord:
    """A candidate profile plus its distance from the source for this run."""

    profile: UserProfile
    distance_km: float


@dataclass(frozen=True)
class Selection:
    eligible: bool
    candidates: list[CandidateRecord]
    reason: str | None = None


class CandidateSelector:
    """Eligibility check, filtering and proximity ranking of candidates."""

    def __init__(self, user_store: Any, limit: int | None = None) -> None:
        settings = get_settings()
        self.user_store = user_store
        self.limit: int = limit if limit is not None else settings.MATCH_CANDIDATE_LIMIT
        self.min_looking_for_length: int = settings.MATCH_MIN_LOOKING_FOR_LENGTH
        self.default_age_min: int = settings.MATCH_DEFAULT_AGE_MIN
        self.default_age_max: int = settings.MATCH_DEFAULT_AGE_MAX

    # ── Public API ────────────────────────────────────────────────────────

    def check_eligibility(self, source: UserProfile) -> str | None:
        """Return ``None`` if the source can be matched, else the reason."""
        looking_for = (source.looking_for_description or "").strip()
        if len(looking_for) < max(1, self.min_looking_for_length):
            return "missing_looking_for_description"
        if not (source.location or "").strip():
            return "missing_location"
        return None

    async def select(self, source: UserProfile) -> Selection:
        log = logger.bind(source_id=str(source.id))

        reason = self.check_eligibility(source)
        if reason is not None:
            log.info("source_not_eligible", reason=reason)
            return Selection(eligible=False, candidates=[], reason=reason)

        age_min, age_max = self.age_bounds(source)
        pool = await self.user_store.find_candidates(
            CandidateFilter(
                exclude_id=source.id,
                age_min=age_min,
                age_max=age_max,
                exclude_already_scored_by=source.id,
                algorithm=DEFAULT_ALGORITHM,
            )
        )

        ranked = self.rank(source, self.filter_pool(source, pool, age_min, age_max))
        selected = ranked[: self.limit]

        log.info(
            "candidates_selected",
            pool_size=len(pool),
            after_filters=len(ranked),
            selected=len(selected),
            limit=self.limit,
        )
        return Selection(eligible=True, candidates=selected)

    # ── Filtering & ranking ───────────────────────────────────────────────

    def age_bounds(self, source: UserProfile) -> tuple[int, int]:
        age_min = source.age_range_min or self.default_age_min
        age_max = source.age_range_max or self.default_age_max
        return age_min, age_max

    def filter_pool(
        self,
        source: UserProfile,
        pool: list[UserProfile],
        age_min: int,
        age_max: int,
    ) -> list[UserProfile]:
        """Apply the hard filters in memory.

        The store already filters id and age; they are re-checked here so a
        store that ignores part of the filter cannot leak ineligible users.
        """
        kept: list[UserProfile] = []
        for candidate in pool:
            if candidate.id == source.id:
                continue
            if not age_min <= candidate.age <= age_max:
                continue
            if source.interested_in and candidate.gender not in source.interested_in:
                continue
            kept.append(candidate)
        return kept

    def rank(
        self,
        source: UserProfile,
        candidates: list[UserProfile],
    ) -> list[CandidateRecord]:
        records = [
            CandidateRecord(
                profile=candidate,
                distance_km=distance_between(
                    source.latitude,
                    source.longitude,
                    candidate.latitude,
                    candidate.longitude,
                ),
            )
            for candidate in candidates
        ]
        # Stable: equal distances keep store order.
        records.sort(key=lambda r: r.distance_km)
        return records
