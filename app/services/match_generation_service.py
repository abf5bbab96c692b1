"""
Lumen — Match Generation Orchestrator

Drives one recommendation run for a source user:

  idle -> selecting -> scoring(i) -> persisting(i) -> ... -> done

  1. Load the source profile and select up to N ranked candidates.  An
     ineligible source goes straight to ``done`` with nothing scored.
  2. For every candidate, under a bounded worker pool:
       a. ask the compatibility oracle for a judgment (with a hard timeout),
       b. derive the one-way and two-way scores,
       c. upsert both recommendation rows on (source, target, algorithm) in
          one transaction.
  3. Any oracle or persistence failure is logged against that candidate and
     the run moves on; the loop always reaches ``done``.

A run never raises for per-candidate failures; the worst outcome is fewer
recommendations than candidates.
"""

from __future__ import annotations

import asyncio
import enum
import time
import uuid
from dataclasses import dataclass, field
from typing import Any

import structlog

from app.config import get_settings
from app.models.recommendation import Algorithm
from app.schemas.oracle import InlineImage
from app.schemas.user import UserProfile
from app.services.candidate_selector import CandidateRecord, CandidateSelector
from app.services.score_deriver import derive_scores

logger = structlog.get_logger("lumen.match_generation_service")


class RunState(str, enum.Enum):
    IDLE = "idle"
    SELECTING = "selecting"
    SCORING = "scoring"
    PERSISTING = "persisting"
    DONE = "done"


@dataclass
class CandidateOutcome:
    target_id: uuid.UUID
    scored: bool
    one_way_score: int | None = None
    two_way_score: int | None = None
    failed_stage: str | None = None  # oracle / persistence
    error: str | None = None


@dataclass
class GenerationRunSummary:
    source_id: uuid.UUID
    eligible: bool
    reason: str | None = None
    state: RunState = RunState.IDLE
    outcomes: list[CandidateOutcome] = field(default_factory=list)
    elapsed_ms: float = 0.0

    @property
    def selected(self) -> int:
        return len(self.outcomes)

    @property
    def scored(self) -> int:
        return sum(1 for o in self.outcomes if o.scored)

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if not o.scored)

    def as_dict(self) -> dict:
        return {
            "source_id": str(self.source_id),
            "eligible": self.eligible,
            "reason": self.reason,
            "state": self.state.value,
            "selected": self.selected,
            "scored": self.scored,
            "failed": self.failed,
            "failures": [
                {
                    "target_id": str(o.target_id),
                    "stage": o.failed_stage,
                    "error": o.error,
                }
                for o in self.outcomes
                if not o.scored
            ],
            "elapsed_ms": self.elapsed_ms,
        }


class MatchGenerationService:
    """Top-level driver composing selection, oracle scoring and persistence.

    Dependencies are injected at construction so the pipeline can be run
    against fakes in tests and against the SQLAlchemy stores and Gemini
    oracle in production.
    """

    def __init__(
        self,
        user_store: Any,
        recommendation_store: Any,
        oracle: Any,
        selector: CandidateSelector | None = None,
        concurrency: int | None = None,
        oracle_timeout_seconds: float | None = None,
    ) -> None:
        """Initialise the orchestrator.

        Parameters
        ----------
        user_store:
            Provides ``find_by_id`` and ``find_candidates``.
        recommendation_store:
            Provides ``upsert_scores``.
        oracle:
            Provides async ``decode_photo``, ``build_request`` and async
            ``judge``.
        selector:
            Candidate selector; built over ``user_store`` when omitted.
        concurrency:
            Max candidates scored at once for one source user.
        oracle_timeout_seconds:
            Per-candidate ceiling on the oracle call.
        """
        settings = get_settings()

        self.user_store = user_store
        self.recommendation_store = recommendation_store
        self.oracle = oracle
        self.selector = selector or CandidateSelector(user_store)
        self.concurrency: int = concurrency or settings.MATCH_WORKER_CONCURRENCY
        self.oracle_timeout_seconds: float = (
            oracle_timeout_seconds or settings.ORACLE_TIMEOUT_SECONDS
        )

        logger.info(
            "match_generation_service_initialised",
            concurrency=self.concurrency,
            oracle_timeout_seconds=self.oracle_timeout_seconds,
            candidate_limit=self.selector.limit,
        )

    # ── Public API ────────────────────────────────────────────────────────

    async def generate_for_user(self, source_id: uuid.UUID) -> GenerationRunSummary:
        """Run the full pipeline for one source user and summarise it."""
        start = time.monotonic()
        log = logger.bind(source_id=str(source_id))
        summary = GenerationRunSummary(source_id=source_id, eligible=False)

        log.info("run_state", state=RunState.SELECTING.value)
        summary.state = RunState.SELECTING

        source = await self.user_store.find_by_id(source_id)
        if source is None:
            summary.reason = "user_not_found"
            return self._finish(summary, start, log)

        selection = await self.selector.select(source)
        summary.eligible = selection.eligible
        summary.reason = selection.reason

        if not selection.eligible or not selection.candidates:
            return self._finish(summary, start, log)

        # Decoded once; every candidate request reuses it.
        source_image = await self.oracle.decode_photo(source.photo_url)

        semaphore = asyncio.Semaphore(self.concurrency)
        summary.outcomes = list(
            await asyncio.gather(
                *(
                    self._score_candidate(
                        source, source_image, candidate, index, semaphore, log
                    )
                    for index, candidate in enumerate(selection.candidates)
                )
            )
        )

        return self._finish(summary, start, log)

    # ── Per-candidate step ────────────────────────────────────────────────

    async def _score_candidate(
        self,
        source: UserProfile,
        source_image: InlineImage | None,
        candidate: CandidateRecord,
        index: int,
        semaphore: asyncio.Semaphore,
        log: Any,
    ) -> CandidateOutcome:
        target = candidate.profile
        clog = log.bind(target_id=str(target.id), index=index)

        async with semaphore:
            clog.debug(
                "run_state",
                state=RunState.SCORING.value,
                distance_km=round(candidate.distance_km, 2),
            )

            try:
                target_image = await self.oracle.decode_photo(target.photo_url)
                request = self.oracle.build_request(
                    source, target, source_image, target_image
                )
                judgment = await asyncio.wait_for(
                    self.oracle.judge(request),
                    timeout=self.oracle_timeout_seconds,
                )
            except asyncio.TimeoutError:
                clog.warning(
                    "candidate_oracle_timeout",
                    timeout_seconds=self.oracle_timeout_seconds,
                )
                return CandidateOutcome(
                    target_id=target.id,
                    scored=False,
                    failed_stage="oracle",
                    error="timeout",
                )
            except Exception as exc:
                clog.warning(
                    "candidate_oracle_failed",
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                return CandidateOutcome(
                    target_id=target.id,
                    scored=False,
                    failed_stage="oracle",
                    error=str(exc),
                )

            scores = derive_scores(
                judgment.source_swipe_probability,
                judgment.target_swipe_probability,
            )
            factors = judgment.match_factors.to_match_factors()

            clog.debug("run_state", state=RunState.PERSISTING.value)
            try:
                await self.recommendation_store.upsert_scores(
                    source.id,
                    target.id,
                    {
                        Algorithm.ONE_WAY: scores.one_way,
                        Algorithm.TWO_WAY: scores.two_way,
                    },
                    judgment.reasoning,
                    factors,
                )
            except Exception as exc:
                clog.warning(
                    "candidate_persistence_failed",
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                return CandidateOutcome(
                    target_id=target.id,
                    scored=False,
                    failed_stage="persistence",
                    error=str(exc),
                )

        clog.info(
            "candidate_scored",
            one_way=scores.one_way,
            two_way=scores.two_way,
        )
        return CandidateOutcome(
            target_id=target.id,
            scored=True,
            one_way_score=scores.one_way,
            two_way_score=scores.two_way,
        )

    # ── Helpers ──────────────────────────────────────────────────────────

    @staticmethod
    def _finish(summary: GenerationRunSummary, start: float, log: Any) -> GenerationRunSummary:
        summary.state = RunState.DONE
        summary.elapsed_ms = round((time.monotonic() - start) * 1000, 2)
        log.info(
            "run_state",
            state=RunState.DONE.value,
            eligible=summary.eligible,
            reason=summary.reason,
            selected=summary.selected,
            scored=summary.scored,
            failed=summary.failed,
            elapsed_ms=summary.elapsed_ms,
        )
        return summary
