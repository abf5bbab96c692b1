"""
Lumen — Matching API

Thin trigger surface over the recommendation pipeline:

- ``POST /{user_id}/generate`` starts a background generation run and
  returns at once.
- ``GET /{user_id}/recommendations`` reads the stored recommendations for
  one algorithm, best first.

Run outcomes are never reported back through this API; callers poll the
recommendations endpoint.
"""

from __future__ import annotations

import uuid

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.database import async_session_factory
from app.models.recommendation import Algorithm
from app.redis_client import get_redis
from app.schemas.recommendation import GenerateMatchesResponse, RecommendationView
from app.services.generation_queue import MatchGenerationQueue
from app.services.match_generation_service import MatchGenerationService
from app.services.oracle_service import GeminiCompatibilityOracle
from app.services.recommendation_store import RecommendationStore
from app.services.user_store import UserStore

logger = structlog.get_logger("lumen.api.matching")

router = APIRouter()

# ── Service singletons ────────────────────────────────────────────────────────

_user_store: UserStore | None = None
_recommendation_store: RecommendationStore | None = None
_generation_queue: MatchGenerationQueue | None = None


def get_user_store() -> UserStore:
    global _user_store
    if _user_store is None:
        _user_store = UserStore(async_session_factory)
    return _user_store


def get_recommendation_store() -> RecommendationStore:
    global _recommendation_store
    if _recommendation_store is None:
        _recommendation_store = RecommendationStore(async_session_factory)
    return _recommendation_store


def get_generation_queue() -> MatchGenerationQueue:
    global _generation_queue
    if _generation_queue is None:
        service = MatchGenerationService(
            user_store=get_user_store(),
            recommendation_store=get_recommendation_store(),
            oracle=GeminiCompatibilityOracle(),
        )
        _generation_queue = MatchGenerationQueue(service, redis_getter=get_redis)
    return _generation_queue


def current_generation_queue() -> MatchGenerationQueue | None:
    """The queue if one was ever created (used during shutdown)."""
    return _generation_queue


# ──────────────────────────────────────────────────────────────────────────────
# POST /{user_id}/generate — Start a background generation run
# ──────────────────────────────────────────────────────────────────────────────

@router.post(
    "/{user_id}/generate",
    response_model=GenerateMatchesResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Generate recommendations for a user in the background",
)
async def generate_matches(
    user_id: uuid.UUID,
    user_store: UserStore = Depends(get_user_store),
    queue: MatchGenerationQueue = Depends(get_generation_queue),
) -> GenerateMatchesResponse:
    """Fire-and-forget: schedule a run and return immediately.

    ``status`` is ``already_running`` when a run for this user is still in
    flight, here or in another process holding its run lock; no second run
    is started.
    """
    log = logger.bind(user_id=str(user_id))

    user = await user_store.find_by_id(user_id)
    if user is None:
        log.warning("generate_matches_user_not_found")
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"User {user_id} not found.",
        )

    accepted = await queue.submit(user_id)
    log.info("generate_matches_requested", accepted=accepted)

    return GenerateMatchesResponse(
        status="accepted" if accepted else "already_running",
        user_id=user_id,
    )


# ──────────────────────────────────────────────────────────────────────────────
# GET /{user_id}/recommendations — List stored recommendations
# ──────────────────────────────────────────────────────────────────────────────

@router.get(
    "/{user_id}/recommendations",
    response_model=list[RecommendationView],
    summary="List a user's recommendations for one algorithm",
)
async def list_recommendations(
    user_id: uuid.UUID,
    algorithm: Algorithm = Query(
        Algorithm.ONE_WAY,
        alias="type",
        description="Scoring algorithm: one_way or two_way",
    ),
    store: RecommendationStore = Depends(get_recommendation_store),
) -> list[RecommendationView]:
    """Return recommendations ordered by score, highest first."""
    recommendations = await store.list_for_source(user_id, algorithm)
    logger.info(
        "list_recommendations",
        user_id=str(user_id),
        algorithm=algorithm.value,
        count=len(recommendations),
    )
    return recommendations
