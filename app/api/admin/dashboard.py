"""
Lumen — Admin Dashboard API

Headline counts for operators: users, onboarded ("active") users, stored
recommendation rows and their mean score.
"""

from __future__ import annotations

import math

import structlog
from fastapi import APIRouter, Depends

from app.api.matching import get_recommendation_store, get_user_store
from app.schemas.admin import DashboardMetrics
from app.services.recommendation_store import RecommendationStore
from app.services.user_store import UserStore

logger = structlog.get_logger("lumen.api.admin.dashboard")

router = APIRouter()


# ──────────────────────────────────────────────────────────────────────────────
# GET /dashboard — Headline metrics
# ──────────────────────────────────────────────────────────────────────────────

@router.get(
    "/dashboard",
    response_model=DashboardMetrics,
    summary="Get headline user and recommendation metrics",
)
async def get_dashboard(
    user_store: UserStore = Depends(get_user_store),
    recommendation_store: RecommendationStore = Depends(get_recommendation_store),
) -> DashboardMetrics:
    """The average score is rounded half-up; it is 0 when nothing is stored."""
    user_count, active_user_count = await user_store.count_users()
    match_count, average = await recommendation_store.score_summary()

    metrics = DashboardMetrics(
        user_count=user_count,
        active_user_count=active_user_count,
        match_count=match_count,
        avg_match_score=math.floor(average + 0.5) if average is not None else 0,
    )
    logger.info("admin_dashboard", **metrics.model_dump())
    return metrics
