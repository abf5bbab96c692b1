"""
Lumen — Users API

Minimal profile surface the recommendation pipeline depends on: create a
user, read a user, and update a profile.  Updating a profile resolves the
location text to coordinates and, once onboarding is complete, schedules a
background recommendation run.
"""

from __future__ import annotations

import uuid

import structlog
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.matching import get_generation_queue
from app.database import get_db
from app.models.user import User
from app.schemas.user import UserCreate, UserResponse, UserUpdate
from app.services.generation_queue import MatchGenerationQueue
from app.services.geocoding_service import GeocodingService

logger = structlog.get_logger("lumen.api.users")

router = APIRouter()

_geocoding_service: GeocodingService | None = None


def get_geocoding_service() -> GeocodingService:
    global _geocoding_service
    if _geocoding_service is None:
        _geocoding_service = GeocodingService()
    return _geocoding_service


async def _get_user_or_404(db: AsyncSession, user_id: uuid.UUID) -> User:
    user = await db.get(User, user_id)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"User {user_id} not found.",
        )
    return user


# ──────────────────────────────────────────────────────────────────────────────
# POST / — Create a new user
# ──────────────────────────────────────────────────────────────────────────────

@router.post(
    "/",
    response_model=UserResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a new user",
)
async def create_user(
    payload: UserCreate,
    db: AsyncSession = Depends(get_db),
) -> User:
    """Register a new user account; the email must be unused."""
    log = logger.bind(email=payload.email)
    log.info("create_user_start")

    stmt = select(User).where(User.email == payload.email)
    result = await db.execute(stmt)
    if result.scalar_one_or_none() is not None:
        log.warning("create_user_duplicate_email")
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="A user with this email already exists.",
        )

    new_user = User(
        email=payload.email,
        name=payload.name,
        age=payload.age,
        gender=payload.gender.value,
        location=payload.location,
        interests=[],
        interested_in=[],
    )
    db.add(new_user)
    await db.commit()
    await db.refresh(new_user)

    log.info("create_user_complete", user_id=str(new_user.id))
    return new_user


# ──────────────────────────────────────────────────────────────────────────────
# GET /{user_id} — Get user by ID
# ──────────────────────────────────────────────────────────────────────────────

@router.get(
    "/{user_id}",
    response_model=UserResponse,
    summary="Get user by ID",
)
async def get_user(
    user_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
) -> User:
    return await _get_user_or_404(db, user_id)


# ──────────────────────────────────────────────────────────────────────────────
# PUT /{user_id} — Update profile
# ──────────────────────────────────────────────────────────────────────────────

@router.put(
    "/{user_id}",
    response_model=UserResponse,
    summary="Update a user's profile",
)
async def update_user(
    user_id: uuid.UUID,
    payload: UserUpdate,
    db: AsyncSession = Depends(get_db),
    geocoder: GeocodingService = Depends(get_geocoding_service),
    queue: MatchGenerationQueue = Depends(get_generation_queue),
) -> User:
    """Apply a partial profile update.

    - Explicit latitude/longitude win; otherwise a changed location is
      geocoded, and a cleared location clears the coordinates.
    - When the profile has completed onboarding, a background
      recommendation run is scheduled after the update is committed.
    """
    log = logger.bind(user_id=str(user_id))
    user = await _get_user_or_404(db, user_id)

    changes = payload.model_dump(exclude_unset=True)
    previous_location = user.location

    age_range = changes.pop("age_range_preference", None)
    if age_range is not None:
        user.age_range_min = age_range["min"]
        user.age_range_max = age_range["max"]

    if "gender" in changes and changes["gender"] is not None:
        changes["gender"] = changes["gender"].value
    if "interested_in" in changes:
        changes["interested_in"] = [g.value for g in changes["interested_in"] or []]

    for field_name, value in changes.items():
        setattr(user, field_name, value)

    coordinates_supplied = "latitude" in changes and changes["latitude"] is not None
    if not coordinates_supplied and "location" in changes and user.location != previous_location:
        if user.location:
            coords = await geocoder.geocode(user.location)
            user.latitude, user.longitude = coords if coords else (None, None)
        else:
            user.latitude, user.longitude = None, None
        log.info(
            "location_geocoded",
            resolved=user.latitude is not None,
        )

    await db.commit()
    await db.refresh(user)
    log.info("update_user_complete", fields=sorted(changes))

    if user.onboarding_completed:
        await queue.submit(user.id)

    return user
