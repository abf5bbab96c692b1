from pydantic import BaseModel, Field, field_validator
from uuid import UUID
from datetime import datetime
from typing import Optional

from app.models.recommendation import Algorithm
from app.schemas.user import Gender


class MatchFactors(BaseModel):
    shared_interests: list[str] = []
    personality_match: str = ""
    lifestyle_compatibility: str = ""


class TargetPublicProfile(BaseModel):
    id: UUID
    name: str
    age: int
    gender: Gender
    location: Optional[str] = None
    job_title: Optional[str] = None
    bio: Optional[str] = None
    interests: list[str] = []
    photo_url: Optional[str] = None

    model_config = {"from_attributes": True}

    @field_validator("interests", mode="before")
    @classmethod
    def _null_interests(cls, v):
        return v or []


class RecommendationView(BaseModel):
    id: UUID
    source_user_id: UUID
    target_user_id: UUID
    algorithm: Algorithm
    score: int = Field(ge=0, le=100)
    reasoning: Optional[str] = None
    match_factors: Optional[MatchFactors] = None
    updated_at: datetime
    target_user: TargetPublicProfile


class GenerateMatchesResponse(BaseModel):
    status: str  # accepted / already_running
    user_id: UUID
