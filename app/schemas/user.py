from pydantic import BaseModel, Field, field_validator, model_validator
from uuid import UUID
from datetime import datetime
from enum import Enum
from typing import Optional


class Gender(str, Enum):
    MALE = "Male"
    FEMALE = "Female"


class AgeRange(BaseModel):
    min: int = Field(18, ge=18, le=100)
    max: int = Field(100, ge=18, le=100)

    @model_validator(mode="after")
    def _ordered(self) -> "AgeRange":
        if self.min > self.max:
            raise ValueError("age range min must not exceed max")
        return self


def _clean_tags(value) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        raise ValueError("expected a list of strings, got a bare string")
    tags: list[str] = []
    for item in value:
        tag = str(item.value if isinstance(item, Enum) else item).strip()
        if tag and tag not in tags:
            tags.append(tag)
    return tags


class UserProfile(BaseModel):
    """Validated view of a ``users`` row used by the matching pipeline."""

    id: UUID
    name: str
    age: int
    gender: Gender
    location: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    job_title: Optional[str] = None
    bio: Optional[str] = None
    interests: list[str] = []
    looking_for_description: Optional[str] = None
    photo_url: Optional[str] = None
    interested_in: frozenset[Gender] = frozenset()
    age_range_min: Optional[int] = None
    age_range_max: Optional[int] = None
    onboarding_completed: bool = False

    model_config = {"from_attributes": True}

    @field_validator("interests", mode="before")
    @classmethod
    def _interests(cls, v):
        return _clean_tags(v)

    @field_validator("interested_in", mode="before")
    @classmethod
    def _interested_in(cls, v):
        return frozenset(_clean_tags(v))

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None


class UserCreate(BaseModel):
    email: str
    name: str
    age: int = Field(ge=18, le=100)
    gender: Gender
    location: Optional[str] = None


class UserUpdate(BaseModel):
    name: Optional[str] = None
    age: Optional[int] = Field(None, ge=18, le=100)
    gender: Optional[Gender] = None
    location: Optional[str] = None
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    job_title: Optional[str] = None
    bio: Optional[str] = None
    interests: Optional[list[str]] = None
    looking_for_description: Optional[str] = None
    photo_url: Optional[str] = None
    interested_in: Optional[list[Gender]] = None
    age_range_preference: Optional[AgeRange] = None
    onboarding_completed: Optional[bool] = None

    # May be omitted, but never cleared: the columns are NOT NULL.
    @field_validator("name", "age", "gender", "onboarding_completed")
    @classmethod
    def _not_null(cls, v, info):
        if v is None:
            raise ValueError(f"{info.field_name} cannot be null")
        return v

    @field_validator("interests", mode="before")
    @classmethod
    def _interests(cls, v):
        return None if v is None else _clean_tags(v)

    @model_validator(mode="after")
    def _coordinates_paired(self) -> "UserUpdate":
        if (self.latitude is None) != (self.longitude is None):
            raise ValueError("latitude and longitude must be supplied together")
        return self


class UserResponse(BaseModel):
    id: UUID
    email: str
    name: str
    age: int
    gender: Gender
    location: Optional[str]
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    job_title: Optional[str] = None
    bio: Optional[str] = None
    interests: list[str] = []
    looking_for_description: Optional[str] = None
    photo_url: Optional[str] = None
    interested_in: list[Gender] = []
    age_range_min: Optional[int] = None
    age_range_max: Optional[int] = None
    onboarding_completed: bool
    created_at: datetime

    model_config = {"from_attributes": True}

    @field_validator("interests", "interested_in", mode="before")
    @classmethod
    def _null_lists(cls, v):
        return v or []
