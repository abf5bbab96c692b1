"""
Lumen — Compatibility oracle contract.

Request side: the textual features of both users plus optional inline photos.
Response side: the structured judgment the oracle must return.  Field names
on the response follow the oracle's camelCase JSON; Python code reads the
snake_case attributes.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.schemas.recommendation import MatchFactors


class ProfileFeatures(BaseModel):
    name: str
    age: int
    gender: str
    job_title: str = ""
    bio: str = ""
    interests: list[str] = []
    looking_for: str = ""
    interested_in: list[str] = []


class InlineImage(BaseModel):
    mime_type: str
    data: bytes


class OracleRequest(BaseModel):
    source_features: ProfileFeatures
    target_features: ProfileFeatures
    source_image: Optional[InlineImage] = None
    target_image: Optional[InlineImage] = None


class OracleMatchFactors(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    shared_interests: list[str] = Field(default_factory=list, alias="sharedInterests")
    personality_match: str = Field("", alias="personalityMatch")
    lifestyle_compatibility: str = Field("", alias="lifestyleCompatibility")

    @field_validator("personality_match", "lifestyle_compatibility", mode="before")
    @classmethod
    def _none_to_empty(cls, v):
        return "" if v is None else v

    @field_validator("shared_interests", mode="before")
    @classmethod
    def _none_to_list(cls, v):
        return [] if v is None else v

    def to_match_factors(self) -> MatchFactors:
        return MatchFactors(
            shared_interests=self.shared_interests,
            personality_match=self.personality_match,
            lifestyle_compatibility=self.lifestyle_compatibility,
        )


class OracleJudgment(BaseModel):
    """Structured compatibility judgment returned by the oracle.

    Missing probabilities default to 0 rather than failing validation.
    """

    model_config = ConfigDict(populate_by_name=True)

    source_swipe_probability: int = Field(0, alias="sourceSwipeProbability")
    target_swipe_probability: int = Field(0, alias="targetSwipeProbability")
    reasoning: str = ""
    match_factors: OracleMatchFactors = Field(
        default_factory=OracleMatchFactors, alias="matchFactors"
    )

    @field_validator("source_swipe_probability", "target_swipe_probability", mode="before")
    @classmethod
    def _coerce_probability(cls, v):
        if v is None:
            return 0
        if isinstance(v, float):
            return round(v)
        return v

    @field_validator("reasoning", mode="before")
    @classmethod
    def _none_reasoning(cls, v):
        return "" if v is None else v

    @field_validator("match_factors", mode="before")
    @classmethod
    def _none_factors(cls, v):
        return {} if v is None else v
