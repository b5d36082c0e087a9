"""Pydantic schemas for profile management API"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from kanway.db.models import ProfileRole


class ProfileCreate(BaseModel):
    role: ProfileRole
    full_name: str | None = Field(None, min_length=1, max_length=255)
    phone: str | None = Field(None, pattern=r"^\+?[0-9]{7,15}$")


class ProfileResponse(BaseModel):
    id: UUID
    role: ProfileRole
    full_name: str | None
    phone: str | None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class HeroProfileCreate(BaseModel):
    skills: list[str] = Field(..., min_length=1, max_length=20)
    hourly_rate_cents: int = Field(..., ge=1000, le=50000)
    profile_image_url: str | None = Field(None, max_length=2000)

    @field_validator("skills")
    @classmethod
    def normalize_skills(cls, v: list[str]) -> list[str]:
        cleaned = []
        for skill in v:
            skill = skill.strip().lower()
            if skill and skill not in cleaned:
                cleaned.append(skill)
        if not cleaned:
            raise ValueError("At least one skill is required")
        return cleaned


class HeroProfileResponse(BaseModel):
    """Provider's own view of their record; keyed by public identity"""
    profile_id: UUID
    skills: list[str]
    hourly_rate_cents: int
    rating: float
    completed_jobs: int
    profile_image_url: str | None
    is_available: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class HeroDirectoryFilters(BaseModel):
    skills: list[str] = Field(default_factory=list)
    min_rating: float | None = Field(None, ge=0.0, le=5.0)
    max_rate_cents: int | None = Field(None, ge=0)
    limit: int = Field(default=20, ge=1, le=100)

    def cache_key(self) -> str:
        return "heroes:" + self.model_dump_json()
