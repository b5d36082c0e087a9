"""Read-side projections for acceptances.

These shapes are assembled through the identity mapping layer and carry
only the provider's public identity.
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field


class HeroPublicProfile(BaseModel):
    profile_id: UUID
    full_name: str
    skills: list[str] = Field(default_factory=list)
    hourly_rate_cents: int
    rating: float
    completed_jobs: int
    profile_image_url: str | None = None


class AcceptanceView(BaseModel):
    id: UUID
    request_id: UUID
    provider_id: UUID
    accepted_at: datetime
    chosen: bool
    hero: HeroPublicProfile


class AcceptanceListResponse(BaseModel):
    acceptances: list[AcceptanceView]
    total: int


class InterestResponse(BaseModel):
    """Returned to the provider who expressed interest"""
    id: UUID
    request_id: UUID
    provider_id: UUID
    accepted_at: datetime
    chosen: bool
