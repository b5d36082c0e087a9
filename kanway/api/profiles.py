"""Profile and provider directory API endpoints"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from kanway.api.deps import get_current_identity
from kanway.db.database import get_db
from kanway.schemas.acceptances import HeroPublicProfile
from kanway.schemas.profiles import (
    HeroDirectoryFilters,
    HeroProfileCreate,
    HeroProfileResponse,
    ProfileCreate,
    ProfileResponse,
)
from kanway.services.profiles import ProfileService

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("", response_model=ProfileResponse, status_code=status.HTTP_201_CREATED)
async def create_profile(
    profile_data: ProfileCreate,
    caller_id: UUID = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
) -> ProfileResponse:
    """Create the caller's public profile"""
    profile = await ProfileService(db).create_profile(caller_id, profile_data)
    return ProfileResponse.model_validate(profile)


@router.get("/me", response_model=ProfileResponse)
async def get_my_profile(
    caller_id: UUID = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
) -> ProfileResponse:
    profile = await ProfileService(db).get_profile(caller_id)
    return ProfileResponse.model_validate(profile)


@router.post("/hero", response_model=HeroProfileResponse, status_code=status.HTTP_201_CREATED)
async def register_hero(
    hero_data: HeroProfileCreate,
    caller_id: UUID = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
) -> HeroProfileResponse:
    """Register the caller as a provider; the wallet is created with it"""
    hero = await ProfileService(db).create_hero_profile(caller_id, hero_data)
    return HeroProfileResponse.model_validate(hero)


@router.get("/heroes", response_model=list[HeroPublicProfile])
async def list_heroes(
    skills: list[str] = Query([]),
    min_rating: float | None = Query(None, ge=0.0, le=5.0),
    max_rate_cents: int | None = Query(None, ge=0),
    limit: int = Query(20, ge=1, le=100),
    _: UUID = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
) -> list[HeroPublicProfile]:
    """Directory of available providers"""
    filters = HeroDirectoryFilters(
        skills=skills,
        min_rating=min_rating,
        max_rate_cents=max_rate_cents,
        limit=limit,
    )
    return await ProfileService(db).list_available_heroes(filters)
