"""Profile management and the available-provider directory"""

import logging
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from kanway.config import settings
from kanway.db.models import HeroProfile, Profile, ProfileRole
from kanway.exceptions import ConflictError, NotFoundError, ValidationError
from kanway.schemas.acceptances import HeroPublicProfile
from kanway.schemas.profiles import HeroDirectoryFilters, HeroProfileCreate, ProfileCreate
from kanway.services.cache import ResponseCache
from kanway.services.wallets import WalletService

logger = logging.getLogger(__name__)

# Directory listings only; never used for guard reads
directory_cache = ResponseCache(ttl_seconds=settings.directory_cache_ttl_seconds)


class ProfileService:
    """Service for public profiles and provider records"""

    def __init__(self, db: AsyncSession, cache: ResponseCache | None = None):
        self.db = db
        self.cache = cache or directory_cache

    async def create_profile(self, profile_id: UUID, data: ProfileCreate) -> Profile:
        """Create the public profile for an authenticated identity"""
        existing = await self.db.get(Profile, profile_id)
        if existing:
            raise ConflictError("Profile already exists")

        profile = Profile(
            id=profile_id,
            role=data.role,
            full_name=data.full_name,
            phone=data.phone,
        )
        self.db.add(profile)
        await self.db.commit()

        logger.info(f"Created {data.role.value} profile {profile_id}")
        return profile

    async def get_profile(self, profile_id: UUID) -> Profile:
        profile = await self.db.get(Profile, profile_id)
        if profile is None:
            raise NotFoundError("Profile not found")
        return profile

    async def create_hero_profile(self, profile_id: UUID, data: HeroProfileCreate) -> HeroProfile:
        """Create the provider record and its wallet in one unit of work"""
        profile = await self.get_profile(profile_id)
        if profile.role != ProfileRole.HERO:
            raise ValidationError("Only hero profiles can register as providers", field="role")

        existing = await self._get_hero_by_profile(profile_id)
        if existing:
            raise ConflictError("Hero profile already exists")

        hero = HeroProfile(
            profile_id=profile_id,
            skills=data.skills,
            hourly_rate_cents=data.hourly_rate_cents,
            profile_image_url=data.profile_image_url,
        )
        self.db.add(hero)
        await self.db.flush()

        await WalletService(self.db).create_wallet(profile_id)
        await self.db.commit()
        await self.cache.invalidate("heroes:")

        logger.info(f"Registered provider {profile_id} with skills {data.skills}")
        return hero

    async def get_hero_profile(self, profile_id: UUID) -> HeroProfile:
        hero = await self._get_hero_by_profile(profile_id)
        if hero is None:
            raise NotFoundError("Hero profile not found")
        return hero

    async def list_available_heroes(self, filters: HeroDirectoryFilters | None = None) -> list[HeroPublicProfile]:
        """Public directory of available providers (cached)"""
        filters = filters or HeroDirectoryFilters()

        async def load() -> list[HeroPublicProfile]:
            return await self._query_heroes(filters)

        return await self.cache.get_or_load(filters.cache_key(), load)

    async def _query_heroes(self, filters: HeroDirectoryFilters) -> list[HeroPublicProfile]:
        stmt = (
            select(HeroProfile, Profile.full_name)
            .join(Profile, Profile.id == HeroProfile.profile_id)
            .where(HeroProfile.is_available.is_(True))
        )
        if filters.min_rating is not None:
            stmt = stmt.where(HeroProfile.rating >= filters.min_rating)
        if filters.max_rate_cents is not None:
            stmt = stmt.where(HeroProfile.hourly_rate_cents <= filters.max_rate_cents)
        stmt = stmt.order_by(HeroProfile.rating.desc(), HeroProfile.completed_jobs.desc())

        result = await self.db.execute(stmt)

        wanted = {skill.strip().lower() for skill in filters.skills if skill.strip()}
        heroes = []
        for hero, full_name in result:
            # Skill matching in Python keeps the query portable across JSON backends
            if wanted and not wanted.intersection(hero.skills or []):
                continue
            heroes.append(
                HeroPublicProfile(
                    profile_id=hero.profile_id,
                    full_name=full_name or "",
                    skills=hero.skills or [],
                    hourly_rate_cents=hero.hourly_rate_cents,
                    rating=hero.rating,
                    completed_jobs=hero.completed_jobs,
                    profile_image_url=hero.profile_image_url,
                )
            )
            if len(heroes) >= filters.limit:
                break

        return heroes

    async def _get_hero_by_profile(self, profile_id: UUID) -> HeroProfile | None:
        stmt = select(HeroProfile).where(HeroProfile.profile_id == profile_id)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()
