"""Translation between public identities and internal provider record ids"""

import logging
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from kanway.db.models import HeroProfile
from kanway.exceptions import NotFoundError

logger = logging.getLogger(__name__)


class IdentityMapper:
    """Maps ``profiles.id`` (public) to ``hero_profiles.id`` (internal) and back.

    The internal id is a backend join key only. Everything handed to callers
    outside the service layer uses the public identity. No caching: these
    reads feed assignment and acceptance guards.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def public_to_internal(self, public_id: UUID) -> UUID:
        stmt = select(HeroProfile.id).where(HeroProfile.profile_id == public_id)
        result = await self.db.execute(stmt)
        internal_id = result.scalar_one_or_none()
        if internal_id is None:
            logger.debug(f"No provider record for public id {public_id}")
            raise NotFoundError("Hero profile not found", field="provider_id")
        return internal_id

    async def internal_to_public(self, internal_id: UUID) -> UUID:
        stmt = select(HeroProfile.profile_id).where(HeroProfile.id == internal_id)
        result = await self.db.execute(stmt)
        public_id = result.scalar_one_or_none()
        if public_id is None:
            raise NotFoundError("Hero profile not found")
        return public_id

    async def internal_to_public_many(self, internal_ids: list[UUID]) -> dict[UUID, UUID]:
        """Bulk variant used when projecting acceptance lists"""
        if not internal_ids:
            return {}
        stmt = select(HeroProfile.id, HeroProfile.profile_id).where(HeroProfile.id.in_(internal_ids))
        result = await self.db.execute(stmt)
        return {row.id: row.profile_id for row in result}
