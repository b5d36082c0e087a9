"""Acceptance ledger: providers' expressions of interest in pending requests"""

import logging
from uuid import UUID

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from kanway.db.models import Acceptance, HeroProfile, Profile, RequestStatus, ServiceRequest
from kanway.exceptions import (
    AuthorizationError,
    ConflictError,
    InsufficientBalanceError,
    NotFoundError,
)
from kanway.schemas.acceptances import AcceptanceView, HeroPublicProfile, InterestResponse
from kanway.services.identity import IdentityMapper
from kanway.services.notifications import NotificationEmitter, NullNotificationEmitter, safe_notify
from kanway.services.wallets import WalletService

logger = logging.getLogger(__name__)


class AcceptanceService:
    """Service for recording and choosing acceptances"""

    def __init__(self, db: AsyncSession, notifier: NotificationEmitter | None = None):
        self.db = db
        self.identity = IdentityMapper(db)
        self.notifier = notifier or NullNotificationEmitter()

    async def express_interest(self, request_id: UUID, provider_public_id: UUID) -> InterestResponse:
        """
        Record that a provider wants a pending request.

        Args:
            request_id: Request ID
            provider_public_id: Provider's public identity (the caller)

        Returns:
            The new acceptance, keyed by public identity

        Raises:
            NotFoundError: unknown request or provider
            AuthorizationError: provider owns the request
            ConflictError: request not open, or interest already recorded
            InsufficientBalanceError: fee balance is below the threshold
        """
        hero_profile_id = await self.identity.public_to_internal(provider_public_id)
        request = await self._get_request(request_id)

        if request.requester_id == provider_public_id:
            raise AuthorizationError("You cannot accept your own request")
        if request.status != RequestStatus.PENDING or request.assigned_provider_id is not None:
            raise ConflictError("Request is no longer accepting interest")

        wallet_service = WalletService(self.db)
        if not await wallet_service.can_profile_accept_jobs(provider_public_id):
            raise InsufficientBalanceError(
                "Outstanding platform fees exceed your limit. Settle your fee balance to accept new jobs"
            )

        acceptance = Acceptance(request_id=request_id, hero_profile_id=hero_profile_id, chosen=False)
        self.db.add(acceptance)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            logger.info(f"Duplicate interest from {provider_public_id} on request {request_id}")
            raise ConflictError("You have already expressed interest in this request")

        logger.info(f"Provider {provider_public_id} expressed interest in request {request_id}")
        await safe_notify(self.notifier.acceptance_created(request, provider_public_id))

        return InterestResponse(
            id=acceptance.id,
            request_id=acceptance.request_id,
            provider_id=provider_public_id,
            accepted_at=acceptance.accepted_at,
            chosen=acceptance.chosen,
        )

    async def list_acceptances(self, request_id: UUID, caller_id: UUID) -> list[AcceptanceView]:
        """Acceptances for a request, projected onto public provider profiles"""
        request = await self._get_request(request_id)
        if request.requester_id != caller_id:
            raise AuthorizationError("Only the requester can view acceptances")

        stmt = (
            select(Acceptance, HeroProfile, Profile.full_name)
            .join(HeroProfile, HeroProfile.id == Acceptance.hero_profile_id)
            .join(Profile, Profile.id == HeroProfile.profile_id)
            .where(Acceptance.request_id == request_id)
            .order_by(Acceptance.accepted_at.asc())
        )
        result = await self.db.execute(stmt)

        views = []
        for acceptance, hero, full_name in result:
            views.append(
                AcceptanceView(
                    id=acceptance.id,
                    request_id=acceptance.request_id,
                    provider_id=hero.profile_id,
                    accepted_at=acceptance.accepted_at,
                    chosen=acceptance.chosen,
                    hero=HeroPublicProfile(
                        profile_id=hero.profile_id,
                        full_name=full_name or "",
                        skills=hero.skills or [],
                        hourly_rate_cents=hero.hourly_rate_cents,
                        rating=hero.rating,
                        completed_jobs=hero.completed_jobs,
                        profile_image_url=hero.profile_image_url,
                    ),
                )
            )
        return views

    async def mark_chosen(self, request_id: UUID, hero_profile_id: UUID) -> Acceptance:
        """
        Flip one acceptance to chosen; at most one per request.

        The flag is set by a conditional update so that exactly one caller
        owns the flip. A caller that finds the flag already set gets a
        ConflictError and has nothing to compensate.
        """
        other = aliased(Acceptance)
        another_chosen = (
            select(other.id)
            .where(other.request_id == request_id, other.chosen.is_(True))
            .exists()
        )
        stmt = (
            update(Acceptance)
            .where(
                Acceptance.request_id == request_id,
                Acceptance.hero_profile_id == hero_profile_id,
                Acceptance.chosen.is_(False),
                ~another_chosen,
            )
            .values(chosen=True)
            .execution_options(synchronize_session=False)
        )
        try:
            result = await self.db.execute(stmt)
            flipped = result.rowcount == 1
            if flipped:
                await self.db.commit()
        except IntegrityError:
            # Lost the race against a concurrent choice (partial unique index)
            await self.db.rollback()
            raise ConflictError("Another provider has already been chosen")

        acceptance = await self._get_acceptance(request_id, hero_profile_id)
        if acceptance is None:
            raise NotFoundError("This provider has not accepted the request", field="provider_id")
        if not flipped:
            if acceptance.chosen:
                raise ConflictError("This provider has already been chosen")
            raise ConflictError("Another provider has already been chosen")
        return acceptance

    async def unmark_chosen(self, request_id: UUID, hero_profile_id: UUID) -> None:
        """Compensating action for ``mark_chosen``"""
        stmt = (
            update(Acceptance)
            .where(
                Acceptance.request_id == request_id,
                Acceptance.hero_profile_id == hero_profile_id,
            )
            .values(chosen=False)
        )
        await self.db.execute(stmt)
        await self.db.commit()

    async def withdraw_interest(self, request_id: UUID, provider_public_id: UUID) -> None:
        """Provider retracts a non-chosen acceptance while the request is open"""
        hero_profile_id = await self.identity.public_to_internal(provider_public_id)
        request = await self._get_request(request_id)
        if request.status != RequestStatus.PENDING or request.assigned_provider_id is not None:
            raise ConflictError("Request is no longer pending")

        acceptance = await self._get_acceptance(request_id, hero_profile_id)
        if acceptance is None:
            raise NotFoundError("You have not accepted this request")
        if acceptance.chosen:
            raise ConflictError("A chosen acceptance cannot be withdrawn")

        await self.db.execute(delete(Acceptance).where(Acceptance.id == acceptance.id))
        await self.db.commit()

        logger.info(f"Provider {provider_public_id} withdrew interest in request {request_id}")

    async def _get_acceptance(self, request_id: UUID, hero_profile_id: UUID) -> Acceptance | None:
        stmt = (
            select(Acceptance)
            .where(
                Acceptance.request_id == request_id,
                Acceptance.hero_profile_id == hero_profile_id,
            )
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def _get_request(self, request_id: UUID) -> ServiceRequest:
        stmt = (
            select(ServiceRequest)
            .where(ServiceRequest.id == request_id)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        request = result.scalar_one_or_none()
        if request is None:
            raise NotFoundError("Service request not found")
        return request
