"""Service request lifecycle: creation, assignment and status transitions"""

import logging
from datetime import datetime
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from kanway.config import settings
from kanway.db.models import (
    HeroProfile,
    Profile,
    ProfileRole,
    RequestCategory,
    RequestStatus,
    ServiceRequest,
)
from kanway.exceptions import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    RollbackFailureError,
    ValidationError,
)
from kanway.schemas.requests import BudgetRange, RequestCreate, RequestUpdate
from kanway.services.acceptances import AcceptanceService
from kanway.services.identity import IdentityMapper
from kanway.services.notifications import NotificationEmitter, NullNotificationEmitter, safe_notify
from kanway.services.settlement import SettlementPolicy, build_completion_event, get_settlement_policy
from kanway.services.wallets import WalletService
from kanway.utils.time import as_utc, utcnow

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[RequestStatus, set[RequestStatus]] = {
    RequestStatus.PENDING: {RequestStatus.ASSIGNED, RequestStatus.CANCELLED},
    RequestStatus.ASSIGNED: {RequestStatus.ACTIVE, RequestStatus.COMPLETED, RequestStatus.CANCELLED},
    RequestStatus.ACTIVE: {RequestStatus.COMPLETED, RequestStatus.CANCELLED},
    RequestStatus.COMPLETED: set(),
    RequestStatus.CANCELLED: set(),
}


class RequestService:
    """Service for the service request state machine"""

    def __init__(
        self,
        db: AsyncSession,
        notifier: NotificationEmitter | None = None,
        settlement_policy: SettlementPolicy | None = None,
    ):
        self.db = db
        self.notifier = notifier or NullNotificationEmitter()
        self.identity = IdentityMapper(db)
        self.acceptances = AcceptanceService(db, notifier=self.notifier)
        self.settlement_policy = settlement_policy or get_settlement_policy()

    async def create_request(self, requester_id: UUID, data: RequestCreate) -> ServiceRequest:
        """
        Create a pending request for a requester.

        Not idempotent: identical input creates a second request.

        Raises:
            AuthorizationError: caller has no civilian profile
            ValidationError: first violated field
        """
        profile = await self.db.get(Profile, requester_id)
        if profile is None or profile.role != ProfileRole.CIVILIAN:
            raise AuthorizationError("Only civilians can create service requests")

        title = self._validate_text("title", data.title, settings.request_title_max_length)
        description = self._validate_text(
            "description", data.description, settings.request_description_max_length
        )
        category = self._parse_category(data.category)
        scheduled_date = self._validate_scheduled_date(data.scheduled_date)
        self._validate_budget(data.budget)

        request = ServiceRequest(
            requester_id=requester_id,
            title=title,
            description=description,
            category=category,
            location=data.location.model_dump(),
            scheduled_date=scheduled_date,
            estimated_duration=self._clamp_duration(data.estimated_duration),
            budget_min_cents=data.budget.min_cents,
            budget_max_cents=data.budget.max_cents,
            budget_currency=data.budget.currency,
            payment_method=data.payment_method,
            status=RequestStatus.PENDING,
            assigned_provider_id=None,
        )
        self.db.add(request)
        await self.db.commit()

        logger.info(f"Created service request {request.id} ({category.value}) for {requester_id}")
        return request

    async def get_request(self, request_id: UUID, caller_id: UUID) -> ServiceRequest:
        """Visible to the requester, the assigned provider, and any provider while open"""
        request = await self._get_request(request_id)

        if caller_id in (request.requester_id, request.assigned_provider_id):
            return request
        if request.status == RequestStatus.PENDING and request.assigned_provider_id is None:
            if await self._is_provider(caller_id):
                return request

        raise AuthorizationError("You do not have access to this request")

    async def list_available(self, limit: int = 50, offset: int = 0) -> tuple[list[ServiceRequest], int]:
        """Open requests, newest first. Always read from the store."""
        conditions = [
            ServiceRequest.status == RequestStatus.PENDING,
            ServiceRequest.assigned_provider_id.is_(None),
        ]
        return await self._list(conditions, limit, offset)

    async def list_for_requester(
        self,
        requester_id: UUID,
        status: RequestStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[ServiceRequest], int]:
        conditions = [ServiceRequest.requester_id == requester_id]
        if status:
            conditions.append(ServiceRequest.status == status)
        return await self._list(conditions, limit, offset)

    async def list_for_provider(
        self,
        provider_id: UUID,
        status: RequestStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[ServiceRequest], int]:
        conditions = [ServiceRequest.assigned_provider_id == provider_id]
        if status:
            conditions.append(ServiceRequest.status == status)
        return await self._list(conditions, limit, offset)

    async def update_request(self, request_id: UUID, caller_id: UUID, data: RequestUpdate) -> ServiceRequest:
        """Apply a requester's edits while the request is still pending"""
        request = await self._lock_request(request_id)
        if request.requester_id != caller_id:
            raise AuthorizationError("Only the requester can edit this request")
        if request.status != RequestStatus.PENDING:
            raise ConflictError("Only pending requests can be edited")

        if data.title is not None:
            request.title = self._validate_text("title", data.title, settings.request_title_max_length)
        if data.description is not None:
            request.description = self._validate_text(
                "description", data.description, settings.request_description_max_length
            )
        if data.location is not None:
            request.location = data.location.model_dump()
        if data.scheduled_date is not None:
            request.scheduled_date = self._validate_scheduled_date(data.scheduled_date)
        if data.estimated_duration is not None:
            request.estimated_duration = self._clamp_duration(data.estimated_duration)
        if data.budget is not None:
            self._validate_budget(data.budget)
            request.budget_min_cents = data.budget.min_cents
            request.budget_max_cents = data.budget.max_cents
            request.budget_currency = data.budget.currency

        await self.db.commit()
        logger.info(f"Updated service request {request_id}")
        return request

    async def choose_provider(self, request_id: UUID, provider_public_id: UUID, requester_id: UUID) -> ServiceRequest:
        """
        Assign a pending request to one of the providers who accepted it.

        Runs as two committed steps: mark the acceptance chosen, then assign
        the request with a conditional update. If the second step does not
        apply, the first is compensated.

        Raises:
            AuthorizationError: caller is not the requester
            ConflictError: request is no longer pending or was taken concurrently
            NotFoundError: unknown provider, or provider never accepted
            RollbackFailureError: the compensation itself failed
        """
        request = await self._get_request(request_id)
        if request.requester_id != requester_id:
            raise AuthorizationError("Only the requester can choose a provider")
        if request.status != RequestStatus.PENDING or request.assigned_provider_id is not None:
            raise ConflictError("Request is no longer pending")

        hero_profile_id = await self.identity.public_to_internal(provider_public_id)

        # Step 1: mark the acceptance chosen
        await self.acceptances.mark_chosen(request_id, hero_profile_id)

        # Step 2: assign the request only if nobody got there first
        try:
            assigned = await self._assign(request_id, provider_public_id)
        except SQLAlchemyError as e:
            logger.error(f"Assigning request {request_id} failed: {e}")
            await self._compensate_choice(request_id, hero_profile_id)
            raise

        if not assigned:
            await self._compensate_choice(request_id, hero_profile_id)
            raise ConflictError("request no longer available")

        request = await self._get_request(request_id)
        logger.info(f"Request {request_id} assigned to provider {provider_public_id}")
        await safe_notify(
            self.notifier.request_status_changed(request, RequestStatus.PENDING, RequestStatus.ASSIGNED)
        )
        return request

    async def transition(self, request_id: UUID, new_status: str | RequestStatus, caller_id: UUID) -> ServiceRequest:
        """
        Move a request along the lifecycle.

        Only the requester cancels; only the assigned provider starts or
        completes. Completion books the wallet side in the same commit.
        """
        target = self._parse_status(new_status)
        request = await self._lock_request(request_id)
        current = request.status

        if target not in ALLOWED_TRANSITIONS[current]:
            raise ConflictError(f"Cannot change status from {current.value} to {target.value}")
        if target == RequestStatus.ASSIGNED:
            raise ConflictError("Requests are assigned by choosing a provider")

        if target == RequestStatus.CANCELLED:
            if caller_id != request.requester_id:
                raise AuthorizationError("Only the requester can cancel this request")
        elif caller_id != request.assigned_provider_id:
            raise AuthorizationError("Only the assigned provider can update this request")

        previous_provider_id = request.assigned_provider_id
        now = utcnow()
        request.status = target
        request.updated_at = now

        if target == RequestStatus.CANCELLED:
            request.cancelled_at = now
            request.assigned_provider_id = None
        elif target == RequestStatus.COMPLETED:
            request.completed_at = now
            event = build_completion_event(request, self.settlement_policy)
            await WalletService(self.db).apply_completion_event(event)
            await self.db.execute(
                update(HeroProfile)
                .where(HeroProfile.profile_id == event.provider_id)
                .values(completed_jobs=HeroProfile.completed_jobs + 1)
            )

        await self.db.commit()

        logger.info(f"Request {request_id} moved from {current.value} to {target.value} by {caller_id}")
        await safe_notify(
            self.notifier.request_status_changed(
                request,
                current,
                target,
                previous_provider_id=previous_provider_id if target == RequestStatus.CANCELLED else None,
            )
        )
        return request

    async def _assign(self, request_id: UUID, provider_public_id: UUID) -> bool:
        stmt = (
            update(ServiceRequest)
            .where(
                ServiceRequest.id == request_id,
                ServiceRequest.status == RequestStatus.PENDING,
                ServiceRequest.assigned_provider_id.is_(None),
            )
            .values(status=RequestStatus.ASSIGNED, assigned_provider_id=provider_public_id)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        if result.rowcount != 1:
            return False
        await self.db.commit()
        return True

    async def _compensate_choice(self, request_id: UUID, hero_profile_id: UUID) -> None:
        try:
            await self.db.rollback()
            await self.acceptances.unmark_chosen(request_id, hero_profile_id)
        except SQLAlchemyError as e:
            logger.critical(
                f"Could not reset chosen acceptance for request {request_id} "
                f"(hero profile {hero_profile_id}): {e}. Manual reconciliation required",
                exc_info=True,
            )
            raise RollbackFailureError(
                "Provider choice could not be rolled back; manual reconciliation required"
            ) from e
        logger.warning(f"Rolled back provider choice on request {request_id}")

    async def _list(self, conditions: list, limit: int, offset: int) -> tuple[list[ServiceRequest], int]:
        stmt = (
            select(ServiceRequest)
            .where(*conditions)
            .order_by(ServiceRequest.created_at.desc())
            .offset(offset)
            .limit(limit)
        )
        count_stmt = select(func.count(ServiceRequest.id)).where(*conditions)

        result = await self.db.execute(stmt)
        requests = result.scalars().all()
        total = (await self.db.execute(count_stmt)).scalar() or 0
        return list(requests), total

    async def _is_provider(self, profile_id: UUID) -> bool:
        stmt = select(HeroProfile.id).where(HeroProfile.profile_id == profile_id)
        return (await self.db.execute(stmt)).first() is not None

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

    async def _lock_request(self, request_id: UUID) -> ServiceRequest:
        stmt = (
            select(ServiceRequest)
            .where(ServiceRequest.id == request_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        request = result.scalar_one_or_none()
        if request is None:
            raise NotFoundError("Service request not found")
        return request

    @staticmethod
    def _validate_text(field: str, value: str, max_length: int) -> str:
        value = (value or "").strip()
        if not value:
            raise ValidationError(f"{field.capitalize()} is required", field=field)
        if len(value) > max_length:
            raise ValidationError(
                f"{field.capitalize()} must be at most {max_length} characters", field=field
            )
        return value

    @staticmethod
    def _parse_category(value: str) -> RequestCategory:
        try:
            return RequestCategory((value or "").strip().lower())
        except ValueError:
            allowed = ", ".join(c.value for c in RequestCategory)
            raise ValidationError(f"Category must be one of: {allowed}", field="category") from None

    @staticmethod
    def _parse_status(value: str | RequestStatus) -> RequestStatus:
        if isinstance(value, RequestStatus):
            return value
        try:
            return RequestStatus((value or "").strip().lower())
        except ValueError:
            raise ValidationError(f"Unknown status: {value}", field="status") from None

    @staticmethod
    def _validate_scheduled_date(value: datetime) -> datetime:
        scheduled = as_utc(value)
        if scheduled <= utcnow():
            raise ValidationError("Scheduled date must be in the future", field="scheduled_date")
        return scheduled

    @staticmethod
    def _validate_budget(budget: BudgetRange) -> None:
        if budget.min_cents < 0:
            raise ValidationError("Minimum budget cannot be negative", field="budget.min_cents")
        if budget.max_cents < budget.min_cents:
            raise ValidationError(
                "Maximum budget must be greater than or equal to minimum", field="budget.max_cents"
            )

    @staticmethod
    def _clamp_duration(hours: int) -> int:
        return max(settings.request_min_duration_hours, min(settings.request_max_duration_hours, hours))
