"""Settlement amount and platform commission for completed jobs"""

import logging
from dataclasses import dataclass
from typing import Protocol
from uuid import UUID

from kanway.config import settings
from kanway.db.models import PaymentMethod, ServiceRequest

logger = logging.getLogger(__name__)


class SettlementPolicy(Protocol):
    name: str

    def amount_for(self, request: ServiceRequest) -> int:
        """Settlement amount in cents for a completed request"""
        ...


class MidpointSettlementPolicy:
    """Midpoint of the requester's budget range, rounded down to the cent"""

    name = "midpoint"

    def amount_for(self, request: ServiceRequest) -> int:
        return (request.budget_min_cents + request.budget_max_cents) // 2


class MinimumBudgetSettlementPolicy:
    """Lower bound of the budget range"""

    name = "minimum"

    def amount_for(self, request: ServiceRequest) -> int:
        return request.budget_min_cents


_POLICIES: dict[str, type] = {
    MidpointSettlementPolicy.name: MidpointSettlementPolicy,
    MinimumBudgetSettlementPolicy.name: MinimumBudgetSettlementPolicy,
}


def get_settlement_policy(name: str | None = None) -> SettlementPolicy:
    name = name or settings.settlement_policy
    try:
        return _POLICIES[name]()
    except KeyError:
        raise ValueError(f"Unknown settlement policy: {name}") from None


@dataclass(frozen=True)
class CompletionEvent:
    """Emitted by the request lifecycle when a job reaches ``completed``"""
    request_id: UUID
    provider_id: UUID
    payment_method: PaymentMethod
    settlement_cents: int
    commission_cents: int

    @property
    def provider_earnings_cents(self) -> int:
        return self.settlement_cents - self.commission_cents


def build_completion_event(
    request: ServiceRequest,
    policy: SettlementPolicy | None = None,
    fee_percentage: float | None = None,
) -> CompletionEvent:
    """Price a completed request"""
    if request.assigned_provider_id is None:
        raise ValueError(f"Request {request.id} has no assigned provider")

    policy = policy or get_settlement_policy()
    if fee_percentage is None:
        fee_percentage = settings.platform_fee_percentage

    settlement_cents = policy.amount_for(request)
    commission_cents = int(settlement_cents * fee_percentage)

    logger.debug(
        f"Settlement for request {request.id}: {settlement_cents} cents "
        f"({policy.name}), commission {commission_cents} cents"
    )

    return CompletionEvent(
        request_id=request.id,
        provider_id=request.assigned_provider_id,
        payment_method=request.payment_method,
        settlement_cents=settlement_cents,
        commission_cents=commission_cents,
    )
