"""Admin API endpoints: ledger adjustments and withdrawal processing"""

import logging
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from kanway.api.deps import require_admin
from kanway.api.wallets import wallet_response
from kanway.db.database import get_db
from kanway.db.models import HeroWallet, RequestStatus, ServiceRequest, TransactionStatus, WithdrawalRequest
from kanway.schemas.wallets import (
    TransactionCreate,
    WalletResponse,
    WalletTransactionResponse,
    WithdrawalFailure,
    WithdrawalRequestResponse,
)
from kanway.services.wallets import WalletService

logger = logging.getLogger(__name__)
router = APIRouter(dependencies=[Depends(require_admin)])


@router.get("/stats")
async def get_system_stats(db: AsyncSession = Depends(get_db)) -> dict[str, Any]:
    """Request and wallet totals for the back office"""
    status_rows = await db.execute(
        select(ServiceRequest.status, func.count(ServiceRequest.id)).group_by(ServiceRequest.status)
    )
    requests_by_status = {s.value: 0 for s in RequestStatus}
    for request_status, count in status_rows:
        requests_by_status[request_status.value] = count

    pending_withdrawals = await db.execute(
        select(func.count(WithdrawalRequest.id), func.coalesce(func.sum(WithdrawalRequest.amount_cents), 0))
        .where(WithdrawalRequest.status == TransactionStatus.PENDING)
    )
    pending_count, pending_cents = pending_withdrawals.one()

    blocked_wallets = await db.execute(
        select(func.count(HeroWallet.id)).where(HeroWallet.fee_balance_cents < HeroWallet.fee_threshold_cents)
    )

    return {
        "success": True,
        "data": {
            "requests_by_status": requests_by_status,
            "pending_withdrawals": pending_count,
            "pending_withdrawal_cents": int(pending_cents),
            "wallets_blocked_by_fees": blocked_wallets.scalar() or 0,
        },
    }


@router.post(
    "/wallets/{wallet_id}/transactions",
    response_model=WalletTransactionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def record_transaction(
    wallet_id: UUID,
    transaction: TransactionCreate,
    db: AsyncSession = Depends(get_db),
) -> WalletTransactionResponse:
    """Manual ledger entry: fee top-ups, refunds and adjustments"""
    recorded = await WalletService(db).record_transaction(
        wallet_id,
        transaction.type,
        transaction.amount_cents,
        transaction.wallet_type,
        transaction.description,
        service_request_id=transaction.service_request_id,
    )
    return WalletTransactionResponse.model_validate(recorded)


@router.post("/wallets/{wallet_id}/verify-identity", response_model=WalletResponse)
async def verify_identity(wallet_id: UUID, db: AsyncSession = Depends(get_db)) -> WalletResponse:
    wallet = await WalletService(db).verify_identity(wallet_id)
    return wallet_response(wallet)


@router.post("/withdrawals/{withdrawal_id}/complete", response_model=WithdrawalRequestResponse)
async def complete_withdrawal(withdrawal_id: UUID, db: AsyncSession = Depends(get_db)) -> WithdrawalRequestResponse:
    """Mark a payout as sent and debit the earnings balance"""
    withdrawal = await WalletService(db).complete_withdrawal(withdrawal_id)
    return WithdrawalRequestResponse.model_validate(withdrawal)


@router.post("/withdrawals/{withdrawal_id}/fail", response_model=WithdrawalRequestResponse)
async def fail_withdrawal(
    withdrawal_id: UUID,
    failure: WithdrawalFailure,
    db: AsyncSession = Depends(get_db),
) -> WithdrawalRequestResponse:
    withdrawal = await WalletService(db).fail_withdrawal(withdrawal_id, failure.reason)
    return WithdrawalRequestResponse.model_validate(withdrawal)
