"""Hero wallet API endpoints (the caller's own wallet)"""

import logging
from datetime import datetime
from typing import Literal
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from kanway.api.deps import get_current_identity
from kanway.db.database import get_db
from kanway.db.models import HeroWallet
from kanway.schemas.wallets import (
    BankDetailsUpdate,
    TransactionFilters,
    TransactionListResponse,
    WalletResponse,
    WalletTransactionResponse,
    WithdrawalCreate,
    WithdrawalEligibility,
    WithdrawalListResponse,
    WithdrawalRequestResponse,
)
from kanway.services.wallets import WalletService

logger = logging.getLogger(__name__)
router = APIRouter()


def wallet_response(wallet: HeroWallet) -> WalletResponse:
    response = WalletResponse.model_validate(wallet)
    return response.model_copy(
        update={"can_accept_jobs": wallet.fee_balance_cents >= wallet.fee_threshold_cents}
    )


@router.get("", response_model=WalletResponse)
async def get_my_wallet(
    caller_id: UUID = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
) -> WalletResponse:
    wallet = await WalletService(db).get_wallet_for_profile(caller_id)
    return wallet_response(wallet)


@router.get("/transactions", response_model=TransactionListResponse)
async def list_my_transactions(
    type_filter: Literal["all", "earnings", "fees", "payouts"] = Query("all", alias="type"),
    start_date: datetime | None = Query(None),
    end_date: datetime | None = Query(None),
    limit: int = Query(50, ge=1, le=500),
    caller_id: UUID = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
) -> TransactionListResponse:
    """Transaction history, newest first"""
    service = WalletService(db)
    wallet = await service.get_wallet_for_profile(caller_id)
    filters = TransactionFilters(type=type_filter, start_date=start_date, end_date=end_date, limit=limit)
    transactions, total = await service.list_transactions(wallet.id, filters)

    return TransactionListResponse(
        transactions=[WalletTransactionResponse.model_validate(t) for t in transactions],
        total=total,
    )


@router.put("/bank-details", response_model=WalletResponse)
async def update_bank_details(
    details: BankDetailsUpdate,
    caller_id: UUID = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
) -> WalletResponse:
    wallet = await WalletService(db).update_bank_details(caller_id, details)
    return wallet_response(wallet)


@router.get("/eligibility", response_model=WithdrawalEligibility)
async def withdrawal_eligibility(
    caller_id: UUID = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
) -> WithdrawalEligibility:
    """Whether a withdrawal can be requested now, and why not"""
    service = WalletService(db)
    wallet = await service.get_wallet_for_profile(caller_id)
    allowed, reason, available = await service.withdrawal_eligibility(wallet)
    return WithdrawalEligibility(allowed=allowed, reason=reason, available_cents=available)


@router.post("/withdrawals", response_model=WithdrawalRequestResponse, status_code=status.HTTP_201_CREATED)
async def request_withdrawal(
    withdrawal: WithdrawalCreate,
    caller_id: UUID = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
) -> WithdrawalRequestResponse:
    """Request a payout of earnings to the registered bank account"""
    service = WalletService(db)
    wallet = await service.get_wallet_for_profile(caller_id)
    request = await service.request_withdrawal(wallet.id, withdrawal.amount_cents, caller_id)
    return WithdrawalRequestResponse.model_validate(request)


@router.get("/withdrawals", response_model=WithdrawalListResponse)
async def list_my_withdrawals(
    caller_id: UUID = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
) -> WithdrawalListResponse:
    service = WalletService(db)
    wallet = await service.get_wallet_for_profile(caller_id)
    withdrawals = await service.list_withdrawals(wallet.id)
    return WithdrawalListResponse(
        withdrawals=[WithdrawalRequestResponse.model_validate(w) for w in withdrawals],
        total=len(withdrawals),
    )
