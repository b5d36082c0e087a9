"""Pydantic schemas for wallet API"""

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from kanway.db.models import TransactionStatus, TransactionType, WalletType


class WalletResponse(BaseModel):
    id: UUID
    profile_id: UUID
    earnings_balance_cents: int
    fee_balance_cents: int
    fee_threshold_cents: int
    bank_name: str | None
    bank_account_number: str | None
    bank_account_holder: str | None
    identity_verified: bool
    identity_verified_at: datetime | None
    last_withdrawal_at: datetime | None
    withdrawal_cooldown_hours: int
    can_accept_jobs: bool = False
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    @field_validator("bank_account_number")
    @classmethod
    def mask_account_number(cls, v: str | None) -> str | None:
        if v is None or len(v) <= 4:
            return v
        return "*" * (len(v) - 4) + v[-4:]


class WalletTransactionResponse(BaseModel):
    id: UUID
    wallet_id: UUID
    type: TransactionType
    amount_cents: int
    wallet_type: WalletType
    description: str
    status: TransactionStatus
    service_request_id: UUID | None
    earnings_balance_after_cents: int | None
    fee_balance_after_cents: int | None
    created_at: datetime

    model_config = {"from_attributes": True}


class TransactionListResponse(BaseModel):
    transactions: list[WalletTransactionResponse]
    total: int


class TransactionCreate(BaseModel):
    """Manual ledger entry (admin)"""
    type: TransactionType
    amount_cents: int
    wallet_type: WalletType
    description: str = Field(..., min_length=1, max_length=500)
    service_request_id: UUID | None = None


class TransactionFilters(BaseModel):
    type: Literal["all", "earnings", "fees", "payouts"] = "all"
    start_date: datetime | None = None
    end_date: datetime | None = None
    limit: int = Field(default=50, ge=1, le=500)


class BankDetailsUpdate(BaseModel):
    bank_name: str | None = Field(None, max_length=255)
    bank_account_number: str = Field(..., min_length=4, max_length=64)
    bank_account_holder: str = Field(..., min_length=1, max_length=255)


class WithdrawalCreate(BaseModel):
    amount_cents: int


class WithdrawalFailure(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)


class WithdrawalRequestResponse(BaseModel):
    id: UUID
    wallet_id: UUID
    amount_cents: int
    status: TransactionStatus
    bank_name: str
    bank_account_holder: str
    requested_at: datetime
    processed_at: datetime | None
    completed_at: datetime | None
    failed_at: datetime | None
    failure_reason: str | None
    transaction_id: UUID | None

    model_config = {"from_attributes": True}


class WithdrawalListResponse(BaseModel):
    withdrawals: list[WithdrawalRequestResponse]
    total: int


class WithdrawalEligibility(BaseModel):
    allowed: bool
    reason: str | None = None
    available_cents: int
