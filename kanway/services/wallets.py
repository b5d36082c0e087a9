"""Dual-balance hero wallet ledger.

Balances only move through ``_move_balance`` (via ``record_transaction``,
or a withdrawal completing), always under a row lock on the wallet so that the balance math
and the snapshot written to the transaction row come from the same read.
"""

import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from math import ceil
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from kanway.config import settings
from kanway.db.models import (
    HeroWallet,
    PaymentMethod,
    TransactionStatus,
    TransactionType,
    WalletTransaction,
    WalletType,
    WithdrawalRequest,
)
from kanway.exceptions import (
    AuthorizationError,
    ConflictError,
    InsufficientBalanceError,
    NotFoundError,
    ValidationError,
)
from kanway.schemas.wallets import BankDetailsUpdate, TransactionFilters
from kanway.services.settlement import CompletionEvent
from kanway.utils.time import as_utc, utcnow

logger = logging.getLogger(__name__)

# Which balance each transaction type may touch, and the sign it must carry
# (+1 credit, -1 debit, 0 either)
_TYPE_RULES: dict[TransactionType, tuple[set[WalletType], int]] = {
    TransactionType.CASH_JOB_FEE: ({WalletType.FEE}, -1),
    TransactionType.IN_APP_PAYMENT: ({WalletType.EARNINGS}, 1),
    TransactionType.WITHDRAWAL: ({WalletType.EARNINGS}, -1),
    TransactionType.FEE_TOP_UP: ({WalletType.FEE}, 1),
    TransactionType.REFUND: ({WalletType.EARNINGS, WalletType.FEE}, 0),
    TransactionType.ADJUSTMENT: ({WalletType.EARNINGS, WalletType.FEE}, 0),
}


class WalletService:
    """Service for hero wallets, their transactions and withdrawals"""

    def __init__(self, db: AsyncSession, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.clock = clock

    async def create_wallet(self, profile_id: UUID) -> HeroWallet:
        """Create the wallet for a provider; returns the existing one if present"""
        existing = await self._get_wallet_by_profile(profile_id)
        if existing:
            return existing

        wallet = HeroWallet(
            profile_id=profile_id,
            earnings_balance_cents=0,
            fee_balance_cents=0,
            fee_threshold_cents=settings.default_fee_threshold_cents,
            bank_name=settings.default_bank_name,
            withdrawal_cooldown_hours=settings.default_withdrawal_cooldown_hours,
        )
        self.db.add(wallet)
        await self.db.flush()

        logger.info(f"Created wallet {wallet.id} for profile {profile_id}")
        return wallet

    async def get_wallet(self, wallet_id: UUID) -> HeroWallet:
        stmt = select(HeroWallet).where(HeroWallet.id == wallet_id).execution_options(populate_existing=True)
        result = await self.db.execute(stmt)
        wallet = result.scalar_one_or_none()
        if wallet is None:
            raise NotFoundError(f"Wallet {wallet_id} not found")
        return wallet

    async def get_wallet_for_profile(self, profile_id: UUID) -> HeroWallet:
        wallet = await self._get_wallet_by_profile(profile_id)
        if wallet is None:
            raise NotFoundError("Wallet not found for this profile")
        return wallet

    async def record_transaction(
        self,
        wallet_id: UUID,
        type: TransactionType,
        amount_cents: int,
        wallet_type: WalletType,
        description: str,
        service_request_id: UUID | None = None,
        commit: bool = True,
    ) -> WalletTransaction:
        """
        Apply a signed amount to one balance and append a completed transaction.

        Args:
            wallet_id: Wallet to apply the movement to
            type: Transaction type
            amount_cents: Signed amount; negative values debit
            wallet_type: Balance affected (earnings or fee)
            description: Human-readable description
            service_request_id: Linked request, if any
            commit: Commit the unit of work (callers composing a larger
                unit of work pass False)

        Returns:
            The completed transaction row with post-transaction snapshots

        Raises:
            ValidationError: zero amount, or type/balance/sign mismatch
            InsufficientBalanceError: earnings would go negative, or a
                voluntary fee movement would cross the fee threshold
        """
        self._validate_movement(type, amount_cents, wallet_type)

        wallet = await self._lock_wallet(wallet_id)
        transaction = self._apply(wallet, type, amount_cents, wallet_type, description, service_request_id)

        if commit:
            await self.db.commit()

        logger.info(
            f"Recorded {type.value} of {amount_cents} cents on {wallet_type.value} "
            f"for wallet {wallet_id} (earnings={wallet.earnings_balance_cents}, fee={wallet.fee_balance_cents})"
        )
        return transaction

    async def apply_completion_event(self, event: CompletionEvent) -> WalletTransaction | None:
        """Book the wallet side of a completed job inside the caller's unit of work"""
        wallet = await self.get_wallet_for_profile(event.provider_id)

        if event.payment_method == PaymentMethod.IN_APP:
            amount = event.provider_earnings_cents
            if amount <= 0:
                return None
            return await self.record_transaction(
                wallet.id,
                TransactionType.IN_APP_PAYMENT,
                amount,
                WalletType.EARNINGS,
                f"In-app payment for job {event.request_id}",
                service_request_id=event.request_id,
                commit=False,
            )

        if event.commission_cents <= 0:
            return None
        # Cash jobs: provider was paid directly, platform fee is owed
        return await self.record_transaction(
            wallet.id,
            TransactionType.CASH_JOB_FEE,
            -event.commission_cents,
            WalletType.FEE,
            f"Platform fee for cash job {event.request_id}",
            service_request_id=event.request_id,
            commit=False,
        )

    async def can_accept_jobs(self, wallet_id: UUID) -> bool:
        wallet = await self.get_wallet(wallet_id)
        return wallet.fee_balance_cents >= wallet.fee_threshold_cents

    async def can_profile_accept_jobs(self, profile_id: UUID) -> bool:
        wallet = await self.get_wallet_for_profile(profile_id)
        return await self.can_accept_jobs(wallet.id)

    async def withdrawal_eligibility(self, wallet: HeroWallet) -> tuple[bool, str | None, int]:
        """Return (allowed, reason, available_cents) for a new withdrawal"""
        available = wallet.earnings_balance_cents - await self._pending_withdrawal_total(wallet.id)

        if available <= 0:
            return False, "No funds available to withdraw", max(available, 0)
        reason = self._eligibility_block_reason(wallet)
        return reason is None, reason, available

    async def request_withdrawal(self, wallet_id: UUID, amount_cents: int, caller_id: UUID) -> WithdrawalRequest:
        """Create a pending withdrawal; the balance is debited on completion"""
        if amount_cents <= 0:
            raise ValidationError("Amount must be greater than zero", field="amount_cents")

        wallet = await self._lock_wallet(wallet_id)
        if wallet.profile_id != caller_id:
            raise AuthorizationError("You can only withdraw from your own wallet")

        available = wallet.earnings_balance_cents - await self._pending_withdrawal_total(wallet.id)
        if amount_cents > available:
            raise InsufficientBalanceError(
                f"Insufficient balance: requested {amount_cents} cents, available {max(available, 0)} cents",
                field="amount_cents",
            )

        reason = self._eligibility_block_reason(wallet)
        if reason:
            raise ConflictError(reason)

        now = self.clock()
        transaction = WalletTransaction(
            wallet_id=wallet.id,
            type=TransactionType.WITHDRAWAL,
            amount_cents=-amount_cents,
            wallet_type=WalletType.EARNINGS,
            description=f"Withdrawal to {wallet.bank_name or settings.default_bank_name}",
            status=TransactionStatus.PENDING,
        )
        self.db.add(transaction)
        await self.db.flush()

        withdrawal = WithdrawalRequest(
            wallet_id=wallet.id,
            amount_cents=amount_cents,
            status=TransactionStatus.PENDING,
            bank_name=wallet.bank_name or settings.default_bank_name,
            bank_account_number=wallet.bank_account_number,
            bank_account_holder=wallet.bank_account_holder,
            requested_at=now,
            transaction_id=transaction.id,
        )
        self.db.add(withdrawal)
        wallet.last_withdrawal_at = now

        await self.db.commit()

        logger.info(f"Withdrawal {withdrawal.id} of {amount_cents} cents requested for wallet {wallet.id}")
        return withdrawal

    async def complete_withdrawal(self, withdrawal_id: UUID) -> WithdrawalRequest:
        """Settle a pending withdrawal: debit earnings and complete its transaction"""
        withdrawal = await self._lock_withdrawal(withdrawal_id)
        if withdrawal.status != TransactionStatus.PENDING:
            raise ConflictError(f"Withdrawal is already {withdrawal.status.value}")

        wallet = await self._lock_wallet(withdrawal.wallet_id)
        earnings, fee = self._move_balance(
            wallet, TransactionType.WITHDRAWAL, -withdrawal.amount_cents, WalletType.EARNINGS
        )

        now = self.clock()
        transaction = await self._get_transaction(withdrawal.transaction_id)
        if transaction is not None:
            transaction.status = TransactionStatus.COMPLETED
            transaction.earnings_balance_after_cents = earnings
            transaction.fee_balance_after_cents = fee

        withdrawal.status = TransactionStatus.COMPLETED
        withdrawal.processed_at = withdrawal.processed_at or now
        withdrawal.completed_at = now

        await self.db.commit()

        logger.info(f"Withdrawal {withdrawal.id} completed, wallet {wallet.id} earnings={wallet.earnings_balance_cents}")
        return withdrawal

    async def fail_withdrawal(self, withdrawal_id: UUID, reason: str) -> WithdrawalRequest:
        """Reject a pending withdrawal; the cooldown falls back to the last one still standing"""
        withdrawal = await self._lock_withdrawal(withdrawal_id)
        if withdrawal.status != TransactionStatus.PENDING:
            raise ConflictError(f"Withdrawal is already {withdrawal.status.value}")

        wallet = await self._lock_wallet(withdrawal.wallet_id)
        wallet.last_withdrawal_at = await self._last_standing_withdrawal_at(wallet.id, exclude_id=withdrawal.id)

        now = self.clock()
        transaction = await self._get_transaction(withdrawal.transaction_id)
        if transaction is not None:
            transaction.status = TransactionStatus.FAILED

        withdrawal.status = TransactionStatus.FAILED
        withdrawal.processed_at = withdrawal.processed_at or now
        withdrawal.failed_at = now
        withdrawal.failure_reason = reason

        await self.db.commit()

        logger.warning(f"Withdrawal {withdrawal.id} failed: {reason}")
        return withdrawal

    async def update_bank_details(self, caller_id: UUID, details: BankDetailsUpdate) -> HeroWallet:
        wallet = await self.get_wallet_for_profile(caller_id)
        wallet.bank_name = details.bank_name or wallet.bank_name or settings.default_bank_name
        wallet.bank_account_number = details.bank_account_number.strip()
        wallet.bank_account_holder = details.bank_account_holder.strip()
        await self.db.commit()
        return wallet

    async def verify_identity(self, wallet_id: UUID) -> HeroWallet:
        wallet = await self.get_wallet(wallet_id)
        if not wallet.identity_verified:
            wallet.identity_verified = True
            wallet.identity_verified_at = self.clock()
            await self.db.commit()
            logger.info(f"Identity verified for wallet {wallet_id}")
        return wallet

    async def list_transactions(
        self,
        wallet_id: UUID,
        filters: TransactionFilters | None = None,
    ) -> tuple[list[WalletTransaction], int]:
        """List transactions newest first with the dashboard filters"""
        filters = filters or TransactionFilters()

        conditions = [WalletTransaction.wallet_id == wallet_id]
        if filters.type == "earnings":
            conditions.append(WalletTransaction.wallet_type == WalletType.EARNINGS)
        elif filters.type == "fees":
            conditions.append(WalletTransaction.wallet_type == WalletType.FEE)
        elif filters.type == "payouts":
            conditions.append(WalletTransaction.type == TransactionType.WITHDRAWAL)
        if filters.start_date:
            conditions.append(WalletTransaction.created_at >= filters.start_date)
        if filters.end_date:
            conditions.append(WalletTransaction.created_at <= filters.end_date)

        stmt = (
            select(WalletTransaction)
            .where(*conditions)
            .order_by(WalletTransaction.created_at.desc())
            .limit(filters.limit)
        )
        count_stmt = select(func.count(WalletTransaction.id)).where(*conditions)

        result = await self.db.execute(stmt)
        transactions = result.scalars().all()
        total = (await self.db.execute(count_stmt)).scalar() or 0

        return list(transactions), total

    async def list_withdrawals(self, wallet_id: UUID) -> list[WithdrawalRequest]:
        stmt = (
            select(WithdrawalRequest)
            .where(WithdrawalRequest.wallet_id == wallet_id)
            .order_by(WithdrawalRequest.requested_at.desc())
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    def _validate_movement(self, type: TransactionType, amount_cents: int, wallet_type: WalletType) -> None:
        if amount_cents == 0:
            raise ValidationError("Amount cannot be zero", field="amount_cents")

        allowed_wallets, sign = _TYPE_RULES[type]
        if wallet_type not in allowed_wallets:
            raise ValidationError(
                f"{type.value} transactions cannot affect the {wallet_type.value} balance",
                field="wallet_type",
            )
        if sign > 0 and amount_cents < 0:
            raise ValidationError(f"{type.value} amount must be positive", field="amount_cents")
        if sign < 0 and amount_cents > 0:
            raise ValidationError(f"{type.value} amount must be negative", field="amount_cents")

    def _apply(
        self,
        wallet: HeroWallet,
        type: TransactionType,
        amount_cents: int,
        wallet_type: WalletType,
        description: str,
        service_request_id: UUID | None,
    ) -> WalletTransaction:
        earnings, fee = self._move_balance(wallet, type, amount_cents, wallet_type)

        transaction = WalletTransaction(
            wallet_id=wallet.id,
            type=type,
            amount_cents=amount_cents,
            wallet_type=wallet_type,
            description=description,
            status=TransactionStatus.COMPLETED,
            service_request_id=service_request_id,
            earnings_balance_after_cents=earnings,
            fee_balance_after_cents=fee,
        )
        self.db.add(transaction)
        return transaction

    def _move_balance(
        self,
        wallet: HeroWallet,
        type: TransactionType,
        amount_cents: int,
        wallet_type: WalletType,
    ) -> tuple[int, int]:
        """Apply a signed amount to the locked wallet; returns (earnings, fee) after"""
        earnings = wallet.earnings_balance_cents
        fee = wallet.fee_balance_cents

        if wallet_type == WalletType.EARNINGS:
            earnings += amount_cents
            if earnings < 0:
                raise InsufficientBalanceError(
                    f"Insufficient earnings balance: {wallet.earnings_balance_cents} cents available",
                    field="amount_cents",
                )
        else:
            fee += amount_cents
            # Automatic cash-job fees always apply; the threshold gates job acceptance instead
            if type != TransactionType.CASH_JOB_FEE and amount_cents < 0 and fee < wallet.fee_threshold_cents:
                raise InsufficientBalanceError(
                    f"Fee balance cannot go below {wallet.fee_threshold_cents} cents",
                    field="amount_cents",
                )

        wallet.earnings_balance_cents = earnings
        wallet.fee_balance_cents = fee
        return earnings, fee

    def _eligibility_block_reason(self, wallet: HeroWallet) -> str | None:
        if not wallet.identity_verified:
            return "Identity verification required"
        if not wallet.has_bank_details:
            return "Bank account details required"
        if wallet.last_withdrawal_at is not None:
            cooldown_end = as_utc(wallet.last_withdrawal_at) + timedelta(hours=wallet.withdrawal_cooldown_hours)
            now = self.clock()
            if now < cooldown_end:
                hours_remaining = ceil((cooldown_end - now).total_seconds() / 3600)
                return f"Withdrawal cooldown active. Try again in {hours_remaining} hours"
        return None

    async def _pending_withdrawal_total(self, wallet_id: UUID) -> int:
        stmt = select(func.coalesce(func.sum(WithdrawalRequest.amount_cents), 0)).where(
            WithdrawalRequest.wallet_id == wallet_id,
            WithdrawalRequest.status == TransactionStatus.PENDING,
        )
        result = await self.db.execute(stmt)
        return int(result.scalar() or 0)

    async def _last_standing_withdrawal_at(self, wallet_id: UUID, exclude_id: UUID) -> datetime | None:
        stmt = select(func.max(WithdrawalRequest.requested_at)).where(
            WithdrawalRequest.wallet_id == wallet_id,
            WithdrawalRequest.id != exclude_id,
            WithdrawalRequest.status != TransactionStatus.FAILED,
        )
        result = await self.db.execute(stmt)
        return result.scalar()

    async def _lock_wallet(self, wallet_id: UUID) -> HeroWallet:
        stmt = (
            select(HeroWallet)
            .where(HeroWallet.id == wallet_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        wallet = result.scalar_one_or_none()
        if wallet is None:
            raise NotFoundError(f"Wallet {wallet_id} not found")
        return wallet

    async def _lock_withdrawal(self, withdrawal_id: UUID) -> WithdrawalRequest:
        stmt = (
            select(WithdrawalRequest)
            .where(WithdrawalRequest.id == withdrawal_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        withdrawal = result.scalar_one_or_none()
        if withdrawal is None:
            raise NotFoundError(f"Withdrawal {withdrawal_id} not found")
        return withdrawal

    async def _get_transaction(self, transaction_id: UUID | None) -> WalletTransaction | None:
        if transaction_id is None:
            return None
        stmt = select(WalletTransaction).where(WalletTransaction.id == transaction_id)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def _get_wallet_by_profile(self, profile_id: UUID) -> HeroWallet | None:
        stmt = (
            select(HeroWallet)
            .where(HeroWallet.profile_id == profile_id)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()
