"""Tests for the dual-balance wallet ledger"""

from datetime import timedelta
from uuid import uuid4

import pytest

from kanway.db.models import TransactionStatus, TransactionType, WalletType
from kanway.exceptions import (
    AuthorizationError,
    ConflictError,
    InsufficientBalanceError,
    NotFoundError,
    ValidationError,
)
from kanway.schemas.wallets import BankDetailsUpdate, TransactionFilters
from kanway.services.wallets import WalletService
from kanway.utils.time import as_utc, utcnow


@pytest.fixture
def now():
    return utcnow()


@pytest.fixture
def wallet_service(test_db, now):
    return WalletService(test_db, clock=lambda: now)


@pytest.fixture
async def hero_wallet(make_hero, wallet_service):
    """Returns (profile_id, wallet_id) for a fresh provider"""
    profile_id, _ = await make_hero()
    wallet = await wallet_service.get_wallet_for_profile(profile_id)
    return profile_id, wallet.id


async def make_withdrawable(service: WalletService, profile_id, wallet_id, earnings_cents: int = 8000):
    await service.record_transaction(
        wallet_id, TransactionType.IN_APP_PAYMENT, earnings_cents, WalletType.EARNINGS, "Job payment"
    )
    await service.verify_identity(wallet_id)
    await service.update_bank_details(
        profile_id,
        BankDetailsUpdate(bank_account_number="62001234567", bank_account_holder="Test Hero"),
    )


class TestWalletCreation:

    async def test_wallet_created_with_hero_profile(self, hero_wallet, wallet_service):
        profile_id, wallet_id = hero_wallet
        wallet = await wallet_service.get_wallet(wallet_id)

        assert wallet.profile_id == profile_id
        assert wallet.earnings_balance_cents == 0
        assert wallet.fee_balance_cents == 0
        assert wallet.fee_threshold_cents == -10000
        assert wallet.withdrawal_cooldown_hours == 24
        assert wallet.bank_name == "Bank Windhoek"
        assert wallet.identity_verified is False

    async def test_create_wallet_is_idempotent(self, hero_wallet, wallet_service):
        profile_id, wallet_id = hero_wallet
        again = await wallet_service.create_wallet(profile_id)
        assert again.id == wallet_id

    async def test_missing_wallet(self, wallet_service, make_civilian):
        civilian_id = await make_civilian()
        with pytest.raises(NotFoundError):
            await wallet_service.get_wallet_for_profile(civilian_id)
        with pytest.raises(NotFoundError):
            await wallet_service.get_wallet(uuid4())


class TestRecordTransaction:

    async def test_in_app_payment_credits_earnings(self, hero_wallet, wallet_service):
        _, wallet_id = hero_wallet

        transaction = await wallet_service.record_transaction(
            wallet_id, TransactionType.IN_APP_PAYMENT, 80, WalletType.EARNINGS, "Job payment"
        )

        wallet = await wallet_service.get_wallet(wallet_id)
        assert wallet.earnings_balance_cents == 80
        assert wallet.fee_balance_cents == 0
        assert transaction.status == TransactionStatus.COMPLETED
        assert transaction.earnings_balance_after_cents == 80
        assert transaction.fee_balance_after_cents == 0

    async def test_snapshots_track_each_transaction(self, hero_wallet, wallet_service):
        _, wallet_id = hero_wallet

        first = await wallet_service.record_transaction(
            wallet_id, TransactionType.IN_APP_PAYMENT, 5000, WalletType.EARNINGS, "Job one"
        )
        second = await wallet_service.record_transaction(
            wallet_id, TransactionType.CASH_JOB_FEE, -750, WalletType.FEE, "Cash job fee"
        )
        third = await wallet_service.record_transaction(
            wallet_id, TransactionType.ADJUSTMENT, -1000, WalletType.EARNINGS, "Correction"
        )

        assert (first.earnings_balance_after_cents, first.fee_balance_after_cents) == (5000, 0)
        assert (second.earnings_balance_after_cents, second.fee_balance_after_cents) == (5000, -750)
        assert (third.earnings_balance_after_cents, third.fee_balance_after_cents) == (4000, -750)

    async def test_earnings_never_go_negative(self, hero_wallet, wallet_service):
        _, wallet_id = hero_wallet
        await wallet_service.record_transaction(
            wallet_id, TransactionType.IN_APP_PAYMENT, 500, WalletType.EARNINGS, "Job payment"
        )

        with pytest.raises(InsufficientBalanceError):
            await wallet_service.record_transaction(
                wallet_id, TransactionType.ADJUSTMENT, -501, WalletType.EARNINGS, "Too much"
            )

        wallet = await wallet_service.get_wallet(wallet_id)
        assert wallet.earnings_balance_cents == 500
        transactions, total = await wallet_service.list_transactions(wallet_id)
        assert total == 1

    async def test_cash_job_fee_applies_past_threshold(self, hero_wallet, wallet_service):
        """Fee -90 with threshold -100, a -20 cash job fee still applies"""
        _, wallet_id = hero_wallet
        await wallet_service.record_transaction(
            wallet_id, TransactionType.ADJUSTMENT, -90, WalletType.FEE, "Opening balance"
        )
        wallet = await wallet_service.get_wallet(wallet_id)
        wallet.fee_threshold_cents = -100
        await wallet_service.db.commit()
        assert await wallet_service.can_accept_jobs(wallet_id) is True

        transaction = await wallet_service.record_transaction(
            wallet_id, TransactionType.CASH_JOB_FEE, -20, WalletType.FEE, "Cash job fee"
        )

        wallet = await wallet_service.get_wallet(wallet_id)
        assert wallet.fee_balance_cents == -110
        assert transaction.status == TransactionStatus.COMPLETED
        assert transaction.fee_balance_after_cents == -110
        assert await wallet_service.can_accept_jobs(wallet_id) is False

    async def test_voluntary_fee_debit_stops_at_threshold(self, hero_wallet, wallet_service):
        _, wallet_id = hero_wallet

        with pytest.raises(InsufficientBalanceError):
            await wallet_service.record_transaction(
                wallet_id, TransactionType.ADJUSTMENT, -10001, WalletType.FEE, "Too much"
            )

        wallet = await wallet_service.get_wallet(wallet_id)
        assert wallet.fee_balance_cents == 0

    async def test_fee_exactly_at_threshold_can_accept(self, hero_wallet, wallet_service):
        _, wallet_id = hero_wallet
        await wallet_service.record_transaction(
            wallet_id, TransactionType.CASH_JOB_FEE, -10000, WalletType.FEE, "Cash job fee"
        )
        assert await wallet_service.can_accept_jobs(wallet_id) is True

        await wallet_service.record_transaction(
            wallet_id, TransactionType.CASH_JOB_FEE, -1, WalletType.FEE, "Cash job fee"
        )
        assert await wallet_service.can_accept_jobs(wallet_id) is False

    async def test_top_up_restores_job_acceptance(self, hero_wallet, wallet_service):
        _, wallet_id = hero_wallet
        await wallet_service.record_transaction(
            wallet_id, TransactionType.CASH_JOB_FEE, -15000, WalletType.FEE, "Cash job fee"
        )
        assert await wallet_service.can_accept_jobs(wallet_id) is False

        await wallet_service.record_transaction(
            wallet_id, TransactionType.FEE_TOP_UP, 6000, WalletType.FEE, "Top up"
        )
        assert await wallet_service.can_accept_jobs(wallet_id) is True

    @pytest.mark.parametrize(
        "type_, amount, wallet_type",
        [
            (TransactionType.IN_APP_PAYMENT, 0, WalletType.EARNINGS),
            (TransactionType.FEE_TOP_UP, -100, WalletType.FEE),
            (TransactionType.CASH_JOB_FEE, 100, WalletType.FEE),
            (TransactionType.IN_APP_PAYMENT, 100, WalletType.FEE),
            (TransactionType.WITHDRAWAL, -100, WalletType.FEE),
        ],
    )
    async def test_rejects_malformed_movements(self, hero_wallet, wallet_service, type_, amount, wallet_type):
        _, wallet_id = hero_wallet
        with pytest.raises(ValidationError):
            await wallet_service.record_transaction(wallet_id, type_, amount, wallet_type, "Bad")

    async def test_unknown_wallet(self, wallet_service):
        with pytest.raises(NotFoundError):
            await wallet_service.record_transaction(
                uuid4(), TransactionType.FEE_TOP_UP, 100, WalletType.FEE, "Top up"
            )


class TestWithdrawals:

    async def test_cooldown_then_success(self, test_db, hero_wallet, wallet_service, now):
        profile_id, wallet_id = hero_wallet
        await wallet_service.record_transaction(
            wallet_id, TransactionType.IN_APP_PAYMENT, 80, WalletType.EARNINGS, "Job payment"
        )
        await wallet_service.verify_identity(wallet_id)
        await wallet_service.update_bank_details(
            profile_id,
            BankDetailsUpdate(bank_account_number="62001234567", bank_account_holder="Test Hero"),
        )
        wallet = await wallet_service.get_wallet(wallet_id)
        wallet.last_withdrawal_at = now - timedelta(hours=1)
        await test_db.commit()

        with pytest.raises(ConflictError) as exc_info:
            await wallet_service.request_withdrawal(wallet_id, 80, profile_id)
        assert "cooldown" in exc_info.value.message.lower()
        assert "23 hours" in exc_info.value.message

        later = WalletService(test_db, clock=lambda: now + timedelta(hours=24))
        withdrawal = await later.request_withdrawal(wallet_id, 80, profile_id)

        assert withdrawal.status == TransactionStatus.PENDING
        assert withdrawal.amount_cents == 80
        assert withdrawal.bank_account_number == "62001234567"
        assert withdrawal.bank_name == "Bank Windhoek"

        wallet = await later.get_wallet(wallet_id)
        # Debit happens on completion
        assert wallet.earnings_balance_cents == 80
        assert wallet.last_withdrawal_at is not None

    async def test_requires_identity_verification(self, hero_wallet, wallet_service):
        profile_id, wallet_id = hero_wallet
        await wallet_service.record_transaction(
            wallet_id, TransactionType.IN_APP_PAYMENT, 5000, WalletType.EARNINGS, "Job payment"
        )

        with pytest.raises(ConflictError) as exc_info:
            await wallet_service.request_withdrawal(wallet_id, 1000, profile_id)
        assert exc_info.value.message == "Identity verification required"

    async def test_requires_bank_details(self, hero_wallet, wallet_service):
        profile_id, wallet_id = hero_wallet
        await wallet_service.record_transaction(
            wallet_id, TransactionType.IN_APP_PAYMENT, 5000, WalletType.EARNINGS, "Job payment"
        )
        await wallet_service.verify_identity(wallet_id)

        with pytest.raises(ConflictError) as exc_info:
            await wallet_service.request_withdrawal(wallet_id, 1000, profile_id)
        assert exc_info.value.message == "Bank account details required"

    async def test_amount_must_be_positive(self, hero_wallet, wallet_service):
        profile_id, wallet_id = hero_wallet
        with pytest.raises(ValidationError):
            await wallet_service.request_withdrawal(wallet_id, 0, profile_id)

    async def test_only_owner_can_withdraw(self, hero_wallet, wallet_service, make_hero):
        profile_id, wallet_id = hero_wallet
        other_id, _ = await make_hero(full_name="Other Hero")
        await make_withdrawable(wallet_service, profile_id, wallet_id)

        with pytest.raises(AuthorizationError):
            await wallet_service.request_withdrawal(wallet_id, 1000, other_id)

    async def test_amount_above_balance(self, hero_wallet, wallet_service):
        profile_id, wallet_id = hero_wallet
        await make_withdrawable(wallet_service, profile_id, wallet_id, earnings_cents=8000)

        with pytest.raises(InsufficientBalanceError):
            await wallet_service.request_withdrawal(wallet_id, 8001, profile_id)

    async def test_pending_withdrawals_reduce_available(self, test_db, hero_wallet, wallet_service, now):
        profile_id, wallet_id = hero_wallet
        await make_withdrawable(wallet_service, profile_id, wallet_id, earnings_cents=8000)
        await wallet_service.request_withdrawal(wallet_id, 5000, profile_id)

        later = WalletService(test_db, clock=lambda: now + timedelta(hours=25))
        with pytest.raises(InsufficientBalanceError):
            await later.request_withdrawal(wallet_id, 4000, profile_id)

        allowed, reason, available = await later.withdrawal_eligibility(await later.get_wallet(wallet_id))
        assert allowed is True
        assert reason is None
        assert available == 3000

    async def test_complete_withdrawal_debits_earnings(self, hero_wallet, wallet_service):
        profile_id, wallet_id = hero_wallet
        await make_withdrawable(wallet_service, profile_id, wallet_id, earnings_cents=8000)
        withdrawal = await wallet_service.request_withdrawal(wallet_id, 5000, profile_id)
        withdrawal_id = withdrawal.id

        completed = await wallet_service.complete_withdrawal(withdrawal_id)

        assert completed.status == TransactionStatus.COMPLETED
        assert completed.completed_at is not None
        wallet = await wallet_service.get_wallet(wallet_id)
        assert wallet.earnings_balance_cents == 3000

        payouts, _ = await wallet_service.list_transactions(wallet_id, TransactionFilters(type="payouts"))
        assert len(payouts) == 1
        assert payouts[0].status == TransactionStatus.COMPLETED
        assert payouts[0].amount_cents == -5000
        assert payouts[0].earnings_balance_after_cents == 3000

        with pytest.raises(ConflictError):
            await wallet_service.complete_withdrawal(withdrawal_id)

    async def test_fail_withdrawal_keeps_balance(self, hero_wallet, wallet_service):
        profile_id, wallet_id = hero_wallet
        await make_withdrawable(wallet_service, profile_id, wallet_id, earnings_cents=8000)
        withdrawal = await wallet_service.request_withdrawal(wallet_id, 5000, profile_id)

        failed = await wallet_service.fail_withdrawal(withdrawal.id, "Account closed")

        assert failed.status == TransactionStatus.FAILED
        assert failed.failure_reason == "Account closed"
        wallet = await wallet_service.get_wallet(wallet_id)
        assert wallet.earnings_balance_cents == 8000

        payouts, _ = await wallet_service.list_transactions(wallet_id, TransactionFilters(type="payouts"))
        assert payouts[0].status == TransactionStatus.FAILED

    async def test_failed_withdrawal_releases_cooldown(self, hero_wallet, wallet_service):
        profile_id, wallet_id = hero_wallet
        await make_withdrawable(wallet_service, profile_id, wallet_id, earnings_cents=8000)
        rejected = await wallet_service.request_withdrawal(wallet_id, 5000, profile_id)

        await wallet_service.fail_withdrawal(rejected.id, "Account closed")

        wallet = await wallet_service.get_wallet(wallet_id)
        assert wallet.last_withdrawal_at is None
        retry = await wallet_service.request_withdrawal(wallet_id, 5000, profile_id)
        assert retry.status == TransactionStatus.PENDING

    async def test_failed_withdrawal_restores_previous_cooldown(self, test_db, hero_wallet, wallet_service, now):
        profile_id, wallet_id = hero_wallet
        await make_withdrawable(wallet_service, profile_id, wallet_id, earnings_cents=8000)
        first = await wallet_service.request_withdrawal(wallet_id, 2000, profile_id)
        first_requested_at = first.requested_at
        await wallet_service.complete_withdrawal(first.id)

        later = WalletService(test_db, clock=lambda: now + timedelta(hours=25))
        rejected = await later.request_withdrawal(wallet_id, 3000, profile_id)
        await later.fail_withdrawal(rejected.id, "Account closed")

        wallet = await later.get_wallet(wallet_id)
        assert as_utc(wallet.last_withdrawal_at) == as_utc(first_requested_at)

    async def test_complete_withdrawal_respects_earnings_floor(self, hero_wallet, wallet_service):
        profile_id, wallet_id = hero_wallet
        await make_withdrawable(wallet_service, profile_id, wallet_id, earnings_cents=8000)
        withdrawal = await wallet_service.request_withdrawal(wallet_id, 5000, profile_id)
        withdrawal_id = withdrawal.id
        await wallet_service.record_transaction(
            wallet_id, TransactionType.ADJUSTMENT, -6000, WalletType.EARNINGS, "Chargeback"
        )

        with pytest.raises(InsufficientBalanceError):
            await wallet_service.complete_withdrawal(withdrawal_id)

        wallet = await wallet_service.get_wallet(wallet_id)
        assert wallet.earnings_balance_cents == 2000
        withdrawals = await wallet_service.list_withdrawals(wallet_id)
        assert [w.status for w in withdrawals] == [TransactionStatus.PENDING]

    async def test_unknown_withdrawal(self, wallet_service):
        with pytest.raises(NotFoundError):
            await wallet_service.complete_withdrawal(uuid4())

    async def test_eligibility_reasons(self, hero_wallet, wallet_service):
        profile_id, wallet_id = hero_wallet

        allowed, reason, available = await wallet_service.withdrawal_eligibility(
            await wallet_service.get_wallet(wallet_id)
        )
        assert (allowed, reason, available) == (False, "No funds available to withdraw", 0)

        await make_withdrawable(wallet_service, profile_id, wallet_id, earnings_cents=2500)
        allowed, reason, available = await wallet_service.withdrawal_eligibility(
            await wallet_service.get_wallet(wallet_id)
        )
        assert (allowed, reason, available) == (True, None, 2500)


class TestWalletQueries:

    async def test_transaction_filters(self, hero_wallet, wallet_service):
        profile_id, wallet_id = hero_wallet
        await make_withdrawable(wallet_service, profile_id, wallet_id, earnings_cents=8000)
        await wallet_service.record_transaction(
            wallet_id, TransactionType.FEE_TOP_UP, 1000, WalletType.FEE, "Top up"
        )
        await wallet_service.request_withdrawal(wallet_id, 2000, profile_id)

        _, total = await wallet_service.list_transactions(wallet_id, TransactionFilters(type="all"))
        assert total == 3
        _, total = await wallet_service.list_transactions(wallet_id, TransactionFilters(type="earnings"))
        assert total == 2
        fees, total = await wallet_service.list_transactions(wallet_id, TransactionFilters(type="fees"))
        assert total == 1
        assert fees[0].type == TransactionType.FEE_TOP_UP
        payouts, total = await wallet_service.list_transactions(wallet_id, TransactionFilters(type="payouts"))
        assert total == 1
        assert payouts[0].status == TransactionStatus.PENDING
        assert payouts[0].earnings_balance_after_cents is None

        withdrawals = await wallet_service.list_withdrawals(wallet_id)
        assert len(withdrawals) == 1

    async def test_update_bank_details_keeps_default_bank(self, hero_wallet, wallet_service):
        profile_id, _ = hero_wallet
        wallet = await wallet_service.update_bank_details(
            profile_id,
            BankDetailsUpdate(bank_account_number=" 62001234567 ", bank_account_holder="Test Hero"),
        )
        assert wallet.bank_name == "Bank Windhoek"
        assert wallet.bank_account_number == "62001234567"
        assert wallet.has_bank_details

    async def test_verify_identity_sets_timestamp(self, hero_wallet, wallet_service, now):
        _, wallet_id = hero_wallet
        wallet = await wallet_service.verify_identity(wallet_id)
        assert wallet.identity_verified is True
        assert wallet.identity_verified_at == now
