"""Database models for the Kanway matching core"""

import enum
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    text,
)
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from kanway.db.database import Base
from kanway.utils.time import utcnow

# JSONB on Postgres, plain JSON elsewhere (tests run on SQLite)
JSONType = JSON().with_variant(JSONB(), "postgresql")


def _enum_column(enum_cls: type[enum.Enum], name: str) -> SQLEnum:
    """Persist enum values (the wire strings), not member names"""
    return SQLEnum(
        enum_cls,
        name=name,
        values_callable=lambda members: [member.value for member in members],
        validate_strings=True,
    )


class TimestampMixin:
    """Mixin for adding timestamp columns to models"""
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
        nullable=False
    )


class ProfileRole(enum.Enum):
    """Role a person signed up with"""
    CIVILIAN = "civilian"
    HERO = "hero"


class RequestStatus(enum.Enum):
    """Service request lifecycle status"""
    PENDING = "pending"
    ASSIGNED = "assigned"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class RequestCategory(enum.Enum):
    """Service request categories"""
    CLEANING = "cleaning"
    REPAIRS = "repairs"
    DELIVERY = "delivery"
    TUTORING = "tutoring"
    OTHER = "other"


class PaymentMethod(enum.Enum):
    """How the requester pays for a job"""
    CASH = "cash"
    IN_APP = "in_app"


class TransactionType(enum.Enum):
    """Types of wallet transactions"""
    CASH_JOB_FEE = "cash_job_fee"
    IN_APP_PAYMENT = "in_app_payment"
    WITHDRAWAL = "withdrawal"
    FEE_TOP_UP = "fee_top_up"
    REFUND = "refund"
    ADJUSTMENT = "adjustment"


class TransactionStatus(enum.Enum):
    """Status shared by wallet transactions and withdrawal requests"""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class WalletType(enum.Enum):
    """Which wallet balance a transaction affects"""
    EARNINGS = "earnings"
    FEE = "fee"


class Profile(Base, TimestampMixin):
    """Canonical person record; its id is the public identity"""
    __tablename__ = "profiles"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    role: Mapped[ProfileRole] = mapped_column(_enum_column(ProfileRole, "profile_role"), nullable=False)
    full_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(20), nullable=True)

    hero_profile = relationship("HeroProfile", back_populates="profile", uselist=False)
    wallet = relationship("HeroWallet", back_populates="profile", uselist=False)

    __table_args__ = (
        Index("idx_profile_role", "role"),
    )


class HeroProfile(Base, TimestampMixin):
    """Provider record; its id is internal and never leaves the backend"""
    __tablename__ = "hero_profiles"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    profile_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("profiles.id", ondelete="CASCADE"),
        unique=True,
        nullable=False
    )
    skills: Mapped[list[str]] = mapped_column(JSONType, default=list, nullable=False)
    hourly_rate_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    rating: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    completed_jobs: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    profile_image_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_available: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    profile = relationship("Profile", back_populates="hero_profile")
    acceptances = relationship("Acceptance", back_populates="hero_profile")

    __table_args__ = (
        Index("idx_hero_profile_rating", "rating"),
        CheckConstraint("rating >= 0 AND rating <= 5", name="check_hero_rating"),
    )


class ServiceRequest(Base, TimestampMixin):
    """A requester's job posting"""
    __tablename__ = "service_requests"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    requester_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("profiles.id", ondelete="CASCADE"),
        nullable=False
    )
    # Public identity of the provider, never the hero_profiles id
    assigned_provider_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("profiles.id", ondelete="SET NULL"),
        nullable=True
    )

    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[RequestCategory] = mapped_column(
        _enum_column(RequestCategory, "request_category"),
        nullable=False
    )
    location: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False)
    scheduled_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    estimated_duration: Mapped[int] = mapped_column(Integer, nullable=False)

    budget_min_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    budget_max_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    budget_currency: Mapped[str] = mapped_column(String(3), default="USD", nullable=False)
    payment_method: Mapped[PaymentMethod] = mapped_column(
        _enum_column(PaymentMethod, "payment_method"),
        default=PaymentMethod.CASH,
        nullable=False
    )

    status: Mapped[RequestStatus] = mapped_column(
        _enum_column(RequestStatus, "request_status"),
        default=RequestStatus.PENDING,
        nullable=False
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    acceptances = relationship("Acceptance", back_populates="request")

    __table_args__ = (
        Index("idx_request_requester", "requester_id"),
        Index("idx_request_provider", "assigned_provider_id"),
        Index("idx_request_status", "status"),
        Index("idx_request_created", "created_at"),
        CheckConstraint("budget_min_cents >= 0", name="check_budget_min"),
        CheckConstraint("budget_max_cents >= budget_min_cents", name="check_budget_range"),
        CheckConstraint("estimated_duration >= 1 AND estimated_duration <= 24", name="check_duration"),
    )


class Acceptance(Base):
    """A provider's expression of interest in a pending request"""
    __tablename__ = "request_acceptances"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    request_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("service_requests.id", ondelete="CASCADE"),
        nullable=False
    )
    hero_profile_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("hero_profiles.id", ondelete="CASCADE"),
        nullable=False
    )
    accepted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False
    )
    chosen: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    request = relationship("ServiceRequest", back_populates="acceptances")
    hero_profile = relationship("HeroProfile", back_populates="acceptances")

    __table_args__ = (
        UniqueConstraint("request_id", "hero_profile_id", name="uq_acceptance_request_hero"),
        # At most one chosen acceptance per request
        Index(
            "uq_acceptance_chosen_per_request",
            "request_id",
            unique=True,
            postgresql_where=text("chosen"),
            sqlite_where=text("chosen = 1"),
        ),
        Index("idx_acceptance_request", "request_id"),
        Index("idx_acceptance_hero", "hero_profile_id"),
    )


class HeroWallet(Base, TimestampMixin):
    """Dual-balance provider wallet"""
    __tablename__ = "hero_wallets"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    profile_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("profiles.id", ondelete="CASCADE"),
        unique=True,
        nullable=False
    )

    # Provider-owned, never negative
    earnings_balance_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    # Platform-owed, may go negative
    fee_balance_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    fee_threshold_cents: Mapped[int] = mapped_column(Integer, default=-10000, nullable=False)

    bank_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    bank_account_number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    bank_account_holder: Mapped[str | None] = mapped_column(String(255), nullable=True)

    identity_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    identity_verified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    last_withdrawal_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    withdrawal_cooldown_hours: Mapped[int] = mapped_column(Integer, default=24, nullable=False)

    profile = relationship("Profile", back_populates="wallet")
    transactions = relationship("WalletTransaction", back_populates="wallet")
    withdrawal_requests = relationship("WithdrawalRequest", back_populates="wallet")

    __table_args__ = (
        CheckConstraint("earnings_balance_cents >= 0", name="check_earnings_non_negative"),
        CheckConstraint("withdrawal_cooldown_hours >= 0", name="check_cooldown_non_negative"),
    )

    @property
    def has_bank_details(self) -> bool:
        return bool(self.bank_account_number and self.bank_account_holder)


class WalletTransaction(Base, TimestampMixin):
    """Append-only wallet movement with post-transaction balance snapshots"""
    __tablename__ = "wallet_transactions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    wallet_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("hero_wallets.id", ondelete="CASCADE"),
        nullable=False
    )
    type: Mapped[TransactionType] = mapped_column(
        _enum_column(TransactionType, "transaction_type"),
        nullable=False
    )
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    wallet_type: Mapped[WalletType] = mapped_column(
        _enum_column(WalletType, "wallet_type"),
        nullable=False
    )
    description: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[TransactionStatus] = mapped_column(
        _enum_column(TransactionStatus, "transaction_status"),
        default=TransactionStatus.PENDING,
        nullable=False
    )
    service_request_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("service_requests.id", ondelete="SET NULL"),
        nullable=True
    )

    # Balances after the transaction was applied (audit trail)
    earnings_balance_after_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)
    fee_balance_after_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)

    wallet = relationship("HeroWallet", back_populates="transactions")

    __table_args__ = (
        Index("idx_wallet_tx_wallet", "wallet_id"),
        Index("idx_wallet_tx_created", "created_at"),
        Index("idx_wallet_tx_type", "type"),
    )


class WithdrawalRequest(Base, TimestampMixin):
    """A provider's request to pay out earnings"""
    __tablename__ = "withdrawal_requests"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    wallet_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("hero_wallets.id", ondelete="CASCADE"),
        nullable=False
    )
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[TransactionStatus] = mapped_column(
        _enum_column(TransactionStatus, "withdrawal_status"),
        default=TransactionStatus.PENDING,
        nullable=False
    )

    # Bank details snapshot at request time
    bank_name: Mapped[str] = mapped_column(String(255), nullable=False)
    bank_account_number: Mapped[str] = mapped_column(String(64), nullable=False)
    bank_account_holder: Mapped[str] = mapped_column(String(255), nullable=False)

    requested_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    failed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    transaction_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("wallet_transactions.id", ondelete="SET NULL"),
        nullable=True
    )

    wallet = relationship("HeroWallet", back_populates="withdrawal_requests")

    __table_args__ = (
        Index("idx_withdrawal_wallet", "wallet_id"),
        Index("idx_withdrawal_status", "status"),
        CheckConstraint("amount_cents > 0", name="check_withdrawal_amount_positive"),
    )
