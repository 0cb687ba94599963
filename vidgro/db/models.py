"""
Database Models - SQLAlchemy ORM models with strict typing.

All columns use Mapped[] type annotations. Coins are BigInteger.
"""

from datetime import UTC, datetime
from uuid import UUID, uuid4

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from vidgro.config import (
    STORAGE_MAX_DURATION_SECONDS,
    STORAGE_MAX_TARGET_VIEWS,
    STORAGE_MIN_DURATION_SECONDS,
    STORAGE_MIN_TARGET_VIEWS,
)
from vidgro.models.api import PromotionStatus, TransactionType


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


class Account(Base):
    """
    ORM model for accounts table.

    `balance` is a cached projection of the ledger, guarded by a CHECK
    so the database itself refuses an overdraft.
    """

    __tablename__ = "accounts"

    # Primary Key - the auth provider's subject id
    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True)

    balance: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    # VIP tier (set by the payment/VIP provider)
    is_vip: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    vip_expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Referrals
    referral_code: Mapped[str] = mapped_column(String(16), nullable=False, unique=True)
    referred_by: Mapped[UUID | None] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("accounts.id"), nullable=True
    )

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")

    # Audit timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_balance_non_negative"),
        CheckConstraint("status IN ('active', 'closed')", name="ck_account_status"),
        Index("idx_accounts_status", "status"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<Account(id={self.id}, balance={self.balance}, is_vip={self.is_vip})>"


class LedgerTransaction(Base):
    """
    ORM model for ledger_transactions table.

    Append-only. Positive amounts are credits, negative are debits.
    """

    __tablename__ = "ledger_transactions"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)

    account_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("accounts.id"), nullable=False, index=True
    )

    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    transaction_type: Mapped[TransactionType] = mapped_column(
        SQLEnum(
            TransactionType,
            name="transaction_type",
            native_enum=False,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
    )
    description: Mapped[str] = mapped_column(String(500), nullable=False)

    # Optional pointer to a promotion
    reference_id: Mapped[UUID | None] = mapped_column(PG_UUID(as_uuid=True), nullable=True)

    # Balance snapshots (denormalized for auditing)
    balance_before: Mapped[int] = mapped_column(BigInteger, nullable=False)
    balance_after: Mapped[int] = mapped_column(BigInteger, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        CheckConstraint(
            "balance_after = balance_before + amount", name="ck_ledger_balance_arithmetic"
        ),
        CheckConstraint("balance_after >= 0", name="ck_ledger_balance_after_non_negative"),
        Index("idx_ledger_account_created", "account_id", "created_at"),
        Index(
            "idx_ledger_reference_id",
            "reference_id",
            postgresql_where=(reference_id.isnot(None)),
        ),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<LedgerTransaction(id={self.id}, account_id={self.account_id}, "
            f"amount={self.amount}, type={self.transaction_type})>"
        )


class Promotion(Base):
    """
    ORM model for promotions table.

    Stored status may lag the clock for pending rows; readers derive the
    effective status from hold_expires_at.
    """

    __tablename__ = "promotions"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)

    owner_account_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("accounts.id"), nullable=False, index=True
    )

    # Platform video id and display title
    target_id: Mapped[str] = mapped_column(String(32), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)

    duration_seconds: Mapped[int] = mapped_column(Integer, nullable=False)
    coin_cost: Mapped[int] = mapped_column(BigInteger, nullable=False)
    coin_reward_per_view: Mapped[int] = mapped_column(Integer, nullable=False)
    target_views: Mapped[int] = mapped_column(Integer, nullable=False)
    views_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    status: Mapped[PromotionStatus] = mapped_column(
        SQLEnum(
            PromotionStatus,
            name="promotion_status",
            native_enum=False,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
        default=PromotionStatus.PENDING,
    )
    hold_expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    # Cancellation
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    refund_amount: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("coin_cost > 0", name="ck_promotion_cost_positive"),
        CheckConstraint("coin_reward_per_view > 0", name="ck_promotion_reward_positive"),
        CheckConstraint(
            f"duration_seconds >= {STORAGE_MIN_DURATION_SECONDS}"
            f" AND duration_seconds <= {STORAGE_MAX_DURATION_SECONDS}",
            name="ck_promotion_duration_bounds",
        ),
        CheckConstraint(
            f"target_views >= {STORAGE_MIN_TARGET_VIEWS} AND target_views <= {STORAGE_MAX_TARGET_VIEWS}",
            name="ck_promotion_target_bounds",
        ),
        CheckConstraint("views_count >= 0", name="ck_promotion_views_non_negative"),
        CheckConstraint("views_count <= target_views", name="ck_promotion_views_within_target"),
        Index("idx_promotions_status_created", "status", "created_at"),
        Index("idx_promotions_hold_expires_at", "hold_expires_at"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<Promotion(id={self.id}, target_id={self.target_id}, status={self.status}, "
            f"views={self.views_count}/{self.target_views})>"
        )


class ViewRecord(Base):
    """
    ORM model for view_records table.

    The unique constraint on (promotion_id, viewer_account_id) is the guard
    against settling the same view twice.
    """

    __tablename__ = "view_records"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)

    promotion_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("promotions.id"), nullable=False
    )
    viewer_account_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("accounts.id"), nullable=False, index=True
    )

    watched_duration_seconds: Mapped[int] = mapped_column(Integer, nullable=False)
    completed: Mapped[bool] = mapped_column(Boolean, nullable=False)
    coins_earned: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        UniqueConstraint("promotion_id", "viewer_account_id", name="uq_view_promotion_viewer"),
        CheckConstraint("watched_duration_seconds >= 0", name="ck_view_watched_non_negative"),
        CheckConstraint("coins_earned >= 0", name="ck_view_coins_non_negative"),
        CheckConstraint("completed OR coins_earned = 0", name="ck_view_incomplete_earns_nothing"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<ViewRecord(id={self.id}, promotion_id={self.promotion_id}, "
            f"viewer={self.viewer_account_id}, completed={self.completed})>"
        )
