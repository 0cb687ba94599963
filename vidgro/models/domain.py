"""
Domain Models - Internal business logic models using dataclasses.

All data structures are strongly typed immutable dataclasses.
"""

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from vidgro.models.api import (
    AccountStatus,
    PromotionStatus,
    RejectionReason,
    SettlementOutcome,
    TransactionType,
)


@dataclass(frozen=True)
class PromotionCost:
    """Authoritative cost breakdown for a promotion."""

    base_cost: int
    discount: int
    total_cost: int
    is_vip: bool

    def __post_init__(self) -> None:
        """Validate cost arithmetic."""
        if self.base_cost <= 0:
            raise ValueError(f"Base cost must be positive: {self.base_cost}")
        if self.discount < 0 or self.discount > self.base_cost:
            raise ValueError(f"Invalid discount: {self.discount}")
        if self.total_cost != self.base_cost - self.discount:
            raise ValueError(
                f"Total cost {self.total_cost} != {self.base_cost} - {self.discount}"
            )


@dataclass(frozen=True)
class TransactionIntent:
    """Ledger mutation before persistence - immutable intent."""

    account_id: UUID
    amount: int
    transaction_type: TransactionType
    description: str
    reference_id: UUID | None = None

    def __post_init__(self) -> None:
        """Validate transaction constraints."""
        if not self.description:
            raise ValueError("Description cannot be empty")
        if self.amount == 0 and self.transaction_type != TransactionType.VIP_PURCHASE:
            raise ValueError("Only vip_purchase records may carry a zero amount")


@dataclass(frozen=True)
class PromotionIntent:
    """Promotion request before cost is charged."""

    owner_account_id: UUID
    target_id: str
    title: str
    duration_seconds: int
    target_views: int

    def __post_init__(self) -> None:
        """Validate promotion fields (bounds are checked against settings by the service)."""
        if len(self.target_id) != 11:
            raise ValueError(f"Invalid video id: {self.target_id!r}")
        if not self.title:
            raise ValueError("Title cannot be empty")
        if self.duration_seconds <= 0:
            raise ValueError(f"Duration must be positive: {self.duration_seconds}")
        if self.target_views <= 0:
            raise ValueError(f"Target views must be positive: {self.target_views}")


@dataclass(frozen=True)
class AccountData:
    """Immutable account data snapshot."""

    account_id: UUID
    balance: int
    is_vip: bool
    vip_active: bool
    vip_expires_at: datetime | None
    referral_code: str
    referred_by: UUID | None
    status: AccountStatus
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class BalanceData:
    """Current balance with effective VIP tier."""

    account_id: UUID
    balance: int
    is_vip: bool
    vip_active: bool

    def __post_init__(self) -> None:
        """Validate balance constraints."""
        if self.balance < 0:
            raise ValueError(f"Balance cannot be negative: {self.balance}")


@dataclass(frozen=True)
class TransactionData:
    """Immutable ledger entry after persistence."""

    transaction_id: UUID
    account_id: UUID
    amount: int
    transaction_type: TransactionType
    description: str
    reference_id: UUID | None
    balance_before: int
    balance_after: int
    created_at: datetime


@dataclass(frozen=True)
class TransactionPage:
    """A page of ledger entries."""

    transactions: list[TransactionData]
    total_count: int
    has_more: bool


@dataclass(frozen=True)
class PromotionData:
    """Immutable promotion snapshot; status is the effective status."""

    promotion_id: UUID
    owner_account_id: UUID
    target_id: str
    title: str
    duration_seconds: int
    coin_cost: int
    coin_reward_per_view: int
    target_views: int
    views_count: int
    status: PromotionStatus
    hold_expires_at: datetime
    created_at: datetime
    updated_at: datetime
    refund_amount: int | None = None


@dataclass(frozen=True)
class PromotionPage:
    """A page of an owner's promotions."""

    promotions: list[PromotionData]
    total_count: int
    has_more: bool


@dataclass(frozen=True)
class CancellationData:
    """Result of a cancelled promotion."""

    promotion_id: UUID
    refund_amount: int
    refund_percent: int
    balance_after: int


@dataclass(frozen=True)
class EligibilityData:
    """Whether a viewer may watch a promotion right now."""

    promotion_id: UUID
    eligible: bool
    reason: RejectionReason | None = None


@dataclass(frozen=True)
class SettlementData:
    """Result of a settled view."""

    view_id: UUID
    promotion_id: UUID
    viewer_account_id: UUID
    outcome: SettlementOutcome
    coins_earned: int
    balance_after: int
    views_count: int
    promotion_status: PromotionStatus


@dataclass(frozen=True)
class HoldReleaseData:
    """Rows materialised by the hold-release sweep."""

    activated: int
    completed: int


@dataclass(frozen=True)
class AccountSummary:
    """Promotion and earnings analytics for one account."""

    account_id: UUID
    balance: int
    promotions_total: int
    promotions_pending: int
    promotions_active: int
    promotions_completed: int
    promotions_cancelled: int
    views_received: int
    coins_spent: int
    coins_earned_watching: int
    coins_earned_other: int


@dataclass(frozen=True)
class LedgerAudit:
    """Cached balance compared with the ledger sum."""

    account_id: UUID
    cached_balance: int
    ledger_sum: int
    transaction_count: int

    @property
    def consistent(self) -> bool:
        return self.cached_balance == self.ledger_sum


@dataclass(frozen=True)
class VideoMetadata:
    """What the metadata resolver knows about a platform video."""

    target_id: str
    title: str
    thumbnail_url: str | None
    embeddable: bool
