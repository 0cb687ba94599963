"""
API Models - Pydantic models for request/response validation.

Coins are integers end to end; nothing here carries a float amount.
"""

from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field, field_validator


class AccountStatus(str, Enum):
    """Account status enumeration."""

    ACTIVE = "active"
    CLOSED = "closed"


class TransactionType(str, Enum):
    """Ledger transaction type enumeration."""

    SIGNUP_BONUS = "signup_bonus"
    VIDEO_PROMOTION = "video_promotion"
    VIDEO_WATCH = "video_watch"
    REFERRAL_BONUS = "referral_bonus"
    VIP_PURCHASE = "vip_purchase"
    PURCHASE = "purchase"
    REFUND = "refund"
    ADMIN_ADJUSTMENT = "admin_adjustment"


class PromotionStatus(str, Enum):
    """Promotion lifecycle state."""

    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class RejectionReason(str, Enum):
    """Why a viewer cannot watch (or settle) a promotion."""

    PROMOTION_NOT_FOUND = "promotion_not_found"
    SELF_VIEW = "self_view"
    PROMOTION_NOT_ACTIVE = "promotion_not_active"
    ALREADY_VIEWED = "already_viewed"


class SettlementOutcome(str, Enum):
    """Result of a view settlement that was accepted."""

    CREDITED = "credited"
    INSUFFICIENT_WATCH_TIME = "insufficient_watch_time"


# ============================================================================
# Account Models
# ============================================================================


class CreateAccountRequest(BaseModel):
    """POST /v1/accounts request body."""

    referral_code: str | None = Field(None, min_length=4, max_length=16)

    @field_validator("referral_code")
    @classmethod
    def normalize_referral_code(cls, v: str | None) -> str | None:
        """Referral codes are matched case-insensitively."""
        return v.strip().upper() if v else v


class AccountResponse(BaseModel):
    """Account snapshot."""

    account_id: UUID
    balance: int
    is_vip: bool
    vip_active: bool
    vip_expires_at: str | None = None
    referral_code: str
    referred_by: UUID | None = None
    status: AccountStatus
    created_at: str  # ISO 8601 timestamp


class BalanceResponse(BaseModel):
    """GET /v1/accounts/me/balance response."""

    account_id: UUID
    balance: int
    is_vip: bool
    vip_active: bool


class TransactionResponse(BaseModel):
    """Single ledger entry."""

    transaction_id: UUID
    account_id: UUID
    amount: int
    transaction_type: TransactionType
    description: str
    reference_id: UUID | None = None
    balance_before: int
    balance_after: int
    created_at: str


class TransactionListResponse(BaseModel):
    """Paginated ledger entries, newest first."""

    transactions: list[TransactionResponse]
    total_count: int
    has_more: bool


class AccountSummaryResponse(BaseModel):
    """GET /v1/accounts/me/summary response."""

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


# ============================================================================
# Promotion Models
# ============================================================================


class QuoteRequest(BaseModel):
    """POST /v1/promotions/quote request body."""

    duration_seconds: int = Field(..., ge=10, le=600)
    target_views: int = Field(..., ge=1, le=1000)


class QuoteResponse(BaseModel):
    """Cost breakdown shown to the promoter before paying."""

    base_cost: int
    discount: int
    total_cost: int
    is_vip: bool
    coin_reward_per_view: int


class CreatePromotionRequest(BaseModel):
    """POST /v1/promotions request body."""

    video: str = Field(..., min_length=11, max_length=512, description="Video URL or 11-char id")
    title: str | None = Field(None, min_length=1, max_length=255)
    duration_seconds: int = Field(..., ge=10, le=600)
    target_views: int = Field(..., ge=1, le=1000)


class PromotionResponse(BaseModel):
    """Promotion snapshot with the effective (clock-derived) status."""

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
    hold_expires_at: str
    created_at: str
    refund_amount: int | None = None


class PromotionListResponse(BaseModel):
    """List of the caller's promotions."""

    promotions: list[PromotionResponse]
    total_count: int
    has_more: bool


class CancellationResponse(BaseModel):
    """DELETE /v1/promotions/{id} response."""

    promotion_id: UUID
    refund_amount: int
    refund_percent: int
    balance_after: int


# ============================================================================
# Queue and Settlement Models
# ============================================================================


class QueueResponse(BaseModel):
    """GET /v1/queue response."""

    promotions: list[PromotionResponse]


class EligibilityResponse(BaseModel):
    """GET /v1/queue/{promotion_id}/eligibility response."""

    promotion_id: UUID
    eligible: bool
    reason: RejectionReason | None = None


class CompleteViewRequest(BaseModel):
    """POST /v1/views request body."""

    promotion_id: UUID
    watched_duration_seconds: int = Field(..., ge=0, le=86400)


class CompleteViewResponse(BaseModel):
    """Settlement result."""

    view_id: UUID
    promotion_id: UUID
    outcome: SettlementOutcome
    coins_earned: int
    balance_after: int
    views_count: int
    promotion_status: PromotionStatus


class ViewRejectionResponse(BaseModel):
    """Body of a 4xx settlement rejection."""

    reason: RejectionReason
    detail: str


# ============================================================================
# Internal (service key) Models
# ============================================================================


class ApplyTransactionRequest(BaseModel):
    """POST /v1/internal/transactions request body."""

    account_id: UUID
    amount: int
    transaction_type: TransactionType
    description: str = Field(..., min_length=1, max_length=500)
    reference_id: UUID | None = None


class ActivateVipRequest(BaseModel):
    """POST /v1/internal/accounts/{id}/vip request body."""

    duration_days: int = Field(..., gt=0, le=3660)
    plan_name: str = Field(..., min_length=1, max_length=100)


class ReleaseHoldsResponse(BaseModel):
    """Number of promotion rows whose status was materialised."""

    activated: int
    completed: int


class LedgerAuditResponse(BaseModel):
    """GET /v1/internal/accounts/{id}/audit response."""

    account_id: UUID
    cached_balance: int
    ledger_sum: int
    transaction_count: int
    consistent: bool


class HealthResponse(BaseModel):
    """GET /health response."""

    status: str
    database: str
    timestamp: str
