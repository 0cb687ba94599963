"""
API Routes - FastAPI endpoints for the ledger, promotions, queue and settlement.

All requests/responses use Pydantic models; domain errors are mapped to
HTTP status codes here and nowhere else.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from vidgro.api.dependencies import get_current_account_id, require_service_key
from vidgro.db.models import utc_now
from vidgro.db.session import get_read_db, get_write_db, ping_database
from vidgro.exceptions import (
    AccountClosedError,
    AccountNotFoundError,
    DataIntegrityError,
    InsufficientFundsError,
    MetadataResolutionError,
    NotOwnerError,
    PromotionCompletedError,
    PromotionNotFoundError,
    VideoNotEmbeddableError,
    VideoNotFoundError,
    ViewRejectedError,
    WriteVerificationError,
)
from vidgro.models.api import (
    AccountResponse,
    AccountSummaryResponse,
    ActivateVipRequest,
    ApplyTransactionRequest,
    BalanceResponse,
    CancellationResponse,
    CompleteViewRequest,
    CompleteViewResponse,
    CreateAccountRequest,
    CreatePromotionRequest,
    EligibilityResponse,
    HealthResponse,
    LedgerAuditResponse,
    PromotionListResponse,
    PromotionResponse,
    PromotionStatus,
    QueueResponse,
    QuoteRequest,
    QuoteResponse,
    RejectionReason,
    ReleaseHoldsResponse,
    TransactionListResponse,
    TransactionResponse,
    TransactionType,
)
from vidgro.models.domain import (
    AccountData,
    PromotionData,
    PromotionIntent,
    TransactionData,
    TransactionIntent,
)
from vidgro.observability.logging import get_logger
from vidgro.services.ledger import LedgerService
from vidgro.services.metadata import MetadataResolver, get_metadata_resolver
from vidgro.services.pricing import coin_reward_for_duration, extract_video_id
from vidgro.services.promotions import PromotionService
from vidgro.services.queue import QueueSelector
from vidgro.services.settlement import SettlementService

logger = get_logger(__name__)

router = APIRouter()

_REJECTION_STATUS = {
    RejectionReason.PROMOTION_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    RejectionReason.SELF_VIEW: status.HTTP_403_FORBIDDEN,
    RejectionReason.PROMOTION_NOT_ACTIVE: status.HTTP_409_CONFLICT,
    RejectionReason.ALREADY_VIEWED: status.HTTP_409_CONFLICT,
}


# ============================================================================
# Response Converters
# ============================================================================


def _account_response(account: AccountData) -> AccountResponse:
    return AccountResponse(
        account_id=account.account_id,
        balance=account.balance,
        is_vip=account.is_vip,
        vip_active=account.vip_active,
        vip_expires_at=account.vip_expires_at.isoformat() if account.vip_expires_at else None,
        referral_code=account.referral_code,
        referred_by=account.referred_by,
        status=account.status,
        created_at=account.created_at.isoformat(),
    )


def _transaction_response(tx: TransactionData) -> TransactionResponse:
    return TransactionResponse(
        transaction_id=tx.transaction_id,
        account_id=tx.account_id,
        amount=tx.amount,
        transaction_type=tx.transaction_type,
        description=tx.description,
        reference_id=tx.reference_id,
        balance_before=tx.balance_before,
        balance_after=tx.balance_after,
        created_at=tx.created_at.isoformat(),
    )


def _promotion_response(promotion: PromotionData) -> PromotionResponse:
    return PromotionResponse(
        promotion_id=promotion.promotion_id,
        owner_account_id=promotion.owner_account_id,
        target_id=promotion.target_id,
        title=promotion.title,
        duration_seconds=promotion.duration_seconds,
        coin_cost=promotion.coin_cost,
        coin_reward_per_view=promotion.coin_reward_per_view,
        target_views=promotion.target_views,
        views_count=promotion.views_count,
        status=promotion.status,
        hold_expires_at=promotion.hold_expires_at.isoformat(),
        created_at=promotion.created_at.isoformat(),
        refund_amount=promotion.refund_amount,
    )


def _integrity_failure(exc: Exception) -> HTTPException:
    logger.error("database_integrity_failure", error=str(exc))
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="Database integrity error",
    )


# ============================================================================
# Accounts
# ============================================================================


@router.post(
    "/v1/accounts", response_model=AccountResponse, status_code=status.HTTP_201_CREATED
)
async def create_account(
    request: CreateAccountRequest,
    account_id: UUID = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_write_db),
) -> AccountResponse:
    """
    Create the caller's account at signup (idempotent).

    Grants the starting balance and, with a valid referral code, the
    referral bonuses.
    """
    service = LedgerService(db)
    try:
        account = await service.create_account(account_id, request.referral_code)
    except (WriteVerificationError, DataIntegrityError) as exc:
        raise _integrity_failure(exc) from exc
    return _account_response(account)


@router.get("/v1/accounts/me", response_model=AccountResponse)
async def get_my_account(
    account_id: UUID = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_read_db),
) -> AccountResponse:
    try:
        account = await LedgerService(db).get_account(account_id)
    except AccountNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Account not found") from exc
    return _account_response(account)


@router.get("/v1/accounts/me/balance", response_model=BalanceResponse)
async def get_my_balance(
    account_id: UUID = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_read_db),
) -> BalanceResponse:
    try:
        balance = await LedgerService(db).get_balance(account_id)
    except AccountNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Account not found") from exc
    return BalanceResponse(
        account_id=balance.account_id,
        balance=balance.balance,
        is_vip=balance.is_vip,
        vip_active=balance.vip_active,
    )


@router.get("/v1/accounts/me/transactions", response_model=TransactionListResponse)
async def get_my_transactions(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    transaction_type: TransactionType | None = Query(None),
    exclude_watch: bool = Query(False, description="Hide video_watch rows (recent activity view)"),
    account_id: UUID = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_read_db),
) -> TransactionListResponse:
    """Ledger history for the caller, newest first."""
    try:
        page = await LedgerService(db).get_transaction_history(
            account_id,
            limit=limit,
            offset=offset,
            transaction_type=transaction_type,
            exclude_types=(TransactionType.VIDEO_WATCH,) if exclude_watch else (),
        )
    except AccountNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Account not found") from exc
    return TransactionListResponse(
        transactions=[_transaction_response(tx) for tx in page.transactions],
        total_count=page.total_count,
        has_more=page.has_more,
    )


@router.get("/v1/accounts/me/summary", response_model=AccountSummaryResponse)
async def get_my_summary(
    account_id: UUID = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_read_db),
) -> AccountSummaryResponse:
    try:
        summary = await PromotionService(db).get_account_summary(account_id)
    except AccountNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Account not found") from exc
    return AccountSummaryResponse(
        account_id=summary.account_id,
        balance=summary.balance,
        promotions_total=summary.promotions_total,
        promotions_pending=summary.promotions_pending,
        promotions_active=summary.promotions_active,
        promotions_completed=summary.promotions_completed,
        promotions_cancelled=summary.promotions_cancelled,
        views_received=summary.views_received,
        coins_spent=summary.coins_spent,
        coins_earned_watching=summary.coins_earned_watching,
        coins_earned_other=summary.coins_earned_other,
    )


# ============================================================================
# Promotions
# ============================================================================


@router.post("/v1/promotions/quote", response_model=QuoteResponse)
async def quote_promotion(
    request: QuoteRequest,
    account_id: UUID = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_read_db),
) -> QuoteResponse:
    """Price a promotion for display; the charge is recomputed on create."""
    try:
        cost = await PromotionService(db).quote(
            account_id, request.target_views, request.duration_seconds
        )
    except AccountNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Account not found") from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    return QuoteResponse(
        base_cost=cost.base_cost,
        discount=cost.discount,
        total_cost=cost.total_cost,
        is_vip=cost.is_vip,
        coin_reward_per_view=coin_reward_for_duration(request.duration_seconds),
    )


@router.post(
    "/v1/promotions", response_model=PromotionResponse, status_code=status.HTTP_201_CREATED
)
async def create_promotion(
    request: CreatePromotionRequest,
    account_id: UUID = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_write_db),
    resolver: MetadataResolver = Depends(get_metadata_resolver),
) -> PromotionResponse:
    """
    Promote a video: resolve its metadata, charge the owner, open the promotion.

    The promotion starts pending and becomes watchable once the hold expires.
    """
    target_id = extract_video_id(request.video)
    if target_id is None:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Could not find a video id in the given link",
        )

    try:
        metadata = await resolver.resolve(target_id)
    except (VideoNotFoundError, VideoNotEmbeddableError) as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=exc.message
        ) from exc
    except MetadataResolutionError as exc:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY, detail="Video lookup failed, try again"
        ) from exc

    try:
        intent = PromotionIntent(
            owner_account_id=account_id,
            target_id=target_id,
            title=request.title or metadata.title,
            duration_seconds=request.duration_seconds,
            target_views=request.target_views,
        )
        promotion = await PromotionService(db).create_promotion(intent)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    except AccountNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Account not found") from exc
    except AccountClosedError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account is closed") from exc
    except InsufficientFundsError as exc:
        raise HTTPException(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            detail=f"Insufficient coins. Balance: {exc.balance}, Required: {exc.required}",
        ) from exc
    except (WriteVerificationError, DataIntegrityError) as exc:
        raise _integrity_failure(exc) from exc

    return _promotion_response(promotion)


@router.get("/v1/promotions", response_model=PromotionListResponse)
async def list_my_promotions(
    promotion_status: PromotionStatus | None = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    account_id: UUID = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_read_db),
) -> PromotionListResponse:
    page = await PromotionService(db).list_promotions(
        account_id, status=promotion_status, limit=limit, offset=offset
    )
    return PromotionListResponse(
        promotions=[_promotion_response(p) for p in page.promotions],
        total_count=page.total_count,
        has_more=page.has_more,
    )


@router.get("/v1/promotions/{promotion_id}", response_model=PromotionResponse)
async def get_my_promotion(
    promotion_id: UUID,
    account_id: UUID = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_read_db),
) -> PromotionResponse:
    try:
        promotion = await PromotionService(db).get_promotion(promotion_id, owner_id=account_id)
    except (PromotionNotFoundError, NotOwnerError) as exc:
        # Other owners' promotions are indistinguishable from missing ones
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Promotion not found") from exc
    return _promotion_response(promotion)


@router.delete("/v1/promotions/{promotion_id}", response_model=CancellationResponse)
async def cancel_promotion(
    promotion_id: UUID,
    account_id: UUID = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_write_db),
) -> CancellationResponse:
    """Cancel a promotion; full refund during the hold, partial afterwards."""
    try:
        result = await PromotionService(db).cancel_promotion(promotion_id, account_id)
    except PromotionNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Promotion not found") from exc
    except NotOwnerError as exc:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail="Not the owner of this promotion"
        ) from exc
    except PromotionCompletedError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT, detail="Completed promotions cannot be cancelled"
        ) from exc
    except (WriteVerificationError, DataIntegrityError) as exc:
        raise _integrity_failure(exc) from exc

    return CancellationResponse(
        promotion_id=result.promotion_id,
        refund_amount=result.refund_amount,
        refund_percent=result.refund_percent,
        balance_after=result.balance_after,
    )


# ============================================================================
# Queue and Settlement
# ============================================================================


@router.get(
    "/v1/queue/next",
    response_model=PromotionResponse,
    responses={204: {"description": "No eligible video right now"}},
)
async def get_next_video(
    account_id: UUID = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_read_db),
) -> PromotionResponse | Response:
    """Next video for the caller to watch, or 204 when nothing is eligible."""
    promotion = await QueueSelector(db).get_next_video(account_id)
    if promotion is None:
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    return _promotion_response(promotion)


@router.get("/v1/queue", response_model=QueueResponse)
async def get_queue(
    limit: int = Query(10, ge=1, le=50),
    account_id: UUID = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_read_db),
) -> QueueResponse:
    promotions = await QueueSelector(db).get_queue(account_id, limit=limit)
    return QueueResponse(promotions=[_promotion_response(p) for p in promotions])


@router.get("/v1/queue/{promotion_id}/eligibility", response_model=EligibilityResponse)
async def get_eligibility(
    promotion_id: UUID,
    account_id: UUID = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_read_db),
) -> EligibilityResponse:
    result = await QueueSelector(db).can_watch(account_id, promotion_id)
    return EligibilityResponse(
        promotion_id=result.promotion_id, eligible=result.eligible, reason=result.reason
    )


@router.post("/v1/views", response_model=CompleteViewResponse)
async def complete_view(
    request: CompleteViewRequest,
    account_id: UUID = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_write_db),
) -> CompleteViewResponse:
    """
    Report a finished watch session.

    A watch below the completion threshold is recorded with zero coins and
    uses up the caller's chance at this promotion.
    """
    try:
        result = await SettlementService(db).complete_view(
            account_id, request.promotion_id, request.watched_duration_seconds
        )
    except ViewRejectedError as exc:
        raise HTTPException(
            status_code=_REJECTION_STATUS[exc.reason],
            detail={"reason": exc.reason.value, "detail": str(exc)},
        ) from exc
    except AccountNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Account not found") from exc
    except AccountClosedError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account is closed") from exc
    except (WriteVerificationError, DataIntegrityError) as exc:
        raise _integrity_failure(exc) from exc

    return CompleteViewResponse(
        view_id=result.view_id,
        promotion_id=result.promotion_id,
        outcome=result.outcome,
        coins_earned=result.coins_earned,
        balance_after=result.balance_after,
        views_count=result.views_count,
        promotion_status=result.promotion_status,
    )


# ============================================================================
# Internal (service key)
# ============================================================================


@router.post(
    "/v1/internal/transactions",
    response_model=TransactionResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_service_key)],
)
async def apply_transaction(
    request: ApplyTransactionRequest,
    db: AsyncSession = Depends(get_write_db),
) -> TransactionResponse:
    """Apply a signed ledger transaction (purchases, adjustments, provider records)."""
    try:
        intent = TransactionIntent(
            account_id=request.account_id,
            amount=request.amount,
            transaction_type=request.transaction_type,
            description=request.description,
            reference_id=request.reference_id,
        )
        tx = await LedgerService(db).apply_transaction(intent)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    except AccountNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Account not found") from exc
    except AccountClosedError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account is closed") from exc
    except InsufficientFundsError as exc:
        raise HTTPException(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            detail=f"Insufficient coins. Balance: {exc.balance}, Required: {exc.required}",
        ) from exc
    except (WriteVerificationError, DataIntegrityError) as exc:
        raise _integrity_failure(exc) from exc
    return _transaction_response(tx)


@router.post(
    "/v1/internal/accounts/{account_id}/vip",
    response_model=AccountResponse,
    dependencies=[Depends(require_service_key)],
)
async def activate_vip(
    account_id: UUID,
    request: ActivateVipRequest,
    db: AsyncSession = Depends(get_write_db),
) -> AccountResponse:
    """Grant or extend VIP after the payment provider validated the purchase."""
    try:
        account = await LedgerService(db).activate_vip(
            account_id, request.duration_days, request.plan_name
        )
    except AccountNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Account not found") from exc
    except AccountClosedError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account is closed") from exc
    return _account_response(account)


@router.post(
    "/v1/internal/accounts/{account_id}/close",
    response_model=AccountResponse,
    dependencies=[Depends(require_service_key)],
)
async def close_account(
    account_id: UUID,
    db: AsyncSession = Depends(get_write_db),
) -> AccountResponse:
    try:
        account = await LedgerService(db).close_account(account_id)
    except AccountNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Account not found") from exc
    return _account_response(account)


@router.get(
    "/v1/internal/accounts/{account_id}/audit",
    response_model=LedgerAuditResponse,
    dependencies=[Depends(require_service_key)],
)
async def audit_account(
    account_id: UUID,
    db: AsyncSession = Depends(get_read_db),
) -> LedgerAuditResponse:
    """Reconcile the cached balance against the ledger sum."""
    try:
        audit = await LedgerService(db).verify_ledger(account_id)
    except AccountNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Account not found") from exc
    return LedgerAuditResponse(
        account_id=audit.account_id,
        cached_balance=audit.cached_balance,
        ledger_sum=audit.ledger_sum,
        transaction_count=audit.transaction_count,
        consistent=audit.consistent,
    )


@router.post(
    "/v1/internal/promotions/release-holds",
    response_model=ReleaseHoldsResponse,
    dependencies=[Depends(require_service_key)],
)
async def release_holds(
    db: AsyncSession = Depends(get_write_db),
) -> ReleaseHoldsResponse:
    """Scheduler hook: store the clock-derived promotion transitions."""
    result = await PromotionService(db).release_expired_holds()
    return ReleaseHoldsResponse(activated=result.activated, completed=result.completed)


# ============================================================================
# Health
# ============================================================================


@router.get("/health", response_model=HealthResponse)
async def health_check(db: AsyncSession = Depends(get_read_db)) -> HealthResponse:
    """Liveness plus a database round trip."""
    try:
        database = "connected" if await ping_database(db) else "error"
    except Exception as exc:
        logger.error("health_check_database_error", error=str(exc))
        database = "error"
    return HealthResponse(
        status="healthy" if database == "connected" else "degraded",
        database=database,
        timestamp=utc_now().isoformat(),
    )
