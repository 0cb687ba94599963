"""
View Completion & Settlement.

Settles one watch session in a single transaction:
1. Lock the promotion row and re-check eligibility under the lock,
   starting with the viewer's existing view record
2. Lock the viewer's account row
3. Insert the view record (unique per promotion and viewer)
4. For a completed watch: credit the reward, bump views_count and
   complete the promotion at its target
5. Commit

An incomplete watch still stores a view record with zero coins, which
consumes the viewer's one chance at that promotion.
"""

import time
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from vidgro.db.models import Promotion, ViewRecord, utc_now
from vidgro.exceptions import (
    AccountClosedError,
    AccountNotFoundError,
    AlreadyViewedError,
    PromotionNotActiveError,
    PromotionNotFoundError,
    SelfViewError,
    ViewRejectedError,
)
from vidgro.models.api import (
    AccountStatus,
    PromotionStatus,
    RejectionReason,
    SettlementOutcome,
    TransactionType,
)
from vidgro.models.domain import SettlementData, TransactionIntent
from vidgro.observability.logging import get_logger
from vidgro.observability.metrics import metrics
from vidgro.observability.tracing import trace_operation
from vidgro.services.ledger import LedgerService
from vidgro.services.pricing import completion_threshold_met, effective_status
from vidgro.services.queue import rejection_for

logger = get_logger(__name__)


class SettlementService:
    """Settles watch sessions against the ledger and promotion records."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self.ledger = LedgerService(session)

    async def complete_view(
        self, viewer_id: UUID, promotion_id: UUID, watched_duration_seconds: int
    ) -> SettlementData:
        """
        Settle a watch session. Safe to retry: a repeat after a committed
        settlement is rejected with AlreadyViewedError.

        Raises:
            PromotionNotFoundError: Unknown or cancelled promotion
            SelfViewError: Viewer owns the promotion
            PromotionNotActiveError: On hold, completed or already at target
            AlreadyViewedError: Viewer already has a view record
            AccountNotFoundError: Viewer account doesn't exist
        """
        if watched_duration_seconds < 0:
            raise ValueError(f"Watched duration cannot be negative: {watched_duration_seconds}")

        started = time.perf_counter()
        with trace_operation(
            "view_settlement", promotion_id=str(promotion_id), viewer_id=str(viewer_id)
        ) as span:
            try:
                result = await self._settle(viewer_id, promotion_id, watched_duration_seconds)
                await self.session.commit()
            except ViewRejectedError as exc:
                await self.session.rollback()
                metrics.record_settlement(exc.reason.value, time.perf_counter() - started)
                logger.info(
                    "view_rejected",
                    promotion_id=str(promotion_id),
                    viewer_id=str(viewer_id),
                    reason=exc.reason.value,
                )
                raise
            except Exception as exc:
                await self.session.rollback()
                metrics.record_error(type(exc).__name__, "complete_view")
                raise

            span.set_attribute("outcome", result.outcome.value)

        if result.outcome == SettlementOutcome.CREDITED:
            metrics.record_transaction(
                TransactionType.VIDEO_WATCH.value, result.coins_earned, "success"
            )
        metrics.record_settlement(result.outcome.value, time.perf_counter() - started)
        logger.info(
            "view_settled",
            promotion_id=str(promotion_id),
            viewer_id=str(viewer_id),
            outcome=result.outcome.value,
            coins_earned=result.coins_earned,
            views_count=result.views_count,
            promotion_status=result.promotion_status.value,
        )
        return result

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    async def _settle(
        self, viewer_id: UUID, promotion_id: UUID, watched_duration_seconds: int
    ) -> SettlementData:
        promotion = await self._lock_promotion(promotion_id)
        now = utc_now()
        if promotion is None:
            logger.warning("promotion_not_found", promotion_id=str(promotion_id))
            raise PromotionNotFoundError(promotion_id)

        # A prior view outranks completed, cancelled and at-target states
        if await self._has_viewed(viewer_id, promotion_id):
            raise AlreadyViewedError(promotion_id, viewer_id)

        reason = rejection_for(promotion, viewer_id, now)
        if reason == RejectionReason.PROMOTION_NOT_FOUND:
            logger.warning("promotion_not_found", promotion_id=str(promotion_id))
            raise PromotionNotFoundError(promotion_id)
        if reason == RejectionReason.SELF_VIEW:
            raise SelfViewError(promotion_id)
        if reason == RejectionReason.PROMOTION_NOT_ACTIVE:
            status = effective_status(PromotionStatus(promotion.status), promotion.hold_expires_at, now)
            raise PromotionNotActiveError(promotion_id, status.value)

        account = await self.ledger.lock_account(viewer_id)
        if account is None:
            logger.warning("account_not_found", account_id=str(viewer_id))
            raise AccountNotFoundError(viewer_id)
        if account.status == AccountStatus.CLOSED:
            raise AccountClosedError(viewer_id)

        if promotion.status == PromotionStatus.PENDING:
            # Hold has elapsed (checked above); store what readers already see
            promotion.status = PromotionStatus.ACTIVE

        completed = completion_threshold_met(watched_duration_seconds, promotion.duration_seconds)
        view = ViewRecord(
            id=uuid4(),
            promotion_id=promotion_id,
            viewer_account_id=viewer_id,
            watched_duration_seconds=watched_duration_seconds,
            completed=completed,
            coins_earned=promotion.coin_reward_per_view if completed else 0,
            created_at=now,
        )
        self.session.add(view)
        try:
            await self.session.flush()
        except IntegrityError as exc:
            raise AlreadyViewedError(promotion_id, viewer_id) from exc

        balance_after = account.balance
        if completed:
            credit = await self.ledger.post_to_locked_account(
                account,
                TransactionIntent(
                    account_id=viewer_id,
                    amount=promotion.coin_reward_per_view,
                    transaction_type=TransactionType.VIDEO_WATCH,
                    description=f"Watched: {promotion.title}",
                    reference_id=promotion_id,
                ),
            )
            balance_after = credit.balance_after

            promotion.views_count = promotion.views_count + 1
            if promotion.views_count >= promotion.target_views:
                promotion.status = PromotionStatus.COMPLETED
                logger.info("promotion_completed", promotion_id=str(promotion_id))
            promotion.updated_at = now
            await self.session.flush()

        return SettlementData(
            view_id=view.id,
            promotion_id=promotion_id,
            viewer_account_id=viewer_id,
            outcome=(
                SettlementOutcome.CREDITED
                if completed
                else SettlementOutcome.INSUFFICIENT_WATCH_TIME
            ),
            coins_earned=view.coins_earned,
            balance_after=balance_after,
            views_count=promotion.views_count,
            promotion_status=PromotionStatus(promotion.status),
        )

    async def _lock_promotion(self, promotion_id: UUID) -> Promotion | None:
        result = await self.session.execute(
            select(Promotion).where(Promotion.id == promotion_id).with_for_update()
        )
        return result.scalar_one_or_none()

    async def _has_viewed(self, viewer_id: UUID, promotion_id: UUID) -> bool:
        result = await self.session.execute(
            select(ViewRecord.id).where(
                ViewRecord.promotion_id == promotion_id,
                ViewRecord.viewer_account_id == viewer_id,
            )
        )
        return result.scalar_one_or_none() is not None
