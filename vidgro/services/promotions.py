"""
Promotion Service - paid promotion records and their lifecycle.

    pending --(hold expires)--> active --(views reach target)--> completed
    pending | active --(owner cancels)--> cancelled

The pending -> active edge is derived from the clock by every reader
(see `effective_status`). `release_expired_holds` only materialises it.
"""

from datetime import datetime, timedelta
from uuid import UUID, uuid4

from sqlalchemy import ColumnElement, and_, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from vidgro.config import settings
from vidgro.db.models import LedgerTransaction, Promotion, utc_now
from vidgro.exceptions import (
    AccountClosedError,
    AccountNotFoundError,
    NotOwnerError,
    PromotionCompletedError,
    PromotionNotFoundError,
    WriteVerificationError,
)
from vidgro.models.api import AccountStatus, PromotionStatus, TransactionType
from vidgro.models.domain import (
    AccountSummary,
    CancellationData,
    HoldReleaseData,
    PromotionCost,
    PromotionData,
    PromotionIntent,
    PromotionPage,
    TransactionIntent,
)
from vidgro.observability.logging import get_logger
from vidgro.observability.metrics import metrics
from vidgro.observability.tracing import trace_operation
from vidgro.services.ledger import LedgerService
from vidgro.services.pricing import (
    coin_reward_for_duration,
    compute_promotion_cost,
    compute_refund,
    effective_status,
    is_vip_active,
    validate_promotion_bounds,
)

logger = get_logger(__name__)


def promotion_to_domain(promotion: Promotion, now: datetime) -> PromotionData:
    """Convert ORM Promotion to domain model, reporting the effective status."""
    return PromotionData(
        promotion_id=promotion.id,
        owner_account_id=promotion.owner_account_id,
        target_id=promotion.target_id,
        title=promotion.title,
        duration_seconds=promotion.duration_seconds,
        coin_cost=promotion.coin_cost,
        coin_reward_per_view=promotion.coin_reward_per_view,
        target_views=promotion.target_views,
        views_count=promotion.views_count,
        status=effective_status(
            PromotionStatus(promotion.status), promotion.hold_expires_at, now
        ),
        hold_expires_at=promotion.hold_expires_at,
        created_at=promotion.created_at,
        updated_at=promotion.updated_at,
        refund_amount=promotion.refund_amount,
    )


def effective_status_clause(status: PromotionStatus, now: datetime) -> ColumnElement[bool]:
    """SQL predicate matching rows whose effective status is `status` at `now`."""
    if status == PromotionStatus.ACTIVE:
        return or_(
            Promotion.status == PromotionStatus.ACTIVE,
            and_(
                Promotion.status == PromotionStatus.PENDING,
                Promotion.hold_expires_at <= now,
            ),
        )
    if status == PromotionStatus.PENDING:
        return and_(
            Promotion.status == PromotionStatus.PENDING, Promotion.hold_expires_at > now
        )
    return Promotion.status == status


class PromotionService:
    """Create, cancel, list and sweep promotions."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self.ledger = LedgerService(session)

    async def quote(self, owner_id: UUID, target_views: int, duration_seconds: int) -> PromotionCost:
        """Price a promotion for the owner's current VIP tier without charging."""
        validate_promotion_bounds(duration_seconds, target_views)
        account = await self.ledger.get_account(owner_id)
        return compute_promotion_cost(target_views, duration_seconds, account.vip_active)

    async def create_promotion(self, intent: PromotionIntent) -> PromotionData:
        """
        Charge the owner and open a promotion in one transaction.

        The cost is always recomputed here from views, duration and the
        owner's VIP tier at the moment the account row is locked.

        Raises:
            ValueError: Duration or target views out of bounds
            AccountNotFoundError: Owner doesn't exist
            AccountClosedError: Owner account is closed
            InsufficientFundsError: Owner cannot afford the promotion
        """
        validate_promotion_bounds(intent.duration_seconds, intent.target_views)

        with trace_operation(
            "promotion_creation",
            owner_id=str(intent.owner_account_id),
            target_views=intent.target_views,
        ) as span:
            try:
                account = await self.ledger.lock_account(intent.owner_account_id)
                if account is None:
                    logger.warning("account_not_found", account_id=str(intent.owner_account_id))
                    raise AccountNotFoundError(intent.owner_account_id)
                if account.status == AccountStatus.CLOSED:
                    raise AccountClosedError(account.id)

                now = utc_now()
                cost = compute_promotion_cost(
                    intent.target_views,
                    intent.duration_seconds,
                    is_vip_active(account.is_vip, account.vip_expires_at, now),
                )
                promotion_id = uuid4()

                debit = await self.ledger.post_to_locked_account(
                    account,
                    TransactionIntent(
                        account_id=account.id,
                        amount=-cost.total_cost,
                        transaction_type=TransactionType.VIDEO_PROMOTION,
                        description=f"Promoted video: {intent.title}",
                        reference_id=promotion_id,
                    ),
                )

                promotion = Promotion(
                    id=promotion_id,
                    owner_account_id=account.id,
                    target_id=intent.target_id,
                    title=intent.title,
                    duration_seconds=intent.duration_seconds,
                    coin_cost=cost.total_cost,
                    coin_reward_per_view=coin_reward_for_duration(intent.duration_seconds),
                    target_views=intent.target_views,
                    views_count=0,
                    status=PromotionStatus.PENDING,
                    hold_expires_at=now + timedelta(minutes=settings.hold_minutes),
                    created_at=now,
                    updated_at=now,
                )
                self.session.add(promotion)
                await self.session.flush()

                verified = await self.session.get(Promotion, promotion_id)
                if verified is None:
                    raise WriteVerificationError(f"Promotion {promotion_id} not found after insert")

                await self.session.commit()
            except Exception:
                await self.session.rollback()
                raise

            span.set_attribute("coin_cost", cost.total_cost)

        data = promotion_to_domain(verified, now)
        metrics.promotions_created_total.labels(vip=str(cost.is_vip)).inc()
        metrics.record_transaction(TransactionType.VIDEO_PROMOTION.value, debit.amount, "success")
        logger.info(
            "promotion_created",
            promotion_id=str(promotion_id),
            owner_id=str(account.id),
            target_id=intent.target_id,
            coin_cost=cost.total_cost,
            vip_discount=cost.discount,
            balance_after=debit.balance_after,
        )
        return data

    async def cancel_promotion(self, promotion_id: UUID, owner_id: UUID) -> CancellationData:
        """
        Cancel a pending or active promotion and refund the owner.

        100% refund strictly before hold expiry, the configured partial
        refund afterwards. Completed promotions cannot be cancelled.

        Raises:
            PromotionNotFoundError: Unknown or already cancelled
            NotOwnerError: Caller doesn't own the promotion
            PromotionCompletedError: Promotion reached its target
        """
        try:
            promotion = await self._lock_promotion(promotion_id)
            if promotion is None or promotion.status == PromotionStatus.CANCELLED:
                logger.warning("promotion_not_found", promotion_id=str(promotion_id))
                raise PromotionNotFoundError(promotion_id)
            if promotion.owner_account_id != owner_id:
                raise NotOwnerError(promotion_id, owner_id)
            if (
                promotion.status == PromotionStatus.COMPLETED
                or promotion.views_count >= promotion.target_views
            ):
                raise PromotionCompletedError(promotion_id)

            now = utc_now()
            refund_percent, refund_amount = compute_refund(
                promotion.coin_cost, promotion.hold_expires_at, now
            )

            # Lock order: promotion, then account (same as settlement)
            account = await self.ledger.lock_account(owner_id)
            if account is None:
                raise AccountNotFoundError(owner_id)

            balance_after = account.balance
            if refund_amount > 0:
                refund = await self.ledger.post_to_locked_account(
                    account,
                    TransactionIntent(
                        account_id=owner_id,
                        amount=refund_amount,
                        transaction_type=TransactionType.REFUND,
                        description=f"Refund ({refund_percent}%) for cancelled promotion: {promotion.title}",
                        reference_id=promotion_id,
                    ),
                )
                balance_after = refund.balance_after

            promotion.status = PromotionStatus.CANCELLED
            promotion.cancelled_at = now
            promotion.refund_amount = refund_amount
            promotion.updated_at = now
            await self.session.flush()
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        metrics.promotions_cancelled_total.labels(within_hold=str(refund_percent == 100)).inc()
        metrics.refunded_coins_total.inc(refund_amount)
        logger.info(
            "promotion_cancelled",
            promotion_id=str(promotion_id),
            owner_id=str(owner_id),
            refund_percent=refund_percent,
            refund_amount=refund_amount,
        )
        return CancellationData(
            promotion_id=promotion_id,
            refund_amount=refund_amount,
            refund_percent=refund_percent,
            balance_after=balance_after,
        )

    async def get_promotion(self, promotion_id: UUID, owner_id: UUID | None = None) -> PromotionData:
        promotion = await self.session.get(Promotion, promotion_id)
        if promotion is None:
            logger.warning("promotion_not_found", promotion_id=str(promotion_id))
            raise PromotionNotFoundError(promotion_id)
        if owner_id is not None and promotion.owner_account_id != owner_id:
            raise NotOwnerError(promotion_id, owner_id)
        return promotion_to_domain(promotion, utc_now())

    async def list_promotions(
        self,
        owner_id: UUID,
        status: PromotionStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> PromotionPage:
        """The owner's promotions, newest first, optionally filtered by effective status."""
        now = utc_now()
        conditions = [Promotion.owner_account_id == owner_id]
        if status is not None:
            conditions.append(effective_status_clause(status, now))

        count_result = await self.session.execute(
            select(func.count()).select_from(Promotion).where(*conditions)
        )
        total_count = count_result.scalar_one()

        result = await self.session.execute(
            select(Promotion)
            .where(*conditions)
            .order_by(Promotion.created_at.desc(), Promotion.id)
            .limit(limit)
            .offset(offset)
        )
        promotions = [promotion_to_domain(p, now) for p in result.scalars().all()]
        return PromotionPage(
            promotions=promotions,
            total_count=total_count,
            has_more=offset + len(promotions) < total_count,
        )

    async def release_expired_holds(self, now: datetime | None = None) -> HoldReleaseData:
        """
        Materialise clock-driven transitions in storage.

        Readers already derive these states, so running this is optional;
        it keeps stored status close to effective status for reporting.
        """
        now = now or utc_now()

        activated_result = await self.session.execute(
            update(Promotion)
            .where(
                Promotion.status == PromotionStatus.PENDING,
                Promotion.hold_expires_at <= now,
            )
            .values(status=PromotionStatus.ACTIVE, updated_at=now)
            .returning(Promotion)
            .execution_options(synchronize_session=False)
        )
        activated = list(activated_result.scalars().all())

        completed_result = await self.session.execute(
            update(Promotion)
            .where(
                Promotion.status.in_([PromotionStatus.PENDING, PromotionStatus.ACTIVE]),
                Promotion.views_count >= Promotion.target_views,
            )
            .values(status=PromotionStatus.COMPLETED, updated_at=now)
            .returning(Promotion)
            .execution_options(synchronize_session=False)
        )
        completed = list(completed_result.scalars().all())

        await self.session.commit()

        metrics.promotions_released_total.labels(transition="activated").inc(len(activated))
        metrics.promotions_released_total.labels(transition="completed").inc(len(completed))
        if activated or completed:
            logger.info("holds_released", activated=len(activated), completed=len(completed))
        return HoldReleaseData(activated=len(activated), completed=len(completed))

    async def get_account_summary(self, account_id: UUID) -> AccountSummary:
        """Promotion counts by effective status and coin flows by category."""
        account = await self.ledger.get_account(account_id)
        now = utc_now()

        promotions_result = await self.session.execute(
            select(Promotion.status, Promotion.hold_expires_at, Promotion.views_count).where(
                Promotion.owner_account_id == account_id
            )
        )
        by_status = {status: 0 for status in PromotionStatus}
        views_received = 0
        for stored_status, hold_expires_at, views_count in promotions_result.all():
            by_status[effective_status(PromotionStatus(stored_status), hold_expires_at, now)] += 1
            views_received += views_count

        totals_result = await self.session.execute(
            select(LedgerTransaction.transaction_type, func.sum(LedgerTransaction.amount))
            .where(LedgerTransaction.account_id == account_id)
            .group_by(LedgerTransaction.transaction_type)
        )
        totals = {TransactionType(t): int(amount or 0) for t, amount in totals_result.all()}

        spent = -totals.get(TransactionType.VIDEO_PROMOTION, 0) - totals.get(TransactionType.REFUND, 0)
        watching = totals.get(TransactionType.VIDEO_WATCH, 0)
        other = sum(
            amount
            for t, amount in totals.items()
            if t
            not in (TransactionType.VIDEO_PROMOTION, TransactionType.REFUND, TransactionType.VIDEO_WATCH)
        )

        return AccountSummary(
            account_id=account_id,
            balance=account.balance,
            promotions_total=sum(by_status.values()),
            promotions_pending=by_status[PromotionStatus.PENDING],
            promotions_active=by_status[PromotionStatus.ACTIVE],
            promotions_completed=by_status[PromotionStatus.COMPLETED],
            promotions_cancelled=by_status[PromotionStatus.CANCELLED],
            views_received=views_received,
            coins_spent=spent,
            coins_earned_watching=watching,
            coins_earned_other=other,
        )

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    async def _lock_promotion(self, promotion_id: UUID) -> Promotion | None:
        """Lock promotion row for update."""
        result = await self.session.execute(
            select(Promotion).where(Promotion.id == promotion_id).with_for_update()
        )
        return result.scalar_one_or_none()
