"""
View Eligibility & Queue Selector.

A promotion is offered to a viewer when it is effectively active, still
short of its target, not owned by the viewer, and the viewer has no view
record for it. Selection never locks or reserves; settlement re-checks.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import Numeric, Select, exists, select
from sqlalchemy.ext.asyncio import AsyncSession

from vidgro.config import QueueOrdering, settings
from vidgro.db.models import Promotion, ViewRecord, utc_now
from vidgro.models.api import PromotionStatus, RejectionReason
from vidgro.models.domain import EligibilityData, PromotionData
from vidgro.observability.logging import get_logger
from vidgro.observability.metrics import metrics
from vidgro.services.pricing import effective_status
from vidgro.services.promotions import effective_status_clause, promotion_to_domain

logger = get_logger(__name__)


def rejection_for(promotion: Promotion | None, viewer_id: UUID, now: datetime) -> RejectionReason | None:
    """
    Row-level part of the eligibility predicate.

    The "already viewed" check needs the view_records table and is left
    to the caller.
    """
    if promotion is None or promotion.status == PromotionStatus.CANCELLED:
        return RejectionReason.PROMOTION_NOT_FOUND
    if promotion.owner_account_id == viewer_id:
        return RejectionReason.SELF_VIEW
    status = effective_status(PromotionStatus(promotion.status), promotion.hold_expires_at, now)
    if status != PromotionStatus.ACTIVE or promotion.views_count >= promotion.target_views:
        return RejectionReason.PROMOTION_NOT_ACTIVE
    return None


class QueueSelector:
    """Picks watchable promotions for a viewer."""

    def __init__(self, session: AsyncSession, ordering: QueueOrdering | None = None) -> None:
        self.session = session
        self.ordering = ordering or settings.queue_ordering

    async def get_next_video(self, viewer_id: UUID, now: datetime | None = None) -> PromotionData | None:
        """Next eligible promotion, or None when nothing is watchable (a normal outcome)."""
        now = now or utc_now()
        result = await self.session.execute(self._eligible(viewer_id, now).limit(1))
        promotion = result.scalars().first()

        metrics.record_queue_lookup(promotion is not None)
        if promotion is None:
            logger.debug("queue_empty", viewer_id=str(viewer_id))
            return None
        return promotion_to_domain(promotion, now)

    async def get_queue(
        self, viewer_id: UUID, limit: int | None = None, now: datetime | None = None
    ) -> list[PromotionData]:
        """Up to `limit` eligible promotions for client-side prefetch."""
        now = now or utc_now()
        limit = limit or settings.queue_batch_size
        result = await self.session.execute(self._eligible(viewer_id, now).limit(limit))
        promotions = [promotion_to_domain(p, now) for p in result.scalars().all()]
        metrics.record_queue_lookup(bool(promotions))
        return promotions

    async def can_watch(
        self, viewer_id: UUID, promotion_id: UUID, now: datetime | None = None
    ) -> EligibilityData:
        now = now or utc_now()
        promotion = await self.session.get(Promotion, promotion_id)
        if promotion is not None and await self.has_viewed(viewer_id, promotion_id):
            reason = RejectionReason.ALREADY_VIEWED
        else:
            reason = rejection_for(promotion, viewer_id, now)
        return EligibilityData(promotion_id=promotion_id, eligible=reason is None, reason=reason)

    async def has_viewed(self, viewer_id: UUID, promotion_id: UUID) -> bool:
        result = await self.session.execute(
            select(ViewRecord.id).where(
                ViewRecord.promotion_id == promotion_id,
                ViewRecord.viewer_account_id == viewer_id,
            )
        )
        return result.scalar_one_or_none() is not None

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    def _eligible(self, viewer_id: UUID, now: datetime) -> Select[tuple[Promotion]]:
        already_viewed = exists().where(
            ViewRecord.promotion_id == Promotion.id,
            ViewRecord.viewer_account_id == viewer_id,
        )
        query = select(Promotion).where(
            effective_status_clause(PromotionStatus.ACTIVE, now),
            Promotion.views_count < Promotion.target_views,
            Promotion.owner_account_id != viewer_id,
            ~already_viewed,
        )
        if self.ordering == QueueOrdering.FAIR:
            # Lowest delivery ratio first so older promotions are not starved
            ratio = Promotion.views_count.cast(Numeric) / Promotion.target_views
            return query.order_by(ratio.asc(), Promotion.created_at.asc(), Promotion.id)
        return query.order_by(Promotion.created_at.desc(), Promotion.id)
