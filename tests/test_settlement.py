"""
Tests for SettlementService.complete_view.

Each settlement runs three lookups in order: lock the promotion, check for
an existing view record, lock the viewer account. The view record check
runs before any other eligibility rejection.
"""

from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest
from conftest import (
    create_mock_account,
    create_mock_promotion,
    make_result,
    seed,
    utc,
)
from sqlalchemy.exc import IntegrityError

from vidgro.db.models import LedgerTransaction, ViewRecord
from vidgro.exceptions import (
    AccountNotFoundError,
    AlreadyViewedError,
    PromotionNotActiveError,
    PromotionNotFoundError,
    SelfViewError,
)
from vidgro.models.api import PromotionStatus, SettlementOutcome, TransactionType
from vidgro.services.settlement import SettlementService


def settle_lookups(promotion, viewer, already_viewed: bool = False) -> list[MagicMock]:
    return [
        make_result(scalar=promotion),
        make_result(scalar=uuid4() if already_viewed else None),
        make_result(scalar=viewer),
    ]


def stored(session, model):
    return [obj for obj in session.store.values() if isinstance(obj, model)]


class TestCompletedWatch:
    async def test_credits_viewer(
        self,
        db_session: AsyncMock,
        settlement_service: SettlementService,
        viewer_account: MagicMock,
    ) -> None:
        promotion = create_mock_promotion(duration_seconds=120, coin_reward_per_view=45)
        seed(db_session, viewer_account)
        db_session.execute.side_effect = settle_lookups(promotion, viewer_account)

        result = await settlement_service.complete_view(viewer_account.id, promotion.id, 96)

        assert result.outcome == SettlementOutcome.CREDITED
        assert result.coins_earned == 45
        assert result.balance_after == 145
        assert result.views_count == 1
        assert result.promotion_status == PromotionStatus.ACTIVE
        assert viewer_account.balance == 145
        assert promotion.views_count == 1

        (view,) = stored(db_session, ViewRecord)
        assert view.completed is True
        assert view.coins_earned == 45
        (credit,) = stored(db_session, LedgerTransaction)
        assert credit.transaction_type == TransactionType.VIDEO_WATCH
        assert credit.reference_id == promotion.id
        db_session.commit.assert_awaited_once()

    async def test_last_view_completes_promotion(
        self,
        db_session: AsyncMock,
        settlement_service: SettlementService,
        viewer_account: MagicMock,
    ) -> None:
        promotion = create_mock_promotion(views_count=9, target_views=10)
        seed(db_session, viewer_account)
        db_session.execute.side_effect = settle_lookups(promotion, viewer_account)

        result = await settlement_service.complete_view(viewer_account.id, promotion.id, 120)

        assert result.views_count == 10
        assert result.promotion_status == PromotionStatus.COMPLETED
        assert promotion.status == PromotionStatus.COMPLETED

    async def test_elapsed_hold_is_materialised(
        self,
        db_session: AsyncMock,
        settlement_service: SettlementService,
        viewer_account: MagicMock,
    ) -> None:
        promotion = create_mock_promotion(status=PromotionStatus.PENDING, hold_expires_at=utc(-1))
        seed(db_session, viewer_account)
        db_session.execute.side_effect = settle_lookups(promotion, viewer_account)

        result = await settlement_service.complete_view(viewer_account.id, promotion.id, 120)

        assert result.outcome == SettlementOutcome.CREDITED
        assert promotion.status == PromotionStatus.ACTIVE


class TestIncompleteWatch:
    async def test_records_zero_coin_view(
        self,
        db_session: AsyncMock,
        settlement_service: SettlementService,
        viewer_account: MagicMock,
    ) -> None:
        promotion = create_mock_promotion(duration_seconds=120)
        seed(db_session, viewer_account)
        db_session.execute.side_effect = settle_lookups(promotion, viewer_account)

        result = await settlement_service.complete_view(viewer_account.id, promotion.id, 95)

        assert result.outcome == SettlementOutcome.INSUFFICIENT_WATCH_TIME
        assert result.coins_earned == 0
        assert result.balance_after == 100
        assert promotion.views_count == 0
        (view,) = stored(db_session, ViewRecord)
        assert view.completed is False
        assert stored(db_session, LedgerTransaction) == []
        db_session.commit.assert_awaited_once()

    async def test_negative_duration_rejected(self, settlement_service: SettlementService) -> None:
        with pytest.raises(ValueError):
            await settlement_service.complete_view(uuid4(), uuid4(), -1)


class TestRejections:
    async def test_unknown_promotion(
        self, db_session: AsyncMock, settlement_service: SettlementService
    ) -> None:
        db_session.execute.side_effect = [make_result(scalar=None)]

        with pytest.raises(PromotionNotFoundError):
            await settlement_service.complete_view(uuid4(), uuid4(), 100)
        db_session.rollback.assert_awaited_once()

    async def test_self_view(self, db_session: AsyncMock, settlement_service: SettlementService) -> None:
        promotion = create_mock_promotion()
        db_session.execute.side_effect = settle_lookups(promotion, None)

        with pytest.raises(SelfViewError):
            await settlement_service.complete_view(promotion.owner_account_id, promotion.id, 120)
        assert stored(db_session, ViewRecord) == []

    async def test_on_hold(self, db_session: AsyncMock, settlement_service: SettlementService) -> None:
        promotion = create_mock_promotion(status=PromotionStatus.PENDING, hold_expires_at=utc(5))
        db_session.execute.side_effect = settle_lookups(promotion, None)

        with pytest.raises(PromotionNotActiveError) as exc_info:
            await settlement_service.complete_view(uuid4(), promotion.id, 120)
        assert exc_info.value.status == "pending"

    async def test_target_reached(
        self, db_session: AsyncMock, settlement_service: SettlementService
    ) -> None:
        promotion = create_mock_promotion(views_count=10, target_views=10)
        db_session.execute.side_effect = settle_lookups(promotion, None)

        with pytest.raises(PromotionNotActiveError):
            await settlement_service.complete_view(uuid4(), promotion.id, 120)

    async def test_already_viewed(
        self,
        db_session: AsyncMock,
        settlement_service: SettlementService,
        viewer_account: MagicMock,
    ) -> None:
        promotion = create_mock_promotion()
        db_session.execute.side_effect = settle_lookups(promotion, viewer_account, already_viewed=True)

        with pytest.raises(AlreadyViewedError):
            await settlement_service.complete_view(viewer_account.id, promotion.id, 120)
        assert viewer_account.balance == 100
        db_session.commit.assert_not_awaited()

    async def test_concurrent_duplicate_hits_unique_constraint(
        self,
        db_session: AsyncMock,
        settlement_service: SettlementService,
        viewer_account: MagicMock,
    ) -> None:
        promotion = create_mock_promotion()
        db_session.execute.side_effect = settle_lookups(promotion, viewer_account)
        db_session.flush.side_effect = IntegrityError("INSERT", {}, Exception("uq_view_promotion_viewer"))

        with pytest.raises(AlreadyViewedError):
            await settlement_service.complete_view(viewer_account.id, promotion.id, 120)
        assert viewer_account.balance == 100
        assert promotion.views_count == 0
        db_session.rollback.assert_awaited_once()

    async def test_unknown_viewer(
        self, db_session: AsyncMock, settlement_service: SettlementService
    ) -> None:
        promotion = create_mock_promotion()
        db_session.execute.side_effect = settle_lookups(promotion, None)

        with pytest.raises(AccountNotFoundError):
            await settlement_service.complete_view(uuid4(), promotion.id, 120)


class TestRetryAfterSettlement:
    async def test_retry_after_completing_view(
        self,
        db_session: AsyncMock,
        viewer_account: MagicMock,
    ) -> None:
        promotion = create_mock_promotion(target_views=1)
        seed(db_session, viewer_account)

        db_session.execute.side_effect = settle_lookups(promotion, viewer_account)
        first = await SettlementService(db_session).complete_view(
            viewer_account.id, promotion.id, 120
        )
        assert first.outcome == SettlementOutcome.CREDITED
        assert promotion.status == PromotionStatus.COMPLETED

        db_session.execute.side_effect = settle_lookups(
            promotion, viewer_account, already_viewed=True
        )
        with pytest.raises(AlreadyViewedError):
            await SettlementService(db_session).complete_view(
                viewer_account.id, promotion.id, 120
            )
        assert viewer_account.balance == 145
        assert promotion.views_count == 1
        assert len(stored(db_session, LedgerTransaction)) == 1

    async def test_retry_after_owner_cancelled(
        self,
        db_session: AsyncMock,
        settlement_service: SettlementService,
        viewer_account: MagicMock,
    ) -> None:
        promotion = create_mock_promotion(status=PromotionStatus.CANCELLED, views_count=1)
        db_session.execute.side_effect = settle_lookups(
            promotion, viewer_account, already_viewed=True
        )

        with pytest.raises(AlreadyViewedError):
            await settlement_service.complete_view(viewer_account.id, promotion.id, 120)

    async def test_cancelled_without_prior_view_is_not_found(
        self,
        db_session: AsyncMock,
        settlement_service: SettlementService,
        viewer_account: MagicMock,
    ) -> None:
        promotion = create_mock_promotion(status=PromotionStatus.CANCELLED)
        db_session.execute.side_effect = settle_lookups(promotion, viewer_account)

        with pytest.raises(PromotionNotFoundError):
            await settlement_service.complete_view(viewer_account.id, promotion.id, 120)


class TestPromotionLifecycleScenario:
    """Owner promotes, viewer is held off, then watches once."""

    async def test_watch_after_hold_then_repeat(
        self,
        db_session: AsyncMock,
    ) -> None:
        owner = create_mock_account(balance=400)
        viewer = create_mock_account(balance=100)
        seed(db_session, owner, viewer)
        promotion = create_mock_promotion(
            owner_id=owner.id,
            status=PromotionStatus.PENDING,
            coin_cost=600,
            target_views=200,
            hold_expires_at=utc(5),
        )

        db_session.execute.side_effect = settle_lookups(promotion, viewer)
        with pytest.raises(PromotionNotActiveError):
            await SettlementService(db_session).complete_view(viewer.id, promotion.id, 120)

        promotion.hold_expires_at = utc(-1)
        db_session.execute.side_effect = settle_lookups(promotion, viewer)
        result = await SettlementService(db_session).complete_view(
            viewer.id, promotion.id, 120
        )
        assert result.outcome == SettlementOutcome.CREDITED
        assert result.views_count == 1
        assert viewer.balance == 145

        db_session.execute.side_effect = settle_lookups(promotion, viewer, already_viewed=True)
        with pytest.raises(AlreadyViewedError):
            await SettlementService(db_session).complete_view(
                viewer.id, promotion.id, 120
            )
        assert viewer.balance == 145
        assert owner.balance == 400
