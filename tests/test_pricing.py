"""
Tests for the pricing and lifecycle policy functions.

Includes Hypothesis property tests for the cost, refund and completion rules.
"""

import math
from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from vidgro.models.api import PromotionStatus
from vidgro.services.pricing import (
    MIN_REWARD,
    coin_reward_for_duration,
    completion_threshold_met,
    compute_promotion_cost,
    compute_refund,
    effective_status,
    extract_video_id,
    is_vip_active,
    validate_promotion_bounds,
)

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=UTC)

durations = st.integers(min_value=10, max_value=600)
view_targets = st.integers(min_value=1, max_value=1000)
costs = st.integers(min_value=1, max_value=10_000_000)


# ============================================================================
# Promotion Cost
# ============================================================================


class TestPromotionCost:
    """Tests for compute_promotion_cost."""

    def test_standard_example(self) -> None:
        cost = compute_promotion_cost(200, 120, is_vip=False)
        assert cost.base_cost == 600
        assert cost.discount == 0
        assert cost.total_cost == 600

    def test_vip_example(self) -> None:
        cost = compute_promotion_cost(200, 120, is_vip=True)
        assert cost.base_cost == 600
        assert cost.discount == 60
        assert cost.total_cost == 540
        assert cost.is_vip is True

    def test_fractional_base_rounds_up(self) -> None:
        # 1 * 10 / 100 * 2.5 = 0.25
        assert compute_promotion_cost(1, 10, is_vip=False).total_cost == 1

    def test_vip_discount_rounds_up(self) -> None:
        # base 3 -> discount ceil(0.3) = 1
        cost = compute_promotion_cost(1, 100, is_vip=True)
        assert cost.base_cost == 3
        assert cost.discount == 1
        assert cost.total_cost == 2

    def test_custom_rate_and_discount(self) -> None:
        cost = compute_promotion_cost(
            10, 100, is_vip=True, rate=Decimal("1"), vip_discount_percent=50
        )
        assert cost.base_cost == 10
        assert cost.total_cost == 5

    @given(target_views=view_targets, duration=durations, is_vip=st.booleans())
    @settings(max_examples=300)
    def test_matches_exact_rational_formula(
        self, target_views: int, duration: int, is_vip: bool
    ) -> None:
        """base = ceil(views * duration * 25 / 1000) without float error."""
        cost = compute_promotion_cost(target_views, duration, is_vip)
        expected_base = -(-(target_views * duration * 25) // 1000)
        assert cost.base_cost == expected_base
        expected_discount = -(-(expected_base * 10) // 100) if is_vip else 0
        assert cost.total_cost == expected_base - expected_discount

    @given(target_views=view_targets, duration=durations)
    def test_vip_never_pays_more(self, target_views: int, duration: int) -> None:
        regular = compute_promotion_cost(target_views, duration, is_vip=False)
        vip = compute_promotion_cost(target_views, duration, is_vip=True)
        assert 0 < vip.total_cost <= regular.total_cost


# ============================================================================
# Rewards and Completion
# ============================================================================


class TestRewardTable:
    """Tests for coin_reward_for_duration."""

    @pytest.mark.parametrize(
        ("duration", "reward"),
        [
            (10, 5),
            (29, 5),
            (30, 10),
            (45, 15),
            (60, 25),
            (90, 35),
            (120, 45),
            (150, 50),
            (180, 55),
            (240, 70),
            (300, 90),
            (360, 100),
            (420, 130),
            (480, 150),
            (540, 200),
            (600, 200),
        ],
    )
    def test_table_boundaries(self, duration: int, reward: int) -> None:
        assert coin_reward_for_duration(duration) == reward

    @given(a=durations, b=durations)
    def test_monotonic(self, a: int, b: int) -> None:
        low, high = sorted((a, b))
        assert MIN_REWARD <= coin_reward_for_duration(low) <= coin_reward_for_duration(high)


class TestCompletionThreshold:
    """Tests for completion_threshold_met."""

    def test_exactly_eighty_percent_completes(self) -> None:
        assert completion_threshold_met(96, 120) is True

    def test_just_below_threshold_fails(self) -> None:
        assert completion_threshold_met(95, 120) is False

    def test_fractional_threshold(self) -> None:
        # 80% of 11 is 8.8, so 8 seconds is short and 9 is enough
        assert completion_threshold_met(8, 11) is False
        assert completion_threshold_met(9, 11) is True

    @given(duration=durations, watched=st.integers(min_value=0, max_value=1200))
    def test_agrees_with_rational_definition(self, duration: int, watched: int) -> None:
        assert completion_threshold_met(watched, duration) == (watched * 5 >= duration * 4)

    @given(duration=durations)
    def test_full_watch_always_completes(self, duration: int) -> None:
        assert completion_threshold_met(duration, duration) is True


# ============================================================================
# Refunds
# ============================================================================


class TestRefund:
    """Tests for compute_refund."""

    def test_cancel_within_hold_refunds_everything(self) -> None:
        created = NOW
        hold = created + timedelta(minutes=10)
        assert compute_refund(100, hold, created + timedelta(minutes=3)) == (100, 100)

    def test_cancel_after_hold_refunds_eighty_percent(self) -> None:
        created = NOW
        hold = created + timedelta(minutes=10)
        assert compute_refund(100, hold, created + timedelta(minutes=15)) == (80, 80)

    def test_hold_boundary_counts_as_expired(self) -> None:
        assert compute_refund(100, NOW, NOW) == (80, 80)

    def test_partial_refund_floors(self) -> None:
        assert compute_refund(99, NOW, NOW + timedelta(seconds=1)) == (80, 79)

    @given(cost=costs, offset=st.integers(min_value=-3600, max_value=3600))
    def test_refund_never_exceeds_cost(self, cost: int, offset: int) -> None:
        percent, amount = compute_refund(cost, NOW, NOW + timedelta(seconds=offset))
        assert 0 <= amount <= cost
        assert amount == math.floor(cost * percent / 100)
        assert percent == (100 if offset < 0 else 80)


# ============================================================================
# Status and VIP
# ============================================================================


class TestEffectiveStatus:
    """Tests for effective_status."""

    def test_pending_during_hold(self) -> None:
        hold = NOW + timedelta(minutes=1)
        assert effective_status(PromotionStatus.PENDING, hold, NOW) == PromotionStatus.PENDING

    def test_pending_after_hold_is_active(self) -> None:
        hold = NOW - timedelta(seconds=1)
        assert effective_status(PromotionStatus.PENDING, hold, NOW) == PromotionStatus.ACTIVE

    def test_pending_at_hold_instant_is_active(self) -> None:
        assert effective_status(PromotionStatus.PENDING, NOW, NOW) == PromotionStatus.ACTIVE

    @pytest.mark.parametrize(
        "status",
        [PromotionStatus.ACTIVE, PromotionStatus.COMPLETED, PromotionStatus.CANCELLED],
    )
    def test_other_states_unchanged(self, status: PromotionStatus) -> None:
        assert effective_status(status, NOW + timedelta(hours=1), NOW) == status


class TestVipActive:
    def test_not_vip(self) -> None:
        assert is_vip_active(False, None, NOW) is False

    def test_vip_without_expiry(self) -> None:
        assert is_vip_active(True, None, NOW) is True

    def test_vip_expired(self) -> None:
        assert is_vip_active(True, NOW - timedelta(days=1), NOW) is False

    def test_vip_in_future(self) -> None:
        assert is_vip_active(True, NOW + timedelta(days=1), NOW) is True


# ============================================================================
# Validation
# ============================================================================


class TestBounds:
    @pytest.mark.parametrize(("duration", "views"), [(10, 1), (600, 1000), (120, 200)])
    def test_accepts_in_bounds(self, duration: int, views: int) -> None:
        validate_promotion_bounds(duration, views)

    @pytest.mark.parametrize(("duration", "views"), [(9, 1), (601, 1), (120, 0), (120, 1001)])
    def test_rejects_out_of_bounds(self, duration: int, views: int) -> None:
        with pytest.raises(ValueError):
            validate_promotion_bounds(duration, views)


class TestExtractVideoId:
    @pytest.mark.parametrize(
        "value",
        [
            "dQw4w9WgXcQ",
            "https://www.youtube.com/watch?v=dQw4w9WgXcQ",
            "https://youtube.com/watch?feature=share&v=dQw4w9WgXcQ",
            "https://m.youtube.com/watch?v=dQw4w9WgXcQ&t=42",
            "https://youtu.be/dQw4w9WgXcQ",
            "youtu.be/dQw4w9WgXcQ?si=abc",
            "https://www.youtube.com/shorts/dQw4w9WgXcQ",
            "https://www.youtube.com/embed/dQw4w9WgXcQ",
            "  https://www.youtube.com/live/dQw4w9WgXcQ  ",
        ],
    )
    def test_extracts_id(self, value: str) -> None:
        assert extract_video_id(value) == "dQw4w9WgXcQ"

    @pytest.mark.parametrize(
        "value",
        ["", "not a link", "https://vimeo.com/123456789", "dQw4w9WgXc", "https://youtu.be/short"],
    )
    def test_rejects_garbage(self, value: str) -> None:
        assert extract_video_id(value) is None
