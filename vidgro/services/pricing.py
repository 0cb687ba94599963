"""
Pricing and lifecycle policy - pure functions shared by routes and services.

Routes call these to quote prices for display; services call the same
functions to enforce them. Nothing here touches the database or the clock
except through explicit arguments.
"""

import re
from datetime import datetime
from decimal import ROUND_CEILING, Decimal

from vidgro.config import settings
from vidgro.models.api import PromotionStatus
from vidgro.models.domain import PromotionCost

# (minimum duration seconds, coins per completed view), highest first
REWARD_TABLE: tuple[tuple[int, int], ...] = (
    (540, 200),
    (480, 150),
    (420, 130),
    (360, 100),
    (300, 90),
    (240, 70),
    (180, 55),
    (150, 50),
    (120, 45),
    (90, 35),
    (60, 25),
    (45, 15),
    (30, 10),
)
MIN_REWARD = 5

_VIDEO_ID = r"[A-Za-z0-9_-]{11}"
_URL_PATTERN = re.compile(
    r"(?:youtube\.com/(?:watch\?(?:[^#]*&)?v=|shorts/|embed/|v/|live/)|youtu\.be/)"
    rf"({_VIDEO_ID})(?![A-Za-z0-9_-])"
)
_BARE_PATTERN = re.compile(rf"^{_VIDEO_ID}$")


def _ceil_div(numerator: int, denominator: int) -> int:
    return -(-numerator // denominator)


def compute_promotion_cost(
    target_views: int,
    duration_seconds: int,
    is_vip: bool,
    rate: Decimal | None = None,
    vip_discount_percent: int | None = None,
) -> PromotionCost:
    """
    Cost of a promotion in coins.

    base = ceil(views * duration / 100 * rate); VIP pays base - ceil(base * discount%).
    Evaluated in Decimal so 2.5 is exact.

    >>> compute_promotion_cost(200, 120, is_vip=True).total_cost
    540
    """
    rate = settings.cost_rate_per_100_view_seconds if rate is None else Decimal(rate)
    if vip_discount_percent is None:
        vip_discount_percent = settings.vip_discount_percent

    raw = Decimal(target_views * duration_seconds) / Decimal(100) * rate
    base = int(raw.to_integral_value(rounding=ROUND_CEILING))
    discount = _ceil_div(base * vip_discount_percent, 100) if is_vip else 0
    return PromotionCost(
        base_cost=base, discount=discount, total_cost=base - discount, is_vip=is_vip
    )


def coin_reward_for_duration(duration_seconds: int) -> int:
    """Coins a viewer earns for completing a video of this length."""
    for minimum, reward in REWARD_TABLE:
        if duration_seconds >= minimum:
            return reward
    return MIN_REWARD


def completion_threshold_met(
    watched_seconds: int, duration_seconds: int, completion_percent: int | None = None
) -> bool:
    """True when the viewer watched at least completion_percent of the declared duration."""
    if completion_percent is None:
        completion_percent = settings.completion_percent
    required_x100 = min(duration_seconds * 100, duration_seconds * completion_percent)
    return watched_seconds * 100 >= required_x100


def compute_refund(
    coin_cost: int,
    hold_expires_at: datetime,
    now: datetime,
    after_hold_percent: int | None = None,
) -> tuple[int, int]:
    """
    Return (percent, amount) refunded when a promotion is cancelled at `now`.

    Full refund strictly before hold expiry; the boundary instant itself
    already counts as after the hold.
    """
    if after_hold_percent is None:
        after_hold_percent = settings.refund_after_hold_percent
    percent = 100 if now < hold_expires_at else after_hold_percent
    return percent, coin_cost * percent // 100


def effective_status(
    status: PromotionStatus, hold_expires_at: datetime, now: datetime
) -> PromotionStatus:
    """A pending promotion whose hold has elapsed is active."""
    if status == PromotionStatus.PENDING and now >= hold_expires_at:
        return PromotionStatus.ACTIVE
    return status


def is_vip_active(is_vip: bool, vip_expires_at: datetime | None, now: datetime) -> bool:
    return is_vip and (vip_expires_at is None or vip_expires_at > now)


def validate_promotion_bounds(duration_seconds: int, target_views: int) -> None:
    """Raise ValueError when duration or target views fall outside configured bounds."""
    if not settings.min_duration_seconds <= duration_seconds <= settings.max_duration_seconds:
        raise ValueError(
            f"Duration must be between {settings.min_duration_seconds} and "
            f"{settings.max_duration_seconds} seconds, got {duration_seconds}"
        )
    if not settings.min_target_views <= target_views <= settings.max_target_views:
        raise ValueError(
            f"Target views must be between {settings.min_target_views} and "
            f"{settings.max_target_views}, got {target_views}"
        )


def extract_video_id(value: str) -> str | None:
    """
    Pull the 11-character video id out of a URL or bare id.

    Accepts watch, youtu.be, shorts, embed and live links (with or without
    scheme and the m./www. host prefixes).
    """
    value = value.strip()
    if _BARE_PATTERN.match(value):
        return value
    match = _URL_PATTERN.search(value)
    return match.group(1) if match else None
