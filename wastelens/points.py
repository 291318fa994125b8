import math
from datetime import datetime
from typing import Iterable, Optional

from .classes.rewards import Redemption, UserPoints
from .classes.waste import ScanRecord, WasteType, local_now
from .stats import MONTH_WINDOW, WEEK_WINDOW, RecordLike, as_aware, coerce_records

MIN_POINTS_PER_SCAN = 3
RECYCLABLE_BONUS = 5
COMPOSTABLE_BONUS = 8
DEFAULT_TYPE_BONUS = 2

# Types that need special handling earn more
TYPE_BONUS = {
    WasteType.ELECTRONIC: 15,
    WasteType.BATTERIES: 12,
    WasteType.HAZARDOUS: 20,
    WasteType.TEXTILE: 8,
    WasteType.PLASTIC_FILM: 6,
}

STREAK_BONUSES = [
    (30, 30),
    (14, 20),
    (7, 10),
    (3, 5),
]

RANK_THRESHOLDS = [
    (100, "Eco Beginner"),
    (500, "Waste Warrior"),
    (1000, "Green Guardian"),
    (2500, "Sustainability Star"),
    (5000, "Environmental Expert"),
    (10000, "Planet Protector"),
]
TOP_RANK = "Eco Legend"


def points_from_scan(record: ScanRecord) -> int:
    """
    Points earned for a single scan.

    1 point per 10g, +5 recyclable, +8 compostable, a per-type bonus, then an
    environment-score multiplier of up to 1.5x. Never less than 3.
    """
    weight = record.weight_grams if math.isfinite(record.weight_grams) else 0
    points = math.floor(max(weight, 0) / 10)

    if record.recyclable:
        points += RECYCLABLE_BONUS
    if record.compostable:
        points += COMPOSTABLE_BONUS

    points += TYPE_BONUS.get(WasteType(record.waste_type), DEFAULT_TYPE_BONUS)

    if record.ai_analysis is not None and record.ai_analysis.environment_score:
        multiplier = record.ai_analysis.environment_score / 10
        points = math.floor(points * (1 + multiplier * 0.5))

    return max(points, MIN_POINTS_PER_SCAN)


def streak_bonus(streak_days: int) -> int:
    for minimum_days, bonus in STREAK_BONUSES:
        if streak_days >= minimum_days:
            return bonus
    return 0


def rank(lifetime_points: int) -> str:
    for upper_bound, label in RANK_THRESHOLDS:
        if lifetime_points < upper_bound:
            return label
    return TOP_RANK


def compute_user_points(
    records: Iterable[RecordLike],
    streak_days: int,
    redemptions: Iterable[Redemption] = (),
    now: Optional[datetime] = None,
) -> UserPoints:
    """
    Derive the points ledger from the record collection and completed
    redemptions. Weekly and monthly figures are windowed sums of per-scan
    points over the same rolling windows the stats use.
    """
    now = as_aware(now or local_now())
    week_start = now - WEEK_WINDOW
    month_start = now - MONTH_WINDOW

    scan_points = 0
    weekly = 0
    monthly = 0
    for record in coerce_records(records):
        earned = points_from_scan(record)
        scan_points += earned
        scanned_at = as_aware(record.timestamp)
        if scanned_at >= week_start:
            weekly += earned
        if scanned_at >= month_start:
            monthly += earned

    total_earned = scan_points + streak_bonus(streak_days)
    total_spent = sum(redemption.points_cost for redemption in redemptions)

    return UserPoints(
        total_earned=total_earned,
        current_balance=total_earned - total_spent,
        total_spent=total_spent,
        lifetime_rank=rank(total_earned),
        weekly_earned=weekly,
        monthly_earned=monthly,
    )
