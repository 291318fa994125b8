"""
Quest generation.

Quests are never stored. They are regenerated from aggregate stats each time
the collection changes; daily and weekly quest ids embed their time bucket so
a new day or week naturally produces a fresh set.
"""
from datetime import datetime, time, timedelta
from typing import Iterable, List, Optional, Tuple

from pydantic import BaseModel, Field

from .classes.rewards import Quest
from .classes.waste import AggregateStats, WasteType, local_now
from .stats import WEEK_WINDOW, RecordLike, as_aware, calculate_streak, coerce_records, local_day

SCAN_MILESTONES = [10, 25, 50, 100, 250, 500, 1000]
WEIGHT_MILESTONES = [500, 1000, 2500, 5000, 10000]  # grams


class QuestCounters(BaseModel):
    today_scans: int = Field(0, ge=0)
    today_recyclable: int = Field(0, ge=0)
    today_weight: float = Field(0.0, ge=0)
    weekly_waste_types: int = Field(0, ge=0)
    weekly_avg_env_score: float = Field(0.0, ge=0)
    streak: int = Field(0, ge=0)
    total_scans: int = Field(0, ge=0)
    total_weight: float = Field(0.0, ge=0)


def derive_counters(
    records: Iterable[RecordLike],
    stats: Optional[AggregateStats] = None,
    now: Optional[datetime] = None,
) -> QuestCounters:
    now = as_aware(now or local_now())
    clean = coerce_records(records)
    today = local_day(now, now)
    week_start = now - WEEK_WINDOW

    today_records = [r for r in clean if local_day(r.timestamp, now) == today]
    week_records = [r for r in clean if as_aware(r.timestamp) >= week_start]
    scores = [r.ai_analysis.environment_score for r in week_records if r.ai_analysis is not None]

    if stats is not None:
        streak = stats.streak_days
        total_scans = stats.total_scans
        total_weight = stats.total_weight_grams
    else:
        streak = calculate_streak(clean, now)
        total_scans = len(clean)
        total_weight = sum(r.weight_grams for r in clean)

    return QuestCounters(
        today_scans=len(today_records),
        today_recyclable=sum(1 for r in today_records if r.recyclable),
        today_weight=sum(r.weight_grams for r in today_records),
        weekly_waste_types=len({WasteType(r.waste_type) for r in week_records}),
        weekly_avg_env_score=sum(scores) / len(scores) if scores else 0.0,
        streak=streak,
        total_scans=total_scans,
        total_weight=total_weight,
    )


def _progress(value: float, target: float) -> float:
    return min(max(value, 0), target)


def _build(counters: QuestCounters, **kwargs) -> Quest:
    value = getattr(counters, kwargs["counter"])
    target = kwargs["target"]
    return Quest(progress=_progress(value, target), completed=value >= target, **kwargs)


def next_local_midnight(now: datetime) -> datetime:
    now = as_aware(now)
    return datetime.combine(now.date() + timedelta(days=1), time.min, tzinfo=now.tzinfo)


def next_week_boundary(now: datetime) -> datetime:
    """Midnight at the start of the coming Sunday."""
    now = as_aware(now)
    days_since_sunday = (now.weekday() + 1) % 7
    return datetime.combine(now.date() + timedelta(days=7 - days_since_sunday), time.min, tzinfo=now.tzinfo)


def daily_bucket(now: datetime) -> str:
    return as_aware(now).date().isoformat()


def weekly_bucket(now: datetime) -> str:
    now = as_aware(now)
    return f"{now.year}-{now.month:02d}-w{now.day // 7}"


def generate_daily_quests(counters: QuestCounters, now: Optional[datetime] = None) -> List[Quest]:
    now = as_aware(now or local_now())
    bucket = daily_bucket(now)
    expires_at = next_local_midnight(now)
    return [
        _build(
            counters,
            id=f"daily-scan-{bucket}",
            title="Daily Scanner",
            description="Scan 3 waste items today",
            type="daily",
            category="scanning",
            counter="today_scans",
            target=3,
            points_reward=25,
            expires_at=expires_at,
            icon="📸",
            difficulty="easy",
        ),
        _build(
            counters,
            id=f"daily-recycle-{bucket}",
            title="Recycling Hero",
            description="Scan 2 recyclable items",
            type="daily",
            category="environmental",
            counter="today_recyclable",
            target=2,
            points_reward=35,
            expires_at=expires_at,
            icon="♻️",
            difficulty="medium",
        ),
        _build(
            counters,
            id=f"daily-weight-{bucket}",
            title="Weight Tracker",
            description="Scan 100g of waste",
            type="daily",
            category="scanning",
            counter="today_weight",
            target=100,
            points_reward=20,
            expires_at=expires_at,
            icon="⚖️",
            difficulty="easy",
        ),
    ]


def generate_weekly_quests(counters: QuestCounters, now: Optional[datetime] = None) -> List[Quest]:
    now = as_aware(now or local_now())
    bucket = weekly_bucket(now)
    expires_at = next_week_boundary(now)
    return [
        _build(
            counters,
            id=f"weekly-streak-{bucket}",
            title="Streak Master",
            description="Maintain a 7-day scanning streak",
            type="weekly",
            category="streak",
            counter="streak",
            target=7,
            points_reward=100,
            expires_at=expires_at,
            icon="🔥",
            difficulty="hard",
        ),
        _build(
            counters,
            id=f"weekly-variety-{bucket}",
            title="Waste Variety",
            description="Scan 5 different waste types",
            type="weekly",
            category="scanning",
            counter="weekly_waste_types",
            target=5,
            points_reward=75,
            expires_at=expires_at,
            icon="🌈",
            difficulty="medium",
        ),
        _build(
            counters,
            id=f"weekly-environmental-{bucket}",
            title="Environmental Champion",
            description="Achieve average environmental score of 7+",
            type="weekly",
            category="environmental",
            counter="weekly_avg_env_score",
            target=7,
            points_reward=120,
            expires_at=expires_at,
            icon="🌱",
            difficulty="hard",
        ),
    ]


def milestone_difficulty(milestone: int, track: str) -> str:
    easy, medium = (50, 250) if track == "scans" else (1000, 5000)
    if milestone <= easy:
        return "easy"
    if milestone <= medium:
        return "medium"
    return "hard"


def generate_milestone_quests(counters: QuestCounters) -> List[Quest]:
    """Only the next unmet milestone of each track is surfaced."""
    quests = []

    next_scans = next((m for m in SCAN_MILESTONES if counters.total_scans < m), None)
    if next_scans is not None:
        quests.append(
            _build(
                counters,
                id=f"milestone-scans-{next_scans}",
                title=f"{next_scans} Scans",
                description=f"Reach {next_scans} total scans",
                type="milestone",
                category="scanning",
                counter="total_scans",
                target=next_scans,
                points_reward=next_scans * 2,
                icon="🎯",
                difficulty=milestone_difficulty(next_scans, "scans"),
            )
        )

    next_weight = next((m for m in WEIGHT_MILESTONES if counters.total_weight < m), None)
    if next_weight is not None:
        quests.append(
            _build(
                counters,
                id=f"milestone-weight-{next_weight}",
                title=f"{next_weight}g Tracked",
                description=f"Track {next_weight}g of waste",
                type="milestone",
                category="scanning",
                counter="total_weight",
                target=next_weight,
                points_reward=next_weight // 10,
                icon="⚖️",
                difficulty=milestone_difficulty(next_weight, "weight"),
            )
        )

    return quests


def generate_quests(counters: QuestCounters, now: Optional[datetime] = None) -> List[Quest]:
    now = as_aware(now or local_now())
    return (
        generate_daily_quests(counters, now)
        + generate_weekly_quests(counters, now)
        + generate_milestone_quests(counters)
    )


def check_quest_completion(quest: Quest, counters: QuestCounters) -> Tuple[bool, int]:
    """
    Re-evaluate a previously generated quest against fresh counters.
    Returns (completed, points_awarded); points are only awarded on the
    transition from incomplete to complete.
    """
    value = getattr(counters, quest.counter, 0)
    is_now_completed = value >= quest.target
    if is_now_completed and not quest.completed:
        return True, quest.points_reward
    return is_now_completed, 0
