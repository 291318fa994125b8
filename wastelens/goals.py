from datetime import datetime, timedelta
from typing import List, Optional

from .classes.waste import AggregateStats, WasteGoal, local_now
from .quests import QuestCounters


def default_goals(now: Optional[datetime] = None) -> List[WasteGoal]:
    now = now or local_now()
    start, end = now - timedelta(days=3), now + timedelta(days=4)
    return [
        WasteGoal(id="1", type="reduce", target=500, period="weekly", start_date=start, end_date=end),
        WasteGoal(id="2", type="recycle", target=80, period="weekly", start_date=start, end_date=end),
    ]


def _tracked_weight(goal: WasteGoal, stats: AggregateStats, counters: Optional[QuestCounters]) -> float:
    if goal.period == "daily":
        return counters.today_weight if counters is not None else 0.0
    if goal.period == "monthly":
        return stats.monthly_weight_grams
    return stats.weekly_weight_grams


def apply_goal_progress(
    goals: List[WasteGoal],
    stats: AggregateStats,
    counters: Optional[QuestCounters] = None,
) -> List[WasteGoal]:
    """
    Re-derive every goal's ``current`` from the aggregate. Reduce goals
    track grams in the goal's period, recycle/compost goals track the rate.
    """
    updated = []
    for goal in goals:
        if goal.type == "reduce":
            current = _tracked_weight(goal, stats, counters)
        elif goal.type == "recycle":
            current = stats.recycling_rate_pct
        else:
            current = stats.composting_rate_pct
        updated.append(goal.model_copy(update={"current": max(current, 0.0)}))
    return updated
