from datetime import datetime, timedelta, timezone

import pytest

from conftest import make_record
from wastelens.classes.waste import WasteType
from wastelens.quests import (
    QuestCounters,
    check_quest_completion,
    derive_counters,
    generate_milestone_quests,
    generate_quests,
    milestone_difficulty,
    next_week_boundary,
    weekly_bucket,
)
from wastelens.stats import recompute_stats


def _by_title(quests):
    return {quest.title: quest for quest in quests}


def test_three_plain_scans_today(now):
    records = [
        make_record(weight=30, when=now - timedelta(hours=3)),
        make_record(weight=40, when=now - timedelta(hours=2)),
        make_record(weight=50, when=now - timedelta(hours=1)),
    ]
    stats = recompute_stats(records, now)
    counters = derive_counters(records, stats, now)

    quests = _by_title(generate_quests(counters, now))

    assert counters.today_scans == 3
    assert counters.today_weight == 120
    assert quests["Daily Scanner"].completed
    assert quests["Daily Scanner"].progress == 3
    assert quests["Weight Tracker"].completed
    assert quests["Weight Tracker"].progress == 100
    assert not quests["Recycling Hero"].completed
    assert quests["Recycling Hero"].progress == 0


def test_mixed_scans_today(now):
    records = [
        make_record(weight=30, recyclable=True, when=now - timedelta(hours=3)),
        make_record(weight=40, compostable=True, when=now - timedelta(hours=2)),
        make_record(weight=50, when=now - timedelta(hours=1)),
    ]
    stats = recompute_stats(records, now)
    counters = derive_counters(records, stats, now)

    quests = _by_title(generate_quests(counters, now))

    assert quests["Daily Scanner"].completed
    assert not quests["Recycling Hero"].completed
    assert quests["Recycling Hero"].progress == 1


def test_quest_set_shape(now):
    quests = generate_quests(QuestCounters(), now)

    assert [q.type for q in quests].count("daily") == 3
    assert [q.type for q in quests].count("weekly") == 3
    assert [q.type for q in quests].count("milestone") == 2
    assert len({q.id for q in quests}) == len(quests)
    for quest in quests:
        assert 0 <= quest.progress <= quest.target


def test_daily_ids_are_stable_within_a_day(now):
    counters = QuestCounters(today_scans=1)
    morning = [q.id for q in generate_quests(counters, now - timedelta(hours=6))]
    evening = [q.id for q in generate_quests(counters, now + timedelta(hours=5))]
    tomorrow = [q.id for q in generate_quests(counters, now + timedelta(days=1))]

    assert morning == evening
    assert "daily-scan-2026-10-19" in morning
    assert "daily-scan-2026-10-20" in tomorrow


def test_weekly_bucket_and_expiry(now):
    # 2026-10-19 is a Monday
    assert weekly_bucket(now) == "2026-10-w2"
    assert next_week_boundary(now) == datetime(2026, 10, 25, tzinfo=timezone.utc)
    sunday = datetime(2026, 10, 25, 9, 0, tzinfo=timezone.utc)
    assert next_week_boundary(sunday) == datetime(2026, 11, 1, tzinfo=timezone.utc)


def test_daily_quests_expire_at_midnight(now):
    quests = [q for q in generate_quests(QuestCounters(), now) if q.type == "daily"]
    assert {q.expires_at for q in quests} == {datetime(2026, 10, 20, tzinfo=timezone.utc)}


def test_next_milestones_after_twelve_scans():
    quests = _by_title(generate_milestone_quests(QuestCounters(total_scans=12, total_weight=0)))

    scans = quests["25 Scans"]
    assert scans.id == "milestone-scans-25"
    assert scans.target == 25
    assert scans.points_reward == 50
    assert scans.difficulty == "easy"
    assert scans.progress == 12

    weight = quests["500g Tracked"]
    assert weight.target == 500
    assert weight.points_reward == 50


def test_milestones_exhausted():
    quests = generate_milestone_quests(QuestCounters(total_scans=1000, total_weight=10000))
    assert quests == []


@pytest.mark.parametrize(
    "milestone,track,difficulty",
    [
        (10, "scans", "easy"),
        (50, "scans", "easy"),
        (100, "scans", "medium"),
        (250, "scans", "medium"),
        (500, "scans", "hard"),
        (500, "weight", "easy"),
        (1000, "weight", "easy"),
        (2500, "weight", "medium"),
        (5000, "weight", "medium"),
        (10000, "weight", "hard"),
    ],
)
def test_milestone_difficulty(milestone, track, difficulty):
    assert milestone_difficulty(milestone, track) == difficulty


def test_progress_is_clamped_to_target(now):
    quests = _by_title(generate_quests(QuestCounters(today_scans=9, today_weight=450), now))
    assert quests["Daily Scanner"].progress == 3
    assert quests["Weight Tracker"].progress == 100


def test_weekly_counters(now):
    records = [
        make_record(waste_type=WasteType.GLASS, environment_score=8),
        make_record(waste_type=WasteType.PAPER, environment_score=6, when=now - timedelta(days=3)),
        make_record(waste_type=WasteType.METAL, when=now - timedelta(days=6)),
        make_record(waste_type=WasteType.TEXTILE, environment_score=1, when=now - timedelta(days=12)),
    ]
    counters = derive_counters(records, now=now)

    assert counters.weekly_waste_types == 3
    assert counters.weekly_avg_env_score == pytest.approx(7.0)
    assert counters.total_scans == 4

    quests = _by_title(generate_quests(counters, now))
    assert quests["Environmental Champion"].completed
    assert not quests["Waste Variety"].completed


def test_check_quest_completion_awards_once(now):
    quest = _by_title(generate_quests(QuestCounters(today_scans=2), now))["Daily Scanner"]
    assert not quest.completed

    assert check_quest_completion(quest, QuestCounters(today_scans=2)) == (False, 0)
    assert check_quest_completion(quest, QuestCounters(today_scans=3)) == (True, 25)

    done = quest.model_copy(update={"completed": True})
    assert check_quest_completion(done, QuestCounters(today_scans=4)) == (True, 0)
