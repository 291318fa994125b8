"""
Roll-up statistics over a scan-record collection.

Everything here is recomputed from scratch on each call. There is no
incremental path: feeding the same records and the same ``now`` always gives
the same AggregateStats.
"""
import logging
import math
import warnings
from datetime import date, datetime, timedelta
from typing import Any, Iterable, List, Mapping, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from .classes.waste import (
    AggregateStats,
    DisposalCategory,
    ScanRecord,
    WasteType,
    local_now,
)
from .errors import DataIntegrityWarning

logger = logging.getLogger(__name__)

STREAK_LOOKBACK_DAYS = 30
WEEK_WINDOW = timedelta(days=7)
MONTH_WINDOW = timedelta(days=30)
# Rough estimate: 1 kg of composted waste avoids 0.5 kg of CO2
COMPOST_CO2_KG_PER_GRAM = 0.0005

RecordLike = Union[ScanRecord, Mapping[str, Any]]


def _flag(record: Any, reason: str) -> None:
    record_id = getattr(record, "id", None)
    if record_id is None and isinstance(record, Mapping):
        record_id = record.get("id")
    message = f"Skipping scan record {record_id!r}: {reason}"
    logger.warning(message)
    warnings.warn(message, DataIntegrityWarning, stacklevel=3)


def is_sane_record(record: Any) -> bool:
    """Basic checks a record must pass before it is aggregated."""
    weight = getattr(record, "weight_grams", None)
    if not isinstance(weight, (int, float)) or isinstance(weight, bool):
        return False
    if not math.isfinite(weight) or weight < 0:
        return False
    if not isinstance(getattr(record, "timestamp", None), datetime):
        return False
    try:
        WasteType(record.waste_type)
        DisposalCategory(record.disposal_category)
    except (AttributeError, ValueError):
        return False
    return True


def coerce_records(records: Iterable[RecordLike]) -> List[ScanRecord]:
    """
    Turn whatever the store handed back into ScanRecords, dropping anything
    malformed. Never raises for bad data.
    """
    clean = []
    for raw in records or ():
        record = raw
        if isinstance(raw, Mapping):
            try:
                record = ScanRecord.model_validate(raw)
            except PydanticValidationError as e:
                _flag(raw, f"invalid fields ({e.error_count()} errors)")
                continue
        if not is_sane_record(record):
            _flag(record, "failed sanity check")
            continue
        clean.append(record)
    return clean


def as_aware(moment: datetime) -> datetime:
    # naive datetimes are device-local time
    if moment.tzinfo is None:
        return moment.astimezone()
    return moment


def local_day(moment: datetime, now: datetime) -> date:
    """Calendar day of ``moment`` in the zone ``now`` is expressed in."""
    return as_aware(moment).astimezone(as_aware(now).tzinfo).date()


def calculate_streak(records: Iterable[ScanRecord], now: Optional[datetime] = None) -> int:
    """
    Consecutive days with at least one scan, walking back from today.
    Stops at the first empty day and never looks back further than 30 days.
    """
    now = as_aware(now or local_now())
    days_with_scans = {local_day(record.timestamp, now) for record in records}
    if not days_with_scans:
        return 0

    streak = 0
    current = local_day(now, now)
    for _ in range(STREAK_LOOKBACK_DAYS):
        if current not in days_with_scans:
            break
        streak += 1
        current -= timedelta(days=1)
    return streak


def _rate(part: float, total: float) -> float:
    if total <= 0:
        return 0.0
    rate = part / total * 100
    if not math.isfinite(rate):
        return 0.0
    return min(max(rate, 0.0), 100.0)


def _co2_for(record: ScanRecord) -> float:
    if record.ai_analysis is not None:
        return record.ai_analysis.carbon_footprint_kg
    if record.compostable:
        return record.weight_grams * COMPOST_CO2_KG_PER_GRAM
    return 0.0


def recompute_stats(records: Iterable[RecordLike], now: Optional[datetime] = None) -> AggregateStats:
    now = as_aware(now or local_now())
    clean = coerce_records(records)

    week_start = now - WEEK_WINDOW
    month_start = now - MONTH_WINDOW

    total_weight = 0.0
    weekly_weight = 0.0
    monthly_weight = 0.0
    recyclable_weight = 0.0
    compostable_weight = 0.0
    co2_saved = 0.0
    by_type = {waste_type: 0.0 for waste_type in WasteType}
    by_category = {category: 0.0 for category in DisposalCategory}

    for record in clean:
        weight = record.weight_grams
        scanned_at = as_aware(record.timestamp)
        total_weight += weight
        if scanned_at >= week_start:
            weekly_weight += weight
        if scanned_at >= month_start:
            monthly_weight += weight
        if record.recyclable:
            recyclable_weight += weight
        if record.compostable:
            compostable_weight += weight
        co2_saved += _co2_for(record)
        by_type[WasteType(record.waste_type)] += weight
        by_category[DisposalCategory(record.disposal_category)] += weight

    return AggregateStats(
        total_scans=len(clean),
        total_weight_grams=max(total_weight, 0.0),
        weekly_weight_grams=max(weekly_weight, 0.0),
        monthly_weight_grams=max(monthly_weight, 0.0),
        recycling_rate_pct=_rate(recyclable_weight, total_weight),
        composting_rate_pct=_rate(compostable_weight, total_weight),
        streak_days=calculate_streak(clean, now),
        co2_saved_kg=max(co2_saved, 0.0),
        waste_by_type=by_type,
        waste_by_category=by_category,
    )
