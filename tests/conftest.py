from datetime import datetime, timedelta, timezone

import pytest

from wastelens.classes.profile import UserProfile
from wastelens.classes.waste import AIAnalysis, DisposalCategory, ScanRecord, WasteType
from wastelens.errors import CollaboratorError, Err, Ok

# A Monday afternoon, far enough from midnight that "now minus a few hours" is still today
NOW = datetime(2026, 10, 19, 15, 0, tzinfo=timezone.utc)


@pytest.fixture
def now():
    return NOW


def make_record(
    weight=100,
    waste_type=WasteType.PLASTIC,
    recyclable=False,
    compostable=False,
    when=None,
    environment_score=None,
    carbon_footprint_kg=0.0,
    category=None,
    record_id=None,
):
    if category is None:
        if recyclable:
            category = DisposalCategory.RECYCLING
        elif compostable:
            category = DisposalCategory.COMPOSTING
        else:
            category = DisposalCategory.LANDFILL
    analysis = None
    if environment_score is not None:
        analysis = AIAnalysis(
            material="mixed",
            environment_score=environment_score,
            confidence=0.9,
            carbon_footprint_kg=carbon_footprint_kg,
        )
    kwargs = {}
    if record_id is not None:
        kwargs["id"] = record_id
    return ScanRecord(
        waste_type=waste_type,
        disposal_category=category,
        weight_grams=weight,
        recyclable=recyclable,
        compostable=compostable,
        timestamp=when or NOW - timedelta(hours=1),
        ai_analysis=analysis,
        **kwargs,
    )


@pytest.fixture
def record_factory():
    return make_record


class FakeRecordStore:
    """In-memory stand-in for FirestoreRecordStore."""

    def __init__(self):
        self.records = {}
        self.owners = {}
        self.redemptions = []
        self.insert_calls = 0
        self.fail_inserts = False
        self.fail_redemptions = False
        self.profiles = {}
        self.locations = []

    def list_records(self, owner_key):
        return Ok([r for rid, r in self.records.items() if self.owners[rid] == owner_key])

    def insert_record(self, owner_key, record):
        self.insert_calls += 1
        if self.fail_inserts:
            return Err(CollaboratorError("firestore", "unavailable"))
        self.records[record.id] = record
        self.owners[record.id] = owner_key
        return Ok(record.id)

    def delete_record(self, record_id, owner_key=None):
        if record_id not in self.records or (owner_key and self.owners[record_id] != owner_key):
            return Ok(False)
        del self.records[record_id]
        del self.owners[record_id]
        return Ok(True)

    def associate_records(self, from_key, to_key):
        if from_key == to_key:
            return Ok(0)
        moved = 0
        for rid, owner in list(self.owners.items()):
            if owner == from_key:
                self.owners[rid] = to_key
                moved += 1
        self.redemptions = [
            r.model_copy(update={"owner_key": to_key}) if r.owner_key == from_key else r for r in self.redemptions
        ]
        return Ok(moved)

    def sync_local_items(self, owner_key, records):
        if any(owner == owner_key for owner in self.owners.values()):
            return Ok(0)
        return Ok(sum(1 for record in records if self.insert_record(owner_key, record).ok))

    def get_profile(self, user_id):
        profile = self.profiles.get(user_id)
        return Ok(UserProfile.model_validate(dict(profile, userId=user_id)) if profile is not None else None)

    def update_profile(self, user_id, changes):
        self.profiles.setdefault(user_id, {}).update(changes)
        return self.get_profile(user_id)

    def save_disposal_location(self, location):
        self.locations.append(location)
        return Ok(f"location-{len(self.locations)}")

    def save_redemption(self, redemption):
        if self.fail_redemptions:
            return Err(CollaboratorError("firestore", "write failed"))
        self.redemptions.append(redemption)
        return Ok(redemption)

    def list_redemptions(self, owner_key):
        return Ok([r for r in self.redemptions if r.owner_key == owner_key])


@pytest.fixture
def fake_store():
    return FakeRecordStore()
