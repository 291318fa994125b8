import base64
import json
from unittest.mock import MagicMock

from conftest import make_record
from wastelens import config, db_helper
from wastelens.classes.profile import DisposalLocation
from wastelens.db_helper import OWNER_FIELD, FirestoreRecordStore
from wastelens.errors import CollaboratorError


def fake_doc(doc_id, data, exists=True):
    doc = MagicMock()
    doc.id = doc_id
    doc.exists = exists
    doc.to_dict.return_value = dict(data)
    return doc


def test_decode_service_account_handles_bytes_repr():
    info = {"type": "service_account", "project_id": "wastelens"}
    encoded = base64.b64encode(json.dumps(info).encode()).decode()

    assert db_helper._decode_service_account(encoded) == info
    assert db_helper._decode_service_account(f"b'{encoded}'") == info


def test_list_records_drops_malformed_documents():
    record = make_record(weight=25)
    data = record.model_dump(mode="json", by_alias=True)
    data[OWNER_FIELD] = "anon-1"
    client = MagicMock()
    client.collection.return_value.where.return_value.stream.return_value = [
        fake_doc(record.id, data),
        fake_doc("broken", {"weightGrams": -1, OWNER_FIELD: "anon-1"}),
    ]

    result = FirestoreRecordStore(client).list_records("anon-1")

    assert [r.id for r in result.value] == [record.id]
    client.collection.return_value.where.assert_called_with(OWNER_FIELD, "==", "anon-1")


def test_insert_record_is_keyed_by_record_id():
    record = make_record()
    client = MagicMock()

    result = FirestoreRecordStore(client).insert_record("anon-1", record)

    assert result.value == record.id
    client.collection.return_value.document.assert_called_with(record.id)
    written = client.collection.return_value.document.return_value.set.call_args.args[0]
    assert written[OWNER_FIELD] == "anon-1"
    assert written["weightGrams"] == record.weight_grams


def test_insert_failure_is_a_collaborator_error():
    client = MagicMock()
    client.collection.return_value.document.return_value.set.side_effect = RuntimeError("quota")

    result = FirestoreRecordStore(client).insert_record("anon-1", make_record())

    assert isinstance(result.error, CollaboratorError)
    assert result.error.collaborator == "firestore"


def test_delete_record():
    client = MagicMock()
    doc_ref = client.collection.return_value.document.return_value
    store = FirestoreRecordStore(client)

    doc_ref.get.return_value = fake_doc("item-1", {OWNER_FIELD: "anon-1"})
    assert store.delete_record("item-1", "anon-1").value is True
    doc_ref.delete.assert_called_once()

    doc_ref.get.return_value = fake_doc("item-1", {OWNER_FIELD: "someone-else"})
    assert store.delete_record("item-1", "anon-1").value is False

    doc_ref.get.return_value = fake_doc("item-1", {}, exists=False)
    assert store.delete_record("item-1").value is False
    assert doc_ref.delete.call_count == 1


def test_associate_records_moves_everything_once():
    client = MagicMock()
    query = client.collection.return_value.where.return_value
    docs = [fake_doc("a", {}), fake_doc("b", {})]
    query.stream.return_value = docs
    store = FirestoreRecordStore(client)

    assert store.associate_records("anon-1", "uid-1").value == 2
    batch = client.batch.return_value
    for doc in docs:
        batch.update.assert_any_call(doc.reference, {OWNER_FIELD: "uid-1"})
    batch.commit.assert_called_once()

    query.stream.return_value = []
    assert store.associate_records("anon-1", "uid-1").value == 0
    batch.commit.assert_called_once()


def test_associate_records_same_key_is_a_no_op():
    client = MagicMock()
    assert FirestoreRecordStore(client).associate_records("uid-1", "uid-1").value == 0
    client.collection.assert_not_called()


def test_get_uid_from_invalid_token(monkeypatch):
    monkeypatch.setattr(db_helper, "get_firestore", lambda: None)

    def reject(token, clock_skew_seconds=0):
        raise ValueError("bad token")

    monkeypatch.setattr(db_helper.auth, "verify_id_token", reject)
    assert db_helper.get_uid_from_id_token("nope") is None

    monkeypatch.setattr(db_helper.auth, "verify_id_token", lambda token, clock_skew_seconds=0: {"uid": "uid-1"})
    assert db_helper.get_uid_from_id_token("good") == "uid-1"


def collections(client, **by_name):
    """Route client.collection(name) to a separate mock per collection."""
    mocks = {name: MagicMock() for name in by_name}
    for name, docs in by_name.items():
        mocks[name].where.return_value.stream.return_value = docs
        mocks[name].where.return_value.limit.return_value.stream.return_value = docs[:1]
    client.collection.side_effect = lambda name: mocks[name]
    return mocks


def test_associate_records_moves_redemptions_too():
    client = MagicMock()
    record_docs = [fake_doc("a", {})]
    redemption_docs = [fake_doc("red-1", {}), fake_doc("red-2", {})]
    mocks = collections(
        client,
        **{config.RECORDS_COLLECTION: record_docs, config.REDEMPTIONS_COLLECTION: redemption_docs},
    )

    result = FirestoreRecordStore(client).associate_records("anon-1", "uid-1")

    assert result.value == 1
    mocks[config.REDEMPTIONS_COLLECTION].where.assert_called_with(OWNER_FIELD, "==", "anon-1")
    batch = client.batch.return_value
    for doc in record_docs + redemption_docs:
        batch.update.assert_any_call(doc.reference, {OWNER_FIELD: "uid-1"})
    batch.commit.assert_called_once()


def test_sync_local_items_skips_when_remote_has_records():
    client = MagicMock()
    mocks = collections(client, **{config.RECORDS_COLLECTION: [fake_doc("a", {})]})

    result = FirestoreRecordStore(client).sync_local_items("uid-1", [make_record()])

    assert result.value == 0
    mocks[config.RECORDS_COLLECTION].document.return_value.set.assert_not_called()


def test_sync_local_items_pushes_backup():
    client = MagicMock()
    mocks = collections(client, **{config.RECORDS_COLLECTION: []})
    records = [make_record(weight=10), make_record(weight=20)]

    result = FirestoreRecordStore(client).sync_local_items("uid-1", records)

    assert result.value == 2
    written = [c.args[0] for c in mocks[config.RECORDS_COLLECTION].document.return_value.set.call_args_list]
    assert [data[OWNER_FIELD] for data in written] == ["uid-1", "uid-1"]


def test_get_profile_missing():
    client = MagicMock()
    profile_doc = client.collection.return_value.document.return_value.collection.return_value.document.return_value
    profile_doc.get.return_value = fake_doc("profile", {}, exists=False)

    assert FirestoreRecordStore(client).get_profile("uid-1").value is None
    client.collection.assert_called_with(config.USERS_COLLECTION)


def test_update_profile_merges():
    client = MagicMock()
    profile_doc = client.collection.return_value.document.return_value.collection.return_value.document.return_value
    profile_doc.get.return_value = fake_doc(
        "profile", {"fullName": "Ada Lovelace", "onboardingCompleted": True, "lastUpdated": "now"}
    )

    result = FirestoreRecordStore(client).update_profile("uid-1", {"fullName": "Ada Lovelace"})

    written, = profile_doc.set.call_args.args
    assert written["fullName"] == "Ada Lovelace"
    assert "lastUpdated" in written
    assert profile_doc.set.call_args.kwargs == {"merge": True}
    assert result.value.user_id == "uid-1"
    assert result.value.full_name == "Ada Lovelace"
    assert result.value.onboarding_completed


def test_save_disposal_location():
    client = MagicMock()
    doc_ref = MagicMock()
    doc_ref.id = "loc-1"
    client.collection.return_value.add.return_value = (None, doc_ref)
    location = DisposalLocation(
        name="Eastside Recycling",
        address="1 Depot Road",
        location_type="recycling_center",
        search_query="batteries",
        city="Portland",
        owner_key="uid-1",
    )

    result = FirestoreRecordStore(client).save_disposal_location(location)

    assert result.value == "loc-1"
    client.collection.assert_called_with(config.DISPOSAL_LOCATIONS_COLLECTION)
    saved = client.collection.return_value.add.call_args.args[0]
    assert saved["locationType"] == "recycling_center"
    assert saved["ownerKey"] == "uid-1"
