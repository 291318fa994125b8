import base64
import json
import logging
from functools import lru_cache
from typing import List, Optional

import firebase_admin
from firebase_admin import auth, credentials, firestore
from google.cloud import storage

from . import config
from .classes.profile import DisposalLocation, UserProfile
from .classes.rewards import Redemption
from .classes.waste import ScanRecord
from .errors import CollaboratorError, Err, Ok, Result
from .stats import coerce_records

logger = logging.getLogger(__name__)

OWNER_FIELD = "ownerKey"


def _decode_service_account(encoded_key: Optional[str]) -> dict:
    if not encoded_key:
        raise ValueError("Service account key is not configured")
    encoded_key = str(encoded_key)
    # Keys exported as a bytes repr look like b'...'
    if encoded_key.startswith("b'") and encoded_key.endswith("'"):
        encoded_key = encoded_key[2:-1]
    return json.loads(base64.b64decode(encoded_key).decode("utf-8"))


def get_firebase_credentials():
    return _decode_service_account(config.FIREBASE_SERVICE_ACCOUNT_KEY)


def get_google_credentials():
    return _decode_service_account(config.GOOGLE_SERVICE_ACCOUNT_KEY)


@lru_cache(maxsize=1)
def get_firestore():
    """Initialize Firebase on first use and return the Firestore client."""
    try:
        firebase_admin.get_app()
    except ValueError:
        cred = credentials.Certificate(get_firebase_credentials())
        firebase_admin.initialize_app(cred)
    return firestore.client()


@lru_cache(maxsize=1)
def get_bucket_client():
    return storage.Client.from_service_account_info(get_google_credentials())


def upload_to_bucket(blob_name: str, data: bytes, content_type: str, bucket_name: Optional[str] = None) -> str:
    """Upload a scan photo to a bucket and return its public url."""
    bucket = get_bucket_client().get_bucket(bucket_name or config.GOOGLE_BUCKET_NAME)
    blob = bucket.blob(blob_name)
    blob.upload_from_string(data, content_type=content_type)
    return blob.public_url


def get_uid_from_id_token(id_token: str) -> Optional[str]:
    try:
        get_firestore()
        decoded_token = auth.verify_id_token(id_token, clock_skew_seconds=10)
        return decoded_token["uid"]
    except Exception as e:
        logger.warning(f"Error verifying token: {e}")
        return None


class FirestoreRecordStore:
    """
    Scan records, redemptions, profiles and saved disposal locations in
    Firestore, keyed by owner.

    The owner key is either a Firebase uid or a locally generated anonymous
    id. Records are written under their own id, so retrying an insert never
    creates a second copy.
    """

    def __init__(self, client=None):
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = get_firestore()
        return self._client

    def _records(self):
        return self.client.collection(config.RECORDS_COLLECTION)

    def _redemptions(self):
        return self.client.collection(config.REDEMPTIONS_COLLECTION)

    def list_records(self, owner_key: str) -> Result:
        try:
            docs = self._records().where(OWNER_FIELD, "==", owner_key).stream()
            raw = []
            for doc in docs:
                data = doc.to_dict()
                data["id"] = doc.id
                raw.append(data)
        except Exception as e:
            logger.error(f"Error loading records for {owner_key}: {e}")
            return Err(CollaboratorError("firestore", str(e)))

        records = coerce_records(raw)
        logger.info(f"Loaded {len(records)} records for {owner_key}")
        return Ok(records)

    def insert_record(self, owner_key: str, record: ScanRecord) -> Result:
        data = record.model_dump(mode="json", by_alias=True)
        data[OWNER_FIELD] = owner_key
        data["createdAt"] = firestore.SERVER_TIMESTAMP
        try:
            self._records().document(record.id).set(data)
        except Exception as e:
            logger.error(f"Error saving record {record.id}: {e}")
            return Err(CollaboratorError("firestore", str(e)))
        logger.info(f"Record {record.id} saved for {owner_key}")
        return Ok(record.id)

    def delete_record(self, record_id: str, owner_key: Optional[str] = None) -> Result:
        try:
            doc_ref = self._records().document(record_id)
            doc = doc_ref.get()
            if not doc.exists:
                return Ok(False)
            if owner_key is not None and doc.to_dict().get(OWNER_FIELD) != owner_key:
                logger.warning(f"Refusing to delete record {record_id} owned by someone else")
                return Ok(False)
            doc_ref.delete()
        except Exception as e:
            logger.error(f"Error deleting record {record_id}: {e}")
            return Err(CollaboratorError("firestore", str(e)))
        logger.info(f"Successfully deleted record with ID: {record_id}")
        return Ok(True)

    def associate_records(self, from_key: str, to_key: str) -> Result:
        """
        Re-own every record and redemption held by ``from_key`` to ``to_key``
        in one batch. Running it again finds nothing left to move, so it is
        safe to repeat. Returns the number of scan records moved.
        """
        if from_key == to_key:
            return Ok(0)
        try:
            docs = list(self._records().where(OWNER_FIELD, "==", from_key).stream())
            redemption_docs = list(self._redemptions().where(OWNER_FIELD, "==", from_key).stream())
            if docs or redemption_docs:
                batch = self.client.batch()
                for doc in docs + redemption_docs:
                    batch.update(doc.reference, {OWNER_FIELD: to_key})
                batch.commit()
        except Exception as e:
            logger.error(f"Error moving records from {from_key} to {to_key}: {e}")
            return Err(CollaboratorError("firestore", str(e)))
        logger.info(f"Moved {len(docs)} records and {len(redemption_docs)} redemptions from {from_key} to {to_key}")
        return Ok(len(docs))

    def sync_local_items(self, owner_key: str, records: List[ScanRecord]) -> Result:
        """
        Push a device backup to the store the first time an owner signs in.
        Skipped when the owner already has records remotely. Returns the
        number of records written.
        """
        try:
            existing = list(self._records().where(OWNER_FIELD, "==", owner_key).limit(1).stream())
        except Exception as e:
            logger.error(f"Error checking existing records for {owner_key}: {e}")
            return Err(CollaboratorError("firestore", str(e)))
        if existing:
            logger.info(f"{owner_key} already has records, skipping local sync")
            return Ok(0)

        synced = 0
        for record in records:
            if self.insert_record(owner_key, record).ok:
                synced += 1
        logger.info(f"Synced {synced}/{len(records)} local items for {owner_key}")
        return Ok(synced)

    def save_redemption(self, redemption: Redemption) -> Result:
        data = redemption.model_dump(mode="json", by_alias=True)
        data["createdAt"] = firestore.SERVER_TIMESTAMP
        try:
            self._redemptions().document(redemption.id).set(data)
        except Exception as e:
            logger.error(f"Error saving redemption {redemption.id}: {e}")
            return Err(CollaboratorError("firestore", str(e)))
        return Ok(redemption)

    def list_redemptions(self, owner_key: str) -> Result:
        try:
            docs = self._redemptions().where(OWNER_FIELD, "==", owner_key).stream()
            redemptions: List[Redemption] = []
            for doc in docs:
                data = doc.to_dict()
                data.pop("createdAt", None)
                redemptions.append(Redemption.model_validate(data))
        except Exception as e:
            logger.error(f"Error loading redemptions for {owner_key}: {e}")
            return Err(CollaboratorError("firestore", str(e)))
        return Ok(redemptions)

    # Profiles live beside the rest of a user's settings

    def _profile_doc(self, user_id: str):
        return self.client.collection(config.USERS_COLLECTION).document(user_id).collection("settings").document("profile")

    def get_profile(self, user_id: str) -> Result:
        """Returns Ok(None) when the user has no profile yet."""
        try:
            doc = self._profile_doc(user_id).get()
        except Exception as e:
            logger.error(f"Error loading profile for {user_id}: {e}")
            return Err(CollaboratorError("firestore", str(e)))
        if not doc.exists:
            return Ok(None)
        data = doc.to_dict()
        data.pop("lastUpdated", None)
        data["userId"] = user_id
        return Ok(UserProfile.model_validate(data))

    def update_profile(self, user_id: str, changes: dict) -> Result:
        data_with_timestamp = dict(changes)
        data_with_timestamp["lastUpdated"] = firestore.SERVER_TIMESTAMP
        try:
            self._profile_doc(user_id).set(data_with_timestamp, merge=True)
        except Exception as e:
            logger.error(f"Error saving profile for {user_id}: {e}")
            return Err(CollaboratorError("firestore", str(e)))
        logger.info(f"Profile updated for {user_id}")
        return self.get_profile(user_id)

    def save_disposal_location(self, location: DisposalLocation) -> Result:
        data = location.model_dump(mode="json", by_alias=True)
        data["createdAt"] = firestore.SERVER_TIMESTAMP
        try:
            _, doc_ref = self.client.collection(config.DISPOSAL_LOCATIONS_COLLECTION).add(data)
        except Exception as e:
            logger.error(f"Error saving disposal location {location.name!r}: {e}")
            return Err(CollaboratorError("firestore", str(e)))
        logger.info(f"Disposal location saved for {location.owner_key}")
        return Ok(doc_ref.id)
