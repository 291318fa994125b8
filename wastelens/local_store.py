"""
Small durable key-value store on the device: goals cache, items backup and
onboarding flags. Values must be JSON-serializable.

Everything in here is a non-critical cache, so failures are logged and the
call reports False / returns the default instead of raising.
"""
import json
import logging
import os
import threading
import uuid
from typing import Any, List, Optional

from pydantic import TypeAdapter

from . import config
from .classes.waste import ScanRecord, WasteGoal
from .stats import coerce_records

logger = logging.getLogger(__name__)

ITEMS_KEY = "waste_items"
GOALS_KEY = "waste_goals"
GUIDELINES_SEEN_KEY = "guidelines_seen"
ONBOARDING_KEY = "onboarding_completed"
ANONYMOUS_ID_KEY = "anonymous_id"

_goals_adapter = TypeAdapter(List[WasteGoal])


class LocalStore:
    def __init__(self, path: Optional[str] = None):
        self.path = path or config.LOCAL_STORE_PATH
        self._lock = threading.Lock()

    def _read(self) -> dict:
        if not os.path.exists(self.path):
            return {}
        with open(self.path, "r", encoding="utf-8") as f:
            data = json.load(f)
        return data if isinstance(data, dict) else {}

    def _write(self, data: dict) -> None:
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        temp_path = f"{self.path}.tmp"
        with open(temp_path, "w", encoding="utf-8") as f:
            json.dump(data, f)
        os.replace(temp_path, self.path)

    def get(self, key: str, default: Any = None) -> Any:
        try:
            with self._lock:
                return self._read().get(key, default)
        except (OSError, ValueError) as e:
            logger.error(f"Failed to read {key!r} from local store: {e}")
            return default

    def set(self, key: str, value: Any) -> bool:
        try:
            with self._lock:
                data = self._read()
                data[key] = value
                self._write(data)
            return True
        except (OSError, TypeError, ValueError) as e:
            logger.error(f"Failed to save {key!r} to local store: {e}")
            return False

    def delete(self, key: str) -> bool:
        try:
            with self._lock:
                data = self._read()
                if key in data:
                    del data[key]
                    self._write(data)
            return True
        except (OSError, ValueError) as e:
            logger.error(f"Failed to delete {key!r} from local store: {e}")
            return False

    # Items backup

    @staticmethod
    def _scoped(key: str, owner_key: Optional[str]) -> str:
        return f"{key}:{owner_key}" if owner_key else key

    def save_items(self, records: List[ScanRecord], owner_key: Optional[str] = None) -> bool:
        payload = [record.model_dump(mode="json", by_alias=True) for record in records]
        saved = self.set(self._scoped(ITEMS_KEY, owner_key), payload)
        if saved:
            logger.info(f"Saved {len(records)} items to local store")
        return saved

    def load_items(self, owner_key: Optional[str] = None) -> List[ScanRecord]:
        raw = self.get(self._scoped(ITEMS_KEY, owner_key), [])
        if not isinstance(raw, list):
            logger.warning("Ignoring malformed items backup")
            return []
        return coerce_records(raw)

    def discard_items(self, owner_key: Optional[str] = None) -> bool:
        """Drop a backup whose owner has been re-keyed."""
        return self.delete(self._scoped(ITEMS_KEY, owner_key))

    # Goals cache

    def save_goals(self, goals: List[WasteGoal], owner_key: Optional[str] = None) -> bool:
        payload = _goals_adapter.dump_python(goals, mode="json", by_alias=True)
        return self.set(self._scoped(GOALS_KEY, owner_key), payload)

    def load_goals(self, owner_key: Optional[str] = None) -> List[WasteGoal]:
        raw = self.get(self._scoped(GOALS_KEY, owner_key))
        if not raw:
            return []
        try:
            return _goals_adapter.validate_python(raw)
        except ValueError as e:
            logger.warning(f"Ignoring malformed goals cache: {e}")
            return []

    # Flags

    def set_guidelines_seen(self, owner_key: Optional[str] = None) -> bool:
        return self.set(self._scoped(GUIDELINES_SEEN_KEY, owner_key), True)

    def has_seen_guidelines(self, owner_key: Optional[str] = None) -> bool:
        return self.get(self._scoped(GUIDELINES_SEEN_KEY, owner_key)) is True

    def mark_onboarding_completed(self, owner_key: Optional[str] = None) -> bool:
        return self.set(self._scoped(ONBOARDING_KEY, owner_key), True)

    def has_completed_onboarding(self, owner_key: Optional[str] = None) -> bool:
        return self.get(self._scoped(ONBOARDING_KEY, owner_key)) is True

    def get_or_create_anonymous_id(self, device_id: Optional[str] = None) -> str:
        """Stable identifier that owns records until the user signs in."""
        key = self._scoped(ANONYMOUS_ID_KEY, device_id)
        anonymous_id = self.get(key)
        if isinstance(anonymous_id, str) and anonymous_id:
            return anonymous_id
        anonymous_id = f"anon-{uuid.uuid4()}"
        self.set(key, anonymous_id)
        return anonymous_id

    def clear_all(self) -> bool:
        try:
            with self._lock:
                data = self._read()
                for key in list(data):
                    if key.split(":", 1)[0] in (GUIDELINES_SEEN_KEY, ITEMS_KEY, GOALS_KEY):
                        del data[key]
                self._write(data)
        except (OSError, ValueError) as e:
            logger.error(f"Failed to clear local store: {e}")
            return False
        logger.info("Cleared all data from local store")
        return True
