"""Per-user key/value storage for progress data."""
import json
import logging
from typing import Any, Optional

from sqlalchemy.orm import Session

from dictbot.models.models import StorageEntry

logger = logging.getLogger(__name__)

STAR_DATA_KEY = "starData"
LEARNING_STATS_KEY = "learningStats"


class StorageService:
    """Thin key/value wrapper over the storage_entries table of one user."""

    def __init__(self, db: Session, user_id: int):
        """Initialize the service with a database session and the owning user."""
        self.db = db
        self.user_id = user_id

    def _get_entry(self, key: str) -> Optional[StorageEntry]:
        return (
            self.db.query(StorageEntry)
            .filter(
                StorageEntry.user_id == self.user_id,
                StorageEntry.key == key,
            )
            .first()
        )

    def get_item(self, key: str) -> Optional[str]:
        """Get the raw stored value of a key."""
        entry = self._get_entry(key)
        return entry.value if entry else None

    def set_item(self, key: str, value: str) -> None:
        """Store a raw value under a key, replacing any previous value."""
        entry = self._get_entry(key)
        if entry:
            entry.value = value
        else:
            self.db.add(StorageEntry(user_id=self.user_id, key=key, value=value))
        self.db.commit()

    def remove_item(self, key: str) -> None:
        """Delete a key; missing keys are ignored."""
        entry = self._get_entry(key)
        if entry:
            self.db.delete(entry)
            self.db.commit()

    def get_json(self, key: str) -> dict:
        """Load a JSON object; missing or corrupt data reads as empty."""
        raw = self.get_item(key)
        if raw is None:
            return {}
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.warning(f"Corrupt '{key}' data for user {self.user_id}, using defaults: {e}")
            return {}
        if not isinstance(data, dict):
            logger.warning(f"Unexpected '{key}' data type for user {self.user_id}: {type(data).__name__}")
            return {}
        return data

    def set_json(self, key: str, value: Any) -> None:
        """Serialize and store a value."""
        self.set_item(key, json.dumps(value, ensure_ascii=False))
