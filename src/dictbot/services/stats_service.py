"""Per-unit learning statistics."""
import logging
from datetime import UTC, datetime
from typing import Dict, Optional

from dictbot.models.lesson_models import UnitRecord
from dictbot.services.storage_service import LEARNING_STATS_KEY, StorageService

logger = logging.getLogger(__name__)


def format_minutes(minutes: float) -> str:
    """Human readable study time, e.g. '45 min', '1 h 30 min', '2 h'."""
    minutes = round(minutes, 1)
    if minutes < 60:
        return f"{minutes:g} min"
    hours = int(minutes // 60)
    rest = round(minutes - hours * 60, 1)
    return f"{hours} h {rest:g} min" if rest > 0 else f"{hours} h"


def format_date(iso_timestamp: Optional[str]) -> str:
    """Date part of a stored timestamp, or 'never'."""
    if not iso_timestamp:
        return "never"
    try:
        return datetime.fromisoformat(iso_timestamp).date().isoformat()
    except ValueError:
        return iso_timestamp


class StatsService:
    """Mapping from unit id to usage statistics, written through to storage."""

    def __init__(self, storage: StorageService):
        """Initialize the tracker from the stored learningStats blob."""
        self.storage = storage
        self.records: Dict[str, UnitRecord] = {}
        self.load()

    def load(self) -> None:
        self.records = {}
        for unit_id, data in self.storage.get_json(LEARNING_STATS_KEY).items():
            if not isinstance(data, dict):
                logger.warning(f"Ignoring invalid stats record for unit {unit_id}")
                continue
            try:
                self.records[str(unit_id)] = UnitRecord.from_dict(data)
            except (TypeError, ValueError) as e:
                logger.warning(f"Ignoring invalid stats record for unit {unit_id}: {e}")

    def save(self) -> None:
        self.storage.set_json(LEARNING_STATS_KEY, self.to_dict())

    def to_dict(self) -> Dict[str, dict]:
        return {unit_id: record.to_dict() for unit_id, record in self.records.items()}

    @staticmethod
    def _now() -> str:
        return datetime.now(UTC).isoformat()

    def get(self, unit_id: str) -> Optional[UnitRecord]:
        return self.records.get(unit_id)

    def all(self) -> Dict[str, UnitRecord]:
        return dict(self.records)

    def ensure(self, unit_id: str) -> UnitRecord:
        """Create a zeroed record stamped with the current time if missing."""
        record = self.records.get(unit_id)
        if record is None:
            record = UnitRecord(last_accessed=self._now())
            self.records[unit_id] = record
        return record

    def record_visit(self, unit_id: str) -> UnitRecord:
        """Count a new session for the unit and stamp its access time."""
        record = self.ensure(unit_id)
        record.last_accessed = self._now()
        record.sessions += 1
        self.save()
        logger.info(f"Unit {unit_id} visited, sessions: {record.sessions}")
        return record

    def accrue_time(self, unit_id: str, minutes: float) -> bool:
        """Add study time to an existing record; returns False if there is none."""
        record = self.records.get(unit_id)
        if record is None:
            return False
        if minutes < 0:
            raise ValueError("Study time cannot decrease")
        record.total_time += minutes
        self.save()
        return True

    def set_mastery(self, unit_id: str, percent: int) -> None:
        """Overwrite the stored mastery snapshot of an existing record."""
        record = self.records.get(unit_id)
        if record is None:
            return
        if record.mastery != percent:
            record.mastery = percent
            self.save()

    def reset_all(self) -> None:
        self.records = {}
        self.storage.remove_item(LEARNING_STATS_KEY)

    def replace(self, learning_stats: Dict[str, dict]) -> None:
        """Overwrite every record, as done by a backup import."""
        self.storage.set_json(LEARNING_STATS_KEY, learning_stats)
        self.load()
