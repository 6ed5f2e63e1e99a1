"""Star-based mastery tracking for lesson items."""
import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Iterable, List

from dictbot.config import settings
from dictbot.models.card_models import KindSummary
from dictbot.services.storage_service import STAR_DATA_KEY, StorageService

logger = logging.getLogger(__name__)


def round_percent(part: int, total: int) -> int:
    """Percentage rounded half-up to an integer; 0 when total is 0."""
    if total <= 0:
        return 0
    value = Decimal(part * 100) / Decimal(total)
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def star_label(count: int) -> str:
    """Encouragement shown under the stars of a card."""
    if count <= 0:
        return "Start practising"
    if count < 3:
        return "Keep going!"
    if count < settings.study.max_stars:
        return "Getting confident!"
    return "Mastered!"


class MasteryService:
    """In-memory mapping from item id to star count, written through to storage."""

    def __init__(self, storage: StorageService):
        """Initialize the tracker from the stored starData blob."""
        self.storage = storage
        self.max_stars = settings.study.max_stars
        self.stars: Dict[str, int] = {}
        self.load()

    def load(self) -> None:
        """Reload the star map from storage, dropping out-of-range values."""
        self.stars = {}
        for item_id, value in self.storage.get_json(STAR_DATA_KEY).items():
            try:
                count = int(value)
            except (TypeError, ValueError):
                logger.warning(f"Ignoring invalid star count for {item_id}: {value!r}")
                continue
            self.stars[str(item_id)] = max(0, min(self.max_stars, count))

    def save(self) -> None:
        self.storage.set_json(STAR_DATA_KEY, self.stars)

    def get(self, item_id: str) -> int:
        return self.stars.get(item_id, 0)

    def ensure(self, item_ids: Iterable[str]) -> None:
        """Give every id an entry, defaulting missing ones to 0."""
        for item_id in item_ids:
            self.stars.setdefault(item_id, 0)

    def increment(self, item_id: str) -> bool:
        """Add a star; returns False when the item is already mastered."""
        current = self.get(item_id)
        if current >= self.max_stars:
            return False
        self.stars[item_id] = current + 1
        self.save()
        logger.debug(f"Item {item_id} stars {current} -> {current + 1}")
        return True

    def decrement(self, item_id: str) -> bool:
        """Remove a star; returns False when the item has none."""
        current = self.get(item_id)
        if current <= 0:
            return False
        self.stars[item_id] = current - 1
        self.save()
        logger.debug(f"Item {item_id} stars {current} -> {current - 1}")
        return True

    def mastered_count(self, item_ids: Iterable[str]) -> int:
        return sum(1 for item_id in item_ids if self.get(item_id) == self.max_stars)

    def mastery_percent(self, item_ids: Iterable[str]) -> int:
        """Share of ids at full stars as a rounded integer percent."""
        ids = list(item_ids)
        return round_percent(self.mastered_count(ids), len(ids))

    def summary(self, item_ids: Iterable[str]) -> KindSummary:
        ids = list(item_ids)
        mastered = self.mastered_count(ids)
        return KindSummary(
            total=len(ids),
            mastered=mastered,
            review=len(ids) - mastered,
            percent=round_percent(mastered, len(ids)),
        )

    def reset(self, item_ids: List[str]) -> None:
        """Zero exactly the given ids."""
        for item_id in item_ids:
            self.stars[item_id] = 0
        self.save()

    def reset_all(self) -> None:
        self.stars = {}
        self.storage.remove_item(STAR_DATA_KEY)

    def replace(self, star_data: Dict[str, int]) -> None:
        """Overwrite the whole map, as done by a backup import."""
        self.storage.set_json(STAR_DATA_KEY, star_data)
        self.load()

    def snapshot(self) -> Dict[str, int]:
        return dict(self.stars)
