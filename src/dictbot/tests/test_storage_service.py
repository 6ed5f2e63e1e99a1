"""Tests for the per-user key/value storage."""
import pytest
from sqlalchemy.orm import Session

from dictbot.models.models import StorageEntry, User
from dictbot.services.storage_service import STAR_DATA_KEY, StorageService


@pytest.fixture
def storage(db: Session, user: User) -> StorageService:
    """Create a storage service for the test user."""
    return StorageService(db, user.id)


def test_set_and_get_item(storage: StorageService) -> None:
    """Test that values are stored and replaced per key."""
    assert storage.get_item("missing") is None

    storage.set_item("key", "first")
    storage.set_item("key", "second")

    assert storage.get_item("key") == "second"
    assert storage.db.query(StorageEntry).count() == 1


def test_remove_item(storage: StorageService) -> None:
    """Test that removing a key deletes it and missing keys are ignored."""
    storage.set_item("key", "value")
    storage.remove_item("key")
    storage.remove_item("key")

    assert storage.get_item("key") is None


def test_json_round_trip(storage: StorageService) -> None:
    """Test that JSON values keep non-ASCII text."""
    storage.set_json(STAR_DATA_KEY, {"w1": 3, "貓": 1})

    assert storage.get_json(STAR_DATA_KEY) == {"w1": 3, "貓": 1}
    assert "貓" in storage.get_item(STAR_DATA_KEY)


@pytest.mark.parametrize("raw", ["{not json", "[1, 2, 3]", "42"])
def test_corrupt_json_reads_as_empty(storage: StorageService, raw: str) -> None:
    """Test that corrupt or unexpected data degrades to an empty object."""
    storage.set_item(STAR_DATA_KEY, raw)

    assert storage.get_json(STAR_DATA_KEY) == {}


def test_storage_is_per_user(db: Session, storage: StorageService) -> None:
    """Test that users do not see each other's data."""
    other = User(telegram_id=1, username="other")
    db.add(other)
    db.commit()

    storage.set_json(STAR_DATA_KEY, {"w1": 5})

    assert StorageService(db, other.id).get_json(STAR_DATA_KEY) == {}


if __name__ == "__main__":
    pytest.main([__file__])
