"""Tests for database and lesson models."""
import pytest
from faker import Faker
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from dictbot.models.card_models import ActionButton, CardAction, CardFace, item_ref, parse_card_callback
from dictbot.models.lesson_models import (
    BackupBundle,
    ItemKind,
    LessonUnit,
    UnitIndex,
    UnitInfo,
    UnitRecord,
)
from dictbot.models.models import StorageEntry, User

fake = Faker()


def test_user_creation(db: Session) -> None:
    """Test user creation."""
    user = User(telegram_id=fake.random_int(), username=fake.user_name())
    db.add(user)
    db.commit()
    db.refresh(user)

    assert user.id is not None
    assert user.current_unit_id is None
    assert user.created_at is not None


def test_storage_key_is_unique_per_user(db: Session, user: User) -> None:
    """Test that a user cannot hold the same key twice."""
    db.add(StorageEntry(user_id=user.id, key="starData", value="{}"))
    db.add(StorageEntry(user_id=user.id, key="starData", value="{}"))

    with pytest.raises(IntegrityError):
        db.commit()
    db.rollback()


def test_lesson_unit_lookup(unit_payload: dict) -> None:
    """Test item lookup and audio text resolution."""
    unit = LessonUnit.from_dict(unit_payload)

    assert unit.item_ids(ItemKind.WORD) == ["w1", "w2", "w3"]
    assert unit.item_ids() == ["w1", "w2", "w3", "s1"]
    assert unit.kind_of("s1") is ItemKind.SENTENCE
    assert unit.kind_of("x") is None
    assert unit.find_item("w2").english == "dog"
    assert unit.text_for_audio("s1.mp3") == "The cat is sleeping."
    assert unit.text_for_audio("hello") == "hello"


def test_audio_text_prefers_words() -> None:
    """Test that a key shared by a word and a sentence speaks the word."""
    unit = LessonUnit.from_dict({
        "unit_id": "u",
        "words": [{"id": "w1", "english": "cat", "translation": "", "audio": "same"}],
        "sentences": [{"id": "s1", "english": "A cat.", "translation": "", "audio": "same"}],
    })

    assert unit.text_for_audio("same") == "cat"


def test_lesson_unit_requires_id() -> None:
    with pytest.raises(KeyError):
        LessonUnit.from_dict({"unit_title": "No id"})


def test_unit_index_upsert() -> None:
    """Test that catalog entries are replaced by id."""
    index = UnitIndex.from_dict({"units": [{"id": "unit5", "title": "Five"}]})

    index.upsert(UnitInfo(id="unit5", title="Five again"))
    index.upsert(UnitInfo(id="unit6", title="Six"))

    assert [unit.title for unit in index.units] == ["Five again", "Six"]
    assert index.title_for("unit6") == "Six"
    assert index.title_for("gone") == "gone"


def test_unit_info_from_upload(unit_payload: dict) -> None:
    info = UnitInfo.from_upload(unit_payload)

    assert info.is_upload is True
    assert info.data_url == "upload:unit5"
    assert info.words_count == 3
    assert info.created is not None


def test_unit_record_round_trip() -> None:
    data = {"totalTime": 2.5, "lastAccessed": "2024-05-01T10:00:00", "sessions": 3, "mastery": 67}

    assert UnitRecord.from_dict(data).to_dict() == data


def test_backup_bundle_keeps_missing_keys_missing() -> None:
    """Test that a backup with only one blob is accepted."""
    bundle = BackupBundle.from_dict({"learningStats": {}, "version": "1.0"})

    assert bundle.star_data is None
    assert bundle.learning_stats == {}


@pytest.mark.parametrize("data", ["text", {}, {"starData": "x"}, {"learningStats": [1]}])
def test_backup_bundle_rejects_bad_documents(data) -> None:
    with pytest.raises(ValueError):
        BackupBundle.from_dict(data)



@pytest.mark.parametrize(
    "action, item_id, face",
    [
        (CardAction.AUDIO, "u5:w1", CardFace.BACK),
        (CardAction.CORRECT, "u5:w1", None),
        (CardAction.FLIP, "a:b:front", None),
        (CardAction.AUDIO, "w1", CardFace.FRONT),
    ],
)
def test_card_callback_keeps_colons_in_ids(action: CardAction, item_id: str, face: CardFace) -> None:
    data = ActionButton(action, item_id, "x", face=face).callback_data

    assert parse_card_callback(data) == (action, item_id, face)


def test_long_item_ids_are_hashed() -> None:
    """Test that callback data stays within Telegram's 64 byte limit."""
    long_id = "s" * 59
    data = ActionButton(CardAction.CORRECT, long_id, "x").callback_data

    assert len(data.encode("utf-8")) <= 64
    assert parse_card_callback(data)[1] == item_ref(long_id)
    assert item_ref(long_id) != item_ref("s" * 58)
    assert item_ref("w1") == "w1"


if __name__ == "__main__":
    pytest.main([__file__])
