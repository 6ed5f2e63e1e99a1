"""Models for lesson data loaded from JSON documents."""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

UPLOAD_URL_PREFIX = "upload:"

REQUIRED_UNIT_FIELDS = ("unit_id", "unit_title", "words", "sentences")


class ItemKind(Enum):
    """Kinds of items a unit contains."""
    WORD = "word"
    SENTENCE = "sentence"


@dataclass(frozen=True)
class Item:
    """A word or a sentence to drill."""
    id: str
    english: str
    translation: str
    audio: str
    hint: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Item":
        """Build an item from its lesson document entry."""
        return cls(
            id=str(data["id"]),
            english=str(data.get("english", "")),
            translation=str(data.get("translation", "")),
            audio=str(data.get("audio", "")),
            hint=data.get("hint") or None,
        )


@dataclass
class LessonUnit:
    """One lesson's worth of words and sentences."""
    id: str
    title: str
    description: str = ""
    words: List[Item] = field(default_factory=list)
    sentences: List[Item] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LessonUnit":
        """Parse a unit lesson document.

        Both the ``unit_id``/``unit_title`` and the plain ``id``/``title``
        spellings are accepted.
        """
        unit_id = data.get("unit_id", data.get("id"))
        if unit_id is None:
            raise KeyError("unit_id")
        return cls(
            id=str(unit_id),
            title=str(data.get("unit_title", data.get("title", unit_id))),
            description=data.get("unit_description", data.get("description")) or "",
            words=[Item.from_dict(word) for word in data.get("words", [])],
            sentences=[Item.from_dict(sentence) for sentence in data.get("sentences", [])],
        )

    def items(self, kind: Optional[ItemKind] = None) -> List[Item]:
        """Items of one kind, or words followed by sentences."""
        if kind is ItemKind.WORD:
            return list(self.words)
        if kind is ItemKind.SENTENCE:
            return list(self.sentences)
        return list(self.words) + list(self.sentences)

    def item_ids(self, kind: Optional[ItemKind] = None) -> List[str]:
        return [item.id for item in self.items(kind)]

    def find_item(self, item_id: str) -> Optional[Item]:
        return next((item for item in self.items() if item.id == item_id), None)

    def kind_of(self, item_id: str) -> Optional[ItemKind]:
        if any(word.id == item_id for word in self.words):
            return ItemKind.WORD
        if any(sentence.id == item_id for sentence in self.sentences):
            return ItemKind.SENTENCE
        return None

    def text_for_audio(self, audio_key: str) -> str:
        """Spoken text for an audio key: words first, then sentences, else the key itself."""
        word = next((w for w in self.words if w.audio == audio_key), None)
        if word:
            return word.english
        sentence = next((s for s in self.sentences if s.audio == audio_key), None)
        if sentence:
            return sentence.english
        return audio_key


@dataclass
class UnitInfo:
    """Entry of the unit catalog."""
    id: str
    title: str
    description: Optional[str] = None
    data_url: Optional[str] = None
    words_count: Optional[int] = None
    sentences_count: Optional[int] = None
    difficulty: Optional[str] = None
    created: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UnitInfo":
        return cls(
            id=str(data["id"]),
            title=str(data.get("title", data["id"])),
            description=data.get("description"),
            data_url=data.get("dataUrl"),
            words_count=data.get("words_count"),
            sentences_count=data.get("sentences_count"),
            difficulty=data.get("difficulty"),
            created=data.get("created"),
        )

    @classmethod
    def from_upload(cls, payload: Dict[str, Any]) -> "UnitInfo":
        """Catalog entry for an uploaded unit document."""
        unit_id = str(payload["unit_id"])
        return cls(
            id=unit_id,
            title=str(payload["unit_title"]),
            description=payload.get("unit_description") or "Custom uploaded unit",
            data_url=f"{UPLOAD_URL_PREFIX}{unit_id}",
            words_count=len(payload["words"]),
            sentences_count=len(payload["sentences"]),
            difficulty=payload.get("difficulty") or "custom",
            created=datetime.now().date().isoformat(),
        )

    @property
    def is_upload(self) -> bool:
        return bool(self.data_url) and self.data_url.startswith(UPLOAD_URL_PREFIX)


@dataclass
class UnitIndex:
    """The unit catalog."""
    units: List[UnitInfo] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UnitIndex":
        return cls(units=[UnitInfo.from_dict(unit) for unit in data.get("units", [])])

    def find(self, unit_id: str) -> Optional[UnitInfo]:
        return next((unit for unit in self.units if unit.id == unit_id), None)

    def upsert(self, info: UnitInfo) -> None:
        """Replace the entry with the same id or append a new one."""
        for i, unit in enumerate(self.units):
            if unit.id == info.id:
                self.units[i] = info
                return
        self.units.append(info)

    def title_for(self, unit_id: str) -> str:
        unit = self.find(unit_id)
        return unit.title if unit and unit.title else unit_id


@dataclass
class UnitRecord:
    """Learning statistics of one unit."""
    total_time: float = 0.0  # in minutes
    last_accessed: Optional[str] = None  # ISO format datetime string
    sessions: int = 0
    mastery: int = 0  # percent

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UnitRecord":
        return cls(
            total_time=float(data.get("totalTime") or 0),
            last_accessed=data.get("lastAccessed"),
            sessions=int(data.get("sessions") or 0),
            mastery=int(data.get("mastery") or 0),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalTime": self.total_time,
            "lastAccessed": self.last_accessed,
            "sessions": self.sessions,
            "mastery": self.mastery,
        }


@dataclass
class BackupBundle:
    """Exported learning data."""
    star_data: Optional[Dict[str, int]]
    learning_stats: Optional[Dict[str, Dict[str, Any]]]
    export_date: Optional[str] = None
    version: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Any) -> "BackupBundle":
        """Parse a backup document; at least one of the two blobs must be present."""
        if not isinstance(data, dict):
            raise ValueError("Backup must be a JSON object")
        star_data = data.get("starData")
        learning_stats = data.get("learningStats")
        if star_data is None and learning_stats is None:
            raise ValueError("Backup contains neither starData nor learningStats")
        if star_data is not None and not isinstance(star_data, dict):
            raise ValueError("starData must be a JSON object")
        if learning_stats is not None and not isinstance(learning_stats, dict):
            raise ValueError("learningStats must be a JSON object")
        return cls(
            star_data=star_data,
            learning_stats=learning_stats,
            export_date=data.get("exportDate"),
            version=data.get("version"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "starData": self.star_data,
            "learningStats": self.learning_stats,
            "exportDate": self.export_date,
            "version": self.version,
        }
