"""Study sessions: the application state of one user working through a unit."""
import logging
from datetime import UTC, datetime
from typing import Any, Callable, Dict, List, Optional, Set, Union

import httpx
from sqlalchemy.orm import Session

from dictbot import monitoring
from dictbot.config import settings
from dictbot.models.base import SessionLocal
from dictbot.models.card_models import HASHED_REF_PREFIX, CardFace, CardView, KindSummary, item_ref
from dictbot.models.lesson_models import (
    BackupBundle,
    Item,
    ItemKind,
    LessonUnit,
    UnitInfo,
)
from dictbot.models.models import User
from dictbot.services.audio_service import (
    AudioControl,
    AudioController,
    PlaybackResult,
    SpeechEngine,
)
from dictbot.services.card_renderer import render_card, render_unit
from dictbot.services.errors import InvalidBackupError, InvalidUnitError
from dictbot.services.lesson_loader import LessonLoader
from dictbot.services.mastery_service import MasteryService
from dictbot.services.stats_service import StatsService
from dictbot.services.storage_service import (
    LEARNING_STATS_KEY,
    STAR_DATA_KEY,
    StorageService,
)
from dictbot.services.user_service import UserService

logger = logging.getLogger(__name__)

INDEX_FAILED_MESSAGE = "Could not load the unit list. Please check the network connection."
UNIT_FAILED_MESSAGE = "Failed to load the unit. Please try again later."
AUDIO_FAILED_STATUS = "⚠️ Pronunciation is not available right now"


def backup_filename(day: Optional[str] = None) -> str:
    """Name of an exported backup file, e.g. english-dictation-backup-2024-05-01.json."""
    day = day or datetime.now(UTC).date().isoformat()
    return f"english-dictation-backup-{day}.json"


def parse_backup(data: Any) -> BackupBundle:
    """Parse an uploaded backup document.

    Raises:
        InvalidBackupError: if the document has no usable starData/learningStats.
    """
    try:
        return BackupBundle.from_dict(data)
    except ValueError as e:
        raise InvalidBackupError(f"Invalid backup file: {e}") from e


class StudySession:
    """Current unit, trackers, loader and audio controller of one user.

    Progress is written through to storage after every mutation. Card
    operations return ``None`` for ids that are not part of the current unit.
    """

    def __init__(
        self,
        db: Session,
        user: User,
        loader: Optional[LessonLoader] = None,
        engine: Optional[SpeechEngine] = None,
    ):
        self.db = db
        self.user = user
        self.user_service = UserService(db)
        self.storage = StorageService(db, user.id)
        self.mastery = MasteryService(self.storage)
        self.stats = StatsService(self.storage)
        self.loader = loader or LessonLoader()
        self.audio = AudioController(engine, text_resolver=self.text_for_audio)

        self.unit: Optional[LessonUnit] = None
        self.load_error: Optional[str] = None
        self.flipped: Set[str] = set()
        self.controls: Dict[str, AudioControl] = {}

        for payload in self.user_service.get_upload_payloads(user.id):
            try:
                self.loader.register_upload(payload)
            except InvalidUnitError as e:
                logger.warning(f"Skipping stored upload of user {user.id}: {e}")

    @property
    def current_unit_id(self) -> Optional[str]:
        return self.unit.id if self.unit else None

    async def init(self, requested_unit: Optional[str] = None) -> bool:
        """Load the catalog and open the requested (or remembered, or default) unit."""
        await self.audio.warm_up()

        loaded = await self.loader.load_index()
        if not loaded or not self.loader.index.units:
            self.unit = None
            self.flipped.clear()
            self.load_error = INDEX_FAILED_MESSAGE
            return False

        unit_id = self.loader.resolve_initial_unit(requested_unit or self.user.current_unit_id)
        return await self.open_unit(unit_id)

    async def open_unit(self, unit_id: str) -> bool:
        """Make unit_id the current unit; a no-op if it already is."""
        if self.unit is not None and self.unit.id == unit_id:
            return True

        unit = await self._load(unit_id)
        if unit is None:
            return False

        self.stats.record_visit(unit.id)
        self._refresh_mastery()
        self.user_service.set_current_unit(self.user, unit.id)
        monitoring.units_opened.labels(unit_id=unit.id).inc()
        logger.info(f"User {self.user.telegram_id} opened unit {unit.id}")
        return True

    async def _load(self, unit_id: str) -> Optional[LessonUnit]:
        """Fetch a unit and make it current without touching statistics."""
        await self.audio.stop()
        self.flipped.clear()
        self.controls.clear()

        unit = await self.loader.load_unit(unit_id)
        if unit is None:
            self.unit = None
            self.load_error = UNIT_FAILED_MESSAGE
            return None

        self.unit = unit
        self.load_error = None
        self.mastery.ensure(unit.item_ids())
        return unit

    def _refresh_mastery(self) -> None:
        if self.unit is not None:
            self.stats.set_mastery(self.unit.id, self.mastery.mastery_percent(self.unit.item_ids()))

    def text_for_audio(self, key: str) -> str:
        if self.unit is None:
            return key
        return self.unit.text_for_audio(key)

    def units(self) -> List[UnitInfo]:
        return list(self.loader.index.units)

    def summary(self, kind: ItemKind) -> KindSummary:
        if self.unit is None:
            return KindSummary()
        return self.mastery.summary(self.unit.item_ids(kind))

    def overall_summary(self) -> KindSummary:
        if self.unit is None:
            return KindSummary()
        return self.mastery.summary(self.unit.item_ids())

    def resolve_item_ref(self, ref: str) -> str:
        """Item id behind a callback reference; unknown refs are returned as they are."""
        if self.unit is None or not ref.startswith(HASHED_REF_PREFIX):
            return ref
        for item_id in self.unit.item_ids():
            if item_ref(item_id) == ref:
                return item_id
        return ref

    def _find(self, item_id: str) -> Optional[Item]:
        if self.unit is None:
            return None
        return self.unit.find_item(item_id)

    def control(self, item_id: str, face: CardFace) -> AudioControl:
        """Audio button of one card face."""
        control_id = f"{item_id}:{face.value}"
        if control_id not in self.controls:
            self.controls[control_id] = AudioControl(control_id)
        return self.controls[control_id]

    def _playing_face(self, item_id: str) -> Optional[CardFace]:
        for face in CardFace:
            control = self.controls.get(f"{item_id}:{face.value}")
            if control is not None and control.playing:
                return face
        return None

    def card(self, item_id: str, status: Optional[str] = None) -> Optional[CardView]:
        """Current view of one card."""
        item = self._find(item_id)
        if item is None:
            return None
        kind = self.unit.kind_of(item_id)
        index = self.unit.item_ids(kind).index(item_id)
        view = render_card(
            item,
            kind,
            index,
            self.mastery.get(item_id),
            flipped=item_id in self.flipped,
            audio_playing=self._playing_face(item_id),
        )
        view.status = status
        return view

    def cards(self, kind: ItemKind) -> List[CardView]:
        if self.unit is None:
            return []
        playing = {}
        for item_id in self.unit.item_ids(kind):
            face = self._playing_face(item_id)
            if face is not None:
                playing[item_id] = face
        return render_unit(self.unit, kind, self.mastery.snapshot(), self.flipped, playing)

    async def _speak(self, item: Item, face: CardFace) -> Optional[str]:
        result = await self.audio.request(item.audio or item.english, self.control(item.id, face))
        if result is PlaybackResult.FAILED:
            return AUDIO_FAILED_STATUS
        return None

    async def flip(self, item_id: str) -> Optional[CardView]:
        """Turn a card over.

        Showing the answer plays its pronunciation; turning it back stops
        any playback of that card.
        """
        item = self._find(item_id)
        if item is None:
            return None
        monitoring.cards_flipped.inc()

        if item_id in self.flipped:
            self.flipped.discard(item_id)
            for face in CardFace:
                await self.audio.stop_control(self.control(item_id, face))
            return self.card(item_id)

        self.flipped.add(item_id)
        status = await self._speak(item, CardFace.BACK)
        return self.card(item_id, status=status)

    async def play(self, item_id: str, face: CardFace) -> Optional[CardView]:
        """Play (or stop) the pronunciation from one face's audio button."""
        item = self._find(item_id)
        if item is None:
            return None
        status = await self._speak(item, face)
        return self.card(item_id, status=status)

    def _mark(self, item_id: str, correct: bool) -> Optional[CardView]:
        if self._find(item_id) is None:
            return None
        # Mark buttons only work on the answer side
        if item_id not in self.flipped:
            return self.card(item_id)

        changed = self.mastery.increment(item_id) if correct else self.mastery.decrement(item_id)
        if changed:
            self._refresh_mastery()
            self.stats.record_visit(self.unit.id)
            monitoring.marks.labels(kind="correct" if correct else "review").inc()
        return self.card(item_id)

    def mark_correct(self, item_id: str) -> Optional[CardView]:
        """Add a star to a flipped card."""
        return self._mark(item_id, correct=True)

    def mark_review(self, item_id: str) -> Optional[CardView]:
        """Take a star from a flipped card."""
        return self._mark(item_id, correct=False)

    async def reset_current(self, kind: ItemKind, confirmed: bool) -> bool:
        """Zero the stars of one kind of item in the current unit."""
        if not confirmed or self.unit is None:
            return False

        await self.audio.stop()
        self.mastery.reset(self.unit.item_ids(kind))
        self._refresh_mastery()
        self.flipped.clear()
        self.user_service.log_user_activity(
            self.user.id,
            f"Reset {kind.value} progress of unit {self.unit.id}",
            "INFO",
            "reset",
        )
        return True

    async def reset_all(self, confirmed: bool) -> bool:
        """Forget all stars and statistics of every unit."""
        if not confirmed:
            return False

        await self.audio.stop()
        self.mastery.reset_all()
        self.stats.reset_all()
        self.flipped.clear()
        if self.unit is not None:
            self.mastery.ensure(self.unit.item_ids())
            self.stats.ensure(self.unit.id)
        self.user_service.log_user_activity(self.user.id, "Reset all progress", "INFO", "reset")
        return True

    def export_bundle(self) -> BackupBundle:
        """Snapshot of the stored progress."""
        return BackupBundle(
            star_data=self.storage.get_json(STAR_DATA_KEY),
            learning_stats=self.storage.get_json(LEARNING_STATS_KEY),
            export_date=datetime.now(UTC).isoformat(),
            version=settings.study.backup_version,
        )

    async def import_bundle(self, bundle: Union[BackupBundle, Dict[str, Any]], confirmed: bool) -> bool:
        """Overwrite stored progress with a backup and reload the current unit.

        Only the blobs present in the backup are replaced.

        Raises:
            InvalidBackupError: if a raw document is not a valid backup.
        """
        if not isinstance(bundle, BackupBundle):
            bundle = parse_backup(bundle)
        if not confirmed:
            return False

        await self.audio.stop()
        if bundle.star_data is not None:
            self.mastery.replace(bundle.star_data)
        if bundle.learning_stats is not None:
            self.stats.replace(bundle.learning_stats)
        if self.unit is not None:
            await self._load(self.unit.id)
        self.user_service.log_user_activity(
            self.user.id,
            f"Imported backup from {bundle.export_date or 'unknown date'}",
            "INFO",
            "import",
        )
        return True

    def upload_unit(self, payload: Any) -> UnitInfo:
        """Register an uploaded lesson document as a selectable unit.

        Raises:
            InvalidUnitError: if the document is not a valid lesson; nothing is changed.
        """
        info = self.loader.register_upload(payload)
        self.user_service.save_uploaded_unit(self.user.id, payload)
        self.user_service.log_user_activity(
            self.user.id,
            f"Uploaded unit {info.id} ({info.title})",
            "INFO",
            "upload",
        )
        return info

    def tick(self, minutes: Optional[float] = None) -> bool:
        """Credit study time to the current unit."""
        if self.unit is None:
            return False
        if minutes is None:
            minutes = settings.study.tick_minutes
        return self.stats.accrue_time(self.unit.id, minutes)

    async def close(self) -> None:
        await self.audio.stop()
        await self.loader.close()


class SessionRegistry:
    """One study session per Telegram user, created on first contact."""

    def __init__(
        self,
        db_factory: Callable[[], Session] = SessionLocal,
        client: Optional[httpx.AsyncClient] = None,
        engine_factory: Optional[Callable[[int], SpeechEngine]] = None,
    ):
        """Initialize the registry.

        Args:
            db_factory: Creates the database session each study session owns.
            client: HTTP client shared by all lesson loaders.
            engine_factory: Builds the speech engine for a chat id.
        """
        self.db_factory = db_factory
        self.client = client or httpx.AsyncClient(timeout=settings.lessons.fetch_timeout)
        self.engine_factory = engine_factory
        self.sessions: Dict[int, StudySession] = {}

    def get(self, telegram_id: int) -> Optional[StudySession]:
        return self.sessions.get(telegram_id)

    async def get_or_create(
        self,
        telegram_id: int,
        username: Optional[str] = None,
        requested_unit: Optional[str] = None,
    ) -> StudySession:
        """Existing session of the user, or a new initialized one."""
        session = self.sessions.get(telegram_id)
        if session is not None:
            return session

        db = self.db_factory()
        user = UserService(db).get_or_create_user(telegram_id, username)
        engine = self.engine_factory(telegram_id) if self.engine_factory else None
        session = StudySession(db, user, LessonLoader(client=self.client), engine)
        self.sessions[telegram_id] = session
        monitoring.active_sessions.set(len(self.sessions))

        await session.init(requested_unit)
        logger.info(f"Study session created for user {telegram_id}")
        return session

    def all(self) -> List[StudySession]:
        return list(self.sessions.values())

    async def close(self, telegram_id: int) -> None:
        session = self.sessions.pop(telegram_id, None)
        if session is None:
            return
        await session.close()
        session.db.close()
        monitoring.active_sessions.set(len(self.sessions))
        logger.info(f"Study session closed for user {telegram_id}")

    async def close_all(self) -> None:
        for telegram_id in list(self.sessions):
            await self.close(telegram_id)
        await self.client.aclose()
