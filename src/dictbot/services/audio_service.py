"""Pronunciation playback: speech engines and the single-slot playback controller."""
import asyncio
import hashlib
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, Optional

from gtts import gTTS, gTTSError

from dictbot import monitoring
from dictbot.config import settings
from dictbot.services.errors import SpeechError

logger = logging.getLogger(__name__)

# gTTS produces 32 kbit/s mono MP3
GTTS_BYTES_PER_SECOND = 4000
MIN_CLIP_SECONDS = 0.5
MAX_CLIP_SECONDS = 30.0


class AudioState(Enum):
    """States of the playback controller."""
    IDLE = "idle"
    PLAYING = "playing"


class PlaybackResult(Enum):
    """Outcome of a playback request."""
    STARTED = "started"  # speech started (or already finished)
    STOPPED = "stopped"  # request stopped the active playback
    DROPPED = "dropped"  # a stop was in flight
    FAILED = "failed"  # engine missing or failed


@dataclass
class AudioControl:
    """Visual state of an audio button."""
    control_id: str
    enabled: bool = True
    playing: bool = False

    def engage(self) -> None:
        self.enabled = False
        self.playing = True

    def release(self) -> None:
        self.enabled = True
        self.playing = False


class SpeechEngine(ABC):
    """Speaks text; one utterance at a time."""

    @abstractmethod
    async def speak(self, text: str, on_start: Callable[[], None]) -> None:
        """Speak text, calling on_start once audio begins; returns when it ends.

        Raises:
            SpeechError: if speech cannot be produced.
        """

    async def cancel(self) -> None:
        """Stop any utterance in flight."""

    async def warm_up(self) -> None:
        """Prepare the engine so the first real request starts faster."""


def estimate_clip_seconds(path: Path) -> float:
    """Approximate playing time of a gTTS clip from its size."""
    seconds = path.stat().st_size / GTTS_BYTES_PER_SECOND
    return max(MIN_CLIP_SECONDS, min(MAX_CLIP_SECONDS, seconds))


class GTTSSpeechEngine(SpeechEngine):
    """Google Text-to-Speech engine.

    Clips are synthesized once per text into the pronunciations directory,
    handed to ``deliver`` (e.g. sent as a voice message) and count as playing
    for their estimated duration. ``retract`` undoes a delivery on cancel.
    """

    def __init__(
        self,
        deliver: Callable[[Path], Awaitable[None]],
        retract: Optional[Callable[[], Awaitable[None]]] = None,
        cache_dir: Optional[Path] = None,
        lang: Optional[str] = None,
        tld: Optional[str] = None,
        slow: Optional[bool] = None,
    ):
        self.deliver = deliver
        self.retract = retract
        self.cache_dir = Path(cache_dir or settings.paths.pronunciations_dir)
        self.lang = lang or settings.audio.lang
        self.tld = tld or settings.audio.tld
        self.slow = settings.audio.slow if slow is None else slow
        self._delivered = False

    @staticmethod
    def _sanitize_filename(text: str) -> str:
        """Sanitize text for use in filename."""
        return re.sub(r"[^a-zA-Z0-9]", "_", text.lower())[:40]

    def clip_path(self, text: str) -> Path:
        digest = hashlib.md5(f"{self.lang}|{self.tld}|{self.slow}|{text}".encode("utf-8")).hexdigest()[:10]
        return self.cache_dir / f"{self._sanitize_filename(text)}_{digest}.mp3"

    def _save(self, text: str, path: Path) -> None:
        """Blocking gTTS call."""
        path.parent.mkdir(parents=True, exist_ok=True)
        tts = gTTS(text=text, lang=self.lang, tld=self.tld, slow=self.slow)
        tts.save(str(path))

    async def synthesize(self, text: str) -> Path:
        """Path of the clip for text, synthesizing it if it is not cached."""
        path = self.clip_path(text)
        if path.exists() and path.stat().st_size > 0:
            return path
        try:
            await asyncio.to_thread(self._save, text, path)
        except (gTTSError, AssertionError, ValueError, OSError) as e:
            path.unlink(missing_ok=True)
            raise SpeechError(f"Speech synthesis failed for {text!r}: {e}") from e
        logger.info(f"Pronunciation generated for: {text}, file: {path.name}")
        return path

    async def speak(self, text: str, on_start: Callable[[], None]) -> None:
        if not text or not text.strip():
            raise SpeechError("Nothing to speak")
        self._delivered = False
        path = await self.synthesize(text)
        on_start()
        await self.deliver(path)
        self._delivered = True
        await asyncio.sleep(estimate_clip_seconds(path))
        self._delivered = False

    async def cancel(self) -> None:
        # Only a clip of the utterance in flight is retracted
        if self.retract and self._delivered:
            self._delivered = False
            await self.retract()

    async def warm_up(self) -> None:
        await self.synthesize("hello")


class AudioController:
    """Serializes speech requests so that at most one control plays at a time.

    ``request`` returns once speech has started; playback then runs in a
    background task that releases the control when it ends. Requesting the
    active control again stops it, requesting another control switches to it
    after a short grace interval, and requests arriving while a stop is in
    flight are dropped.
    """

    def __init__(
        self,
        engine: Optional[SpeechEngine],
        text_resolver: Optional[Callable[[str], str]] = None,
        grace_seconds: Optional[float] = None,
    ):
        self.engine = engine
        self.text_resolver = text_resolver
        self.grace_seconds = settings.audio.switch_grace_seconds if grace_seconds is None else grace_seconds
        self.state = AudioState.IDLE
        self.active_control: Optional[AudioControl] = None
        self.stopping = False
        self._task: Optional[asyncio.Task] = None

    def resolve_text(self, key: str) -> str:
        if self.text_resolver is None:
            return key
        return self.text_resolver(key)

    def is_active(self, control: AudioControl) -> bool:
        return self.active_control is not None and self.active_control.control_id == control.control_id

    async def warm_up(self) -> None:
        """One-shot warm-up; failures are ignored."""
        if self.engine is None:
            return
        try:
            await self.engine.warm_up()
            logger.info("Speech engine warmed up")
        except Exception as e:
            logger.debug(f"Speech engine warm-up failed, continuing: {e}")

    async def request(self, key: str, control: AudioControl) -> PlaybackResult:
        """Play the text for key on control, or stop it if control is already active."""
        if self.stopping:
            logger.debug(f"Dropping audio request for {control.control_id}: stop in flight")
            return self._count(PlaybackResult.DROPPED)

        if self.is_active(control):
            await self.stop()
            return self._count(PlaybackResult.STOPPED)

        if self.active_control is not None:
            await self.stop()
            # The slot stays closed until this request claims it
            self.stopping = True
            try:
                await asyncio.sleep(self.grace_seconds)
            finally:
                self.stopping = False

        text = self.resolve_text(key)
        return self._count(await self._play(text, control))

    async def stop_control(self, control: AudioControl) -> bool:
        """Stop playback only if control is the active one."""
        if not self.is_active(control):
            return False
        await self.stop()
        return True

    async def stop(self) -> None:
        """Cancel in-flight speech and release the active control."""
        if self.active_control is None and self._task is None:
            return
        self.stopping = True
        try:
            self.state = AudioState.IDLE
            if self.engine is not None:
                try:
                    await self.engine.cancel()
                except Exception as e:
                    logger.warning(f"Error cancelling speech: {e}")
            task = self._task
            if task is not None and not task.done():
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)
            self._release()
        finally:
            self.stopping = False

    async def _play(self, text: str, control: AudioControl) -> PlaybackResult:
        if self.engine is None:
            logger.error("Speech synthesis is not available")
            control.release()
            return PlaybackResult.FAILED

        started: asyncio.Future = asyncio.get_running_loop().create_future()
        self.active_control = control

        def on_start() -> None:
            if self.active_control is control:
                self.state = AudioState.PLAYING
                control.engage()
            self._settle(started, PlaybackResult.STARTED)

        self._task = asyncio.create_task(self._run(text, control, on_start, started))
        # A task cancelled before its first step never reaches _run
        self._task.add_done_callback(lambda _: self._settle(started, PlaybackResult.STOPPED))
        return await started

    async def _run(
        self,
        text: str,
        control: AudioControl,
        on_start: Callable[[], None],
        started: asyncio.Future,
    ) -> None:
        try:
            await self.engine.speak(text, on_start)
            self._settle(started, PlaybackResult.STARTED)
        except asyncio.CancelledError:
            self._settle(started, PlaybackResult.STOPPED)
            raise
        except Exception as e:
            logger.error(f"Audio playback failed for {control.control_id}: {e}")
            self._settle(started, PlaybackResult.FAILED)
        finally:
            control.release()
            if self.active_control is control:
                self._release()

    def _release(self) -> None:
        if self.active_control is not None:
            self.active_control.release()
        self.active_control = None
        self.state = AudioState.IDLE
        self._task = None

    @staticmethod
    def _settle(future: asyncio.Future, result: PlaybackResult) -> None:
        if not future.done():
            future.set_result(result)

    @staticmethod
    def _count(result: PlaybackResult) -> PlaybackResult:
        monitoring.audio_requests.labels(result=result.value).inc()
        return result
