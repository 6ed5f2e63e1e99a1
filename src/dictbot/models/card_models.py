"""View models produced by the card renderer."""
import hashlib
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Tuple

# Telegram caps callback data at 64 bytes; "card:correct:" plus ":front" leaves 45
MAX_ITEM_REF_BYTES = 40
HASHED_REF_PREFIX = "#"


class CardFace(Enum):
    """Sides of a flashcard."""
    FRONT = "front"
    BACK = "back"


class CardAction(Enum):
    """Things a user can do with a card."""
    FLIP = "flip"
    CORRECT = "correct"
    REVIEW = "review"
    AUDIO = "audio"


def item_ref(item_id: str) -> str:
    """Item id as carried in callback data; ids too long for Telegram are hashed."""
    if len(item_id.encode("utf-8")) <= MAX_ITEM_REF_BYTES and not item_id.startswith(HASHED_REF_PREFIX):
        return item_id
    return HASHED_REF_PREFIX + hashlib.sha1(item_id.encode("utf-8")).hexdigest()[:20]


def parse_card_callback(data: str) -> Tuple[CardAction, str, Optional[CardFace]]:
    """Split ``card:<action>:<ref>[:<face>]`` into its parts.

    Only audio buttons carry a face, so a ref may itself contain colons.
    """
    _, action_value, ref = data.split(":", 2)
    action = CardAction(action_value)
    face = None
    if action is CardAction.AUDIO:
        ref, face_value = ref.rsplit(":", 1)
        face = CardFace(face_value)
    return action, ref, face


@dataclass
class ActionButton:
    """A button on a card face."""
    action: CardAction
    item_id: str
    text: str
    enabled: bool = True
    face: Optional[CardFace] = None

    @property
    def callback_data(self) -> str:
        parts = ["card", self.action.value, item_ref(self.item_id)]
        if self.face is not None:
            parts.append(self.face.value)
        return ":".join(parts)


@dataclass
class FrontFace:
    number_label: str
    stars: str
    stars_label: str
    audio_button: ActionButton


@dataclass
class BackFace:
    number_label: str
    answer: str
    translation: str
    hint: Optional[str]
    correct_button: ActionButton
    review_button: ActionButton
    audio_button: ActionButton


@dataclass
class CardView:
    """Renderable state of one flashcard."""
    item_id: str
    star_count: int
    flipped: bool
    front: FrontFace
    back: BackFace
    status: Optional[str] = None  # transient note, e.g. audio failure

    @property
    def visible_face(self) -> CardFace:
        return CardFace.BACK if self.flipped else CardFace.FRONT

    def buttons(self) -> List[List[ActionButton]]:
        """Button rows of the visible face."""
        if self.flipped:
            return [
                [self.back.correct_button, self.back.review_button],
                [self.back.audio_button, ActionButton(CardAction.FLIP, self.item_id, "🔄 Flip back")],
            ]
        return [
            [self.front.audio_button, ActionButton(CardAction.FLIP, self.item_id, "🔄 Flip")],
        ]


@dataclass
class KindSummary:
    """Counts for one tab (words or sentences)."""
    total: int = 0
    mastered: int = 0
    review: int = 0
    percent: int = 0
