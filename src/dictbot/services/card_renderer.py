"""Builds card and statistics views from lesson data and mastery state."""
from html import escape
from typing import Dict, Iterable, List, Optional, Set

from dictbot.config import settings
from dictbot.models.card_models import (
    ActionButton,
    BackFace,
    CardAction,
    CardFace,
    CardView,
    FrontFace,
    KindSummary,
)
from dictbot.models.lesson_models import Item, ItemKind, LessonUnit, UnitIndex, UnitRecord
from dictbot.services.mastery_service import round_percent, star_label
from dictbot.services.stats_service import format_date, format_minutes

KIND_LABELS = {
    ItemKind.WORD: "Word",
    ItemKind.SENTENCE: "Sentence",
}

KIND_TITLES = {
    ItemKind.WORD: "Words",
    ItemKind.SENTENCE: "Sentences",
}


def render_stars(count: int, max_stars: Optional[int] = None) -> str:
    max_stars = max_stars or settings.study.max_stars
    return "★" * count + "☆" * (max_stars - count)


def render_card(
    item: Item,
    kind: ItemKind,
    index: int,
    stars: int,
    flipped: bool = False,
    audio_playing: Optional[CardFace] = None,
) -> CardView:
    """View of one card.

    Mark buttons are only usable on the back face: correct is disabled at
    full stars and review at zero stars. ``audio_playing`` names the face
    whose audio button is currently playing.
    """
    number = f"{KIND_LABELS[kind]} {index + 1}"
    max_stars = settings.study.max_stars

    def audio_button(face: CardFace) -> ActionButton:
        playing = audio_playing is face
        return ActionButton(
            action=CardAction.AUDIO,
            item_id=item.id,
            text="⏹ Stop" if playing else "🔊 Listen",
            face=face,
        )

    front = FrontFace(
        number_label=number,
        stars=render_stars(stars, max_stars),
        stars_label=star_label(stars),
        audio_button=audio_button(CardFace.FRONT),
    )
    back = BackFace(
        number_label=number,
        answer=item.english,
        translation=item.translation,
        hint=item.hint if kind is ItemKind.WORD else None,
        correct_button=ActionButton(
            CardAction.CORRECT, item.id, "✅ Correct", enabled=flipped and stars < max_stars
        ),
        review_button=ActionButton(
            CardAction.REVIEW, item.id, "📖 Review", enabled=flipped and stars > 0
        ),
        audio_button=audio_button(CardFace.BACK),
    )
    return CardView(item_id=item.id, star_count=stars, flipped=flipped, front=front, back=back)


def render_unit(
    unit: LessonUnit,
    kind: ItemKind,
    stars: Dict[str, int],
    flipped: Optional[Set[str]] = None,
    playing: Optional[Dict[str, CardFace]] = None,
) -> List[CardView]:
    """Views of all cards of one kind in lesson order."""
    flipped = flipped or set()
    playing = playing or {}
    return [
        render_card(item, kind, index, stars.get(item.id, 0), item.id in flipped, playing.get(item.id))
        for index, item in enumerate(unit.items(kind))
    ]


def card_text(card: CardView) -> str:
    """HTML message text of the visible face of a card."""
    if card.visible_face is CardFace.BACK:
        lines = [
            f"<i>{escape(card.back.number_label)}</i>",
            "",
            f"<b>{escape(card.back.answer)}</b>",
            escape(card.back.translation),
        ]
        if card.back.hint:
            lines.append(f"💡 {escape(card.back.hint)}")
        lines.extend(["", card.front.stars])
    else:
        lines = [
            f"<i>{escape(card.front.number_label)}</i>",
            "",
            card.front.stars,
            escape(card.front.stars_label),
            "",
            "Tap 🔄 to flip the card",
        ]
    if card.status:
        lines.extend(["", escape(card.status)])
    return "\n".join(lines)


def render_unit_header(unit: LessonUnit, words: KindSummary, sentences: KindSummary) -> str:
    """Title line of the current unit with counts and overall mastery."""
    total = words.total + sentences.total
    mastered = words.mastered + sentences.mastered
    overall = round_percent(mastered, total)
    lines = [f"📘 <b>{escape(unit.title)}</b>"]
    if unit.description:
        lines.append(escape(unit.description))
    lines.append(f"{words.total} words | {sentences.total} sentences")
    lines.append(f"Mastery: {overall}%")
    return "\n".join(lines)


def render_kind_summary(kind: ItemKind, summary: KindSummary) -> str:
    return (
        f"{KIND_TITLES[kind]}: {summary.total} total, "
        f"{summary.mastered} mastered, {summary.review} to review ({summary.percent}%)"
    )


def render_stats_panel(
    unit: Optional[LessonUnit],
    overall: KindSummary,
    record: Optional[UnitRecord],
    records: Dict[str, UnitRecord],
    index: UnitIndex,
) -> str:
    """Statistics of the current unit followed by every unit with a record."""
    lines: List[str] = []
    if unit is not None:
        record = record or UnitRecord()
        lines.extend([
            f"📊 <b>{escape(unit.title)}</b>",
            f"Overall mastery: {overall.percent}% ({overall.mastered}/{overall.total} items)",
            f"Study time: {format_minutes(record.total_time)}",
            f"Sessions: {record.sessions}",
            f"Last studied: {format_date(record.last_accessed)}",
            "",
        ])

    lines.append("<b>All units</b>")
    history = list(_history_lines(records, index))
    lines.extend(history or ["No study records yet"])
    return "\n".join(lines)


def _history_lines(records: Dict[str, UnitRecord], index: UnitIndex) -> Iterable[str]:
    for unit_id, record in records.items():
        yield (
            f"• {escape(index.title_for(unit_id))}: {format_minutes(record.total_time)} | "
            f"mastery {record.mastery}% | sessions {record.sessions}"
        )
