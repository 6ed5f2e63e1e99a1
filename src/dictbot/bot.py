"""Main Telegram bot module."""
import json
import logging
from html import escape
from pathlib import Path
from typing import List, Optional, Tuple

from telegram import Bot, InlineKeyboardButton, InlineKeyboardMarkup, Update
from telegram.constants import ParseMode
from telegram.error import BadRequest, TelegramError
from telegram.ext import CallbackContext

from dictbot import monitoring
from dictbot.models.card_models import CardAction, CardFace, CardView, parse_card_callback
from dictbot.models.lesson_models import ItemKind
from dictbot.services.audio_service import GTTSSpeechEngine
from dictbot.services.card_renderer import (
    card_text,
    render_kind_summary,
    render_stats_panel,
    render_unit_header,
)
from dictbot.services.errors import InvalidBackupError, InvalidUnitError
from dictbot.services.stats_service import format_date
from dictbot.services.study_service import (
    SessionRegistry,
    StudySession,
    backup_filename,
    parse_backup,
)

# Get logger for this module
logger = logging.getLogger(__name__)

# Button texts
WORDS = "📝 Words"
SENTENCES = "💬 Sentences"
UNITS = "📚 Units"
STATISTICS = "📊 Statistics"
RESET_TAB = "♻️ Reset tab"
RESET_ALL = "🗑 Reset all"
EXPORT = "💾 Export"
RETRY = "🔄 Retry"
YES = "✅ Yes"
NO = "❌ No"

def msg_back_to(text: str) -> str: return f"🔙 {text}"

KB_BACK_TO_UNIT = [InlineKeyboardButton(msg_back_to("Unit"), callback_data="overview")]

CONFIRM_QUESTIONS = {
    "reset_current": "Reset the progress of the {tab} in this unit? This cannot be undone.",
    "reset_all": "Reset the progress of ALL units? All study records will be erased. This cannot be undone.",
    "import": "Import this backup? It will overwrite your current study records.",
}

HELP_TEXT = (
    "📖 <b>How to use the dictation trainer</b>\n\n"
    "1. Pick a unit with /units (or /unit &lt;id&gt;)\n"
    "2. Open the words or sentences and tap 🔄 to flip a card\n"
    "3. The pronunciation plays when the answer is shown; tap 🔊 to hear it again\n"
    "4. Tap ✅ when you knew it and 📖 when it needs review\n"
    "5. Five stars mean the item is mastered\n"
    "6. Progress is saved automatically\n"
    "7. /reset resets the current tab, /resetall resets every unit\n"
    "8. /export sends a backup file; send it back to restore it\n"
    "9. Send a unit JSON file to add your own unit\n\n"
    "Tip: headphones make listening practice easier!"
)


class VoiceDelivery:
    """Sends pronunciation clips to one chat and deletes them on cancel."""

    def __init__(self, bot: Bot, chat_id: int):
        self.bot = bot
        self.chat_id = chat_id
        self.message_id: Optional[int] = None

    async def deliver(self, path: Path) -> None:
        with open(path, "rb") as audio:
            message = await self.bot.send_voice(chat_id=self.chat_id, voice=audio)
        self.message_id = message.message_id

    async def retract(self) -> None:
        if self.message_id is None:
            return
        message_id, self.message_id = self.message_id, None
        try:
            await self.bot.delete_message(chat_id=self.chat_id, message_id=message_id)
        except TelegramError as e:
            logger.warning(f"Could not delete voice message {message_id} in chat {self.chat_id}: {e}")


def make_speech_engine(bot: Bot, chat_id: int) -> GTTSSpeechEngine:
    """Speech engine that plays clips as voice messages in a chat."""
    delivery = VoiceDelivery(bot, chat_id)
    return GTTSSpeechEngine(deliver=delivery.deliver, retract=delivery.retract)


async def log_received(update: Update, context_type: str) -> None:
    """Log message."""
    txt = ""
    if update.callback_query: txt = f" {update.callback_query.data}"
    elif update.message and update.message.text: txt = f" {update.message.text}"
    user = update.effective_user
    logger.info(f"Received @{context_type:8} from user {user.username} ({user.id}){txt}")


def get_registry(context: CallbackContext) -> SessionRegistry:
    return context.application.bot_data["registry"]


async def get_session(update: Update, context: CallbackContext, requested_unit: Optional[str] = None) -> StudySession:
    """Study session of the user behind an update, created on first contact."""
    user = update.effective_user
    return await get_registry(context).get_or_create(user.id, user.username, requested_unit)


def current_tab(context: CallbackContext) -> ItemKind:
    return ItemKind(context.user_data.get("tab", ItemKind.WORD.value))


def card_keyboard(card: CardView) -> InlineKeyboardMarkup:
    """Inline keyboard of the visible card face; disabled buttons are left out."""
    rows = []
    for row in card.buttons():
        buttons = [
            InlineKeyboardButton(button.text, callback_data=button.callback_data)
            for button in row
            if button.enabled
        ]
        if buttons:
            rows.append(buttons)
    return InlineKeyboardMarkup(rows)


def overview_message(session: StudySession) -> Tuple[str, InlineKeyboardMarkup]:
    """Unit overview text and its menu, or the load failure state."""
    if session.unit is None:
        keyboard = [[InlineKeyboardButton(RETRY, callback_data="retry")]]
        if session.units():
            keyboard.append([InlineKeyboardButton(UNITS, callback_data="units")])
        return f"⚠️ {session.load_error or 'No unit selected.'}", InlineKeyboardMarkup(keyboard)

    words = session.summary(ItemKind.WORD)
    sentences = session.summary(ItemKind.SENTENCE)
    text = "\n".join([
        render_unit_header(session.unit, words, sentences),
        "",
        render_kind_summary(ItemKind.WORD, words),
        render_kind_summary(ItemKind.SENTENCE, sentences),
    ])
    keyboard = [
        [
            InlineKeyboardButton(WORDS, callback_data=f"tab:{ItemKind.WORD.value}"),
            InlineKeyboardButton(SENTENCES, callback_data=f"tab:{ItemKind.SENTENCE.value}"),
        ],
        [
            InlineKeyboardButton(UNITS, callback_data="units"),
            InlineKeyboardButton(STATISTICS, callback_data="stats"),
        ],
        [
            InlineKeyboardButton(RESET_TAB, callback_data="reset_current"),
            InlineKeyboardButton(RESET_ALL, callback_data="reset_all"),
        ],
        [InlineKeyboardButton(EXPORT, callback_data="export")],
    ]
    return text, InlineKeyboardMarkup(keyboard)


def units_message(session: StudySession) -> Tuple[str, InlineKeyboardMarkup]:
    """Unit picker; the current unit is marked."""
    keyboard: List[List[InlineKeyboardButton]] = []
    for info in session.units():
        mark = "▶️ " if info.id == session.current_unit_id else ""
        keyboard.append([InlineKeyboardButton(f"{mark}{info.title}", callback_data=f"unit:{info.id}")])
    if not keyboard:
        return f"⚠️ {session.load_error or 'No units available.'}", InlineKeyboardMarkup(
            [[InlineKeyboardButton(RETRY, callback_data="retry")]]
        )
    keyboard.append(KB_BACK_TO_UNIT)
    return "📚 Choose a unit:", InlineKeyboardMarkup(keyboard)


def stats_message(session: StudySession) -> str:
    return render_stats_panel(
        session.unit,
        session.overall_summary(),
        session.stats.get(session.current_unit_id) if session.unit else None,
        session.stats.all(),
        session.loader.index,
    )


def confirm_keyboard(action: str) -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup([[
        InlineKeyboardButton(YES, callback_data=f"confirm:{action}:yes"),
        InlineKeyboardButton(NO, callback_data=f"confirm:{action}:no"),
    ]])


def confirm_question(action: str, context: CallbackContext) -> str:
    tab = "sentences" if current_tab(context) is ItemKind.SENTENCE else "words"
    return CONFIRM_QUESTIONS[action].format(tab=tab)


async def reply(update: Update, text: str, reply_markup: Optional[InlineKeyboardMarkup] = None) -> None:
    """Edit the message behind a button press, or answer a command with a new message."""
    if update.callback_query:
        try:
            await update.callback_query.edit_message_text(
                text, parse_mode=ParseMode.HTML, reply_markup=reply_markup
            )
        except BadRequest as e:
            # Telegram rejects edits that do not change the message
            if "not modified" not in str(e).lower():
                raise
    else:
        await update.effective_message.reply_text(text, parse_mode=ParseMode.HTML, reply_markup=reply_markup)


async def handle_start(update: Update, context: CallbackContext) -> None:
    """Open the requested (or last) unit and show its overview."""
    await log_received(update, "start")

    requested = context.args[0] if context.args else None
    existing = get_registry(context).get(update.effective_user.id)
    session = await get_session(update, context, requested)
    if existing is not None:
        if session.unit is None:
            await session.init(requested)
        elif requested:
            await session.open_unit(requested)

    text, keyboard = overview_message(session)
    await reply(update, text, keyboard)


async def handle_help(update: Update, context: CallbackContext) -> None:
    await log_received(update, "help")
    await update.message.reply_text(HELP_TEXT, parse_mode=ParseMode.HTML)


async def handle_units(update: Update, context: CallbackContext) -> None:
    await log_received(update, "units")
    session = await get_session(update, context)
    text, keyboard = units_message(session)
    await reply(update, text, keyboard)


async def handle_unit(update: Update, context: CallbackContext) -> None:
    """Switch to the unit given as command argument."""
    await log_received(update, "unit")
    session = await get_session(update, context)
    if not context.args:
        text, keyboard = units_message(session)
        await reply(update, text, keyboard)
        return
    await open_unit(update, session, context.args[0])


async def open_unit(update: Update, session: StudySession, unit_id: str) -> None:
    await session.open_unit(unit_id)
    text, keyboard = overview_message(session)
    await reply(update, text, keyboard)


async def handle_stats(update: Update, context: CallbackContext) -> None:
    await log_received(update, "stats")
    session = await get_session(update, context)
    await reply(update, stats_message(session), InlineKeyboardMarkup([KB_BACK_TO_UNIT]))


async def handle_reset(update: Update, context: CallbackContext) -> None:
    """Ask before resetting the current tab of the current unit."""
    await log_received(update, "reset")
    session = await get_session(update, context)
    if session.unit is None:
        await reply(update, "⚠️ No unit is open.")
        return
    await reply(update, confirm_question("reset_current", context), confirm_keyboard("reset_current"))


async def handle_reset_all(update: Update, context: CallbackContext) -> None:
    """Ask before resetting every unit."""
    await log_received(update, "resetall")
    await reply(update, confirm_question("reset_all", context), confirm_keyboard("reset_all"))


async def handle_export(update: Update, context: CallbackContext) -> None:
    """Send the stored progress as a backup file."""
    await log_received(update, "export")
    session = await get_session(update, context)
    bundle = session.export_bundle()
    data = json.dumps(bundle.to_dict(), ensure_ascii=False, indent=2).encode("utf-8")
    await update.effective_message.reply_document(
        document=data,
        filename=backup_filename(),
        caption="💾 Your study records have been exported.",
    )


async def send_cards(update: Update, context: CallbackContext, kind: ItemKind) -> None:
    """Send every card of one kind as its own message."""
    session = await get_session(update, context)
    context.user_data["tab"] = kind.value
    cards = session.cards(kind)
    if not cards:
        text = f"⚠️ {session.load_error}" if session.unit is None else "This unit has no items of this kind."
        await update.effective_message.reply_text(text)
        return
    for card in cards:
        await update.effective_message.reply_text(
            card_text(card), parse_mode=ParseMode.HTML, reply_markup=card_keyboard(card)
        )


async def handle_card_action(update: Update, context: CallbackContext) -> None:
    """Handle card:<action>:<item_id>[:<face>] buttons."""
    action, ref, face = parse_card_callback(update.callback_query.data)
    session = await get_session(update, context)
    item_id = session.resolve_item_ref(ref)

    if action is CardAction.FLIP:
        card = await session.flip(item_id)
    elif action is CardAction.CORRECT:
        card = session.mark_correct(item_id)
    elif action is CardAction.REVIEW:
        card = session.mark_review(item_id)
    else:
        card = await session.play(item_id, face or CardFace.FRONT)

    if card is None:
        await reply(update, "This card is not part of the current unit. Use /start to reload.")
        return
    await reply(update, card_text(card), card_keyboard(card))


async def handle_confirm(update: Update, context: CallbackContext) -> None:
    """Handle confirm:<action>:yes|no buttons of destructive actions."""
    _, action, answer = update.callback_query.data.split(":")
    confirmed = answer == "yes"
    session = await get_session(update, context)

    if action == "reset_current":
        done = await session.reset_current(current_tab(context), confirmed)
        text = "♻️ The progress of the current tab has been reset." if done else "Reset cancelled."
    elif action == "reset_all":
        done = await session.reset_all(confirmed)
        text = "🗑 All study progress has been reset." if done else "Reset cancelled."
    elif action == "import":
        pending = context.user_data.pop("pending_import", None)
        if pending is None:
            text = "There is no backup waiting to be imported."
        else:
            done = await session.import_bundle(pending, confirmed)
            text = "📥 Study records imported." if done else "Import cancelled."
    else:
        logger.warning(f"Unknown confirmation action: {action}")
        return

    await reply(update, text, InlineKeyboardMarkup([KB_BACK_TO_UNIT]))


async def handle_callback(update: Update, context: CallbackContext) -> None:
    """Handle callback queries from inline keyboard."""
    query = update.callback_query
    await query.answer()

    await log_received(update, "callback")

    if query.data.startswith("card:"):
        await handle_card_action(update, context)
    elif query.data.startswith("confirm:"):
        await handle_confirm(update, context)
    elif query.data.startswith("tab:"):
        await send_cards(update, context, ItemKind(query.data.split(":", 1)[1]))
    elif query.data.startswith("unit:"):
        session = await get_session(update, context)
        await open_unit(update, session, query.data.split(":", 1)[1])
    elif query.data == "units":
        await handle_units(update, context)
    elif query.data == "overview":
        session = await get_session(update, context)
        text, keyboard = overview_message(session)
        await reply(update, text, keyboard)
    elif query.data == "retry":
        session = await get_session(update, context)
        await session.init()
        text, keyboard = overview_message(session)
        await reply(update, text, keyboard)
    elif query.data == "stats":
        await handle_stats(update, context)
    elif query.data == "reset_current":
        await handle_reset(update, context)
    elif query.data == "reset_all":
        await handle_reset_all(update, context)
    elif query.data == "export":
        await handle_export(update, context)
    else:
        logger.warning(f"Unknown callback data: {query.data}")


async def handle_document(update: Update, context: CallbackContext) -> None:
    """Handle an uploaded JSON file: a backup to import or a unit to add."""
    await log_received(update, "document")
    message = update.message
    session = await get_session(update, context)

    try:
        tg_file = await message.document.get_file()
        raw = await tg_file.download_as_bytearray()
        data = json.loads(bytes(raw).decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        logger.warning(f"Unreadable upload from user {update.effective_user.id}: {e}")
        await message.reply_text("⚠️ File format error: the file is not valid JSON.")
        return

    if isinstance(data, dict) and ("starData" in data or "learningStats" in data):
        try:
            bundle = parse_backup(data)
        except InvalidBackupError as e:
            await message.reply_text(f"⚠️ {e}")
            return
        context.user_data["pending_import"] = bundle
        question = confirm_question("import", context)
        if bundle.export_date:
            question += f"\nBackup date: {format_date(bundle.export_date)}"
        await message.reply_text(question, reply_markup=confirm_keyboard("import"))
        return

    try:
        info = session.upload_unit(data)
    except InvalidUnitError as e:
        await message.reply_text(f"⚠️ Upload failed: {e}")
        return

    await message.reply_text(
        f"✅ Unit <b>{escape(info.title)}</b> uploaded: {info.words_count} words, {info.sentences_count} sentences.",
        parse_mode=ParseMode.HTML,
        reply_markup=InlineKeyboardMarkup([[InlineKeyboardButton("▶️ Open it", callback_data=f"unit:{info.id}")]]),
    )


async def handle_message(update: Update, context: CallbackContext) -> None:
    """Handle messages."""
    await log_received(update, "message")
    await update.message.reply_text("Please start with /start or see /help")


async def handle_error(update: object, context: CallbackContext) -> None:
    """Log errors raised by handlers and tell the user."""
    error = context.error
    logger.error(f"Error while handling an update: {error}", exc_info=error)
    monitoring.error_count.labels(error_type=type(error).__name__).inc()

    if isinstance(update, Update) and update.effective_message:
        try:
            await update.effective_message.reply_text("⚠️ Something went wrong. Please try again.")
        except TelegramError as e:
            logger.error(f"Could not report error to user: {e}")
