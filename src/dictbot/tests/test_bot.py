"""Tests for Telegram bot handlers."""
import json
from typing import Any, Dict
from unittest.mock import AsyncMock, Mock

import httpx
import pytest
from faker import Faker
from sqlalchemy.orm import Session
from telegram import Bot, Update, User as TelegramUser
from telegram.error import BadRequest
from telegram.ext import Application, CallbackContext

from dictbot.bot import (
    VoiceDelivery,
    card_keyboard,
    handle_callback,
    handle_document,
    handle_error,
    handle_export,
    handle_start,
    handle_stats,
)
from dictbot.models.base import SessionLocal
from dictbot.models.card_models import CardAction
from dictbot.models.lesson_models import Item, ItemKind
from dictbot.services.card_renderer import render_card
from dictbot.services.study_service import INDEX_FAILED_MESSAGE, SessionRegistry

fake = Faker()

BASE_URL = "http://lessons.test/data"


def mock_client(routes: Dict[str, Any]) -> httpx.AsyncClient:
    def handler(request: httpx.Request) -> httpx.Response:
        answer = routes.get(str(request.url))
        if answer is None:
            return httpx.Response(404)
        if isinstance(answer, int):
            return httpx.Response(answer)
        return httpx.Response(200, json=answer)

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.fixture
def routes(index_payload: dict, unit_payload: dict) -> Dict[str, Any]:
    return {
        f"{BASE_URL}/units-index.json": index_payload,
        f"{BASE_URL}/unit5.json": unit_payload,
    }


@pytest.fixture
async def registry(db: Session, routes: Dict[str, Any]):
    """Create a session registry without speech output."""
    registry = SessionRegistry(db_factory=SessionLocal, client=mock_client(routes))
    yield registry
    await registry.close_all()


@pytest.fixture
def telegram_user() -> Mock:
    """Create a mock Telegram user."""
    user = Mock(spec=TelegramUser)
    user.id = fake.random_int(min=1000)
    user.first_name = fake.first_name()
    user.username = f"test_user_{fake.random_int()}"
    user.is_bot = False
    return user


@pytest.fixture
def update(telegram_user: Mock) -> Mock:
    """Create a mock Update object for a command."""
    update = AsyncMock(spec=Update)
    update.update_id = fake.random_int()
    update.effective_user = telegram_user
    update.message = AsyncMock()
    update.message.text = "/start"
    update.effective_message = update.message
    update.callback_query = None
    return update


@pytest.fixture
def context(registry: SessionRegistry) -> Mock:
    """Create a mock CallbackContext object."""
    context = AsyncMock(spec=CallbackContext)
    context.application = AsyncMock(spec=Application)
    context.application.bot_data = {"registry": registry}
    context.user_data = {}
    context.args = []
    return context


def press(update: Mock, data: str) -> Mock:
    """Turn the update into a button press."""
    update.callback_query = AsyncMock()
    update.callback_query.data = data
    update.callback_query.answer = AsyncMock()
    update.callback_query.edit_message_text = AsyncMock()
    return update


def last_text(mock: AsyncMock) -> str:
    return mock.call_args.args[0]


@pytest.mark.asyncio
async def test_start_shows_unit_overview(update: Mock, context: Mock) -> None:
    """Test start command handler."""
    await handle_start(update, context)

    text = last_text(update.message.reply_text)
    assert "Unit 5: Animals" in text
    assert "3 words | 1 sentences" in text
    markup = update.message.reply_text.call_args.kwargs["reply_markup"]
    assert markup.inline_keyboard[0][0].callback_data == "tab:word"


@pytest.mark.asyncio
async def test_start_with_unknown_unit_falls_back(update: Mock, context: Mock) -> None:
    context.args = ["unit99"]

    await handle_start(update, context)

    assert "Unit 5: Animals" in last_text(update.message.reply_text)


@pytest.mark.asyncio
async def test_start_shows_index_failure(update: Mock, context: Mock, routes: dict) -> None:
    """Test that a failed catalog fetch is shown with a retry button."""
    routes[f"{BASE_URL}/units-index.json"] = 503

    await handle_start(update, context)

    assert INDEX_FAILED_MESSAGE in last_text(update.message.reply_text)
    markup = update.message.reply_text.call_args.kwargs["reply_markup"]
    assert markup.inline_keyboard[0][0].callback_data == "retry"


@pytest.mark.asyncio
async def test_tab_sends_one_message_per_card(update: Mock, context: Mock) -> None:
    await handle_start(update, context)
    update.message.reply_text.reset_mock()

    await handle_callback(press(update, "tab:word"), context)

    assert update.message.reply_text.call_count == 3
    assert context.user_data["tab"] == "word"


@pytest.mark.asyncio
async def test_flip_and_mark_card(update: Mock, context: Mock) -> None:
    """Test that card buttons edit the card message in place."""
    await handle_start(update, context)

    await handle_callback(press(update, "card:flip:w1"), context)
    assert "<b>cat</b>" in last_text(update.callback_query.edit_message_text)

    await handle_callback(press(update, "card:correct:w1"), context)
    assert "★☆☆☆☆" in last_text(update.callback_query.edit_message_text)

    session = context.application.bot_data["registry"].get(update.effective_user.id)
    assert session.mastery.get("w1") == 1


@pytest.mark.asyncio
async def test_stale_card(update: Mock, context: Mock) -> None:
    await handle_start(update, context)

    await handle_callback(press(update, "card:flip:gone"), context)

    assert "not part of the current unit" in last_text(update.callback_query.edit_message_text)


@pytest.mark.asyncio
async def test_unchanged_edit_is_ignored(update: Mock, context: Mock) -> None:
    """Test that Telegram's 'message is not modified' error is swallowed."""
    await handle_start(update, context)
    press(update, "card:correct:w1")
    update.callback_query.edit_message_text.side_effect = BadRequest("Message is not modified")

    await handle_callback(update, context)


@pytest.mark.asyncio
async def test_reset_needs_confirmation(update: Mock, context: Mock) -> None:
    """Test the Yes/No flow of resetting the current tab."""
    await handle_start(update, context)
    await handle_callback(press(update, "card:flip:w1"), context)
    await handle_callback(press(update, "card:correct:w1"), context)
    session = context.application.bot_data["registry"].get(update.effective_user.id)

    await handle_callback(press(update, "reset_current"), context)
    markup = update.callback_query.edit_message_text.call_args.kwargs["reply_markup"]
    assert [button.callback_data for button in markup.inline_keyboard[0]] == [
        "confirm:reset_current:yes",
        "confirm:reset_current:no",
    ]

    await handle_callback(press(update, "confirm:reset_current:no"), context)
    assert last_text(update.callback_query.edit_message_text) == "Reset cancelled."
    assert session.mastery.get("w1") == 1

    await handle_callback(press(update, "confirm:reset_current:yes"), context)
    assert session.mastery.get("w1") == 0


@pytest.mark.asyncio
async def test_stats(update: Mock, context: Mock) -> None:
    await handle_start(update, context)

    await handle_stats(update, context)

    text = last_text(update.message.reply_text)
    assert "Overall mastery: 0% (0/4 items)" in text
    assert "Sessions: 1" in text


@pytest.mark.asyncio
async def test_export_sends_backup_file(update: Mock, context: Mock) -> None:
    await handle_start(update, context)

    await handle_export(update, context)

    kwargs = update.message.reply_document.call_args.kwargs
    assert kwargs["filename"].startswith("english-dictation-backup-")
    backup = json.loads(kwargs["document"].decode("utf-8"))
    assert backup["version"] == "1.0"
    assert backup["learningStats"]["unit5"]["sessions"] == 1


def attach_document(update: Mock, content: bytes) -> None:
    tg_file = AsyncMock()
    tg_file.download_as_bytearray = AsyncMock(return_value=bytearray(content))
    update.message.document.get_file = AsyncMock(return_value=tg_file)


@pytest.mark.asyncio
async def test_upload_unit_document(update: Mock, context: Mock, unit_payload: dict) -> None:
    """Test that a lesson document becomes a selectable unit."""
    await handle_start(update, context)
    attach_document(update, json.dumps(dict(unit_payload, unit_id="custom1", unit_title="Mine")).encode("utf-8"))

    await handle_document(update, context)

    assert "uploaded" in last_text(update.message.reply_text)
    session = context.application.bot_data["registry"].get(update.effective_user.id)
    assert session.loader.index.find("custom1") is not None


@pytest.mark.asyncio
async def test_upload_invalid_unit_document(update: Mock, context: Mock) -> None:
    attach_document(update, json.dumps({"unit_id": "x"}).encode("utf-8"))

    await handle_document(update, context)

    assert "Upload failed" in last_text(update.message.reply_text)


@pytest.mark.asyncio
async def test_upload_not_json(update: Mock, context: Mock) -> None:
    attach_document(update, b"\xff\xfe not json")

    await handle_document(update, context)

    assert "File format error" in last_text(update.message.reply_text)


@pytest.mark.asyncio
async def test_import_backup_document(update: Mock, context: Mock) -> None:
    """Test that a backup is only imported after confirmation."""
    await handle_start(update, context)
    session = context.application.bot_data["registry"].get(update.effective_user.id)
    attach_document(update, json.dumps({"starData": {"w1": 3}, "version": "1.0"}).encode("utf-8"))

    await handle_document(update, context)

    assert "pending_import" in context.user_data
    assert session.mastery.get("w1") == 0

    await handle_callback(press(update, "confirm:import:yes"), context)

    assert session.mastery.get("w1") == 3
    assert "pending_import" not in context.user_data


LONG_ID = "unit5-sentence-" + "x" * 60


@pytest.fixture
async def awkward_unit(update: Mock, context: Mock, unit_payload: dict):
    """Open a unit whose item ids contain colons or exceed Telegram's callback limit."""
    await handle_start(update, context)
    session = context.application.bot_data["registry"].get(update.effective_user.id)
    payload = dict(unit_payload, unit_id="custom9", unit_title="Awkward ids")
    payload["words"] = [dict(unit_payload["words"][0], id="u5:w1")]
    payload["sentences"] = [dict(unit_payload["sentences"][0], id=LONG_ID)]
    session.upload_unit(payload)
    await session.open_unit("custom9")
    return session


def button_data(session, item_id: str, row: int, column: int) -> str:
    return session.card(item_id).buttons()[row][column].callback_data


@pytest.mark.asyncio
async def test_card_buttons_with_colon_in_id(update: Mock, context: Mock, awkward_unit) -> None:
    """Test that ids containing colons reach the right card."""
    await handle_callback(press(update, button_data(awkward_unit, "u5:w1", 0, 1)), context)
    assert "<b>cat</b>" in last_text(update.callback_query.edit_message_text)

    await handle_callback(press(update, button_data(awkward_unit, "u5:w1", 0, 0)), context)
    assert awkward_unit.mastery.get("u5:w1") == 1

    await handle_callback(press(update, button_data(awkward_unit, "u5:w1", 1, 0)), context)
    assert "<b>cat</b>" in last_text(update.callback_query.edit_message_text)


@pytest.mark.asyncio
async def test_card_buttons_with_long_id(update: Mock, context: Mock, awkward_unit) -> None:
    """Test that long ids fit in callback data and still resolve."""
    card = awkward_unit.card(LONG_ID)
    for row in card.buttons():
        for button in row:
            assert len(button.callback_data.encode("utf-8")) <= 64

    await handle_callback(press(update, button_data(awkward_unit, LONG_ID, 0, 1)), context)

    assert LONG_ID in awkward_unit.flipped
    assert "The cat is sleeping." in last_text(update.callback_query.edit_message_text)


def test_card_keyboard_hides_disabled_buttons() -> None:
    """Test that a mastered card offers review but not correct."""
    item = Item(id="w1", english="cat", translation="貓", audio="w1.mp3")
    card = render_card(item, ItemKind.WORD, 0, 5, flipped=True)

    rows = card_keyboard(card).inline_keyboard

    assert [button.callback_data for button in rows[0]] == ["card:review:w1"]
    assert rows[1][0].callback_data == "card:audio:w1:back"
    assert rows[1][1].callback_data == f"card:{CardAction.FLIP.value}:w1"


@pytest.mark.asyncio
async def test_error_handler_reports_to_user(update: Mock, context: Mock) -> None:
    context.error = RuntimeError("boom")

    await handle_error(update, context)

    update.message.reply_text.assert_awaited_once()


@pytest.mark.asyncio
async def test_voice_delivery(tmp_path) -> None:
    """Test that clips are sent as voice messages and deleted on retract."""
    clip = tmp_path / "cat.mp3"
    clip.write_bytes(b"\0" * 10)
    bot = AsyncMock(spec=Bot)
    bot.send_voice.return_value = Mock(message_id=7)
    delivery = VoiceDelivery(bot, chat_id=42)

    await delivery.deliver(clip)
    await delivery.retract()
    await delivery.retract()

    bot.send_voice.assert_awaited_once()
    bot.delete_message.assert_awaited_once_with(chat_id=42, message_id=7)


if __name__ == "__main__":
    pytest.main([__file__])
