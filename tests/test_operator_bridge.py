import pytest
from sqlalchemy.exc import OperationalError

from mamacare.core import config
from mamacare.core.errors import ConfigurationError, InvalidRequestError, PersistenceError, UpstreamStatusError
from mamacare.models import Message, OperatorSession
from mamacare.schemas.telegram import TelegramUpdate
from mamacare.services import chat_store, operator_store
from mamacare.services.operator_bridge import (
    RelayOutcome,
    compose_notification,
    handle_update,
    notify_operators,
)
from mamacare.services.telegram import escape_markdown

NURSE_CHAT = 4242
GROUP_CHAT = -100500

_update_ids = iter(range(1, 10_000))


def private(text: str, chat_id: int = NURSE_CHAT) -> TelegramUpdate:
    return TelegramUpdate.model_validate(
        {
            "update_id": next(_update_ids),
            "message": {
                "message_id": 1,
                "chat": {"id": chat_id, "type": "private"},
                "from": {"id": chat_id, "username": "nurse_ada"},
                "text": text,
            },
        }
    )


def group_reply(text: str, original_text: str | None, original_id: int = 555) -> TelegramUpdate:
    original = {"message_id": original_id, "chat": {"id": GROUP_CHAT, "type": "supergroup"}}
    if original_text is not None:
        original["text"] = original_text
    return TelegramUpdate.model_validate(
        {
            "update_id": next(_update_ids),
            "message": {
                "message_id": 2,
                "chat": {"id": GROUP_CHAT, "type": "supergroup"},
                "from": {"id": NURSE_CHAT},
                "text": text,
                "reply_to_message": original,
            },
        }
    )


@pytest.fixture
def conv(db):
    return chat_store.create_conversation(db, "user-1")


# -------------------------
# Outbound notify
# -------------------------

def test_notification_embeds_ids_and_deep_link(db, conv, telegram_api):
    notify_operators(db, telegram_api.bot(), conv.id, "I feel dizzy", "user-1", "Ada")

    [payload] = telegram_api.sent()
    assert payload["chat_id"] == "-100500"
    assert f"Conversation: {conv.id}" in payload["text"]
    assert "User: user-1" in payload["text"]
    assert payload["text"].endswith("Message: I feel dizzy")
    [[button]] = payload["reply_markup"]["inline_keyboard"]
    assert button["url"] == f"https://t.me/MamaCareBot?start={conv.id}"


def test_notification_is_recorded_for_reply_correlation(db, conv, telegram_api):
    notify_operators(db, telegram_api.bot(), conv.id, "hello", "user-1")

    assert operator_store.find_notified_conversation(db, "-100500", 1000) == conv.id


def test_compose_notification_defaults_name():
    text = compose_notification("c-1", "hi", "u-1")
    assert "Name: A user" in text


def test_notify_requires_configuration(db, conv, telegram_api, monkeypatch):
    monkeypatch.setattr(config.settings, "TELEGRAM_GROUP_ID", None)
    with pytest.raises(ConfigurationError):
        notify_operators(db, telegram_api.bot(), conv.id, "hello", "user-1")
    assert telegram_api.calls == []


def test_notify_requires_fields(db, conv, telegram_api):
    with pytest.raises(InvalidRequestError):
        notify_operators(db, telegram_api.bot(), conv.id, "", "user-1")


def test_notify_failure_leaves_user_message_in_place(db, conv, telegram_api):
    chat_store.add_message(db, conv.id, "user", "please help", sender_id="user-1")
    telegram_api.fail_with = 400

    with pytest.raises(UpstreamStatusError):
        notify_operators(db, telegram_api.bot(), conv.id, "please help", "user-1")

    assert [m.content for m in chat_store.list_messages(db, conv.id)] == ["please help"]


# -------------------------
# Inbound relay
# -------------------------

def test_group_reply_resolved_from_notification_text(db, conv, telegram_api):
    original = compose_notification(conv.id, "I feel dizzy", "user-1")

    outcome = handle_update(db, telegram_api.bot(), group_reply("Drink some water", original))

    assert outcome is RelayOutcome.GROUP_REPLY_SAVED
    [msg] = chat_store.list_messages(db, conv.id)
    assert (msg.sender_type, msg.content) == ("nurse", "Drink some water")


def test_group_reply_resolved_from_correlation_table(db, conv, telegram_api):
    operator_store.record_notification(db, str(GROUP_CHAT), 555, conv.id)

    # Text without the pattern (e.g. edited away) still resolves through the recorded message id
    outcome = handle_update(db, telegram_api.bot(), group_reply("On my way", None, original_id=555))

    assert outcome is RelayOutcome.GROUP_REPLY_SAVED
    assert [m.content for m in chat_store.list_messages(db, conv.id)] == ["On my way"]


def test_group_reply_without_reference_is_dropped(db, conv, telegram_api):
    outcome = handle_update(db, telegram_api.bot(), group_reply("hello?", "Just chatting in the group"))

    assert outcome is RelayOutcome.GROUP_REPLY_DROPPED
    assert db.query(Message).count() == 0
    assert telegram_api.calls == []


def test_plain_group_chatter_is_ignored(db, telegram_api):
    update = TelegramUpdate.model_validate(
        {
            "update_id": 1,
            "message": {"message_id": 3, "chat": {"id": GROUP_CHAT, "type": "group"}, "text": "/end"},
        }
    )
    assert handle_update(db, telegram_api.bot(), update) is RelayOutcome.IGNORED
    assert db.query(OperatorSession).count() == 0


def test_start_rebinds_and_end_clears_session(db, telegram_api):
    a = chat_store.create_conversation(db, "user-a")
    b = chat_store.create_conversation(db, "user-b")
    bot = telegram_api.bot()

    assert handle_update(db, bot, private(f"/start {a.id}")) is RelayOutcome.SESSION_STARTED
    assert handle_update(db, bot, private(f"/start {b.id}")) is RelayOutcome.SESSION_STARTED

    sessions = db.query(OperatorSession).all()
    assert len(sessions) == 1
    assert sessions[0].operator_channel_id == str(NURSE_CHAT)
    assert sessions[0].active_conversation_id == b.id

    assert handle_update(db, bot, private("/end")) is RelayOutcome.SESSION_ENDED
    db.expire_all()
    assert db.query(OperatorSession).count() == 0

    assert handle_update(db, bot, private("are you there?")) is RelayOutcome.NO_ACTIVE_SESSION
    assert db.query(Message).count() == 0
    last = telegram_api.sent()[-1]
    assert last["chat_id"] == NURSE_CHAT
    assert last["parse_mode"] == "MarkdownV2"
    assert "active conversation" in last["text"]


def test_private_text_is_relayed_to_bound_conversation(db, conv, telegram_api):
    bot = telegram_api.bot()
    handle_update(db, bot, private(f"/start {conv.id}"))

    outcome = handle_update(db, bot, private("Hi, I'm nurse Ada. How can I help?"))

    assert outcome is RelayOutcome.PRIVATE_REPLY_SAVED
    [msg] = chat_store.list_messages(db, conv.id)
    assert msg.sender_type == "nurse"
    assert msg.content == "Hi, I'm nurse Ada. How can I help?"


def test_start_addressed_to_bot_by_name(db, conv, telegram_api):
    outcome = handle_update(db, telegram_api.bot(), private(f"/start@MamaCareBot {conv.id}"))

    assert outcome is RelayOutcome.SESSION_STARTED
    assert operator_store.get_session(db, str(NURSE_CHAT)).active_conversation_id == conv.id


def test_bare_start_only_explains(db, telegram_api):
    outcome = handle_update(db, telegram_api.bot(), private("/start"))

    assert outcome is RelayOutcome.IGNORED
    assert db.query(OperatorSession).count() == 0
    assert len(telegram_api.sent()) == 1


def test_confirmation_failure_does_not_undo_binding(db, conv, telegram_api):
    telegram_api.fail_with = 500

    outcome = handle_update(db, telegram_api.bot(), private(f"/start {conv.id}"))

    assert outcome is RelayOutcome.SESSION_STARTED
    assert operator_store.get_session(db, str(NURSE_CHAT)) is not None


def test_two_nurses_can_bind_the_same_conversation(db, conv, telegram_api):
    bot = telegram_api.bot()
    handle_update(db, bot, private(f"/start {conv.id}", chat_id=1))
    handle_update(db, bot, private(f"/start {conv.id}", chat_id=2))

    handle_update(db, bot, private("first", chat_id=1))
    handle_update(db, bot, private("second", chat_id=2))

    assert [m.content for m in chat_store.list_messages(db, conv.id)] == ["first", "second"]


def test_empty_and_non_message_updates_are_ignored(db, telegram_api):
    bot = telegram_api.bot()
    assert handle_update(db, bot, TelegramUpdate(update_id=9)) is RelayOutcome.IGNORED
    assert handle_update(db, bot, private("   ")) is RelayOutcome.IGNORED
    assert telegram_api.calls == []


def test_store_read_failures_become_persistence_errors(db, telegram_api, monkeypatch):
    def locked(*args, **kwargs):
        raise OperationalError("SELECT", {}, Exception("database is locked"))

    monkeypatch.setattr(db, "get", locked)
    monkeypatch.setattr(db, "query", locked)

    with pytest.raises(PersistenceError):
        operator_store.get_session(db, str(NURSE_CHAT))
    with pytest.raises(PersistenceError):
        operator_store.find_notified_conversation(db, str(GROUP_CHAT), 555)
    with pytest.raises(PersistenceError):
        handle_update(db, telegram_api.bot(), group_reply("hello", "Conversation: c-1"))


def test_set_webhook_sends_secret(telegram_api):
    bot = telegram_api.bot()

    assert bot.set_webhook("https://mamacare.test/telegram/webhook", secret_token="s3cret") is True
    [payload] = telegram_api.sent("setWebhook")
    assert payload == {
        "url": "https://mamacare.test/telegram/webhook",
        "allowed_updates": ["message"],
        "secret_token": "s3cret",
    }


def test_non_json_reply_is_an_upstream_error(db, conv, telegram_api):
    telegram_api.raw_body = "<html>gateway</html>"

    with pytest.raises(UpstreamStatusError) as exc:
        notify_operators(db, telegram_api.bot(), conv.id, "hello", "user-1")
    assert exc.value.status_code == 200


def test_escape_markdown():
    assert escape_markdown("Send /end. (ok!)") == r"Send /end\. \(ok\!\)"
