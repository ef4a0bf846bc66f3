import logging
import re
from enum import Enum

from sqlalchemy.orm import Session

from mamacare.core.config import settings
from mamacare.core.errors import (
    ConfigurationError,
    InvalidRequestError,
    PersistenceError,
    UpstreamStatusError,
    UpstreamUnavailableError,
)
from mamacare.schemas.telegram import TelegramMessage, TelegramUpdate
from mamacare.services import operator_store
from mamacare.services.chat_store import add_message
from mamacare.services.telegram import TelegramBot, escape_markdown

logger = logging.getLogger(__name__)

CONVERSATION_RE = re.compile(r"Conversation: (\S+)")

NO_SESSION_TEXT = (
    "I don't have an active conversation for you. "
    "Please go to the group and click 'Reply Privately' on a user's message first."
)
START_USAGE_TEXT = "Use the 'Reply Privately' button on a user's message in the group to start replying."


class RelayOutcome(str, Enum):
    GROUP_REPLY_SAVED = "group_reply_saved"
    GROUP_REPLY_DROPPED = "group_reply_dropped"
    SESSION_STARTED = "session_started"
    SESSION_ENDED = "session_ended"
    PRIVATE_REPLY_SAVED = "private_reply_saved"
    NO_ACTIVE_SESSION = "no_active_session"
    IGNORED = "ignored"


# -------------------------
# Outbound: user message -> nurse group
# -------------------------

def compose_notification(conversation_id: str, message: str, user_id: str, user_name: str | None = None) -> str:
    # Plain text on purpose: the group-reply fallback pattern-matches "Conversation: <id>" out of it
    return (
        f"User: {user_id}\n"
        f"Name: {user_name or 'A user'}\n"
        f"Conversation: {conversation_id}\n\n"
        f"Message: {message}"
    )


def reply_keyboard(conversation_id: str) -> dict:
    return {
        "inline_keyboard": [
            [
                {
                    "text": "✍️ Reply Privately",
                    "url": f"https://t.me/{settings.TELEGRAM_BOT_USERNAME}?start={conversation_id}",
                }
            ]
        ]
    }


def notify_operators(
    db: Session,
    bot: TelegramBot,
    conversation_id: str,
    message: str,
    user_id: str,
    user_name: str | None = None,
) -> dict:
    """Posts a user's message to the nurse group. The message itself is already persisted."""
    if not settings.TELEGRAM_GROUP_ID or not settings.TELEGRAM_BOT_USERNAME:
        raise ConfigurationError(
            "Telegram environment variables (TELEGRAM_BOT_TOKEN, TELEGRAM_GROUP_ID, "
            "TELEGRAM_BOT_USERNAME) are not set."
        )
    if not message or not conversation_id or not user_id:
        raise InvalidRequestError("`message`, `conversation_id`, and `user_id` are required.")

    sent = bot.send_message(
        settings.TELEGRAM_GROUP_ID,
        compose_notification(conversation_id, message, user_id, user_name),
        reply_markup=reply_keyboard(conversation_id),
    )

    message_id = sent.get("message_id") if isinstance(sent, dict) else None
    if message_id is not None:
        try:
            operator_store.record_notification(db, str(settings.TELEGRAM_GROUP_ID), message_id, conversation_id)
        except PersistenceError:
            # Group replies still resolve through the text pattern
            logger.warning("could not record notification conversation=%s", conversation_id, exc_info=True)
    return sent


# -------------------------
# Inbound: Telegram update -> conversation
# -------------------------

def _tell(bot: TelegramBot, chat_id: int, text: str) -> None:
    try:
        bot.send_message(chat_id, escape_markdown(text), parse_mode="MarkdownV2")
    except (UpstreamUnavailableError, UpstreamStatusError):
        logger.warning("could not send confirmation to nurse chat=%s", chat_id, exc_info=True)


def resolve_group_reply(db: Session, message: TelegramMessage) -> str | None:
    original = message.reply_to_message
    if original is None:
        return None
    conversation_id = operator_store.find_notified_conversation(db, str(original.chat.id), original.message_id)
    if conversation_id:
        return conversation_id
    m = CONVERSATION_RE.search(original.text or "")
    return m.group(1) if m else None


def handle_update(db: Session, bot: TelegramBot, update: TelegramUpdate) -> RelayOutcome:
    """
    Routes one webhook update. Persistence failures propagate (PersistenceError)
    so the endpoint answers non-2xx; everything else resolves to an outcome.
    """
    message = update.message
    if message is None or not (message.text or "").strip():
        return RelayOutcome.IGNORED
    text = message.text

    # Nurse replied to a notification inside the group
    if not message.is_private:
        if message.reply_to_message is None:
            return RelayOutcome.IGNORED
        conversation_id = resolve_group_reply(db, message)
        if not conversation_id:
            logger.info("group reply update=%s has no conversation reference, dropped", update.update_id)
            return RelayOutcome.GROUP_REPLY_DROPPED
        add_message(db, conversation_id, "nurse", text)
        return RelayOutcome.GROUP_REPLY_SAVED

    nurse_id = message.chat.id
    parts = text.strip().split()
    # "/start@MamaCareBot abc" is how commands arrive when the bot is addressed by name
    command = parts[0].split("@", 1)[0].lower()

    if command == "/start":
        if len(parts) < 2:
            _tell(bot, nurse_id, START_USAGE_TEXT)
            return RelayOutcome.IGNORED
        conversation_id = parts[1]
        operator_store.bind_session(db, str(nurse_id), conversation_id)
        _tell(
            bot,
            nurse_id,
            f"You are now replying to conversation {conversation_id}. "
            "All messages you send here will be forwarded to the user. Send /end to stop.",
        )
        return RelayOutcome.SESSION_STARTED

    if command == "/end" and len(parts) == 1:
        operator_store.end_session(db, str(nurse_id))
        _tell(bot, nurse_id, "Session ended. You can now reply to another conversation from the group.")
        return RelayOutcome.SESSION_ENDED

    session = operator_store.get_session(db, str(nurse_id))
    if session is None:
        _tell(bot, nurse_id, NO_SESSION_TEXT)
        return RelayOutcome.NO_ACTIVE_SESSION

    add_message(db, session.active_conversation_id, "nurse", text)
    return RelayOutcome.PRIVATE_REPLY_SAVED
