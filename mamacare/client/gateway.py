import asyncio
import logging
from typing import Callable, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from mamacare.agents.responder import analyze_for_user, reply_to_chat
from mamacare.core.db import session_scope
from mamacare.core.errors import PersistenceError
from mamacare.schemas.chat import ConversationOut, MessageOut, SymptomAnalysis
from mamacare.schemas.profile import ProfileOut
from mamacare.services import chat_store, operator_bridge, profiles, telegram
from mamacare.services.realtime import Listener, RealtimeHub, Subscription, hub as default_hub

logger = logging.getLogger(__name__)

T = TypeVar("T")


class LocalGateway:
    """
    The relay's view of the backend when both run in one process.

    Every call opens its own session on a worker thread so the event loop
    never blocks on the database or on a bridge.
    """

    def __init__(self, hub: RealtimeHub | None = None, bot_factory: Callable[[], telegram.TelegramBot] | None = None):
        self.hub = hub or default_hub
        self._bot_factory = bot_factory

    async def _run(self, fn: Callable[[Session], T]) -> T:
        def work() -> T:
            try:
                with session_scope() as db:
                    return fn(db)
            except SQLAlchemyError as e:
                raise PersistenceError(f"Database error: {e}") from e

        return await asyncio.to_thread(work)

    # -------------------------
    # Conversation Store / Message Log
    # -------------------------

    async def list_conversations(self, user_id: str) -> list[ConversationOut]:
        return await self._run(
            lambda db: [ConversationOut.model_validate(c) for c in chat_store.list_conversations(db, user_id)]
        )

    async def create_conversation(self, user_id: str) -> ConversationOut:
        return await self._run(lambda db: ConversationOut.model_validate(chat_store.create_conversation(db, user_id)))

    async def delete_conversation(self, conversation_id: str, user_id: str) -> bool:
        return await self._run(lambda db: chat_store.delete_conversation(db, conversation_id, user_id=user_id))

    async def list_messages(self, conversation_id: str) -> list[MessageOut]:
        return await self._run(
            lambda db: [MessageOut.model_validate(m) for m in chat_store.list_messages(db, conversation_id)]
        )

    async def insert_user_message(self, conversation_id: str, content: str, user_id: str) -> MessageOut:
        return await self._run(
            lambda db: MessageOut.model_validate(
                chat_store.add_message(db, conversation_id, "user", content, sender_id=user_id)
            )
        )

    def subscribe(self, conversation_id: str, listener: Listener) -> Subscription:
        return self.hub.subscribe(conversation_id, listener)

    # -------------------------
    # Bridges
    # -------------------------

    async def request_ai_reply(self, conversation_id: str, message: str) -> None:
        await self._run(lambda db: reply_to_chat(db, message, conversation_id))

    async def analyze_symptoms(self, message: str, user_id: str) -> SymptomAnalysis:
        return await self._run(lambda db: analyze_for_user(db, user_id, message))

    async def notify_operators(self, conversation_id: str, message: str, user_id: str,
                               user_name: str | None = None) -> None:
        def fn(db):
            bot = (self._bot_factory or telegram.get_bot)()
            try:
                operator_bridge.notify_operators(db, bot, conversation_id, message, user_id, user_name)
            finally:
                bot.close()

        await self._run(fn)

    # -------------------------
    # Profile Store
    # -------------------------

    async def get_profile(self, user_id: str) -> ProfileOut | None:
        def fn(db):
            profile = profiles.get_profile(db, user_id)
            return ProfileOut.model_validate(profile) if profile else None

        return await self._run(fn)
