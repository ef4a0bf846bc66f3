import inspect
import logging
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Awaitable, Callable

from mamacare.client.auth import AuthContext
from mamacare.client.gateway import LocalGateway
from mamacare.client.notices import Notice
from mamacare.client.state import NavigationStore
from mamacare.core.errors import MamaCareError
from mamacare.schemas.chat import ConversationOut, MessageOut
from mamacare.services.realtime import MessageInserted, Subscription

logger = logging.getLogger(__name__)

TEMP_ID_PREFIX = "temp-"

Confirm = Callable[[], bool | Awaitable[bool]]


class ChatMode(str, Enum):
    AI = "ai"
    HUMAN = "human"


def is_temporary(message: MessageOut) -> bool:
    return isinstance(message.id, str) and message.id.startswith(TEMP_ID_PREFIX)


class ConversationRelay:
    """
    Client-side view of the nurse chat: one selected conversation, its
    messages, and the send path to either the AI responder or the nurses.

    Authoritative state always comes from the Message Log. Local optimistic
    entries only live between a send and its reconcile.
    """

    def __init__(
        self,
        gateway: LocalGateway,
        auth: AuthContext,
        navigation: NavigationStore | None = None,
        mode: ChatMode = ChatMode.AI,
    ):
        self.gateway = gateway
        self.auth = auth
        self.navigation = navigation
        self.mode = mode

        self.conversations: list[ConversationOut] = []
        self.selected: ConversationOut | None = None
        self.messages: list[MessageOut] = []
        self.creating_new = False
        self.sending = False
        self.notices: list[Notice] = []

        self._subscription: Subscription | None = None
        self._reloads_started = 0
        self._reload_applied = 0
        self._listeners: list[Callable[["ConversationRelay"], None]] = []

    # -------------------------
    # Observers
    # -------------------------

    def on_change(self, listener: Callable[["ConversationRelay"], None]) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _changed(self) -> None:
        for listener in list(self._listeners):
            listener(self)

    def _notify(self, title: str, description: str = "", destructive: bool = True) -> None:
        self.notices.append(Notice(title, description, destructive))
        self._changed()

    def _save_navigation(self) -> None:
        if self.navigation:
            self.navigation.save(self.selected.id if self.selected else None, self.creating_new)

    # -------------------------
    # Conversations
    # -------------------------

    async def list_conversations(self) -> list[ConversationOut]:
        user_id = self.auth.user_id
        if not user_id:
            self.conversations = []
            return []
        try:
            self.conversations = await self.gateway.list_conversations(user_id)
        except MamaCareError as e:
            logger.warning("listing conversations failed user=%s: %s", user_id, e)
            self.conversations = []
            self._notify("Could not load conversations", e.message, destructive=False)
            return []
        self._changed()
        return self.conversations

    async def select_conversation(self, conversation: ConversationOut) -> None:
        self.selected = conversation
        self.creating_new = False
        self._resubscribe(conversation.id)
        self._save_navigation()
        await self.reload_messages()

    def start_new_conversation(self) -> None:
        self._unsubscribe()
        self.selected = None
        self.messages = []
        self.creating_new = True
        self._save_navigation()
        self._changed()

    async def delete_conversation(self, conversation_id: str, confirm: Confirm) -> bool:
        answer = confirm()
        if inspect.isawaitable(answer):
            answer = await answer
        if not answer:
            return False

        try:
            deleted = await self.gateway.delete_conversation(conversation_id, self.auth.user_id or "")
        except MamaCareError as e:
            self._notify("Could not delete conversation", e.message)
            return False
        if not deleted:
            self._notify("Could not delete conversation", "Conversation not found")
            return False

        self.conversations = [c for c in self.conversations if c.id != conversation_id]
        if self.selected and self.selected.id == conversation_id:
            self._unsubscribe()
            self.selected = None
            self.messages = []
            self._save_navigation()
        self._notify("Conversation deleted", destructive=False)
        return True

    async def restore(self) -> None:
        """Re-opens whatever was open last time, if it still exists."""
        await self.list_conversations()
        if not self.navigation:
            return
        state = self.navigation.load()
        wanted = state.get("selected_conversation_id")
        match = next((c for c in self.conversations if c.id == wanted), None) if wanted else None
        if match:
            await self.select_conversation(match)
        elif state.get("creating_new"):
            self.start_new_conversation()

    # -------------------------
    # Messages
    # -------------------------

    async def reload_messages(self) -> None:
        if not self.selected:
            return
        conversation_id = self.selected.id
        self._reloads_started += 1
        seq = self._reloads_started
        try:
            messages = await self.gateway.list_messages(conversation_id)
        except MamaCareError as e:
            logger.warning("loading messages failed conversation=%s: %s", conversation_id, e)
            self._notify("Could not load messages", e.message)
            return
        # Selection may have moved on, or a later reload may already have landed
        if seq < self._reload_applied:
            return
        if self.selected and self.selected.id == conversation_id:
            self._reload_applied = seq
            self.messages = messages
            self._changed()

    async def send_message(self, text: str, mode: ChatMode | None = None) -> bool:
        text = (text or "").strip()
        if not text or self.sending:
            return False
        user_id = self.auth.user_id
        if not user_id:
            self._notify("Not signed in", "Please sign in to chat.")
            return False

        mode = ChatMode(mode or self.mode)
        self.sending = True
        optimistic: MessageOut | None = None
        created: ConversationOut | None = None
        persisted = False
        try:
            if self.selected is None:
                created = await self.gateway.create_conversation(user_id)
                self.conversations.insert(0, created)
                await self.select_conversation(created)
            conversation_id = self.selected.id

            optimistic = MessageOut(
                id=f"{TEMP_ID_PREFIX}{uuid.uuid4().hex}",
                conversation_id=conversation_id,
                sender_id=user_id,
                sender_type="user",
                content=text,
                created_at=datetime.now(timezone.utc),
            )
            self.messages = [*self.messages, optimistic]
            self._changed()

            await self.gateway.insert_user_message(conversation_id, text, user_id)
            persisted = True

            if mode == ChatMode.AI:
                await self.gateway.request_ai_reply(conversation_id, text)
            else:
                await self.gateway.notify_operators(conversation_id, text, user_id, self.auth.display_name)
        except MamaCareError as e:
            logger.warning("send failed mode=%s persisted=%s: %s", mode.value, persisted, e)
            self._drop(optimistic)
            self._notify("Message saved but not delivered" if persisted else "Message not sent", e.message)
            if persisted:
                await self.reload_messages()
            elif created is not None:
                await self._discard_empty(created, user_id)
            return False
        finally:
            self.sending = False

        self._drop(optimistic)
        await self.reload_messages()
        return True

    async def _discard_empty(self, conversation: ConversationOut, user_id: str) -> None:
        # Lazily created for a first message that never made it in
        try:
            await self.gateway.delete_conversation(conversation.id, user_id)
        except MamaCareError as e:
            logger.warning("could not remove empty conversation=%s: %s", conversation.id, e)
        self.conversations = [c for c in self.conversations if c.id != conversation.id]
        if self.selected and self.selected.id == conversation.id:
            self.start_new_conversation()

    def _drop(self, optimistic: MessageOut | None) -> None:
        if optimistic is None:
            return
        self.messages = [m for m in self.messages if m.id != optimistic.id]
        self._changed()

    # -------------------------
    # Live updates
    # -------------------------

    def _resubscribe(self, conversation_id: str) -> None:
        if self._subscription and self._subscription.conversation_id == conversation_id and not self._subscription.closed:
            return
        self._unsubscribe()
        self._subscription = self.gateway.subscribe(conversation_id, self._on_insert)

    def _unsubscribe(self) -> None:
        if self._subscription:
            self._subscription.cancel()
            self._subscription = None

    async def _on_insert(self, evt: MessageInserted) -> None:
        # Any insert invalidates the list; never merge the single row in
        if self.selected and self.selected.id == evt.conversation_id:
            await self.reload_messages()

    def close(self) -> None:
        self._unsubscribe()
        self._listeners.clear()
