import asyncio
import logging
import threading
from dataclasses import dataclass
from typing import Awaitable, Callable

from sqlalchemy import event
from sqlalchemy.orm import Session

from mamacare.models.message import Message

logger = logging.getLogger(__name__)

_PENDING_KEY = "realtime_pending_inserts"


@dataclass(frozen=True)
class MessageInserted:
    conversation_id: str
    message_id: int
    sender_type: str


Listener = Callable[[MessageInserted], Awaitable[None]]


class Subscription:
    """Insert feed for one conversation, delivered on the subscriber's event loop."""

    def __init__(self, hub: "RealtimeHub", conversation_id: str, listener: Listener,
                 loop: asyncio.AbstractEventLoop):
        self.hub = hub
        self.conversation_id = conversation_id
        self.closed = False
        self._listener = listener
        self._loop = loop
        self._queue: asyncio.Queue[MessageInserted] = asyncio.Queue()
        self._task = loop.create_task(self._pump())

    def deliver(self, evt: MessageInserted) -> None:
        # May run on a worker thread (commit inside run_in_threadpool)
        if self.closed:
            return
        try:
            self._loop.call_soon_threadsafe(self._queue.put_nowait, evt)
        except RuntimeError:
            logger.debug("dropping subscription for %s: loop closed", self.conversation_id)
            self.closed = True
            self.hub.discard(self)

    async def _pump(self) -> None:
        while True:
            evt = await self._queue.get()
            try:
                await self._listener(evt)
            except Exception:
                logger.exception("realtime listener failed conversation=%s", self.conversation_id)

    def cancel(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.hub.discard(self)
        self._task.cancel()


class RealtimeHub:
    def __init__(self):
        self._lock = threading.Lock()
        self._subs: dict[str, list[Subscription]] = {}

    def subscribe(self, conversation_id: str, listener: Listener) -> Subscription:
        sub = Subscription(self, conversation_id, listener, asyncio.get_running_loop())
        with self._lock:
            self._subs.setdefault(conversation_id, []).append(sub)
        return sub

    def discard(self, sub: Subscription) -> None:
        with self._lock:
            subs = self._subs.get(sub.conversation_id, [])
            if sub in subs:
                subs.remove(sub)
            if not subs:
                self._subs.pop(sub.conversation_id, None)

    def publish(self, evt: MessageInserted) -> None:
        with self._lock:
            subs = list(self._subs.get(evt.conversation_id, ()))
        for sub in subs:
            sub.deliver(evt)

    def subscriber_count(self, conversation_id: str) -> int:
        with self._lock:
            return len(self._subs.get(conversation_id, ()))


hub = RealtimeHub()


# -------------------------
# Commit hooks: every committed chat_messages insert is published,
# whichever session wrote it (API route, webhook, relay).
# -------------------------

@event.listens_for(Session, "after_flush")
def _collect_inserts(session, flush_context):
    pending = session.info.setdefault(_PENDING_KEY, [])
    for obj in session.new:
        if isinstance(obj, Message):
            pending.append(MessageInserted(obj.conversation_id, obj.id, obj.sender_type))


@event.listens_for(Session, "after_commit")
def _publish_inserts(session):
    for evt in session.info.pop(_PENDING_KEY, []):
        hub.publish(evt)


@event.listens_for(Session, "after_rollback")
def _drop_inserts(session):
    session.info.pop(_PENDING_KEY, None)
