import asyncio

import pytest

from mamacare.core.db import SessionLocal
from mamacare.models import Message
from mamacare.services import chat_store
from mamacare.services.realtime import MessageInserted, RealtimeHub, hub


@pytest.mark.asyncio
async def test_committed_inserts_reach_only_that_conversation():
    with SessionLocal() as db:
        watched = chat_store.create_conversation(db, "user-1").id
        other = chat_store.create_conversation(db, "user-1").id

    received = []
    done = asyncio.Event()

    async def listener(evt):
        received.append(evt)
        done.set()

    sub = hub.subscribe(watched, listener)
    try:
        with SessionLocal() as db:
            chat_store.add_message(db, other, "user", "not for you")
            chat_store.add_message(db, watched, "nurse", "for you")

        await asyncio.wait_for(done.wait(), timeout=2)
        assert [(e.conversation_id, e.sender_type) for e in received] == [(watched, "nurse")]
    finally:
        sub.cancel()
    assert hub.subscriber_count(watched) == 0


@pytest.mark.asyncio
async def test_rolled_back_inserts_are_not_published():
    with SessionLocal() as db:
        conv_id = chat_store.create_conversation(db, "user-1").id

    received = []

    async def listener(evt):
        received.append(evt)

    sub = hub.subscribe(conv_id, listener)
    try:
        with SessionLocal() as db:
            db.add(Message(conversation_id=conv_id, sender_type="user", content="draft"))
            db.flush()
            db.rollback()

        # Deliveries from worker threads are thread-safe; give the loop a few turns
        await asyncio.sleep(0.05)
        assert received == []
    finally:
        sub.cancel()


@pytest.mark.asyncio
async def test_delivery_from_worker_thread():
    local_hub = RealtimeHub()
    got = asyncio.Event()

    async def listener(evt):
        got.set()

    sub = local_hub.subscribe("c-1", listener)

    await asyncio.to_thread(local_hub.publish, MessageInserted("c-1", 1, "ai"))
    await asyncio.wait_for(got.wait(), timeout=2)
    sub.cancel()
    assert local_hub.subscriber_count("c-1") == 0
