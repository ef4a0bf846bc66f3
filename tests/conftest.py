import itertools
import json
import os
import tempfile
from types import SimpleNamespace

_tmp = tempfile.mkdtemp(prefix="mamacare-tests-")
os.environ.setdefault("DATABASE_URL", f"sqlite:///{_tmp}/test.db")
os.environ.setdefault("MEDIA_ROOT", os.path.join(_tmp, "media"))

import httpx
import pytest
from fastapi.testclient import TestClient

from mamacare.client.auth import AuthSession, AuthUser
from mamacare.core import config
from mamacare.core.errors import IdentityError
from mamacare.core.db import Base, SessionLocal, engine
from mamacare.main import app
from mamacare.services import llm
from mamacare.services.telegram import TelegramBot


@pytest.fixture(autouse=True)
def fresh_db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture(autouse=True)
def telegram_settings(monkeypatch):
    monkeypatch.setattr(config.settings, "TELEGRAM_BOT_TOKEN", "123:test-token")
    monkeypatch.setattr(config.settings, "TELEGRAM_GROUP_ID", "-100500")
    monkeypatch.setattr(config.settings, "TELEGRAM_BOT_USERNAME", "MamaCareBot")
    monkeypatch.setattr(config.settings, "TELEGRAM_WEBHOOK_SECRET", None)


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client():
    return TestClient(app)


# -------------------------
# Fake completion API
# -------------------------

class FakeCompletions:
    def __init__(self):
        self.replies: list = []
        self.calls: list[dict] = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        reply = self.replies.pop(0) if self.replies else "You're doing great."
        if isinstance(reply, Exception):
            raise reply
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=reply))])


@pytest.fixture
def fake_llm(monkeypatch):
    completions = FakeCompletions()
    fake_client = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    monkeypatch.setattr(llm, "get_client", lambda: fake_client)
    return completions


# -------------------------
# Fake Bot API
# -------------------------

class TelegramRecorder:
    def __init__(self):
        self.calls: list[tuple[str, dict]] = []
        self.fail_with: int | None = None
        self.raw_body: str | None = None
        self._ids = itertools.count(1000)

    def handler(self, request: httpx.Request) -> httpx.Response:
        method = request.url.path.rsplit("/", 1)[-1]
        payload = json.loads(request.content or b"{}")
        self.calls.append((method, payload))
        if self.fail_with:
            return httpx.Response(self.fail_with, json={"ok": False, "description": "Bad Request"})
        if self.raw_body is not None:
            return httpx.Response(200, text=self.raw_body, headers={"content-type": "text/html"})
        if method == "setWebhook":
            return httpx.Response(200, json={"ok": True, "result": True})
        return httpx.Response(
            200,
            json={
                "ok": True,
                "result": {
                    "message_id": next(self._ids),
                    "chat": {"id": payload.get("chat_id"), "type": "supergroup"},
                    "text": payload.get("text"),
                },
            },
        )

    def sent(self, method: str = "sendMessage") -> list[dict]:
        return [p for m, p in self.calls if m == method]

    def bot(self) -> TelegramBot:
        return TelegramBot("123:test-token", transport=httpx.MockTransport(self.handler))


@pytest.fixture
def telegram_api(monkeypatch):
    recorder = TelegramRecorder()
    from mamacare.api import nurse
    from mamacare.services import telegram

    monkeypatch.setattr(nurse, "get_bot", recorder.bot)
    monkeypatch.setattr(telegram, "get_bot", recorder.bot)
    return recorder


# -------------------------
# Fake identity provider
# -------------------------

class FakeIdentity:
    def __init__(self, session: AuthSession | None = None):
        self.session = session
        self.calls: list[tuple] = []
        self.fail_with: IdentityError | None = None
        self._callbacks: list = []

    def _maybe_fail(self):
        if self.fail_with:
            raise self.fail_with

    async def sign_up(self, email, password, attributes):
        self.calls.append(("sign_up", email, attributes))
        self._maybe_fail()
        return AuthUser(id=f"user-{email.split('@')[0]}", email=email, attributes=attributes)

    async def sign_in(self, email, password):
        self.calls.append(("sign_in", email))
        self._maybe_fail()
        self.session = AuthSession(AuthUser(id="user-1", email=email), access_token="token-1")
        return self.session

    async def sign_out(self):
        self.calls.append(("sign_out",))
        self._maybe_fail()
        self.session = None

    async def reset_password(self, email):
        self.calls.append(("reset_password", email))
        self._maybe_fail()

    async def get_session(self):
        return self.session

    def on_auth_state_change(self, callback):
        self._callbacks.append(callback)
        return lambda: self._callbacks.remove(callback)

    def emit(self, event: str, session: AuthSession | None):
        self.session = session
        for cb in list(self._callbacks):
            cb(event, session)


@pytest.fixture
def signed_in_identity():
    return FakeIdentity(AuthSession(AuthUser(id="user-1", email="ada@example.com", attributes={"full_name": "Ada"}), "token-1"))


@pytest.fixture
def signed_out_identity():
    return FakeIdentity()
