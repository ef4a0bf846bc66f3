import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Awaitable, Callable, Protocol

from mamacare.client.notices import Notice
from mamacare.core.errors import InvalidRequestError, MamaCareError
from mamacare.schemas.profile import ProfileOut
from mamacare.services.pregnancy import calculate_due_date

logger = logging.getLogger(__name__)


@dataclass
class AuthUser:
    id: str
    email: str
    attributes: dict = field(default_factory=dict)


@dataclass
class AuthSession:
    user: AuthUser
    access_token: str


AuthStateCallback = Callable[[str, AuthSession | None], None]


class IdentityGateway(Protocol):
    """The hosted identity service. Implementations raise IdentityError on failure."""

    async def sign_up(self, email: str, password: str, attributes: dict) -> AuthUser: ...

    async def sign_in(self, email: str, password: str) -> AuthSession: ...

    async def sign_out(self) -> None: ...

    async def reset_password(self, email: str) -> None: ...

    async def get_session(self) -> AuthSession | None: ...

    def on_auth_state_change(self, callback: AuthStateCallback) -> Callable[[], None]: ...


ProfileLoader = Callable[[str], Awaitable[ProfileOut | None]]


class AuthContext:
    """
    Owns the current user for the app.

    Lifecycle is explicit: ``await init()`` once, ``subscribe()`` for changes,
    ``teardown()`` when done. Every operation returns ``(result, error)`` and
    posts a notice; nothing raises to the caller.
    """

    def __init__(self, identity: IdentityGateway, profile_loader: ProfileLoader | None = None):
        self.identity = identity
        self.profile_loader = profile_loader
        self.session: AuthSession | None = None
        self.profile: ProfileOut | None = None
        self.loading = True
        self.notices: list[Notice] = []
        self._listeners: list[Callable[["AuthContext"], None]] = []
        self._unsubscribe_identity: Callable[[], None] | None = None

    @property
    def user(self) -> AuthUser | None:
        return self.session.user if self.session else None

    @property
    def user_id(self) -> str | None:
        return self.user.id if self.user else None

    @property
    def is_premium(self) -> bool:
        return bool(self.profile and self.profile.is_premium)

    @property
    def display_name(self) -> str | None:
        if self.profile and self.profile.full_name:
            return self.profile.full_name
        return self.user.attributes.get("full_name") if self.user else None

    # -------------------------
    # Lifecycle
    # -------------------------

    async def init(self) -> None:
        self.loading = True
        try:
            self.session = await self.identity.get_session()
        except MamaCareError as e:
            logger.warning("could not restore session: %s", e)
            self.session = None
        await self._refresh_profile()
        self._unsubscribe_identity = self.identity.on_auth_state_change(self._on_identity_change)
        self.loading = False
        self._emit()

    def subscribe(self, listener: Callable[["AuthContext"], None]) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def teardown(self) -> None:
        if self._unsubscribe_identity:
            self._unsubscribe_identity()
            self._unsubscribe_identity = None
        self._listeners.clear()

    def _on_identity_change(self, event: str, session: AuthSession | None) -> None:
        logger.debug("auth state change: %s", event)
        self.session = session
        if session is None:
            self.profile = None
        self._emit()

    def _emit(self) -> None:
        for listener in list(self._listeners):
            listener(self)

    def _notify(self, notice: Notice) -> None:
        self.notices.append(notice)

    async def _refresh_profile(self) -> None:
        if not self.user or not self.profile_loader:
            self.profile = None
            return
        try:
            self.profile = await self.profile_loader(self.user.id)
        except MamaCareError as e:
            logger.warning("profile fetch failed user=%s: %s", self.user.id, e)
            self.profile = None
            self._notify(Notice(
                "Could not load profile",
                "There was an issue fetching your profile data. Please try again later.",
                destructive=True,
            ))

    async def refresh_profile(self) -> ProfileOut | None:
        await self._refresh_profile()
        self._emit()
        return self.profile

    # -------------------------
    # Identity operations
    # -------------------------

    async def sign_up(
        self,
        email: str,
        password: str,
        confirm_password: str,
        full_name: str,
        lmp_date: date | None = None,
    ) -> tuple[AuthUser | None, MamaCareError | None]:
        # Validation never reaches the network
        missing = [name for name, value in (("email", email), ("password", password), ("full name", full_name))
                   if not (value or "").strip()]
        if missing:
            return self._fail("Sign up failed", InvalidRequestError(f"Please fill in: {', '.join(missing)}"))
        if password != confirm_password:
            return self._fail("Sign up failed", InvalidRequestError("Passwords do not match"))

        attributes: dict = {"full_name": full_name.strip()}
        if lmp_date:
            attributes["lmp_date"] = lmp_date.isoformat()
            attributes["due_date"] = calculate_due_date(lmp_date).isoformat()
        try:
            user = await self.identity.sign_up(email.strip(), password, attributes)
        except MamaCareError as e:
            return self._fail("Sign up failed", e)
        self._notify(Notice("Account created successfully!", "Please check your email to verify your account."))
        return user, None

    async def sign_in(self, email: str, password: str) -> tuple[AuthSession | None, MamaCareError | None]:
        if not (email or "").strip() or not password:
            return self._fail("Sign in failed", InvalidRequestError("Email and password are required"))
        try:
            session = await self.identity.sign_in(email.strip(), password)
        except MamaCareError as e:
            return self._fail("Sign in failed", e)
        self.session = session
        await self._refresh_profile()
        self._emit()
        self._notify(Notice("Welcome back!", "You have successfully signed in."))
        return session, None

    async def sign_out(self) -> tuple[bool, MamaCareError | None]:
        try:
            await self.identity.sign_out()
        except MamaCareError as e:
            self._notify(Notice("Sign out failed", e.message, destructive=True))
            return False, e
        self.session = None
        self.profile = None
        self._emit()
        self._notify(Notice("Signed out", "You have been successfully signed out."))
        return True, None

    async def reset_password(self, email: str) -> tuple[bool, MamaCareError | None]:
        if not (email or "").strip():
            _, error = self._fail("Password reset failed", InvalidRequestError("Email is required"))
            return False, error
        try:
            await self.identity.reset_password(email.strip())
        except MamaCareError as e:
            self._notify(Notice("Password reset failed", e.message, destructive=True))
            return False, e
        return True, None

    def _fail(self, title: str, error: MamaCareError) -> tuple[None, MamaCareError]:
        self._notify(Notice(title, error.message, destructive=True))
        return None, error
