"""Process-wide "who is signed in" state for client applications.

`SessionContext` mirrors the backend client's auth session into an
immutable `AuthSnapshot` and keeps the matching profile next to it. The
snapshot is replaced wholesale on every change, so a reader always sees a
consistent pair of identity and profile.

Profile lookups triggered by an auth event are posted to the next turn of
the event loop: the backend client delivers events from inside its own
calls and does not accept nested calls at that point.

Credential operations never raise; they return an `AuthResult` whose
`error` is a message fit to show the user.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Union

from .client import AuthApiError, AuthEvent, BackendClient, Subscription
from .config import settings
from .schemas import ProfileOut, SessionOut, UserOut

logger = logging.getLogger("discipleship.session")

SIGN_IN_INVALID = "Incorrect email or password."
SIGN_IN_UNCONFIRMED = "Email not confirmed. Check your inbox."
SIGN_IN_FAILED = "Could not sign in. Please try again."
SIGN_UP_DUPLICATE = "This email is already registered."
SIGN_UP_WEAK_PASSWORD = "Password must be at least {n} characters."
SIGN_UP_FAILED = "Could not create the account. Please try again."
RESET_FAILED = "Could not send the recovery email."
UNEXPECTED = "Unexpected error. Please try again."


@dataclass(frozen=True)
class Unauthenticated:
    pass


@dataclass(frozen=True)
class AuthenticatedNoProfile:
    session: SessionOut

    @property
    def user(self) -> UserOut:
        return self.session.user


@dataclass(frozen=True)
class AuthenticatedWithProfile:
    session: SessionOut
    profile: ProfileOut

    @property
    def user(self) -> UserOut:
        return self.session.user


AuthState = Union[Unauthenticated, AuthenticatedNoProfile, AuthenticatedWithProfile]


@dataclass(frozen=True)
class AuthSnapshot:
    """What the rest of the application reads.

    `loading` covers the initial session restore; `profile_loading` is set
    while the profile of a freshly signed-in user is being looked up.
    """
    loading: bool
    state: AuthState
    profile_loading: bool = False

    @property
    def user(self) -> Optional[UserOut]:
        return getattr(self.state, "user", None)

    @property
    def session(self) -> Optional[SessionOut]:
        return getattr(self.state, "session", None)

    @property
    def profile(self) -> Optional[ProfileOut]:
        return getattr(self.state, "profile", None)


@dataclass(frozen=True)
class AuthResult:
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


SnapshotListener = Callable[[AuthSnapshot], None]

LOADING = AuthSnapshot(loading=True, state=Unauthenticated())


def classify_sign_in_error(message: str) -> str:
    if "Invalid login credentials" in message:
        return SIGN_IN_INVALID
    if "Email not confirmed" in message:
        return SIGN_IN_UNCONFIRMED
    return SIGN_IN_FAILED


def classify_sign_up_error(message: str) -> str:
    if "User already registered" in message:
        return SIGN_UP_DUPLICATE
    if "Password should be at least" in message:
        return SIGN_UP_WEAK_PASSWORD.format(n=settings.MIN_PASSWORD_LENGTH)
    return SIGN_UP_FAILED


class SessionContext:
    """Owns the auth snapshot for one application instance.

    Create it at the composition root, `await start()` (or use
    `async with`) and hand it to the views that need it.
    """

    def __init__(self, client: BackendClient, *, site_url: Optional[str] = None):
        self._client = client
        self._site_url = (site_url or settings.SITE_URL).rstrip("/")
        self._snapshot: AuthSnapshot = LOADING
        self._listeners: List[SnapshotListener] = []
        self._subscription: Optional[Subscription] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._profile_task: Optional[asyncio.Task] = None
        self._generation = 0

    @property
    def snapshot(self) -> AuthSnapshot:
        return self._snapshot

    def subscribe(self, listener: SnapshotListener) -> Callable[[], None]:
        """Call `listener(snapshot)` after every change; returns an unsubscribe function."""
        self._listeners.append(listener)

        def _unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    async def start(self) -> None:
        """Subscribe to auth changes and load any existing session."""
        if self._subscription is not None:
            return
        self._loop = asyncio.get_running_loop()
        self._subscription = self._client.auth.on_auth_state_change(self._on_auth_change)
        try:
            session = await self._client.auth.get_session()
        except Exception:
            logger.warning("could not restore session", exc_info=True)
            self._client.auth.discard_session()
            session = None
        # an event may have arrived while get_session was in flight
        if self._snapshot.loading:
            self._apply_session(session)

    async def stop(self) -> None:
        self._generation += 1
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
        await self._cancel_profile_fetch()

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, *exc_info):
        await self.stop()

    async def sign_in(self, email: str, password: str) -> AuthResult:
        try:
            await self._client.auth.sign_in_with_password(email, password)
        except AuthApiError as e:
            logger.info("sign-in rejected: %s", e.message)
            return AuthResult(error=classify_sign_in_error(e.message))
        except Exception:
            logger.warning("sign-in failed", exc_info=True)
            return AuthResult(error=UNEXPECTED)
        return AuthResult()

    async def sign_up(self, email: str, password: str, name: str) -> AuthResult:
        try:
            await self._client.auth.sign_up(
                email, password, redirect_to=f"{self._site_url}/", data={"name": name}
            )
        except AuthApiError as e:
            logger.info("sign-up rejected: %s", e.message)
            return AuthResult(error=classify_sign_up_error(e.message))
        except Exception:
            logger.warning("sign-up failed", exc_info=True)
            return AuthResult(error=UNEXPECTED)
        return AuthResult()

    async def sign_out(self) -> None:
        try:
            await self._client.auth.sign_out()
        except Exception:
            logger.warning("sign-out failed on the backend; local session cleared", exc_info=True)

    async def reset_password(self, email: str) -> AuthResult:
        try:
            await self._client.auth.reset_password_for_email(email, redirect_to=f"{self._site_url}/reset-password")
        except AuthApiError as e:
            logger.info("password reset rejected: %s", e.message)
            return AuthResult(error=RESET_FAILED)
        except Exception:
            logger.warning("password reset failed", exc_info=True)
            return AuthResult(error=UNEXPECTED)
        return AuthResult()

    async def refresh_profile(self) -> Optional[ProfileOut]:
        """Re-read the current user's profile, e.g. after editing it."""
        user = self._snapshot.user
        if user is None:
            return None
        self._generation += 1
        await self._load_profile(self._generation, user.id)
        return self._snapshot.profile

    async def settled(self) -> AuthSnapshot:
        """Wait for a pending profile lookup, if any, and return the snapshot."""
        # yield once so a lookup posted by the latest event gets scheduled
        await asyncio.sleep(0)
        task = self._profile_task
        if task is not None and not task.done():
            await asyncio.wait({task})
        return self._snapshot

    def _on_auth_change(self, event: AuthEvent, session: Optional[SessionOut]) -> None:
        logger.info("auth event %s", event.value)
        self._apply_session(session)

    def _apply_session(self, session: Optional[SessionOut]) -> None:
        self._generation += 1
        if session is None:
            if self._profile_task is not None:
                self._profile_task.cancel()
                self._profile_task = None
            self._publish(AuthSnapshot(loading=False, state=Unauthenticated()))
            return
        current = self._snapshot.state
        if isinstance(current, AuthenticatedWithProfile) and current.user.id == session.user.id:
            snapshot = AuthSnapshot(loading=False, state=AuthenticatedWithProfile(session=session, profile=current.profile))
        else:
            snapshot = AuthSnapshot(loading=False, state=AuthenticatedNoProfile(session=session), profile_loading=True)
        self._publish(snapshot)
        self._loop.call_soon(self._schedule_profile_fetch, self._generation, session.user.id)

    def _schedule_profile_fetch(self, generation: int, user_id: str) -> None:
        if generation != self._generation:
            return
        if self._profile_task is not None and not self._profile_task.done():
            self._profile_task.cancel()
        self._profile_task = self._loop.create_task(self._load_profile(generation, user_id))

    async def _load_profile(self, generation: int, user_id: str) -> None:
        try:
            profile = await self._client.profiles.maybe_single_by_user(user_id)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.warning("profile lookup failed for %s; continuing without profile", user_id, exc_info=True)
            profile = None
        if generation != self._generation:
            return
        session = self._snapshot.session
        if session is None or session.user.id != user_id:
            return
        if profile is None:
            state = AuthenticatedNoProfile(session=session)
        else:
            state = AuthenticatedWithProfile(session=session, profile=profile)
        self._publish(AuthSnapshot(loading=False, state=state))

    async def _cancel_profile_fetch(self) -> None:
        task, self._profile_task = self._profile_task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    def _publish(self, snapshot: AuthSnapshot) -> None:
        self._snapshot = snapshot
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("session listener failed")
