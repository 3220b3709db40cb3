"""Async HTTP client for the discipleship backend.

The client keeps the current auth session in memory and notifies
registered listeners whenever it changes (`SIGNED_IN`, `SIGNED_OUT`).
Listeners are invoked synchronously, from inside the client call that
caused the change; while they run the client refuses further calls with
`ReentrantCallError`, so listeners must schedule any follow-up request
for a later event-loop turn.

Lifecycle:
    - Create one `BackendClient` per application (or pass a shared
      `httpx.AsyncClient`, e.g. one bound to an ASGI transport in tests)
    - Call `aclose()` (or use `async with`) at shutdown
"""

import logging
import os
from enum import Enum
from typing import Callable, List, Optional

import httpx

from .schemas import ProfileOut, SessionOut, SignUpOut

logger = logging.getLogger("discipleship.client")


class BackendError(Exception):
    """A non-2xx answer or transport failure talking to the backend."""

    def __init__(self, status: int, message: str):
        super().__init__(message)
        self.status = status
        self.message = message


class AuthApiError(BackendError):
    """The auth endpoints rejected the request (bad credentials, duplicate user, ...)."""


class ReentrantCallError(RuntimeError):
    """A client call was made from inside an auth-event listener."""


class AuthEvent(str, Enum):
    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"


AuthListener = Callable[[AuthEvent, Optional[SessionOut]], None]


class Subscription:
    def __init__(self, listeners: List[AuthListener], listener: AuthListener):
        self._listeners = listeners
        self._listener = listener

    def unsubscribe(self) -> None:
        if self._listener in self._listeners:
            self._listeners.remove(self._listener)


class AuthClient:
    """Credential operations plus the auth-change notification channel."""

    def __init__(self, backend: "BackendClient"):
        self._backend = backend
        self._session: Optional[SessionOut] = None
        self._listeners: List[AuthListener] = []
        self._dispatching = False

    @property
    def access_token(self) -> Optional[str]:
        return self._session.access_token if self._session else None

    def discard_session(self) -> None:
        """Forget the local session without calling the backend or notifying listeners."""
        self._session = None

    def on_auth_state_change(self, listener: AuthListener) -> Subscription:
        """Register `listener(event, session)`; returns a handle to unsubscribe."""
        self._listeners.append(listener)
        return Subscription(self._listeners, listener)

    async def get_session(self) -> Optional[SessionOut]:
        """Return the stored session, validated against the backend.

        A session the backend no longer accepts (expired or signed out
        elsewhere) is dropped and `None` is returned.
        """
        self.ensure_not_dispatching()
        if self._session is None:
            return None
        try:
            await self._backend.request("GET", "/auth/user")
        except AuthApiError as e:
            if e.status != 401:
                raise
            logger.info("stored session rejected by backend; dropping it")
            self._session = None
            return None
        return self._session

    async def sign_in_with_password(self, email: str, password: str) -> SessionOut:
        self.ensure_not_dispatching()
        data = await self._backend.request(
            "POST", "/auth/token", json={"email": email, "password": password}, authenticated=False
        )
        session = SessionOut.model_validate(data)
        self._session = session
        self._emit(AuthEvent.SIGNED_IN, session)
        return session

    async def sign_up(self, email: str, password: str, *, redirect_to: Optional[str] = None,
                      data: Optional[dict] = None) -> SignUpOut:
        """Register a credential; signs in immediately when no confirmation is required."""
        self.ensure_not_dispatching()
        payload = {
            "email": email,
            "password": password,
            "name": (data or {}).get("name") or email.split("@")[0],
            "redirect_to": redirect_to,
        }
        result = SignUpOut.model_validate(
            await self._backend.request("POST", "/auth/signup", json=payload, authenticated=False)
        )
        if result.session is not None:
            self._session = result.session
            self._emit(AuthEvent.SIGNED_IN, result.session)
        return result

    async def sign_out(self) -> None:
        """Revoke the session on the backend and forget it locally.

        The local session is cleared and `SIGNED_OUT` emitted even when the
        backend call fails; the failure is then re-raised.
        """
        self.ensure_not_dispatching()
        had_session = self._session is not None
        try:
            if had_session:
                await self._backend.request("POST", "/auth/logout")
        finally:
            self._session = None
            if had_session:
                self._emit(AuthEvent.SIGNED_OUT, None)

    async def reset_password_for_email(self, email: str, *, redirect_to: Optional[str] = None) -> None:
        self.ensure_not_dispatching()
        await self._backend.request(
            "POST", "/auth/recover", json={"email": email, "redirect_to": redirect_to}, authenticated=False
        )

    def ensure_not_dispatching(self) -> None:
        if self._dispatching:
            raise ReentrantCallError("backend called from inside an auth event listener")

    def _emit(self, event: AuthEvent, session: Optional[SessionOut]) -> None:
        self._dispatching = True
        try:
            for listener in list(self._listeners):
                try:
                    listener(event, session)
                except Exception:
                    logger.exception("auth listener failed on %s", event.value)
        finally:
            self._dispatching = False


class ProfilesTable:
    def __init__(self, backend: "BackendClient"):
        self._backend = backend

    async def maybe_single_by_user(self, user_id: str) -> Optional[ProfileOut]:
        """Zero-or-one lookup of the profile linked to `user_id`."""
        data = await self._backend.request("GET", f"/profiles/by-user/{user_id}")
        return ProfileOut.model_validate(data) if data else None


class BackendClient:
    """Entry point bundling the `auth` and `profiles` interfaces."""

    def __init__(self, base_url: Optional[str] = None, *, http: Optional[httpx.AsyncClient] = None,
                 timeout: float = 10.0):
        self.base_url = (base_url or os.getenv("DISCIPLESHIP_API_URL", "http://localhost:8000")).rstrip("/")
        self._owns_http = http is None
        self._http = http or httpx.AsyncClient(base_url=self.base_url, timeout=timeout)
        self.auth = AuthClient(self)
        self.profiles = ProfilesTable(self)

    async def request(self, method: str, path: str, *, json: Optional[dict] = None,
                      authenticated: bool = True):
        """Send one request and return the decoded JSON body (or `None`).

        Raises `AuthApiError` for rejected `/auth` calls, `BackendError`
        for every other failure.
        """
        self.auth.ensure_not_dispatching()
        headers = {}
        token = self.auth.access_token
        if authenticated and token:
            headers["Authorization"] = f"Bearer {token}"
        try:
            response = await self._http.request(method, path, json=json, headers=headers)
        except httpx.HTTPError as e:
            raise BackendError(0, f"request failed: {e}") from e
        if response.status_code >= 400:
            message = _error_detail(response)
            if path.startswith("/auth"):
                raise AuthApiError(response.status_code, message)
            raise BackendError(response.status_code, message)
        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()


def _error_detail(response: httpx.Response) -> str:
    try:
        detail = response.json().get("detail")
    except (ValueError, AttributeError):
        detail = None
    if isinstance(detail, str):
        return detail
    return response.text or f"HTTP {response.status_code}"
