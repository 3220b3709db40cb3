"""Role-gated navigation for client applications.

`evaluate_access` decides what a protected view should do for a given
`AuthSnapshot`:

    LOADING                     -> render a placeholder, no redirect yet
    UNAUTHENTICATED             -> redirect to login, remembering the location
    AUTHENTICATED_UNAUTHORIZED  -> redirect to the landing page
    AUTHENTICATED_AUTHORIZED    -> render the view unchanged

`Navigator` is a small router built on it: it keeps the current
location, re-evaluates the guard on every navigation and on every session
change, and follows the redirects the guard asks for.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional
from urllib.parse import parse_qs, urlencode, urlsplit

from .roles import Role, has_role
from .session_context import AuthSnapshot, SessionContext

LOGIN_PATH = "/login"
LANDING_PATH = "/dashboard"
MAX_REDIRECTS = 5


class GuardState(str, Enum):
    LOADING = "loading"
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED_UNAUTHORIZED = "authenticated_unauthorized"
    AUTHENTICATED_AUTHORIZED = "authenticated_authorized"


class Outcome(str, Enum):
    PLACEHOLDER = "placeholder"
    REDIRECT_LOGIN = "redirect_login"
    REDIRECT_FORBIDDEN = "redirect_forbidden"
    RENDER = "render"


@dataclass(frozen=True)
class GuardDecision:
    state: GuardState
    outcome: Outcome
    redirect_to: Optional[str] = None


def login_redirect(location: str, login_path: str = LOGIN_PATH) -> str:
    return f"{login_path}?{urlencode({'next': location})}"


def evaluate_access(snapshot: AuthSnapshot, required_role: Optional[Role] = None, location: str = "/", *,
                    login_path: str = LOGIN_PATH, landing_path: str = LANDING_PATH) -> GuardDecision:
    """Evaluate the guard for one view.

    A required role is never met while the profile is missing, even for
    an authenticated user. While that profile is still being looked up the
    view waits on a placeholder instead of redirecting.
    """
    if snapshot.loading:
        return GuardDecision(GuardState.LOADING, Outcome.PLACEHOLDER)
    if snapshot.user is None:
        return GuardDecision(GuardState.UNAUTHENTICATED, Outcome.REDIRECT_LOGIN, login_redirect(location, login_path))
    if required_role is not None:
        profile = snapshot.profile
        if profile is None and snapshot.profile_loading:
            return GuardDecision(GuardState.LOADING, Outcome.PLACEHOLDER)
        if profile is None or not has_role(profile.role, required_role):
            return GuardDecision(GuardState.AUTHENTICATED_UNAUTHORIZED, Outcome.REDIRECT_FORBIDDEN, landing_path)
    return GuardDecision(GuardState.AUTHENTICATED_AUTHORIZED, Outcome.RENDER)


View = Callable[[AuthSnapshot], Any]


@dataclass(frozen=True)
class Route:
    """A view bound to a path. Public routes skip the guard entirely."""
    path: str
    view: View
    required_role: Optional[Role] = None
    public: bool = False


@dataclass(frozen=True)
class Rendered:
    location: str
    decision: GuardDecision
    content: Any = None


class RedirectLoopError(RuntimeError):
    pass


class Navigator:
    def __init__(self, context: SessionContext, routes: Iterable[Route], *, login_path: str = LOGIN_PATH,
                 landing_path: str = LANDING_PATH, not_found: Optional[View] = None):
        self._context = context
        self._routes: Dict[str, Route] = {r.path: r for r in routes}
        self._login_path = login_path
        self._landing_path = landing_path
        self._not_found = not_found
        self._history: List[str] = []
        self._current: Optional[Rendered] = None
        self._unsubscribe: Optional[Callable[[], None]] = None

    @property
    def location(self) -> Optional[str]:
        return self._current.location if self._current else None

    @property
    def current(self) -> Optional[Rendered]:
        return self._current

    @property
    def history(self) -> List[str]:
        return list(self._history)

    def attach(self) -> None:
        """Re-evaluate the current location whenever the session snapshot changes."""
        if self._unsubscribe is None:
            self._unsubscribe = self._context.subscribe(self._on_snapshot)

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def navigate(self, location: str, *, replace: bool = False) -> Rendered:
        """Go to `location`, following guard redirects, and return what is shown."""
        for _ in range(MAX_REDIRECTS + 1):
            rendered = self._resolve(location)
            if replace and self._history:
                self._history[-1] = rendered.location
            else:
                self._history.append(rendered.location)
            self._current = rendered
            if rendered.decision.redirect_to is None:
                return rendered
            location, replace = rendered.decision.redirect_to, True
        raise RedirectLoopError(f"too many redirects ending at {location}")

    def return_target(self) -> str:
        """Where to go after signing in: the remembered location or the landing page."""
        if self._current is None:
            return self._landing_path
        query = parse_qs(urlsplit(self._current.location).query)
        target = (query.get("next") or [""])[0]
        # only same-app paths; never bounce back to the login page itself
        if not target.startswith("/") or target.startswith("//") or urlsplit(target).path == self._login_path:
            return self._landing_path
        return target

    def _resolve(self, location: str) -> Rendered:
        snapshot = self._context.snapshot
        route = self._routes.get(urlsplit(location).path)
        if route is None:
            content = self._not_found(snapshot) if self._not_found else None
            return Rendered(location, GuardDecision(GuardState.AUTHENTICATED_AUTHORIZED, Outcome.RENDER), content)
        if route.public:
            return Rendered(location, GuardDecision(GuardState.AUTHENTICATED_AUTHORIZED, Outcome.RENDER),
                            route.view(snapshot))
        decision = evaluate_access(snapshot, route.required_role, location,
                                   login_path=self._login_path, landing_path=self._landing_path)
        content = route.view(snapshot) if decision.outcome is Outcome.RENDER else None
        return Rendered(location, decision, content)

    def _on_snapshot(self, snapshot: AuthSnapshot) -> None:
        if self._current is None:
            return
        path = urlsplit(self._current.location).path
        if path == self._login_path and snapshot.user is not None and not snapshot.loading:
            self.navigate(self.return_target(), replace=True)
            return
        self.navigate(self._current.location, replace=True)
