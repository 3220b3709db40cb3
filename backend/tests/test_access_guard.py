import pytest

from discipleship.access_guard import (
    GuardState,
    Navigator,
    Outcome,
    RedirectLoopError,
    Route,
    evaluate_access,
    login_redirect,
)
from discipleship.roles import Role
from discipleship.schemas import ProfileOut, SessionOut, UserOut
from discipleship.session_context import (
    LOADING,
    AuthenticatedNoProfile,
    AuthenticatedWithProfile,
    AuthSnapshot,
    Unauthenticated,
)

SESSION = SessionOut(access_token='tok', expires_at=0, user=UserOut(id='u1', email='ana@example.org'))
SIGNED_OUT = AuthSnapshot(loading=False, state=Unauthenticated())


def signed_in(role=None, profile_loading=False):
    if role is None:
        return AuthSnapshot(loading=False, state=AuthenticatedNoProfile(session=SESSION),
                            profile_loading=profile_loading)
    profile = ProfileOut(id='p1', user_id='u1', name='Ana', role=role)
    return AuthSnapshot(loading=False, state=AuthenticatedWithProfile(session=SESSION, profile=profile))


class FakeContext:
    def __init__(self, snapshot):
        self.snapshot = snapshot
        self._listeners = []

    def subscribe(self, listener):
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    def publish(self, snapshot):
        self.snapshot = snapshot
        for listener in list(self._listeners):
            listener(snapshot)


ROUTES = [
    Route('/login', lambda s: 'login form', public=True),
    Route('/dashboard', lambda s: f'dashboard for {s.user.email}'),
    Route('/disciples', lambda s: 'my disciples', required_role=Role.DISCIPLER),
    Route('/admin', lambda s: 'admin panel', required_role=Role.MASTER),
]


def test_loading_shows_placeholder_without_redirect():
    decision = evaluate_access(LOADING, Role.MASTER, '/admin')
    assert decision.state is GuardState.LOADING
    assert decision.outcome is Outcome.PLACEHOLDER
    assert decision.redirect_to is None


def test_unauthenticated_redirects_to_login_with_return_location():
    decision = evaluate_access(SIGNED_OUT, None, '/disciples?page=2')
    assert decision.state is GuardState.UNAUTHENTICATED
    assert decision.outcome is Outcome.REDIRECT_LOGIN
    assert decision.redirect_to == '/login?next=%2Fdisciples%3Fpage%3D2'
    assert decision.redirect_to == login_redirect('/disciples?page=2')


def test_authenticated_without_requirement_renders_even_without_profile():
    decision = evaluate_access(signed_in(), None, '/dashboard')
    assert decision.state is GuardState.AUTHENTICATED_AUTHORIZED
    assert decision.outcome is Outcome.RENDER


def test_missing_profile_fails_any_required_role():
    decision = evaluate_access(signed_in(), Role.DISCIPLE, '/devotional')
    assert decision.state is GuardState.AUTHENTICATED_UNAUTHORIZED
    assert decision.redirect_to == '/dashboard'


def test_profile_still_loading_waits_instead_of_redirecting():
    decision = evaluate_access(signed_in(profile_loading=True), Role.MASTER, '/admin')
    assert decision.outcome is Outcome.PLACEHOLDER
    assert decision.redirect_to is None


@pytest.mark.parametrize('role,required,allowed', [
    (Role.DISCIPLE, Role.DISCIPLE, True),
    (Role.DISCIPLE, Role.DISCIPLER, False),
    (Role.DISCIPLE, Role.MASTER, False),
    (Role.DISCIPLER, Role.DISCIPLER, True),
    (Role.DISCIPLER, Role.MASTER, False),
    (Role.MASTER, Role.DISCIPLER, True),
    (Role.MASTER, Role.MASTER, True),
])
def test_role_gate(role, required, allowed):
    decision = evaluate_access(signed_in(role), required, '/x')
    if allowed:
        assert decision.outcome is Outcome.RENDER
    else:
        assert decision.outcome is Outcome.REDIRECT_FORBIDDEN
        assert decision.redirect_to == '/dashboard'


def test_custom_paths():
    decision = evaluate_access(SIGNED_OUT, None, '/a', login_path='/sign-in')
    assert decision.redirect_to == '/sign-in?next=%2Fa'
    decision = evaluate_access(signed_in(Role.DISCIPLE), Role.MASTER, '/a', landing_path='/home')
    assert decision.redirect_to == '/home'


def test_navigator_waits_then_sends_anonymous_user_to_login_and_back():
    ctx = FakeContext(LOADING)
    nav = Navigator(ctx, ROUTES)
    nav.attach()
    shown = nav.navigate('/admin')
    assert shown.decision.outcome is Outcome.PLACEHOLDER
    assert nav.location == '/admin'

    ctx.publish(SIGNED_OUT)
    assert nav.location == '/login?next=%2Fadmin'
    assert nav.current.content == 'login form'

    ctx.publish(signed_in(Role.MASTER))
    assert nav.location == '/admin'
    assert nav.current.content == 'admin panel'
    # redirects replace history entries instead of stacking them
    assert nav.history == ['/admin']


def test_navigator_sends_underprivileged_user_to_landing():
    nav = Navigator(FakeContext(signed_in(Role.DISCIPLE)), ROUTES)
    shown = nav.navigate('/disciples')
    assert shown.location == '/dashboard'
    assert shown.content == 'dashboard for ana@example.org'


def test_navigator_holds_deep_link_while_profile_loads():
    ctx = FakeContext(signed_in(profile_loading=True))
    nav = Navigator(ctx, ROUTES)
    nav.attach()
    assert nav.navigate('/disciples').decision.outcome is Outcome.PLACEHOLDER
    ctx.publish(signed_in(Role.DISCIPLER))
    assert nav.location == '/disciples'
    assert nav.current.content == 'my disciples'


def test_navigator_leaves_protected_view_on_sign_out():
    ctx = FakeContext(signed_in(Role.DISCIPLE))
    nav = Navigator(ctx, ROUTES)
    nav.attach()
    nav.navigate('/dashboard')
    ctx.publish(SIGNED_OUT)
    assert nav.location == '/login?next=%2Fdashboard'


def test_detached_navigator_ignores_changes():
    ctx = FakeContext(signed_in(Role.DISCIPLE))
    nav = Navigator(ctx, ROUTES)
    nav.attach()
    nav.navigate('/dashboard')
    nav.detach()
    ctx.publish(SIGNED_OUT)
    assert nav.location == '/dashboard'


@pytest.mark.parametrize('location,target', [
    ('/login?next=%2Fdisciples', '/disciples'),
    ('/login', '/dashboard'),
    ('/login?next=https%3A%2F%2Fevil.example', '/dashboard'),
    ('/login?next=%2F%2Fevil.example', '/dashboard'),
    ('/login?next=%2Flogin%3Fnext%3D%252Fadmin', '/dashboard'),
])
def test_return_target_only_accepts_same_app_paths(location, target):
    nav = Navigator(FakeContext(SIGNED_OUT), ROUTES)
    nav.navigate(location)
    assert nav.return_target() == target


def test_unknown_path_uses_not_found_view():
    nav = Navigator(FakeContext(SIGNED_OUT), ROUTES, not_found=lambda s: '404')
    shown = nav.navigate('/nowhere')
    assert shown.content == '404'


def test_self_redirecting_landing_page_is_reported():
    routes = [Route('/dashboard', lambda s: 'x', required_role=Role.MASTER)]
    nav = Navigator(FakeContext(signed_in(Role.DISCIPLE)), routes)
    with pytest.raises(RedirectLoopError):
        nav.navigate('/dashboard')
