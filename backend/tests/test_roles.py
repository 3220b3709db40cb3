import pytest

from discipleship.roles import Role, can_disciple, has_role, parse_role


@pytest.mark.parametrize('user_role,required,expected', [
    ('disciple', 'disciple', True),
    ('disciple', 'discipler', False),
    ('disciple', 'master', False),
    ('discipler', 'disciple', True),
    ('discipler', 'discipler', True),
    ('discipler', 'master', False),
    ('master', 'disciple', True),
    ('master', 'discipler', True),
    ('master', 'master', True),
])
def test_role_hierarchy(user_role, required, expected):
    assert has_role(user_role, required) is expected
    assert has_role(Role(user_role), Role(required)) is expected


def test_no_requirement_is_always_met():
    assert has_role('disciple', None)
    assert has_role(None, None)


def test_missing_or_unknown_user_role_never_passes():
    assert not has_role(None, Role.DISCIPLE)
    assert not has_role('admin', Role.DISCIPLE)
    assert not has_role('', Role.DISCIPLE)


def test_unknown_required_role_is_a_programming_error():
    with pytest.raises(ValueError):
        has_role('master', 'pastor')


def test_parse_role_normalises_case_and_whitespace():
    assert parse_role(' Discipler ') is Role.DISCIPLER
    assert parse_role(Role.MASTER) is Role.MASTER
    assert parse_role('elder') is None


def test_can_disciple():
    assert not can_disciple('disciple')
    assert can_disciple('discipler')
    assert can_disciple('master')
