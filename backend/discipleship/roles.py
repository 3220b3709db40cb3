"""Role names and the single authority on role checks.

Roles are hierarchical: a master can do everything a discipler can, and a
discipler everything a disciple can. Every gate in the code base, server
dependencies and the client-side access guard alike, goes through
`has_role`.
"""

from enum import Enum
from typing import Optional


class Role(str, Enum):
    DISCIPLE = "disciple"
    DISCIPLER = "discipler"
    MASTER = "master"


ROLE_RANK = {
    Role.DISCIPLE: 1,
    Role.DISCIPLER: 2,
    Role.MASTER: 3,
}


def parse_role(value) -> Optional[Role]:
    """Return the `Role` for `value` or `None` if it is not a known role."""
    if isinstance(value, Role):
        return value
    try:
        return Role(str(value).strip().lower())
    except ValueError:
        return None


def has_role(user_role, required_role) -> bool:
    """Return True when `user_role` meets the minimum `required_role`.

    A missing requirement is always met. An unknown or missing user role
    never meets a requirement.
    """
    if required_role is None:
        return True
    required = parse_role(required_role)
    if required is None:
        raise ValueError(f"unknown required role: {required_role!r}")
    actual = parse_role(user_role) if user_role is not None else None
    if actual is None:
        return False
    return ROLE_RANK[actual] >= ROLE_RANK[required]


def can_disciple(role) -> bool:
    """True if a profile with `role` may be referenced as someone's discipler."""
    return has_role(role, Role.DISCIPLER)
