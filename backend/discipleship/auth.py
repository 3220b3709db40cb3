"""Authentication helpers and FastAPI security dependencies.

`get_token_payload` validates the bearer token, `get_current_user`
returns the `AuthUser` behind it and `get_current_profile` the profile
linked to that user. `require_role` builds a dependency that applies the
shared role policy from `roles.has_role`.

Failures raise HTTPExceptions so the helpers can be used directly inside
route dependencies: 401 for a missing/invalid token, 403 when the caller
has no profile yet or its role is insufficient.
"""

from fastapi import Depends, HTTPException, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlmodel import Session

from . import models, repositories
from .database import get_session
from .roles import Role, has_role
from .services import AuthError, AuthService

bearer_scheme = HTTPBearer(auto_error=False)


def get_token_payload(
    credentials: HTTPAuthorizationCredentials = Security(bearer_scheme),
    db: Session = Depends(get_session),
) -> dict:
    """FastAPI dependency returning the decoded, non-revoked token payload."""
    if credentials is None:
        raise HTTPException(status_code=401, detail='not authenticated', headers={"WWW-Authenticate": "Bearer"})
    try:
        return AuthService(db).decode_token(credentials.credentials)
    except AuthError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message, headers={"WWW-Authenticate": "Bearer"})


def get_current_user(payload: dict = Depends(get_token_payload), db: Session = Depends(get_session)) -> models.AuthUser:
    """FastAPI dependency that returns the authenticated credential row."""
    user = repositories.AuthUserRepository(db).get(payload['sub'])
    if not user:
        raise HTTPException(status_code=401, detail='user not found')
    return user


def get_current_profile(user: models.AuthUser = Depends(get_current_user), db: Session = Depends(get_session)) -> models.Profile:
    """FastAPI dependency returning the caller's profile (403 while it does not exist)."""
    profile = repositories.ProfileRepository(db).maybe_by_user(user.id)
    if not profile:
        raise HTTPException(status_code=403, detail='profile not found')
    return profile


def require_role(required: Role):
    """Build a dependency admitting profiles whose role meets `required`."""

    def _dependency(profile: models.Profile = Depends(get_current_profile)) -> models.Profile:
        if not has_role(profile.role, required):
            raise HTTPException(status_code=403, detail=f'{required.value} role required')
        return profile

    return _dependency
