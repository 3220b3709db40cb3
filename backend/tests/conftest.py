from pathlib import Path
from dataclasses import dataclass
from urllib.parse import parse_qs, urlsplit
import os
import tempfile
import uuid

# settings are read once at import time, so point them at scratch locations first
_TMP = Path(tempfile.mkdtemp(prefix="discipleship-tests-"))
os.environ["DATABASE_URL"] = f"sqlite:///{_TMP / 'test.db'}"
os.environ["MEDIA_ROOT"] = str(_TMP / "media")
os.environ["REQUIRE_EMAIL_CONFIRMATION"] = "true"
os.environ["MASTER_EMAILS"] = "founder@example.org"
os.environ["MAIL_BACKEND"] = "memory"
os.environ["PUBLIC_API_URL"] = "http://api.test"
os.environ["REDIRECT_ALLOW_LIST"] = "http://app.test"
os.environ.setdefault("LOGIN_RATE_LIMIT_PER_MIN", "1000")

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session

from discipleship import repositories
from discipleship.database import engine
from discipleship.main import app
from discipleship.roles import Role
from discipleship.utils.mailer import outbox

PASSWORD = "secret123"


def link_token(link: str) -> str:
    """Extract the `token` query parameter from an emailed link."""
    return parse_qs(urlsplit(link).query)["token"][0]


def unique_email(prefix: str = "member") -> str:
    return f"{prefix}-{uuid.uuid4().hex[:10]}@example.org"


def set_role(user_id: str, role: Role) -> None:
    with Session(engine) as db:
        repo = repositories.ProfileRepository(db)
        profile = repo.maybe_by_user(user_id)
        profile.role = role.value
        repo.save(profile)


@dataclass
class Account:
    email: str
    user_id: str
    token: str
    profile: dict

    @property
    def headers(self) -> dict:
        return {"Authorization": f"Bearer {self.token}"}


@pytest.fixture(scope="session")
def client():
    return TestClient(app)


@pytest.fixture
def make_account(client):
    """Factory for confirmed, signed-in accounts with a given role."""

    def _make(role: Role = Role.DISCIPLE, name: str = "Member") -> Account:
        email = unique_email(role.value)
        r = client.post('/auth/signup', json={'email': email, 'password': PASSWORD, 'name': name})
        assert r.status_code == 200, r.text
        user_id = r.json()['user']['id']
        token = link_token(outbox.last_for(email, "signup").link)
        r = client.get('/auth/verify', params={'token': token}, follow_redirects=False)
        assert r.status_code == 303
        if role is not Role.DISCIPLE:
            set_role(user_id, role)
        r = client.post('/auth/token', json={'email': email, 'password': PASSWORD})
        assert r.status_code == 200, r.text
        access = r.json()['access_token']
        profile = client.get('/profiles/me', headers={'Authorization': f'Bearer {access}'}).json()
        return Account(email=email, user_id=user_id, token=access, profile=profile)

    return _make
