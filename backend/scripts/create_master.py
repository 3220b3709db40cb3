"""CLI script to bootstrap a master account.
Usage: python scripts/create_master.py EMAIL NAME --password PASSWORD

Creates a confirmed credential with a master profile, or promotes the
existing profile of EMAIL to master.
"""
import sys
import argparse
import pathlib
from datetime import datetime, timezone
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
from sqlmodel import Session
from discipleship.database import engine, create_db_and_tables
from discipleship import models, repositories, services
from discipleship.roles import Role


def main(email: str, name: str, password: str):
    create_db_and_tables()
    with Session(engine) as session:
        users = repositories.AuthUserRepository(session)
        profiles = services.ProfileService(session)
        user = users.get_by_email(email)
        if user is None:
            user = users.create(models.AuthUser(
                email=email.strip().lower(),
                password_hash=services.PWD_CTX.hash(password),
                display_name=name,
                email_confirmed_at=datetime.now(timezone.utc),
            ))
            print(f'Created credential {user.email}')
        profile = profiles.get_by_user(user.id)
        if profile is None:
            profile = profiles.create_for_user(user, role=Role.MASTER)
        else:
            # change_role never grants master
            profile.role = Role.MASTER.value
            profiles.repo.save(profile)
        print(f'Profile {profile.id} ({profile.name}) is now master')


if __name__ == '__main__':
    parser = argparse.ArgumentParser()
    parser.add_argument('email')
    parser.add_argument('name')
    parser.add_argument('--password', required=True)
    args = parser.parse_args()
    main(args.email, args.name, args.password)
