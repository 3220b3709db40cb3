"""SQLModel data models.

This module defines the application's database tables using SQLModel.
Identifiers are UUID strings so rows can be referenced from clients
without exposing sequence numbers.
"""

from typing import Optional
from uuid import uuid4
from datetime import datetime, date, timezone

from sqlalchemy import UniqueConstraint
from sqlmodel import SQLModel, Field

from .roles import Role


def _uuid() -> str:
    return str(uuid4())


def _now() -> datetime:
    return datetime.now(timezone.utc)


class AuthUser(SQLModel, table=True):
    """A login credential.

    Fields:
    - `email`: unique, stored lower-cased
    - `password_hash`: hashed password string (never store plaintext)
    - `email_confirmed_at`: unset until the confirmation link is followed
    - `confirmation_token` / `recovery_token`: single-use tokens mailed to the user
    """
    id: str = Field(default_factory=_uuid, primary_key=True)
    email: str = Field(index=True, nullable=False, unique=True)
    password_hash: str
    display_name: Optional[str] = None
    email_confirmed_at: Optional[datetime] = None
    confirmation_token: Optional[str] = Field(default=None, index=True)
    confirmation_redirect: Optional[str] = None
    recovery_token: Optional[str] = Field(default=None, index=True)
    recovery_sent_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=_now)


class RevokedToken(SQLModel, table=True):
    """An access token id (`jti`) invalidated by sign-out."""
    jti: str = Field(primary_key=True)
    revoked_at: datetime = Field(default_factory=_now)


class Profile(SQLModel, table=True):
    """Application-level record of a person.

    `user_id` links the profile to a login and is empty for disciples a
    discipler registered by hand. `discipler_id`, when set, must reference
    a profile whose role is discipler or master.
    """
    id: str = Field(default_factory=_uuid, primary_key=True)
    user_id: Optional[str] = Field(default=None, foreign_key='authuser.id', unique=True, index=True)
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    role: str = Field(default=Role.DISCIPLE.value, index=True)
    discipler_id: Optional[str] = Field(default=None, foreign_key='profile.id', index=True)
    spiritual_stage: Optional[str] = None
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)


class DiscipleshipNote(SQLModel, table=True):
    """A discipler's note about one disciple."""
    id: str = Field(default_factory=_uuid, primary_key=True)
    disciple_id: str = Field(foreign_key='profile.id', index=True)
    discipler_id: str = Field(foreign_key='profile.id', index=True)
    content: str
    observations: Optional[str] = None
    prayer_requests: Optional[str] = None
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)


class GroupMeeting(SQLModel, table=True):
    """A recurring small-group meeting led by a discipler."""
    id: str = Field(default_factory=_uuid, primary_key=True)
    discipler_id: str = Field(foreign_key='profile.id', index=True)
    name: str
    description: Optional[str] = None
    theme: Optional[str] = None
    meeting_date: Optional[datetime] = None
    duration: Optional[int] = None
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)


class GroupMember(SQLModel, table=True):
    __table_args__ = (UniqueConstraint('group_meeting_id', 'disciple_id'),)
    id: str = Field(default_factory=_uuid, primary_key=True)
    group_meeting_id: str = Field(foreign_key='groupmeeting.id', index=True)
    disciple_id: str = Field(foreign_key='profile.id', index=True)
    joined_at: datetime = Field(default_factory=_now)


class MeetingAttendance(SQLModel, table=True):
    """Presence of one disciple at one group meeting on one day."""
    __table_args__ = (UniqueConstraint('group_meeting_id', 'disciple_id', 'attended_on'),)
    id: str = Field(default_factory=_uuid, primary_key=True)
    group_meeting_id: str = Field(foreign_key='groupmeeting.id', index=True)
    disciple_id: str = Field(foreign_key='profile.id', index=True)
    attended_on: date = Field(index=True)
    present: bool = False
    notes: Optional[str] = None
    created_at: datetime = Field(default_factory=_now)


class MeetingReport(SQLModel, table=True):
    """Free-text report a discipler files after a meeting."""
    id: str = Field(default_factory=_uuid, primary_key=True)
    discipler_id: str = Field(foreign_key='profile.id', index=True)
    title: str
    content: str
    meeting_date: date
    meeting_type: str
    participants_count: Optional[int] = None
    photo_url: Optional[str] = None
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)


class PrayerRequest(SQLModel, table=True):
    id: str = Field(default_factory=_uuid, primary_key=True)
    profile_id: str = Field(foreign_key='profile.id', index=True)
    content: str
    is_private: bool = False
    created_at: datetime = Field(default_factory=_now)


class Devotional(SQLModel, table=True):
    """Daily devotional content; the one shown is the latest published."""
    id: str = Field(default_factory=_uuid, primary_key=True)
    publish_on: date = Field(index=True, unique=True)
    title: str
    verse: str
    reference: str
    content: str
    reflection: Optional[str] = None


class DevotionalCompletion(SQLModel, table=True):
    __table_args__ = (UniqueConstraint('devotional_id', 'profile_id'),)
    id: str = Field(default_factory=_uuid, primary_key=True)
    devotional_id: str = Field(foreign_key='devotional.id', index=True)
    profile_id: str = Field(foreign_key='profile.id', index=True)
    completed_at: datetime = Field(default_factory=_now)
