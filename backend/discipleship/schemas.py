"""Pydantic request/response schemas used by the API.

Schemas keep API input/output shapes stable and provide validation for
controller handlers. The client SDK parses server responses with the same
classes so both sides agree on the wire format.
"""

from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .roles import Role


class ORMModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class SignUpIn(BaseModel):
    """Payload for the registration endpoint."""
    email: str
    password: str
    name: str = Field(min_length=1, max_length=120)
    redirect_to: Optional[str] = None


class SignInIn(BaseModel):
    email: str
    password: str


class UserOut(ORMModel):
    id: str
    email: str
    display_name: Optional[str] = None
    email_confirmed_at: Optional[datetime] = None


class SessionOut(BaseModel):
    """An authenticated session: bearer token plus the user it belongs to."""
    access_token: str
    token_type: str = "bearer"
    expires_at: int
    user: UserOut


class SignUpOut(BaseModel):
    user: UserOut
    session: Optional[SessionOut] = None


class RecoverIn(BaseModel):
    email: str
    redirect_to: Optional[str] = None


class PasswordResetIn(BaseModel):
    token: str
    password: str


class ProfileOut(ORMModel):
    id: str
    user_id: Optional[str] = None
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    role: Role
    discipler_id: Optional[str] = None
    spiritual_stage: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class AdminProfileOut(ProfileOut):
    discipler_name: Optional[str] = None


class ProfileUpdate(BaseModel):
    """Fields a user may change on their own profile."""
    name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    phone: Optional[str] = None
    spiritual_stage: Optional[str] = None


class DiscipleIn(BaseModel):
    """A disciple registered by a discipler, without a login."""
    name: str = Field(min_length=1, max_length=120)
    phone: Optional[str] = None
    email: Optional[str] = None
    spiritual_stage: Optional[str] = None


class AssignDisciplerIn(BaseModel):
    discipler_id: Optional[str] = None


class RoleChangeIn(BaseModel):
    role: Role


class NoteIn(BaseModel):
    content: str = Field(min_length=1)
    observations: Optional[str] = None
    prayer_requests: Optional[str] = None


class NoteOut(ORMModel):
    id: str
    disciple_id: str
    discipler_id: str
    content: str
    observations: Optional[str] = None
    prayer_requests: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class GroupIn(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    description: Optional[str] = None
    theme: Optional[str] = None
    meeting_date: Optional[datetime] = None
    duration: Optional[int] = Field(default=None, ge=0)


class GroupOut(ORMModel):
    id: str
    discipler_id: str
    name: str
    description: Optional[str] = None
    theme: Optional[str] = None
    meeting_date: Optional[datetime] = None
    duration: Optional[int] = None


class MemberIn(BaseModel):
    disciple_id: str


class MemberOut(BaseModel):
    id: str
    group_meeting_id: str
    disciple_id: str
    disciple_name: str
    joined_at: datetime


class AttendanceIn(BaseModel):
    """Mark one disciple present or absent; `on` defaults to today."""
    disciple_id: str
    present: bool
    notes: Optional[str] = None
    on: Optional[date] = None


class AttendanceOut(BaseModel):
    id: str
    group_meeting_id: str
    disciple_id: str
    disciple_name: str
    attended_on: date
    present: bool
    notes: Optional[str] = None


class ReportOut(ORMModel):
    id: str
    discipler_id: str
    title: str
    content: str
    meeting_date: date
    meeting_type: str
    participants_count: Optional[int] = None
    photo_url: Optional[str] = None
    created_at: datetime


class PrayerIn(BaseModel):
    content: str = Field(min_length=1, max_length=2000)
    is_private: bool = False


class PrayerOut(ORMModel):
    id: str
    profile_id: str
    content: str
    is_private: bool
    created_at: datetime


class DevotionalIn(BaseModel):
    publish_on: date
    title: str
    verse: str
    reference: str
    content: str
    reflection: Optional[str] = None


class DevotionalOut(ORMModel):
    id: str
    publish_on: date
    title: str
    verse: str
    reference: str
    content: str
    reflection: Optional[str] = None


class TodayDevotionalOut(BaseModel):
    devotional: DevotionalOut
    completed: bool


class StatsOut(BaseModel):
    total_users: int
    disciples: int
    disciplers: int
    masters: int
    unassigned: int


class DashboardOut(BaseModel):
    """Role-shaped landing summary; sections not relevant to the role are empty."""
    profile: ProfileOut
    discipler_name: Optional[str] = None
    devotional_completed_today: bool = False
    disciples: List[ProfileOut] = []
    groups: List[GroupOut] = []
    stats: Optional[StatsOut] = None
