"""Repository classes encapsulating database operations.

Each repository is small and focused on a single aggregate (credentials,
profiles, notes, groups, attendance, reports, prayers, devotionals).
Repositories return SQLModel objects and perform commits/refreshes where
appropriate.
"""

from datetime import date
from typing import List, Optional

from sqlalchemy import func, or_
from sqlmodel import Session, select

from . import models
from .roles import Role


class _Repository:
    def __init__(self, session: Session):
        self.session = session

    def _save(self, obj):
        self.session.add(obj)
        self.session.commit()
        self.session.refresh(obj)
        return obj


class AuthUserRepository(_Repository):
    """CRUD operations for `AuthUser` credentials."""

    def create(self, user: models.AuthUser) -> models.AuthUser:
        """Persist a new credential and return the managed instance."""
        return self._save(user)

    def save(self, user: models.AuthUser) -> models.AuthUser:
        return self._save(user)

    def get(self, user_id: str) -> Optional[models.AuthUser]:
        return self.session.get(models.AuthUser, user_id)

    def get_by_email(self, email: str) -> Optional[models.AuthUser]:
        """Return the credential for `email` (case-insensitive) or `None`."""
        stmt = select(models.AuthUser).where(models.AuthUser.email == email.strip().lower())
        return self.session.exec(stmt).first()

    def get_by_confirmation_token(self, token: str) -> Optional[models.AuthUser]:
        stmt = select(models.AuthUser).where(models.AuthUser.confirmation_token == token)
        return self.session.exec(stmt).first()

    def get_by_recovery_token(self, token: str) -> Optional[models.AuthUser]:
        stmt = select(models.AuthUser).where(models.AuthUser.recovery_token == token)
        return self.session.exec(stmt).first()


class RevokedTokenRepository(_Repository):

    def revoke(self, jti: str) -> None:
        if self.session.get(models.RevokedToken, jti) is None:
            self._save(models.RevokedToken(jti=jti))

    def is_revoked(self, jti: str) -> bool:
        return self.session.get(models.RevokedToken, jti) is not None


class ProfileRepository(_Repository):
    """Queries and updates for `Profile` rows."""

    def create(self, profile: models.Profile) -> models.Profile:
        return self._save(profile)

    def save(self, profile: models.Profile) -> models.Profile:
        return self._save(profile)

    def get(self, profile_id: str) -> Optional[models.Profile]:
        return self.session.get(models.Profile, profile_id)

    def maybe_by_user(self, user_id: str) -> Optional[models.Profile]:
        """Return the profile linked to `user_id`, or `None` when there is none yet."""
        stmt = select(models.Profile).where(models.Profile.user_id == user_id)
        return self.session.exec(stmt).first()

    def list(self, role: Optional[str] = None, search: Optional[str] = None,
             discipler_id: Optional[str] = None) -> List[models.Profile]:
        """List profiles filtered by role, free-text search and assigned discipler."""
        stmt = select(models.Profile)
        if role:
            stmt = stmt.where(models.Profile.role == role)
        if discipler_id:
            stmt = stmt.where(models.Profile.discipler_id == discipler_id)
        if search:
            pattern = f"%{search.strip().lower()}%"
            stmt = stmt.where(or_(
                func.lower(models.Profile.name).like(pattern),
                func.lower(func.coalesce(models.Profile.spiritual_stage, '')).like(pattern),
            ))
        return self.session.exec(stmt.order_by(models.Profile.name)).all()

    def names_by_id(self, ids) -> dict:
        """Map profile ids to display names in one query."""
        ids = {i for i in ids if i}
        if not ids:
            return {}
        stmt = select(models.Profile.id, models.Profile.name).where(models.Profile.id.in_(ids))
        return {pid: name for pid, name in self.session.exec(stmt).all()}

    def count_assigned_to(self, discipler_id: str) -> int:
        stmt = select(func.count()).select_from(models.Profile).where(models.Profile.discipler_id == discipler_id)
        return self.session.exec(stmt).one()

    def count_by_role(self) -> dict:
        stmt = select(models.Profile.role, func.count()).group_by(models.Profile.role)
        return {role: n for role, n in self.session.exec(stmt).all()}

    def count_unassigned_disciples(self) -> int:
        stmt = select(func.count()).select_from(models.Profile).where(
            models.Profile.role == Role.DISCIPLE.value,
            models.Profile.discipler_id.is_(None),
        )
        return self.session.exec(stmt).one()


class NoteRepository(_Repository):

    def create(self, note: models.DiscipleshipNote) -> models.DiscipleshipNote:
        return self._save(note)

    def list_for_disciple(self, disciple_id: str) -> List[models.DiscipleshipNote]:
        """Notes about `disciple_id`, most recent first."""
        stmt = select(models.DiscipleshipNote).where(
            models.DiscipleshipNote.disciple_id == disciple_id
        ).order_by(models.DiscipleshipNote.created_at.desc())
        return self.session.exec(stmt).all()


class GroupRepository(_Repository):
    """Group meetings and their memberships."""

    def create(self, group: models.GroupMeeting) -> models.GroupMeeting:
        return self._save(group)

    def get(self, group_id: str) -> Optional[models.GroupMeeting]:
        return self.session.get(models.GroupMeeting, group_id)

    def list(self, discipler_id: Optional[str] = None) -> List[models.GroupMeeting]:
        stmt = select(models.GroupMeeting)
        if discipler_id:
            stmt = stmt.where(models.GroupMeeting.discipler_id == discipler_id)
        return self.session.exec(stmt.order_by(models.GroupMeeting.name)).all()

    def get_member(self, group_id: str, disciple_id: str) -> Optional[models.GroupMember]:
        stmt = select(models.GroupMember).where(
            models.GroupMember.group_meeting_id == group_id,
            models.GroupMember.disciple_id == disciple_id,
        )
        return self.session.exec(stmt).first()

    def add_member(self, member: models.GroupMember) -> models.GroupMember:
        return self._save(member)

    def list_members(self, group_id: str) -> List[models.GroupMember]:
        stmt = select(models.GroupMember).where(models.GroupMember.group_meeting_id == group_id)
        return self.session.exec(stmt.order_by(models.GroupMember.joined_at)).all()


class AttendanceRepository(_Repository):

    def get(self, group_id: str, disciple_id: str, on: date) -> Optional[models.MeetingAttendance]:
        stmt = select(models.MeetingAttendance).where(
            models.MeetingAttendance.group_meeting_id == group_id,
            models.MeetingAttendance.disciple_id == disciple_id,
            models.MeetingAttendance.attended_on == on,
        )
        return self.session.exec(stmt).first()

    def save(self, record: models.MeetingAttendance) -> models.MeetingAttendance:
        return self._save(record)

    def list_for_day(self, group_id: str, on: date) -> List[models.MeetingAttendance]:
        stmt = select(models.MeetingAttendance).where(
            models.MeetingAttendance.group_meeting_id == group_id,
            models.MeetingAttendance.attended_on == on,
        )
        return self.session.exec(stmt).all()


class ReportRepository(_Repository):

    def create(self, report: models.MeetingReport) -> models.MeetingReport:
        return self._save(report)

    def list(self, discipler_id: Optional[str] = None) -> List[models.MeetingReport]:
        """Reports ordered by meeting date, newest first."""
        stmt = select(models.MeetingReport)
        if discipler_id:
            stmt = stmt.where(models.MeetingReport.discipler_id == discipler_id)
        stmt = stmt.order_by(models.MeetingReport.meeting_date.desc(), models.MeetingReport.created_at.desc())
        return self.session.exec(stmt).all()


class PrayerRepository(_Repository):

    def create(self, prayer: models.PrayerRequest) -> models.PrayerRequest:
        return self._save(prayer)

    def list_visible(self, own_profile_id: str, shared_from: Optional[List[str]] = None,
                     all_shared: bool = False) -> List[models.PrayerRequest]:
        """Own requests plus non-private requests from `shared_from` (or everyone)."""
        conditions = [models.PrayerRequest.profile_id == own_profile_id]
        if all_shared:
            conditions.append(models.PrayerRequest.is_private.is_(False))
        elif shared_from:
            conditions.append(
                (models.PrayerRequest.profile_id.in_(shared_from)) & (models.PrayerRequest.is_private.is_(False))
            )
        stmt = select(models.PrayerRequest).where(or_(*conditions)).order_by(models.PrayerRequest.created_at.desc())
        return self.session.exec(stmt).all()


class DevotionalRepository(_Repository):

    def create(self, devotional: models.Devotional) -> models.Devotional:
        return self._save(devotional)

    def get(self, devotional_id: str) -> Optional[models.Devotional]:
        return self.session.get(models.Devotional, devotional_id)

    def get_by_date(self, publish_on: date) -> Optional[models.Devotional]:
        stmt = select(models.Devotional).where(models.Devotional.publish_on == publish_on)
        return self.session.exec(stmt).first()

    def latest_on_or_before(self, day: date) -> Optional[models.Devotional]:
        stmt = select(models.Devotional).where(models.Devotional.publish_on <= day).order_by(
            models.Devotional.publish_on.desc()
        )
        return self.session.exec(stmt).first()

    def get_completion(self, devotional_id: str, profile_id: str) -> Optional[models.DevotionalCompletion]:
        stmt = select(models.DevotionalCompletion).where(
            models.DevotionalCompletion.devotional_id == devotional_id,
            models.DevotionalCompletion.profile_id == profile_id,
        )
        return self.session.exec(stmt).first()

    def add_completion(self, completion: models.DevotionalCompletion) -> models.DevotionalCompletion:
        return self._save(completion)
