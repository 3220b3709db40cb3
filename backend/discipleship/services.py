"""Business logic services used by HTTP controllers.

This module holds small service classes that coordinate repositories
and domain rules. Services are intentionally thin: they perform
validation, enforce ownership and role invariants and persist aggregates
via repositories. They raise plain exceptions (`AuthError`, `ValueError`,
`LookupError`, `PermissionError`) which controllers translate to HTTP
responses.
"""

import logging
import secrets
from datetime import date, datetime, timedelta, timezone
from typing import List, Optional
from urllib.parse import urlencode
from uuid import uuid4

import jwt
from passlib.context import CryptContext
from sqlmodel import Session

from . import models, repositories, schemas
from .config import origin_of, settings
from .roles import Role, can_disciple, has_role, parse_role
from .utils.mailer import MailDeliveryError, get_mailer
from .utils.storage import save_upload

PWD_CTX = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
RECOVERY_TOKEN_TTL = timedelta(hours=1)

logger = logging.getLogger("discipleship.auth")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def safe_redirect(target: Optional[str], default: str) -> str:
    """Return `target` when it points at an allowed origin, else `default`."""
    if not target:
        return default
    if target.lower().startswith(("http://", "https://")) and origin_of(target) in settings.REDIRECT_ALLOW_LIST:
        return target
    logger.warning("redirect_rejected origin=%s", origin_of(target))
    return default


def _with_query(url: str, **params) -> str:
    return f"{url}{'&' if '?' in url else '?'}{urlencode(params)}"


class AuthError(Exception):
    """A credential problem reported back to the caller verbatim."""

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class AuthService:
    """Credential lifecycle: sign-up, confirmation, sign-in, sign-out and recovery."""

    def __init__(self, session: Session):
        self.session = session
        self.user_repo = repositories.AuthUserRepository(session)
        self.revoked_repo = repositories.RevokedTokenRepository(session)
        self.profiles = ProfileService(session)

    def register(self, email: str, password: str, name: str, redirect_to: Optional[str] = None):
        """Create a credential and its profile.

        Returns `(user, session)`; `session` is `None` while the email
        still needs confirming.
        """
        email = email.strip().lower()
        if "@" not in email:
            raise AuthError("Unable to validate email address: invalid format")
        if len(password) < settings.MIN_PASSWORD_LENGTH:
            raise AuthError(f"Password should be at least {settings.MIN_PASSWORD_LENGTH} characters")
        if self.user_repo.get_by_email(email):
            raise AuthError("User already registered")
        user = models.AuthUser(
            email=email,
            password_hash=PWD_CTX.hash(password),
            display_name=name.strip(),
            confirmation_redirect=safe_redirect(redirect_to, f"{settings.SITE_URL}/"),
        )
        if settings.REQUIRE_EMAIL_CONFIRMATION:
            user.confirmation_token = secrets.token_urlsafe(32)
        else:
            user.email_confirmed_at = _utcnow()
        user = self.user_repo.create(user)
        role = Role.MASTER if email in settings.MASTER_EMAILS else Role.DISCIPLE
        self.profiles.create_for_user(user, role=role)
        logger.info("user_registered id=%s role=%s confirmed=%s", user.id, role.value, bool(user.email_confirmed_at))
        if user.confirmation_token:
            link = _with_query(f"{settings.PUBLIC_API_URL}/auth/verify", token=user.confirmation_token)
            try:
                get_mailer().send(
                    to=email,
                    subject="Confirm your email",
                    body=f"Hello {user.display_name}, confirm your account: {link}",
                    link=link,
                    kind="signup",
                )
            except MailDeliveryError:
                raise AuthError("Error sending confirmation email", status_code=500)
            return user, None
        return user, self.issue_session(user)

    def confirm_email(self, token: str) -> str:
        """Mark the credential behind `token` as confirmed; return its redirect target."""
        user = self.user_repo.get_by_confirmation_token(token)
        if not user:
            raise AuthError("Token has expired or is invalid", status_code=403)
        user.email_confirmed_at = _utcnow()
        user.confirmation_token = None
        self.user_repo.save(user)
        logger.info("email_confirmed id=%s", user.id)
        return safe_redirect(user.confirmation_redirect, f"{settings.SITE_URL}/")

    def authenticate(self, email: str, password: str) -> dict:
        """Verify credentials and return a session payload.

        Raises `AuthError` with the invalid-credentials or unconfirmed
        message; the two are distinguished only after the password matched.
        """
        user = self.user_repo.get_by_email(email)
        if not user or not PWD_CTX.verify(password, user.password_hash):
            raise AuthError("Invalid login credentials")
        if user.email_confirmed_at is None:
            raise AuthError("Email not confirmed")
        return self.issue_session(user)

    def issue_session(self, user: models.AuthUser) -> dict:
        expire = _utcnow() + timedelta(hours=settings.JWT_EXPIRE_HOURS)
        payload = {
            "sub": user.id,
            "email": user.email,
            "jti": uuid4().hex,
            "exp": int(expire.timestamp()),
        }
        token = jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)
        return {
            "access_token": token,
            "token_type": "bearer",
            "expires_at": payload["exp"],
            "user": schemas.UserOut.model_validate(user).model_dump(),
        }

    def decode_token(self, token: str) -> dict:
        """Decode a bearer token, rejecting expired, malformed and revoked ones."""
        try:
            payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
        except jwt.ExpiredSignatureError:
            raise AuthError("token expired", status_code=401)
        except jwt.InvalidTokenError:
            raise AuthError("invalid token", status_code=401)
        if not payload.get("sub") or not payload.get("jti"):
            raise AuthError("invalid token payload", status_code=401)
        if self.revoked_repo.is_revoked(payload["jti"]):
            raise AuthError("session has been signed out", status_code=401)
        return payload

    def sign_out(self, payload: dict) -> None:
        self.revoked_repo.revoke(payload["jti"])
        logger.info("signed_out id=%s", payload.get("sub"))

    def request_recovery(self, email: str, redirect_to: Optional[str] = None) -> None:
        """Email a recovery link when `email` is registered.

        Unknown addresses are accepted silently so the endpoint does not
        reveal which emails have accounts.
        """
        user = self.user_repo.get_by_email(email)
        if not user:
            logger.info("recovery_requested_for_unknown_email")
            return
        user.recovery_token = secrets.token_urlsafe(32)
        user.recovery_sent_at = _utcnow()
        self.user_repo.save(user)
        target = safe_redirect(redirect_to, f"{settings.SITE_URL}/reset-password")
        link = _with_query(target, token=user.recovery_token)
        try:
            get_mailer().send(
                to=user.email,
                subject="Reset your password",
                body=f"Follow this link to choose a new password: {link}",
                link=link,
                kind="recovery",
            )
        except MailDeliveryError:
            raise AuthError("Error sending recovery email", status_code=500)

    def reset_password(self, token: str, new_password: str) -> None:
        user = self.user_repo.get_by_recovery_token(token)
        if not user or not user.recovery_sent_at or _as_utc(user.recovery_sent_at) + RECOVERY_TOKEN_TTL < _utcnow():
            raise AuthError("Token has expired or is invalid", status_code=403)
        if len(new_password) < settings.MIN_PASSWORD_LENGTH:
            raise AuthError(f"Password should be at least {settings.MIN_PASSWORD_LENGTH} characters")
        user.password_hash = PWD_CTX.hash(new_password)
        user.recovery_token = None
        user.recovery_sent_at = None
        # following an emailed link proves ownership of the address
        if user.email_confirmed_at is None:
            user.email_confirmed_at = _utcnow()
        self.user_repo.save(user)
        logger.info("password_reset id=%s", user.id)


class ProfileService:
    """Profile creation, self-service edits and discipler assignment."""

    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.ProfileRepository(session)

    def create_for_user(self, user: models.AuthUser, role: Role = Role.DISCIPLE) -> models.Profile:
        profile = models.Profile(
            user_id=user.id,
            name=user.display_name or user.email.split("@")[0],
            email=user.email,
            role=role.value,
        )
        return self.repo.create(profile)

    def get_by_user(self, user_id: str) -> Optional[models.Profile]:
        """Zero-or-one lookup by identity; absence is a normal result."""
        return self.repo.maybe_by_user(user_id)

    def get(self, profile_id: str) -> models.Profile:
        profile = self.repo.get(profile_id)
        if not profile:
            raise LookupError("profile not found")
        return profile

    def update_own(self, profile: models.Profile, changes: schemas.ProfileUpdate) -> models.Profile:
        for field, value in changes.model_dump(exclude_unset=True).items():
            if field == "name" and not (value or "").strip():
                raise ValueError("name must not be empty")
            setattr(profile, field, value.strip() if isinstance(value, str) else value)
        profile.updated_at = _utcnow()
        return self.repo.save(profile)

    def add_disciple(self, actor: models.Profile, data: schemas.DiscipleIn) -> models.Profile:
        """Register a disciple without a login and assign it to `actor`."""
        if not can_disciple(actor.role):
            raise PermissionError("only disciplers can add disciples")
        profile = models.Profile(
            name=data.name.strip(),
            phone=data.phone,
            email=data.email.strip().lower() if data.email else None,
            spiritual_stage=data.spiritual_stage,
            role=Role.DISCIPLE.value,
            discipler_id=actor.id,
        )
        return self.repo.create(profile)

    def list_disciples(self, actor: models.Profile, search: Optional[str] = None) -> List[models.Profile]:
        """A master sees every disciple; a discipler only those assigned to them."""
        if has_role(actor.role, Role.MASTER):
            return self.repo.list(role=Role.DISCIPLE.value, search=search)
        return self.repo.list(discipler_id=actor.id, search=search)

    def list_with_discipler(self, role: Optional[str] = None, search: Optional[str] = None) -> List[dict]:
        if role is not None and parse_role(role) is None:
            raise ValueError(f"unknown role: {role}")
        profiles = self.repo.list(role=parse_role(role).value if role else None, search=search)
        names = self.repo.names_by_id(p.discipler_id for p in profiles)
        out = []
        for p in profiles:
            row = schemas.ProfileOut.model_validate(p).model_dump()
            row["discipler_name"] = names.get(p.discipler_id)
            out.append(row)
        return out

    def assign_discipler(self, profile_id: str, discipler_id: Optional[str]) -> models.Profile:
        """Set or clear the discipler of `profile_id`.

        The referenced profile must hold the discipler or master role and
        cannot be the profile itself.
        """
        profile = self.get(profile_id)
        if discipler_id is not None:
            if discipler_id == profile.id:
                raise ValueError("a profile cannot disciple itself")
            discipler = self.repo.get(discipler_id)
            if not discipler:
                raise LookupError("discipler not found")
            if not can_disciple(discipler.role):
                raise ValueError("assigned profile must be a discipler or master")
        profile.discipler_id = discipler_id
        profile.updated_at = _utcnow()
        return self.repo.save(profile)

    def change_role(self, profile_id: str, new_role: Role) -> models.Profile:
        """Switch a profile between disciple and discipler.

        Master accounts are fixed. A discipler who still has disciples
        assigned cannot be demoted, since that would leave those references
        pointing at a disciple.
        """
        profile = self.get(profile_id)
        if profile.role == Role.MASTER.value:
            raise ValueError("the role of a master cannot be changed")
        if new_role == Role.MASTER:
            raise ValueError("promotion to master is not allowed")
        if new_role == Role.DISCIPLE and self.repo.count_assigned_to(profile.id) > 0:
            raise ValueError("reassign this discipler's disciples before demoting")
        profile.role = new_role.value
        profile.updated_at = _utcnow()
        return self.repo.save(profile)

    def stats(self) -> dict:
        counts = self.repo.count_by_role()
        return {
            "total_users": sum(counts.values()),
            "disciples": counts.get(Role.DISCIPLE.value, 0),
            "disciplers": counts.get(Role.DISCIPLER.value, 0),
            "masters": counts.get(Role.MASTER.value, 0),
            "unassigned": self.repo.count_unassigned_disciples(),
        }

    def ensure_can_manage(self, actor: models.Profile, disciple: models.Profile) -> None:
        """Raise PermissionError unless `actor` is a master or `disciple`'s discipler."""
        if has_role(actor.role, Role.MASTER):
            return
        if disciple.discipler_id != actor.id:
            raise PermissionError("not your disciple")


class NoteService:
    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.NoteRepository(session)
        self.profiles = ProfileService(session)

    def add_note(self, actor: models.Profile, disciple_id: str, data: schemas.NoteIn) -> models.DiscipleshipNote:
        disciple = self.profiles.get(disciple_id)
        self.profiles.ensure_can_manage(actor, disciple)
        note = models.DiscipleshipNote(
            disciple_id=disciple.id,
            discipler_id=actor.id,
            content=data.content,
            observations=data.observations,
            prayer_requests=data.prayer_requests,
        )
        return self.repo.create(note)

    def list_notes(self, actor: models.Profile, disciple_id: str) -> List[models.DiscipleshipNote]:
        disciple = self.profiles.get(disciple_id)
        self.profiles.ensure_can_manage(actor, disciple)
        return self.repo.list_for_disciple(disciple.id)


class GroupService:
    """Group meetings, their members and per-day attendance checklists."""

    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.GroupRepository(session)
        self.attendance_repo = repositories.AttendanceRepository(session)
        self.profiles = ProfileService(session)

    def create_group(self, actor: models.Profile, data: schemas.GroupIn) -> models.GroupMeeting:
        group = models.GroupMeeting(discipler_id=actor.id, **data.model_dump())
        return self.repo.create(group)

    def list_groups(self, actor: models.Profile) -> List[models.GroupMeeting]:
        if has_role(actor.role, Role.MASTER):
            return self.repo.list()
        return self.repo.list(discipler_id=actor.id)

    def get_group(self, actor: models.Profile, group_id: str) -> models.GroupMeeting:
        group = self.repo.get(group_id)
        if not group:
            raise LookupError("group not found")
        if group.discipler_id != actor.id and not has_role(actor.role, Role.MASTER):
            raise PermissionError("not your group")
        return group

    def add_member(self, actor: models.Profile, group_id: str, disciple_id: str) -> dict:
        """Add a disciple to a group; adding an existing member is a no-op."""
        group = self.get_group(actor, group_id)
        disciple = self.profiles.get(disciple_id)
        if disciple.role != Role.DISCIPLE.value:
            raise ValueError("only disciples can join a group")
        self.profiles.ensure_can_manage(actor, disciple)
        member = self.repo.get_member(group.id, disciple.id)
        if member is None:
            member = self.repo.add_member(models.GroupMember(group_meeting_id=group.id, disciple_id=disciple.id))
        return self._member_row(member, disciple.name)

    def list_members(self, actor: models.Profile, group_id: str) -> List[dict]:
        group = self.get_group(actor, group_id)
        members = self.repo.list_members(group.id)
        names = self.profiles.repo.names_by_id(m.disciple_id for m in members)
        return [self._member_row(m, names.get(m.disciple_id)) for m in members]

    def attendance_for_day(self, actor: models.Profile, group_id: str, on: date) -> List[dict]:
        group = self.get_group(actor, group_id)
        records = self.attendance_repo.list_for_day(group.id, on)
        names = self.profiles.repo.names_by_id(r.disciple_id for r in records)
        return [self._attendance_row(r, names.get(r.disciple_id)) for r in records]

    def mark_attendance(self, actor: models.Profile, group_id: str, data: schemas.AttendanceIn) -> dict:
        """Create or update the attendance record for one disciple on one day."""
        group = self.get_group(actor, group_id)
        if self.repo.get_member(group.id, data.disciple_id) is None:
            raise ValueError("disciple is not a member of this group")
        on = data.on or date.today()
        record = self.attendance_repo.get(group.id, data.disciple_id, on)
        if record is None:
            record = models.MeetingAttendance(
                group_meeting_id=group.id,
                disciple_id=data.disciple_id,
                attended_on=on,
            )
        record.present = data.present
        if data.notes is not None:
            record.notes = data.notes
        record = self.attendance_repo.save(record)
        disciple = self.profiles.get(record.disciple_id)
        return self._attendance_row(record, disciple.name)

    @staticmethod
    def _member_row(member: models.GroupMember, name: Optional[str]) -> dict:
        return {
            "id": member.id,
            "group_meeting_id": member.group_meeting_id,
            "disciple_id": member.disciple_id,
            "disciple_name": name or "unknown",
            "joined_at": member.joined_at,
        }

    @staticmethod
    def _attendance_row(record: models.MeetingAttendance, name: Optional[str]) -> dict:
        return {
            "id": record.id,
            "group_meeting_id": record.group_meeting_id,
            "disciple_id": record.disciple_id,
            "disciple_name": name or "unknown",
            "attended_on": record.attended_on,
            "present": record.present,
            "notes": record.notes,
        }


class ReportService:
    PHOTO_BUCKET = "meeting-photos"

    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.ReportRepository(session)

    def create_report(self, actor: models.Profile, *, title: str, content: str, meeting_date: date,
                      meeting_type: str, participants_count: Optional[int] = None,
                      photo: Optional[bytes] = None) -> models.MeetingReport:
        """Persist a meeting report, storing the optional photo first.

        A rejected photo aborts the whole report so no row points at a
        missing file.
        """
        if not title.strip() or not content.strip():
            raise ValueError("title and content are required")
        if participants_count is not None and participants_count < 0:
            raise ValueError("participants_count must be >= 0")
        photo_url = save_upload(self.PHOTO_BUCKET, actor.id, photo) if photo else None
        report = models.MeetingReport(
            discipler_id=actor.id,
            title=title.strip(),
            content=content,
            meeting_date=meeting_date,
            meeting_type=meeting_type,
            participants_count=participants_count,
            photo_url=photo_url,
        )
        return self.repo.create(report)

    def list_reports(self, actor: models.Profile) -> List[models.MeetingReport]:
        if has_role(actor.role, Role.MASTER):
            return self.repo.list()
        return self.repo.list(discipler_id=actor.id)


class PrayerService:
    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.PrayerRepository(session)
        self.profiles = repositories.ProfileRepository(session)

    def submit(self, actor: models.Profile, data: schemas.PrayerIn) -> models.PrayerRequest:
        prayer = models.PrayerRequest(profile_id=actor.id, content=data.content.strip(), is_private=data.is_private)
        return self.repo.create(prayer)

    def list_visible(self, actor: models.Profile) -> List[models.PrayerRequest]:
        """Own requests, plus shared requests from disciples (or everyone, for a master)."""
        if has_role(actor.role, Role.MASTER):
            return self.repo.list_visible(actor.id, all_shared=True)
        if has_role(actor.role, Role.DISCIPLER):
            disciples = [p.id for p in self.profiles.list(discipler_id=actor.id)]
            return self.repo.list_visible(actor.id, shared_from=disciples)
        return self.repo.list_visible(actor.id)


class DevotionalService:
    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.DevotionalRepository(session)

    def create(self, data: schemas.DevotionalIn) -> models.Devotional:
        if self.repo.get_by_date(data.publish_on):
            raise ValueError(f"a devotional is already published on {data.publish_on.isoformat()}")
        return self.repo.create(models.Devotional(**data.model_dump()))

    def today(self, actor: models.Profile, day: Optional[date] = None) -> dict:
        devotional = self.repo.latest_on_or_before(day or date.today())
        if not devotional:
            raise LookupError("no devotional published yet")
        completed = self.repo.get_completion(devotional.id, actor.id) is not None
        return {"devotional": devotional, "completed": completed}

    def complete(self, actor: models.Profile, devotional_id: str) -> models.DevotionalCompletion:
        """Record that `actor` finished a devotional; repeated calls keep the first record."""
        devotional = self.repo.get(devotional_id)
        if not devotional:
            raise LookupError("devotional not found")
        existing = self.repo.get_completion(devotional.id, actor.id)
        if existing:
            return existing
        return self.repo.add_completion(models.DevotionalCompletion(devotional_id=devotional.id, profile_id=actor.id))


class DashboardService:
    """Assemble the role-shaped landing page summary."""

    def __init__(self, session: Session):
        self.session = session
        self.profiles = ProfileService(session)
        self.groups = GroupService(session)
        self.devotionals = repositories.DevotionalRepository(session)

    def build(self, actor: models.Profile, day: Optional[date] = None) -> dict:
        out = {"profile": actor, "discipler_name": None, "devotional_completed_today": False,
               "disciples": [], "groups": [], "stats": None}
        if actor.discipler_id:
            discipler = self.profiles.repo.get(actor.discipler_id)
            out["discipler_name"] = discipler.name if discipler else None
        devotional = self.devotionals.latest_on_or_before(day or date.today())
        if devotional:
            out["devotional_completed_today"] = self.devotionals.get_completion(devotional.id, actor.id) is not None
        if has_role(actor.role, Role.DISCIPLER):
            out["disciples"] = self.profiles.list_disciples(actor)
            out["groups"] = self.groups.list_groups(actor)
        if has_role(actor.role, Role.MASTER):
            out["stats"] = self.profiles.stats()
        return out
