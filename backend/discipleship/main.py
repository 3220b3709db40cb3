"""FastAPI application entrypoint and HTTP controllers.

This module defines the HTTP endpoints of the discipleship backend.
Controllers are intentionally thin: they accept requests, delegate to
services, and return JSON responses. Service exceptions are translated
to status codes here (`AuthError` -> its own code, `ValueError` -> 400,
`PermissionError` -> 403, `LookupError` -> 404).

Endpoints implemented:
- POST /auth/signup, GET /auth/verify, POST /auth/token, GET /auth/user
- POST /auth/logout, POST /auth/recover, POST /auth/password
- GET /profiles/by-user/{user_id}, GET /profiles/me, PATCH /profiles/me
- GET /disciples, POST /disciples, GET/POST /disciples/{id}/notes
- GET /admin/profiles, PUT /admin/profiles/{id}/discipler,
  PUT /admin/profiles/{id}/role, GET /admin/stats
- GET/POST /groups, GET/POST /groups/{id}/members,
  GET/PUT /groups/{id}/attendance
- GET/POST /reports
- GET/POST /prayers
- GET /devotionals/today, POST /devotionals, POST /devotionals/{id}/complete
- GET /dashboard, GET /health
"""

import json
import logging
import os
import time
import uuid
from datetime import date
from typing import List, Optional

from fastapi import FastAPI, Depends, File, Form, HTTPException, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import RedirectResponse, Response
from fastapi.staticfiles import StaticFiles
from sqlmodel import Session

from . import models, schemas, services
from .auth import get_current_profile, get_current_user, get_token_payload, require_role
from .config import settings
from .database import create_db_and_tables, get_session
from .roles import Role, has_role
from .utils.rate_limit import InMemoryRateLimiter
from .utils.storage import MEDIA_URL_PREFIX, get_media_root

app = FastAPI(title="Discipleship API")
logger = logging.getLogger("discipleship.api")
if not logger.handlers:
    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))
_login_rate_limiter = InMemoryRateLimiter()

if settings.ALLOW_DEV_CORS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

app.mount(MEDIA_URL_PREFIX, StaticFiles(directory=get_media_root()), name="media")

create_db_and_tables()


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    req_id = request.headers.get("X-Request-ID", uuid.uuid4().hex)
    request.state.request_id = req_id
    started = time.perf_counter()
    response: Response
    try:
        response = await call_next(request)
    except Exception:
        elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
        logger.exception(
            "request_failed %s",
            json.dumps(
                {
                    "request_id": req_id,
                    "path": request.url.path,
                    "method": request.method,
                    "duration_ms": elapsed_ms,
                    "client": request.client.host if request.client else "unknown",
                },
                ensure_ascii=True,
            ),
        )
        raise
    response.headers["X-Request-ID"] = req_id
    elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
    if request.url.path.startswith("/auth") or response.status_code >= 500:
        logger.info(
            "request_done %s",
            json.dumps(
                {
                    "request_id": req_id,
                    "path": request.url.path,
                    "method": request.method,
                    "status_code": response.status_code,
                    "duration_ms": elapsed_ms,
                    "client": request.client.host if request.client else "unknown",
                },
                ensure_ascii=True,
            ),
        )
    return response


def _http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, services.AuthError):
        return HTTPException(status_code=exc.status_code, detail=exc.message)
    if isinstance(exc, PermissionError):
        return HTTPException(status_code=403, detail=str(exc))
    if isinstance(exc, LookupError):
        return HTTPException(status_code=404, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


def _rate_limit_key(request: Request) -> str:
    return f"{request.client.host if request.client else 'unknown'}:{request.url.path}"


def _enforce_login_rate_limit(request: Request) -> None:
    allowed, retry_after = _login_rate_limiter.allow(
        _rate_limit_key(request),
        settings.LOGIN_RATE_LIMIT_PER_MIN,
        settings.LOGIN_RATE_LIMIT_WINDOW_SECONDS,
    )
    if not allowed:
        raise HTTPException(
            status_code=429,
            detail=f"rate limit exceeded; retry after {retry_after}s",
            headers={"Retry-After": str(retry_after)},
        )


# --- auth -----------------------------------------------------------------

@app.post('/auth/signup', response_model=schemas.SignUpOut)
def signup(payload: schemas.SignUpIn, db: Session = Depends(get_session)):
    """Register a credential and its profile.

    When email confirmation is required the response carries no session;
    the user must follow the emailed link before signing in.
    """
    try:
        user, session = services.AuthService(db).register(
            payload.email, payload.password, payload.name, redirect_to=payload.redirect_to
        )
    except services.AuthError as e:
        raise _http_error(e)
    return {'user': user, 'session': session}


@app.get('/auth/verify')
def verify_email(token: str, db: Session = Depends(get_session)):
    """Confirm an email address from the emailed link and bounce to the app."""
    try:
        target = services.AuthService(db).confirm_email(token)
    except services.AuthError as e:
        raise _http_error(e)
    return RedirectResponse(url=target, status_code=303)


@app.post('/auth/token', response_model=schemas.SessionOut)
def sign_in(payload: schemas.SignInIn, request: Request, db: Session = Depends(get_session)):
    """Exchange email and password for a bearer session.

    Failures answer 400 with `Invalid login credentials` or
    `Email not confirmed`; repeated attempts from one client are throttled.
    """
    _enforce_login_rate_limit(request)
    try:
        session = services.AuthService(db).authenticate(payload.email, payload.password)
    except services.AuthError as e:
        raise _http_error(e)
    _login_rate_limiter.reset(_rate_limit_key(request))
    return session


@app.get('/auth/user', response_model=schemas.UserOut)
def current_user(user: models.AuthUser = Depends(get_current_user)):
    return user


@app.post('/auth/logout', status_code=204)
def sign_out(payload: dict = Depends(get_token_payload), db: Session = Depends(get_session)):
    """Revoke the presented bearer token."""
    services.AuthService(db).sign_out(payload)
    return Response(status_code=204)


@app.post('/auth/recover')
def recover(payload: schemas.RecoverIn, db: Session = Depends(get_session)):
    """Send a password recovery email; unknown addresses get the same answer as known ones."""
    try:
        services.AuthService(db).request_recovery(payload.email, redirect_to=payload.redirect_to)
    except services.AuthError as e:
        raise _http_error(e)
    return {'status': 'ok'}


@app.post('/auth/password')
def reset_password(payload: schemas.PasswordResetIn, db: Session = Depends(get_session)):
    try:
        services.AuthService(db).reset_password(payload.token, payload.password)
    except services.AuthError as e:
        raise _http_error(e)
    return {'status': 'ok'}


# --- profiles ---------------------------------------------------------------

@app.get('/profiles/by-user/{user_id}', response_model=Optional[schemas.ProfileOut])
def profile_by_user(user_id: str, db: Session = Depends(get_session), user: models.AuthUser = Depends(get_current_user)):
    """Zero-or-one profile lookup by identity; answers `null` when there is no row.

    Users may look up themselves; disciplers and masters may look up anyone.
    """
    svc = services.ProfileService(db)
    if user_id != user.id:
        caller = svc.get_by_user(user.id)
        if not caller or not has_role(caller.role, Role.DISCIPLER):
            raise HTTPException(status_code=403, detail='cannot read other profiles')
    return svc.get_by_user(user_id)


@app.get('/profiles/me', response_model=schemas.ProfileOut)
def my_profile(profile: models.Profile = Depends(get_current_profile)):
    return profile


@app.patch('/profiles/me', response_model=schemas.ProfileOut)
def update_my_profile(changes: schemas.ProfileUpdate, db: Session = Depends(get_session), profile: models.Profile = Depends(get_current_profile)):
    try:
        return services.ProfileService(db).update_own(profile, changes)
    except ValueError as e:
        raise _http_error(e)


# --- disciples & notes ------------------------------------------------------

@app.get('/disciples', response_model=List[schemas.ProfileOut])
def list_disciples(search: Optional[str] = None, db: Session = Depends(get_session),
                   actor: models.Profile = Depends(require_role(Role.DISCIPLER))):
    """Disciples assigned to the caller (every disciple for a master)."""
    return services.ProfileService(db).list_disciples(actor, search=search)


@app.post('/disciples', response_model=schemas.ProfileOut, status_code=201)
def add_disciple(payload: schemas.DiscipleIn, db: Session = Depends(get_session),
                 actor: models.Profile = Depends(require_role(Role.DISCIPLER))):
    """Register a disciple without a login and assign it to the caller."""
    return services.ProfileService(db).add_disciple(actor, payload)


@app.get('/disciples/{disciple_id}/notes', response_model=List[schemas.NoteOut])
def list_notes(disciple_id: str, db: Session = Depends(get_session),
               actor: models.Profile = Depends(require_role(Role.DISCIPLER))):
    try:
        return services.NoteService(db).list_notes(actor, disciple_id)
    except (LookupError, PermissionError) as e:
        raise _http_error(e)


@app.post('/disciples/{disciple_id}/notes', response_model=schemas.NoteOut, status_code=201)
def add_note(disciple_id: str, payload: schemas.NoteIn, db: Session = Depends(get_session),
             actor: models.Profile = Depends(require_role(Role.DISCIPLER))):
    try:
        return services.NoteService(db).add_note(actor, disciple_id, payload)
    except (LookupError, PermissionError) as e:
        raise _http_error(e)


# --- master administration ----------------------------------------------------

@app.get('/admin/profiles', response_model=List[schemas.AdminProfileOut])
def admin_list_profiles(role: Optional[str] = None, search: Optional[str] = None, db: Session = Depends(get_session),
                        actor: models.Profile = Depends(require_role(Role.MASTER))):
    """Every profile with the name of its discipler, optionally filtered."""
    try:
        return services.ProfileService(db).list_with_discipler(role=role, search=search)
    except ValueError as e:
        raise _http_error(e)


@app.put('/admin/profiles/{profile_id}/discipler', response_model=schemas.ProfileOut)
def admin_assign_discipler(profile_id: str, payload: schemas.AssignDisciplerIn, db: Session = Depends(get_session),
                           actor: models.Profile = Depends(require_role(Role.MASTER))):
    try:
        profile = services.ProfileService(db).assign_discipler(profile_id, payload.discipler_id)
    except (ValueError, LookupError) as e:
        raise _http_error(e)
    logger.info("discipler_assigned profile=%s discipler=%s by=%s", profile_id, payload.discipler_id, actor.id)
    return profile


@app.put('/admin/profiles/{profile_id}/role', response_model=schemas.ProfileOut)
def admin_change_role(profile_id: str, payload: schemas.RoleChangeIn, db: Session = Depends(get_session),
                      actor: models.Profile = Depends(require_role(Role.MASTER))):
    try:
        profile = services.ProfileService(db).change_role(profile_id, payload.role)
    except (ValueError, LookupError) as e:
        raise _http_error(e)
    logger.info("role_changed profile=%s role=%s by=%s", profile_id, payload.role.value, actor.id)
    return profile


@app.get('/admin/stats', response_model=schemas.StatsOut)
def admin_stats(db: Session = Depends(get_session), actor: models.Profile = Depends(require_role(Role.MASTER))):
    return services.ProfileService(db).stats()


# --- groups & attendance ----------------------------------------------------

@app.get('/groups', response_model=List[schemas.GroupOut])
def list_groups(db: Session = Depends(get_session), actor: models.Profile = Depends(require_role(Role.DISCIPLER))):
    return services.GroupService(db).list_groups(actor)


@app.post('/groups', response_model=schemas.GroupOut, status_code=201)
def create_group(payload: schemas.GroupIn, db: Session = Depends(get_session),
                 actor: models.Profile = Depends(require_role(Role.DISCIPLER))):
    return services.GroupService(db).create_group(actor, payload)


@app.get('/groups/{group_id}/members', response_model=List[schemas.MemberOut])
def list_group_members(group_id: str, db: Session = Depends(get_session),
                       actor: models.Profile = Depends(require_role(Role.DISCIPLER))):
    try:
        return services.GroupService(db).list_members(actor, group_id)
    except (LookupError, PermissionError) as e:
        raise _http_error(e)


@app.post('/groups/{group_id}/members', response_model=schemas.MemberOut, status_code=201)
def add_group_member(group_id: str, payload: schemas.MemberIn, db: Session = Depends(get_session),
                     actor: models.Profile = Depends(require_role(Role.DISCIPLER))):
    try:
        return services.GroupService(db).add_member(actor, group_id, payload.disciple_id)
    except (ValueError, LookupError, PermissionError) as e:
        raise _http_error(e)


@app.get('/groups/{group_id}/attendance', response_model=List[schemas.AttendanceOut])
def get_attendance(group_id: str, on: Optional[date] = None, db: Session = Depends(get_session),
                   actor: models.Profile = Depends(require_role(Role.DISCIPLER))):
    """Attendance checklist of a group for one day (today by default)."""
    try:
        return services.GroupService(db).attendance_for_day(actor, group_id, on or date.today())
    except (LookupError, PermissionError) as e:
        raise _http_error(e)


@app.put('/groups/{group_id}/attendance', response_model=schemas.AttendanceOut)
def mark_attendance(group_id: str, payload: schemas.AttendanceIn, db: Session = Depends(get_session),
                    actor: models.Profile = Depends(require_role(Role.DISCIPLER))):
    try:
        return services.GroupService(db).mark_attendance(actor, group_id, payload)
    except (ValueError, LookupError, PermissionError) as e:
        raise _http_error(e)


# --- meeting reports ----------------------------------------------------------

@app.get('/reports', response_model=List[schemas.ReportOut])
def list_reports(db: Session = Depends(get_session), actor: models.Profile = Depends(require_role(Role.DISCIPLER))):
    return services.ReportService(db).list_reports(actor)


@app.post('/reports', response_model=schemas.ReportOut, status_code=201)
def create_report(
    title: str = Form(...),
    content: str = Form(...),
    meeting_date: date = Form(...),
    meeting_type: str = Form(...),
    participants_count: Optional[int] = Form(default=None),
    photo: Optional[UploadFile] = File(default=None),
    db: Session = Depends(get_session),
    actor: models.Profile = Depends(require_role(Role.DISCIPLER)),
):
    """File a meeting report; an optional photo is stored and linked by URL."""
    payload = None
    if photo is not None and photo.filename:
        payload = photo.file.read(settings.MAX_UPLOAD_BYTES + 1)
        if len(payload) > settings.MAX_UPLOAD_BYTES:
            raise HTTPException(status_code=400, detail='file too large')
    try:
        return services.ReportService(db).create_report(
            actor,
            title=title,
            content=content,
            meeting_date=meeting_date,
            meeting_type=meeting_type,
            participants_count=participants_count,
            photo=payload,
        )
    except ValueError as e:
        raise _http_error(e)


# --- prayers & devotionals ----------------------------------------------------

@app.post('/prayers', response_model=schemas.PrayerOut, status_code=201)
def submit_prayer(payload: schemas.PrayerIn, db: Session = Depends(get_session),
                  actor: models.Profile = Depends(get_current_profile)):
    return services.PrayerService(db).submit(actor, payload)


@app.get('/prayers', response_model=List[schemas.PrayerOut])
def list_prayers(db: Session = Depends(get_session), actor: models.Profile = Depends(get_current_profile)):
    return services.PrayerService(db).list_visible(actor)


@app.get('/devotionals/today', response_model=schemas.TodayDevotionalOut)
def devotional_today(db: Session = Depends(get_session), actor: models.Profile = Depends(get_current_profile)):
    try:
        return services.DevotionalService(db).today(actor)
    except LookupError as e:
        raise _http_error(e)


@app.post('/devotionals', response_model=schemas.DevotionalOut, status_code=201)
def create_devotional(payload: schemas.DevotionalIn, db: Session = Depends(get_session),
                      actor: models.Profile = Depends(require_role(Role.MASTER))):
    try:
        return services.DevotionalService(db).create(payload)
    except ValueError as e:
        raise _http_error(e)


@app.post('/devotionals/{devotional_id}/complete')
def complete_devotional(devotional_id: str, db: Session = Depends(get_session),
                        actor: models.Profile = Depends(get_current_profile)):
    try:
        done = services.DevotionalService(db).complete(actor, devotional_id)
    except LookupError as e:
        raise _http_error(e)
    return {'status': 'ok', 'completed_at': done.completed_at}


@app.get('/dashboard', response_model=schemas.DashboardOut)
def dashboard(db: Session = Depends(get_session), actor: models.Profile = Depends(get_current_profile)):
    """Landing summary shaped by the caller's role."""
    return services.DashboardService(db).build(actor)


@app.get("/health")
def health():
    """Lightweight health check for uptime monitoring."""
    return {"status": "ok"}
