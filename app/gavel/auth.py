from __future__ import annotations

import uuid
from collections import defaultdict
from datetime import datetime, timedelta

from flask import Blueprint, current_app, g, request, session
from sqlalchemy.exc import IntegrityError
from werkzeug.security import check_password_hash, generate_password_hash

from app.gavel.audit import record_event
from app.gavel.db import db_session
from app.gavel.errors import PreconditionFailed, ValidationError
from app.gavel.identity import Identity, current_identity
from app.gavel.models import User
from app.gavel.rbac import require_login
from app.gavel.security import ensure_csrf_token, rotate_csrf_token
from app.gavel.utils import json_body, optional_str

bp = Blueprint("auth", __name__)
_login_attempts: dict[str, list[datetime]] = defaultdict(list)
_LOGIN_RATE_LIMIT = 5
_LOGIN_RATE_WINDOW = 300  # seconds
_MIN_PASSWORD_LENGTH = 8


def _check_rate_limit(ip: str) -> bool:
    now = datetime.utcnow()
    cutoff = now - timedelta(seconds=_LOGIN_RATE_WINDOW)
    _login_attempts[ip] = [t for t in _login_attempts[ip] if t > cutoff]
    return len(_login_attempts[ip]) >= _LOGIN_RATE_LIMIT


def _record_attempt(ip: str) -> None:
    _login_attempts[ip].append(datetime.utcnow())


def user_to_dict(u: User) -> dict:
    return {
        "id": u.id,
        "email": u.email,
        "display_name": u.display_name,
        "created_at": u.created_at.isoformat() if u.created_at else None,
    }


def _session_payload(u: User) -> dict:
    return {"user": user_to_dict(u), "csrf_token": ensure_csrf_token()}


def load_current_user() -> None:
    """
    Loads g.current_user from the signed session cookie.
    Also assigns a simple per-request request_id (for audit/log correlation).
    """
    if not getattr(g, "request_id", None):
        g.request_id = uuid.uuid4().hex
    if request.path.startswith(("/health", "/healthz")):
        g.current_user = None
        return

    user_id = session.get("user_id")
    if not user_id:
        g.current_user = None
        return

    try:
        s = db_session()
        user = s.get(User, int(user_id))
        if not user or not user.is_active:
            session.pop("user_id", None)
            g.current_user = None
            return
        g.current_user = user
    except Exception as e:
        current_app.logger.error("load_current_user DB error (clearing session): %s", e)
        session.pop("user_id", None)
        g.current_user = None


@bp.post("/register")
def register():
    data = json_body()
    email = (optional_str(data, "email") or "").strip().lower()
    password = optional_str(data, "password") or ""
    display_name = (optional_str(data, "display_name") or "").strip() or None

    if not email or "@" not in email:
        raise ValidationError("A valid email is required.")
    if len(password) < _MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {_MIN_PASSWORD_LENGTH} characters.")

    s = db_session()
    if s.query(User).filter(User.email == email).one_or_none():
        raise PreconditionFailed("An account with this email already exists.")

    user = User(
        email=email,
        password_hash=generate_password_hash(password),
        display_name=display_name,
        is_active=True,
    )
    s.add(user)
    try:
        s.flush()
    except IntegrityError as e:
        s.rollback()
        raise PreconditionFailed("An account with this email already exists.") from e

    record_event(s, actor=Identity.from_user(user), action="auth.register", entity_type="User", entity_id=str(user.id))
    s.commit()

    session["user_id"] = user.id
    g.current_user = user
    rotate_csrf_token()
    return _session_payload(user), 201


@bp.post("/login")
def login_post():
    data = json_body()
    email = (optional_str(data, "email") or "").strip().lower()
    password = optional_str(data, "password") or ""
    ip = request.remote_addr or "unknown"

    if _check_rate_limit(ip):
        return {"error": "rate_limited", "message": "Too many login attempts. Please wait 5 minutes."}, 429

    _record_attempt(ip)

    try:
        s = db_session()
        user = s.query(User).filter(User.email == email).one_or_none()
        if not user or not user.is_active or not check_password_hash(user.password_hash, password):
            record_event(
                s,
                actor=None,
                action="auth.login_failed",
                entity_type="User",
                entity_id=email,
                reason="Invalid credentials",
                metadata={"email": email},
            )
            s.commit()
            return {"error": "invalid_credentials", "message": "Invalid credentials."}, 401

        session["user_id"] = user.id
        _login_attempts[ip].clear()
        rotate_csrf_token()
        record_event(s, actor=Identity.from_user(user), action="auth.login", entity_type="User", entity_id=str(user.id))
        s.commit()
        return _session_payload(user)
    except Exception:
        current_app.logger.exception("Login POST crashed (email=%s request_id=%s)", email, getattr(g, "request_id", None))
        raise


@bp.post("/logout")
def logout():
    s = db_session()
    actor = current_identity()
    if actor:
        record_event(s, actor=actor, action="auth.logout", entity_type="User", entity_id=str(actor.id))
        s.commit()
    session.pop("user_id", None)
    session.pop("csrf_token", None)
    return {"ok": True}


@bp.get("/me")
@require_login
def me():
    return _session_payload(g.current_user)


@bp.patch("/me")
@require_login
def update_me():
    data = json_body()
    display_name = (optional_str(data, "display_name") or "").strip()
    if not display_name:
        raise ValidationError("display_name is required.")

    s = db_session()
    user: User = g.current_user
    previous = user.display_name
    user.display_name = display_name
    user.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=Identity.from_user(user),
        action="user.display_name",
        entity_type="User",
        entity_id=str(user.id),
        metadata={"from": previous, "to": display_name},
    )
    s.commit()
    return _session_payload(user)
