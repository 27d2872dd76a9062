from __future__ import annotations

import uuid
from collections import defaultdict
from datetime import datetime, timedelta

from flask import Blueprint, current_app, g, jsonify, request, session
from werkzeug.security import check_password_hash, generate_password_hash

from app.apc.audit import record_event
from app.apc.db import db_session
from app.apc.models import ROLE_TECNICO, User
from app.apc.rbac import require_login
from app.apc.security import ensure_csrf_token
from app.apc.utils import clean_str, is_valid_email, user_to_dict

bp = Blueprint("auth", __name__)
_login_attempts: dict[str, list[datetime]] = defaultdict(list)
_LOGIN_RATE_WINDOW = 300  # seconds
_MIN_PASSWORD_LENGTH = 6


def _check_rate_limit(ip: str) -> bool:
    now = datetime.utcnow()
    cutoff = now - timedelta(seconds=_LOGIN_RATE_WINDOW)
    _login_attempts[ip] = [t for t in _login_attempts[ip] if t > cutoff]
    return len(_login_attempts[ip]) >= int(current_app.config.get("LOGIN_RATE_LIMIT", 5))


def _record_attempt(ip: str) -> None:
    _login_attempts[ip].append(datetime.utcnow())


def _payload() -> dict:
    data = request.get_json(silent=True)
    if isinstance(data, dict):
        return data
    return request.form.to_dict()


def _password(data: dict) -> str:
    password = data.get("password")
    return password if isinstance(password, str) else ""


def load_current_user() -> None:
    """
    Loads g.current_user from the signed session cookie.
    Also assigns a per-request request_id (for audit/log correlation).
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

    s = db_session()
    user = s.get(User, str(user_id))
    if not user or not user.is_active:
        session.pop("user_id", None)
        g.current_user = None
        return
    g.current_user = user


@bp.post("/login")
def login_post():
    data = _payload()
    email = (clean_str(data.get("email")) or "").lower()
    password = _password(data)
    ip = request.remote_addr or "unknown"

    if _check_rate_limit(ip):
        return jsonify({"message": "Demasiados intentos de inicio de sesión. Espere 5 minutos."}), 429

    _record_attempt(ip)

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
        current_app.logger.info("Login failed (email=%s request_id=%s)", email, g.request_id)
        return jsonify({"message": "Credenciales inválidas."}), 401

    session.clear()
    session["user_id"] = user.id
    session.permanent = True
    _login_attempts[ip].clear()
    record_event(s, actor=user, action="auth.login", entity_type="User", entity_id=user.id)
    s.commit()
    return jsonify({"user": user_to_dict(user), "csrf_token": ensure_csrf_token()})


@bp.post("/logout")
def logout():
    s = db_session()
    user = getattr(g, "current_user", None)
    if user:
        record_event(s, actor=user, action="auth.logout", entity_type="User", entity_id=user.id)
        s.commit()
    session.clear()
    return jsonify({"ok": True})


@bp.get("/me")
@require_login
def me():
    return jsonify({"user": user_to_dict(g.current_user), "csrf_token": ensure_csrf_token()})


@bp.post("/register")
def register():
    data = _payload()
    email = (clean_str(data.get("email")) or "").lower()
    name = clean_str(data.get("name") or data.get("fullname"))
    password = _password(data)

    if not is_valid_email(email):
        return jsonify({"message": "Correo electrónico inválido."}), 400
    if len(password) < _MIN_PASSWORD_LENGTH:
        return jsonify({"message": "La contraseña debe contener al menos 6 caracteres."}), 400

    s = db_session()
    if s.query(User).filter(User.email == email).one_or_none():
        return jsonify({"message": "El correo ya está registrado."}), 409

    user = User(
        email=email,
        name=name,
        password_hash=generate_password_hash(password),
        rol=ROLE_TECNICO,
        is_active=True,
    )
    s.add(user)
    s.flush()
    record_event(s, actor=user, action="auth.register", entity_type="User", entity_id=user.id)
    s.commit()
    return jsonify(user_to_dict(user)), 201
