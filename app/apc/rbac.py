from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import current_app, g, jsonify

from app.apc.models import User


def user_has_role(user: User | None, *roles: str) -> bool:
    if not user or not user.is_active:
        return False
    return user.rol in roles


def current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _unauthorized():
    return jsonify({"message": "No autorizado"}), 401


def require_login(fn: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        user: User | None = getattr(g, "current_user", None)
        if not user or not user.is_active:
            return _unauthorized()
        return fn(*args, **kwargs)

    return wrapped


def require_role(*roles: str, message: str = "Acceso prohibido") -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            user: User | None = getattr(g, "current_user", None)
            # Unauthenticated → 401
            if not user or not user.is_active:
                return _unauthorized()
            # Authenticated but wrong role → 403
            if not user_has_role(user, *roles):
                current_app.logger.warning(
                    "Forbidden: user=%s rol=%s required=%s request_id=%s",
                    user.email,
                    user.rol,
                    ",".join(roles),
                    getattr(g, "request_id", None),
                )
                return jsonify({"message": message}), 403
            return fn(*args, **kwargs)

        return wrapped

    return decorator
