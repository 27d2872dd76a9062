import secrets

from flask import Request, session

CSRF_HEADER = "X-CSRF-Token"
CSRF_FIELD = "csrf_token"


def ensure_csrf_token() -> str:
    """Per-session CSRF token, created on login and echoed by /auth/me."""
    if not session.get(CSRF_FIELD):
        session[CSRF_FIELD] = secrets.token_urlsafe(32)
    return session[CSRF_FIELD]


def _submitted_token(req: Request) -> str | None:
    token = req.headers.get(CSRF_HEADER) or req.form.get(CSRF_FIELD)
    if token or not req.is_json:
        return token
    body = req.get_json(silent=True)
    return body.get(CSRF_FIELD) if isinstance(body, dict) else None


def validate_csrf(req: Request) -> bool:
    """Header first, then form field, then a csrf_token key in a JSON object body."""
    expected = session.get(CSRF_FIELD)
    token = _submitted_token(req)
    if not token or not expected:
        return False
    return secrets.compare_digest(str(token), str(expected))
