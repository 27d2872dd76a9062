from __future__ import annotations

import re
from datetime import date, datetime, timezone
from typing import Any

from flask import request

from app.apc.models import User

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def iso(value: datetime | date | None) -> str | None:
    if value is None:
        return None
    return value.isoformat()


def clean_str(value: Any) -> str | None:
    """Strip a payload value; blank becomes None."""
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def is_valid_email(value: str | None) -> bool:
    return bool(value and _EMAIL_RE.match(value))


def parse_datetime(value: Any) -> datetime | None:
    """
    Parse ISO 8601 datetimes ("2025-06-29T03:45:20", "2025-06-29", trailing "Z").
    Raises ValueError on malformed input; blank → None.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    s = str(value).strip()
    if not s:
        return None
    if s.endswith("Z"):
        s = s[:-1]
    dt = datetime.fromisoformat(s)
    # Stored timestamps are naive UTC.
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def user_to_dict(u: User | None) -> dict | None:
    if u is None:
        return None
    return {"id": u.id, "email": u.email, "name": u.name, "rol": u.rol}


def json_payload() -> dict:
    """The request's JSON object body, or {} for anything else."""
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def query_arg(*names: str) -> str:
    """First non-blank query string value among several accepted spellings."""
    for n in names:
        v = request.args.get(n)
        if v is not None and v.strip():
            return v.strip()
    return ""
