"""
Domain exceptions raised by services, translated to JSON responses by the
app-level error handlers registered in create_app().
"""
from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING

from sqlalchemy.exc import IntegrityError

if TYPE_CHECKING:
    from sqlalchemy.orm import Session


class ApiError(Exception):
    status_code = 400

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> dict:
        return {"message": self.message}


class NotFoundError(ApiError):
    status_code = 404


class ConflictError(ApiError):
    status_code = 409


class DependencyError(ApiError):
    """A delete was refused because other rows still reference the record."""

    status_code = 400


class ValidationFailed(ApiError):
    status_code = 400

    def __init__(self, errors: list[str]) -> None:
        self.errors = list(errors)
        super().__init__(validation_message(self.errors))

    def to_dict(self) -> dict:
        return {"message": self.message, "errors": self.errors}


def validation_message(errors: list[str]) -> str:
    return "Error de validación: " + ", ".join(errors)


# Postgres SQLSTATE codes
_PG_UNIQUE_VIOLATION = "23505"
_PG_FOREIGN_KEY_VIOLATION = "23503"


def integrity_error_kind(exc: IntegrityError) -> str | None:
    """
    Classify a constraint violation as "unique" or "foreign_key".
    Returns None for other integrity errors (NOT NULL, CHECK).
    """
    orig = getattr(exc, "orig", None)
    code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if code == _PG_UNIQUE_VIOLATION:
        return "unique"
    if code == _PG_FOREIGN_KEY_VIOLATION:
        return "foreign_key"

    text = str(orig if orig is not None else exc).lower()
    if "unique constraint" in text or "duplicate key" in text:
        return "unique"
    if "foreign key constraint" in text:
        return "foreign_key"
    return None


@contextmanager
def integrity_guard(
    s: "Session",
    *,
    unique: str | None = None,
    foreign_key: str | None = None,
    foreign_key_status: int = 404,
) -> Iterator[None]:
    """
    Roll back and translate constraint violations raised inside the block.
    Unmapped violations are re-raised for the app-level IntegrityError handler.
    """
    try:
        yield
    except IntegrityError as e:
        s.rollback()
        kind = integrity_error_kind(e)
        if kind == "unique" and unique:
            raise ConflictError(unique) from e
        if kind == "foreign_key" and foreign_key:
            raise ApiError(foreign_key, foreign_key_status) from e
        raise
