from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import contextmanager

from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from app.apc.db import build_engine, build_sessionmaker


def script_database_url(database_url: str | None = None) -> str:
    return (database_url or os.environ.get("DATABASE_URL") or "sqlite:///apc.db").strip()


@contextmanager
def script_sessionmaker(db_url: str) -> Generator[sessionmaker, None, None]:
    """Engine-backed sessionmaker for scripts that manage their own transactions."""
    engine: Engine = build_engine(db_url)
    try:
        yield build_sessionmaker(engine)
    finally:
        engine.dispose()


@contextmanager
def script_session(db_url: str) -> Generator[Session, None, None]:
    with script_sessionmaker(db_url) as sm:
        s: Session = sm()
        try:
            yield s
            s.commit()
        except Exception:
            s.rollback()
            raise
        finally:
            s.close()
