"""
JSON snapshot backup/restore of the geography tables.

Snapshot layout:
    {"paises": [...], "regiones": [...], "provincias": [...], "comunas": [...]}
Each entry carries every column of its row (timestamps as ISO strings).

Restore is a plain two-step ETL, not a recoverable pipeline:
  1. one transaction deletes every row, children first (comuna → provincia → region → pais);
  2. a second transaction inserts the snapshot, parents first (pais → region → provincia → comuna).
If step 2 fails the tables stay empty; re-run the restore from the same snapshot.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from pathlib import Path
from typing import Any

from sqlalchemy import delete, insert, select
from sqlalchemy.orm import Session

from app.apc.modules.geografia.models import Comuna, Pais, Provincia, Region
from app.apc.utils import iso, parse_datetime

logger = logging.getLogger(__name__)

# Parent-first order; deletion walks it backwards.
SNAPSHOT_TABLES: tuple[tuple[str, type], ...] = (
    ("paises", Pais),
    ("regiones", Region),
    ("provincias", Provincia),
    ("comunas", Comuna),
)

_DATETIME_COLUMNS = ("created_at", "updated_at")


class SnapshotError(ValueError):
    pass


def _row_to_dict(obj: Any) -> dict:
    d = {}
    for col in obj.__table__.columns:
        value = getattr(obj, col.key)
        d[col.key] = iso(value) if col.key in _DATETIME_COLUMNS else value
    return d


def dump_geography(s: Session) -> dict[str, list[dict]]:
    """Read all four geography tables into a JSON-serializable snapshot."""
    snapshot: dict[str, list[dict]] = {}
    for key, model in SNAPSHOT_TABLES:
        rows = s.scalars(select(model).order_by(model.id.asc())).all()
        snapshot[key] = [_row_to_dict(r) for r in rows]
    return snapshot


def write_snapshot(snapshot: dict, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(snapshot, indent=2, ensure_ascii=False), encoding="utf-8")


def read_snapshot(path: Path) -> dict[str, list[dict]]:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except ValueError as e:
        raise SnapshotError(f"Snapshot is not valid JSON: {e}") from e
    validate_snapshot(data)
    return data



def validate_snapshot(data: Any) -> None:
    if not isinstance(data, dict):
        raise SnapshotError("Snapshot must be a JSON object.")
    for key, _model in SNAPSHOT_TABLES:
        rows = data.get(key)
        if not isinstance(rows, list):
            raise SnapshotError(f"Snapshot is missing the {key!r} list.")
        for i, row in enumerate(rows):
            if not isinstance(row, dict) or not row.get("id") or not row.get("nombre"):
                raise SnapshotError(f"{key}[{i}] needs at least 'id' and 'nombre'.")


def _prepare_rows(model: type, rows: list[dict]) -> list[dict]:
    columns = {c.key for c in model.__table__.columns}
    prepared = []
    for row in rows:
        values = {k: v for k, v in row.items() if k in columns}
        for col in _DATETIME_COLUMNS:
            if col in columns:
                values[col] = parse_datetime(values.get(col))
                if values[col] is None:
                    values.pop(col)
        prepared.append(values)
    return prepared


def clear_geography(s: Session) -> dict[str, int]:
    """Delete every geography row, children first. Returns deleted counts per table."""
    counts: dict[str, int] = {}
    for key, model in reversed(SNAPSHOT_TABLES):
        result = s.execute(delete(model))
        counts[key] = result.rowcount or 0
        logger.info("Deleted %s rows from %s", counts[key], model.__tablename__)
    return counts


def load_geography(s: Session, snapshot: dict[str, list[dict]]) -> dict[str, int]:
    """Insert snapshot rows, parents first. Returns inserted counts per table."""
    counts: dict[str, int] = {}
    for key, model in SNAPSHOT_TABLES:
        rows = _prepare_rows(model, snapshot.get(key) or [])
        if rows:
            s.execute(insert(model), rows)
        counts[key] = len(rows)
        logger.info("Inserted %s rows into %s", counts[key], model.__tablename__)
    return counts


def restore_geography(session_factory: Callable[[], Session], snapshot: dict[str, list[dict]]) -> dict[str, int]:
    """
    Replace the geography tables with the snapshot, using two separate transactions.
    Rows referenced from direcciones block the delete step (it rolls back untouched).
    """
    validate_snapshot(snapshot)

    s = session_factory()
    try:
        deleted = clear_geography(s)
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()
    logger.info("Geography tables cleared: %s", deleted)

    s = session_factory()
    try:
        inserted = load_geography(s, snapshot)
        s.commit()
    except Exception:
        s.rollback()
        logger.error("Restore insert failed; geography tables are now EMPTY. Re-run the restore from the snapshot.")
        raise
    finally:
        s.close()
    logger.info("Geography tables restored: %s", inserted)
    return inserted
