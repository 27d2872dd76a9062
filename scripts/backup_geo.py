#!/usr/bin/env python
"""
Geography backup.

Dumps paises, regiones, provincias and comunas into a JSON snapshot that
scripts/restore_geo.py can load back.

Usage:
    python scripts/backup_geo.py
    python scripts/backup_geo.py --output /tmp/geografia.json

Environment:
    DATABASE_URL: database connection string (defaults to sqlite:///apc.db)
"""
from __future__ import annotations

import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.apc.modules.geografia.backup import dump_geography, write_snapshot  # noqa: E402
from scripts._db_utils import script_database_url, script_session  # noqa: E402

DEFAULT_BACKUP_PATH = ROOT / "scripts" / "geografia-backup.json"


def run_backup(output: Path, *, database_url: str | None = None) -> dict[str, int]:
    with script_session(script_database_url(database_url)) as s:
        snapshot = dump_geography(s)
    write_snapshot(snapshot, output)
    return {key: len(rows) for key, rows in snapshot.items()}


def main() -> None:
    parser = argparse.ArgumentParser(description="Back up the geography tables to JSON")
    parser.add_argument("--output", type=Path, default=DEFAULT_BACKUP_PATH, help="Snapshot file to write")
    args = parser.parse_args()

    print("Starting geography backup...")
    counts = run_backup(args.output)
    for key, count in counts.items():
        print(f"  {key}: {count}")
    print(f"Backup written to {args.output}")


if __name__ == "__main__":
    main()
