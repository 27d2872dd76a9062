#!/usr/bin/env python
"""
Geography restore.

DELETES every pais/region/provincia/comuna and reloads them from a snapshot
written by scripts/backup_geo.py. The delete and the insert run in two
separate transactions; if the insert fails the tables are left empty and the
restore can simply be re-run.

Usage:
    python scripts/restore_geo.py
    python scripts/restore_geo.py --input /tmp/geografia.json --yes

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

from app.apc.modules.geografia.backup import SnapshotError, read_snapshot, restore_geography  # noqa: E402
from scripts._db_utils import script_database_url, script_sessionmaker  # noqa: E402

DEFAULT_BACKUP_PATH = ROOT / "scripts" / "geografia-backup.json"


def run_restore(path: Path, *, database_url: str | None = None) -> dict[str, int]:
    snapshot = read_snapshot(path)
    with script_sessionmaker(script_database_url(database_url)) as sm:
        return restore_geography(sm, snapshot)


def main() -> None:
    parser = argparse.ArgumentParser(description="Restore the geography tables from a JSON snapshot")
    parser.add_argument("--input", type=Path, default=DEFAULT_BACKUP_PATH, help="Snapshot file to read")
    parser.add_argument("--yes", action="store_true", help="Skip the confirmation prompt")
    args = parser.parse_args()

    print("Starting geography restore...")
    if not args.input.exists():
        print(f"ERROR: backup file not found: {args.input}")
        sys.exit(1)

    if not args.yes:
        answer = input(
            "This DELETES all geography data and reloads it from the backup. It cannot be undone. Continue? (s/n): "
        )
        if answer.strip().lower() != "s":
            print("Cancelled.")
            return

    try:
        counts = run_restore(args.input)
    except SnapshotError as e:
        print(f"ERROR: invalid snapshot: {e}")
        sys.exit(1)
    for key, count in counts.items():
        print(f"  {key}: {count}")
    print("Restore complete.")


if __name__ == "__main__":
    main()
