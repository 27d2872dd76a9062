import os
import sys
from pathlib import Path

from sqlalchemy import select
from werkzeug.security import generate_password_hash

# Ensure repo root is on sys.path when running as a script.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.apc.models import ROLE_ADMIN, User  # noqa: E402
from scripts._db_utils import script_database_url, script_session  # noqa: E402


def seed_only(*, database_url: str | None = None) -> None:
    """
    Seed the admin user in an idempotent way.
    Does NOT overwrite an existing admin user's password; an existing user
    with ADMIN_EMAIL is promoted to ADMIN.
    """
    admin_email = (os.environ.get("ADMIN_EMAIL") or "admin@accesspoint.cl").strip().lower()
    admin_password = os.environ.get("ADMIN_PASSWORD") or "change-me"

    # Direct engine/session so this can run in release without importing app.wsgi.
    with script_session(script_database_url(database_url)) as s:
        user = s.scalars(select(User).where(User.email == admin_email)).one_or_none()
        if not user:
            user = User(
                email=admin_email,
                name="Administrador",
                password_hash=generate_password_hash(admin_password),
                rol=ROLE_ADMIN,
                is_active=True,
            )
            s.add(user)
        elif user.rol != ROLE_ADMIN:
            user.rol = ROLE_ADMIN

    print("Initialized database (seed_only).")
    print(f"Admin email: {admin_email}")
    print("Admin password: (from ADMIN_PASSWORD)")


def main() -> None:
    seed_only(database_url=None)


if __name__ == "__main__":
    main()
