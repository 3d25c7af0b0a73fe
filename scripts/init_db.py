import os
import sys
from datetime import datetime
from pathlib import Path

# Ensure repo root is on sys.path when running as a script.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.portal.models import MEMBERSHIP_ACTIVE, ROLE_ADMIN, User
from app.portal.security import hash_password
from scripts._db_utils import script_session


def seed_only(*, database_url: str | None = None) -> None:
    """
    Bootstrap the admin account in an idempotent way.
    Does NOT overwrite an existing admin user's password.
    """
    admin_email = (os.environ.get("ADMIN_EMAIL") or "").strip().lower()
    admin_password = os.environ.get("ADMIN_PASSWORD") or ""
    if not admin_email or not admin_password:
        print("ADMIN_EMAIL/ADMIN_PASSWORD not set; skipping admin bootstrap.")
        return

    db_url = (database_url or os.environ.get("DATABASE_URL") or "sqlite:///portal.db").strip()

    # Direct engine/session so this can run in release without importing app.wsgi.
    with script_session(db_url) as s:
        user = s.query(User).filter(User.email == admin_email).one_or_none()
        if not user:
            user = User(
                email=admin_email,
                password_hash=hash_password(admin_password),
                name="Administrador",
                role=ROLE_ADMIN,
                is_active=True,
                is_email_verified=True,
                membership_status=MEMBERSHIP_ACTIVE,
                membership_start_date=datetime.utcnow(),
            )
            s.add(user)
            print(f"Created admin user {admin_email}")
        elif user.role != ROLE_ADMIN or not user.is_active:
            user.role = ROLE_ADMIN
            user.is_active = True
            print(f"Promoted existing user {admin_email} to admin")

    print("Initialized database (seed_only).")
    print(f"Admin email: {admin_email}")
    print("Admin password: (from ADMIN_PASSWORD)")


def reset_admin_password(email: str, password: str, *, database_url: str | None = None) -> None:
    """Recovery path for a locked-out admin. Revokes every stored refresh token."""
    if len(password) < 8:
        raise SystemExit("Password must be at least 8 characters.")
    db_url = (database_url or os.environ.get("DATABASE_URL") or "sqlite:///portal.db").strip()
    with script_session(db_url) as s:
        user = s.query(User).filter(User.email == email.strip().lower()).one_or_none()
        if user is None:
            raise SystemExit(f"No user with email {email}")
        if user.role != ROLE_ADMIN:
            raise SystemExit(f"{email} is not an admin (role={user.role})")
        user.password_hash = hash_password(password)
        user.refresh_tokens.clear()
    print(f"Password reset for {email}; existing sessions revoked.")


def main() -> None:
    if len(sys.argv) >= 2 and sys.argv[1] == "reset":
        if len(sys.argv) != 4:
            raise SystemExit("Usage: python scripts/init_db.py reset <email> <new-password>")
        reset_admin_password(sys.argv[2], sys.argv[3])
        return
    seed_only(database_url=None)


if __name__ == "__main__":
    main()
