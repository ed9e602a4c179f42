"""
Create the first admin account so someone can log in and create the rest.

    python seed_admin.py admin@example.com 'password' "Site Admin"
"""
import sys
from dotenv import load_dotenv
from pathlib import Path

load_dotenv(dotenv_path=Path(__file__).with_name(".env"), override=True)

from realtrack.db.engine import engine  # import AFTER load_dotenv
from realtrack.services.auth import AuthService

def seed_admin(email, password, name=None):
    with engine.connect() as conn:
        tx = conn.begin()
        try:
            user = AuthService.create_user(conn, {
                "email": email,
                "password": password,
                "name": name,
                "role": "admin",
                "email_verified": True,
            })
            tx.commit()
        except Exception:
            if tx.is_active:
                tx.rollback()
            raise
    return user

if __name__ == "__main__":
    if len(sys.argv) < 3:
        print(__doc__)
        sys.exit(1)
    try:
        created = seed_admin(sys.argv[1], sys.argv[2], sys.argv[3] if len(sys.argv) > 3 else None)
    except ValueError as e:
        print(f"Could not create admin: {e}")
        sys.exit(1)
    print(f"Created admin {created['email']} ({created['id']})")
