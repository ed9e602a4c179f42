# realtrack/services/auth.py
import re
import uuid
from typing import Any, Dict, Optional
from passlib.context import CryptContext
from sqlalchemy import text
from sqlalchemy.engine import Connection
from werkzeug.security import check_password_hash as wz_check

from ..models.user import RoleEnum

pwd_ctx = CryptContext(schemes=["bcrypt"], deprecated="auto")

# ---- Email validation ----
EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]{2,}$", re.I)

def _norm_email(v: Optional[str]) -> str:
    return (v or "").strip().lower()

def _assert_valid_email(email: str) -> None:
    if not EMAIL_RE.fullmatch(email):
        # routes map this to 400
        raise ValueError("invalid_email")

class AuthService:
    # ---------- password helpers ----------
    @staticmethod
    def hash_password(password: str) -> str:
        return pwd_ctx.hash(password)

    @staticmethod
    def verify_password(password: str, stored_hash: Optional[str]) -> bool:
        """
        Accept both bcrypt ($2b$...) and Werkzeug PBKDF2 ('pbkdf2:sha256:...') hashes.
        """
        if not stored_hash or not password:
            return False
        try:
            if stored_hash.startswith("pbkdf2:") or stored_hash.startswith("scrypt:"):
                return wz_check(stored_hash, password)
            return pwd_ctx.verify(password, stored_hash)
        except ValueError:
            # unknown/corrupt hash format
            return False

    # ---------- users ----------
    @staticmethod
    def get_user_by_email(conn: Connection, email: str) -> Optional[Dict[str, Any]]:
        row = conn.execute(
            text("""
                SELECT id, email, name, role, email_verified, password_hash
                FROM users
                WHERE lower(email) = :email
                LIMIT 1
            """),
            {"email": _norm_email(email)},
        ).mappings().one_or_none()
        return dict(row) if row else None

    @staticmethod
    def create_user(conn: Connection, user_data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Insert a user; the caller owns the transaction.
        Raises ValueError('invalid_email' | 'email_exists' | 'invalid_role' | 'invalid_password').
        """
        email = _norm_email(user_data.get("email"))
        _assert_valid_email(email)

        existing = conn.execute(
            text("SELECT 1 FROM users WHERE lower(email) = :email"),
            {"email": email},
        ).scalar()
        if existing:
            raise ValueError("email_exists")

        try:
            role = RoleEnum((user_data.get("role") or RoleEnum.partner.value).strip().lower())
        except ValueError:
            raise ValueError("invalid_role")

        password = user_data.get("password") or ""
        if not password:
            raise ValueError("invalid_password")

        row = conn.execute(
            text("""
                INSERT INTO users (id, email, name, role, email_verified, password_hash)
                VALUES (:id, :email, :name, :role, :verified, :password_hash)
                RETURNING id, email, name, role, email_verified, created_at
            """),
            {
                "id": str(uuid.uuid4()),
                "email": email,
                "name": (user_data.get("name") or "").strip() or None,
                "role": role.value,
                "verified": bool(user_data.get("email_verified", False)),
                "password_hash": AuthService.hash_password(password),
            },
        ).mappings().one()
        return dict(row)

    @staticmethod
    def mark_email_verified(conn: Connection, user_id: str) -> None:
        conn.execute(
            text("""
                UPDATE users
                SET email_verified = TRUE, updated_at = CURRENT_TIMESTAMP
                WHERE id = :uid
            """),
            {"uid": user_id},
        )
