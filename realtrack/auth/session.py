# realtrack/auth/session.py
"""
Session resolution: request cookies/headers -> AuthContext.

The resolver only decodes the signed session token; it never queries the
database, so routes can reject anonymous requests before opening a
connection.
"""
from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Mapping, Optional
from flask import request, current_app
import jwt

JWT_ALGORITHM = "HS256"


@dataclass(frozen=True)
class AuthContext:
    """Identity of the caller, passed explicitly into authorization checks."""
    user_id: Optional[str]
    email: Optional[str] = None
    role: Optional[str] = None

    @property
    def is_authenticated(self) -> bool:
        return bool(self.user_id)

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


ANONYMOUS = AuthContext(user_id=None)


def issue_session_token(user_id: str, email: str, role: str, secret: str, expires_hours: int = 24) -> str:
    now = datetime.now(timezone.utc)
    exp = now + timedelta(hours=int(expires_hours))
    return jwt.encode(
        {
            "sub": str(user_id),
            "email": email,
            "role": role,
            "iat": int(now.timestamp()),
            "exp": int(exp.timestamp()),
        },
        secret,
        algorithm=JWT_ALGORITHM,
    )


def _bearer_token(headers: Mapping[str, str]) -> Optional[str]:
    auth = headers.get("Authorization", "") or ""
    if not auth.lower().startswith("bearer "):
        return None
    parts = auth.split(None, 1)
    return parts[1] if len(parts) == 2 else None


def decode_session_token(token: Optional[str], secret: Optional[str]) -> Optional[dict]:
    if not token or not secret:
        return None
    try:
        return jwt.decode(token, secret, algorithms=[JWT_ALGORITHM])
    except (jwt.ExpiredSignatureError, jwt.InvalidTokenError):
        return None


def resolve_session(
    headers: Mapping[str, str],
    cookies: Mapping[str, str],
    secret: Optional[str],
    cookie_name: str = "realtrack_session",
) -> Optional[AuthContext]:
    """Return the caller's AuthContext, or None when there is no valid session.

    The session cookie wins over an Authorization header.
    """
    token = cookies.get(cookie_name) or _bearer_token(headers)
    payload = decode_session_token(token, secret)
    if not payload:
        return None
    user_id = str(payload.get("sub") or "").strip()
    if not user_id:
        return None
    return AuthContext(user_id=user_id, email=payload.get("email"), role=payload.get("role"))


def current_session() -> Optional[AuthContext]:
    """resolve_session() bound to the active Flask request and app config."""
    return resolve_session(
        request.headers,
        request.cookies,
        current_app.config.get("JWT_SECRET"),
        current_app.config.get("AUTH_COOKIE_NAME", "realtrack_session"),
    )
