# realtrack/routes/auth.py
from flask import Blueprint, request, jsonify, current_app, g

from .. import get_conn
from ..auth.guards import _server_error, require_auth
from ..auth.session import issue_session_token
from ..services.auth import AuthService, _norm_email

auth_bp = Blueprint("auth", __name__)


def _cookie_name() -> str:
    return current_app.config.get("AUTH_COOKIE_NAME", "realtrack_session")


@auth_bp.post("/auth/login")
def login():
    """
    POST /api/auth/login
    Body: { "email": str, "password": str }
    Returns: 200 { "access_token": <jwt>, "user": { id, email, name, role } } + session cookie
             400 on missing fields, 401 on bad credentials
    """
    data = request.get_json(silent=True) or {}
    email = _norm_email(data.get("email"))
    password = data.get("password") or ""
    if not email or not password:
        return {"error": "bad_request", "message": "email and password required"}, 400

    secret = current_app.config.get("JWT_SECRET")
    if not secret:
        raise RuntimeError("JWT_SECRET not configured")

    try:
        with get_conn() as conn:
            row = AuthService.get_user_by_email(conn, email)
    except Exception:
        current_app.logger.exception("login lookup failed")
        return _server_error()

    if not row or not AuthService.verify_password(password, row["password_hash"]):
        return {"error": "invalid_credentials"}, 401

    role = getattr(row["role"], "value", row["role"])
    expires_hours = int(current_app.config.get("JWT_EXPIRES_HOURS", 24))
    token = issue_session_token(row["id"], row["email"], role, secret, expires_hours)

    user = {
        "id": row["id"],
        "email": row["email"],
        "name": row["name"],
        "role": role,
    }
    resp = jsonify({"access_token": token, "user": user})
    resp.set_cookie(
        _cookie_name(),
        token,
        max_age=expires_hours * 3600,
        httponly=True,
        samesite="Lax",
        secure=request.is_secure,
    )
    return resp, 200


@auth_bp.post("/auth/logout")
def logout():
    resp = jsonify({"ok": True})
    resp.delete_cookie(_cookie_name())
    return resp, 200


@auth_bp.get("/auth/me")
@require_auth()
def me():
    ctx = g.auth
    return jsonify({"user": {"id": ctx.user_id, "email": ctx.email, "role": ctx.role}}), 200
