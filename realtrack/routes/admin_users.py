# realtrack/routes/admin_users.py
from datetime import datetime
from flask import Blueprint, request, jsonify, current_app
from sqlalchemy.exc import IntegrityError
from psycopg.errors import UniqueViolation

from .. import get_conn
from ..auth.guards import require_admin
from ..models.user import RoleEnum
from ..services.auth import AuthService

admin_users_bp = Blueprint("admin_users", __name__)

ALLOWED_ROLES = {r.value for r in RoleEnum}

@admin_users_bp.post("/admin/users")
@require_admin
def create_user():
    """
    POST /admin/users: create a user.
    Body: { name, email, password, role }
    Returns:
      201 { user }
      400 { error: bad_request | invalid_email | invalid_role }
      401 { error: Unauthorized }
      403 { error: insufficient_role }
      409 { error: email_exists }
      500 { error: server_error }
    """
    data = request.get_json(silent=True) or {}

    if not (data.get("email") or "").strip() or not data.get("password"):
        return jsonify({
            "error": "bad_request",
            "hint": {
                "required": ["email", "password"],
                "role_allowed": sorted(ALLOWED_ROLES),
            },
        }), 400

    try:
        with get_conn() as conn:
            tx = conn.begin()
            try:
                user = AuthService.create_user(conn, data)
                tx.commit()
            except Exception:
                if tx.is_active:
                    tx.rollback()
                raise
    except ValueError as e:
        code = str(e)
        if code == "email_exists":
            return jsonify({"error": code}), 409
        return jsonify({"error": code}), 400
    except IntegrityError as e:
        orig = getattr(e, "orig", None)
        sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
        if isinstance(orig, UniqueViolation) or sqlstate == "23505":
            return jsonify({"error": "email_exists"}), 409
        current_app.logger.exception("create_user failed (integrity)")
        return jsonify({"error": "server_error"}), 500
    except Exception:
        current_app.logger.exception("create_user failed")
        return jsonify({"error": "server_error"}), 500

    if isinstance(user.get("created_at"), datetime):
        user["created_at"] = user["created_at"].isoformat()
    user["role"] = getattr(user.get("role"), "value", user.get("role"))
    return jsonify({"user": user}), 201
