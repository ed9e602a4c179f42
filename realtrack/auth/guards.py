# realtrack/auth/guards.py
from __future__ import annotations
from functools import wraps
from typing import Iterable, Optional
from flask import jsonify, current_app, g

from .. import get_conn
from .session import current_session
from ..services.authorization import (
    AccessDenied,
    Permission,
    Unauthenticated,
    verify_project_access,
)

# ---------- helpers ----------
def _json(status: int, payload: dict):
    return jsonify(payload), status

def _unauth(msg="Unauthorized"):
    return _json(401, {"error": msg})

def _forbid(msg="Access denied"):
    return _json(403, {"error": msg})

def _not_found(msg="Not found"):
    return _json(404, {"error": msg})

def _server_error(msg="Internal server error"):
    return _json(500, {"error": msg})

# ---------- top-level auth ----------
def require_auth(roles: Optional[Iterable[str]] = None):
    """Require a valid session; optional role filter. Sets g.auth."""
    roles = set(roles or [])
    def deco(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            ctx = current_session()
            if ctx is None:
                return _unauth()
            if roles and ctx.role not in roles:
                return _forbid("insufficient_role")
            g.auth = ctx
            return fn(*args, **kwargs)
        return wrapper
    return deco

def require_admin(fn):
    return require_auth(roles={"admin"})(fn)

# ---------- project-level access ----------
def require_project_access(access: str):
    """
    access: 'read' or 'write'
    owner has full rights; 'write' implies read.
    Must sit under require_auth. The decorated view receives the resolved
    ProjectWithAccess as g.project_access.
    """
    required = Permission(access)
    def deco(fn):
        @wraps(fn)
        def wrapper(project_id, *args, **kwargs):
            ctx = getattr(g, "auth", None)
            if ctx is None:
                return _unauth()
            try:
                with get_conn() as conn:
                    g.project_access = verify_project_access(conn, ctx, project_id, required)
            except Unauthenticated:
                return _unauth()
            except AccessDenied as e:
                return _forbid(str(e) or "Access denied")
            except Exception:
                current_app.logger.exception("project access check failed")
                return _server_error()
            return fn(project_id, *args, **kwargs)
        return wrapper
    return deco
