# realtrack/routes/projects.py
from __future__ import annotations
from datetime import datetime
import uuid
from flask import Blueprint, request, jsonify, current_app, g
from sqlalchemy import text

from .. import get_conn
from ..auth.guards import _forbid, _not_found, _server_error, require_auth, require_project_access
from ..models.project import ProjectStatusEnum
from ..services.authorization import (
    AccessDenied,
    assert_project_owner,
    get_project_permission_level,
)

projects_bp = Blueprint("projects", __name__)

# --- helpers -------------------------------------------------

_STR_FIELDS = {"name", "description", "address", "project_type", "status"}
_INT_FIELDS = {"total_budget"}
_ALLOWED_PATCH_FIELDS = _STR_FIELDS | _INT_FIELDS

_STATUSES = {s.value for s in ProjectStatusEnum}

_RETURNING = """
    id, name, description, address, project_type, status, total_budget,
    owner_id, created_at, updated_at
"""

def _coerce_payload(data: dict) -> dict:
    out = {}
    # strings (trim)
    for k in _STR_FIELDS:
        if k in data and data[k] is not None:
            v = str(data[k]).strip()
            out[k] = v if v != "" else None
    # numbers
    for k in _INT_FIELDS:
        if k in data and data[k] is not None:
            try:
                out[k] = int(data[k])
            except (TypeError, ValueError):
                pass
    return out

def _row_to_dict(row) -> dict:
    d = dict(row)
    d.pop("granted_permission", None)
    for k in ("created_at", "updated_at"):
        if isinstance(d.get(k), datetime):
            d[k] = d[k].isoformat()
    if hasattr(d.get("status"), "value"):
        d["status"] = d["status"].value
    return d

def _access_dict(access) -> dict:
    return {"access": access.access, "permission": access.permission.value}

# --- routes --------------------------------------------------
@projects_bp.post("/projects")
@require_auth()
def create_project():
    data = request.get_json(silent=True) or {}
    name = str(data.get("name") or "").strip()
    if not name:
        return {"error": "bad_request", "message": "name is required"}, 400

    fields = _coerce_payload(data)
    fields["name"] = name
    fields["status"] = fields.get("status") or ProjectStatusEnum.planning.value
    if fields["status"] not in _STATUSES:
        return {"error": "bad_request", "message": "invalid status", "allowed": sorted(_STATUSES)}, 400
    fields["id"] = str(uuid.uuid4())
    fields["owner_id"] = g.auth.user_id  # caller becomes owner

    cols = ", ".join(fields.keys())
    vals = ", ".join(f":{k}" for k in fields)

    try:
        with get_conn() as conn:
            tx = conn.begin()
            try:
                row = conn.execute(
                    text(f"INSERT INTO projects ({cols}) VALUES ({vals}) RETURNING {_RETURNING}"),
                    fields,
                ).mappings().one()
                tx.commit()
            except Exception:
                if tx.is_active:
                    tx.rollback()
                raise
    except Exception:
        current_app.logger.exception("create_project failed")
        return _server_error()

    project = _row_to_dict(row)
    project.update({"access": "owner", "permission": "write"})
    return jsonify({"project": project}), 201


@projects_bp.get("/projects")
@require_auth()
def list_projects():
    """Projects owned by the caller plus those shared with them."""
    try:
        with get_conn() as conn:
            rows = conn.execute(
                text("""
                    SELECT p.id, p.name, p.description, p.address, p.project_type, p.status,
                           p.total_budget, p.owner_id, p.created_at, p.updated_at,
                           CASE WHEN p.owner_id = :uid THEN 'owner' ELSE 'partner' END AS access,
                           CASE
                             WHEN p.owner_id = :uid THEN 'write'
                             WHEN bool_or(pa.permission = 'write') THEN 'write'
                             ELSE 'read'
                           END AS permission
                    FROM projects p
                    LEFT JOIN project_access pa
                      ON pa.project_id = p.id
                     AND pa.user_id = :uid
                     AND pa.accepted_at IS NOT NULL
                     AND pa.deleted_at IS NULL
                    WHERE p.deleted_at IS NULL
                      AND (p.owner_id = :uid OR pa.id IS NOT NULL)
                    GROUP BY p.id
                    ORDER BY p.created_at ASC
                """),
                {"uid": g.auth.user_id},
            ).mappings().all()
        return jsonify({"projects": [_row_to_dict(r) for r in rows]}), 200
    except Exception:
        current_app.logger.exception("list_projects failed")
        return _server_error()


@projects_bp.get("/projects/<project_id>")
@require_auth()
@require_project_access("read")
def get_project(project_id: str):
    access = g.project_access
    project = _row_to_dict(access.project)
    project.update(_access_dict(access))
    return jsonify({"project": project}), 200


@projects_bp.get("/projects/<project_id>/permission")
@require_auth()
def get_permission(project_id: str):
    try:
        with get_conn() as conn:
            level = get_project_permission_level(conn, g.auth, project_id)
        return jsonify({"project_id": project_id, "permission": level}), 200
    except Exception:
        current_app.logger.exception("get_permission failed")
        return _server_error()


@projects_bp.patch("/projects/<project_id>")
@require_auth()
@require_project_access("write")
def patch_project(project_id: str):
    data = request.get_json(silent=True) or {}
    updates = _coerce_payload(data)
    updates = {k: v for k, v in updates.items() if k in _ALLOWED_PATCH_FIELDS}
    if not updates:
        return {"error": "bad_request", "message": "no valid fields"}, 400
    if "name" in updates and not updates["name"]:
        return {"error": "bad_request", "message": "name cannot be empty"}, 400
    if "status" in updates and updates["status"] not in _STATUSES:
        return {"error": "bad_request", "message": "invalid status", "allowed": sorted(_STATUSES)}, 400

    sets = ", ".join(f"{k} = :{k}" for k in updates.keys())
    updates["pid"] = project_id

    try:
        with get_conn() as conn:
            tx = conn.begin()
            try:
                row = conn.execute(
                    text(f"""
                        UPDATE projects
                        SET {sets}, updated_at = CURRENT_TIMESTAMP
                        WHERE id = :pid AND deleted_at IS NULL
                        RETURNING {_RETURNING}
                    """),
                    updates,
                ).mappings().one_or_none()

                if not row:
                    tx.rollback()
                    return _not_found("Project not found")

                tx.commit()
            except Exception:
                if tx.is_active:
                    tx.rollback()
                raise
    except Exception:
        current_app.logger.exception("patch_project failed")
        return _server_error()

    project = _row_to_dict(row)
    project.update(_access_dict(g.project_access))
    return jsonify({"project": project}), 200


@projects_bp.delete("/projects/<project_id>")
@require_auth()
@require_project_access("read")
def delete_project(project_id: str):
    """Owner-only soft delete."""
    try:
        assert_project_owner(g.project_access, "delete projects")
    except AccessDenied as e:
        return _forbid(str(e))

    try:
        with get_conn() as conn:
            tx = conn.begin()
            try:
                row = conn.execute(
                    text("""
                        UPDATE projects
                        SET deleted_at = CURRENT_TIMESTAMP, updated_at = CURRENT_TIMESTAMP
                        WHERE id = :pid AND deleted_at IS NULL
                        RETURNING id
                    """),
                    {"pid": project_id},
                ).mappings().one_or_none()

                if not row:
                    tx.rollback()
                    return _not_found("Project not found")

                tx.commit()
            except Exception:
                if tx.is_active:
                    tx.rollback()
                raise
    except Exception:
        current_app.logger.exception("delete_project failed")
        return _server_error()

    return jsonify({"deleted": True, "id": row["id"]}), 200
