# realtrack/routes/costs.py
from __future__ import annotations
from datetime import date, datetime
from flask import Blueprint, request, jsonify, current_app, g

from .. import get_conn
from ..auth.guards import _forbid, _not_found, _server_error, require_auth, require_project_access
from ..services.authorization import AccessDenied, NotFound, Permission, verify_entity_access
from ..services.costs import (
    InvalidCost,
    get_active_cost,
    insert_cost,
    list_project_costs,
    project_cost_total,
    soft_delete_cost,
    update_cost,
    validate_cost_fields,
)

costs_bp = Blueprint("costs", __name__)


def _row_to_dict(row: dict) -> dict:
    d = dict(row)
    for k, v in d.items():
        if isinstance(v, (datetime, date)):
            d[k] = v.isoformat()
    return d


def _date_arg(name: str):
    raw = request.args.get(name)
    return date.fromisoformat(raw) if raw else None


def _load_cost(conn, cost_id: str, required: Permission):
    """Cost row plus an access check on its project; returns (cost, error)."""
    cost = get_active_cost(conn, cost_id)
    try:
        verify_entity_access(conn, g.auth, cost, "cost", required)
    except NotFound as e:
        return None, _not_found(str(e))
    except AccessDenied:
        if required is Permission.write:
            return None, _forbid("You do not have permission to modify this cost")
        return None, _forbid("Access denied")
    return cost, None


# --- project costs ---------------------------------------------------------

@costs_bp.get("/projects/<project_id>/costs")
@require_auth()
@require_project_access("read")
def list_costs(project_id: str):
    """Filters: ?category=&start_date=YYYY-MM-DD&end_date=YYYY-MM-DD"""
    try:
        start, end = _date_arg("start_date"), _date_arg("end_date")
    except ValueError:
        return {"error": "bad_request", "message": "dates must be YYYY-MM-DD"}, 400
    try:
        with get_conn() as conn:
            rows = list_project_costs(conn, project_id, request.args.get("category"), start, end)
        return jsonify({"costs": [_row_to_dict(r) for r in rows]}), 200
    except Exception:
        current_app.logger.exception("list_costs failed")
        return _server_error()


@costs_bp.get("/projects/<project_id>/costs/total")
@require_auth()
@require_project_access("read")
def cost_total(project_id: str):
    try:
        with get_conn() as conn:
            total = project_cost_total(conn, project_id)
        return jsonify({"project_id": project_id, "total": total}), 200
    except Exception:
        current_app.logger.exception("cost_total failed")
        return _server_error()


@costs_bp.post("/projects/<project_id>/costs")
@require_auth()
@require_project_access("write")
def create_cost(project_id: str):
    """
    Body: { amount: int cents > 0, description, category, date: YYYY-MM-DD }
    Returns 201 { cost } | 400 { error, message }
    """
    data = request.get_json(silent=True) or {}
    try:
        fields = validate_cost_fields(data)
    except InvalidCost as e:
        return {"error": "bad_request", "message": str(e)}, 400

    try:
        with get_conn() as conn:
            tx = conn.begin()
            try:
                row = insert_cost(conn, project_id, g.auth.user_id, fields)
                tx.commit()
            except Exception:
                if tx.is_active:
                    tx.rollback()
                raise
    except Exception:
        current_app.logger.exception("create_cost failed")
        return _server_error()

    return jsonify({"cost": _row_to_dict(row)}), 201


# --- single cost -----------------------------------------------------------

@costs_bp.get("/costs/<cost_id>")
@require_auth()
def get_cost(cost_id: str):
    try:
        with get_conn() as conn:
            cost, err = _load_cost(conn, cost_id, Permission.read)
        if err:
            return err
        return jsonify({"cost": _row_to_dict(cost)}), 200
    except Exception:
        current_app.logger.exception("get_cost failed")
        return _server_error()


@costs_bp.patch("/costs/<cost_id>")
@require_auth()
def patch_cost(cost_id: str):
    data = request.get_json(silent=True) or {}
    try:
        updates = validate_cost_fields(data, partial=True)
    except InvalidCost as e:
        return {"error": "bad_request", "message": str(e)}, 400
    if not updates:
        return {"error": "bad_request", "message": "no valid fields"}, 400

    try:
        with get_conn() as conn:
            cost, err = _load_cost(conn, cost_id, Permission.write)
            if err:
                return err

            # the reads above autobegan a transaction
            if conn.in_transaction():
                conn.rollback()
            tx = conn.begin()
            try:
                row = update_cost(conn, cost_id, updates)
                if not row:
                    tx.rollback()
                    return _not_found("Cost not found")
                tx.commit()
            except Exception:
                if tx.is_active:
                    tx.rollback()
                raise
        return jsonify({"cost": _row_to_dict(row)}), 200
    except Exception:
        current_app.logger.exception("patch_cost failed")
        return _server_error()


@costs_bp.delete("/costs/<cost_id>")
@require_auth()
def delete_cost(cost_id: str):
    """Soft delete."""
    try:
        with get_conn() as conn:
            cost, err = _load_cost(conn, cost_id, Permission.write)
            if err:
                return err

            if conn.in_transaction():
                conn.rollback()
            tx = conn.begin()
            try:
                if not soft_delete_cost(conn, cost_id):
                    tx.rollback()
                    return _not_found("Cost not found")
                tx.commit()
            except Exception:
                if tx.is_active:
                    tx.rollback()
                raise
        return jsonify({"deleted": True, "id": cost_id}), 200
    except Exception:
        current_app.logger.exception("delete_cost failed")
        return _server_error()
