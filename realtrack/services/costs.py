# realtrack/services/costs.py
"""
Project cost entries. Amounts are integer cents; dates are calendar days and
may not lie in the future. Access is checked by the caller through the
cost's project.
"""
from __future__ import annotations
import uuid
from datetime import date
from typing import Any, Dict, List, Optional
from sqlalchemy import text
from sqlalchemy.engine import Connection

COST_CATEGORIES = {
    "cost_hard_costs",
    "cost_pre_development",
    "cost_professional_fees",
    "cost_govt_charges",
    "cost_finance_costs",
    "cost_insurance",
    "cost_marketing_sales",
    "cost_other_soft",
}

_COST_COLUMNS = """
    id, project_id, amount, description, category, incurred_on, created_by,
    created_at, updated_at
"""


class InvalidCost(ValueError):
    pass


def _parse_date(value: Any) -> date:
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError:
        raise InvalidCost("Invalid date")


def validate_cost_fields(data: Dict[str, Any], partial: bool = False, today: Optional[date] = None) -> Dict[str, Any]:
    """
    Coerce and validate a cost payload. With partial=True only the keys
    present are checked (PATCH). Raises InvalidCost with a readable message.
    """
    today = today or date.today()
    out: Dict[str, Any] = {}

    if "amount" in data or not partial:
        amount = data.get("amount")
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise InvalidCost("Amount must be a positive number")
        out["amount"] = amount

    if "description" in data or not partial:
        description = str(data.get("description") or "").strip()
        if not description:
            raise InvalidCost("Description is required")
        out["description"] = description

    if "category" in data or not partial:
        category = str(data.get("category") or "").strip()
        if category not in COST_CATEGORIES:
            raise InvalidCost("Invalid cost category")
        out["category"] = category

    if "date" in data or not partial:
        if not data.get("date"):
            raise InvalidCost("Date is required")
        incurred_on = _parse_date(data["date"])
        if incurred_on > today:
            raise InvalidCost("Date cannot be in the future")
        out["incurred_on"] = incurred_on

    return out


# ---------- queries ----------

def get_active_cost(conn: Connection, cost_id: str) -> Optional[Dict[str, Any]]:
    row = conn.execute(
        text(f"""
            SELECT {_COST_COLUMNS}
            FROM costs
            WHERE id = :cid AND deleted_at IS NULL
            LIMIT 1
        """),
        {"cid": str(cost_id)},
    ).mappings().one_or_none()
    return dict(row) if row else None


def list_project_costs(
    conn: Connection,
    project_id: str,
    category: Optional[str] = None,
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> List[Dict[str, Any]]:
    clauses = ["project_id = :pid", "deleted_at IS NULL"]
    params: Dict[str, Any] = {"pid": str(project_id)}
    if category:
        clauses.append("category = :category")
        params["category"] = category
    if start:
        clauses.append("incurred_on >= :start")
        params["start"] = start
    if end:
        clauses.append("incurred_on <= :end")
        params["end"] = end

    rows = conn.execute(
        text(f"""
            SELECT {_COST_COLUMNS}
            FROM costs
            WHERE {" AND ".join(clauses)}
            ORDER BY incurred_on DESC, created_at DESC
        """),
        params,
    ).mappings().all()
    return [dict(r) for r in rows]


def project_cost_total(conn: Connection, project_id: str) -> int:
    total = conn.execute(
        text("""
            SELECT COALESCE(SUM(amount), 0)
            FROM costs
            WHERE project_id = :pid AND deleted_at IS NULL
        """),
        {"pid": str(project_id)},
    ).scalar()
    return int(total or 0)


def insert_cost(conn: Connection, project_id: str, created_by: str, fields: Dict[str, Any]) -> Dict[str, Any]:
    params = dict(fields, id=str(uuid.uuid4()), project_id=str(project_id), created_by=created_by)
    row = conn.execute(
        text(f"""
            INSERT INTO costs (id, project_id, amount, description, category, incurred_on, created_by)
            VALUES (:id, :project_id, :amount, :description, :category, :incurred_on, :created_by)
            RETURNING {_COST_COLUMNS}
        """),
        params,
    ).mappings().one()
    return dict(row)


def update_cost(conn: Connection, cost_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    sets = ", ".join(f"{k} = :{k}" for k in fields)
    row = conn.execute(
        text(f"""
            UPDATE costs
            SET {sets}, updated_at = CURRENT_TIMESTAMP
            WHERE id = :cid AND deleted_at IS NULL
            RETURNING {_COST_COLUMNS}
        """),
        dict(fields, cid=str(cost_id)),
    ).mappings().one_or_none()
    return dict(row) if row else None


def soft_delete_cost(conn: Connection, cost_id: str) -> bool:
    row = conn.execute(
        text("""
            UPDATE costs
            SET deleted_at = CURRENT_TIMESTAMP, updated_at = CURRENT_TIMESTAMP
            WHERE id = :cid AND deleted_at IS NULL
            RETURNING id
        """),
        {"cid": str(cost_id)},
    ).mappings().one_or_none()
    return row is not None
