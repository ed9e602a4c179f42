# realtrack/services/portfolio.py
"""
Cross-project cost summary. Every requested project must be readable by the
caller; a single inaccessible id fails the whole request.
"""
from __future__ import annotations
from typing import Any, Dict, Iterable, List, Optional
from sqlalchemy import bindparam, text
from sqlalchemy.engine import Connection

from ..auth.session import AuthContext
from .authorization import AccessDenied, Permission, verify_multiple_projects_access


def accessible_project_ids(conn: Connection, user_id: str) -> List[str]:
    rows = conn.execute(
        text("""
            SELECT DISTINCT p.id, p.updated_at
            FROM projects p
            LEFT JOIN project_access pa
              ON pa.project_id = p.id
             AND pa.user_id = :uid
             AND pa.accepted_at IS NOT NULL
             AND pa.deleted_at IS NULL
            WHERE p.deleted_at IS NULL
              AND (p.owner_id = :uid OR pa.id IS NOT NULL)
            ORDER BY p.updated_at DESC
        """),
        {"uid": user_id},
    ).mappings().all()
    return [r["id"] for r in rows]


_COST_BREAKDOWN_SQL = text("""
    SELECT project_id, category, COALESCE(SUM(amount), 0) AS total, COUNT(*) AS count
    FROM costs
    WHERE project_id IN :ids AND deleted_at IS NULL
    GROUP BY project_id, category
""").bindparams(bindparam("ids", expanding=True))


def portfolio_summary(
    conn: Connection,
    ctx: Optional[AuthContext],
    project_ids: Iterable[str],
    statuses: Optional[Iterable[str]] = None,
) -> Dict[str, Any]:
    ids = list(dict.fromkeys(str(p) for p in project_ids))
    accessible = verify_multiple_projects_access(conn, ctx, ids, Permission.read)
    if len(accessible) != len(ids):
        raise AccessDenied("You do not have access to one or more selected projects")

    statuses = set(statuses or [])
    if statuses:
        accessible = [a for a in accessible if _value(a.project.get("status")) in statuses]

    projects: Dict[str, Dict[str, Any]] = {}
    for a in accessible:
        p = a.project
        projects[a.project_id] = {
            "id": a.project_id,
            "name": p.get("name"),
            "status": _value(p.get("status")),
            "total_budget": p.get("total_budget"),
            "access": a.access,
            "permission": a.permission.value,
            "total_spent": 0,
            "cost_count": 0,
        }

    categories: Dict[str, Dict[str, Any]] = {}
    if projects:
        rows = conn.execute(_COST_BREAKDOWN_SQL, {"ids": list(projects)}).mappings().all()
        for r in rows:
            total, count = int(r["total"] or 0), int(r["count"] or 0)
            proj = projects[r["project_id"]]
            proj["total_spent"] += total
            proj["cost_count"] += count
            cat = categories.setdefault(r["category"], {"category": r["category"], "total": 0, "count": 0})
            cat["total"] += total
            cat["count"] += count

    for proj in projects.values():
        budget = proj["total_budget"]
        proj["budget_remaining"] = budget - proj["total_spent"] if budget is not None else None

    return {
        "projects": list(projects.values()),
        "summary": {
            "project_count": len(projects),
            "total_budget": sum(p["total_budget"] or 0 for p in projects.values()),
            "total_spent": sum(p["total_spent"] for p in projects.values()),
            "cost_count": sum(p["cost_count"] for p in projects.values()),
        },
        "categories": sorted(categories.values(), key=lambda c: (-c["total"], c["category"])),
    }


def _value(v):
    return getattr(v, "value", v)
