# realtrack/services/authorization.py
"""
Project access control.

A user may act on a project if they own it (full access) or hold an accepted,
non-revoked ProjectAccess grant whose level satisfies the requirement
('write' implies 'read'). Documents, and every other project-scoped entity,
inherit visibility from their project.

Every check re-queries the database; nothing is cached between calls.
"""
from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union
from sqlalchemy import text
from sqlalchemy.engine import Connection

from ..auth.session import AuthContext


class Permission(str, Enum):
    read = "read"
    write = "write"


class AccessDenied(Exception):
    """The caller may not perform the operation (HTTP 403)."""


class Unauthenticated(AccessDenied):
    """No session at all (HTTP 401)."""


class NotFound(Exception):
    """Entity is missing or soft-deleted (HTTP 404)."""


# ---------- resolved permission ----------

@dataclass(frozen=True)
class Owner:
    pass


@dataclass(frozen=True)
class Granted:
    level: Permission


ResolvedPermission = Union[Owner, Granted, None]

_RANK = {Permission.read: 1, Permission.write: 2}


def _as_permission(value: Any) -> Permission:
    if isinstance(value, Permission):
        return value
    return Permission(str(getattr(value, "value", value)).strip().lower())


def resolve_permission(row: Optional[Mapping[str, Any]], user_id: Optional[str]) -> ResolvedPermission:
    """Collapse a project row (with the caller's grant joined in) into one value."""
    if row is None or not user_id:
        return None
    if str(row["owner_id"]) == str(user_id):
        return Owner()
    granted = row.get("granted_permission")
    if granted is None:
        return None
    try:
        return Granted(_as_permission(granted))
    except ValueError:
        # unknown level stored in the table: grant nothing
        return None


def effective_permission(resolved: ResolvedPermission) -> Optional[Permission]:
    if isinstance(resolved, Owner):
        return Permission.write
    if isinstance(resolved, Granted):
        return resolved.level
    return None


def satisfies(resolved: ResolvedPermission, required: Union[Permission, str]) -> bool:
    have = effective_permission(resolved)
    if have is None:
        return False
    return _RANK[have] >= _RANK[_as_permission(required)]


# ---------- result ----------

@dataclass(frozen=True)
class ProjectWithAccess:
    project: Dict[str, Any]
    access: str                 # 'owner' | 'partner'
    permission: Permission

    @property
    def project_id(self) -> str:
        return self.project["id"]


# ---------- queries ----------

_PROJECT_WITH_GRANT_SQL = text("""
    SELECT
      p.id, p.name, p.description, p.address, p.project_type, p.status,
      p.total_budget, p.owner_id, p.created_at, p.updated_at,
      pa.permission AS granted_permission
    FROM projects p
    LEFT JOIN project_access pa
      ON pa.project_id = p.id
     AND pa.user_id = :uid
     AND pa.accepted_at IS NOT NULL
     AND pa.deleted_at IS NULL
    WHERE p.id = :pid
      AND p.deleted_at IS NULL
    -- a user with several grants gets the strongest one
    ORDER BY CASE pa.permission WHEN 'write' THEN 0 WHEN 'read' THEN 1 ELSE 2 END
    LIMIT 1
""")


def fetch_project_with_grant(conn: Connection, project_id: str, user_id: str) -> Optional[Dict[str, Any]]:
    row = conn.execute(
        _PROJECT_WITH_GRANT_SQL, {"pid": str(project_id), "uid": str(user_id)}
    ).mappings().one_or_none()
    return dict(row) if row else None


# ---------- checks ----------

def verify_project_access(
    conn: Connection,
    ctx: Optional[AuthContext],
    project_id: str,
    required: Union[Permission, str] = Permission.read,
) -> ProjectWithAccess:
    """
    Raise AccessDenied unless ctx may act on project_id at the required level.

    A missing or soft-deleted project is indistinguishable from a project the
    caller cannot see; both are AccessDenied.
    """
    required = _as_permission(required)
    if ctx is None or not ctx.is_authenticated:
        raise Unauthenticated("You must be logged in to access this resource")

    row = fetch_project_with_grant(conn, project_id, ctx.user_id)
    resolved = resolve_permission(row, ctx.user_id)

    if not satisfies(resolved, required):
        if required is Permission.write:
            raise AccessDenied("Project not found or you do not have write access")
        raise AccessDenied("Project not found or you do not have access")

    row.pop("granted_permission", None)
    return ProjectWithAccess(
        project=row,
        access="owner" if isinstance(resolved, Owner) else "partner",
        permission=effective_permission(resolved),
    )


def verify_multiple_projects_access(
    conn: Connection,
    ctx: Optional[AuthContext],
    project_ids: Iterable[str],
    required: Union[Permission, str] = Permission.read,
) -> List[ProjectWithAccess]:
    """Subset of project_ids the caller may access; denied ids are skipped."""
    results: List[ProjectWithAccess] = []
    for pid in project_ids:
        try:
            results.append(verify_project_access(conn, ctx, pid, required))
        except AccessDenied:
            continue
    return results


def verify_entity_access(
    conn: Connection,
    ctx: Optional[AuthContext],
    entity: Optional[Mapping[str, Any]],
    entity_type: str,
    required: Union[Permission, str] = Permission.read,
) -> ProjectWithAccess:
    if not entity:
        raise NotFound(f"{entity_type[:1].upper()}{entity_type[1:]} not found")
    return verify_project_access(conn, ctx, entity["project_id"], required)


def assert_project_owner(access: ProjectWithAccess, operation_name: str = "this operation") -> None:
    if access.access != "owner":
        raise AccessDenied(f"Only project owners can {operation_name}")


def has_write_access(access: ProjectWithAccess) -> bool:
    return access.access == "owner" or access.permission is Permission.write


def get_project_permission_level(conn: Connection, ctx: Optional[AuthContext], project_id: str) -> str:
    """'none' | 'read' | 'write'"""
    try:
        access = verify_project_access(conn, ctx, project_id, Permission.read)
    except AccessDenied:
        return "none"
    return "write" if has_write_access(access) else "read"
