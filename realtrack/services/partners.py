# realtrack/services/partners.py
"""
ProjectAccess lifecycle: invitation -> acceptance -> (permission change) -> revocation.

Pending invitations have no user_id and carry a one-time token; accepting
binds the row to the user and clears the token. Revocation and cancellation
both set deleted_at, after which the row no longer grants anything.
"""
from __future__ import annotations
import math
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
from sqlalchemy import text
from sqlalchemy.engine import Connection

from ..auth.session import AuthContext
from .auth import AuthService, _assert_valid_email, _norm_email
from .authorization import NotFound, Permission


class InvitationError(ValueError):
    """Invitation exists but cannot be used (HTTP 400)."""


@dataclass(frozen=True)
class InviteResult:
    status: str                 # already_partner | pending_invitation | invitation_sent
    message: str
    access: Optional[Dict[str, Any]] = None


def _utc(ts: Optional[datetime]) -> Optional[datetime]:
    if ts is None:
        return None
    return ts if ts.tzinfo else ts.replace(tzinfo=timezone.utc)


def _is_expired(expires_at: Optional[datetime], now: datetime) -> bool:
    expires_at = _utc(expires_at)
    return expires_at is not None and now > expires_at


def _permission(value: Any) -> str:
    return Permission(str(getattr(value, "value", value)).strip().lower()).value


_ACCESS_COLUMNS = """
    id, project_id, user_id, invited_email, invited_by, permission,
    invitation_token, invited_at, expires_at, accepted_at
"""


# ---------- invite ----------

def invite_partner(
    conn: Connection,
    project_id: str,
    inviter_id: str,
    email: str,
    permission: str = Permission.read.value,
    expires_days: int = 7,
    now: Optional[datetime] = None,
    owner_email: Optional[str] = None,
) -> InviteResult:
    """The caller must already be known to own the project."""
    now = now or datetime.now(timezone.utc)
    email = _norm_email(email)
    _assert_valid_email(email)
    if owner_email and email == _norm_email(owner_email):
        raise InvitationError("You cannot invite yourself to your own project.")
    try:
        permission = _permission(permission)
    except ValueError:
        raise InvitationError("invalid_permission")

    existing_user = AuthService.get_user_by_email(conn, email)
    if existing_user and existing_user["id"] == inviter_id:
        raise InvitationError("You cannot invite yourself to your own project.")
    if existing_user:
        active = conn.execute(
            text(f"""
                SELECT {_ACCESS_COLUMNS}
                FROM project_access
                WHERE project_id = :pid AND user_id = :uid
                  AND accepted_at IS NOT NULL AND deleted_at IS NULL
                LIMIT 1
            """),
            {"pid": project_id, "uid": existing_user["id"]},
        ).mappings().one_or_none()
        if active:
            return InviteResult("already_partner", "This person already has access to this project.", dict(active))

    pending = conn.execute(
        text(f"""
            SELECT {_ACCESS_COLUMNS}
            FROM project_access
            WHERE project_id = :pid AND lower(invited_email) = :email
              AND invitation_token IS NOT NULL
              AND accepted_at IS NULL AND deleted_at IS NULL
            LIMIT 1
        """),
        {"pid": project_id, "email": email},
    ).mappings().one_or_none()
    if pending:
        if not _is_expired(pending["expires_at"], now):
            return InviteResult("pending_invitation", "An invitation is already pending.", dict(pending))
        # stale invite: retire it and issue a fresh one
        conn.execute(
            text("""
                UPDATE project_access
                SET deleted_at = :now, updated_at = :now
                WHERE id = :aid
            """),
            {"aid": pending["id"], "now": now},
        )

    row = conn.execute(
        text(f"""
            INSERT INTO project_access
              (id, project_id, user_id, invited_email, invited_by, permission,
               invitation_token, invited_at, expires_at)
            VALUES
              (:id, :pid, NULL, :email, :inviter, :permission,
               :token, :now, :expires_at)
            RETURNING {_ACCESS_COLUMNS}
        """),
        {
            "id": str(uuid.uuid4()),
            "pid": project_id,
            "email": email,
            "inviter": inviter_id,
            "permission": permission,
            "token": str(uuid.uuid4()),
            "now": now,
            "expires_at": now + timedelta(days=int(expires_days)),
        },
    ).mappings().one()
    return InviteResult(
        "invitation_sent",
        f"Invitation sent to {email}. They have {int(expires_days)} days to accept.",
        dict(row),
    )


# ---------- token lookups ----------

def _find_by_token(conn: Connection, token: str) -> Optional[Dict[str, Any]]:
    row = conn.execute(
        text("""
            SELECT pa.id, pa.project_id, pa.invited_email, pa.permission,
                   pa.invited_at, pa.expires_at, pa.accepted_at,
                   p.name AS project_name,
                   u.name AS inviter_name, u.email AS inviter_email
            FROM project_access pa
            LEFT JOIN projects p ON p.id = pa.project_id
            LEFT JOIN users u ON u.id = pa.invited_by
            WHERE pa.invitation_token = :token AND pa.deleted_at IS NULL
            LIMIT 1
        """),
        {"token": token},
    ).mappings().one_or_none()
    return dict(row) if row else None


def get_invitation_details(conn: Connection, token: str, now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or datetime.now(timezone.utc)
    inv = _find_by_token(conn, token)
    if not inv:
        raise NotFound("Invalid invitation link.")
    if inv["accepted_at"]:
        raise InvitationError("This invitation has already been accepted.")
    if _is_expired(inv["expires_at"], now):
        raise InvitationError("This invitation has expired.")

    existing_user = AuthService.get_user_by_email(conn, inv["invited_email"]) if inv["invited_email"] else None
    return {
        "email": inv["invited_email"] or "",
        "project_id": inv["project_id"],
        "project_name": inv["project_name"] or "Unknown Project",
        "inviter_name": inv["inviter_name"] or inv["inviter_email"] or "Someone",
        "permission": _permission(inv["permission"]),
        "expires_at": inv["expires_at"],
        "user_exists": existing_user is not None,
    }


def accept_invitation(conn: Connection, token: str, ctx: AuthContext, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Bind the invitation to the logged-in user; their email must match."""
    now = now or datetime.now(timezone.utc)
    inv = _find_by_token(conn, token)
    if not inv:
        raise NotFound("Invalid invitation link.")
    if _is_expired(inv["expires_at"], now):
        raise InvitationError("This invitation has expired. Please request a new one.")
    if inv["accepted_at"]:
        raise InvitationError("This invitation has already been accepted.")
    if _norm_email(ctx.email) != _norm_email(inv["invited_email"]):
        raise InvitationError(
            "This invitation was sent to a different email address. "
            "Please log out and use the correct account."
        )

    conn.execute(
        text("""
            UPDATE project_access
            SET user_id = :uid, accepted_at = :now, invitation_token = NULL, updated_at = :now
            WHERE id = :aid
        """),
        {"uid": ctx.user_id, "now": now, "aid": inv["id"]},
    )
    AuthService.mark_email_verified(conn, ctx.user_id)
    return {"success": True, "project_id": inv["project_id"], "access_id": inv["id"]}


# ---------- owner management ----------

def list_invitations(conn: Connection, project_id: str, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
    now = now or datetime.now(timezone.utc)
    rows = conn.execute(
        text("""
            SELECT pa.id, pa.permission, pa.invited_at, pa.accepted_at, pa.expires_at,
                   pa.user_id, pa.invited_email,
                   u.email AS user_email, u.name AS user_name
            FROM project_access pa
            LEFT JOIN users u ON u.id = pa.user_id
            WHERE pa.project_id = :pid AND pa.deleted_at IS NULL
            ORDER BY pa.invited_at
        """),
        {"pid": project_id},
    ).mappings().all()

    out = []
    for inv in rows:
        days_remaining = None
        if inv["accepted_at"]:
            status = "accepted"
        elif _is_expired(inv["expires_at"], now):
            status = "expired"
        else:
            status = "pending"
            if inv["expires_at"]:
                days_remaining = math.ceil((_utc(inv["expires_at"]) - now).total_seconds() / 86400)
        out.append({
            "id": inv["id"],
            "email": inv["invited_email"] or inv["user_email"] or "",
            "status": status,
            "permission": _permission(inv["permission"]),
            "invited_at": inv["invited_at"],
            "expires_at": inv["expires_at"],
            "accepted_at": inv["accepted_at"],
            "days_remaining": days_remaining,
            "user": {"id": inv["user_id"], "name": inv["user_name"]} if inv["user_id"] else None,
        })
    return out


def update_partner_permission(conn: Connection, project_id: str, access_id: str, permission: str) -> Dict[str, Any]:
    try:
        permission = _permission(permission)
    except ValueError:
        raise InvitationError("invalid_permission")
    row = conn.execute(
        text(f"""
            UPDATE project_access
            SET permission = :permission, updated_at = CURRENT_TIMESTAMP
            WHERE id = :aid AND project_id = :pid AND deleted_at IS NULL
            RETURNING {_ACCESS_COLUMNS}
        """),
        {"permission": permission, "aid": access_id, "pid": project_id},
    ).mappings().one_or_none()
    if not row:
        raise NotFound("Access record not found")
    return dict(row)


def revoke_access(conn: Connection, project_id: str, access_id: str, now: Optional[datetime] = None) -> None:
    """Soft delete; covers both accepted grants and pending invitations."""
    now = now or datetime.now(timezone.utc)
    row = conn.execute(
        text("""
            UPDATE project_access
            SET deleted_at = :now, invitation_token = NULL, updated_at = :now
            WHERE id = :aid AND project_id = :pid AND deleted_at IS NULL
            RETURNING id
        """),
        {"now": now, "aid": access_id, "pid": project_id},
    ).mappings().one_or_none()
    if not row:
        raise NotFound("Access record not found")


def _get_access(conn: Connection, project_id: str, access_id: str) -> Dict[str, Any]:
    row = conn.execute(
        text(f"""
            SELECT {_ACCESS_COLUMNS}
            FROM project_access
            WHERE id = :aid AND project_id = :pid AND deleted_at IS NULL
            LIMIT 1
        """),
        {"aid": access_id, "pid": project_id},
    ).mappings().one_or_none()
    if not row:
        raise NotFound("Invitation not found")
    return dict(row)


def resend_invitation(
    conn: Connection,
    project_id: str,
    access_id: str,
    expires_days: int = 7,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """New token and a fresh expiry window; the old link stops working."""
    now = now or datetime.now(timezone.utc)
    inv = _get_access(conn, project_id, access_id)
    if inv["accepted_at"]:
        raise InvitationError("Cannot resend invitation that has already been accepted")

    row = conn.execute(
        text(f"""
            UPDATE project_access
            SET invitation_token = :token, invited_at = :now, expires_at = :expires_at, updated_at = :now
            WHERE id = :aid
            RETURNING {_ACCESS_COLUMNS}
        """),
        {
            "token": str(uuid.uuid4()),
            "now": now,
            "expires_at": now + timedelta(days=int(expires_days)),
            "aid": access_id,
        },
    ).mappings().one()
    return dict(row)


def cancel_invitation(conn: Connection, project_id: str, access_id: str, now: Optional[datetime] = None) -> None:
    """Pending invitations only; accepted grants go through revoke_access."""
    now = now or datetime.now(timezone.utc)
    inv = _get_access(conn, project_id, access_id)
    if inv["accepted_at"]:
        raise InvitationError("Cannot cancel invitation that has already been accepted. Use revoke instead.")
    conn.execute(
        text("""
            UPDATE project_access
            SET deleted_at = :now, invitation_token = NULL, updated_at = :now
            WHERE id = :aid
        """),
        {"now": now, "aid": access_id},
    )
