# realtrack/routes/partners.py
from datetime import datetime
from flask import Blueprint, request, jsonify, current_app, g

from .. import get_conn
from ..auth.guards import _forbid, _not_found, _server_error, _unauth, require_auth, require_project_access
from ..auth.session import current_session
from ..services.authorization import AccessDenied, NotFound, assert_project_owner
from ..services import partners as partner_svc
from ..services.partners import InvitationError

partners_bp = Blueprint("partners", __name__)


def _iso(d: dict) -> dict:
    out = {}
    for k, v in d.items():
        if isinstance(v, datetime):
            v = v.isoformat()
        elif hasattr(v, "value"):
            v = v.value
        out[k] = v
    return out


def _owner_only(operation: str):
    try:
        assert_project_owner(g.project_access, operation)
    except AccessDenied as e:
        return _forbid(str(e))
    return None


@partners_bp.post("/projects/<project_id>/invitations")
@require_auth()
@require_project_access("read")
def invite(project_id: str):
    """
    POST /projects/<id>/invitations
    Body: { email, permission: 'read' | 'write' }
    Returns 200 { status, message } where status is
      already_partner | pending_invitation | invitation_sent
    """
    denied = _owner_only("invite partners")
    if denied:
        return denied

    data = request.get_json(silent=True) or {}
    email = (data.get("email") or "").strip()
    if not email:
        return {"error": "bad_request", "message": "email is required"}, 400

    try:
        with get_conn() as conn:
            tx = conn.begin()
            try:
                result = partner_svc.invite_partner(
                    conn,
                    project_id,
                    g.auth.user_id,
                    email,
                    data.get("permission") or "read",
                    current_app.config.get("INVITATION_EXPIRES_DAYS", 7),
                    owner_email=g.auth.email,
                )
                tx.commit()
            except Exception:
                if tx.is_active:
                    tx.rollback()
                raise
    except ValueError as e:
        return {"error": str(e)}, 400
    except Exception:
        current_app.logger.exception("invite_partner failed")
        return _server_error()

    if result.status == "invitation_sent":
        # no mail transport; the token is surfaced in the log for delivery
        current_app.logger.info(
            "invitation for project %s sent to %s (token=%s)",
            project_id, result.access["invited_email"], result.access["invitation_token"],
        )

    body = {"status": result.status, "message": result.message}
    if result.access:
        body["invitation"] = _iso(result.access)
    return jsonify(body), 200


@partners_bp.get("/invitations/<token>")
def invitation_details(token: str):
    """Public: what the invite landing page shows before login."""
    try:
        with get_conn() as conn:
            details = partner_svc.get_invitation_details(conn, token)
    except NotFound as e:
        return _not_found(str(e))
    except InvitationError as e:
        return {"error": str(e)}, 400
    except Exception:
        current_app.logger.exception("invitation lookup failed")
        return _server_error()
    return jsonify({"invitation": _iso(details)}), 200


@partners_bp.post("/invitations/<token>/accept")
def accept(token: str):
    ctx = current_session()
    if ctx is None:
        return _unauth("You must be logged in to accept an invitation.")

    try:
        with get_conn() as conn:
            if conn.in_transaction():
                conn.rollback()
            tx = conn.begin()
            try:
                result = partner_svc.accept_invitation(conn, token, ctx)
                tx.commit()
            except Exception:
                if tx.is_active:
                    tx.rollback()
                raise
    except NotFound as e:
        return _not_found(str(e))
    except InvitationError as e:
        return {"error": str(e)}, 400
    except Exception:
        current_app.logger.exception("accept_invitation failed")
        return _server_error()

    current_app.logger.info("user %s accepted access %s", ctx.user_id, result["access_id"])
    return jsonify(result), 200


@partners_bp.get("/projects/<project_id>/invitations")
@require_auth()
@require_project_access("read")
def list_invitations(project_id: str):
    denied = _owner_only("view invitations")
    if denied:
        return denied
    try:
        with get_conn() as conn:
            rows = partner_svc.list_invitations(conn, project_id)
    except Exception:
        current_app.logger.exception("list_invitations failed")
        return _server_error()
    return jsonify({"invitations": [_iso(r) for r in rows]}), 200


@partners_bp.patch("/projects/<project_id>/partners/<access_id>")
@require_auth()
@require_project_access("read")
def update_permission(project_id: str, access_id: str):
    denied = _owner_only("change partner permissions")
    if denied:
        return denied

    data = request.get_json(silent=True) or {}
    try:
        with get_conn() as conn:
            tx = conn.begin()
            try:
                row = partner_svc.update_partner_permission(conn, project_id, access_id, data.get("permission") or "")
                tx.commit()
            except Exception:
                if tx.is_active:
                    tx.rollback()
                raise
    except NotFound as e:
        return _not_found(str(e))
    except InvitationError as e:
        return {"error": str(e)}, 400
    except Exception:
        current_app.logger.exception("update_partner_permission failed")
        return _server_error()

    row.pop("invitation_token", None)
    return jsonify({"access": _iso(row)}), 200


@partners_bp.post("/projects/<project_id>/partners/<access_id>/resend")
@require_auth()
@require_project_access("read")
def resend(project_id: str, access_id: str):
    """New token, fresh expiry. 400 once the invitation has been accepted."""
    denied = _owner_only("resend invitations")
    if denied:
        return denied

    try:
        with get_conn() as conn:
            tx = conn.begin()
            try:
                row = partner_svc.resend_invitation(
                    conn, project_id, access_id, current_app.config.get("INVITATION_EXPIRES_DAYS", 7)
                )
                tx.commit()
            except Exception:
                if tx.is_active:
                    tx.rollback()
                raise
    except NotFound as e:
        return _not_found(str(e))
    except InvitationError as e:
        return {"error": str(e)}, 400
    except Exception:
        current_app.logger.exception("resend_invitation failed")
        return _server_error()

    current_app.logger.info(
        "invitation %s for project %s resent to %s (token=%s)",
        access_id, project_id, row["invited_email"], row["invitation_token"],
    )
    return jsonify({"success": True, "message": "Invitation resent successfully.", "invitation": _iso(row)}), 200


@partners_bp.delete("/projects/<project_id>/invitations/<access_id>")
@require_auth()
@require_project_access("read")
def cancel(project_id: str, access_id: str):
    """Pending invitations only; accepted partners are removed with revoke."""
    denied = _owner_only("cancel invitations")
    if denied:
        return denied

    try:
        with get_conn() as conn:
            tx = conn.begin()
            try:
                partner_svc.cancel_invitation(conn, project_id, access_id)
                tx.commit()
            except Exception:
                if tx.is_active:
                    tx.rollback()
                raise
    except NotFound as e:
        return _not_found(str(e))
    except InvitationError as e:
        return {"error": str(e)}, 400
    except Exception:
        current_app.logger.exception("cancel_invitation failed")
        return _server_error()

    current_app.logger.info("invitation %s on project %s cancelled by %s", access_id, project_id, g.auth.user_id)
    return jsonify({"success": True, "message": "Invitation cancelled successfully."}), 200


@partners_bp.delete("/projects/<project_id>/partners/<access_id>")
@require_auth()
@require_project_access("read")
def revoke(project_id: str, access_id: str):
    """Removes a partner or cancels a pending invitation."""
    denied = _owner_only("revoke access")
    if denied:
        return denied

    try:
        with get_conn() as conn:
            tx = conn.begin()
            try:
                partner_svc.revoke_access(conn, project_id, access_id)
                tx.commit()
            except Exception:
                if tx.is_active:
                    tx.rollback()
                raise
    except NotFound as e:
        return _not_found(str(e))
    except Exception:
        current_app.logger.exception("revoke_access failed")
        return _server_error()

    current_app.logger.info("access %s on project %s revoked by %s", access_id, project_id, g.auth.user_id)
    return jsonify({"revoked": True, "id": access_id}), 200
