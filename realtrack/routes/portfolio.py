# realtrack/routes/portfolio.py
from flask import Blueprint, request, jsonify, current_app, g

from .. import get_conn
from ..auth.guards import _forbid, _server_error, require_auth
from ..models.project import ProjectStatusEnum
from ..services.authorization import AccessDenied
from ..services.portfolio import accessible_project_ids, portfolio_summary

portfolio_bp = Blueprint("portfolio", __name__)

_STATUSES = {s.value for s in ProjectStatusEnum}


def _csv_arg(name: str):
    return [v.strip() for v in (request.args.get(name) or "").split(",") if v.strip()]


@portfolio_bp.get("/portfolio/summary")
@require_auth()
def summary():
    """
    GET /portfolio/summary?project_ids=a,b&status=planning,on-hold
    Without project_ids every project the caller can read is included.
    Returns 200 { projects, summary, categories } | 403 if any id is not readable
    """
    statuses = _csv_arg("status")
    bad = [s for s in statuses if s not in _STATUSES]
    if bad:
        return {"error": "bad_request", "message": "invalid status", "allowed": sorted(_STATUSES)}, 400

    try:
        with get_conn() as conn:
            ids = _csv_arg("project_ids") or accessible_project_ids(conn, g.auth.user_id)
            result = portfolio_summary(conn, g.auth, ids, statuses)
    except AccessDenied as e:
        return _forbid(str(e))
    except Exception:
        current_app.logger.exception("portfolio summary failed")
        return _server_error()
    return jsonify(result), 200
