"""
System health endpoint.

Reports database reachability and the size of the billing queues, for
deployment debugging.
"""

import time
from flask import Blueprint, current_app
from ..extensions import db
from ..models import Invoice, SessionToken
from ..models.invoices import INVOICE_STATUS_DRAFT, INVOICE_STATUS_PENDING
from billdesk.time_utils import utcnow

system_bp = Blueprint("system", __name__, url_prefix="/api")


def check_database_health() -> dict:
    """
    Check database connectivity and the billing tables.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        now = utcnow()
        open_drafts = db.session.query(Invoice).filter_by(
            status=INVOICE_STATUS_DRAFT, is_session_expired=False
        ).count()
        pending = db.session.query(Invoice).filter_by(
            status=INVOICE_STATUS_PENDING, admin_verified=False
        ).count()
        active_sessions = db.session.query(SessionToken).filter(
            SessionToken.is_revoked.is_(False),
            SessionToken.expires_at >= now,
        ).count()

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "open_drafts": open_drafts,
                "pending_verification": pending,
                "active_sessions": active_sessions,
            }
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: database reachable
    - 503: database unreachable
    """
    database_health = check_database_health()
    http_status = 503 if database_health["status"] == "unhealthy" else 200

    return {
        "status": database_health["status"],
        "timestamp": utcnow().isoformat() + "Z",
        "checks": {"database": database_health},
    }, http_status
