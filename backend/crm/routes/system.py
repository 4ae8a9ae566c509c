# backend/crm/routes/system.py
"""
System health endpoint.

Reports database reachability and the state of the outbound integrations
(mail, Google Calendar, reminder poller) for deployment debugging.
"""

import time
from flask import Blueprint, current_app
from ..extensions import db
from ..models import Customer, SessionToken, User
from crm.time_utils import utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        user_count = db.session.query(User).count()
        customer_count = db.session.query(Customer).count()
        active_sessions = db.session.query(SessionToken).filter(
            SessionToken.is_revoked.is_(False),
            SessionToken.expires_at > utcnow(),
        ).count()

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "users": user_count,
                "customers": customer_count,
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


def check_integrations() -> dict:
    mailer = current_app.extensions.get("crm.mailer")
    calendar = current_app.extensions.get("crm.calendar")
    poller = current_app.extensions.get("crm.reminder_poller")
    return {
        "status": "healthy",
        "details": {
            "mail_suppressed": bool(getattr(mailer, "suppress_send", True)),
            "google_calendar_configured": bool(calendar and calendar.is_configured),
            "reminder_poller_running": bool(poller and poller.running),
        }
    }


@system_bp.get("/health")
@system_bp.get("/api/health")
def health():
    """
    Health check.

    Returns:
    - 200: Database reachable
    - 503: Database unhealthy
    """
    start_time = time.time()

    database_health = check_database_health()
    integrations = check_integrations()

    if database_health["status"] == "unhealthy":
        overall_status = "unhealthy"
        http_status = 503
    else:
        overall_status = "healthy"
        http_status = 200

    total_elapsed_ms = (time.time() - start_time) * 1000

    response = {
        "success": http_status == 200,
        "status": overall_status,
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round(total_elapsed_ms, 2),
        "checks": {
            "database": database_health,
            "integrations": integrations,
        }
    }

    return response, http_status
