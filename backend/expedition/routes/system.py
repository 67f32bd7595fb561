# backend/expedition/routes/system.py
"""
System health endpoint.

Checks database connectivity and that the permission catalogue exists.
"""

import time
from flask import Blueprint, current_app
from ..extensions import db
from ..models import Organization, Permission, DeliveryClosing
from expedition.time_utils import utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    start_time = time.time()
    try:
        org_count = db.session.query(Organization).count()
        closing_count = db.session.query(DeliveryClosing).count()
        permission_count = db.session.query(Permission).count()

        elapsed_ms = (time.time() - start_time) * 1000

        status = "healthy" if permission_count > 0 else "degraded"
        result = {
            "status": status,
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "organizations": org_count,
                "closings": closing_count,
                "permissions": permission_count,
            }
        }
        if status == "degraded":
            result["warning"] = "Permissions not initialized (run flask system init)"
        return result
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
    - 200: healthy or degraded
    - 503: database unreachable
    """
    database_health = check_database_health()
    http_status = 503 if database_health["status"] == "unhealthy" else 200

    return {
        "status": database_health["status"],
        "timestamp": utcnow().isoformat() + "Z",
        "checks": {"database": database_health},
    }, http_status
