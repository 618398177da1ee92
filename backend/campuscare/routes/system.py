# backend/campuscare/routes/system.py
"""
System health endpoint.

Checks the database and the notification sink so a deployment probe can
tell a dead database from a misconfigured broadcast layer.
"""

import time
from flask import Blueprint, current_app
from sqlalchemy import text

from ..extensions import db
from ..models import Dispensary, Order
from ..services import notification_service
from campuscare.time_utils import utcnow

system_bp = Blueprint("system", __name__, url_prefix="/api")


def check_database_health() -> dict:
    """Round-trip a trivial query, then count the core tables."""
    start_time = time.time()
    try:
        db.session.execute(text("SELECT 1"))
        dispensary_count = db.session.query(Dispensary).count()
        open_orders = db.session.query(Order).filter(
            Order.status.in_(("placed", "processing"))
        ).count()

        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "dispensaries": dispensary_count,
                "open_orders": open_orders,
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


def check_notifier_health() -> dict:
    sink = current_app.extensions.get(notification_service.EXTENSION_KEY)
    if sink is None:
        return {"status": "degraded", "warning": "No notification sink configured"}
    return {"status": "healthy", "details": {"sink": type(sink).__name__}}


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy or degraded (events not delivered, orders still work)
    - 503: database unreachable
    """
    start_time = time.time()

    database_health = check_database_health()
    notifier_health = check_notifier_health()

    all_checks = [database_health, notifier_health]
    if any(check["status"] == "unhealthy" for check in all_checks):
        overall_status = "unhealthy"
        http_status = 503
    elif any(check["status"] == "degraded" for check in all_checks):
        overall_status = "degraded"
        http_status = 200
    else:
        overall_status = "healthy"
        http_status = 200

    total_elapsed_ms = (time.time() - start_time) * 1000

    response = {
        "status": overall_status,
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round(total_elapsed_ms, 2),
        "checks": {
            "database": database_health,
            "notifier": notifier_health,
        }
    }

    return response, http_status
