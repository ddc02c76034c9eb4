# backend/inventory_engine/routes/system.py
"""
System health and version endpoints.

No tenant context required; used by load balancers and deploy checks.
"""

import sys
import time
from flask import Blueprint, current_app
from ..extensions import db
from ..models import Organization, AllocationBucket, Reservation
from ..models.allocations import RESERVATION_HELD
from inventory_engine.time_utils import utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        org_count = db.session.query(Organization).count()
        bucket_count = db.session.query(AllocationBucket).count()

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "organizations": org_count,
                "allocation_buckets": bucket_count,
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


def check_hold_expiry_health() -> dict:
    """
    Holds past their release window mean the expiry sweep is not running.
    """
    start_time = time.time()
    try:
        overdue = db.session.query(Reservation).filter(
            Reservation.status == RESERVATION_HELD,
            Reservation.expires_at.isnot(None),
            Reservation.expires_at < utcnow(),
        ).count()

        elapsed_ms = (time.time() - start_time) * 1000
        result = {
            "status": "healthy" if overdue == 0 else "degraded",
            "latency_ms": round(elapsed_ms, 2),
            "details": {"overdue_holds": overdue},
        }
        if overdue:
            result["warning"] = "Expired holds pending; run `flask maintenance expire-holds`"
        return result
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Hold expiry health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Hold expiry check error"
        }


@system_bp.get("/health")
def health():
    """
    Health check endpoint.

    Returns:
    - 200: healthy or degraded (still operational)
    - 503: database unreachable
    """
    start_time = time.time()

    database_health = check_database_health()
    if database_health["status"] == "unhealthy":
        expiry_health = {"status": "unknown"}
    else:
        expiry_health = check_hold_expiry_health()

    all_checks = [database_health, expiry_health]
    if any(check["status"] == "unhealthy" for check in all_checks):
        overall_status = "unhealthy"
        http_status = 503
    elif any(check["status"] == "degraded" for check in all_checks):
        overall_status = "degraded"
        http_status = 200  # Degraded is still operational
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
            "hold_expiry": expiry_health,
        }
    }

    return response, http_status


@system_bp.get("/version")
def version():
    """
    Version endpoint for deployment debugging. Never exposes secrets or paths.
    """
    env = "production" if not current_app.debug else "development"

    return {
        "api_version": "1.0.0",
        "environment": env,
        "python_version": sys.version.split()[0],
        "server_time": utcnow().isoformat() + "Z",
    }
