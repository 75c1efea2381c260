# backend/orderflow/routes/system.py
"""
System health endpoint.

Checks both stores and reports which optional collaborators are configured.
"""

import time
from flask import Blueprint, current_app
from ..extensions import db
from ..models import Order
from ..services.store_client import dispatch_store
from orderflow.time_utils import utcnow

system_bp = Blueprint("system", __name__, url_prefix="/api")

REQUIRED_DISPATCH_TABLES = ("recipients", "dispatch_jobs", "payouts_ledger")


def check_primary_store_health() -> dict:
    """Orders store connectivity."""
    start_time = time.time()
    try:
        order_count = db.session.query(Order).count()
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {"orders": order_count},
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Primary store health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


def check_fulfillment_store_health() -> dict:
    """
    Fulfillment store connectivity. Missing core tables are reported as
    degraded rather than unhealthy: writes may still adapt around them.
    """
    start_time = time.time()
    try:
        store = dispatch_store()
        store.refresh_schema()
        missing = [t for t in REQUIRED_DISPATCH_TABLES if not store.has_table(t)]
        elapsed_ms = (time.time() - start_time) * 1000
        if missing:
            return {
                "status": "degraded",
                "latency_ms": round(elapsed_ms, 2),
                "warning": f"Missing tables: {', '.join(missing)}",
            }
        return {"status": "healthy", "latency_ms": round(elapsed_ms, 2)}
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Fulfillment store health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


def collaborator_status() -> dict:
    ext = current_app.extensions
    return {
        "payment_processor": bool(getattr(ext.get("payment_gateway"), "secret_key", True)),
        "geocoder": bool(getattr(ext.get("geocoder"), "enabled", False)),
        "sms": bool(getattr(ext.get("sms_client"), "enabled", False)),
    }


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy or degraded
    - 503: a store is unreachable
    """
    start_time = time.time()

    primary = check_primary_store_health()
    fulfillment = check_fulfillment_store_health()

    all_checks = [primary, fulfillment]
    if any(check["status"] == "unhealthy" for check in all_checks):
        overall_status, http_status = "unhealthy", 503
    elif any(check["status"] == "degraded" for check in all_checks):
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    response = {
        "status": overall_status,
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": {
            "primary_store": primary,
            "fulfillment_store": fulfillment,
        },
        "collaborators": collaborator_status(),
    }

    return response, http_status
