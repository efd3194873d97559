# backend/tcms/routes/system.py
"""
System health and version endpoints.

Health covers the database and the payment workflow: payments stuck in
pending_print longer than STALE_PENDING_PRINT_HOURS degrade the status
so monitoring notices receipts nobody confirmed.
"""

import sys
import time
from datetime import timedelta

from flask import Blueprint, current_app
from ..extensions import db
from ..models import Citation, Payment, User, ReceiptSequence
from ..models.enums import PaymentStatus
from ..services.receipt_numbering import SEQUENCE_ROW_ID
from tcms.time_utils import to_utc_z, utcnow

system_bp = Blueprint("system", __name__, url_prefix="/api")

# Worst status wins when checks are combined
_STATUS_RANK = {"healthy": 0, "degraded": 1, "unhealthy": 2}


def _elapsed_ms(started: float) -> float:
    return round((time.time() - started) * 1000, 2)


def check_database_health() -> dict:
    """Row counts of the core tables; any database error is unhealthy."""
    started = time.time()
    try:
        details = {
            "users": db.session.query(User).count(),
            "citations": db.session.query(Citation).count(),
            "payments": db.session.query(Payment).count(),
        }
    except Exception:
        current_app.logger.exception("Database health check failed")
        return {"status": "unhealthy", "latency_ms": _elapsed_ms(started), "error": "Database error"}
    return {"status": "healthy", "latency_ms": _elapsed_ms(started), "details": details}


def check_payment_workflow_health() -> dict:
    """
    Pending-print backlog and receipt numbering readiness.
    """
    started = time.time()
    stale_hours = current_app.config["STALE_PENDING_PRINT_HOURS"]
    source = current_app.config["RECEIPT_NUMBER_SOURCE"]
    try:
        pending = db.session.query(Payment).filter(Payment.status == PaymentStatus.PENDING_PRINT.value)
        details = {
            "pending_print": pending.count(),
            "stale_pending_print": pending.filter(
                Payment.payment_date < utcnow() - timedelta(hours=stale_hours)
            ).count(),
            "stale_after_hours": stale_hours,
            "receipt_number_source": source,
        }
        sequence_ready = db.session.get(ReceiptSequence, SEQUENCE_ROW_ID) is not None
    except Exception:
        current_app.logger.exception("Payment workflow health check failed")
        return {"status": "unhealthy", "latency_ms": _elapsed_ms(started), "error": "Payment workflow error"}

    result = {"status": "healthy", "latency_ms": _elapsed_ms(started), "details": details}
    if details["stale_pending_print"]:
        result["status"] = "degraded"
        result["warning"] = (
            f"{details['stale_pending_print']} payment(s) pending print for more than {stale_hours} hours"
        )
    elif source == "sequence" and not sequence_ready:
        result["status"] = "degraded"
        result["warning"] = "Receipt sequence not initialized (run: flask system init-db)"
    return result


@system_bp.get("/health")
def health():
    """
    Health check endpoint.

    Returns:
    - 200: healthy or degraded (still operational)
    - 503: one or more checks unhealthy
    """
    started = time.time()
    checks = {
        "database": check_database_health(),
        "payment_workflow": check_payment_workflow_health(),
    }
    overall = max((check["status"] for check in checks.values()), key=_STATUS_RANK.__getitem__)

    return {
        "status": overall,
        "timestamp": to_utc_z(utcnow()),
        "total_latency_ms": _elapsed_ms(started),
        "checks": checks,
    }, (503 if overall == "unhealthy" else 200)


@system_bp.get("/version")
def version():
    """Non-sensitive deployment information."""
    return {
        "api_version": "1.0.0",
        "environment": "development" if current_app.debug else "production",
        "python_version": sys.version.split()[0],
        "server_time": to_utc_z(utcnow()),
    }
