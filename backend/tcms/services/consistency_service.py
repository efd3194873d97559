# Overview: Read-only checks that citation status and payment records agree.

from __future__ import annotations

from datetime import timedelta

from sqlalchemy import case, func

from ..extensions import db
from ..models import Citation, Payment
from ..models.enums import CitationStatus, PaymentStatus
from tcms.time_utils import to_utc_z, utcnow, whole_minutes_since
"""
Consistency Checks

Finds records left inconsistent by an interrupted finalize, a manual edit,
or a payment that was never printed. Never repairs anything; each check
carries a recommendation for the operator.

SEVERITY:
- critical: citation status contradicts its payments (money vs. record)
- warning: housekeeping (orphans, stale pending_print payments)
"""


SEVERITY_CRITICAL = "critical"
SEVERITY_WARNING = "warning"


def _check(name: str, description: str, issues: list[dict], severity: str, recommendation: str) -> dict:
    return {
        "name": name,
        "description": description,
        "severity": severity,
        "issue_count": len(issues),
        "status": "ok" if not issues else "issues_found",
        "recommendation": recommendation if issues else None,
        "issues": issues,
    }


def _driver_name(first_name, last_name) -> str:
    return " ".join(part for part in (first_name, last_name) if part)


def find_pending_citations_with_completed_payments() -> list[dict]:
    rows = (
        db.session.query(
            Citation.id,
            Citation.ticket_number,
            Citation.first_name,
            Citation.last_name,
            Citation.status,
            func.count(Payment.id).label("payment_count"),
        )
        .join(Payment, Payment.citation_id == Citation.id)
        .filter(
            Citation.status == CitationStatus.PENDING.value,
            Payment.status == PaymentStatus.COMPLETED.value,
        )
        .group_by(Citation.id, Citation.ticket_number, Citation.first_name, Citation.last_name, Citation.status)
        .order_by(Citation.id)
        .all()
    )
    issues = []
    for row in rows:
        receipts = (
            db.session.query(Payment.receipt_number)
            .filter(
                Payment.citation_id == row.id,
                Payment.status == PaymentStatus.COMPLETED.value,
            )
            .order_by(Payment.id)
            .all()
        )
        issues.append({
            "citation_id": row.id,
            "ticket_number": row.ticket_number,
            "driver_name": _driver_name(row.first_name, row.last_name),
            "citation_status": row.status,
            "payment_count": int(row.payment_count),
            "receipt_numbers": [r.receipt_number for r in receipts],
        })
    return issues


def find_paid_citations_without_completed_payment() -> list[dict]:
    completed = func.sum(case((Payment.status == PaymentStatus.COMPLETED.value, 1), else_=0))
    rows = (
        db.session.query(
            Citation.id,
            Citation.ticket_number,
            Citation.first_name,
            Citation.last_name,
            Citation.status,
            func.count(Payment.id).label("total_payments"),
            completed.label("completed_payments"),
        )
        .outerjoin(Payment, Payment.citation_id == Citation.id)
        .filter(Citation.status == CitationStatus.PAID.value)
        .group_by(Citation.id, Citation.ticket_number, Citation.first_name, Citation.last_name, Citation.status)
        .having(func.coalesce(completed, 0) == 0)
        .order_by(Citation.id)
        .all()
    )
    return [
        {
            "citation_id": row.id,
            "ticket_number": row.ticket_number,
            "driver_name": _driver_name(row.first_name, row.last_name),
            "citation_status": row.status,
            "total_payments": int(row.total_payments or 0),
            "completed_payments": 0,
        }
        for row in rows
    ]


def find_orphaned_payments() -> list[dict]:
    rows = (
        db.session.query(Payment)
        .outerjoin(Citation, Payment.citation_id == Citation.id)
        .filter(Citation.id.is_(None))
        .order_by(Payment.id)
        .all()
    )
    return [
        {
            "payment_id": p.id,
            "citation_id": p.citation_id,
            "receipt_number": p.receipt_number,
            "amount_paid": str(p.amount_paid),
            "status": p.status,
        }
        for p in rows
    ]


def find_stale_pending_print(stale_hours: int) -> list[dict]:
    now = utcnow()
    cutoff = now - timedelta(hours=stale_hours)
    rows = (
        db.session.query(Payment, Citation)
        .join(Citation, Payment.citation_id == Citation.id)
        .filter(
            Payment.status == PaymentStatus.PENDING_PRINT.value,
            Payment.payment_date < cutoff,
        )
        .order_by(Payment.payment_date, Payment.id)
        .all()
    )
    return [
        {
            "payment_id": payment.id,
            "citation_id": citation.id,
            "receipt_number": payment.receipt_number,
            "amount_paid": str(payment.amount_paid),
            "ticket_number": citation.ticket_number,
            "driver_name": citation.driver_name,
            "payment_date": to_utc_z(payment.payment_date),
            "hours_pending": whole_minutes_since(payment.payment_date, now) // 60,
        }
        for payment, citation in rows
    ]


def run_consistency_checks(stale_hours: int = 24) -> dict:
    checks = [
        _check(
            "Pending Citations with Completed Payments",
            'Citations marked as "pending" but have completed payment records',
            find_pending_citations_with_completed_payments(),
            SEVERITY_CRITICAL,
            "Finalize was interrupted after the payment completed. Mark the citation paid "
            "or refund the payment.",
        ),
        _check(
            "Paid Citations Without Completed Payments",
            'Citations marked as "paid" but have no completed payment records',
            find_paid_citations_without_completed_payment(),
            SEVERITY_CRITICAL,
            "Verify the physical receipt. Revert the citation to pending if no payment was collected.",
        ),
        _check(
            "Orphaned Payments",
            "Payment records whose citations do not exist",
            find_orphaned_payments(),
            SEVERITY_WARNING,
            "Investigate how the citation was removed and reassign or archive the payment.",
        ),
        _check(
            "Stale Pending Print Payments",
            f"Payments stuck in 'pending_print' status for more than {stale_hours} hours",
            find_stale_pending_print(stale_hours),
            SEVERITY_WARNING,
            "Ask the cashier to finalize (receipt printed), void, or cancel (receipt never printed).",
        ),
    ]
    return {
        "checked_at": to_utc_z(utcnow()),
        "stale_hours": stale_hours,
        "total_issues": sum(check["issue_count"] for check in checks),
        "has_critical_issues": any(
            check["severity"] == SEVERITY_CRITICAL and check["issue_count"] for check in checks
        ),
        "checks": checks,
    }
