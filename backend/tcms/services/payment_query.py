# Overview: Read-only payment projections for the cashier screens and payment history.

from __future__ import annotations

from datetime import date

from sqlalchemy import func
from sqlalchemy.orm import joinedload

from ..extensions import db
from ..models import Citation, Payment
from ..models.enums import PaymentStatus
from tcms.time_utils import end_of_day, start_of_day, to_utc_z, utcnow, whole_minutes_since


DEFAULT_LIMIT = 50


def serialize_payment(payment: Payment, *, include_receipt: bool = False, include_events: bool = False) -> dict:
    """Payment row plus the citation and collector fields the screens show."""
    data = payment.to_dict()
    citation = payment.citation
    data.update({
        "ticket_number": citation.ticket_number if citation else None,
        "driver_name": citation.driver_name if citation else None,
        "license_number": citation.license_number if citation else None,
        "citation_status": citation.status if citation else None,
        "total_fine": str(citation.total_fine) if citation else None,
        "collector_username": payment.collector.username if payment.collector else None,
        "collector_name": payment.collector.full_name if payment.collector else None,
    })
    if include_receipt:
        data["receipt"] = payment.receipt.to_dict() if payment.receipt else None
    if include_events:
        data["events"] = [event.to_dict() for event in sorted(payment.audit_events, key=lambda e: e.id)]
        data["note_log"] = [{"label": label, "message": message} for label, message in payment.note_entries]
    return data


def _base_query():
    return (
        db.session.query(Payment)
        .join(Citation, Payment.citation_id == Citation.id)
        .options(joinedload(Payment.citation), joinedload(Payment.collector))
    )


def _apply_filters(query, filters: dict | None):
    filters = filters or {}
    date_from: date | None = filters.get("date_from")
    date_to: date | None = filters.get("date_to")

    if date_from:
        query = query.filter(Payment.payment_date >= start_of_day(date_from))
    if date_to:
        query = query.filter(Payment.payment_date <= end_of_day(date_to))
    if filters.get("payment_method"):
        query = query.filter(Payment.payment_method == filters["payment_method"])
    if filters.get("collected_by"):
        query = query.filter(Payment.collected_by == filters["collected_by"])
    if filters.get("status"):
        query = query.filter(Payment.status == filters["status"])
    if filters.get("receipt_number"):
        query = query.filter(Payment.receipt_number.ilike(f"%{filters['receipt_number']}%"))
    if filters.get("ticket_number"):
        query = query.filter(Citation.ticket_number.ilike(f"%{filters['ticket_number']}%"))
    return query


def get_payment_by_id(payment_id: int) -> dict | None:
    """Full detail: citation, collector, receipt, and the per-payment event ledger."""
    payment = (
        _base_query()
        .options(joinedload(Payment.receipt))
        .filter(Payment.id == payment_id)
        .first()
    )
    if payment is None:
        return None
    return serialize_payment(payment, include_receipt=True, include_events=True)


def get_payment_history(citation_id: int) -> list[dict]:
    """Every payment recorded against a citation, newest first."""
    payments = (
        _base_query()
        .filter(Payment.citation_id == citation_id)
        .order_by(Payment.payment_date.desc(), Payment.id.desc())
        .all()
    )
    return [serialize_payment(p) for p in payments]


def get_refund_history(citation_id: int) -> list[dict]:
    payments = (
        _base_query()
        .filter(
            Payment.citation_id == citation_id,
            Payment.status == PaymentStatus.REFUNDED.value,
        )
        .order_by(Payment.updated_at.desc(), Payment.id.desc())
        .all()
    )
    return [serialize_payment(p) for p in payments]


def list_payments(filters: dict | None = None, limit: int = DEFAULT_LIMIT, offset: int = 0) -> list[dict]:
    payments = (
        _apply_filters(_base_query(), filters)
        .order_by(Payment.payment_date.desc(), Payment.id.desc())
        .limit(limit)
        .offset(offset)
        .all()
    )
    return [serialize_payment(p) for p in payments]


def count_payments(filters: dict | None = None) -> int:
    query = db.session.query(Payment).join(Citation, Payment.citation_id == Citation.id)
    return _apply_filters(query, filters).count()


def search_payments(term: str, limit: int = 20) -> list[dict]:
    """Match ticket number, OR number, driver name, or license number."""
    pattern = f"%{term.strip()}%"
    driver_name = func.coalesce(Citation.first_name, "") + " " + func.coalesce(Citation.last_name, "")
    payments = (
        _base_query()
        .filter(
            db.or_(
                Citation.ticket_number.ilike(pattern),
                Payment.receipt_number.ilike(pattern),
                driver_name.ilike(pattern),
                Citation.license_number.ilike(pattern),
            )
        )
        .order_by(Payment.payment_date.desc(), Payment.id.desc())
        .limit(limit)
        .all()
    )
    return [serialize_payment(p) for p in payments]


def get_payments_by_cashier(user_id: int, limit: int = 100) -> list[dict]:
    payments = (
        _base_query()
        .filter(Payment.collected_by == user_id)
        .order_by(Payment.payment_date.desc(), Payment.id.desc())
        .limit(limit)
        .all()
    )
    return [serialize_payment(p) for p in payments]


# =============================================================================
# PENDING PRINT
# =============================================================================

def list_pending_print_payments(user_id: int | None = None) -> list[dict]:
    """pending_print payments, oldest first, with their age in minutes."""
    query = _base_query().filter(Payment.status == PaymentStatus.PENDING_PRINT.value)
    if user_id is not None:
        query = query.filter(Payment.collected_by == user_id)
    now = utcnow()
    rows = []
    for payment in query.order_by(Payment.payment_date, Payment.id).all():
        data = serialize_payment(payment)
        data["minutes_pending"] = whole_minutes_since(payment.payment_date, now)
        rows.append(data)
    return rows


def get_pending_print_summary(user_id: int | None = None) -> dict:
    """Count of pending_print payments and the age of the oldest one."""
    query = db.session.query(
        db.func.count(Payment.id),
        db.func.min(Payment.payment_date),
    ).filter(Payment.status == PaymentStatus.PENDING_PRINT.value)
    if user_id is not None:
        query = query.filter(Payment.collected_by == user_id)

    count, oldest = query.one()
    if not count:
        return {"has_pending": False, "count": 0, "oldest_payment_date": None, "oldest_minutes": 0}

    return {
        "has_pending": True,
        "count": int(count),
        "oldest_payment_date": to_utc_z(oldest),
        "oldest_minutes": whole_minutes_since(oldest),
    }
