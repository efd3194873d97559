# Overview: Append-only audit trail writers and readers for payments, citations, and OR numbers.

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from flask import has_request_context, request

from ..extensions import db
from ..models import AuditLog, OrAuditLog, PaymentAudit, User
from tcms.time_utils import end_of_day, start_of_day, to_utc_z, utcnow
"""
Audit Trail Invariants

- Three append-only stores: audit_log (general, JSON before/after snapshots),
  or_audit_log (OR-number compliance), payment_audit (per-payment events).
- Writers only add and flush; they never commit. Entries are written inside
  the same transaction as the change they record, so a failed audit insert
  fails the operation and a rolled-back operation leaves no entry behind.
- No business logic here.
- Client IP and User-Agent are taken from the active request when there is one.
"""


# Payment event actions (payment_audit.action)
EVENT_RECORDED = "RECORDED"
EVENT_FINALIZED = "FINALIZED"
EVENT_VOIDED = "VOIDED"
EVENT_OR_CHANGED = "OR_CHANGED"
EVENT_REFUNDED = "REFUNDED"

# OR compliance actions (or_audit_log.action_type)
OR_ACTION_VOIDED = "payment_voided"
OR_ACTION_CANCELLED = "payment_cancelled"
OR_ACTION_CHANGED = "or_number_changed"


def _client_info() -> tuple[str | None, str | None]:
    if not has_request_context():
        return None, None
    user_agent = request.headers.get("User-Agent")
    return request.remote_addr, user_agent[:512] if user_agent else None


def _json_safe(value):
    if isinstance(value, dict):
        return {str(k): _json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_safe(v) for v in value]
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return to_utc_z(value)
    if isinstance(value, date):
        return value.isoformat()
    return value


# =============================================================================
# WRITERS
# =============================================================================

def log(
    *,
    action: str,
    table_name: str,
    record_id: int | None,
    old_values: dict | None = None,
    new_values: dict | None = None,
    user_id: int | None = None,
) -> AuditLog:
    """Append a general audit entry with before/after snapshots."""
    ip_address, user_agent = _client_info()
    entry = AuditLog(
        user_id=user_id,
        action=action,
        table_name=table_name,
        record_id=record_id,
        old_values=_json_safe(old_values) if old_values is not None else None,
        new_values=_json_safe(new_values) if new_values is not None else None,
        ip_address=ip_address,
        user_agent=user_agent,
        created_at=utcnow(),
    )
    db.session.add(entry)
    db.session.flush()
    return entry


def log_citation_status_change(
    citation_id: int,
    old_status: str,
    new_status: str,
    *,
    user_id: int | None = None,
    reason: str | None = None,
) -> AuditLog:
    new_values = {"status": new_status}
    if reason:
        new_values["reason"] = reason
    return log(
        action="status_change",
        table_name="citations",
        record_id=citation_id,
        old_values={"status": old_status},
        new_values=new_values,
        user_id=user_id,
    )


def log_payment_action(
    payment_id: int | None,
    action: str,
    *,
    old_values: dict | None = None,
    new_values: dict | None = None,
    user_id: int | None = None,
) -> AuditLog:
    return log(
        action=action,
        table_name="payments",
        record_id=payment_id,
        old_values=old_values,
        new_values=new_values,
        user_id=user_id,
    )


def log_or_action(
    action_type: str,
    *,
    entity_type: str = "payment",
    entity_id: int | None = None,
    or_number_old: str | None = None,
    or_number_new: str | None = None,
    ticket_number: str | None = None,
    amount: Decimal | None = None,
    payment_status_old: str | None = None,
    payment_status_new: str | None = None,
    user_id: int | None = None,
    reason: str | None = None,
    additional_data: dict | None = None,
) -> OrAuditLog:
    """
    Append an OR compliance entry.

    The username is copied at write time so the entry stays readable even
    if the user is later renamed or deactivated.
    """
    username = None
    if user_id is not None:
        user = db.session.get(User, user_id)
        username = user.username if user else None

    ip_address, user_agent = _client_info()
    entry = OrAuditLog(
        action_type=action_type,
        entity_type=entity_type,
        entity_id=entity_id,
        or_number_old=or_number_old,
        or_number_new=or_number_new,
        ticket_number=ticket_number,
        amount=amount,
        payment_status_old=payment_status_old,
        payment_status_new=payment_status_new,
        user_id=user_id,
        username=username,
        reason=reason,
        ip_address=ip_address,
        user_agent=user_agent,
        additional_data=_json_safe(additional_data) if additional_data is not None else None,
        action_datetime=utcnow(),
    )
    db.session.add(entry)
    db.session.flush()
    return entry


def record_payment_event(
    payment_id: int,
    action: str,
    *,
    amount: Decimal | None = None,
    receipt_number: str | None = None,
    user_id: int | None = None,
    reason: str | None = None,
) -> PaymentAudit:
    """Append a per-payment ledger event (removed with the payment on cancel)."""
    event = PaymentAudit(
        payment_id=payment_id,
        action=action,
        amount=amount,
        receipt_number=receipt_number,
        user_id=user_id,
        reason=reason,
        occurred_at=utcnow(),
    )
    db.session.add(event)
    db.session.flush()
    return event


# =============================================================================
# READERS
# =============================================================================

def get_audit_history(table_name: str, record_id: int) -> list[AuditLog]:
    """All general entries for one row, newest first."""
    return (
        db.session.query(AuditLog)
        .filter(AuditLog.table_name == table_name, AuditLog.record_id == record_id)
        .order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
        .all()
    )


def get_citation_status_history(citation_id: int) -> list[AuditLog]:
    return (
        db.session.query(AuditLog)
        .filter(
            AuditLog.table_name == "citations",
            AuditLog.record_id == citation_id,
            AuditLog.action == "status_change",
        )
        .order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
        .all()
    )


def get_payment_events(payment_id: int) -> list[PaymentAudit]:
    return (
        db.session.query(PaymentAudit)
        .filter_by(payment_id=payment_id)
        .order_by(PaymentAudit.occurred_at, PaymentAudit.id)
        .all()
    )


def get_or_audit_history(
    *,
    or_number: str | None = None,
    payment_id: int | None = None,
    limit: int = 100,
) -> list[OrAuditLog]:
    """OR compliance entries matching an OR number (old or new) and/or a payment."""
    query = db.session.query(OrAuditLog)
    if or_number:
        normalized = or_number.strip().upper()
        query = query.filter(
            db.or_(OrAuditLog.or_number_old == normalized, OrAuditLog.or_number_new == normalized)
        )
    if payment_id is not None:
        query = query.filter(OrAuditLog.entity_type == "payment", OrAuditLog.entity_id == payment_id)
    return (
        query.order_by(OrAuditLog.action_datetime.desc(), OrAuditLog.id.desc())
        .limit(limit)
        .all()
    )


def get_recent_activity(
    *,
    user_id: int | None = None,
    action: str | None = None,
    table_name: str | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    limit: int = 50,
) -> list[AuditLog]:
    query = db.session.query(AuditLog)
    if user_id is not None:
        query = query.filter(AuditLog.user_id == user_id)
    if action:
        query = query.filter(AuditLog.action == action)
    if table_name:
        query = query.filter(AuditLog.table_name == table_name)
    if date_from:
        query = query.filter(AuditLog.created_at >= start_of_day(date_from))
    if date_to:
        query = query.filter(AuditLog.created_at <= end_of_day(date_to))
    return (
        query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
        .limit(limit)
        .all()
    )
