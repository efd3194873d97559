# Overview: Payment lifecycle state machine; every transition runs in one transaction with its audit trail.

"""
Payment Processing Service

WHY: A cashier collects a fine, prints the official receipt (OR), and only
then is the citation paid. Printers jam and browsers crash between those
steps, so payment is a two-phase commit:

    record    NO_PAYMENT    -> PENDING_PRINT   (citation untouched)
    finalize  PENDING_PRINT -> COMPLETED       (citation -> paid)
    void      PENDING_PRINT -> VOIDED          (row kept, OR stays used)
    cancel    PENDING_PRINT -> deleted         (OR freed for reuse)
    update-OR PENDING_PRINT -> PENDING_PRINT   (printer jam recovery)
    refund    COMPLETED     -> REFUNDED        (citation -> pending)

DESIGN PRINCIPLES:
- The acting user id is always passed in explicitly
- One operation = one transaction; any failure rolls back everything
- Every transition locks the payment+citation row and is guarded by the
  version column, so two concurrent transitions on one payment cannot both win
- Only finalize retries, and only on transient or consistency failures
- Public operations never raise for business failures: they return a PaymentResult
"""

from __future__ import annotations

from functools import wraps

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..models import Citation, Payment, Receipt, PaymentAudit, User
from ..models.enums import (
    NON_PAYABLE_CITATION_STATUSES,
    CitationStatus,
    PaymentMethod,
    PaymentStatus,
    ReceiptStatus,
)
from tcms.time_utils import to_utc_z, utcnow
from tcms.validation import ValidationError, optional_text, parse_date, parse_enum, require_text
from . import audit_service
from .concurrency import lock_for_update, run_with_retry
from .payment_types import PaymentError, PaymentErrorKind, PaymentResult
from .payment_validator import validate_payment, validate_receipt_number, validate_refund_eligibility
from .receipt_numbering import get_receipt_number_source


# =============================================================================
# STATE MACHINE
# =============================================================================

# Allowed status changes. Every PaymentStatus appears so a new status
# without transitions fails loudly in _require_transition.
PAYMENT_TRANSITIONS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    PaymentStatus.PENDING_PRINT: frozenset({
        PaymentStatus.COMPLETED,
        PaymentStatus.VOIDED,
        PaymentStatus.CANCELLED,
    }),
    PaymentStatus.COMPLETED: frozenset({PaymentStatus.REFUNDED}),
    PaymentStatus.VOIDED: frozenset(),
    PaymentStatus.REFUNDED: frozenset(),
    PaymentStatus.CANCELLED: frozenset(),
}

CANCEL_REASON = "Receipt was never printed - OR number freed for reuse"


def _require_transition(payment: Payment, target: PaymentStatus, message: str) -> PaymentStatus:
    current = PaymentStatus(payment.status)
    if target not in PAYMENT_TRANSITIONS[current]:
        raise PaymentError(PaymentErrorKind.INVALID_STATE, message)
    return current


def _load_locked(payment_id: int) -> tuple[Payment, Citation]:
    """Payment and its citation, read with a row lock."""
    row = lock_for_update(
        db.session.query(Payment, Citation)
        .join(Citation, Payment.citation_id == Citation.id)
        .filter(Payment.id == payment_id)
    ).first()
    if row is None:
        raise PaymentError(PaymentErrorKind.NOT_FOUND, f"Payment not found (ID: {payment_id})")
    return row


def _payment_operation(action: str):
    """
    Turn a transactional operation into a PaymentResult-returning one.

    Business failures (PaymentError, ValidationError) and database failures
    roll back the whole transaction and come back as a failed result whose
    message is prefixed with "Error <action>: ".
    """
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs) -> PaymentResult:
            try:
                return func(*args, **kwargs)
            except PaymentError as exc:
                db.session.rollback()
                return PaymentResult.fail(exc.kind, f"Error {action}: {exc.message}")
            except ValidationError as exc:
                db.session.rollback()
                return PaymentResult.fail(PaymentErrorKind.INVALID_INPUT, f"Error {action}: {exc}")
            except StaleDataError:
                db.session.rollback()
                current_app.logger.warning("Concurrent modification while %s", action)
                return PaymentResult.fail(
                    PaymentErrorKind.INVALID_STATE,
                    f"Error {action}: Payment was changed by a concurrent operation. Please reload and try again.",
                )
            except SQLAlchemyError as exc:
                db.session.rollback()
                current_app.logger.exception("Database error while %s", action)
                return PaymentResult.fail(PaymentErrorKind.DATABASE, f"Error {action}: {exc}")
        return wrapper
    return decorator


# =============================================================================
# CITATION STATUS
# =============================================================================

def update_citation_status(
    citation_id: int,
    new_status: CitationStatus,
    user_id: int | None = None,
    reason: str | None = None,
) -> bool:
    """
    Move a citation to new_status inside the caller's transaction.

    payment_date is set when the citation becomes paid and cleared for any
    other status. No-op (and no audit entry) when the status is unchanged.

    Returns:
        True if the status changed

    Raises:
        PaymentError: NOT_FOUND if the citation does not exist
    """
    citation = db.session.get(Citation, citation_id)
    if not citation:
        raise PaymentError(PaymentErrorKind.NOT_FOUND, "Citation not found")

    old_status = citation.status
    if old_status == new_status.value:
        return False

    now = utcnow()
    citation.status = new_status.value
    citation.payment_date = now if new_status is CitationStatus.PAID else None
    citation.updated_at = now
    db.session.flush()

    audit_service.log_citation_status_change(
        citation_id,
        old_status,
        new_status.value,
        user_id=user_id,
        reason=reason,
    )
    return True


@_payment_operation("updating citation status")
def change_citation_status(
    citation_id: int,
    new_status: str,
    user_id: int,
    reason: str | None = None,
) -> PaymentResult:
    """Administrative status change in its own transaction."""
    status = parse_enum(CitationStatus, new_status, "status")
    lock_for_update(db.session.query(Citation).filter_by(id=citation_id)).first()
    changed = update_citation_status(citation_id, status, user_id, reason)
    db.session.commit()
    if not changed:
        return PaymentResult.ok("Citation status unchanged", citation_id=citation_id, status=status.value)
    return PaymentResult.ok("Citation status updated successfully", citation_id=citation_id, status=status.value)


# =============================================================================
# RECORD (phase one)
# =============================================================================

@_payment_operation("recording payment")
def record_payment(
    citation_id: int,
    amount_paid,
    payment_method: str,
    collected_by: int,
    extra: dict | None = None,
) -> PaymentResult:
    """
    Record a payment in pending_print.

    The citation's status is deliberately NOT changed here: it only becomes
    paid once finalize confirms the receipt printed, so a failed print can
    never leave a paid citation without a physical OR.

    Args:
        extra: receipt_number (required unless the sequence source is
            configured), check_number, check_bank, check_date,
            reference_number, notes
    """
    extra = extra or {}
    method = parse_enum(PaymentMethod, payment_method, "payment method")
    if db.session.get(User, collected_by) is None:
        raise PaymentError(PaymentErrorKind.INVALID_INPUT, f"Collector {collected_by} not found")

    citation = validate_payment(citation_id, amount_paid)
    amount = citation.total_fine

    resolved = get_receipt_number_source().resolve(extra.get("receipt_number"))
    receipt_number = validate_receipt_number(resolved.number, check_format=not resolved.generated)

    now = utcnow()
    payment = Payment(
        citation_id=citation.id,
        amount_paid=amount,
        payment_method=method.value,
        payment_date=now,
        receipt_number=receipt_number,
        status=PaymentStatus.PENDING_PRINT.value,
        collected_by=collected_by,
        check_number=optional_text(extra.get("check_number"), "check_number", max_length=64),
        check_bank=optional_text(extra.get("check_bank"), "check_bank", max_length=128),
        check_date=parse_date(extra.get("check_date"), "check_date"),
        reference_number=optional_text(extra.get("reference_number"), "reference_number", max_length=128),
        notes=optional_text(extra.get("notes"), "notes"),
        created_at=now,
        updated_at=now,
    )
    db.session.add(payment)
    db.session.flush()

    db.session.add(Receipt(
        payment_id=payment.id,
        receipt_number=receipt_number,
        status=ReceiptStatus.ACTIVE.value,
        generated_by=collected_by,
        generated_at=now,
    ))

    # Touch the citation so a concurrent recording for it conflicts on the version column
    citation.updated_at = now

    audit_service.log_payment_action(
        payment.id,
        "recorded",
        new_values={
            "citation_id": citation.id,
            "amount_paid": amount,
            "payment_method": method.value,
            "receipt_number": receipt_number,
            "status": PaymentStatus.PENDING_PRINT.value,
        },
        user_id=collected_by,
    )
    audit_service.record_payment_event(
        payment.id,
        audit_service.EVENT_RECORDED,
        amount=amount,
        receipt_number=receipt_number,
        user_id=collected_by,
    )
    db.session.commit()

    return PaymentResult.ok(
        "Payment recorded successfully",
        payment_id=payment.id,
        receipt_number=receipt_number,
        payment_date=to_utc_z(payment.payment_date),
    )


# =============================================================================
# FINALIZE (phase two)
# =============================================================================

def _should_retry_finalize(exc: Exception) -> bool:
    if isinstance(exc, PaymentError):
        return exc.kind.is_retryable
    return isinstance(exc, SQLAlchemyError)


def _track_receipt_print(payment_id: int, user_id: int, printed_at) -> None:
    """Best-effort print tracking; failures are logged, never raised."""
    nested = db.session.begin_nested()
    try:
        updated = (
            db.session.query(Receipt)
            .filter(Receipt.payment_id == payment_id)
            .update(
                {
                    Receipt.printed_at: printed_at,
                    Receipt.print_count: Receipt.print_count + 1,
                    Receipt.last_printed_by: user_id,
                    Receipt.last_printed_at: printed_at,
                },
                synchronize_session=False,
            )
        )
        nested.commit()
    except SQLAlchemyError:
        nested.rollback()
        current_app.logger.warning(
            "Failed to update receipt print tracking for payment ID=%s", payment_id, exc_info=True
        )
        return
    if not updated:
        current_app.logger.warning("No receipt record found for payment ID=%s", payment_id)


def _log_finalization_failure(payment_id: int, user_id: int, message: str, retry_count: int) -> None:
    try:
        audit_service.log_payment_action(
            payment_id,
            "finalization_failed",
            old_values={},
            new_values={"error": message, "retry_count": retry_count},
            user_id=user_id,
        )
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Failed to log finalization error to audit for payment ID=%s", payment_id)


def finalize_payment(payment_id: int, user_id: int) -> PaymentResult:
    """
    Confirm the receipt printed: payment -> completed, citation -> paid.

    Retries up to PAYMENT_FINALIZE_ATTEMPTS times with linear backoff on
    database errors and on the post-update consistency check. Business-rule
    failures (not found, wrong state, void citation) are never retried.
    Every failed finalize leaves a finalization_failed audit entry.
    """
    failures = 0

    def _count_failure(attempt, exc):
        nonlocal failures
        failures = attempt
        current_app.logger.warning(
            "Payment finalization attempt %s failed for payment ID=%s: %s", attempt, payment_id, exc
        )

    def _op() -> PaymentResult:
        payment, citation = _load_locked(payment_id)

        _require_transition(
            payment,
            PaymentStatus.COMPLETED,
            f"Payment is not in pending_print status. Current status: {payment.status}",
        )
        if CitationStatus(citation.status) in NON_PAYABLE_CITATION_STATUSES:
            raise PaymentError(
                PaymentErrorKind.CITATION_VOIDED,
                f"Cannot finalize payment: Citation is {citation.status}",
            )

        current_app.logger.info(
            "Finalizing payment ID=%s, OR=%s, Citation=%s",
            payment.id, payment.receipt_number, citation.ticket_number,
        )

        old_citation_status = citation.status
        now = utcnow()
        payment.status = PaymentStatus.COMPLETED.value
        payment.updated_at = now
        db.session.flush()

        update_citation_status(
            citation.id,
            CitationStatus.PAID,
            user_id,
            f"Payment confirmed and receipt printed successfully - OR: {payment.receipt_number}",
        )

        verified = db.session.query(Citation.status).filter(Citation.id == citation.id).scalar()
        if verified != CitationStatus.PAID.value:
            raise PaymentError(
                PaymentErrorKind.CRITICAL,
                f"CRITICAL: Citation status verification failed. Expected 'paid', got '{verified}'",
            )

        _track_receipt_print(payment.id, user_id, now)

        audit_service.log_payment_action(
            payment.id,
            "finalized",
            old_values={
                "status": PaymentStatus.PENDING_PRINT.value,
                "citation_status": old_citation_status,
            },
            new_values={
                "status": PaymentStatus.COMPLETED.value,
                "citation_status": CitationStatus.PAID.value,
                "finalized_by": user_id,
            },
            user_id=user_id,
        )
        audit_service.record_payment_event(
            payment.id,
            audit_service.EVENT_FINALIZED,
            amount=payment.amount_paid,
            receipt_number=payment.receipt_number,
            user_id=user_id,
        )
        db.session.commit()

        current_app.logger.info(
            "Payment finalized successfully: ID=%s, OR=%s, Citation=%s, User=%s",
            payment.id, payment.receipt_number, citation.ticket_number, user_id,
        )
        return PaymentResult.ok(
            "Payment finalized successfully",
            payment_id=payment.id,
            receipt_number=payment.receipt_number,
            citation_id=citation.id,
            ticket_number=citation.ticket_number,
        )

    try:
        return run_with_retry(
            _op,
            attempts=current_app.config["PAYMENT_FINALIZE_ATTEMPTS"],
            backoff_base=current_app.config["PAYMENT_FINALIZE_BACKOFF_SECONDS"],
            linear=True,
            should_retry=_should_retry_finalize,
            on_failure=_count_failure,
        )
    except PaymentError as exc:
        kind, message = exc.kind, exc.message
    except StaleDataError:
        kind = PaymentErrorKind.INVALID_STATE
        message = "Payment was changed by a concurrent operation"
    except SQLAlchemyError as exc:
        kind, message = PaymentErrorKind.DATABASE, str(exc)

    if kind.is_retryable:
        current_app.logger.critical(
            "Payment finalization failed after %s attempts for payment ID=%s: %s",
            failures, payment_id, message,
        )
    _log_finalization_failure(payment_id, user_id, message, failures)
    return PaymentResult.fail(kind, f"Error finalizing payment: {message}", retry_count=failures)


# =============================================================================
# VOID / CANCEL / OR CHANGE (pending_print corrections)
# =============================================================================

@_payment_operation("voiding payment")
def void_payment(payment_id: int, user_id: int, reason: str) -> PaymentResult:
    """
    Void a pending_print payment.

    The row is kept, so its OR number stays used. The receipt is marked
    void and the citation reverts to pending.
    """
    reason = require_text(reason, "Void reason")
    payment, citation = _load_locked(payment_id)
    old_status = _require_transition(
        payment, PaymentStatus.VOIDED, "Can only void pending_print payments"
    )

    now = utcnow()
    payment.status = PaymentStatus.VOIDED.value
    payment.append_note("VOIDED", f"Reason: {reason}")
    payment.updated_at = now

    receipt = payment.receipt
    if receipt is not None:
        receipt.status = ReceiptStatus.VOID.value
        receipt.cancellation_reason = reason
        receipt.cancelled_by = user_id
        receipt.cancelled_at = now
    db.session.flush()

    update_citation_status(citation.id, CitationStatus.PENDING, user_id, f"Payment voided: {reason}")

    audit_service.log_payment_action(
        payment.id,
        "voided",
        old_values={"status": old_status.value},
        new_values={"status": PaymentStatus.VOIDED.value, "reason": reason},
        user_id=user_id,
    )
    audit_service.log_or_action(
        audit_service.OR_ACTION_VOIDED,
        entity_id=payment.id,
        or_number_old=payment.receipt_number,
        ticket_number=citation.ticket_number,
        amount=payment.amount_paid,
        payment_status_old=old_status.value,
        payment_status_new=PaymentStatus.VOIDED.value,
        user_id=user_id,
        reason=reason,
    )
    audit_service.record_payment_event(
        payment.id,
        audit_service.EVENT_VOIDED,
        amount=payment.amount_paid,
        receipt_number=payment.receipt_number,
        user_id=user_id,
        reason=reason,
    )
    db.session.commit()
    return PaymentResult.ok("Payment voided successfully")


@_payment_operation("cancelling payment")
def cancel_payment(payment_id: int, user_id: int) -> PaymentResult:
    """
    Delete a never-printed payment, freeing its OR number.

    The compliance entries are written first: once the row is gone they
    are the only record that the payment existed.
    """
    payment, citation = _load_locked(payment_id)
    old_status = _require_transition(
        payment,
        PaymentStatus.CANCELLED,
        f"Can only cancel payments in pending_print status. This payment is: {payment.status}",
    )

    or_number = payment.receipt_number
    current_app.logger.info(
        "Payment CANCELLED (not voided) by user %s. Payment ID: %s, OR: %s, Citation: %s, Amount: %s. "
        "Reason: Receipt was never printed, OR number freed for reuse.",
        user_id, payment.id, or_number, citation.ticket_number, payment.amount_paid,
    )

    audit_service.log_or_action(
        audit_service.OR_ACTION_CANCELLED,
        entity_id=payment.id,
        or_number_old=or_number,
        ticket_number=citation.ticket_number,
        amount=payment.amount_paid,
        payment_status_old=old_status.value,
        payment_status_new="deleted",
        user_id=user_id,
        reason=CANCEL_REASON,
    )
    audit_service.log_payment_action(
        payment.id,
        "cancelled",
        old_values=payment.to_dict(),
        new_values={"status": "deleted", "reason": CANCEL_REASON},
        user_id=user_id,
    )

    # Children first, then the payment itself
    db.session.query(Receipt).filter(Receipt.payment_id == payment.id).delete(synchronize_session=False)
    db.session.query(PaymentAudit).filter(PaymentAudit.payment_id == payment.id).delete(synchronize_session=False)
    deleted = (
        db.session.query(Payment)
        .filter(
            Payment.id == payment.id,
            Payment.status == PaymentStatus.PENDING_PRINT.value,
            Payment.version_id == payment.version_id,
        )
        .delete(synchronize_session=False)
    )
    if deleted != 1:
        raise PaymentError(
            PaymentErrorKind.INVALID_STATE,
            "Payment was changed by a concurrent operation. Please reload and try again.",
        )
    db.session.expunge(payment)

    update_citation_status(citation.id, CitationStatus.PENDING, user_id, f"Payment cancelled: {CANCEL_REASON}")
    db.session.commit()

    return PaymentResult.ok(
        "Payment cancelled successfully. OR number is now available for reuse.",
        or_number=or_number,
        citation_status=citation.status,
    )


@_payment_operation("updating OR number")
def update_or_number(payment_id: int, new_or: str, user_id: int, reason: str) -> PaymentResult:
    """Swap the OR number of a pending_print payment (printer jam recovery)."""
    reason = require_text(reason, "Reason for OR change")
    payment, citation = _load_locked(payment_id)
    if PaymentStatus(payment.status) is not PaymentStatus.PENDING_PRINT:
        raise PaymentError(
            PaymentErrorKind.INVALID_STATE,
            "Can only update OR number for pending_print payments",
        )

    new_or = validate_receipt_number(new_or)
    old_or = payment.receipt_number

    payment.receipt_number = new_or
    payment.append_note("OR CHANGED", f"Old: {old_or} → New: {new_or} | Reason: {reason}")
    payment.updated_at = utcnow()
    if payment.receipt is not None:
        payment.receipt.receipt_number = new_or
    db.session.flush()

    audit_service.log_payment_action(
        payment.id,
        "or_number_changed",
        old_values={"receipt_number": old_or},
        new_values={"receipt_number": new_or, "reason": reason},
        user_id=user_id,
    )
    audit_service.log_or_action(
        audit_service.OR_ACTION_CHANGED,
        entity_id=payment.id,
        or_number_old=old_or,
        or_number_new=new_or,
        ticket_number=citation.ticket_number,
        amount=payment.amount_paid,
        payment_status_old=payment.status,
        payment_status_new=payment.status,
        user_id=user_id,
        reason=reason,
    )
    audit_service.record_payment_event(
        payment.id,
        audit_service.EVENT_OR_CHANGED,
        amount=payment.amount_paid,
        receipt_number=new_or,
        user_id=user_id,
        reason=reason,
    )
    db.session.commit()
    return PaymentResult.ok("OR number updated successfully", new_or=new_or)


# =============================================================================
# REFUND
# =============================================================================

@_payment_operation("refunding payment")
def refund_payment(payment_id: int, reason: str, user_id: int) -> PaymentResult:
    """Reverse a completed payment; the citation reverts to pending."""
    reason = require_text(reason, "Refund reason")
    payment, citation = _load_locked(payment_id)
    validate_refund_eligibility(payment.id)
    old_status = PaymentStatus(payment.status)

    payment.status = PaymentStatus.REFUNDED.value
    payment.append_note("REFUNDED", reason)
    payment.updated_at = utcnow()
    db.session.flush()

    update_citation_status(citation.id, CitationStatus.PENDING, user_id, f"Payment refunded: {reason}")

    audit_service.log_payment_action(
        payment.id,
        "refunded",
        old_values={"status": old_status.value},
        new_values={"status": PaymentStatus.REFUNDED.value, "reason": reason},
        user_id=user_id,
    )
    audit_service.record_payment_event(
        payment.id,
        audit_service.EVENT_REFUNDED,
        amount=payment.amount_paid,
        receipt_number=payment.receipt_number,
        user_id=user_id,
        reason=reason,
    )
    db.session.commit()
    return PaymentResult.ok("Payment refunded successfully. Citation status reverted to pending.")
