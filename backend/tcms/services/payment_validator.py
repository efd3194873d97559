# Overview: Read-only business-rule checks for payments; never mutates state.

"""
Payment Validation

WHY: Every rule that decides whether a payment operation is legal lives
here so the processor's transitions stay small and the rules can be
reused by the OR-duplicate lookup endpoint.

RULES:
- A citation is payable only if it exists, is not paid, void or dismissed
- The amount must equal the citation's total fine exactly (no partial payments)
- At most one pending_print/completed payment per citation
- OR numbers: 2-4 letters followed by 6-10 digits, unique across payments
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import Decimal

from ..extensions import db
from ..models import Citation, Payment
from ..models.enums import (
    ACTIVE_PAYMENT_STATUSES,
    CitationStatus,
    PaymentStatus,
)
from tcms.time_utils import to_utc_z
from tcms.validation import ValidationError, parse_amount
from .payment_types import PaymentError, PaymentErrorKind


OR_NUMBER_PATTERN = re.compile(r"^[A-Z]{2,4}[0-9]{6,10}$")

PAYABLE_CITATION_STATUSES = frozenset({CitationStatus.PENDING, CitationStatus.CONTESTED})


def _peso(amount) -> str:
    return f"₱{Decimal(amount):,.2f}"


# =============================================================================
# CITATION / AMOUNT RULES
# =============================================================================

def validate_payment(citation_id: int, amount_paid) -> Citation:
    """
    Check that a citation can take a payment of amount_paid.

    Returns:
        The citation row (used for amounts in messages and the ticket number)

    Raises:
        PaymentError: NOT_FOUND, ALREADY_PAID, NOT_PAYABLE, AMOUNT_MISMATCH,
        or DUPLICATE_ACTIVE_PAYMENT
    """
    citation = db.session.get(Citation, citation_id)
    if not citation:
        raise PaymentError(PaymentErrorKind.NOT_FOUND, "Citation not found")

    if citation.status == CitationStatus.PAID.value:
        raise PaymentError(PaymentErrorKind.ALREADY_PAID, "Citation has already been paid")
    validate_citation_status(citation.status)

    amount = validate_payment_amount(amount_paid)
    if amount != citation.total_fine:
        raise PaymentError(
            PaymentErrorKind.AMOUNT_MISMATCH,
            f"Payment amount must match total fine of {_peso(citation.total_fine)}",
        )

    if check_existing_payments(citation_id) is not None:
        raise PaymentError(
            PaymentErrorKind.DUPLICATE_ACTIVE_PAYMENT,
            "Active payment already exists for this citation. Cannot process duplicate payment.",
        )

    return citation


def validate_payment_amount(amount) -> Decimal:
    """Positive, finite Decimal; never rounded."""
    try:
        return parse_amount(amount, "Payment amount")
    except ValidationError as exc:
        raise PaymentError(PaymentErrorKind.INVALID_INPUT, f"Invalid payment amount: {exc}")


def validate_citation_status(status: str) -> CitationStatus:
    """Only pending and contested citations are eligible for payment."""
    try:
        parsed = CitationStatus(status)
    except ValueError:
        raise PaymentError(PaymentErrorKind.INVALID_INPUT, f"Unknown citation status: {status}")

    if parsed not in PAYABLE_CITATION_STATUSES:
        raise PaymentError(
            PaymentErrorKind.NOT_PAYABLE,
            f"Cannot process payment for {parsed.value} citation",
        )
    return parsed


def check_existing_payments(citation_id: int) -> Payment | None:
    """Return the active (pending_print or completed) payment for a citation, if any."""
    return (
        db.session.query(Payment)
        .filter(
            Payment.citation_id == citation_id,
            Payment.status.in_([s.value for s in ACTIVE_PAYMENT_STATUSES]),
        )
        .order_by(Payment.id)
        .first()
    )


# =============================================================================
# OR NUMBER RULES
# =============================================================================

@dataclass(frozen=True)
class ReceiptNumberCheck:
    available: bool
    or_number: str
    message: str
    existing_payment: dict | None = None

    def to_dict(self) -> dict:
        out = {
            "available": self.available,
            "or_number": self.or_number,
            "message": self.message,
        }
        if self.existing_payment is not None:
            out["existing_payment"] = self.existing_payment
        return out


def normalize_receipt_number(or_number) -> str:
    return str(or_number or "").strip().upper()


def validate_receipt_number_format(or_number) -> str:
    """
    Returns the normalized OR number.

    Raises:
        PaymentError(INVALID_FORMAT) unless it is 2-4 letters followed by 6-10 digits
    """
    normalized = normalize_receipt_number(or_number)
    if not OR_NUMBER_PATTERN.match(normalized):
        raise PaymentError(
            PaymentErrorKind.INVALID_FORMAT,
            "Invalid OR number format. Expected format: 2-4 letters followed by "
            "6-10 digits (e.g., CGVM15320501)",
        )
    return normalized


def check_receipt_number(or_number, *, check_format: bool = True) -> ReceiptNumberCheck:
    """
    Non-raising availability lookup (format errors still raise).

    An OR number is occupied by any payment row whose status is not
    cancelled. Cancelled payments are deleted rather than flagged, so in
    practice every surviving row, voided ones included, occupies its OR.
    """
    if check_format:
        normalized = validate_receipt_number_format(or_number)
    else:
        normalized = normalize_receipt_number(or_number)

    existing = (
        db.session.query(Payment)
        .filter(
            Payment.receipt_number == normalized,
            Payment.status != PaymentStatus.CANCELLED.value,
        )
        .order_by(Payment.id)
        .first()
    )
    if existing is None:
        return ReceiptNumberCheck(
            available=True,
            or_number=normalized,
            message="Receipt number is available",
        )

    citation = existing.citation
    message = (
        f'OR Number "{normalized}" has already been used (Payment ID: {existing.id}, '
        f"Amount: {_peso(existing.amount_paid)}, Date: {to_utc_z(existing.payment_date)}). "
        "Please check the physical receipt and enter the correct OR number."
    )
    return ReceiptNumberCheck(
        available=False,
        or_number=normalized,
        message=message,
        existing_payment={
            "payment_id": existing.id,
            "receipt_number": existing.receipt_number,
            "amount_paid": str(existing.amount_paid),
            "payment_date": to_utc_z(existing.payment_date),
            "status": existing.status,
            "ticket_number": citation.ticket_number if citation else None,
            "driver_name": citation.driver_name if citation else None,
        },
    )


def validate_receipt_number(or_number, *, check_format: bool = True) -> str:
    """
    Format and uniqueness check.

    Returns:
        The normalized OR number

    Raises:
        PaymentError: INVALID_FORMAT or DUPLICATE_OR
    """
    result = check_receipt_number(or_number, check_format=check_format)
    if not result.available:
        raise PaymentError(PaymentErrorKind.DUPLICATE_OR, result.message)
    return result.or_number


# =============================================================================
# REFUND RULES
# =============================================================================

def validate_refund_eligibility(payment_id: int) -> Payment:
    """Only completed payments can be refunded."""
    payment = db.session.get(Payment, payment_id)
    if not payment:
        raise PaymentError(PaymentErrorKind.NOT_FOUND, "Payment not found")

    if PaymentStatus(payment.status) is not PaymentStatus.COMPLETED:
        raise PaymentError(
            PaymentErrorKind.INVALID_STATE,
            f"Only completed payments can be refunded. Current status: {payment.status}",
        )
    return payment
