# Overview: Error kinds and the structured result returned by every payment operation.

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class PaymentErrorKind(str, Enum):
    # Business-rule outcomes: retrying cannot change them
    NOT_FOUND = "not_found"
    ALREADY_PAID = "already_paid"
    NOT_PAYABLE = "not_payable"
    AMOUNT_MISMATCH = "amount_mismatch"
    DUPLICATE_ACTIVE_PAYMENT = "duplicate_active_payment"
    MISSING_RECEIPT_NUMBER = "missing_receipt_number"
    INVALID_FORMAT = "invalid_format"
    DUPLICATE_OR = "duplicate_or"
    INVALID_INPUT = "invalid_input"
    INVALID_STATE = "invalid_state"
    CITATION_VOIDED = "citation_voided"
    # Transient or consistency failures
    CRITICAL = "critical"
    DATABASE = "database"

    @property
    def is_retryable(self) -> bool:
        return self in (PaymentErrorKind.CRITICAL, PaymentErrorKind.DATABASE)

    @property
    def http_status(self) -> int:
        if self is PaymentErrorKind.NOT_FOUND:
            return 404
        if self in _CONFLICT_KINDS:
            return 409
        if self.is_retryable:
            return 500
        return 400


_CONFLICT_KINDS = frozenset({
    PaymentErrorKind.INVALID_STATE,
    PaymentErrorKind.ALREADY_PAID,
    PaymentErrorKind.DUPLICATE_ACTIVE_PAYMENT,
    PaymentErrorKind.DUPLICATE_OR,
    PaymentErrorKind.CITATION_VOIDED,
})


class PaymentError(Exception):
    """Raised inside payment operations; carries the error kind."""

    def __init__(self, kind: PaymentErrorKind, message: str):
        super().__init__(message)
        self.kind = kind
        self.message = message


@dataclass
class PaymentResult:
    """
    Outcome of one payment operation.

    to_dict() is the JSON contract: always a success flag and a message,
    plus the operation payload on success, or the error kind (and retry
    count for finalize) on failure.
    """
    success: bool
    message: str
    data: dict[str, Any] = field(default_factory=dict)
    error_kind: PaymentErrorKind | None = None
    retry_count: int | None = None

    @classmethod
    def ok(cls, message: str, **data: Any) -> "PaymentResult":
        return cls(success=True, message=message, data=data)

    @classmethod
    def fail(
        cls,
        kind: PaymentErrorKind,
        message: str,
        *,
        retry_count: int | None = None,
    ) -> "PaymentResult":
        return cls(success=False, message=message, error_kind=kind, retry_count=retry_count)

    @property
    def http_status(self) -> int:
        if self.success:
            return 200
        return self.error_kind.http_status if self.error_kind else 500

    def to_dict(self) -> dict:
        out = {"success": self.success, "message": self.message}
        out.update(self.data)
        if self.error_kind is not None:
            out["error_kind"] = self.error_kind.value
        if self.retry_count is not None:
            out["retry_count"] = self.retry_count
        return out
