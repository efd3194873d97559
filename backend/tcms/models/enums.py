# Overview: Closed status and method vocabularies for citations and payments.

from __future__ import annotations

from enum import Enum


class CitationStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    CONTESTED = "contested"
    DISMISSED = "dismissed"
    VOID = "void"


# Citations in these states can never take a payment
NON_PAYABLE_CITATION_STATUSES = frozenset({CitationStatus.VOID, CitationStatus.DISMISSED})


class PaymentStatus(str, Enum):
    PENDING_PRINT = "pending_print"
    COMPLETED = "completed"
    VOIDED = "voided"
    REFUNDED = "refunded"
    # Never persisted: cancelled payments are deleted. Still excluded by the OR uniqueness query.
    CANCELLED = "cancelled"


ACTIVE_PAYMENT_STATUSES = frozenset({PaymentStatus.PENDING_PRINT, PaymentStatus.COMPLETED})


class PaymentMethod(str, Enum):
    CASH = "cash"
    CHECK = "check"
    ONLINE = "online"
    GCASH = "gcash"
    PAYMAYA = "paymaya"
    BANK_TRANSFER = "bank_transfer"
    MONEY_ORDER = "money_order"


class ReceiptStatus(str, Enum):
    ACTIVE = "active"
    VOID = "void"


class UserRole(str, Enum):
    ADMIN = "admin"
    CASHIER = "cashier"
    ENFORCER = "enforcer"


def values(enum_cls) -> list[str]:
    return [member.value for member in enum_cls]
