from __future__ import annotations

from ..extensions import db
from tcms.time_utils import to_utc_z


def _money(value) -> str | None:
    return str(value) if value is not None else None


class Payment(db.Model):
    """
    Fine payment collected against a citation.

    WHY: A payment goes through a two-phase commit. It is recorded in
    pending_print, and only after the cashier confirms the physical OR
    printed is it finalized (completed) and the citation marked paid.

    STATUSES:
    - pending_print: recorded, receipt not yet confirmed printed
    - completed: receipt printed, citation paid
    - voided: cashier cancelled before printing (row kept, OR stays used)
    - refunded: completed payment reversed

    At most one pending_print/completed payment may exist per citation.
    """
    __tablename__ = "payments"
    __table_args__ = (
        db.Index("ix_payments_citation_status", "citation_id", "status"),
        db.Index("ix_payments_status_payment_date", "status", "payment_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    citation_id = db.Column(db.Integer, db.ForeignKey("citations.id"), nullable=False, index=True)

    amount_paid = db.Column(db.Numeric(12, 2), nullable=False)
    payment_method = db.Column(db.String(32), nullable=False, index=True)
    payment_date = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    # OR number transcribed from the physical receipt (stored normalized)
    receipt_number = db.Column(db.String(32), nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default="pending_print", index=True)
    collected_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    # Method-specific details
    check_number = db.Column(db.String(64), nullable=True)
    check_bank = db.Column(db.String(128), nullable=True)
    check_date = db.Column(db.Date, nullable=True)
    reference_number = db.Column(db.String(128), nullable=True)

    # Human-readable change annotations, one "[LABEL] message" per line
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    citation = db.relationship("Citation", backref=db.backref("payments", lazy=True))
    collector = db.relationship("User", foreign_keys=[collected_by], backref=db.backref("payments_collected", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def append_note(self, label: str, message: str) -> None:
        entry = f"[{label}] {message}"
        self.notes = f"{self.notes}\n{entry}" if self.notes else entry

    @property
    def note_entries(self) -> list[tuple[str | None, str]]:
        """Notes split back into (label, message) pairs; free text has label None."""
        entries = []
        for line in (self.notes or "").splitlines():
            line = line.strip()
            if not line:
                continue
            if line.startswith("[") and "]" in line:
                label, _, message = line[1:].partition("]")
                entries.append((label, message.strip()))
            else:
                entries.append((None, line))
        return entries

    def __repr__(self) -> str:
        return f"<Payment id={self.id} or={self.receipt_number!r} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "payment_id": self.id,
            "citation_id": self.citation_id,
            "amount_paid": _money(self.amount_paid),
            "payment_method": self.payment_method,
            "payment_date": to_utc_z(self.payment_date),
            "receipt_number": self.receipt_number,
            "status": self.status,
            "collected_by": self.collected_by,
            "check_number": self.check_number,
            "check_bank": self.check_bank,
            "check_date": self.check_date.isoformat() if self.check_date else None,
            "reference_number": self.reference_number,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Receipt(db.Model):
    """
    Printed official-receipt metadata for a payment (1:1).

    receipt_number mirrors Payment.receipt_number. Print tracking is
    updated on finalize; cancellation tracking on void.
    """
    __tablename__ = "receipts"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    payment_id = db.Column(db.Integer, db.ForeignKey("payments.id"), nullable=False, unique=True, index=True)
    receipt_number = db.Column(db.String(32), nullable=False, index=True)

    # active, void
    status = db.Column(db.String(16), nullable=False, default="active")

    generated_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    generated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    # Print tracking
    print_count = db.Column(db.Integer, nullable=False, default=0)
    printed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_printed_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    last_printed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Void tracking
    cancellation_reason = db.Column(db.Text, nullable=True)
    cancelled_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    payment = db.relationship("Payment", backref=db.backref("receipt", uselist=False, lazy=True))

    def to_dict(self) -> dict:
        return {
            "receipt_id": self.id,
            "payment_id": self.payment_id,
            "receipt_number": self.receipt_number,
            "status": self.status,
            "generated_by": self.generated_by,
            "generated_at": to_utc_z(self.generated_at),
            "print_count": self.print_count,
            "printed_at": to_utc_z(self.printed_at) if self.printed_at else None,
            "last_printed_by": self.last_printed_by,
            "last_printed_at": to_utc_z(self.last_printed_at) if self.last_printed_at else None,
            "cancellation_reason": self.cancellation_reason,
            "cancelled_by": self.cancelled_by,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
        }


class PaymentAudit(db.Model):
    """
    Per-payment event ledger (RECORDED, FINALIZED, VOIDED, OR_CHANGED, REFUNDED).

    Bound to its payment by foreign key: the only audit rows removed when a
    never-printed payment is cancelled. The general audit_log and the OR
    compliance log keep the permanent record.
    """
    __tablename__ = "payment_audit"
    __table_args__ = (
        db.Index("ix_payment_audit_payment_occurred", "payment_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    payment_id = db.Column(db.Integer, db.ForeignKey("payments.id"), nullable=False, index=True)
    action = db.Column(db.String(32), nullable=False, index=True)
    amount = db.Column(db.Numeric(12, 2), nullable=True)
    receipt_number = db.Column(db.String(32), nullable=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    reason = db.Column(db.Text, nullable=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    payment = db.relationship("Payment", backref=db.backref("audit_events", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "payment_id": self.payment_id,
            "action": self.action,
            "amount": _money(self.amount),
            "receipt_number": self.receipt_number,
            "user_id": self.user_id,
            "reason": self.reason,
            "occurred_at": to_utc_z(self.occurred_at),
        }


class ReceiptSequence(db.Model):
    """Single-row counter for generated OR numbers (OR-YYYY-NNNNNN), reset yearly."""
    __tablename__ = "receipt_sequence"

    id = db.Column(db.Integer, primary_key=True)
    current_year = db.Column(db.Integer, nullable=False)
    current_number = db.Column(db.Integer, nullable=False, default=0)
