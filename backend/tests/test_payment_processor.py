"""
Payment lifecycle tests.

Verifies:
- record leaves the citation untouched; finalize marks it paid
- finalize retries only transient/consistency failures and audits every failure
- void keeps the row (OR stays used); cancel deletes it (OR freed)
- OR number change on pending_print payments
- refund reverses a completed payment
- every failure rolls back the whole transaction
"""

from decimal import Decimal

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Query

from tcms.models import AuditLog, OrAuditLog, Payment, PaymentAudit, Receipt
from tcms.models.enums import CitationStatus
from tcms.services import audit_service, payment_processor, payment_query
from tcms.services.payment_types import PaymentErrorKind
from tcms.services.receipt_numbering import format_sequence_number
from tcms.time_utils import utcnow


def _record(citation, user, or_number="CGVM123456", amount=None, method="cash", **extra):
    extra["receipt_number"] = or_number
    return payment_processor.record_payment(
        citation.id,
        amount if amount is not None else citation.total_fine,
        method,
        user.id,
        extra,
    )


def _recorded_payment(db_session, citation, user, or_number="CGVM123456") -> Payment:
    result = _record(citation, user, or_number)
    assert result.success, result.message
    return db_session.get(Payment, result.data["payment_id"])


def _completed_payment(db_session, citation, user, or_number="CGVM123456") -> Payment:
    payment = _recorded_payment(db_session, citation, user, or_number)
    result = payment_processor.finalize_payment(payment.id, user.id)
    assert result.success, result.message
    return payment


def _event_actions(payment_id):
    return [event.action for event in audit_service.get_payment_events(payment_id)]


def _payment_audit_actions(payment_id):
    return [entry.action for entry in audit_service.get_audit_history("payments", payment_id)]


# =============================================================================
# RECORD
# =============================================================================


class TestRecordPayment:

    def test_record_leaves_citation_pending(self, db_session, citation, cashier):
        result = _record(citation, cashier, "cgvm123456")

        assert result.success is True
        assert result.message == "Payment recorded successfully"
        assert result.data["receipt_number"] == "CGVM123456"
        assert result.data["payment_date"].endswith("Z")

        payment = db_session.get(Payment, result.data["payment_id"])
        assert payment.status == "pending_print"
        assert payment.amount_paid == Decimal("500.00")
        assert payment.collected_by == cashier.id
        assert payment.receipt.status == "active"
        assert payment.receipt.receipt_number == "CGVM123456"

        assert citation.status == "pending"
        assert citation.payment_date is None

        assert _event_actions(payment.id) == ["RECORDED"]
        assert _payment_audit_actions(payment.id) == ["recorded"]

    def test_amount_mismatch_records_nothing(self, db_session, make_citation, cashier):
        c = make_citation(total_fine="500.00", id=42)
        result = _record(c, cashier, amount="499.99")

        assert result.success is False
        assert result.error_kind is PaymentErrorKind.AMOUNT_MISMATCH
        assert result.message == "Error recording payment: Payment amount must match total fine of ₱500.00"
        assert result.http_status == 400
        assert db_session.query(Payment).count() == 0
        assert db_session.query(AuditLog).count() == 0

    def test_second_active_payment_rejected(self, db_session, citation, cashier):
        _recorded_payment(db_session, citation, cashier)
        result = _record(citation, cashier, "CGVM654321")

        assert result.error_kind is PaymentErrorKind.DUPLICATE_ACTIVE_PAYMENT
        assert result.http_status == 409
        assert db_session.query(Payment).count() == 1

    def test_paid_citation_rejected(self, db_session, citation, cashier):
        _completed_payment(db_session, citation, cashier)
        result = _record(citation, cashier, "CGVM654321")
        assert result.error_kind is PaymentErrorKind.ALREADY_PAID

    def test_missing_receipt_number_with_manual_source(self, db_session, citation, cashier):
        result = payment_processor.record_payment(citation.id, "500.00", "cash", cashier.id, {})
        assert result.error_kind is PaymentErrorKind.MISSING_RECEIPT_NUMBER
        assert "physical receipt" in result.message

    def test_invalid_or_format(self, db_session, citation, cashier):
        result = _record(citation, cashier, "12-34")
        assert result.error_kind is PaymentErrorKind.INVALID_FORMAT

    def test_invalid_payment_method(self, db_session, citation, cashier):
        result = _record(citation, cashier, method="bitcoin")
        assert result.error_kind is PaymentErrorKind.INVALID_INPUT
        assert "Invalid payment method" in result.message

    def test_unknown_collector(self, db_session, citation):
        result = payment_processor.record_payment(
            citation.id, "500.00", "cash", 9999, {"receipt_number": "CGVM123456"}
        )
        assert result.error_kind is PaymentErrorKind.INVALID_INPUT

    def test_check_details_are_stored(self, db_session, citation, cashier):
        result = _record(
            citation,
            cashier,
            method="check",
            check_number="000123",
            check_bank="Land Bank",
            check_date="2026-01-15",
        )
        payment = db_session.get(Payment, result.data["payment_id"])
        assert payment.payment_method == "check"
        assert payment.check_bank == "Land Bank"
        assert payment.check_date.isoformat() == "2026-01-15"

    def test_sequence_source_generates_or_number(self, app, monkeypatch, db_session, citation, cashier):
        monkeypatch.setitem(app.config, "RECEIPT_NUMBER_SOURCE", "sequence")
        result = payment_processor.record_payment(citation.id, "500.00", "cash", cashier.id, {})

        assert result.success, result.message
        assert result.data["receipt_number"] == format_sequence_number(utcnow().year, 1)


# =============================================================================
# FINALIZE
# =============================================================================


class TestFinalizePayment:

    def test_finalize_marks_citation_paid(self, db_session, citation, cashier):
        payment = _recorded_payment(db_session, citation, cashier)
        result = payment_processor.finalize_payment(payment.id, cashier.id)

        assert result.success is True
        assert result.data["ticket_number"] == citation.ticket_number
        assert payment.status == "completed"
        assert citation.status == "paid"
        assert citation.payment_date is not None

        receipt = db_session.query(Receipt).filter_by(payment_id=payment.id).one()
        assert receipt.print_count == 1
        assert receipt.last_printed_by == cashier.id

        assert _event_actions(payment.id) == ["RECORDED", "FINALIZED"]
        history = audit_service.get_citation_status_history(citation.id)
        assert history[0].old_values == {"status": "pending"}
        assert history[0].new_values["status"] == "paid"
        assert "CGVM123456" in history[0].new_values["reason"]

    def test_second_finalize_is_invalid_state(self, db_session, citation, cashier):
        payment = _completed_payment(db_session, citation, cashier)
        paid_at = citation.payment_date
        result = payment_processor.finalize_payment(payment.id, cashier.id)

        assert result.success is False
        assert result.error_kind is PaymentErrorKind.INVALID_STATE
        assert result.retry_count == 1
        assert "Current status: completed" in result.message
        assert result.message.startswith("Error finalizing payment: ")
        assert citation.status == "paid"
        assert citation.payment_date == paid_at

    def test_missing_payment(self, db_session, cashier):
        result = payment_processor.finalize_payment(9999, cashier.id)
        assert result.error_kind is PaymentErrorKind.NOT_FOUND
        assert result.http_status == 404
        assert result.retry_count == 1

    def test_void_citation_blocks_finalize(self, db_session, citation, cashier):
        payment = _recorded_payment(db_session, citation, cashier)
        citation.status = CitationStatus.VOID.value
        db_session.commit()

        result = payment_processor.finalize_payment(payment.id, cashier.id)
        assert result.error_kind is PaymentErrorKind.CITATION_VOIDED
        assert result.retry_count == 1
        assert payment.status == "pending_print"

    def test_verification_failure_retries_then_rolls_back(self, monkeypatch, db_session, citation, cashier):
        payment = _recorded_payment(db_session, citation, cashier)
        monkeypatch.setattr(payment_processor, "update_citation_status", lambda *args, **kwargs: False)

        result = payment_processor.finalize_payment(payment.id, cashier.id)

        assert result.success is False
        assert result.error_kind is PaymentErrorKind.CRITICAL
        assert result.retry_count == 3
        assert "Expected 'paid', got 'pending'" in result.message
        assert result.http_status == 500

        assert payment.status == "pending_print"
        assert citation.status == "pending"
        assert _event_actions(payment.id) == ["RECORDED"]

        failures = [
            entry for entry in audit_service.get_audit_history("payments", payment.id)
            if entry.action == "finalization_failed"
        ]
        assert len(failures) == 1
        assert failures[0].new_values["retry_count"] == 3

    def test_print_tracking_failure_does_not_fail_finalize(self, monkeypatch, db_session, citation, cashier):
        payment = _recorded_payment(db_session, citation, cashier)
        original_update = Query.update

        def failing_update(self, values, *args, **kwargs):
            if self.column_descriptions[0]["entity"] is Receipt:
                raise OperationalError("UPDATE receipts", {}, Exception("database is locked"))
            return original_update(self, values, *args, **kwargs)

        monkeypatch.setattr(Query, "update", failing_update)
        result = payment_processor.finalize_payment(payment.id, cashier.id)

        assert result.success is True
        assert payment.status == "completed"
        assert citation.status == "paid"
        receipt = db_session.query(Receipt).filter_by(payment_id=payment.id).one()
        assert receipt.print_count == 0
        assert receipt.printed_at is None

    def test_database_error_is_retried(self, monkeypatch, db_session, citation, cashier):
        payment = _recorded_payment(db_session, citation, cashier)
        original_log = audit_service.log_payment_action
        finalized_writes = []

        def flaky_log(payment_id, action, **kwargs):
            if action == "finalized":
                finalized_writes.append(payment_id)
                if len(finalized_writes) == 1:
                    raise OperationalError("INSERT INTO audit_log", {}, Exception("database is locked"))
            return original_log(payment_id, action, **kwargs)

        monkeypatch.setattr(audit_service, "log_payment_action", flaky_log)
        result = payment_processor.finalize_payment(payment.id, cashier.id)

        assert result.success is True
        assert len(finalized_writes) == 2
        assert payment.status == "completed"
        assert citation.status == "paid"
        assert "finalization_failed" not in _payment_audit_actions(payment.id)

    def test_every_failed_finalize_is_audited(self, db_session, citation, cashier):
        payment = _completed_payment(db_session, citation, cashier)
        payment_processor.finalize_payment(payment.id, cashier.id)
        payment_processor.finalize_payment(payment.id, cashier.id)
        assert _payment_audit_actions(payment.id).count("finalization_failed") == 2


# =============================================================================
# VOID / CANCEL
# =============================================================================


class TestVoidPayment:

    def test_void_keeps_row_and_reverts_citation(self, db_session, citation, cashier):
        payment = _recorded_payment(db_session, citation, cashier)
        result = payment_processor.void_payment(payment.id, cashier.id, "Wrong citation selected")

        assert result.success is True
        assert result.message == "Payment voided successfully"
        assert payment.status == "voided"
        assert "[VOIDED] Reason: Wrong citation selected" in payment.notes
        assert payment.receipt.status == "void"
        assert payment.receipt.cancelled_by == cashier.id
        assert citation.status == "pending"

        or_entries = audit_service.get_or_audit_history(payment_id=payment.id)
        assert [e.action_type for e in or_entries] == ["payment_voided"]
        assert or_entries[0].username == "cashier"
        assert or_entries[0].or_number_old == "CGVM123456"
        assert _event_actions(payment.id) == ["RECORDED", "VOIDED"]

    def test_voided_or_cannot_be_reused(self, db_session, citation, cashier):
        payment = _recorded_payment(db_session, citation, cashier)
        payment_processor.void_payment(payment.id, cashier.id, "Wrong amount")

        again = _record(citation, cashier, "CGVM123456")
        assert again.error_kind is PaymentErrorKind.DUPLICATE_OR

        fresh = _record(citation, cashier, "CGVM123457")
        assert fresh.success is True

    def test_reason_required(self, db_session, citation, cashier):
        payment = _recorded_payment(db_session, citation, cashier)
        result = payment_processor.void_payment(payment.id, cashier.id, "   ")
        assert result.error_kind is PaymentErrorKind.INVALID_INPUT
        assert payment.status == "pending_print"

    def test_completed_payment_cannot_be_voided(self, db_session, citation, cashier):
        payment = _completed_payment(db_session, citation, cashier)
        result = payment_processor.void_payment(payment.id, cashier.id, "Too late")

        assert result.error_kind is PaymentErrorKind.INVALID_STATE
        assert result.message == "Error voiding payment: Can only void pending_print payments"
        assert citation.status == "paid"


class TestCancelPayment:

    def test_cancel_deletes_payment_and_frees_or(self, db_session, citation, cashier):
        payment = _recorded_payment(db_session, citation, cashier)
        payment_id = payment.id

        result = payment_processor.cancel_payment(payment_id, cashier.id)

        assert result.success is True
        assert result.data["or_number"] == "CGVM123456"
        assert result.data["citation_status"] == "pending"
        assert db_session.get(Payment, payment_id) is None
        assert db_session.query(Receipt).filter_by(payment_id=payment_id).count() == 0
        assert db_session.query(PaymentAudit).filter_by(payment_id=payment_id).count() == 0

        # Permanent trails survive the delete
        assert "cancelled" in _payment_audit_actions(payment_id)
        or_entry = db_session.query(OrAuditLog).filter_by(entity_id=payment_id).one()
        assert or_entry.action_type == "payment_cancelled"
        assert or_entry.payment_status_new == "deleted"

        reused = _record(citation, cashier, "CGVM123456")
        assert reused.success is True

    def test_completed_payment_cannot_be_cancelled(self, db_session, citation, cashier):
        payment = _completed_payment(db_session, citation, cashier)
        result = payment_processor.cancel_payment(payment.id, cashier.id)

        assert result.error_kind is PaymentErrorKind.INVALID_STATE
        assert "This payment is: completed" in result.message
        assert db_session.get(Payment, payment.id) is not None


# =============================================================================
# OR NUMBER CHANGE
# =============================================================================


class TestUpdateOrNumber:

    def test_update_or_number(self, db_session, citation, cashier):
        payment = _recorded_payment(db_session, citation, cashier)
        result = payment_processor.update_or_number(payment.id, "cgvm123457", cashier.id, "Printer jam")

        assert result.success is True
        assert result.data["new_or"] == "CGVM123457"
        assert payment.receipt_number == "CGVM123457"
        assert payment.receipt.receipt_number == "CGVM123457"
        assert "[OR CHANGED] Old: CGVM123456 → New: CGVM123457 | Reason: Printer jam" in payment.notes

        trail = audit_service.get_or_audit_history(or_number="CGVM123456")
        assert trail[0].action_type == "or_number_changed"
        assert trail[0].or_number_new == "CGVM123457"
        assert _event_actions(payment.id) == ["RECORDED", "OR_CHANGED"]

    def test_detail_shows_note_log(self, db_session, citation, cashier):
        payment = _recorded_payment(db_session, citation, cashier)
        payment_processor.update_or_number(payment.id, "CGVM123457", cashier.id, "Printer jam")
        payment_processor.void_payment(payment.id, cashier.id, "Customer left")

        detail = payment_query.get_payment_by_id(payment.id)
        assert [entry["label"] for entry in detail["note_log"]] == ["OR CHANGED", "VOIDED"]
        assert detail["note_log"][1]["message"] == "Reason: Customer left"

    def test_old_or_is_freed(self, db_session, make_citation, cashier):
        first = make_citation()
        second = make_citation()
        payment = _recorded_payment(db_session, first, cashier)
        payment_processor.update_or_number(payment.id, "CGVM123457", cashier.id, "Printer jam")

        assert _record(second, cashier, "CGVM123456").success is True

    def test_new_or_must_be_unused(self, db_session, make_citation, cashier):
        first = make_citation()
        second = make_citation()
        payment = _recorded_payment(db_session, first, cashier, "CGVM123456")
        _recorded_payment(db_session, second, cashier, "CGVM999999")

        result = payment_processor.update_or_number(payment.id, "CGVM999999", cashier.id, "Printer jam")
        assert result.error_kind is PaymentErrorKind.DUPLICATE_OR
        assert payment.receipt_number == "CGVM123456"

    def test_reason_required(self, db_session, citation, cashier):
        payment = _recorded_payment(db_session, citation, cashier)
        result = payment_processor.update_or_number(payment.id, "CGVM123457", cashier.id, "")
        assert result.error_kind is PaymentErrorKind.INVALID_INPUT

    def test_only_pending_print(self, db_session, citation, cashier):
        payment = _completed_payment(db_session, citation, cashier)
        result = payment_processor.update_or_number(payment.id, "CGVM123457", cashier.id, "Printer jam")
        assert result.error_kind is PaymentErrorKind.INVALID_STATE


# =============================================================================
# REFUND
# =============================================================================


class TestRefundPayment:

    def test_refund_reverts_citation(self, db_session, citation, cashier, admin):
        payment = _completed_payment(db_session, citation, cashier)
        result = payment_processor.refund_payment(payment.id, "Dismissed on appeal", admin.id)

        assert result.success is True
        assert payment.status == "refunded"
        assert "[REFUNDED] Dismissed on appeal" in payment.notes
        assert citation.status == "pending"
        assert citation.payment_date is None
        assert _event_actions(payment.id) == ["RECORDED", "FINALIZED", "REFUNDED"]

    def test_refunded_citation_can_be_paid_again(self, db_session, citation, cashier, admin):
        payment = _completed_payment(db_session, citation, cashier)
        payment_processor.refund_payment(payment.id, "Overcharged", admin.id)

        assert _record(citation, cashier, "CGVM123457").success is True

    def test_pending_print_cannot_be_refunded(self, db_session, citation, cashier, admin):
        payment = _recorded_payment(db_session, citation, cashier)
        result = payment_processor.refund_payment(payment.id, "Changed mind", admin.id)

        assert result.error_kind is PaymentErrorKind.INVALID_STATE
        assert "Current status: pending_print" in result.message

    def test_reason_required(self, db_session, citation, cashier, admin):
        payment = _completed_payment(db_session, citation, cashier)
        result = payment_processor.refund_payment(payment.id, None, admin.id)
        assert result.error_kind is PaymentErrorKind.INVALID_INPUT
        assert payment.status == "completed"


# =============================================================================
# CITATION STATUS
# =============================================================================


class TestCitationStatus:

    def test_update_sets_and_clears_payment_date(self, db_session, citation, admin):
        assert payment_processor.update_citation_status(citation.id, CitationStatus.PAID, admin.id) is True
        assert citation.payment_date is not None

        assert payment_processor.update_citation_status(citation.id, CitationStatus.CONTESTED, admin.id) is True
        assert citation.payment_date is None
        db_session.commit()

        assert len(audit_service.get_citation_status_history(citation.id)) == 2

    def test_unchanged_status_writes_no_audit(self, db_session, citation, admin):
        assert payment_processor.update_citation_status(citation.id, CitationStatus.PENDING, admin.id) is False
        assert audit_service.get_citation_status_history(citation.id) == []

    def test_change_citation_status(self, db_session, citation, admin):
        result = payment_processor.change_citation_status(citation.id, "Dismissed", admin.id, "Court order")

        assert result.success is True
        assert result.data["status"] == "dismissed"
        assert citation.status == "dismissed"
        assert audit_service.get_citation_status_history(citation.id)[0].new_values["reason"] == "Court order"

    def test_change_to_unknown_status(self, db_session, citation, admin):
        result = payment_processor.change_citation_status(citation.id, "archived", admin.id)
        assert result.error_kind is PaymentErrorKind.INVALID_INPUT

    def test_change_missing_citation(self, db_session, admin):
        result = payment_processor.change_citation_status(9999, "paid", admin.id)
        assert result.error_kind is PaymentErrorKind.NOT_FOUND
