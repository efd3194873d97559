"""
CLI command tests (flask system / users / payments groups).
"""

from datetime import timedelta

from tcms.models import Payment, ReceiptSequence, User
from tcms.services.receipt_numbering import SEQUENCE_ROW_ID, format_sequence_number
from tcms.time_utils import utcnow


class TestSystemCommands:

    def test_init_db_seeds_sequence_once(self, app, db_session):
        runner = app.test_cli_runner()

        result = runner.invoke(args=["system", "init-db"])
        assert result.exit_code == 0
        assert "Seeded receipt sequence" in result.output
        assert db_session.get(ReceiptSequence, SEQUENCE_ROW_ID).current_number == 0

        result = runner.invoke(args=["system", "init-db"])
        assert "already present" in result.output


class TestUserCommands:

    def test_create_and_list(self, app, db_session):
        runner = app.test_cli_runner()

        result = runner.invoke(args=[
            "users", "create", "--username", "cashier1", "--full-name", "Ana Cruz", "--role", "cashier",
        ])
        assert result.exit_code == 0, result.output
        assert db_session.query(User).filter_by(username="cashier1").one().full_name == "Ana Cruz"

        result = runner.invoke(args=["users", "list"])
        assert "cashier1" in result.output

    def test_duplicate_username(self, app, db_session, cashier):
        result = app.test_cli_runner().invoke(args=[
            "users", "create", "--username", "cashier", "--role", "cashier",
        ])
        assert result.exit_code != 0
        assert "already exists" in result.output

    def test_invalid_role(self, app, db_session):
        result = app.test_cli_runner().invoke(args=[
            "users", "create", "--username", "root", "--role", "superuser",
        ])
        assert result.exit_code != 0


class TestPaymentCommands:

    def test_pending_print_empty(self, app, db_session):
        result = app.test_cli_runner().invoke(args=["payments", "pending-print"])
        assert "No payments pending print" in result.output

    def test_check_consistency_exit_codes(self, app, db_session, citation, cashier):
        runner = app.test_cli_runner()
        assert runner.invoke(args=["payments", "check-consistency"]).exit_code == 0

        db_session.add(Payment(
            citation_id=citation.id,
            amount_paid=citation.total_fine,
            payment_method="cash",
            payment_date=utcnow() - timedelta(hours=1),
            receipt_number="CGVM123456",
            status="completed",
            collected_by=cashier.id,
        ))
        db_session.commit()

        result = runner.invoke(args=["payments", "check-consistency"])
        assert result.exit_code == 1
        assert "FAIL Pending Citations with Completed Payments: 1 issue(s)" in result.output

    def test_pending_print_lists_payments(self, app, db_session, citation, cashier):
        db_session.add(Payment(
            citation_id=citation.id,
            amount_paid=citation.total_fine,
            payment_method="cash",
            payment_date=utcnow() - timedelta(minutes=30),
            receipt_number="CGVM123456",
            status="pending_print",
            collected_by=cashier.id,
        ))
        db_session.commit()

        result = app.test_cli_runner().invoke(args=["payments", "pending-print", "--user-id", str(cashier.id)])
        assert "1 payment(s) pending print" in result.output
        assert "CGVM123456" in result.output

    def test_next_receipt_number(self, app, db_session):
        result = app.test_cli_runner().invoke(args=["payments", "next-receipt-number"])
        assert result.output.strip() == format_sequence_number(utcnow().year, 1)
