"""
Receipt number source tests.

Verifies:
- manual source requires a transcribed number
- sequence source allocates OR-YYYY-NNNNNN and resets on a new year
- a transcribed number wins over the sequence
"""

import pytest

from tcms.models import ReceiptSequence
from tcms.services.payment_types import PaymentError, PaymentErrorKind
from tcms.services.receipt_numbering import (
    SEQUENCE_ROW_ID,
    ManualReceiptNumberSource,
    SequenceReceiptNumberSource,
    allocate_sequence_number,
    format_sequence_number,
    get_receipt_number_source,
    peek_next_sequence_number,
)
from tcms.time_utils import utcnow


class TestManualSource:

    def test_returns_transcribed_number(self):
        resolved = ManualReceiptNumberSource().resolve("  CGVM123456 ")
        assert resolved.number == "CGVM123456"
        assert resolved.generated is False

    @pytest.mark.parametrize("value", [None, "", "   "])
    def test_number_required(self, value):
        with pytest.raises(PaymentError) as excinfo:
            ManualReceiptNumberSource().resolve(value)
        assert excinfo.value.kind is PaymentErrorKind.MISSING_RECEIPT_NUMBER

    def test_non_string_number_is_coerced(self):
        assert ManualReceiptNumberSource().resolve(12345678).number == "12345678"


class TestSequenceSource:

    def test_format(self):
        assert format_sequence_number(2026, 42) == "OR-2026-000042"

    def test_allocates_consecutive_numbers(self, db_session):
        year = utcnow().year
        assert peek_next_sequence_number() == format_sequence_number(year, 1)

        first = allocate_sequence_number()
        second = allocate_sequence_number()
        db_session.commit()

        assert first == format_sequence_number(year, 1)
        assert second == format_sequence_number(year, 2)
        assert peek_next_sequence_number() == format_sequence_number(year, 3)

    def test_resets_on_new_year(self, db_session):
        db_session.add(ReceiptSequence(id=SEQUENCE_ROW_ID, current_year=2000, current_number=917))
        db_session.commit()

        assert allocate_sequence_number() == format_sequence_number(utcnow().year, 1)

    def test_rollback_releases_number(self, db_session):
        allocate_sequence_number()
        db_session.rollback()
        assert allocate_sequence_number() == format_sequence_number(utcnow().year, 1)

    def test_transcribed_number_wins(self, db_session):
        resolved = SequenceReceiptNumberSource().resolve("CGVM123456")
        assert resolved.number == "CGVM123456"
        assert resolved.generated is False
        assert db_session.get(ReceiptSequence, SEQUENCE_ROW_ID) is None

    def test_generates_when_blank(self, db_session):
        resolved = SequenceReceiptNumberSource().resolve(None)
        assert resolved.generated is True
        assert resolved.number.startswith(f"OR-{utcnow().year}-")


class TestSourceSelection:

    def test_configured_default(self, app):
        assert get_receipt_number_source().name == "manual"

    def test_explicit_name(self, app):
        assert isinstance(get_receipt_number_source("Sequence"), SequenceReceiptNumberSource)

    def test_unknown_source(self, app):
        with pytest.raises(ValueError):
            get_receipt_number_source("printer")
