# Overview: Pluggable OR-number sourcing (manual transcription or yearly sequence).

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app

from ..extensions import db
from ..models import ReceiptSequence
from tcms.time_utils import utcnow
from tcms.validation import optional_text
from .concurrency import lock_for_update
from .payment_types import PaymentError, PaymentErrorKind
"""
Receipt Number Sources

- manual (default): the cashier transcribes the OR number printed on the
  physical pre-numbered receipt. It is required and format-checked.
- sequence: OR-YYYY-NNNNNN allocated from the single receipt_sequence row,
  reset to 1 on the first allocation of a new year. The allocation happens
  inside the caller's transaction, so a rolled-back payment releases it.
"""

SEQUENCE_ROW_ID = 1
SEQUENCE_PAD = 6


@dataclass(frozen=True)
class ResolvedReceiptNumber:
    number: str
    generated: bool


class ManualReceiptNumberSource:
    name = "manual"

    def resolve(self, requested: str | None) -> ResolvedReceiptNumber:
        number = optional_text(requested, "receipt_number")
        if not number:
            raise PaymentError(
                PaymentErrorKind.MISSING_RECEIPT_NUMBER,
                "Receipt/OR number is required. Please enter the OR number from the physical receipt.",
            )
        return ResolvedReceiptNumber(number=number, generated=False)


class SequenceReceiptNumberSource:
    name = "sequence"

    def resolve(self, requested: str | None) -> ResolvedReceiptNumber:
        # A transcribed number still wins when one is supplied
        number = optional_text(requested, "receipt_number")
        if number:
            return ResolvedReceiptNumber(number=number, generated=False)
        return ResolvedReceiptNumber(number=allocate_sequence_number(), generated=True)


def format_sequence_number(year: int, number: int) -> str:
    return f"OR-{year}-{number:0{SEQUENCE_PAD}d}"


def _load_sequence_locked() -> ReceiptSequence:
    seq = lock_for_update(
        db.session.query(ReceiptSequence).filter_by(id=SEQUENCE_ROW_ID)
    ).first()
    if seq is None:
        seq = ReceiptSequence(id=SEQUENCE_ROW_ID, current_year=utcnow().year, current_number=0)
        db.session.add(seq)
        db.session.flush()
    return seq


def allocate_sequence_number() -> str:
    """Allocate the next OR-YYYY-NNNNNN number. Flushes; the caller commits."""
    year = utcnow().year
    seq = _load_sequence_locked()
    if seq.current_year != year:
        seq.current_year = year
        seq.current_number = 0
    seq.current_number += 1
    db.session.flush()
    return format_sequence_number(seq.current_year, seq.current_number)


def peek_next_sequence_number() -> str:
    """The number allocate_sequence_number() would return next, without allocating."""
    year = utcnow().year
    seq = db.session.get(ReceiptSequence, SEQUENCE_ROW_ID)
    if seq is None or seq.current_year != year:
        return format_sequence_number(year, 1)
    return format_sequence_number(year, seq.current_number + 1)


_SOURCES = {
    ManualReceiptNumberSource.name: ManualReceiptNumberSource,
    SequenceReceiptNumberSource.name: SequenceReceiptNumberSource,
}


def get_receipt_number_source(name: str | None = None):
    """Source named by RECEIPT_NUMBER_SOURCE (or the explicit name)."""
    key = (name or current_app.config.get("RECEIPT_NUMBER_SOURCE") or "manual").strip().lower()
    try:
        return _SOURCES[key]()
    except KeyError:
        raise ValueError(f"Unknown receipt number source: {key}. Must be one of: {', '.join(_SOURCES)}")
