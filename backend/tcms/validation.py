from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from tcms.time_utils import parse_iso_datetime


# Largest fine the numeric(12, 2) columns hold
MAX_AMOUNT = Decimal("9999999999.99")


class ValidationError(ValueError):
    """400-level input problem."""


def parse_amount(value: Any, field: str = "amount") -> Decimal:
    """
    Coerce a currency amount to Decimal without losing precision.

    Floats go through str() so 500.0 becomes Decimal("500.0"), not the binary
    expansion. Booleans and non-finite values are rejected. The amount is
    never rounded, so extra precision surfaces later as an amount mismatch.
    """
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field} is required")
    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, (int, float)):
        amount = Decimal(str(value))
    elif isinstance(value, str):
        stripped = value.strip().replace(",", "")
        if not stripped:
            raise ValidationError(f"{field} is required")
        try:
            amount = Decimal(stripped)
        except InvalidOperation:
            raise ValidationError(f"{field} must be a decimal amount")
    else:
        raise ValidationError(f"{field} must be a decimal amount")

    if not amount.is_finite():
        raise ValidationError(f"{field} must be a finite amount")
    if amount <= 0:
        raise ValidationError(f"{field} must be positive")
    if amount > MAX_AMOUNT:
        raise ValidationError(f"{field} exceeds maximum {MAX_AMOUNT}")
    return amount


def parse_int(value: Any, field: str, *, required: bool = True) -> int | None:
    """Strict positive integer (rejects floats, bools and decimal strings)."""
    if value is None or (isinstance(value, str) and not value.strip()):
        if required:
            raise ValidationError(f"{field} is required")
        return None
    if isinstance(value, bool) or isinstance(value, float):
        raise ValidationError(f"{field} must be an integer")
    if isinstance(value, int):
        result = value
    elif isinstance(value, str) and value.strip().isdigit():
        result = int(value.strip())
    else:
        raise ValidationError(f"{field} must be an integer")
    if result <= 0:
        raise ValidationError(f"{field} must be positive")
    return result


def require_text(value: Any, field: str, *, max_length: int | None = None) -> str:
    if value is None or not str(value).strip():
        raise ValidationError(f"{field} is required")
    text = str(value).strip()
    if max_length and len(text) > max_length:
        raise ValidationError(f"{field} exceeds max length {max_length}")
    return text


def optional_text(value: Any, field: str, *, max_length: int | None = None) -> str | None:
    if value is None or not str(value).strip():
        return None
    return require_text(value, field, max_length=max_length)


def parse_enum(enum_cls, value: Any, field: str):
    try:
        return enum_cls(str(value).strip().lower())
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ValidationError(f"Invalid {field}: {value}. Must be one of: {allowed}")


def parse_date(value: Any, field: str) -> date | None:
    """Accepts a date, a datetime, or an ISO-8601 string (date or datetime)."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            dt = parse_iso_datetime(value if "T" in value or " " in value.strip() else value + "T00:00")
        except ValueError:
            raise ValidationError(f"{field} must be an ISO-8601 date")
        return dt.date() if dt else None
    raise ValidationError(f"{field} must be an ISO-8601 date")
