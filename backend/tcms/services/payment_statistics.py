# Overview: Aggregate payment reports (collections totals, trends, breakdowns).

from __future__ import annotations

from datetime import date
from decimal import Decimal

from sqlalchemy import func

from ..extensions import db
from ..models import Payment, User
from ..models.enums import PaymentStatus
from tcms.time_utils import end_of_day, start_of_day, to_utc_z
"""
Collections are counted from completed payments only: pending_print money
is not yet receipted, and voided/refunded payments were given back.
The status breakdown is the one report that spans every status.
"""


CENTS = Decimal("0.01")


def _money(value) -> str:
    if value is None:
        return "0.00"
    return str(Decimal(str(value)).quantize(CENTS))


def _completed(query, date_from: date | None = None, date_to: date | None = None):
    query = query.filter(Payment.status == PaymentStatus.COMPLETED.value)
    if date_from:
        query = query.filter(Payment.payment_date >= start_of_day(date_from))
    if date_to:
        query = query.filter(Payment.payment_date <= end_of_day(date_to))
    return query


def get_payment_statistics(date_from: date | None = None, date_to: date | None = None) -> dict:
    row = _completed(
        db.session.query(
            func.count(Payment.id).label("total_payments"),
            func.sum(Payment.amount_paid).label("total_amount"),
            func.avg(Payment.amount_paid).label("average_payment"),
            func.min(Payment.amount_paid).label("min_payment"),
            func.max(Payment.amount_paid).label("max_payment"),
            func.count(func.distinct(Payment.collected_by)).label("unique_collectors"),
        ),
        date_from,
        date_to,
    ).one()
    return {
        "date_from": date_from.isoformat() if date_from else None,
        "date_to": date_to.isoformat() if date_to else None,
        "total_payments": int(row.total_payments or 0),
        "total_amount": _money(row.total_amount),
        "average_payment": _money(row.average_payment),
        "min_payment": _money(row.min_payment),
        "max_payment": _money(row.max_payment),
        "unique_collectors": int(row.unique_collectors or 0),
    }


def get_daily_totals(date_from: date, date_to: date) -> list[dict]:
    day = func.strftime("%Y-%m-%d", Payment.payment_date)
    rows = (
        _completed(
            db.session.query(
                day.label("payment_day"),
                func.count(Payment.id).label("payment_count"),
                func.sum(Payment.amount_paid).label("total_amount"),
            ),
            date_from,
            date_to,
        )
        .group_by("payment_day")
        .order_by("payment_day")
        .all()
    )
    return [
        {
            "payment_day": row.payment_day,
            "payment_count": int(row.payment_count or 0),
            "total_amount": _money(row.total_amount),
        }
        for row in rows
    ]


def get_monthly_totals(year: int) -> list[dict]:
    month = func.strftime("%Y-%m", Payment.payment_date)
    rows = (
        _completed(
            db.session.query(
                month.label("payment_month"),
                func.count(Payment.id).label("payment_count"),
                func.sum(Payment.amount_paid).label("total_amount"),
            ),
            date(year, 1, 1),
            date(year, 12, 31),
        )
        .group_by("payment_month")
        .order_by("payment_month")
        .all()
    )
    return [
        {
            "payment_month": row.payment_month,
            "payment_count": int(row.payment_count or 0),
            "total_amount": _money(row.total_amount),
        }
        for row in rows
    ]


def get_payment_method_breakdown(date_from: date | None = None, date_to: date | None = None) -> list[dict]:
    total = func.sum(Payment.amount_paid)
    rows = (
        _completed(
            db.session.query(
                Payment.payment_method,
                func.count(Payment.id).label("payment_count"),
                total.label("total_amount"),
            ),
            date_from,
            date_to,
        )
        .group_by(Payment.payment_method)
        .order_by(total.desc())
        .all()
    )
    return [
        {
            "payment_method": row.payment_method,
            "payment_count": int(row.payment_count or 0),
            "total_amount": _money(row.total_amount),
        }
        for row in rows
    ]


def get_payment_status_breakdown() -> list[dict]:
    count = func.count(Payment.id)
    rows = (
        db.session.query(
            Payment.status,
            count.label("total_count"),
            func.sum(Payment.amount_paid).label("total_amount"),
        )
        .group_by(Payment.status)
        .order_by(count.desc())
        .all()
    )
    return [
        {
            "status": row.status,
            "total_count": int(row.total_count or 0),
            "total_amount": _money(row.total_amount),
        }
        for row in rows
    ]


def get_cashier_performance(
    date_from: date | None = None,
    date_to: date | None = None,
    limit: int = 10,
) -> list[dict]:
    total = func.sum(Payment.amount_paid)
    rows = (
        _completed(
            db.session.query(
                User.id.label("user_id"),
                User.username,
                User.full_name,
                func.count(Payment.id).label("total_payments"),
                total.label("total_amount"),
                func.avg(Payment.amount_paid).label("average_payment"),
                func.min(Payment.payment_date).label("first_payment"),
                func.max(Payment.payment_date).label("last_payment"),
            )
            .select_from(Payment)
            .join(User, Payment.collected_by == User.id),
            date_from,
            date_to,
        )
        .group_by(User.id, User.username, User.full_name)
        .order_by(total.desc())
        .limit(limit)
        .all()
    )
    return [
        {
            "user_id": row.user_id,
            "username": row.username,
            "full_name": row.full_name,
            "total_payments": int(row.total_payments or 0),
            "total_amount": _money(row.total_amount),
            "average_payment": _money(row.average_payment),
            "first_payment": to_utc_z(row.first_payment),
            "last_payment": to_utc_z(row.last_payment),
        }
        for row in rows
    ]
