from flask import Blueprint, current_app, jsonify, request

from tcms.decorators import require_auth, require_role
from tcms.services import consistency_service, payment_statistics
from tcms.time_utils import utcnow
from tcms.validation import ValidationError, parse_date


reports_bp = Blueprint("reports", __name__, url_prefix="/api/reports")

REPORT_ROLES = ("admin", "cashier")


def _date_range() -> tuple:
    return (
        parse_date(request.args.get("date_from"), "date_from"),
        parse_date(request.args.get("date_to"), "date_to"),
    )


@reports_bp.get("/payments/summary")
@require_auth
@require_role(*REPORT_ROLES)
def payment_summary_report():
    try:
        date_from, date_to = _date_range()
    except ValidationError as exc:
        return jsonify({"error": str(exc)}), 400
    return jsonify(payment_statistics.get_payment_statistics(date_from, date_to)), 200


@reports_bp.get("/payments/daily")
@require_auth
@require_role(*REPORT_ROLES)
def daily_totals_report():
    try:
        date_from, date_to = _date_range()
    except ValidationError as exc:
        return jsonify({"error": str(exc)}), 400
    if not date_from or not date_to:
        return jsonify({"error": "date_from and date_to are required"}), 400
    if date_from > date_to:
        return jsonify({"error": "date_from must not be after date_to"}), 400
    return jsonify({
        "date_from": date_from.isoformat(),
        "date_to": date_to.isoformat(),
        "rows": payment_statistics.get_daily_totals(date_from, date_to),
    }), 200


@reports_bp.get("/payments/monthly")
@require_auth
@require_role(*REPORT_ROLES)
def monthly_totals_report():
    year = request.args.get("year", type=int) or utcnow().year
    return jsonify({"year": year, "rows": payment_statistics.get_monthly_totals(year)}), 200


@reports_bp.get("/payments/methods")
@require_auth
@require_role(*REPORT_ROLES)
def payment_method_report():
    try:
        date_from, date_to = _date_range()
    except ValidationError as exc:
        return jsonify({"error": str(exc)}), 400
    return jsonify({"rows": payment_statistics.get_payment_method_breakdown(date_from, date_to)}), 200


@reports_bp.get("/payments/statuses")
@require_auth
@require_role(*REPORT_ROLES)
def payment_status_report():
    return jsonify({"rows": payment_statistics.get_payment_status_breakdown()}), 200


@reports_bp.get("/payments/cashiers")
@require_auth
@require_role("admin")
def cashier_performance_report():
    try:
        date_from, date_to = _date_range()
    except ValidationError as exc:
        return jsonify({"error": str(exc)}), 400
    limit = request.args.get("limit", type=int) or 10
    return jsonify({
        "rows": payment_statistics.get_cashier_performance(date_from, date_to, limit=min(limit, 100)),
    }), 200


@reports_bp.get("/consistency")
@require_auth
@require_role("admin")
def consistency_report():
    stale_hours = request.args.get("stale_hours", type=int)
    if stale_hours is None:
        stale_hours = current_app.config["STALE_PENDING_PRINT_HOURS"]
    if stale_hours < 0:
        return jsonify({"error": "stale_hours must not be negative"}), 400
    return jsonify(consistency_service.run_consistency_checks(stale_hours)), 200
