from flask import Blueprint, jsonify, request

from tcms.decorators import require_auth, require_role
from tcms.extensions import db
from tcms.models import Payment
from tcms.services import audit_service
from tcms.validation import ValidationError, parse_date


audit_bp = Blueprint("audit", __name__, url_prefix="/api/audit")


@audit_bp.get("/recent")
@require_auth
@require_role("admin")
def recent_activity():
    """
    Recent general audit entries.

    Query params: user_id, action, table_name, date_from, date_to, limit (max 500)
    """
    try:
        date_from = parse_date(request.args.get("date_from"), "date_from")
        date_to = parse_date(request.args.get("date_to"), "date_to")
    except ValidationError as exc:
        return jsonify({"error": str(exc)}), 400

    limit = request.args.get("limit", type=int) or 50
    entries = audit_service.get_recent_activity(
        user_id=request.args.get("user_id", type=int),
        action=request.args.get("action") or None,
        table_name=request.args.get("table_name") or None,
        date_from=date_from,
        date_to=date_to,
        limit=min(limit, 500),
    )
    return jsonify({"entries": [entry.to_dict() for entry in entries]}), 200


@audit_bp.get("/or")
@require_auth
@require_role("admin")
def or_audit_trail():
    """OR compliance trail filtered by or_number and/or payment_id."""
    or_number = (request.args.get("or_number") or "").strip() or None
    payment_id = request.args.get("payment_id", type=int)
    if not or_number and payment_id is None:
        return jsonify({"error": "or_number or payment_id is required"}), 400

    entries = audit_service.get_or_audit_history(or_number=or_number, payment_id=payment_id)
    return jsonify({"entries": [entry.to_dict() for entry in entries]}), 200


@audit_bp.get("/payments/<int:payment_id>")
@require_auth
@require_role("admin", "cashier")
def payment_audit_trail(payment_id: int):
    """
    General audit entries for a payment plus its event ledger.

    Works for cancelled (deleted) payments too: their general entries survive.
    """
    exists = db.session.get(Payment, payment_id) is not None
    return jsonify({
        "payment_id": payment_id,
        "payment_exists": exists,
        "entries": [entry.to_dict() for entry in audit_service.get_audit_history("payments", payment_id)],
        "events": [event.to_dict() for event in audit_service.get_payment_events(payment_id)],
    }), 200
