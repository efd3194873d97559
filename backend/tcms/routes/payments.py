# Overview: Flask API routes for the cashier payment workflow; parses input and returns JSON responses.

"""
Payment API Routes

WHY: The cashier screens drive the two-phase payment commit over JSON:
record (pending_print), confirm print (finalize), or recover with void,
cancel, or an OR number change. Admins can refund completed payments.

SECURITY:
- admin or cashier for every payment operation
- admin only for refunds
- The acting user is always g.current_user, passed explicitly to the processor
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_role
from ..services import payment_processor, payment_query
from ..services.payment_types import PaymentError
from ..services.payment_validator import check_receipt_number
from ..validation import ValidationError, parse_date, parse_int


payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")

PAYMENT_ROLES = ("admin", "cashier")


def _result_response(result, success_status: int = 200):
    return jsonify(result.to_dict()), (success_status if result.success else result.http_status)


def _list_filters(args) -> dict:
    return {
        "date_from": parse_date(args.get("date_from"), "date_from"),
        "date_to": parse_date(args.get("date_to"), "date_to"),
        "payment_method": (args.get("payment_method") or "").strip().lower() or None,
        "collected_by": parse_int(args.get("collected_by"), "collected_by", required=False),
        "status": (args.get("status") or "").strip().lower() or None,
        "receipt_number": (args.get("receipt_number") or "").strip() or None,
        "ticket_number": (args.get("ticket_number") or "").strip() or None,
    }


def _paging(args) -> tuple[int, int]:
    max_limit = current_app.config["PAYMENT_LIST_MAX_LIMIT"]
    limit = parse_int(args.get("limit"), "limit", required=False) or payment_query.DEFAULT_LIMIT
    offset_raw = (args.get("offset") or "0").strip()
    if not offset_raw.isdigit():
        raise ValidationError("offset must be a non-negative integer")
    return min(limit, max_limit), int(offset_raw)


# =============================================================================
# PAYMENT LIFECYCLE
# =============================================================================

@payments_bp.post("/")
@require_auth
@require_role(*PAYMENT_ROLES)
def record_payment_route():
    """
    Record a payment (phase one). The citation stays unpaid until finalize.

    Request body:
    {
        "citation_id": 42,
        "amount_paid": "500.00",
        "payment_method": "cash",
        "receipt_number": "CGVM123456",
        "check_number": "...", "check_bank": "...", "check_date": "2026-01-15",  (check only)
        "reference_number": "...",  (online / e-wallet)
        "notes": "..."
    }

    Returns:
        201: payment_id, receipt_number, payment_date
        400/404/409: business rule failure (error_kind in body)
    """
    try:
        data = request.get_json(silent=True) or {}
        citation_id = parse_int(data.get("citation_id"), "citation_id")
        if data.get("payment_method") in (None, ""):
            raise ValidationError("payment_method is required")

        extra = {
            key: data.get(key)
            for key in ("receipt_number", "check_number", "check_bank", "check_date", "reference_number", "notes")
        }
        result = payment_processor.record_payment(
            citation_id,
            data.get("amount_paid"),
            data.get("payment_method"),
            g.current_user.id,
            extra,
        )
        return _result_response(result, 201)

    except ValidationError as e:
        return jsonify({"success": False, "message": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to record payment")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.post("/<int:payment_id>/finalize")
@require_auth
@require_role(*PAYMENT_ROLES)
def finalize_payment_route(payment_id: int):
    """Cashier confirms the receipt printed: payment completed, citation paid."""
    try:
        return _result_response(payment_processor.finalize_payment(payment_id, g.current_user.id))
    except Exception:
        current_app.logger.exception("Failed to finalize payment")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.post("/<int:payment_id>/void")
@require_auth
@require_role(*PAYMENT_ROLES)
def void_payment_route(payment_id: int):
    """
    Void a pending_print payment. The OR number stays used.

    Request body: {"reason": "Wrong citation selected"}
    """
    try:
        data = request.get_json(silent=True) or {}
        result = payment_processor.void_payment(payment_id, g.current_user.id, data.get("reason"))
        return _result_response(result)
    except Exception:
        current_app.logger.exception("Failed to void payment")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.post("/<int:payment_id>/cancel")
@require_auth
@require_role(*PAYMENT_ROLES)
def cancel_payment_route(payment_id: int):
    """Delete a never-printed payment and free its OR number for reuse."""
    try:
        return _result_response(payment_processor.cancel_payment(payment_id, g.current_user.id))
    except Exception:
        current_app.logger.exception("Failed to cancel payment")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.post("/<int:payment_id>/or-number")
@require_auth
@require_role(*PAYMENT_ROLES)
def update_or_number_route(payment_id: int):
    """
    Replace the OR number of a pending_print payment (printer jam).

    Request body: {"new_or_number": "CGVM123457", "reason": "Printer jam"}
    """
    try:
        data = request.get_json(silent=True) or {}
        result = payment_processor.update_or_number(
            payment_id,
            data.get("new_or_number"),
            g.current_user.id,
            data.get("reason"),
        )
        return _result_response(result)
    except Exception:
        current_app.logger.exception("Failed to update OR number")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.post("/<int:payment_id>/refund")
@require_auth
@require_role("admin")
def refund_payment_route(payment_id: int):
    """
    Refund a completed payment; the citation reverts to pending.

    Request body: {"reason": "Citation dismissed on appeal"}
    """
    try:
        data = request.get_json(silent=True) or {}
        result = payment_processor.refund_payment(payment_id, data.get("reason"), g.current_user.id)
        return _result_response(result)
    except Exception:
        current_app.logger.exception("Failed to refund payment")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# PAYMENT QUERIES
# =============================================================================

@payments_bp.get("/")
@require_auth
@require_role(*PAYMENT_ROLES)
def list_payments_route():
    """
    List payments, newest first.

    Query params: date_from, date_to, payment_method, collected_by, status,
    receipt_number, ticket_number (partial match), limit, offset
    """
    try:
        filters = _list_filters(request.args)
        limit, offset = _paging(request.args)
        return jsonify({
            "payments": payment_query.list_payments(filters, limit=limit, offset=offset),
            "total": payment_query.count_payments(filters),
            "limit": limit,
            "offset": offset,
        }), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to list payments")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.get("/search")
@require_auth
@require_role(*PAYMENT_ROLES)
def search_payments_route():
    """Search by ticket number, OR number, driver name, or license number (?q=)."""
    term = (request.args.get("q") or "").strip()
    if not term:
        return jsonify({"error": "q is required"}), 400
    return jsonify({"payments": payment_query.search_payments(term)}), 200


@payments_bp.get("/check-or")
@require_auth
@require_role(*PAYMENT_ROLES)
def check_or_route():
    """
    Real-time OR duplicate check for the payment form (?or_number=).

    Returns:
        200: {available, or_number, message, existing_payment?}
        400: missing or malformed OR number
    """
    or_number = (request.args.get("or_number") or "").strip()
    if not or_number:
        return jsonify({"available": False, "message": "OR number is required"}), 400
    try:
        return jsonify(check_receipt_number(or_number).to_dict()), 200
    except PaymentError as e:
        return jsonify({"available": False, "or_number": or_number.upper(), "message": e.message}), 400


@payments_bp.get("/pending-print")
@require_auth
@require_role(*PAYMENT_ROLES)
def pending_print_route():
    """
    Payments waiting for print confirmation.

    Query params: mine=1 to restrict to the current cashier's payments
    """
    mine = request.args.get("mine", "").lower() in ("1", "true", "yes")
    user_id = g.current_user.id if mine else None
    return jsonify({
        "summary": payment_query.get_pending_print_summary(user_id),
        "payments": payment_query.list_pending_print_payments(user_id),
    }), 200


@payments_bp.get("/cashiers/<int:user_id>")
@require_auth
@require_role(*PAYMENT_ROLES)
def cashier_payments_route(user_id: int):
    return jsonify({"payments": payment_query.get_payments_by_cashier(user_id)}), 200


@payments_bp.get("/citations/<int:citation_id>")
@require_auth
@require_role(*PAYMENT_ROLES)
def citation_payments_route(citation_id: int):
    """Payment and refund history for one citation."""
    return jsonify({
        "citation_id": citation_id,
        "payments": payment_query.get_payment_history(citation_id),
        "refunds": payment_query.get_refund_history(citation_id),
    }), 200


@payments_bp.get("/<int:payment_id>")
@require_auth
@require_role(*PAYMENT_ROLES)
def get_payment_route(payment_id: int):
    payment = payment_query.get_payment_by_id(payment_id)
    if payment is None:
        return jsonify({"error": "Payment not found"}), 404
    return jsonify({"payment": payment}), 200
