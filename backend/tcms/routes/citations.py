# Overview: Flask API routes for citation status history and administrative status changes.

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_role
from ..extensions import db
from ..models import Citation
from ..services import audit_service, payment_processor


citations_bp = Blueprint("citations", __name__, url_prefix="/api/citations")


@citations_bp.get("/<int:citation_id>")
@require_auth
def get_citation_route(citation_id: int):
    citation = db.session.get(Citation, citation_id)
    if citation is None:
        return jsonify({"error": "Citation not found"}), 404
    return jsonify({"citation": citation.to_dict()}), 200


@citations_bp.get("/<int:citation_id>/status-history")
@require_auth
def citation_status_history_route(citation_id: int):
    """Every status transition of a citation, newest first."""
    if db.session.get(Citation, citation_id) is None:
        return jsonify({"error": "Citation not found"}), 404
    entries = audit_service.get_citation_status_history(citation_id)
    return jsonify({
        "citation_id": citation_id,
        "history": [entry.to_dict() for entry in entries],
    }), 200


@citations_bp.post("/<int:citation_id>/status")
@require_auth
@require_role("admin")
def change_citation_status_route(citation_id: int):
    """
    Administrative status change (e.g. contested, dismissed).

    Request body: {"status": "dismissed", "reason": "Dismissed on appeal"}
    """
    try:
        data = request.get_json(silent=True) or {}
        if not data.get("status"):
            return jsonify({"success": False, "message": "status is required"}), 400

        result = payment_processor.change_citation_status(
            citation_id,
            data.get("status"),
            g.current_user.id,
            data.get("reason"),
        )
        return jsonify(result.to_dict()), (200 if result.success else result.http_status)
    except Exception:
        current_app.logger.exception("Failed to change citation status")
        return jsonify({"error": "Internal server error"}), 500
