# Overview: Flask API routes for customer returns.

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_actor
from ..errors import LedgerError
from ..extensions import db
from ..services import return_service


returns_bp = Blueprint("returns", __name__, url_prefix="/api/returns")


@returns_bp.post("")
@require_actor
def create_return_route():
    """
    Open a return against a completed sale.

    Request body:
    {
        "sale_id": 12,
        "items": [{"sale_item_id": 30, "quantity": 1, "condition": "GOOD", "reason": "DEFECTIVE"}],
        "reason": "...",          (optional)
        "notes": "...",           (optional)
        "refund_method": "CASH"   (optional; defaults to the sale's method)
    }
    """
    try:
        data = request.get_json(silent=True) or {}

        ret = return_service.create_return(
            data.get("sale_id"),
            data.get("items"),
            reason=data.get("reason"),
            notes=data.get("notes"),
            refund_method=data.get("refund_method"),
            actor_id=g.actor_id,
        )
        return jsonify(return_service.get_return_summary(ret.id)), 201

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create return")
        return jsonify({"error": "Internal server error"}), 500


@returns_bp.get("/<int:return_id>")
def get_return_route(return_id: int):
    try:
        return jsonify(return_service.get_return_summary(return_id)), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load return")
        return jsonify({"error": "Internal server error"}), 500


@returns_bp.post("/<int:return_id>/status")
@require_actor
def update_return_status_route(return_id: int):
    """
    Approve, reject or complete a return.

    Request body:
    {
        "status": "APPROVED" | "REJECTED" | "COMPLETED",
        "notes": "..."     (optional; rejection reason for REJECTED)
    }
    """
    try:
        data = request.get_json(silent=True) or {}

        ret = return_service.update_return_status(
            return_id,
            data.get("status"),
            actor_id=g.actor_id,
            notes=data.get("notes"),
        )
        return jsonify(return_service.get_return_summary(ret.id)), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to update return status")
        return jsonify({"error": "Internal server error"}), 500
