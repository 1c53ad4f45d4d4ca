# backend/stockledger/routes/purchase_orders.py
"""
Purchase order API routes.

Receiving is the only operation here that touches the stock ledger; it is
all-or-nothing per request.
"""
from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_actor
from ..errors import LedgerError
from ..extensions import db
from ..services import purchase_service
from ..validation import optional_datetime


purchase_orders_bp = Blueprint("purchase_orders", __name__, url_prefix="/api/purchase-orders")


@purchase_orders_bp.route("", methods=["POST"])
@require_actor
def create_purchase_order():
    """
    Create a DRAFT purchase order.

    Request body:
    {
        "supplier_id": int,
        "warehouse_id": int,
        "expected_date": ISO-8601,     (optional)
        "notes": str,                  (optional)
        "items": [{"product_id", "ordered_quantity", "unit_price_cents"}]
    }
    """
    try:
        data = request.get_json(silent=True) or {}

        po = purchase_service.create_purchase_order(
            data.get("supplier_id"),
            data.get("warehouse_id"),
            data.get("items"),
            expected_date=optional_datetime(data, "expected_date"),
            notes=data.get("notes"),
            actor_id=g.actor_id,
        )
        return jsonify(purchase_service.get_purchase_order_summary(po.id)), 201

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create purchase order")
        return jsonify({"error": "Internal server error"}), 500


@purchase_orders_bp.route("/<int:po_id>", methods=["GET"])
def get_purchase_order(po_id: int):
    try:
        return jsonify(purchase_service.get_purchase_order_summary(po_id)), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load purchase order")
        return jsonify({"error": "Internal server error"}), 500


@purchase_orders_bp.route("/<int:po_id>/submit", methods=["POST"])
@require_actor
def submit_purchase_order(po_id: int):
    try:
        po = purchase_service.submit_purchase_order(po_id, actor_id=g.actor_id)
        return jsonify(po.to_dict()), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to submit purchase order")
        return jsonify({"error": "Internal server error"}), 500


@purchase_orders_bp.route("/<int:po_id>/receive", methods=["POST"])
@require_actor
def receive_purchase_order(po_id: int):
    """
    Receive goods against an ORDERED or PARTIAL order.

    Request body:
    {
        "items": [{"id": <purchase order item id>, "quantity": int}],
        "notes": str    (optional)
    }

    Returns:
        200: Order and lines after receiving
        400: Over-receipt or wrong status (nothing received)
        404: Order or line not found
    """
    try:
        data = request.get_json(silent=True) or {}

        po = purchase_service.receive_purchase_order(
            po_id,
            data.get("items"),
            notes=data.get("notes"),
            actor_id=g.actor_id,
        )
        return jsonify(purchase_service.get_purchase_order_summary(po.id)), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to receive purchase order")
        return jsonify({"error": "Internal server error"}), 500


@purchase_orders_bp.route("/<int:po_id>/cancel", methods=["POST"])
@require_actor
def cancel_purchase_order(po_id: int):
    try:
        data = request.get_json(silent=True) or {}
        po = purchase_service.cancel_purchase_order(po_id, actor_id=g.actor_id, reason=data.get("reason"))
        return jsonify(po.to_dict()), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to cancel purchase order")
        return jsonify({"error": "Internal server error"}), 500
