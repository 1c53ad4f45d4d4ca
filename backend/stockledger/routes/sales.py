# Overview: Flask API routes for checkout and sale receipts.

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_actor
from ..errors import LedgerError
from ..extensions import db
from ..services import checkout_service


sales_bp = Blueprint("sales", __name__, url_prefix="/api")


@sales_bp.post("/checkout")
@require_actor
def checkout_route():
    """
    Complete a sale at a store.

    Request body:
    {
        "store_id": 1,
        "customer_id": 7,                      (optional)
        "items": [{"product_id", "inventory_record_id", "quantity",
                   "unit_price_cents", "discount_cents"}],
        "subtotal_cents": 1000,
        "tax_cents": 80,
        "discount_cents": 0,
        "total_cents": 1080,
        "payment_method": "CASH",
        "amount_paid_cents": 1080,
        "reference_number": "...",             (optional)
        "notes": "...",                        (optional)
        "apply_loyalty_points": false,         (optional)
        "loyalty_points_used": 0               (optional)
    }

    Returns:
        201: Sale created (with items and payments)
        400: Invalid input, insufficient stock or points
        404: Unknown store, customer or inventory record
        409: Concurrent modification, retry
    """
    try:
        data = request.get_json(silent=True) or {}

        sale = checkout_service.checkout(
            data.get("store_id"),
            data.get("items"),
            customer_id=data.get("customer_id"),
            subtotal_cents=data.get("subtotal_cents"),
            tax_cents=data.get("tax_cents"),
            discount_cents=data.get("discount_cents"),
            total_cents=data.get("total_cents"),
            payment_method=data.get("payment_method"),
            amount_paid_cents=data.get("amount_paid_cents"),
            reference_number=data.get("reference_number"),
            notes=data.get("notes"),
            apply_loyalty_points=bool(data.get("apply_loyalty_points")),
            loyalty_points_used=data.get("loyalty_points_used"),
            actor_id=g.actor_id,
        )

        return jsonify(checkout_service.get_sale_receipt(sale.id)), 201

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to process checkout")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/sales/<int:sale_id>")
def get_sale_route(sale_id: int):
    try:
        return jsonify(checkout_service.get_sale_receipt(sale_id)), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load sale")
        return jsonify({"error": "Internal server error"}), 500
