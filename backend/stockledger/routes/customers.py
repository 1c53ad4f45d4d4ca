# Overview: Flask API routes for customer loyalty balances and transactions.

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_actor
from ..errors import LedgerError
from ..extensions import db
from ..services import loyalty_service
from ..validation import optional_int, require_int


customers_bp = Blueprint("customers", __name__, url_prefix="/api/customers")


@customers_bp.get("/<int:customer_id>/loyalty")
def get_loyalty_route(customer_id: int):
    """Current balance, tier and recent loyalty transactions."""
    try:
        limit = min(optional_int(request.args, "limit", 100, min_value=1), 500)
        customer = loyalty_service.get_customer(customer_id)
        transactions = loyalty_service.list_loyalty_transactions(customer_id, limit=limit)
        return jsonify({
            "customer": customer.to_dict(),
            "transactions": [tx.to_dict() for tx in transactions],
        }), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load loyalty transactions")
        return jsonify({"error": "Internal server error"}), 500


@customers_bp.post("/<int:customer_id>/loyalty")
@require_actor
def record_loyalty_route(customer_id: int):
    """
    Manual loyalty entry.

    Request body:
    {
        "points": 50,
        "transaction_type": "EARN" | "REDEEM" | "BONUS" | "ADJUST" | "EXPIRE",
        "description": "..."     (optional)
    }

    Returns:
        201: {transaction, customer}
        400: Invalid input or debit beyond the balance
        404: Customer not found
    """
    try:
        data = request.get_json(silent=True) or {}

        tx = loyalty_service.record_loyalty_transaction(
            customer_id,
            require_int(data, "points"),
            data.get("transaction_type"),
            description=data.get("description"),
            actor_id=g.actor_id,
        )
        customer = loyalty_service.get_customer(customer_id)
        return jsonify({
            "transaction": tx.to_dict(),
            "customer": customer.to_dict(),
        }), 201

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to record loyalty transaction")
        return jsonify({"error": "Internal server error"}), 500
