# Overview: Flask API routes for inventory records and their movement history.

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_actor
from ..errors import LedgerError
from ..extensions import db
from ..services import ledger_service, location_service
from ..validation import optional_int


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


@inventory_bp.get("/items/<int:record_id>")
def get_inventory_item_route(record_id: int):
    try:
        record = ledger_service.get_inventory_record(record_id)
        return jsonify(record.to_dict()), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load inventory record")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.post("/items/<int:record_id>/adjust")
@require_actor
def adjust_inventory_item_route(record_id: int):
    """
    Manual stock correction.

    Request body:
    {
        "adjustment_type": "add" | "remove" | "set",
        "quantity": 5,
        "reason": "Found behind shelf",
        "notes": "..."          (optional)
    }

    Returns:
        200: {record, movement}
        400: Invalid input or insufficient stock for remove
        404: Record not found
    """
    try:
        data = request.get_json(silent=True) or {}

        delta = ledger_service.adjust_inventory_record(
            record_id,
            data.get("adjustment_type"),
            data.get("quantity"),
            data.get("reason"),
            notes=data.get("notes"),
            actor_id=g.actor_id,
        )
        return jsonify({
            "record": delta.record.to_dict(),
            "movement": delta.movement.to_dict(),
        }), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to adjust inventory record")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.post("/items/<int:record_id>/status")
@require_actor
def set_inventory_status_route(record_id: int):
    """Place or lift a QUARANTINE / DAMAGED hold. Body: {status, notes?}."""
    try:
        data = request.get_json(silent=True) or {}

        record = ledger_service.set_hold_status(
            record_id,
            data.get("status"),
            actor_id=g.actor_id,
            notes=data.get("notes"),
        )
        return jsonify(record.to_dict()), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to change inventory status")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/items/<int:record_id>/history")
def inventory_history_route(record_id: int):
    try:
        limit = min(optional_int(request.args, "limit", 100, min_value=1), 500)
        movements = ledger_service.list_movements(record_id, limit=limit)
        return jsonify({
            "inventory_record_id": record_id,
            "movements": [m.to_dict() for m in movements],
        }), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load inventory history")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/locations/<int:location_id>")
def location_inventory_route(location_id: int):
    try:
        include_empty = request.args.get("include_empty", "false").lower() == "true"
        records = ledger_service.list_location_inventory(location_id, include_empty=include_empty)
        return jsonify({
            "location_id": location_id,
            "items": [r.to_dict() for r in records],
        }), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load location inventory")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.post("/locations/<int:location_id>/active")
@require_actor
def set_location_active_route(location_id: int):
    """Activate or deactivate a location. Body: {"is_active": false}."""
    try:
        data = request.get_json(silent=True) or {}

        location = location_service.set_location_active(
            location_id,
            data.get("is_active"),
            actor_id=g.actor_id,
        )
        return jsonify(location.to_dict()), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to change location status")
        return jsonify({"error": "Internal server error"}), 500
