# backend/stockledger/routes/transfers.py
"""
Inter-location transfer API routes.

Every state change goes through transfer_service, which checks the
transition table and runs the stock movements in one unit of work.
"""
from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_actor
from ..errors import LedgerError
from ..extensions import db
from ..services import transfer_service
from ..validation import optional_datetime, optional_int


transfers_bp = Blueprint("transfers", __name__, url_prefix="/api/transfers")


def _unexpected(message: str):
    db.session.rollback()
    current_app.logger.exception(message)
    return jsonify({"error": "Internal server error"}), 500


@transfers_bp.route("", methods=["POST"])
@require_actor
def create_transfer():
    """
    Create a new transfer document (status: DRAFT).

    Request body:
    {
        "from_location_id": int,
        "to_location_id": int,
        "transfer_type": "RESTOCK" | "RETURN" | "RELOCATION",   (optional)
        "priority": "LOW" | "NORMAL" | "HIGH" | "URGENT",       (optional)
        "expected_delivery_date": ISO-8601,                    (optional)
        "notes": str,                                          (optional)
        "items": [{"product_id", "quantity", "target_cost_price_cents"?, ...}]
    }

    Returns:
        201: Transfer created
        400: Invalid request
        404: Unknown location or product
    """
    try:
        data = request.get_json(silent=True) or {}

        transfer = transfer_service.create_transfer(
            data.get("from_location_id"),
            data.get("to_location_id"),
            data.get("items"),
            transfer_type=data.get("transfer_type") or "RESTOCK",
            priority=data.get("priority") or "NORMAL",
            notes=data.get("notes"),
            expected_delivery_date=optional_datetime(data, "expected_delivery_date"),
            actor_id=g.actor_id,
        )

        return jsonify(transfer_service.get_transfer_summary(transfer.id)), 201

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        return _unexpected("Failed to create transfer")


@transfers_bp.route("", methods=["GET"])
def list_transfers():
    """
    List transfers, newest first.

    Query params: status, from_location_id, to_location_id, limit, offset
    """
    try:
        args = request.args
        limit = min(optional_int(args, "limit", 50, min_value=1), 200)
        offset = optional_int(args, "offset", 0, min_value=0)

        rows, total = transfer_service.list_transfers(
            status=args.get("status"),
            from_location_id=optional_int(args, "from_location_id"),
            to_location_id=optional_int(args, "to_location_id"),
            limit=limit,
            offset=offset,
        )
        return jsonify({
            "transfers": [t.to_dict() for t in rows],
            "pagination": {"total": total, "limit": limit, "offset": offset},
        }), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        return _unexpected("Failed to list transfers")


@transfers_bp.route("/<int:transfer_id>", methods=["GET"])
def get_transfer(transfer_id: int):
    try:
        return jsonify(transfer_service.get_transfer_summary(transfer_id)), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        return _unexpected("Failed to load transfer")


@transfers_bp.route("/<int:transfer_id>", methods=["PUT"])
@require_actor
def update_transfer(transfer_id: int):
    """
    Edit a DRAFT or PENDING transfer.

    Request body: any of the header fields, from_location_id,
    to_location_id and items (replaces every item).
    """
    try:
        data = request.get_json(silent=True) or {}
        transfer = transfer_service.update_transfer(transfer_id, data, actor_id=g.actor_id)
        return jsonify(transfer_service.get_transfer_summary(transfer.id)), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        return _unexpected("Failed to update transfer")


@transfers_bp.route("/<int:transfer_id>", methods=["PATCH"])
@require_actor
def patch_transfer_status(transfer_id: int):
    """
    Move a transfer to a new status.

    Request body:
    {
        "status": "PENDING" | "APPROVED" | "REJECTED" | "CANCELLED" | "IN_TRANSIT" | "COMPLETED",
        "reason": str,            (optional; REJECTED / CANCELLED)
        "notes": str,             (optional)
        "shipping_method": str,   (optional; IN_TRANSIT)
        "tracking_number": str    (optional; IN_TRANSIT)
    }

    Returns:
        200: Transfer updated
        400: Transition not allowed, or insufficient stock on shipping
        404: Transfer not found
    """
    try:
        data = request.get_json(silent=True) or {}
        status = data.get("status")
        if not status:
            return jsonify({"error": "Status is required"}), 400

        transfer = transfer_service.update_transfer_status(
            transfer_id,
            status,
            g.actor_id,
            reason=data.get("reason"),
            notes=data.get("notes"),
            shipping_method=data.get("shipping_method"),
            tracking_number=data.get("tracking_number"),
        )
        return jsonify(transfer.to_dict()), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        return _unexpected("Failed to update transfer status")


@transfers_bp.route("/<int:transfer_id>", methods=["DELETE"])
@require_actor
def delete_transfer(transfer_id: int):
    try:
        transfer_service.delete_transfer(transfer_id, actor_id=g.actor_id)
        return jsonify({"deleted": True, "id": transfer_id}), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        return _unexpected("Failed to delete transfer")


@transfers_bp.route("/<int:transfer_id>/submit", methods=["POST"])
@require_actor
def submit_transfer(transfer_id: int):
    try:
        transfer = transfer_service.submit_transfer(transfer_id, actor_id=g.actor_id)
        return jsonify(transfer.to_dict()), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        return _unexpected("Failed to submit transfer")


@transfers_bp.route("/<int:transfer_id>/process", methods=["POST"])
@require_actor
def process_transfer(transfer_id: int):
    """
    Manager processing: approve, reject or ship.

    Request body:
    {
        "action": "approve" | "reject" | "ship",
        "shipping_method": str,   (optional)
        "tracking_number": str,   (optional)
        "notes": str              (optional; rejection reason for reject)
    }

    Returns:
        200: Transfer processed
        400: Invalid action/state or insufficient stock (nothing shipped)
        404: Transfer not found
    """
    try:
        data = request.get_json(silent=True) or {}

        transfer = transfer_service.process_transfer(
            transfer_id,
            data.get("action"),
            g.actor_id,
            shipping_method=data.get("shipping_method"),
            tracking_number=data.get("tracking_number"),
            notes=data.get("notes"),
        )
        return jsonify(transfer.to_dict()), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        return _unexpected("Failed to process transfer")


@transfers_bp.route("/<int:transfer_id>/receive", methods=["POST"])
@require_actor
def receive_transfer(transfer_id: int):
    """
    Receive an IN_TRANSIT transfer at its destination (status: COMPLETED).

    Returns:
        200: Transfer completed
        400: Invalid state
        404: Transfer not found
    """
    try:
        data = request.get_json(silent=True) or {}
        transfer = transfer_service.receive_transfer(transfer_id, actor_id=g.actor_id, notes=data.get("notes"))
        return jsonify(transfer.to_dict()), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        return _unexpected("Failed to receive transfer")


@transfers_bp.route("/<int:transfer_id>/cancel", methods=["POST"])
@require_actor
def cancel_transfer(transfer_id: int):
    try:
        data = request.get_json(silent=True) or {}
        transfer = transfer_service.cancel_transfer(transfer_id, data.get("reason"), actor_id=g.actor_id)
        return jsonify(transfer.to_dict()), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        return _unexpected("Failed to cancel transfer")
