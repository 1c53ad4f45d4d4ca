# Overview: Flask API routes for warehouse audits (cycle counts).

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_actor
from ..errors import LedgerError
from ..extensions import db
from ..services import audit_service
from ..validation import optional_datetime, require_int


audits_bp = Blueprint("audits", __name__, url_prefix="/api/audits")


@audits_bp.post("")
@require_actor
def create_audit_route():
    """
    Plan an audit for a warehouse.

    Request body:
    {
        "warehouse_id": 1,
        "title": "Q3 cycle count",           (optional)
        "scheduled_date": ISO-8601,           (optional)
        "notes": "...",                       (optional)
        "inventory_record_ids": [1, 2, 3]     (optional; snapshot now)
    }
    """
    try:
        data = request.get_json(silent=True) or {}

        audit = audit_service.create_audit(
            require_int(data, "warehouse_id"),
            title=data.get("title"),
            scheduled_date=optional_datetime(data, "scheduled_date"),
            notes=data.get("notes"),
            inventory_record_ids=data.get("inventory_record_ids"),
            actor_id=g.actor_id,
        )
        return jsonify(audit_service.get_audit_summary(audit.id)), 201

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create audit")
        return jsonify({"error": "Internal server error"}), 500


@audits_bp.get("/<int:audit_id>")
def get_audit_route(audit_id: int):
    try:
        return jsonify(audit_service.get_audit_summary(audit_id)), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load audit")
        return jsonify({"error": "Internal server error"}), 500


@audits_bp.post("/<int:audit_id>/start")
@require_actor
def start_audit_route(audit_id: int):
    try:
        audit_service.start_audit(audit_id, actor_id=g.actor_id)
        return jsonify(audit_service.get_audit_summary(audit_id)), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to start audit")
        return jsonify({"error": "Internal server error"}), 500


@audits_bp.put("/<int:audit_id>/items")
@require_actor
def record_counts_route(audit_id: int):
    """
    Submit counted quantities.

    Request body:
    {
        "items": [{"id": 10, "actual_quantity": 4, "notes": "..."}]
    }

    Counts are committed first; the completion check runs as its own step
    afterwards and reports whether this submission finished the audit.
    """
    try:
        data = request.get_json(silent=True) or {}

        items = audit_service.record_counts(audit_id, data.get("items"), actor_id=g.actor_id)
        progress, completed_now = audit_service.refresh_audit_status(audit_id, actor_id=g.actor_id)

        return jsonify({
            "items": [item.to_dict() for item in items],
            "progress": progress.to_dict(),
            "completed_now": completed_now,
        }), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to record audit counts")
        return jsonify({"error": "Internal server error"}), 500


@audits_bp.post("/<int:audit_id>/items/<int:item_id>/reconcile")
@require_actor
def reconcile_item_route(audit_id: int, item_id: int):
    """
    Resolve a discrepancy.

    Request body:
    {
        "adjust_stock": true,    (optional, default true; SET stock to the count)
        "notes": "..."           (optional)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        adjust_stock = data.get("adjust_stock", True)
        if not isinstance(adjust_stock, bool):
            return jsonify({"error": "adjust_stock must be a boolean"}), 400

        item = audit_service.reconcile_item(
            audit_id,
            item_id,
            g.actor_id,
            adjust_stock=adjust_stock,
            notes=data.get("notes"),
        )
        progress, completed_now = audit_service.refresh_audit_status(audit_id, actor_id=g.actor_id)

        return jsonify({
            "item": item.to_dict(),
            "progress": progress.to_dict(),
            "completed_now": completed_now,
        }), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to reconcile audit item")
        return jsonify({"error": "Internal server error"}), 500


@audits_bp.post("/<int:audit_id>/cancel")
@require_actor
def cancel_audit_route(audit_id: int):
    try:
        data = request.get_json(silent=True) or {}
        audit = audit_service.cancel_audit(audit_id, actor_id=g.actor_id, reason=data.get("reason"))
        return jsonify(audit.to_dict()), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to cancel audit")
        return jsonify({"error": "Internal server error"}), 500
