# backend/stockledger/routes/system.py
"""
System health endpoint.

Reports database connectivity and ledger row counts for deployment checks.
"""

import time
from flask import Blueprint, current_app, jsonify
from ..extensions import db
from ..models import StockLocation, InventoryRecord, MovementEntry

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """
    Probe the database with one count per ledger table.

    Returns {status, latency_ms} plus row counts, or an error marker.
    """
    started = time.perf_counter()
    try:
        location_count = db.session.query(StockLocation).count()
        record_count = db.session.query(InventoryRecord).count()
        movement_count = db.session.query(MovementEntry).count()

        elapsed_ms = (time.perf_counter() - started) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "locations": location_count,
                "inventory_records": record_count,
                "movements": movement_count,
            },
        }
    except Exception:
        elapsed_ms = (time.perf_counter() - started) * 1000
        db.session.rollback()
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


@system_bp.get("/api/health")
def health():
    database = check_database_health()
    healthy = database["status"] == "healthy"
    body = {
        "status": "ok" if healthy else "degraded",
        "checks": {"database": database},
    }
    return jsonify(body), 200 if healthy else 503
