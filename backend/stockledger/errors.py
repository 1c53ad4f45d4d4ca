# Overview: Error taxonomy shared by the ledger, the workflows and the HTTP layer.

"""
Every failure a workflow can surface is a LedgerError subclass.

Routes translate these to JSON with the class' status_code. Services raise them
from inside a unit of work; the unit of work rolls the session back before the
exception leaves the service, so no partial mutation survives.
"""
from __future__ import annotations


class LedgerError(Exception):
    """Base class; carries an HTTP status and structured details."""

    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        payload = {"error": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(LedgerError):
    """400-level input problem."""


class NotFound(LedgerError):
    status_code = 404


class InvalidStateTransition(LedgerError):
    """Workflow status does not permit the requested operation."""

    def __init__(self, entity: str, current: str, requested: str, message: str | None = None):
        super().__init__(
            message or f"Cannot move {entity} from {current} to {requested}",
            details={"entity": entity, "current_status": current, "requested": requested},
        )


class InsufficientStock(LedgerError):
    def __init__(self, product_id: int, location_id: int, requested: int, available: int):
        super().__init__(
            f"Insufficient stock for product {product_id} at location {location_id}. "
            f"Available: {available}, requested: {requested}",
            details={
                "product_id": product_id,
                "location_id": location_id,
                "requested": requested,
                "available": available,
            },
        )


class InsufficientLoyaltyPoints(LedgerError):
    def __init__(self, customer_id: int, requested: int, available: int):
        super().__init__(
            f"Customer {customer_id} has {available} loyalty points, {requested} requested",
            details={"customer_id": customer_id, "requested": requested, "available": available},
        )


class OverReceipt(LedgerError):
    def __init__(self, item_id: int, ordered: int, received: int, requested: int):
        super().__init__(
            f"Cannot receive more than ordered quantity for item {item_id}",
            details={
                "purchase_order_item_id": item_id,
                "ordered": ordered,
                "received": received,
                "requested": requested,
            },
        )


class NoInventoryToAudit(ValidationError):
    def __init__(self, warehouse_id: int):
        super().__init__(
            "No inventory items found in this warehouse to audit",
            details={"warehouse_id": warehouse_id},
        )


class ConcurrencyConflict(LedgerError):
    """Optimistic version mismatch that survived every retry; the caller may retry."""

    status_code = 409


class PersistenceFailure(LedgerError):
    """Storage layer unavailable; surfaced to the caller, never retried by the core."""

    status_code = 503
