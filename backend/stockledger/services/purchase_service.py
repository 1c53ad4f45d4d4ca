# Overview: Purchase orders and goods receiving into a warehouse.

"""
Purchase order service.

LIFECYCLE:
1. DRAFT: Created with lines; nothing ordered yet
2. ORDERED: Submitted to the supplier
3. PARTIAL: Some goods received (receiving may repeat)
4. RECEIVED: Every line fully received
5. CANCELLED: Abandoned before any goods arrived

Receiving validates every line before the unit of work commits:
received + quantity may never exceed ordered. A rejected receipt leaves the
order, its lines and the ledger exactly as they were.
"""
from __future__ import annotations

from ..errors import InvalidStateTransition, NotFound, OverReceipt, ValidationError
from ..extensions import db
from ..models import Product, PurchaseOrder, PurchaseOrderItem, StockLocation, Supplier
from ..models.inventory import MOVEMENT_ADD
from ..time_utils import utcnow
from ..validation import check_int, check_price_cents
from . import ledger_service
from .activity_service import append_activity
from .concurrency import atomic, lock_for_update
from .document_service import next_document_number
from .state_machine import check_transition


PO_STATUS_DRAFT = "DRAFT"
PO_STATUS_ORDERED = "ORDERED"
PO_STATUS_PARTIAL = "PARTIAL"
PO_STATUS_RECEIVED = "RECEIVED"
PO_STATUS_CANCELLED = "CANCELLED"

PO_TRANSITIONS = {
    PO_STATUS_DRAFT: frozenset({PO_STATUS_ORDERED, PO_STATUS_CANCELLED}),
    PO_STATUS_ORDERED: frozenset({PO_STATUS_PARTIAL, PO_STATUS_RECEIVED, PO_STATUS_CANCELLED}),
    PO_STATUS_PARTIAL: frozenset({PO_STATUS_PARTIAL, PO_STATUS_RECEIVED}),
    PO_STATUS_RECEIVED: frozenset(),
    PO_STATUS_CANCELLED: frozenset(),
}

RECEIVABLE_STATUSES = {PO_STATUS_ORDERED, PO_STATUS_PARTIAL}

REASON_PURCHASE_RECEIPT = "PURCHASE_RECEIPT"


def _get_locked_order(po_id: int) -> PurchaseOrder:
    po = lock_for_update(db.session.query(PurchaseOrder).filter_by(id=po_id)).first()
    if not po:
        raise NotFound(f"Purchase order {po_id} not found")
    return po


def _log(po: PurchaseOrder, action: str, actor_id: int | None, **details) -> None:
    append_activity(
        entity_type="purchase_order",
        entity_id=po.id,
        action=action,
        actor_id=actor_id,
        location_id=po.warehouse_id,
        details={"order_number": po.order_number, "status": po.status, **details},
    )


def create_purchase_order(
    supplier_id: int,
    warehouse_id: int,
    items: list[dict],
    *,
    expected_date=None,
    notes: str | None = None,
    actor_id: int | None = None,
) -> PurchaseOrder:
    """Create a DRAFT order. Each item is {product_id, ordered_quantity, unit_price_cents}."""
    if not isinstance(items, list) or not items:
        raise ValidationError("Purchase order must contain at least one item")

    lines = []
    for raw in items:
        if not isinstance(raw, dict):
            raise ValidationError("Each item must be an object")
        for field in ("product_id", "ordered_quantity", "unit_price_cents"):
            if raw.get(field) is None:
                raise ValidationError(f"Missing required field: {field}")
        lines.append((
            check_int(raw["product_id"], "product_id"),
            check_int(raw["ordered_quantity"], "ordered_quantity", min_value=1),
            check_price_cents(raw["unit_price_cents"], "unit_price_cents"),
        ))

    def _op() -> PurchaseOrder:
        supplier = db.session.get(Supplier, check_int(supplier_id, "supplier_id"))
        if supplier is None:
            raise NotFound(f"Supplier {supplier_id} not found")
        if not supplier.is_active:
            raise ValidationError(f"Supplier {supplier.name} is inactive")

        warehouse = db.session.get(StockLocation, check_int(warehouse_id, "warehouse_id"))
        if warehouse is None:
            raise NotFound(f"Warehouse {warehouse_id} not found")
        if not warehouse.is_warehouse:
            raise ValidationError(f"Location {warehouse.code} is not a warehouse")
        if not warehouse.is_active:
            raise ValidationError(f"Warehouse {warehouse.code} is inactive")

        po = PurchaseOrder(
            order_number=next_document_number(document_type="PURCHASE_ORDER", prefix="PO"),
            supplier_id=supplier.id,
            warehouse_id=warehouse.id,
            status=PO_STATUS_DRAFT,
            expected_date=expected_date,
            notes=notes,
            created_by=actor_id,
            created_at=utcnow(),
        )
        for product_id, ordered, unit_price in lines:
            if db.session.get(Product, product_id) is None:
                raise NotFound(f"Product {product_id} not found")
            po.items.append(
                PurchaseOrderItem(
                    product_id=product_id,
                    ordered_quantity=ordered,
                    received_quantity=0,
                    unit_price_cents=unit_price,
                )
            )
        po.total_amount_cents = sum(i.ordered_quantity * i.unit_price_cents for i in po.items)

        db.session.add(po)
        db.session.flush()
        _log(po, "purchase_order.created", actor_id, total_amount_cents=po.total_amount_cents)
        return po

    return atomic(_op)


def submit_purchase_order(po_id: int, actor_id: int | None = None) -> PurchaseOrder:
    """DRAFT -> ORDERED."""
    def _op() -> PurchaseOrder:
        po = _get_locked_order(po_id)
        check_transition("purchase_order", PO_TRANSITIONS, po.status, PO_STATUS_ORDERED)
        po.status = PO_STATUS_ORDERED
        po.ordered_date = utcnow()
        db.session.flush()
        _log(po, "purchase_order.submitted", actor_id)
        return po

    return atomic(_op)


def cancel_purchase_order(po_id: int, actor_id: int | None = None, reason: str | None = None) -> PurchaseOrder:
    """DRAFT/ORDERED -> CANCELLED; refused once any goods were received."""
    def _op() -> PurchaseOrder:
        po = _get_locked_order(po_id)
        check_transition("purchase_order", PO_TRANSITIONS, po.status, PO_STATUS_CANCELLED)
        if any(item.received_quantity for item in po.items):
            raise InvalidStateTransition(
                "purchase_order",
                po.status,
                PO_STATUS_CANCELLED,
                message="Cannot cancel a purchase order with received items",
            )
        po.status = PO_STATUS_CANCELLED
        po.cancelled_date = utcnow()
        if reason:
            po.notes = f"{po.notes}\n\n{reason}" if po.notes else reason
        db.session.flush()
        _log(po, "purchase_order.cancelled", actor_id, reason=reason)
        return po

    return atomic(_op)


def receive_purchase_order(
    po_id: int,
    items: list[dict],
    notes: str | None = None,
    actor_id: int | None = None,
) -> PurchaseOrder:
    """
    Receive goods against an ORDERED or PARTIAL order.

    Each entry is {id, quantity} where id is the purchase order item id.
    Every received quantity is posted as a ledger ADD at the order's
    warehouse with the item's unit price as the new cost price.
    Afterwards the order becomes RECEIVED when every line is full, PARTIAL
    when anything has been received, otherwise keeps its status.
    """
    if not isinstance(items, list) or not items:
        raise ValidationError("Items are required")

    receipts = []
    for raw in items:
        if not isinstance(raw, dict):
            raise ValidationError("Each item must be an object")
        if raw.get("id") is None or raw.get("quantity") is None:
            raise ValidationError("Each item requires id and quantity")
        receipts.append((check_int(raw["id"], "id"), check_int(raw["quantity"], "quantity", min_value=1)))

    def _op() -> PurchaseOrder:
        po = _get_locked_order(po_id)
        if po.status not in RECEIVABLE_STATUSES:
            raise InvalidStateTransition(
                "purchase_order",
                po.status,
                "RECEIVE",
                message="Purchase order must be in ORDERED or PARTIAL status to receive items",
            )

        lines = {item.id: item for item in po.items}
        for item_id, quantity in receipts:
            line = lines.get(item_id)
            if line is None:
                raise NotFound(f"Item with ID {item_id} not found in purchase order")
            if line.received_quantity + quantity > line.ordered_quantity:
                raise OverReceipt(line.id, line.ordered_quantity, line.received_quantity, quantity)

            line.received_quantity += quantity
            ledger_service.apply_delta(
                line.product_id,
                po.warehouse_id,
                MOVEMENT_ADD,
                quantity,
                REASON_PURCHASE_RECEIPT,
                actor_id,
                cost_price_cents=line.unit_price_cents,
                reference_type="purchase_order",
                reference_id=po.id,
                notes=f"Purchase order {po.order_number} received",
            )

        all_received = all(i.received_quantity == i.ordered_quantity for i in po.items)
        any_received = any(i.received_quantity > 0 for i in po.items)
        if all_received:
            new_status = PO_STATUS_RECEIVED
        elif any_received:
            new_status = PO_STATUS_PARTIAL
        else:
            new_status = po.status

        if new_status != po.status:
            check_transition("purchase_order", PO_TRANSITIONS, po.status, new_status)
        po.status = new_status
        if new_status == PO_STATUS_RECEIVED:
            po.delivered_date = utcnow()
        if notes:
            po.notes = f"{po.notes}\n\n{notes}" if po.notes else notes
        db.session.flush()

        _log(po, "purchase_order.received", actor_id, lines=[{"id": i, "quantity": q} for i, q in receipts])
        return po

    return atomic(_op)


def get_purchase_order(po_id: int) -> PurchaseOrder:
    po = db.session.get(PurchaseOrder, po_id)
    if po is None:
        raise NotFound(f"Purchase order {po_id} not found")
    return po


def get_purchase_order_summary(po_id: int) -> dict:
    po = get_purchase_order(po_id)
    return {
        "purchase_order": po.to_dict(),
        "items": [item.to_dict() for item in po.items],
    }
