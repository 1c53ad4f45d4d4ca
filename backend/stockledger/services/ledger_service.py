# Overview: Stock ledger primitives; the only code path that changes on-hand quantity.

"""
Stock Ledger Invariants (authoritative)

- InventoryRecord.quantity >= 0 at all times.
- Every quantity change goes through apply_delta / _apply_to_record and
  writes exactly one MovementEntry in the same flush.
- REMOVE is strict everywhere: it rejects with InsufficientStock when the
  record holds less than requested. Quantities are never clamped.
- status is AVAILABLE iff quantity > 0, unless an explicit hold
  (QUARANTINE / DAMAGED) is set; holds survive quantity changes.
- Ledger primitives flush but never commit. The calling workflow owns the
  unit of work, so a failure anywhere in it discards every delta.
"""
from __future__ import annotations

from dataclasses import dataclass

from ..errors import InsufficientStock, NotFound, ValidationError
from ..extensions import db
from ..models import InventoryRecord, MovementEntry, Product, StockLocation
from ..models.inventory import (
    HOLD_STATUSES,
    MOVEMENT_ADD,
    MOVEMENT_REMOVE,
    MOVEMENT_SET,
    MOVEMENT_TYPES,
    STATUS_AVAILABLE,
    STATUS_DAMAGED,
    STATUS_OUT_OF_STOCK,
    CONDITION_DAMAGED,
    CONDITION_NEW,
)
from ..time_utils import utcnow
from .activity_service import append_activity
from .concurrency import atomic, lock_for_update


HOLD_RELEASE = "RELEASE"

# Manual adjustment vocabulary exposed over HTTP
ADJUSTMENT_TYPES = {
    "add": MOVEMENT_ADD,
    "remove": MOVEMENT_REMOVE,
    "set": MOVEMENT_SET,
}


@dataclass(frozen=True)
class LedgerDelta:
    record: InventoryRecord
    movement: MovementEntry
    previous_quantity: int
    new_quantity: int


def _derive_status(record: InventoryRecord) -> str:
    if record.status in HOLD_STATUSES:
        return record.status
    return STATUS_AVAILABLE if record.quantity > 0 else STATUS_OUT_OF_STOCK


def _check_quantity(delta_type: str, quantity) -> None:
    if delta_type not in MOVEMENT_TYPES:
        raise ValidationError(f"Invalid delta type: {delta_type}")
    if not isinstance(quantity, int) or isinstance(quantity, bool):
        raise ValidationError("quantity must be an integer")
    if delta_type == MOVEMENT_SET:
        if quantity < 0:
            raise ValidationError("quantity must be >= 0 for SET")
    elif quantity <= 0:
        raise ValidationError(f"quantity must be > 0 for {delta_type}")


def _apply_to_record(
    record: InventoryRecord,
    delta_type: str,
    quantity: int,
    reason_code: str,
    actor_id: int | None,
    *,
    cost_price_cents: int | None = None,
    retail_price_cents: int | None = None,
    reference_type: str | None = None,
    reference_id: int | None = None,
    notes: str | None = None,
) -> LedgerDelta:
    previous = record.quantity or 0

    if delta_type == MOVEMENT_ADD:
        new = previous + quantity
    elif delta_type == MOVEMENT_REMOVE:
        if previous < quantity:
            raise InsufficientStock(record.product_id, record.location_id, quantity, previous)
        new = previous - quantity
    else:
        new = quantity

    record.quantity = new
    if cost_price_cents is not None:
        record.cost_price_cents = cost_price_cents
    if retail_price_cents is not None:
        record.retail_price_cents = retail_price_cents
    record.status = _derive_status(record)
    record.updated_at = utcnow()

    movement = MovementEntry(
        inventory_record=record,
        movement_type=delta_type,
        quantity_delta=new - previous,
        previous_quantity=previous,
        new_quantity=new,
        reason_code=reason_code,
        notes=notes,
        actor_id=actor_id,
        reference_type=reference_type,
        reference_id=reference_id,
        occurred_at=utcnow(),
    )
    db.session.add(movement)
    # Flushing bumps version_id; a concurrent writer surfaces as StaleDataError here
    db.session.flush()

    return LedgerDelta(record=record, movement=movement, previous_quantity=previous, new_quantity=new)


def apply_delta(
    product_id: int,
    location_id: int,
    delta_type: str,
    quantity: int,
    reason_code: str,
    actor_id: int | None = None,
    *,
    bin_code: str = "",
    cost_price_cents: int | None = None,
    retail_price_cents: int | None = None,
    reference_type: str | None = None,
    reference_id: int | None = None,
    notes: str | None = None,
) -> LedgerDelta:
    """
    Apply one ADD / REMOVE / SET to the (product, location, bin) record.

    - ADD: new = previous + quantity
    - REMOVE: new = previous - quantity; InsufficientStock when previous < quantity
    - SET: new = quantity

    A missing record is created on ADD/SET with 0 as the implicit previous
    quantity. REMOVE against a missing record fails with available=0.

    Price overrides replace the record's prices; they are never averaged.
    Runs inside the caller's unit of work.
    """
    _check_quantity(delta_type, quantity)
    if not reason_code:
        raise ValidationError("reason_code is required")

    record = lock_for_update(
        db.session.query(InventoryRecord).filter_by(
            product_id=product_id,
            location_id=location_id,
            bin_code=bin_code or "",
        )
    ).first()

    if record is None:
        if delta_type == MOVEMENT_REMOVE:
            raise InsufficientStock(product_id, location_id, quantity, 0)
        if db.session.get(Product, product_id) is None:
            raise NotFound(f"Product {product_id} not found")
        if db.session.get(StockLocation, location_id) is None:
            raise NotFound(f"Location {location_id} not found")
        record = InventoryRecord(
            product_id=product_id,
            location_id=location_id,
            bin_code=bin_code or "",
            quantity=0,
            reserved_quantity=0,
            cost_price_cents=0,
            retail_price_cents=0,
            status=STATUS_OUT_OF_STOCK,
            condition=CONDITION_NEW,
        )
        db.session.add(record)

    return _apply_to_record(
        record,
        delta_type,
        quantity,
        reason_code,
        actor_id,
        cost_price_cents=cost_price_cents,
        retail_price_cents=retail_price_cents,
        reference_type=reference_type,
        reference_id=reference_id,
        notes=notes,
    )


def apply_delta_to_record(
    record_id: int,
    delta_type: str,
    quantity: int,
    reason_code: str,
    actor_id: int | None = None,
    **kwargs,
) -> LedgerDelta:
    """apply_delta addressed by inventory record id (checkout, reconciliation, manual adjust)."""
    _check_quantity(delta_type, quantity)
    if not reason_code:
        raise ValidationError("reason_code is required")
    record = _locked_record(record_id)
    return _apply_to_record(record, delta_type, quantity, reason_code, actor_id, **kwargs)


def _locked_record(record_id: int) -> InventoryRecord:
    record = lock_for_update(db.session.query(InventoryRecord).filter_by(id=record_id)).first()
    if record is None:
        raise NotFound(f"Inventory record {record_id} not found")
    return record


def adjust_inventory_record(
    record_id: int,
    adjustment_type: str,
    quantity,
    reason: str | None,
    notes: str | None = None,
    actor_id: int | None = None,
) -> LedgerDelta:
    """
    Manual ledger entry point, bypassing the workflow state machines.

    adjustment_type is add | remove | set. remove follows the same strict
    policy as every other caller. Commits its own unit of work.
    """
    delta_type = ADJUSTMENT_TYPES.get(str(adjustment_type or "").lower())
    if delta_type is None:
        raise ValidationError("adjustment_type must be one of: add, remove, set")
    if not reason or not str(reason).strip():
        raise ValidationError("reason is required for manual adjustments")

    def _op() -> LedgerDelta:
        delta = apply_delta_to_record(
            record_id,
            delta_type,
            quantity,
            "MANUAL_ADJUSTMENT",
            actor_id,
            notes=f"{reason.strip()}: {notes}" if notes else reason.strip(),
        )
        append_activity(
            entity_type="inventory_record",
            entity_id=delta.record.id,
            action="inventory.adjusted",
            actor_id=actor_id,
            location_id=delta.record.location_id,
            details={
                "adjustment_type": adjustment_type,
                "quantity": quantity,
                "previous_quantity": delta.previous_quantity,
                "new_quantity": delta.new_quantity,
                "reason": reason,
            },
        )
        return delta

    return atomic(_op)


def set_hold_status(
    record_id: int,
    status: str,
    actor_id: int | None = None,
    notes: str | None = None,
) -> InventoryRecord:
    """
    Place or lift an explicit hold.

    QUARANTINE and DAMAGED stop the record from being sold (available
    quantity drops to 0) without touching on-hand quantity. DAMAGED also
    marks the goods' condition. RELEASE lifts the hold and re-derives the
    status from quantity.
    """
    if status not in HOLD_STATUSES and status != HOLD_RELEASE:
        raise ValidationError("status must be one of: QUARANTINE, DAMAGED, RELEASE")

    def _op() -> InventoryRecord:
        record = _locked_record(record_id)
        previous_status = record.status

        if status == HOLD_RELEASE:
            if record.status not in HOLD_STATUSES:
                raise ValidationError(f"Inventory record {record_id} is not on hold")
            record.status = STATUS_AVAILABLE if record.quantity > 0 else STATUS_OUT_OF_STOCK
        else:
            record.status = status
            if status == STATUS_DAMAGED:
                record.condition = CONDITION_DAMAGED
        record.updated_at = utcnow()
        db.session.flush()

        append_activity(
            entity_type="inventory_record",
            entity_id=record.id,
            action="inventory.status_changed",
            actor_id=actor_id,
            location_id=record.location_id,
            details={"from": previous_status, "to": record.status, "notes": notes},
        )
        return record

    return atomic(_op)


# --------------------------------------------------------------------------
# Reads
# --------------------------------------------------------------------------

def get_inventory_record(record_id: int) -> InventoryRecord:
    record = db.session.get(InventoryRecord, record_id)
    if record is None:
        raise NotFound(f"Inventory record {record_id} not found")
    return record


def find_inventory_record(product_id: int, location_id: int, bin_code: str = "") -> InventoryRecord | None:
    return (
        db.session.query(InventoryRecord)
        .filter_by(product_id=product_id, location_id=location_id, bin_code=bin_code or "")
        .first()
    )


def get_quantity_on_hand(product_id: int, location_id: int) -> int:
    """On-hand quantity across every bin at the location."""
    total = (
        db.session.query(db.func.coalesce(db.func.sum(InventoryRecord.quantity), 0))
        .filter_by(product_id=product_id, location_id=location_id)
        .scalar()
    )
    return int(total or 0)


def list_location_inventory(location_id: int, *, include_empty: bool = False) -> list[InventoryRecord]:
    if db.session.get(StockLocation, location_id) is None:
        raise NotFound(f"Location {location_id} not found")
    q = db.session.query(InventoryRecord).filter_by(location_id=location_id)
    if not include_empty:
        q = q.filter(InventoryRecord.quantity > 0)
    return q.order_by(InventoryRecord.product_id.asc(), InventoryRecord.bin_code.asc()).all()


def list_movements(record_id: int, limit: int = 100) -> list[MovementEntry]:
    get_inventory_record(record_id)
    return (
        db.session.query(MovementEntry)
        .filter_by(inventory_record_id=record_id)
        .order_by(MovementEntry.occurred_at.desc(), MovementEntry.id.desc())
        .limit(limit)
        .all()
    )
