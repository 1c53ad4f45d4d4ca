# Overview: Physical count audits; snapshot, count, reconcile, complete.

"""
Warehouse audit (cycle count) service.

WHY: Compare what the ledger says with what is on the shelf without
letting a count silently rewrite stock. A discrepancy is a finding; only an
explicit reconciliation applies a ledger SET.

LIFECYCLE:
1. PLANNED: Created, optionally with an explicit item scope
2. IN_PROGRESS: Started; every record with stock snapshotted as expected_quantity
3. COMPLETED: Every item COUNTED or RECONCILED (set by refresh_audit_status)
CANCELLED is reachable from PLANNED and IN_PROGRESS.

An audit can run for hours, so nothing here holds a transaction open
between calls: every count submission is its own short unit of work and
completion is an explicit follow-up step.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from ..errors import InvalidStateTransition, NoInventoryToAudit, NotFound, ValidationError
from ..extensions import db
from ..models import Audit, AuditItem, InventoryRecord, StockLocation
from ..models.inventory import MOVEMENT_SET
from ..time_utils import utcnow
from ..validation import check_int
from . import ledger_service
from .activity_service import append_activity
from .concurrency import atomic, lock_for_update
from .document_service import next_document_number
from .state_machine import check_transition


AUDIT_STATUS_PLANNED = "PLANNED"
AUDIT_STATUS_IN_PROGRESS = "IN_PROGRESS"
AUDIT_STATUS_COMPLETED = "COMPLETED"
AUDIT_STATUS_CANCELLED = "CANCELLED"

AUDIT_TRANSITIONS = {
    AUDIT_STATUS_PLANNED: frozenset({AUDIT_STATUS_IN_PROGRESS, AUDIT_STATUS_CANCELLED}),
    AUDIT_STATUS_IN_PROGRESS: frozenset({AUDIT_STATUS_COMPLETED, AUDIT_STATUS_CANCELLED}),
    AUDIT_STATUS_COMPLETED: frozenset(),
    AUDIT_STATUS_CANCELLED: frozenset(),
}

ITEM_STATUS_PENDING = "PENDING"
ITEM_STATUS_COUNTED = "COUNTED"
ITEM_STATUS_DISCREPANCY = "DISCREPANCY"
ITEM_STATUS_RECONCILED = "RECONCILED"

ITEM_TRANSITIONS = {
    ITEM_STATUS_PENDING: frozenset({ITEM_STATUS_COUNTED, ITEM_STATUS_DISCREPANCY}),
    ITEM_STATUS_COUNTED: frozenset({ITEM_STATUS_COUNTED, ITEM_STATUS_DISCREPANCY}),
    ITEM_STATUS_DISCREPANCY: frozenset({ITEM_STATUS_COUNTED, ITEM_STATUS_DISCREPANCY, ITEM_STATUS_RECONCILED}),
    ITEM_STATUS_RECONCILED: frozenset(),
}

# Counted at least once (DISCREPANCY included)
COUNTED_STATUSES = {ITEM_STATUS_COUNTED, ITEM_STATUS_DISCREPANCY, ITEM_STATUS_RECONCILED}
# Settled; only these move the audit toward completion
COMPLETED_STATUSES = {ITEM_STATUS_COUNTED, ITEM_STATUS_RECONCILED}

REASON_AUDIT_RECONCILIATION = "AUDIT_RECONCILIATION"


@dataclass(frozen=True)
class AuditProgress:
    total_items: int
    counted_items: int
    completed_items: int
    percentage: int

    @property
    def is_complete(self) -> bool:
        return self.total_items > 0 and self.completed_items == self.total_items

    def to_dict(self) -> dict:
        return {
            "total_items": self.total_items,
            "counted_items": self.counted_items,
            "completed_items": self.completed_items,
            "percentage": self.percentage,
            "is_complete": self.is_complete,
        }


def compute_progress(items) -> AuditProgress:
    """
    percentage = round_half_up(100 * completed / total), capped at 99 until
    every item is completed.

    An item left in DISCREPANCY counts as counted but not completed, so it
    keeps the audit below 100%.
    """
    statuses = [item.status for item in items]
    total = len(statuses)
    counted = sum(1 for s in statuses if s in COUNTED_STATUSES)
    completed = sum(1 for s in statuses if s in COMPLETED_STATUSES)
    if total == 0:
        percentage = 0
    else:
        percentage = int(
            (Decimal(100 * completed) / Decimal(total)).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
        )
        if completed < total:
            # 199 of 200 would round to 100
            percentage = min(percentage, 99)
    return AuditProgress(
        total_items=total,
        counted_items=counted,
        completed_items=completed,
        percentage=percentage,
    )


def _get_locked_audit(audit_id: int) -> Audit:
    audit = lock_for_update(db.session.query(Audit).filter_by(id=audit_id)).first()
    if not audit:
        raise NotFound(f"Audit {audit_id} not found")
    return audit


def _snapshot(audit: Audit, records) -> int:
    """Freeze each record's current quantity as the item's expected quantity."""
    for record in records:
        audit.items.append(
            AuditItem(
                product_id=record.product_id,
                inventory_record_id=record.id,
                expected_quantity=record.quantity,
                status=ITEM_STATUS_PENDING,
            )
        )
    db.session.flush()
    return len(audit.items)


def _log(audit: Audit, action: str, actor_id: int | None, **details) -> None:
    append_activity(
        entity_type="audit",
        entity_id=audit.id,
        action=action,
        actor_id=actor_id,
        location_id=audit.warehouse_id,
        details={"audit_number": audit.audit_number, "status": audit.status, **details},
    )


def create_audit(
    warehouse_id: int,
    *,
    title: str | None = None,
    scheduled_date=None,
    notes: str | None = None,
    inventory_record_ids: list[int] | None = None,
    actor_id: int | None = None,
) -> Audit:
    """
    Create a PLANNED audit for one warehouse.

    inventory_record_ids narrows the scope; those records are snapshotted
    immediately. Without it the scope is decided at start time.
    """
    def _op() -> Audit:
        warehouse = db.session.get(StockLocation, check_int(warehouse_id, "warehouse_id"))
        if warehouse is None:
            raise NotFound(f"Warehouse {warehouse_id} not found")
        if not warehouse.is_warehouse:
            raise ValidationError(f"Location {warehouse.code} is not a warehouse")
        if not warehouse.is_active:
            raise ValidationError(f"Warehouse {warehouse.code} is inactive")

        audit = Audit(
            audit_number=next_document_number(document_type="AUDIT", prefix="AUD"),
            warehouse_id=warehouse.id,
            title=title,
            status=AUDIT_STATUS_PLANNED,
            scheduled_date=scheduled_date,
            notes=notes,
            created_by=actor_id,
            created_at=utcnow(),
        )
        db.session.add(audit)
        db.session.flush()

        if inventory_record_ids:
            ids = sorted({check_int(rid, "inventory_record_ids") for rid in inventory_record_ids})
            records = (
                db.session.query(InventoryRecord)
                .filter(InventoryRecord.id.in_(ids))
                .order_by(InventoryRecord.id.asc())
                .all()
            )
            found = {r.id for r in records}
            missing = [rid for rid in ids if rid not in found]
            if missing:
                raise NotFound(f"Inventory records not found: {missing}")
            foreign = [r.id for r in records if r.location_id != warehouse.id]
            if foreign:
                raise ValidationError(f"Inventory records {foreign} do not belong to warehouse {warehouse.code}")
            _snapshot(audit, records)

        _log(audit, "audit.created", actor_id, item_count=len(audit.items))
        return audit

    return atomic(_op)


def start_audit(audit_id: int, actor_id: int | None = None) -> Audit:
    """
    PLANNED -> IN_PROGRESS.

    When the audit has no items yet, every record with quantity > 0 at the
    warehouse is snapshotted. NoInventoryToAudit when there is none.
    """
    def _op() -> Audit:
        audit = _get_locked_audit(audit_id)
        check_transition("audit", AUDIT_TRANSITIONS, audit.status, AUDIT_STATUS_IN_PROGRESS)

        if not audit.items:
            records = (
                db.session.query(InventoryRecord)
                .filter(
                    InventoryRecord.location_id == audit.warehouse_id,
                    InventoryRecord.quantity > 0,
                )
                .order_by(InventoryRecord.product_id.asc(), InventoryRecord.bin_code.asc())
                .all()
            )
            if not records:
                raise NoInventoryToAudit(audit.warehouse_id)
            _snapshot(audit, records)

        audit.status = AUDIT_STATUS_IN_PROGRESS
        audit.start_date = utcnow()
        db.session.flush()

        _log(audit, "audit.started", actor_id, item_count=len(audit.items))
        return audit

    return atomic(_op)


def record_counts(audit_id: int, counts: list[dict], actor_id: int | None = None) -> list[AuditItem]:
    """
    Record counted quantities for a batch of items in one short transaction.

    Each entry is {id, actual_quantity, notes?}. discrepancy = counted -
    expected; zero gives COUNTED, anything else DISCREPANCY. RECONCILED
    items cannot be recounted. The ledger is never touched.
    """
    if not isinstance(counts, list) or not counts:
        raise ValidationError("items must be a non-empty list")

    parsed = []
    for entry in counts:
        if not isinstance(entry, dict):
            raise ValidationError("Each entry in items must be an object")
        if entry.get("id") is None:
            raise ValidationError("Item ID is required")
        if entry.get("actual_quantity") is None:
            raise ValidationError("Actual quantity is required")
        parsed.append((
            check_int(entry["id"], "id"),
            check_int(entry["actual_quantity"], "actual_quantity", min_value=0),
            entry.get("notes"),
        ))

    def _op() -> list[AuditItem]:
        audit = _get_locked_audit(audit_id)
        if audit.status != AUDIT_STATUS_IN_PROGRESS:
            raise InvalidStateTransition(
                "audit",
                audit.status,
                "COUNT",
                message="Audit must be in progress to update items",
            )

        now = utcnow()
        updated = []
        for item_id, counted, notes in parsed:
            item = (
                db.session.query(AuditItem)
                .filter_by(id=item_id, audit_id=audit.id)
                .first()
            )
            if item is None:
                raise NotFound(f"Audit item {item_id} not found")

            discrepancy = counted - item.expected_quantity
            new_status = ITEM_STATUS_COUNTED if discrepancy == 0 else ITEM_STATUS_DISCREPANCY
            check_transition("audit_item", ITEM_TRANSITIONS, item.status, new_status)

            item.counted_quantity = counted
            item.discrepancy = discrepancy
            item.status = new_status
            item.counted_by = actor_id
            item.counted_at = now
            if notes:
                item.notes = notes
            updated.append(item)

        db.session.flush()
        _log(
            audit,
            "audit.counts_recorded",
            actor_id,
            items=[{"id": i.id, "counted": i.counted_quantity, "discrepancy": i.discrepancy} for i in updated],
        )
        return updated

    return atomic(_op)


def reconcile_item(
    audit_id: int,
    item_id: int,
    actor_id: int | None = None,
    *,
    adjust_stock: bool = True,
    notes: str | None = None,
) -> AuditItem:
    """
    DISCREPANCY -> RECONCILED.

    With adjust_stock the ledger record is SET to the counted quantity in
    the same unit of work; without it the finding is accepted and stock is
    left as recorded.
    """
    def _op() -> AuditItem:
        audit = _get_locked_audit(audit_id)
        if audit.status != AUDIT_STATUS_IN_PROGRESS:
            raise InvalidStateTransition(
                "audit",
                audit.status,
                "RECONCILE",
                message="Audit must be in progress to reconcile items",
            )

        item = lock_for_update(
            db.session.query(AuditItem).filter_by(id=item_id, audit_id=audit.id)
        ).first()
        if item is None:
            raise NotFound(f"Audit item {item_id} not found")
        check_transition("audit_item", ITEM_TRANSITIONS, item.status, ITEM_STATUS_RECONCILED)
        if item.status != ITEM_STATUS_DISCREPANCY:
            raise InvalidStateTransition("audit_item", item.status, ITEM_STATUS_RECONCILED)

        delta = None
        if adjust_stock:
            delta = ledger_service.apply_delta_to_record(
                item.inventory_record_id,
                MOVEMENT_SET,
                item.counted_quantity,
                REASON_AUDIT_RECONCILIATION,
                actor_id,
                reference_type="audit",
                reference_id=audit.id,
                notes=f"Audit {audit.audit_number} reconciliation",
            )

        item.status = ITEM_STATUS_RECONCILED
        item.reconciled_by = actor_id
        item.reconciled_at = utcnow()
        if notes:
            item.notes = notes
        db.session.flush()

        _log(
            audit,
            "audit.item_reconciled",
            actor_id,
            item_id=item.id,
            adjust_stock=adjust_stock,
            previous_quantity=delta.previous_quantity if delta else None,
            new_quantity=delta.new_quantity if delta else None,
        )
        return item

    return atomic(_op)


def refresh_audit_status(audit_id: int, actor_id: int | None = None) -> tuple[AuditProgress, bool]:
    """
    Recompute progress and complete the audit when it reaches 100%.

    Call after every count or reconciliation. Returns (progress,
    completed_now); completed_now is True only on the call that moved the
    audit to COMPLETED.
    """
    def _op() -> tuple[AuditProgress, bool]:
        audit = _get_locked_audit(audit_id)
        progress = compute_progress(audit.items)
        if audit.status != AUDIT_STATUS_IN_PROGRESS or not progress.is_complete:
            return progress, False

        check_transition("audit", AUDIT_TRANSITIONS, audit.status, AUDIT_STATUS_COMPLETED)
        audit.status = AUDIT_STATUS_COMPLETED
        audit.end_date = utcnow()
        db.session.flush()
        _log(audit, "audit.completed", actor_id, **progress.to_dict())
        return progress, True

    return atomic(_op)


def cancel_audit(audit_id: int, actor_id: int | None = None, reason: str | None = None) -> Audit:
    """PLANNED/IN_PROGRESS -> CANCELLED. Reconciliations already applied stay applied."""
    def _op() -> Audit:
        audit = _get_locked_audit(audit_id)
        check_transition("audit", AUDIT_TRANSITIONS, audit.status, AUDIT_STATUS_CANCELLED)
        audit.status = AUDIT_STATUS_CANCELLED
        audit.cancelled_date = utcnow()
        if reason:
            audit.notes = f"{audit.notes}\nCancelled: {reason}" if audit.notes else f"Cancelled: {reason}"
        db.session.flush()
        _log(audit, "audit.cancelled", actor_id, reason=reason)
        return audit

    return atomic(_op)


def get_audit(audit_id: int) -> Audit:
    audit = db.session.get(Audit, audit_id)
    if audit is None:
        raise NotFound(f"Audit {audit_id} not found")
    return audit


def get_audit_summary(audit_id: int) -> dict:
    audit = get_audit(audit_id)
    return {
        "audit": audit.to_dict(),
        "items": [item.to_dict() for item in audit.items],
        "progress": compute_progress(audit.items).to_dict(),
    }
