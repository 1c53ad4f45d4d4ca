# Overview: Transfer workflow; moves stock between locations through an explicit lifecycle.

"""
Inter-location transfer service.

WHY: Stock leaves one location and arrives at another as two separate
ledger events (ship, receive) with approval in between. Each event is one
unit of work: shipping removes every line at the source or none of them.

LIFECYCLE:
1. DRAFT: Created; header, locations and items editable; deletable
2. PENDING: Submitted for approval; still editable
3. APPROVED: Manager approved
4. IN_TRANSIT: Shipped (REMOVE at source per item)
5. COMPLETED: Received (ADD at destination per item, target prices)
REJECTED (from PENDING) and CANCELLED (from DRAFT/PENDING) are terminal.
"""
from __future__ import annotations

from ..errors import InsufficientStock, InvalidStateTransition, NotFound, ValidationError
from ..extensions import db
from ..models import Product, StockLocation, Transfer, TransferItem
from ..models.inventory import MOVEMENT_ADD, MOVEMENT_REMOVE
from ..time_utils import utcnow
from ..validation import (
    ModelValidationPolicy,
    check_choice,
    check_int,
    check_price_cents,
    validate_payload,
)
from . import ledger_service
from .activity_service import append_activity, list_activity
from .concurrency import atomic, lock_for_update
from .document_service import next_document_number
from .state_machine import check_transition


TRANSFER_STATUS_DRAFT = "DRAFT"
TRANSFER_STATUS_PENDING = "PENDING"
TRANSFER_STATUS_APPROVED = "APPROVED"
TRANSFER_STATUS_REJECTED = "REJECTED"
TRANSFER_STATUS_IN_TRANSIT = "IN_TRANSIT"
TRANSFER_STATUS_COMPLETED = "COMPLETED"
TRANSFER_STATUS_CANCELLED = "CANCELLED"

TRANSFER_TRANSITIONS = {
    TRANSFER_STATUS_DRAFT: frozenset({TRANSFER_STATUS_PENDING, TRANSFER_STATUS_CANCELLED}),
    TRANSFER_STATUS_PENDING: frozenset({
        TRANSFER_STATUS_APPROVED,
        TRANSFER_STATUS_REJECTED,
        TRANSFER_STATUS_CANCELLED,
        TRANSFER_STATUS_IN_TRANSIT,
    }),
    TRANSFER_STATUS_APPROVED: frozenset({TRANSFER_STATUS_IN_TRANSIT}),
    TRANSFER_STATUS_IN_TRANSIT: frozenset({TRANSFER_STATUS_COMPLETED}),
    TRANSFER_STATUS_REJECTED: frozenset(),
    TRANSFER_STATUS_CANCELLED: frozenset(),
    TRANSFER_STATUS_COMPLETED: frozenset(),
}

EDITABLE_STATUSES = {TRANSFER_STATUS_DRAFT, TRANSFER_STATUS_PENDING}

TRANSFER_TYPES = {"RESTOCK", "RETURN", "RELOCATION"}
TRANSFER_PRIORITIES = {"LOW", "NORMAL", "HIGH", "URGENT"}

PROCESS_ACTIONS = {"approve", "reject", "ship"}

REASON_TRANSFER_OUT = "TRANSFER_OUT"
REASON_TRANSFER_IN = "TRANSFER_IN"

TRANSFER_HEADER_POLICY = ModelValidationPolicy(
    writable_fields=frozenset({
        "transfer_type",
        "priority",
        "notes",
        "shipping_method",
        "tracking_number",
        "expected_delivery_date",
    }),
)


# --------------------------------------------------------------------------
# Helpers
# --------------------------------------------------------------------------

def _get_locked_transfer(transfer_id: int) -> Transfer:
    transfer = lock_for_update(db.session.query(Transfer).filter_by(id=transfer_id)).first()
    if not transfer:
        raise NotFound(f"Transfer {transfer_id} not found")
    return transfer


def _require_active_location(location_id, field: str) -> StockLocation:
    location_id = check_int(location_id, field)
    location = db.session.get(StockLocation, location_id)
    if location is None:
        raise NotFound(f"Location {location_id} not found")
    if not location.is_active:
        raise ValidationError(f"Location {location.code} is inactive")
    return location


def _validate_locations(from_location_id, to_location_id) -> tuple[StockLocation, StockLocation]:
    source = _require_active_location(from_location_id, "from_location_id")
    destination = _require_active_location(to_location_id, "to_location_id")
    if source.id == destination.id:
        raise ValidationError("Source and destination locations must be different")
    return source, destination


def _build_items(from_location_id: int, items) -> list[TransferItem]:
    """
    Validate raw item payloads and build TransferItem rows.

    Source prices default to the source bin record's current prices; target
    prices default to the source prices. Bins default to the unbinned record.
    """
    if not isinstance(items, list) or not items:
        raise ValidationError("Transfer must contain at least one item")

    built: list[TransferItem] = []
    seen: set[int] = set()
    for raw in items:
        if not isinstance(raw, dict):
            raise ValidationError("Each item must be an object")
        if raw.get("product_id") is None:
            raise ValidationError("Missing required field: product_id")
        product_id = check_int(raw["product_id"], "product_id")
        if product_id in seen:
            raise ValidationError(f"Product {product_id} appears more than once")
        seen.add(product_id)

        if raw.get("quantity") is None:
            raise ValidationError("Missing required field: quantity")
        quantity = check_int(raw["quantity"], "quantity", min_value=1)

        if db.session.get(Product, product_id) is None:
            raise NotFound(f"Product {product_id} not found")

        source_bin = _bin(raw, "source_bin_code")
        source_record = ledger_service.find_inventory_record(product_id, from_location_id, source_bin)
        default_cost = source_record.cost_price_cents if source_record else 0
        default_retail = source_record.retail_price_cents if source_record else 0

        source_cost = _price(raw, "source_cost_price_cents", default_cost)
        source_retail = _price(raw, "source_retail_price_cents", default_retail)

        built.append(
            TransferItem(
                product_id=product_id,
                quantity=quantity,
                source_bin_code=source_bin,
                target_bin_code=_bin(raw, "target_bin_code"),
                source_cost_price_cents=source_cost,
                source_retail_price_cents=source_retail,
                target_cost_price_cents=_price(raw, "target_cost_price_cents", source_cost),
                target_retail_price_cents=_price(raw, "target_retail_price_cents", source_retail),
                notes=raw.get("notes"),
            )
        )
    return built


def _bin(raw: dict, field: str) -> str:
    value = raw.get(field)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string")
    value = value.strip()
    if len(value) > 64:
        raise ValidationError(f"{field} exceeds max length 64")
    return value


def _price(raw: dict, field: str, default: int) -> int:
    if raw.get(field) is None:
        return default
    return check_price_cents(raw[field], field)


def _recompute_totals(transfer: Transfer) -> None:
    """Totals are valued at target prices."""
    transfer.total_items = sum(item.quantity for item in transfer.items)
    transfer.total_cost_cents = sum(item.quantity * item.target_cost_price_cents for item in transfer.items)
    transfer.total_retail_cents = sum(item.quantity * item.target_retail_price_cents for item in transfer.items)


def _log(transfer: Transfer, action: str, actor_id: int | None, location_id: int | None = None, **details) -> None:
    append_activity(
        entity_type="transfer",
        entity_id=transfer.id,
        action=action,
        actor_id=actor_id,
        location_id=location_id or transfer.from_location_id,
        details={"transfer_number": transfer.transfer_number, "status": transfer.status, **details},
    )


# --------------------------------------------------------------------------
# Create / edit / delete
# --------------------------------------------------------------------------

def create_transfer(
    from_location_id: int,
    to_location_id: int,
    items: list[dict],
    *,
    transfer_type: str = "RESTOCK",
    priority: str = "NORMAL",
    notes: str | None = None,
    expected_delivery_date=None,
    actor_id: int | None = None,
) -> Transfer:
    """
    Create a new transfer document (status: DRAFT).

    Raises:
        ValidationError: same/inactive locations, empty or malformed items
        NotFound: unknown location or product
    """
    check_choice(transfer_type, "transfer_type", TRANSFER_TYPES)
    check_choice(priority, "priority", TRANSFER_PRIORITIES)

    def _op() -> Transfer:
        source, destination = _validate_locations(from_location_id, to_location_id)
        transfer_items = _build_items(source.id, items)

        transfer = Transfer(
            transfer_number=next_document_number(document_type="TRANSFER", prefix="TRF"),
            from_location_id=source.id,
            to_location_id=destination.id,
            transfer_type=transfer_type,
            priority=priority,
            status=TRANSFER_STATUS_DRAFT,
            notes=notes,
            expected_delivery_date=expected_delivery_date,
            requested_by=actor_id,
            created_at=utcnow(),
        )
        transfer.items = transfer_items
        _recompute_totals(transfer)

        db.session.add(transfer)
        db.session.flush()

        _log(transfer, "transfer.created", actor_id, item_count=len(transfer_items))
        return transfer

    return atomic(_op)


def update_transfer(transfer_id: int, payload: dict, actor_id: int | None = None) -> Transfer:
    """
    Edit header fields, locations and/or items (replaced wholesale).

    Only DRAFT and PENDING transfers are editable. Totals are recomputed
    whenever items change.
    """
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    payload = dict(payload)
    new_items = payload.pop("items", None)
    from_location_id = payload.pop("from_location_id", None)
    to_location_id = payload.pop("to_location_id", None)
    header = validate_payload(model=Transfer, payload=payload, policy=TRANSFER_HEADER_POLICY, partial=True)
    if "transfer_type" in header:
        check_choice(header["transfer_type"], "transfer_type", TRANSFER_TYPES)
    if "priority" in header:
        check_choice(header["priority"], "priority", TRANSFER_PRIORITIES)

    def _op() -> Transfer:
        transfer = _get_locked_transfer(transfer_id)
        if transfer.status not in EDITABLE_STATUSES:
            raise InvalidStateTransition(
                "transfer",
                transfer.status,
                "EDIT",
                message=f"Cannot edit transfer in {transfer.status} status",
            )

        if from_location_id is not None or to_location_id is not None:
            source, destination = _validate_locations(
                from_location_id if from_location_id is not None else transfer.from_location_id,
                to_location_id if to_location_id is not None else transfer.to_location_id,
            )
            transfer.from_location_id = source.id
            transfer.to_location_id = destination.id

        for key, value in header.items():
            setattr(transfer, key, value)

        if new_items is not None:
            replacement = _build_items(transfer.from_location_id, new_items)
            # Old rows must be gone before re-inserting the same products
            transfer.items = []
            db.session.flush()
            transfer.items = replacement
            _recompute_totals(transfer)

        db.session.flush()
        _log(transfer, "transfer.updated", actor_id, fields=sorted(header) + (["items"] if new_items is not None else []))
        return transfer

    return atomic(_op)


def delete_transfer(transfer_id: int, actor_id: int | None = None) -> None:
    def _op() -> None:
        transfer = _get_locked_transfer(transfer_id)
        if transfer.status != TRANSFER_STATUS_DRAFT:
            raise InvalidStateTransition(
                "transfer",
                transfer.status,
                "DELETE",
                message=f"Only DRAFT transfers can be deleted (status: {transfer.status})",
            )
        _log(transfer, "transfer.deleted", actor_id)
        db.session.delete(transfer)
        db.session.flush()

    atomic(_op)


# --------------------------------------------------------------------------
# Transitions
# --------------------------------------------------------------------------

def submit_transfer(transfer_id: int, actor_id: int | None = None) -> Transfer:
    """DRAFT -> PENDING."""
    def _op() -> Transfer:
        transfer = _get_locked_transfer(transfer_id)
        check_transition("transfer", TRANSFER_TRANSITIONS, transfer.status, TRANSFER_STATUS_PENDING)
        if not transfer.items:
            raise ValidationError("Cannot submit a transfer with no items")
        transfer.status = TRANSFER_STATUS_PENDING
        db.session.flush()
        _log(transfer, "transfer.submitted", actor_id)
        return transfer

    return atomic(_op)


def approve_transfer(transfer_id: int, actor_id: int | None = None, notes: str | None = None) -> Transfer:
    """PENDING -> APPROVED (manager action)."""
    def _op() -> Transfer:
        transfer = _get_locked_transfer(transfer_id)
        check_transition("transfer", TRANSFER_TRANSITIONS, transfer.status, TRANSFER_STATUS_APPROVED)
        transfer.status = TRANSFER_STATUS_APPROVED
        transfer.approved_by = actor_id
        transfer.approved_date = utcnow()
        db.session.flush()
        _log(transfer, "transfer.approved", actor_id, notes=notes)
        return transfer

    return atomic(_op)


def reject_transfer(transfer_id: int, reason: str | None, actor_id: int | None = None) -> Transfer:
    """PENDING -> REJECTED."""
    def _op() -> Transfer:
        transfer = _get_locked_transfer(transfer_id)
        check_transition("transfer", TRANSFER_TRANSITIONS, transfer.status, TRANSFER_STATUS_REJECTED)
        transfer.status = TRANSFER_STATUS_REJECTED
        transfer.rejected_by = actor_id
        transfer.rejected_date = utcnow()
        transfer.rejection_reason = reason
        db.session.flush()
        _log(transfer, "transfer.rejected", actor_id, reason=reason)
        return transfer

    return atomic(_op)


def cancel_transfer(transfer_id: int, reason: str | None, actor_id: int | None = None) -> Transfer:
    """DRAFT/PENDING -> CANCELLED. Nothing has left the source yet, so no stock moves."""
    def _op() -> Transfer:
        transfer = _get_locked_transfer(transfer_id)
        check_transition("transfer", TRANSFER_TRANSITIONS, transfer.status, TRANSFER_STATUS_CANCELLED)
        transfer.status = TRANSFER_STATUS_CANCELLED
        transfer.cancelled_by = actor_id
        transfer.cancelled_date = utcnow()
        transfer.cancellation_reason = reason
        db.session.flush()
        _log(transfer, "transfer.cancelled", actor_id, reason=reason)
        return transfer

    return atomic(_op)


def ship_transfer(
    transfer_id: int,
    actor_id: int | None = None,
    *,
    shipping_method: str | None = None,
    tracking_number: str | None = None,
    notes: str | None = None,
) -> Transfer:
    """
    PENDING/APPROVED -> IN_TRANSIT.

    Removes every item's quantity from its source bin. Records under a
    QUARANTINE or DAMAGED hold cannot ship and count as 0 available. The
    first InsufficientStock aborts the unit of work, so either every line
    is decremented or none is.
    """
    def _op() -> Transfer:
        transfer = _get_locked_transfer(transfer_id)
        check_transition("transfer", TRANSFER_TRANSITIONS, transfer.status, TRANSFER_STATUS_IN_TRANSIT)
        if not transfer.items:
            raise ValidationError("Cannot ship a transfer with no items")

        for item in transfer.items:
            source = ledger_service.find_inventory_record(
                item.product_id, transfer.from_location_id, item.source_bin_code
            )
            if source is not None and source.is_held:
                raise InsufficientStock(item.product_id, transfer.from_location_id, item.quantity, 0)

        for item in transfer.items:
            ledger_service.apply_delta(
                item.product_id,
                transfer.from_location_id,
                MOVEMENT_REMOVE,
                item.quantity,
                REASON_TRANSFER_OUT,
                actor_id,
                bin_code=item.source_bin_code,
                reference_type="transfer",
                reference_id=transfer.id,
                notes=f"Transfer {transfer.transfer_number} shipped",
            )

        now = utcnow()
        if transfer.approved_date is None:
            # Shipping straight from PENDING implies approval
            transfer.approved_by = actor_id
            transfer.approved_date = now
        transfer.status = TRANSFER_STATUS_IN_TRANSIT
        transfer.shipped_by = actor_id
        transfer.shipped_date = now
        transfer.shipping_method = shipping_method or transfer.shipping_method
        transfer.tracking_number = tracking_number or transfer.tracking_number
        transfer.processing_notes = notes or transfer.processing_notes
        db.session.flush()

        _log(transfer, "transfer.shipped", actor_id, shipping_method=shipping_method, tracking_number=tracking_number)
        return transfer

    return atomic(_op)


def receive_transfer(transfer_id: int, actor_id: int | None = None, notes: str | None = None) -> Transfer:
    """
    IN_TRANSIT -> COMPLETED.

    Adds every item's quantity to its target bin at the destination and
    overwrites that record's prices with the item's target prices.
    """
    def _op() -> Transfer:
        transfer = _get_locked_transfer(transfer_id)
        check_transition("transfer", TRANSFER_TRANSITIONS, transfer.status, TRANSFER_STATUS_COMPLETED)

        for item in transfer.items:
            ledger_service.apply_delta(
                item.product_id,
                transfer.to_location_id,
                MOVEMENT_ADD,
                item.quantity,
                REASON_TRANSFER_IN,
                actor_id,
                bin_code=item.target_bin_code,
                cost_price_cents=item.target_cost_price_cents,
                retail_price_cents=item.target_retail_price_cents,
                reference_type="transfer",
                reference_id=transfer.id,
                notes=f"Transfer {transfer.transfer_number} received",
            )

        now = utcnow()
        transfer.status = TRANSFER_STATUS_COMPLETED
        transfer.completed_by = actor_id
        transfer.completed_date = now
        transfer.actual_delivery_date = now
        if notes:
            transfer.processing_notes = (
                f"{transfer.processing_notes}\n{notes}" if transfer.processing_notes else notes
            )
        db.session.flush()

        _log(transfer, "transfer.received", actor_id, location_id=transfer.to_location_id)
        return transfer

    return atomic(_op)


def update_transfer_status(transfer_id: int, status: str, actor_id: int | None = None, **kwargs) -> Transfer:
    """
    Move a transfer to `status` through the matching workflow operation.

    Every status change, including the ones that move stock, goes through
    the same transition table.
    """
    handlers = {
        TRANSFER_STATUS_PENDING: lambda: submit_transfer(transfer_id, actor_id),
        TRANSFER_STATUS_APPROVED: lambda: approve_transfer(transfer_id, actor_id, notes=kwargs.get("notes")),
        TRANSFER_STATUS_REJECTED: lambda: reject_transfer(transfer_id, kwargs.get("reason") or kwargs.get("notes"), actor_id),
        TRANSFER_STATUS_CANCELLED: lambda: cancel_transfer(transfer_id, kwargs.get("reason") or kwargs.get("notes"), actor_id),
        TRANSFER_STATUS_IN_TRANSIT: lambda: ship_transfer(
            transfer_id,
            actor_id,
            shipping_method=kwargs.get("shipping_method"),
            tracking_number=kwargs.get("tracking_number"),
            notes=kwargs.get("notes"),
        ),
        TRANSFER_STATUS_COMPLETED: lambda: receive_transfer(transfer_id, actor_id, notes=kwargs.get("notes")),
    }
    handler = handlers.get(status)
    if handler is None:
        current = get_transfer(transfer_id).status
        raise InvalidStateTransition("transfer", current, str(status))
    return handler()


def process_transfer(transfer_id: int, action: str, actor_id: int | None = None, **kwargs) -> Transfer:
    """Manager processing entry point: approve | reject | ship."""
    if not action:
        raise ValidationError("action is required")
    check_choice(action, "action", PROCESS_ACTIONS)
    if action == "approve":
        return approve_transfer(transfer_id, actor_id, notes=kwargs.get("notes"))
    if action == "reject":
        return reject_transfer(transfer_id, kwargs.get("notes"), actor_id)
    return ship_transfer(
        transfer_id,
        actor_id,
        shipping_method=kwargs.get("shipping_method"),
        tracking_number=kwargs.get("tracking_number"),
        notes=kwargs.get("notes"),
    )


# --------------------------------------------------------------------------
# Reads
# --------------------------------------------------------------------------

def get_transfer(transfer_id: int) -> Transfer:
    transfer = db.session.get(Transfer, transfer_id)
    if transfer is None:
        raise NotFound(f"Transfer {transfer_id} not found")
    return transfer


def get_transfer_summary(transfer_id: int) -> dict:
    transfer = get_transfer(transfer_id)
    return {
        "transfer": transfer.to_dict(),
        "items": [item.to_dict() for item in transfer.items],
        "activity": [ev.to_dict() for ev in list_activity("transfer", transfer.id)],
    }


def list_transfers(
    *,
    status: str | None = None,
    from_location_id: int | None = None,
    to_location_id: int | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[Transfer], int]:
    q = db.session.query(Transfer)
    if status:
        q = q.filter(Transfer.status == status)
    if from_location_id is not None:
        q = q.filter(Transfer.from_location_id == from_location_id)
    if to_location_id is not None:
        q = q.filter(Transfer.to_location_id == to_location_id)
    total = q.count()
    rows = q.order_by(Transfer.created_at.desc(), Transfer.id.desc()).limit(limit).offset(offset).all()
    return rows, total
