# Overview: Customer returns; the correction document for an immutable sale.

"""
Return service.

LIFECYCLE:
1. PENDING: Return created, awaiting manager approval
2. APPROVED: Manager approved, ready to process
3. COMPLETED: Stock restored, loyalty reversed, refund processed
4. REJECTED: Manager rejected return request

WHY: Sales are immutable. Returned goods come back into stock through a
ledger ADD at the selling store (GOOD condition only) and points earned on
the refunded amount are taken back, all in the completing unit of work.
"""
from __future__ import annotations

from ..errors import InvalidStateTransition, NotFound, ValidationError
from ..extensions import db
from ..models import Return, ReturnItem, Sale, SaleItem
from ..models.inventory import MOVEMENT_ADD
from ..time_utils import utcnow
from ..validation import check_choice, check_int
from . import ledger_service, loyalty_service
from .activity_service import append_activity
from .concurrency import atomic, lock_for_update
from .document_service import next_document_number
from .state_machine import check_transition


RETURN_STATUS_PENDING = "PENDING"
RETURN_STATUS_APPROVED = "APPROVED"
RETURN_STATUS_COMPLETED = "COMPLETED"
RETURN_STATUS_REJECTED = "REJECTED"

RETURN_TRANSITIONS = {
    RETURN_STATUS_PENDING: frozenset({RETURN_STATUS_APPROVED, RETURN_STATUS_REJECTED, RETURN_STATUS_COMPLETED}),
    RETURN_STATUS_APPROVED: frozenset({RETURN_STATUS_COMPLETED, RETURN_STATUS_REJECTED}),
    RETURN_STATUS_COMPLETED: frozenset(),
    RETURN_STATUS_REJECTED: frozenset(),
}

REFUND_PENDING = "PENDING"
REFUND_PROCESSED = "PROCESSED"
REFUND_REJECTED = "REJECTED"

CONDITION_GOOD = "GOOD"
CONDITION_DAMAGED = "DAMAGED"
RETURN_CONDITIONS = {CONDITION_GOOD, CONDITION_DAMAGED}

REASON_RETURN = "RETURN"


def _get_locked_return(return_id: int) -> Return:
    ret = lock_for_update(db.session.query(Return).filter_by(id=return_id)).first()
    if not ret:
        raise NotFound(f"Return {return_id} not found")
    return ret


def _already_returned(sale_item_id: int) -> int:
    """Quantity already claimed by returns that were not rejected."""
    total = (
        db.session.query(db.func.coalesce(db.func.sum(ReturnItem.quantity), 0))
        .join(Return, Return.id == ReturnItem.return_id)
        .filter(
            ReturnItem.sale_item_id == sale_item_id,
            Return.status != RETURN_STATUS_REJECTED,
        )
        .scalar()
    )
    return int(total or 0)


def _log(ret: Return, action: str, actor_id: int | None, **details) -> None:
    append_activity(
        entity_type="return",
        entity_id=ret.id,
        action=action,
        actor_id=actor_id,
        location_id=ret.store_id,
        details={"return_number": ret.return_number, "status": ret.status, **details},
    )


def create_return(
    sale_id: int,
    items: list[dict],
    *,
    reason: str | None = None,
    notes: str | None = None,
    refund_method: str | None = None,
    actor_id: int | None = None,
) -> Return:
    """
    Open a PENDING return against a sale.

    Each entry is {sale_item_id, quantity, condition?, reason?}. Quantity
    may not exceed what was sold minus what earlier non-rejected returns
    already claimed.
    """
    if not isinstance(items, list) or not items:
        raise ValidationError("Return must contain at least one item")

    requested = []
    for raw in items:
        if not isinstance(raw, dict):
            raise ValidationError("Each item must be an object")
        if raw.get("sale_item_id") is None or raw.get("quantity") is None:
            raise ValidationError("Each item requires sale_item_id and quantity")
        condition = raw.get("condition") or CONDITION_GOOD
        check_choice(condition, "condition", RETURN_CONDITIONS)
        requested.append((
            check_int(raw["sale_item_id"], "sale_item_id"),
            check_int(raw["quantity"], "quantity", min_value=1),
            condition,
            raw.get("reason") or "OTHER",
        ))

    def _op() -> Return:
        sale = db.session.get(Sale, check_int(sale_id, "sale_id"))
        if sale is None:
            raise NotFound(f"Sale {sale_id} not found")

        ret = Return(
            return_number=next_document_number(
                document_type="RETURN",
                prefix="RET",
                period_format="%y%m%d",
                pad=3,
            ),
            sale_id=sale.id,
            store_id=sale.store_id,
            customer_id=sale.customer_id,
            status=RETURN_STATUS_PENDING,
            refund_status=REFUND_PENDING,
            refund_method=refund_method or sale.payment_method,
            reason=reason,
            notes=notes,
            created_by=actor_id,
            created_at=utcnow(),
        )

        claimed: dict[int, int] = {}
        for sale_item_id, quantity, condition, item_reason in requested:
            sale_item = db.session.get(SaleItem, sale_item_id)
            if sale_item is None or sale_item.sale_id != sale.id:
                raise NotFound(f"Sale item {sale_item_id} not found on sale {sale.receipt_number}")

            claimed[sale_item_id] = claimed.get(sale_item_id, 0) + quantity
            returnable = sale_item.quantity - _already_returned(sale_item_id)
            if claimed[sale_item_id] > returnable:
                raise ValidationError(
                    f"Cannot return {claimed[sale_item_id]} of sale item {sale_item_id}; {returnable} returnable",
                    details={"sale_item_id": sale_item_id, "requested": claimed[sale_item_id], "returnable": returnable},
                )

            ret.items.append(
                ReturnItem(
                    sale_item_id=sale_item.id,
                    product_id=sale_item.product_id,
                    quantity=quantity,
                    unit_price_cents=sale_item.unit_price_cents,
                    # Pro-rate the line discount
                    total_price_cents=sale_item.total_price_cents * quantity // sale_item.quantity,
                    condition=condition,
                    reason=item_reason,
                )
            )

        ret.subtotal_cents = sum(i.unit_price_cents * i.quantity for i in ret.items)
        ret.total_cents = sum(i.total_price_cents for i in ret.items)

        db.session.add(ret)
        db.session.flush()
        _log(ret, "return.created", actor_id, sale_id=sale.id, total_cents=ret.total_cents)
        return ret

    return atomic(_op)


def approve_return(return_id: int, actor_id: int | None = None, notes: str | None = None) -> Return:
    def _op() -> Return:
        ret = _get_locked_return(return_id)
        check_transition("return", RETURN_TRANSITIONS, ret.status, RETURN_STATUS_APPROVED)
        ret.status = RETURN_STATUS_APPROVED
        ret.refund_status = REFUND_PENDING
        ret.approved_by = actor_id
        ret.approved_at = utcnow()
        if notes:
            ret.notes = notes
        db.session.flush()
        _log(ret, "return.approved", actor_id)
        return ret

    return atomic(_op)


def reject_return(return_id: int, reason: str | None = None, actor_id: int | None = None) -> Return:
    def _op() -> Return:
        ret = _get_locked_return(return_id)
        check_transition("return", RETURN_TRANSITIONS, ret.status, RETURN_STATUS_REJECTED)
        ret.status = RETURN_STATUS_REJECTED
        ret.refund_status = REFUND_REJECTED
        ret.rejected_by = actor_id
        ret.rejected_at = utcnow()
        ret.rejection_reason = reason
        db.session.flush()
        _log(ret, "return.rejected", actor_id, reason=reason)
        return ret

    return atomic(_op)


def _points_to_reverse(ret: Return, sale: Sale) -> int:
    """
    Points earned on the refunded amount, never more than the sale earned
    minus what earlier completed returns already took back.
    """
    program = loyalty_service.get_active_program()
    if program is None or not sale.loyalty_points_earned:
        return 0
    already = (
        db.session.query(db.func.coalesce(db.func.sum(Return.loyalty_points_reversed), 0))
        .filter(Return.sale_id == sale.id, Return.id != ret.id)
        .scalar()
    )
    remaining = sale.loyalty_points_earned - int(already or 0)
    earned_on_refund = loyalty_service.compute_earned_points(ret.total_cents, program.points_per_unit)
    return max(0, min(earned_on_refund, remaining))


def complete_return(return_id: int, actor_id: int | None = None, notes: str | None = None) -> Return:
    """
    PENDING/APPROVED -> COMPLETED.

    GOOD items go back into the sale's inventory record (ledger ADD, reason
    RETURN); DAMAGED items are written off and not restocked. Loyalty
    points earned on the refunded amount are reversed, bounded by the
    customer's current balance.
    """
    def _op() -> Return:
        ret = _get_locked_return(return_id)
        check_transition("return", RETURN_TRANSITIONS, ret.status, RETURN_STATUS_COMPLETED)
        sale = ret.sale

        restocked = 0
        for item in ret.items:
            if item.condition != CONDITION_GOOD:
                continue
            delta = ledger_service.apply_delta_to_record(
                item.sale_item.inventory_record_id,
                MOVEMENT_ADD,
                item.quantity,
                REASON_RETURN,
                actor_id,
                reference_type="return",
                reference_id=ret.id,
                notes=f"Return #{ret.return_number}",
            )
            item.movement_id = delta.movement.id
            restocked += item.quantity

        if ret.customer_id is not None:
            points = _points_to_reverse(ret, sale)
            if points:
                customer = loyalty_service.get_customer(ret.customer_id, for_update=True)
                ret.loyalty_points_reversed = loyalty_service.reverse_points(
                    customer,
                    points,
                    reference_type="return",
                    reference_id=ret.id,
                    description=f"Points reversed for return #{ret.return_number}",
                    actor_id=actor_id,
                )

        ret.status = RETURN_STATUS_COMPLETED
        ret.refund_status = REFUND_PROCESSED
        ret.completed_by = actor_id
        ret.completed_at = utcnow()
        if notes:
            ret.notes = notes
        db.session.flush()

        _log(ret, "return.completed", actor_id, restocked=restocked, loyalty_points_reversed=ret.loyalty_points_reversed)
        return ret

    return atomic(_op)


def update_return_status(return_id: int, status: str, actor_id: int | None = None, notes: str | None = None) -> Return:
    if not status:
        raise ValidationError("Status is required")
    if status == RETURN_STATUS_APPROVED:
        return approve_return(return_id, actor_id, notes=notes)
    if status == RETURN_STATUS_REJECTED:
        return reject_return(return_id, notes, actor_id)
    if status == RETURN_STATUS_COMPLETED:
        return complete_return(return_id, actor_id, notes=notes)
    check_choice(status, "status", RETURN_TRANSITIONS.keys())
    # Only PENDING is left, and nothing moves back to it
    raise InvalidStateTransition("return", get_return(return_id).status, status)


def get_return(return_id: int) -> Return:
    ret = db.session.get(Return, return_id)
    if ret is None:
        raise NotFound(f"Return {return_id} not found")
    return ret


def get_return_summary(return_id: int) -> dict:
    ret = get_return(return_id)
    return {
        "return": ret.to_dict(),
        "items": [item.to_dict() for item in ret.items],
    }
