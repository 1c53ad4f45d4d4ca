# Overview: Loyalty points ledger; customer balances move only through signed transactions.

"""
Loyalty Ledger Invariants (authoritative)

- Customer.loyalty_points == sum(LoyaltyTransaction.points) for that customer.
- Every balance change writes its LoyaltyTransaction in the same flush.
- Debits (REDEEM / EXPIRE / negative ADJUST) never drive the balance below
  zero; they fail with InsufficientLoyaltyPoints instead of clamping, so the
  sum invariant can never drift.
"""
from __future__ import annotations

import math
from decimal import Decimal

from ..errors import InsufficientLoyaltyPoints, NotFound, ValidationError
from ..extensions import db
from ..models import Customer, LoyaltyProgram, LoyaltyTier, LoyaltyTransaction
from ..models.customers import (
    LOYALTY_ADJUST,
    LOYALTY_BONUS,
    LOYALTY_EARN,
    LOYALTY_EXPIRE,
    LOYALTY_REDEEM,
    LOYALTY_TRANSACTION_TYPES,
)
from ..time_utils import utcnow
from .activity_service import append_activity
from .concurrency import atomic, lock_for_update


def get_active_program() -> LoyaltyProgram | None:
    return (
        db.session.query(LoyaltyProgram)
        .filter_by(is_active=True)
        .order_by(LoyaltyProgram.id.desc())
        .first()
    )


def resolve_tier(program: LoyaltyProgram | None, points: int) -> LoyaltyTier | None:
    """Highest tier whose required_points <= points; None when no tier qualifies."""
    if program is None:
        return None
    return (
        db.session.query(LoyaltyTier)
        .filter(LoyaltyTier.program_id == program.id, LoyaltyTier.required_points <= points)
        .order_by(LoyaltyTier.required_points.desc(), LoyaltyTier.id.desc())
        .first()
    )


def compute_earned_points(total_cents: int, points_per_unit) -> int:
    """
    floor(total / 100 * points_per_unit), computed in Decimal so cents never
    pass through binary floating point.
    """
    if total_cents <= 0:
        return 0
    earned = Decimal(total_cents) / Decimal(100) * Decimal(str(points_per_unit))
    return int(math.floor(earned))


def get_customer(customer_id: int, *, for_update: bool = False) -> Customer:
    q = db.session.query(Customer).filter_by(id=customer_id)
    if for_update:
        q = lock_for_update(q)
    customer = q.first()
    if customer is None:
        raise NotFound(f"Customer {customer_id} not found")
    return customer


def _post(
    customer: Customer,
    points: int,
    transaction_type: str,
    *,
    program: LoyaltyProgram | None = None,
    description: str | None = None,
    reference_type: str | None = None,
    reference_id: int | None = None,
    actor_id: int | None = None,
) -> LoyaltyTransaction:
    balance = customer.loyalty_points or 0
    if balance + points < 0:
        raise InsufficientLoyaltyPoints(customer.id, -points, balance)

    customer.loyalty_points = balance + points
    customer.updated_at = utcnow()

    tx = LoyaltyTransaction(
        customer_id=customer.id,
        program_id=program.id if program else None,
        points=points,
        transaction_type=transaction_type,
        description=description,
        reference_type=reference_type,
        reference_id=reference_id,
        created_by=actor_id,
        created_at=utcnow(),
    )
    db.session.add(tx)
    db.session.flush()
    return tx


def redeem_points(
    customer: Customer,
    points: int,
    *,
    reference_type: str | None = None,
    reference_id: int | None = None,
    description: str | None = None,
    actor_id: int | None = None,
) -> LoyaltyTransaction:
    """Debit points for a redemption. Requires an active program."""
    if points <= 0:
        raise ValidationError("Points to redeem must be positive")
    program = get_active_program()
    if program is None:
        raise ValidationError("No active loyalty program")
    return _post(
        customer,
        -points,
        LOYALTY_REDEEM,
        program=program,
        description=description or "Points redeemed",
        reference_type=reference_type,
        reference_id=reference_id,
        actor_id=actor_id,
    )


def earn_points(
    customer: Customer,
    total_cents: int,
    *,
    reference_type: str | None = None,
    reference_id: int | None = None,
    description: str | None = None,
    actor_id: int | None = None,
) -> int:
    """
    Credit points for a purchase and re-evaluate the customer's tier.

    Returns the points earned; 0 (and no transaction) without an active
    program or when the amount earns nothing. The tier is left untouched
    when no tier qualifies.
    """
    program = get_active_program()
    if program is None:
        return 0

    earned = compute_earned_points(total_cents, program.points_per_unit)
    if earned > 0:
        _post(
            customer,
            earned,
            LOYALTY_EARN,
            program=program,
            description=description or "Points earned",
            reference_type=reference_type,
            reference_id=reference_id,
            actor_id=actor_id,
        )

    tier = resolve_tier(program, customer.loyalty_points)
    if tier is not None and tier.id != customer.loyalty_tier_id:
        customer.loyalty_tier_id = tier.id
        db.session.flush()

    return earned


def reverse_points(
    customer: Customer,
    points: int,
    *,
    reference_type: str | None = None,
    reference_id: int | None = None,
    description: str | None = None,
    actor_id: int | None = None,
) -> int:
    """
    Take back up to `points` previously earned, bounded by the current
    balance. Returns the points actually reversed.
    """
    reversed_points = min(points, customer.loyalty_points or 0)
    if reversed_points <= 0:
        return 0
    _post(
        customer,
        -reversed_points,
        LOYALTY_ADJUST,
        program=get_active_program(),
        description=description or "Points reversed",
        reference_type=reference_type,
        reference_id=reference_id,
        actor_id=actor_id,
    )
    return reversed_points


def record_loyalty_transaction(
    customer_id: int,
    points,
    transaction_type: str,
    description: str | None = None,
    actor_id: int | None = None,
) -> LoyaltyTransaction:
    """
    Manual points entry.

    EARN / BONUS credit |points|, REDEEM / EXPIRE debit |points|, ADJUST is
    applied with its sign. Debits beyond the balance fail.
    """
    if transaction_type not in LOYALTY_TRANSACTION_TYPES:
        raise ValidationError(
            f"transaction_type must be one of: {', '.join(sorted(LOYALTY_TRANSACTION_TYPES))}"
        )
    if not isinstance(points, int) or isinstance(points, bool) or points == 0:
        raise ValidationError("points must be a non-zero integer")

    if transaction_type in (LOYALTY_EARN, LOYALTY_BONUS):
        signed = abs(points)
    elif transaction_type in (LOYALTY_REDEEM, LOYALTY_EXPIRE):
        signed = -abs(points)
    else:
        signed = points

    def _op() -> LoyaltyTransaction:
        customer = get_customer(customer_id, for_update=True)
        program = get_active_program()
        tx = _post(
            customer,
            signed,
            transaction_type,
            program=program,
            description=description,
            reference_type="manual",
            actor_id=actor_id,
        )
        if transaction_type in (LOYALTY_EARN, LOYALTY_BONUS, LOYALTY_ADJUST):
            tier = resolve_tier(program, customer.loyalty_points)
            if tier is not None and tier.id != customer.loyalty_tier_id:
                customer.loyalty_tier_id = tier.id
                db.session.flush()

        append_activity(
            entity_type="customer",
            entity_id=customer.id,
            action="loyalty.transaction_recorded",
            actor_id=actor_id,
            details={"transaction_type": transaction_type, "points": signed, "balance": customer.loyalty_points},
        )
        return tx

    return atomic(_op)


def list_loyalty_transactions(customer_id: int, limit: int = 100) -> list[LoyaltyTransaction]:
    get_customer(customer_id)
    return (
        db.session.query(LoyaltyTransaction)
        .filter_by(customer_id=customer_id)
        .order_by(LoyaltyTransaction.created_at.desc(), LoyaltyTransaction.id.desc())
        .limit(limit)
        .all()
    )


def transaction_sum(customer_id: int) -> int:
    total = (
        db.session.query(db.func.coalesce(db.func.sum(LoyaltyTransaction.points), 0))
        .filter_by(customer_id=customer_id)
        .scalar()
    )
    return int(total or 0)


def verify_customer_balance(customer_id: int) -> dict:
    """Compare the stored balance with the signed sum of its transactions."""
    customer = get_customer(customer_id)
    ledger_total = transaction_sum(customer_id)
    return {
        "customer_id": customer.id,
        "stored_points": customer.loyalty_points,
        "ledger_points": ledger_total,
        "consistent": customer.loyalty_points == ledger_total,
    }
