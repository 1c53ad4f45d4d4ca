# Overview: Checkout coordinator; one sale, its stock removals, payment and loyalty in one unit of work.

"""
Point-of-sale checkout.

WHY: A sale touches four ledgers at once (stock, sale documents, payments,
loyalty points). Either all of them change or none does: a failed line,
an over-redemption or a stale record version rolls the whole checkout back.

ORDER OF WORK:
0. Validate everything that can be validated up front (store, customer,
   totals, per-record availability, redeemable points). Nothing is written
   before all of it passes.
1. Allocate the receipt number (S{YYMMDD}-{NNNN}).
2. Write the Sale header.
3. Per line: SaleItem + ledger REMOVE (reason SALE).
4. Payment when something was paid.
5. Loyalty redemption (REDEEM).
6. Loyalty earning (EARN) and tier re-evaluation.
"""
from __future__ import annotations

from collections import OrderedDict

from flask import current_app

from ..errors import InsufficientLoyaltyPoints, InsufficientStock, NotFound, ValidationError
from ..extensions import db
from ..models import InventoryRecord, Sale, SaleItem, Payment, StockLocation
from ..models.inventory import MOVEMENT_REMOVE
from ..models.sales import PAYMENT_STATUS_PAID, PAYMENT_STATUS_PARTIALLY_PAID, PAYMENT_STATUS_PENDING
from ..time_utils import utcnow
from ..validation import check_int, check_price_cents
from . import ledger_service, loyalty_service
from .activity_service import append_activity
from .concurrency import atomic, lock_for_update
from .document_service import next_document_number


REASON_SALE = "SALE"


def _parse_lines(items) -> list[dict]:
    if not isinstance(items, list) or not items:
        raise ValidationError("Store ID and items are required")

    lines = []
    for raw in items:
        if not isinstance(raw, dict):
            raise ValidationError("Each item must be an object")
        for field in ("product_id", "inventory_record_id", "quantity", "unit_price_cents"):
            if raw.get(field) is None:
                raise ValidationError(f"Missing required field: {field}")
        quantity = check_int(raw["quantity"], "quantity", min_value=1)
        unit_price = check_price_cents(raw["unit_price_cents"], "unit_price_cents")
        discount = check_price_cents(raw.get("discount_cents") or 0, "discount_cents")
        if discount > unit_price * quantity:
            raise ValidationError("discount_cents cannot exceed the line amount")
        lines.append({
            "product_id": check_int(raw["product_id"], "product_id"),
            "inventory_record_id": check_int(raw["inventory_record_id"], "inventory_record_id"),
            "quantity": quantity,
            "unit_price_cents": unit_price,
            "discount_cents": discount,
        })
    return lines


def _check_totals(subtotal: int, tax: int, discount: int, total: int) -> None:
    if subtotal == 0 and tax == 0 and discount == 0 and total == 0:
        raise ValidationError("Sale totals cannot all be zero")
    tolerance = current_app.config.get("CHECKOUT_TOTAL_TOLERANCE_CENTS", 1)
    if abs(subtotal + tax - discount - total) > tolerance:
        raise ValidationError(
            "subtotal + tax - discount must equal total",
            details={
                "subtotal_cents": subtotal,
                "tax_cents": tax,
                "discount_cents": discount,
                "total_cents": total,
            },
        )


def _payment_status(amount_paid: int, total: int) -> str:
    if amount_paid >= total:
        return PAYMENT_STATUS_PAID
    if amount_paid > 0:
        return PAYMENT_STATUS_PARTIALLY_PAID
    return PAYMENT_STATUS_PENDING


def _check_availability(store: StockLocation, lines: list[dict]) -> None:
    """
    Aggregate requested quantity per inventory record and compare with
    what that record can sell. Records are row-locked for the rest of the
    unit of work.
    """
    requested: "OrderedDict[int, int]" = OrderedDict()
    for line in lines:
        requested[line["inventory_record_id"]] = requested.get(line["inventory_record_id"], 0) + line["quantity"]

    for record_id, qty in requested.items():
        record = lock_for_update(db.session.query(InventoryRecord).filter_by(id=record_id)).first()
        if record is None:
            raise NotFound(f"Inventory item not found: {record_id}")
        if record.location_id != store.id:
            raise ValidationError(f"Inventory item {record_id} does not belong to store {store.code}")
        mismatched = [line["product_id"] for line in lines
                      if line["inventory_record_id"] == record_id and line["product_id"] != record.product_id]
        if mismatched:
            raise ValidationError(f"Inventory item {record_id} does not hold product {mismatched[0]}")
        if record.available_quantity < qty:
            raise InsufficientStock(record.product_id, store.id, qty, record.available_quantity)


def checkout(
    store_id: int,
    items: list[dict],
    *,
    customer_id: int | None = None,
    subtotal_cents=0,
    tax_cents=0,
    discount_cents=0,
    total_cents=0,
    payment_method: str | None = None,
    amount_paid_cents=0,
    reference_number: str | None = None,
    notes: str | None = None,
    apply_loyalty_points: bool = False,
    loyalty_points_used=0,
    actor_id: int | None = None,
) -> Sale:
    """
    Complete a sale.

    Raises:
        ValidationError: malformed input, inactive store, inconsistent totals
        NotFound: unknown store, customer or inventory record
        InsufficientStock: a record cannot cover the requested quantity
        InsufficientLoyaltyPoints: redemption exceeds the customer's balance
        ConcurrencyConflict: a record kept changing underneath the checkout
    """
    if store_id is None:
        raise ValidationError("Store ID and items are required")
    store_id = check_int(store_id, "store_id")
    lines = _parse_lines(items)

    subtotal = check_int(subtotal_cents or 0, "subtotal_cents", min_value=0)
    tax = check_int(tax_cents or 0, "tax_cents", min_value=0)
    discount = check_int(discount_cents or 0, "discount_cents", min_value=0)
    total = check_int(total_cents or 0, "total_cents", min_value=0)
    amount_paid = check_int(amount_paid_cents or 0, "amount_paid_cents", min_value=0)
    points_to_redeem = check_int(loyalty_points_used or 0, "loyalty_points_used", min_value=0)
    _check_totals(subtotal, tax, discount, total)

    if not payment_method:
        raise ValidationError("Missing required field: payment_method")
    if points_to_redeem and not apply_loyalty_points:
        points_to_redeem = 0
    if points_to_redeem and customer_id is None:
        raise ValidationError("Loyalty points can only be redeemed for a customer")

    def _op() -> Sale:
        # 0. Validate before any mutation
        store = db.session.get(StockLocation, store_id)
        if store is None:
            raise NotFound("Store not found")
        if not store.is_store:
            raise ValidationError(f"Location {store.code} is not a store")
        if not store.is_active:
            raise ValidationError(f"Store {store.code} is inactive")

        customer = None
        if customer_id is not None:
            customer = loyalty_service.get_customer(check_int(customer_id, "customer_id"), for_update=True)

        _check_availability(store, lines)

        if points_to_redeem:
            if loyalty_service.get_active_program() is None:
                raise ValidationError("No active loyalty program")
            if points_to_redeem > customer.loyalty_points:
                raise InsufficientLoyaltyPoints(customer.id, points_to_redeem, customer.loyalty_points)

        # 1. Receipt number
        receipt_number = next_document_number(
            document_type="SALE",
            prefix="S",
            period_format="%y%m%d",
            separator="",
        )

        # 2. Header
        sale = Sale(
            receipt_number=receipt_number,
            store_id=store.id,
            customer_id=customer.id if customer else None,
            subtotal_cents=subtotal,
            tax_cents=tax,
            discount_cents=discount,
            total_cents=total,
            amount_paid_cents=amount_paid,
            payment_method=payment_method,
            payment_status=_payment_status(amount_paid, total),
            loyalty_points_used=points_to_redeem,
            notes=notes,
            created_by=actor_id,
            sale_date=utcnow(),
        )
        db.session.add(sale)
        db.session.flush()

        # 3. Lines and stock removal
        for line in lines:
            delta = ledger_service.apply_delta_to_record(
                line["inventory_record_id"],
                MOVEMENT_REMOVE,
                line["quantity"],
                REASON_SALE,
                actor_id,
                reference_type="sale",
                reference_id=sale.id,
                notes=f"Sale #{receipt_number}",
            )
            db.session.add(
                SaleItem(
                    sale_id=sale.id,
                    product_id=line["product_id"],
                    inventory_record_id=line["inventory_record_id"],
                    quantity=line["quantity"],
                    unit_price_cents=line["unit_price_cents"],
                    discount_cents=line["discount_cents"],
                    total_price_cents=line["unit_price_cents"] * line["quantity"] - line["discount_cents"],
                    movement_id=delta.movement.id,
                )
            )

        # 4. Payment
        if amount_paid > 0:
            db.session.add(
                Payment(
                    sale_id=sale.id,
                    amount_cents=amount_paid,
                    payment_method=payment_method,
                    reference_number=reference_number,
                    processed_by=actor_id,
                    processed_at=utcnow(),
                )
            )

        # 5. Redemption
        if customer is not None and points_to_redeem:
            loyalty_service.redeem_points(
                customer,
                points_to_redeem,
                reference_type="sale",
                reference_id=sale.id,
                description=f"Points redeemed for sale #{receipt_number}",
                actor_id=actor_id,
            )

        # 6. Earning
        if customer is not None:
            sale.loyalty_points_earned = loyalty_service.earn_points(
                customer,
                total,
                reference_type="sale",
                reference_id=sale.id,
                description=f"Points earned from sale #{receipt_number}",
                actor_id=actor_id,
            )

        db.session.flush()

        append_activity(
            entity_type="sale",
            entity_id=sale.id,
            action="sale.created",
            actor_id=actor_id,
            location_id=store.id,
            details={
                "receipt_number": receipt_number,
                "customer_id": sale.customer_id,
                "total_cents": total,
                "payment_method": payment_method,
                "item_count": len(lines),
            },
        )
        return sale

    return atomic(_op)


def get_sale(sale_id: int) -> Sale:
    sale = db.session.get(Sale, sale_id)
    if sale is None:
        raise NotFound(f"Sale {sale_id} not found")
    return sale


def get_sale_receipt(sale_id: int) -> dict:
    sale = get_sale(sale_id)
    return {
        "sale": sale.to_dict(),
        "items": [item.to_dict() for item in sale.items],
        "payments": [payment.to_dict() for payment in sale.payments],
    }
