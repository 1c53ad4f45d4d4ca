# Overview: Pytest coverage for purchase orders and goods receiving.

import pytest

from stockledger.errors import InvalidStateTransition, NotFound, OverReceipt, ValidationError
from stockledger.models import MovementEntry, PurchaseOrderItem
from stockledger.services import ledger_service, purchase_service


@pytest.fixture
def ordered_po(db_session, supplier, warehouse, make_product):
    """ORDERED purchase order: 10 x SKU-A at 250, 4 x SKU-B at 1000."""
    a = make_product("SKU-A")
    b = make_product("SKU-B")
    po = purchase_service.create_purchase_order(
        supplier.id,
        warehouse.id,
        [
            {"product_id": a.id, "ordered_quantity": 10, "unit_price_cents": 250},
            {"product_id": b.id, "ordered_quantity": 4, "unit_price_cents": 1000},
        ],
        actor_id=1,
    )
    purchase_service.submit_purchase_order(po.id, actor_id=1)
    return po


def _line(po, quantity):
    return next(item for item in po.items if item.ordered_quantity == quantity)


class TestPurchaseOrderCreate:

    def test_create_draft_with_total(self, db_session, supplier, warehouse, product):
        po = purchase_service.create_purchase_order(
            supplier.id,
            warehouse.id,
            [{"product_id": product.id, "ordered_quantity": 3, "unit_price_cents": 199}],
        )

        assert po.status == "DRAFT"
        assert po.order_number.startswith("PO-")
        assert po.total_amount_cents == 597
        assert po.items[0].received_quantity == 0

    def test_store_is_not_a_receiving_location(self, db_session, supplier, store, product):
        with pytest.raises(ValidationError):
            purchase_service.create_purchase_order(
                supplier.id,
                store.id,
                [{"product_id": product.id, "ordered_quantity": 1, "unit_price_cents": 100}],
            )

    def test_unknown_supplier(self, db_session, warehouse, product):
        with pytest.raises(NotFound):
            purchase_service.create_purchase_order(
                999999,
                warehouse.id,
                [{"product_id": product.id, "ordered_quantity": 1, "unit_price_cents": 100}],
            )

    def test_submit_sets_ordered_date(self, db_session, ordered_po):
        assert ordered_po.status == "ORDERED"
        assert ordered_po.ordered_date is not None


class TestReceiving:

    def test_partial_then_full(self, db_session, ordered_po, warehouse):
        line_a = _line(ordered_po, 10)
        line_b = _line(ordered_po, 4)

        purchase_service.receive_purchase_order(ordered_po.id, [{"id": line_a.id, "quantity": 6}], actor_id=2)

        assert ordered_po.status == "PARTIAL"
        assert ledger_service.get_quantity_on_hand(line_a.product_id, warehouse.id) == 6

        purchase_service.receive_purchase_order(
            ordered_po.id,
            [{"id": line_a.id, "quantity": 4}, {"id": line_b.id, "quantity": 4}],
            notes="Second truck",
            actor_id=2,
        )

        assert ordered_po.status == "RECEIVED"
        assert ordered_po.delivered_date is not None
        assert "Second truck" in ordered_po.notes
        assert ledger_service.get_quantity_on_hand(line_a.product_id, warehouse.id) == 10
        assert ledger_service.get_quantity_on_hand(line_b.product_id, warehouse.id) == 4

    def test_receipt_overwrites_cost_price(self, db_session, ordered_po, warehouse, stock):
        line_a = _line(ordered_po, 10)
        existing = stock(line_a.product, warehouse, 1, cost_price_cents=999)

        purchase_service.receive_purchase_order(ordered_po.id, [{"id": line_a.id, "quantity": 2}])

        record = ledger_service.get_inventory_record(existing.id)
        assert record.cost_price_cents == 250
        assert record.quantity == 3
        movement = ledger_service.list_movements(record.id)[0]
        assert movement.reason_code == "PURCHASE_RECEIPT"
        assert movement.reference_type == "purchase_order"
        assert movement.reference_id == ordered_po.id

    def test_over_receipt_changes_nothing(self, db_session, ordered_po, warehouse):
        line_a = _line(ordered_po, 10)
        line_b = _line(ordered_po, 4)
        purchase_service.receive_purchase_order(ordered_po.id, [{"id": line_a.id, "quantity": 8}])
        movements_before = db_session.query(MovementEntry).count()

        with pytest.raises(OverReceipt) as exc:
            purchase_service.receive_purchase_order(
                ordered_po.id,
                [{"id": line_b.id, "quantity": 1}, {"id": line_a.id, "quantity": 3}],
            )

        assert exc.value.details == {
            "purchase_order_item_id": line_a.id,
            "ordered": 10,
            "received": 8,
            "requested": 3,
        }
        db_session.expire_all()
        assert db_session.get(PurchaseOrderItem, line_a.id).received_quantity == 8
        assert db_session.get(PurchaseOrderItem, line_b.id).received_quantity == 0
        assert ledger_service.get_quantity_on_hand(line_b.product_id, warehouse.id) == 0
        assert db_session.query(MovementEntry).count() == movements_before
        assert purchase_service.get_purchase_order(ordered_po.id).status == "PARTIAL"

    def test_rejected_receipt_is_idempotent(self, db_session, ordered_po):
        line_a = _line(ordered_po, 10)

        for _ in range(2):
            with pytest.raises(OverReceipt):
                purchase_service.receive_purchase_order(ordered_po.id, [{"id": line_a.id, "quantity": 11}])

        db_session.expire_all()
        assert db_session.get(PurchaseOrderItem, line_a.id).received_quantity == 0
        assert purchase_service.get_purchase_order(ordered_po.id).status == "ORDERED"

    def test_draft_cannot_receive(self, db_session, supplier, warehouse, product):
        po = purchase_service.create_purchase_order(
            supplier.id,
            warehouse.id,
            [{"product_id": product.id, "ordered_quantity": 1, "unit_price_cents": 100}],
        )

        with pytest.raises(InvalidStateTransition):
            purchase_service.receive_purchase_order(po.id, [{"id": po.items[0].id, "quantity": 1}])

    def test_received_order_cannot_receive_again(self, db_session, ordered_po):
        receipts = [{"id": item.id, "quantity": item.ordered_quantity} for item in ordered_po.items]
        purchase_service.receive_purchase_order(ordered_po.id, receipts)

        with pytest.raises(InvalidStateTransition):
            purchase_service.receive_purchase_order(ordered_po.id, [{"id": receipts[0]["id"], "quantity": 1}])

    def test_line_from_other_order(self, db_session, ordered_po):
        with pytest.raises(NotFound):
            purchase_service.receive_purchase_order(ordered_po.id, [{"id": 999999, "quantity": 1}])

    @pytest.mark.parametrize("items", [[], None, [{"id": 1}], [{"id": 1, "quantity": 0}]])
    def test_malformed_receipts(self, db_session, ordered_po, items):
        with pytest.raises(ValidationError):
            purchase_service.receive_purchase_order(ordered_po.id, items)


class TestCancel:

    def test_cancel_ordered(self, db_session, ordered_po):
        purchase_service.cancel_purchase_order(ordered_po.id, reason="Supplier out of stock")

        assert ordered_po.status == "CANCELLED"
        assert ordered_po.cancelled_date is not None

    def test_cancel_after_receiving_rejected(self, db_session, ordered_po):
        line_a = _line(ordered_po, 10)
        purchase_service.receive_purchase_order(ordered_po.id, [{"id": line_a.id, "quantity": 1}])

        with pytest.raises(InvalidStateTransition):
            purchase_service.cancel_purchase_order(ordered_po.id)
