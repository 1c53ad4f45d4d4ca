# Overview: Pytest coverage for customer returns: restock, loyalty reversal and status flow.

"""
Return Tests

Verifies:
1. Returned GOOD items go back into the selling store's stock
2. DAMAGED items are not restocked
3. Loyalty earned on the refunded amount is taken back
4. The original sale is never modified
5. Return quantity is bounded by what was sold
"""

import pytest

from stockledger.errors import InvalidStateTransition, NotFound, ValidationError
from stockledger.models import Sale
from stockledger.services import checkout_service, ledger_service, loyalty_service, return_service


@pytest.fixture
def sold(db_session, product, store, stock, customer, loyalty_program):
    """Customer bought 4 units at 2500 from a store holding 10; earned 100 points."""
    record = stock(product, store, 10)
    sale = checkout_service.checkout(
        store.id,
        [{
            "product_id": product.id,
            "inventory_record_id": record.id,
            "quantity": 4,
            "unit_price_cents": 2500,
        }],
        customer_id=customer.id,
        subtotal_cents=10000,
        total_cents=10000,
        payment_method="CARD",
        amount_paid_cents=10000,
        actor_id=1,
    )
    return sale, record


class TestReturnFlow:

    def test_complete_restocks_good_items(self, db_session, sold):
        sale, record = sold
        ret = return_service.create_return(
            sale.id,
            [{"sale_item_id": sale.items[0].id, "quantity": 2, "condition": "GOOD"}],
            reason="Wrong size",
            actor_id=2,
        )

        assert ret.status == "PENDING"
        assert ret.return_number.startswith("RET-")
        assert ret.return_number.endswith("-001")
        assert ret.total_cents == 5000

        return_service.approve_return(ret.id, actor_id=3)
        return_service.complete_return(ret.id, actor_id=3)

        assert ret.status == "COMPLETED"
        assert ret.refund_status == "PROCESSED"
        record = ledger_service.get_inventory_record(record.id)
        assert record.quantity == 6 + 2
        movement = ledger_service.list_movements(record.id)[0]
        assert movement.movement_type == "ADD"
        assert movement.reason_code == "RETURN"
        assert ret.items[0].movement_id == movement.id

    def test_damaged_items_are_not_restocked(self, db_session, sold):
        sale, record = sold
        ret = return_service.create_return(
            sale.id,
            [{"sale_item_id": sale.items[0].id, "quantity": 1, "condition": "DAMAGED"}],
        )

        return_service.complete_return(ret.id)

        assert ledger_service.get_inventory_record(record.id).quantity == 6
        assert ret.items[0].movement_id is None

    def test_loyalty_reversed_on_refund(self, db_session, sold, customer):
        sale, _ = sold
        assert sale.loyalty_points_earned == 100
        ret = return_service.create_return(sale.id, [{"sale_item_id": sale.items[0].id, "quantity": 1}])

        return_service.complete_return(ret.id)

        assert ret.loyalty_points_reversed == 25
        assert loyalty_service.get_customer(customer.id).loyalty_points == 75
        assert loyalty_service.verify_customer_balance(customer.id)["consistent"] is True

    def test_reversal_capped_at_balance(self, db_session, sold, customer):
        sale, _ = sold
        loyalty_service.record_loyalty_transaction(customer.id, 90, "REDEEM")
        ret = return_service.create_return(sale.id, [{"sale_item_id": sale.items[0].id, "quantity": 4}])

        return_service.complete_return(ret.id)

        assert ret.loyalty_points_reversed == 10
        assert loyalty_service.get_customer(customer.id).loyalty_points == 0

    def test_sale_is_not_modified(self, db_session, sold):
        sale, _ = sold
        before = sale.to_dict()
        ret = return_service.create_return(sale.id, [{"sale_item_id": sale.items[0].id, "quantity": 4}])

        return_service.complete_return(ret.id)

        db_session.expire_all()
        assert db_session.get(Sale, sale.id).to_dict() == before

    def test_reject(self, db_session, sold):
        sale, record = sold
        ret = return_service.create_return(sale.id, [{"sale_item_id": sale.items[0].id, "quantity": 1}])

        return_service.reject_return(ret.id, "Outside return window", actor_id=4)

        assert ret.status == "REJECTED"
        assert ret.refund_status == "REJECTED"
        assert ret.rejection_reason == "Outside return window"
        assert ledger_service.get_inventory_record(record.id).quantity == 6


class TestReturnValidation:

    def test_cannot_return_more_than_sold(self, db_session, sold):
        sale, _ = sold

        with pytest.raises(ValidationError):
            return_service.create_return(sale.id, [{"sale_item_id": sale.items[0].id, "quantity": 5}])

    def test_earlier_returns_count_against_quantity(self, db_session, sold):
        sale, _ = sold
        return_service.create_return(sale.id, [{"sale_item_id": sale.items[0].id, "quantity": 3}])

        with pytest.raises(ValidationError):
            return_service.create_return(sale.id, [{"sale_item_id": sale.items[0].id, "quantity": 2}])

    def test_rejected_returns_release_quantity(self, db_session, sold):
        sale, _ = sold
        first = return_service.create_return(sale.id, [{"sale_item_id": sale.items[0].id, "quantity": 4}])
        return_service.reject_return(first.id, "Duplicate")

        second = return_service.create_return(sale.id, [{"sale_item_id": sale.items[0].id, "quantity": 4}])

        assert second.status == "PENDING"

    def test_unknown_sale(self, db_session):
        with pytest.raises(NotFound):
            return_service.create_return(999999, [{"sale_item_id": 1, "quantity": 1}])

    def test_bad_condition(self, db_session, sold):
        sale, _ = sold

        with pytest.raises(ValidationError):
            return_service.create_return(
                sale.id, [{"sale_item_id": sale.items[0].id, "quantity": 1, "condition": "USED"}]
            )


class TestReturnTransitions:

    def test_completed_is_terminal(self, db_session, sold):
        sale, _ = sold
        ret = return_service.create_return(sale.id, [{"sale_item_id": sale.items[0].id, "quantity": 1}])
        return_service.complete_return(ret.id)

        with pytest.raises(InvalidStateTransition):
            return_service.reject_return(ret.id, "Too late")
        with pytest.raises(InvalidStateTransition):
            return_service.complete_return(ret.id)

    def test_status_update_dispatch(self, db_session, sold):
        sale, _ = sold
        ret = return_service.create_return(sale.id, [{"sale_item_id": sale.items[0].id, "quantity": 1}])

        return_service.update_return_status(ret.id, "APPROVED")
        return_service.update_return_status(ret.id, "COMPLETED")

        assert return_service.get_return(ret.id).status == "COMPLETED"

    def test_back_to_pending_rejected(self, db_session, sold):
        sale, _ = sold
        ret = return_service.create_return(sale.id, [{"sale_item_id": sale.items[0].id, "quantity": 1}])
        return_service.approve_return(ret.id)

        with pytest.raises(InvalidStateTransition):
            return_service.update_return_status(ret.id, "PENDING")

    def test_unknown_status(self, db_session, sold):
        sale, _ = sold
        ret = return_service.create_return(sale.id, [{"sale_item_id": sale.items[0].id, "quantity": 1}])

        with pytest.raises(ValidationError):
            return_service.update_return_status(ret.id, "REFUNDED")
