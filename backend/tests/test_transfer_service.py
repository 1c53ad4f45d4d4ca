# Overview: Pytest coverage for the transfer workflow and its transition table.

"""
Transfer Workflow Tests

Verifies:
1. Ship removes stock at the source; receive adds it at the destination
2. Shipping is all-or-nothing across items
3. Only transitions in the table are accepted
4. Editing and deleting are limited to early statuses
"""

import pytest

from stockledger.errors import InsufficientStock, InvalidStateTransition, NotFound, ValidationError
from stockledger.models import ActivityEvent, MovementEntry, Transfer
from stockledger.services import ledger_service, transfer_service
from stockledger.services.transfer_service import TRANSFER_TRANSITIONS


@pytest.fixture
def route(make_location):
    """Warehouse W1 -> store S1."""
    return make_location("W1", "WAREHOUSE"), make_location("S1", "STORE")


def _draft(product, route, quantity=5, **item_overrides):
    source, destination = route
    item = {"product_id": product.id, "quantity": quantity, **item_overrides}
    return transfer_service.create_transfer(source.id, destination.id, [item], actor_id=1)


class TestTransferLifecycle:

    def test_ship_then_receive_moves_stock(self, db_session, product, route, stock):
        """Five units leave W1 on ship and arrive at S1 on receive."""
        source, destination = route
        stock(product, source, 5)
        transfer = _draft(product, route)
        transfer_service.submit_transfer(transfer.id, actor_id=1)
        transfer_service.approve_transfer(transfer.id, actor_id=2)

        transfer_service.ship_transfer(transfer.id, actor_id=2, tracking_number="TRK-1")

        assert transfer.status == "IN_TRANSIT"
        assert transfer.tracking_number == "TRK-1"
        assert ledger_service.get_quantity_on_hand(product.id, source.id) == 0
        assert ledger_service.get_quantity_on_hand(product.id, destination.id) == 0

        transfer_service.receive_transfer(transfer.id, actor_id=3)

        assert transfer.status == "COMPLETED"
        assert transfer.completed_date is not None
        assert transfer.actual_delivery_date is not None
        assert ledger_service.get_quantity_on_hand(product.id, destination.id) == 5

    def test_receive_applies_target_prices(self, db_session, product, route, stock):
        source, destination = route
        stock(product, source, 5, cost_price_cents=400, retail_price_cents=900)
        transfer = _draft(product, route, target_retail_price_cents=1200)
        transfer_service.submit_transfer(transfer.id)
        transfer_service.ship_transfer(transfer.id)

        transfer_service.receive_transfer(transfer.id)

        record = ledger_service.find_inventory_record(product.id, destination.id)
        assert record.cost_price_cents == 400
        assert record.retail_price_cents == 1200

    def test_totals_use_target_prices(self, db_session, product, route, stock):
        source, _ = route
        stock(product, source, 5, cost_price_cents=400, retail_price_cents=900)

        transfer = _draft(product, route, quantity=3, target_cost_price_cents=450)

        assert transfer.total_items == 3
        assert transfer.total_cost_cents == 1350
        assert transfer.total_retail_cents == 2700

    def test_ship_from_pending_implies_approval(self, db_session, product, route, stock):
        source, _ = route
        stock(product, source, 5)
        transfer = _draft(product, route)
        transfer_service.submit_transfer(transfer.id)

        transfer_service.ship_transfer(transfer.id, actor_id=4)

        assert transfer.status == "IN_TRANSIT"
        assert transfer.approved_by == 4
        assert transfer.approved_date is not None

    def test_ship_is_all_or_nothing(self, db_session, make_product, route, stock):
        source, destination = route
        plenty = make_product("SKU-PLENTY")
        scarce = make_product("SKU-SCARCE")
        stock(plenty, source, 10)
        stock(scarce, source, 1)
        transfer = transfer_service.create_transfer(
            source.id,
            destination.id,
            [
                {"product_id": plenty.id, "quantity": 4},
                {"product_id": scarce.id, "quantity": 2},
            ],
        )
        transfer_service.submit_transfer(transfer.id)
        movements_before = db_session.query(MovementEntry).count()

        with pytest.raises(InsufficientStock):
            transfer_service.ship_transfer(transfer.id)

        db_session.expire_all()
        assert ledger_service.get_quantity_on_hand(plenty.id, source.id) == 10
        assert ledger_service.get_quantity_on_hand(scarce.id, source.id) == 1
        assert db_session.query(MovementEntry).count() == movements_before
        assert db_session.get(Transfer, transfer.id).status == "PENDING"

    def test_reject_keeps_stock(self, db_session, product, route, stock):
        source, _ = route
        stock(product, source, 5)
        transfer = _draft(product, route)
        transfer_service.submit_transfer(transfer.id)

        transfer_service.reject_transfer(transfer.id, "Not needed", actor_id=2)

        assert transfer.status == "REJECTED"
        assert transfer.rejection_reason == "Not needed"
        assert ledger_service.get_quantity_on_hand(product.id, source.id) == 5

    def test_every_transition_is_logged(self, db_session, product, route, stock):
        source, _ = route
        stock(product, source, 5)
        transfer = _draft(product, route)
        transfer_service.submit_transfer(transfer.id)
        transfer_service.ship_transfer(transfer.id)
        transfer_service.receive_transfer(transfer.id)

        summary = transfer_service.get_transfer_summary(transfer.id)

        assert [ev["action"] for ev in summary["activity"]] == [
            "transfer.created",
            "transfer.submitted",
            "transfer.shipped",
            "transfer.received",
        ]

    def test_transfer_number_format(self, db_session, product, route, stock):
        transfer = _draft(product, route)
        second = _draft(product, route)

        assert transfer.transfer_number.startswith("TRF-")
        assert transfer.transfer_number.endswith("-0001")
        assert second.transfer_number.endswith("-0002")


class TestHeldStockAndBins:

    @pytest.mark.parametrize("hold", ["QUARANTINE", "DAMAGED"])
    def test_held_stock_does_not_ship(self, db_session, product, route, stock, hold):
        source, destination = route
        record = stock(product, source, 5)
        ledger_service.set_hold_status(record.id, hold)
        transfer = _draft(product, route, quantity=2)
        transfer_service.submit_transfer(transfer.id)

        with pytest.raises(InsufficientStock) as exc:
            transfer_service.ship_transfer(transfer.id)

        assert exc.value.details["available"] == 0
        db_session.expire_all()
        assert ledger_service.get_inventory_record(record.id).quantity == 5
        assert ledger_service.find_inventory_record(product.id, destination.id) is None
        assert db_session.get(Transfer, transfer.id).status == "PENDING"

    def test_released_stock_ships(self, db_session, product, route, stock):
        source, _ = route
        record = stock(product, source, 5)
        ledger_service.set_hold_status(record.id, "QUARANTINE")
        ledger_service.set_hold_status(record.id, "RELEASE")
        transfer = _draft(product, route, quantity=2)
        transfer_service.submit_transfer(transfer.id)

        transfer_service.ship_transfer(transfer.id)

        assert ledger_service.get_inventory_record(record.id).quantity == 3

    def test_ships_from_and_lands_in_named_bins(self, db_session, product, route):
        source, destination = route
        ledger_service.apply_delta(
            product.id, source.id, "ADD", 6, "OPENING_BALANCE", bin_code="A-01", cost_price_cents=300,
        )
        db_session.commit()

        transfer = _draft(product, route, quantity=4, source_bin_code="A-01", target_bin_code="FRONT")
        assert transfer.items[0].source_cost_price_cents == 300
        transfer_service.submit_transfer(transfer.id)
        transfer_service.ship_transfer(transfer.id)
        transfer_service.receive_transfer(transfer.id)

        assert ledger_service.find_inventory_record(product.id, source.id, "A-01").quantity == 2
        assert ledger_service.find_inventory_record(product.id, destination.id, "FRONT").quantity == 4
        assert ledger_service.find_inventory_record(product.id, destination.id) is None

    def test_bin_code_must_be_text(self, db_session, product, route):
        with pytest.raises(ValidationError):
            _draft(product, route, source_bin_code=7)


class TestTransitionTable:

    def test_table_is_closed(self):
        statuses = {"DRAFT", "PENDING", "APPROVED", "REJECTED", "IN_TRANSIT", "COMPLETED", "CANCELLED"}
        assert set(TRANSFER_TRANSITIONS) == statuses
        for targets in TRANSFER_TRANSITIONS.values():
            assert targets <= statuses

    @pytest.mark.parametrize("terminal", ["REJECTED", "CANCELLED", "COMPLETED"])
    def test_terminal_states_have_no_exits(self, terminal):
        assert TRANSFER_TRANSITIONS[terminal] == frozenset()

    def test_cannot_receive_a_draft(self, db_session, product, route):
        transfer = _draft(product, route)

        with pytest.raises(InvalidStateTransition):
            transfer_service.receive_transfer(transfer.id)

    def test_cannot_ship_a_draft(self, db_session, product, route, stock):
        source, _ = route
        stock(product, source, 5)
        transfer = _draft(product, route)

        with pytest.raises(InvalidStateTransition):
            transfer_service.ship_transfer(transfer.id)

        assert ledger_service.get_quantity_on_hand(product.id, source.id) == 5

    def test_cannot_cancel_in_transit(self, db_session, product, route, stock):
        source, _ = route
        stock(product, source, 5)
        transfer = _draft(product, route)
        transfer_service.submit_transfer(transfer.id)
        transfer_service.ship_transfer(transfer.id)

        with pytest.raises(InvalidStateTransition):
            transfer_service.cancel_transfer(transfer.id, "Too late")

    def test_cannot_reject_approved(self, db_session, product, route):
        transfer = _draft(product, route)
        transfer_service.submit_transfer(transfer.id)
        transfer_service.approve_transfer(transfer.id)

        with pytest.raises(InvalidStateTransition):
            transfer_service.reject_transfer(transfer.id, "Changed mind")

    def test_update_status_dispatches_through_table(self, db_session, product, route, stock):
        source, destination = route
        stock(product, source, 5)
        transfer = _draft(product, route)

        for status in ("PENDING", "APPROVED", "IN_TRANSIT", "COMPLETED"):
            transfer_service.update_transfer_status(transfer.id, status, actor_id=1)

        assert transfer.status == "COMPLETED"
        assert ledger_service.get_quantity_on_hand(product.id, destination.id) == 5

    def test_update_status_back_to_draft_is_rejected(self, db_session, product, route):
        transfer = _draft(product, route)
        transfer_service.submit_transfer(transfer.id)

        with pytest.raises(InvalidStateTransition):
            transfer_service.update_transfer_status(transfer.id, "DRAFT")

    def test_process_unknown_action(self, db_session, product, route):
        transfer = _draft(product, route)

        with pytest.raises(ValidationError):
            transfer_service.process_transfer(transfer.id, "teleport")


class TestTransferValidation:

    def test_same_location_rejected(self, db_session, product, warehouse):
        with pytest.raises(ValidationError):
            transfer_service.create_transfer(warehouse.id, warehouse.id, [{"product_id": product.id, "quantity": 1}])

    def test_inactive_destination_rejected(self, db_session, product, warehouse, make_location):
        closed = make_location("OLD", "STORE", is_active=False)

        with pytest.raises(ValidationError):
            transfer_service.create_transfer(warehouse.id, closed.id, [{"product_id": product.id, "quantity": 1}])

    def test_unknown_location(self, db_session, product, warehouse):
        with pytest.raises(NotFound):
            transfer_service.create_transfer(warehouse.id, 999999, [{"product_id": product.id, "quantity": 1}])

    @pytest.mark.parametrize("items", [[], None, [{"product_id": 1}], [{"quantity": 1}]])
    def test_malformed_items(self, db_session, route, items):
        source, destination = route
        with pytest.raises(ValidationError):
            transfer_service.create_transfer(source.id, destination.id, items)

    def test_non_positive_quantity(self, db_session, product, route):
        with pytest.raises(ValidationError):
            _draft(product, route, quantity=0)

    def test_duplicate_products_rejected(self, db_session, product, route):
        source, destination = route
        with pytest.raises(ValidationError):
            transfer_service.create_transfer(
                source.id,
                destination.id,
                [{"product_id": product.id, "quantity": 1}, {"product_id": product.id, "quantity": 2}],
            )

    def test_nothing_persisted_on_failure(self, db_session, product, route):
        source, _ = route
        with pytest.raises(NotFound):
            transfer_service.create_transfer(
                source.id,
                route[1].id,
                [{"product_id": product.id, "quantity": 1}, {"product_id": 999999, "quantity": 1}],
            )

        assert db_session.query(Transfer).count() == 0
        assert db_session.query(ActivityEvent).count() == 0


class TestEditAndDelete:

    def test_update_replaces_items_and_totals(self, db_session, make_product, route, stock):
        source, _ = route
        a = make_product("SKU-A")
        b = make_product("SKU-B")
        stock(a, source, 10, cost_price_cents=100)
        stock(b, source, 10, cost_price_cents=200)
        transfer = _draft(a, route, quantity=2)

        transfer_service.update_transfer(
            transfer.id,
            {
                "priority": "URGENT",
                "items": [{"product_id": a.id, "quantity": 1}, {"product_id": b.id, "quantity": 3}],
            },
        )

        assert transfer.priority == "URGENT"
        assert sorted((i.product_id, i.quantity) for i in transfer.items) == [(a.id, 1), (b.id, 3)]
        assert transfer.total_items == 4
        assert transfer.total_cost_cents == 100 + 600

    def test_update_rejects_unknown_field(self, db_session, product, route):
        transfer = _draft(product, route)

        with pytest.raises(ValidationError):
            transfer_service.update_transfer(transfer.id, {"status": "COMPLETED"})

    def test_update_after_approval_rejected(self, db_session, product, route):
        transfer = _draft(product, route)
        transfer_service.submit_transfer(transfer.id)
        transfer_service.approve_transfer(transfer.id)

        with pytest.raises(InvalidStateTransition):
            transfer_service.update_transfer(transfer.id, {"notes": "late edit"})

    def test_delete_draft(self, db_session, product, route):
        transfer = _draft(product, route)
        transfer_id = transfer.id

        transfer_service.delete_transfer(transfer_id)

        assert db_session.get(Transfer, transfer_id) is None

    def test_delete_pending_rejected(self, db_session, product, route):
        transfer = _draft(product, route)
        transfer_service.submit_transfer(transfer.id)

        with pytest.raises(InvalidStateTransition):
            transfer_service.delete_transfer(transfer.id)

    def test_list_filters_by_status(self, db_session, product, route):
        first = _draft(product, route)
        _draft(product, route)
        transfer_service.submit_transfer(first.id)

        rows, total = transfer_service.list_transfers(status="PENDING")

        assert total == 1
        assert [t.id for t in rows] == [first.id]
