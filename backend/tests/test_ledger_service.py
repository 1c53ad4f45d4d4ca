# Overview: Pytest coverage for stock ledger primitives and manual adjustments.

import pytest

from stockledger.errors import InsufficientStock, NotFound, ValidationError
from stockledger.models import ActivityEvent, InventoryRecord, MovementEntry
from stockledger.services import ledger_service, location_service, transfer_service


class TestApplyDelta:
    """ADD / REMOVE / SET arithmetic and movement bookkeeping."""

    def test_add_creates_record_from_zero(self, db_session, product, warehouse):
        delta = ledger_service.apply_delta(product.id, warehouse.id, "ADD", 10, "PURCHASE_RECEIPT", 3)
        db_session.commit()

        assert delta.previous_quantity == 0
        assert delta.new_quantity == 10
        assert delta.record.quantity == 10
        assert delta.record.status == "AVAILABLE"
        assert delta.movement.quantity_delta == 10
        assert delta.movement.actor_id == 3

    def test_remove_decrements(self, db_session, product, store, stock):
        record = stock(product, store, 10)

        delta = ledger_service.apply_delta(product.id, store.id, "REMOVE", 4, "SALE")
        db_session.commit()

        assert delta.previous_quantity == 10
        assert delta.new_quantity == 6
        assert delta.movement.quantity_delta == -4
        assert db_session.get(InventoryRecord, record.id).quantity == 6

    def test_remove_to_zero_marks_out_of_stock(self, db_session, product, store, stock):
        record = stock(product, store, 3)

        ledger_service.apply_delta(product.id, store.id, "REMOVE", 3, "SALE")
        db_session.commit()

        assert record.quantity == 0
        assert record.status == "OUT_OF_STOCK"

    def test_remove_more_than_on_hand_is_rejected(self, db_session, product, store, stock):
        stock(product, store, 2)

        with pytest.raises(InsufficientStock) as exc:
            ledger_service.apply_delta(product.id, store.id, "REMOVE", 5, "SALE")
        db_session.rollback()

        assert exc.value.details == {
            "product_id": product.id,
            "location_id": store.id,
            "requested": 5,
            "available": 2,
        }
        assert ledger_service.get_quantity_on_hand(product.id, store.id) == 2

    def test_remove_from_missing_record_reports_zero_available(self, db_session, product, store):
        with pytest.raises(InsufficientStock) as exc:
            ledger_service.apply_delta(product.id, store.id, "REMOVE", 1, "SALE")

        assert exc.value.details["available"] == 0
        assert db_session.query(InventoryRecord).count() == 0

    def test_set_records_signed_delta(self, db_session, product, warehouse, stock):
        stock(product, warehouse, 10)

        delta = ledger_service.apply_delta(product.id, warehouse.id, "SET", 7, "AUDIT_RECONCILIATION")
        db_session.commit()

        assert delta.previous_quantity == 10
        assert delta.new_quantity == 7
        assert delta.movement.quantity_delta == -3

    def test_set_zero_is_allowed(self, db_session, product, warehouse, stock):
        stock(product, warehouse, 4)

        delta = ledger_service.apply_delta(product.id, warehouse.id, "SET", 0, "AUDIT_RECONCILIATION")
        db_session.commit()

        assert delta.record.quantity == 0
        assert delta.record.status == "OUT_OF_STOCK"

    @pytest.mark.parametrize(
        "delta_type,quantity",
        [
            ("ADD", 0),
            ("ADD", -1),
            ("REMOVE", 0),
            ("SET", -1),
            ("ADD", 2.5),
            ("ADD", "3"),
            ("ADD", True),
            ("MOVE", 1),
        ],
    )
    def test_invalid_quantity_or_type(self, db_session, product, warehouse, delta_type, quantity):
        with pytest.raises(ValidationError):
            ledger_service.apply_delta(product.id, warehouse.id, delta_type, quantity, "MANUAL_ADJUSTMENT")

    def test_unknown_product_on_add(self, db_session, warehouse):
        with pytest.raises(NotFound):
            ledger_service.apply_delta(999999, warehouse.id, "ADD", 1, "MANUAL_ADJUSTMENT")

    def test_price_override_replaces_not_averages(self, db_session, product, warehouse, stock):
        stock(product, warehouse, 10, cost_price_cents=500)

        delta = ledger_service.apply_delta(
            product.id, warehouse.id, "ADD", 10, "PURCHASE_RECEIPT", cost_price_cents=900
        )
        db_session.commit()

        assert delta.record.cost_price_cents == 900

    def test_bins_are_separate_records(self, db_session, product, warehouse):
        ledger_service.apply_delta(product.id, warehouse.id, "ADD", 5, "OPENING_BALANCE", bin_code="A-01")
        ledger_service.apply_delta(product.id, warehouse.id, "ADD", 3, "OPENING_BALANCE", bin_code="B-02")
        db_session.commit()

        assert db_session.query(InventoryRecord).filter_by(product_id=product.id).count() == 2
        assert ledger_service.get_quantity_on_hand(product.id, warehouse.id) == 8

    def test_movement_chain_links_consecutive_entries(self, db_session, product, warehouse, stock):
        record = stock(product, warehouse, 10)
        ledger_service.apply_delta(product.id, warehouse.id, "REMOVE", 4, "SALE")
        ledger_service.apply_delta(product.id, warehouse.id, "SET", 9, "AUDIT_RECONCILIATION")
        ledger_service.apply_delta(product.id, warehouse.id, "ADD", 1, "RETURN")
        db_session.commit()

        movements = (
            db_session.query(MovementEntry)
            .filter_by(inventory_record_id=record.id)
            .order_by(MovementEntry.id.asc())
            .all()
        )
        assert [m.new_quantity for m in movements] == [10, 6, 9, 10]
        for earlier, later in zip(movements, movements[1:]):
            assert later.previous_quantity == earlier.new_quantity
        assert sum(m.quantity_delta for m in movements) == record.quantity

    def test_version_increments_on_each_mutation(self, db_session, product, warehouse, stock):
        record = stock(product, warehouse, 1)
        first_version = record.version_id

        ledger_service.apply_delta(product.id, warehouse.id, "ADD", 1, "MANUAL_ADJUSTMENT")
        db_session.commit()

        assert record.version_id == first_version + 1


class TestManualAdjustment:
    """adjust_inventory_record is the manual entry point and commits its own work."""

    def test_adjust_add(self, db_session, product, warehouse, stock):
        record = stock(product, warehouse, 5)

        delta = ledger_service.adjust_inventory_record(record.id, "add", 3, "Found stock", actor_id=9)

        assert delta.new_quantity == 8
        assert delta.movement.reason_code == "MANUAL_ADJUSTMENT"
        event = db_session.query(ActivityEvent).filter_by(action="inventory.adjusted").one()
        assert event.entity_id == record.id
        assert event.actor_id == 9

    def test_adjust_remove_is_strict(self, db_session, product, warehouse, stock):
        record = stock(product, warehouse, 2)

        with pytest.raises(InsufficientStock):
            ledger_service.adjust_inventory_record(record.id, "remove", 5, "Shrinkage")

        db_session.expire_all()
        assert db_session.get(InventoryRecord, record.id).quantity == 2
        assert db_session.query(ActivityEvent).filter_by(action="inventory.adjusted").count() == 0

    def test_adjust_requires_reason(self, db_session, product, warehouse, stock):
        record = stock(product, warehouse, 2)

        with pytest.raises(ValidationError):
            ledger_service.adjust_inventory_record(record.id, "add", 1, "  ")

    def test_adjust_unknown_type(self, db_session, product, warehouse, stock):
        record = stock(product, warehouse, 2)

        with pytest.raises(ValidationError):
            ledger_service.adjust_inventory_record(record.id, "multiply", 2, "Typo")

    def test_adjust_unknown_record(self, db_session):
        with pytest.raises(NotFound):
            ledger_service.adjust_inventory_record(999999, "add", 1, "Ghost")


class TestHoldStatus:
    """Explicit holds survive quantity changes and block selling."""

    def test_quarantine_hides_available_quantity(self, db_session, product, store, stock):
        record = stock(product, store, 5)

        ledger_service.set_hold_status(record.id, "QUARANTINE", actor_id=1)

        assert record.status == "QUARANTINE"
        assert record.quantity == 5
        assert record.available_quantity == 0

    def test_hold_survives_add(self, db_session, product, store, stock):
        record = stock(product, store, 5)
        ledger_service.set_hold_status(record.id, "DAMAGED")

        ledger_service.apply_delta(product.id, store.id, "ADD", 1, "MANUAL_ADJUSTMENT")
        db_session.commit()

        assert record.status == "DAMAGED"
        assert record.condition == "DAMAGED"

    def test_release_recomputes_from_quantity(self, db_session, product, store, stock):
        record = stock(product, store, 5)
        ledger_service.set_hold_status(record.id, "QUARANTINE")

        ledger_service.set_hold_status(record.id, "RELEASE")

        assert record.status == "AVAILABLE"
        assert record.available_quantity == 5

    def test_release_without_hold_is_rejected(self, db_session, product, store, stock):
        record = stock(product, store, 5)

        with pytest.raises(ValidationError):
            ledger_service.set_hold_status(record.id, "RELEASE")

    def test_unknown_status(self, db_session, product, store, stock):
        record = stock(product, store, 5)

        with pytest.raises(ValidationError):
            ledger_service.set_hold_status(record.id, "LOST")


class TestReads:
    def test_location_inventory_hides_empty_records(self, db_session, make_product, warehouse, stock):
        a = make_product("SKU-A")
        b = make_product("SKU-B")
        stock(a, warehouse, 3)
        empty = stock(b, warehouse, 1)
        ledger_service.apply_delta(b.id, warehouse.id, "REMOVE", 1, "SALE")
        db_session.commit()

        assert [r.product_id for r in ledger_service.list_location_inventory(warehouse.id)] == [a.id]
        all_records = ledger_service.list_location_inventory(warehouse.id, include_empty=True)
        assert empty.id in {r.id for r in all_records}

    def test_location_inventory_unknown_location(self, db_session):
        with pytest.raises(NotFound):
            ledger_service.list_location_inventory(999999)

    def test_list_movements_newest_first(self, db_session, product, warehouse, stock):
        record = stock(product, warehouse, 3)
        ledger_service.apply_delta(product.id, warehouse.id, "ADD", 2, "MANUAL_ADJUSTMENT")
        db_session.commit()

        movements = ledger_service.list_movements(record.id)
        assert [m.new_quantity for m in movements] == [5, 3]


class TestLocationActivation:

    def test_deactivate_keeps_stock(self, db_session, product, warehouse, store, stock):
        stock(product, warehouse, 4)

        location = location_service.set_location_active(warehouse.id, False, actor_id=5)

        assert location.is_active is False
        assert ledger_service.get_quantity_on_hand(product.id, warehouse.id) == 4
        event = db_session.query(ActivityEvent).filter_by(entity_type="location").one()
        assert event.action == "location.deactivated"

    def test_inactive_location_refuses_new_transfers(self, db_session, product, warehouse, store, stock):
        stock(product, warehouse, 4)
        location_service.set_location_active(store.id, False)

        with pytest.raises(ValidationError):
            transfer_service.create_transfer(warehouse.id, store.id, [{"product_id": product.id, "quantity": 1}])

    def test_reactivate(self, db_session, store):
        location_service.set_location_active(store.id, False)
        location = location_service.set_location_active(store.id, True)

        assert location.is_active is True
        assert db_session.query(ActivityEvent).filter_by(entity_type="location").count() == 2

    def test_unchanged_flag_records_nothing(self, db_session, store):
        location_service.set_location_active(store.id, True)

        assert db_session.query(ActivityEvent).filter_by(entity_type="location").count() == 0

    @pytest.mark.parametrize("value", [None, "false", 0])
    def test_flag_must_be_boolean(self, db_session, store, value):
        with pytest.raises(ValidationError):
            location_service.set_location_active(store.id, value)

    def test_unknown_location(self, db_session):
        with pytest.raises(NotFound):
            location_service.set_location_active(999999, False)
