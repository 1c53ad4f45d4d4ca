# Overview: Pytest coverage for the ledger CLI commands.

from stockledger.models import Customer, InventoryRecord


class TestLedgerVerify:

    def test_consistent_ledger_passes(self, app, product, store, stock, customer):
        stock(product, store, 5)

        result = app.test_cli_runner().invoke(args=["ledger", "verify"])

        assert result.exit_code == 0
        assert "PASS Ledger is consistent." in result.output

    def test_record_drift_fails(self, app, db_session, product, store, stock):
        record = stock(product, store, 5)
        # Bypass the ledger so the record disagrees with its last movement
        db_session.query(InventoryRecord).filter_by(id=record.id).update({"quantity": 9})
        db_session.commit()

        result = app.test_cli_runner().invoke(args=["ledger", "verify"])

        assert result.exit_code == 1
        assert f"FAIL record {record.id}: quantity 9" in result.output
        assert "1 problem(s) found." in result.output

    def test_loyalty_drift_fails(self, app, db_session, customer):
        db_session.query(Customer).filter_by(id=customer.id).update({"loyalty_points": 30})
        db_session.commit()

        result = app.test_cli_runner().invoke(args=["ledger", "verify"])

        assert result.exit_code == 1
        assert f"FAIL customer {customer.id}" in result.output

    def test_location_filter_skips_other_locations(self, app, db_session, product, store, warehouse, stock):
        broken = stock(product, store, 5)
        stock(product, warehouse, 3)
        db_session.query(InventoryRecord).filter_by(id=broken.id).update({"quantity": 1})
        db_session.commit()

        result = app.test_cli_runner().invoke(args=["ledger", "verify", "--location-id", str(warehouse.id)])

        assert result.exit_code == 0


class TestSystemCommands:

    def test_init_db_is_idempotent(self, app, db_session):
        result = app.test_cli_runner().invoke(args=["system", "init-db"])

        assert result.exit_code == 0
        assert "PASS Tables created." in result.output
