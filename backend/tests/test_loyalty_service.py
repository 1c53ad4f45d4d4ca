# Overview: Pytest coverage for the loyalty points ledger.

from decimal import Decimal

import pytest

from stockledger.errors import InsufficientLoyaltyPoints, NotFound, ValidationError
from stockledger.models import LoyaltyProgram, LoyaltyTransaction
from stockledger.services import loyalty_service


class TestEarningRules:

    @pytest.mark.parametrize(
        "total_cents,rate,expected",
        [
            (12345, Decimal("1"), 123),
            (99, Decimal("1"), 0),
            (1000, Decimal("1.5"), 15),
            (1050, Decimal("2.25"), 23),
            (0, Decimal("1"), 0),
        ],
    )
    def test_compute_earned_points_floors(self, total_cents, rate, expected):
        assert loyalty_service.compute_earned_points(total_cents, rate) == expected

    def test_tier_is_highest_qualifying(self, db_session, loyalty_program):
        assert loyalty_service.resolve_tier(loyalty_program, 0).name == "Bronze"
        assert loyalty_service.resolve_tier(loyalty_program, 999).name == "Silver"
        assert loyalty_service.resolve_tier(loyalty_program, 1000).name == "Gold"

    def test_newest_active_program_wins(self, db_session, loyalty_program):
        newer = LoyaltyProgram(name="Double", points_per_unit=Decimal("2"), is_active=True)
        db_session.add(newer)
        db_session.commit()

        assert loyalty_service.get_active_program().id == newer.id


class TestManualTransactions:

    def test_bonus_credits_and_sets_tier(self, db_session, customer, loyalty_program):
        tx = loyalty_service.record_loyalty_transaction(customer.id, 150, "BONUS", "Welcome", actor_id=3)

        assert tx.points == 150
        customer = loyalty_service.get_customer(customer.id)
        assert customer.loyalty_points == 150
        assert customer.loyalty_tier.name == "Silver"

    def test_redeem_is_stored_negative(self, db_session, customer, loyalty_program):
        loyalty_service.record_loyalty_transaction(customer.id, 100, "EARN")

        tx = loyalty_service.record_loyalty_transaction(customer.id, 40, "REDEEM")

        assert tx.points == -40
        assert loyalty_service.get_customer(customer.id).loyalty_points == 60

    def test_debit_beyond_balance_fails(self, db_session, customer, loyalty_program):
        loyalty_service.record_loyalty_transaction(customer.id, 30, "EARN")

        with pytest.raises(InsufficientLoyaltyPoints):
            loyalty_service.record_loyalty_transaction(customer.id, 50, "EXPIRE")

        db_session.expire_all()
        assert loyalty_service.get_customer(customer.id).loyalty_points == 30
        assert db_session.query(LoyaltyTransaction).count() == 1

    def test_negative_adjust_keeps_sign(self, db_session, customer, loyalty_program):
        loyalty_service.record_loyalty_transaction(customer.id, 30, "EARN")

        tx = loyalty_service.record_loyalty_transaction(customer.id, -10, "ADJUST")

        assert tx.points == -10
        assert loyalty_service.get_customer(customer.id).loyalty_points == 20

    @pytest.mark.parametrize("points,transaction_type", [(0, "EARN"), (10, "GIFT"), (1.5, "EARN"), ("10", "EARN")])
    def test_invalid_entries(self, db_session, customer, points, transaction_type):
        with pytest.raises(ValidationError):
            loyalty_service.record_loyalty_transaction(customer.id, points, transaction_type)

    def test_unknown_customer(self, db_session, loyalty_program):
        with pytest.raises(NotFound):
            loyalty_service.record_loyalty_transaction(999999, 10, "EARN")

    def test_balance_equals_transaction_sum(self, db_session, customer, loyalty_program):
        for points, kind in ((100, "EARN"), (25, "REDEEM"), (5, "BONUS"), (-3, "ADJUST"), (7, "EXPIRE")):
            loyalty_service.record_loyalty_transaction(customer.id, points, kind)

        check = loyalty_service.verify_customer_balance(customer.id)

        assert check["stored_points"] == 70
        assert check["ledger_points"] == 70
        assert check["consistent"] is True

    def test_list_transactions_newest_first(self, db_session, customer, loyalty_program):
        loyalty_service.record_loyalty_transaction(customer.id, 10, "EARN")
        loyalty_service.record_loyalty_transaction(customer.id, 5, "BONUS")

        rows = loyalty_service.list_loyalty_transactions(customer.id)

        assert [r.transaction_type for r in rows] == ["BONUS", "EARN"]
