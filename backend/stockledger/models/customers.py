from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from ..time_utils import to_utc_z


LOYALTY_EARN = "EARN"
LOYALTY_REDEEM = "REDEEM"
LOYALTY_BONUS = "BONUS"
LOYALTY_ADJUST = "ADJUST"
LOYALTY_EXPIRE = "EXPIRE"
LOYALTY_TRANSACTION_TYPES = {LOYALTY_EARN, LOYALTY_REDEEM, LOYALTY_BONUS, LOYALTY_ADJUST, LOYALTY_EXPIRE}


class Customer(db.Model):
    """
    Customer with a loyalty points balance.

    INVARIANT: loyalty_points equals the signed sum of the customer's
    LoyaltyTransaction rows. The balance is only moved by loyalty_service,
    which writes the transaction in the same flush.
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.CheckConstraint("loyalty_points >= 0", name="ck_customers_points_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=True, unique=True)

    loyalty_points = db.Column(db.Integer, nullable=False, default=0)
    loyalty_tier_id = db.Column(db.Integer, db.ForeignKey("loyalty_tiers.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    loyalty_tier = db.relationship("LoyaltyTier")
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "loyalty_points": self.loyalty_points,
            "loyalty_tier_id": self.loyalty_tier_id,
            "loyalty_tier": self.loyalty_tier.name if self.loyalty_tier else None,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


class LoyaltyProgram(db.Model):
    """
    Earning rules. At most one program is active at a time; the newest
    active one wins if data says otherwise.

    points_per_unit is points earned per whole currency unit spent.
    """
    __tablename__ = "loyalty_programs"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    points_per_unit = db.Column(db.Numeric(10, 4), nullable=False, default=Decimal("1"))
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    tiers = db.relationship(
        "LoyaltyTier",
        backref="program",
        lazy=True,
        order_by="LoyaltyTier.required_points",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "points_per_unit": str(self.points_per_unit),
            "is_active": self.is_active,
            "tiers": [tier.to_dict() for tier in self.tiers],
            "created_at": to_utc_z(self.created_at),
        }


class LoyaltyTier(db.Model):
    __tablename__ = "loyalty_tiers"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    program_id = db.Column(db.Integer, db.ForeignKey("loyalty_programs.id"), nullable=False, index=True)
    name = db.Column(db.String(64), nullable=False)
    required_points = db.Column(db.Integer, nullable=False, default=0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "program_id": self.program_id,
            "name": self.name,
            "required_points": self.required_points,
        }


class LoyaltyTransaction(db.Model):
    """
    Append-only points ledger entry.

    points is signed: positive for EARN/BONUS, negative for REDEEM/EXPIRE,
    either sign for ADJUST.
    """
    __tablename__ = "loyalty_transactions"
    __table_args__ = (
        db.Index("ix_loyalty_tx_reference", "reference_type", "reference_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    program_id = db.Column(db.Integer, db.ForeignKey("loyalty_programs.id"), nullable=True)

    points = db.Column(db.Integer, nullable=False)
    transaction_type = db.Column(db.String(16), nullable=False, index=True)
    description = db.Column(db.String(255), nullable=True)

    reference_type = db.Column(db.String(32), nullable=True)
    reference_id = db.Column(db.Integer, nullable=True)

    created_by = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    customer = db.relationship("Customer", backref=db.backref("loyalty_transactions", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "program_id": self.program_id,
            "points": self.points,
            "transaction_type": self.transaction_type,
            "description": self.description,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
        }
