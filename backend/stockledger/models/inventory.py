from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


# Record status. QUARANTINE and DAMAGED are explicit holds; the other two are
# derived from quantity on every mutation.
STATUS_AVAILABLE = "AVAILABLE"
STATUS_OUT_OF_STOCK = "OUT_OF_STOCK"
STATUS_QUARANTINE = "QUARANTINE"
STATUS_DAMAGED = "DAMAGED"
HOLD_STATUSES = {STATUS_QUARANTINE, STATUS_DAMAGED}

CONDITION_NEW = "NEW"
CONDITION_DAMAGED = "DAMAGED"

MOVEMENT_ADD = "ADD"
MOVEMENT_REMOVE = "REMOVE"
MOVEMENT_SET = "SET"
MOVEMENT_TYPES = {MOVEMENT_ADD, MOVEMENT_REMOVE, MOVEMENT_SET}


class InventoryRecord(db.Model):
    """
    The ledger row: on-hand quantity of one product at one location (and bin).

    INVARIANTS:
    - quantity >= 0 at all times
    - status is AVAILABLE iff quantity > 0, unless an explicit hold is set
    - only mutated through ledger_service.apply_delta, which also writes
      exactly one MovementEntry per mutation

    CONCURRENCY: version_id is an optimistic lock. Two transactions that both
    read the same version and then write will see the second one fail with
    StaleDataError instead of silently overwriting the first decrement.
    """
    __tablename__ = "inventory_records"
    __table_args__ = (
        db.UniqueConstraint("product_id", "location_id", "bin_code", name="uq_inventory_product_location_bin"),
        db.CheckConstraint("quantity >= 0", name="ck_inventory_quantity_non_negative"),
        db.CheckConstraint("reserved_quantity >= 0", name="ck_inventory_reserved_non_negative"),
        db.Index("ix_inventory_location_quantity", "location_id", "quantity"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    location_id = db.Column(db.Integer, db.ForeignKey("stock_locations.id"), nullable=False, index=True)

    # "" when the location does not use bins (keeps the unique constraint effective)
    bin_code = db.Column(db.String(64), nullable=False, default="")

    quantity = db.Column(db.Integer, nullable=False, default=0)
    reserved_quantity = db.Column(db.Integer, nullable=False, default=0)

    cost_price_cents = db.Column(db.Integer, nullable=False, default=0)
    retail_price_cents = db.Column(db.Integer, nullable=False, default=0)

    status = db.Column(db.String(16), nullable=False, default=STATUS_OUT_OF_STOCK, index=True)
    condition = db.Column(db.String(16), nullable=False, default=CONDITION_NEW)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    version_id = db.Column(db.Integer, nullable=False, default=1)

    product = db.relationship("Product")
    location = db.relationship("StockLocation", backref=db.backref("inventory_records", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return (
            f"<InventoryRecord id={self.id} product_id={self.product_id} "
            f"location_id={self.location_id} quantity={self.quantity}>"
        )

    @property
    def is_held(self) -> bool:
        return self.status in HOLD_STATUSES

    @property
    def available_quantity(self) -> int:
        """Sellable quantity: on hand minus reservations, zero while held."""
        if self.is_held:
            return 0
        return max(0, (self.quantity or 0) - (self.reserved_quantity or 0))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "location_id": self.location_id,
            "bin_code": self.bin_code or None,
            "quantity": self.quantity,
            "reserved_quantity": self.reserved_quantity,
            "available_quantity": self.available_quantity,
            "cost_price_cents": self.cost_price_cents,
            "retail_price_cents": self.retail_price_cents,
            "status": self.status,
            "condition": self.condition,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


class MovementEntry(db.Model):
    """
    Append-only record of one ledger mutation.

    IMMUTABLE: written once in the same transaction as the quantity change,
    never updated or deleted. previous_quantity/new_quantity make every row
    self-checking: for a given record, consecutive entries chain
    new_quantity -> previous_quantity.
    """
    __tablename__ = "movement_entries"
    __table_args__ = (
        db.Index("ix_movements_record_occurred", "inventory_record_id", "occurred_at"),
        db.Index("ix_movements_reference", "reference_type", "reference_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    inventory_record_id = db.Column(db.Integer, db.ForeignKey("inventory_records.id"), nullable=False, index=True)

    # ADD, REMOVE, SET
    movement_type = db.Column(db.String(16), nullable=False)

    # Signed: negative for REMOVE, new - previous for SET
    quantity_delta = db.Column(db.Integer, nullable=False)
    previous_quantity = db.Column(db.Integer, nullable=False)
    new_quantity = db.Column(db.Integer, nullable=False)

    reason_code = db.Column(db.String(64), nullable=False, index=True)
    notes = db.Column(db.Text, nullable=True)
    actor_id = db.Column(db.Integer, nullable=True, index=True)

    # Workflow document that caused the movement (sale, transfer, audit, ...)
    reference_type = db.Column(db.String(32), nullable=True)
    reference_id = db.Column(db.Integer, nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    inventory_record = db.relationship("InventoryRecord", backref=db.backref("movements", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "inventory_record_id": self.inventory_record_id,
            "movement_type": self.movement_type,
            "quantity_delta": self.quantity_delta,
            "previous_quantity": self.previous_quantity,
            "new_quantity": self.new_quantity,
            "reason_code": self.reason_code,
            "notes": self.notes,
            "actor_id": self.actor_id,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "occurred_at": to_utc_z(self.occurred_at),
        }
