from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Supplier(db.Model):
    """Supplier master data. Maintained elsewhere; referenced by purchase orders."""
    __tablename__ = "suppliers"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class PurchaseOrder(db.Model):
    """
    Order placed with a supplier for delivery into one warehouse.

    LIFECYCLE:
    1. DRAFT: Lines editable, nothing ordered yet
    2. ORDERED: Sent to the supplier, awaiting goods
    3. PARTIAL: Some goods received (repeatable)
    4. RECEIVED: Every line fully received
    CANCELLED is reachable from DRAFT and ORDERED (never once goods arrived).

    Receiving is the only path that adds stock; every receipt posts a ledger
    ADD at the warehouse in the same transaction as the line update.
    """
    __tablename__ = "purchase_orders"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)

    # PO-YYYYMMDD-NNNN
    order_number = db.Column(db.String(32), nullable=False, unique=True, index=True)
    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=False, index=True)
    warehouse_id = db.Column(db.Integer, db.ForeignKey("stock_locations.id"), nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default="DRAFT", index=True)
    total_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    notes = db.Column(db.Text, nullable=True)

    expected_date = db.Column(db.DateTime(timezone=True), nullable=True)
    ordered_date = db.Column(db.DateTime(timezone=True), nullable=True)
    delivered_date = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_date = db.Column(db.DateTime(timezone=True), nullable=True)

    created_by = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    supplier = db.relationship("Supplier", backref=db.backref("purchase_orders", lazy=True))
    warehouse = db.relationship("StockLocation")
    items = db.relationship(
        "PurchaseOrderItem",
        backref="purchase_order",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="PurchaseOrderItem.id",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_number": self.order_number,
            "supplier_id": self.supplier_id,
            "warehouse_id": self.warehouse_id,
            "status": self.status,
            "total_amount_cents": self.total_amount_cents,
            "notes": self.notes,
            "expected_date": to_utc_z(self.expected_date),
            "ordered_date": to_utc_z(self.ordered_date),
            "delivered_date": to_utc_z(self.delivered_date),
            "cancelled_date": to_utc_z(self.cancelled_date),
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
            "version_id": self.version_id,
        }


class PurchaseOrderItem(db.Model):
    """
    One ordered product line.

    INVARIANT: 0 <= received_quantity <= ordered_quantity, and
    received_quantity never decreases.
    """
    __tablename__ = "purchase_order_items"
    __table_args__ = (
        db.CheckConstraint("ordered_quantity > 0", name="ck_po_items_ordered_positive"),
        db.CheckConstraint("received_quantity >= 0", name="ck_po_items_received_non_negative"),
        db.CheckConstraint("received_quantity <= ordered_quantity", name="ck_po_items_not_over_received"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    purchase_order_id = db.Column(db.Integer, db.ForeignKey("purchase_orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    ordered_quantity = db.Column(db.Integer, nullable=False)
    received_quantity = db.Column(db.Integer, nullable=False, default=0)
    unit_price_cents = db.Column(db.Integer, nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    product = db.relationship("Product")
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def remaining_quantity(self) -> int:
        return self.ordered_quantity - (self.received_quantity or 0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "purchase_order_id": self.purchase_order_id,
            "product_id": self.product_id,
            "ordered_quantity": self.ordered_quantity,
            "received_quantity": self.received_quantity,
            "remaining_quantity": self.remaining_quantity,
            "unit_price_cents": self.unit_price_cents,
            "version_id": self.version_id,
        }
