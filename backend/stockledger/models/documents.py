from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Transfer(db.Model):
    """
    Planned movement of stock between two locations.

    LIFECYCLE:
    1. DRAFT: Created, items and locations editable, deletable
    2. PENDING: Submitted for approval, still editable
    3. APPROVED: Manager approved, ready to ship
    4. IN_TRANSIT: Shipped; stock removed from source
    5. COMPLETED: Received; stock added at destination
    REJECTED (from PENDING) and CANCELLED (from DRAFT/PENDING) are terminal.

    Totals are denormalized from the items at target prices and recomputed
    on every item edit.
    """
    __tablename__ = "transfers"
    __table_args__ = (
        db.Index("ix_transfers_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # TRF-YYYYMMDD-NNNN
    transfer_number = db.Column(db.String(32), nullable=False, unique=True, index=True)

    from_location_id = db.Column(db.Integer, db.ForeignKey("stock_locations.id"), nullable=False, index=True)
    to_location_id = db.Column(db.Integer, db.ForeignKey("stock_locations.id"), nullable=False, index=True)

    # RESTOCK, RETURN, RELOCATION
    transfer_type = db.Column(db.String(16), nullable=False, default="RESTOCK")
    # LOW, NORMAL, HIGH, URGENT
    priority = db.Column(db.String(16), nullable=False, default="NORMAL")

    status = db.Column(db.String(16), nullable=False, default="DRAFT", index=True)

    total_items = db.Column(db.Integer, nullable=False, default=0)
    total_cost_cents = db.Column(db.Integer, nullable=False, default=0)
    total_retail_cents = db.Column(db.Integer, nullable=False, default=0)

    shipping_method = db.Column(db.String(64), nullable=True)
    tracking_number = db.Column(db.String(128), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    processing_notes = db.Column(db.Text, nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)
    cancellation_reason = db.Column(db.Text, nullable=True)

    expected_delivery_date = db.Column(db.DateTime(timezone=True), nullable=True)

    # Actor ids come from the upstream auth gateway
    requested_by = db.Column(db.Integer, nullable=True)
    approved_by = db.Column(db.Integer, nullable=True)
    rejected_by = db.Column(db.Integer, nullable=True)
    shipped_by = db.Column(db.Integer, nullable=True)
    completed_by = db.Column(db.Integer, nullable=True)
    cancelled_by = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    approved_date = db.Column(db.DateTime(timezone=True), nullable=True)
    rejected_date = db.Column(db.DateTime(timezone=True), nullable=True)
    shipped_date = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_date = db.Column(db.DateTime(timezone=True), nullable=True)
    actual_delivery_date = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_date = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    from_location = db.relationship("StockLocation", foreign_keys=[from_location_id])
    to_location = db.relationship("StockLocation", foreign_keys=[to_location_id])
    items = db.relationship(
        "TransferItem",
        backref="transfer",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="TransferItem.id",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transfer_number": self.transfer_number,
            "from_location_id": self.from_location_id,
            "to_location_id": self.to_location_id,
            "transfer_type": self.transfer_type,
            "priority": self.priority,
            "status": self.status,
            "total_items": self.total_items,
            "total_cost_cents": self.total_cost_cents,
            "total_retail_cents": self.total_retail_cents,
            "shipping_method": self.shipping_method,
            "tracking_number": self.tracking_number,
            "notes": self.notes,
            "processing_notes": self.processing_notes,
            "rejection_reason": self.rejection_reason,
            "cancellation_reason": self.cancellation_reason,
            "expected_delivery_date": to_utc_z(self.expected_delivery_date),
            "requested_by": self.requested_by,
            "approved_by": self.approved_by,
            "rejected_by": self.rejected_by,
            "shipped_by": self.shipped_by,
            "completed_by": self.completed_by,
            "cancelled_by": self.cancelled_by,
            "created_at": to_utc_z(self.created_at),
            "approved_date": to_utc_z(self.approved_date),
            "rejected_date": to_utc_z(self.rejected_date),
            "shipped_date": to_utc_z(self.shipped_date),
            "completed_date": to_utc_z(self.completed_date),
            "actual_delivery_date": to_utc_z(self.actual_delivery_date),
            "cancelled_date": to_utc_z(self.cancelled_date),
            "version_id": self.version_id,
        }


class TransferItem(db.Model):
    """
    One product line on a transfer.

    Source prices are what the goods carry at the origin; target prices are
    applied to the destination record on receipt and may differ to reflect
    destination pricing.
    """
    __tablename__ = "transfer_items"
    __table_args__ = (
        db.UniqueConstraint("transfer_id", "product_id", name="uq_transfer_items_product"),
        db.CheckConstraint("quantity > 0", name="ck_transfer_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    transfer_id = db.Column(db.Integer, db.ForeignKey("transfers.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)

    # Bins the line ships from and lands in; "" is the unbinned record
    source_bin_code = db.Column(db.String(64), nullable=False, default="")
    target_bin_code = db.Column(db.String(64), nullable=False, default="")

    source_cost_price_cents = db.Column(db.Integer, nullable=False, default=0)
    source_retail_price_cents = db.Column(db.Integer, nullable=False, default=0)
    target_cost_price_cents = db.Column(db.Integer, nullable=False, default=0)
    target_retail_price_cents = db.Column(db.Integer, nullable=False, default=0)

    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transfer_id": self.transfer_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "source_bin_code": self.source_bin_code,
            "target_bin_code": self.target_bin_code,
            "source_cost_price_cents": self.source_cost_price_cents,
            "source_retail_price_cents": self.source_retail_price_cents,
            "target_cost_price_cents": self.target_cost_price_cents,
            "target_retail_price_cents": self.target_retail_price_cents,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }


class Audit(db.Model):
    """
    Physical count exercise scoped to one warehouse.

    LIFECYCLE:
    1. PLANNED: Created; items may already be scoped
    2. IN_PROGRESS: Started; items snapshotted, counts being recorded
    3. COMPLETED: Every item COUNTED or RECONCILED
    CANCELLED is reachable from PLANNED and IN_PROGRESS.

    An audit is never held inside one database transaction; every count
    submission is its own short unit of work.
    """
    __tablename__ = "audits"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)

    # AUD-YYYYMMDD-NNNN
    audit_number = db.Column(db.String(32), nullable=False, unique=True, index=True)
    warehouse_id = db.Column(db.Integer, db.ForeignKey("stock_locations.id"), nullable=False, index=True)
    title = db.Column(db.String(255), nullable=True)

    status = db.Column(db.String(16), nullable=False, default="PLANNED", index=True)

    scheduled_date = db.Column(db.DateTime(timezone=True), nullable=True)
    start_date = db.Column(db.DateTime(timezone=True), nullable=True)
    end_date = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_date = db.Column(db.DateTime(timezone=True), nullable=True)

    notes = db.Column(db.Text, nullable=True)
    created_by = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    warehouse = db.relationship("StockLocation")
    items = db.relationship(
        "AuditItem",
        backref="audit",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="AuditItem.id",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "audit_number": self.audit_number,
            "warehouse_id": self.warehouse_id,
            "title": self.title,
            "status": self.status,
            "scheduled_date": to_utc_z(self.scheduled_date),
            "start_date": to_utc_z(self.start_date),
            "end_date": to_utc_z(self.end_date),
            "cancelled_date": to_utc_z(self.cancelled_date),
            "notes": self.notes,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
            "version_id": self.version_id,
        }


class AuditItem(db.Model):
    """
    One counted line.

    expected_quantity is the ledger quantity at snapshot time and is never
    recomputed. discrepancy = counted - expected. A discrepancy is a finding;
    only an explicit reconciliation touches the ledger.
    """
    __tablename__ = "audit_items"
    __table_args__ = (
        db.UniqueConstraint("audit_id", "inventory_record_id", name="uq_audit_items_record"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    audit_id = db.Column(db.Integer, db.ForeignKey("audits.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    inventory_record_id = db.Column(db.Integer, db.ForeignKey("inventory_records.id"), nullable=False)

    expected_quantity = db.Column(db.Integer, nullable=False)
    counted_quantity = db.Column(db.Integer, nullable=True)
    discrepancy = db.Column(db.Integer, nullable=True)

    # PENDING, COUNTED, DISCREPANCY, RECONCILED
    status = db.Column(db.String(16), nullable=False, default="PENDING", index=True)
    notes = db.Column(db.Text, nullable=True)

    counted_by = db.Column(db.Integer, nullable=True)
    counted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    reconciled_by = db.Column(db.Integer, nullable=True)
    reconciled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    product = db.relationship("Product")
    inventory_record = db.relationship("InventoryRecord")
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "audit_id": self.audit_id,
            "product_id": self.product_id,
            "inventory_record_id": self.inventory_record_id,
            "expected_quantity": self.expected_quantity,
            "counted_quantity": self.counted_quantity,
            "discrepancy": self.discrepancy,
            "status": self.status,
            "notes": self.notes,
            "counted_by": self.counted_by,
            "counted_at": to_utc_z(self.counted_at),
            "reconciled_by": self.reconciled_by,
            "reconciled_at": to_utc_z(self.reconciled_at),
            "version_id": self.version_id,
        }


class Return(db.Model):
    """
    Customer return against a completed sale.

    LIFECYCLE:
    1. PENDING: Return created, awaiting manager approval
    2. APPROVED: Manager approved, ready to process
    3. COMPLETED: Stock restored, loyalty reversed, refund processed
    4. REJECTED: Manager rejected return request

    The original Sale is never edited; this document is the correction.
    """
    __tablename__ = "returns"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)

    # RET-YYMMDD-NNN
    return_number = db.Column(db.String(32), nullable=False, unique=True, index=True)

    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stock_locations.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)

    status = db.Column(db.String(16), nullable=False, default="PENDING", index=True)
    # PENDING, PROCESSED, REJECTED
    refund_status = db.Column(db.String(16), nullable=False, default="PENDING")
    refund_method = db.Column(db.String(32), nullable=True)

    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)

    # Points taken back from the customer on completion
    loyalty_points_reversed = db.Column(db.Integer, nullable=False, default=0)

    reason = db.Column(db.Text, nullable=True)
    notes = db.Column(db.Text, nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)

    created_by = db.Column(db.Integer, nullable=True)
    approved_by = db.Column(db.Integer, nullable=True)
    completed_by = db.Column(db.Integer, nullable=True)
    rejected_by = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejected_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    sale = db.relationship("Sale", backref=db.backref("returns", lazy=True))
    items = db.relationship(
        "ReturnItem",
        backref="return_doc",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="ReturnItem.id",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "return_number": self.return_number,
            "sale_id": self.sale_id,
            "store_id": self.store_id,
            "customer_id": self.customer_id,
            "status": self.status,
            "refund_status": self.refund_status,
            "refund_method": self.refund_method,
            "subtotal_cents": self.subtotal_cents,
            "total_cents": self.total_cents,
            "loyalty_points_reversed": self.loyalty_points_reversed,
            "reason": self.reason,
            "notes": self.notes,
            "rejection_reason": self.rejection_reason,
            "created_by": self.created_by,
            "approved_by": self.approved_by,
            "completed_by": self.completed_by,
            "rejected_by": self.rejected_by,
            "created_at": to_utc_z(self.created_at),
            "approved_at": to_utc_z(self.approved_at),
            "completed_at": to_utc_z(self.completed_at),
            "rejected_at": to_utc_z(self.rejected_at),
            "version_id": self.version_id,
        }


class ReturnItem(db.Model):
    __tablename__ = "return_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    return_id = db.Column(db.Integer, db.ForeignKey("returns.id"), nullable=False, index=True)
    sale_item_id = db.Column(db.Integer, db.ForeignKey("sale_items.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    total_price_cents = db.Column(db.Integer, nullable=False)

    # GOOD items go back on the shelf, DAMAGED ones do not
    condition = db.Column(db.String(16), nullable=False, default="GOOD")
    reason = db.Column(db.String(32), nullable=False, default="OTHER")

    movement_id = db.Column(db.Integer, db.ForeignKey("movement_entries.id"), nullable=True)

    sale_item = db.relationship("SaleItem")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "return_id": self.return_id,
            "sale_item_id": self.sale_item_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "total_price_cents": self.total_price_cents,
            "condition": self.condition,
            "reason": self.reason,
            "movement_id": self.movement_id,
        }


class DocumentSequence(db.Model):
    """
    Atomic per-day document sequences.

    WHY: Prevent race conditions when generating document numbers
    (receipts, transfers, audits, purchase orders, returns).
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("document_type", "period", name="uq_doc_sequences_type_period"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    document_type = db.Column(db.String(32), nullable=False, index=True)
    # Business day the counter belongs to, e.g. "20261019"
    period = db.Column(db.String(16), nullable=False)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_type": self.document_type,
            "period": self.period,
            "next_number": self.next_number,
            "updated_at": to_utc_z(self.updated_at),
        }


class ActivityEvent(db.Model):
    """
    Append-only audit trail of workflow transitions.

    - Written inside the same DB transaction as the change it records.
    - No updates/deletes.
    - details holds a JSON object describing the change.
    """
    __tablename__ = "activity_events"
    __table_args__ = (
        db.Index("ix_activity_entity", "entity_type", "entity_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    entity_type = db.Column(db.String(32), nullable=False)
    entity_id = db.Column(db.Integer, nullable=False)
    action = db.Column(db.String(64), nullable=False, index=True)
    actor_id = db.Column(db.Integer, nullable=True, index=True)
    location_id = db.Column(db.Integer, db.ForeignKey("stock_locations.id"), nullable=True, index=True)
    details = db.Column(db.Text, nullable=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "action": self.action,
            "actor_id": self.actor_id,
            "location_id": self.location_id,
            "details": self.details,
            "occurred_at": to_utc_z(self.occurred_at),
        }
