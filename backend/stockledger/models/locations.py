from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


LOCATION_TYPE_WAREHOUSE = "WAREHOUSE"
LOCATION_TYPE_STORE = "STORE"
LOCATION_TYPES = {LOCATION_TYPE_WAREHOUSE, LOCATION_TYPE_STORE}


class StockLocation(db.Model):
    """
    A warehouse or a store. Every quantity in the ledger is scoped to one.

    Locations are never deleted while they own inventory records;
    deactivation only flips is_active. Inactive locations are rejected as
    the target of new transfers, audits, purchase orders and checkouts.
    """
    __tablename__ = "stock_locations"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(32), nullable=False, unique=True, index=True)
    name = db.Column(db.String(255), nullable=False)

    # WAREHOUSE or STORE
    location_type = db.Column(db.String(16), nullable=False, index=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<StockLocation id={self.id} code={self.code!r} type={self.location_type}>"

    @property
    def is_warehouse(self) -> bool:
        return self.location_type == LOCATION_TYPE_WAREHOUSE

    @property
    def is_store(self) -> bool:
        return self.location_type == LOCATION_TYPE_STORE

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "location_type": self.location_type,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Product(db.Model):
    """
    Product master data. Catalogue maintenance lives outside this service;
    the ledger only needs a stable id and a SKU for messages.
    """
    __tablename__ = "products"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sku = db.Column(db.String(64), nullable=False, unique=True, index=True)
    name = db.Column(db.String(255), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }
