from __future__ import annotations

from ..extensions import db
from campuscare.time_utils import to_utc_z, utcnow


PRODUCT_CATEGORIES = ("beverages", "snacks", "stationery", "hygiene", "electronics", "medicines", "other")

INVENTORY_STATUS_ACTIVE = "active"
INVENTORY_STATUS_LOW_STOCK = "low_stock"
INVENTORY_STATUS_OUT_OF_STOCK = "out_of_stock"
INVENTORY_STATUS_EXPIRED = "expired"


class Product(db.Model):
    """
    Local mirror of the catalog service's product identity.

    The engine never edits catalog data; rows arrive through catalog sync
    (or the `catalog add-product` CLI). Selling price used for orders lives
    on InventoryRecord, not here. list_price_cents is display metadata only.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("barcode", name="uq_products_barcode"),
        db.Index("ix_products_category_active", "category", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    barcode = db.Column(db.String(64), nullable=False)
    category = db.Column(db.String(32), nullable=False, default="other")
    brand = db.Column(db.String(128), nullable=True)

    list_price_cents = db.Column(db.Integer, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} barcode={self.barcode!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "barcode": self.barcode,
            "category": self.category,
            "brand": self.brand,
            "list_price_cents": self.list_price_cents,
            "is_active": self.is_active,
        }


class InventoryRecord(db.Model):
    """
    Stock and pricing of one product at one dispensary.

    INVARIANTS:
    - Exactly one record per (product_id, dispensary_id).
    - quantity >= 0; inventory_service refuses any decrement that would
      cross zero and the CHECK constraint backs that up.
    - status is derived from quantity/restock_level/expiry_date by
      refresh_status() and is never written directly by callers.

    quantity is the virtual (sellable) stock and drops at order time.
    The physical count inside the cabinet is DispensarySlot.quantity and
    drops at dispense time.
    """
    __tablename__ = "inventory_records"
    __table_args__ = (
        db.UniqueConstraint("product_id", "dispensary_id", name="uq_inventory_product_dispensary"),
        db.CheckConstraint("quantity >= 0", name="ck_inventory_quantity_non_negative"),
        db.Index("ix_inventory_dispensary_slot", "dispensary_id", "slot_label"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    dispensary_id = db.Column(db.Integer, db.ForeignKey("dispensaries.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False, default=0)
    slot_label = db.Column(db.String(8), nullable=False)

    batch_number = db.Column(db.String(64), nullable=True)
    expiry_date = db.Column(db.DateTime(timezone=True), nullable=True)

    cost_price_cents = db.Column(db.Integer, nullable=False)
    selling_price_cents = db.Column(db.Integer, nullable=False)
    restock_level = db.Column(db.Integer, nullable=False, default=5)
    last_restocked_at = db.Column(db.DateTime(timezone=True), nullable=True)

    status = db.Column(db.String(16), nullable=False, default=INVENTORY_STATUS_ACTIVE, index=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    product = db.relationship("Product")
    dispensary = db.relationship("Dispensary", backref=db.backref("inventory_records", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def refresh_status(self, now=None) -> str:
        now = now or utcnow()
        if self.expiry_date is not None and self.expiry_date.replace(tzinfo=None) <= now:
            self.status = INVENTORY_STATUS_EXPIRED
        elif self.quantity == 0:
            self.status = INVENTORY_STATUS_OUT_OF_STOCK
        elif self.quantity <= self.restock_level:
            self.status = INVENTORY_STATUS_LOW_STOCK
        else:
            self.status = INVENTORY_STATUS_ACTIVE
        return self.status

    def __repr__(self) -> str:
        return (
            f"<InventoryRecord id={self.id} product_id={self.product_id} "
            f"dispensary_id={self.dispensary_id} quantity={self.quantity}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product": self.product.to_dict() if self.product else None,
            "dispensary_id": self.dispensary_id,
            "quantity": self.quantity,
            "slot_label": self.slot_label,
            "batch_number": self.batch_number,
            "expiry_date": to_utc_z(self.expiry_date) if self.expiry_date else None,
            "cost_price_cents": self.cost_price_cents,
            "selling_price_cents": self.selling_price_cents,
            "restock_level": self.restock_level,
            "last_restocked_at": to_utc_z(self.last_restocked_at) if self.last_restocked_at else None,
            "status": self.status,
            "version_id": self.version_id,
        }
