from __future__ import annotations

from ..extensions import db
from campuscare.time_utils import to_utc_z


PAYMENT_METHODS = ("wallet", "card", "upi", "cash")
PAYMENT_STATUSES = ("pending", "completed", "failed", "refunded")


class Order(db.Model):
    """
    One reservation of goods by one user from one dispensary.

    WHY the frozen fields:
    - transaction_id is assigned once in order_service.create_order and is
      never regenerated, even on retry.
    - total_amount_cents is computed once from the lines at creation and is
      never recomputed later (line prices are snapshots, the catalog may
      move on).

    Status progression lives in lifecycle_service.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.UniqueConstraint("transaction_id", name="uq_orders_transaction_id"),
        db.Index("ix_orders_user_created", "user_id", "created_at"),
        db.Index("ix_orders_dispensary_status", "dispensary_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Authenticated principal from the identity service; no local users table
    user_id = db.Column(db.Integer, nullable=False, index=True)
    dispensary_id = db.Column(db.Integer, db.ForeignKey("dispensaries.id"), nullable=False, index=True)

    transaction_id = db.Column(db.String(64), nullable=False)

    total_amount_cents = db.Column(db.Integer, nullable=False)

    payment_method = db.Column(db.String(16), nullable=False)
    payment_status = db.Column(db.String(16), nullable=False, default="pending", index=True)
    # Payment trail: ledger transaction ids (or gateway reference for non-wallet)
    payment_reference = db.Column(db.String(64), nullable=True)
    refund_reference = db.Column(db.String(64), nullable=True)

    # placed, processing, dispensed, completed, cancelled
    status = db.Column(db.String(16), nullable=False, default="placed", index=True)

    qr_payload = db.Column(db.Text, nullable=True)
    qr_code = db.Column(db.Text, nullable=True)

    collect_by = db.Column(db.DateTime(timezone=True), nullable=False)
    collected_at = db.Column(db.DateTime(timezone=True), nullable=True)
    dispensed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    dispensed_slot_label = db.Column(db.String(8), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    notes = db.Column(db.Text, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    dispensary = db.relationship("Dispensary")
    lines = db.relationship(
        "OrderLine",
        backref="order",
        lazy=True,
        order_by="OrderLine.id",
        cascade="all, delete-orphan",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Order id={self.id} transaction_id={self.transaction_id!r} status={self.status}>"

    def to_dict(self, include_qr: bool = True) -> dict:
        data = {
            "id": self.id,
            "user_id": self.user_id,
            "dispensary_id": self.dispensary_id,
            "transaction_id": self.transaction_id,
            "items": [line.to_dict() for line in self.lines],
            "total_amount_cents": self.total_amount_cents,
            "payment_method": self.payment_method,
            "payment_status": self.payment_status,
            "payment_reference": self.payment_reference,
            "refund_reference": self.refund_reference,
            "status": self.status,
            "collect_by": to_utc_z(self.collect_by),
            "collected_at": to_utc_z(self.collected_at) if self.collected_at else None,
            "dispensed_at": to_utc_z(self.dispensed_at) if self.dispensed_at else None,
            "dispensed_slot": self.dispensed_slot_label,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "notes": self.notes,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_qr:
            data["qr_code"] = self.qr_code
        return data


class OrderLine(db.Model):
    """Ordered product with its price snapshot and the slot it is collected from."""
    __tablename__ = "order_lines"
    __table_args__ = (
        db.CheckConstraint("quantity >= 1", name="ck_order_line_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)
    slot_label = db.Column(db.String(8), nullable=False)

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
            "slot": self.slot_label,
        }
