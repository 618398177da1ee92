from __future__ import annotations

from ..extensions import db
from campuscare.time_utils import to_utc_z


DISPENSARY_STATUSES = ("active", "maintenance", "offline")
POWER_STATUSES = ("on", "off", "battery")
NETWORK_STATUSES = ("connected", "disconnected", "poor")

SLOT_COLUMNS = 10


class Dispensary(db.Model):
    """
    A physical vending unit with a fixed array of labelled slots.

    Slots are enumerated once at creation (A1..A10, B1..B10, ...) up to
    capacity and are never re-labelled, even if the unit's metadata is
    edited later.
    """
    __tablename__ = "dispensaries"
    __table_args__ = (
        db.Index("ix_dispensaries_active_name", "is_active", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)

    # Location
    building = db.Column(db.String(255), nullable=False)
    floor = db.Column(db.Integer, nullable=False)
    room = db.Column(db.String(64), nullable=True)
    latitude = db.Column(db.Float, nullable=True)
    longitude = db.Column(db.Float, nullable=True)

    capacity = db.Column(db.Integer, nullable=False)

    # Operational status: active, maintenance, offline
    status = db.Column(db.String(16), nullable=False, default="active", index=True)

    # Telemetry reported by the cabinet
    temperature = db.Column(db.Float, nullable=True)
    humidity = db.Column(db.Float, nullable=True)
    power_status = db.Column(db.String(16), nullable=False, default="on")
    network_status = db.Column(db.String(16), nullable=False, default="connected")

    last_maintenance_at = db.Column(db.DateTime(timezone=True), nullable=True)
    next_maintenance_at = db.Column(db.DateTime(timezone=True), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    slots = db.relationship(
        "DispensarySlot",
        backref="dispensary",
        lazy=True,
        order_by="DispensarySlot.position",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<Dispensary id={self.id} name={self.name!r} status={self.status}>"

    def to_dict(self, include_slots: bool = True) -> dict:
        data = {
            "id": self.id,
            "name": self.name,
            "location": {
                "building": self.building,
                "floor": self.floor,
                "room": self.room,
                "coordinates": {"latitude": self.latitude, "longitude": self.longitude},
            },
            "capacity": self.capacity,
            "status": self.status,
            "temperature": self.temperature,
            "humidity": self.humidity,
            "power_status": self.power_status,
            "network_status": self.network_status,
            "last_maintenance_at": to_utc_z(self.last_maintenance_at) if self.last_maintenance_at else None,
            "next_maintenance_at": to_utc_z(self.next_maintenance_at) if self.next_maintenance_at else None,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_slots:
            data["slots"] = [slot.to_dict() for slot in self.slots]
        return data


class DispensarySlot(db.Model):
    """
    One physical compartment. Holds at most one product type.

    INVARIANT: is_occupied is True iff quantity > 0. Only
    inventory_service.stock_item and release_slot mutate a slot.
    """
    __tablename__ = "dispensary_slots"
    __table_args__ = (
        db.UniqueConstraint("dispensary_id", "label", name="uq_dispensary_slot_label"),
        db.CheckConstraint("quantity >= 0", name="ck_slot_quantity_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    dispensary_id = db.Column(db.Integer, db.ForeignKey("dispensaries.id"), nullable=False, index=True)

    # "A1", "B10", ...; position keeps enumeration order for display
    label = db.Column(db.String(8), nullable=False)
    position = db.Column(db.Integer, nullable=False)

    is_occupied = db.Column(db.Boolean, nullable=False, default=False)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True)
    quantity = db.Column(db.Integer, nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    product = db.relationship("Product")
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "slot_id": self.label,
            "is_occupied": self.is_occupied,
            "product_id": self.product_id,
            "quantity": self.quantity,
        }
