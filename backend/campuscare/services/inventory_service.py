# Overview: Service-layer operations for inventory; owns stock counters and slot occupancy.

from __future__ import annotations

from datetime import datetime

from ..extensions import db
from ..errors import (
    DispensaryNotFound,
    InsufficientStock,
    InvalidState,
    ProductNotFound,
    SlotNotFound,
    ValidationError,
)
from ..models import Dispensary, DispensarySlot, InventoryRecord, Product
from campuscare.time_utils import utcnow
from .auth_service import Principal, require_operator
from .concurrency import begin_write, lock_for_update, run_with_retry
"""
CampusCare Inventory Invariants (authoritative)

Two counters, two moments:
- InventoryRecord.quantity is sellable stock for (product, dispensary). It is
  reserved (decremented) when an order is placed and restored when the order
  is cancelled.
- DispensarySlot.quantity is what physically sits in a compartment. It is
  loaded by stock_item() and released one unit per dispense.

Rules:
- One InventoryRecord per (product, dispensary).
- InventoryRecord.quantity never goes below zero: check_stock/decrement must
  run in the same critical section (locked row + version_id) as the write.
- Slot is_occupied iff quantity > 0; an empty slot has no product.
- decrement/increment/release_slot do not commit; the caller's unit of work
  does. stock_item is its own unit of work.
"""


def _positive_quantity(quantity) -> int:
    if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity < 1:
        raise ValidationError("quantity must be a positive integer")
    return quantity


def find_record(product_id: int, dispensary_id: int, *, lock: bool = False) -> InventoryRecord | None:
    query = db.session.query(InventoryRecord).filter_by(
        product_id=product_id,
        dispensary_id=dispensary_id,
    )
    if lock:
        query = lock_for_update(query)
    return query.first()


def check_stock(product_id: int, dispensary_id: int, quantity: int, *, lock: bool = True) -> InventoryRecord:
    """
    Return the record for (product, dispensary) if it can cover quantity.

    Raises InsufficientStock when the record is missing or short.
    """
    record = find_record(product_id, dispensary_id, lock=lock)
    if record is None or record.quantity < quantity:
        raise InsufficientStock(
            f"Insufficient stock for product: {product_id}",
            details={
                "product_id": product_id,
                "dispensary_id": dispensary_id,
                "requested_quantity": quantity,
                "available": record.quantity if record else 0,
            },
        )
    return record


def decrement(product_id: int, dispensary_id: int, quantity: int) -> int:
    """Reserve quantity units. Returns the new quantity."""
    _positive_quantity(quantity)
    record = check_stock(product_id, dispensary_id, quantity, lock=True)
    record.quantity = record.quantity - quantity
    record.refresh_status()
    db.session.flush()
    return record.quantity


def increment(product_id: int, dispensary_id: int, quantity: int) -> int:
    """
    Give quantity units back (cancellation path). Returns the new quantity.

    No upper bound: restoring can exceed the last restocked amount.
    """
    _positive_quantity(quantity)
    record = find_record(product_id, dispensary_id, lock=True)
    if record is None:
        raise InvalidState(
            "Inventory record missing; cannot restore stock",
            details={"product_id": product_id, "dispensary_id": dispensary_id},
        )
    record.quantity = record.quantity + quantity
    record.refresh_status()
    db.session.flush()
    return record.quantity


def get_slot(dispensary_id: int, slot_label: str, *, lock: bool = False) -> DispensarySlot:
    query = db.session.query(DispensarySlot).filter_by(dispensary_id=dispensary_id, label=slot_label)
    if lock:
        query = lock_for_update(query)
    slot = query.first()
    if slot is None:
        raise SlotNotFound(
            f"Slot {slot_label} not found in dispensary {dispensary_id}",
            details={"dispensary_id": dispensary_id, "slot_id": slot_label},
        )
    return slot


def release_slot(dispensary_id: int, slot_label: str) -> DispensarySlot:
    """Take one unit out of a slot; an emptied slot is cleared."""
    slot = get_slot(dispensary_id, slot_label, lock=True)
    if slot.quantity < 1:
        raise InvalidState(
            f"Slot {slot_label} is empty",
            details={"dispensary_id": dispensary_id, "slot_id": slot_label},
        )

    slot.quantity = slot.quantity - 1
    if slot.quantity == 0:
        slot.is_occupied = False
        slot.product_id = None
    db.session.flush()
    return slot


def stock_item(
    *,
    product_id: int,
    dispensary_id: int,
    slot_label: str,
    quantity: int,
    cost_price_cents: int,
    selling_price_cents: int,
    requester: Principal,
    restock_level: int | None = None,
    batch_number: str | None = None,
    expiry_date: datetime | None = None,
) -> InventoryRecord:
    """
    Restock a product into a dispensary slot.

    Creates the (product, dispensary) record on first stock and adds to it
    afterwards. A slot holds one product at a time. A record keeps its slot
    while that slot still holds the product; once the slot has been emptied
    the product may be stocked into any free slot and the record follows it.
    """
    require_operator(requester)
    _positive_quantity(quantity)
    for name, value in (("cost_price_cents", cost_price_cents), ("selling_price_cents", selling_price_cents)):
        if not isinstance(value, int) or isinstance(value, bool) or value < 0:
            raise ValidationError(f"{name} must be a non-negative integer")

    def _op():
        begin_write()

        if db.session.get(Dispensary, dispensary_id) is None:
            raise DispensaryNotFound(f"Dispensary {dispensary_id} not found")
        if db.session.get(Product, product_id) is None:
            raise ProductNotFound(f"Product {product_id} not found")

        slot = get_slot(dispensary_id, slot_label, lock=True)
        if slot.is_occupied and slot.product_id != product_id:
            raise InvalidState(
                f"Slot {slot_label} already holds another product",
                details={"slot_id": slot_label, "product_id": slot.product_id},
            )

        record = find_record(product_id, dispensary_id, lock=True)
        if record is None:
            record = InventoryRecord(
                product_id=product_id,
                dispensary_id=dispensary_id,
                quantity=0,
                slot_label=slot_label,
                cost_price_cents=cost_price_cents,
                selling_price_cents=selling_price_cents,
                restock_level=restock_level if restock_level is not None else 5,
            )
            db.session.add(record)
        elif record.slot_label != slot_label:
            bound = get_slot(dispensary_id, record.slot_label, lock=True)
            if bound.is_occupied and bound.product_id == product_id:
                raise InvalidState(
                    f"Product {product_id} is stocked in slot {record.slot_label}, not {slot_label}",
                    details={"slot_id": record.slot_label},
                )
            # Old slot was emptied (and maybe reloaded with something else)
            record.slot_label = slot_label

        record.quantity = record.quantity + quantity
        record.cost_price_cents = cost_price_cents
        record.selling_price_cents = selling_price_cents
        if restock_level is not None:
            record.restock_level = restock_level
        if batch_number is not None:
            record.batch_number = batch_number
        if expiry_date is not None:
            record.expiry_date = expiry_date
        record.last_restocked_at = utcnow()
        record.refresh_status()

        slot.product_id = product_id
        slot.quantity = slot.quantity + quantity
        slot.is_occupied = True

        db.session.commit()
        return record

    return run_with_retry(_op)


def list_dispensary_inventory(dispensary_id: int) -> list[InventoryRecord]:
    return (
        db.session.query(InventoryRecord)
        .filter_by(dispensary_id=dispensary_id)
        .order_by(InventoryRecord.slot_label)
        .all()
    )
