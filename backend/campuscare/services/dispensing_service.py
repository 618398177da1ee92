# Overview: Physical hand-off of a paid order from a dispensary slot.

from __future__ import annotations

from ..extensions import db
from ..errors import DispensaryNotFound, DispensaryUnavailable, InvalidState, OrderNotFound
from ..models import Dispensary, Order
from . import inventory_service, notification_service
from .auth_service import Principal, require_operator
from .concurrency import begin_write, lock_for_update, run_with_retry
from .lifecycle_service import STATUS_DISPENSED, STATUS_PROCESSING, apply_transition


def dispense(*, dispensary_id: int, order_id: int, slot_label: str, requester: Principal) -> tuple[Order, Dispensary]:
    """
    Hand an order over from a slot.

    Every check runs before any write, in one unit of work:
    order exists, dispensary exists, order is processing and belongs to this
    dispensary, dispensary is active, slot exists and is loaded. Then the
    order moves to dispensed and the slot gives up one unit.

    The order row is locked and versioned, so a concurrent cancel and
    dispense cannot both pass their status guard.

    Raises:
        AccessDenied, OrderNotFound, DispensaryNotFound, InvalidState,
        DispensaryUnavailable, SlotNotFound
    """
    require_operator(requester)

    def _op():
        begin_write()

        order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
        if order is None:
            raise OrderNotFound(f"Order {order_id} not found", details={"order_id": order_id})

        dispensary = db.session.get(Dispensary, dispensary_id)
        if dispensary is None:
            raise DispensaryNotFound(f"Dispensary {dispensary_id} not found")

        if order.status != STATUS_PROCESSING:
            raise InvalidState(
                "Order is not ready for dispensing",
                details={"order_id": order_id, "status": order.status},
            )

        if order.dispensary_id != dispensary.id:
            raise InvalidState(
                f"Order {order_id} belongs to dispensary {order.dispensary_id}",
                details={"order_id": order_id, "dispensary_id": order.dispensary_id},
            )

        if dispensary.status != "active":
            raise DispensaryUnavailable(
                "Dispensary is not active",
                details={"dispensary_id": dispensary.id, "status": dispensary.status},
            )

        # Raises SlotNotFound / InvalidState before anything has changed
        inventory_service.release_slot(dispensary.id, slot_label)

        apply_transition(order, STATUS_DISPENSED)
        order.dispensed_slot_label = slot_label

        db.session.commit()
        return order, dispensary

    order, dispensary = run_with_retry(_op)

    notification_service.publish(
        notification_service.EVENT_PRODUCT_DISPENSED,
        {
            "orderId": order.id,
            "dispensaryId": dispensary.id,
            "slotId": slot_label,
            "userId": order.user_id,
        },
    )
    return order, dispensary
