# Overview: Order status state machine.

"""
CampusCare Order Lifecycle

================================================================================
STATE MACHINE:
    placed -> processing -> dispensed -> completed
       |          |
       +----------+--> cancelled

    placed:     Order persisted, stock reserved, payment pending
    processing: Payment settled, waiting for pickup at the cabinet
    dispensed:  Goods physically handed over from a slot
    completed:  Collection confirmed (collected_at stamped)
    cancelled:  Diverted before dispense; stock restored, wallet refunded

RULES:
1. Cannot skip states (placed -> dispensed is forbidden)
2. Cannot move backwards; cancellation is the only side exit
3. dispensed, completed and cancelled never go to cancelled
4. completed and cancelled are terminal
5. A same-state "transition" is not a transition and is rejected

The status check is the compare-and-set guard between racing operations
(e.g. cancel vs dispense): callers re-read the order under lock inside
their unit of work, call apply_transition, and the Order version_id turns
a lost race into a StaleDataError that run_with_retry re-evaluates.
================================================================================
"""

from __future__ import annotations

from ..errors import InvalidTransition
from ..models import Order
from campuscare.time_utils import utcnow


STATUS_PLACED = "placed"
STATUS_PROCESSING = "processing"
STATUS_DISPENSED = "dispensed"
STATUS_COMPLETED = "completed"
STATUS_CANCELLED = "cancelled"

VALID_STATUSES = {STATUS_PLACED, STATUS_PROCESSING, STATUS_DISPENSED, STATUS_COMPLETED, STATUS_CANCELLED}

VALID_TRANSITIONS = {
    (STATUS_PLACED, STATUS_PROCESSING),
    (STATUS_PROCESSING, STATUS_DISPENSED),
    (STATUS_DISPENSED, STATUS_COMPLETED),
    (STATUS_PLACED, STATUS_CANCELLED),
    (STATUS_PROCESSING, STATUS_CANCELLED),
}


def validate_status(status: str) -> None:
    """
    Raises:
        InvalidTransition: If status is not in VALID_STATUSES
    """
    if status not in VALID_STATUSES:
        raise InvalidTransition(
            f"Invalid status '{status}'. Must be one of: {', '.join(sorted(VALID_STATUSES))}"
        )


def can_transition(from_status: str, to_status: str) -> bool:
    validate_status(from_status)
    validate_status(to_status)
    return (from_status, to_status) in VALID_TRANSITIONS


def apply_transition(order: Order, to_status: str) -> Order:
    """
    Move order to to_status, stamping the matching timestamp.

    Does not flush or commit; the caller owns the unit of work.

    Raises:
        InvalidTransition: If the move is not in VALID_TRANSITIONS
    """
    from_status = order.status
    if not can_transition(from_status, to_status):
        raise InvalidTransition(
            f"Cannot move order {order.id} from '{from_status}' to '{to_status}'",
            details={"order_id": order.id, "from": from_status, "to": to_status},
        )

    order.status = to_status
    now = utcnow()
    if to_status == STATUS_COMPLETED:
        order.collected_at = now
    elif to_status == STATUS_DISPENSED:
        order.dispensed_at = now
    elif to_status == STATUS_CANCELLED:
        order.cancelled_at = now
    return order
