# Overview: Service-layer operations for orders; orchestrates ledger and inventory around the lifecycle.

"""
Order Service - reservation, payment and cancellation of dispensary orders

WHY: An order touches three mutable resources (inventory counters, the
user's wallet, and later a physical slot). No single row lock covers all
three, so every mutation happens in a fixed order inside one unit of work:

    lock inventory rows (product_id order) -> check stock
    lock wallet                              -> check balance
    persist order (placed)                   -> QR payload
    ledger debit                             -> processing
    inventory decrement
    COMMIT                                   -> publish orderPlaced

Any failure before COMMIT rolls the whole unit back, and run_with_retry
re-runs it from the top on lock/version conflicts, so a retry re-checks
everything instead of re-applying half a write.

Cancellation is split in two units of work on purpose: stock restoration
commits first, the refund second. A failed refund never strands stock;
it surfaces as RefundFailed and a repeated cancel retries just the refund.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..errors import (
    AccessDenied,
    CampusCareError,
    DispensaryNotFound,
    InsufficientFunds,
    InvalidState,
    InvalidTransition,
    OrderNotFound,
    RefundFailed,
    ValidationError,
)
from ..models import Dispensary, Order, OrderLine
from ..models.orders import PAYMENT_METHODS
from campuscare.time_utils import minutes_from_now
from . import inventory_service, ledger_service, notification_service, qr_service
from .auth_service import Principal, require_operator, require_owner_or_operator
from .concurrency import begin_write, lock_for_update, run_with_retry
from .identifier_service import generate_transaction_id
from .lifecycle_service import (
    STATUS_CANCELLED,
    STATUS_PROCESSING,
    VALID_STATUSES,
    apply_transition,
    validate_status,
)


PAYMENT_PENDING = "pending"
PAYMENT_COMPLETED = "completed"
PAYMENT_FAILED = "failed"
PAYMENT_REFUNDED = "refunded"


# =============================================================================
# INPUT NORMALIZATION
# =============================================================================

def _normalize_items(items) -> dict[int, int]:
    """Collapse requested lines to {product_id: quantity}, preserving first-seen order."""
    if not isinstance(items, list) or not items:
        raise ValidationError("At least one item is required")

    requested: dict[int, int] = {}
    for item in items:
        if not isinstance(item, dict):
            raise ValidationError("Each item must be an object with product_id and quantity")
        product_id = item.get("product_id")
        quantity = item.get("quantity")
        if not isinstance(product_id, int) or isinstance(product_id, bool):
            raise ValidationError("product_id must be an integer")
        if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity < 1:
            raise ValidationError("quantity must be a positive integer")
        requested[product_id] = requested.get(product_id, 0) + quantity
    return requested


def _validate_filter(status: str) -> None:
    if status not in VALID_STATUSES:
        raise ValidationError(f"Unknown status filter: {status}")


def _load_order(order_id: int, *, lock: bool = False) -> Order:
    query = db.session.query(Order).filter_by(id=order_id)
    if lock:
        query = lock_for_update(query)
    order = query.first()
    if order is None:
        raise OrderNotFound(f"Order {order_id} not found", details={"order_id": order_id})
    return order


def _order_event(order: Order) -> dict:
    return {
        "orderId": order.id,
        "transactionId": order.transaction_id,
        "dispensaryId": order.dispensary_id,
        "userId": order.user_id,
        "status": order.status,
        "paymentStatus": order.payment_status,
    }


# =============================================================================
# CREATE
# =============================================================================

def create_order(
    *,
    requester: Principal,
    dispensary_id: int,
    items: list[dict],
    payment_method: str,
    notes: str | None = None,
) -> Order:
    """
    Reserve stock, take payment (wallet) and persist an order.

    Raises:
        ValidationError, DispensaryNotFound, InsufficientStock, InsufficientFunds
    """
    if requester is None:
        raise AccessDenied("Authentication required")
    if payment_method not in PAYMENT_METHODS:
        raise ValidationError(f"Invalid payment method: {payment_method}. Must be one of {list(PAYMENT_METHODS)}")
    requested = _normalize_items(items)
    user_id = requester.user_id
    collect_window = current_app.config.get("ORDER_COLLECT_WINDOW_MINUTES", 30)

    def _op():
        begin_write()

        if db.session.get(Dispensary, dispensary_id) is None:
            raise DispensaryNotFound(f"Dispensary {dispensary_id} not found")

        # 1. Stock check, rows locked in a fixed order
        records = {}
        for product_id in sorted(requested):
            records[product_id] = inventory_service.check_stock(
                product_id, dispensary_id, requested[product_id], lock=True
            )

        lines = []
        total_cents = 0
        for product_id, quantity in requested.items():
            record = records[product_id]
            line_total = record.selling_price_cents * quantity
            total_cents += line_total
            lines.append(OrderLine(
                product_id=product_id,
                quantity=quantity,
                unit_price_cents=record.selling_price_cents,
                line_total_cents=line_total,
                slot_label=record.slot_label,
            ))

        # 2. Funds check, same critical section as the debit below
        if payment_method == "wallet":
            wallet = ledger_service.get_wallet(user_id, lock=True)
            if wallet.balance_cents < total_cents:
                raise InsufficientFunds(
                    "Insufficient wallet balance",
                    details={"balance_cents": wallet.balance_cents, "required_cents": total_cents},
                )

        # 3. Persist in placed/pending
        order = Order(
            user_id=user_id,
            dispensary_id=dispensary_id,
            transaction_id=generate_transaction_id(),
            total_amount_cents=total_cents,
            payment_method=payment_method,
            payment_status=PAYMENT_PENDING,
            status="placed",
            collect_by=minutes_from_now(collect_window),
            notes=notes,
            lines=lines,
        )
        db.session.add(order)
        db.session.flush()

        order.qr_payload = qr_service.build_payload(
            order_id=order.id,
            transaction_id=order.transaction_id,
            amount_cents=order.total_amount_cents,
        )
        order.qr_code = qr_service.render_data_url(order.qr_payload)

        # 4. Payment
        if payment_method == "wallet":
            ledger_service.debit(user_id=user_id, order=order, amount_cents=total_cents)
            order.payment_status = PAYMENT_COMPLETED
            apply_transition(order, STATUS_PROCESSING)

        # 5. Commit the reservation
        for line in lines:
            inventory_service.decrement(line.product_id, dispensary_id, line.quantity)

        db.session.commit()
        return order

    order = run_with_retry(_op)
    notification_service.publish(notification_service.EVENT_ORDER_PLACED, _order_event(order))
    return order


# =============================================================================
# READ
# =============================================================================

def get_order(order_id: int, requester: Principal) -> Order:
    order = _load_order(order_id)
    require_owner_or_operator(requester, order.user_id)
    return order


def list_user_orders(
    requester: Principal,
    *,
    status: str | None = None,
    page: int = 1,
    limit: int = 10,
) -> tuple[list[Order], int]:
    query = db.session.query(Order).filter_by(user_id=requester.user_id)
    if status:
        _validate_filter(status)
        query = query.filter_by(status=status)
    total = query.count()
    orders = (
        query.order_by(Order.created_at.desc(), Order.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return orders, total


def list_dispensary_orders(
    dispensary_id: int,
    requester: Principal,
    *,
    status: str | None = None,
    page: int = 1,
    limit: int = 10,
) -> tuple[list[Order], int]:
    require_operator(requester)
    if db.session.get(Dispensary, dispensary_id) is None:
        raise DispensaryNotFound(f"Dispensary {dispensary_id} not found")

    query = db.session.query(Order).filter_by(dispensary_id=dispensary_id)
    if status:
        _validate_filter(status)
        query = query.filter_by(status=status)
    total = query.count()
    orders = (
        query.order_by(Order.created_at.desc(), Order.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return orders, total


# =============================================================================
# STATUS
# =============================================================================

def update_status(order_id: int, new_status: str, requester: Principal) -> Order:
    """
    Operator status change.

    Moving to cancelled runs the full cancellation (restore + refund).
    Moving to processing requires a settled payment.
    """
    require_operator(requester)
    validate_status(new_status)

    if new_status == STATUS_CANCELLED:
        return _cancel(order_id)

    def _op():
        begin_write()
        order = _load_order(order_id, lock=True)
        if new_status == STATUS_PROCESSING and order.payment_status != PAYMENT_COMPLETED:
            raise InvalidTransition(
                f"Order {order_id} payment is '{order.payment_status}', not settled",
                details={"order_id": order_id, "payment_status": order.payment_status},
            )
        apply_transition(order, new_status)
        db.session.commit()
        return order

    order = run_with_retry(_op)
    notification_service.publish(notification_service.EVENT_ORDER_STATUS_CHANGED, _order_event(order))
    return order


def settle_external_payment(
    order_id: int,
    *,
    succeeded: bool,
    requester: Principal,
    reference: str | None = None,
) -> Order:
    """
    Record the gateway result for a card/UPI/cash order.

    Success: payment completed, order processing.
    Failure: payment failed, order cancelled, stock restored.
    """
    require_operator(requester)

    def _op():
        begin_write()
        order = _load_order(order_id, lock=True)
        if order.payment_method == "wallet":
            raise InvalidState("Wallet orders are settled at placement", details={"order_id": order_id})
        if order.status != "placed" or order.payment_status != PAYMENT_PENDING:
            raise InvalidState(
                f"Order {order_id} is not awaiting payment",
                details={"status": order.status, "payment_status": order.payment_status},
            )

        order.payment_reference = reference
        if succeeded:
            order.payment_status = PAYMENT_COMPLETED
            apply_transition(order, STATUS_PROCESSING)
        else:
            order.payment_status = PAYMENT_FAILED
            apply_transition(order, STATUS_CANCELLED)
            _restore_stock(order)

        db.session.commit()
        return order

    order = run_with_retry(_op)
    notification_service.publish(notification_service.EVENT_ORDER_STATUS_CHANGED, _order_event(order))
    return order


# =============================================================================
# CANCEL
# =============================================================================

def _restore_stock(order: Order) -> None:
    for line in order.lines:
        inventory_service.increment(line.product_id, order.dispensary_id, line.quantity)


def cancel_order(order_id: int, requester: Principal) -> Order:
    """
    Owner cancels an order that has not been dispensed yet.

    Raises:
        OrderNotFound, AccessDenied, InvalidTransition, RefundFailed
    """
    order = _load_order(order_id)
    if requester is None or requester.user_id != order.user_id:
        raise AccessDenied("Only the order owner can cancel it")
    return _cancel(order_id)


def _cancel(order_id: int) -> Order:
    # Unit 1: guard + restore
    def _op_cancel():
        begin_write()
        order = _load_order(order_id, lock=True)

        if order.status == STATUS_CANCELLED and order.payment_status == PAYMENT_COMPLETED:
            # Earlier cancel committed but its refund failed
            db.session.rollback()
            return order, False

        apply_transition(order, STATUS_CANCELLED)
        _restore_stock(order)
        db.session.commit()
        return order, True

    order, transitioned = run_with_retry(_op_cancel)
    if transitioned:
        notification_service.publish(notification_service.EVENT_ORDER_STATUS_CHANGED, _order_event(order))

    if order.payment_status != PAYMENT_COMPLETED:
        return order

    # Unit 2: refund
    def _op_refund():
        begin_write()
        locked = _load_order(order_id, lock=True)
        if locked.payment_status != PAYMENT_COMPLETED:
            db.session.rollback()
            return locked
        ledger_service.refund(
            user_id=locked.user_id,
            order=locked,
            amount_cents=locked.total_amount_cents,
        )
        locked.payment_status = PAYMENT_REFUNDED
        db.session.commit()
        return locked

    try:
        return run_with_retry(_op_refund)
    except (CampusCareError, SQLAlchemyError) as exc:
        current_app.logger.error(
            "Refund failed for cancelled order %s (%s, %s cents): %s",
            order.id, order.transaction_id, order.total_amount_cents, exc,
        )
        raise RefundFailed(
            "Order cancelled and stock restored, but the wallet refund failed",
            details={
                "order_id": order.id,
                "transaction_id": order.transaction_id,
                "amount_cents": order.total_amount_cents,
            },
        ) from exc
