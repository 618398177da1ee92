"""
Order service tests.

Verifies:
- Placement reserves stock, debits the wallet and lands in processing
- Failed checks leave stock, wallet and order table untouched
- Cancellation restores stock and refunds exactly once
- A failed refund keeps the cancellation and can be retried
- Owner / operator access rules
- External (card/UPI/cash) payment settlement
"""

import json
import re

import pytest

from campuscare.errors import (
    AccessDenied,
    DispensaryNotFound,
    InsufficientFunds,
    InsufficientStock,
    InvalidState,
    InvalidTransition,
    OrderNotFound,
    RefundFailed,
    ValidationError,
)
from campuscare.models import Order, WalletTransaction
from campuscare.services import inventory_service, ledger_service, order_service, qr_service
from campuscare.time_utils import utcnow


def _balance(user_id):
    return ledger_service.get_wallet(user_id).balance_cents


def _stock(product, dispensary):
    return inventory_service.find_record(product.id, dispensary.id).quantity


def _place(requester, dispensary, product, quantity=2, payment_method="wallet"):
    return order_service.create_order(
        requester=requester,
        dispensary_id=dispensary.id,
        items=[{"product_id": product.id, "quantity": quantity}],
        payment_method=payment_method,
    )


# =============================================================================
# PLACEMENT
# =============================================================================


class TestCreateOrder:

    def test_wallet_order_reserves_debits_and_processes(self, funded_student, dispensary, product, stocked, sink):
        order = _place(funded_student, dispensary, product, quantity=2)

        assert order.total_amount_cents == 6000
        assert order.payment_status == "completed"
        assert order.status == "processing"
        assert _balance(funded_student.user_id) == 4000
        assert _stock(product, dispensary) == 3

        debit = ledger_service.find_order_entry(order.id, "debit")
        assert debit.amount_cents == 6000
        assert debit.balance_after_cents == 4000
        assert order.payment_reference == debit.transaction_id

        placed = sink.named("orderPlaced")
        assert len(placed) == 1
        assert placed[0]["orderId"] == order.id
        assert placed[0]["transactionId"] == order.transaction_id

    def test_total_is_sum_of_line_totals(self, funded_student, dispensary, product, second_product, stocked, stocked_second):
        order = order_service.create_order(
            requester=funded_student,
            dispensary_id=dispensary.id,
            items=[
                {"product_id": product.id, "quantity": 1},
                {"product_id": second_product.id, "quantity": 3},
            ],
            payment_method="wallet",
        )

        assert order.total_amount_cents == 3000 + 3 * 500
        assert order.total_amount_cents == sum(line.line_total_cents for line in order.lines)
        slots = {line.product_id: line.slot_label for line in order.lines}
        assert slots == {product.id: "A1", second_product.id: "A2"}

    def test_duplicate_lines_are_merged(self, funded_student, dispensary, product, stocked):
        order = order_service.create_order(
            requester=funded_student,
            dispensary_id=dispensary.id,
            items=[
                {"product_id": product.id, "quantity": 1},
                {"product_id": product.id, "quantity": 2},
            ],
            payment_method="wallet",
        )

        assert len(order.lines) == 1
        assert order.lines[0].quantity == 3
        assert _stock(product, dispensary) == 2

    def test_transaction_id_and_qr(self, funded_student, dispensary, product, stocked):
        order = _place(funded_student, dispensary, product, quantity=2)

        assert re.fullmatch(r"TXN\d{13}[0-9a-z]{9}", order.transaction_id)
        payload = json.loads(order.qr_payload)
        assert payload["orderId"] == order.id
        assert payload["transactionId"] == order.transaction_id
        assert order.total_amount_cents == 6000
        assert payload["amount"] == 60
        assert payload["timestamp"].endswith("Z")
        assert order.qr_code.startswith("data:image/png;base64,")

    @pytest.mark.parametrize("cents,amount", [(6000, 60), (1250, 12.5), (499, 4.99)])
    def test_qr_amount_is_in_currency_units(self, cents, amount):
        payload = json.loads(qr_service.build_payload(order_id=1, transaction_id="TXN1", amount_cents=cents))
        assert payload["amount"] == amount

    def test_collect_window(self, funded_student, dispensary, product, stocked):
        order = _place(funded_student, dispensary, product, quantity=1)
        assert order.collect_by > utcnow()

    def test_insufficient_stock_changes_nothing(self, funded_student, dispensary, product, stocked, sink, db_session):
        with pytest.raises(InsufficientStock) as exc:
            _place(funded_student, dispensary, product, quantity=6)

        assert exc.value.details["available"] == 5
        assert _stock(product, dispensary) == 5
        assert _balance(funded_student.user_id) == 10000
        assert db_session.query(Order).count() == 0
        assert sink.events == []

    def test_unstocked_product_is_insufficient_stock(self, funded_student, dispensary, product, second_product, stocked):
        with pytest.raises(InsufficientStock):
            _place(funded_student, dispensary, second_product, quantity=1)

    def test_insufficient_funds_changes_nothing(self, student, operator, dispensary, product, stocked, db_session):
        ledger_service.credit(user_id=student.user_id, amount_cents=1000, requester=operator)

        with pytest.raises(InsufficientFunds):
            _place(student, dispensary, product, quantity=1)

        assert _stock(product, dispensary) == 5
        assert _balance(student.user_id) == 1000
        assert db_session.query(Order).count() == 0

    def test_exact_balance_is_enough(self, student, operator, dispensary, product, stocked):
        ledger_service.credit(user_id=student.user_id, amount_cents=3000, requester=operator)
        order = _place(student, dispensary, product, quantity=1)
        assert order.status == "processing"
        assert _balance(student.user_id) == 0

    def test_unknown_dispensary(self, funded_student, product):
        with pytest.raises(DispensaryNotFound):
            order_service.create_order(
                requester=funded_student,
                dispensary_id=9999,
                items=[{"product_id": product.id, "quantity": 1}],
                payment_method="wallet",
            )

    @pytest.mark.parametrize(
        "items,payment_method",
        [
            ([], "wallet"),
            (None, "wallet"),
            ([{"product_id": 1, "quantity": 0}], "wallet"),
            ([{"product_id": "abc", "quantity": 1}], "wallet"),
            ([{"product_id": 1, "quantity": 1}], "bitcoin"),
        ],
    )
    def test_invalid_input(self, funded_student, dispensary, items, payment_method):
        with pytest.raises(ValidationError):
            order_service.create_order(
                requester=funded_student,
                dispensary_id=dispensary.id,
                items=items,
                payment_method=payment_method,
            )

    def test_card_order_waits_for_payment(self, student, dispensary, product, stocked):
        order = _place(student, dispensary, product, quantity=1, payment_method="card")

        assert order.status == "placed"
        assert order.payment_status == "pending"
        assert _stock(product, dispensary) == 4
        assert ledger_service.find_order_entry(order.id, "debit") is None


# =============================================================================
# READ / ACCESS
# =============================================================================


class TestReadAccess:

    def test_owner_and_operator_can_read(self, funded_student, operator, dispensary, product, stocked):
        order = _place(funded_student, dispensary, product)
        assert order_service.get_order(order.id, funded_student).id == order.id
        assert order_service.get_order(order.id, operator).id == order.id

    def test_other_student_cannot_read(self, funded_student, other_student, dispensary, product, stocked):
        order = _place(funded_student, dispensary, product)
        with pytest.raises(AccessDenied):
            order_service.get_order(order.id, other_student)

    def test_missing_order(self, student, db_session):
        with pytest.raises(OrderNotFound):
            order_service.get_order(424242, student)

    def test_list_user_orders_paginates_newest_first(self, funded_student, other_student, dispensary, product, stocked):
        first = _place(funded_student, dispensary, product, quantity=1)
        second = _place(funded_student, dispensary, product, quantity=1)
        third = _place(funded_student, dispensary, product, quantity=1)

        orders, total = order_service.list_user_orders(funded_student, page=1, limit=2)
        assert total == 3
        assert [o.id for o in orders] == [third.id, second.id]

        orders, total = order_service.list_user_orders(funded_student, page=2, limit=2)
        assert [o.id for o in orders] == [first.id]

        orders, total = order_service.list_user_orders(other_student)
        assert total == 0

    def test_list_user_orders_status_filter(self, funded_student, dispensary, product, stocked):
        kept = _place(funded_student, dispensary, product, quantity=1)
        cancelled = _place(funded_student, dispensary, product, quantity=1)
        order_service.cancel_order(cancelled.id, funded_student)

        orders, total = order_service.list_user_orders(funded_student, status="processing")
        assert total == 1
        assert orders[0].id == kept.id

        with pytest.raises(ValidationError):
            order_service.list_user_orders(funded_student, status="lost")

    def test_list_dispensary_orders_is_operator_only(self, funded_student, operator, dispensary, product, stocked):
        _place(funded_student, dispensary, product, quantity=1)

        orders, total = order_service.list_dispensary_orders(dispensary.id, operator)
        assert total == 1

        with pytest.raises(AccessDenied):
            order_service.list_dispensary_orders(dispensary.id, funded_student)

        with pytest.raises(DispensaryNotFound):
            order_service.list_dispensary_orders(9999, operator)


# =============================================================================
# STATUS
# =============================================================================


class TestUpdateStatus:

    def test_requires_operator(self, funded_student, dispensary, product, stocked):
        order = _place(funded_student, dispensary, product)
        with pytest.raises(AccessDenied):
            order_service.update_status(order.id, "dispensed", funded_student)

    def test_forward_path_stamps_timestamps(self, funded_student, operator, dispensary, product, stocked, sink):
        order = _place(funded_student, dispensary, product)

        order = order_service.update_status(order.id, "dispensed", operator)
        assert order.status == "dispensed"
        assert order.dispensed_at is not None

        order = order_service.update_status(order.id, "completed", operator)
        assert order.status == "completed"
        assert order.collected_at is not None

        statuses = [e["status"] for e in sink.named("orderStatusChanged")]
        assert statuses == ["dispensed", "completed"]

    def test_same_state_is_rejected(self, funded_student, operator, dispensary, product, stocked):
        order = _place(funded_student, dispensary, product)
        with pytest.raises(InvalidTransition):
            order_service.update_status(order.id, "processing", operator)

    def test_skipping_is_rejected(self, funded_student, operator, dispensary, product, stocked):
        order = _place(funded_student, dispensary, product)
        with pytest.raises(InvalidTransition):
            order_service.update_status(order.id, "completed", operator)
        assert order_service.get_order(order.id, operator).status == "processing"

    def test_unknown_status(self, funded_student, operator, dispensary, product, stocked):
        order = _place(funded_student, dispensary, product)
        with pytest.raises(InvalidTransition):
            order_service.update_status(order.id, "shipped", operator)

    def test_processing_requires_settled_payment(self, student, operator, dispensary, product, stocked):
        order = _place(student, dispensary, product, quantity=1, payment_method="upi")
        with pytest.raises(InvalidTransition):
            order_service.update_status(order.id, "processing", operator)

    def test_operator_cancel_refunds(self, funded_student, operator, dispensary, product, stocked):
        order = _place(funded_student, dispensary, product)

        order = order_service.update_status(order.id, "cancelled", operator)

        assert order.status == "cancelled"
        assert order.payment_status == "refunded"
        assert _balance(funded_student.user_id) == 10000
        assert _stock(product, dispensary) == 5


# =============================================================================
# CANCELLATION
# =============================================================================


class TestCancelOrder:

    def test_cancel_round_trip_restores_everything(self, funded_student, dispensary, product, stocked, sink, db_session):
        order = _place(funded_student, dispensary, product, quantity=2)

        cancelled = order_service.cancel_order(order.id, funded_student)

        assert cancelled.status == "cancelled"
        assert cancelled.payment_status == "refunded"
        assert cancelled.cancelled_at is not None
        assert _balance(funded_student.user_id) == 10000
        assert _stock(product, dispensary) == 5

        refund = ledger_service.find_order_entry(order.id, "credit")
        assert refund.amount_cents == 6000
        assert cancelled.refund_reference == refund.transaction_id
        assert db_session.query(WalletTransaction).filter_by(order_id=order.id).count() == 2

        changed = sink.named("orderStatusChanged")
        assert [e["status"] for e in changed] == ["cancelled"]

    def test_second_cancel_is_rejected_without_double_refund(self, funded_student, dispensary, product, stocked):
        order = _place(funded_student, dispensary, product, quantity=2)
        order_service.cancel_order(order.id, funded_student)

        with pytest.raises(InvalidTransition):
            order_service.cancel_order(order.id, funded_student)

        assert _balance(funded_student.user_id) == 10000
        assert _stock(product, dispensary) == 5

    def test_only_owner_can_cancel(self, funded_student, other_student, operator, dispensary, product, stocked):
        order = _place(funded_student, dispensary, product)

        with pytest.raises(AccessDenied):
            order_service.cancel_order(order.id, other_student)
        with pytest.raises(AccessDenied):
            order_service.cancel_order(order.id, operator)

        assert order_service.get_order(order.id, operator).status == "processing"

    def test_cannot_cancel_after_dispense(self, funded_student, operator, dispensary, product, stocked):
        order = _place(funded_student, dispensary, product)
        order_service.update_status(order.id, "dispensed", operator)

        with pytest.raises(InvalidTransition):
            order_service.cancel_order(order.id, funded_student)

        assert _balance(funded_student.user_id) == 4000
        assert _stock(product, dispensary) == 3

    def test_pending_card_order_cancels_without_refund(self, student, dispensary, product, stocked):
        order = _place(student, dispensary, product, quantity=1, payment_method="card")

        cancelled = order_service.cancel_order(order.id, student)

        assert cancelled.status == "cancelled"
        assert cancelled.payment_status == "pending"
        assert _stock(product, dispensary) == 5
        assert ledger_service.find_order_entry(order.id, "credit") is None

    def test_failed_refund_keeps_cancellation_and_retries(self, funded_student, dispensary, product, stocked, monkeypatch):
        order = _place(funded_student, dispensary, product, quantity=2)

        def broken_refund(**kwargs):
            raise InvalidState("ledger unavailable")

        monkeypatch.setattr(ledger_service, "refund", broken_refund)
        with pytest.raises(RefundFailed) as exc:
            order_service.cancel_order(order.id, funded_student)
        assert exc.value.details["amount_cents"] == 6000

        stuck = order_service.get_order(order.id, funded_student)
        assert stuck.status == "cancelled"
        assert stuck.payment_status == "completed"
        assert _stock(product, dispensary) == 5
        assert _balance(funded_student.user_id) == 4000

        monkeypatch.undo()
        retried = order_service.cancel_order(order.id, funded_student)

        assert retried.payment_status == "refunded"
        assert _balance(funded_student.user_id) == 10000
        # Stock is restored once, by the first attempt
        assert _stock(product, dispensary) == 5


# =============================================================================
# EXTERNAL PAYMENT
# =============================================================================


class TestSettleExternalPayment:

    def test_success_moves_to_processing(self, student, operator, dispensary, product, stocked):
        order = _place(student, dispensary, product, quantity=1, payment_method="card")

        settled = order_service.settle_external_payment(
            order.id, succeeded=True, reference="gw-123", requester=operator
        )

        assert settled.status == "processing"
        assert settled.payment_status == "completed"
        assert settled.payment_reference == "gw-123"
        assert _stock(product, dispensary) == 4

    def test_failure_cancels_and_restores_stock(self, student, operator, dispensary, product, stocked):
        order = _place(student, dispensary, product, quantity=2, payment_method="upi")

        settled = order_service.settle_external_payment(order.id, succeeded=False, requester=operator)

        assert settled.status == "cancelled"
        assert settled.payment_status == "failed"
        assert _stock(product, dispensary) == 5

    def test_cannot_settle_twice(self, student, operator, dispensary, product, stocked):
        order = _place(student, dispensary, product, quantity=1, payment_method="cash")
        order_service.settle_external_payment(order.id, succeeded=True, requester=operator)

        with pytest.raises(InvalidState):
            order_service.settle_external_payment(order.id, succeeded=True, requester=operator)

    def test_wallet_orders_are_not_settled_externally(self, funded_student, operator, dispensary, product, stocked):
        order = _place(funded_student, dispensary, product)
        with pytest.raises(InvalidState):
            order_service.settle_external_payment(order.id, succeeded=True, requester=operator)

    def test_requires_operator(self, student, dispensary, product, stocked):
        order = _place(student, dispensary, product, quantity=1, payment_method="card")
        with pytest.raises(AccessDenied):
            order_service.settle_external_payment(order.id, succeeded=True, requester=student)

    def test_cancel_after_card_settlement_refunds_to_wallet(self, student, operator, dispensary, product, stocked):
        order = _place(student, dispensary, product, quantity=1, payment_method="card")
        order_service.settle_external_payment(order.id, succeeded=True, requester=operator)

        cancelled = order_service.cancel_order(order.id, student)

        assert cancelled.payment_status == "refunded"
        assert _balance(student.user_id) == 3000
