# Overview: Service-layer operations for the wallet ledger; owns every balance mutation.

from __future__ import annotations

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import DuplicateTransaction, ValidationError
from ..models import Order, Wallet, WalletTransaction
from .auth_service import Principal, require_operator
from .concurrency import begin_write, lock_for_update, run_with_retry
from .identifier_service import generate_transaction_id
"""
CampusCare Ledger Invariants (authoritative)

- Wallet.balance_cents is the source of truth; WalletTransaction rows are the
  append-only audit trail and are never updated or deleted.
- Every entry records balance_after_cents = prior balance +/- amount.
- debit()/refund() do NOT check the balance. They run inside the caller's
  unit of work, after the caller has locked the wallet and decided. Checking
  again here would split the read/decide across two places.
- debit()/refund() do NOT commit. The caller commits the whole unit of work.
- Retried debit/refund for the same order returns the existing entry keyed
  by (order_id, type) instead of moving money twice.
"""


def get_wallet(user_id: int, *, lock: bool = False) -> Wallet:
    """Return the user's wallet, creating an empty one on first use (flushes, no commit)."""
    query = db.session.query(Wallet).filter_by(user_id=user_id)
    if lock:
        query = lock_for_update(query)
    wallet = query.first()
    if wallet is not None:
        return wallet

    wallet = Wallet(user_id=user_id, balance_cents=0)
    db.session.add(wallet)
    db.session.flush()
    return wallet


def open_wallet(user_id: int) -> Wallet:
    """
    Return the user's wallet for display, creating it on first use.

    Creation runs as its own unit of work and commits, so two first reads
    by the same user serialize on the write lock instead of both inserting.
    """
    wallet = db.session.query(Wallet).filter_by(user_id=user_id).first()
    if wallet is not None:
        return wallet
    db.session.rollback()

    def _op():
        begin_write()
        wallet = get_wallet(user_id, lock=True)
        db.session.commit()
        return wallet

    try:
        return run_with_retry(_op)
    except IntegrityError:
        # FOR UPDATE cannot lock a missing row; the other insert won
        return db.session.query(Wallet).filter_by(user_id=user_id).one()


def find_order_entry(order_id: int, tx_type: str) -> WalletTransaction | None:
    return (
        db.session.query(WalletTransaction)
        .filter_by(order_id=order_id, type=tx_type)
        .first()
    )


def _existing_or_conflict(
    order: Order, tx_type: str, user_id: int, amount_cents: int
) -> WalletTransaction | None:
    existing = find_order_entry(order.id, tx_type)
    if existing is None:
        return None
    if existing.user_id != user_id or existing.amount_cents != amount_cents:
        raise DuplicateTransaction(
            f"Order {order.id} already has a {tx_type} entry with different terms",
            details={
                "order_id": order.id,
                "transaction_id": existing.transaction_id,
                "amount_cents": existing.amount_cents,
            },
        )
    return existing


def _append_entry(
    wallet: Wallet,
    *,
    tx_type: str,
    amount_cents: int,
    description: str,
    payment_method: str,
    order_id: int | None = None,
) -> WalletTransaction:
    signed = -amount_cents if tx_type == "debit" else amount_cents
    wallet.balance_cents = wallet.balance_cents + signed

    entry = WalletTransaction(
        user_id=wallet.user_id,
        order_id=order_id,
        type=tx_type,
        amount_cents=amount_cents,
        description=description,
        payment_method=payment_method,
        status="completed",
        transaction_id=generate_transaction_id(),
        balance_after_cents=wallet.balance_cents,
    )
    db.session.add(entry)
    try:
        db.session.flush()
    except IntegrityError as exc:
        raise DuplicateTransaction(
            f"Ledger entry collided with an existing {tx_type} entry",
            details={"order_id": order_id, "user_id": wallet.user_id},
        ) from exc
    return entry


def debit(*, user_id: int, order: Order, amount_cents: int) -> WalletTransaction:
    """
    Take an order payment from the user's wallet.

    Precondition (caller's job, same critical section): wallet locked and
    balance_cents >= amount_cents.
    """
    if amount_cents <= 0:
        raise ValidationError("Debit amount must be positive")

    existing = _existing_or_conflict(order, "debit", user_id, amount_cents)
    if existing is not None:
        order.payment_reference = existing.transaction_id
        return existing

    wallet = get_wallet(user_id, lock=True)
    entry = _append_entry(
        wallet,
        tx_type="debit",
        amount_cents=amount_cents,
        description="Order payment",
        payment_method="wallet",
        order_id=order.id,
    )
    order.payment_reference = entry.transaction_id
    return entry


def refund(*, user_id: int, order: Order, amount_cents: int) -> WalletTransaction:
    """Credit an order's total back to the user's wallet."""
    if amount_cents <= 0:
        raise ValidationError("Refund amount must be positive")

    existing = _existing_or_conflict(order, "credit", user_id, amount_cents)
    if existing is not None:
        order.refund_reference = existing.transaction_id
        return existing

    wallet = get_wallet(user_id, lock=True)
    entry = _append_entry(
        wallet,
        tx_type="credit",
        amount_cents=amount_cents,
        description="Order refund",
        payment_method="wallet",
        order_id=order.id,
    )
    order.refund_reference = entry.transaction_id
    return entry


def credit(
    *,
    user_id: int,
    amount_cents: int,
    requester: Principal,
    description: str = "Wallet top-up",
) -> WalletTransaction:
    """Operator top-up. Runs as its own unit of work and commits."""
    require_operator(requester)
    if not isinstance(amount_cents, int) or isinstance(amount_cents, bool) or amount_cents <= 0:
        raise ValidationError("amount_cents must be a positive integer")

    def _op():
        begin_write()
        wallet = get_wallet(user_id, lock=True)
        entry = _append_entry(
            wallet,
            tx_type="credit",
            amount_cents=amount_cents,
            description=description,
            payment_method="admin",
        )
        db.session.commit()
        return entry

    return run_with_retry(_op)


def list_transactions(user_id: int, *, page: int = 1, limit: int = 10) -> tuple[list[WalletTransaction], int]:
    query = db.session.query(WalletTransaction).filter_by(user_id=user_id)
    total = query.count()
    rows = (
        query.order_by(WalletTransaction.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return rows, total


def replay_balance(user_id: int) -> dict:
    """
    Rebuild the balance history from the ledger and compare to the wallet.

    Returns {"balance_cents", "replayed_cents", "consistent", "breaks"} where
    breaks lists entries whose balance_after does not follow from the
    previous entry. Wallets start at zero; all funding goes through credit().
    """
    wallet = db.session.query(Wallet).filter_by(user_id=user_id).first()
    entries = (
        db.session.query(WalletTransaction)
        .filter_by(user_id=user_id)
        .order_by(WalletTransaction.id)
        .all()
    )

    running = 0
    breaks = []
    for entry in entries:
        running += entry.signed_amount_cents
        if entry.balance_after_cents != running:
            breaks.append({
                "transaction_id": entry.transaction_id,
                "expected_cents": running,
                "recorded_cents": entry.balance_after_cents,
            })
            running = entry.balance_after_cents

    balance = wallet.balance_cents if wallet else 0
    return {
        "user_id": user_id,
        "balance_cents": balance,
        "replayed_cents": running,
        "consistent": not breaks and running == balance,
        "breaks": breaks,
    }
