from __future__ import annotations

from sqlalchemy import event

from ..extensions import db
from campuscare.time_utils import to_utc_z


TRANSACTION_TYPES = ("debit", "credit")
TRANSACTION_PAYMENT_METHODS = ("wallet", "card", "upi", "cash", "admin")
TRANSACTION_STATUSES = ("pending", "completed", "failed")


class Wallet(db.Model):
    """
    Per-user prepaid balance.

    balance_cents is the source of truth. transactions is the audit trail
    for display and is never summed to derive the balance at read time.
    """
    __tablename__ = "wallets"
    __table_args__ = (
        db.UniqueConstraint("user_id", name="uq_wallets_user"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, nullable=False)
    balance_cents = db.Column(db.Integer, nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    transactions = db.relationship(
        "WalletTransaction",
        primaryjoin="Wallet.user_id == foreign(WalletTransaction.user_id)",
        order_by="WalletTransaction.id",
        lazy=True,
        viewonly=True,
    )
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "balance_cents": self.balance_cents,
            "transaction_ids": [tx.transaction_id for tx in self.transactions],
            "updated_at": to_utc_z(self.updated_at),
        }


class WalletTransaction(db.Model):
    """
    Immutable ledger entry.

    LEDGER RULES:
    - Append-only. Rows are never updated or deleted (enforced by the
      mapper events below).
    - amount_cents is a positive magnitude; type gives the sign.
    - balance_after_cents is the wallet balance right after this entry, so
      a user's entries in id order replay their balance history.
    - At most one entry per (order_id, type): retries of a debit/refund for
      the same order find and return the existing row.
    """
    __tablename__ = "wallet_transactions"
    __table_args__ = (
        db.UniqueConstraint("transaction_id", name="uq_wallet_tx_transaction_id"),
        db.UniqueConstraint("order_id", "type", name="uq_wallet_tx_order_type"),
        db.CheckConstraint("amount_cents > 0", name="ck_wallet_tx_amount_positive"),
        db.Index("ix_wallet_tx_user_id", "user_id", "id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, nullable=False)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)

    type = db.Column(db.String(16), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)
    description = db.Column(db.String(255), nullable=False)
    payment_method = db.Column(db.String(16), nullable=False)
    status = db.Column(db.String(16), nullable=False, default="completed")

    transaction_id = db.Column(db.String(64), nullable=False)
    balance_after_cents = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    @property
    def signed_amount_cents(self) -> int:
        return -self.amount_cents if self.type == "debit" else self.amount_cents

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "order_id": self.order_id,
            "type": self.type,
            "amount_cents": self.amount_cents,
            "description": self.description,
            "payment_method": self.payment_method,
            "status": self.status,
            "transaction_id": self.transaction_id,
            "balance_after_cents": self.balance_after_cents,
            "created_at": to_utc_z(self.created_at),
        }


class ImmutableLedgerError(RuntimeError):
    pass


@event.listens_for(WalletTransaction, "before_update")
def _reject_update(mapper, connection, target):
    raise ImmutableLedgerError(f"WalletTransaction {target.transaction_id} is immutable")


@event.listens_for(WalletTransaction, "before_delete")
def _reject_delete(mapper, connection, target):
    raise ImmutableLedgerError(f"WalletTransaction {target.transaction_id} cannot be deleted")
