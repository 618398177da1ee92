# Overview: Human-readable transaction identifiers for orders and ledger entries.

from __future__ import annotations

import secrets
import time

_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyz"
PREFIX = "TXN"
SUFFIX_LENGTH = 9


def generate_transaction_id() -> str:
    """
    TXN + epoch milliseconds + 9 random base-36 characters.

    Uniqueness is backed by unique constraints on orders.transaction_id and
    wallet_transactions.transaction_id. Callers assign the id once and
    persist it; it is never regenerated for an existing row.
    """
    millis = time.time_ns() // 1_000_000
    suffix = "".join(secrets.choice(_ALPHABET) for _ in range(SUFFIX_LENGTH))
    return f"{PREFIX}{millis}{suffix}"
