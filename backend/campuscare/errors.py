# Overview: Typed domain failures shared by services and routes.

from __future__ import annotations


class CampusCareError(Exception):
    """
    Base class for every failure the engine surfaces to a caller.

    Routes render these as {"error": code, "message": ..., "details": {...}}
    with status_code. Anything that is not a CampusCareError is a bug and
    becomes a logged 500.
    """
    code = "error"
    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": self.code, "message": self.message, "details": self.details}


class ValidationError(CampusCareError):
    """400-level input problem."""
    code = "validation_error"
    status_code = 400


class InsufficientStock(CampusCareError):
    code = "insufficient_stock"
    status_code = 409


class InsufficientFunds(CampusCareError):
    code = "insufficient_funds"
    status_code = 409


class InvalidTransition(CampusCareError):
    """Order status change not allowed by the lifecycle state machine."""
    code = "invalid_transition"
    status_code = 409


class InvalidState(CampusCareError):
    code = "invalid_state"
    status_code = 409


class AccessDenied(CampusCareError):
    code = "access_denied"
    status_code = 403


class OrderNotFound(CampusCareError):
    code = "order_not_found"
    status_code = 404


class DispensaryNotFound(CampusCareError):
    code = "dispensary_not_found"
    status_code = 404


class SlotNotFound(CampusCareError):
    code = "slot_not_found"
    status_code = 404


class ProductNotFound(CampusCareError):
    code = "product_not_found"
    status_code = 404


class DispensaryUnavailable(CampusCareError):
    code = "dispensary_unavailable"
    status_code = 409


class DuplicateTransaction(CampusCareError):
    """A ledger entry already exists for this (order, type) with different terms."""
    code = "duplicate_transaction"
    status_code = 409


class RefundFailed(CampusCareError):
    """
    Cancellation committed (order cancelled, stock restored) but the wallet
    refund did not. The order stays payment_status=completed so a retried
    cancel only re-attempts the refund.
    """
    code = "refund_failed"
    status_code = 502
