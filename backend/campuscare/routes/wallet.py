# Overview: Flask API routes for wallets and the wallet ledger.

# backend/campuscare/routes/wallet.py
"""Wallet API routes"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import CampusCareError
from ..services import ledger_service
from ..decorators import require_auth, require_operator
from ._helpers import error_response, page_args, pagination


wallet_bp = Blueprint("wallet", __name__, url_prefix="/api/wallet")


@wallet_bp.get("/")
@require_auth
def get_wallet_route():
    """Requester's wallet. Created empty on first read."""
    try:
        wallet = ledger_service.open_wallet(g.principal.user_id)
        return jsonify({"wallet": wallet.to_dict()}), 200
    except Exception:
        current_app.logger.exception("Failed to load wallet")
        return jsonify({"error": "Internal server error"}), 500


@wallet_bp.get("/transactions")
@require_auth
def list_transactions_route():
    """Requester's ledger entries, newest first. ?page=&limit="""
    try:
        page, limit = page_args()
        rows, total = ledger_service.list_transactions(g.principal.user_id, page=page, limit=limit)
        return jsonify({
            "transactions": [t.to_dict() for t in rows],
            "pagination": pagination(page, limit, total),
        }), 200
    except CampusCareError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list wallet transactions")
        return jsonify({"error": "Internal server error"}), 500


@wallet_bp.post("/<int:user_id>/credit")
@require_auth
@require_operator
def credit_wallet_route(user_id: int):
    """
    Operator top-up.

    Body: {"amount_cents": 5000, "description": "Semester allowance"}
    """
    try:
        data = request.get_json(silent=True) or {}
        entry = ledger_service.credit(
            user_id=user_id,
            amount_cents=data.get("amount_cents"),
            description=data.get("description") or "Wallet top-up",
            requester=g.principal,
        )
        return jsonify({
            "transaction": entry.to_dict(),
            "balance_cents": entry.balance_after_cents,
        }), 201

    except CampusCareError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to credit wallet")
        return jsonify({"error": "Internal server error"}), 500


@wallet_bp.get("/<int:user_id>/reconcile")
@require_auth
@require_operator
def reconcile_wallet_route(user_id: int):
    """Replay the ledger and compare against the stored balance."""
    try:
        report = ledger_service.replay_balance(user_id)
        return jsonify(report), 200 if report["consistent"] else 409
    except Exception:
        current_app.logger.exception("Failed to reconcile wallet")
        return jsonify({"error": "Internal server error"}), 500
