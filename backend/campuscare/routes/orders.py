# Overview: Flask API routes for orders; parses input and returns JSON responses.

# backend/campuscare/routes/orders.py
"""Order API routes"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import CampusCareError
from ..services import order_service
from ..decorators import require_auth, require_operator
from ._helpers import error_response, page_args, pagination


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


@orders_bp.post("/")
@require_auth
def create_order_route():
    """
    Place an order.

    Body: {"dispensary_id": 1, "items": [{"product_id": 1, "quantity": 2}],
           "payment_method": "wallet", "notes": "..."}
    """
    try:
        data = request.get_json(silent=True) or {}
        dispensary_id = data.get("dispensary_id")
        if not isinstance(dispensary_id, int) or isinstance(dispensary_id, bool):
            return jsonify({"error": "validation_error", "message": "dispensary_id required"}), 400

        order = order_service.create_order(
            requester=g.principal,
            dispensary_id=dispensary_id,
            items=data.get("items"),
            payment_method=data.get("payment_method"),
            notes=data.get("notes"),
        )
        return jsonify({"order": order.to_dict()}), 201

    except CampusCareError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/mine")
@require_auth
def list_my_orders_route():
    """Requester's orders, newest first. ?status=&page=&limit="""
    try:
        page, limit = page_args()
        orders, total = order_service.list_user_orders(
            g.principal,
            status=request.args.get("status"),
            page=page,
            limit=limit,
        )
        return jsonify({
            "orders": [o.to_dict(include_qr=False) for o in orders],
            "pagination": pagination(page, limit, total),
        }), 200

    except CampusCareError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list orders")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/<int:order_id>")
@require_auth
def get_order_route(order_id: int):
    """Owner or operator only."""
    try:
        order = order_service.get_order(order_id, g.principal)
        return jsonify({"order": order.to_dict()}), 200
    except CampusCareError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.put("/<int:order_id>/status")
@require_auth
@require_operator
def update_status_route(order_id: int):
    try:
        data = request.get_json(silent=True) or {}
        status = data.get("status")
        if not status:
            return jsonify({"error": "validation_error", "message": "status required"}), 400

        order = order_service.update_status(order_id, status, g.principal)
        return jsonify({"order": order.to_dict()}), 200

    except CampusCareError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update order status")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.put("/<int:order_id>/cancel")
@require_auth
def cancel_order_route(order_id: int):
    """
    Owner cancels before dispense.

    A 502 refund_failed response means the order IS cancelled and stock is
    back; calling this again retries the refund only.
    """
    try:
        order = order_service.cancel_order(order_id, g.principal)
        return jsonify({"order": order.to_dict()}), 200

    except CampusCareError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to cancel order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/payment")
@require_auth
@require_operator
def settle_payment_route(order_id: int):
    """
    Gateway callback for card/UPI/cash orders.

    Body: {"succeeded": true, "reference": "gateway-ref"}
    """
    try:
        data = request.get_json(silent=True) or {}
        succeeded = data.get("succeeded")
        if not isinstance(succeeded, bool):
            return jsonify({"error": "validation_error", "message": "succeeded must be true or false"}), 400

        order = order_service.settle_external_payment(
            order_id,
            succeeded=succeeded,
            reference=data.get("reference"),
            requester=g.principal,
        )
        return jsonify({"order": order.to_dict()}), 200

    except CampusCareError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to settle payment")
        return jsonify({"error": "Internal server error"}), 500
