# Overview: Flask API routes for dispensaries, stocking and dispensing.

# backend/campuscare/routes/dispensaries.py
"""Dispensary API routes"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import CampusCareError
from ..services import dispensary_service, dispensing_service, inventory_service, order_service
from ..decorators import require_auth, require_operator
from campuscare.time_utils import parse_iso_datetime
from ._helpers import error_response, page_args, pagination


dispensaries_bp = Blueprint("dispensaries", __name__, url_prefix="/api/dispensaries")


@dispensaries_bp.get("/")
def list_dispensaries_route():
    try:
        dispensaries = dispensary_service.list_dispensaries()
        return jsonify({"dispensaries": [d.to_dict() for d in dispensaries]}), 200
    except Exception:
        current_app.logger.exception("Failed to list dispensaries")
        return jsonify({"error": "Internal server error"}), 500


@dispensaries_bp.get("/<int:dispensary_id>")
def get_dispensary_route(dispensary_id: int):
    """Dispensary with its inventory (by slot)."""
    try:
        dispensary = dispensary_service.get_dispensary(dispensary_id)
        inventory = inventory_service.list_dispensary_inventory(dispensary_id)
        return jsonify({
            "dispensary": dispensary.to_dict(),
            "inventory": [record.to_dict() for record in inventory],
        }), 200
    except CampusCareError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load dispensary")
        return jsonify({"error": "Internal server error"}), 500


@dispensaries_bp.post("/")
@require_auth
@require_operator
def create_dispensary_route():
    try:
        data = request.get_json(silent=True) or {}
        dispensary = dispensary_service.create_dispensary(data, g.principal)
        return jsonify({"dispensary": dispensary.to_dict()}), 201

    except CampusCareError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create dispensary")
        return jsonify({"error": "Internal server error"}), 500


@dispensaries_bp.put("/<int:dispensary_id>")
@require_auth
@require_operator
def update_dispensary_route(dispensary_id: int):
    try:
        data = request.get_json(silent=True) or {}
        dispensary = dispensary_service.update_dispensary(dispensary_id, data, g.principal)
        return jsonify({"dispensary": dispensary.to_dict()}), 200

    except CampusCareError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update dispensary")
        return jsonify({"error": "Internal server error"}), 500


@dispensaries_bp.put("/<int:dispensary_id>/status")
@require_auth
@require_operator
def update_dispensary_status_route(dispensary_id: int):
    """Body: any of status, temperature, humidity, power_status, network_status."""
    try:
        data = request.get_json(silent=True) or {}
        dispensary = dispensary_service.update_status(dispensary_id, data, g.principal)
        return jsonify({"dispensary": dispensary.to_dict(include_slots=False)}), 200

    except CampusCareError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update dispensary status")
        return jsonify({"error": "Internal server error"}), 500


@dispensaries_bp.post("/<int:dispensary_id>/inventory")
@require_auth
@require_operator
def stock_item_route(dispensary_id: int):
    """
    Restock a slot.

    Body: {"product_id", "slot_id", "quantity", "cost_price_cents",
           "selling_price_cents", "restock_level"?, "batch_number"?, "expiry_date"?}
    """
    try:
        data = request.get_json(silent=True) or {}
        product_id = data.get("product_id")
        slot_id = data.get("slot_id")
        if not isinstance(product_id, int) or not slot_id:
            return jsonify({"error": "validation_error", "message": "product_id and slot_id required"}), 400

        try:
            expiry_date = parse_iso_datetime(data.get("expiry_date"))
        except (TypeError, ValueError, AttributeError):
            return jsonify({"error": "validation_error", "message": "expiry_date must be ISO-8601"}), 400

        record = inventory_service.stock_item(
            product_id=product_id,
            dispensary_id=dispensary_id,
            slot_label=slot_id,
            quantity=data.get("quantity"),
            cost_price_cents=data.get("cost_price_cents"),
            selling_price_cents=data.get("selling_price_cents"),
            restock_level=data.get("restock_level"),
            batch_number=data.get("batch_number"),
            expiry_date=expiry_date,
            requester=g.principal,
        )
        return jsonify({"inventory": record.to_dict()}), 201

    except CampusCareError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to stock inventory")
        return jsonify({"error": "Internal server error"}), 500


@dispensaries_bp.post("/<int:dispensary_id>/dispense")
@require_auth
@require_operator
def dispense_route(dispensary_id: int):
    """Body: {"order_id": 1, "slot_id": "A1"}"""
    try:
        data = request.get_json(silent=True) or {}
        order_id = data.get("order_id")
        slot_id = data.get("slot_id")
        if not isinstance(order_id, int) or not slot_id:
            return jsonify({"error": "validation_error", "message": "order_id and slot_id required"}), 400

        order, dispensary = dispensing_service.dispense(
            dispensary_id=dispensary_id,
            order_id=order_id,
            slot_label=slot_id,
            requester=g.principal,
        )
        return jsonify({
            "order": order.to_dict(include_qr=False),
            "dispensary": {"id": dispensary.id, "name": dispensary.name, "slot": slot_id},
        }), 200

    except CampusCareError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to dispense order")
        return jsonify({"error": "Internal server error"}), 500


@dispensaries_bp.get("/<int:dispensary_id>/orders")
@require_auth
@require_operator
def list_dispensary_orders_route(dispensary_id: int):
    try:
        page, limit = page_args()
        orders, total = order_service.list_dispensary_orders(
            dispensary_id,
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
        current_app.logger.exception("Failed to list dispensary orders")
        return jsonify({"error": "Internal server error"}), 500
