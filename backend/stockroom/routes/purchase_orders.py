# Overview: Flask API routes for purchase orders; parses input and returns JSON responses.

# backend/stockroom/routes/purchase_orders.py
"""
Purchase order routes.

Creating an order has no stock effect. PUT /<id>/receive increments stock
exactly once; a second receive returns 409. DELETE never changes stock.
"""

from flask import Blueprint, request, current_app

from ..services import purchasing_service
from .responses import HANDLED_ERRORS, error_response


purchase_orders_bp = Blueprint("purchase_orders", __name__, url_prefix="/api/purchase-orders")


@purchase_orders_bp.post("")
def create_order_route():
    data = request.get_json(silent=True) or {}
    try:
        order = purchasing_service.create_purchase_order(
            data.get("supplier_id"),
            data.get("items"),
            notes=data.get("notes"),
        )
    except HANDLED_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create purchase order")
        return {"error": "Internal server error"}, 500
    return order.to_dict(), 201


@purchase_orders_bp.get("")
def list_orders_route():
    try:
        orders = purchasing_service.list_purchase_orders(status=request.args.get("status"))
    except HANDLED_ERRORS as e:
        return error_response(e)
    return [o.to_dict() for o in orders], 200


@purchase_orders_bp.get("/<int:order_id>")
def get_order_route(order_id: int):
    try:
        return purchasing_service.get_purchase_order(order_id).to_dict(), 200
    except HANDLED_ERRORS as e:
        return error_response(e)


@purchase_orders_bp.put("/<int:order_id>/receive")
def receive_order_route(order_id: int):
    try:
        order = purchasing_service.receive_purchase_order(order_id)
    except HANDLED_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to receive purchase order")
        return {"error": "Internal server error"}, 500
    return order.to_dict(), 200


@purchase_orders_bp.put("/<int:order_id>/cancel")
def cancel_order_route(order_id: int):
    try:
        order = purchasing_service.cancel_purchase_order(order_id)
    except HANDLED_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to cancel purchase order")
        return {"error": "Internal server error"}, 500
    return order.to_dict(), 200


@purchase_orders_bp.delete("/<int:order_id>")
def delete_order_route(order_id: int):
    try:
        ack = purchasing_service.delete_purchase_order(order_id)
    except HANDLED_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to delete purchase order")
        return {"error": "Internal server error"}, 500
    return ack, 200
