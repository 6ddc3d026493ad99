# Overview: Flask API routes for products and stock adjustments; parses input and returns JSON responses.

# backend/stockroom/routes/products.py
"""
Product and stock routes.

Stock changes:
- POST /<id>/add-stock    {"quantity": n}  -> +n
- POST /<id>/remove-stock {"quantity": n}  -> -n (409 when on-hand is short)
- POST /<id>/adjust       {"delta": d}     -> signed change, 0 reads
"""
from flask import Blueprint, request, current_app

from ..services import products_service
from ..services.stock_service import adjust_stock, get_product
from ..validation import enforce_rules_stock_adjust
from .responses import HANDLED_ERRORS, error_response


products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("/alerts/low-stock")
def low_stock_route():
    """Active products at or below their reorder level."""
    return [p.to_dict() for p in products_service.list_low_stock_products()], 200


@products_bp.get("")
def list_products_route():
    """
    Query params:
    - category: str (optional)
    - active: "1" to list active products only
    """
    category = request.args.get("category")
    active_only = request.args.get("active") in ("1", "true")
    products = products_service.list_products(category=category, active_only=active_only)
    return [p.to_dict() for p in products], 200


@products_bp.post("")
def create_product_route():
    payload = request.get_json(silent=True) or {}
    try:
        product = products_service.create_product(payload)
    except HANDLED_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create product")
        return {"error": "Internal server error"}, 500
    return product.to_dict(), 201


@products_bp.get("/<int:product_id>")
def get_product_route(product_id: int):
    try:
        return get_product(product_id).to_dict(), 200
    except HANDLED_ERRORS as e:
        return error_response(e)


@products_bp.put("/<int:product_id>")
def update_product_route(product_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        product = products_service.update_product(product_id, payload)
    except HANDLED_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update product")
        return {"error": "Internal server error"}, 500
    return product.to_dict(), 200


@products_bp.delete("/<int:product_id>")
def delete_product_route(product_id: int):
    """
    Soft delete by default; ?hard=1 removes the row.
    """
    hard = request.args.get("hard") in ("1", "true")
    try:
        products_service.delete_product(product_id, hard=hard)
    except HANDLED_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to delete product")
        return {"error": "Internal server error"}, 500
    return {"message": "Product deleted successfully.", "hard": hard}, 200


@products_bp.post("/<int:product_id>/add-stock")
def add_stock_route(product_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        product = products_service.add_stock(product_id, payload.get("quantity"))
    except HANDLED_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to add stock")
        return {"error": "Internal server error"}, 500
    return {"message": "Stock added successfully.", "product": product.to_dict()}, 200


@products_bp.post("/<int:product_id>/remove-stock")
def remove_stock_route(product_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        product = products_service.remove_stock(product_id, payload.get("quantity"))
    except HANDLED_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to remove stock")
        return {"error": "Internal server error"}, 500
    return {"message": "Stock removed successfully.", "product": product.to_dict()}, 200


@products_bp.post("/<int:product_id>/adjust")
def adjust_stock_route(product_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        delta = enforce_rules_stock_adjust(payload)
        product = adjust_stock(product_id, delta)
    except HANDLED_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to adjust stock")
        return {"error": "Internal server error"}, 500
    return {"product": product.to_dict()}, 200
