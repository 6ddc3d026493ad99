# backend/stockroom/routes/suppliers.py
"""Supplier routes."""

from flask import Blueprint, request, current_app

from ..services import supplier_service
from .responses import HANDLED_ERRORS, error_response


suppliers_bp = Blueprint("suppliers", __name__, url_prefix="/api/suppliers")


@suppliers_bp.get("")
def list_suppliers_route():
    return [s.to_dict() for s in supplier_service.list_suppliers()], 200


@suppliers_bp.post("")
def create_supplier_route():
    payload = request.get_json(silent=True) or {}
    try:
        supplier = supplier_service.create_supplier(payload)
    except HANDLED_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create supplier")
        return {"error": "Internal server error"}, 500
    return supplier.to_dict(), 201


@suppliers_bp.get("/<int:supplier_id>")
def get_supplier_route(supplier_id: int):
    try:
        return supplier_service.get_supplier(supplier_id).to_dict(), 200
    except HANDLED_ERRORS as e:
        return error_response(e)


@suppliers_bp.put("/<int:supplier_id>")
def update_supplier_route(supplier_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        supplier = supplier_service.update_supplier(supplier_id, payload)
    except HANDLED_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update supplier")
        return {"error": "Internal server error"}, 500
    return supplier.to_dict(), 200


@suppliers_bp.delete("/<int:supplier_id>")
def delete_supplier_route(supplier_id: int):
    try:
        supplier_service.delete_supplier(supplier_id)
    except HANDLED_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to delete supplier")
        return {"error": "Internal server error"}, 500
    return {"message": "Supplier deleted successfully"}, 200
