# Overview: Flask API routes for invoices; parses input and returns JSON responses.

# backend/stockroom/routes/invoices.py
"""
Invoice routes.

POST creates the invoice and decrements stock for every item; DELETE removes
it and restores stock best effort. Request body for POST:

    {"customer_name": str, "items": [{"product_id", "quantity", "unit_price"?}],
     "tax": number?, "payment_method": str?, "notes": str?}
"""

from flask import Blueprint, request, current_app

from ..services import sales_service
from .responses import HANDLED_ERRORS, error_response


invoices_bp = Blueprint("invoices", __name__, url_prefix="/api/invoices")


@invoices_bp.post("")
def create_invoice_route():
    data = request.get_json(silent=True) or {}
    try:
        invoice = sales_service.create_invoice(
            data.get("customer_name"),
            data.get("items"),
            data.get("tax", 0),
            payment_method=data.get("payment_method", "cash"),
            notes=data.get("notes"),
        )
    except HANDLED_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create invoice")
        return {"error": "Internal server error"}, 500
    return invoice.to_dict(), 201


@invoices_bp.get("")
def list_invoices_route():
    return [i.to_dict() for i in sales_service.list_invoices()], 200


@invoices_bp.get("/<int:invoice_id>")
def get_invoice_route(invoice_id: int):
    try:
        return sales_service.get_invoice(invoice_id).to_dict(), 200
    except HANDLED_ERRORS as e:
        return error_response(e)


@invoices_bp.put("/<int:invoice_id>/pay")
def mark_invoice_paid_route(invoice_id: int):
    data = request.get_json(silent=True) or {}
    try:
        invoice = sales_service.mark_invoice_paid(invoice_id, data.get("payment_method"))
    except HANDLED_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to mark invoice paid")
        return {"error": "Internal server error"}, 500
    return invoice.to_dict(), 200


@invoices_bp.delete("/<int:invoice_id>")
def delete_invoice_route(invoice_id: int):
    try:
        ack = sales_service.delete_invoice(invoice_id)
    except HANDLED_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to delete invoice")
        return {"error": "Internal server error"}, 500
    return ack, 200
