# Overview: Service-layer operations for suppliers.

"""
Supplier Service

Suppliers are referenced by products (optional) and purchase orders (required).
Names are unique. A supplier can only be deleted once nothing references it.
"""

from __future__ import annotations

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Supplier, Product, PurchaseOrder
from ..errors import NotFoundError
from ..validation import ModelValidationPolicy, validate_payload, ConflictError

SUPPLIER_POLICY = ModelValidationPolicy(
    writable_fields={"name", "contact_email", "phone", "address", "notes"},
    required_on_create={"name"},
)


def create_supplier(payload: dict) -> Supplier:
    """
    Create a supplier.

    Raises:
        ValidationError: missing or blank name
        ConflictError: a supplier with this name already exists
    """
    patch = validate_payload(model=Supplier, payload=payload, policy=SUPPLIER_POLICY, partial=False)

    _require_unique_name(patch["name"])

    supplier = Supplier(**patch)
    db.session.add(supplier)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("A supplier with this name already exists.")
    return supplier


def get_supplier(supplier_id: int) -> Supplier:
    supplier = db.session.get(Supplier, supplier_id)
    if supplier is None:
        raise NotFoundError(f"Supplier not found: {supplier_id}", details={"supplier_id": supplier_id})
    return supplier


def list_suppliers() -> list[Supplier]:
    return db.session.query(Supplier).order_by(Supplier.name.asc()).all()


def _require_unique_name(name: str, exclude_id: int | None = None) -> None:
    q = db.session.query(Supplier).filter(Supplier.name == name)
    if exclude_id is not None:
        q = q.filter(Supplier.id != exclude_id)
    if q.first() is not None:
        raise ConflictError("A supplier with this name already exists.")


def update_supplier(supplier_id: int, payload: dict) -> Supplier:
    """
    Update supplier contact details.

    Raises:
        NotFoundError: the supplier does not exist
        ValidationError: unknown field, blank name
        ConflictError: the new name belongs to another supplier
    """
    patch = validate_payload(model=Supplier, payload=payload, policy=SUPPLIER_POLICY, partial=True)
    supplier = get_supplier(supplier_id)
    if "name" in patch:
        _require_unique_name(patch["name"], exclude_id=supplier.id)

    for k, v in patch.items():
        setattr(supplier, k, v)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("A supplier with this name already exists.")
    return supplier


def delete_supplier(supplier_id: int) -> None:
    """
    Delete a supplier that no product or purchase order references.

    Raises:
        NotFoundError: the supplier does not exist
        ConflictError: products or purchase orders still reference it
    """
    supplier = get_supplier(supplier_id)

    product_count = db.session.query(Product).filter(Product.supplier_id == supplier.id).count()
    if product_count:
        raise ConflictError(
            f"Cannot delete supplier. {product_count} product(s) are associated with this supplier.",
        )
    order_count = db.session.query(PurchaseOrder).filter(PurchaseOrder.supplier_id == supplier.id).count()
    if order_count:
        raise ConflictError(
            f"Cannot delete supplier. {order_count} purchase order(s) reference this supplier.",
        )

    db.session.delete(supplier)
    db.session.commit()
