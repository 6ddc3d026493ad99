from .inventory import Product, Supplier
from .sales import Invoice, InvoiceItem
from .purchasing import PurchaseOrder, PurchaseOrderItem
from .documents import DocumentSequence

__all__ = [
    'Product', 'Supplier',
    'Invoice', 'InvoiceItem',
    'PurchaseOrder', 'PurchaseOrderItem',
    'DocumentSequence',
]
