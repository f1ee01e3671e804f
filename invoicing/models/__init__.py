"""Models package - exports all SQLAlchemy models."""
from invoicing.models.invoice import Invoice, InvoiceStatus
from invoicing.models.invoice_item import InvoiceItem
from invoicing.models.invoice_counter import InvoiceCounter

__all__ = [
    'Invoice', 'InvoiceStatus', 'InvoiceItem', 'InvoiceCounter',
]
