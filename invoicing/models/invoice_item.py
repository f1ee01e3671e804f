"""InvoiceItem model for invoice line items."""
import uuid
from sqlalchemy import Column, Integer, String, Numeric, DateTime, ForeignKey, Uuid
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from invoicing.database import Base


class InvoiceItem(Base):
    """
    Invoice line item.

    `item_id` keeps the identifier the client used while editing; `position`
    preserves the order in which items were entered.
    """

    __tablename__ = 'invoice_items'

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    invoice_id = Column(Uuid, ForeignKey('invoices.id', ondelete='CASCADE'), nullable=False, index=True)
    item_id = Column(String(50), nullable=False)
    position = Column(Integer, nullable=False, default=0)
    name = Column(String(255), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    rate = Column(Numeric(10, 2), nullable=False, default=0)
    total = Column(Numeric(12, 2), nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    # Relationships
    invoice = relationship('Invoice', back_populates='items')

    def __repr__(self):
        return f"<InvoiceItem(id={self.id}, invoice_id={self.invoice_id}, name='{self.name}', qty={self.quantity}, total={self.total})>"
