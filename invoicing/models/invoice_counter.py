"""Durable counter backing sequential invoice numbers."""
from sqlalchemy import Column, String, Integer, DateTime
from sqlalchemy.sql import func
from invoicing.database import Base


class InvoiceCounter(Base):
    """One row per named counter; `next_value` is what the next allocation will use."""

    __tablename__ = 'invoice_counter'

    name = Column(String(64), primary_key=True)
    next_value = Column(Integer, nullable=False, default=1)
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<InvoiceCounter(name='{self.name}', next_value={self.next_value})>"
