"""Invoice model (header of a persisted invoice)."""
import enum
import uuid
from sqlalchemy import Column, String, Numeric, Date, DateTime, Text, CheckConstraint, Uuid
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from invoicing.database import Base


class InvoiceStatus(enum.Enum):
    """Invoice status enum."""
    DRAFT = "draft"
    SENT = "sent"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"

    @classmethod
    def values(cls):
        return [status.value for status in cls]


class Invoice(Base):
    """
    Invoice header.

    Created atomically together with its items. Items are immutable after
    creation; the status is changed by administrative action.
    """

    __tablename__ = 'invoices'
    __table_args__ = (
        CheckConstraint(
            "status IN ('draft', 'sent', 'paid', 'overdue', 'cancelled')",
            name='ck_invoices_status'
        ),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    invoice_number = Column(String(50), nullable=False, unique=True, index=True)
    customer_name = Column(String(255), nullable=False, index=True)
    customer_email = Column(String(255), nullable=True, index=True)
    customer_phone = Column(String(50), nullable=True)
    customer_address = Column(Text, nullable=True)
    invoice_date = Column(Date, nullable=False, index=True)
    due_date = Column(Date, nullable=False)
    subtotal = Column(Numeric(12, 2), nullable=False, default=0)
    discount = Column(Numeric(5, 2), nullable=False, default=0)
    discount_amount = Column(Numeric(12, 2), nullable=False, default=0)
    total = Column(Numeric(12, 2), nullable=False, default=0, index=True)
    status = Column(String(20), nullable=False, default=InvoiceStatus.DRAFT.value, index=True)
    notes = Column(Text, nullable=True)
    pdf_url = Column(Text, nullable=True)
    payment_method = Column(String(50), nullable=True)
    payment_date = Column(Date, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), index=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    # Relationships
    items = relationship(
        'InvoiceItem',
        back_populates='invoice',
        cascade='all, delete-orphan',
        passive_deletes=True,
        order_by='InvoiceItem.position'
    )

    def __repr__(self):
        return f"<Invoice(id={self.id}, number='{self.invoice_number}', status='{self.status}', total={self.total})>"
