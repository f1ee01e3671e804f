"""
Issue flow: allocate a number, render the PDF, then persist.

The number is allocated first because it is printed on the document.
Items and discount are rounded the way the store keeps them before anything
is rendered, so the issued PDF and a later re-render of the stored invoice
are the same document. A number that already belongs to a stored invoice is
never printed: another one is allocated, a bounded number of times.
Persistence only runs after rendering succeeded; any other failed write is
reported next to the PDF instead of discarding it.
"""
import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from io import BytesIO
from typing import Any, List, Mapping, Optional, Tuple

from sqlalchemy.exc import OperationalError, DBAPIError
from sqlalchemy.orm import Session

from invoicing.exceptions import InvoicingError, DuplicateInvoiceNumberError
from invoicing.models import Invoice
from invoicing.services.calculator import calculate_totals, clamp_quantity, clamp_rate
from invoicing.services.invoice_service import create_invoice
from invoicing.services.numbering_service import InvoiceNumberAllocator
from invoicing.services.pdf_service import (
    InvoiceDocument, RenderOptions, render_invoice_pdf, sanitize_invoice_data
)
from invoicing.utils.formatters import to_decimal, quantize_money

logger = logging.getLogger(__name__)

MAX_ISSUE_ATTEMPTS = 3

CUSTOMER_FIELDS = ('customer_email', 'customer_phone', 'customer_address', 'notes', 'payment_method')


@dataclass
class IssueResult:
    invoice_number: str
    pdf: BytesIO
    document: InvoiceDocument
    invoice: Optional[Invoice] = None
    persist_error: Optional[InvoicingError] = None

    @property
    def persisted(self) -> bool:
        return self.invoice is not None


def compute_draft_totals(draft: Any):
    """Totals for a draft payload as the order form would show them."""
    if not isinstance(draft, Mapping):
        draft = {}
    items = draft.get('items')
    return calculate_totals(items if isinstance(items, (list, tuple)) else [], draft.get('discount'))


def normalize_draft(draft: Mapping) -> Tuple[List[dict], Decimal]:
    """
    Items and discount as they will be stored.

    Quantities are clamped to whole numbers, rates and the discount are
    rounded half-up to cents. Entries that are not objects are dropped;
    item ids default to the entry's position in the draft.
    """
    items = []
    raw_items = draft.get('items')
    if isinstance(raw_items, (list, tuple)):
        for index, raw in enumerate(raw_items):
            if not isinstance(raw, Mapping):
                continue
            items.append({
                'id': raw.get('id') or raw.get('item_id') or str(index + 1),
                'name': raw.get('name'),
                'quantity': clamp_quantity(raw.get('quantity')),
                'rate': quantize_money(clamp_rate(raw.get('rate'))),
            })

    discount = to_decimal(draft.get('discount'))
    return items, quantize_money(discount) if discount is not None else Decimal('0.00')


def _issue_document(draft: Mapping, invoice_number: str, options: RenderOptions,
                    today: Optional[date]) -> InvoiceDocument:
    items, discount = normalize_draft(draft)
    totals = calculate_totals(items, discount).rounded()

    data = {k: v for k, v in draft.items() if k not in ('dueDate', 'due_date')}
    data.update({
        'invoiceNumber': invoice_number,
        'items': items,
        'discount': discount,
        'subtotal': totals.subtotal,
        'discountAmount': totals.discount_amount,
        'total': totals.total,
    })
    # The store derives the due date from the invoice date
    return sanitize_invoice_data(data, today=today, due_days=options.due_days)


def _number_taken(session: Session, invoice_number: str) -> bool:
    try:
        return session.query(Invoice.id).filter(Invoice.invoice_number == invoice_number).first() is not None
    except (OperationalError, DBAPIError) as e:
        session.rollback()
        logger.warning(f"[STORE] Could not check {invoice_number} before issuing: {e}")
        return False


def _store_payload(draft: Mapping, document: InvoiceDocument) -> dict:
    name_given = any(str(draft.get(key) or '').strip() for key in ('customerName', 'customer_name'))
    payload = {
        'invoice_number': document.invoice_number,
        'customer_name': document.customer_name if name_given else None,
        'invoice_date': document.invoice_date,
        'discount': document.discount,
        'status': draft.get('status') or 'draft',
        'items': [
            {'id': item.item_id, 'name': item.name, 'quantity': item.quantity, 'rate': item.rate}
            for item in document.items
        ],
    }
    for name in CUSTOMER_FIELDS:
        payload[name] = draft.get(name)
    return payload


def issue_invoice(draft: Any, allocator: InvoiceNumberAllocator, session: Session,
                  options: Optional[RenderOptions] = None, persist: bool = True,
                  today: Optional[date] = None) -> IssueResult:
    """
    Turn an order draft into a numbered PDF and (optionally) a stored invoice.

    Raises:
        StorageUnavailableError: the counter could not be advanced
        RenderFailureError: the PDF engine failed (nothing is persisted)
        DuplicateInvoiceNumberError: every allocated number was already taken
    """
    options = options or RenderOptions()
    if not isinstance(draft, Mapping):
        draft = {}

    invoice_number = None
    for attempt in range(1, MAX_ISSUE_ATTEMPTS + 1):
        invoice_number = allocator.allocate()
        if _number_taken(session, invoice_number):
            logger.warning(f"[COUNTER] {invoice_number} already belongs to a stored invoice "
                           f"(attempt {attempt}/{MAX_ISSUE_ATTEMPTS})")
            continue

        document = _issue_document(draft, invoice_number, options, today)
        result = IssueResult(
            invoice_number=invoice_number,
            pdf=render_invoice_pdf(document, options),
            document=document
        )
        if not persist:
            return result

        try:
            result.invoice = create_invoice(_store_payload(draft, document), session, due_days=options.due_days)
        except DuplicateInvoiceNumberError:
            logger.warning(f"[STORE] {invoice_number} was stored concurrently "
                           f"(attempt {attempt}/{MAX_ISSUE_ATTEMPTS})")
            continue
        except InvoicingError as e:
            logger.warning(f"[STORE] PDF for {invoice_number} rendered but not persisted: {e.message}")
            result.persist_error = e
        return result

    logger.error(f"[COUNTER] No free invoice number after {MAX_ISSUE_ATTEMPTS} attempts; last was {invoice_number}")
    raise DuplicateInvoiceNumberError(invoice_number)
