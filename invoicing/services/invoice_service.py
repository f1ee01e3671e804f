"""Invoice store: transactional create/read/update/delete over invoices and their items."""
import logging
import math
import uuid
from datetime import timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import or_, func
from sqlalchemy.exc import IntegrityError, DataError, OperationalError, DBAPIError, SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from invoicing.blueprints.metrics import invoices_created_total
from invoicing.exceptions import (
    ValidationError, NotFoundError, DuplicateInvoiceNumberError, StorageUnavailableError
)
from invoicing.models import Invoice, InvoiceItem, InvoiceStatus
from invoicing.services.calculator import calculate_totals, clamp_quantity, clamp_rate
from invoicing.utils.formatters import quantize_money
from invoicing.utils.number_format import parse_iso_date, parse_optional_date, parse_amount

logger = logging.getLogger(__name__)

MONEY = Decimal('0.01')

# Column limits: Integer, Numeric(10,2) and Numeric(12,2)
MAX_QUANTITY = 2147483647
MAX_RATE = Decimal('99999999.99')
MAX_AMOUNT = Decimal('9999999999.99')

SORT_FIELDS = {
    'created_at': Invoice.created_at,
    'invoice_date': Invoice.invoice_date,
    'total': Invoice.total,
    'customer_name': Invoice.customer_name,
}

# Header fields a PUT may change. Items and derived totals are not writable.
UPDATABLE_FIELDS = {
    'invoice_number', 'customer_name', 'customer_email', 'customer_phone',
    'customer_address', 'invoice_date', 'due_date', 'discount', 'status',
    'notes', 'pdf_url', 'payment_method', 'payment_date',
}
IGNORED_FIELDS = {'id', 'created_at', 'updated_at'}

OPTIONAL_TEXT_FIELDS = (
    'customer_email', 'customer_phone', 'customer_address', 'notes',
    'pdf_url', 'payment_method'
)


def _is_unique_violation(error: IntegrityError) -> bool:
    orig = getattr(error, 'orig', None)
    if getattr(orig, 'pgcode', None) == '23505' or getattr(orig, 'sqlstate', None) == '23505':
        return True
    message = str(orig or error).lower()
    return 'unique' in message or 'duplicate' in message


def _storage_error(session: Session, error: Exception, action: str) -> StorageUnavailableError:
    session.rollback()
    logger.error(f"[STORE] {action} failed: {error}")
    return StorageUnavailableError(f'Database unavailable while trying to {action}')


def parse_invoice_id(value: Any) -> uuid.UUID:
    """Validate an invoice id from a URL."""
    try:
        return uuid.UUID(str(value))
    except (ValueError, TypeError, AttributeError):
        raise ValidationError('Invalid invoice ID format')


def _validate_status(value: Any) -> str:
    if value not in InvoiceStatus.values():
        raise ValidationError(
            f"Invalid status '{value}'. Expected one of: {', '.join(InvoiceStatus.values())}"
        )
    return value


def _optional_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _build_items(raw_items: List[Any]) -> List[InvoiceItem]:
    items = []
    for position, raw in enumerate(raw_items):
        if not isinstance(raw, dict):
            raise ValidationError(f'Item {position + 1} must be an object')

        name = str(raw.get('name') or '').strip()
        if not name:
            raise ValidationError(f'Item {position + 1} is missing a name')

        quantity = clamp_quantity(raw.get('quantity'))
        if quantity > MAX_QUANTITY:
            raise ValidationError(f'Item {position + 1}: quantity must not exceed {MAX_QUANTITY}')

        rate = quantize_money(clamp_rate(raw.get('rate')))
        if rate > MAX_RATE:
            raise ValidationError(f'Item {position + 1}: rate must not exceed {MAX_RATE}')

        total = quantity * rate
        if total > MAX_AMOUNT:
            raise ValidationError(f'Item {position + 1}: amount must not exceed {MAX_AMOUNT}')
        item_id = raw.get('id') or raw.get('item_id') or str(position + 1)

        items.append(InvoiceItem(
            item_id=str(item_id)[:50],
            position=position,
            name=name[:255],
            quantity=quantity,
            rate=rate,
            total=total
        ))
    return items


def create_invoice(payload: dict, session: Session, due_days: int = 30) -> Invoice:
    """
    Create an invoice header together with its items (all or nothing).

    Args:
        payload: Dictionary with:
            - invoice_number: str (required)
            - customer_name: str (required)
            - invoice_date: YYYY-MM-DD (required)
            - items: non-empty list of {id, name, quantity, rate}
            - discount: percentage (default 0)
            - status: one of the invoice statuses (default 'draft')
            - customer_email/phone/address, notes, payment_method, payment_date: optional
            - subtotal, discount_amount, total: advisory, recomputed here
        session: SQLAlchemy session
        due_days: days between invoice_date and due_date

    Returns:
        The persisted Invoice

    Raises:
        ValidationError: missing or malformed fields
        DuplicateInvoiceNumberError: invoice_number already used
        StorageUnavailableError: database failure
    """
    if not isinstance(payload, dict):
        raise ValidationError('Missing required fields')

    invoice_number = str(payload.get('invoice_number') or '').strip()
    customer_name = str(payload.get('customer_name') or '').strip()
    raw_items = payload.get('items')

    if not invoice_number or not customer_name or not payload.get('invoice_date') \
            or not isinstance(raw_items, list) or len(raw_items) == 0:
        raise ValidationError('Missing required fields')

    invoice_date = parse_iso_date(payload['invoice_date'], 'invoice_date')
    discount = parse_amount(payload.get('discount') or 0, 'discount')
    if discount < 0 or discount > 100:
        raise ValidationError('Discount must be between 0 and 100')

    status = _validate_status(payload.get('status') or InvoiceStatus.DRAFT.value)
    items = _build_items(raw_items)

    # Totals follow the stored (2-decimal) rates so the header matches its items
    totals = calculate_totals(
        [{'quantity': item.quantity, 'rate': item.rate} for item in items],
        discount
    ).rounded()
    if totals.subtotal > MAX_AMOUNT:
        raise ValidationError(f'Invoice subtotal must not exceed {MAX_AMOUNT}')
    client_total = payload.get('total')
    if client_total is not None:
        try:
            if abs(Decimal(str(client_total)) - totals.total) > MONEY:
                logger.warning(
                    f"[STORE] Client total {client_total} for {invoice_number} "
                    f"differs from computed {totals.total}; storing computed totals"
                )
        except ArithmeticError:
            logger.warning(f"[STORE] Ignoring non-numeric client total for {invoice_number}")

    invoice = Invoice(
        invoice_number=invoice_number[:50],
        customer_name=customer_name[:255],
        invoice_date=invoice_date,
        due_date=invoice_date + timedelta(days=due_days),
        subtotal=totals.subtotal,
        discount=discount,
        discount_amount=totals.discount_amount,
        total=totals.total,
        status=status,
        payment_date=parse_optional_date(payload.get('payment_date'), 'payment_date'),
        items=items
    )
    for name in OPTIONAL_TEXT_FIELDS:
        setattr(invoice, name, _optional_text(payload.get(name)))

    try:
        existing = session.query(Invoice.id).filter(Invoice.invoice_number == invoice.invoice_number).first()
        if existing:
            raise DuplicateInvoiceNumberError(invoice.invoice_number)

        # Header and items are flushed in one transaction
        session.add(invoice)
        session.flush()
        session.commit()
    except DuplicateInvoiceNumberError:
        session.rollback()
        raise
    except IntegrityError as e:
        session.rollback()
        if _is_unique_violation(e):
            raise DuplicateInvoiceNumberError(invoice.invoice_number) from e
        logger.error(f"[STORE] Integrity error creating {invoice.invoice_number}: {e}")
        raise ValidationError('Invoice violates a database constraint') from e
    except DataError as e:
        session.rollback()
        logger.warning(f"[STORE] Value out of range for {invoice.invoice_number}: {e}")
        raise ValidationError('Invoice contains a value out of range') from e
    except (OperationalError, DBAPIError) as e:
        raise _storage_error(session, e, 'create invoice') from e

    invoices_created_total.inc()
    logger.info(f"[STORE] Created invoice {invoice.invoice_number} ({len(items)} items, total {invoice.total})")
    return invoice


def get_invoice(invoice_id: Any, session: Session) -> Invoice:
    """Fetch one invoice with its items."""
    invoice_uuid = parse_invoice_id(invoice_id)
    try:
        invoice = session.query(Invoice).options(selectinload(Invoice.items)).filter(
            Invoice.id == invoice_uuid
        ).first()
    except (OperationalError, DBAPIError) as e:
        raise _storage_error(session, e, 'fetch invoice') from e

    if not invoice:
        raise NotFoundError()
    return invoice


def list_invoices(session: Session, page: int = 1, limit: int = 10, search: str = '',
                  status: str = '', sort_by: str = 'created_at', sort_order: str = 'desc',
                  max_limit: int = 100) -> Tuple[List[Invoice], Dict[str, Any]]:
    """
    Filtered, sorted, paginated invoice listing.

    Search matches customer name, invoice number or customer email
    (case-insensitive). `status='all'` or empty disables the status filter.
    Unknown sort fields fall back to created_at.
    """
    page = max(page or 1, 1)
    limit = min(max(limit or 1, 1), max_limit)

    query = session.query(Invoice)

    search = (search or '').strip()
    if search:
        pattern = f'%{search}%'
        query = query.filter(or_(
            Invoice.customer_name.ilike(pattern),
            Invoice.invoice_number.ilike(pattern),
            Invoice.customer_email.ilike(pattern),
        ))

    if status and status != 'all':
        query = query.filter(Invoice.status == _validate_status(status))

    column = SORT_FIELDS.get(sort_by, Invoice.created_at)
    ordering = column.asc() if sort_order == 'asc' else column.desc()

    try:
        total_items = query.order_by(None).count()
        invoices = (query.options(selectinload(Invoice.items))
                    .order_by(ordering, Invoice.invoice_number.asc())
                    .offset((page - 1) * limit)
                    .limit(limit)
                    .all())
    except (OperationalError, DBAPIError) as e:
        raise _storage_error(session, e, 'list invoices') from e

    total_pages = math.ceil(total_items / limit) if total_items else 0
    pagination = {
        'currentPage': page,
        'totalPages': total_pages,
        'totalItems': total_items,
        'itemsPerPage': limit,
        'hasNextPage': page < total_pages,
        'hasPrevPage': page > 1,
    }
    return invoices, pagination


def update_invoice(invoice_id: Any, fields: dict, session: Session, due_days: int = 30) -> Invoice:
    """
    Partially update an invoice header.

    Changing `discount` recomputes discount_amount and total from the stored
    subtotal. Changing `invoice_date` without `due_date` moves the due date.
    """
    if not isinstance(fields, dict) or not fields:
        raise ValidationError('No fields to update')

    fields = {k: v for k, v in fields.items() if k not in IGNORED_FIELDS}
    unknown = sorted(set(fields) - UPDATABLE_FIELDS)
    if unknown:
        raise ValidationError(f"Fields cannot be updated: {', '.join(unknown)}")

    invoice = get_invoice(invoice_id, session)

    try:
        if 'invoice_number' in fields:
            number = str(fields['invoice_number'] or '').strip()
            if not number:
                raise ValidationError('invoice_number cannot be empty')
            invoice.invoice_number = number[:50]

        if 'customer_name' in fields:
            name = str(fields['customer_name'] or '').strip()
            if not name:
                raise ValidationError('customer_name cannot be empty')
            invoice.customer_name = name[:255]

        for name in OPTIONAL_TEXT_FIELDS:
            if name in fields:
                setattr(invoice, name, _optional_text(fields[name]))

        if 'status' in fields:
            invoice.status = _validate_status(fields['status'])

        if 'invoice_date' in fields:
            invoice.invoice_date = parse_iso_date(fields['invoice_date'], 'invoice_date')
            if 'due_date' not in fields:
                invoice.due_date = invoice.invoice_date + timedelta(days=due_days)

        if 'due_date' in fields:
            invoice.due_date = parse_iso_date(fields['due_date'], 'due_date')

        if 'payment_date' in fields:
            invoice.payment_date = parse_optional_date(fields['payment_date'], 'payment_date')

        if 'discount' in fields:
            discount = parse_amount(fields['discount'] or 0, 'discount')
            if discount < 0 or discount > 100:
                raise ValidationError('Discount must be between 0 and 100')
            discount_amount = quantize_money(invoice.subtotal * discount / Decimal(100))
            invoice.discount = discount
            invoice.discount_amount = discount_amount
            invoice.total = invoice.subtotal - discount_amount

        session.commit()
    except ValidationError:
        session.rollback()
        raise
    except IntegrityError as e:
        session.rollback()
        if _is_unique_violation(e):
            raise DuplicateInvoiceNumberError(fields.get('invoice_number')) from e
        raise ValidationError('Invoice violates a database constraint') from e
    except DataError as e:
        session.rollback()
        raise ValidationError('Invoice contains a value out of range') from e
    except (OperationalError, DBAPIError) as e:
        raise _storage_error(session, e, 'update invoice') from e

    logger.info(f"[STORE] Updated invoice {invoice.invoice_number}: {', '.join(sorted(fields))}")
    return invoice


def delete_invoice(invoice_id: Any, session: Session) -> None:
    """Delete an invoice; its items go with it."""
    invoice = get_invoice(invoice_id, session)
    number = invoice.invoice_number
    try:
        session.delete(invoice)
        session.commit()
    except SQLAlchemyError as e:
        raise _storage_error(session, e, 'delete invoice') from e
    logger.info(f"[STORE] Deleted invoice {number}")


def count_invoice_items(session: Session, invoice_number: Optional[str] = None) -> int:
    """Count stored line items, optionally for one invoice number."""
    query = session.query(func.count(InvoiceItem.id))
    if invoice_number is not None:
        query = query.join(Invoice).filter(Invoice.invoice_number == invoice_number)
    return query.scalar() or 0


def _iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _number(value) -> float:
    return float(value) if value is not None else 0.0


def invoice_to_dict(invoice: Invoice) -> Dict[str, Any]:
    """JSON-ready representation of an invoice and its items."""
    return {
        'id': str(invoice.id),
        'invoice_number': invoice.invoice_number,
        'customer_name': invoice.customer_name,
        'customer_email': invoice.customer_email,
        'customer_phone': invoice.customer_phone,
        'customer_address': invoice.customer_address,
        'invoice_date': _iso(invoice.invoice_date),
        'due_date': _iso(invoice.due_date),
        'subtotal': _number(invoice.subtotal),
        'discount': _number(invoice.discount),
        'discount_amount': _number(invoice.discount_amount),
        'total': _number(invoice.total),
        'status': invoice.status,
        'notes': invoice.notes,
        'pdf_url': invoice.pdf_url,
        'payment_method': invoice.payment_method,
        'payment_date': _iso(invoice.payment_date),
        'created_at': _iso(invoice.created_at),
        'updated_at': _iso(invoice.updated_at),
        'items': [
            {
                'id': str(item.id),
                'item_id': item.item_id,
                'name': item.name,
                'quantity': item.quantity,
                'rate': _number(item.rate),
                'total': _number(item.total),
            }
            for item in invoice.items
        ],
    }
