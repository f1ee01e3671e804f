"""
Invoice PDF rendering.

Rendering runs in two steps. `sanitize_invoice_data` turns whatever the
caller passes (a request payload, a stored invoice, None) into a fully
defaulted `InvoiceDocument`. `render_invoice_pdf` lays that document out on
fixed-size pages with reportlab. The layout code never sees missing or
malformed values; the item table flows onto extra pages when it does not fit
on one.
"""
import logging
import os
import time
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal
from io import BytesIO
from typing import Any, Dict, List, Mapping, Optional
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER, TA_RIGHT
from reportlab.lib.pagesizes import A4, LETTER
from reportlab.lib.styles import getSampleStyleSheet, ParagraphStyle
from reportlab.platypus import SimpleDocTemplate, Table, TableStyle, Paragraph, Spacer, Image

from invoicing.blueprints.metrics import invoice_pdf_render_seconds
from invoicing.exceptions import RenderFailureError
from invoicing.services.calculator import clamp_quantity, clamp_rate
from invoicing.utils.formatters import (
    format_money, format_percent, date_long, to_decimal,
    DEFAULT_CURRENCY_SYMBOL, DEFAULT_GROUPING
)
from invoicing.utils.number_format import ISO_DATE_PATTERN

logger = logging.getLogger(__name__)

DEFAULT_CUSTOMER_NAME = 'Customer Name'
DEFAULT_ITEM_NAME = 'Unnamed Item'
DEFAULT_INVOICE_NUMBER = 'INV-0000'
EMPTY_ITEMS_LABEL = 'No items'

# Same limits as the invoice tables, so a stored invoice renders like its draft
MAX_NAME_LENGTH = 255
MAX_CODE_LENGTH = 50

PAGE_SIZES = {'A4': A4, 'LETTER': LETTER}

# Palette
DARK = colors.HexColor('#2D3748')
MUTED = colors.HexColor('#718096')
BODY = colors.HexColor('#4A5568')
ACCENT = colors.HexColor('#E53E3E')
ACCENT_BG = colors.HexColor('#FED7D7')
PANEL_BG = colors.HexColor('#F7FAFC')
BORDER = colors.HexColor('#E2E8F0')
ROW_ALT_BG = colors.HexColor('#F8F9FA')


@dataclass(frozen=True)
class RenderItem:
    item_id: str
    name: str
    quantity: int
    rate: Decimal

    @property
    def amount(self) -> Decimal:
        return self.quantity * self.rate


@dataclass(frozen=True)
class InvoiceDocument:
    """Sanitized, always-valid input of the layout code."""
    invoice_number: str
    customer_name: str
    invoice_date: date
    due_date: date
    items: List[RenderItem]
    discount: Decimal
    subtotal: Decimal
    discount_amount: Decimal
    total: Decimal


@dataclass(frozen=True)
class RenderOptions:
    currency_symbol: str = DEFAULT_CURRENCY_SYMBOL
    grouping: str = DEFAULT_GROUPING
    business_name: str = ''
    business_website: str = ''
    business_phone: str = ''
    business_email: str = ''
    logo_path: Optional[str] = None
    page_size: str = 'A4'
    due_days: int = 30
    footer_lines: List[str] = field(default_factory=lambda: [
        'This is a computer-generated invoice and does not require a signature.',
    ])

    def money(self, value) -> str:
        return format_money(value, symbol=self.currency_symbol, grouping=self.grouping)


def render_options_from_config(config: Mapping) -> RenderOptions:
    """Build render options from a Flask config mapping."""
    return RenderOptions(
        currency_symbol=config.get('CURRENCY_SYMBOL', DEFAULT_CURRENCY_SYMBOL),
        grouping=config.get('NUMBER_GROUPING', DEFAULT_GROUPING),
        business_name=config.get('BUSINESS_NAME') or '',
        business_website=config.get('BUSINESS_WEBSITE') or '',
        business_phone=config.get('BUSINESS_PHONE') or '',
        business_email=config.get('BUSINESS_EMAIL') or '',
        logo_path=config.get('INVOICE_LOGO_PATH'),
        page_size=(config.get('PDF_PAGE_SIZE') or 'A4').upper(),
        due_days=config.get('INVOICE_DUE_DAYS', 30),
    )


# ---------------------------------------------------------------------------
# Sanitization
# ---------------------------------------------------------------------------

def _pick(data: Mapping, *keys):
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return None


def _as_date(value) -> Optional[date]:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and ISO_DATE_PATTERN.match(value.strip()):
        try:
            return date.fromisoformat(value.strip()[:10])
        except ValueError:
            return None
    return None


def _as_amount(value) -> Decimal:
    num = to_decimal(value)
    return num if num is not None else Decimal('0')


def _as_text(value, default: str, max_length: int = MAX_NAME_LENGTH) -> str:
    if value is None:
        return default
    text = str(value).strip()[:max_length]
    return text or default


def _sanitize_items(raw_items) -> List[RenderItem]:
    if not isinstance(raw_items, (list, tuple)):
        return []

    items = []
    for index, raw in enumerate(raw_items):
        if not isinstance(raw, Mapping):
            continue
        items.append(RenderItem(
            item_id=_as_text(_pick(raw, 'id', 'item_id'), str(index + 1), MAX_CODE_LENGTH),
            name=_as_text(raw.get('name'), DEFAULT_ITEM_NAME),
            quantity=clamp_quantity(raw.get('quantity')),
            rate=clamp_rate(raw.get('rate')),
        ))
    return items


def sanitize_invoice_data(data: Any, today: Optional[date] = None, due_days: int = 30) -> InvoiceDocument:
    """
    Normalize loosely typed invoice data into an InvoiceDocument.

    Accepts camelCase (customerName, discountAmount, ...) and snake_case
    (customer_name, discount_amount, ...) keys. Never raises:
    - missing customer name -> "Customer Name"
    - missing/invalid date -> today
    - non-list items -> no items; non-mapping entries are dropped
    - non-numeric discount/subtotal/discount amount/total -> 0
    - missing invoice number -> "INV-0000"
    - names longer than 255 characters (codes: 50) are cut
    - missing due date -> invoice date + due_days
    """
    if not isinstance(data, Mapping):
        data = {}
    today = today or date.today()

    invoice_date = _as_date(_pick(data, 'date', 'invoiceDate', 'invoice_date')) or today
    due_date = _as_date(_pick(data, 'dueDate', 'due_date')) or invoice_date + timedelta(days=due_days)

    return InvoiceDocument(
        invoice_number=_as_text(_pick(data, 'invoiceNumber', 'invoice_number'), DEFAULT_INVOICE_NUMBER, MAX_CODE_LENGTH),
        customer_name=_as_text(_pick(data, 'customerName', 'customer_name'), DEFAULT_CUSTOMER_NAME),
        invoice_date=invoice_date,
        due_date=due_date,
        items=_sanitize_items(data.get('items')),
        discount=_as_amount(data.get('discount')),
        subtotal=_as_amount(data.get('subtotal')),
        discount_amount=_as_amount(_pick(data, 'discountAmount', 'discount_amount')),
        total=_as_amount(data.get('total')),
    )


# ---------------------------------------------------------------------------
# Layout
# ---------------------------------------------------------------------------

def item_table_rows(document: InvoiceDocument, options: RenderOptions) -> List[List[str]]:
    """Header row plus one row per item, or the "No items" placeholder row."""
    rows = [['Description', 'Qty', 'Rate', 'Amount']]
    if not document.items:
        rows.append([EMPTY_ITEMS_LABEL, '0', options.money(0), options.money(0)])
        return rows

    for item in document.items:
        rows.append([
            item.name,
            str(item.quantity),
            options.money(item.rate),
            options.money(item.amount),
        ])
    return rows


def summary_rows(document: InvoiceDocument, options: RenderOptions) -> List[List[str]]:
    """Subtotal, discount (as a negative amount) and total lines."""
    return [
        ['Subtotal', options.money(document.subtotal)],
        [f'Discount ({format_percent(document.discount)}%)', f'- {options.money(document.discount_amount)}'],
        ['Total Amount', options.money(document.total)],
    ]


def _styles():
    styles = getSampleStyleSheet()
    return {
        'title': ParagraphStyle(
            'InvoiceTitle', parent=styles['Heading1'], fontName='Helvetica-Bold',
            fontSize=28, leading=32, textColor=DARK, alignment=TA_RIGHT, spaceAfter=4
        ),
        'subtitle': ParagraphStyle(
            'InvoiceSubtitle', parent=styles['Normal'], fontSize=10, textColor=BODY, alignment=TA_RIGHT
        ),
        'number': ParagraphStyle(
            'InvoiceNumber', parent=styles['Normal'], fontName='Helvetica-Bold', fontSize=12,
            textColor=ACCENT, backColor=ACCENT_BG, alignment=TA_RIGHT, borderPadding=4
        ),
        'brand': ParagraphStyle(
            'Brand', parent=styles['Normal'], fontName='Helvetica-Bold', fontSize=14, textColor=DARK
        ),
        'section': ParagraphStyle(
            'Section', parent=styles['Normal'], fontName='Helvetica-Bold', fontSize=11,
            textColor=DARK, spaceAfter=6
        ),
        'label': ParagraphStyle(
            'Label', parent=styles['Normal'], fontName='Helvetica-Bold', fontSize=9, textColor=MUTED
        ),
        'value': ParagraphStyle(
            'Value', parent=styles['Normal'], fontSize=11, textColor=DARK, spaceAfter=6
        ),
        'cell': ParagraphStyle(
            'Cell', parent=styles['Normal'], fontSize=10, leading=12, textColor=DARK
        ),
    }


def _header_block(document: InvoiceDocument, options: RenderOptions, styles, width: float) -> Table:
    if options.logo_path and os.path.exists(options.logo_path):
        brand = Image(options.logo_path, width=62, height=68)
    else:
        # Placeholder when no logo file is configured
        brand = Paragraph(escape(options.business_name or 'Your Company'), styles['brand'])

    title_block = [
        Paragraph('INVOICE', styles['title']),
        Paragraph('Invoice no :', styles['subtitle']),
        Spacer(1, 4),
        Paragraph(escape(document.invoice_number), styles['number']),
    ]

    table = Table([[brand, title_block]], colWidths=[width * 0.5, width * 0.5])
    table.setStyle(TableStyle([
        ('VALIGN', (0, 0), (-1, -1), 'TOP'),
        ('LINEBELOW', (0, 0), (-1, 0), 2, DARK),
        ('BOTTOMPADDING', (0, 0), (-1, 0), 16),
        ('LEFTPADDING', (0, 0), (0, 0), 0),
        ('RIGHTPADDING', (-1, 0), (-1, 0), 0),
    ]))
    return table


def _info_block(document: InvoiceDocument, styles, width: float) -> Table:
    bill_to = [
        Paragraph('BILL TO', styles['section']),
        Paragraph('Customer Name', styles['label']),
        Paragraph(escape(document.customer_name), styles['value']),
    ]
    details = [
        Paragraph('INVOICE DETAILS', styles['section']),
        Paragraph('Invoice Number', styles['label']),
        Paragraph(escape(document.invoice_number), styles['value']),
        Paragraph('Invoice Date', styles['label']),
        Paragraph(date_long(document.invoice_date), styles['value']),
        Paragraph('Due Date', styles['label']),
        Paragraph(date_long(document.due_date), styles['value']),
    ]

    table = Table([[bill_to, details]], colWidths=[width * 0.5, width * 0.5])
    table.setStyle(TableStyle([
        ('VALIGN', (0, 0), (-1, -1), 'TOP'),
        ('BACKGROUND', (0, 0), (-1, -1), PANEL_BG),
        ('BOX', (0, 0), (-1, -1), 0.5, BORDER),
        ('TOPPADDING', (0, 0), (-1, -1), 14),
        ('BOTTOMPADDING', (0, 0), (-1, -1), 10),
        ('LEFTPADDING', (0, 0), (-1, -1), 14),
    ]))
    return table


def _items_table(document: InvoiceDocument, options: RenderOptions, styles, width: float) -> Table:
    rows = item_table_rows(document, options)
    # Wrap long descriptions
    data = [rows[0]] + [
        [Paragraph(escape(row[0]), styles['cell'])] + row[1:]
        for row in rows[1:]
    ]

    table = Table(
        data,
        colWidths=[width * 0.43, width * 0.13, width * 0.22, width * 0.22],
        repeatRows=1
    )
    table.setStyle(TableStyle([
        ('BACKGROUND', (0, 0), (-1, 0), DARK),
        ('TEXTCOLOR', (0, 0), (-1, 0), colors.white),
        ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
        ('FONTSIZE', (0, 0), (-1, -1), 10),
        ('TOPPADDING', (0, 0), (-1, -1), 8),
        ('BOTTOMPADDING', (0, 0), (-1, -1), 8),
        ('VALIGN', (0, 0), (-1, -1), 'MIDDLE'),
        ('ALIGN', (1, 0), (1, -1), 'CENTER'),
        ('ALIGN', (2, 0), (-1, -1), 'RIGHT'),
        ('FONTNAME', (3, 1), (3, -1), 'Helvetica-Bold'),
        ('TEXTCOLOR', (1, 1), (-1, -1), DARK),
        ('LINEBELOW', (0, 1), (-1, -1), 0.5, BORDER),
        ('BOX', (0, 0), (-1, -1), 0.5, BORDER),
        ('ROWBACKGROUNDS', (0, 1), (-1, -1), [colors.white, ROW_ALT_BG]),
    ]))
    return table


def _summary_block(document: InvoiceDocument, options: RenderOptions, width: float) -> Table:
    rows = summary_rows(document, options)
    summary_width = min(260, width)

    inner = Table(rows, colWidths=[summary_width * 0.55, summary_width * 0.45])
    inner.setStyle(TableStyle([
        ('BACKGROUND', (0, 0), (-1, -1), PANEL_BG),
        ('BOX', (0, 0), (-1, -1), 0.5, BORDER),
        ('ALIGN', (1, 0), (1, -1), 'RIGHT'),
        ('FONTSIZE', (0, 0), (-1, 1), 10),
        ('TEXTCOLOR', (0, 0), (0, 1), BODY),
        ('FONTNAME', (1, 0), (1, 1), 'Helvetica-Bold'),
        ('TEXTCOLOR', (1, 0), (1, 1), DARK),
        # Total line
        ('LINEABOVE', (0, 2), (-1, 2), 2, DARK),
        ('FONTNAME', (0, 2), (-1, 2), 'Helvetica-Bold'),
        ('FONTSIZE', (0, 2), (0, 2), 12),
        ('FONTSIZE', (1, 2), (1, 2), 14),
        ('TEXTCOLOR', (0, 2), (0, 2), DARK),
        ('TEXTCOLOR', (1, 2), (1, 2), ACCENT),
        ('TOPPADDING', (0, 2), (-1, 2), 8),
    ]))

    # Right-align the summary box on the page
    outer = Table([['', inner]], colWidths=[width - summary_width, summary_width])
    outer.setStyle(TableStyle([
        ('LEFTPADDING', (0, 0), (-1, -1), 0),
        ('RIGHTPADDING', (0, 0), (-1, -1), 0),
    ]))
    return outer


def build_story(document: InvoiceDocument, options: RenderOptions, width: float) -> list:
    """Flowables for the whole document, top to bottom."""
    styles = _styles()
    return [
        _header_block(document, options, styles, width),
        Spacer(1, 20),
        _info_block(document, styles, width),
        Spacer(1, 20),
        _items_table(document, options, styles, width),
        Spacer(1, 16),
        _summary_block(document, options, width),
    ]


def contact_line(options: RenderOptions) -> str:
    parts = [p for p in (options.business_website, options.business_phone, options.business_email) if p]
    if not parts:
        return ''
    return 'For any queries, please contact us at ' + ' | '.join(parts)


def _draw_page_furniture(options: RenderOptions):
    """Watermark, footer and page number drawn on every page."""
    def draw(canvas, doc):
        page_width, page_height = doc.pagesize
        canvas.saveState()

        # Watermark
        canvas.setFillColor(colors.HexColor('#EDF2F7'))
        canvas.setFont('Helvetica-Bold', 72)
        canvas.translate(page_width / 2, page_height / 2)
        canvas.rotate(45)
        canvas.drawCentredString(0, 0, 'INVOICE')
        canvas.rotate(-45)
        canvas.translate(-page_width / 2, -page_height / 2)

        # Footer
        left, right = doc.leftMargin, page_width - doc.rightMargin
        canvas.setStrokeColor(BORDER)
        canvas.setLineWidth(1)
        canvas.line(left, 82, right, 82)

        canvas.setFillColor(DARK)
        canvas.setFont('Helvetica-Bold', 11)
        canvas.drawCentredString(page_width / 2, 66, 'Thank you for your order!')

        canvas.setFillColor(MUTED)
        canvas.setFont('Helvetica', 8)
        y = 52
        lines = list(options.footer_lines)
        contact = contact_line(options)
        if contact:
            lines.append(contact)
        for line in lines:
            canvas.drawCentredString(page_width / 2, y, line)
            y -= 11

        canvas.drawRightString(right, 20, f'Page {doc.page}')
        canvas.restoreState()
    return draw


def render_invoice_pdf(data: Any, options: Optional[RenderOptions] = None,
                       today: Optional[date] = None) -> BytesIO:
    """
    Render an invoice as a PDF.

    `data` may be anything; it is sanitized first. Only failures of the PDF
    engine itself propagate, as RenderFailureError.

    Returns:
        BytesIO positioned at 0
    """
    options = options or RenderOptions()
    document = data if isinstance(data, InvoiceDocument) else sanitize_invoice_data(
        data, today=today, due_days=options.due_days
    )

    buffer = BytesIO()
    started = time.perf_counter()
    try:
        doc = SimpleDocTemplate(
            buffer,
            pagesize=PAGE_SIZES.get(options.page_size, A4),
            rightMargin=40,
            leftMargin=40,
            topMargin=40,
            bottomMargin=100,  # Room for the footer
            title=f'Invoice {document.invoice_number}',
            author=options.business_name,
            invariant=True
        )
        furniture = _draw_page_furniture(options)
        doc.build(
            build_story(document, options, doc.width),
            onFirstPage=furniture,
            onLaterPages=furniture
        )
    except Exception as e:
        logger.exception(f"[PDF] Rendering failed for {document.invoice_number}: {e}")
        raise RenderFailureError(payload={'details': str(e)}) from e
    finally:
        invoice_pdf_render_seconds.observe(time.perf_counter() - started)

    logger.info(f"[PDF] Rendered {document.invoice_number} ({len(document.items)} items, {doc.page} pages)")
    buffer.seek(0)
    return buffer


def invoice_render_data(invoice) -> Dict[str, Any]:
    """Render input for a persisted Invoice model."""
    return {
        'invoiceNumber': invoice.invoice_number,
        'customerName': invoice.customer_name,
        'date': invoice.invoice_date,
        'dueDate': invoice.due_date,
        'items': [
            {'id': item.item_id, 'name': item.name, 'quantity': item.quantity, 'rate': item.rate}
            for item in invoice.items
        ],
        'discount': invoice.discount,
        'subtotal': invoice.subtotal,
        'discountAmount': invoice.discount_amount,
        'total': invoice.total,
    }
