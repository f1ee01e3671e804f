"""Invoices blueprint: JSON API over the invoice store plus PDF endpoints."""
import logging
import re
from flask import Blueprint, request, jsonify, current_app, make_response

from invoicing.database import get_session
from invoicing.exceptions import ValidationError
from invoicing.services.invoice_service import (
    create_invoice,
    get_invoice,
    list_invoices as list_invoice_records,
    update_invoice as update_invoice_record,
    delete_invoice as delete_invoice_record,
    invoice_to_dict
)
from invoicing.services.issue_service import issue_invoice, compute_draft_totals
from invoicing.services.numbering_service import get_allocator
from invoicing.services.pdf_service import (
    render_invoice_pdf, render_options_from_config, invoice_render_data
)
from invoicing.services.stats_service import get_invoice_stats

logger = logging.getLogger(__name__)

UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9._-]")

invoices_bp = Blueprint('invoices', __name__, url_prefix='/invoices')


def _json_body() -> dict:
    """Request JSON object or ValidationError."""
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError('Request body must be a JSON object')
    return data


def _pdf_response(buffer, invoice_number: str, disposition: str = 'inline'):
    response = make_response(buffer.getvalue())
    response.headers['Content-Type'] = 'application/pdf'
    response.headers['Content-Disposition'] = f'{disposition}; filename="{UNSAFE_FILENAME_CHARS.sub("_", str(invoice_number))}.pdf"'
    response.headers['Cache-Control'] = 'no-cache'
    return response


@invoices_bp.route('', methods=['GET'])
def list_invoices():
    """List invoices with search, status filter, sorting and pagination."""
    invoices, pagination = list_invoice_records(
        get_session(),
        page=request.args.get('page', 1, type=int),
        limit=request.args.get('limit', current_app.config.get('DEFAULT_PAGE_SIZE', 10), type=int),
        search=request.args.get('search', ''),
        status=request.args.get('status', ''),
        sort_by=request.args.get('sortBy', 'created_at'),
        sort_order=request.args.get('sortOrder', 'desc'),
        max_limit=current_app.config.get('MAX_PAGE_SIZE', 100)
    )
    return jsonify({
        'success': True,
        'data': {
            'invoices': [invoice_to_dict(invoice) for invoice in invoices],
            'pagination': pagination,
        }
    })


@invoices_bp.route('', methods=['POST'])
def create():
    """Persist an invoice and its items. 409 when the number is taken."""
    invoice = create_invoice(
        _json_body(),
        get_session(),
        due_days=current_app.config.get('INVOICE_DUE_DAYS', 30)
    )
    return jsonify({'success': True, 'data': invoice_to_dict(invoice)}), 201


@invoices_bp.route('/stats', methods=['GET'])
def stats():
    """Counts by status, revenue and the trailing 12-month series."""
    return jsonify({'success': True, 'data': get_invoice_stats(get_session())})


@invoices_bp.route('/next-number', methods=['GET'])
def next_number():
    """Preview of the next invoice number; does not consume it."""
    return jsonify({'success': True, 'data': {'invoice_number': get_allocator().peek()}})


@invoices_bp.route('/preview', methods=['POST'])
def preview_totals():
    """Live totals for an order draft. Bad numbers count as zero."""
    draft = request.get_json(silent=True)
    totals = compute_draft_totals(draft)
    options = render_options_from_config(current_app.config)

    data = totals.to_dict()
    data['formatted'] = {
        'subtotal': options.money(totals.subtotal),
        'discountAmount': options.money(totals.discount_amount),
        'total': options.money(totals.total),
    }
    return jsonify({'success': True, 'data': data})


@invoices_bp.route('/render', methods=['POST'])
def render_draft():
    """Render a draft PDF without allocating a number or saving anything."""
    draft = request.get_json(silent=True)
    draft = dict(draft) if isinstance(draft, dict) else {}

    if not (draft.get('invoiceNumber') or draft.get('invoice_number')):
        draft['invoiceNumber'] = get_allocator().peek()

    totals = compute_draft_totals(draft)
    draft.update({
        'subtotal': totals.subtotal,
        'discountAmount': totals.discount_amount,
        'total': totals.total,
    })

    options = render_options_from_config(current_app.config)
    buffer = render_invoice_pdf(draft, options)
    number = draft.get('invoiceNumber') or draft.get('invoice_number')
    return _pdf_response(buffer, number, disposition='attachment')


@invoices_bp.route('/issue', methods=['POST'])
def issue():
    """
    Allocate a number, render the PDF and persist the invoice.

    The PDF is returned even when saving fails; the outcome of the save is
    reported in the X-Invoice-* headers. Numbers that already belong to a
    stored invoice are skipped; when none of the attempts finds a free one the
    response is a 409 and no PDF is sent.
    """
    draft = request.get_json(silent=True)
    persist = request.args.get('persist', '1') not in ('0', 'false', 'no')

    result = issue_invoice(
        draft,
        allocator=get_allocator(),
        session=get_session(),
        options=render_options_from_config(current_app.config),
        persist=persist
    )

    response = _pdf_response(result.pdf, result.invoice_number, disposition='attachment')
    response.headers['X-Invoice-Number'] = result.invoice_number
    response.headers['X-Invoice-Persisted'] = 'true' if result.persisted else 'false'
    if result.persisted:
        response.headers['X-Invoice-Id'] = str(result.invoice.id)
        response.status_code = 201
    elif result.persist_error is not None:
        response.headers['X-Invoice-Persist-Error'] = result.persist_error.message
        logger.warning(f"Issued {result.invoice_number} without saving: {result.persist_error.message}")
    return response


@invoices_bp.route('/<invoice_id>', methods=['GET'])
def detail(invoice_id):
    """Single invoice with its items."""
    invoice = get_invoice(invoice_id, get_session())
    return jsonify({'success': True, 'data': invoice_to_dict(invoice)})


@invoices_bp.route('/<invoice_id>', methods=['PUT'])
def update(invoice_id):
    """Partial update of header fields (status, customer details, discount...)."""
    invoice = update_invoice_record(
        invoice_id,
        _json_body(),
        get_session(),
        due_days=current_app.config.get('INVOICE_DUE_DAYS', 30)
    )
    return jsonify({'success': True, 'data': invoice_to_dict(invoice)})


@invoices_bp.route('/<invoice_id>', methods=['DELETE'])
def delete(invoice_id):
    """Delete an invoice and its items."""
    delete_invoice_record(invoice_id, get_session())
    return jsonify({'success': True, 'message': 'Invoice deleted successfully'})


@invoices_bp.route('/<invoice_id>/pdf', methods=['GET'])
def download_pdf(invoice_id):
    """Render a stored invoice as PDF."""
    invoice = get_invoice(invoice_id, get_session())
    options = render_options_from_config(current_app.config)
    buffer = render_invoice_pdf(invoice_render_data(invoice), options)
    return _pdf_response(buffer, invoice.invoice_number)
