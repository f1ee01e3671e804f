"""
Integration tests for the order-to-invoice endpoints: live totals, number
preview, draft rendering and issuing.
"""

import re
from datetime import date, timedelta
from decimal import Decimal

import pytest

from invoicing.exceptions import DuplicateInvoiceNumberError
from invoicing.models import Invoice
from invoicing.services import issue_service
from invoicing.services.invoice_service import count_invoice_items, get_invoice
from invoicing.services.issue_service import MAX_ISSUE_ATTEMPTS, issue_invoice, normalize_draft
from invoicing.services.pdf_service import (
    RenderOptions,
    invoice_render_data,
    item_table_rows,
    sanitize_invoice_data,
    summary_rows,
)

NUMBER_PATTERN = re.compile(r'^INV-\d{4}-\d{2}-\d{4}$')
TODAY = date(2024, 4, 15)


def order_draft(**overrides):
    draft = {
        'customerName': 'Asha Traders',
        'date': '2024-04-15',
        'discount': 10,
        'items': [
            {'id': 'item-1', 'name': 'Steel bracket', 'quantity': 2, 'rate': 100},
            {'id': 'item-2', 'name': 'Hinge set', 'quantity': 1, 'rate': 50},
        ],
    }
    draft.update(overrides)
    return draft


class TestPreview:
    """POST /invoices/preview"""

    def test_totals_and_formatted_amounts(self, client):
        response = client.post('/invoices/preview', json=order_draft())

        assert response.status_code == 200
        data = response.get_json()['data']
        assert data['subtotal'] == 250.0
        assert data['discountAmount'] == 25.0
        assert data['total'] == 225.0
        assert data['formatted'] == {
            'subtotal': 'Rs. 250.00',
            'discountAmount': 'Rs. 25.00',
            'total': 'Rs. 225.00',
        }

    def test_bad_numbers_count_as_zero(self, client):
        draft = order_draft(discount='lots', items=[
            {'name': 'x', 'quantity': -1, 'rate': 10},
            {'name': 'y', 'quantity': 2, 'rate': 'abc'},
        ])

        data = client.post('/invoices/preview', json=draft).get_json()['data']

        assert data['total'] == 0.0

    def test_no_body(self, client):
        response = client.post('/invoices/preview')

        assert response.status_code == 200
        assert response.get_json()['data']['total'] == 0.0

    def test_huge_rate_is_formatted(self, client):
        response = client.post('/invoices/preview', json={'items': [{'quantity': 1, 'rate': 1e30}]})

        assert response.status_code == 200
        total = response.get_json()['data']['formatted']['total']
        assert total.startswith('Rs. 1')
        assert total.endswith('.00')


class TestNextNumber:
    """GET /invoices/next-number"""

    def test_peek_does_not_consume(self, client):
        first = client.get('/invoices/next-number').get_json()['data']['invoice_number']
        second = client.get('/invoices/next-number').get_json()['data']['invoice_number']

        assert NUMBER_PATTERN.match(first)
        assert first == second
        assert first.endswith('-0001')


class TestRenderDraft:
    """POST /invoices/render"""

    def test_download_uses_previewed_number(self, client):
        number = client.get('/invoices/next-number').get_json()['data']['invoice_number']

        response = client.post('/invoices/render', json=order_draft())

        assert response.status_code == 200
        assert response.headers['Content-Type'] == 'application/pdf'
        assert response.headers['Content-Disposition'] == f'attachment; filename="{number}.pdf"'
        assert response.data.startswith(b'%PDF')
        # Rendering a draft neither allocates nor saves
        assert client.get('/invoices/next-number').get_json()['data']['invoice_number'] == number

    def test_garbage_draft_still_renders(self, client):
        response = client.post('/invoices/render', json={'items': None, 'customerName': None, 'discount': 'bad'})

        assert response.status_code == 200
        assert response.data.startswith(b'%PDF')

    def test_unsafe_characters_in_filename(self, client):
        response = client.post('/invoices/render', json=order_draft(invoiceNumber='INV/2024 "x"'))

        assert response.headers['Content-Disposition'] == 'attachment; filename="INV_2024__x_.pdf"'


class TestIssue:
    """POST /invoices/issue"""

    def test_issue_allocates_renders_and_persists(self, client, session):
        response = client.post('/invoices/issue', json=order_draft())

        assert response.status_code == 201
        number = response.headers['X-Invoice-Number']
        assert NUMBER_PATTERN.match(number)
        assert number.endswith('-0001')
        assert response.headers['X-Invoice-Persisted'] == 'true'
        assert response.headers['Content-Disposition'] == f'attachment; filename="{number}.pdf"'
        assert response.data.startswith(b'%PDF')

        invoice = session.query(Invoice).filter_by(invoice_number=number).one()
        assert str(invoice.id) == response.headers['X-Invoice-Id']
        assert float(invoice.total) == 225.0
        assert count_invoice_items(session, number) == 2

    def test_consecutive_issues_get_consecutive_numbers(self, client):
        first = client.post('/invoices/issue', json=order_draft()).headers['X-Invoice-Number']
        second = client.post('/invoices/issue', json=order_draft()).headers['X-Invoice-Number']

        assert first.endswith('-0001')
        assert second.endswith('-0002')
        assert client.get('/invoices/next-number').get_json()['data']['invoice_number'].endswith('-0003')

    def test_issue_without_persisting(self, client, session):
        response = client.post('/invoices/issue?persist=0', json=order_draft())

        assert response.status_code == 200
        assert response.headers['X-Invoice-Persisted'] == 'false'
        assert session.query(Invoice).count() == 0
        # The number is still consumed
        assert client.get('/invoices/next-number').get_json()['data']['invoice_number'].endswith('-0002')

    def test_pdf_is_returned_when_saving_fails(self, client, session):
        response = client.post('/invoices/issue', json=order_draft(customerName=None))

        assert response.status_code == 200
        assert response.data.startswith(b'%PDF')
        assert response.headers['X-Invoice-Persisted'] == 'false'
        assert response.headers['X-Invoice-Persist-Error'] == 'Missing required fields'
        assert session.query(Invoice).count() == 0

    def test_issued_invoice_is_listed(self, client):
        number = client.post('/invoices/issue', json=order_draft()).headers['X-Invoice-Number']

        data = client.get('/invoices').get_json()['data']

        assert [inv['invoice_number'] for inv in data['invoices']] == [number]
        assert data['invoices'][0]['customer_name'] == 'Asha Traders'

    def test_number_already_stored_is_skipped(self, client, session, make_invoice):
        taken = client.get('/invoices/next-number').get_json()['data']['invoice_number']
        make_invoice(taken)

        response = client.post('/invoices/issue', json=order_draft())

        assert response.status_code == 201
        number = response.headers['X-Invoice-Number']
        assert number != taken
        assert number.endswith('-0002')
        assert session.query(Invoice).filter_by(invoice_number=number).one().customer_name == 'Asha Traders'
        assert session.query(Invoice).count() == 2

    def test_no_free_number_returns_409_without_pdf(self, client, session, make_invoice):
        first = client.get('/invoices/next-number').get_json()['data']['invoice_number']
        prefix = first[:-4]
        for counter in range(1, MAX_ISSUE_ATTEMPTS + 1):
            make_invoice(f'{prefix}{counter:04d}')

        response = client.post('/invoices/issue', json=order_draft())

        assert response.status_code == 409
        assert response.mimetype == 'application/json'
        assert response.get_json()['error'] == 'Invoice number already exists'
        assert 'X-Invoice-Number' not in response.headers
        assert session.query(Invoice).count() == MAX_ISSUE_ATTEMPTS

    def test_long_customer_name_is_issued(self, client, session):
        response = client.post('/invoices/issue', json=order_draft(customerName='Asha ' * 1000))

        assert response.status_code == 201
        assert response.data.startswith(b'%PDF')
        invoice = session.query(Invoice).one()
        assert len(invoice.customer_name) <= 255


class TestIssueInvoice:
    """issue_invoice: the PDF handed out is the invoice that was stored."""

    def test_draft_is_rounded_like_the_store(self):
        items, discount = normalize_draft({
            'discount': '12.345',
            'items': [{'name': 'Washer', 'quantity': '3.7', 'rate': '0.335'}, 'junk', {'id': 'b', 'rate': -4}],
        })

        assert discount == Decimal('12.35')
        assert items == [
            {'id': '1', 'name': 'Washer', 'quantity': 3, 'rate': Decimal('0.34')},
            {'id': 'b', 'name': None, 'quantity': 0, 'rate': Decimal('0.00')},
        ]

    def test_issued_document_matches_stored_rerender(self, session, allocator):
        draft = order_draft(
            discount=12.345,
            dueDate='2030-01-01',
            items=[{'id': 'w', 'name': 'Washer', 'quantity': 3, 'rate': 0.333}],
        )

        result = issue_invoice(draft, allocator, session, today=TODAY)

        assert result.persisted
        stored = sanitize_invoice_data(invoice_render_data(get_invoice(result.invoice.id, session)), today=TODAY)
        options = RenderOptions()
        assert summary_rows(result.document, options) == [
            ['Subtotal', 'Rs. 0.99'],
            ['Discount (12.35%)', '- Rs. 0.12'],
            ['Total Amount', 'Rs. 0.87'],
        ]
        assert summary_rows(stored, options) == summary_rows(result.document, options)
        assert item_table_rows(stored, options) == item_table_rows(result.document, options)
        assert stored.due_date == result.document.due_date == TODAY + timedelta(days=30)

    def test_number_stored_concurrently_is_replaced(self, session, allocator, monkeypatch):
        real_create = issue_service.create_invoice
        attempted = []

        def create_after_race(payload, *args, **kwargs):
            attempted.append(payload['invoice_number'])
            if len(attempted) == 1:
                raise DuplicateInvoiceNumberError(payload['invoice_number'])
            return real_create(payload, *args, **kwargs)

        monkeypatch.setattr(issue_service, 'create_invoice', create_after_race)

        result = issue_invoice(order_draft(), allocator, session, today=TODAY)

        assert attempted == ['INV-2024-04-0001', 'INV-2024-04-0002']
        assert result.invoice_number == 'INV-2024-04-0002'
        assert result.document.invoice_number == 'INV-2024-04-0002'
        assert result.invoice.invoice_number == 'INV-2024-04-0002'

    def test_gives_up_after_bounded_attempts(self, session, allocator, monkeypatch):
        def always_taken(payload, *args, **kwargs):
            raise DuplicateInvoiceNumberError(payload['invoice_number'])

        monkeypatch.setattr(issue_service, 'create_invoice', always_taken)

        with pytest.raises(DuplicateInvoiceNumberError) as excinfo:
            issue_invoice(order_draft(), allocator, session, today=TODAY)

        assert excinfo.value.invoice_number == f'INV-2024-04-{MAX_ISSUE_ATTEMPTS:04d}'
        assert allocator.peek() == f'INV-2024-04-{MAX_ISSUE_ATTEMPTS + 1:04d}'
