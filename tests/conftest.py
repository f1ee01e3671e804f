import pytest
from datetime import datetime

from invoicing import create_app
from invoicing.database import get_session, create_all
from invoicing.models import Invoice, InvoiceItem, InvoiceCounter
from invoicing.services.invoice_service import create_invoice
from invoicing.services.numbering_service import InvoiceNumberAllocator, SqlCounterStore


@pytest.fixture(scope='session')
def app():
    """Create application instance for testing (SQLite in memory)."""
    app = create_app('config.TestConfig')
    with app.app_context():
        create_all()
    return app


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(autouse=True)
def clean_tables(app):
    """Empty every table after each test."""
    yield
    with app.app_context():
        session = get_session()
        session.rollback()
        session.query(InvoiceItem).delete()
        session.query(Invoice).delete()
        session.query(InvoiceCounter).delete()
        session.commit()


@pytest.fixture(scope='function')
def session(app):
    """Database session inside an application context."""
    with app.app_context():
        session = get_session()
        yield session
        session.rollback()


@pytest.fixture
def april_2024():
    return lambda: datetime(2024, 4, 15, 10, 30)


@pytest.fixture
def allocator(session, april_2024):
    """SQL-backed allocator with a fixed clock (April 2024)."""
    return InvoiceNumberAllocator(SqlCounterStore(get_session), prefix='INV', clock=april_2024)


@pytest.fixture
def invoice_payload():
    """Valid POST /invoices body."""
    def _make(invoice_number='INV-2024-04-0001', **overrides):
        payload = {
            'invoice_number': invoice_number,
            'customer_name': 'Asha Traders',
            'customer_email': 'accounts@asha.example',
            'invoice_date': '2024-04-15',
            'items': [
                {'id': 'item-1', 'name': 'Steel bracket', 'quantity': 2, 'rate': 100},
                {'id': 'item-2', 'name': 'Hinge set', 'quantity': 1, 'rate': 50},
            ],
            'subtotal': 250,
            'discount': 10,
            'discount_amount': 25,
            'total': 225,
        }
        payload.update(overrides)
        return payload
    return _make


@pytest.fixture
def make_invoice(session, invoice_payload):
    """Persist an invoice through the store and return it."""
    def _make(invoice_number='INV-2024-04-0001', **overrides):
        return create_invoice(invoice_payload(invoice_number, **overrides), session)
    return _make
