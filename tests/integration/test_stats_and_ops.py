"""
Integration tests for statistics, health checks, metrics and CLI commands.
"""

from datetime import date, datetime

from invoicing.models import Invoice, InvoiceCounter
from invoicing.services.stats_service import get_invoice_stats, _month_window


def _set_created_at(session, invoice_number, when):
    session.query(Invoice).filter_by(invoice_number=invoice_number).update({'created_at': when})
    session.commit()


class TestMonthWindow:

    def test_twelve_months_oldest_first(self):
        window = _month_window(date(2024, 4, 15))

        assert len(window) == 12
        assert window[0] == (2023, 5)
        assert window[-1] == (2024, 4)

    def test_wraps_year_boundary(self):
        window = _month_window(date(2025, 1, 2))

        assert window[-2:] == [(2024, 12), (2025, 1)]


class TestInvoiceStats:
    """get_invoice_stats and GET /invoices/stats"""

    def test_empty_store(self, session):
        stats = get_invoice_stats(session, today=date(2024, 4, 15))

        assert stats['totalInvoices'] == 0
        assert stats['totalRevenue'] == 0.0
        assert stats['statusCounts'] == {'draft': 0, 'sent': 0, 'paid': 0, 'overdue': 0, 'cancelled': 0}
        assert len(stats['monthlyStats']) == 12
        assert all(month['count'] == 0 and month['revenue'] == 0.0 for month in stats['monthlyStats'])

    def test_counts_revenue_and_monthly_series(self, session, make_invoice):
        make_invoice('INV-2024-03-0001', status='paid')
        make_invoice('INV-2024-04-0002', status='sent')
        make_invoice('INV-2024-04-0003', status='overdue')
        make_invoice('INV-2022-01-0004')
        _set_created_at(session, 'INV-2024-03-0001', datetime(2024, 3, 10, 12, 0))
        _set_created_at(session, 'INV-2024-04-0002', datetime(2024, 4, 1, 9, 0))
        _set_created_at(session, 'INV-2024-04-0003', datetime(2024, 4, 14, 18, 0))
        _set_created_at(session, 'INV-2022-01-0004', datetime(2022, 1, 5, 8, 0))

        stats = get_invoice_stats(session, today=date(2024, 4, 15))

        assert stats['totalInvoices'] == 4
        assert stats['totalRevenue'] == 900.0
        assert stats['paidInvoices'] == 1
        assert stats['pendingInvoices'] == 1
        assert stats['overdueInvoices'] == 1
        assert stats['statusCounts']['draft'] == 1

        by_month = {(m['year'], m['month']): m for m in stats['monthlyStats']}
        assert by_month[(2024, 3)] == {'year': 2024, 'month': 3, 'count': 1, 'revenue': 225.0}
        assert by_month[(2024, 4)]['count'] == 2
        assert by_month[(2024, 4)]['revenue'] == 450.0
        # Invoices older than the window only count towards the totals
        assert sum(m['count'] for m in stats['monthlyStats']) == 3

    def test_stats_endpoint(self, client, make_invoice):
        make_invoice()

        response = client.get('/invoices/stats')

        assert response.status_code == 200
        data = response.get_json()['data']
        assert data['totalInvoices'] == 1
        assert data['totalRevenue'] == 225.0
        assert len(data['monthlyStats']) == 12


class TestHealth:

    def test_health(self, client):
        response = client.get('/health')

        assert response.status_code == 200
        assert response.get_json()['database'] == 'connected'

    def test_counter_health(self, client):
        response = client.get('/health/counter')

        assert response.status_code == 200
        body = response.get_json()
        assert body['counter'] == 'sql'
        assert body['next_invoice_number'].endswith('-0001')

    def test_unknown_route_returns_json_404(self, client):
        response = client.get('/nope')

        assert response.status_code == 404
        assert response.get_json()['success'] is False


class TestMetrics:

    def test_metrics_endpoint_exposes_invoice_counters(self, client, invoice_payload):
        client.post('/invoices', json=invoice_payload())

        response = client.get('/metrics')

        assert response.status_code == 200
        text = response.get_data(as_text=True)
        assert 'invoices_created_total' in text
        assert 'invoice_pdf_render_seconds' in text
        assert 'http_requests_total' in text


class TestCounterCli:
    """flask counter ..."""

    def test_set_and_peek(self, app, session):
        runner = app.test_cli_runner()

        result = runner.invoke(args=['counter', 'set', '42'])
        assert result.exit_code == 0
        assert '-0042' in result.output

        result = runner.invoke(args=['counter', 'peek'])
        assert result.exit_code == 0
        assert result.output.strip().endswith('-0042')

    def test_set_rejects_zero(self, app):
        result = app.test_cli_runner().invoke(args=['counter', 'set', '0'])

        assert result.exit_code != 0

    def test_reset(self, app, session):
        runner = app.test_cli_runner()
        runner.invoke(args=['counter', 'set', '9'])

        result = runner.invoke(args=['counter', 'reset', '--yes'])

        assert result.exit_code == 0
        assert session.query(InvoiceCounter).filter_by(name='invoice_number').one().next_value == 1

    def test_init_db_seeds_counter(self, app, session):
        result = app.test_cli_runner().invoke(args=['init-db'])

        assert result.exit_code == 0
        assert 'Tables created.' in result.output
        assert 'Counter ready.' in result.output
        assert session.query(InvoiceCounter).filter_by(name='invoice_number').one().next_value == 1

    def test_init_db_keeps_counter(self, app, session):
        runner = app.test_cli_runner()
        runner.invoke(args=['counter', 'set', '42'])

        result = runner.invoke(args=['init-db'])

        assert result.exit_code == 0
        assert result.output.strip().endswith('-0042')
        assert session.query(InvoiceCounter).filter_by(name='invoice_number').one().next_value == 42
