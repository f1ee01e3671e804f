"""
Invoice statistics for the admin dashboard.
Counts by status, total revenue and a trailing 12-month series.
"""
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import func
from sqlalchemy.exc import OperationalError, DBAPIError

from invoicing.exceptions import StorageUnavailableError
from invoicing.models import Invoice, InvoiceStatus

MONTHS_IN_SERIES = 12


def _month_window(today: date, months: int = MONTHS_IN_SERIES):
    """(year, month) pairs for the `months` calendar months ending with today's, oldest first."""
    window = []
    year, month = today.year, today.month
    for _ in range(months):
        window.append((year, month))
        month -= 1
        if month == 0:
            year, month = year - 1, 12
    return list(reversed(window))


def get_invoice_stats(session, today: Optional[date] = None) -> dict:
    """
    Aggregate invoice statistics.

    Returns:
        dict with keys:
            - totalInvoices: int
            - totalRevenue: float (sum of all invoice totals)
            - statusCounts: {status: count} for every status
            - paidInvoices / pendingInvoices (sent) / overdueInvoices: int
            - monthlyStats: 12 x {year, month, count, revenue}, oldest first
    """
    today = today or date.today()
    window = _month_window(today)
    window_start = datetime(window[0][0], window[0][1], 1)

    try:
        total_invoices = session.query(func.count(Invoice.id)).scalar() or 0
        total_revenue = session.query(func.coalesce(func.sum(Invoice.total), 0)).scalar() or 0

        status_rows = session.query(Invoice.status, func.count(Invoice.id)).group_by(Invoice.status).all()

        recent_rows = session.query(Invoice.created_at, Invoice.total).filter(
            Invoice.created_at >= window_start
        ).all()
    except (OperationalError, DBAPIError) as e:
        session.rollback()
        raise StorageUnavailableError('Database unavailable while computing statistics') from e

    status_counts = {status: 0 for status in InvoiceStatus.values()}
    for status, count in status_rows:
        status_counts[status] = count

    buckets = {key: {'count': 0, 'revenue': Decimal('0')} for key in window}
    for created_at, total in recent_rows:
        if created_at is None:
            continue
        key = (created_at.year, created_at.month)
        if key in buckets:
            buckets[key]['count'] += 1
            buckets[key]['revenue'] += Decimal(str(total or 0))

    monthly_stats = [
        {
            'year': year,
            'month': month,
            'count': buckets[(year, month)]['count'],
            'revenue': float(buckets[(year, month)]['revenue']),
        }
        for year, month in window
    ]

    return {
        'totalInvoices': total_invoices,
        'totalRevenue': float(total_revenue),
        'statusCounts': status_counts,
        'paidInvoices': status_counts[InvoiceStatus.PAID.value],
        'pendingInvoices': status_counts[InvoiceStatus.SENT.value],
        'overdueInvoices': status_counts[InvoiceStatus.OVERDUE.value],
        'monthlyStats': monthly_stats,
    }
