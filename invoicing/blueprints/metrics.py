"""
Prometheus metrics for the invoicing service.

Request metrics are labelled by Flask endpoint name (e.g. 'invoices.detail'),
never by raw path, so invoice ids do not explode label cardinality. The
invoice pipeline reports numbers allocated, invoices stored and PDF render
time. /metrics should only be reachable from the monitoring network.
"""
from flask import Blueprint, Response, request, g
from prometheus_client import Counter, Histogram, Gauge, generate_latest, CollectorRegistry, CONTENT_TYPE_LATEST
from prometheus_client import multiprocess, REGISTRY
import time
import os

metrics_bp = Blueprint('metrics', __name__)

# Gunicorn workers share metrics through PROMETHEUS_MULTIPROC_DIR
MULTIPROCESS_MODE = os.environ.get('PROMETHEUS_MULTIPROC_DIR') is not None

if MULTIPROCESS_MODE:
    registry = CollectorRegistry()
    multiprocess.MultiProcessCollector(registry)
    _metric_registry = None
else:
    registry = REGISTRY
    _metric_registry = registry

SKIPPED_ENDPOINTS = {'metrics.metrics', 'static'}

http_requests_total = Counter(
    'http_requests_total',
    'Requests served, by endpoint and status code',
    ['method', 'endpoint', 'http_status'],
    registry=_metric_registry
)

http_request_duration_seconds = Histogram(
    'http_request_duration_seconds',
    'Request handling time in seconds',
    ['method', 'endpoint'],
    registry=_metric_registry,
    # PDF endpoints sit in the upper buckets
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)
)

http_requests_in_flight = Gauge(
    'http_requests_in_flight',
    'Requests currently being handled',
    registry=_metric_registry
)

invoices_allocated_total = Counter(
    'invoices_allocated_total',
    'Invoice numbers handed out by the allocator',
    registry=_metric_registry
)

invoices_created_total = Counter(
    'invoices_created_total',
    'Invoices persisted to the store',
    registry=_metric_registry
)

invoice_pdf_render_seconds = Histogram(
    'invoice_pdf_render_seconds',
    'Time spent rendering invoice PDFs',
    registry=_metric_registry,
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0)
)


def _tracked() -> bool:
    return request.endpoint not in SKIPPED_ENDPOINTS


def setup_metrics_instrumentation(app):
    """Time every request and count it by endpoint and status code."""

    @app.before_request
    def start_request_timer():
        if _tracked():
            g.metrics_started = time.perf_counter()
            http_requests_in_flight.inc()

    @app.after_request
    def record_request(response):
        started = g.pop('metrics_started', None)
        if started is None:
            return response

        endpoint = request.endpoint or 'unknown'
        try:
            http_request_duration_seconds.labels(request.method, endpoint).observe(time.perf_counter() - started)
            http_requests_total.labels(request.method, endpoint, response.status_code).inc()
        except ValueError as e:
            app.logger.warning(f"Failed to record metrics for {endpoint}: {e}")
        finally:
            http_requests_in_flight.dec()
        return response


@metrics_bp.route('/metrics')
def metrics():
    """Prometheus scrape endpoint. Not authenticated."""
    return Response(generate_latest(registry), mimetype=CONTENT_TYPE_LATEST)
