"""
Prometheus metrics blueprint.

HTTP request metrics come from request hooks; POS counters are fed by the
blinker signals in ``zwift_pos.signals``. Keep /metrics on the internal
network, it is not authenticated.
"""
from flask import Blueprint, Response, request, g
from prometheus_client import Counter, Histogram, Gauge, generate_latest, CollectorRegistry, CONTENT_TYPE_LATEST
from prometheus_client import multiprocess, REGISTRY
import time
import os

from zwift_pos import signals

metrics_bp = Blueprint('metrics', __name__)

# Gunicorn workers share metrics through PROMETHEUS_MULTIPROC_DIR
MULTIPROCESS_MODE = os.environ.get('PROMETHEUS_MULTIPROC_DIR') is not None

if MULTIPROCESS_MODE:
    registry = CollectorRegistry()
    multiprocess.MultiProcessCollector(registry)
else:
    registry = REGISTRY

_metric_registry = registry if not MULTIPROCESS_MODE else None

# HTTP
http_requests_total = Counter(
    'http_requests_total',
    'Total HTTP requests',
    ['method', 'endpoint', 'http_status'],
    registry=_metric_registry
)

http_request_duration_seconds = Histogram(
    'http_request_duration_seconds',
    'HTTP request latency in seconds',
    ['method', 'endpoint'],
    registry=_metric_registry,
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0)
)

http_requests_in_flight = Gauge(
    'http_requests_in_flight',
    'HTTP requests currently being processed',
    registry=_metric_registry,
    multiprocess_mode='livesum'
)

# POS
pos_sales_completed_total = Counter(
    'pos_sales_completed_total',
    'Sales settled at the POS',
    ['stock_synced'],
    registry=_metric_registry
)

pos_sale_amount = Histogram(
    'pos_sale_amount',
    'Sale totals including tax, in store currency',
    registry=_metric_registry,
    buckets=(1, 5, 10, 25, 50, 100, 250, 500, 1000, 5000)
)

pos_stock_sync_failures_total = Counter(
    'pos_stock_sync_failures_total',
    'Post-sale stock updates that did not reach the store',
    registry=_metric_registry
)

pos_stock_exceeded_total = Counter(
    'pos_stock_exceeded_total',
    'Cart quantity requests rejected for exceeding available stock',
    registry=_metric_registry
)

pos_discount_below_cost_total = Counter(
    'pos_discount_below_cost_total',
    'Line discounts that push the selling price under the purchase price',
    registry=_metric_registry
)

pos_stock_overrides_total = Counter(
    'pos_stock_overrides_total',
    'Operator stock overrides from the POS',
    registry=_metric_registry
)


@signals.sale_completed.connect
def _count_sale(sender, **extra):
    synced = 'false' if extra.get('failed_product_ids') else 'true'
    pos_sales_completed_total.labels(stock_synced=synced).inc()
    if extra.get('total') is not None:
        pos_sale_amount.observe(float(extra['total']))


@signals.stock_sync_failed.connect
def _count_stock_sync_failure(sender, **extra):
    pos_stock_sync_failures_total.inc()


@signals.stock_exceeded.connect
def _count_stock_exceeded(sender, **extra):
    pos_stock_exceeded_total.inc()


@signals.discount_below_cost.connect
def _count_discount_below_cost(sender, **extra):
    pos_discount_below_cost_total.inc()


@signals.stock_overridden.connect
def _count_stock_override(sender, **extra):
    pos_stock_overrides_total.inc()


def setup_metrics_instrumentation(app):
    """Register request hooks that time and count every request except /metrics."""

    @app.before_request
    def start_request_timer():
        if request.endpoint == 'metrics.metrics':
            return
        g._metrics_started = time.perf_counter()
        http_requests_in_flight.inc()

    @app.after_request
    def record_request_metrics(response):
        started = g.pop('_metrics_started', None)
        if started is None:
            return response

        endpoint = request.endpoint or 'unknown'
        http_request_duration_seconds.labels(method=request.method, endpoint=endpoint).observe(
            time.perf_counter() - started
        )
        http_requests_total.labels(
            method=request.method, endpoint=endpoint, http_status=response.status_code
        ).inc()
        http_requests_in_flight.dec()
        return response


@metrics_bp.route('/metrics')
def metrics():
    return Response(generate_latest(registry), mimetype=CONTENT_TYPE_LATEST)
