"""
Prometheus metrics blueprint for observability.

Exposes /metrics endpoint with HTTP request metrics and order/payment
pipeline counters. This endpoint should be restricted to internal network
or monitoring systems only.
"""
from flask import Blueprint, Response, request, g
from prometheus_client import Counter, Histogram, Gauge, generate_latest, CollectorRegistry, CONTENT_TYPE_LATEST
from prometheus_client import multiprocess, REGISTRY
import time
import os

metrics_bp = Blueprint('metrics', __name__)

# Check if running in multi-process mode (Gunicorn)
MULTIPROCESS_MODE = os.environ.get('PROMETHEUS_MULTIPROC_DIR') is not None

# Use multiprocess registry in production with Gunicorn
if MULTIPROCESS_MODE:
    registry = CollectorRegistry()
    multiprocess.MultiProcessCollector(registry)
else:
    registry = REGISTRY

_metric_registry = registry if not MULTIPROCESS_MODE else None

# HTTP Request Metrics
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
    buckets=(0.005, 0.01, 0.025, 0.05, 0.075, 0.1, 0.25, 0.5, 0.75, 1.0, 2.5, 5.0, 7.5, 10.0)
)

http_requests_in_flight = Gauge(
    'http_requests_in_flight',
    'Number of HTTP requests currently being processed',
    registry=_metric_registry
)

# Order / payment pipeline
orders_created_total = Counter(
    'orders_created_total',
    'Orders committed',
    registry=_metric_registry
)

order_creation_failures_total = Counter(
    'order_creation_failures_total',
    'Rejected or failed order creations by error code',
    ['code'],
    registry=_metric_registry
)

payment_transitions_total = Counter(
    'payment_transitions_total',
    'Payment transaction status changes applied',
    ['status'],
    registry=_metric_registry
)

gateway_request_duration_seconds = Histogram(
    'gateway_request_duration_seconds',
    'Mercado Pago API latency in seconds',
    ['operation'],
    registry=_metric_registry
)

webhook_events_total = Counter(
    'webhook_events_total',
    'Inbound gateway webhooks by topic and outcome',
    ['topic', 'outcome'],
    registry=_metric_registry
)


def setup_metrics_instrumentation(app):
    """
    Register request hooks that feed the HTTP metrics.

    Called from the app factory. Scrapes of /metrics itself are not counted.
    """

    @app.before_request
    def start_request_timer():
        g._metrics_started = time.time()
        http_requests_in_flight.inc()

    @app.after_request
    def record_request_metrics(response):
        started = g.pop('_metrics_started', None)
        endpoint = request.endpoint or 'unknown'
        if started is None or endpoint == 'metrics.metrics':
            return response
        try:
            http_request_duration_seconds.labels(method=request.method, endpoint=endpoint).observe(
                time.time() - started
            )
            http_requests_total.labels(
                method=request.method, endpoint=endpoint, http_status=response.status_code
            ).inc()
        except Exception as e:
            app.logger.warning(f"Failed to record metrics: {e}")
        return response

    @app.teardown_request
    def finish_request(exc=None):
        # Runs on unhandled errors too
        http_requests_in_flight.dec()


@metrics_bp.route('/metrics')
def metrics():
    """
    Prometheus metrics endpoint.

    SECURITY NOTE:
    - This endpoint is NOT authenticated
    - Should be restricted by network/firewall rules in production

    Returns:
        Response: Prometheus-formatted metrics in text/plain
    """
    data = generate_latest(registry)
    return Response(data, mimetype=CONTENT_TYPE_LATEST)
