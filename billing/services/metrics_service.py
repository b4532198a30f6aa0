"""
Prometheus collectors shared by the HTTP instrumentation and the invoice
unit of work.

Under Gunicorn set PROMETHEUS_MULTIPROC_DIR; collectors are then written to
the shared directory and aggregated at scrape time.
"""
import os

from prometheus_client import Counter, Histogram, Gauge, CollectorRegistry, REGISTRY, multiprocess

# Check if running in multi-process mode (Gunicorn)
MULTIPROCESS_MODE = os.environ.get('PROMETHEUS_MULTIPROC_DIR') is not None

if MULTIPROCESS_MODE:
    registry = CollectorRegistry()
    multiprocess.MultiProcessCollector(registry)
else:
    registry = REGISTRY

_collector_registry = None if MULTIPROCESS_MODE else registry

# HTTP Request Metrics
http_requests_total = Counter(
    'http_requests_total',
    'Total HTTP requests',
    ['method', 'endpoint', 'http_status'],
    registry=_collector_registry
)

http_request_duration_seconds = Histogram(
    'http_request_duration_seconds',
    'HTTP request latency in seconds',
    ['method', 'endpoint'],
    registry=_collector_registry,
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)
)

http_requests_in_flight = Gauge(
    'http_requests_in_flight',
    'Number of HTTP requests currently being processed',
    registry=_collector_registry,
    multiprocess_mode='livesum'
)

# Invoice mutations, by unit-of-work outcome
invoice_mutations_total = Counter(
    'invoice_mutations_total',
    'Invoice mutations by operation and outcome',
    ['operation', 'outcome'],
    registry=_collector_registry
)

OUTCOME_COMMITTED = 'committed'
OUTCOME_ABORTED = 'aborted'
OUTCOME_INSUFFICIENT_STOCK = 'insufficient_stock'


def record_invoice_mutation(operation: str, outcome: str) -> None:
    invoice_mutations_total.labels(operation=operation, outcome=outcome).inc()
