"""
Integration tests for Prometheus metrics and Sentry wiring.
"""

import pytest
import sentry_sdk
from prometheus_client import REGISTRY

from billing import create_app, database
from billing.exceptions import InsufficientStockError, DuplicateInvoiceNumberError
from billing.services import cache_service
from billing.services.invoice_service import create_invoice
from config import TestConfig


def _sample(name, **labels):
    return REGISTRY.get_sample_value(name, labels) or 0.0


def _create(session, party, item, quantity, number):
    return create_invoice({
        'party_id': party.id,
        'invoice_number': number,
        'lines': [{'item_id': item.id, 'quantity': quantity}],
    }, session, party.tenant_id)


def test_metrics_endpoint_exposes_collectors(client):
    response = client.get('/metrics')

    assert response.status_code == 200
    body = response.get_data(as_text=True)
    assert 'http_requests_total' in body
    assert 'http_request_duration_seconds' in body
    assert 'invoice_mutations_total' in body


def test_requests_are_counted_and_timed(client):
    labels = {'method': 'GET', 'endpoint': 'invoices.index'}
    requests_before = _sample('http_requests_total', http_status='401', **labels)
    timings_before = _sample('http_request_duration_seconds_count', **labels)

    assert client.get('/api/invoices').status_code == 401

    assert _sample('http_requests_total', http_status='401', **labels) == requests_before + 1
    assert _sample('http_request_duration_seconds_count', **labels) == timings_before + 1


def test_invoice_mutation_outcomes_are_counted(session, customer_tenant1, item_tenant1):
    def outcome(name):
        return _sample('invoice_mutations_total', operation='create_invoice', outcome=name)

    committed, short, aborted = outcome('committed'), outcome('insufficient_stock'), outcome('aborted')

    _create(session, customer_tenant1, item_tenant1, 1, 'INV-1')
    with pytest.raises(InsufficientStockError):
        _create(session, customer_tenant1, item_tenant1, 100, 'INV-2')
    with pytest.raises(DuplicateInvoiceNumberError):
        _create(session, customer_tenant1, item_tenant1, 1, 'INV-1')

    assert outcome('committed') == committed + 1
    assert outcome('insufficient_stock') == short + 1
    assert outcome('aborted') == aborted + 1


class _SentryConfig(TestConfig):
    TESTING = False
    SENTRY_DSN = 'https://public@sentry.example.invalid/1'
    SENTRY_ENVIRONMENT = 'staging'


@pytest.fixture
def isolated_factory(monkeypatch):
    """Restore the shared engine, session and cache after building a second app."""
    monkeypatch.setattr(database, 'engine', database.engine)
    monkeypatch.setattr(database, 'db_session', database.db_session)
    monkeypatch.setattr(cache_service, '_cache', cache_service._cache)
    return create_app


def test_sentry_initialized_when_dsn_set(monkeypatch, isolated_factory):
    calls = []
    monkeypatch.setattr(sentry_sdk, 'init', lambda **kwargs: calls.append(kwargs))

    isolated_factory(_SentryConfig)

    assert len(calls) == 1
    assert calls[0]['dsn'] == _SentryConfig.SENTRY_DSN
    assert calls[0]['environment'] == 'staging'
    assert type(calls[0]['integrations'][0]).__name__ == 'FlaskIntegration'


def test_sentry_skipped_without_dsn(monkeypatch, isolated_factory):
    calls = []
    monkeypatch.setattr(sentry_sdk, 'init', lambda **kwargs: calls.append(kwargs))

    isolated_factory(TestConfig)

    assert calls == []
