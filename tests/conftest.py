import fnmatch
import pytest
from decimal import Decimal

import jwt
from redis.exceptions import ConnectionError as RedisConnectionError

from billing import create_app
from billing.database import get_session, create_schema, drop_schema
from billing.models import Tenant, Item, Party, PartyKind, InvoiceLine
from billing.services.cache_service import get_cache
from config import TestConfig


@pytest.fixture(scope='session')
def app():
    """Create application instance for testing."""
    return create_app(TestConfig)


@pytest.fixture(scope='function', autouse=True)
def schema(app):
    """Fresh tables for every test."""
    create_schema()
    yield
    get_session().remove()
    drop_schema()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def session(schema):
    """Create database session for testing."""
    session = get_session()
    yield session
    session.rollback()
    session.close()


def _persist(session, obj):
    session.add(obj)
    session.commit()
    # Detached with loaded attributes: later commits and request teardown
    # cannot expire them
    session.refresh(obj)
    session.expunge(obj)
    return obj


@pytest.fixture(scope='function')
def tenant1(session):
    """Create first test tenant."""
    return _persist(session, Tenant(name='Test Tenant 1'))


@pytest.fixture(scope='function')
def tenant2(session):
    """Create second test tenant for isolation tests."""
    return _persist(session, Tenant(name='Test Tenant 2'))


@pytest.fixture(scope='function')
def customer_tenant1(session, tenant1):
    return _persist(session, Party(
        tenant_id=tenant1.id,
        name='Customer T1',
        kind=PartyKind.CUSTOMER,
        contact_email='customer1@test.com'
    ))


@pytest.fixture(scope='function')
def customer_tenant2(session, tenant2):
    return _persist(session, Party(
        tenant_id=tenant2.id,
        name='Customer T2',
        kind=PartyKind.CUSTOMER
    ))


@pytest.fixture(scope='function')
def item_tenant1(session, tenant1):
    """Item for tenant1: price 100.00, stock 10."""
    return _persist(session, Item(
        tenant_id=tenant1.id,
        name='Drill',
        price=Decimal('100.00'),
        stock_quantity=10,
        category='Tools'
    ))


@pytest.fixture(scope='function')
def second_item_tenant1(session, tenant1):
    """Item for tenant1: price 19.99, stock 50."""
    return _persist(session, Item(
        tenant_id=tenant1.id,
        name='Screws (box)',
        price=Decimal('19.99'),
        stock_quantity=50,
        category='Hardware'
    ))


@pytest.fixture(scope='function')
def item_tenant2(session, tenant2):
    """Item for tenant2: price 200.00, stock 20."""
    return _persist(session, Item(
        tenant_id=tenant2.id,
        name='Saw',
        price=Decimal('200.00'),
        stock_quantity=20,
        category='Tools'
    ))


def auth_header(tenant_id, user_id=1, secret=TestConfig.JWT_SECRET_KEY):
    token = jwt.encode({'id': user_id, 'company_id': tenant_id}, secret, algorithm='HS256')
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def authenticated_client(client, tenant1):
    """Test client whose requests carry a bearer token for tenant1."""
    headers = auth_header(tenant1.id)

    class _Client:
        def open(self, *args, **kwargs):
            kwargs.setdefault('headers', {}).update(headers)
            return client.open(*args, **kwargs)

        def get(self, *args, **kwargs):
            return self.open(*args, method='GET', **kwargs)

        def post(self, *args, **kwargs):
            return self.open(*args, method='POST', **kwargs)

        def put(self, *args, **kwargs):
            return self.open(*args, method='PUT', **kwargs)

        def patch(self, *args, **kwargs):
            return self.open(*args, method='PATCH', **kwargs)

        def delete(self, *args, **kwargs):
            return self.open(*args, method='DELETE', **kwargs)

    return _Client()


def stock_of(session, item_id):
    """Current stock straight from the table."""
    return session.query(Item.stock_quantity).filter(Item.id == item_id).scalar()


def stored_lines(session, invoice_id):
    """{item_id: quantity} of the invoice's stored lines."""
    rows = session.query(InvoiceLine.item_id, InvoiceLine.quantity).filter(
        InvoiceLine.invoice_id == invoice_id
    ).all()
    return {item_id: quantity for item_id, quantity in rows}


class InMemoryRedis:
    """Implements the handful of client calls the cache makes."""

    def __init__(self):
        self.data = {}
        self.fail = False

    def _check(self):
        if self.fail:
            raise RedisConnectionError('redis down')

    def get(self, key):
        self._check()
        return self.data.get(key)

    def setex(self, key, ttl, value):
        self._check()
        self.data[key] = value

    def incr(self, key):
        self._check()
        self.data[key] = str(int(self.data.get(key, 0)) + 1)
        return int(self.data[key])

    def scan_iter(self, match=None, count=None):
        self._check()
        return [k for k in list(self.data) if fnmatch.fnmatch(k, match)]

    def delete(self, key):
        return 1 if self.data.pop(key, None) is not None else 0


@pytest.fixture(scope='function')
def redis_cache(app, monkeypatch):
    """The app's cache, enabled and backed by InMemoryRedis for one test."""
    cache = get_cache()
    monkeypatch.setattr(cache, 'enabled', True)
    monkeypatch.setattr(cache, 'client', InMemoryRedis())
    return cache
