"""
Pytest fixtures for Tillpoint backend tests.

Provides the in-memory application, a clean database per test, staff
accounts for each role and a small catalog to sell from.
"""

import pytest

from tillpoint import create_app
from tillpoint.extensions import db
from tillpoint.models import Customer, Product, Variant
from tillpoint.services.auth_service import create_user


PASSWORD = "Password123"

TEST_CONFIG = {
    'TESTING': True,
    'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
    'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    'BCRYPT_ROUNDS': 4,
    # 10% keeps the arithmetic in assertions readable
    'TAX_RATE': '0.10',
    'LOYALTY_POINT_VALUE': '0.01',
    'LOYALTY_POINTS_PER_UNIT': '1',
    'LOYALTY_CLAWBACK_ON_REFUND': False,
    'LOG_LEVEL': 'WARNING',
}


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TEST_CONFIG)

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def admin_user(db_session):
    return create_user(username="admin", email="admin@tillpoint.local", password=PASSWORD, role="ADMIN")


@pytest.fixture(scope='function')
def manager_user(db_session):
    return create_user(username="manager", email="manager@tillpoint.local", password=PASSWORD, role="MANAGER")


@pytest.fixture(scope='function')
def cashier_user(db_session):
    return create_user(username="cashier", email="cashier@tillpoint.local", password=PASSWORD, role="CASHIER")


@pytest.fixture(scope='function')
def admin_headers(client, admin_user):
    return auth_headers(get_auth_token(client, "admin", PASSWORD))


@pytest.fixture(scope='function')
def manager_headers(client, manager_user):
    return auth_headers(get_auth_token(client, "manager", PASSWORD))


@pytest.fixture(scope='function')
def cashier_headers(client, cashier_user):
    return auth_headers(get_auth_token(client, "cashier", PASSWORD))


@pytest.fixture(scope='function')
def product(db_session):
    """100.00 each, 25 in stock."""
    product = Product(
        sku="WIDGET-001",
        barcode="4006381333931",
        name="Widget",
        price_cents=10000,
        cost_cents=4000,
        stock_quantity=25,
        min_stock_level=5,
    )
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def cheap_product(db_session):
    """10.00 each, 50 in stock."""
    product = Product(
        sku="GADGET-001",
        name="Gadget",
        price_cents=1000,
        cost_cents=300,
        stock_quantity=50,
        min_stock_level=10,
    )
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def variant(db_session):
    """T-shirt (19.99) with a Large variant priced 24.99, 10 in stock."""
    shirt = Product(
        sku="TEE-001",
        name="T-Shirt",
        price_cents=1999,
        cost_cents=800,
        stock_quantity=0,
    )
    db_session.add(shirt)
    db_session.flush()
    large = Variant(
        product_id=shirt.id,
        sku="TEE-001-L",
        name="Large",
        attributes={"size": "L"},
        price_cents=2499,
        stock_quantity=10,
        min_stock_level=2,
    )
    db_session.add(large)
    db_session.commit()
    return large


@pytest.fixture(scope='function')
def customer(db_session):
    customer = Customer(first_name="Alice", last_name="Walker", email="alice@example.com")
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture(scope='function')
def loyal_customer(db_session):
    """Customer holding 1000 loyalty points (10.00 at the default point value)."""
    customer = Customer(first_name="Bob", last_name="Nguyen", email="bob@example.com", loyalty_points=1000)
    db_session.add(customer)
    db_session.commit()
    return customer


def get_auth_token(client, username: str, password: str) -> str:
    """Helper to get auth token for a user."""
    response = client.post('/api/auth/login', json={
        'username': username,
        'password': password
    })
    if response.status_code == 200:
        return response.json.get('token')
    return None


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}
