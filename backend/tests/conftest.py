"""
Pytest fixtures for billing backend tests.

Provides test database setup, users, catalog products, a controllable
clock for session-window tests, and the test client.
"""

from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from billdesk import create_app
from billdesk.extensions import db
from billdesk.models import Product, User
from billdesk.models.auth import ROLE_ADMIN, ROLE_USER
from billdesk.services.auth_service import hash_password
from billdesk.services.invoice_service import InvoiceService
from billdesk.services.session_clock import Actor, SessionClock
from billdesk.services.stock_ledger import StockLedger
from billdesk.services.verification_service import VerificationService

PASSWORD = "Password123"


class FakeClock:
    """Callable 'now' that tests move forward explicitly."""

    def __init__(self, start: datetime):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current = self.current + timedelta(**kwargs)
        return self.current


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    })

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


def make_user(db_session, username: str, role: str) -> User:
    user = User(
        username=username,
        email=f"{username}@billdesk.test",
        password_hash=hash_password(PASSWORD, rounds=4),
        role=role,
        is_active=True,
    )
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def cashier(db_session):
    return make_user(db_session, "cashier", ROLE_USER)


@pytest.fixture(scope='function')
def other_cashier(db_session):
    return make_user(db_session, "cashier2", ROLE_USER)


@pytest.fixture(scope='function')
def admin(db_session):
    return make_user(db_session, "admin", ROLE_ADMIN)


def make_product(db_session, name="Basmati Rice 1kg", barcode="8901000000011", price="100.00",
                 gst="18", stock="50", is_active=True) -> Product:
    product = Product(
        name=name,
        barcode=barcode,
        hsn_code="1006",
        unit="pcs",
        mrp=Decimal(price),
        sales_price=Decimal(price),
        gst_rate=Decimal(gst),
        stock_quantity=Decimal(stock),
        is_active=is_active,
    )
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def product(db_session):
    """stock=50, price=100.00, gst=18%"""
    return make_product(db_session)


@pytest.fixture(scope='function')
def second_product(db_session):
    return make_product(db_session, name="Sunflower Oil 1L", barcode="8901000000028", price="150.00",
                        gst="5", stock="20")


@pytest.fixture(scope='function')
def product_factory(db_session):
    def factory(**kwargs):
        return make_product(db_session, **kwargs)
    return factory


@pytest.fixture(scope='function')
def stock(db_session):
    """stock(product_id) -> current on-hand quantity, re-read from the store."""
    def read(product_id):
        return stock_of(db_session, product_id)
    return read


@pytest.fixture(scope='function')
def clock():
    return FakeClock(datetime(2026, 1, 15, 10, 0, 0))


@pytest.fixture(scope='function')
def service(db_session, clock):
    session_clock = SessionClock(window=timedelta(minutes=20), now=clock)
    ledger = StockLedger(db_session)
    verification = VerificationService(db_session, ledger, now=clock)
    return InvoiceService(db_session, clock=session_clock, ledger=ledger, verification=verification)


@pytest.fixture(scope='function')
def cashier_actor(cashier):
    return Actor(user_id=cashier.id, role=ROLE_USER, session_id="session-cashier-1")


@pytest.fixture(scope='function')
def other_actor(other_cashier):
    return Actor(user_id=other_cashier.id, role=ROLE_USER, session_id="session-cashier2-1")


@pytest.fixture(scope='function')
def admin_actor(admin):
    return Actor(user_id=admin.id, role=ROLE_ADMIN, session_id="session-admin-1")


def stock_of(db_session, product_id: int) -> Decimal:
    db_session.expire_all()
    return Decimal(db_session.get(Product, product_id).stock_quantity)


def get_auth_token(client, username: str, password: str = PASSWORD) -> str:
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


@pytest.fixture(scope='function')
def cashier_headers(client, cashier):
    return auth_headers(get_auth_token(client, "cashier"))


@pytest.fixture(scope='function')
def other_cashier_headers(client, other_cashier):
    return auth_headers(get_auth_token(client, "cashier2"))


@pytest.fixture(scope='function')
def admin_headers(client, admin):
    return auth_headers(get_auth_token(client, "admin"))


@pytest.fixture(scope='function')
def login(client):
    """login(username) -> Authorization headers for a fresh token."""
    def _login(username: str) -> dict:
        return auth_headers(get_auth_token(client, username))
    return _login
