import os

os.environ.setdefault("DATABASE_URL", "sqlite:///./test_app.db")
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from storefront.main import app as fastapi_app
from storefront.database import Base, get_db
from storefront.models import Order
import storefront.auth

# Setup test database
SQLALCHEMY_DATABASE_URL = "sqlite:///./test_temp.db"
engine = create_engine(SQLALCHEMY_DATABASE_URL, connect_args={
                       "check_same_thread": False})
TestingSessionLocal = sessionmaker(
    autocommit=False, autoflush=False, bind=engine)

CUSTOMER = {"sub": "user-1", "email": "buyer@example.com", "role": "customer"}
ADMIN = {"sub": "admin-1", "email": "ops@example.com", "role": "admin"}


def override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture(autouse=True)
def setup_db():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(autouse=True)
def sent_emails(mocker):
    # No SMTP server in tests
    return mocker.patch("storefront.notifications.send_email", return_value=None)


@pytest.fixture
def identity():
    return dict(CUSTOMER)


@pytest.fixture
def login(identity):
    """Switch the caller seen by the API: ``login(ADMIN)``."""
    def _login(claims):
        identity.clear()
        identity.update(claims)
    return _login


@pytest.fixture
def as_admin(login):
    login(ADMIN)


@pytest.fixture
def app(identity):
    """The API with the test database and the current test identity."""
    fastapi_app.dependency_overrides[get_db] = override_get_db
    fastapi_app.dependency_overrides[storefront.auth.verify_token] = lambda: dict(identity)
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def anonymous_client():
    """Client that goes through real token verification."""
    fastapi_app.dependency_overrides[get_db] = override_get_db
    with TestClient(fastapi_app) as c:
        yield c
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
def db():
    session = TestingSessionLocal()
    yield session
    session.close()


@pytest.fixture
def make_order():
    """Insert an order row directly and return its id."""
    def _make(**fields):
        values = {
            "user_id": CUSTOMER["sub"],
            "customer_email": CUSTOMER["email"],
            "items": [{"productId": "shirt-1", "name": "Home Shirt", "price": 25.0, "quantity": 2}],
            "amount_cents": 5000,
            "currency": "eur",
            "status": "pending",
            "payment_provider": "card",
            "payment_intent_id": "pi_123",
        }
        values.update(fields)
        session = TestingSessionLocal()
        order = Order(**values)
        session.add(order)
        session.commit()
        order_id = order.id
        session.close()
        return order_id
    return _make
