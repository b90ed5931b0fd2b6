"""Shared test fixtures for the fulfillment core test suite.

Provides:
- app: Flask app configured for testing (in-memory SQLite, rate limiting off)
- client: Flask test client
- db_session: clean database per test (tables created/dropped)
- make_order: factory for confirmed orders via order_service.create_order
- ops_headers / carrier_headers: auth headers for the two HTTP surfaces
"""

import pytest

from fulfillment import create_app
from fulfillment.extensions import db as _db
from fulfillment.services import order_service


GOOD_ADDRESS = {
    "full_name": "Asha Verma",
    "phone": "9876543210",
    "address_line1": "14 MG Road, Indiranagar",
    "address_line2": "Near Metro Station",
    "city": "Bengaluru",
    "state": "Karnataka",
    "postal_code": "560038",
    "country": "IN",
}


@pytest.fixture(scope="session")
def app():
    """Create the Flask application configured for testing."""
    app = create_app("testing")
    yield app


@pytest.fixture(autouse=True)
def db_session(app):
    """Create all tables before each test, drop after."""
    with app.app_context():
        _db.create_all()
        yield _db.session
        _db.session.rollback()
        _db.drop_all()


@pytest.fixture
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture
def ops_headers():
    return {"Authorization": "Bearer ops_test_key", "X-Actor": "ops@shop.test"}


@pytest.fixture
def carrier_headers():
    return {"X-Api-Key": "carrier_test_token"}


@pytest.fixture
def make_order(db_session):
    """Create and commit an order. Keyword args override the defaults."""

    def _make(address=None, payment_method="razorpay", payment_status="paid",
              unit_price=149900, quantity=2, **kwargs):
        order = order_service.create_order(
            items=[{
                "product_id": "tee-001",
                "name": "Block Print Tee",
                "size": "M",
                "quantity": quantity,
                "unit_price": unit_price,
            }],
            shipping_address=dict(GOOD_ADDRESS if address is None else address),
            payment_method=payment_method,
            payment_status=payment_status,
            user_id=kwargs.pop("user_id", "user-1"),
            **kwargs,
        )
        _db.session.commit()
        return order

    return _make


@pytest.fixture
def awb_order(make_order):
    """An order with a shipment created and an AWB assigned."""
    from fulfillment.services.order_service import request_shipment

    order = make_order()
    request_shipment(order, "ops", awb_code="AWB1001", carrier_shipment_id="SHP-1")
    _db.session.commit()
    return order
