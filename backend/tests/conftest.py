"""
Pytest fixtures for orderflow backend tests.

Provides a fresh application per test (in-memory SQLite for both the primary
and the fulfillment store), a seeded fulfillment workflow, and fakes for the
payment processor, geocoder and SMS client.
"""

import uuid

import pytest

from orderflow import create_app
from orderflow.errors import NotFoundError
from orderflow.extensions import db
from orderflow.services.store_client import dispatch_store


# =============================================================================
# FAKE COLLABORATORS
# =============================================================================

class FakeGateway:
    """In-memory payment processor honoring idempotency keys."""

    def __init__(self):
        self.sessions = {}
        self.by_key = {}
        self.calls = []
        self.fail_with = None

    def create_session(self, *, idempotency_key, line_items, metadata, customer_email=None, discounts=None):
        self.calls.append({
            "idempotency_key": idempotency_key,
            "line_items": line_items,
            "metadata": metadata,
            "customer_email": customer_email,
            "discounts": discounts,
        })
        if self.fail_with is not None:
            raise self.fail_with
        if idempotency_key in self.by_key:
            return dict(self.by_key[idempotency_key])
        session_id = f"cs_test_{len(self.sessions) + 1}"
        session = {
            "id": session_id,
            "url": f"https://pay.example.test/{session_id}",
            "payment_status": "unpaid",
            "amount_total": sum(l["unit_price_cents"] * l["quantity"] for l in line_items),
            "metadata": {k: str(v) for k, v in metadata.items() if v is not None},
        }
        self.sessions[session_id] = session
        self.by_key[idempotency_key] = session
        return dict(session)

    def retrieve_session(self, session_id):
        if session_id not in self.sessions:
            raise NotFoundError(f"Payment session {session_id} not found")
        return dict(self.sessions[session_id])

    def mark_paid(self, session_id, amount_total=None):
        session = self.sessions[session_id]
        session["payment_status"] = "paid"
        if amount_total is not None:
            session["amount_total"] = amount_total


class FakeGeocoder:
    enabled = True

    def __init__(self, result=None):
        self.result = result if result is not None else {"lat": 30.2672, "lng": -97.7431}
        self.calls = []

    def geocode(self, address):
        self.calls.append(address)
        return self.result or None


class FakeSms:
    enabled = True

    def __init__(self, succeed=True):
        self.succeed = succeed
        self.sent = []

    def send(self, to, body):
        self.sent.append((to, body))
        return self.succeed


# =============================================================================
# APP / DATABASE
# =============================================================================

@pytest.fixture(scope='function')
def app():
    """Create application for testing with fresh in-memory stores."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite://',
        'SQLALCHEMY_BINDS': {'dispatch': 'sqlite://'},
        'STRIPE_SECRET_KEY': 'sk_test_dummy',
        'PROMO_CODES': {
            'SPRING10': {'id': 'promo_spring10', 'active': True, 'description': '10% off'},
            'expired': {'id': 'promo_expired', 'active': False},
        },
        'DEFAULT_DISPATCH_SEQUENCE_ID': '',
        'DEFAULT_DISPATCH_STEP_ID': '',
        'DEFAULT_DISPATCH_RECIPIENT_ID': '',
    })
    app.extensions['payment_gateway'] = FakeGateway()
    app.extensions['geocoder'] = FakeGeocoder()
    app.extensions['sms_client'] = FakeSms()

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture
def gateway(app):
    return app.extensions['payment_gateway']


@pytest.fixture
def geocoder(app):
    return app.extensions['geocoder']


@pytest.fixture
def sms(app):
    return app.extensions['sms_client']


@pytest.fixture
def store(app):
    return dispatch_store()


@pytest.fixture
def workflow(store):
    """One sequence with a single step."""
    sequence_id = str(uuid.uuid4())
    step_id = str(uuid.uuid4())
    store.insert('sequences', {'sequence_id': sequence_id, 'name': 'Standard'})
    store.insert('sequence_steps', {
        'step_id': step_id,
        'sequence_id': sequence_id,
        'position': 1,
        'name': 'Service visit',
    })
    return {'sequence_id': sequence_id, 'step_id': step_id}


def make_recipient(store, email):
    recipient_id = str(uuid.uuid4())
    store.insert('recipients', {
        'recipient_id': recipient_id,
        'email_normalized': email,
        'recipient_key': f'customer-{uuid.uuid4()}',
    })
    return recipient_id


@pytest.fixture
def cart():
    return [{'name': 'Deep clean', 'price': '200.00', 'quantity': 1}]


@pytest.fixture
def contact():
    return {'email': 'Ada@Example.com ', 'name': 'Ada Lovelace', 'phone': '+15555550100'}
