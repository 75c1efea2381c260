import hashlib
import hmac
import json
import time
from types import SimpleNamespace

import pytest
import stripe

from orderflow.errors import NotFoundError, PaymentConfigurationError, PaymentTimeoutError
from orderflow.extensions import db
from orderflow.models import Order
from orderflow.services.checkout_service import checkout
from orderflow.services.order_service import find_order
from orderflow.services.payment_service import StripeGateway, confirm_payment


LINES = [{"name": "Deep clean", "unit_price_cents": 20000, "quantity": 1}]


@pytest.fixture
def stripe_gateway(app):
    return StripeGateway(
        "sk_test_dummy",
        timeout_seconds=3,
        max_network_retries=1,
        success_url="https://shop.test/success",
        cancel_url="https://shop.test/cancel",
    )


class TestStripeGateway:
    def test_create_session_passes_idempotency_key(self, stripe_gateway, monkeypatch):
        captured = {}

        def fake_create(**kwargs):
            captured.update(kwargs)
            return SimpleNamespace(id="cs_test_1", url="https://pay.test/cs_test_1",
                                   payment_status="unpaid", amount_total=20000, metadata={"order_code": "ORD-1"})

        monkeypatch.setattr(stripe.checkout.Session, "create", fake_create)

        session = stripe_gateway.create_session(
            idempotency_key="key-1", line_items=LINES, metadata={"order_code": "ORD-1", "dispatch_job_id": None},
        )

        assert session["id"] == "cs_test_1"
        assert captured["idempotency_key"] == "key-1"
        assert captured["api_key"] == "sk_test_dummy"
        assert captured["line_items"][0]["price_data"]["unit_amount"] == 20000
        assert captured["metadata"] == {"order_code": "ORD-1"}

    @pytest.mark.parametrize("error", [stripe.APIConnectionError("down"), stripe.RateLimitError("slow down")])
    def test_connectivity_errors_are_retryable_timeouts(self, stripe_gateway, monkeypatch, error):
        def fake_create(**kwargs):
            raise error

        monkeypatch.setattr(stripe.checkout.Session, "create", fake_create)

        with pytest.raises(PaymentTimeoutError) as exc:
            stripe_gateway.create_session(idempotency_key="k", line_items=LINES, metadata={})
        assert exc.value.retryable is True

    def test_rejected_credentials_are_configuration_errors(self, stripe_gateway, monkeypatch):
        def fake_create(**kwargs):
            raise stripe.AuthenticationError("bad key")

        monkeypatch.setattr(stripe.checkout.Session, "create", fake_create)

        with pytest.raises(PaymentConfigurationError) as exc:
            stripe_gateway.create_session(idempotency_key="k", line_items=LINES, metadata={})
        assert exc.value.retryable is False

    def test_missing_secret_key(self, app):
        with pytest.raises(PaymentConfigurationError):
            StripeGateway("").create_session(idempotency_key="k", line_items=LINES, metadata={})


class TestConfirmPayment:
    def test_paid_session_marks_order_paid(self, app, gateway, workflow, cart, contact):
        result = checkout(cart, contact)
        gateway.mark_paid(result.payment_session_id, amount_total=18000)

        confirmed = confirm_payment(result.payment_session_id)

        order = confirmed["order"]
        assert confirmed["paid"] is True
        assert order["status"] == "paid"
        assert order["subtotal_cents"] == 20000
        assert order["metadata"]["amount_paid_cents"] == 18000
        assert order["metadata"]["payout_estimated_cents"] == 7000

    def test_unpaid_session_leaves_order_pending(self, app, workflow, cart, contact):
        result = checkout(cart, contact)

        confirmed = confirm_payment(result.payment_session_id)

        assert confirmed["paid"] is False
        assert confirmed["order"]["status"] == "pending"

    def test_unknown_session(self, app):
        with pytest.raises(NotFoundError):
            confirm_payment("cs_missing")


WEBHOOK_SECRET = "whsec_test"


def signed(payload, secret=WEBHOOK_SECRET, timestamp=None):
    timestamp = int(timestamp if timestamp is not None else time.time())
    signature = hmac.new(secret.encode(), f"{timestamp}.{payload}".encode(), hashlib.sha256).hexdigest()
    return {"Stripe-Signature": f"t={timestamp},v1={signature}", "Content-Type": "application/json"}


def post_event(client, event, **kwargs):
    payload = json.dumps(event)
    return client.post("/api/payments/webhook", data=payload, headers=signed(payload, **kwargs))


@pytest.fixture
def webhook_app(app):
    app.config["STRIPE_WEBHOOK_SECRET"] = WEBHOOK_SECRET
    return app


class TestWebhook:
    def test_completed_session_marks_order_paid(self, webhook_app, client, workflow, cart, contact):
        result = checkout(cart, contact)
        event = {"id": "evt_1", "type": "checkout.session.completed", "data": {"object": {
            "id": result.payment_session_id, "payment_status": "paid", "amount_total": 18000,
            "payment_intent": "pi_123", "metadata": {"order_code": result.order_code},
        }}}

        resp = post_event(client, event)

        assert resp.status_code == 200
        assert resp.get_json() == {"received": True, "event_type": "checkout.session.completed",
                                   "handled": True, "order_code": result.order_code, "paid": True}
        order = db.session.get(Order, result.order_id)
        assert order.status == "paid"
        assert order.payment_intent_id == "pi_123"
        assert order.subtotal_cents == 20000
        assert order.metadata_json["amount_paid_cents"] == 18000

    def test_unpaid_completed_session_is_not_paid(self, webhook_app, client, workflow, cart, contact):
        result = checkout(cart, contact)
        event = {"type": "checkout.session.completed", "data": {"object": {
            "id": result.payment_session_id, "payment_status": "unpaid",
        }}}

        resp = post_event(client, event)

        assert resp.get_json()["paid"] is False
        assert db.session.get(Order, result.order_id).status == "pending"

    def test_payment_intent_found_by_order_code(self, webhook_app, client, workflow, cart, contact):
        result = checkout(cart, contact)
        event = {"type": "payment_intent.succeeded", "data": {"object": {
            "id": "pi_456", "amount_received": 20000, "metadata": {"order_code": result.order_code},
        }}}

        resp = post_event(client, event)

        assert resp.get_json()["handled"] is True
        order = db.session.get(Order, result.order_id)
        assert order.status == "paid"
        assert order.payment_intent_id == "pi_456"
        assert find_order("pi_456").id == order.id

    def test_redelivery_is_harmless(self, webhook_app, client, workflow, cart, contact):
        result = checkout(cart, contact)
        event = {"type": "payment_intent.succeeded", "data": {"object": {
            "id": "pi_789", "amount_received": 20000, "metadata": {"order_code": result.order_code},
        }}}

        post_event(client, event)
        paid_at = db.session.get(Order, result.order_id).paid_at
        resp = post_event(client, event)

        assert resp.status_code == 200
        assert db.session.get(Order, result.order_id).paid_at == paid_at

    def test_unknown_event_type_is_acknowledged(self, webhook_app, client):
        resp = post_event(client, {"type": "customer.created", "data": {"object": {"id": "cus_1"}}})

        assert resp.status_code == 200
        assert resp.get_json() == {"received": True, "event_type": "customer.created", "handled": False}

    def test_unknown_order_is_acknowledged(self, webhook_app, client):
        event = {"type": "payment_intent.succeeded", "data": {"object": {"id": "pi_x", "metadata": {}}}}

        resp = post_event(client, event)

        assert resp.status_code == 200
        assert resp.get_json()["handled"] is False

    def test_bad_signature(self, webhook_app, client):
        resp = post_event(client, {"type": "customer.created"}, secret="whsec_other")

        assert resp.status_code == 400
        assert resp.get_json()["code"] == "BAD_REQUEST"

    def test_stale_signature(self, webhook_app, client):
        resp = post_event(client, {"type": "customer.created"}, timestamp=time.time() - 3600)
        assert resp.status_code == 400

    def test_missing_signature(self, webhook_app, client):
        resp = client.post("/api/payments/webhook", data="{}", headers={"Content-Type": "application/json"})
        assert resp.status_code == 400

    def test_missing_secret_is_misconfiguration(self, app, client):
        resp = post_event(client, {"type": "customer.created"})

        assert resp.status_code == 503
        assert resp.get_json()["code"] == "PROCESSOR_MISCONFIGURED"
