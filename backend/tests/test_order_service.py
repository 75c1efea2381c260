import pytest

from orderflow.errors import BadRequestError, CheckoutConflictError, InvalidInputError, InvalidStateError
from orderflow.extensions import db
from orderflow.models import Order
from orderflow.services import order_service
from orderflow.services.order_service import (
    attach_payment_session,
    cancel_order,
    compute_payout_cents,
    create_order,
    find_by_idempotency_key,
    find_order,
    mark_paid,
    normalize_cart,
)


class TestPayoutFormula:
    def test_two_hundred_dollars_pays_seventy(self, app):
        assert compute_payout_cents(20000) == 7000

    def test_floor_applies(self, app):
        # 35% of 9000 is 3150, below the $35 floor; 45% ceiling is 4050
        assert compute_payout_cents(9000) == 3500

    def test_ceiling_caps_the_floor(self, app):
        # floor 3500 exceeds 45% of 5000
        assert compute_payout_cents(5000) == 2250

    def test_half_up_rounding(self, app):
        # 35% of 10 is 3.5 -> 4; 45% of 10 is 4.5 -> 5
        assert compute_payout_cents(10, floor_cents=0) == 4


class TestCart:
    def test_dollar_prices_convert_to_cents(self, app):
        lines = normalize_cart([{"name": "Clean", "price": "19.995", "quantity": 2}])
        assert lines[0]["unit_price_cents"] == 2000
        assert lines[0]["line_total_cents"] == 4000

    def test_cents_prices_pass_through(self, app):
        lines = normalize_cart([{"name": "Clean", "unit_price_cents": 1500}])
        assert lines[0]["quantity"] == 1

    def test_empty_cart(self, app):
        with pytest.raises(BadRequestError):
            normalize_cart([])

    @pytest.mark.parametrize("item", [
        {"name": "x"},
        {"name": "x", "price": "abc"},
        {"name": "x", "price": "1.00", "quantity": 0},
        {"name": "x", "unit_price_cents": -5},
    ])
    def test_bad_lines(self, app, item):
        with pytest.raises(InvalidInputError):
            normalize_cart([item])


class TestCreateOrder:
    def test_freezes_subtotal_and_payout(self, app, cart, contact):
        order = create_order(cart, contact, {"address_line1": "1 Main St"})

        assert order.status == order_service.ORDER_STATUS_PENDING_PAYMENT
        assert order.subtotal_cents == 20000
        assert order.customer_email == "ada@example.com"
        assert order.metadata_json["payout_estimated_cents"] == 7000
        assert order.metadata_json["address_line1"] == "1 Main St"
        assert order.order_code.startswith("ORD-")

    def test_rejects_sub_minimum_subtotal(self, app, contact):
        with pytest.raises(InvalidInputError):
            create_order([{"name": "x", "price": "0.50"}], contact)

    def test_rejects_sub_minimum_payout(self, app, cart, contact):
        app.config.update(PAYOUT_RATE="0.001", PAYOUT_FLOOR_CENTS=0)
        with pytest.raises(InvalidInputError):
            create_order(cart, contact)

    def test_requires_email(self, app, cart):
        with pytest.raises(BadRequestError):
            create_order(cart, {"name": "No Email"})

    def test_duplicate_idempotency_key_conflicts(self, app, cart, contact):
        first = create_order(cart, contact, idempotency_key="dup")

        with pytest.raises(CheckoutConflictError) as exc:
            create_order(cart, contact, idempotency_key="dup")

        assert exc.value.retryable is True
        assert db.session.query(Order).count() == 1
        assert find_by_idempotency_key("dup").id == first.id


class TestOrderLifecycle:
    def test_find_by_candidate_keys(self, app, cart, contact):
        order = create_order(cart, contact)
        attach_payment_session(order.id, "cs_test_123")

        assert find_order(order.id).id == order.id
        assert find_order(str(order.id)).id == order.id
        assert find_order(order.order_code).id == order.id
        assert find_order("cs_test_123").id == order.id
        assert find_order("nope") is None

    def test_attach_is_idempotent(self, app, cart, contact):
        order = create_order(cart, contact)
        attach_payment_session(order.id, "cs_test_1")
        attach_payment_session(order.id, "cs_test_1")
        assert order.status == order_service.ORDER_STATUS_PENDING
        assert order.payment_session_id == "cs_test_1"

    def test_mark_paid_keeps_frozen_figures(self, app, cart, contact):
        order = create_order(cart, contact)
        mark_paid(order, 15000)

        assert order.status == order_service.ORDER_STATUS_PAID
        assert order.subtotal_cents == 20000
        assert order.metadata_json["amount_paid_cents"] == 15000
        assert order.metadata_json["payout_estimated_cents"] == 7000

    def test_cancel_unpaid_order(self, app, cart, contact):
        order = create_order(cart, contact)

        cancel_order(order, "changed mind")
        cancel_order(order)

        assert order.status == order_service.ORDER_STATUS_CANCELLED
        assert order.metadata_json["cancel_reason"] == "changed mind"

    def test_paid_order_cannot_be_cancelled(self, app, cart, contact):
        order = create_order(cart, contact)
        mark_paid(order, payment_intent_id="pi_1")

        with pytest.raises(InvalidStateError):
            cancel_order(order)
        assert find_order("pi_1").id == order.id
