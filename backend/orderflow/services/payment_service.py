# Overview: Service-layer operations for payment; processor sessions and payment confirmation.

"""
Payment Processing Service

WHY: Orders are paid through a hosted processor checkout session. The
processor is an external collaborator, so it sits behind a small gateway
interface stored on the app (app.extensions["payment_gateway"]) and can be
replaced per app.

DESIGN PRINCIPLES:
- Session creation always carries the checkout idempotency key
- Explicit timeout and bounded network retries
- Processor failures are classified: unreachable/slow -> PaymentTimeoutError
  (retryable), rejected credentials/parameters -> PaymentConfigurationError
- Confirmation (success page or signed webhook) records the collected
  amount without touching subtotal or payout
"""

from __future__ import annotations

import json
from typing import Protocol

import stripe
from flask import Flask, current_app

from ..errors import BadRequestError, NotFoundError, PaymentConfigurationError, PaymentTimeoutError
from ..models import Order
from .order_service import ORDER_STATUS_CANCELLED, find_order, mark_paid


# =============================================================================
# SESSION STATUS (CONSTANTS)
# =============================================================================

PAYMENT_STATUS_PAID = "paid"
PAYMENT_STATUS_UNPAID = "unpaid"
PAYMENT_STATUS_NO_PAYMENT_REQUIRED = "no_payment_required"


class PaymentGateway(Protocol):
    def create_session(
        self,
        *,
        idempotency_key: str,
        line_items: list[dict],
        metadata: dict,
        customer_email: str | None = None,
        discounts: list[dict] | None = None,
    ) -> dict: ...

    def retrieve_session(self, session_id: str) -> dict: ...


# =============================================================================
# STRIPE GATEWAY
# =============================================================================

class StripeGateway:
    def __init__(
        self,
        secret_key: str,
        *,
        timeout_seconds: float = 8.0,
        max_network_retries: int = 2,
        success_url: str = "",
        cancel_url: str = "",
        currency: str = "usd",
    ):
        self.secret_key = secret_key
        self.success_url = success_url
        self.cancel_url = cancel_url
        self.currency = currency
        stripe.max_network_retries = max_network_retries
        stripe.default_http_client = stripe.RequestsClient(timeout=timeout_seconds)

    def _require_key(self) -> None:
        if not self.secret_key:
            raise PaymentConfigurationError("Payment processor secret key is not configured")

    @staticmethod
    def _translate(exc: Exception) -> Exception:
        if isinstance(exc, (stripe.APIConnectionError, stripe.RateLimitError)):
            return PaymentTimeoutError(
                "Payment processor unavailable; retry shortly",
                details={"processor_error": type(exc).__name__, "message": str(exc)},
            )
        return PaymentConfigurationError(
            "Payment processor rejected the request",
            details={"processor_error": type(exc).__name__, "message": str(exc)},
        )

    @staticmethod
    def _session_dict(session) -> dict:
        return {
            "id": session.id,
            "url": getattr(session, "url", None),
            "payment_status": getattr(session, "payment_status", None),
            "amount_total": getattr(session, "amount_total", None),
            "metadata": dict(getattr(session, "metadata", None) or {}),
            "payment_intent": getattr(session, "payment_intent", None),
        }

    def create_session(
        self,
        *,
        idempotency_key: str,
        line_items: list[dict],
        metadata: dict,
        customer_email: str | None = None,
        discounts: list[dict] | None = None,
    ) -> dict:
        self._require_key()
        params = {
            "mode": "payment",
            "line_items": [
                {
                    "price_data": {
                        "currency": self.currency,
                        "unit_amount": line["unit_price_cents"],
                        "product_data": {"name": line["name"]},
                    },
                    "quantity": line["quantity"],
                }
                for line in line_items
            ],
            "success_url": self.success_url,
            "cancel_url": self.cancel_url,
            "metadata": {k: str(v) for k, v in metadata.items() if v is not None},
        }
        # The intent carries the same metadata so its own events can be matched to the order
        params["payment_intent_data"] = {"metadata": params["metadata"]}
        if customer_email:
            params["customer_email"] = customer_email
        if discounts:
            params["discounts"] = discounts
        try:
            session = stripe.checkout.Session.create(
                api_key=self.secret_key,
                idempotency_key=idempotency_key,
                **params,
            )
        except stripe.StripeError as exc:
            raise self._translate(exc) from exc
        return self._session_dict(session)

    def retrieve_session(self, session_id: str) -> dict:
        self._require_key()
        try:
            session = stripe.checkout.Session.retrieve(session_id, api_key=self.secret_key)
        except stripe.InvalidRequestError as exc:
            raise NotFoundError(f"Payment session {session_id} not found") from exc
        except stripe.StripeError as exc:
            raise self._translate(exc) from exc
        return self._session_dict(session)


def init_payment_gateway(app: Flask) -> None:
    cfg = app.config
    app.extensions["payment_gateway"] = StripeGateway(
        cfg.get("STRIPE_SECRET_KEY", ""),
        timeout_seconds=float(cfg.get("STRIPE_TIMEOUT_SECONDS", 8)),
        max_network_retries=int(cfg.get("STRIPE_MAX_NETWORK_RETRIES", 2)),
        success_url=cfg.get("CHECKOUT_SUCCESS_URL", ""),
        cancel_url=cfg.get("CHECKOUT_CANCEL_URL", ""),
        currency=cfg.get("CHECKOUT_CURRENCY", "usd"),
    )


def get_payment_gateway() -> PaymentGateway:
    return current_app.extensions["payment_gateway"]


# =============================================================================
# SESSION CREATION / CONFIRMATION
# =============================================================================

def create_payment_session(
    order: Order,
    *,
    job_id: str | None,
    idempotency_key: str,
    promo: dict | None = None,
) -> dict:
    """
    Open a processor session for an order. Line items mirror the cart;
    metadata carries the order code and dispatch job id for reconciliation.
    """
    metadata = {
        "order_id": order.id,
        "order_code": order.order_code,
        "dispatch_job_id": job_id,
    }
    discounts = [{"promotion_code": promo["id"]}] if promo else None
    session = get_payment_gateway().create_session(
        idempotency_key=idempotency_key,
        line_items=order.items,
        metadata=metadata,
        customer_email=order.customer_email,
        discounts=discounts,
    )
    current_app.logger.info("Opened payment session %s for order %s", session["id"], order.order_code)
    return session


def confirm_payment(session_id: str) -> dict:
    """
    Reconcile a processor session with its order.

    A paid session moves the order to paid and records amount_paid_cents.
    Subtotal and frozen payout figures are never touched.
    """
    if not session_id:
        raise NotFoundError("Payment session id is required")
    session = get_payment_gateway().retrieve_session(session_id)

    order = find_order(session_id)
    if order is None:
        order = find_order((session.get("metadata") or {}).get("order_code"))
    if order is None:
        raise NotFoundError(f"No order for payment session {session_id}", details={"session_id": session_id})

    paid = session.get("payment_status") == PAYMENT_STATUS_PAID
    if paid:
        intent = session.get("payment_intent")
        mark_paid(order, session.get("amount_total"), payment_intent_id=intent if isinstance(intent, str) else None)
        current_app.logger.info("Order %s paid via session %s", order.order_code, session_id)
    return {
        "order": order.to_dict(),
        "payment_status": session.get("payment_status"),
        "paid": paid,
    }


# =============================================================================
# PROCESSOR WEBHOOK
# =============================================================================

EVENT_CHECKOUT_COMPLETED = "checkout.session.completed"
EVENT_PAYMENT_SUCCEEDED = "payment_intent.succeeded"


def verify_webhook(payload: bytes | str, signature: str | None) -> dict:
    """
    Check the processor signature and return the event as a plain dict.

    Raises:
        PaymentConfigurationError: no signing secret configured
        BadRequestError: missing or bad signature, or a body that is not JSON
    """
    secret = current_app.config.get("STRIPE_WEBHOOK_SECRET")
    if not secret:
        raise PaymentConfigurationError("Webhook signing secret is not configured")
    if not signature:
        raise BadRequestError("Webhook signature required")

    body = payload.decode("utf-8") if isinstance(payload, bytes) else payload
    tolerance = int(current_app.config.get("STRIPE_WEBHOOK_TOLERANCE_SECONDS", 300))
    try:
        stripe.WebhookSignature.verify_header(body, signature, secret, tolerance)
    except stripe.SignatureVerificationError as exc:
        current_app.logger.warning("Webhook signature verification failed: %s", exc)
        raise BadRequestError("Webhook signature verification failed") from exc
    try:
        return json.loads(body)
    except ValueError as exc:
        raise BadRequestError("Webhook body is not valid JSON") from exc


def handle_webhook_event(event: dict) -> dict:
    """
    Apply a verified processor event.

    checkout.session.completed marks the order paid when the session is paid;
    payment_intent.succeeded always does. Other event types, and events for
    orders we do not hold, are acknowledged without changes so the processor
    stops redelivering them. Redelivery of a handled event is harmless.
    """
    event_type = event.get("type")
    obj = (event.get("data") or {}).get("object") or {}
    metadata = obj.get("metadata") or {}

    if event_type == EVENT_CHECKOUT_COMPLETED:
        paid = obj.get("payment_status") == PAYMENT_STATUS_PAID
        amount = obj.get("amount_total")
        intent = obj.get("payment_intent")
    elif event_type == EVENT_PAYMENT_SUCCEEDED:
        paid = True
        amount = obj.get("amount_received", obj.get("amount"))
        intent = obj.get("id")
    else:
        return {"received": True, "event_type": event_type, "handled": False}

    order = find_order(obj.get("id")) or find_order(metadata.get("order_code"))
    if order is None:
        current_app.logger.warning("Webhook %s for %s matched no order", event_type, obj.get("id"))
        return {"received": True, "event_type": event_type, "handled": False}

    if paid:
        if order.status == ORDER_STATUS_CANCELLED:
            current_app.logger.warning("Payment collected for cancelled order %s", order.order_code)
        mark_paid(order, amount, payment_intent_id=intent if isinstance(intent, str) else None)
        current_app.logger.info("Order %s paid via webhook %s", order.order_code, event_type)
    return {
        "received": True,
        "event_type": event_type,
        "handled": True,
        "order_code": order.order_code,
        "paid": paid,
    }
