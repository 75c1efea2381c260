# Overview: Service-layer operations for orders; the canonical record of commercial intent in the primary store.

"""
Order Ledger

INVARIANTS:
- Money is integer cents.
- subtotal_cents and the payout estimate are computed once from the cart
  at creation and frozen into the order. Nothing downstream re-derives them
  from a discounted or collected amount.
- Orders are deleted only as checkout compensation. Customers and operators
  cancel them instead; a paid order is never cancelled here.
"""

from __future__ import annotations

import hashlib
import json
import secrets
import time
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..errors import BadRequestError, CheckoutConflictError, InvalidInputError, InvalidStateError, NotFoundError
from ..extensions import db
from ..models import Order
from orderflow.time_utils import utcnow
from .recipient_service import normalize_email


ORDER_STATUS_PENDING_PAYMENT = "pending_payment"
ORDER_STATUS_PENDING = "pending"
ORDER_STATUS_PAID = "paid"
ORDER_STATUS_CANCELLED = "cancelled"

_BASE36 = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"


def _base36(value: int) -> str:
    out = ""
    while value:
        value, rem = divmod(value, 36)
        out = _BASE36[rem] + out
    return out or "0"


def generate_order_code() -> str:
    return f"ORD-{_base36(int(time.time() * 1000))}{secrets.token_hex(4).upper()}"


def _round_cents(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


# =============================================================================
# CART
# =============================================================================

def _line_price_cents(item: dict) -> int:
    if item.get("unit_price_cents") is not None:
        try:
            return int(item["unit_price_cents"])
        except (TypeError, ValueError):
            raise InvalidInputError("unit_price_cents must be an integer", details={"item": item})
    if item.get("price") is not None:
        try:
            return _round_cents(Decimal(str(item["price"])) * 100)
        except InvalidOperation:
            raise InvalidInputError("price must be a decimal amount", details={"item": item})
    raise InvalidInputError("Cart item is missing a price", details={"item": item})


def normalize_cart(cart: list) -> list[dict]:
    """Cart lines as {name, unit_price_cents, quantity, line_total_cents, metadata}."""
    if not cart:
        raise BadRequestError("Cart is empty")
    if not isinstance(cart, list):
        raise BadRequestError("Cart must be a list of items")

    lines = []
    for item in cart:
        if not isinstance(item, dict):
            raise InvalidInputError("Cart item must be an object", details={"item": item})
        unit_price_cents = _line_price_cents(item)
        try:
            quantity = int(item.get("quantity", 1))
        except (TypeError, ValueError):
            raise InvalidInputError("quantity must be an integer", details={"item": item})
        if quantity < 1:
            raise InvalidInputError("quantity must be at least 1", details={"item": item})
        if unit_price_cents < 0:
            raise InvalidInputError("price cannot be negative", details={"item": item})
        lines.append({
            "name": str(item.get("name") or "Item"),
            "unit_price_cents": unit_price_cents,
            "quantity": quantity,
            "line_total_cents": unit_price_cents * quantity,
            "metadata": item.get("metadata") or {},
        })
    return lines


def cart_fingerprint(lines: list[dict]) -> str:
    canonical = sorted((l["name"], l["unit_price_cents"], l["quantity"]) for l in lines)
    return hashlib.sha256(json.dumps(canonical).encode("utf-8")).hexdigest()


# =============================================================================
# PAYOUT
# =============================================================================

def compute_payout_cents(
    subtotal_cents: int,
    *,
    rate: str | Decimal | None = None,
    floor_cents: int | None = None,
    ceiling_rate: str | Decimal | None = None,
) -> int:
    """
    min(max(round_half_up(subtotal * rate), floor), subtotal * ceiling_rate)

    Defaults come from config (35%, $35 floor, 45% ceiling). 20000 -> 7000.
    """
    cfg = current_app.config
    rate = Decimal(str(rate if rate is not None else cfg["PAYOUT_RATE"]))
    floor_cents = int(floor_cents if floor_cents is not None else cfg["PAYOUT_FLOOR_CENTS"])
    ceiling_rate = Decimal(str(ceiling_rate if ceiling_rate is not None else cfg["PAYOUT_CEILING_RATE"]))

    subtotal = Decimal(int(subtotal_cents))
    payout = max(_round_cents(subtotal * rate), floor_cents)
    ceiling = _round_cents(subtotal * ceiling_rate)
    return min(payout, ceiling)


# =============================================================================
# ORDER LIFECYCLE
# =============================================================================

def create_order(
    cart: list,
    contact: dict,
    metadata: dict | None = None,
    *,
    idempotency_key: str | None = None,
) -> Order:
    """
    Persist a new order in pending_payment.

    Raises:
        BadRequestError: empty cart or missing email
        InvalidInputError: subtotal or payout below the configured minimum
        CheckoutConflictError: another order already holds idempotency_key
    """
    lines = normalize_cart(cart)
    email = normalize_email((contact or {}).get("email"))
    if not email:
        raise BadRequestError("Customer email is required")

    subtotal_cents = sum(l["line_total_cents"] for l in lines)
    min_subtotal = int(current_app.config["ORDER_MIN_SUBTOTAL_CENTS"])
    if subtotal_cents < min_subtotal:
        raise InvalidInputError(
            f"Order subtotal must be at least {min_subtotal} cents",
            details={"subtotal_cents": subtotal_cents},
        )

    payout_cents = compute_payout_cents(subtotal_cents)
    min_payout = int(current_app.config["PAYOUT_MIN_CENTS"])
    if payout_cents < min_payout:
        raise InvalidInputError(
            f"Payout must be at least {min_payout} cents",
            details={"subtotal_cents": subtotal_cents, "payout_cents": payout_cents},
        )

    meta = dict(metadata or {})
    meta["payout_estimated_cents"] = payout_cents
    meta["payout_rate"] = str(current_app.config["PAYOUT_RATE"])

    order = Order(
        order_code=generate_order_code(),
        customer_email=email,
        customer_name=(contact.get("name") or "").strip() or None,
        customer_phone=(contact.get("phone") or "").strip() or None,
        items=lines,
        subtotal_cents=subtotal_cents,
        total_cents=subtotal_cents,
        currency=current_app.config.get("CHECKOUT_CURRENCY", "usd"),
        status=ORDER_STATUS_PENDING_PAYMENT,
        idempotency_key=idempotency_key,
        metadata_json=meta,
    )
    db.session.add(order)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        if idempotency_key is None:
            raise
        raise CheckoutConflictError(
            "An order with this idempotency key already exists",
            details={"idempotency_key": idempotency_key},
        )
    current_app.logger.info("Created order %s (subtotal=%s payout=%s)", order.order_code, subtotal_cents, payout_cents)
    return order


def find_order(ref) -> Order | None:
    """Look up by surrogate id, then order code, then payment session or intent id."""
    if ref is None:
        return None
    text = str(ref).strip()
    if not text:
        return None
    if text.isdigit():
        order = db.session.get(Order, int(text))
        if order:
            return order
    order = db.session.query(Order).filter_by(order_code=text).first()
    if order:
        return order
    order = db.session.query(Order).filter_by(payment_session_id=text).first()
    if order:
        return order
    return db.session.query(Order).filter_by(payment_intent_id=text).first()


def get_order(ref) -> Order:
    order = find_order(ref)
    if not order:
        raise NotFoundError(f"Order {ref} not found", details={"order_ref": ref})
    return order


def find_by_idempotency_key(key: str) -> Order | None:
    if not key:
        return None
    return (
        db.session.query(Order)
        .filter_by(idempotency_key=key)
        .order_by(Order.id.desc())
        .first()
    )


def merge_metadata(order: Order, updates: dict, *, commit: bool = True) -> Order:
    # JSON columns only persist on reassignment
    order.metadata_json = {**(order.metadata_json or {}), **updates}
    order.updated_at = utcnow()
    if commit:
        db.session.commit()
    return order


def attach_payment_session(order_id: int, session_id: str) -> Order:
    """Pure update; safe to retry with the same session id."""
    order = db.session.get(Order, order_id)
    if not order:
        raise NotFoundError(f"Order {order_id} not found")
    order.payment_session_id = session_id
    if order.status == ORDER_STATUS_PENDING_PAYMENT:
        order.status = ORDER_STATUS_PENDING
    order.updated_at = utcnow()
    db.session.commit()
    return order


def link_dispatch_job(order: Order, job_id: str, recipient_id: str | None = None) -> Order:
    updates = {"dispatch_job_id": job_id}
    if recipient_id:
        updates["dispatch_recipient_id"] = recipient_id
    return merge_metadata(order, updates)


def mark_paid(
    order: Order,
    amount_paid_cents: int | None = None,
    payment_intent_id: str | None = None,
) -> Order:
    """Record collection. subtotal and payout figures are left untouched."""
    order.status = ORDER_STATUS_PAID
    order.paid_at = order.paid_at or utcnow()
    if payment_intent_id:
        order.payment_intent_id = payment_intent_id
    if amount_paid_cents is not None:
        return merge_metadata(order, {"amount_paid_cents": int(amount_paid_cents)})
    order.updated_at = utcnow()
    db.session.commit()
    return order


def cancel_order(order: Order, reason: str | None = None) -> Order:
    """
    pending_payment | pending -> cancelled. Cancelling twice is a no-op.

    Raises:
        InvalidStateError: the order is already paid
    """
    if order.status == ORDER_STATUS_CANCELLED:
        return order
    if order.status == ORDER_STATUS_PAID:
        raise InvalidStateError(
            f"Order {order.order_code} is paid and cannot be cancelled",
            details={"order_code": order.order_code, "status": order.status},
        )
    order.status = ORDER_STATUS_CANCELLED
    order.cancelled_at = utcnow()
    current_app.logger.info("Cancelled order %s", order.order_code)
    return merge_metadata(order, {"cancel_reason": reason} if reason else {})


def delete_order(order_id: int) -> bool:
    """Compensation only."""
    order = db.session.get(Order, order_id)
    if not order:
        return False
    db.session.delete(order)
    db.session.commit()
    return True
