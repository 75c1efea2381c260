# Overview: Checkout orchestration; order -> dispatch job -> payment session, with compensation on failure.

"""
Checkout Orchestrator

WHY: A checkout spans two stores and a payment processor with no shared
transaction. Each step records what it created; a failure undoes those
records in reverse order so no half-built checkout is left behind.

STATE MACHINE:
    started -> created -> job_linked -> session_linked
    any failure after "created" -> compensated

DESIGN:
- Validation (cart, email, promo allow-list) happens before anything is written
- Idempotency: the caller's key, or a key derived from email + cart + a
  time bucket. A session-linked order with that key is replayed. An order
  whose job is linked but whose session id never landed is resumed by asking
  the processor again with the same key. An order with no job yet means
  another attempt is still in flight.
- Compensation always runs to completion; each undo failure is logged and traced
- Attaching the session id to the order is the only non-fatal step
- Cancellation (unpaid orders only) cancels the order, then its job
"""

from __future__ import annotations

import hashlib
import time
from dataclasses import asdict, dataclass, field
from typing import Callable

from flask import current_app

from ..errors import BadRequestError, CheckoutConflictError, InvalidStateError, OrderflowError
from ..extensions import db
from .dispatch_service import cancel_job, create_job_or_raise, delete_job, get_job
from .order_service import (
    ORDER_STATUS_CANCELLED,
    attach_payment_session,
    cancel_order,
    cart_fingerprint,
    create_order,
    delete_order,
    find_by_idempotency_key,
    get_order,
    link_dispatch_job,
    merge_metadata,
    normalize_cart,
)
from .payment_service import create_payment_session
from .promotions_service import resolve_promo
from .recipient_service import normalize_email, resolve_recipient
from .store_client import StoreError
from .trace_service import new_trace_id, record_failure, record_stage


# =============================================================================
# CHECKOUT STATES (CONSTANTS)
# =============================================================================

CHECKOUT_STARTED = "started"
CHECKOUT_CREATED = "created"
CHECKOUT_JOB_LINKED = "job_linked"
CHECKOUT_SESSION_LINKED = "session_linked"
CHECKOUT_COMPENSATED = "compensated"

_TRANSITIONS = {
    CHECKOUT_STARTED: {CHECKOUT_CREATED},
    CHECKOUT_CREATED: {CHECKOUT_JOB_LINKED, CHECKOUT_COMPENSATED},
    CHECKOUT_JOB_LINKED: {CHECKOUT_SESSION_LINKED, CHECKOUT_COMPENSATED},
    CHECKOUT_SESSION_LINKED: set(),
    CHECKOUT_COMPENSATED: set(),
}


@dataclass
class CheckoutResult:
    order_id: int
    order_code: str
    job_id: str | None
    payment_session_id: str
    payment_url: str | None
    trace_id: str
    replayed: bool = False
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


class CheckoutAttempt:
    """Tracks state and the undo steps for one checkout."""

    def __init__(self, trace_id: str):
        self.trace_id = trace_id
        self.state = CHECKOUT_STARTED
        self._undo: list[tuple[str, Callable[[], object]]] = []

    def advance(self, new_state: str) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"Illegal checkout transition {self.state} -> {new_state}")
        self.state = new_state

    def on_failure(self, name: str, undo: Callable[[], object]) -> None:
        self._undo.append((name, undo))

    def compensate(self) -> list[str]:
        """Undo in reverse creation order. Never stops early."""
        db.session.rollback()
        undone = []
        for name, undo in reversed(self._undo):
            try:
                undo()
                undone.append(name)
            except Exception as exc:
                db.session.rollback()
                current_app.logger.exception("Compensation step %s failed (trace %s)", name, self.trace_id)
                record_failure(self.trace_id, f"compensate:{name}", exc)
        self._undo.clear()
        if self.state != CHECKOUT_STARTED:
            self.advance(CHECKOUT_COMPENSATED)
        record_stage(self.trace_id, CHECKOUT_COMPENSATED, context={"undone": undone})
        return undone


def derive_idempotency_key(email: str, lines: list[dict], now: float | None = None) -> str:
    bucket_seconds = int(current_app.config.get("IDEMPOTENCY_BUCKET_SECONDS", 300))
    bucket = int((now if now is not None else time.time()) // bucket_seconds)
    raw = f"{email}|{cart_fingerprint(lines)}|{bucket}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:32]


def _replay(order, trace_id: str) -> CheckoutResult:
    meta = order.metadata_json or {}
    record_stage(
        trace_id, "replayed",
        order_code=order.order_code,
        job_id=meta.get("dispatch_job_id"),
        payment_session_id=order.payment_session_id,
    )
    current_app.logger.info("Replaying checkout for order %s", order.order_code)
    return CheckoutResult(
        order_id=order.id,
        order_code=order.order_code,
        job_id=meta.get("dispatch_job_id"),
        payment_session_id=order.payment_session_id,
        payment_url=meta.get("payment_url"),
        trace_id=trace_id,
        replayed=True,
    )


def _resume(order, key: str, trace_id: str) -> CheckoutResult:
    """
    Finish a checkout that stopped after its job was linked but before the
    session id reached the order. The processor answers a repeated
    idempotency key with the session it already opened.
    """
    meta = order.metadata_json or {}
    job_id = meta["dispatch_job_id"]
    promo = {"code": meta.get("promo_code"), "id": meta["promo_id"]} if meta.get("promo_id") else None
    try:
        session = create_payment_session(order, job_id=job_id, idempotency_key=key, promo=promo)
    except Exception as exc:
        record_failure(trace_id, "resume_session", exc, {"order_code": order.order_code, "job_id": job_id})
        raise

    warnings = []
    try:
        attach_payment_session(order.id, session["id"])
        merge_metadata(order, {"payment_url": session.get("url")})
    except Exception as exc:
        db.session.rollback()
        current_app.logger.warning("Could not attach session %s to order %s: %s", session["id"], order.order_code, exc)
        record_failure(trace_id, "attach_session", exc, {"order_code": order.order_code})
        warnings.append("payment session could not be linked to the order")
    record_stage(trace_id, "resumed", order_code=order.order_code, job_id=job_id, payment_session_id=session["id"])
    current_app.logger.info("Resumed checkout for order %s with session %s", order.order_code, session["id"])

    return CheckoutResult(
        order_id=order.id,
        order_code=order.order_code,
        job_id=job_id,
        payment_session_id=session["id"],
        payment_url=session.get("url"),
        trace_id=trace_id,
        replayed=True,
        warnings=warnings,
    )


def _existing_checkout(order, key: str, trace_id: str) -> CheckoutResult:
    """Replay, resume or refuse a checkout whose key already has an order."""
    if order.status == ORDER_STATUS_CANCELLED:
        exc = InvalidStateError(
            "The order for this idempotency key was cancelled",
            details={"order_code": order.order_code},
        )
        record_failure(trace_id, "idempotency", exc, {"order_code": order.order_code})
        raise exc
    if order.payment_session_id:
        return _replay(order, trace_id)
    if (order.metadata_json or {}).get("dispatch_job_id"):
        return _resume(order, key, trace_id)

    # No job linked yet: the first attempt is still between order and job
    exc = CheckoutConflictError(
        "A checkout with this idempotency key is already in progress",
        details={"order_code": order.order_code},
    )
    record_failure(trace_id, "idempotency", exc, {"order_code": order.order_code})
    raise exc


def checkout(
    cart: list,
    contact: dict,
    promo_code: str | None = None,
    idempotency_key: str | None = None,
    metadata: dict | None = None,
) -> CheckoutResult:
    """
    Create order, dispatch job and payment session, then link them.

    Raises:
        BadRequestError / InvalidInputError / UnsupportedPromoError: nothing written
        CheckoutConflictError: same idempotency key still in flight
        InvalidStateError: the order for this idempotency key was cancelled
        DispatchJobError / CapacityError: order compensated
        PaymentTimeoutError / PaymentConfigurationError: job and order compensated
    """
    contact = contact or {}
    trace_id = new_trace_id()
    attempt = CheckoutAttempt(trace_id)
    record_stage(trace_id, CHECKOUT_STARTED)

    # 1-2. Validate input and promo before touching any store
    try:
        lines = normalize_cart(cart)
        email = normalize_email(contact.get("email"))
        if not email:
            raise BadRequestError("Customer email is required")
        promo = resolve_promo(promo_code)
    except OrderflowError as exc:
        record_failure(trace_id, "validate", exc)
        raise

    # 3. Idempotency
    key = (idempotency_key or "").strip() or derive_idempotency_key(email, lines)
    existing = find_by_idempotency_key(key)
    if existing is not None:
        return _existing_checkout(existing, key, trace_id)

    # 4. Order
    meta = {**(metadata or {}), "checkout_trace_id": trace_id}
    if promo:
        meta["promo_code"] = promo["code"]
        meta["promo_id"] = promo["id"]
    try:
        order = create_order(cart, contact, meta, idempotency_key=key)
    except CheckoutConflictError:
        # A concurrent checkout claimed the key between lookup and insert
        existing = find_by_idempotency_key(key)
        if existing is None:
            raise
        return _existing_checkout(existing, key, trace_id)
    except Exception as exc:
        record_failure(trace_id, "create_order", exc)
        raise
    order_id, order_code = order.id, order.order_code
    attempt.advance(CHECKOUT_CREATED)
    attempt.on_failure("delete_order", lambda: delete_order(order_id))
    record_stage(trace_id, "order_created", order_code=order_code)

    # 5. Recipient + dispatch job
    try:
        recipient_id = resolve_recipient(email, contact.get("name"))
        job = create_job_or_raise(order_code, recipient_id)
        job_id = job["job_id"]
        attempt.on_failure("delete_job", lambda: delete_job(job_id))
        link_dispatch_job(order, job_id, recipient_id)
    except Exception as exc:
        record_failure(trace_id, "dispatch_job", exc, {"order_code": order_code})
        attempt.compensate()
        raise
    attempt.advance(CHECKOUT_JOB_LINKED)
    record_stage(trace_id, "job_created", order_code=order_code, job_id=job_id)

    # 6. Payment session
    try:
        session = create_payment_session(order, job_id=job_id, idempotency_key=key, promo=promo)
    except Exception as exc:
        record_failure(trace_id, "payment_session", exc, {"order_code": order_code, "job_id": job_id})
        attempt.compensate()
        raise
    record_stage(trace_id, "session_created", order_code=order_code, job_id=job_id, payment_session_id=session["id"])

    # 7. Link session (non-fatal)
    warnings = []
    try:
        attach_payment_session(order_id, session["id"])
        merge_metadata(order, {"payment_url": session.get("url")})
    except Exception as exc:
        db.session.rollback()
        current_app.logger.warning("Could not attach session %s to order %s: %s", session["id"], order_code, exc)
        record_failure(trace_id, "attach_session", exc, {"order_code": order_code})
        warnings.append("payment session could not be linked to the order")
    attempt.advance(CHECKOUT_SESSION_LINKED)
    record_stage(trace_id, CHECKOUT_SESSION_LINKED, order_code=order_code, job_id=job_id, payment_session_id=session["id"])

    return CheckoutResult(
        order_id=order_id,
        order_code=order_code,
        job_id=job_id,
        payment_session_id=session["id"],
        payment_url=session.get("url"),
        trace_id=trace_id,
        warnings=warnings,
    )


def cancel_checkout(order_ref, reason: str | None = None) -> dict:
    """
    Cancel an unpaid order and release its dispatch job's recipient slot.

    The order cancellation stands even when the job cannot be cancelled;
    that is reported as a warning. A completed job is left completed.

    Raises:
        NotFoundError: unknown order
        InvalidStateError: the order is paid
    """
    order = get_order(order_ref)
    cancel_order(order, reason)
    meta = order.metadata_json or {}
    job_id = meta.get("dispatch_job_id")

    warnings = []
    job_status = None
    if job_id:
        try:
            result = cancel_job(job_id)
            if result is not None and not result.ok:
                warnings.append(f"dispatch job {job_id} could not be cancelled: {result.error}")
            job = get_job(job_id)
            if job is None:
                warnings.append(f"dispatch job {job_id} not found")
            else:
                job_status = job.get("status")
        except StoreError as exc:
            current_app.logger.warning("Could not cancel job %s for order %s: %s", job_id, order.order_code, exc)
            warnings.append(f"dispatch job {job_id} could not be cancelled: {exc}")

    if meta.get("checkout_trace_id"):
        record_stage(meta["checkout_trace_id"], "cancelled", order_code=order.order_code, job_id=job_id,
                     context={"reason": reason, "warnings": warnings} if reason or warnings else None)
    return {"order": order.to_dict(), "job_id": job_id, "job_status": job_status, "warnings": warnings}
