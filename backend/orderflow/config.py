# backend/orderflow/config.py
from __future__ import annotations
import json
import os


def _promo_codes_from_env() -> dict:
    raw = os.environ.get("PROMO_CODES_JSON", "").strip()
    if not raw:
        return {}
    return json.loads(raw)


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # Primary store: orders, checkout traces
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///orderflow.sqlite3",
    )
    # Fulfillment store: recipients, dispatch jobs, payouts ledger
    SQLALCHEMY_BINDS = {
        "dispatch": os.environ.get("DISPATCH_DATABASE_URL", "sqlite:///dispatch.sqlite3"),
    }
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Payment processor
    STRIPE_SECRET_KEY = os.environ.get("STRIPE_SECRET_KEY", "")
    STRIPE_TIMEOUT_SECONDS = float(os.environ.get("STRIPE_TIMEOUT_SECONDS", "8"))
    STRIPE_MAX_NETWORK_RETRIES = int(os.environ.get("STRIPE_MAX_NETWORK_RETRIES", "2"))
    STRIPE_WEBHOOK_SECRET = os.environ.get("STRIPE_WEBHOOK_SECRET", "")
    STRIPE_WEBHOOK_TOLERANCE_SECONDS = int(os.environ.get("STRIPE_WEBHOOK_TOLERANCE_SECONDS", "300"))
    CHECKOUT_SUCCESS_URL = os.environ.get(
        "CHECKOUT_SUCCESS_URL",
        "http://localhost:3000/checkout/success?session_id={CHECKOUT_SESSION_ID}",
    )
    CHECKOUT_CANCEL_URL = os.environ.get("CHECKOUT_CANCEL_URL", "http://localhost:3000/checkout")
    CHECKOUT_CURRENCY = os.environ.get("CHECKOUT_CURRENCY", "usd")

    # Known promotion codes: {"code": {"id": "promo_...", "active": true, ...}}
    PROMO_CODES = _promo_codes_from_env()

    # Idempotency window for client retries without an explicit key
    IDEMPOTENCY_BUCKET_SECONDS = int(os.environ.get("IDEMPOTENCY_BUCKET_SECONDS", "300"))

    # Payout rules (frozen into the order at creation)
    PAYOUT_RATE = os.environ.get("PAYOUT_RATE", "0.35")
    PAYOUT_FLOOR_CENTS = int(os.environ.get("PAYOUT_FLOOR_CENTS", "3500"))
    PAYOUT_CEILING_RATE = os.environ.get("PAYOUT_CEILING_RATE", "0.45")
    ORDER_MIN_SUBTOTAL_CENTS = int(os.environ.get("ORDER_MIN_SUBTOTAL_CENTS", "100"))
    PAYOUT_MIN_CENTS = int(os.environ.get("PAYOUT_MIN_CENTS", "100"))

    # Schema-adaptive writer
    WRITER_MAX_ATTEMPTS = int(os.environ.get("WRITER_MAX_ATTEMPTS", "50"))
    WRITER_SHIM_TABLES = tuple(
        t.strip() for t in os.environ.get("WRITER_SHIM_TABLES", "jobs").split(",") if t.strip()
    )
    DEFAULT_DISPATCH_SEQUENCE_ID = os.environ.get("DEFAULT_DISPATCH_SEQUENCE_ID", "")
    DEFAULT_DISPATCH_STEP_ID = os.environ.get("DEFAULT_DISPATCH_STEP_ID", "")
    DEFAULT_DISPATCH_RECIPIENT_ID = os.environ.get("DEFAULT_DISPATCH_RECIPIENT_ID", "")

    # Best-effort collaborators
    GOOGLE_MAPS_API_KEY = os.environ.get("GOOGLE_MAPS_API_KEY", "")
    GEOCODE_TIMEOUT_SECONDS = float(os.environ.get("GEOCODE_TIMEOUT_SECONDS", "5"))
    TWILIO_ACCOUNT_SID = os.environ.get("TWILIO_ACCOUNT_SID", "")
    TWILIO_AUTH_TOKEN = os.environ.get("TWILIO_AUTH_TOKEN", "")
    TWILIO_FROM_NUMBER = os.environ.get("TWILIO_FROM_NUMBER", "")
    SMS_TIMEOUT_SECONDS = float(os.environ.get("SMS_TIMEOUT_SECONDS", "5"))
