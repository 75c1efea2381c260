# Overview: Service-layer operations for fulfillment recipients; resolves a customer email to a stable recipient id.

from __future__ import annotations

import uuid

from flask import current_app

from ..errors import BadRequestError, RecipientResolutionError
from .schema_writer import write
from .store_client import StoreErrorCode, dispatch_store


RECIPIENTS_TABLE = "recipients"


def normalize_email(email: str | None) -> str:
    return (email or "").strip().lower()


def find_recipient(email: str) -> dict | None:
    rows = dispatch_store().select(RECIPIENTS_TABLE, {"email_normalized": normalize_email(email)}, limit=1)
    return rows[0] if rows else None


def resolve_recipient(email: str, display_name: str | None = None) -> str:
    """
    Return the recipient_id for email, creating the recipient if needed.

    Existing recipients are returned unchanged (display_name is not updated).
    A concurrent creator winning the unique race is handled by one re-read.
    """
    normalized = normalize_email(email)
    if not normalized:
        raise BadRequestError("Recipient email is required")

    existing = find_recipient(normalized)
    if existing:
        return existing["recipient_id"]

    recipient_id = str(uuid.uuid4())
    result = write(RECIPIENTS_TABLE, {
        "recipient_id": recipient_id,
        "email_normalized": normalized,
        "display_name": (display_name or "").strip() or None,
        "recipient_key": f"customer-{uuid.uuid4()}",
    })
    if result.ok:
        return result.row["recipient_id"] if result.row else recipient_id

    error = result.error
    if getattr(error, "code", None) == StoreErrorCode.UNIQUE_VIOLATION:
        current_app.logger.info("Recipient for %s created concurrently; re-reading", normalized)
        existing = find_recipient(normalized)
        if existing:
            return existing["recipient_id"]

    raise RecipientResolutionError(
        f"Could not resolve recipient for {normalized}",
        details={"email": normalized, "error": str(error)},
    )
