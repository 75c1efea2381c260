# Overview: Service-layer operations for recipient payouts; records job completion into the payouts ledger.

"""
Payout Ledger Writer

INVARIANTS:
- One ledger entry per (job_id, recipient_id, payout_type).
- Completion is idempotent: a second completion of the same job leaves the
  entry unchanged, except that a zero entry is healed once a positive amount
  is known.
- An amount that cannot be resolved to a positive value is still recorded
  (as zero, status needs_review) so that it shows up for review.
- period_start..period_end is the Monday..Sunday week of the completion.
- Review: pending -> approved | rejected; needs_review -> rejected.
  A zero entry cannot be approved until it is healed.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime

from flask import current_app

from ..errors import InvalidInputError, InvalidStateError, NotFoundError
from ..models.dispatch import PAYOUT_TYPE_JOB, VALID_PAYOUT_TYPES
from orderflow.time_utils import utcnow, week_bounds
from .dispatch_service import job_lines, mark_completed, require_job
from .order_service import compute_payout_cents, find_order
from .schema_writer import write
from .store_client import StoreErrorCode, dispatch_store, to_jsonable


LEDGER_TABLE = "payouts_ledger"

PAYOUT_STATUS_PENDING = "pending"
PAYOUT_STATUS_NEEDS_REVIEW = "needs_review"
PAYOUT_STATUS_APPROVED = "approved"
PAYOUT_STATUS_REJECTED = "rejected"

# Entries awaiting review. Only these can be healed or reviewed
OPEN_STATUSES = (PAYOUT_STATUS_PENDING, PAYOUT_STATUS_NEEDS_REVIEW)

REVIEW_APPROVE = "approve"
REVIEW_REJECT = "reject"
_REVIEW_TARGETS = {REVIEW_APPROVE: PAYOUT_STATUS_APPROVED, REVIEW_REJECT: PAYOUT_STATUS_REJECTED}

OUTCOME_CREATED = "created"
OUTCOME_HEALED = "healed"
OUTCOME_UNCHANGED = "unchanged"

# Payout figures a job row may carry directly, in priority order
JOB_PAYOUT_FIELDS = ("payout_cents", "estimated_payout_cents")


@dataclass
class PayoutResult:
    entry: dict
    outcome: str
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"entry": to_jsonable(self.entry), "outcome": self.outcome, "warnings": self.warnings}


# =============================================================================
# AMOUNT RESOLUTION
# =============================================================================

def resolve_payout_amount(job: dict, amount_cents: int | None = None) -> tuple[int | None, str]:
    """
    Resolve the payout for a job. Returns (amount_cents, source).

    explicit argument -> payout field on the job row -> sum of job line
    payouts -> rate applied to the order's frozen subtotal -> rate applied
    to the order total. (None, "unresolved") when nothing applies.
    """
    if amount_cents is not None:
        return int(amount_cents), "explicit"

    for name in JOB_PAYOUT_FIELDS:
        if job.get(name) is not None:
            return int(job[name]), f"job.{name}"

    line_payouts = [l["payout_cents"] for l in job_lines(job["job_id"]) if l.get("payout_cents") is not None]
    if line_payouts:
        return sum(int(p) for p in line_payouts), "job_lines"

    order = find_order(job.get("order_id"))
    if order is not None:
        if order.subtotal_cents:
            return compute_payout_cents(order.subtotal_cents), "order.subtotal"
        if order.total_cents:
            return compute_payout_cents(order.total_cents), "order.total"

    return None, "unresolved"


# =============================================================================
# LEDGER
# =============================================================================

def find_entry(job_id: str, recipient_id: str, payout_type: str = PAYOUT_TYPE_JOB) -> dict | None:
    rows = dispatch_store().select(
        LEDGER_TABLE,
        {"job_id": job_id, "recipient_id": recipient_id, "payout_type": payout_type},
        limit=1,
    )
    return rows[0] if rows else None


def _apply_existing(existing: dict, amount: int) -> tuple[dict, str]:
    if existing.get("status") in OPEN_STATUSES and (existing.get("amount_cents") or 0) <= 0 and amount > 0:
        result = write(
            LEDGER_TABLE,
            {"amount_cents": amount, "status": PAYOUT_STATUS_PENDING, "note": None, "updated_at": utcnow()},
            where={"payout_id": existing["payout_id"]},
        )
        healed = result.raise_for_error() or existing
        current_app.logger.info("Healed payout %s to %s cents", existing["payout_id"], amount)
        return healed, OUTCOME_HEALED
    return existing, OUTCOME_UNCHANGED


def record_completion(
    job_id: str,
    recipient_id: str | None = None,
    amount_cents: int | None = None,
    completed_at: datetime | None = None,
    payout_type: str = PAYOUT_TYPE_JOB,
) -> PayoutResult:
    """
    Record a completed job in the payouts ledger and mark the job completed.

    Raises:
        NotFoundError: unknown job
        InvalidInputError: unknown payout_type
        SchemaDriftError: the ledger write could not be absorbed
    """
    if payout_type not in VALID_PAYOUT_TYPES:
        raise InvalidInputError(f"payout_type must be one of {VALID_PAYOUT_TYPES}")

    job = require_job(job_id)
    recipient_id = recipient_id or job.get("recipient_id")
    if not recipient_id:
        raise NotFoundError(f"Dispatch job {job_id} has no recipient", details={"job_id": job_id})
    completed_at = completed_at or utcnow()
    warnings: list[str] = []

    amount, source = resolve_payout_amount(job, amount_cents)
    if amount is None or amount <= 0:
        warnings.append(f"payout for job {job_id} resolved to {amount} ({source}); recorded as zero for review")
        current_app.logger.warning("Zero payout for job %s (source=%s, amount=%s)", job_id, source, amount)
        amount = 0

    existing = find_entry(job_id, recipient_id, payout_type)
    if existing is not None:
        entry, outcome = _apply_existing(existing, amount)
    else:
        period_start, period_end = week_bounds(completed_at)
        payload = {
            "payout_id": str(uuid.uuid4()),
            "job_id": job_id,
            "recipient_id": recipient_id,
            "amount_cents": amount,
            "payout_type": payout_type,
            "status": PAYOUT_STATUS_PENDING if amount > 0 else PAYOUT_STATUS_NEEDS_REVIEW,
            "period_start": period_start,
            "period_end": period_end,
            "note": None if amount > 0 else f"payout unresolved (source={source})",
            "updated_at": utcnow(),
        }
        result = write(LEDGER_TABLE, payload)
        if result.ok:
            entry, outcome = result.row, OUTCOME_CREATED
        elif getattr(result.error, "code", None) == StoreErrorCode.UNIQUE_VIOLATION:
            # Lost a concurrent insert; fall back to the idempotent path
            existing = find_entry(job_id, recipient_id, payout_type)
            if existing is None:
                result.raise_for_error()
            entry, outcome = _apply_existing(existing, amount)
        else:
            entry, outcome = result.raise_for_error(), OUTCOME_CREATED

    completion = mark_completed(job_id)
    if not completion.ok:
        warnings.append(f"job {job_id} could not be marked completed: {completion.error}")
        current_app.logger.warning("Could not mark job %s completed: %s", job_id, completion.error)

    current_app.logger.info("Payout for job %s: %s (%s cents)", job_id, outcome, entry.get("amount_cents"))
    return PayoutResult(entry=entry, outcome=outcome, warnings=warnings)


# =============================================================================
# REVIEW
# =============================================================================

def review_payout(payout_id: str, action: str, note: str | None = None) -> dict:
    """
    Approve or reject a ledger entry. Repeating the same decision is a no-op.

    Raises:
        InvalidInputError: action is not approve/reject
        NotFoundError: unknown payout
        InvalidStateError: the entry was already decided the other way, or
            an unresolved zero entry is being approved
        SchemaDriftError: the ledger write could not be absorbed
    """
    action = (action or "").strip().lower()
    if action not in _REVIEW_TARGETS:
        raise InvalidInputError("action must be approve or reject", details={"action": action})
    target = _REVIEW_TARGETS[action]

    rows = dispatch_store().select(LEDGER_TABLE, {"payout_id": payout_id}, limit=1)
    if not rows:
        raise NotFoundError(f"Payout {payout_id} not found", details={"payout_id": payout_id})
    entry = rows[0]
    status = entry.get("status")

    if status == target:
        return entry
    if status not in OPEN_STATUSES:
        raise InvalidStateError(
            f"Payout {payout_id} is already {status}",
            details={"payout_id": payout_id, "status": status},
        )
    if target == PAYOUT_STATUS_APPROVED and (entry.get("amount_cents") or 0) <= 0:
        raise InvalidStateError(
            f"Payout {payout_id} has no resolved amount and cannot be approved",
            details={"payout_id": payout_id, "status": status, "amount_cents": entry.get("amount_cents")},
        )

    now = utcnow()
    values = {"status": target, "reviewed_at": now, "updated_at": now}
    if note:
        values["note"] = note
    result = write(LEDGER_TABLE, values, where={"payout_id": payout_id})
    reviewed = result.raise_for_error() or entry
    current_app.logger.info("Payout %s %s (was %s)", payout_id, target, status)
    return reviewed
