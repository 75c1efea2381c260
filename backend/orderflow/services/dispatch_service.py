# Overview: Service-layer operations for dispatch jobs; fulfillment workflow state in the fulfillment store.

"""
Dispatch Job Store

Jobs carry workflow state only (recipient, sequence step, status, due time).
Price, payout and address stay on the Order, joined by order_id (the order code).

STATUS: unscheduled -> queued -> completed, or cancelled
"""

from __future__ import annotations

import uuid
from datetime import datetime

from flask import current_app
from sqlalchemy import select

from ..errors import CapacityError, DispatchJobError, NotFoundError
from ..models.dispatch import (
    JOB_STATUS_CANCELLED,
    JOB_STATUS_COMPLETED,
    JOB_STATUS_UNSCHEDULED,
    TERMINAL_JOB_STATUSES,
)
from orderflow.time_utils import tomorrow, utcnow
from .schema_writer import WriteResult, write
from .store_client import StoreError, dispatch_store, to_jsonable


JOBS_TABLE = "dispatch_jobs"
JOB_LINES_TABLE = "dispatch_job_lines"


def create_job(
    order_code: str,
    recipient_id: str,
    *,
    due_at: datetime | None = None,
    status: str = JOB_STATUS_UNSCHEDULED,
    sequence_id: str | None = None,
    step_id: str | None = None,
) -> WriteResult:
    """
    Write a new job through the schema-adaptive writer.

    Unscheduled placeholders are due tomorrow until the customer picks a slot.
    sequence_id/step_id left unset are filled by the writer's resolvers.
    """
    cfg = current_app.config
    payload = {
        "job_id": str(uuid.uuid4()),
        "order_id": order_code,
        "recipient_id": recipient_id,
        "sequence_id": sequence_id or cfg.get("DEFAULT_DISPATCH_SEQUENCE_ID") or None,
        "step_id": step_id or cfg.get("DEFAULT_DISPATCH_STEP_ID") or None,
        "status": status,
        "due_at": due_at or tomorrow(),
        "updated_at": utcnow(),
    }
    payload = {k: v for k, v in payload.items() if v is not None}
    result = write(JOBS_TABLE, payload)
    if result.ok:
        current_app.logger.info("Created dispatch job %s for order %s", result.row["job_id"], order_code)
    return result


def create_job_or_raise(order_code: str, recipient_id: str, **kwargs) -> dict:
    result = create_job(order_code, recipient_id, **kwargs)
    if result.ok:
        return result.row
    if isinstance(result.error, CapacityError):
        raise result.error
    details = {"payload": to_jsonable(result.payload), "attempts": result.attempts}
    if isinstance(result.error, StoreError):
        details["store_error"] = result.error.to_dict()
    raise DispatchJobError(f"Could not create dispatch job for order {order_code}", details=details)


def get_job(job_id: str) -> dict | None:
    rows = dispatch_store().select(JOBS_TABLE, {"job_id": job_id}, limit=1)
    return rows[0] if rows else None


def require_job(job_id: str) -> dict:
    job = get_job(job_id)
    if not job:
        raise NotFoundError(f"Dispatch job {job_id} not found", details={"job_id": job_id})
    return job


def find_job_for_order(order_code: str, job_id: str | None = None) -> dict | None:
    """Prefer the linked job id, else the most recent job for the order."""
    if job_id:
        job = get_job(job_id)
        if job:
            return job
    store = dispatch_store()
    jobs = store.table(JOBS_TABLE)
    if "order_id" not in jobs.c:
        return None
    stmt = select(jobs).where(jobs.c.order_id == order_code)
    if "created_at" in jobs.c:
        stmt = stmt.order_by(jobs.c.created_at.desc())
    rows = store.execute(stmt.limit(1))
    return rows[0] if rows else None


def update_job(job_id: str, values: dict) -> WriteResult:
    payload = {**values, "updated_at": utcnow()}
    return write(JOBS_TABLE, payload, where={"job_id": job_id})


def mark_completed(job_id: str) -> WriteResult:
    return update_job(job_id, {"status": JOB_STATUS_COMPLETED})


def job_lines(job_id: str) -> list[dict]:
    store = dispatch_store()
    if not store.has_table(JOB_LINES_TABLE):
        return []
    return store.select(JOB_LINES_TABLE, {"job_id": job_id})


def delete_job(job_id: str) -> int:
    """Compensation only. Removes the job and any lines hanging off it."""
    store = dispatch_store()
    if store.has_table(JOB_LINES_TABLE):
        store.delete(JOB_LINES_TABLE, {"job_id": job_id})
    return store.delete(JOBS_TABLE, {"job_id": job_id})


def cancel_job(job_id: str) -> WriteResult | None:
    """Cancel a job that still holds its slot. Missing or terminal jobs are left alone (None)."""
    job = get_job(job_id)
    if job is None or job.get("status") in TERMINAL_JOB_STATUSES:
        return None
    result = update_job(job_id, {"status": JOB_STATUS_CANCELLED})
    if result.ok:
        current_app.logger.info("Cancelled dispatch job %s", job_id)
    return result
