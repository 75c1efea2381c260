# Overview: Applies a customer-chosen service slot to the order and its dispatch job.

"""
Schedule Synchronizer

- Order metadata gets the date, window and start time; payout is re-derived
  from the frozen subtotal only (never from the paid amount).
- The dispatch job is moved to the window start and queued. A missing job
  is created and linked, and reported as a warning. A completed or
  cancelled job is left as it is, also with a warning.
- Geocoding, SMS and job writes are best effort: their failures become
  warnings, the order update still stands.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime

from flask import current_app

from ..errors import InvalidInputError, InvalidStateError, OrderflowError
from ..models.dispatch import JOB_STATUS_QUEUED, TERMINAL_JOB_STATUSES
from orderflow.time_utils import parse_service_date, to_utc_z, window_start
from .dispatch_service import create_job, find_job_for_order, update_job
from .geocoding_service import format_address, get_geocoder
from .notification_service import get_sms_client
from .order_service import (
    ORDER_STATUS_CANCELLED,
    compute_payout_cents,
    get_order,
    link_dispatch_job,
    merge_metadata,
)
from .recipient_service import resolve_recipient
from .store_client import StoreError


@dataclass
class ScheduleResult:
    order_id: int
    order_code: str
    job_id: str | None
    due_at: datetime
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["due_at"] = to_utc_z(self.due_at)
        return data


def _confirmation_text(order_code: str, service_date: str, time_window: str) -> str:
    return f"Your service for order {order_code} is scheduled on {service_date}, {time_window}."


def schedule(order_ref, date: str, time_window: str) -> ScheduleResult:
    """
    Raises:
        NotFoundError: no order matches order_ref
        InvalidInputError: malformed date or unparseable time window
        InvalidStateError: the order is cancelled
    """
    order = get_order(order_ref)
    if order.status == ORDER_STATUS_CANCELLED:
        raise InvalidStateError(
            f"Order {order.order_code} is cancelled and cannot be scheduled",
            details={"order_code": order.order_code},
        )
    try:
        service_date = parse_service_date(date)
    except ValueError:
        raise InvalidInputError("date must be YYYY-MM-DD", details={"date": date})
    due_at = window_start(service_date, time_window)
    if due_at is None:
        raise InvalidInputError("time_window must start with a time like '2:00 PM' or '14:00'",
                                details={"time_window": time_window})

    warnings: list[str] = []
    meta = order.metadata_json or {}

    # Order metadata (payout from the frozen subtotal)
    updates = {
        "service_date": service_date.isoformat(),
        "time_window": time_window,
        "scheduled_start": to_utc_z(due_at),
        "payout_estimated_cents": compute_payout_cents(order.subtotal_cents),
    }
    address = format_address(meta)
    geocoder = get_geocoder()
    if address and not meta.get("geo") and getattr(geocoder, "enabled", True):
        try:
            coords = geocoder.geocode(address)
        except Exception:
            current_app.logger.exception("Geocoder raised for order %s", order.order_code)
            coords = None
        if coords:
            updates["geo"] = coords
        else:
            warnings.append("address could not be geocoded")
    merge_metadata(order, updates)

    # Dispatch job
    job_id = meta.get("dispatch_job_id")
    try:
        job = find_job_for_order(order.order_code, job_id)
        job_id = job["job_id"] if job else None
        if job and job.get("status") in TERMINAL_JOB_STATUSES:
            result = None
            warnings.append(f"dispatch job is {job['status']} and was not rescheduled")
        elif job:
            result = update_job(job_id, {"due_at": due_at, "status": JOB_STATUS_QUEUED})
        else:
            recipient_id = meta.get("dispatch_recipient_id") or resolve_recipient(
                order.customer_email, order.customer_name
            )
            result = create_job(order.order_code, recipient_id, due_at=due_at, status=JOB_STATUS_QUEUED)
            if result.ok:
                job_id = result.row["job_id"]
                link_dispatch_job(order, job_id, result.row.get("recipient_id") or recipient_id)
                warnings.append("dispatch job was missing and has been recreated")
        if result is not None and not result.ok:
            warnings.append(f"dispatch job could not be updated: {result.error}")
    except (OrderflowError, StoreError) as exc:
        current_app.logger.warning("Schedule job write failed for %s: %s", order.order_code, exc)
        warnings.append(f"dispatch job could not be updated: {exc}")

    # SMS confirmation
    sms = get_sms_client()
    if order.customer_phone and getattr(sms, "enabled", True):
        try:
            sent = sms.send(
                order.customer_phone, _confirmation_text(order.order_code, service_date.isoformat(), time_window)
            )
        except Exception:
            current_app.logger.exception("SMS client raised for order %s", order.order_code)
            sent = False
        if not sent:
            warnings.append("confirmation SMS was not sent")

    if warnings:
        existing = list((order.metadata_json or {}).get("warnings") or [])
        merge_metadata(order, {"warnings": existing + warnings})
        current_app.logger.warning("Scheduled order %s with warnings: %s", order.order_code, warnings)

    return ScheduleResult(
        order_id=order.id,
        order_code=order.order_code,
        job_id=job_id,
        due_at=due_at,
        warnings=warnings,
    )
