# Overview: Service-layer operations for checkout traces; append-only breadcrumbs and failure rows.

"""
Checkout Trace Invariants

- Append-only: rows are never updated or deleted.
- Operators read traces; business logic never does.
- Recording must never break the operation being traced. Recorder errors
  are logged and swallowed.
"""

from __future__ import annotations

import uuid

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import CheckoutFailure, CheckoutTrace


def new_trace_id() -> str:
    return uuid.uuid4().hex


def record_stage(
    trace_id: str,
    stage: str,
    *,
    order_code: str | None = None,
    job_id: str | None = None,
    payment_session_id: str | None = None,
    context: dict | None = None,
) -> CheckoutTrace | None:
    try:
        row = CheckoutTrace(
            trace_id=trace_id,
            stage=stage,
            order_code=order_code,
            job_id=job_id,
            payment_session_id=payment_session_id,
            context_json=context or None,
        )
        db.session.add(row)
        db.session.commit()
        return row
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Failed to record trace stage %s for %s", stage, trace_id)
        return None


def record_failure(
    trace_id: str,
    stage: str,
    error: Exception,
    context: dict | None = None,
) -> CheckoutFailure | None:
    # The failed stage may have left the session mid-transaction
    db.session.rollback()
    try:
        row = CheckoutFailure(
            trace_id=trace_id,
            stage=stage,
            error_code=getattr(error, "code", None) or type(error).__name__,
            error_message=str(error)[:4000],
            context_json=context or None,
        )
        db.session.add(row)
        db.session.commit()
        return row
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Failed to record trace failure %s for %s", stage, trace_id)
        return None


def get_trace(trace_id: str) -> dict:
    traces = (
        db.session.query(CheckoutTrace)
        .filter_by(trace_id=trace_id)
        .order_by(CheckoutTrace.id.asc())
        .all()
    )
    failures = (
        db.session.query(CheckoutFailure)
        .filter_by(trace_id=trace_id)
        .order_by(CheckoutFailure.id.asc())
        .all()
    )
    return {
        "trace_id": trace_id,
        "latest_stage": traces[-1].stage if traces else None,
        "stages": [t.stage for t in traces],
        "traces": [t.to_dict() for t in traces],
        "failures": [f.to_dict() for f in failures],
        "latest_failure": failures[-1].to_dict() if failures else None,
    }
