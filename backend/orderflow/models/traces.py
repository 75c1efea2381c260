from __future__ import annotations

from ..extensions import db
from orderflow.time_utils import to_utc_z


class CheckoutTrace(db.Model):
    """
    Append-only breadcrumb for one checkout attempt.

    Operators read these; business logic never does.
    """
    __tablename__ = "checkout_traces"
    __table_args__ = (
        db.Index("ix_checkout_traces_trace_created", "trace_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    trace_id = db.Column(db.String(64), nullable=False)
    stage = db.Column(db.String(64), nullable=False)

    order_code = db.Column(db.String(64), nullable=True)
    job_id = db.Column(db.String(64), nullable=True)
    payment_session_id = db.Column(db.String(255), nullable=True)
    context_json = db.Column(db.JSON, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "trace_id": self.trace_id,
            "stage": self.stage,
            "order_code": self.order_code,
            "job_id": self.job_id,
            "payment_session_id": self.payment_session_id,
            "context": self.context_json,
            "created_at": to_utc_z(self.created_at),
        }


class CheckoutFailure(db.Model):
    """Failure row written for any exception caught during a checkout stage."""
    __tablename__ = "checkout_failures"
    __table_args__ = (
        db.Index("ix_checkout_failures_trace_created", "trace_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    trace_id = db.Column(db.String(64), nullable=False)
    stage = db.Column(db.String(64), nullable=False)
    error_code = db.Column(db.String(64), nullable=True)
    error_message = db.Column(db.Text, nullable=True)
    context_json = db.Column(db.JSON, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "trace_id": self.trace_id,
            "stage": self.stage,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "context": self.context_json,
            "created_at": to_utc_z(self.created_at),
        }
