"""
Fulfillment store tables (the "dispatch" bind).

These models declare the canonical shape for create_all and migrations only.
The live fulfillment schema drifts independently, so all reads and writes go
through services.store_client against the reflected schema, never through
an ORM session.
"""

from __future__ import annotations

from ..extensions import db


JOB_STATUS_UNSCHEDULED = "unscheduled"
JOB_STATUS_QUEUED = "queued"
JOB_STATUS_COMPLETED = "completed"
JOB_STATUS_CANCELLED = "cancelled"

# Jobs in these states no longer hold their (recipient, step) slot
TERMINAL_JOB_STATUSES = (JOB_STATUS_COMPLETED, JOB_STATUS_CANCELLED)

PAYOUT_TYPE_JOB = "job"
PAYOUT_TYPE_BONUS = "bonus"
PAYOUT_TYPE_ADJUSTMENT = "adjustment"
PAYOUT_TYPE_REFERRAL = "referral"

VALID_PAYOUT_TYPES = (
    PAYOUT_TYPE_JOB,
    PAYOUT_TYPE_BONUS,
    PAYOUT_TYPE_ADJUSTMENT,
    PAYOUT_TYPE_REFERRAL,
)

_ACTIVE_JOB_PREDICATE = db.text("status NOT IN ('completed', 'cancelled')")


class Recipient(db.Model):
    """Fulfillment-side identity. One per normalized email, never mutated."""
    __bind_key__ = "dispatch"
    __tablename__ = "recipients"

    recipient_id = db.Column(db.String(36), primary_key=True)
    email_normalized = db.Column(db.String(254), nullable=False, unique=True)
    display_name = db.Column(db.String(255), nullable=True)
    recipient_key = db.Column(db.String(96), nullable=False, unique=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())


class Sequence(db.Model):
    """A fixed fulfillment workflow."""
    __bind_key__ = "dispatch"
    __tablename__ = "sequences"

    sequence_id = db.Column(db.String(36), primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())


class SequenceStep(db.Model):
    __bind_key__ = "dispatch"
    __tablename__ = "sequence_steps"

    step_id = db.Column(db.String(36), primary_key=True)
    sequence_id = db.Column(db.String(36), db.ForeignKey("sequences.sequence_id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False, default=1)
    name = db.Column(db.String(128), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())


class DispatchJob(db.Model):
    """
    Fulfillment workflow state. Deliberately carries no commercial fields;
    price, payout and address live on the Order, joined by order_id.

    INVARIANT: at most one active job per (recipient_id, step_id).
    """
    __bind_key__ = "dispatch"
    __tablename__ = "dispatch_jobs"
    __table_args__ = (
        db.Index(
            "uq_dispatch_jobs_recipient_step_active",
            "recipient_id",
            "step_id",
            unique=True,
            sqlite_where=_ACTIVE_JOB_PREDICATE,
            postgresql_where=_ACTIVE_JOB_PREDICATE,
        ),
    )

    job_id = db.Column(db.String(36), primary_key=True)
    order_id = db.Column(db.String(64), nullable=True, index=True)
    recipient_id = db.Column(db.String(36), db.ForeignKey("recipients.recipient_id"), nullable=False, index=True)
    sequence_id = db.Column(db.String(36), db.ForeignKey("sequences.sequence_id"), nullable=False)
    step_id = db.Column(db.String(36), db.ForeignKey("sequence_steps.step_id"), nullable=False)
    status = db.Column(db.String(32), nullable=False, index=True)
    due_at = db.Column(db.DateTime(timezone=True), nullable=False)
    attempt_count = db.Column(db.Integer, nullable=False, server_default="0")
    locked_at = db.Column(db.DateTime(timezone=True), nullable=True)
    lock_owner = db.Column(db.String(128), nullable=True)
    last_error = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)


class DispatchJobLine(db.Model):
    """Per-line payout figures for a job (optional; not every deployment has it)."""
    __bind_key__ = "dispatch"
    __tablename__ = "dispatch_job_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    job_id = db.Column(db.String(36), db.ForeignKey("dispatch_jobs.job_id"), nullable=False, index=True)
    description = db.Column(db.String(255), nullable=True)
    quantity = db.Column(db.Integer, nullable=False, default=1)
    payout_cents = db.Column(db.Integer, nullable=True)


class LegacyJob(db.Model):
    """
    Legacy jobs table. The payouts ledger was never migrated off its foreign
    key, so it only ever receives minimal shim rows.
    """
    __bind_key__ = "dispatch"
    __tablename__ = "jobs"

    job_id = db.Column(db.String(36), primary_key=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())


class PayoutLedgerEntry(db.Model):
    """
    Recipient payout entry.

    INVARIANT: one entry per (job_id, recipient_id, payout_type).
    """
    __bind_key__ = "dispatch"
    __tablename__ = "payouts_ledger"
    __table_args__ = (
        db.UniqueConstraint("job_id", "recipient_id", "payout_type", name="uq_payouts_ledger_job_recipient_type"),
    )

    payout_id = db.Column(db.String(36), primary_key=True)
    job_id = db.Column(db.String(36), db.ForeignKey("jobs.job_id"), nullable=False, index=True)
    recipient_id = db.Column(db.String(36), db.ForeignKey("recipients.recipient_id"), nullable=False, index=True)
    amount_cents = db.Column(db.Integer, nullable=False, server_default="0")
    payout_type = db.Column(db.String(16), nullable=False)
    status = db.Column(db.String(16), nullable=False, server_default="pending")
    period_start = db.Column(db.Date, nullable=True)
    period_end = db.Column(db.Date, nullable=True)
    note = db.Column(db.Text, nullable=True)
    reviewed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)
