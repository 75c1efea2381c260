"""Initial orderflow schema (orders + traces; fulfillment store tables)

Multi-database revision (flask db init --multidb): the default engine holds
orders and checkout traces, the "dispatch" engine holds the fulfillment store.

Revision ID: of001_initial
Revises:
Create Date: 2026-10-17
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "of001_initial"
down_revision = None
branch_labels = None
depends_on = None

ACTIVE_JOB_PREDICATE = sa.text("status NOT IN ('completed', 'cancelled')")


def upgrade(engine_name):
    globals()["upgrade_%s" % engine_name]()


def downgrade(engine_name):
    globals()["downgrade_%s" % engine_name]()


# =============================================================================
# PRIMARY STORE
# =============================================================================

def upgrade_():
    op.create_table(
        "orders",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("order_code", sa.String(length=64), nullable=False),
        sa.Column("customer_email", sa.String(length=254), nullable=False),
        sa.Column("customer_name", sa.String(length=255), nullable=True),
        sa.Column("customer_phone", sa.String(length=64), nullable=True),
        sa.Column("items", sa.JSON(), nullable=False),
        sa.Column("subtotal_cents", sa.Integer(), nullable=False),
        sa.Column("total_cents", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(length=8), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("idempotency_key", sa.String(length=128), nullable=True),
        sa.Column("payment_session_id", sa.String(length=255), nullable=True),
        sa.Column("metadata_json", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("order_code"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_orders_customer_email", "orders", ["customer_email"])
    op.create_index("ix_orders_status", "orders", ["status"])
    op.create_index("ix_orders_idempotency_key", "orders", ["idempotency_key"], unique=True)
    op.create_index("ix_orders_payment_session_id", "orders", ["payment_session_id"])
    op.create_index("ix_orders_status_created", "orders", ["status", "created_at"])

    op.create_table(
        "checkout_traces",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("trace_id", sa.String(length=64), nullable=False),
        sa.Column("stage", sa.String(length=64), nullable=False),
        sa.Column("order_code", sa.String(length=64), nullable=True),
        sa.Column("job_id", sa.String(length=64), nullable=True),
        sa.Column("payment_session_id", sa.String(length=255), nullable=True),
        sa.Column("context_json", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_checkout_traces_trace_created", "checkout_traces", ["trace_id", "created_at"])

    op.create_table(
        "checkout_failures",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("trace_id", sa.String(length=64), nullable=False),
        sa.Column("stage", sa.String(length=64), nullable=False),
        sa.Column("error_code", sa.String(length=64), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("context_json", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_checkout_failures_trace_created", "checkout_failures", ["trace_id", "created_at"])


def downgrade_():
    op.drop_index("ix_checkout_failures_trace_created", table_name="checkout_failures")
    op.drop_table("checkout_failures")
    op.drop_index("ix_checkout_traces_trace_created", table_name="checkout_traces")
    op.drop_table("checkout_traces")
    for name in ("ix_orders_status_created", "ix_orders_payment_session_id", "ix_orders_idempotency_key",
                 "ix_orders_status", "ix_orders_customer_email"):
        op.drop_index(name, table_name="orders")
    op.drop_table("orders")


# =============================================================================
# FULFILLMENT STORE
# =============================================================================

def upgrade_dispatch():
    op.create_table(
        "recipients",
        sa.Column("recipient_id", sa.String(length=36), primary_key=True),
        sa.Column("email_normalized", sa.String(length=254), nullable=False),
        sa.Column("display_name", sa.String(length=255), nullable=True),
        sa.Column("recipient_key", sa.String(length=96), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("email_normalized"),
        sa.UniqueConstraint("recipient_key"),
    )

    op.create_table(
        "sequences",
        sa.Column("sequence_id", sa.String(length=36), primary_key=True),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        "sequence_steps",
        sa.Column("step_id", sa.String(length=36), primary_key=True),
        sa.Column("sequence_id", sa.String(length=36), sa.ForeignKey("sequences.sequence_id"), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_sequence_steps_sequence_id", "sequence_steps", ["sequence_id"])

    op.create_table(
        "dispatch_jobs",
        sa.Column("job_id", sa.String(length=36), primary_key=True),
        sa.Column("order_id", sa.String(length=64), nullable=True),
        sa.Column("recipient_id", sa.String(length=36), sa.ForeignKey("recipients.recipient_id"), nullable=False),
        sa.Column("sequence_id", sa.String(length=36), sa.ForeignKey("sequences.sequence_id"), nullable=False),
        sa.Column("step_id", sa.String(length=36), sa.ForeignKey("sequence_steps.step_id"), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("due_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("attempt_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("locked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("lock_owner", sa.String(length=128), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_dispatch_jobs_order_id", "dispatch_jobs", ["order_id"])
    op.create_index("ix_dispatch_jobs_recipient_id", "dispatch_jobs", ["recipient_id"])
    op.create_index("ix_dispatch_jobs_status", "dispatch_jobs", ["status"])
    op.create_index(
        "uq_dispatch_jobs_recipient_step_active",
        "dispatch_jobs",
        ["recipient_id", "step_id"],
        unique=True,
        sqlite_where=ACTIVE_JOB_PREDICATE,
        postgresql_where=ACTIVE_JOB_PREDICATE,
    )

    op.create_table(
        "dispatch_job_lines",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("job_id", sa.String(length=36), sa.ForeignKey("dispatch_jobs.job_id"), nullable=False),
        sa.Column("description", sa.String(length=255), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("payout_cents", sa.Integer(), nullable=True),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_dispatch_job_lines_job_id", "dispatch_job_lines", ["job_id"])

    op.create_table(
        "jobs",
        sa.Column("job_id", sa.String(length=36), primary_key=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        "payouts_ledger",
        sa.Column("payout_id", sa.String(length=36), primary_key=True),
        sa.Column("job_id", sa.String(length=36), sa.ForeignKey("jobs.job_id"), nullable=False),
        sa.Column("recipient_id", sa.String(length=36), sa.ForeignKey("recipients.recipient_id"), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("payout_type", sa.String(length=16), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
        sa.Column("period_start", sa.Date(), nullable=True),
        sa.Column("period_end", sa.Date(), nullable=True),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("job_id", "recipient_id", "payout_type", name="uq_payouts_ledger_job_recipient_type"),
    )
    op.create_index("ix_payouts_ledger_job_id", "payouts_ledger", ["job_id"])
    op.create_index("ix_payouts_ledger_recipient_id", "payouts_ledger", ["recipient_id"])


def downgrade_dispatch():
    op.drop_index("ix_payouts_ledger_recipient_id", table_name="payouts_ledger")
    op.drop_index("ix_payouts_ledger_job_id", table_name="payouts_ledger")
    op.drop_table("payouts_ledger")
    op.drop_table("jobs")
    op.drop_index("ix_dispatch_job_lines_job_id", table_name="dispatch_job_lines")
    op.drop_table("dispatch_job_lines")
    for name in ("uq_dispatch_jobs_recipient_step_active", "ix_dispatch_jobs_status",
                 "ix_dispatch_jobs_recipient_id", "ix_dispatch_jobs_order_id"):
        op.drop_index(name, table_name="dispatch_jobs")
    op.drop_table("dispatch_jobs")
    op.drop_index("ix_sequence_steps_sequence_id", table_name="sequence_steps")
    op.drop_table("sequence_steps")
    op.drop_table("sequences")
    op.drop_table("recipients")
