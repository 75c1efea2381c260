"""Payment intent + cancellation on orders; review timestamp on payouts

Revision ID: of002_payment_events
Revises: of001_initial
Create Date: 2026-10-17
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "of002_payment_events"
down_revision = "of001_initial"
branch_labels = None
depends_on = None


def upgrade(engine_name):
    globals()["upgrade_%s" % engine_name]()


def downgrade(engine_name):
    globals()["downgrade_%s" % engine_name]()


def upgrade_():
    with op.batch_alter_table("orders") as batch_op:
        batch_op.add_column(sa.Column("payment_intent_id", sa.String(length=255), nullable=True))
        batch_op.add_column(sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True))
        batch_op.create_index("ix_orders_payment_intent_id", ["payment_intent_id"])


def downgrade_():
    with op.batch_alter_table("orders") as batch_op:
        batch_op.drop_index("ix_orders_payment_intent_id")
        batch_op.drop_column("cancelled_at")
        batch_op.drop_column("payment_intent_id")


def upgrade_dispatch():
    with op.batch_alter_table("payouts_ledger") as batch_op:
        batch_op.add_column(sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True))


def downgrade_dispatch():
    with op.batch_alter_table("payouts_ledger") as batch_op:
        batch_op.drop_column("reviewed_at")
