from __future__ import annotations

from ..extensions import db
from orderflow.time_utils import to_utc_z


class Order(db.Model):
    """
    Canonical record of commercial intent (primary store).

    subtotal_cents and the payout figures frozen into metadata_json are
    computed once from the submitted cart and never re-derived from the
    amount actually collected.

    STATUS: pending_payment -> pending -> paid | cancelled
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-shareable code (e.g. "ORD-MB3X9K2A1B2C3D4")
    order_code = db.Column(db.String(64), nullable=False, unique=True)

    customer_email = db.Column(db.String(254), nullable=False, index=True)
    customer_name = db.Column(db.String(255), nullable=True)
    customer_phone = db.Column(db.String(64), nullable=True)

    # [{name, unit_price_cents, quantity, line_total_cents, metadata}]
    items = db.Column(db.JSON, nullable=False, default=list)

    subtotal_cents = db.Column(db.Integer, nullable=False)
    total_cents = db.Column(db.Integer, nullable=False)
    currency = db.Column(db.String(8), nullable=False, default="usd")

    status = db.Column(db.String(32), nullable=False, default="pending_payment", index=True)

    idempotency_key = db.Column(db.String(128), nullable=True, unique=True, index=True)
    payment_session_id = db.Column(db.String(255), nullable=True, index=True)
    payment_intent_id = db.Column(db.String(255), nullable=True, index=True)

    metadata_json = db.Column(db.JSON, nullable=False, default=dict)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_code": self.order_code,
            "customer_email": self.customer_email,
            "customer_name": self.customer_name,
            "customer_phone": self.customer_phone,
            "items": self.items,
            "subtotal_cents": self.subtotal_cents,
            "total_cents": self.total_cents,
            "currency": self.currency,
            "status": self.status,
            "idempotency_key": self.idempotency_key,
            "payment_session_id": self.payment_session_id,
            "payment_intent_id": self.payment_intent_id,
            "metadata": self.metadata_json or {},
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at) if self.updated_at else None,
            "paid_at": to_utc_z(self.paid_at) if self.paid_at else None,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
        }
