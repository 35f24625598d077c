"""
Ledger Transaction Model
Type: escrow_hold | artisan_payout | platform_commission | refund
"""

import uuid
from datetime import datetime, timezone

from src.extensions import db
from src.utils import isoformat, to_float

TRANSACTION_TYPES = ("escrow_hold", "artisan_payout", "platform_commission", "refund")
TRANSACTION_STATUSES = ("pending", "held", "completed", "failed", "refunded")


class Transaction(db.Model):
    __tablename__ = "transactions"

    transaction_id = db.Column(db.Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    order_id = db.Column(db.Uuid(as_uuid=True), db.ForeignKey("orders.order_id"), nullable=False, index=True)
    artisan_id = db.Column(db.Uuid(as_uuid=True), nullable=False, index=True)
    buyer_id = db.Column(db.Uuid(as_uuid=True), nullable=False)
    type = db.Column(db.Enum(*TRANSACTION_TYPES, name="transaction_type"), nullable=False)
    status = db.Column(db.Enum(*TRANSACTION_STATUSES, name="transaction_status"), nullable=False, default="pending")
    total = db.Column(db.Numeric(10, 2), nullable=False)
    artisan_share = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    platform_commission = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    stripe_payment_intent_id = db.Column(db.String(255), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc), index=True
    )

    order = db.relationship("Order")

    def to_dict(self):
        return {
            "id": str(self.transaction_id),
            "orderId": str(self.order_id),
            "artisan": str(self.artisan_id),
            "buyer": str(self.buyer_id),
            "type": self.type,
            "status": self.status,
            "amounts": {
                "total": to_float(self.total),
                "artisanShare": to_float(self.artisan_share),
                "platformCommission": to_float(self.platform_commission),
            },
            "notes": self.notes or "",
            "createdAt": isoformat(self.created_at),
        }
