"""
Withdrawal Model — artisan payout requests
Status: pending | approved | processing | completed | rejected | failed | cancelled
"""

import uuid
from datetime import datetime, timezone

from src.extensions import db
from src.utils import isoformat, to_float

WITHDRAWAL_STATUSES = ("pending", "approved", "processing", "completed", "rejected", "failed", "cancelled")
APPROVAL_STATUSES = ("pending", "approved", "rejected")
# Withdrawals that hold on to part of the released balance
COMMITTED_STATUSES = ("pending", "approved", "processing", "completed")
OPEN_STATUSES = ("pending", "approved", "processing")


class Withdrawal(db.Model):
    __tablename__ = "withdrawals"

    withdrawal_id = db.Column(db.Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    artisan_id = db.Column(db.Uuid(as_uuid=True), db.ForeignKey("users.user_id"), nullable=False, index=True)
    amount = db.Column(db.Numeric(10, 2), nullable=False)
    processing_fee = db.Column(db.Numeric(10, 2), nullable=False)
    net_amount = db.Column(db.Numeric(10, 2), nullable=False)
    currency = db.Column(db.String(3), nullable=False, default="PKR")

    bank_name = db.Column(db.String(200), nullable=False)
    account_number = db.Column(db.String(100), nullable=False)
    account_title = db.Column(db.String(200), nullable=False)
    routing_number = db.Column(db.String(100), nullable=False, default="")

    status = db.Column(db.Enum(*WITHDRAWAL_STATUSES, name="withdrawal_status"), nullable=False, default="pending", index=True)

    approval_status = db.Column(db.Enum(*APPROVAL_STATUSES, name="approval_status"), nullable=False, default="pending")
    approved_by = db.Column(db.Uuid(as_uuid=True), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejected_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)
    admin_notes = db.Column(db.Text, nullable=True)

    # Artisan's own note, separate from anything the admin writes
    notes = db.Column(db.Text, nullable=False, default="")

    stripe_payout_id = db.Column(db.String(255), unique=True, nullable=True)
    requested_at = db.Column(
        db.DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc), index=True
    )
    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    estimated_arrival = db.Column(db.DateTime(timezone=True), nullable=True)
    failure_reason = db.Column(db.Text, nullable=True)
    failure_code = db.Column(db.String(100), nullable=True)

    artisan = db.relationship("User", lazy="joined")

    def to_dict(self, include_admin=True):
        data = {
            "id": str(self.withdrawal_id),
            "artisan": str(self.artisan_id),
            "amount": to_float(self.amount),
            "processingFee": to_float(self.processing_fee),
            "netAmount": to_float(self.net_amount),
            "currency": self.currency,
            "bankDetails": {
                "bankName": self.bank_name,
                "accountNumber": self.account_number,
                "accountTitle": self.account_title,
                "routingNumber": self.routing_number,
            },
            "status": self.status,
            "notes": self.notes,
            "stripePayoutId": self.stripe_payout_id,
            "requestedAt": isoformat(self.requested_at),
            "processedAt": isoformat(self.processed_at),
            "completedAt": isoformat(self.completed_at),
            "estimatedArrival": isoformat(self.estimated_arrival),
            "failureReason": self.failure_reason,
            "failureCode": self.failure_code,
            "adminApproval": {
                "status": self.approval_status,
                "approvedAt": isoformat(self.approved_at),
                "rejectedAt": isoformat(self.rejected_at),
                "rejectionReason": self.rejection_reason,
            },
        }
        if include_admin:
            data["adminApproval"]["approvedBy"] = str(self.approved_by) if self.approved_by else None
            data["adminApproval"]["adminNotes"] = self.admin_notes
        return data
