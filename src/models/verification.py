"""
Verification Code Model — one-time delivery codes printed on packaging.
Status: active | verified | delivered | revoked | expired
"""

import uuid
from datetime import datetime, timezone

from flask import current_app

from src.extensions import db
from src.utils import isoformat, to_float

CODE_STATUSES = ("active", "verified", "delivered", "revoked", "expired")
ATTEMPT_STATUSES = ("success", "failed", "suspicious")


class VerificationCode(db.Model):
    __tablename__ = "verification_codes"
    __table_args__ = (db.UniqueConstraint("order_id", "product_id", name="uq_verification_order_product"),)

    code_id = db.Column(db.Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    order_id = db.Column(db.Uuid(as_uuid=True), db.ForeignKey("orders.order_id"), nullable=False, index=True)
    product_id = db.Column(db.Uuid(as_uuid=True), db.ForeignKey("products.product_id"), nullable=False, index=True)

    public_code = db.Column(db.String(64), unique=True, nullable=False, index=True)
    # Never exposed; binds the public code to order, product and salt
    internal_hash = db.Column(db.String(64), unique=True, nullable=False)
    security_salt = db.Column(db.String(32), nullable=False)
    issued_at = db.Column(db.DateTime(timezone=True), nullable=False)

    # Snapshots taken at issue time
    snapshot_title = db.Column(db.String(255), nullable=False)
    snapshot_price = db.Column(db.Numeric(10, 2), nullable=False)
    snapshot_artisan = db.Column(db.String(200), nullable=False, default="Unknown")
    snapshot_ipfs_hash = db.Column(db.String(128), nullable=False, default="")
    snapshot_blockchain_txn = db.Column(db.String(128), nullable=False, default="")
    snapshot_order_date = db.Column(db.DateTime(timezone=True), nullable=True)
    snapshot_order_total = db.Column(db.Numeric(10, 2), nullable=True)
    snapshot_customer_name = db.Column(db.String(200), nullable=False, default="Customer")

    qr_code_data = db.Column(db.Text, nullable=False)
    verification_status = db.Column(db.Enum(*CODE_STATUSES, name="code_status"), nullable=False, default="active")

    delivery_confirmed = db.Column(db.Boolean, nullable=False, default=False)
    delivery_confirmed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    delivery_confirmed_by = db.Column(db.String(255), nullable=True)
    delivery_location = db.Column(db.String(100), nullable=True)
    device_fingerprint = db.Column(db.String(255), nullable=True)

    first_verified_at = db.Column(db.DateTime(timezone=True), nullable=True)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=True)
    is_suspicious = db.Column(db.Boolean, nullable=False, default=False)
    suspicious_notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))

    order = db.relationship("Order", back_populates="authentication_codes")
    product = db.relationship("Product", lazy="joined")
    attempts = db.relationship(
        "VerificationAttempt",
        back_populates="code",
        order_by="VerificationAttempt.attempt_id",
        cascade="all, delete-orphan",
    )

    @property
    def qr_code_url(self):
        base_url = current_app.config["FRONTEND_URL"].rstrip("/")
        return f"{base_url}/verify/{self.public_code}"

    def to_summary(self):
        return {
            "productId": str(self.product_id),
            "publicCode": self.public_code,
            "qrCodeUrl": self.qr_code_url,
            "verificationStatus": self.verification_status,
            "deliveryConfirmed": self.delivery_confirmed,
        }

    def product_snapshot(self):
        return {
            "title": self.snapshot_title,
            "price": to_float(self.snapshot_price),
            "artisan": self.snapshot_artisan,
            "ipfsHash": self.snapshot_ipfs_hash or None,
            "blockchainTxn": self.snapshot_blockchain_txn or None,
            "orderDate": isoformat(self.snapshot_order_date),
        }


class VerificationAttempt(db.Model):
    __tablename__ = "verification_attempts"

    attempt_id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    code_id = db.Column(db.Uuid(as_uuid=True), db.ForeignKey("verification_codes.code_id"), nullable=False, index=True)
    timestamp = db.Column(db.DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    ip_address = db.Column(db.String(64), nullable=False, default="unknown")
    user_agent = db.Column(db.Text, nullable=False, default="unknown")
    location = db.Column(db.String(100), nullable=False, default="unknown")
    status = db.Column(db.Enum(*ATTEMPT_STATUSES, name="attempt_status"), nullable=False)

    code = db.relationship("VerificationCode", back_populates="attempts")
