"""
Order Model — Order/Payment Authority
Status: pending | confirmed | processing | shipped | delivered | cancelled | refunded | failed
"""

import uuid
from datetime import datetime, timezone

from src.extensions import db
from src.utils import isoformat, to_float

ORDER_STATUSES = (
    "pending",
    "confirmed",
    "processing",
    "shipped",
    "delivered",
    "cancelled",
    "refunded",
    "failed",
)
PAYMENT_STATUSES = ("pending", "completed", "failed", "refunded")
PAYMENT_METHODS = ("stripe", "cod")
CURRENCIES = ("USD", "PKR", "EUR", "GBP")


def _now():
    return datetime.now(timezone.utc)


class Order(db.Model):
    __tablename__ = "orders"

    order_id = db.Column(db.Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    buyer_id = db.Column(db.Uuid(as_uuid=True), db.ForeignKey("users.user_id"), nullable=False, index=True)
    artisan_id = db.Column(db.Uuid(as_uuid=True), db.ForeignKey("users.user_id"), nullable=False, index=True)

    subtotal = db.Column(db.Numeric(10, 2), nullable=False)
    shipping_cost = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    tax = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    total = db.Column(db.Numeric(10, 2), nullable=False)
    currency = db.Column(db.Enum(*CURRENCIES, name="order_currency"), nullable=False, default="PKR")
    status = db.Column(db.Enum(*ORDER_STATUSES, name="order_status"), nullable=False, default="pending", index=True)

    # Shipping address
    ship_full_name = db.Column(db.String(200), nullable=False)
    ship_phone = db.Column(db.String(40), nullable=False)
    ship_address = db.Column(db.Text, nullable=False)
    ship_city = db.Column(db.String(100), nullable=False)
    ship_state = db.Column(db.String(100), nullable=False, default="")
    ship_postal_code = db.Column(db.String(20), nullable=False)
    ship_country = db.Column(db.String(100), nullable=False, default="Pakistan")

    # Payment
    payment_method = db.Column(db.Enum(*PAYMENT_METHODS, name="payment_method"), nullable=False)
    payment_status = db.Column(db.Enum(*PAYMENT_STATUSES, name="payment_status"), nullable=False, default="pending")
    # Stripe PaymentIntent id; doubles as the idempotency key for order creation
    payment_transaction_id = db.Column(db.String(255), unique=True, nullable=True)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Escrow split, filled in when payment completes
    escrow_amount = db.Column(db.Numeric(10, 2), nullable=True)
    commission_rate = db.Column(db.Numeric(5, 4), nullable=True)
    platform_commission = db.Column(db.Numeric(10, 2), nullable=True)
    artisan_payout = db.Column(db.Numeric(10, 2), nullable=True)
    escrow_released = db.Column(db.Boolean, nullable=False, default=False, index=True)
    escrow_released_at = db.Column(db.DateTime(timezone=True), nullable=True)
    escrow_released_by = db.Column(db.Uuid(as_uuid=True), nullable=True)
    escrow_release_notes = db.Column(db.Text, nullable=True)

    # Fulfilment
    carrier = db.Column(db.String(100), nullable=False, default="")
    tracking_number = db.Column(db.String(100), nullable=False, default="")
    shipped_at = db.Column(db.DateTime(timezone=True), nullable=True)
    delivered_at = db.Column(db.DateTime(timezone=True), nullable=True)
    delivery_confirmed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    delivery_confirmed_by = db.Column(db.String(255), nullable=True)

    cancellation_reason = db.Column(db.Text, nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_by = db.Column(db.Uuid(as_uuid=True), nullable=True)

    refund_amount = db.Column(db.Numeric(10, 2), nullable=True)
    refund_reason = db.Column(db.Text, nullable=True)
    refunded_at = db.Column(db.DateTime(timezone=True), nullable=True)

    notes = db.Column(db.String(500), nullable=False, default="")
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_now, index=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_now, onupdate=_now)

    items = db.relationship(
        "OrderItem", back_populates="order", cascade="all, delete-orphan", order_by="OrderItem.position"
    )
    authentication_codes = db.relationship("VerificationCode", back_populates="order", lazy="select")
    buyer = db.relationship("User", foreign_keys=[buyer_id], lazy="joined")

    @property
    def is_paid(self):
        return self.payment_status == "completed"

    @property
    def order_number(self):
        return str(self.order_id).replace("-", "")[-8:].upper()

    def to_dict(self, include_codes=False):
        data = {
            "id": str(self.order_id),
            "orderNumber": self.order_number,
            "buyer": str(self.buyer_id),
            "artisan": str(self.artisan_id),
            "items": [item.to_dict() for item in self.items],
            "subtotal": to_float(self.subtotal),
            "shippingCost": to_float(self.shipping_cost),
            "tax": to_float(self.tax),
            "total": to_float(self.total),
            "currency": self.currency,
            "status": self.status,
            "shippingAddress": {
                "fullName": self.ship_full_name,
                "phone": self.ship_phone,
                "address": self.ship_address,
                "city": self.ship_city,
                "state": self.ship_state,
                "postalCode": self.ship_postal_code,
                "country": self.ship_country,
            },
            "paymentInfo": {
                "method": self.payment_method,
                "transactionId": self.payment_transaction_id or "",
                "status": self.payment_status,
                "paidAt": isoformat(self.paid_at),
            },
            "paymentDistribution": {
                "escrowAmount": to_float(self.escrow_amount),
                "escrowReleased": self.escrow_released,
                "artisanPayout": {
                    "amount": to_float(self.artisan_payout),
                    "paid": self.escrow_released,
                    "escrowReleasedAt": isoformat(self.escrow_released_at),
                    "escrowReleasedBy": str(self.escrow_released_by) if self.escrow_released_by else None,
                    "escrowReleaseNotes": self.escrow_release_notes or "",
                },
                "platformCommission": {
                    "amount": to_float(self.platform_commission),
                    "rate": to_float(self.commission_rate),
                },
            },
            "shippingDetails": {
                "carrier": self.carrier,
                "trackingNumber": self.tracking_number,
                "shippedAt": isoformat(self.shipped_at),
                "deliveredAt": isoformat(self.delivered_at),
                "deliveryConfirmedAt": isoformat(self.delivery_confirmed_at),
            },
            "cancellation": {
                "reason": self.cancellation_reason or "",
                "cancelledAt": isoformat(self.cancelled_at),
            },
            "refund": {
                "amount": to_float(self.refund_amount),
                "reason": self.refund_reason or "",
                "refundedAt": isoformat(self.refunded_at),
            },
            "notes": self.notes,
            "createdAt": isoformat(self.created_at),
            "updatedAt": isoformat(self.updated_at),
        }
        if include_codes:
            data["authenticationCodes"] = [code.to_summary() for code in self.authentication_codes]
        return data


class OrderItem(db.Model):
    __tablename__ = "order_items"

    item_id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    order_id = db.Column(db.Uuid(as_uuid=True), db.ForeignKey("orders.order_id"), nullable=False, index=True)
    product_id = db.Column(db.Uuid(as_uuid=True), db.ForeignKey("products.product_id"), nullable=False)
    artisan_id = db.Column(db.Uuid(as_uuid=True), nullable=False)
    position = db.Column(db.Integer, nullable=False, default=0)
    # Snapshot at time of purchase
    title = db.Column(db.String(255), nullable=False)
    image = db.Column(db.Text, nullable=False, default="")
    qty = db.Column(db.Integer, nullable=False)
    price = db.Column(db.Numeric(10, 2), nullable=False)

    order = db.relationship("Order", back_populates="items")
    product = db.relationship("Product")

    def to_dict(self):
        return {
            "product": str(self.product_id),
            "artisan": str(self.artisan_id),
            "title": self.title,
            "image": self.image,
            "qty": self.qty,
            "price": to_float(self.price),
        }
