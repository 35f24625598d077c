"""
Delivery Service
Moves orders to delivered, either when every verification code on the
order has been scanned and confirmed or when the artisan/admin confirms
the delivery by hand. Cash-on-delivery orders are paid (and go into
escrow) at this point.
"""

import logging

from src.errors import ConflictError, NotFoundError, ValidationError
from src.extensions import db
from src.models.order import Order
from src.models.verification import VerificationCode
from src.services import escrow_service
from src.utils import isoformat, utcnow

logger = logging.getLogger(__name__)

DELIVERABLE_STATUSES = ("confirmed", "processing", "shipped")


def mark_order_delivered(order, confirmed_by, now=None):
    """Flip the order to delivered. The caller commits."""
    now = now or utcnow()
    order.status = "delivered"
    order.delivered_at = now
    order.delivery_confirmed_at = now
    order.delivery_confirmed_by = confirmed_by

    if order.payment_method == "cod" and order.payment_status == "pending":
        escrow_service.hold_in_escrow(order)

    logger.info("Order %s delivered (confirmed by %s)", order.order_id, confirmed_by)
    return order


def confirm_order_delivery(order_id, actor_id, is_admin=False):
    """
    Manual delivery confirmation by the order's artisan or an admin. Commits.

    Raises:
        NotFoundError: unknown order, or not the caller's order
        ConflictError: already delivered
        ValidationError: order not paid / not in a deliverable state
    """
    order = Order.query.filter_by(order_id=order_id).with_for_update().populate_existing().first()
    if not order or (not is_admin and order.artisan_id != actor_id):
        raise NotFoundError("Order not found")
    if order.status == "delivered":
        raise ConflictError("Delivery already confirmed", confirmedAt=isoformat(order.delivery_confirmed_at))
    if order.payment_method == "stripe" and not order.is_paid:
        raise ValidationError("Order payment not completed")
    if order.status not in DELIVERABLE_STATUSES:
        raise ValidationError(f"Order cannot be delivered from status {order.status}")

    now = utcnow()
    confirmed_by = str(actor_id)
    VerificationCode.query.filter(
        VerificationCode.order_id == order.order_id,
        VerificationCode.delivery_confirmed.is_(False),
    ).update(
        {
            VerificationCode.delivery_confirmed: True,
            VerificationCode.delivery_confirmed_at: now,
            VerificationCode.delivery_confirmed_by: confirmed_by,
            VerificationCode.delivery_location: "manual",
            VerificationCode.verification_status: "delivered",
        },
        synchronize_session=False,
    )

    mark_order_delivered(order, confirmed_by=confirmed_by, now=now)
    db.session.commit()
    return order


def pending_deliveries(artisan_id):
    return (
        Order.query.filter(
            Order.artisan_id == artisan_id,
            Order.status.in_(DELIVERABLE_STATUSES),
        )
        .order_by(Order.created_at.desc())
        .all()
    )


def completed_deliveries(artisan_id):
    return (
        Order.query.filter(Order.artisan_id == artisan_id, Order.status == "delivered")
        .order_by(Order.delivered_at.desc())
        .all()
    )
