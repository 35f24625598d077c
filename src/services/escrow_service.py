"""
Escrow Service — Escrow Release Authority
Holds a paid order's funds, splits them into artisan payout and platform
commission, and releases the payout once an admin approves it.
"""

import logging
import uuid

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from src.errors import ConflictError, NotFoundError, ValidationError
from src.extensions import db
from src.models.order import Order
from src.models.transaction import Transaction
from src.services.commission import calculate_commission_split, commission_rate
from src.utils import isoformat, money, utcnow

logger = logging.getLogger(__name__)

# Paid orders whose escrow can still be waiting on a release
HELD_ORDER_STATUSES = ("confirmed", "processing", "shipped", "delivered")


def hold_in_escrow(order, transaction_id=None):
    """
    Mark the order's payment as completed and hold the total in escrow.
    Writes the escrow_hold ledger entry. The caller commits.
    """
    rate = commission_rate()
    split = calculate_commission_split(order.total, rate)

    order.payment_status = "completed"
    order.paid_at = utcnow()
    if transaction_id:
        order.payment_transaction_id = transaction_id

    order.escrow_amount = split["total"]
    order.commission_rate = rate
    order.platform_commission = split["platform_commission"]
    order.artisan_payout = split["artisan_share"]
    order.escrow_released = False

    db.session.add(
        Transaction(
            order_id=order.order_id,
            artisan_id=order.artisan_id,
            buyer_id=order.buyer_id,
            type="escrow_hold",
            status="held",
            total=split["total"],
            artisan_share=split["artisan_share"],
            platform_commission=split["platform_commission"],
            stripe_payment_intent_id=order.payment_transaction_id,
        )
    )
    logger.info(
        "Escrow hold for order %s: total=%s artisan=%s platform=%s",
        order.order_id,
        split["total"],
        split["artisan_share"],
        split["platform_commission"],
    )
    return split


def _pending_query():
    return Order.query.filter(
        Order.payment_status == "completed",
        Order.escrow_released.is_(False),
        Order.status.in_(HELD_ORDER_STATUSES),
    )


def list_pending(page=1, per_page=20, status=None):
    query = _pending_query()
    if status in HELD_ORDER_STATUSES:
        query = query.filter(Order.status == status)

    total_held = query.with_entities(func.coalesce(func.sum(Order.artisan_payout), 0)).scalar()
    pagination = query.order_by(Order.created_at.desc()).paginate(page=page, per_page=per_page, error_out=False)
    return pagination, money(total_held)


def list_released(page=1, per_page=20):
    return (
        Order.query.filter(Order.escrow_released.is_(True))
        .order_by(Order.escrow_released_at.desc())
        .paginate(page=page, per_page=per_page, error_out=False)
    )


def release_escrow(order_id, admin_id, notes=None):
    """
    Release a delivered order's escrow to the artisan. Commits.

    The flag flip is a conditional UPDATE so two concurrent releases of the
    same order cannot both succeed.

    Raises:
        NotFoundError: unknown order
        ConflictError: escrow already released
        ValidationError: order unpaid or not yet delivered
    """
    order = db.session.get(Order, order_id)
    if not order:
        raise NotFoundError("Order not found")
    if order.escrow_released:
        raise ConflictError("Escrow already released", releasedAt=isoformat(order.escrow_released_at))
    if order.payment_status != "completed":
        raise ValidationError("Order payment not completed")
    if order.status != "delivered":
        raise ValidationError(f"Order must be delivered before escrow release (status: {order.status})")

    released_at = utcnow()
    updated = (
        Order.query.filter(
            Order.order_id == order.order_id,
            Order.escrow_released.is_(False),
            Order.status == "delivered",
        ).update(
            {
                Order.escrow_released: True,
                Order.escrow_released_at: released_at,
                Order.escrow_released_by: admin_id,
                Order.escrow_release_notes: notes or "",
            },
            synchronize_session=False,
        )
    )
    if updated != 1:
        db.session.rollback()
        raise ConflictError("Escrow already released")

    Transaction.query.filter_by(order_id=order.order_id, type="escrow_hold", status="held").update(
        {Transaction.status: "completed"}, synchronize_session=False
    )
    for tx_type in ("artisan_payout", "platform_commission"):
        db.session.add(
            Transaction(
                order_id=order.order_id,
                artisan_id=order.artisan_id,
                buyer_id=order.buyer_id,
                type=tx_type,
                status="completed",
                total=order.escrow_amount,
                artisan_share=order.artisan_payout,
                platform_commission=order.platform_commission,
                stripe_payment_intent_id=order.payment_transaction_id,
                notes=notes,
            )
        )

    db.session.commit()
    db.session.refresh(order)
    logger.info("Escrow released for order %s by admin %s: %s", order.order_id, admin_id, order.artisan_payout)
    return order


def bulk_release(order_ids, admin_id, notes=None):
    """
    Release each order independently. Every order gets its own transaction,
    so one failure never rolls back or blocks the others.
    """
    results = {"successful": [], "failed": []}

    for raw_id in order_ids:
        order_id = _parse_uuid(raw_id)
        if order_id is None:
            results["failed"].append({"orderId": str(raw_id), "reason": "Invalid order id"})
            continue
        try:
            release_escrow(order_id, admin_id, notes)
            results["successful"].append(str(raw_id))
        except (NotFoundError, ConflictError, ValidationError) as e:
            db.session.rollback()
            results["failed"].append({"orderId": str(raw_id), "reason": e.message})
        except SQLAlchemyError:
            db.session.rollback()
            logger.exception("Database error releasing escrow for order %s", raw_id)
            results["failed"].append({"orderId": str(raw_id), "reason": "Database error"})

    logger.info(
        "Bulk escrow release by admin %s: %d released, %d failed",
        admin_id,
        len(results["successful"]),
        len(results["failed"]),
    )
    return results


def get_stats():
    pending_count, pending_amount = (
        _pending_query().with_entities(func.count(Order.order_id), func.coalesce(func.sum(Order.artisan_payout), 0)).one()
    )
    released_count, released_amount = (
        Order.query.filter(Order.escrow_released.is_(True))
        .with_entities(func.count(Order.order_id), func.coalesce(func.sum(Order.artisan_payout), 0))
        .one()
    )
    return {
        "pendingAmount": float(money(pending_amount)),
        "pendingCount": pending_count,
        "releasedAmount": float(money(released_amount)),
        "releasedCount": released_count,
    }


def _parse_uuid(value):
    try:
        return uuid.UUID(str(value))
    except (ValueError, TypeError, AttributeError):
        return None
