"""
Order Service — Order/Payment Authority
Creates orders against captured Stripe payments (or cash on delivery),
holds the paid total in escrow and drives the order lifecycle.
"""

import logging
import uuid

from flask import current_app
from sqlalchemy.exc import IntegrityError

from src.errors import (
    ConflictError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    PaymentGatewayError,
    PaymentRequiredError,
    ValidationError,
)
from src.extensions import db
from src.models.order import CURRENCIES, PAYMENT_METHODS, Order, OrderItem
from src.models.product import Product
from src.models.transaction import Transaction
from src.services import escrow_service, verification_service
from src.services.payment_gateway import to_minor_units
from src.utils import money, parse_money, utcnow

logger = logging.getLogger(__name__)

VALID_TRANSITIONS = {
    "pending": {"confirmed", "cancelled", "failed"},
    "confirmed": {"processing", "shipped", "delivered", "cancelled", "refunded"},
    "processing": {"shipped", "delivered", "refunded"},
    "shipped": {"delivered", "refunded"},
    "delivered": {"refunded"},
    "cancelled": set(),
    "refunded": set(),
    "failed": set(),
}
CANCELLABLE_STATUSES = ("pending", "confirmed")
REQUIRED_SHIPPING_FIELDS = ("fullName", "phone", "address", "city", "postalCode")
MIN_INTENT_AMOUNT = money("0.50")
# Intents the buyer has confirmed whose funds have not landed yet
SETTLING_INTENT_STATUSES = ("processing", "requires_action")


def can_transition(current, new_status):
    return new_status in VALID_TRANSITIONS.get(current, set())


# --- Payment intents ----------------------------------------------------


def create_payment_intent(gateway, buyer_id, amount, currency=None, order_id=None):
    amount = parse_money(amount)
    if amount is None or amount < MIN_INTENT_AMOUNT:
        raise ValidationError(f"Invalid amount. Minimum is {MIN_INTENT_AMOUNT}")
    currency = (currency or current_app.config["DEFAULT_CURRENCY"]).upper()
    if currency not in CURRENCIES:
        raise ValidationError(f"Unsupported currency: {currency}")

    metadata = {"buyerId": buyer_id}
    if order_id:
        metadata["orderId"] = order_id

    try:
        intent = gateway.create_payment_intent(
            amount, currency, metadata=metadata, description=f"CultureKart order for buyer {buyer_id}"
        )
    except PaymentGatewayError as e:
        raise PaymentGatewayError("Payment gateway unavailable", code=e.code, status_code=503)

    return {
        "clientSecret": intent["client_secret"],
        "paymentIntentId": intent["id"],
        "amount": float(amount),
        "currency": currency,
    }


# --- Order creation -----------------------------------------------------


def _validate_items(raw_items):
    if not isinstance(raw_items, list) or not raw_items:
        raise ValidationError("Order must contain at least one item")

    lines = []
    for raw in raw_items:
        if not isinstance(raw, dict):
            raise ValidationError("Invalid order item")
        try:
            product_id = uuid.UUID(str(raw.get("product")))
        except ValueError:
            raise ValidationError(f"Invalid product id: {raw.get('product')}")

        qty = raw.get("qty", 1)
        if isinstance(qty, bool) or not isinstance(qty, int) or qty < 1:
            raise ValidationError("Item quantity must be a positive integer")

        product = db.session.get(Product, product_id)
        if not product:
            raise ValidationError(f"Product not found: {product_id}")

        if raw.get("price") is not None:
            price = parse_money(raw.get("price"))
            if price is None or price != money(product.price):
                raise ValidationError(f"Price mismatch for product {product_id}")

        lines.append((product, qty))

    artisans = {product.artisan_id for product, _ in lines}
    if len(artisans) > 1:
        raise ValidationError("All items in an order must come from the same artisan")
    return lines


def _validate_shipping(address):
    if not isinstance(address, dict):
        raise ValidationError("Shipping address is required")
    missing = [f for f in REQUIRED_SHIPPING_FIELDS if not str(address.get(f) or "").strip()]
    if missing:
        raise ValidationError(f"Missing shipping fields: {', '.join(missing)}", missingFields=missing)
    return address


def _validate_amounts(data, lines):
    subtotal = sum((money(product.price) * qty for product, qty in lines), money(0))
    shipping_cost = parse_money(data.get("shippingCost", 0))
    tax = parse_money(data.get("tax", 0))
    total = parse_money(data.get("total"))

    if shipping_cost is None or shipping_cost < 0 or tax is None or tax < 0:
        raise ValidationError("Invalid shipping cost or tax")
    if total is None:
        raise ValidationError("Order total is required")

    expected = subtotal + shipping_cost + tax
    if total != expected:
        raise ValidationError("Order total does not match items", expectedTotal=float(expected))
    return subtotal, shipping_cost, tax, total


def _build_order(buyer_id, data, lines, amounts, address, method, transaction_id):
    subtotal, shipping_cost, tax, total = amounts
    currency = (data.get("currency") or current_app.config["DEFAULT_CURRENCY"]).upper()
    if currency not in CURRENCIES:
        raise ValidationError(f"Unsupported currency: {currency}")

    order = Order(
        order_id=uuid.uuid4(),
        buyer_id=buyer_id,
        artisan_id=lines[0][0].artisan_id,
        subtotal=subtotal,
        shipping_cost=shipping_cost,
        tax=tax,
        total=total,
        currency=currency,
        status="pending",
        ship_full_name=address["fullName"].strip(),
        ship_phone=address["phone"].strip(),
        ship_address=address["address"].strip(),
        ship_city=address["city"].strip(),
        ship_state=(address.get("state") or "").strip(),
        ship_postal_code=address["postalCode"].strip(),
        ship_country=(address.get("country") or "Pakistan").strip(),
        payment_method=method,
        payment_status="pending",
        payment_transaction_id=transaction_id,
        escrow_released=False,
        notes=(data.get("notes") or "")[:500],
    )
    for position, (product, qty) in enumerate(lines):
        order.items.append(
            OrderItem(
                product=product,
                product_id=product.product_id,
                artisan_id=product.artisan_id,
                position=position,
                title=product.title,
                image=product.image or "",
                qty=qty,
                price=product.price,
            )
        )
    return order


def _check_intent(intent, order_total, currency):
    """
    Returns True when the intent has already succeeded, False when it is
    still settling and the order should wait in pending for the webhook.
    """
    status = intent["status"]
    if status != "succeeded" and status not in SETTLING_INTENT_STATUSES:
        raise PaymentRequiredError("Payment not completed", paymentStatus=status)
    if intent["amount"] != to_minor_units(order_total):
        raise ValidationError("Payment amount does not match order total")
    if intent["currency"].upper() != currency.upper():
        raise ValidationError("Payment currency does not match order currency")
    return status == "succeeded"


def capture_payment(order, transaction_id=None):
    """Confirm a paid order: escrow hold plus verification codes. The caller commits."""
    escrow_service.hold_in_escrow(order, transaction_id)
    order.status = "confirmed"
    verification_service.issue_codes_for_order(order)
    logger.info("Payment captured for order %s (%s)", order.order_id, order.payment_transaction_id)


def _lock_order(order_id):
    return Order.query.filter_by(order_id=order_id).with_for_update().populate_existing().one()


def _capture_pending(order):
    """Capture a card order still waiting on its payment. Commits."""
    order = _lock_order(order.order_id)
    if order.status == "pending" and order.payment_status == "pending":
        capture_payment(order)
    db.session.commit()
    return order


def _replay(gateway, order, buyer_id):
    if order.buyer_id != buyer_id:
        raise ConflictError("Payment transaction already belongs to another order")

    if order.status == "pending" and order.payment_status == "pending":
        intent = gateway.retrieve_payment_intent(order.payment_transaction_id)
        if intent["status"] == "succeeded":
            order = _capture_pending(order)

    logger.info("Idempotent replay of order %s for transaction %s", order.order_id, order.payment_transaction_id)
    return order, True


def create_order(gateway, buyer_id, data):
    """
    Create an order from the checkout payload. Commits.

    Returns (order, replayed). replayed is True when an order for the same
    payment transaction already existed and is returned instead.

    Raises:
        ValidationError: malformed payload, unknown product, total mismatch
        PaymentRequiredError: Stripe payment neither succeeded nor settling
        ConflictError: transaction id already used by another buyer
    """
    payment_info = data.get("paymentInfo") or {}
    method = payment_info.get("method")
    if method not in PAYMENT_METHODS:
        raise ValidationError(f"Payment method must be one of: {', '.join(PAYMENT_METHODS)}")

    transaction_id = (payment_info.get("transactionId") or "").strip() or None
    if method == "stripe":
        if not transaction_id:
            raise ValidationError("Payment transaction id is required")
        existing = Order.query.filter_by(payment_transaction_id=transaction_id).first()
        if existing:
            return _replay(gateway, existing, buyer_id)
    else:
        transaction_id = None

    lines = _validate_items(data.get("items"))
    address = _validate_shipping(data.get("shippingAddress"))
    amounts = _validate_amounts(data, lines)
    order = _build_order(buyer_id, data, lines, amounts, address, method, transaction_id)

    paid = False
    if method == "stripe":
        try:
            intent = gateway.retrieve_payment_intent(transaction_id)
        except PaymentGatewayError as e:
            if e.status_code == 400:
                raise ValidationError("Invalid payment transaction")
            raise
        paid = _check_intent(intent, order.total, order.currency)

    db.session.add(order)
    if paid:
        capture_payment(order)
    elif method == "stripe":
        logger.info("Order %s waits for payment %s to settle", order.order_id, transaction_id)

    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        existing = Order.query.filter_by(payment_transaction_id=transaction_id).first() if transaction_id else None
        if existing is None:
            raise
        return _replay(gateway, existing, buyer_id)

    logger.info("Order %s created by buyer %s (%s, %s)", order.order_id, buyer_id, method, order.status)
    return order, False


# --- Webhook events -----------------------------------------------------


def handle_payment_succeeded(intent):
    order = Order.query.filter_by(payment_transaction_id=intent["id"]).first()
    if not order:
        logger.info("payment_intent.succeeded for %s has no matching order", intent["id"])
        return None
    if order.payment_status != "pending" or order.status != "pending":
        return order
    if intent.get("amount") is not None and intent["amount"] != to_minor_units(order.total):
        logger.warning("payment_intent.succeeded for %s does not match order %s total", intent["id"], order.order_id)
        return order

    return _capture_pending(order)


def handle_payment_failed(intent):
    order = Order.query.filter_by(payment_transaction_id=intent["id"]).first()
    if not order:
        logger.info("payment_intent.payment_failed for %s has no matching order", intent["id"])
        return None
    order = _lock_order(order.order_id)
    if order.status != "pending":
        db.session.rollback()
        return order

    order.status = "failed"
    order.payment_status = "failed"
    db.session.commit()
    logger.warning("Payment failed for order %s", order.order_id)
    return order


# --- Queries ------------------------------------------------------------


def get_order_for(order_id, user):
    order = db.session.get(Order, order_id)
    if not order:
        raise NotFoundError("Order not found")
    if user.role != "admin" and user.user_id not in (order.buyer_id, order.artisan_id):
        raise ForbiddenError("Access denied")
    return order


def list_buyer_orders(buyer_id):
    return Order.query.filter_by(buyer_id=buyer_id).order_by(Order.created_at.desc()).all()


def list_artisan_orders(artisan_id, status=None):
    query = Order.query.filter_by(artisan_id=artisan_id)
    if status:
        query = query.filter(Order.status == status)
    return query.order_by(Order.created_at.desc()).all()


# --- Lifecycle ----------------------------------------------------------


def _refund_payment(gateway, order, reason):
    if order.payment_method == "stripe" and order.payment_transaction_id:
        gateway.refund(order.payment_transaction_id, order.total)

    order.payment_status = "refunded"
    order.refund_amount = order.total
    order.refund_reason = reason
    order.refunded_at = utcnow()

    Transaction.query.filter_by(order_id=order.order_id, type="escrow_hold", status="held").update(
        {Transaction.status: "refunded"}, synchronize_session=False
    )
    db.session.add(
        Transaction(
            order_id=order.order_id,
            artisan_id=order.artisan_id,
            buyer_id=order.buyer_id,
            type="refund",
            status="completed",
            total=order.total,
            stripe_payment_intent_id=order.payment_transaction_id,
            notes=reason,
        )
    )
    logger.info("Refunded %s for order %s", order.total, order.order_id)


def cancel_order(gateway, order_id, actor_id, reason=None):
    """
    Buyer cancellation, allowed while pending or confirmed. Commits.
    A paid order is refunded and its verification codes revoked.
    """
    order = db.session.get(Order, order_id)
    if not order or order.buyer_id != actor_id:
        raise NotFoundError("Order not found")
    if order.status not in CANCELLABLE_STATUSES:
        raise InvalidTransitionError(f"Cannot cancel order with status: {order.status}")

    if order.is_paid:
        if order.escrow_released:
            raise ConflictError("Escrow already released")
        _refund_payment(gateway, order, reason or "Order cancelled")

    verification_service.revoke_codes_for_order(order)
    order.status = "cancelled"
    order.cancellation_reason = reason or ""
    order.cancelled_at = utcnow()
    order.cancelled_by = actor_id
    db.session.commit()
    logger.info("Order %s cancelled by %s", order.order_id, actor_id)
    return order


def update_status(gateway, order_id, actor, new_status, carrier=None, tracking_number=None, reason=None):
    """
    Artisan/admin status change. Commits.

    Raises:
        NotFoundError / ForbiddenError: not the caller's order
        ValidationError: unknown status, or delivered (set through delivery confirmation)
        InvalidTransitionError: transition not allowed from the current status
    """
    order = db.session.get(Order, order_id)
    if not order:
        raise NotFoundError("Order not found")
    is_admin = actor.role == "admin"
    if not is_admin and order.artisan_id != actor.user_id:
        raise ForbiddenError("Access denied")

    if new_status not in VALID_TRANSITIONS:
        raise ValidationError(f"Unknown status: {new_status}")
    if new_status == "delivered":
        raise ValidationError("Delivery is confirmed by scanning the verification code or via delivery confirmation")
    if not can_transition(order.status, new_status):
        raise InvalidTransitionError(f"Cannot transition from {order.status} to {new_status}")

    if new_status == "confirmed":
        if order.payment_method != "cod":
            raise InvalidTransitionError("Card orders are confirmed when the payment is captured")
        verification_service.issue_codes_for_order(order)
    elif new_status == "shipped":
        order.carrier = carrier or order.carrier
        order.tracking_number = tracking_number or order.tracking_number
        order.shipped_at = utcnow()
    elif new_status == "refunded":
        if not is_admin:
            raise ForbiddenError("Only admins can refund orders")
        if not order.is_paid:
            raise ValidationError("Order payment not completed")
        if order.escrow_released:
            raise ConflictError("Escrow already released")
        _refund_payment(gateway, order, reason or "Refunded by admin")
        verification_service.revoke_codes_for_order(order)
    elif new_status == "cancelled":
        if order.is_paid:
            if order.escrow_released:
                raise ConflictError("Escrow already released")
            _refund_payment(gateway, order, reason or "Order cancelled")
        verification_service.revoke_codes_for_order(order)
        order.cancellation_reason = reason or ""
        order.cancelled_at = utcnow()
        order.cancelled_by = actor.user_id

    previous = order.status
    order.status = new_status
    db.session.commit()
    logger.info("Order %s: %s -> %s by %s", order.order_id, previous, new_status, actor.user_id)
    return order
