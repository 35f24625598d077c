"""
Withdrawal Service — Withdrawal Authority
Artisans withdraw released escrow to their bank; admins approve or reject
each request and approved requests are paid out through Stripe.

Lifecycle:
    pending -> approved -> processing -> completed
    pending -> rejected | cancelled
    approved / processing -> failed
"""

import logging
from datetime import timedelta

from flask import current_app
from sqlalchemy import func

from src.errors import (
    ConflictError,
    InsufficientBalanceError,
    InvalidTransitionError,
    NotFoundError,
    PaymentGatewayError,
    ValidationError,
)
from src.extensions import db
from src.models.order import Order
from src.models.user import User
from src.models.withdrawal import COMMITTED_STATUSES, OPEN_STATUSES, Withdrawal
from src.services.commission import calculate_withdrawal_fee, withdrawal_fee_rate
from src.utils import money, parse_money, utcnow

logger = logging.getLogger(__name__)

REQUIRED_BANK_FIELDS = ("bankName", "accountNumber", "accountTitle")
ESTIMATED_PAYOUT_DELAY = timedelta(days=5)


def _sum(query, column):
    return money(query.with_entities(func.coalesce(func.sum(column), 0)).scalar())


def balance_summary(artisan_id, lock=False):
    """
    Balance figures for one artisan.

    With lock=True the artisan's user row is locked (SELECT ... FOR UPDATE)
    so concurrent withdrawal requests and approvals for the same artisan
    are serialized against each other.
    """
    if lock:
        User.query.filter_by(user_id=artisan_id).with_for_update().first()

    paid_orders = Order.query.filter(Order.artisan_id == artisan_id, Order.payment_status == "completed")
    pending_escrow = _sum(paid_orders.filter(Order.escrow_released.is_(False)), Order.artisan_payout)
    released = _sum(paid_orders.filter(Order.escrow_released.is_(True)), Order.artisan_payout)

    withdrawals = Withdrawal.query.filter(Withdrawal.artisan_id == artisan_id)
    committed = _committed(artisan_id)
    withdrawn = _sum(withdrawals.filter(Withdrawal.status == "completed"), Withdrawal.amount)
    open_amount = _sum(withdrawals.filter(Withdrawal.status.in_(OPEN_STATUSES)), Withdrawal.amount)

    return {
        "totalEscrow": released,
        "availableBalance": max(released - committed, money(0)),
        "pendingBalance": pending_escrow,
        "totalWithdrawn": withdrawn,
        "pendingWithdrawals": open_amount,
    }


def _committed(artisan_id):
    return _sum(
        Withdrawal.query.filter(Withdrawal.artisan_id == artisan_id, Withdrawal.status.in_(COMMITTED_STATUSES)),
        Withdrawal.amount,
    )


def balance_dict(summary):
    return {key: float(value) for key, value in summary.items()}


def _validate_bank_details(bank_details):
    if not isinstance(bank_details, dict):
        raise ValidationError("Bank details are required")
    missing = [f for f in REQUIRED_BANK_FIELDS if not str(bank_details.get(f) or "").strip()]
    if missing:
        raise ValidationError(f"Missing bank details: {', '.join(missing)}")
    return bank_details


def create_withdrawal(artisan_id, amount, bank_details, notes=None):
    """
    Raises:
        ValidationError: bad amount, below minimum, missing bank details
        ConflictError: artisan already has an open withdrawal
        InsufficientBalanceError: amount exceeds the available balance
    """
    amount = parse_money(amount)
    minimum = money(current_app.config["MIN_WITHDRAWAL_AMOUNT"])
    if amount is None or amount <= 0:
        raise ValidationError("Invalid withdrawal amount")
    if amount < minimum:
        raise ValidationError(f"Minimum withdrawal amount is {minimum}")
    bank_details = _validate_bank_details(bank_details)

    summary = balance_summary(artisan_id, lock=True)

    open_request = Withdrawal.query.filter(
        Withdrawal.artisan_id == artisan_id, Withdrawal.status.in_(OPEN_STATUSES)
    ).first()
    if open_request:
        db.session.rollback()
        raise ConflictError("You already have a withdrawal in progress", withdrawalId=str(open_request.withdrawal_id))

    if amount > summary["availableBalance"]:
        db.session.rollback()
        raise InsufficientBalanceError(
            "Insufficient balance",
            details={
                "requested": float(amount),
                "available": float(summary["availableBalance"]),
                "pending": float(summary["pendingBalance"]),
            },
        )

    fee = calculate_withdrawal_fee(amount, withdrawal_fee_rate())
    requested_at = utcnow()
    withdrawal = Withdrawal(
        artisan_id=artisan_id,
        amount=fee["amount"],
        processing_fee=fee["processing_fee"],
        net_amount=fee["net_amount"],
        currency=current_app.config["DEFAULT_CURRENCY"],
        bank_name=bank_details["bankName"].strip(),
        account_number=str(bank_details["accountNumber"]).strip(),
        account_title=bank_details["accountTitle"].strip(),
        routing_number=str(bank_details.get("routingNumber") or "").strip(),
        notes=notes or "",
        status="pending",
        approval_status="pending",
        requested_at=requested_at,
        estimated_arrival=requested_at + ESTIMATED_PAYOUT_DELAY,
    )
    db.session.add(withdrawal)
    db.session.commit()
    logger.info("Withdrawal %s requested by artisan %s: %s", withdrawal.withdrawal_id, artisan_id, amount)

    summary["availableBalance"] -= amount
    return withdrawal, summary


def list_for_artisan(artisan_id, status=None, page=1, per_page=20):
    query = Withdrawal.query.filter_by(artisan_id=artisan_id)
    if status:
        query = query.filter(Withdrawal.status == status)
    return query.order_by(Withdrawal.requested_at.desc()).paginate(page=page, per_page=per_page, error_out=False)


def get_withdrawal(withdrawal_id, artisan_id=None):
    withdrawal = db.session.get(Withdrawal, withdrawal_id)
    if not withdrawal or (artisan_id is not None and withdrawal.artisan_id != artisan_id):
        raise NotFoundError("Withdrawal not found")
    return withdrawal


def _leave_pending(withdrawal, values, action):
    """
    Move a request out of pending with a conditional UPDATE so that only one
    of approve, reject and cancel can win. The caller commits.
    """
    updated = Withdrawal.query.filter(
        Withdrawal.withdrawal_id == withdrawal.withdrawal_id,
        Withdrawal.status == "pending",
    ).update(values, synchronize_session=False)
    if updated != 1:
        db.session.rollback()
        db.session.refresh(withdrawal)
        raise InvalidTransitionError(f"Cannot {action} withdrawal with status: {withdrawal.status}")


def cancel_withdrawal(withdrawal_id, artisan_id):
    withdrawal = get_withdrawal(withdrawal_id, artisan_id)
    if withdrawal.status != "pending":
        raise InvalidTransitionError(f"Cannot cancel withdrawal with status: {withdrawal.status}")
    _leave_pending(withdrawal, {Withdrawal.status: "cancelled"}, "cancel")
    db.session.commit()
    logger.info("Withdrawal %s cancelled by artisan", withdrawal.withdrawal_id)
    return withdrawal


def list_all(status=None, artisan_id=None, page=1, per_page=20):
    query = Withdrawal.query
    if status:
        query = query.filter(Withdrawal.status == status)
    if artisan_id:
        query = query.filter(Withdrawal.artisan_id == artisan_id)
    return query.order_by(Withdrawal.requested_at.desc()).paginate(page=page, per_page=per_page, error_out=False)


def list_pending():
    withdrawals = (
        Withdrawal.query.filter_by(status="pending", approval_status="pending")
        .order_by(Withdrawal.requested_at.asc())
        .all()
    )
    total = sum((money(w.amount) for w in withdrawals), money(0))
    return withdrawals, total


def _mark_failed(withdrawal, reason, code=None):
    withdrawal.status = "failed"
    withdrawal.failure_reason = reason
    withdrawal.failure_code = code
    withdrawal.processed_at = withdrawal.processed_at or utcnow()


def approve_withdrawal(gateway, withdrawal_id, admin_id, notes=None):
    """
    Approve a pending request and send the payout. Commits.

    The balance is checked again under the artisan lock. A gateway rejection
    leaves the request failed, not pending.

    Raises:
        NotFoundError: unknown withdrawal
        InvalidTransitionError: not pending
        InsufficientBalanceError: balance no longer covers the amount
    """
    withdrawal = get_withdrawal(withdrawal_id)
    if withdrawal.status != "pending":
        raise InvalidTransitionError(f"Cannot approve withdrawal with status: {withdrawal.status}")

    summary = balance_summary(withdrawal.artisan_id, lock=True)
    # This request is itself part of the committed total
    if summary["totalEscrow"] < _committed(withdrawal.artisan_id):
        db.session.rollback()
        raise InsufficientBalanceError(
            "Artisan balance no longer covers this withdrawal",
            details={"requested": float(withdrawal.amount), "available": float(summary["availableBalance"])},
        )

    _leave_pending(
        withdrawal,
        {
            Withdrawal.status: "approved",
            Withdrawal.approval_status: "approved",
            Withdrawal.approved_by: admin_id,
            Withdrawal.approved_at: utcnow(),
            Withdrawal.admin_notes: notes or "",
        },
        "approve",
    )
    db.session.commit()
    logger.info("Withdrawal %s approved by admin %s", withdrawal.withdrawal_id, admin_id)

    bank_details = {
        "bankName": withdrawal.bank_name,
        "accountNumber": withdrawal.account_number,
        "accountTitle": withdrawal.account_title,
        "routingNumber": withdrawal.routing_number,
    }
    try:
        payout = gateway.create_payout(
            withdrawal.net_amount,
            withdrawal.currency,
            bank_details,
            metadata={"withdrawalId": withdrawal.withdrawal_id, "artisanId": withdrawal.artisan_id},
        )
    except PaymentGatewayError as e:
        _mark_failed(withdrawal, e.message, e.code)
        db.session.commit()
        logger.error("Payout failed for withdrawal %s: %s (%s)", withdrawal.withdrawal_id, e.message, e.code)
        return withdrawal

    withdrawal.status = "processing"
    withdrawal.stripe_payout_id = payout["id"]
    withdrawal.processed_at = utcnow()
    withdrawal.estimated_arrival = payout["arrival_date"]
    if payout["status"] == "paid":
        withdrawal.status = "completed"
        withdrawal.completed_at = utcnow()
    db.session.commit()
    logger.info("Withdrawal %s payout %s: %s", withdrawal.withdrawal_id, payout["id"], withdrawal.status)
    return withdrawal


def reject_withdrawal(withdrawal_id, admin_id, reason, notes=None):
    if not (reason or "").strip():
        raise ValidationError("Rejection reason is required")
    withdrawal = get_withdrawal(withdrawal_id)
    if withdrawal.status != "pending":
        raise InvalidTransitionError(f"Cannot reject withdrawal with status: {withdrawal.status}")

    _leave_pending(
        withdrawal,
        {
            Withdrawal.status: "rejected",
            Withdrawal.approval_status: "rejected",
            Withdrawal.approved_by: admin_id,
            Withdrawal.rejected_at: utcnow(),
            Withdrawal.rejection_reason: reason.strip(),
            Withdrawal.admin_notes: notes or "",
        },
        "reject",
    )
    db.session.commit()
    logger.info("Withdrawal %s rejected by admin %s: %s", withdrawal.withdrawal_id, admin_id, reason)
    return withdrawal


def stats_summary():
    rows = (
        db.session.query(Withdrawal.status, func.count(Withdrawal.withdrawal_id), func.coalesce(func.sum(Withdrawal.amount), 0))
        .group_by(Withdrawal.status)
        .all()
    )
    by_status = {status: {"count": count, "totalAmount": float(money(total))} for status, count, total in rows}
    fees = _sum(Withdrawal.query.filter(Withdrawal.status == "completed"), Withdrawal.processing_fee)
    return {
        "byStatus": by_status,
        "totalProcessingFees": float(fees),
        "totalRequests": sum(entry["count"] for entry in by_status.values()),
    }


# --- Webhook events -----------------------------------------------------


def _by_payout(payout):
    withdrawal = Withdrawal.query.filter_by(stripe_payout_id=payout["id"]).first()
    if not withdrawal:
        logger.info("Payout event for %s has no matching withdrawal", payout["id"])
    return withdrawal


def handle_payout_paid(payout):
    withdrawal = _by_payout(payout)
    if withdrawal and withdrawal.status == "processing":
        withdrawal.status = "completed"
        withdrawal.completed_at = utcnow()
        db.session.commit()
        logger.info("Withdrawal %s completed", withdrawal.withdrawal_id)
    return withdrawal


def handle_payout_failed(payout):
    withdrawal = _by_payout(payout)
    if withdrawal and withdrawal.status in ("approved", "processing"):
        _mark_failed(
            withdrawal,
            payout.get("failure_message") or "Payout failed",
            payout.get("failure_code"),
        )
        db.session.commit()
        logger.error("Withdrawal %s payout failed: %s", withdrawal.withdrawal_id, withdrawal.failure_reason)
    return withdrawal
