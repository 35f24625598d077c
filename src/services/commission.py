"""
Commission Service
Platform commission split on order totals and withdrawal processing fees,
plus the reporting queries behind the admin commission endpoints.
"""

from decimal import Decimal

from flask import current_app
from sqlalchemy import func

from src.extensions import db
from src.models.order import Order
from src.models.transaction import Transaction
from src.utils import money


def calculate_commission_split(total, rate):
    """
    Split an order total between platform and artisan.

    The commission is rounded to the minor unit and the artisan gets the
    remainder, so the two parts always add back up to the total.
    """
    total = money(total)
    platform_commission = money(total * Decimal(rate))
    return {
        "total": total,
        "platform_commission": platform_commission,
        "artisan_share": total - platform_commission,
    }


def calculate_withdrawal_fee(amount, rate):
    amount = money(amount)
    processing_fee = money(amount * Decimal(rate))
    return {
        "amount": amount,
        "processing_fee": processing_fee,
        "net_amount": amount - processing_fee,
    }


def commission_rate():
    return Decimal(current_app.config["PLATFORM_COMMISSION_RATE"])


def withdrawal_fee_rate():
    return Decimal(current_app.config["WITHDRAWAL_FEE_RATE"])


def _percent(rate):
    return f"{(Decimal(rate) * 100).normalize():f}%"


def _date_window(query, column, start_date=None, end_date=None):
    if start_date:
        query = query.filter(column >= start_date)
    if end_date:
        query = query.filter(column <= end_date)
    return query


def get_commission_summary(start_date=None, end_date=None):
    commission_query = db.session.query(
        func.coalesce(func.sum(Transaction.platform_commission), 0), func.count(Transaction.transaction_id)
    ).filter(Transaction.type == "platform_commission", Transaction.status == "completed")
    commission_total, commission_count = _date_window(
        commission_query, Transaction.created_at, start_date, end_date
    ).one()

    held_total, held_count = (
        db.session.query(func.coalesce(func.sum(Transaction.total), 0), func.count(Transaction.transaction_id))
        .filter(Transaction.type == "escrow_hold", Transaction.status == "held")
        .one()
    )

    revenue_query = db.session.query(
        func.coalesce(func.sum(Order.total), 0), func.count(Order.order_id)
    ).filter(Order.payment_status == "completed")
    revenue_total, revenue_count = _date_window(revenue_query, Order.created_at, start_date, end_date).one()

    return {
        "platformCommission": {"total": float(money(commission_total)), "transactionCount": commission_count},
        "escrowHeld": {"total": float(money(held_total)), "orderCount": held_count},
        "totalRevenue": {"amount": float(money(revenue_total)), "orderCount": revenue_count},
        "commissionRate": _percent(commission_rate()),
        "withdrawalFeeRate": _percent(withdrawal_fee_rate()),
    }


def get_commission_transactions(page=1, per_page=20):
    pagination = (
        Transaction.query.filter_by(type="platform_commission", status="completed")
        .order_by(Transaction.created_at.desc())
        .paginate(page=page, per_page=per_page, error_out=False)
    )
    return pagination
