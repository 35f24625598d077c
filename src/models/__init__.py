from src.models.user import User
from src.models.product import Product
from src.models.order import Order, OrderItem
from src.models.verification import VerificationCode, VerificationAttempt
from src.models.transaction import Transaction
from src.models.withdrawal import Withdrawal

__all__ = [
    "User",
    "Product",
    "Order",
    "OrderItem",
    "VerificationCode",
    "VerificationAttempt",
    "Transaction",
    "Withdrawal",
]
