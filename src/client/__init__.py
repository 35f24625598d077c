from src.client.api import (
    AuthorizationError,
    ClientError,
    ConflictError,
    MarketplaceClient,
    NotFoundError,
    PaymentError,
    ServerError,
    ValidationError,
    VerificationFailed,
)
from src.client.poller import Poller
from src.client.session import SessionContext

__all__ = [
    "AuthorizationError",
    "ClientError",
    "ConflictError",
    "MarketplaceClient",
    "NotFoundError",
    "PaymentError",
    "Poller",
    "ServerError",
    "SessionContext",
    "ValidationError",
    "VerificationFailed",
]
