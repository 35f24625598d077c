"""
Domain errors raised by the service layer.
Each carries the HTTP status it maps to; the app factory renders them as JSON.
"""


class MarketplaceError(Exception):
    status_code = 400

    def __init__(self, message, status_code=None, **payload):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.payload = payload

    def to_dict(self):
        body = {"success": False, "message": self.message}
        body.update(self.payload)
        return body


class ValidationError(MarketplaceError):
    status_code = 400


class ForbiddenError(MarketplaceError):
    status_code = 403


class NotFoundError(MarketplaceError):
    status_code = 404


class ConflictError(MarketplaceError):
    status_code = 409


class InvalidTransitionError(ConflictError):
    """Order or withdrawal asked to move to a state it cannot reach."""


class InsufficientBalanceError(MarketplaceError):
    status_code = 400


class PaymentRequiredError(MarketplaceError):
    status_code = 402


class PaymentGatewayError(MarketplaceError):
    """Stripe (or the mock gateway) rejected or failed a call."""

    status_code = 502

    def __init__(self, message, code=None, status_code=None, **payload):
        super().__init__(message, status_code=status_code, **payload)
        self.code = code
