"""
Stripe Payment Gateway
Handles payment intents, refunds, payouts and webhook signature checks.

Falls back to an in-memory mock when USE_MOCK_STRIPE is set or no
STRIPE_SECRET_KEY is configured. In mock mode:
  - payment intents start as 'requires_payment_method' and succeed once
    confirm_payment_intent() is called (what Stripe.js does in the browser);
    it can also leave them 'processing' to stand in for delayed methods
  - payouts to account number 0000000000 fail with 'account_invalid'
  - every other payout is reported as paid straight away
"""

import json
import logging
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import stripe
from flask import current_app

from src.errors import PaymentGatewayError
from src.utils import money

logger = logging.getLogger(__name__)

MOCK_FAILING_ACCOUNT = "0000000000"
MOCK_INTENT_STATUSES = ("succeeded", "processing", "requires_action", "requires_payment_method")


def to_minor_units(amount):
    return int((money(amount) * 100).to_integral_value())


def from_minor_units(amount):
    return money(Decimal(amount) / 100)


class StripeGateway:
    def __init__(self, secret_key="", webhook_secret="", use_mock=True):
        self.secret_key = secret_key or ""
        self.webhook_secret = webhook_secret or ""
        self.use_mock = use_mock

        if not self.use_mock and not self.secret_key:
            logger.warning("Stripe secret key not configured. Using mock mode.")
            self.use_mock = True

        self._mock_intents = {}

    @classmethod
    def from_config(cls, config):
        return cls(
            secret_key=config.get("STRIPE_SECRET_KEY"),
            webhook_secret=config.get("STRIPE_WEBHOOK_SECRET"),
            use_mock=config.get("USE_MOCK_STRIPE", True),
        )

    # --- Payment intents -------------------------------------------------

    def create_payment_intent(self, amount, currency, metadata=None, description=None):
        amount_minor = to_minor_units(amount)
        metadata = {k: str(v) for k, v in (metadata or {}).items()}

        if self.use_mock:
            intent_id = f"pi_mock_{uuid.uuid4().hex[:24]}"
            intent = {
                "id": intent_id,
                "client_secret": f"{intent_id}_secret_{uuid.uuid4().hex[:16]}",
                "amount": amount_minor,
                "currency": currency.lower(),
                "status": "requires_payment_method",
                "metadata": metadata,
            }
            self._mock_intents[intent_id] = intent
            logger.info("Mock PaymentIntent created: %s", intent_id)
            return dict(intent)

        try:
            intent = stripe.PaymentIntent.create(
                api_key=self.secret_key,
                amount=amount_minor,
                currency=currency.lower(),
                metadata=metadata,
                description=description,
                automatic_payment_methods={"enabled": True},
            )
        except stripe.StripeError as e:
            logger.error("Stripe PaymentIntent creation failed: %s", e)
            raise PaymentGatewayError("Failed to create payment intent", code=getattr(e, "code", None))

        logger.info("PaymentIntent created: %s", intent.id)
        return self._intent_dict(intent)

    def retrieve_payment_intent(self, intent_id):
        if self.use_mock:
            intent = self._mock_intents.get(intent_id)
            if intent is None:
                raise PaymentGatewayError(
                    f"No such payment_intent: {intent_id}", code="resource_missing", status_code=400
                )
            return dict(intent)

        try:
            intent = stripe.PaymentIntent.retrieve(intent_id, api_key=self.secret_key)
        except stripe.InvalidRequestError as e:
            raise PaymentGatewayError(
                f"No such payment_intent: {intent_id}", code=getattr(e, "code", None), status_code=400
            )
        except stripe.StripeError as e:
            logger.error("Stripe PaymentIntent retrieval failed: %s", e)
            raise PaymentGatewayError("Failed to retrieve payment intent", code=getattr(e, "code", None))
        return self._intent_dict(intent)

    def confirm_payment_intent(self, intent_id, status="succeeded"):
        """
        Mock-only: stand-in for client-side confirmation. `status` picks the
        outcome, e.g. 'processing' for a bank debit that settles later or
        'requires_payment_method' for a declined card.
        """
        if not self.use_mock:
            raise PaymentGatewayError("Payment intents are confirmed client-side", status_code=400)
        if status not in MOCK_INTENT_STATUSES:
            raise PaymentGatewayError(f"Unsupported mock intent status: {status}", status_code=400)
        intent = self._mock_intents.get(intent_id)
        if intent is None:
            raise PaymentGatewayError(f"No such payment_intent: {intent_id}", code="resource_missing", status_code=400)
        intent["status"] = status
        return dict(intent)

    @staticmethod
    def _intent_dict(intent):
        return {
            "id": intent["id"],
            "client_secret": intent["client_secret"],
            "amount": intent["amount"],
            "currency": intent["currency"],
            "status": intent["status"],
            "metadata": dict(intent["metadata"] or {}),
        }

    # --- Refunds ---------------------------------------------------------

    def refund(self, intent_id, amount):
        if self.use_mock:
            refund_id = f"re_mock_{uuid.uuid4().hex[:24]}"
            logger.info("Mock refund %s for %s", refund_id, intent_id)
            return {"id": refund_id, "status": "succeeded"}

        try:
            refund = stripe.Refund.create(
                api_key=self.secret_key, payment_intent=intent_id, amount=to_minor_units(amount)
            )
        except stripe.StripeError as e:
            logger.error("Stripe refund failed for %s: %s", intent_id, e)
            raise PaymentGatewayError("Failed to refund payment", code=getattr(e, "code", None))
        return {"id": refund["id"], "status": refund["status"]}

    # --- Payouts ---------------------------------------------------------

    def create_payout(self, amount, currency, bank_details, metadata=None):
        """
        Send an artisan's net withdrawal amount to their bank.

        Returns a dict with the payout id, its status ('paid', 'in_transit',
        'pending') and the estimated arrival date.

        Raises:
            PaymentGatewayError: if the payout is rejected
        """
        metadata = {k: str(v) for k, v in (metadata or {}).items()}

        if self.use_mock:
            if bank_details.get("accountNumber") == MOCK_FAILING_ACCOUNT:
                raise PaymentGatewayError("Invalid bank account", code="account_invalid")
            payout_id = f"po_mock_{uuid.uuid4().hex[:24]}"
            logger.info("Mock payout %s created for %s %s", payout_id, money(amount), currency)
            return {
                "id": payout_id,
                "status": "paid",
                "arrival_date": datetime.now(timezone.utc) + timedelta(days=3),
            }

        try:
            payout = stripe.Payout.create(
                api_key=self.secret_key,
                amount=to_minor_units(amount),
                currency=currency.lower(),
                description=f"Withdrawal to {bank_details.get('accountTitle', '')}",
                metadata=metadata,
            )
        except stripe.StripeError as e:
            logger.error("Stripe payout failed: %s", e)
            raise PaymentGatewayError(str(e.user_message or e), code=getattr(e, "code", None))

        return {
            "id": payout["id"],
            "status": payout["status"],
            "arrival_date": datetime.fromtimestamp(payout["arrival_date"], tz=timezone.utc),
        }

    # --- Webhooks --------------------------------------------------------

    def parse_webhook(self, payload, sig_header):
        """
        Verify the Stripe-Signature header and decode the event.

        Raises:
            ValueError: payload is not valid JSON
            stripe.SignatureVerificationError: signature does not match
        """
        stripe.WebhookSignature.verify_header(
            payload, sig_header or "", self.webhook_secret, stripe.Webhook.DEFAULT_TOLERANCE
        )
        return json.loads(payload)


def get_gateway():
    return current_app.extensions["payment_gateway"]
