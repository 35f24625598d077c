"""
Marketplace API client
Python counterpart of the storefront's API layer: attaches the bearer
token, maps HTTP failures onto a small error taxonomy and runs the
checkout flow so a retried order create can never double-charge.
"""

import logging

import requests

from src.client.session import SessionContext

logger = logging.getLogger(__name__)

VERIFICATION_STATUSES = ("invalid", "tampered", "already_delivered", "revoked", "expired")
REQUIRED_SHIPPING_FIELDS = ("fullName", "phone", "address", "city", "postalCode")


class ClientError(Exception):
    def __init__(self, message, status_code=None, body=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.body = body or {}


class ValidationError(ClientError):
    """400, or rejected locally before any request was sent."""


class AuthorizationError(ClientError):
    """401 (session already invalidated) or 403."""


class PaymentError(ClientError):
    """402: the payment was not completed."""


class NotFoundError(ClientError):
    pass


class ConflictError(ClientError):
    pass


class ServerError(ClientError):
    """5xx, or the request never got a response."""


class VerificationFailed(ClientError):
    def __init__(self, status, message, status_code=None, body=None):
        super().__init__(message, status_code, body)
        self.status = status


STATUS_ERRORS = {
    400: ValidationError,
    401: AuthorizationError,
    402: PaymentError,
    403: AuthorizationError,
    404: NotFoundError,
    409: ConflictError,
}


class RequestsTransport:
    """Default transport: a requests.Session against a live server."""

    def __init__(self, session=None):
        self.session = session or requests.Session()

    def request(self, method, url, json=None, params=None, headers=None, timeout=None):
        try:
            response = self.session.request(method, url, json=json, params=params, headers=headers, timeout=timeout)
        except requests.RequestException as e:
            raise ServerError(f"Network error: {e}")
        try:
            body = response.json()
        except ValueError:
            body = {}
        return response.status_code, body


class MarketplaceClient:
    def __init__(self, base_url, session=None, http=None, timeout=30.0):
        self.base_url = base_url.rstrip("/")
        self.session = session or SessionContext()
        self.http = http or RequestsTransport()
        self.timeout = timeout

    # --- Transport ---------------------------------------------------

    def _request(self, method, path, json=None, params=None, auth=True):
        headers = {"Content-Type": "application/json"}
        token = self.session.token
        if auth and token:
            headers["Authorization"] = f"Bearer {token}"

        status_code, body = self.http.request(
            method, f"{self.base_url}{path}", json=json, params=params, headers=headers, timeout=self.timeout
        )
        if status_code < 400:
            return body
        raise self._error(status_code, body)

    def _error(self, status_code, body):
        message = body.get("message") or body.get("msg") or f"Request failed with status {status_code}"

        if body.get("status") in VERIFICATION_STATUSES:
            return VerificationFailed(body["status"], message, status_code, body)
        if status_code == 401:
            self.session.invalidate()
        if status_code >= 500:
            logger.error("Server error %s: %s", status_code, message)
            return ServerError(message, status_code, body)
        return STATUS_ERRORS.get(status_code, ClientError)(message, status_code, body)

    # --- Auth ----------------------------------------------------------

    def register(self, email, password, name="", role="buyer"):
        return self._request(
            "POST", "/auth/register", {"email": email, "password": password, "name": name, "role": role}, auth=False
        )

    def login(self, email, password):
        body = self._request("POST", "/auth/login", {"email": email, "password": password}, auth=False)
        self.session.set(body["access_token"], body.get("user"))
        return body

    def logout(self):
        try:
            return self._request("POST", "/auth/logout")
        finally:
            self.session.invalidate()

    def me(self):
        return self._request("GET", "/auth/me")["user"]

    # --- Products ------------------------------------------------------

    def create_product(self, title, price, category="", image="", **anchor):
        payload = {"title": title, "price": price, "category": category, "image": image}
        payload.update(anchor)
        return self._request("POST", "/products", payload)["product"]

    def get_product(self, product_id):
        return self._request("GET", f"/products/{product_id}", auth=False)["product"]

    def update_product_anchor(self, product_id, blockchain_txn=None, ipfs_hash=None):
        payload = {}
        if blockchain_txn is not None:
            payload["blockchainTxn"] = blockchain_txn
        if ipfs_hash is not None:
            payload["ipfsHash"] = ipfs_hash
        return self._request("PATCH", f"/products/{product_id}/anchor", payload)["product"]

    # --- Payments and orders -------------------------------------------

    def create_payment_intent(self, amount, currency=None, order_id=None):
        payload = {"amount": amount}
        if currency:
            payload["currency"] = currency
        if order_id:
            payload["orderId"] = order_id
        return self._request("POST", "/payments/create-intent", payload)

    def mock_confirm_payment(self, payment_intent_id, status=None):
        return self._request("POST", f"/payments/mock/confirm/{payment_intent_id}", {"status": status} if status else None)

    def create_order(self, payload):
        return self._request("POST", "/orders", payload)

    def list_orders(self):
        return self._request("GET", "/orders")["orders"]

    def list_artisan_orders(self, status=None):
        return self._request("GET", "/orders/artisan", params={"status": status} if status else None)["orders"]

    def get_order(self, order_id):
        return self._request("GET", f"/orders/{order_id}")["order"]

    def cancel_order(self, order_id, reason=None):
        return self._request("PUT", f"/orders/{order_id}/cancel", {"reason": reason})["order"]

    def update_order_status(self, order_id, status, carrier=None, tracking_number=None, reason=None):
        payload = {"status": status}
        if carrier:
            payload["carrier"] = carrier
        if tracking_number:
            payload["trackingNumber"] = tracking_number
        if reason:
            payload["reason"] = reason
        return self._request("PATCH", f"/orders/{order_id}/status", payload)["order"]

    def checkout(self, items, shipping_address, total, confirm_payment, currency=None,
                 shipping_cost=0, tax=0, notes="", retries=2):
        """
        Pay for and place an order.

        confirm_payment(intent) performs the card confirmation (Stripe.js in
        the browser) and must raise if the card is declined. The order create
        is keyed by the PaymentIntent id, so it is retried up to `retries`
        times on server/network errors without risk of a second order.

        Raises:
            ValidationError: missing shipping fields (before any request)
            PaymentError: the server saw the payment as not completed
            ServerError: still failing after all retries
        """
        missing = [f for f in REQUIRED_SHIPPING_FIELDS if not str((shipping_address or {}).get(f) or "").strip()]
        if missing:
            raise ValidationError(f"Missing shipping fields: {', '.join(missing)}")
        if not items:
            raise ValidationError("Cart is empty")

        intent = self.create_payment_intent(total, currency)
        confirm_payment(intent)

        payload = {
            "items": items,
            "total": total,
            "shippingCost": shipping_cost,
            "tax": tax,
            "shippingAddress": shipping_address,
            "paymentInfo": {"method": "stripe", "transactionId": intent["paymentIntentId"]},
            "notes": notes,
        }
        if currency:
            payload["currency"] = currency

        attempt = 0
        while True:
            try:
                return self.create_order(payload)
            except ServerError as e:
                attempt += 1
                if attempt > retries:
                    raise
                logger.warning("Order create failed (%s); retrying %d/%d", e.message, attempt, retries)

    # --- Verification and delivery -------------------------------------

    def verify_code(self, code):
        return self._request("GET", f"/verification/{code}", auth=False)

    def confirm_delivery(self, code, device_fingerprint=None):
        return self._request(
            "POST", f"/verification/{code}/confirm-delivery", {"deviceFingerprint": device_fingerprint}, auth=False
        )

    def get_qr(self, code):
        return self._request("GET", f"/verification/qr/{code}", auth=False)

    def confirm_order_delivery(self, order_id):
        return self._request("POST", f"/delivery/confirm/{order_id}")["order"]

    def pending_deliveries(self):
        return self._request("GET", "/delivery/pending")["orders"]

    def completed_deliveries(self):
        return self._request("GET", "/delivery/completed")["deliveries"]

    # --- Admin escrow --------------------------------------------------

    def pending_escrow(self, page=1, limit=20, status=None):
        params = {"page": page, "limit": limit}
        if status:
            params["status"] = status
        return self._request("GET", "/admin/escrow/pending", params=params)

    def released_escrow(self, page=1, limit=20):
        return self._request("GET", "/admin/escrow/released", params={"page": page, "limit": limit})

    def release_escrow(self, order_id, notes=None):
        return self._request("POST", f"/admin/escrow/{order_id}/release", {"notes": notes})["order"]

    def bulk_release_escrow(self, order_ids, notes=None):
        body = self._request("POST", "/admin/escrow/bulk-release", {"orderIds": order_ids, "notes": notes})
        return {"successful": body["successful"], "failed": body["failed"]}

    def escrow_stats(self):
        return self._request("GET", "/admin/escrow/stats")["stats"]

    # --- Withdrawals ---------------------------------------------------

    def request_withdrawal(self, amount, bank_details, notes=None):
        return self._request("POST", "/artisan/withdrawals", {"amount": amount, "bankDetails": bank_details, "notes": notes})

    def my_withdrawals(self, status=None, page=1, limit=20):
        params = {"page": page, "limit": limit}
        if status:
            params["status"] = status
        return self._request("GET", "/artisan/withdrawals", params=params)

    def my_withdrawal(self, withdrawal_id):
        return self._request("GET", f"/artisan/withdrawals/{withdrawal_id}")["withdrawal"]

    def cancel_withdrawal(self, withdrawal_id):
        return self._request("POST", f"/artisan/withdrawals/{withdrawal_id}/cancel")["withdrawal"]

    def available_balance(self):
        return self._request("GET", "/artisan/withdrawals/balance/available")["balance"]

    def all_withdrawals(self, status=None, artisan_id=None, page=1, limit=20):
        params = {"page": page, "limit": limit}
        if status:
            params["status"] = status
        if artisan_id:
            params["artisanId"] = artisan_id
        return self._request("GET", "/admin/withdrawals", params=params)

    def pending_withdrawals(self):
        return self._request("GET", "/admin/withdrawals/pending")

    def withdrawal_stats(self):
        return self._request("GET", "/admin/withdrawals/stats/summary")["stats"]

    def get_withdrawal(self, withdrawal_id):
        return self._request("GET", f"/admin/withdrawals/{withdrawal_id}")["withdrawal"]

    def approve_withdrawal(self, withdrawal_id, notes=None):
        return self._request("POST", f"/admin/withdrawals/{withdrawal_id}/approve", {"notes": notes})["withdrawal"]

    def reject_withdrawal(self, withdrawal_id, reason, notes=None):
        return self._request(
            "POST", f"/admin/withdrawals/{withdrawal_id}/reject", {"reason": reason, "notes": notes}
        )["withdrawal"]

    # --- Commission ----------------------------------------------------

    def commission_summary(self, start_date=None, end_date=None):
        params = {}
        if start_date:
            params["startDate"] = start_date
        if end_date:
            params["endDate"] = end_date
        return self._request("GET", "/admin/commission/summary", params=params or None)["summary"]

    def commission_transactions(self, page=1, limit=20):
        return self._request("GET", "/admin/commission/transactions", params={"page": page, "limit": limit})
