import unittest
import uuid

from src.app import create_app
from src.config import TestConfig
from src.extensions import db
from src.models.user import User

PREFIX = "/api/v1"
PASSWORD = "password123"

SHIPPING_ADDRESS = {
    "fullName": "Ayesha Khan",
    "phone": "+923001234567",
    "address": "12 Mall Road",
    "city": "Lahore",
    "state": "Punjab",
    "postalCode": "54000",
    "country": "Pakistan",
}


class MarketplaceTestCase(unittest.TestCase):
    """Runs the app in-process against in-memory SQLite with the mock Stripe gateway."""

    def setUp(self):
        self.app = create_app(TestConfig)
        self.client = self.app.test_client()
        self.ctx = self.app.app_context()
        self.ctx.push()

    def tearDown(self):
        db.session.remove()
        db.drop_all()
        self.ctx.pop()

    @property
    def gateway(self):
        return self.app.extensions["payment_gateway"]

    # --- HTTP helpers ----------------------------------------------------

    def api(self, method, path, token=None, json=None, **kwargs):
        headers = kwargs.pop("headers", {})
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return self.client.open(f"{PREFIX}{path}", method=method, json=json, headers=headers, **kwargs)

    # --- Fixtures --------------------------------------------------------

    def make_user(self, role="buyer", name=None):
        """Create a user directly (admins cannot register) and log in."""
        email = f"{role}_{uuid.uuid4().hex[:8]}@example.com"
        user = User(email=email, name=name or role.title(), role=role)
        user.set_password(PASSWORD)
        db.session.add(user)
        db.session.commit()

        resp = self.api("POST", "/auth/login", json={"email": email, "password": PASSWORD})
        self.assertEqual(resp.status_code, 200)
        return user, resp.get_json()["access_token"]

    def make_product(self, artisan_token, price=100, **extra):
        payload = {"title": "Hand-woven Khes", "category": "Textiles", "price": price}
        payload.update(extra)
        resp = self.api("POST", "/products", artisan_token, json=payload)
        self.assertEqual(resp.status_code, 201)
        return resp.get_json()["product"]

    def pay(self, buyer_token, amount, currency="USD", confirm=True, status=None):
        resp = self.api("POST", "/payments/create-intent", buyer_token, json={"amount": amount, "currency": currency})
        self.assertEqual(resp.status_code, 200)
        intent_id = resp.get_json()["paymentIntentId"]
        if confirm:
            body = {"status": status} if status else None
            resp = self.api("POST", f"/payments/mock/confirm/{intent_id}", buyer_token, json=body)
            self.assertEqual(resp.status_code, 200)
        return intent_id

    def order_payload(self, product, transaction_id=None, qty=1, method="stripe", **overrides):
        payload = {
            "items": [{"product": product["product_id"], "qty": qty, "price": product["price"]}],
            "total": product["price"] * qty,
            "currency": "USD",
            "shippingCost": 0,
            "tax": 0,
            "shippingAddress": dict(SHIPPING_ADDRESS),
            "paymentInfo": {"method": method, "transactionId": transaction_id},
        }
        payload.update(overrides)
        return payload

    def paid_order(self, buyer_token, product, qty=1):
        intent_id = self.pay(buyer_token, product["price"] * qty)
        resp = self.api("POST", "/orders", buyer_token, json=self.order_payload(product, intent_id, qty))
        self.assertEqual(resp.status_code, 201, resp.get_json())
        return resp.get_json()["order"]

    def deliver(self, order):
        for code in order["authenticationCodes"]:
            resp = self.api("POST", f"/verification/{code['publicCode']}/confirm-delivery", json={})
            self.assertEqual(resp.status_code, 200, resp.get_json())
        return resp.get_json()

    def delivered_order(self, buyer_token, product):
        order = self.paid_order(buyer_token, product)
        self.deliver(order)
        return order
