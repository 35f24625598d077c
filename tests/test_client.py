import threading
import time
import unittest

from src.client import (
    AuthorizationError,
    ConflictError,
    MarketplaceClient,
    PaymentError,
    Poller,
    ServerError,
    SessionContext,
    ValidationError,
    VerificationFailed,
)
from tests.base import PASSWORD, PREFIX, SHIPPING_ADDRESS, MarketplaceTestCase


class FlaskTransport:
    """Routes client requests into the app's test client."""

    def __init__(self, test_client):
        self.test_client = test_client
        self.calls = []

    def request(self, method, url, json=None, params=None, headers=None, timeout=None):
        self.calls.append((method, url))
        resp = self.test_client.open(url, method=method, json=json, query_string=params, headers=headers)
        return resp.status_code, resp.get_json(silent=True) or {}


class FlakyTransport(FlaskTransport):
    """Fails the first `failures` order creates after the server has processed them."""

    def __init__(self, test_client, failures):
        super().__init__(test_client)
        self.failures = failures

    def request(self, method, url, **kwargs):
        status_code, body = super().request(method, url, **kwargs)
        if method == "POST" and url.endswith("/orders") and self.failures:
            self.failures -= 1
            raise ServerError("Connection reset")
        return status_code, body


class TestSessionContext(unittest.TestCase):
    def test_invalidate_clears_token_and_user_and_notifies(self):
        session = SessionContext(token="abc", user={"role": "buyer"})
        seen = []
        session.add_listener(lambda s: seen.append((s.token, s.user)))

        session.invalidate()

        self.assertIsNone(session.token)
        self.assertIsNone(session.user)
        self.assertFalse(session.is_authenticated)
        self.assertEqual(seen, [(None, None)])


class TestPoller(unittest.TestCase):
    def test_skips_tick_while_fetch_in_flight(self):
        release = threading.Event()
        calls = []

        def fetch():
            calls.append(1)
            release.wait(2)

        poller = Poller(fetch, interval=60)
        first = poller.tick()
        self.assertIsNotNone(first)
        self.assertIsNone(poller.tick())
        self.assertEqual(poller.skipped, 1)

        release.set()
        first.join(2)
        second = poller.tick()
        self.assertIsNotNone(second)
        second.join(2)
        self.assertEqual(len(calls), 2)

    def test_stop_cancels_loop(self):
        results = []
        poller = Poller(lambda: "ok", interval=0.01, on_result=results.append).start()
        time.sleep(0.05)
        poller.stop(timeout=1)

        self.assertFalse(poller.running)
        count = len(results)
        time.sleep(0.05)
        self.assertEqual(len(results), count)
        self.assertIsNone(poller.tick())

    def test_fetch_errors_go_to_callback(self):
        errors = []

        def fetch():
            raise ServerError("down")

        worker = Poller(fetch, on_error=errors.append).tick()
        worker.join(1)
        self.assertIsInstance(errors[0], ServerError)


class ClientTestCase(MarketplaceTestCase):
    def setUp(self):
        super().setUp()
        self.transport = FlaskTransport(self.client)

    def new_client(self, transport=None):
        return MarketplaceClient(PREFIX, SessionContext(), http=transport or self.transport)

    def logged_in(self, role, transport=None):
        user, _ = self.make_user(role)
        client = self.new_client(transport)
        client.login(user.email, PASSWORD)
        return client


class TestClientErrors(ClientTestCase):
    def test_401_invalidates_session(self):
        client = self.new_client()
        client.session.set("expired.token.value", {"role": "buyer"})
        events = []
        client.session.add_listener(lambda s: events.append(s.token))

        with self.assertRaises(AuthorizationError):
            client.list_orders()
        self.assertIsNone(client.session.token)
        self.assertIsNone(client.session.user)
        self.assertEqual(events, [None])

    def test_403_keeps_session(self):
        artisan = self.logged_in("artisan")
        with self.assertRaises(AuthorizationError):
            artisan.list_orders()
        self.assertTrue(artisan.session.is_authenticated)

    def test_verification_failures_carry_status(self):
        client = self.new_client()
        with self.assertRaises(VerificationFailed) as ctx:
            client.verify_code("A" * 64)
        self.assertEqual(ctx.exception.status, "invalid")
        self.assertEqual(ctx.exception.status_code, 404)

    def test_missing_shipping_rejected_before_network(self):
        buyer = self.logged_in("buyer")
        calls_before = len(self.transport.calls)
        address = dict(SHIPPING_ADDRESS, phone="")

        with self.assertRaises(ValidationError):
            buyer.checkout([{"product": "x", "qty": 1}], address, 100, confirm_payment=lambda intent: None)
        self.assertEqual(len(self.transport.calls), calls_before)

    def test_unconfirmed_card_is_payment_error(self):
        artisan = self.logged_in("artisan")
        product = artisan.create_product("Blue Pottery Vase", 100)
        buyer = self.logged_in("buyer")

        with self.assertRaises(PaymentError):
            buyer.checkout(
                [{"product": product["product_id"], "qty": 1}],
                SHIPPING_ADDRESS,
                100,
                confirm_payment=lambda intent: None,
                currency="USD",
            )


class TestCheckout(ClientTestCase):
    def setUp(self):
        super().setUp()
        self.artisan = self.logged_in("artisan")
        self.product = self.artisan.create_product("Blue Pottery Vase", 100)

    def checkout(self, buyer, **kwargs):
        return buyer.checkout(
            [{"product": self.product["product_id"], "qty": 1}],
            SHIPPING_ADDRESS,
            100,
            confirm_payment=lambda intent: buyer.mock_confirm_payment(intent["paymentIntentId"]),
            currency="USD",
            **kwargs,
        )

    def test_retry_after_lost_response_creates_one_order(self):
        transport = FlakyTransport(self.client, failures=1)
        buyer = self.logged_in("buyer", transport)

        body = self.checkout(buyer)

        self.assertTrue(body["idempotentReplay"])
        self.assertEqual(len(buyer.list_orders()), 1)

    def test_gives_up_after_retries(self):
        transport = FlakyTransport(self.client, failures=5)
        buyer = self.logged_in("buyer", transport)
        with self.assertRaises(ServerError):
            self.checkout(buyer, retries=2)
        self.assertEqual(len(buyer.list_orders()), 1)

    def test_second_buyer_cannot_reuse_intent(self):
        buyer = self.logged_in("buyer")
        order = self.checkout(buyer)["order"]

        other = self.logged_in("buyer")
        payload = {
            "items": [{"product": self.product["product_id"], "qty": 1}],
            "total": 100,
            "currency": "USD",
            "shippingAddress": SHIPPING_ADDRESS,
            "paymentInfo": {"method": "stripe", "transactionId": order["paymentInfo"]["transactionId"]},
        }
        with self.assertRaises(ConflictError):
            other.create_order(payload)


class TestEndToEnd(ClientTestCase):
    def test_hundred_dollar_order_to_completed_withdrawal(self):
        artisan = self.logged_in("artisan")
        buyer = self.logged_in("buyer")
        admin = self.logged_in("admin")
        courier = self.new_client()

        product = artisan.create_product("Ajrak Shawl", 100)
        order = buyer.checkout(
            [{"product": product["product_id"], "qty": 1}],
            SHIPPING_ADDRESS,
            100,
            confirm_payment=lambda intent: buyer.mock_confirm_payment(intent["paymentIntentId"]),
            currency="USD",
        )["order"]
        self.assertEqual(order["status"], "confirmed")
        self.assertEqual(order["paymentDistribution"]["escrowAmount"], 100.0)

        code = order["authenticationCodes"][0]["publicCode"]
        self.assertEqual(courier.verify_code(code)["status"], "verified")
        delivered = courier.confirm_delivery(code, device_fingerprint="courier-phone")
        self.assertEqual(delivered["order"]["status"], "delivered")
        self.assertEqual(delivered["payment"]["artisanPayout"], 90.0)

        with self.assertRaises(VerificationFailed) as ctx:
            courier.confirm_delivery(code)
        self.assertEqual(ctx.exception.status, "already_delivered")

        before = artisan.available_balance()["availableBalance"]
        admin.release_escrow(order["id"], notes="Delivered")
        self.assertEqual(artisan.available_balance()["availableBalance"], before + 90.0)

        bank = {"bankName": "HBL", "accountNumber": "5555000011", "accountTitle": "Ajrak House"}
        withdrawal = artisan.request_withdrawal(90, bank)["withdrawal"]
        self.assertEqual(withdrawal["netAmount"], 88.2)

        approved = admin.approve_withdrawal(withdrawal["id"])
        self.assertEqual(approved["status"], "completed")

        balance = artisan.available_balance()
        self.assertEqual(balance["availableBalance"], 0.0)
        self.assertEqual(balance["totalWithdrawn"], 90.0)
        self.assertEqual(admin.escrow_stats()["releasedAmount"], 90.0)
