import unittest

from src.models.order import Order
from src.models.transaction import Transaction
from src.services.order_service import VALID_TRANSITIONS, can_transition
from tests.base import MarketplaceTestCase


class TestOrderTransitions(unittest.TestCase):
    def test_terminal_states_have_no_exits(self):
        for status in ("cancelled", "refunded", "failed"):
            self.assertEqual(VALID_TRANSITIONS[status], set())

    def test_delivered_can_only_be_refunded(self):
        self.assertTrue(can_transition("delivered", "refunded"))
        self.assertFalse(can_transition("delivered", "shipped"))
        self.assertFalse(can_transition("shipped", "pending"))


class TestCreateOrder(MarketplaceTestCase):
    def setUp(self):
        super().setUp()
        self.artisan, self.artisan_token = self.make_user("artisan")
        self.buyer, self.buyer_token = self.make_user("buyer")
        self.product = self.make_product(self.artisan_token, price=100)

    def test_paid_order_is_confirmed_and_held_in_escrow(self):
        order = self.paid_order(self.buyer_token, self.product)

        self.assertEqual(order["status"], "confirmed")
        self.assertEqual(order["paymentInfo"]["status"], "completed")
        distribution = order["paymentDistribution"]
        self.assertEqual(distribution["escrowAmount"], 100.0)
        self.assertFalse(distribution["escrowReleased"])
        self.assertEqual(distribution["artisanPayout"]["amount"], 90.0)
        self.assertEqual(distribution["platformCommission"]["amount"], 10.0)
        self.assertEqual(len(order["authenticationCodes"]), 1)
        self.assertEqual(len(order["authenticationCodes"][0]["publicCode"]), 64)

        hold = Transaction.query.filter_by(type="escrow_hold").one()
        self.assertEqual(hold.status, "held")

    def test_one_code_per_distinct_product(self):
        other = self.make_product(self.artisan_token, price=25)
        intent_id = self.pay(self.buyer_token, 225)
        payload = self.order_payload(self.product, intent_id, qty=2)
        payload["items"].append({"product": other["product_id"], "qty": 1})
        payload["total"] = 225

        resp = self.api("POST", "/orders", self.buyer_token, json=payload)
        self.assertEqual(resp.status_code, 201, resp.get_json())
        codes = resp.get_json()["order"]["authenticationCodes"]
        self.assertEqual(len(codes), 2)
        self.assertEqual(len({c["publicCode"] for c in codes}), 2)

    def test_unconfirmed_payment_is_rejected(self):
        intent_id = self.pay(self.buyer_token, 100, confirm=False)
        resp = self.api("POST", "/orders", self.buyer_token, json=self.order_payload(self.product, intent_id))
        self.assertEqual(resp.status_code, 402)
        self.assertEqual(resp.get_json()["message"], "Payment not completed")
        self.assertEqual(Order.query.count(), 0)

    def test_payment_amount_must_match_total(self):
        intent_id = self.pay(self.buyer_token, 50)
        resp = self.api("POST", "/orders", self.buyer_token, json=self.order_payload(self.product, intent_id))
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(Order.query.count(), 0)

    def test_total_must_match_items(self):
        intent_id = self.pay(self.buyer_token, 80)
        payload = self.order_payload(self.product, intent_id, total=80)
        resp = self.api("POST", "/orders", self.buyer_token, json=payload)
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.get_json()["expectedTotal"], 100.0)

    def test_missing_shipping_fields(self):
        intent_id = self.pay(self.buyer_token, 100)
        payload = self.order_payload(self.product, intent_id)
        del payload["shippingAddress"]["postalCode"]
        payload["shippingAddress"]["city"] = "  "

        resp = self.api("POST", "/orders", self.buyer_token, json=payload)
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(sorted(resp.get_json()["missingFields"]), ["city", "postalCode"])

    def test_empty_items(self):
        intent_id = self.pay(self.buyer_token, 100)
        resp = self.api("POST", "/orders", self.buyer_token, json=self.order_payload(self.product, intent_id, items=[]))
        self.assertEqual(resp.status_code, 400)

    def test_items_from_two_artisans_are_rejected(self):
        _, other_artisan_token = self.make_user("artisan")
        other = self.make_product(other_artisan_token, price=100)
        intent_id = self.pay(self.buyer_token, 200)
        payload = self.order_payload(self.product, intent_id, total=200)
        payload["items"].append({"product": other["product_id"], "qty": 1})

        resp = self.api("POST", "/orders", self.buyer_token, json=payload)
        self.assertEqual(resp.status_code, 400)

    def test_unknown_transaction_id(self):
        resp = self.api("POST", "/orders", self.buyer_token, json=self.order_payload(self.product, "pi_missing"))
        self.assertEqual(resp.status_code, 400)

    def test_only_buyers_can_order(self):
        resp = self.api("POST", "/orders", self.artisan_token, json=self.order_payload(self.product, "pi_x"))
        self.assertEqual(resp.status_code, 403)

    def test_requires_token(self):
        resp = self.api("POST", "/orders", json=self.order_payload(self.product, "pi_x"))
        self.assertEqual(resp.status_code, 401)
        self.assertFalse(resp.get_json()["success"])

    def test_cod_order_starts_pending(self):
        resp = self.api("POST", "/orders", self.buyer_token, json=self.order_payload(self.product, method="cod"))
        self.assertEqual(resp.status_code, 201)
        order = resp.get_json()["order"]
        self.assertEqual(order["status"], "pending")
        self.assertEqual(order["paymentInfo"]["status"], "pending")
        self.assertEqual(order["authenticationCodes"], [])


class TestIdempotentCreate(MarketplaceTestCase):
    def setUp(self):
        super().setUp()
        _, self.artisan_token = self.make_user("artisan")
        _, self.buyer_token = self.make_user("buyer")
        self.product = self.make_product(self.artisan_token, price=100)

    def test_repeat_create_returns_same_order(self):
        intent_id = self.pay(self.buyer_token, 100)
        payload = self.order_payload(self.product, intent_id)

        first = self.api("POST", "/orders", self.buyer_token, json=payload)
        second = self.api("POST", "/orders", self.buyer_token, json=payload)

        self.assertEqual(first.status_code, 201)
        self.assertEqual(second.status_code, 200)
        self.assertTrue(second.get_json()["idempotentReplay"])
        self.assertEqual(first.get_json()["order"]["id"], second.get_json()["order"]["id"])
        self.assertEqual(Order.query.count(), 1)
        self.assertEqual(Transaction.query.filter_by(type="escrow_hold").count(), 1)

    def test_transaction_owned_by_another_buyer(self):
        intent_id = self.pay(self.buyer_token, 100)
        payload = self.order_payload(self.product, intent_id)
        self.api("POST", "/orders", self.buyer_token, json=payload)

        _, other_buyer_token = self.make_user("buyer")
        resp = self.api("POST", "/orders", other_buyer_token, json=payload)
        self.assertEqual(resp.status_code, 409)
        self.assertEqual(Order.query.count(), 1)


class TestOrderLifecycle(MarketplaceTestCase):
    def setUp(self):
        super().setUp()
        self.admin, self.admin_token = self.make_user("admin")
        self.artisan, self.artisan_token = self.make_user("artisan")
        self.buyer, self.buyer_token = self.make_user("buyer")
        self.product = self.make_product(self.artisan_token, price=100)

    def test_buyer_sees_own_orders(self):
        order = self.paid_order(self.buyer_token, self.product)
        resp = self.api("GET", "/orders", self.buyer_token)
        self.assertEqual([o["id"] for o in resp.get_json()["orders"]], [order["id"]])

        _, stranger_token = self.make_user("buyer")
        resp = self.api("GET", f"/orders/{order['id']}", stranger_token)
        self.assertEqual(resp.status_code, 403)

        resp = self.api("GET", f"/orders/{order['id']}", self.artisan_token)
        self.assertEqual(resp.status_code, 200)
        code = resp.get_json()["order"]["authenticationCodes"][0]
        self.assertTrue(code["qrCodeUrl"].endswith(f"/verify/{code['publicCode']}"))

    def test_ship_records_tracking(self):
        order = self.paid_order(self.buyer_token, self.product)
        resp = self.api(
            "PATCH",
            f"/orders/{order['id']}/status",
            self.artisan_token,
            json={"status": "shipped", "carrier": "TCS", "trackingNumber": "TCS123"},
        )
        self.assertEqual(resp.status_code, 200)
        shipping = resp.get_json()["order"]["shippingDetails"]
        self.assertEqual(shipping["carrier"], "TCS")
        self.assertEqual(shipping["trackingNumber"], "TCS123")
        self.assertIsNotNone(shipping["shippedAt"])

    def test_delivered_cannot_be_set_directly(self):
        order = self.paid_order(self.buyer_token, self.product)
        resp = self.api("PATCH", f"/orders/{order['id']}/status", self.artisan_token, json={"status": "delivered"})
        self.assertEqual(resp.status_code, 400)

    def test_illegal_transition(self):
        order = self.paid_order(self.buyer_token, self.product)
        self.api("PATCH", f"/orders/{order['id']}/status", self.artisan_token, json={"status": "shipped"})
        resp = self.api("PATCH", f"/orders/{order['id']}/status", self.artisan_token, json={"status": "processing"})
        self.assertEqual(resp.status_code, 409)

    def test_other_artisan_cannot_update(self):
        order = self.paid_order(self.buyer_token, self.product)
        _, other_token = self.make_user("artisan")
        resp = self.api("PATCH", f"/orders/{order['id']}/status", other_token, json={"status": "processing"})
        self.assertEqual(resp.status_code, 403)

    def test_cancel_paid_order_refunds_and_revokes_codes(self):
        order = self.paid_order(self.buyer_token, self.product)
        resp = self.api("PUT", f"/orders/{order['id']}/cancel", self.buyer_token, json={"reason": "Changed my mind"})
        self.assertEqual(resp.status_code, 200)
        cancelled = resp.get_json()["order"]
        self.assertEqual(cancelled["status"], "cancelled")
        self.assertEqual(cancelled["paymentInfo"]["status"], "refunded")
        self.assertEqual(cancelled["cancellation"]["reason"], "Changed my mind")

        code = order["authenticationCodes"][0]["publicCode"]
        resp = self.api("GET", f"/verification/{code}")
        self.assertEqual(resp.get_json()["status"], "revoked")
        self.assertEqual(Transaction.query.filter_by(type="refund").count(), 1)

    def test_cannot_cancel_after_shipping(self):
        order = self.paid_order(self.buyer_token, self.product)
        self.api("PATCH", f"/orders/{order['id']}/status", self.artisan_token, json={"status": "shipped"})
        resp = self.api("PUT", f"/orders/{order['id']}/cancel", self.buyer_token, json={})
        self.assertEqual(resp.status_code, 409)

    def test_refund_is_admin_only(self):
        order = self.paid_order(self.buyer_token, self.product)
        resp = self.api("PATCH", f"/orders/{order['id']}/status", self.artisan_token, json={"status": "refunded"})
        self.assertEqual(resp.status_code, 403)

        resp = self.api("PATCH", f"/orders/{order['id']}/status", self.admin_token, json={"status": "refunded"})
        self.assertEqual(resp.status_code, 200)
        refunded = resp.get_json()["order"]
        self.assertEqual(refunded["refund"]["amount"], 100.0)
        hold = Transaction.query.filter_by(type="escrow_hold").one()
        self.assertEqual(hold.status, "refunded")

    def test_refund_blocked_after_release(self):
        order = self.delivered_order(self.buyer_token, self.product)
        self.api("POST", f"/admin/escrow/{order['id']}/release", self.admin_token, json={})
        resp = self.api("PATCH", f"/orders/{order['id']}/status", self.admin_token, json={"status": "refunded"})
        self.assertEqual(resp.status_code, 409)

    def test_cod_order_flow(self):
        resp = self.api("POST", "/orders", self.buyer_token, json=self.order_payload(self.product, method="cod"))
        order_id = resp.get_json()["order"]["id"]

        resp = self.api("PATCH", f"/orders/{order_id}/status", self.artisan_token, json={"status": "confirmed"})
        self.assertEqual(resp.status_code, 200)

        order = self.api("GET", f"/orders/{order_id}", self.buyer_token).get_json()["order"]
        self.assertEqual(len(order["authenticationCodes"]), 1)
        self.deliver(order)

        stored = Order.query.one()
        self.assertEqual(stored.status, "delivered")
        self.assertEqual(stored.payment_status, "completed")
        self.assertEqual(float(stored.artisan_payout), 90.0)
