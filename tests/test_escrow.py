import uuid
from unittest import mock

from sqlalchemy.exc import OperationalError

from src.models.order import Order
from src.models.transaction import Transaction
from src.services import escrow_service
from tests.base import MarketplaceTestCase


class TestEscrowRelease(MarketplaceTestCase):
    def setUp(self):
        super().setUp()
        self.admin, self.admin_token = self.make_user("admin")
        self.artisan, self.artisan_token = self.make_user("artisan")
        self.buyer, self.buyer_token = self.make_user("buyer")
        self.product = self.make_product(self.artisan_token, price=100)

    def test_release_delivered_order(self):
        order = self.delivered_order(self.buyer_token, self.product)
        resp = self.api("POST", f"/admin/escrow/{order['id']}/release", self.admin_token, json={"notes": "Looks good"})
        self.assertEqual(resp.status_code, 200)

        payout = resp.get_json()["order"]["paymentDistribution"]["artisanPayout"]
        self.assertTrue(payout["paid"])
        self.assertEqual(payout["amount"], 90.0)
        self.assertEqual(payout["escrowReleasedBy"], str(self.admin.user_id))
        self.assertEqual(payout["escrowReleaseNotes"], "Looks good")

        types = sorted(t.type for t in Transaction.query.all())
        self.assertEqual(types, ["artisan_payout", "escrow_hold", "platform_commission"])
        self.assertEqual(Transaction.query.filter_by(type="escrow_hold").one().status, "completed")

    def test_second_release_conflicts(self):
        order = self.delivered_order(self.buyer_token, self.product)
        self.api("POST", f"/admin/escrow/{order['id']}/release", self.admin_token, json={})
        resp = self.api("POST", f"/admin/escrow/{order['id']}/release", self.admin_token, json={})
        self.assertEqual(resp.status_code, 409)
        self.assertIsNotNone(resp.get_json()["releasedAt"])
        self.assertEqual(Transaction.query.filter_by(type="artisan_payout").count(), 1)

    def test_undelivered_order_cannot_be_released(self):
        order = self.paid_order(self.buyer_token, self.product)
        resp = self.api("POST", f"/admin/escrow/{order['id']}/release", self.admin_token, json={})
        self.assertEqual(resp.status_code, 400)
        self.assertFalse(Order.query.one().escrow_released)

    def test_unknown_order(self):
        resp = self.api("POST", f"/admin/escrow/{uuid.uuid4()}/release", self.admin_token, json={})
        self.assertEqual(resp.status_code, 404)

    def test_admin_only(self):
        order = self.delivered_order(self.buyer_token, self.product)
        resp = self.api("POST", f"/admin/escrow/{order['id']}/release", self.artisan_token, json={})
        self.assertEqual(resp.status_code, 403)


class TestBulkRelease(MarketplaceTestCase):
    def setUp(self):
        super().setUp()
        self.admin, self.admin_token = self.make_user("admin")
        _, self.artisan_token = self.make_user("artisan")
        _, self.buyer_token = self.make_user("buyer")
        self.product = self.make_product(self.artisan_token, price=100)

    def test_one_already_released(self):
        orders = [self.delivered_order(self.buyer_token, self.product) for _ in range(3)]
        ids = [o["id"] for o in orders]
        self.api("POST", f"/admin/escrow/{ids[1]}/release", self.admin_token, json={})

        resp = self.api("POST", "/admin/escrow/bulk-release", self.admin_token, json={"orderIds": ids})
        self.assertEqual(resp.status_code, 200)
        body = resp.get_json()
        self.assertEqual(sorted(body["successful"]), sorted([ids[0], ids[2]]))
        self.assertEqual(len(body["failed"]), 1)
        self.assertEqual(body["failed"][0]["orderId"], ids[1])
        self.assertEqual(body["failed"][0]["reason"], "Escrow already released")
        self.assertEqual(Order.query.filter_by(escrow_released=True).count(), 3)

    def test_failures_do_not_block_others(self):
        delivered = self.delivered_order(self.buyer_token, self.product)
        undelivered = self.paid_order(self.buyer_token, self.product)
        ids = ["not-a-uuid", str(uuid.uuid4()), undelivered["id"], delivered["id"]]

        body = self.api("POST", "/admin/escrow/bulk-release", self.admin_token, json={"orderIds": ids}).get_json()
        self.assertEqual(body["successful"], [delivered["id"]])
        self.assertEqual([f["orderId"] for f in body["failed"]], ids[:3])

    def test_database_error_is_reported_and_rest_continue(self):
        ids = [self.delivered_order(self.buyer_token, self.product)["id"] for _ in range(3)]
        real_release = escrow_service.release_escrow
        calls = []

        def flaky_release(order_id, admin_id, notes=None):
            calls.append(order_id)
            if len(calls) == 1:
                raise OperationalError("UPDATE orders", {}, Exception("deadlock detected"))
            return real_release(order_id, admin_id, notes)

        with mock.patch.object(escrow_service, "release_escrow", side_effect=flaky_release):
            resp = self.api("POST", "/admin/escrow/bulk-release", self.admin_token, json={"orderIds": ids})

        self.assertEqual(resp.status_code, 200)
        body = resp.get_json()
        self.assertEqual(len(calls), 3)
        self.assertEqual(body["failed"], [{"orderId": ids[0], "reason": "Database error"}])
        self.assertEqual(body["successful"], ids[1:])
        self.assertEqual(Order.query.filter_by(escrow_released=True).count(), 2)

    def test_empty_order_ids(self):
        for payload in ({}, {"orderIds": []}, {"orderIds": "abc"}):
            resp = self.api("POST", "/admin/escrow/bulk-release", self.admin_token, json=payload)
            self.assertEqual(resp.status_code, 400)


class TestEscrowQueries(MarketplaceTestCase):
    def setUp(self):
        super().setUp()
        self.admin, self.admin_token = self.make_user("admin")
        _, self.artisan_token = self.make_user("artisan")
        _, self.buyer_token = self.make_user("buyer")
        self.product = self.make_product(self.artisan_token, price=100)

    def test_pending_released_and_stats(self):
        released = self.delivered_order(self.buyer_token, self.product)
        self.delivered_order(self.buyer_token, self.product)
        self.paid_order(self.buyer_token, self.product)
        self.api("POST", f"/admin/escrow/{released['id']}/release", self.admin_token, json={})

        pending = self.api("GET", "/admin/escrow/pending", self.admin_token).get_json()
        self.assertEqual(pending["pagination"]["total"], 2)
        self.assertEqual(pending["totalEscrowHeld"], 180.0)

        delivered_only = self.api("GET", "/admin/escrow/pending?status=delivered", self.admin_token).get_json()
        self.assertEqual(delivered_only["pagination"]["total"], 1)

        done = self.api("GET", "/admin/escrow/released", self.admin_token).get_json()
        self.assertEqual([o["id"] for o in done["orders"]], [released["id"]])

        stats = self.api("GET", "/admin/escrow/stats", self.admin_token).get_json()["stats"]
        self.assertEqual(stats, {"pendingAmount": 180.0, "pendingCount": 2, "releasedAmount": 90.0, "releasedCount": 1})

    def test_pagination_limit(self):
        for _ in range(3):
            self.paid_order(self.buyer_token, self.product)
        body = self.api("GET", "/admin/escrow/pending?page=2&limit=2", self.admin_token).get_json()
        self.assertEqual(len(body["orders"]), 1)
        self.assertEqual(body["pagination"], {"total": 3, "page": 2, "limit": 2, "pages": 2})
        self.assertEqual(body["totalEscrowHeld"], 270.0)
