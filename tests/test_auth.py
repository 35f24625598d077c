from tests.base import PASSWORD, MarketplaceTestCase


class TestAuth(MarketplaceTestCase):
    def register(self, **overrides):
        payload = {"email": "artisan@example.com", "password": PASSWORD, "name": "Bushra", "role": "artisan"}
        payload.update(overrides)
        return self.api("POST", "/auth/register", json=payload)

    def test_register_and_login(self):
        resp = self.register()
        self.assertEqual(resp.status_code, 201)
        self.assertIn("user_id", resp.get_json())

        resp = self.api("POST", "/auth/login", json={"email": "Artisan@Example.com", "password": PASSWORD})
        self.assertEqual(resp.status_code, 200)
        body = resp.get_json()
        self.assertEqual(body["user"]["role"], "artisan")

        me = self.api("GET", "/auth/me", body["access_token"]).get_json()["user"]
        self.assertEqual(me["email"], "artisan@example.com")

    def test_register_validation(self):
        self.assertEqual(self.register(email="not-an-email").status_code, 400)
        self.assertEqual(self.register(password="short").status_code, 400)
        self.assertEqual(self.register(role="admin").status_code, 400)

    def test_duplicate_email(self):
        self.register()
        self.assertEqual(self.register().status_code, 409)

    def test_wrong_password(self):
        self.register()
        resp = self.api("POST", "/auth/login", json={"email": "artisan@example.com", "password": "wrong-password"})
        self.assertEqual(resp.status_code, 401)

    def test_refresh(self):
        self.register()
        tokens = self.api("POST", "/auth/login", json={"email": "artisan@example.com", "password": PASSWORD}).get_json()
        resp = self.api("POST", "/auth/refresh", tokens["refresh_token"])
        self.assertEqual(resp.status_code, 200)
        self.assertIn("access_token", resp.get_json())

    def test_logout_revokes_token(self):
        _, token = self.make_user("buyer")
        self.assertEqual(self.api("POST", "/auth/logout", token).status_code, 200)

        resp = self.api("GET", "/auth/me", token)
        self.assertEqual(resp.status_code, 401)
        self.assertEqual(resp.get_json()["message"], "Token has been revoked")

    def test_invalid_token(self):
        resp = self.api("GET", "/auth/me", "not.a.token")
        self.assertEqual(resp.status_code, 401)

    def test_health(self):
        resp = self.client.get("/health")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.get_json()["status"], "healthy")

    def test_create_admin_command(self):
        runner = self.app.test_cli_runner()
        result = runner.invoke(args=["create-admin", "root@example.com", PASSWORD])
        self.assertEqual(result.exit_code, 0, result.output)

        resp = self.api("POST", "/auth/login", json={"email": "root@example.com", "password": PASSWORD})
        self.assertEqual(resp.get_json()["user"]["role"], "admin")

        result = runner.invoke(args=["create-admin", "root@example.com", PASSWORD])
        self.assertNotEqual(result.exit_code, 0)
