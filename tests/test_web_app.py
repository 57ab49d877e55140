import os
import threading
import unittest
from unittest import mock

from fastapi.testclient import TestClient

from support import FakeBridge, FakeMailer, TempDataDir

from pwch import accounts
from pwch.config import settings_from_mapping
from pwch.exceptions import InfrastructureError, OldDigestRejected
from pwch.rate_limit import CooldownRateLimiter
from pwch.security import PasswordHasher
from pwch.web_app import create_app, parse_address

OLD = "OldPassword123!"
NEW = "StrongPassword123!"


class TestParseAddress(unittest.TestCase):
    def test_parse(self):
        self.assertEqual(parse_address("alice@example.com"), ("alice", "example.com"))
        self.assertEqual(parse_address(" bob@example.org "), ("bob", "example.org"))
        for raw in (
            "",
            "alice",
            "@example.com",
            "alice@",
            "a b@example.com",
            "Alice <alice@example.com>",
        ):
            with self.subTest(raw=raw):
                self.assertIsNone(parse_address(raw))


class TestWebApp(TempDataDir, unittest.TestCase):
    def setUp(self):
        super().setUp()
        self.hasher = PasswordHasher(cost=4)
        accounts.create_account(
            username="alice",
            domain="example.com",
            password_hash=self.hasher.hash(OLD),
        )
        accounts.create_account(
            username="dave",
            domain="example.com",
            password_hash=self.hasher.hash(OLD),
            enabled=False,
        )
        self.settings = settings_from_mapping(
            {
                "domain": "mail.example.com",
                "url_prefix": "/pwch",
                "db": {"path": os.path.join(self.data_dir, "pwch.db")},
                "smtp": {"sender": "pwch@example.com"},
                "password_policy": {"min_length": 12, "max_length": 24},
            }
        )
        self.bridge = FakeBridge()
        self.mailer = FakeMailer()
        self.app = create_app(
            self.settings,
            bridge=self.bridge,
            mailer=self.mailer,
            hasher=self.hasher,
            limiter=CooldownRateLimiter(window_seconds=0),
            start_sweeper=False,
        )
        self.client = TestClient(self.app)

    def tearDown(self):
        self.client.close()
        self.app.state.dispatcher.shutdown()
        super().tearDown()

    def _request_link(self, email="alice@example.com"):
        r = self.client.post("/pwch/emailSend", data={"email": email})
        self.assertEqual(r.status_code, 200)
        self.assertIn("Check your inbox", r.text)
        fut = self.app.state.last_dispatch
        self.assertIsNotNone(fut)
        return fut.result(timeout=5)

    def _submit(self, access, old=OLD, new=NEW, confirm=None):
        query = access.split("?", 1)[1]
        return self.client.post(
            f"/pwch/submitPassword?{query}",
            data={
                "current-password": old,
                "new-password": new,
                "confirm-password": new if confirm is None else confirm,
            },
            follow_redirects=False,
        )

    def test_submit_email_page(self):
        r = self.client.get("/pwch/submitEmail")
        self.assertEqual(r.status_code, 200)
        self.assertIn('action="/pwch/emailSend"', r.text)

    def test_full_flow(self):
        access = self._request_link()
        self.assertEqual(self.mailer.sent[0][1], "alice@example.com")

        r = self.client.get(f"/pwch/{access}")
        self.assertEqual(r.status_code, 200)
        self.assertIn("Change password for alice@example.com", r.text)
        self.assertIn("at least 12 characters", r.text)

        r = self._submit(access)
        self.assertEqual(r.status_code, 200)
        self.assertIn("Password changed", r.text)
        stored = accounts.lookup_account("alice", "example.com").password_hash
        self.assertTrue(self.hasher.verify(NEW, stored))

        # link is gone now
        r = self._submit(access, old=NEW, new="AnotherPassword123!")
        self.assertEqual(r.status_code, 302)
        self.assertEqual(r.headers["location"], "/")
        r = self.client.get(f"/pwch/{access}")
        self.assertEqual(r.text, "Link expired")

    def test_invalid_email(self):
        r = self.client.post("/pwch/emailSend", data={"email": "not an address"})
        self.assertEqual(r.status_code, 400)
        self.assertIn("Please enter a valid email address", r.text)
        self.assertIsNone(self.app.state.last_dispatch)

    def test_unknown_and_disabled_accounts_get_the_same_page(self):
        for email in ("ghost@example.com", "dave@example.com"):
            with self.subTest(email=email):
                r = self.client.post("/pwch/emailSend", data={"email": email})
                self.assertEqual(r.status_code, 200)
                self.assertIn("Check your inbox", r.text)
        self.assertIsNone(self.app.state.last_dispatch)
        self.assertEqual(self.mailer.sent, [])

    def test_cooldown(self):
        app = create_app(
            self.settings,
            bridge=self.bridge,
            mailer=self.mailer,
            hasher=self.hasher,
            limiter=CooldownRateLimiter(window_seconds=60),
            start_sweeper=False,
        )
        with TestClient(app) as client:
            r = client.post("/pwch/emailSend", data={"email": "alice@example.com"})
        self.assertEqual(r.status_code, 425)
        self.assertEqual(r.text, "Too early. Please try again.")
        self.assertEqual(self.mailer.sent, [])

    def test_method_not_allowed(self):
        r = self.client.get("/pwch/emailSend")
        self.assertEqual(r.status_code, 405)

    def test_mismatch_shows_error(self):
        access = self._request_link()
        r = self._submit(access, confirm="SomethingElse123!")
        self.assertEqual(r.status_code, 400)
        self.assertIn("Passwords do not match", r.text)
        self.assertEqual(self.bridge.rekey_calls, [])
        # still valid
        self.assertEqual(self.client.get(f"/pwch/{access}").status_code, 200)

    def test_wrong_current_password(self):
        access = self._request_link()
        r = self._submit(access, old="WrongPassword123!")
        self.assertEqual(r.status_code, 403)
        self.assertIn("Current password does not match", r.text)

    def test_rekey_failure_shows_internal_error(self):
        access = self._request_link()
        self.bridge.rekey_exc = OldDigestRejected(exit_code=65)
        r = self._submit(access)
        self.assertEqual(r.status_code, 500)
        self.assertIn("Internal error: Password not changed", r.text)
        stored = accounts.lookup_account("alice", "example.com").password_hash
        self.assertTrue(self.hasher.verify(OLD, stored))

    def test_unknown_link(self):
        r = self.client.get(
            "/pwch/changePassword?token=nope&username=alice&domain=example.com"
        )
        self.assertEqual(r.text, "Link expired")


class TestEmailSendCooldown(TempDataDir, unittest.TestCase):
    def setUp(self):
        super().setUp()
        hasher = PasswordHasher(cost=4)
        accounts.create_account(
            username="alice",
            domain="example.com",
            password_hash=hasher.hash(OLD),
        )
        self.now = [0.0]
        self.limiter = CooldownRateLimiter(
            window_seconds=60, clock=lambda: self.now[0]
        )
        # window already elapsed
        self.now[0] = 100.0
        self.mailer = FakeMailer()
        self.app = create_app(
            settings_from_mapping(
                {
                    "domain": "mail.example.com",
                    "url_prefix": "/pwch",
                    "db": {"path": os.path.join(self.data_dir, "pwch.db")},
                    "smtp": {"sender": "pwch@example.com"},
                }
            ),
            bridge=FakeBridge(),
            mailer=self.mailer,
            hasher=hasher,
            limiter=self.limiter,
            start_sweeper=False,
        )

    def _post(self, client, email):
        return client.post("/pwch/emailSend", data={"email": email})

    def test_concurrent_requests_send_one_link(self):
        real_lookup = accounts.account_enabled

        def slow_lookup(username, domain):
            threading.Event().wait(0.3)
            return real_lookup(username, domain)

        codes = []
        lock = threading.Lock()
        barrier = threading.Barrier(2)

        with TestClient(self.app) as client:

            def worker():
                barrier.wait()
                r = self._post(client, "alice@example.com")
                with lock:
                    codes.append(r.status_code)

            with mock.patch.object(accounts, "account_enabled", side_effect=slow_lookup):
                threads = [threading.Thread(target=worker) for _ in range(2)]
                for t in threads:
                    t.start()
                for t in threads:
                    t.join()

        self.assertEqual(sorted(codes), [200, 425])
        self.assertEqual(len(self.mailer.sent), 1)

    def test_unknown_account_does_not_use_the_window(self):
        with TestClient(self.app) as client:
            self.assertEqual(self._post(client, "ghost@example.com").status_code, 200)
            self.assertIsNone(self.app.state.last_dispatch)

            self.assertEqual(self._post(client, "alice@example.com").status_code, 200)
            self.app.state.last_dispatch.result(timeout=5)

            self.assertEqual(self._post(client, "alice@example.com").status_code, 425)
        self.assertEqual(len(self.mailer.sent), 1)

    def test_lookup_failure_shows_generic_error(self):
        with TestClient(self.app) as client:
            with mock.patch.object(
                accounts, "account_enabled", side_effect=InfrastructureError()
            ):
                r = self._post(client, "alice@example.com")
            self.assertEqual(r.status_code, 500)
            self.assertIn("Internal error", r.text)
            self.assertNotIn("Password not changed", r.text)

            # the slot was given back
            self.assertEqual(self._post(client, "alice@example.com").status_code, 200)
            self.app.state.last_dispatch.result(timeout=5)
        self.assertEqual(len(self.mailer.sent), 1)
