import unittest
from datetime import datetime, timedelta
from unittest.mock import Mock

from sqlalchemy.exc import OperationalError

from Authentication import ALLOW, GateDecision, decide_access
from backend import Session
from tests.base import ANSWERS, AppTestCase


def make_session(user_id=1):
    return Session(
        access_token="token",
        session_id="sid",
        user_id=user_id,
        expires_at=datetime.utcnow() + timedelta(hours=1),
    )


class DecideAccessTests(unittest.TestCase):
    def test_anonymous_protected_path_goes_to_login(self):
        for path in ("/dashboard", "/quiz", "/api/relapses", "/anything"):
            self.assertEqual(decide_access(path, None, Mock()), GateDecision("/"))

    def test_anonymous_public_paths_are_served(self):
        has_profile = Mock()
        self.assertEqual(decide_access("/", None, has_profile), ALLOW)
        self.assertEqual(decide_access("/auth/callback", None, has_profile), ALLOW)
        has_profile.assert_not_called()

    def test_signed_in_login_page_routes_by_profile(self):
        session = make_session(7)
        with_profile = Mock(return_value=True)
        self.assertEqual(decide_access("/", session, with_profile), GateDecision("/dashboard"))
        with_profile.assert_called_once_with(7)
        self.assertEqual(decide_access("/", session, Mock(return_value=False)), GateDecision("/quiz"))

    def test_profile_lookup_failure_serves_requested_page(self):
        failing = Mock(side_effect=OperationalError("SELECT", {}, Exception("down")))
        self.assertEqual(decide_access("/", make_session(), failing), ALLOW)

    def test_signed_in_protected_path_is_served_without_lookup(self):
        has_profile = Mock()
        self.assertTrue(decide_access("/dashboard", make_session(), has_profile).allowed)
        has_profile.assert_not_called()

    def test_decision_is_repeatable(self):
        session = make_session()
        has_profile = Mock(return_value=False)
        first = decide_access("/", session, has_profile)
        second = decide_access("/", session, has_profile)
        self.assertEqual(first, second)
        self.assertEqual(has_profile.call_count, 2)


class AccessGateRequestTests(AppTestCase):
    def test_anonymous_dashboard_redirects_to_login(self):
        response = self.client.get("/dashboard")
        self.assertEqual(response.status_code, 302)
        self.assertEqual(response.headers["Location"], "/")

    def test_anonymous_login_page_is_served(self):
        response = self.client.get("/")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json()["page"], "login")
        self.assertIsNone(response.get_json()["error"])

    def test_login_page_routes_through_onboarding_states(self):
        self.register()
        response = self.client.get("/")
        self.assertEqual(response.headers["Location"], "/quiz")

        self.client.post("/api/quiz", json=ANSWERS)
        response = self.client.get("/")
        self.assertEqual(response.headers["Location"], "/dashboard")

    def test_garbage_cookie_is_anonymous(self):
        self.client.set_cookie("recovery-session", "not-a-token")
        response = self.client.get("/quiz")
        self.assertEqual(response.headers["Location"], "/")

    def test_sign_out_returns_to_anonymous(self):
        self.register()
        self.assertEqual(self.client.get("/quiz").status_code, 200)
        token = self.client.get_cookie("recovery-session").value

        self.client.post("/api/logout")
        self.assertEqual(self.client.get("/quiz").headers["Location"], "/")

        # The revoked token is rejected even if it is replayed.
        self.client.set_cookie("recovery-session", token)
        self.assertEqual(self.client.get("/quiz").headers["Location"], "/")


if __name__ == "__main__":
    unittest.main()
