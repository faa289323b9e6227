import unittest
from datetime import datetime, timedelta
from unittest.mock import Mock, patch

from sqlalchemy.exc import IntegrityError, OperationalError

from Analysis import days_clean, unlocked_thresholds
from backend import ProfileRepository, RelapseRepository, StreakRepository
from models import Profile, Relapse, Streak, db
from Quiz import complete_onboarding
from tests.base import ANSWERS, AppTestCase


class DerivedValueTests(unittest.TestCase):
    def test_days_clean_counts_whole_days(self):
        now = datetime(2024, 3, 10, 12, 0, 0)
        self.assertEqual(days_clean(now - timedelta(days=5), now), 5)
        self.assertEqual(days_clean(now - timedelta(days=5) + timedelta(seconds=1), now), 4)
        self.assertEqual(days_clean(now - timedelta(hours=23), now), 0)

    def test_days_clean_never_negative(self):
        now = datetime(2024, 3, 10)
        self.assertEqual(days_clean(now + timedelta(days=2), now), 0)

    def test_unlocked_thresholds(self):
        self.assertEqual(unlocked_thresholds(0), [])
        self.assertEqual(unlocked_thresholds(6), [1])
        self.assertEqual(unlocked_thresholds(7), [1, 7])
        self.assertEqual(unlocked_thresholds(400), [1, 7, 30, 90, 365])


class RelapseTests(AppTestCase):
    def onboard(self, days_ago):
        self.register()
        user_id = self.user_id()
        with self.app.app_context():
            complete_onboarding(self.backend, user_id, ANSWERS, now=datetime.utcnow() - timedelta(days=days_ago))
        return user_id

    def test_relapse_rotates_active_streak(self):
        user_id = self.onboard(days_ago=3)
        response = self.client.post("/api/relapses", json={"trigger": "stress", "notes": "hard day"})
        self.assertEqual(response.status_code, 201)
        payload = response.get_json()
        self.assertEqual(payload["relapse"]["trigger"], "stress")
        self.assertEqual(payload["dashboard"]["days_clean"], 0)
        self.assertEqual(len(payload["dashboard"]["relapses"]), 1)

        with self.app.app_context():
            relapses = Relapse.query.filter_by(user_id=user_id).all()
            self.assertEqual(len(relapses), 1)
            self.assertEqual(relapses[0].notes, "hard day")

            closed = Streak.query.filter_by(user_id=user_id, is_active=False).all()
            self.assertEqual(len(closed), 1)
            self.assertEqual(closed[0].days_count, 3)
            self.assertIsNotNone(closed[0].end_date)

            active = Streak.query.filter_by(user_id=user_id, is_active=True).all()
            self.assertEqual(len(active), 1)
            self.assertEqual(active[0].days_count, 0)

    def test_blank_trigger_and_notes_are_stored_as_null(self):
        user_id = self.onboard(days_ago=1)
        self.client.post("/api/relapses", json={"trigger": "  "})
        with self.app.app_context():
            relapse = Relapse.query.filter_by(user_id=user_id).one()
            self.assertIsNone(relapse.trigger)
            self.assertIsNone(relapse.notes)

    def test_relapse_without_active_streak_is_noop(self):
        self.register()
        response = self.client.post("/api/relapses", json={})
        self.assertEqual(response.status_code, 409)
        with self.app.app_context():
            self.assertEqual(Relapse.query.count(), 0)
            self.assertEqual(Streak.query.count(), 0)

    def test_failed_step_leaves_nothing_applied(self):
        user_id = self.onboard(days_ago=2)
        error = OperationalError("INSERT", {}, Exception("connection lost"))
        with patch.object(self.backend.streaks, "open", side_effect=error):
            response = self.client.post("/api/relapses", json={"trigger": "boredom"})
        self.assertEqual(response.status_code, 500)
        with self.app.app_context():
            self.assertEqual(Relapse.query.count(), 0)
            streaks = Streak.query.filter_by(user_id=user_id).all()
            self.assertEqual(len(streaks), 1)
            self.assertTrue(streaks[0].is_active)
            self.assertIsNone(streaks[0].end_date)

    def test_second_active_streak_is_rejected(self):
        user_id = self.onboard(days_ago=0)
        with self.app.app_context():
            with self.assertRaises(IntegrityError):
                self.backend.streaks.open(user_id, datetime.utcnow())
            db.session.rollback()
            self.assertEqual(Streak.query.filter_by(user_id=user_id, is_active=True).count(), 1)

    def test_closing_an_inactive_streak_changes_nothing(self):
        user_id = self.onboard(days_ago=0)
        with self.app.app_context():
            streak = self.backend.streaks.get_active(user_id)
            self.assertEqual(self.backend.streaks.close(streak.id, datetime.utcnow(), 0), 1)
            self.assertEqual(self.backend.streaks.close(streak.id, datetime.utcnow(), 0), 0)
            db.session.rollback()

    def test_streak_history_newest_first(self):
        self.onboard(days_ago=4)
        self.client.post("/api/relapses", json={})
        response = self.client.get("/api/streaks/history")
        self.assertEqual(response.status_code, 200)
        history = response.get_json()
        self.assertEqual(len(history), 2)
        self.assertTrue(history[0]["is_active"])
        self.assertFalse(history[1]["is_active"])
        self.assertEqual(history[1]["days_count"], 4)


class RepositorySessionTests(unittest.TestCase):
    def test_reads_go_through_the_injected_session(self):
        session = Mock()
        StreakRepository(session).history(1)
        RelapseRepository(session).count(1)
        ProfileRepository(session).get(1)
        self.assertEqual([call.args[0] for call in session.query.call_args_list], [Streak, Relapse])
        session.get.assert_called_once_with(Profile, 1)


if __name__ == "__main__":
    unittest.main()
