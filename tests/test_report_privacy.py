"""
Supervisor report rows and privacy export/erasure.
"""

import os
import tempfile
import unittest

from attemptlock.attempts import InMemoryAttemptDirectory
from attemptlock.db import Database, SqliteStorage
from attemptlock.fingerprint import RequestContext
from attemptlock.models import Attempt, AttemptState
from attemptlock.privacy import PrivacyProvider
from attemptlock.report import build_report
from attemptlock.store import InMemoryStorage
from attemptlock.unlock import UnlockService
from attemptlock.validator import issue_lock

CTX = RequestContext(session_token="s", client_ip="10.0.0.5", user_agent="UA")


class TestReport(unittest.TestCase):

    def setUp(self):
        self.storage = InMemoryStorage()
        self.attempts = InMemoryAttemptDirectory([
            Attempt(attempt_id=5, quiz_id=7, user_id=50),
            Attempt(attempt_id=2, quiz_id=7, user_id=40, state=AttemptState.FINISHED),
            Attempt(attempt_id=3, quiz_id=7, user_id=40),
            Attempt(attempt_id=4, quiz_id=7, user_id=60, preview=True),
            Attempt(attempt_id=9, quiz_id=8, user_id=40),
        ])
        self.clock = iter([1000, 2000, 3000])
        self.service = UnlockService("oneconnection", self.storage, self.attempts, clock=lambda: next(self.clock))

    def _lock(self, attempt_id):
        self.storage.locks.create(issue_lock(attempt_id, 7, "fp"))

    def test_rows_sorted_and_filtered(self):
        rows = build_report(7, self.attempts.for_quiz(7), self.storage)
        self.assertEqual([(r.user_id, r.attempt_id) for r in rows], [(40, 2), (40, 3), (50, 5)])

    def test_lock_and_unlock_columns(self):
        self._lock(3)
        self._lock(5)
        self.service.unlock(5, 2)
        self._lock(5)
        self.service.unlock(5, 3)

        rows = {r.attempt_id: r for r in build_report(7, self.attempts.for_quiz(7), self.storage)}
        self.assertTrue(rows[3].locked)
        self.assertIsNone(rows[3].last_unlocked_by)
        self.assertFalse(rows[5].locked)
        self.assertEqual(rows[5].last_unlocked_by, 3)
        self.assertEqual(rows[5].last_unlocked_at, 2000)
        self.assertFalse(rows[2].can_unlock)
        self.assertTrue(rows[3].can_unlock)

    def test_row_dict(self):
        self._lock(5)
        self.service.unlock(5, 2)
        row = [r for r in build_report(7, self.attempts.for_quiz(7), self.storage) if r.attempt_id == 5][0]
        d = row.to_dict()
        self.assertEqual(d["state"], "inprogress")
        self.assertEqual(d["last_unlocked_at"], "1970-01-01T00:16:40Z")

    def test_empty_quiz(self):
        self.assertEqual(build_report(99, [], self.storage), [])


class TestPrivacy(unittest.TestCase):

    def setUp(self):
        self.storage = InMemoryStorage()
        self.privacy = PrivacyProvider("oneconnection", self.storage)
        self.storage.audit.append(7, 1, 2, 100)
        self.storage.audit.append(8, 4, 2, 200)
        self.storage.audit.append(7, 3, 5, 300)

    def test_metadata_names_audit_column(self):
        meta = self.privacy.metadata()
        self.assertIn("unlockedby", meta["tables"]["quizaccess_oneconnection_log"])

    def test_metadata_names_real_audit_table(self):
        with tempfile.TemporaryDirectory() as tmp:
            db = Database(os.path.join(tmp, "locks.db"))
            storage = SqliteStorage(db, "quizaccess_onesession")
            storage.init_db()
            try:
                tables = {
                    row["name"] for row in
                    db.connection().execute("SELECT name FROM sqlite_master WHERE type = 'table'")
                }
                meta = PrivacyProvider("onesession", storage).metadata()
                self.assertEqual(list(meta["tables"]), ["quizaccess_onesession_log"])
                self.assertIn("quizaccess_onesession_log", tables)
            finally:
                db.close()

    def test_contexts_for_user(self):
        self.assertEqual(sorted(self.privacy.quiz_ids_for_user(2)), [7, 8])
        self.assertEqual(self.privacy.quiz_ids_for_user(99), [])

    def test_export(self):
        exported = self.privacy.export_user_data(2)
        self.assertEqual([e["attempt_id"] for e in exported], [1, 4])
        self.assertEqual(exported[0]["time_unlocked_utc"], "1970-01-01T00:01:40Z")

    def test_delete_for_users(self):
        self.assertEqual(self.privacy.delete_for_users([2, 99]), 2)
        self.assertEqual(self.privacy.export_user_data(2), [])
        self.assertEqual(len(self.privacy.export_user_data(5)), 1)

    def test_delete_for_quiz(self):
        self.assertEqual(self.privacy.delete_for_quiz(7), 2)
        self.assertEqual(self.storage.audit.entries_for_quiz(7), [])
        self.assertEqual(len(self.storage.audit.entries_for_quiz(8)), 1)


if __name__ == "__main__":
    unittest.main()
