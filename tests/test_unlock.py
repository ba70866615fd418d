"""
Supervisor unlock: audit trail, eligibility and authorization.
"""

import unittest
from unittest.mock import patch

from attemptlock.attempts import InMemoryAttemptDirectory
from attemptlock.errors import AuthorizationDenied, StorageError
from attemptlock.events import AttemptUnlocked, EventDispatcher
from attemptlock.fingerprint import RequestContext
from attemptlock.gate import AccessOutcome, AttemptGate, DecisionReason
from attemptlock.models import Attempt, AttemptState
from attemptlock.store import InMemoryStorage
from attemptlock.unlock import (
    CAP_ALLOW_CHANGE,
    StaticCapabilityChecker,
    UnlockService,
    UnlockStatus,
)

CTX_A = RequestContext(session_token="sess-a", client_ip="10.0.0.5", user_agent="Laptop")
CTX_B = RequestContext(session_token="sess-b", client_ip="10.0.0.6", user_agent="Tablet")

SUPERVISOR = 2
LEARNER = 42
NOW = 1700000000


class UnlockTestCase(unittest.TestCase):

    def setUp(self):
        self.storage = InMemoryStorage()
        self.attempts = InMemoryAttemptDirectory([
            Attempt(attempt_id=1, quiz_id=7, user_id=LEARNER),
            Attempt(attempt_id=2, quiz_id=7, user_id=43, state=AttemptState.OVERDUE),
            Attempt(attempt_id=3, quiz_id=7, user_id=44, state=AttemptState.FINISHED),
            Attempt(attempt_id=4, quiz_id=8, user_id=45),
        ])
        self.dispatcher = EventDispatcher()
        self.unlocked = []
        self.dispatcher.subscribe(AttemptUnlocked, self.unlocked.append)
        self.gate = AttemptGate("oneconnection", self.storage, self.dispatcher)
        self.service = UnlockService(
            "oneconnection",
            self.storage,
            self.attempts,
            self.dispatcher,
            clock=lambda: NOW,
        )


class TestSingleUnlock(UnlockTestCase):

    def test_unlock_lets_new_client_in(self):
        self.gate.check_access(1, 7, CTX_A)
        self.assertEqual(self.gate.check_access(1, 7, CTX_B).outcome, AccessOutcome.BLOCKED)

        result = self.service.unlock(1, SUPERVISOR)
        self.assertTrue(result.succeeded())
        self.assertTrue(result.had_lock)
        self.assertIsNone(self.storage.locks.get(1))

        # New device binds, old device is now the outsider
        self.assertEqual(self.gate.check_access(1, 7, CTX_B).reason, DecisionReason.LOCK_CREATED)
        self.assertEqual(self.gate.check_access(1, 7, CTX_A).outcome, AccessOutcome.BLOCKED)

    def test_unlock_is_audited(self):
        self.gate.check_access(1, 7, CTX_A)
        result = self.service.unlock(1, SUPERVISOR)

        entries = self.storage.audit.entries_for_attempt(1)
        self.assertEqual(len(entries), 1)
        entry = entries[0]
        self.assertEqual((entry.quiz_id, entry.attempt_id, entry.unlocked_by, entry.time_unlocked),
                         (7, 1, SUPERVISOR, NOW))
        self.assertEqual(result.audit_entry, entry)

    def test_unlock_emits_event_with_owner(self):
        self.service.unlock(1, SUPERVISOR)
        self.assertEqual(len(self.unlocked), 1)
        event = self.unlocked[0]
        self.assertEqual(event.unlocked_by, SUPERVISOR)
        self.assertEqual(event.related_user_id, LEARNER)
        self.assertEqual(event.quiz_id, 7)

    def test_unlock_without_lock_still_audited(self):
        first = self.service.unlock(1, SUPERVISOR)
        second = self.service.unlock(1, SUPERVISOR)
        self.assertTrue(first.succeeded())
        self.assertFalse(first.had_lock)
        self.assertTrue(second.succeeded())
        self.assertEqual(len(self.storage.audit.entries_for_attempt(1)), 2)

    def test_overdue_attempt_can_be_unlocked(self):
        self.gate.check_access(2, 7, CTX_A)
        self.assertTrue(self.service.unlock(2, SUPERVISOR).succeeded())

    def test_finished_attempt_is_ineligible(self):
        result = self.service.unlock(3, SUPERVISOR)
        self.assertEqual(result.status, UnlockStatus.INELIGIBLE)
        self.assertEqual(self.storage.audit.entries_for_attempt(3), [])
        self.assertEqual(self.unlocked, [])

    def test_unknown_attempt(self):
        result = self.service.unlock(999, SUPERVISOR)
        self.assertEqual(result.status, UnlockStatus.NOT_FOUND)
        self.assertFalse(result.succeeded())

    def test_audit_failure_keeps_lock(self):
        self.gate.check_access(1, 7, CTX_A)
        with patch.object(self.storage.audit, "append", side_effect=StorageError("log full")):
            with self.assertRaises(StorageError):
                self.service.unlock(1, SUPERVISOR)
        self.assertIsNotNone(self.storage.locks.get(1))
        self.assertEqual(self.unlocked, [])


class TestAuthorization(UnlockTestCase):

    def setUp(self):
        super().setUp()
        self.service.capabilities = StaticCapabilityChecker({SUPERVISOR: {CAP_ALLOW_CHANGE}})

    def test_supervisor_allowed(self):
        self.assertTrue(self.service.unlock(1, SUPERVISOR).succeeded())

    def test_learner_denied_before_any_write(self):
        self.gate.check_access(1, 7, CTX_A)
        with self.assertLogs("attemptlock.audit", level="WARNING"):
            with self.assertRaises(AuthorizationDenied) as cm:
                self.service.unlock(1, LEARNER)
        self.assertEqual(cm.exception.capability, CAP_ALLOW_CHANGE)
        self.assertIsNotNone(self.storage.locks.get(1))
        self.assertEqual(self.storage.audit.entries_for_attempt(1), [])

    def test_bulk_denied_for_any_quiz_writes_nothing(self):
        checker = StaticCapabilityChecker()
        checker.has_capability = lambda user_id, cap, quiz_id=None: quiz_id == 7
        self.service.capabilities = checker
        self.gate.check_access(1, 7, CTX_A)

        with self.assertRaises(AuthorizationDenied):
            self.service.unlock_many([1, 4], SUPERVISOR)
        self.assertIsNotNone(self.storage.locks.get(1))
        self.assertEqual(self.storage.audit.entries_for_quiz(7), [])


class TestBulkUnlock(UnlockTestCase):

    def test_mixed_batch(self):
        for attempt_id in (1, 2):
            self.gate.check_access(attempt_id, 7, CTX_A)

        results = self.service.unlock_many_results([1, 2, 3, 999], SUPERVISOR)
        statuses = [(r.attempt_id, r.status) for r in results]
        self.assertEqual(statuses, [
            (1, UnlockStatus.UNLOCKED),
            (2, UnlockStatus.UNLOCKED),
            (3, UnlockStatus.INELIGIBLE),
            (999, UnlockStatus.NOT_FOUND),
        ])
        self.assertEqual(self.storage.locks.locked_attempt_ids(7), [])

    def test_count_and_duplicates(self):
        self.assertEqual(self.service.unlock_many([1, 1, 2, 1], SUPERVISOR), 2)
        self.assertEqual(len(self.storage.audit.entries_for_quiz(7)), 2)

    def test_quiz_filter(self):
        results = self.service.unlock_many_results([1, 4], SUPERVISOR, quiz_id=7)
        self.assertEqual([r.status for r in results], [UnlockStatus.UNLOCKED, UnlockStatus.NOT_FOUND])

    def test_empty_batch(self):
        self.assertEqual(self.service.unlock_many([], SUPERVISOR), 0)


if __name__ == "__main__":
    unittest.main()
