"""
Storage interfaces for locks, unlock audit entries and quiz settings.

The stores hold no validation logic. Implementations must be:
- Persistent (survives restarts) for production use
- Consistent: at most one lock per attempt; create() never upserts
- Append-only for the audit log outside of privacy/retention erasure

InMemoryStorage is provided for tests and single-process hosts; see
attemptlock.db.SqliteStorage for the durable backend.
"""

import copy
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional

from .errors import LockExistsError
from .models import AttemptLock, QuizSettings, UnlockAuditEntry


class LockStore(ABC):
    """One lock row per attempt."""

    @abstractmethod
    def get(self, attempt_id: int) -> Optional[AttemptLock]:
        pass

    @abstractmethod
    def create(self, lock: AttemptLock) -> None:
        """
        Insert a new lock.

        Raises:
            LockExistsError: the attempt already has a lock
        """
        pass

    @abstractmethod
    def delete(self, attempt_id: int) -> bool:
        """Remove the lock. Idempotent; returns True if a row was removed."""
        pass

    @abstractmethod
    def delete_all_for_quiz(self, quiz_id: int) -> int:
        """Remove every lock of a quiz. Returns count removed."""
        pass

    @abstractmethod
    def locked_attempt_ids(self, quiz_id: int) -> List[int]:
        pass


class AuditLog(ABC):
    """Append-only log of supervisor unlocks."""

    @abstractmethod
    def append(
        self,
        quiz_id: int,
        attempt_id: int,
        unlocked_by: int,
        time_unlocked: int
    ) -> Optional[UnlockAuditEntry]:
        """Append one entry. Returns the stored entry."""
        pass

    @abstractmethod
    def entries_for_attempt(self, attempt_id: int) -> List[UnlockAuditEntry]:
        """All entries for an attempt, oldest first."""
        pass

    @abstractmethod
    def entries_for_quiz(self, quiz_id: int) -> List[UnlockAuditEntry]:
        pass

    @abstractmethod
    def entries_by_user(self, user_id: int) -> List[UnlockAuditEntry]:
        """Entries where user_id was the unlocking supervisor."""
        pass

    @abstractmethod
    def delete_for_quiz(self, quiz_id: int) -> int:
        pass

    @abstractmethod
    def delete_for_user(self, user_id: int) -> int:
        pass

    def latest_for_attempt(self, attempt_id: int) -> Optional[UnlockAuditEntry]:
        entries = self.entries_for_attempt(attempt_id)
        return entries[-1] if entries else None

    def quiz_ids_for_user(self, user_id: int) -> List[int]:
        return sorted({e.quiz_id for e in self.entries_by_user(user_id)})


class SettingsStore(ABC):
    """Per-quiz enabled flag. Absent means 'use the configured default'."""

    @abstractmethod
    def get(self, quiz_id: int) -> Optional[QuizSettings]:
        pass

    @abstractmethod
    def save(self, settings: QuizSettings) -> None:
        pass

    @abstractmethod
    def delete(self, quiz_id: int) -> None:
        pass


def table_prefix(component: str) -> str:
    """Table name prefix of a deployment instance."""
    return f"quizaccess_{component}"


class SessionStorage(ABC):
    """
    The three stores of one deployment, plus a unit of work.

    Writes issued inside atomic() commit together or not at all.
    """
    prefix: str = ""
    locks: LockStore
    audit: AuditLog
    settings: SettingsStore

    @abstractmethod
    def atomic(self):
        """Context manager grouping writes into one transaction."""
        pass


# =============================================================================
# IN-MEMORY BACKEND
# =============================================================================

class _MemoryState:
    def __init__(self):
        self.locks: Dict[int, AttemptLock] = {}
        self.audit: List[UnlockAuditEntry] = []
        self.settings: Dict[int, QuizSettings] = {}
        self.next_audit_id = 1


class InMemoryLockStore(LockStore):
    def __init__(self, state: _MemoryState, lock: threading.RLock):
        self._state = state
        self._lock = lock

    def get(self, attempt_id: int) -> Optional[AttemptLock]:
        with self._lock:
            return self._state.locks.get(attempt_id)

    def create(self, lock: AttemptLock) -> None:
        with self._lock:
            if lock.attempt_id in self._state.locks:
                raise LockExistsError(lock.attempt_id)
            self._state.locks[lock.attempt_id] = lock

    def delete(self, attempt_id: int) -> bool:
        with self._lock:
            return self._state.locks.pop(attempt_id, None) is not None

    def delete_all_for_quiz(self, quiz_id: int) -> int:
        with self._lock:
            doomed = [k for k, v in self._state.locks.items() if v.quiz_id == quiz_id]
            for k in doomed:
                del self._state.locks[k]
            return len(doomed)

    def locked_attempt_ids(self, quiz_id: int) -> List[int]:
        with self._lock:
            return sorted(k for k, v in self._state.locks.items() if v.quiz_id == quiz_id)


class InMemoryAuditLog(AuditLog):
    def __init__(self, state: _MemoryState, lock: threading.RLock):
        self._state = state
        self._lock = lock

    def append(self, quiz_id, attempt_id, unlocked_by, time_unlocked) -> UnlockAuditEntry:
        with self._lock:
            entry = UnlockAuditEntry(
                id=self._state.next_audit_id,
                quiz_id=quiz_id,
                attempt_id=attempt_id,
                unlocked_by=unlocked_by,
                time_unlocked=time_unlocked,
            )
            self._state.next_audit_id += 1
            self._state.audit.append(entry)
            return entry

    def entries_for_attempt(self, attempt_id: int) -> List[UnlockAuditEntry]:
        with self._lock:
            return [e for e in self._state.audit if e.attempt_id == attempt_id]

    def entries_for_quiz(self, quiz_id: int) -> List[UnlockAuditEntry]:
        with self._lock:
            return [e for e in self._state.audit if e.quiz_id == quiz_id]

    def entries_by_user(self, user_id: int) -> List[UnlockAuditEntry]:
        with self._lock:
            return [e for e in self._state.audit if e.unlocked_by == user_id]

    def delete_for_quiz(self, quiz_id: int) -> int:
        return self._delete_where(lambda e: e.quiz_id == quiz_id)

    def delete_for_user(self, user_id: int) -> int:
        return self._delete_where(lambda e: e.unlocked_by == user_id)

    def _delete_where(self, predicate) -> int:
        with self._lock:
            before = len(self._state.audit)
            self._state.audit = [e for e in self._state.audit if not predicate(e)]
            return before - len(self._state.audit)


class InMemorySettingsStore(SettingsStore):
    def __init__(self, state: _MemoryState, lock: threading.RLock):
        self._state = state
        self._lock = lock

    def get(self, quiz_id: int) -> Optional[QuizSettings]:
        with self._lock:
            return self._state.settings.get(quiz_id)

    def save(self, settings: QuizSettings) -> None:
        with self._lock:
            self._state.settings[settings.quiz_id] = settings

    def delete(self, quiz_id: int) -> None:
        with self._lock:
            self._state.settings.pop(quiz_id, None)


class InMemoryStorage(SessionStorage):
    """
    In-memory storage for development/testing.

    WARNING: Not suitable for production.
    - Not persistent across restarts
    - Not shared between processes
    """

    def __init__(self, prefix: str = ""):
        self.prefix = prefix
        self._state = _MemoryState()
        self._lock = threading.RLock()
        self.locks = InMemoryLockStore(self._state, self._lock)
        self.audit = InMemoryAuditLog(self._state, self._lock)
        self.settings = InMemorySettingsStore(self._state, self._lock)

    @contextmanager
    def atomic(self) -> Iterator[None]:
        with self._lock:
            snapshot = copy.deepcopy(self._state.__dict__)
            try:
                yield
            except BaseException:
                self._state.__dict__.clear()
                self._state.__dict__.update(snapshot)
                raise
