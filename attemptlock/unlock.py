"""
Supervisor unlock with an append-only audit trail.

Removing the lock and appending the audit entry happen in one storage
transaction: the log never records an unlock that did not happen, and
an unlock never goes unrecorded. The "unlocked" domain event is emitted
after that transaction commits.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Set

from .attempts import AttemptDirectory
from .errors import AuthorizationDenied
from .events import AttemptUnlocked, EventDispatcher
from .logging_config import audit_log
from .models import Attempt, UnlockAuditEntry
from .store import SessionStorage
from .util import now_epoch

CAP_ALLOW_CHANGE = "allowchange"
CAP_EDIT_ENABLED = "editenabled"


class CapabilityChecker(ABC):
    """Permission lookup supplied by the host identity layer."""

    @abstractmethod
    def has_capability(self, user_id: int, capability: str, quiz_id: Optional[int] = None) -> bool:
        pass


class StaticCapabilityChecker(CapabilityChecker):
    """Fixed grants, e.g. from configuration. Grants apply to every quiz."""

    def __init__(self, grants: Optional[Dict[int, Iterable[str]]] = None):
        self._grants: Dict[int, Set[str]] = {
            int(user_id): set(caps) for user_id, caps in (grants or {}).items()
        }

    def grant(self, user_id: int, capability: str) -> None:
        self._grants.setdefault(user_id, set()).add(capability)

    def has_capability(self, user_id: int, capability: str, quiz_id: Optional[int] = None) -> bool:
        return capability in self._grants.get(user_id, ())


class UnlockStatus(str, Enum):
    UNLOCKED = "UNLOCKED"
    INELIGIBLE = "INELIGIBLE"
    NOT_FOUND = "NOT_FOUND"


@dataclass(frozen=True)
class UnlockResult:
    attempt_id: int
    status: UnlockStatus
    had_lock: bool = False
    audit_entry: Optional[UnlockAuditEntry] = None

    def succeeded(self) -> bool:
        return self.status == UnlockStatus.UNLOCKED


class UnlockService:
    """
    Releases attempt locks on behalf of a supervisor.

    Only attempts that are still in progress or overdue can be unlocked;
    anything else is skipped, never raised, so bulk requests continue.
    Releasing an attempt that has no lock still succeeds and is audited.
    """

    def __init__(
        self,
        component: str,
        storage: SessionStorage,
        attempts: AttemptDirectory,
        dispatcher: Optional[EventDispatcher] = None,
        capabilities: Optional[CapabilityChecker] = None,
        clock: Callable[[], int] = now_epoch
    ):
        self.component = component
        self.storage = storage
        self.attempts = attempts
        self.dispatcher = dispatcher or EventDispatcher()
        self.capabilities = capabilities
        self._clock = clock

    def require_capability(self, user_id: int, quiz_id: int) -> None:
        """
        Raises:
            AuthorizationDenied: a checker is configured and says no
        """
        if self.capabilities is None:
            return
        if not self.capabilities.has_capability(user_id, CAP_ALLOW_CHANGE, quiz_id):
            audit_log.security_event(
                "unlock_denied",
                severity="medium",
                component=self.component,
                user_id=user_id,
                quiz_id=quiz_id,
            )
            raise AuthorizationDenied(user_id, CAP_ALLOW_CHANGE)

    def unlock(self, attempt_id: int, acting_user_id: int) -> UnlockResult:
        """Unlock a single attempt."""
        attempt = self.attempts.get(attempt_id)
        if attempt is None:
            audit_log.unlock_skipped(self.component, attempt_id, "unknown attempt")
            return UnlockResult(attempt_id, UnlockStatus.NOT_FOUND)
        self.require_capability(acting_user_id, attempt.quiz_id)
        return self._unlock_attempt(attempt, acting_user_id)

    def unlock_many_results(
        self,
        attempt_ids: Iterable[int],
        acting_user_id: int,
        quiz_id: Optional[int] = None
    ) -> List[UnlockResult]:
        """
        Unlock several attempts, one at a time, in the order given.

        Authorization is checked for every quiz involved before anything
        is written. When quiz_id is given, attempts of other quizzes are
        reported as NOT_FOUND.
        """
        ordered: List[int] = []
        for attempt_id in attempt_ids:
            if attempt_id not in ordered:
                ordered.append(attempt_id)

        resolved: Dict[int, Optional[Attempt]] = {}
        for attempt_id in ordered:
            attempt = self.attempts.get(attempt_id)
            if attempt is not None and quiz_id is not None and attempt.quiz_id != quiz_id:
                attempt = None
            resolved[attempt_id] = attempt

        for qid in sorted({a.quiz_id for a in resolved.values() if a is not None}):
            self.require_capability(acting_user_id, qid)

        results = []
        for attempt_id in ordered:
            attempt = resolved[attempt_id]
            if attempt is None:
                audit_log.unlock_skipped(self.component, attempt_id, "unknown attempt")
                results.append(UnlockResult(attempt_id, UnlockStatus.NOT_FOUND))
                continue
            results.append(self._unlock_attempt(attempt, acting_user_id))
        return results

    def unlock_many(
        self,
        attempt_ids: Iterable[int],
        acting_user_id: int,
        quiz_id: Optional[int] = None
    ) -> int:
        """Unlock several attempts; returns how many were unlocked."""
        results = self.unlock_many_results(attempt_ids, acting_user_id, quiz_id)
        return sum(1 for r in results if r.succeeded())

    def _unlock_attempt(self, attempt: Attempt, acting_user_id: int) -> UnlockResult:
        if not attempt.state.unlockable:
            audit_log.unlock_skipped(self.component, attempt.attempt_id, f"attempt is {attempt.state.value}")
            return UnlockResult(attempt.attempt_id, UnlockStatus.INELIGIBLE)

        with self.storage.atomic():
            had_lock = self.storage.locks.delete(attempt.attempt_id)
            entry = self.storage.audit.append(
                attempt.quiz_id,
                attempt.attempt_id,
                acting_user_id,
                self._clock(),
            )

        audit_log.attempt_unlocked(self.component, attempt.attempt_id, attempt.quiz_id, acting_user_id, had_lock)
        self.dispatcher.emit(AttemptUnlocked(
            component=self.component,
            attempt_id=attempt.attempt_id,
            quiz_id=attempt.quiz_id,
            unlocked_by=acting_user_id,
            related_user_id=attempt.user_id,
        ))
        return UnlockResult(attempt.attempt_id, UnlockStatus.UNLOCKED, had_lock=had_lock, audit_entry=entry)
