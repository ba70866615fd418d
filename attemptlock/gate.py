"""
Attempt Gate: decides whether a request may continue an attempt.

Per attempt the gate moves between three states:

    UNLOCKED  no lock row exists
    BOUND     a lock exists and the current request matches it
    BLOCKED   a lock exists and the current request does not match

The first non-preview request to reach an UNLOCKED attempt creates the
lock ("first access wins"). When two requests race, the store's unique
constraint picks the winner; the loser validates against the winner's
lock like any later request.

A mismatch is a normal outcome and is returned as a BLOCKED decision.
RNG or storage failures return an ERROR decision carrying the cause;
ERROR is never treated as a pass.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Sequence

from .errors import LockExistsError, SecretGenerationError, StorageError
from .events import AttemptBlocked, EventDispatcher
from .fingerprint import Network, RequestContext, fingerprint_for
from .logging_config import audit_log
from .store import SessionStorage
from .validator import issue_lock, validate

logger = logging.getLogger(__name__)

# A lost create race re-reads the winner's lock; if that lock is released
# in between we try again, a bounded number of times.
MAX_CREATE_ROUNDS = 3


class AccessOutcome(str, Enum):
    """Gate decision."""
    PASS = "PASS"
    BLOCKED = "BLOCKED"
    ERROR = "ERROR"


class DecisionReason(str, Enum):
    NOT_APPLICABLE = "NOT_APPLICABLE"
    PREVIEW = "PREVIEW"
    LOCK_CREATED = "LOCK_CREATED"
    FINGERPRINT_MATCH = "FINGERPRINT_MATCH"
    NO_LOCK = "NO_LOCK"
    FINGERPRINT_MISMATCH = "FINGERPRINT_MISMATCH"
    SECRET_FAILURE = "SECRET_FAILURE"
    STORAGE_FAILURE = "STORAGE_FAILURE"


@dataclass(frozen=True)
class AccessDecision:
    """Result of a gate check."""
    outcome: AccessOutcome
    attempt_id: int
    reason: DecisionReason
    cause: Optional[BaseException] = None

    def allowed(self) -> bool:
        return self.outcome == AccessOutcome.PASS

    def requires_block_flow(self) -> bool:
        return self.outcome == AccessOutcome.BLOCKED

    def to_dict(self) -> Dict[str, Any]:
        # cause is deliberately left out: it may carry internal detail.
        return {
            "outcome": self.outcome.value,
            "attempt_id": self.attempt_id,
            "reason": self.reason.value,
        }


def _pass(attempt_id: int, reason: DecisionReason) -> AccessDecision:
    return AccessDecision(AccessOutcome.PASS, attempt_id, reason)


class AttemptGate:
    """
    Lock lifecycle for one deployment.

    Usage:
        gate = AttemptGate("oneconnection", storage, dispatcher, exempt_subnets)
        decision = gate.check_access(attempt_id, quiz_id, ctx)
        if decision.requires_block_flow():
            render_block_screen()
    """

    def __init__(
        self,
        component: str,
        storage: SessionStorage,
        dispatcher: Optional[EventDispatcher] = None,
        exempt_subnets: Sequence[Network] = ()
    ):
        self.component = component
        self.storage = storage
        self.dispatcher = dispatcher or EventDispatcher()
        self.exempt_subnets = list(exempt_subnets)

    def fingerprint(self, ctx: RequestContext) -> str:
        return fingerprint_for(ctx, self.exempt_subnets)

    def check_access(
        self,
        attempt_id: int,
        quiz_id: int,
        ctx: RequestContext,
        is_previewer: bool = False,
        user_id: Optional[int] = None
    ) -> AccessDecision:
        """
        Decide whether ctx may continue the attempt.

        Args:
            attempt_id: Attempt being resumed
            quiz_id: Quiz the attempt belongs to
            ctx: Client identity of the current request
            is_previewer: Preview sessions always pass and never touch locks
            user_id: Attempt owner, reported in the blocked event

        Returns:
            PASS, BLOCKED (caller must show the block screen) or ERROR
        """
        if is_previewer:
            return _pass(attempt_id, DecisionReason.PREVIEW)

        fingerprint = self.fingerprint(ctx)
        try:
            for _ in range(MAX_CREATE_ROUNDS):
                lock = self.storage.locks.get(attempt_id)
                if lock is None:
                    try:
                        self.storage.locks.create(issue_lock(attempt_id, quiz_id, fingerprint))
                    except LockExistsError:
                        logger.debug("Lost lock creation race for attempt %s", attempt_id)
                        continue
                    audit_log.lock_created(self.component, attempt_id, quiz_id)
                    return _pass(attempt_id, DecisionReason.LOCK_CREATED)

                if validate(lock, fingerprint):
                    return _pass(attempt_id, DecisionReason.FINGERPRINT_MATCH)

                self.dispatcher.emit(AttemptBlocked(
                    component=self.component,
                    attempt_id=attempt_id,
                    quiz_id=lock.quiz_id,
                    user_id=user_id if user_id is not None else ctx.user_id,
                ))
                return AccessDecision(AccessOutcome.BLOCKED, attempt_id, DecisionReason.FINGERPRINT_MISMATCH)

            raise StorageError(f"lock for attempt {attempt_id} changed during every check")
        except SecretGenerationError as e:
            logger.error("Secret generation failed for attempt %s", attempt_id, exc_info=True)
            return AccessDecision(AccessOutcome.ERROR, attempt_id, DecisionReason.SECRET_FAILURE, e)
        except StorageError as e:
            logger.error("Storage failure while checking attempt %s", attempt_id, exc_info=True)
            return AccessDecision(AccessOutcome.ERROR, attempt_id, DecisionReason.STORAGE_FAILURE, e)

    def confirm(
        self,
        attempt_id: int,
        ctx: RequestContext,
        is_previewer: bool = False
    ) -> AccessDecision:
        """
        Re-validate when the block screen is submitted.

        Never creates a lock and never emits; client-side state is not
        trusted, the stored lock is checked again.
        """
        if is_previewer:
            return _pass(attempt_id, DecisionReason.PREVIEW)
        try:
            lock = self.storage.locks.get(attempt_id)
        except StorageError as e:
            logger.error("Storage failure while confirming attempt %s", attempt_id, exc_info=True)
            return AccessDecision(AccessOutcome.ERROR, attempt_id, DecisionReason.STORAGE_FAILURE, e)

        if lock is None:
            return _pass(attempt_id, DecisionReason.NO_LOCK)
        if validate(lock, self.fingerprint(ctx)):
            return _pass(attempt_id, DecisionReason.FINGERPRINT_MATCH)
        return AccessDecision(AccessOutcome.BLOCKED, attempt_id, DecisionReason.FINGERPRINT_MISMATCH)

    def is_blocked(self, attempt_id: int, ctx: RequestContext) -> bool:
        """
        True if a lock exists and ctx does not match it.

        Read-only. StorageError propagates.
        """
        lock = self.storage.locks.get(attempt_id)
        if lock is None:
            return False
        return not validate(lock, self.fingerprint(ctx))

    def release(self, attempt_id: int) -> bool:
        """Drop the lock of an attempt that reached a terminal state."""
        return self.storage.locks.delete(attempt_id)
