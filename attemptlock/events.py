"""
Domain events and an explicit dispatcher.

Handlers are registered at startup with subscribe(); nothing is discovered
by naming convention. emit() is fire-and-forget: a failing handler is
logged and never changes the outcome of the operation that emitted.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, DefaultDict, Iterable, List, Optional, Type

from .logging_config import AuditLogger, audit_log
from .util import now_epoch

logger = logging.getLogger(__name__)


class LifecycleKind(str, Enum):
    """Attempt transitions that release the lock."""
    SUBMITTED = "submitted"
    ABANDONED = "abandoned"
    DELETED = "deleted"


@dataclass(frozen=True)
class AttemptBlocked:
    """A resume request came from a client other than the bound one."""
    component: str
    attempt_id: int
    quiz_id: int
    user_id: Optional[int] = None
    time_created: int = field(default_factory=now_epoch)


@dataclass(frozen=True)
class AttemptUnlocked:
    """A supervisor released the lock of an attempt."""
    component: str
    attempt_id: int
    quiz_id: int
    unlocked_by: int
    related_user_id: Optional[int] = None
    time_created: int = field(default_factory=now_epoch)


@dataclass(frozen=True)
class AttemptLifecycleEvent:
    """Raised by the host when an attempt reaches a terminal state."""
    kind: LifecycleKind
    attempt_id: int
    time_created: int = field(default_factory=now_epoch)


Handler = Callable[[object], None]


class EventDispatcher:
    """Synchronous in-process event bus."""

    def __init__(self):
        self._handlers: DefaultDict[type, List[Handler]] = defaultdict(list)

    def subscribe(self, event_type: Type, handler: Handler) -> None:
        self._handlers[event_type].append(handler)

    def handlers_for(self, event_type: Type) -> List[Handler]:
        return list(self._handlers.get(event_type, ()))

    def emit(self, event: object) -> int:
        """
        Deliver event to every handler of its type.

        Returns the number of handlers that completed without error.
        """
        delivered = 0
        for handler in self.handlers_for(type(event)):
            try:
                handler(event)
                delivered += 1
            except Exception:
                logger.exception("Event handler %r failed for %s", handler, type(event).__name__)
        return delivered


def register_lifecycle_observers(dispatcher: EventDispatcher, rules: Iterable) -> None:
    """
    Release locks when attempts end.

    Each rule's on_attempt_terminal is subscribed to AttemptLifecycleEvent.
    Overdue is not a lifecycle event here: an overdue attempt keeps its lock.
    """
    for rule in rules:
        dispatcher.subscribe(
            AttemptLifecycleEvent,
            lambda event, _rule=rule: _rule.on_attempt_terminal(event.attempt_id)
        )


def register_activity_log(dispatcher: EventDispatcher, audit: AuditLogger = audit_log) -> None:
    """Write blocked events to the structured audit log."""
    dispatcher.subscribe(
        AttemptBlocked,
        lambda e: audit.attempt_blocked(e.component, e.attempt_id, e.quiz_id, e.user_id)
    )
