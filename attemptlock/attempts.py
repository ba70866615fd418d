"""
Attempt directory: the host quiz engine's view of attempts.

The access rule only reads attempts; their lifecycle is owned by the host.
"""

import threading
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from .models import Attempt, AttemptState


class AttemptDirectory(ABC):
    """Read access to attempts, supplied by the host."""

    @abstractmethod
    def get(self, attempt_id: int) -> Optional[Attempt]:
        pass

    @abstractmethod
    def for_quiz(self, quiz_id: int) -> List[Attempt]:
        pass


class InMemoryAttemptDirectory(AttemptDirectory):
    """Dictionary-backed directory for tests and examples."""

    def __init__(self, attempts: Optional[List[Attempt]] = None):
        self._attempts: Dict[int, Attempt] = {}
        self._lock = threading.Lock()
        for attempt in attempts or []:
            self.put(attempt)

    def put(self, attempt: Attempt) -> None:
        with self._lock:
            self._attempts[attempt.attempt_id] = attempt

    def set_state(self, attempt_id: int, state: AttemptState) -> None:
        with self._lock:
            current = self._attempts[attempt_id]
            self._attempts[attempt_id] = Attempt(
                attempt_id=current.attempt_id,
                quiz_id=current.quiz_id,
                user_id=current.user_id,
                state=state,
                preview=current.preview,
            )

    def remove(self, attempt_id: int) -> None:
        with self._lock:
            self._attempts.pop(attempt_id, None)

    def get(self, attempt_id: int) -> Optional[Attempt]:
        with self._lock:
            return self._attempts.get(attempt_id)

    def for_quiz(self, quiz_id: int) -> List[Attempt]:
        with self._lock:
            return [a for a in self._attempts.values() if a.quiz_id == quiz_id]
