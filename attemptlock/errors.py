"""
Exception taxonomy for attemptlock.

A fingerprint mismatch is NOT an exception: the gate reports it as a
BLOCKED decision. Exceptions are reserved for conditions the caller must
handle differently from a normal deny.
"""

from typing import Optional


class AttemptLockError(Exception):
    """Base class for all attemptlock errors."""


class LockExistsError(AttemptLockError):
    """Raised by LockStore.create when the attempt already has a lock."""

    def __init__(self, attempt_id: int):
        self.attempt_id = attempt_id
        super().__init__(f"lock already exists for attempt {attempt_id}")


class MalformedLockRecord(AttemptLockError, ValueError):
    """Stored lock value cannot be parsed. Always treated as a mismatch."""

    def __init__(self, reason: str, attempt_id: Optional[int] = None):
        self.reason = reason
        self.attempt_id = attempt_id
        super().__init__(f"malformed lock record: {reason}")


class StorageError(AttemptLockError):
    """Durable storage is unavailable or failed. Fatal for the request."""


class SecretGenerationError(AttemptLockError):
    """The cryptographic RNG failed. Fatal for the request."""


class AuthorizationDenied(AttemptLockError):
    """The acting user lacks the capability required for the operation."""

    def __init__(self, user_id: int, capability: str):
        self.user_id = user_id
        self.capability = capability
        super().__init__(f"user {user_id} lacks capability {capability}")


class UnknownAttemptError(AttemptLockError, LookupError):
    """The attempt is not known to the attempt directory."""

    def __init__(self, attempt_id: int):
        self.attempt_id = attempt_id
        super().__init__(f"unknown attempt {attempt_id}")
