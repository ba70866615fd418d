"""
Lock value codec and validation.

A lock is stored as "<hex secret>|<hex mac>" where the secret is 16 fresh
random bytes and the mac is HMAC-SHA256(secret, fingerprint). Validation
recomputes the mac over the current fingerprint and compares in constant
time.

Fail-closed: a stored value that cannot be parsed is reported as a
mismatch, never as a match.
"""

import hashlib
import hmac
import secrets
from typing import Optional, Tuple

from .errors import MalformedLockRecord, SecretGenerationError
from .logging_config import audit_log
from .models import AttemptLock
from .util import constant_time_compare, is_even_hex

SECRET_BYTES = 16
LOCK_SEPARATOR = "|"


def generate_secret(length: int = SECRET_BYTES) -> bytes:
    """
    Draw a fresh secret from the OS CSPRNG.

    Raises:
        SecretGenerationError: the RNG is unavailable
    """
    try:
        return secrets.token_bytes(length)
    except (OSError, NotImplementedError) as e:
        raise SecretGenerationError("could not generate random bytes for lock secret") from e


def compute_mac(secret: bytes, fingerprint: str) -> str:
    """HMAC-SHA256 of the fingerprint, lowercase hex."""
    return hmac.new(secret, fingerprint.encode('utf-8'), hashlib.sha256).hexdigest()


def encode_lock_value(secret: bytes, mac: str) -> str:
    return secret.hex() + LOCK_SEPARATOR + mac


def parse_lock_value(value: Optional[str], attempt_id: Optional[int] = None) -> Tuple[bytes, str]:
    """
    Split a stored lock value into (secret bytes, mac hex).

    Raises:
        MalformedLockRecord: missing separator, empty segment or bad hex
    """
    if not value or not isinstance(value, str):
        raise MalformedLockRecord("empty value", attempt_id)
    if LOCK_SEPARATOR not in value:
        raise MalformedLockRecord("missing separator", attempt_id)

    secret_hex, mac = value.split(LOCK_SEPARATOR, 1)
    if not secret_hex or not mac:
        raise MalformedLockRecord("empty segment", attempt_id)
    if not is_even_hex(secret_hex):
        raise MalformedLockRecord("secret is not valid hex", attempt_id)
    try:
        secret = bytes.fromhex(secret_hex)
    except ValueError:
        raise MalformedLockRecord("secret is not valid hex", attempt_id) from None

    return secret, mac


def issue_lock(attempt_id: int, quiz_id: int, fingerprint: str) -> AttemptLock:
    """Create a new lock bound to fingerprint."""
    secret = generate_secret()
    return AttemptLock(
        attempt_id=attempt_id,
        quiz_id=quiz_id,
        session_hash=encode_lock_value(secret, compute_mac(secret, fingerprint)),
    )


def validate_lock_value(value: Optional[str], fingerprint: str, attempt_id: Optional[int] = None) -> bool:
    """
    True only if value was issued for this exact fingerprint.

    Never raises for bad stored data.
    """
    try:
        secret, stored_mac = parse_lock_value(value, attempt_id)
    except MalformedLockRecord as e:
        audit_log.malformed_lock(attempt_id, e.reason)
        return False

    return constant_time_compare(stored_mac, compute_mac(secret, fingerprint))


def validate(lock: AttemptLock, fingerprint: str) -> bool:
    """Validate a stored lock against the current request's fingerprint."""
    return validate_lock_value(lock.session_hash, fingerprint, lock.attempt_id)
