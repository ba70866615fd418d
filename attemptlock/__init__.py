"""
attemptlock: Quiz Attempt Session Lock

Version: 0.1.0

Binds each quiz attempt to the browser session that first opened it.
The binding is a random secret plus an HMAC of the client fingerprint:

    fingerprint = session token + client IP + User-Agent
    lock        = hex(secret) "|" hex(HMAC-SHA256(secret, fingerprint))

Any later request whose fingerprint does not reproduce the stored MAC is
blocked until a supervisor unlocks the attempt. Validation fails closed:
a corrupt lock never grants access.

Usage:
    from attemptlock import (
        ONE_CONNECTION,
        Attempt,
        InMemoryAttemptDirectory,
        InMemoryStorage,
        RequestContext,
        SessionLockRule,
    )

    attempts = InMemoryAttemptDirectory([Attempt(attempt_id=1, quiz_id=7, user_id=42)])
    rule = SessionLockRule(ONE_CONNECTION, InMemoryStorage(), attempts)
    rule.save_settings(7, True)

    ctx = RequestContext(session_token="abc", client_ip="10.0.0.5", user_agent="Mozilla/5.0")
    decision = rule.check_attempt(1, ctx)

    if decision.requires_block_flow():
        # Show the block screen; do not serve the attempt
        message = rule.block_message()

    # Supervisor releases the binding
    rule.unlock(1, acting_user_id=2)
"""

__version__ = "0.1.0"

# Records
from .models import (
    Attempt,
    AttemptLock,
    AttemptState,
    QuizSettings,
    UnlockAuditEntry,
    UNLOCKABLE_STATES,
)

# Errors
from .errors import (
    AttemptLockError,
    AuthorizationDenied,
    LockExistsError,
    MalformedLockRecord,
    SecretGenerationError,
    StorageError,
    UnknownAttemptError,
)

# Fingerprint and lock codec
from .fingerprint import RequestContext, build_fingerprint, parse_subnets
from .validator import (
    compute_mac,
    encode_lock_value,
    generate_secret,
    issue_lock,
    parse_lock_value,
    validate,
    validate_lock_value,
)

# Storage
from .store import InMemoryStorage, SessionStorage
from .attempts import AttemptDirectory, InMemoryAttemptDirectory
from .db import Database, SqliteAttemptDirectory, SqliteStorage

# Events
from .events import (
    AttemptBlocked,
    AttemptLifecycleEvent,
    AttemptUnlocked,
    EventDispatcher,
    LifecycleKind,
)

# Gate, unlock and rules
from .gate import AccessDecision, AccessOutcome, AttemptGate, DecisionReason
from .unlock import (
    CAP_ALLOW_CHANGE,
    CAP_EDIT_ENABLED,
    CapabilityChecker,
    StaticCapabilityChecker,
    UnlockResult,
    UnlockService,
    UnlockStatus,
)
from .config import RuleConfig, load_rule_config
from .rules import (
    ONE_CONNECTION,
    ONE_SESSION,
    VARIANTS,
    QuizAccessRule,
    RuleRegistry,
    RuleVariant,
    SessionLockRule,
    build_registry,
)

# Reporting and privacy
from .report import AttemptReportRow, build_report
from .privacy import PrivacyProvider


__all__ = [
    # Version
    "__version__",

    # Records
    "Attempt",
    "AttemptLock",
    "AttemptState",
    "QuizSettings",
    "UnlockAuditEntry",
    "UNLOCKABLE_STATES",

    # Errors
    "AttemptLockError",
    "AuthorizationDenied",
    "LockExistsError",
    "MalformedLockRecord",
    "SecretGenerationError",
    "StorageError",
    "UnknownAttemptError",

    # Fingerprint and codec
    "RequestContext",
    "build_fingerprint",
    "parse_subnets",
    "compute_mac",
    "encode_lock_value",
    "generate_secret",
    "issue_lock",
    "parse_lock_value",
    "validate",
    "validate_lock_value",

    # Storage
    "InMemoryStorage",
    "SessionStorage",
    "AttemptDirectory",
    "InMemoryAttemptDirectory",
    "Database",
    "SqliteAttemptDirectory",
    "SqliteStorage",

    # Events
    "AttemptBlocked",
    "AttemptLifecycleEvent",
    "AttemptUnlocked",
    "EventDispatcher",
    "LifecycleKind",

    # Gate, unlock and rules
    "AccessDecision",
    "AccessOutcome",
    "AttemptGate",
    "DecisionReason",
    "CAP_ALLOW_CHANGE",
    "CAP_EDIT_ENABLED",
    "CapabilityChecker",
    "StaticCapabilityChecker",
    "UnlockResult",
    "UnlockService",
    "UnlockStatus",
    "RuleConfig",
    "load_rule_config",
    "ONE_CONNECTION",
    "ONE_SESSION",
    "VARIANTS",
    "QuizAccessRule",
    "RuleRegistry",
    "RuleVariant",
    "SessionLockRule",
    "build_registry",

    # Reporting and privacy
    "AttemptReportRow",
    "build_report",
    "PrivacyProvider",
]
