#!/usr/bin/env python3
"""
attemptlock Example - One Exam Attempt, Two Devices

Walks through a proctored quiz where the learner starts on a laptop,
tries to continue on a phone, and is let through after a supervisor
unlocks the attempt.

Run with: python examples/exam_session_walkthrough.py
"""

import tempfile
from pathlib import Path

from attemptlock import (
    ONE_CONNECTION,
    Attempt,
    CAP_ALLOW_CHANGE,
    RequestContext,
    RuleConfig,
    SqliteAttemptDirectory,
    SqliteStorage,
    StaticCapabilityChecker,
    build_registry,
    parse_subnets,
)
from attemptlock.events import AttemptLifecycleEvent, LifecycleKind
from attemptlock.logging_config import configure_logging
from attemptlock.store import table_prefix

QUIZ_ID = 7
LEARNER = 42
INVIGILATOR = 2


def show(label, decision):
    print(f"  {label:<28} {decision.outcome.value:<8} {decision.reason.value}")


def main():
    configure_logging(level="WARNING", json_format=False)

    workdir = Path(tempfile.mkdtemp(prefix="attemptlock-"))
    db_path = workdir / "exam.db"

    storage = SqliteStorage(db_path, prefix=table_prefix(ONE_CONNECTION.component))
    storage.init_db()
    attempts = SqliteAttemptDirectory(storage.db)
    attempts.init_db()
    attempts.upsert(Attempt(attempt_id=1, quiz_id=QUIZ_ID, user_id=LEARNER))

    registry = build_registry(
        {ONE_CONNECTION.component: storage},
        attempts,
        configs={ONE_CONNECTION.component: RuleConfig(
            component=ONE_CONNECTION.component,
            # Campus NAT pool: IP changes inside it are not a device change
            exempt_subnets=parse_subnets("10.20.0.0/16"),
        )},
        capabilities=StaticCapabilityChecker({INVIGILATOR: {CAP_ALLOW_CHANGE}}),
    )
    rule = registry.get(ONE_CONNECTION.component)
    rule.save_settings(QUIZ_ID, True)

    laptop = RequestContext(session_token="9f1c", client_ip="10.20.1.15", user_agent="Firefox/128", user_id=LEARNER)
    laptop_roamed = RequestContext(session_token="9f1c", client_ip="10.20.7.3", user_agent="Firefox/128", user_id=LEARNER)
    phone = RequestContext(session_token="77ab", client_ip="172.16.4.9", user_agent="Mobile Safari", user_id=LEARNER)

    print("=" * 60)
    print(ONE_CONNECTION.title)
    print("=" * 60)

    show("laptop opens attempt", rule.check_attempt(1, laptop))
    show("laptop changes NAT address", rule.check_attempt(1, laptop_roamed))
    decision = rule.check_attempt(1, phone)
    show("phone tries to continue", decision)
    if decision.requires_block_flow():
        print(f"\n  Learner sees: {rule.block_message()}\n")

    result = rule.unlock(1, INVIGILATOR)
    print(f"  invigilator unlock           {result.status.value} (had lock: {result.had_lock})")

    show("phone continues", rule.check_attempt(1, phone))
    show("laptop comes back", rule.check_attempt(1, laptop))

    print("\nReport:")
    for row in rule.report(QUIZ_ID):
        print(f"  {row.to_dict()}")

    registry.dispatcher.emit(AttemptLifecycleEvent(LifecycleKind.SUBMITTED, 1))
    print(f"\nAfter submit, lock present: {storage.locks.get(1) is not None}")
    print(f"Database: {db_path}")


if __name__ == "__main__":
    main()
