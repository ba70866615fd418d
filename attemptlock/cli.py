#!/usr/bin/env python3
"""
attemptlock Command Line Interface

Usage:
    attemptlock init-db [--db <file>]
    attemptlock fingerprint --session <key> --ip <addr> --user-agent <ua> [--exempt <cidrs>]
    attemptlock status --attempt <id> [--component <name>]
    attemptlock unlock --attempt <id> [--attempt <id> ...] --user <id>
    attemptlock report --quiz <id>
    attemptlock purge-quiz --quiz <id>
"""

import argparse
import json
import sys
from typing import List, Optional

from . import config
from .db import Database, SqliteAttemptDirectory, SqliteStorage
from .errors import StorageError
from .fingerprint import build_fingerprint, parse_subnets
from .logging_config import configure_logging
from .rules import VARIANTS, SessionLockRule
from .store import table_prefix
from .util import utc_rfc3339


def _open_rule(args) -> SessionLockRule:
    db = Database(args.db)
    storage = SqliteStorage(db, prefix=table_prefix(args.component))
    attempts = SqliteAttemptDirectory(db)
    return SessionLockRule(
        VARIANTS[args.component],
        storage,
        attempts,
        config=config.load_rule_config(args.component),
    )


def cmd_init_db(args):
    """Create tables for every component."""
    db = Database(args.db)
    SqliteAttemptDirectory(db).init_db()
    for component in VARIANTS:
        SqliteStorage(db, prefix=table_prefix(component)).init_db()
    print(f"Initialized: {args.db}")
    return 0


def cmd_fingerprint(args):
    """Print the fingerprint a request would produce."""
    exempt = parse_subnets(args.exempt) if args.exempt is not None else parse_subnets(config.EXEMPT_SUBNETS)
    print(build_fingerprint(args.session, args.ip, args.user_agent, exempt))
    return 0


def cmd_status(args):
    """Show whether an attempt is bound and when it was last unlocked."""
    rule = _open_rule(args)
    lock = rule.storage.locks.get(args.attempt)
    latest = rule.storage.audit.latest_for_attempt(args.attempt)
    status = {
        "attempt_id": args.attempt,
        "component": args.component,
        "locked": lock is not None,
        "last_unlocked_by": latest.unlocked_by if latest else None,
        "last_unlocked_at": utc_rfc3339(latest.time_unlocked) if latest else None,
    }
    print(json.dumps(status, indent=2))
    return 0


def cmd_unlock(args):
    """Release locks as the given supervisor."""
    rule = _open_rule(args)
    results = rule.unlocks.unlock_many_results(args.attempt, args.user)
    failed = 0
    for result in results:
        mark = "✓" if result.succeeded() else "✗"
        print(f"{mark} attempt {result.attempt_id}: {result.status.value}")
        if not result.succeeded():
            failed += 1
    return 1 if failed else 0


def cmd_report(args):
    """Print the supervisor report for a quiz."""
    rule = _open_rule(args)
    rows = [row.to_dict() for row in rule.report(args.quiz)]
    print(json.dumps(rows, indent=2))
    return 0


def cmd_purge_quiz(args):
    """Drop settings, locks and unlock history of a deleted quiz."""
    rule = _open_rule(args)
    rule.delete_settings(args.quiz)
    print(f"Purged quiz {args.quiz} ({args.component})")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="attemptlock",
        description="Quiz attempt session lock CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  attemptlock init-db --db data/attemptlock.db
  attemptlock fingerprint -s abc123 -i 10.0.0.5 -u "Mozilla/5.0"
  attemptlock status -a 42
  attemptlock unlock -a 42 -a 43 --user 2
  attemptlock report -q 7 --component onesession
        """
    )
    parser.add_argument("--db", default=config.DB_PATH, help="SQLite database file")
    parser.add_argument(
        "--component",
        choices=sorted(VARIANTS),
        default="oneconnection",
        help="Deployment instance",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    subparsers.add_parser("init-db", help="Create tables")

    fp_parser = subparsers.add_parser("fingerprint", help="Compute a request fingerprint")
    fp_parser.add_argument("-s", "--session", required=True, help="Session token")
    fp_parser.add_argument("-i", "--ip", help="Client IP address")
    fp_parser.add_argument("-u", "--user-agent", help="User-Agent header")
    fp_parser.add_argument("-e", "--exempt", help="Exempt subnets, comma separated")

    status_parser = subparsers.add_parser("status", help="Show lock status of an attempt")
    status_parser.add_argument("-a", "--attempt", type=int, required=True, help="Attempt id")

    unlock_parser = subparsers.add_parser("unlock", help="Unlock attempts")
    unlock_parser.add_argument("-a", "--attempt", type=int, action="append", required=True, help="Attempt id")
    unlock_parser.add_argument("--user", type=int, required=True, help="Acting supervisor id")

    report_parser = subparsers.add_parser("report", help="Supervisor report for a quiz")
    report_parser.add_argument("-q", "--quiz", type=int, required=True, help="Quiz id")

    purge_parser = subparsers.add_parser("purge-quiz", help="Remove all data of a deleted quiz")
    purge_parser.add_argument("-q", "--quiz", type=int, required=True, help="Quiz id")

    return parser


COMMANDS = {
    "init-db": cmd_init_db,
    "fingerprint": cmd_fingerprint,
    "status": cmd_status,
    "unlock": cmd_unlock,
    "report": cmd_report,
    "purge-quiz": cmd_purge_quiz,
}


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 2

    configure_logging(level=config.LOG_LEVEL, json_format=config.LOG_JSON, stream=sys.stderr)
    try:
        return COMMANDS[args.command](args)
    except StorageError as e:
        print(f"✗ storage error: {e} (run init-db?)", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
