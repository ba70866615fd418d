"""
SQLite storage for attemptlock.

Provides durable lock, audit and settings tables for one deployment. The
UNIQUE constraint on the lock table's attempt id is the only arbiter when
two requests race to create the first lock of an attempt.

Table names derive from the deployment's component prefix:
    <prefix>        per-quiz settings
    <prefix>_sess   attempt locks
    <prefix>_log    unlock audit log (append-only)
"""

import logging
import re
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Union

from .attempts import AttemptDirectory
from .errors import LockExistsError, StorageError
from .models import Attempt, AttemptLock, AttemptState, QuizSettings, UnlockAuditEntry
from .store import AuditLog, LockStore, SessionStorage, SettingsStore

logger = logging.getLogger(__name__)

_PREFIX_PATTERN = re.compile(r'^[a-z][a-z0-9_]{0,40}$')


class Database:
    """
    Thread-local SQLite connections with nestable transactions.

    Connections are reused within the same thread. Only the outermost
    transaction() block commits or rolls back.
    """

    def __init__(self, path: Union[str, Path], timeout: float = 5.0):
        self.path = Path(path)
        self._timeout = timeout
        self._local = threading.local()

    def connection(self) -> sqlite3.Connection:
        conn = getattr(self._local, 'conn', None)
        if conn is None:
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                conn = sqlite3.connect(str(self.path), timeout=self._timeout, check_same_thread=False)
                conn.execute("PRAGMA journal_mode=WAL;")
                conn.execute("PRAGMA synchronous=NORMAL;")
            except (OSError, sqlite3.Error) as e:
                raise StorageError(f"cannot open database {self.path}: {e}") from e
            conn.row_factory = sqlite3.Row
            self._local.conn = conn
            self._local.depth = 0
        return conn

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Commit on success, roll back on failure.

        sqlite3.IntegrityError propagates unchanged so callers can map it;
        any other sqlite3.Error becomes StorageError.
        """
        conn = self.connection()
        outermost = self._local.depth == 0
        self._local.depth += 1
        try:
            yield conn
            if outermost:
                conn.commit()
        except sqlite3.IntegrityError:
            if outermost:
                conn.rollback()
            raise
        except sqlite3.Error as e:
            if outermost:
                conn.rollback()
            raise StorageError(str(e)) from e
        except BaseException:
            if outermost:
                conn.rollback()
            raise
        finally:
            self._local.depth -= 1

    def close(self) -> None:
        """Close the thread-local connection (for cleanup)."""
        conn = getattr(self._local, 'conn', None)
        if conn is not None:
            conn.close()
            self._local.conn = None


class SqliteLockStore(LockStore):
    def __init__(self, db: Database, table: str):
        self._db = db
        self._table = table

    def get(self, attempt_id: int) -> Optional[AttemptLock]:
        with self._db.transaction() as conn:
            row = conn.execute(
                f"SELECT attemptid, quizid, sessionhash FROM {self._table} WHERE attemptid=?",
                (attempt_id,)
            ).fetchone()
        if row is None:
            return None
        return AttemptLock(
            attempt_id=row['attemptid'],
            quiz_id=row['quizid'],
            session_hash=row['sessionhash'] or "",
        )

    def create(self, lock: AttemptLock) -> None:
        try:
            with self._db.transaction() as conn:
                conn.execute(
                    f"INSERT INTO {self._table}(quizid, attemptid, sessionhash) VALUES(?,?,?)",
                    (lock.quiz_id, lock.attempt_id, lock.session_hash)
                )
        except sqlite3.IntegrityError as e:
            raise LockExistsError(lock.attempt_id) from e

    def delete(self, attempt_id: int) -> bool:
        with self._db.transaction() as conn:
            cur = conn.execute(f"DELETE FROM {self._table} WHERE attemptid=?", (attempt_id,))
            return cur.rowcount > 0

    def delete_all_for_quiz(self, quiz_id: int) -> int:
        with self._db.transaction() as conn:
            cur = conn.execute(f"DELETE FROM {self._table} WHERE quizid=?", (quiz_id,))
            return cur.rowcount

    def locked_attempt_ids(self, quiz_id: int) -> List[int]:
        with self._db.transaction() as conn:
            rows = conn.execute(
                f"SELECT attemptid FROM {self._table} WHERE quizid=? ORDER BY attemptid",
                (quiz_id,)
            ).fetchall()
        return [r['attemptid'] for r in rows]


class SqliteAuditLog(AuditLog):
    def __init__(self, db: Database, table: str):
        self._db = db
        self._table = table

    def append(self, quiz_id, attempt_id, unlocked_by, time_unlocked) -> Optional[UnlockAuditEntry]:
        with self._db.transaction() as conn:
            try:
                cur = conn.execute(
                    f"INSERT INTO {self._table}(quizid, attemptid, unlockedby, timeunlocked) VALUES(?,?,?,?)",
                    (quiz_id, attempt_id, unlocked_by, time_unlocked)
                )
            except sqlite3.OperationalError as e:
                # Installs that predate the audit table still get their unlock.
                if "no such table" not in str(e):
                    raise
                logger.warning("Audit table %s missing; unlock of attempt %s not logged",
                               self._table, attempt_id)
                return None
        return UnlockAuditEntry(
            id=cur.lastrowid,
            quiz_id=quiz_id,
            attempt_id=attempt_id,
            unlocked_by=unlocked_by,
            time_unlocked=time_unlocked,
        )

    def _select(self, where: str, params: tuple) -> List[UnlockAuditEntry]:
        with self._db.transaction() as conn:
            rows = conn.execute(
                f"SELECT id, quizid, attemptid, unlockedby, timeunlocked FROM {self._table} "
                f"WHERE {where} ORDER BY timeunlocked ASC, id ASC",
                params
            ).fetchall()
        return [
            UnlockAuditEntry(
                id=r['id'],
                quiz_id=r['quizid'],
                attempt_id=r['attemptid'],
                unlocked_by=r['unlockedby'],
                time_unlocked=r['timeunlocked'],
            )
            for r in rows
        ]

    def entries_for_attempt(self, attempt_id: int) -> List[UnlockAuditEntry]:
        return self._select("attemptid=?", (attempt_id,))

    def entries_for_quiz(self, quiz_id: int) -> List[UnlockAuditEntry]:
        return self._select("quizid=?", (quiz_id,))

    def entries_by_user(self, user_id: int) -> List[UnlockAuditEntry]:
        return self._select("unlockedby=?", (user_id,))

    def delete_for_quiz(self, quiz_id: int) -> int:
        with self._db.transaction() as conn:
            return conn.execute(f"DELETE FROM {self._table} WHERE quizid=?", (quiz_id,)).rowcount

    def delete_for_user(self, user_id: int) -> int:
        with self._db.transaction() as conn:
            return conn.execute(f"DELETE FROM {self._table} WHERE unlockedby=?", (user_id,)).rowcount


class SqliteSettingsStore(SettingsStore):
    def __init__(self, db: Database, table: str):
        self._db = db
        self._table = table

    def get(self, quiz_id: int) -> Optional[QuizSettings]:
        with self._db.transaction() as conn:
            row = conn.execute(
                f"SELECT quizid, enabled FROM {self._table} WHERE quizid=?", (quiz_id,)
            ).fetchone()
        return QuizSettings(quiz_id=row['quizid'], enabled=bool(row['enabled'])) if row else None

    def save(self, settings: QuizSettings) -> None:
        with self._db.transaction() as conn:
            conn.execute(
                f"INSERT INTO {self._table}(quizid, enabled) VALUES(?,?) "
                f"ON CONFLICT(quizid) DO UPDATE SET enabled=excluded.enabled",
                (settings.quiz_id, int(settings.enabled))
            )

    def delete(self, quiz_id: int) -> None:
        with self._db.transaction() as conn:
            conn.execute(f"DELETE FROM {self._table} WHERE quizid=?", (quiz_id,))


class SqliteStorage(SessionStorage):
    """Durable storage for one deployment, keyed by component prefix."""

    def __init__(self, db: Union[Database, str, Path], prefix: str):
        if not _PREFIX_PATTERN.match(prefix):
            raise ValueError(f"invalid table prefix {prefix!r}")
        self.db = db if isinstance(db, Database) else Database(db)
        self.prefix = prefix
        self.locks = SqliteLockStore(self.db, f"{prefix}_sess")
        self.audit = SqliteAuditLog(self.db, f"{prefix}_log")
        self.settings = SqliteSettingsStore(self.db, prefix)

    @contextmanager
    def atomic(self) -> Iterator[None]:
        with self.db.transaction():
            yield

    def init_db(self) -> None:
        """
        Create tables and indexes.
        Safe to call multiple times (uses IF NOT EXISTS).
        """
        p = self.prefix
        with self.db.transaction() as conn:
            conn.execute(f"""
            CREATE TABLE IF NOT EXISTS {p} (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                quizid INTEGER NOT NULL UNIQUE,
                enabled INTEGER NOT NULL DEFAULT 0
            );""")

            conn.execute(f"""
            CREATE TABLE IF NOT EXISTS {p}_sess (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                quizid INTEGER NOT NULL,
                attemptid INTEGER NOT NULL UNIQUE,
                sessionhash TEXT NOT NULL
            );""")
            conn.execute(f"CREATE INDEX IF NOT EXISTS idx_{p}_sess_quiz ON {p}_sess(quizid);")

            conn.execute(f"""
            CREATE TABLE IF NOT EXISTS {p}_log (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                quizid INTEGER NOT NULL,
                attemptid INTEGER NOT NULL,
                unlockedby INTEGER NOT NULL,
                timeunlocked INTEGER NOT NULL
            );""")
            conn.execute(f"CREATE INDEX IF NOT EXISTS idx_{p}_log_quiz ON {p}_log(quizid);")
            conn.execute(f"CREATE INDEX IF NOT EXISTS idx_{p}_log_attempt ON {p}_log(attemptid);")
            conn.execute(f"CREATE INDEX IF NOT EXISTS idx_{p}_log_user ON {p}_log(unlockedby);")

    def stats(self) -> Dict[str, int]:
        """Row counts for monitoring."""
        out = {}
        with self.db.transaction() as conn:
            for table in (self.prefix, f"{self.prefix}_sess", f"{self.prefix}_log"):
                try:
                    out[f"{table}_count"] = conn.execute(f"SELECT COUNT(*) AS cnt FROM {table}").fetchone()['cnt']
                except sqlite3.OperationalError:
                    out[f"{table}_count"] = -1
        return out

    def reset(self) -> None:
        """Clear all tables but keep the schema (test isolation)."""
        with self.db.transaction() as conn:
            for table in (self.prefix, f"{self.prefix}_sess", f"{self.prefix}_log"):
                conn.execute(f"DELETE FROM {table}")


# ============================================================
# Host attempt mirror (standalone service)
# ============================================================

class SqliteAttemptDirectory(AttemptDirectory):
    """Attempts registered by the host through the HTTP service."""

    def __init__(self, db: Database):
        self._db = db

    def init_db(self) -> None:
        with self._db.transaction() as conn:
            conn.execute("""
            CREATE TABLE IF NOT EXISTS quiz_attempts (
                id INTEGER PRIMARY KEY,
                quiz INTEGER NOT NULL,
                userid INTEGER NOT NULL,
                state TEXT NOT NULL,
                preview INTEGER NOT NULL DEFAULT 0
            );""")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_quiz_attempts_quiz ON quiz_attempts(quiz);")

    def upsert(self, attempt: Attempt) -> None:
        with self._db.transaction() as conn:
            conn.execute(
                "INSERT INTO quiz_attempts(id, quiz, userid, state, preview) VALUES(?,?,?,?,?) "
                "ON CONFLICT(id) DO UPDATE SET quiz=excluded.quiz, userid=excluded.userid, "
                "state=excluded.state, preview=excluded.preview",
                (attempt.attempt_id, attempt.quiz_id, attempt.user_id, attempt.state.value, int(attempt.preview))
            )

    def set_state(self, attempt_id: int, state: AttemptState) -> bool:
        with self._db.transaction() as conn:
            cur = conn.execute("UPDATE quiz_attempts SET state=? WHERE id=?", (state.value, attempt_id))
            return cur.rowcount > 0

    def remove(self, attempt_id: int) -> None:
        with self._db.transaction() as conn:
            conn.execute("DELETE FROM quiz_attempts WHERE id=?", (attempt_id,))

    @staticmethod
    def _row_to_attempt(row: sqlite3.Row) -> Attempt:
        return Attempt(
            attempt_id=row['id'],
            quiz_id=row['quiz'],
            user_id=row['userid'],
            state=AttemptState(row['state']),
            preview=bool(row['preview']),
        )

    def get(self, attempt_id: int) -> Optional[Attempt]:
        with self._db.transaction() as conn:
            row = conn.execute(
                "SELECT id, quiz, userid, state, preview FROM quiz_attempts WHERE id=?", (attempt_id,)
            ).fetchone()
        return self._row_to_attempt(row) if row else None

    def for_quiz(self, quiz_id: int) -> List[Attempt]:
        with self._db.transaction() as conn:
            rows = conn.execute(
                "SELECT id, quiz, userid, state, preview FROM quiz_attempts WHERE quiz=? ORDER BY id",
                (quiz_id,)
            ).fetchall()
        return [self._row_to_attempt(r) for r in rows]
