import json
import logging
import os
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, Optional

from db_pool import SQLiteConnectionPool

logger = logging.getLogger(__name__)

DB_PATH = os.getenv("DB_PATH", "data.db")

# Initialize connection pool
_pool = SQLiteConnectionPool(DB_PATH, max_connections=10)


class StorageError(Exception):
    """Raised when the underlying SQLite store fails."""


def configure(db_path: str, max_connections: int = 10) -> None:
    """Point the module at ``db_path`` with a fresh connection pool."""
    global DB_PATH, _pool
    if db_path == DB_PATH and _pool.database == db_path:
        return
    old_pool = _pool
    DB_PATH = db_path
    _pool = SQLiteConnectionPool(db_path, max_connections=max_connections)
    old_pool.close_all()


def _conn():
    """Return a context manager for acquiring a pooled SQLite connection."""
    return _pool.get_connection()


@contextmanager
def _transaction() -> Iterator[sqlite3.Connection]:
    """Run several statements on one connection and commit them together."""
    try:
        with _pool.get_connection() as con:
            yield con
            con.commit()
    except sqlite3.Error as exc:
        raise StorageError(str(exc)) from exc


def _exec(sql: str, params: Iterable = ()) -> sqlite3.Cursor:
    try:
        with _pool.get_connection() as con:
            cur = con.execute(sql, tuple(params))
            con.commit()
            return cur
    except sqlite3.Error as exc:
        raise StorageError(str(exc)) from exc


def _query(sql: str, params: Iterable = ()) -> list[sqlite3.Row]:
    try:
        with _pool.get_connection() as con:
            cur = con.execute(sql, tuple(params))
            return cur.fetchall()
    except sqlite3.Error as exc:
        raise StorageError(str(exc)) from exc


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S.%f")


def _row_dict(row: Optional[sqlite3.Row]) -> Optional[Dict[str, Any]]:
    return dict(row) if row is not None else None


# -------------- schema --------------
def init():
    Path(DB_PATH).parent.mkdir(parents=True, exist_ok=True)
    try:
        with _conn() as con:
            con.executescript(
                """
                PRAGMA foreign_keys = ON;
                PRAGMA journal_mode=WAL;

                CREATE TABLE IF NOT EXISTS users (
                  user_id     TEXT PRIMARY KEY,
                  email       TEXT UNIQUE,
                  pw_hash     TEXT,
                  pw_salt     TEXT,
                  created_at  TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                );

                CREATE TABLE IF NOT EXISTS practice_questions (
                  id             INTEGER PRIMARY KEY AUTOINCREMENT,
                  question_key   TEXT UNIQUE NOT NULL,
                  title          TEXT NOT NULL,
                  prompt         TEXT NOT NULL,
                  guided_answer  TEXT NOT NULL,
                  category       TEXT NOT NULL,
                  difficulty     TEXT DEFAULT 'medium',
                  created_at     TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                  updated_at     TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                );

                CREATE INDEX IF NOT EXISTS idx_practice_questions_category
                  ON practice_questions(category);

                CREATE TABLE IF NOT EXISTS flashcard_journeys (
                  id                 INTEGER PRIMARY KEY AUTOINCREMENT,
                  title              TEXT NOT NULL,
                  description        TEXT,
                  question_category  TEXT NOT NULL,
                  is_active          INTEGER DEFAULT 1,
                  created_by         TEXT NOT NULL,
                  created_at         TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                );

                CREATE INDEX IF NOT EXISTS idx_flashcard_journeys_owner
                  ON flashcard_journeys(created_by);

                CREATE TABLE IF NOT EXISTS flashcard_sessions (
                  id             INTEGER PRIMARY KEY AUTOINCREMENT,
                  user_id        TEXT NOT NULL,
                  journey_id     INTEGER NOT NULL,
                  session_start  TIMESTAMP NOT NULL,
                  session_end    TIMESTAMP,
                  status         TEXT NOT NULL DEFAULT 'active'
                                 CHECK (status IN ('active', 'completed')),
                  FOREIGN KEY(journey_id) REFERENCES flashcard_journeys(id) ON DELETE CASCADE
                );

                CREATE INDEX IF NOT EXISTS idx_flashcard_sessions_user
                  ON flashcard_sessions(user_id, status);

                CREATE TABLE IF NOT EXISTS flashcard_responses (
                  id                    INTEGER PRIMARY KEY AUTOINCREMENT,
                  user_id               TEXT NOT NULL,
                  question_id           INTEGER NOT NULL,
                  session_id            INTEGER NOT NULL,
                  user_answer           TEXT NOT NULL,
                  answered_at           TIMESTAMP NOT NULL,
                  viewed_guided_answer  INTEGER NOT NULL DEFAULT 0,
                  viewed_at             TIMESTAMP,
                  created_at            TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                  updated_at            TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                  FOREIGN KEY(question_id) REFERENCES practice_questions(id),
                  FOREIGN KEY(session_id) REFERENCES flashcard_sessions(id) ON DELETE CASCADE,
                  UNIQUE(session_id, question_id, user_id)
                );

                CREATE INDEX IF NOT EXISTS idx_flashcard_responses_session
                  ON flashcard_responses(session_id, user_id);

                CREATE TABLE IF NOT EXISTS question_bank_state (
                  id                 INTEGER PRIMARY KEY AUTOINCREMENT,
                  user_id            TEXT NOT NULL,
                  journey_id         INTEGER NOT NULL,
                  question_id        INTEGER NOT NULL,
                  is_answered        INTEGER NOT NULL DEFAULT 0,
                  answer_count       INTEGER NOT NULL DEFAULT 0 CHECK (answer_count >= 0),
                  first_answered_at  TIMESTAMP,
                  last_answered_at   TIMESTAMP,
                  created_at         TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                  updated_at         TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                  FOREIGN KEY(journey_id) REFERENCES flashcard_journeys(id) ON DELETE CASCADE,
                  FOREIGN KEY(question_id) REFERENCES practice_questions(id),
                  UNIQUE(user_id, journey_id, question_id)
                );

                CREATE INDEX IF NOT EXISTS idx_question_bank_state_user_journey
                  ON question_bank_state(user_id, journey_id, is_answered);

                CREATE TABLE IF NOT EXISTS practice_events (
                  id              INTEGER PRIMARY KEY AUTOINCREMENT,
                  event_type      TEXT NOT NULL,
                  user_id         TEXT,
                  aggregate_type  TEXT,
                  aggregate_id    INTEGER,
                  payload         TEXT,
                  created_at      TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                );

                CREATE INDEX IF NOT EXISTS idx_practice_events_user
                  ON practice_events(user_id, created_at DESC);
                """
            )
            con.commit()
    except sqlite3.Error as exc:
        raise StorageError(str(exc)) from exc


# -------------- users / auth --------------
def get_user_auth(user_id: str) -> Optional[sqlite3.Row]:
    rows = _query("SELECT user_id, pw_hash, pw_salt FROM users WHERE user_id = ?", (user_id,))
    return rows[0] if rows else None

def get_user_by_email(email: str) -> Optional[sqlite3.Row]:
    rows = _query("SELECT user_id FROM users WHERE email = ?", (email,))
    return rows[0] if rows else None

def create_user(user_id: str, email: Optional[str], pw_hash: str, pw_salt: Optional[str] = None):
    _exec(
        "INSERT INTO users(user_id, email, pw_hash, pw_salt) VALUES (?,?,?,?)",
        (user_id, email, pw_hash, pw_salt),
    )


# -------------- question bank --------------
_QUESTION_COLUMNS = "id, question_key, title, prompt, guided_answer, category, difficulty"


def upsert_practice_questions(questions: Iterable[Dict[str, Any]]) -> int:
    """Insert or update questions keyed by ``question_key``.

    Existing rows are updated in place so their ids, and every bank entry or
    response pointing at them, stay valid.
    """
    to_store = list(questions)
    if not to_store:
        return 0

    now = _now()
    with _transaction() as con:
        for question in to_store:
            con.execute(
                """
                INSERT INTO practice_questions(
                  question_key, title, prompt, guided_answer, category, difficulty, updated_at
                ) VALUES (?,?,?,?,?,?,?)
                ON CONFLICT(question_key) DO UPDATE SET
                  title=excluded.title,
                  prompt=excluded.prompt,
                  guided_answer=excluded.guided_answer,
                  category=excluded.category,
                  difficulty=excluded.difficulty,
                  updated_at=excluded.updated_at
                """,
                (
                    question["question_key"],
                    question["title"],
                    question["prompt"],
                    question["guided_answer"],
                    question["category"],
                    question.get("difficulty") or "medium",
                    now,
                ),
            )
    return len(to_store)


def get_practice_question(question_id: int) -> Optional[Dict[str, Any]]:
    rows = _query(f"SELECT {_QUESTION_COLUMNS} FROM practice_questions WHERE id = ?", (question_id,))
    return _row_dict(rows[0]) if rows else None


def list_practice_questions(category: Optional[str] = None, limit: int = 500) -> list[Dict[str, Any]]:
    if category:
        rows = _query(
            f"SELECT {_QUESTION_COLUMNS} FROM practice_questions WHERE category = ? ORDER BY id LIMIT ?",
            (category, int(limit)),
        )
    else:
        rows = _query(
            f"SELECT {_QUESTION_COLUMNS} FROM practice_questions ORDER BY id LIMIT ?",
            (int(limit),),
        )
    return [dict(r) for r in rows]


def count_practice_questions(category: Optional[str] = None) -> int:
    if category:
        rows = _query("SELECT COUNT(*) AS n FROM practice_questions WHERE category = ?", (category,))
    else:
        rows = _query("SELECT COUNT(*) AS n FROM practice_questions")
    return int(rows[0]["n"])


# -------------- flashcard journeys --------------
def create_flashcard_journey(
    user_id: str,
    title: str,
    description: Optional[str],
    category: str,
) -> int:
    cur = _exec(
        """
        INSERT INTO flashcard_journeys(title, description, question_category, created_by)
        VALUES (?,?,?,?)
        """,
        (title, description, category, user_id),
    )
    return int(cur.lastrowid)


def get_flashcard_journey(journey_id: int) -> Optional[Dict[str, Any]]:
    rows = _query(
        """
        SELECT id, title, description, question_category, is_active, created_by, created_at
        FROM flashcard_journeys WHERE id = ?
        """,
        (journey_id,),
    )
    return _row_dict(rows[0]) if rows else None


def list_flashcard_journeys(user_id: str) -> list[Dict[str, Any]]:
    rows = _query(
        """
        SELECT id, title, description, question_category, is_active, created_by, created_at
        FROM flashcard_journeys WHERE created_by = ? ORDER BY id
        """,
        (user_id,),
    )
    return [dict(r) for r in rows]


# -------------- flashcard sessions --------------
def create_flashcard_session(user_id: str, journey_id: int) -> int:
    cur = _exec(
        """
        INSERT INTO flashcard_sessions(user_id, journey_id, session_start, status)
        VALUES (?, ?, ?, 'active')
        """,
        (user_id, journey_id, _now()),
    )
    return int(cur.lastrowid)


def get_flashcard_session(session_id: int) -> Optional[Dict[str, Any]]:
    rows = _query(
        """
        SELECT s.id, s.user_id, s.journey_id, s.session_start, s.session_end, s.status,
               j.title AS journey_title, j.description, j.question_category
        FROM flashcard_sessions s
        JOIN flashcard_journeys j ON s.journey_id = j.id
        WHERE s.id = ?
        """,
        (session_id,),
    )
    return _row_dict(rows[0]) if rows else None


def complete_flashcard_session(session_id: int) -> int:
    """Mark a session completed; an already-completed session keeps its end time."""
    cur = _exec(
        """
        UPDATE flashcard_sessions
        SET status = 'completed', session_end = COALESCE(session_end, ?)
        WHERE id = ?
        """,
        (_now(), session_id),
    )
    return cur.rowcount


def list_flashcard_sessions(user_id: str, status: Optional[str] = None) -> list[Dict[str, Any]]:
    clauses = ["s.user_id = ?"]
    params: list[Any] = [user_id]
    if status:
        clauses.append("s.status = ?")
        params.append(status)
    rows = _query(
        f"""
        SELECT s.id, s.user_id, s.journey_id, s.session_start, s.session_end, s.status,
               j.title AS journey_title
        FROM flashcard_sessions s
        JOIN flashcard_journeys j ON s.journey_id = j.id
        WHERE {' AND '.join(clauses)}
        ORDER BY s.session_start DESC, s.id DESC
        """,
        params,
    )
    return [dict(r) for r in rows]


# -------------- per-user bank state --------------
def init_bank_state(user_id: str, journey_id: int, category: str) -> int:
    """Create missing unanswered entries for every question in ``category``.

    A single ``INSERT OR IGNORE`` keyed on (user, journey, question) keeps this
    idempotent and safe to run from concurrent session starts.
    """
    cur = _exec(
        """
        INSERT OR IGNORE INTO question_bank_state(
          user_id, journey_id, question_id, is_answered, answer_count
        )
        SELECT ?, ?, q.id, 0, 0
        FROM practice_questions q
        WHERE q.category = ?
        """,
        (user_id, journey_id, category),
    )
    return max(cur.rowcount, 0)


def list_unanswered_question_ids(user_id: str, journey_id: int, category: str) -> list[int]:
    """Question ids in ``category`` without an answered entry for (user, journey)."""
    rows = _query(
        """
        SELECT q.id
        FROM practice_questions q
        WHERE q.category = ?
          AND NOT EXISTS (
            SELECT 1 FROM question_bank_state s
            WHERE s.user_id = ?
              AND s.journey_id = ?
              AND s.question_id = q.id
              AND s.is_answered = 1
          )
        ORDER BY q.id
        """,
        (category, user_id, journey_id),
    )
    return [int(r["id"]) for r in rows]


def reset_bank_state(user_id: str, journey_id: int) -> int:
    cur = _exec(
        """
        UPDATE question_bank_state
        SET is_answered = 0, answer_count = 0, updated_at = ?
        WHERE user_id = ? AND journey_id = ?
        """,
        (_now(), user_id, journey_id),
    )
    return cur.rowcount


def get_bank_entry(user_id: str, journey_id: int, question_id: int) -> Optional[Dict[str, Any]]:
    rows = _query(
        """
        SELECT user_id, journey_id, question_id, is_answered, answer_count,
               first_answered_at, last_answered_at
        FROM question_bank_state
        WHERE user_id = ? AND journey_id = ? AND question_id = ?
        """,
        (user_id, journey_id, question_id),
    )
    return _row_dict(rows[0]) if rows else None


def list_bank_state(user_id: str, journey_id: int) -> list[Dict[str, Any]]:
    rows = _query(
        """
        SELECT user_id, journey_id, question_id, is_answered, answer_count,
               first_answered_at, last_answered_at
        FROM question_bank_state
        WHERE user_id = ? AND journey_id = ?
        ORDER BY question_id
        """,
        (user_id, journey_id),
    )
    return [dict(r) for r in rows]


def bank_progress(user_id: str, journey_id: int) -> Dict[str, int]:
    rows = _query(
        """
        SELECT
          COUNT(*) AS total_questions,
          COALESCE(SUM(CASE WHEN is_answered = 1 THEN 1 ELSE 0 END), 0) AS answered_questions,
          COALESCE(SUM(CASE WHEN answer_count > 0 THEN 1 ELSE 0 END), 0) AS attempted_questions
        FROM question_bank_state
        WHERE user_id = ? AND journey_id = ?
        """,
        (user_id, journey_id),
    )
    row = rows[0]
    total = int(row["total_questions"] or 0)
    answered = int(row["answered_questions"] or 0)
    return {
        "total_questions": total,
        "answered_questions": answered,
        "unanswered_questions": total - answered,
        "attempted_questions": int(row["attempted_questions"] or 0),
    }


# -------------- responses --------------
def record_flashcard_answer(
    user_id: str,
    session_id: int,
    journey_id: int,
    question_id: int,
    answer: str,
) -> int:
    """Upsert the response and mark the bank entry answered in one transaction.

    The answer count is incremented inside the upsert statement itself, so two
    concurrent submits for the same key both land.
    """
    now = _now()
    with _transaction() as con:
        con.execute(
            """
            INSERT INTO flashcard_responses(
              user_id, question_id, session_id, user_answer, answered_at, updated_at
            ) VALUES (?,?,?,?,?,?)
            ON CONFLICT(session_id, question_id, user_id) DO UPDATE SET
              user_answer = excluded.user_answer,
              answered_at = excluded.answered_at,
              updated_at = excluded.updated_at
            """,
            (user_id, question_id, session_id, answer, now, now),
        )
        row = con.execute(
            """
            SELECT id FROM flashcard_responses
            WHERE session_id = ? AND question_id = ? AND user_id = ?
            """,
            (session_id, question_id, user_id),
        ).fetchone()
        con.execute(
            """
            INSERT INTO question_bank_state(
              user_id, journey_id, question_id, is_answered, answer_count,
              first_answered_at, last_answered_at, updated_at
            ) VALUES (?, ?, ?, 1, 1, ?, ?, ?)
            ON CONFLICT(user_id, journey_id, question_id) DO UPDATE SET
              is_answered = 1,
              answer_count = answer_count + 1,
              first_answered_at = COALESCE(first_answered_at, excluded.first_answered_at),
              last_answered_at = excluded.last_answered_at,
              updated_at = excluded.updated_at
            """,
            (user_id, journey_id, question_id, now, now, now),
        )
    return int(row["id"])


def mark_guided_answer_viewed(user_id: str, session_id: int, question_id: int) -> int:
    cur = _exec(
        """
        UPDATE flashcard_responses
        SET viewed_guided_answer = 1,
            viewed_at = COALESCE(viewed_at, ?)
        WHERE user_id = ? AND session_id = ? AND question_id = ?
        """,
        (_now(), user_id, session_id, question_id),
    )
    return cur.rowcount


def get_flashcard_response(user_id: str, session_id: int, question_id: int) -> Optional[Dict[str, Any]]:
    rows = _query(
        """
        SELECT id, user_id, question_id, session_id, user_answer, answered_at,
               viewed_guided_answer, viewed_at, created_at, updated_at
        FROM flashcard_responses
        WHERE user_id = ? AND session_id = ? AND question_id = ?
        """,
        (user_id, session_id, question_id),
    )
    return _row_dict(rows[0]) if rows else None


def count_flashcard_responses(user_id: str, session_id: Optional[int] = None) -> int:
    if session_id is None:
        rows = _query("SELECT COUNT(*) AS n FROM flashcard_responses WHERE user_id = ?", (user_id,))
    else:
        rows = _query(
            "SELECT COUNT(*) AS n FROM flashcard_responses WHERE user_id = ? AND session_id = ?",
            (user_id, session_id),
        )
    return int(rows[0]["n"])


# -------------- practice events --------------
def log_practice_event(
    event_type: str,
    user_id: Optional[str],
    aggregate_type: Optional[str],
    aggregate_id: Optional[int],
    payload: Dict[str, Any],
) -> int:
    cur = _exec(
        """
        INSERT INTO practice_events(event_type, user_id, aggregate_type, aggregate_id, payload)
        VALUES (?,?,?,?,?)
        """,
        (event_type, user_id, aggregate_type, aggregate_id, json_dumps(payload)),
    )
    return int(cur.lastrowid)


def list_practice_events(
    user_id: Optional[str] = None,
    event_type: Optional[str] = None,
    limit: int = 100,
) -> list[Dict[str, Any]]:
    clauses: list[str] = []
    params: list[Any] = []
    if user_id:
        clauses.append("user_id = ?")
        params.append(user_id)
    if event_type:
        clauses.append("event_type = ?")
        params.append(event_type)
    where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
    params.append(int(limit))
    rows = _query(
        "SELECT id, event_type, user_id, aggregate_type, aggregate_id, payload, created_at "
        f"FROM practice_events{where} ORDER BY id DESC LIMIT ?",
        params,
    )
    events: list[Dict[str, Any]] = []
    for row in rows:
        entry = dict(row)
        entry["payload"] = _decode_json_field(entry.get("payload"))
        events.append(entry)
    return events


# -------------- helpers --------------
def json_dumps(obj: Any) -> str:
    return json.dumps(obj, ensure_ascii=False, separators=(",", ":"))


def _decode_json_field(value: Optional[str]) -> Any:
    if value is None:
        return None
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        logger.debug("Stored payload is not valid JSON: %r", value)
        return value
