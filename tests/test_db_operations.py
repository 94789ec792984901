"""Test cases for db operations."""

import sqlite3
import threading

import pytest

import db
from db_pool import SQLiteConnectionPool


def _journey(user_id="u1", category="system-design"):
    return db.create_flashcard_journey(user_id, "Deck", None, category)


def test_init_is_idempotent(temp_db):
    db.init()
    db.init()
    with db._conn() as con:
        tables = {r["name"] for r in con.execute("SELECT name FROM sqlite_master WHERE type='table'")}
    assert {
        "users",
        "practice_questions",
        "flashcard_journeys",
        "flashcard_sessions",
        "flashcard_responses",
        "question_bank_state",
        "practice_events",
    } <= tables


def test_init_bank_state_inserts_only_missing(seeded_questions):
    journey_id = _journey()
    assert db.init_bank_state("u1", journey_id, "system-design") == 3
    assert db.init_bank_state("u1", journey_id, "system-design") == 0
    assert db.init_bank_state("u1", journey_id, "behavioral") == 0
    assert len(db.list_bank_state("u1", journey_id)) == 3


def test_unanswered_includes_questions_without_state(seeded_questions):
    journey_id = _journey()
    ids = db.list_unanswered_question_ids("u1", journey_id, "system-design")
    assert ids == sorted(q["id"] for q in seeded_questions)


def test_record_answer_upserts_both_rows(seeded_questions):
    journey_id = _journey()
    session_id = db.create_flashcard_session("u1", journey_id)
    question_id = seeded_questions[0]["id"]

    first = db.record_flashcard_answer("u1", session_id, journey_id, question_id, "v1")
    second = db.record_flashcard_answer("u1", session_id, journey_id, question_id, "v2")

    assert first == second
    assert db.get_flashcard_response("u1", session_id, question_id)["user_answer"] == "v2"
    entry = db.get_bank_entry("u1", journey_id, question_id)
    assert entry["is_answered"] == 1
    assert entry["answer_count"] == 2
    assert question_id not in db.list_unanswered_question_ids("u1", journey_id, "system-design")


def test_concurrent_answers_all_counted(seeded_questions):
    journey_id = _journey()
    session_id = db.create_flashcard_session("u1", journey_id)
    question_id = seeded_questions[1]["id"]
    errors = []

    def worker(n):
        try:
            db.record_flashcard_answer("u1", session_id, journey_id, question_id, f"answer {n}")
        except db.StorageError as exc:
            errors.append(exc)

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    assert db.get_bank_entry("u1", journey_id, question_id)["answer_count"] == 8
    assert db.count_flashcard_responses("u1", session_id) == 1


def test_reset_bank_state_zeroes_counts(seeded_questions):
    journey_id = _journey()
    session_id = db.create_flashcard_session("u1", journey_id)
    db.init_bank_state("u1", journey_id, "system-design")
    db.record_flashcard_answer("u1", session_id, journey_id, seeded_questions[0]["id"], "x")

    assert db.reset_bank_state("u1", journey_id) == 3
    entry = db.get_bank_entry("u1", journey_id, seeded_questions[0]["id"])
    assert entry["is_answered"] == 0
    assert entry["answer_count"] == 0
    assert entry["first_answered_at"] is not None
    assert db.bank_progress("u1", journey_id) == {
        "total_questions": 3,
        "answered_questions": 0,
        "unanswered_questions": 3,
        "attempted_questions": 0,
    }


def test_mark_guided_answer_viewed_without_response(seeded_questions):
    journey_id = _journey()
    session_id = db.create_flashcard_session("u1", journey_id)
    assert db.mark_guided_answer_viewed("u1", session_id, seeded_questions[0]["id"]) == 0


def test_complete_session_keeps_first_end(seeded_questions):
    journey_id = _journey()
    session_id = db.create_flashcard_session("u1", journey_id)
    db.complete_flashcard_session(session_id)
    ended = db.get_flashcard_session(session_id)["session_end"]
    db.complete_flashcard_session(session_id)
    assert db.get_flashcard_session(session_id)["session_end"] == ended
    assert db.list_flashcard_sessions("u1", status="active") == []
    assert len(db.list_flashcard_sessions("u1")) == 1


def test_storage_errors_are_wrapped(temp_db):
    with pytest.raises(db.StorageError):
        db.create_flashcard_session("u1", 999)


def test_practice_events_round_trip(temp_db):
    db.log_practice_event("journey.created", "u1", "journey", 1, {"journey_id": 1})
    db.log_practice_event("session.started", "u1", "session", 2, {"session_id": 2})
    rows = db.list_practice_events(user_id="u1")
    assert [r["event_type"] for r in rows] == ["session.started", "journey.created"]
    assert rows[1]["payload"] == {"journey_id": 1}
    assert len(db.list_practice_events(event_type="journey.created")) == 1


def test_configure_swaps_pool(tmp_path, monkeypatch):
    monkeypatch.setattr(db, "DB_PATH", db.DB_PATH)
    monkeypatch.setattr(db, "_pool", db._pool)
    target = str(tmp_path / "other.db")
    db.configure(target)
    assert db.DB_PATH == target
    assert db._pool.database == target


def test_pool_reuses_connections(tmp_path):
    pool = SQLiteConnectionPool(str(tmp_path / "pool.db"), max_connections=2)
    with pool.get_connection() as first:
        first.execute("CREATE TABLE t (x INTEGER)")
        first.commit()
    with pool.get_connection() as second:
        assert second is first
        assert second.execute("PRAGMA foreign_keys").fetchone()[0] == 1
        assert isinstance(second.execute("SELECT 1 AS one").fetchone(), sqlite3.Row)
    assert pool.created_connections == 1
    pool.close_all()
    assert pool.created_connections == 0


def test_pool_rolls_back_uncommitted_work(tmp_path):
    pool = SQLiteConnectionPool(str(tmp_path / "pool.db"))
    with pool.get_connection() as con:
        con.execute("CREATE TABLE t (x INTEGER)")
        con.commit()
    with pool.get_connection() as con:
        con.execute("INSERT INTO t VALUES (1)")
    with pool.get_connection() as con:
        assert con.execute("SELECT COUNT(*) FROM t").fetchone()[0] == 0
    pool.close_all()
