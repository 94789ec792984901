import json
import random
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


SAMPLE_QUESTIONS = [
    {
        "question_key": "cache-design",
        "title": "Design a Cache",
        "prompt": "Design an in-memory cache with eviction.",
        "guided_answer": "Hash map plus doubly linked list for LRU.",
        "category": "system-design",
        "difficulty": "easy",
    },
    {
        "question_key": "queue-design",
        "title": "Design a Message Queue",
        "prompt": "Design a durable message queue.",
        "guided_answer": "Append-only log, partitions, consumer offsets.",
        "category": "system-design",
        "difficulty": "medium",
    },
    {
        "question_key": "search-design",
        "title": "Design Search Autocomplete",
        "prompt": "Design typeahead suggestions.",
        "guided_answer": "Trie of top-k prefixes refreshed offline.",
        "category": "system-design",
        "difficulty": "hard",
    },
]


@pytest.fixture
def temp_db(monkeypatch, tmp_path):
    import db

    db_path = tmp_path / "test.db"
    monkeypatch.setattr(db, "DB_PATH", str(db_path))
    monkeypatch.setattr(db, "_pool", db.SQLiteConnectionPool(str(db_path), max_connections=10))
    monkeypatch.delenv("EVENTS_WEBHOOK_URL", raising=False)
    db.init()
    return str(db_path)


@pytest.fixture
def question_file(tmp_path: Path) -> Path:
    path = tmp_path / "questions.json"
    path.write_text(json.dumps({"questions": SAMPLE_QUESTIONS}), encoding="utf-8")
    return path


@pytest.fixture
def seeded_questions(temp_db, question_file):
    import db
    from question_bank import QuestionBank

    QuestionBank(question_file)
    return db.list_practice_questions("system-design")


@pytest.fixture
def engine(temp_db):
    from flashcards import FlashcardEngine

    return FlashcardEngine(rng=random.Random(7))
