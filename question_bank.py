"""Practice question bank: template loading, validation, and syncing to the store."""
from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import db

logger = logging.getLogger(__name__)

DEFAULT_TEMPLATE_PATH = Path(__file__).resolve().parent / "data" / "system_design_questions.json"

_DIFFICULTIES = ("easy", "medium", "hard")


class QuestionValidationError(ValueError):
    """Raised when a question from the JSON template fails validation."""


class QuestionBank:
    """Helper for loading and validating the reference questions of a practice deck."""

    REQUIRED_FIELDS = ("question_key", "title", "prompt", "guided_answer", "category")

    def __init__(self, path: str | Path | None = None, *, auto_sync: bool = True) -> None:
        self.path = Path(path) if path is not None else default_template_path()
        self._questions: List[Dict[str, Any]] = []
        self._load(auto_sync=auto_sync)

    # ------------------------------------------------------------------
    # loading & validation
    # ------------------------------------------------------------------
    def _load(self, *, auto_sync: bool) -> None:
        if not self.path.exists():
            raise FileNotFoundError(f"Question template not found: {self.path}")

        with self.path.open("r", encoding="utf-8") as fh:
            raw = json.load(fh)

        # Templates ship either as a bare list or wrapped as {"questions": [...]}.
        if isinstance(raw, dict):
            raw = raw.get("questions")
        if not isinstance(raw, list):
            raise QuestionValidationError("Question template must be a list or an object with a 'questions' list")

        questions: List[Dict[str, Any]] = []
        seen_keys: set[str] = set()
        for entry in raw:
            if not isinstance(entry, dict):
                raise QuestionValidationError("Each question must be an object")

            for field in self.REQUIRED_FIELDS:
                value = entry.get(field)
                if value is None or not str(value).strip():
                    raise QuestionValidationError(
                        f"Question {entry.get('question_key')} missing required field '{field}'"
                    )

            key = str(entry["question_key"]).strip()
            if key in seen_keys:
                raise QuestionValidationError(f"Duplicate question_key detected: {key}")
            seen_keys.add(key)

            difficulty = str(entry.get("difficulty") or "medium").strip().lower()
            if difficulty not in _DIFFICULTIES:
                raise QuestionValidationError(
                    f"Question {key} difficulty must be one of: {', '.join(_DIFFICULTIES)}"
                )

            questions.append(
                {
                    "question_key": key,
                    "title": str(entry["title"]).strip(),
                    "prompt": str(entry["prompt"]),
                    "guided_answer": str(entry["guided_answer"]),
                    "category": str(entry["category"]).strip().lower(),
                    "difficulty": difficulty,
                }
            )

        self._questions = questions

        if auto_sync and questions:
            self.sync()

    @property
    def questions(self) -> List[Dict[str, Any]]:
        return list(self._questions)

    def categories(self) -> List[str]:
        return sorted({q["category"] for q in self._questions})

    def sync(self) -> int:
        """Upsert every loaded question into the store."""
        count = db.upsert_practice_questions(self._questions)
        logger.info("Synced %s practice questions from %s", count, self.path)
        return count


def default_template_path() -> Path:
    configured = os.getenv("QUESTION_BANK_PATH")
    return Path(configured) if configured else DEFAULT_TEMPLATE_PATH


def load_questions(path: str | Path | None = None) -> List[Dict[str, Any]]:
    """Return validated questions from disk without touching the store."""
    return QuestionBank(path, auto_sync=False).questions


def seed_questions(path: str | Path | None = None) -> int:
    """Load the template and upsert it into the store; returns the number seeded."""
    bank = QuestionBank(path, auto_sync=False)
    return bank.sync()


def get_question(question_id: int) -> Optional[Dict[str, Any]]:
    return db.get_practice_question(question_id)


def list_questions(category: Optional[str] = None) -> List[Dict[str, Any]]:
    return db.list_practice_questions(category)
