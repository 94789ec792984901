"""Endless flashcard practice over a question bank.

A learner creates a practice deck (journey), opens sessions on it, and keeps
drawing unanswered questions at random. Once every question of the deck has
been answered the bank resets itself, so practice never runs dry as long as
the deck's category holds at least one question.
"""

from __future__ import annotations

import logging
import random
from typing import Any, Dict, List, Optional

import db
import events

logger = logging.getLogger(__name__)

DEFAULT_CATEGORY = "system-design"
DEFAULT_JOURNEY_TITLE = "System Design Practice"
DEFAULT_JOURNEY_DESCRIPTION = "Endless system design practice with guided answers"

# Fields a learner may see before answering; the guided answer is withheld.
CARD_FIELDS = ("id", "question_key", "title", "prompt", "category", "difficulty")


class PracticeError(Exception):
    """Base class for errors surfaced to callers of the flashcard engine."""


class NotFoundError(PracticeError, LookupError):
    """A referenced question, session, or journey does not exist."""


class PracticeValidationError(PracticeError, ValueError):
    """A required argument is missing or invalid."""


def _require(value: Any, name: str) -> None:
    if value is None or (isinstance(value, str) and not value.strip()):
        raise PracticeValidationError(f"{name} is required")


def to_card(question: Dict[str, Any]) -> Dict[str, Any]:
    """Project a stored question onto the fields shown before answering."""
    return {field: question.get(field) for field in CARD_FIELDS}


class FlashcardEngine:
    """Coordinate decks, sessions, bank state, and responses via the store."""

    def __init__(
        self,
        db_module=db,
        *,
        rng: Optional[random.Random] = None,
        events_module=events,
        default_category: str = DEFAULT_CATEGORY,
    ) -> None:
        self._db = db_module
        self._rng = rng or random.Random()
        self._events = events_module
        self.default_category = default_category.strip().lower()

    # ------------------------------------------------------------------
    # decks and sessions
    # ------------------------------------------------------------------
    def create_journey(
        self,
        user_id: str,
        title: Optional[str] = None,
        description: Optional[str] = None,
        category: Optional[str] = None,
    ) -> int:
        _require(user_id, "user_id")
        category = (category or self.default_category).strip().lower()
        journey_id = self._db.create_flashcard_journey(
            user_id,
            (title or "").strip() or DEFAULT_JOURNEY_TITLE,
            description or DEFAULT_JOURNEY_DESCRIPTION,
            category,
        )
        self._emit("journey.created", user_id, journey_id, {"journey_id": journey_id, "category": category})
        return journey_id

    def get_journey(self, journey_id: int) -> Dict[str, Any]:
        _require(journey_id, "journey_id")
        journey = self._db.get_flashcard_journey(journey_id)
        if not journey:
            raise NotFoundError("journey not found")
        return journey

    def start_session(self, user_id: str, journey_id: int) -> int:
        _require(user_id, "user_id")
        journey = self.get_journey(journey_id)
        session_id = self._db.create_flashcard_session(user_id, journey["id"])
        self._emit("session.started", user_id, session_id, {"session_id": session_id, "journey_id": journey["id"]})
        self.ensure_bank_initialized(user_id, journey["id"], category=journey["question_category"])
        return session_id

    def ensure_bank_initialized(
        self,
        user_id: str,
        journey_id: int,
        *,
        category: Optional[str] = None,
    ) -> int:
        """Create any missing bank entries without touching existing progress."""
        if category is None:
            category = self.get_journey(journey_id)["question_category"]
        inserted = self._db.init_bank_state(user_id, journey_id, category)
        if inserted:
            self._emit(
                "bank.initialized",
                user_id,
                journey_id,
                {"journey_id": journey_id, "category": category, "inserted": inserted},
            )
        return inserted

    def end_session(self, session_id: int, user_id: Optional[str] = None) -> Dict[str, Any]:
        session = self._get_session(session_id, user_id)
        self._db.complete_flashcard_session(session["id"])
        self._emit("session.ended", session["user_id"], session["id"],
                   {"session_id": session["id"], "journey_id": session["journey_id"]})
        return self._db.get_flashcard_session(session["id"])

    def get_session(self, user_id: str, session_id: int) -> Dict[str, Any]:
        _require(user_id, "user_id")
        return self._get_session(session_id, user_id)

    def get_session_details(self, user_id: str, session_id: int) -> Dict[str, Any]:
        session = self.get_session(user_id, session_id)
        details = dict(session)
        details["progress"] = self.get_progress(user_id, session["journey_id"])
        return details

    def list_user_journeys(self, user_id: str) -> List[Dict[str, Any]]:
        _require(user_id, "user_id")
        return self._db.list_flashcard_journeys(user_id)

    def list_active_sessions(self, user_id: str) -> List[Dict[str, Any]]:
        _require(user_id, "user_id")
        return self._db.list_flashcard_sessions(user_id, status="active")

    # ------------------------------------------------------------------
    # practice loop
    # ------------------------------------------------------------------
    def next_question(self, user_id: str, journey_id: int) -> Optional[Dict[str, Any]]:
        """Draw a random unanswered question, resetting the bank when exhausted.

        Returns ``None`` only when the deck's category has no questions at all.
        """
        _require(user_id, "user_id")
        journey = self.get_journey(journey_id)
        category = journey["question_category"]

        candidates = self._db.list_unanswered_question_ids(user_id, journey["id"], category)
        if not candidates:
            if self._db.count_practice_questions(category) == 0:
                return None
            reset = self._db.reset_bank_state(user_id, journey["id"])
            logger.info(
                "Question bank exhausted for user=%s journey=%s; reset %s entries",
                user_id,
                journey["id"],
                reset,
            )
            self._emit(
                "bank.reset",
                user_id,
                journey["id"],
                {"journey_id": journey["id"], "reason": "auto", "reset_entries": reset},
            )
            candidates = self._db.list_unanswered_question_ids(user_id, journey["id"], category)
            if not candidates:
                return None

        question = self._db.get_practice_question(self._rng.choice(candidates))
        if question is None:
            return None
        return to_card(question)

    def submit_answer(self, user_id: str, session_id: int, question_id: int, answer_text: str) -> int:
        _require(user_id, "user_id")
        _require(session_id, "session_id")
        _require(question_id, "question_id")
        _require(answer_text, "answer")
        session = self._get_session(session_id, user_id)
        question = self._get_question(question_id)
        if question.get("category") != session.get("question_category"):
            raise PracticeValidationError("question does not belong to this session's deck")

        response_id = self._db.record_flashcard_answer(
            user_id,
            session["id"],
            session["journey_id"],
            question_id,
            answer_text,
        )
        self._emit(
            "answer.submitted",
            user_id,
            session["id"],
            {
                "session_id": session["id"],
                "journey_id": session["journey_id"],
                "question_id": question_id,
                "response_id": response_id,
                "answer_length": len(answer_text),
            },
        )
        return response_id

    def get_guided_answer(self, user_id: str, session_id: int, question_id: int) -> str:
        """Return the guided answer and flag the saved response as viewed.

        Revealing before an answer has been saved is allowed; in that case
        there is no response to flag and the update is a no-op.
        """
        _require(user_id, "user_id")
        _require(session_id, "session_id")
        question = self._get_question(question_id)
        updated = self._db.mark_guided_answer_viewed(user_id, session_id, question["id"])
        self._emit(
            "guided_answer.viewed",
            user_id,
            session_id,
            {"session_id": session_id, "question_id": question["id"], "recorded": bool(updated)},
        )
        return question["guided_answer"]

    def get_user_response(self, user_id: str, session_id: int, question_id: int) -> Optional[Dict[str, Any]]:
        _require(user_id, "user_id")
        return self._db.get_flashcard_response(user_id, session_id, question_id)

    def get_progress(self, user_id: str, journey_id: int) -> Dict[str, int]:
        _require(user_id, "user_id")
        journey = self.get_journey(journey_id)
        return self._db.bank_progress(user_id, journey["id"])

    def reset_bank(self, user_id: str, journey_id: int) -> int:
        _require(user_id, "user_id")
        journey = self.get_journey(journey_id)
        reset = self._db.reset_bank_state(user_id, journey["id"])
        self._emit(
            "bank.reset",
            user_id,
            journey["id"],
            {"journey_id": journey["id"], "reason": "manual", "reset_entries": reset},
        )
        return reset

    # ------------------------------------------------------------------
    def _get_session(self, session_id: int, user_id: Optional[str]) -> Dict[str, Any]:
        _require(session_id, "session_id")
        session = self._db.get_flashcard_session(session_id)
        if not session or (user_id is not None and session.get("user_id") != user_id):
            raise NotFoundError("session not found")
        return session

    def _get_question(self, question_id: int) -> Dict[str, Any]:
        question = self._db.get_practice_question(question_id)
        if not question:
            raise NotFoundError("question not found")
        return question

    def _emit(self, event_type: str, user_id: Optional[str], aggregate_id: Optional[int], payload: Dict[str, Any]) -> None:
        if self._events is None:
            return
        self._events.emit(event_type, user_id, aggregate_id=aggregate_id, payload=payload)
