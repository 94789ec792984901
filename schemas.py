"""Pydantic schemas for practice API payloads."""

from __future__ import annotations

from typing import Any, Dict, List, Literal

from pydantic import BaseModel, Field

__all__ = [
    "QuestionCard",
    "PracticeProgress",
    "FlashcardJourney",
    "FlashcardSession",
    "SessionDetails",
    "FlashcardResponse",
    "NextQuestionResult",
    "GuidedAnswerResult",
    "ProgressResult",
    "JourneyListResult",
    "SessionListResult",
    "session_payload",
]


class QuestionCard(BaseModel):
    """A question as shown before answering; the guided answer is never included."""
    id: int
    question_key: str | None = None
    title: str
    prompt: str
    category: str | None = None
    difficulty: str | None = None

    model_config = {
        "extra": "ignore",
    }


class PracticeProgress(BaseModel):
    total_questions: int = Field(ge=0)
    answered_questions: int = Field(ge=0)
    unanswered_questions: int = Field(ge=0)
    attempted_questions: int = Field(ge=0)


class FlashcardJourney(BaseModel):
    id: int
    title: str
    description: str | None = None
    question_category: str
    is_active: bool = True
    created_by: str
    created_at: str | None = None


class FlashcardSession(BaseModel):
    id: int
    user_id: str
    journey_id: int
    session_start: str
    session_end: str | None = None
    status: Literal["active", "completed"]
    journey_title: str | None = None


class SessionDetails(FlashcardSession):
    description: str | None = None
    question_category: str | None = None
    progress: PracticeProgress


class FlashcardResponse(BaseModel):
    id: int
    user_id: str
    question_id: int
    session_id: int
    user_answer: str
    answered_at: str
    viewed_guided_answer: bool = False
    viewed_at: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


class NextQuestionResult(BaseModel):
    success: bool = True
    question: QuestionCard


class GuidedAnswerResult(BaseModel):
    success: bool = True
    question_id: int
    guided_answer: str


class ProgressResult(BaseModel):
    success: bool = True
    progress: PracticeProgress


class JourneyListResult(BaseModel):
    success: bool = True
    journeys: List[FlashcardJourney] = Field(default_factory=list)


class SessionListResult(BaseModel):
    success: bool = True
    sessions: List[FlashcardSession] = Field(default_factory=list)


def session_payload(row: Dict[str, Any]) -> Dict[str, Any]:
    """Validate a stored session row and return it as plain JSON-ready data."""
    if "progress" in row:
        return SessionDetails.model_validate(row).model_dump()
    return FlashcardSession.model_validate(row).model_dump()
