# app.py — Level Up Journal practice API
# - Endless system design flashcards over a shared question bank
# - Bearer tokens resolve the caller; every query is scoped to that user

import hashlib
import hmac
import logging
import os
import secrets
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

import db
import question_bank
from env_validation import get_env_bool, validate_environment
from flashcards import FlashcardEngine, NotFoundError, PracticeValidationError
from schemas import (
    FlashcardResponse,
    GuidedAnswerResult,
    JourneyListResult,
    NextQuestionResult,
    PracticeProgress,
    ProgressResult,
    QuestionCard,
    SessionListResult,
    session_payload,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def _lifespan(_: FastAPI):
    try:
        validate_environment()
        flashcard_engine.default_category = os.environ["PRACTICE_CATEGORY"].strip().lower()
        db.configure(os.environ["DB_PATH"])
        db.init()
        if get_env_bool("SEED_QUESTIONS_ON_STARTUP", True):
            _seed_question_bank(Path(os.environ["QUESTION_BANK_PATH"]))
        logger.info(
            "Practice API ready | DB_PATH: %s | category: %s | questions: %s",
            db.DB_PATH,
            os.environ["PRACTICE_CATEGORY"],
            db.count_practice_questions(),
        )
        yield
    except Exception as e:
        logger.error("Failed to initialize application: %s", str(e), exc_info=True)
        raise


def _seed_question_bank(path: Path) -> int:
    if not path.exists():
        logger.warning("Question template %s not found; skipping seed", path)
        return 0
    return question_bank.seed_questions(path)


app = FastAPI(title="Level Up Journal Practice API", version="1.0.0", lifespan=_lifespan)

TOKENS = {}

_PROTECTED_PREFIXES = ("/journeys", "/sessions", "/user")

flashcard_engine = FlashcardEngine()


def _normalize_path(path: str) -> str:
    if not path or path == "/":
        return "/"
    return path.rstrip("/")


def _is_protected(path: str) -> bool:
    return any(path == prefix or path.startswith(prefix + "/") for prefix in _PROTECTED_PREFIXES)


def _extract_token(header_value: Optional[str]) -> Optional[str]:
    if not header_value:
        return None
    candidate = header_value.strip()
    if not candidate:
        return None
    if " " in candidate:
        prefix, token = candidate.split(" ", 1)
        if prefix.lower() in {"bearer", "token"}:
            candidate = token.strip()
        else:
            candidate = token.strip() or prefix.strip()
    return candidate or None


def _authenticate_request(request: Request) -> Optional[str]:
    header_token = _extract_token(request.headers.get("authorization"))
    if header_token and header_token in TOKENS:
        return TOKENS[header_token]
    alt_header = request.headers.get("x-token")
    if alt_header and alt_header in TOKENS:
        return TOKENS[alt_header]
    query_token = request.query_params.get("token")
    if query_token and query_token in TOKENS:
        return TOKENS[query_token]
    return None


@app.middleware("http")
async def _enforce_token(request: Request, call_next):
    normalized_path = _normalize_path(request.url.path)
    if _is_protected(normalized_path):
        user_id = _authenticate_request(request)
        if not user_id:
            return JSONResponse(status_code=401, content={"detail": "missing or invalid token"})
        request.state.user_id = user_id
    return await call_next(request)


# ---------- Error mapping ----------
@app.exception_handler(NotFoundError)
async def _not_found_handler(_: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(PracticeValidationError)
async def _practice_validation_handler(_: Request, exc: PracticeValidationError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(RequestValidationError)
async def _request_validation_handler(_: Request, exc: RequestValidationError):
    missing = [".".join(str(part) for part in err.get("loc", ())[1:]) for err in exc.errors()]
    detail = "invalid request: " + ", ".join(name for name in missing if name) if missing else "invalid request"
    return JSONResponse(status_code=400, content={"detail": detail})


@app.exception_handler(db.StorageError)
async def _storage_error_handler(request: Request, exc: db.StorageError):
    logger.error("Storage failure on %s %s: %s", request.method, request.url.path, exc, exc_info=exc)
    return JSONResponse(status_code=500, content={"detail": "storage error"})


# ---------- Helpers ----------
_PBKDF2_ITERATIONS = 150_000
_PBKDF2_DIGEST = "sha256"


def _generate_salt() -> str:
    return secrets.token_bytes(16).hex()


def _pbkdf2_hash(password: str, salt_hex: str) -> str:
    try:
        salt_bytes = bytes.fromhex(salt_hex)
    except ValueError:
        raise ValueError("Invalid salt for password hashing") from None
    return hashlib.pbkdf2_hmac(
        _PBKDF2_DIGEST,
        password.encode("utf-8"),
        salt_bytes,
        _PBKDF2_ITERATIONS,
    ).hex()


def _hash_password(password: str) -> tuple[str, str]:
    salt_hex = _generate_salt()
    return _pbkdf2_hash(password, salt_hex), salt_hex


def _verify_password(password: str, stored_hash: Optional[str], stored_salt: Optional[str]) -> bool:
    if not stored_hash or not stored_salt:
        return False
    try:
        derived = _pbkdf2_hash(password, stored_salt)
    except ValueError:
        return False
    return hmac.compare_digest(stored_hash, derived)


def _caller(request: Request) -> str:
    return request.state.user_id


def _require_same_user(request: Request, user_id: str) -> str:
    caller = _caller(request)
    if caller != user_id:
        raise HTTPException(status_code=403, detail="cannot access another user's practice data")
    return caller


# ---------- Schemas ----------
class RegisterBody(BaseModel):
    user_id: str = Field(min_length=1, max_length=128)
    email: Optional[str] = None
    password: str = Field(min_length=8)

class LoginBody(BaseModel):
    user_id: str
    password: str

class CreateJourneyBody(BaseModel):
    title: Optional[str] = Field(default=None, max_length=200)
    description: Optional[str] = None
    category: Optional[str] = Field(default=None, max_length=64)

class SubmitAnswerBody(BaseModel):
    question_id: int
    answer: str = Field(min_length=1)


@app.get("/health")
def health():
    return {"status": "ok", "questions": db.count_practice_questions()}


# ---------- Auth ----------
@app.post("/auth/register")
def auth_register(body: RegisterBody):
    if db.get_user_auth(body.user_id):
        raise HTTPException(status_code=400, detail="user_id exists")
    email = (body.email or "").strip() or None
    if email and db.get_user_by_email(email):
        raise HTTPException(status_code=400, detail="email exists")
    pw_hash, pw_salt = _hash_password(body.password)
    db.create_user(body.user_id, email, pw_hash, pw_salt)
    return {"ok": True}

@app.post("/auth/login")
def auth_login(body: LoginBody):
    row = db.get_user_auth(body.user_id)
    if not row or not _verify_password(body.password, row["pw_hash"], row["pw_salt"]):
        raise HTTPException(status_code=401, detail="invalid credentials")
    token = secrets.token_urlsafe(24)
    TOKENS[token] = body.user_id
    return {"token": token, "user_id": body.user_id}


# ---------- Practice journeys ----------
@app.post("/journeys")
def create_journey(request: Request, body: Optional[CreateJourneyBody] = None):
    body = body or CreateJourneyBody()
    journey_id = flashcard_engine.create_journey(
        _caller(request),
        title=body.title,
        description=body.description,
        category=body.category,
    )
    return {"success": True, "journey_id": journey_id}


@app.post("/journeys/{journey_id}/sessions")
def start_session(request: Request, journey_id: int):
    session_id = flashcard_engine.start_session(_caller(request), journey_id)
    return {"success": True, "session_id": session_id}


@app.get("/journeys/{journey_id}/progress")
def journey_progress(request: Request, journey_id: int):
    progress = flashcard_engine.get_progress(_caller(request), journey_id)
    return ProgressResult(progress=PracticeProgress(**progress)).model_dump()


@app.post("/journeys/{journey_id}/reset")
def journey_reset(request: Request, journey_id: int):
    flashcard_engine.reset_bank(_caller(request), journey_id)
    return {"success": True, "message": "Question bank reset"}


# ---------- Practice sessions ----------
@app.get("/sessions/{session_id}/next-question")
def next_question(request: Request, session_id: int, journey_id: Optional[int] = None):
    user_id = _caller(request)
    session = flashcard_engine.get_session(user_id, session_id)
    if journey_id is not None and journey_id != session["journey_id"]:
        raise HTTPException(status_code=400, detail="journey mismatch with session")
    question = flashcard_engine.next_question(user_id, session["journey_id"])
    if not question:
        raise HTTPException(status_code=404, detail="No more questions available")
    return NextQuestionResult(question=QuestionCard(**question)).model_dump()


@app.post("/sessions/{session_id}/submit-answer")
def submit_answer(request: Request, session_id: int, body: SubmitAnswerBody):
    response_id = flashcard_engine.submit_answer(_caller(request), session_id, body.question_id, body.answer)
    return {"success": True, "response_id": response_id}


@app.get("/sessions/{session_id}/questions/{question_id}/guided-answer")
def guided_answer(request: Request, session_id: int, question_id: int):
    text = flashcard_engine.get_guided_answer(_caller(request), session_id, question_id)
    return GuidedAnswerResult(question_id=question_id, guided_answer=text).model_dump()


@app.get("/sessions/{session_id}/questions/{question_id}/response")
def saved_response(request: Request, session_id: int, question_id: int):
    row = flashcard_engine.get_user_response(_caller(request), session_id, question_id)
    response = FlashcardResponse(**row).model_dump() if row else None
    return {"success": True, "response": response}


@app.get("/sessions/{session_id}/details")
def session_details(request: Request, session_id: int):
    details = flashcard_engine.get_session_details(_caller(request), session_id)
    return {"success": True, "session": session_payload(details)}


@app.post("/sessions/{session_id}/end")
def end_session(request: Request, session_id: int):
    flashcard_engine.end_session(session_id, user_id=_caller(request))
    return {"success": True, "message": "Session ended"}


# ---------- Listings ----------
@app.get("/user/{user_id}/journeys")
def user_journeys(request: Request, user_id: str):
    owner = _require_same_user(request, user_id)
    return JourneyListResult(journeys=flashcard_engine.list_user_journeys(owner)).model_dump()


@app.get("/user/{user_id}/sessions")
def user_sessions(request: Request, user_id: str):
    owner = _require_same_user(request, user_id)
    return SessionListResult(sessions=flashcard_engine.list_active_sessions(owner)).model_dump()
