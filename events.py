"""Audit trail for practice activity with optional webhook forwarding.

Every state transition of the flashcard engine is recorded as a practice event.
Events are validated against a small registry before they are persisted. When
``EVENTS_WEBHOOK_URL`` is configured, events are additionally forwarded off the
request path with retry/backoff so a slow receiver never stalls a learner.
"""

from __future__ import annotations

import asyncio
import logging
import os
import threading
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import requests

import db

LOGGER = logging.getLogger("levelup.events")

# ---------------------------------------------------------------------------
# event registry
# ---------------------------------------------------------------------------

EVENT_TYPES: dict[str, dict[str, str]] = {
    "journey.created": {
        "aggregate": "journey",
        "description": "A practice deck was created for a user.",
    },
    "session.started": {
        "aggregate": "session",
        "description": "A practice sitting was opened.",
    },
    "bank.initialized": {
        "aggregate": "journey",
        "description": "Missing question bank entries were created for a user and deck.",
    },
    "answer.submitted": {
        "aggregate": "session",
        "description": "A learner saved an answer to a question.",
    },
    "guided_answer.viewed": {
        "aggregate": "session",
        "description": "A learner revealed the guided answer of a question.",
    },
    "bank.reset": {
        "aggregate": "journey",
        "description": "Every bank entry of a deck was marked unanswered again.",
    },
    "session.ended": {
        "aggregate": "session",
        "description": "A practice sitting was completed.",
    },
}

_PAYLOAD_SCHEMA: dict[str, type] = {
    "journey_id": int,
    "session_id": int,
    "question_id": int,
    "response_id": int,
    "category": str,
    "title": str,
    "reason": str,
    "inserted": int,
    "reset_entries": int,
    "answer_length": int,
    "recorded": bool,
}

_RESET_REASONS = frozenset({"auto", "manual"})


def _coerce_field(key: str, value: Any) -> Any:
    expected = _PAYLOAD_SCHEMA.get(key)
    if expected is None:
        raise ValueError(f"Unsupported event field: {key}")
    if value is None:
        return None
    if expected is bool:
        return bool(value)
    if expected is int:
        return int(value)
    return str(value)


def validate_event(event_type: str, payload: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Validate and normalise an event payload against the registry."""

    if event_type not in EVENT_TYPES:
        allowed = ", ".join(sorted(EVENT_TYPES))
        raise ValueError(f"Unsupported event type '{event_type}'. Allowed types: {allowed}")
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValueError("event payload must be a dict")

    cleaned: dict[str, Any] = {}
    for key, value in payload.items():
        if key not in _PAYLOAD_SCHEMA:
            LOGGER.debug("Dropping unsupported event field: %s", key)
            continue
        coerced = _coerce_field(key, value)
        if coerced is not None:
            cleaned[key] = coerced

    if event_type == "bank.reset" and cleaned.get("reason") not in _RESET_REASONS:
        raise ValueError("bank.reset events require reason 'auto' or 'manual'")
    return cleaned


# ---------------------------------------------------------------------------
# forwarding
# ---------------------------------------------------------------------------


async def _forward_event_with_retry(
    event: Dict[str, Any],
    *,
    webhook_url: str,
    headers: Dict[str, str],
    timeout: float = 5.0,
    max_attempts: int = 3,
) -> bool:
    """Forward an event to the webhook with exponential backoff."""

    delay = 0.5
    for attempt in range(1, max_attempts + 1):
        try:
            response = await asyncio.to_thread(
                requests.post,
                webhook_url,
                json=event,
                headers=headers,
                timeout=timeout,
            )
            if response.status_code < 500:
                return True
            LOGGER.warning(
                "Event webhook responded with status %s on attempt %s", response.status_code, attempt
            )
        except requests.RequestException as exc:
            LOGGER.warning("Failed to forward practice event (attempt %s): %s", attempt, exc)
        if attempt == max_attempts:
            break
        await asyncio.sleep(delay)
        delay *= 2
    return False


# Forwarding tasks on a caller's loop, kept until they finish.
_PENDING_TASKS: set[asyncio.Task] = set()

_worker_lock = threading.Lock()
_worker_loop: Optional[asyncio.AbstractEventLoop] = None


def _log_forward_outcome(outcome) -> None:
    if outcome.cancelled():
        return
    exc = outcome.exception()
    if exc is not None:
        LOGGER.error("Practice event forwarding crashed", exc_info=exc)
    elif outcome.result() is False:
        LOGGER.warning("Gave up forwarding practice event after retries")


def _on_task_done(task: asyncio.Task) -> None:
    _PENDING_TASKS.discard(task)
    _log_forward_outcome(task)


def _get_worker_loop() -> asyncio.AbstractEventLoop:
    """Return the single background loop used when no loop is running."""
    global _worker_loop
    with _worker_lock:
        if _worker_loop is None or _worker_loop.is_closed():
            loop = asyncio.new_event_loop()
            threading.Thread(
                target=loop.run_forever, name="practice-events-forwarder", daemon=True
            ).start()
            _worker_loop = loop
        return _worker_loop


def _schedule_forward(event: Dict[str, Any], *, webhook_url: str, headers: Dict[str, str]) -> None:
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        loop = None

    coro = _forward_event_with_retry(event, webhook_url=webhook_url, headers=headers)

    if loop and loop.is_running():
        task = loop.create_task(coro)
        _PENDING_TASKS.add(task)
        task.add_done_callback(_on_task_done)
    else:
        future = asyncio.run_coroutine_threadsafe(coro, _get_worker_loop())
        future.add_done_callback(_log_forward_outcome)


# ---------------------------------------------------------------------------
# public API
# ---------------------------------------------------------------------------


def emit(
    event_type: str,
    user_id: Optional[str],
    *,
    aggregate_id: Optional[int] = None,
    payload: Optional[Dict[str, Any]] = None,
) -> Optional[int]:
    """Persist a practice event and forward it when a webhook is configured.

    Returns the stored event id, or ``None`` when the event could not be stored.
    Failures are logged and never raised to the caller.
    """

    try:
        cleaned = validate_event(event_type, payload)
    except ValueError as exc:
        LOGGER.warning("Rejected practice event %s: %s", event_type, exc)
        return None

    aggregate_type = EVENT_TYPES[event_type]["aggregate"]
    try:
        event_id = db.log_practice_event(event_type, user_id, aggregate_type, aggregate_id, cleaned)
    except db.StorageError as exc:
        LOGGER.warning("Failed to persist practice event %s: %s", event_type, exc)
        return None

    LOGGER.debug("event %s user=%s %s=%s %s", event_type, user_id, aggregate_type, aggregate_id, cleaned)

    webhook_url = os.getenv("EVENTS_WEBHOOK_URL")
    if not webhook_url:
        return event_id

    headers = {"Content-Type": "application/json"}
    token = os.getenv("EVENTS_WEBHOOK_TOKEN")
    if token:
        headers["Authorization"] = f"Bearer {token}"

    envelope = {
        "id": event_id,
        "type": event_type,
        "user_id": user_id,
        "aggregate_type": aggregate_type,
        "aggregate_id": aggregate_id,
        "data": cleaned,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    _schedule_forward(envelope, webhook_url=webhook_url, headers=headers)
    return event_id


def list_events(
    user_id: Optional[str] = None,
    event_type: Optional[str] = None,
    limit: int = 100,
) -> list[Dict[str, Any]]:
    return db.list_practice_events(user_id=user_id, event_type=event_type, limit=limit)
