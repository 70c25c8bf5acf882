"""Per-stage and per-batch status transitions.

Within one attempt a stage only moves pending -> in_progress -> completed | failed.
The claim step commits in_progress under a row lock, so a duplicate job
delivery for a stage that is no longer pending is skipped. Regeneration starts
a new attempt by resetting the stage to pending before its job is enqueued.

A claim records when it was taken. A claim older than the lease
(STAGE_LEASE_SECONDS, default 30 minutes) belongs to a worker that died before
recording a result, and regeneration may reset it like any unfinished stage.
"""

import copy
import logging
import os
import uuid
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from sqlalchemy.orm import Session

from bookgen.models.batch import BookBatch
from bookgen.models.book import STAGES, Book
from bookgen.services.errors import InvalidTransitionError, NotFoundError

logger = logging.getLogger(__name__)

_STAGE_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"in_progress"}),
    "in_progress": frozenset({"completed", "failed"}),
    "completed": frozenset(),
    "failed": frozenset(),
}

_BATCH_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"processing", "failed"}),
    "processing": frozenset({"completed", "failed"}),
    "completed": frozenset(),
    "failed": frozenset(),
}


_DEFAULT_LEASE_SECONDS = 1800


def lease_from_env() -> timedelta:
    raw = os.environ.get("STAGE_LEASE_SECONDS", "").strip()
    if not raw:
        return timedelta(seconds=_DEFAULT_LEASE_SECONDS)
    try:
        seconds = int(raw)
    except ValueError as exc:
        raise ValueError(f"STAGE_LEASE_SECONDS must be an integer, got {raw!r}") from exc
    if seconds < 1:
        raise ValueError(f"STAGE_LEASE_SECONDS must be >= 1, got {seconds}")
    return timedelta(seconds=seconds)


def _write_stage(book: Book, stage: str, status: str, error_message: str | None) -> None:
    # Reassign the whole JSON value so the ORM flushes the change.
    generation_status = copy.deepcopy(book.generation_status or {})
    entry: dict[str, str | None] = {"status": status, "error_message": error_message}
    if status == "in_progress":
        entry["claimed_at"] = datetime.now(UTC).isoformat()
    generation_status[stage] = entry
    book.generation_status = generation_status


def set_stage_status(
    book: Book, stage: str, status: str, error_message: str | None = None
) -> None:
    """Move *stage* of *book* to *status*, rejecting any backwards transition."""
    if stage not in STAGES:
        raise ValueError(f"Unknown stage: {stage!r}")
    current = book.stage_status(stage)
    if status not in _STAGE_TRANSITIONS[current]:
        raise InvalidTransitionError(
            f"Stage {stage} of book {book.id} cannot move from {current} to {status}"
        )
    _write_stage(book, stage, status, error_message)


def claim_is_stale(book: Book, stage: str, lease: timedelta | None = None) -> bool:
    """True if *stage* is in progress under a claim older than *lease*.

    A claim without a timestamp counts as stale.
    """
    if book.stage_status(stage) != "in_progress":
        return False
    claimed_at = (book.generation_status or {}).get(stage, {}).get("claimed_at")
    if not claimed_at:
        return True
    age = datetime.now(UTC) - datetime.fromisoformat(claimed_at)
    return age > (lease if lease is not None else lease_from_env())


def reset_stage(book: Book, stage: str, lease: timedelta | None = None) -> None:
    """Start a new attempt for *stage*.

    A stage in progress can only be reset once its claim has gone stale.
    """
    if stage not in STAGES:
        raise ValueError(f"Unknown stage: {stage!r}")
    if book.stage_status(stage) == "in_progress" and not claim_is_stale(book, stage, lease):
        raise InvalidTransitionError(f"Stage {stage} of book {book.id} is in progress")
    _write_stage(book, stage, "pending", None)


def claim_stage(db: Session, book_id: uuid.UUID, stage: str) -> Book | None:
    """Mark *stage* in progress for *book_id* and commit.

    Returns None (and changes nothing) if the stage is not pending, e.g. after a
    duplicate job delivery. Raises NotFoundError if the book does not exist.
    """
    book = db.query(Book).filter(Book.id == book_id).with_for_update().first()
    if book is None:
        db.rollback()
        raise NotFoundError(f"Book {book_id} not found")
    current = book.stage_status(stage)
    if current != "pending":
        db.rollback()
        logger.info("skipping %s for book %s: stage is %s", stage, book_id, current)
        return None
    set_stage_status(book, stage, "in_progress")
    db.commit()
    return book


def mark_stage_failed(
    session_factory: Callable[[], Session],
    book_id: uuid.UUID,
    stage: str,
    error_message: str,
) -> None:
    """Record a failed attempt for a claimed stage in its own transaction."""
    db = session_factory()
    try:
        book = db.query(Book).filter(Book.id == book_id).with_for_update().first()
        if book is None:
            raise NotFoundError(f"Book {book_id} not found")
        set_stage_status(book, stage, "failed", error_message or "An unknown error occurred")
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def advance_batch_status(
    batch: BookBatch, status: str, error_message: str | None = None
) -> bool:
    """Move *batch* forward to *status*.

    Returns False when the batch is already in *status*. Raises
    InvalidTransitionError on any move that would go backwards.
    """
    if batch.status == status:
        return False
    if status not in _BATCH_TRANSITIONS[batch.status]:
        raise InvalidTransitionError(
            f"Batch {batch.id} cannot move from {batch.status} to {status}"
        )
    batch.status = status
    if error_message is not None:
        batch.error_message = error_message
    return True
