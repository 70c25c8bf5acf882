"""Operator-triggered re-runs of pipeline stages on the regeneration queue."""

import logging
import uuid

from sqlalchemy.orm import Session

from bookgen.models.batch import BookBatch
from bookgen.models.book import STAGES, Book
from bookgen.services.errors import NotFoundError, ValidationError
from bookgen.services.generation_state import claim_is_stale, lease_from_env, reset_stage
from bookgen.services.queue import REGENERATION_QUEUE, Dispatch

logger = logging.getLogger(__name__)


class RegenerationService:
    def __init__(self, dispatch: Dispatch) -> None:
        self._dispatch = dispatch

    def regenerate(
        self,
        batch_id: uuid.UUID,
        stages: list[str],
        db: Session,
        book_ids: list[uuid.UUID] | None = None,
        include_completed: bool = False,
    ) -> dict[str, int]:
        """Reset the requested stages to pending and queue them on the regeneration queue.

        Only books whose stage is not completed are selected, unless
        *include_completed* is set. A stage in progress is left alone until its
        claim outlives the lease, after which it is reset like a failed stage.
        A reset stage is only queued for a book whose earlier stages are all
        completed; otherwise it stays pending and is handed off when the
        earlier stages finish. Returns the number of books reset per stage.
        """
        unknown = [s for s in stages if s not in STAGES]
        if unknown or not stages:
            raise ValidationError(f"Unknown or missing stages: {unknown or stages}")
        requested = [s for s in STAGES if s in stages]

        batch = db.get(BookBatch, batch_id)
        if batch is None:
            raise NotFoundError(f"Batch {batch_id} not found")

        query = db.query(Book).filter(Book.batch_id == batch_id).order_by(Book.position)
        if book_ids is not None:
            query = query.filter(Book.id.in_(book_ids))
        books = query.with_for_update().all()

        lease = lease_from_env()
        reset: dict[str, list[Book]] = {stage: [] for stage in requested}
        try:
            for book in books:
                for stage in requested:
                    current = book.stage_status(stage)
                    if current == "in_progress":
                        if not claim_is_stale(book, stage, lease):
                            logger.info("not regenerating %s for book %s: in progress", stage, book.id)
                            continue
                        logger.warning("reclaiming stale %s claim for book %s", stage, book.id)
                    elif current == "completed" and not include_completed:
                        continue
                    reset_stage(book, stage, lease)
                    reset[stage].append(book)
            db.commit()
        except Exception:
            db.rollback()
            raise

        for stage in requested:
            targets = reset[stage]
            if not targets:
                continue
            if stage == "title":
                self._dispatch(
                    REGENERATION_QUEUE,
                    "title",
                    {"batch_id": str(batch_id), "book_ids": [str(b.id) for b in targets]},
                )
                continue
            earlier = STAGES[: STAGES.index(stage)]
            for book in targets:
                waiting_on = [s for s in earlier if book.stage_status(s) != "completed"]
                if waiting_on:
                    logger.info(
                        "not queuing %s for book %s: waiting on %s", stage, book.id, ", ".join(waiting_on)
                    )
                    continue
                self._dispatch(REGENERATION_QUEUE, stage, {"book_id": str(book.id)})

        counts = {stage: len(reset[stage]) for stage in requested}
        logger.info("regeneration queued for batch %s: %s", batch_id, counts)
        return counts
