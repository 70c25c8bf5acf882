"""Shared attempt lifecycle for per-book stage workers."""

import logging
import uuid
from collections.abc import Callable
from typing import Any

from sqlalchemy.orm import Session

from bookgen.models.book import Book
from bookgen.services.audit import record_parse_failure
from bookgen.services.errors import ParseError
from bookgen.services.gemini import GeminiService
from bookgen.services.generation_state import claim_stage, mark_stage_failed, set_stage_status
from bookgen.services.queue import Enqueue
from bookgen.services.taxonomy import TaxonomyRepository

logger = logging.getLogger(__name__)


class Stage:
    """One step of the pipeline, run for one book per attempt.

    An attempt claims the stage (pending -> in_progress, committed), generates
    content, and commits the book update together with its audit row. On
    failure the transaction is rolled back, a ParseError still gets its audit
    row, and the stage is marked failed. On success the next stage is handed
    off on the same queue if it is still pending.
    """

    name = ""
    next_stage: str | None = None
    # Content type written to the audit trail when a parse failure occurs.
    content_type = ""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        text_client: GeminiService,
        taxonomy_factory: Callable[[Session], TaxonomyRepository] = TaxonomyRepository,
    ) -> None:
        self._session_factory = session_factory
        self._text = text_client
        self._taxonomy_factory = taxonomy_factory

    def handle(self, payload: dict[str, Any], enqueue: Enqueue) -> None:
        """Job entry point: payload carries the book id."""
        self.run(uuid.UUID(str(payload["book_id"])), enqueue)

    def run(self, book_id: uuid.UUID, enqueue: Enqueue) -> bool:
        """Run one attempt for *book_id*.

        Returns False if the stage was not pending (nothing done). Re-raises any
        generation failure after it has been recorded.
        """
        db = self._session_factory()
        try:
            book = claim_stage(db, book_id, self.name)
            if book is None:
                return False
            batch_id = book.batch_id
            logger.info("starting %s generation for book %s", self.name, book_id)
            undo: Callable[[], None] | None = None
            try:
                undo = self.generate(db, book)
                set_stage_status(book, self.name, "completed")
                db.commit()
            except BaseException as exc:
                # Interrupts too: a stage must not be left in progress by its own worker.
                db.rollback()
                if undo is not None:
                    undo()
                logger.error("failed to generate %s for book %s: %r", self.name, book_id, exc)
                self._record_failure(book_id, batch_id, exc)
                raise
            logger.info("successfully generated %s for book %s", self.name, book_id)
            self._hand_off(book, enqueue)
            return True
        finally:
            db.close()

    def generate(self, db: Session, book: Book) -> Callable[[], None] | None:
        """Produce the stage's content and add the book update and audit row to *db*.

        May return a callable that reverts side effects made outside the store;
        it runs if the stage transaction fails to commit.
        """
        raise NotImplementedError

    def _record_failure(
        self, book_id: uuid.UUID, batch_id: uuid.UUID | None, exc: BaseException
    ) -> None:
        if isinstance(exc, ParseError):
            try:
                record_parse_failure(
                    self._session_factory,
                    book_id=book_id,
                    batch_id=batch_id,
                    content_type=self.content_type,
                    error=exc,
                    source=self.source,
                )
            except Exception:
                logger.exception("could not save parse-error payload for book %s", book_id)
        mark_stage_failed(self._session_factory, book_id, self.name, str(exc) or type(exc).__name__)

    def _hand_off(self, book: Book, enqueue: Enqueue) -> None:
        if self.next_stage is None:
            return
        if book.stage_status(self.next_stage) != "pending":
            logger.info(
                "not queuing %s for book %s: stage is %s",
                self.next_stage,
                book.id,
                book.stage_status(self.next_stage),
            )
            return
        enqueue(self.next_stage, {"book_id": str(book.id)})
        logger.info("queued %s generation for book %s", self.next_stage, book.id)

    @property
    def source(self) -> str:
        return self._text.model
