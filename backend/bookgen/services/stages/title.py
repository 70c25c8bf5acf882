"""Title stage: names every pending book of a batch, one book at a time."""

import logging
import uuid
from typing import Any

from sqlalchemy.orm import Session

from bookgen.models.batch import BookBatch
from bookgen.models.book import Book
from bookgen.services.audit import record_attempt
from bookgen.services.errors import CriticalBatchError, ParseError
from bookgen.services.gemini import extract_json_object, full_prompt
from bookgen.services.generation_state import advance_batch_status
from bookgen.services.prompts import build_prompt, story_description
from bookgen.services.queue import Enqueue
from bookgen.services.stages.base import Stage

logger = logging.getLogger(__name__)


def select_titles(
    categories: dict[str, object], prompt: str, raw: str
) -> tuple[str, list[dict[str, str]]]:
    """Pick the canonical title and flatten every candidate.

    The canonical title is the first title of the first category in key order;
    it is the only entry marked ``active``.
    """
    first = next(iter(categories.values()), None)
    if not isinstance(first, list) or not first or not isinstance(first[0], str) or not first[0].strip():
        raise ParseError("AI response did not contain any titles in the first category.", prompt, raw)

    entries: list[dict[str, str]] = []
    for category, titles in categories.items():
        if not isinstance(titles, list):
            continue
        for title in titles:
            if not isinstance(title, str) or not title.strip():
                continue
            status = "inactive" if entries else "active"
            entries.append({"title": title.strip(), "category": category, "status": status})
    return entries[0]["title"], entries


class TitleStage(Stage):
    name = "title"
    next_stage = "description"
    content_type = "title"

    def handle(self, payload: dict[str, Any], enqueue: Enqueue) -> None:
        """Job entry point: payload carries the batch id and optionally a book id subset."""
        book_ids = payload.get("book_ids")
        self.run_batch(
            uuid.UUID(str(payload["batch_id"])),
            enqueue,
            [uuid.UUID(str(b)) for b in book_ids] if book_ids else None,
        )

    def run_batch(
        self,
        batch_id: uuid.UUID,
        enqueue: Enqueue,
        book_ids: list[uuid.UUID] | None = None,
    ) -> dict[str, int]:
        """Generate titles for the batch's pending books, sequentially.

        Per-book failures are recorded on the book and never stop the loop.
        Anything that fails outside the loop marks the batch failed and is
        re-raised as CriticalBatchError. Returns completed/failed/skipped counts.
        """
        logger.info("starting title generation for batch %s", batch_id)
        counts = {"completed": 0, "failed": 0, "skipped": 0}
        db = self._session_factory()
        try:
            batch = db.get(BookBatch, batch_id)
            if batch is None:
                raise CriticalBatchError(f"Batch {batch_id} not found")
            if batch.status == "pending":
                advance_batch_status(batch, "processing")
                db.commit()

            query = db.query(Book).filter(Book.batch_id == batch_id).order_by(Book.position)
            if book_ids is not None:
                query = query.filter(Book.id.in_(book_ids))
            pending_ids = [b.id for b in query.all() if b.stage_status(self.name) == "pending"]
            db.commit()

            for book_id in pending_ids:
                try:
                    if self.run(book_id, enqueue):
                        counts["completed"] += 1
                    else:
                        counts["skipped"] += 1
                except Exception as exc:
                    counts["failed"] += 1
                    logger.warning("title generation failed for book %s in batch %s: %s", book_id, batch_id, exc)

            db.refresh(batch)
            if batch.status == "processing":
                advance_batch_status(batch, "completed")
                db.commit()
            logger.info("batch %s title generation finished: %s", batch_id, counts)
            return counts
        except CriticalBatchError:
            db.rollback()
            logger.error("critical error during title generation for batch %s", batch_id)
            raise
        except Exception as exc:
            db.rollback()
            logger.exception("critical error during title generation for batch %s", batch_id)
            self._fail_batch(batch_id, str(exc))
            raise CriticalBatchError(f"Title generation stopped for batch {batch_id}: {exc}") from exc
        finally:
            db.close()

    def _fail_batch(self, batch_id: uuid.UUID, message: str) -> None:
        db = self._session_factory()
        try:
            batch = db.get(BookBatch, batch_id)
            if batch is None:
                logger.error("cannot mark batch %s failed: batch not found", batch_id)
                return
            if batch.status in ("completed", "failed"):
                return
            advance_batch_status(
                batch, "failed", message or "A critical error stopped the batch process."
            )
            db.commit()
        except Exception:
            db.rollback()
            logger.exception("could not mark batch %s failed", batch_id)
        finally:
            db.close()

    def generate(self, db: Session, book: Book) -> None:
        taxonomy = self._taxonomy_factory(db)
        genre = taxonomy.first_genre(book.genre_ids)
        plot = taxonomy.first_plot(book.plot_ids)

        story = ""
        if plot is not None:
            story = story_description(
                plot.title, plot.description, [(c.name, c.description) for c in plot.chapters]
            )
        system_prompt, user_prompt = build_prompt(
            "title",
            {"story_description": story, "genre": genre.description if genre else ""},
            taxonomy,
        )
        prompt = full_prompt(system_prompt, user_prompt)
        raw = self._text.complete(system_prompt, user_prompt)
        selected, titles = select_titles(extract_json_object(raw, prompt), prompt, raw)

        record_attempt(
            db,
            book_id=book.id,
            batch_id=book.batch_id,
            content_type="title",
            prompt_used=prompt,
            raw_api_response=raw,
            source=self.source,
            titles=titles,
        )
        book.title = selected
        book.status = "unpublished"
