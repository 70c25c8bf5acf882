"""Batch intake and batch administration."""

import logging
import os
import uuid
from collections.abc import Callable

from sqlalchemy.orm import Session, selectinload

from bookgen.models.batch import BATCH_STATUSES, BookBatch
from bookgen.models.book import PENDING_TITLE, Book, default_generation_status
from bookgen.schemas.batch import BatchCreateRequest
from bookgen.services.errors import NotFoundError, ValidationError
from bookgen.services.queue import PRIMARY_QUEUE, Dispatch
from bookgen.services.taxonomy import TAXONOMY_KINDS, TaxonomyRepository

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100

_FALSE_VALUES = ("0", "false", "no", "off")


def auto_start_from_env() -> bool:
    return os.environ.get("AUTO_START_GENERATION", "true").strip().lower() not in _FALSE_VALUES


class BatchIntakeService:
    """Creates batches of placeholder books and kicks off title generation."""

    def __init__(
        self,
        dispatch: Dispatch,
        taxonomy_factory: Callable[[Session], TaxonomyRepository] = TaxonomyRepository,
        auto_start: bool | None = None,
    ) -> None:
        self._dispatch = dispatch
        self._taxonomy_factory = taxonomy_factory
        self._auto_start = auto_start_from_env() if auto_start is None else auto_start

    def create_batch(self, request: BatchCreateRequest, owner_id: uuid.UUID, db: Session) -> BookBatch:
        """Create a pending batch and one placeholder book per seed in a single transaction.

        Raises ValidationError, before anything is written, if the book list is
        empty or any seed references a taxonomy entity that does not exist.
        """
        if not request.books:
            raise ValidationError("A batch needs at least one book.")
        self._check_references(request, db)

        batch = BookBatch(
            id=uuid.uuid4(),
            name=request.name,
            book_count=len(request.books),
            status="pending",
            owner_id=owner_id,
        )
        try:
            db.add(batch)
            for position, seed in enumerate(request.books):
                db.add(
                    Book(
                        id=uuid.uuid4(),
                        batch_id=batch.id,
                        owner_id=owner_id,
                        position=position,
                        title=PENDING_TITLE,
                        status="generating",
                        author_ids=[str(i) for i in seed.author_ids],
                        genre_ids=[str(i) for i in seed.genre_ids],
                        plot_ids=[str(i) for i in seed.plot_ids],
                        narrative_ids=[str(i) for i in seed.narrative_ids],
                        spice_level_ids=[str(i) for i in seed.spice_level_ids],
                        ending_ids=[str(i) for i in seed.ending_ids],
                        location_ids=[str(i) for i in seed.location_ids],
                        generation_status=default_generation_status(),
                    )
                )
            db.commit()
        except Exception:
            db.rollback()
            logger.exception("failed to create batch %r", request.name)
            raise
        db.refresh(batch)
        logger.info("created batch %s with %d books", batch.id, batch.book_count)

        if self._auto_start:
            self._enqueue_titles(batch)
        else:
            logger.info("batch %s waits for an explicit start", batch.id)
        return batch

    def _check_references(self, request: BatchCreateRequest, db: Session) -> None:
        taxonomy = self._taxonomy_factory(db)
        for index, seed in enumerate(request.books):
            for kind in TAXONOMY_KINDS:
                missing = taxonomy.missing_ids(kind, getattr(seed, kind))
                if missing:
                    raise ValidationError(
                        f"Book {index}: unknown {kind.removesuffix('_ids')} id(s): {', '.join(missing)}"
                    )

    def _enqueue_titles(self, batch: BookBatch) -> None:
        book_ids = [str(book.id) for book in batch.books]
        self._dispatch(PRIMARY_QUEUE, "title", {"batch_id": str(batch.id), "book_ids": book_ids})
        logger.info("queued title generation for batch %s (%d books)", batch.id, len(book_ids))

    def start_batch(self, batch_id: uuid.UUID, db: Session) -> BookBatch:
        """Operator kickoff for a batch created without automatic start."""
        batch = self.get_batch(batch_id, db)
        if batch.status != "pending":
            raise ValidationError(f"Batch {batch_id} has already been started ({batch.status}).")
        self._enqueue_titles(batch)
        return batch

    def get_batch(self, batch_id: uuid.UUID, db: Session) -> BookBatch:
        batch = (
            db.query(BookBatch)
            .options(selectinload(BookBatch.books))
            .filter(BookBatch.id == batch_id)
            .first()
        )
        if batch is None:
            raise NotFoundError(f"Batch {batch_id} not found")
        return batch

    def list_batches(
        self,
        db: Session,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
        search: str | None = None,
        status: str | None = None,
    ) -> tuple[list[BookBatch], int]:
        """Return one page of batches, newest first, and the total matching count."""
        if page < 1:
            raise ValidationError("page must be >= 1")
        if not 1 <= limit <= MAX_PAGE_SIZE:
            raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}")
        if status is not None and status not in BATCH_STATUSES:
            raise ValidationError(f"Unknown batch status: {status}")

        base = db.query(BookBatch)
        if search:
            base = base.filter(BookBatch.name.ilike(f"%{search}%"))
        if status:
            base = base.filter(BookBatch.status == status)
        total: int = base.count()
        batches = (
            base.order_by(BookBatch.created_at.desc(), BookBatch.name)
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return batches, total

    def delete_batch(self, batch_id: uuid.UUID, db: Session) -> None:
        """Delete a batch with its books, their chapters and tag links. Audit rows are kept."""
        batch = self.get_batch(batch_id, db)
        try:
            db.delete(batch)
            db.commit()
        except Exception:
            db.rollback()
            raise
        logger.info("deleted batch %s", batch_id)
