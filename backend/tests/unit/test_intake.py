"""Unit tests for batch intake and batch administration."""

import uuid
from collections.abc import Callable
from unittest.mock import MagicMock

import pytest
from sqlalchemy.orm import Session, sessionmaker

from bookgen.models.batch import BookBatch
from bookgen.models.book import PENDING_TITLE, STAGES, Book
from bookgen.models.book_chapter import BookChapter
from bookgen.models.generated_content import GeneratedContent
from bookgen.schemas.batch import BatchCreateRequest
from bookgen.services.errors import NotFoundError, ValidationError
from bookgen.services.intake import BatchIntakeService, auto_start_from_env
from bookgen.services.queue import PRIMARY_QUEUE


def _counts(session_factory: sessionmaker[Session]) -> tuple[int, int]:
    db = session_factory()
    counts = (db.query(BookBatch).count(), db.query(Book).count())
    db.close()
    return counts


class TestCreateBatch:
    def test_creates_batch_and_placeholder_books(
        self, db: Session, batch_request: Callable[..., BatchCreateRequest]
    ) -> None:
        dispatch = MagicMock()
        owner = uuid.uuid4()

        batch = BatchIntakeService(dispatch, auto_start=True).create_batch(batch_request(3), owner, db)

        assert batch.status == "pending"
        assert batch.book_count == 3
        assert batch.owner_id == owner
        assert [b.position for b in batch.books] == [0, 1, 2]
        for book in batch.books:
            assert book.title == PENDING_TITLE
            assert book.status == "generating"
            assert book.owner_id == owner
            assert all(book.stage_status(stage) == "pending" for stage in STAGES)
        dispatch.assert_called_once_with(
            PRIMARY_QUEUE,
            "title",
            {"batch_id": str(batch.id), "book_ids": [str(b.id) for b in batch.books]},
        )

    def test_empty_book_list_creates_nothing(
        self,
        db: Session,
        session_factory: sessionmaker[Session],
        batch_request: Callable[..., BatchCreateRequest],
    ) -> None:
        dispatch = MagicMock()

        with pytest.raises(ValidationError):
            BatchIntakeService(dispatch).create_batch(batch_request(0), uuid.uuid4(), db)

        assert _counts(session_factory) == (0, 0)
        dispatch.assert_not_called()

    def test_unknown_taxonomy_id_is_rejected(
        self,
        db: Session,
        session_factory: sessionmaker[Session],
        batch_request: Callable[..., BatchCreateRequest],
    ) -> None:
        request = batch_request(2)
        bogus = uuid.uuid4()
        request.books[1] = request.books[1].model_copy(update={"plot_ids": [bogus]})

        with pytest.raises(ValidationError, match=str(bogus)):
            BatchIntakeService(MagicMock()).create_batch(request, uuid.uuid4(), db)

        assert _counts(session_factory) == (0, 0)

    def test_store_failure_leaves_no_partial_batch(
        self,
        db: Session,
        session_factory: sessionmaker[Session],
        batch_request: Callable[..., BatchCreateRequest],
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        monkeypatch.setattr(db, "commit", MagicMock(side_effect=RuntimeError("store unavailable")))
        dispatch = MagicMock()

        with pytest.raises(RuntimeError):
            BatchIntakeService(dispatch).create_batch(batch_request(2), uuid.uuid4(), db)

        assert _counts(session_factory) == (0, 0)
        dispatch.assert_not_called()

    def test_without_auto_start_nothing_is_queued_until_started(
        self, db: Session, batch_request: Callable[..., BatchCreateRequest]
    ) -> None:
        dispatch = MagicMock()
        svc = BatchIntakeService(dispatch, auto_start=False)

        batch = svc.create_batch(batch_request(1), uuid.uuid4(), db)
        dispatch.assert_not_called()

        svc.start_batch(batch.id, db)
        dispatch.assert_called_once()
        assert dispatch.call_args.args[:2] == (PRIMARY_QUEUE, "title")

    def test_start_batch_rejects_started_batch(
        self, db: Session, make_batch: Callable[..., uuid.UUID]
    ) -> None:
        batch_id = make_batch(status="processing")
        with pytest.raises(ValidationError):
            BatchIntakeService(MagicMock()).start_batch(batch_id, db)

    def test_start_batch_missing(self, db: Session) -> None:
        with pytest.raises(NotFoundError):
            BatchIntakeService(MagicMock()).start_batch(uuid.uuid4(), db)

    @pytest.mark.parametrize(("value", "expected"), [("false", False), ("0", False), ("true", True), ("", True)])
    def test_auto_start_from_env(self, monkeypatch: pytest.MonkeyPatch, value: str, expected: bool) -> None:
        monkeypatch.setenv("AUTO_START_GENERATION", value)
        assert auto_start_from_env() is expected


class TestListBatches:
    def test_filters_and_paginates(self, db: Session, make_batch: Callable[..., uuid.UUID]) -> None:
        for i in range(5):
            make_batch(name=f"Spring {i}")
        make_batch(name="Winter", status="completed")
        svc = BatchIntakeService(MagicMock())

        page, total = svc.list_batches(db, page=2, limit=2, search="spring")
        assert total == 5
        assert len(page) == 2

        done, total = svc.list_batches(db, status="completed")
        assert total == 1
        assert done[0].name == "Winter"

    @pytest.mark.parametrize(
        "kwargs", [{"page": 0}, {"limit": 0}, {"limit": 500}, {"status": "archived"}]
    )
    def test_rejects_bad_arguments(self, db: Session, kwargs: dict[str, object]) -> None:
        with pytest.raises(ValidationError):
            BatchIntakeService(MagicMock()).list_batches(db, **kwargs)  # type: ignore[arg-type]


class TestDeleteBatch:
    def test_cascades_to_books_and_chapters_but_keeps_audit(
        self,
        db: Session,
        session_factory: sessionmaker[Session],
        make_batch: Callable[..., uuid.UUID],
        make_book: Callable[..., uuid.UUID],
    ) -> None:
        batch_id = make_batch(book_count=1)
        book_id = make_book(batch_id=batch_id)
        setup = session_factory()
        setup.add(BookChapter(book_id=book_id, title="One", content="Prose", order=1))
        setup.add(
            GeneratedContent(
                book_id=book_id,
                batch_id=batch_id,
                content_type="title",
                prompt_used="p",
                raw_api_response="r",
                titles=[],
                tags=[],
            )
        )
        setup.commit()
        setup.close()

        BatchIntakeService(MagicMock()).delete_batch(batch_id, db)

        check = session_factory()
        assert check.query(BookBatch).count() == 0
        assert check.query(Book).count() == 0
        assert check.query(BookChapter).count() == 0
        assert check.query(GeneratedContent).count() == 1
        check.close()

    def test_missing_batch(self, db: Session) -> None:
        with pytest.raises(NotFoundError):
            BatchIntakeService(MagicMock()).delete_batch(uuid.uuid4(), db)
