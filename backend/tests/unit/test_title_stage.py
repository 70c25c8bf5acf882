"""Unit tests for the title stage and its batch loop."""

import json
import uuid
from collections.abc import Callable
from unittest.mock import MagicMock

import pytest
from sqlalchemy.orm import Session, sessionmaker

from bookgen.models.batch import BookBatch
from bookgen.models.book import Book
from bookgen.models.generated_content import GeneratedContent
from bookgen.services.errors import CriticalBatchError, ParseError, ServiceError
from bookgen.services.intake import BatchIntakeService
from bookgen.services.stages.title import TitleStage, select_titles

_CATEGORIES = {
    "poetic_metaphorical": ["Salt and Ember", "Harbor Light", "Tidewater Hearts"],
    "conversational_modern": ["Not Your Summer Fling", "Call Me Maybe Later", "Fine, Stay"],
    "ironic_bittersweet": ["Happily Never After", "Almost Ours", "Lost and Found Wanting"],
}


def _create_batch(
    session_factory: sessionmaker[Session], batch_request: Callable[..., object], count: int
) -> tuple[uuid.UUID, list[uuid.UUID]]:
    session = session_factory()
    svc = BatchIntakeService(MagicMock(), auto_start=False)
    batch = svc.create_batch(batch_request(count), uuid.uuid4(), session)  # type: ignore[arg-type]
    ids = (batch.id, [b.id for b in batch.books])
    session.close()
    return ids


class TestSelectTitles:
    def test_canonical_title_is_first_title_of_first_category(self) -> None:
        selected, titles = select_titles(_CATEGORIES, "prompt", json.dumps(_CATEGORIES))

        assert selected == "Salt and Ember"
        assert len(titles) == 9
        assert [t["status"] for t in titles].count("active") == 1
        assert titles[0] == {"title": "Salt and Ember", "category": "poetic_metaphorical", "status": "active"}

    def test_key_order_decides_not_alphabetical_order(self) -> None:
        data = {"zeta": ["Last Letter"], "alpha": ["First Light"]}
        selected, titles = select_titles(data, "prompt", "raw")

        assert selected == "Last Letter"
        assert titles[1]["status"] == "inactive"

    def test_empty_first_category_raises_parse_error(self) -> None:
        with pytest.raises(ParseError) as excinfo:
            select_titles({"poetic": [], "modern": ["Later"]}, "the prompt", "the raw")
        assert excinfo.value.raw_response == "the raw"
        assert excinfo.value.prompt == "the prompt"

    def test_empty_object_raises_parse_error(self) -> None:
        with pytest.raises(ParseError):
            select_titles({}, "prompt", "{}")


class TestTitleStageBatch:
    def test_parse_failure_on_one_book_does_not_stop_the_batch(
        self,
        session_factory: sessionmaker[Session],
        batch_request: Callable[..., object],
        text_client: MagicMock,
        canned: dict[str, str],
    ) -> None:
        batch_id, book_ids = _create_batch(session_factory, batch_request, 3)
        text_client.complete.side_effect = [canned["title"], "Sorry, I cannot help with that.", canned["title"]]
        enqueue = MagicMock()

        counts = TitleStage(session_factory, text_client).run_batch(batch_id, enqueue)

        assert counts == {"completed": 2, "failed": 1, "skipped": 0}
        db = session_factory()
        books = {b.id: b for b in db.query(Book).all()}
        first, second, third = (books[i] for i in book_ids)
        assert first.title == "Salt and Ember"
        assert first.status == "unpublished"
        assert first.stage_status("title") == "completed"
        assert third.stage_status("title") == "completed"
        assert second.stage_status("title") == "failed"
        assert second.generation_status["title"]["error_message"]
        assert second.status == "generating"

        audit = db.query(GeneratedContent).filter(GeneratedContent.book_id == second.id).all()
        assert len(audit) == 1
        assert audit[0].raw_api_response == "Sorry, I cannot help with that."
        assert audit[0].titles == []
        assert audit[0].source == "gemini-test"

        batch = db.get(BookBatch, batch_id)
        assert batch is not None
        assert batch.status == "completed"
        db.close()

        assert enqueue.call_count == 2
        enqueue.assert_any_call("description", {"book_id": str(first.id)})
        enqueue.assert_any_call("description", {"book_id": str(third.id)})

    def test_every_attempt_writes_one_audit_row_with_full_prompt(
        self,
        session_factory: sessionmaker[Session],
        batch_request: Callable[..., object],
        text_client: MagicMock,
        canned: dict[str, str],
    ) -> None:
        batch_id, book_ids = _create_batch(session_factory, batch_request, 1)
        text_client.complete.return_value = canned["title"]

        TitleStage(session_factory, text_client).run_batch(batch_id, MagicMock())

        system_prompt, user_prompt = text_client.complete.call_args.args
        assert "Second Chance" in user_prompt
        assert "She returns to town" in user_prompt
        db = session_factory()
        rows = db.query(GeneratedContent).all()
        assert len(rows) == 1
        assert rows[0].content_type == "title"
        assert rows[0].prompt_used == f"{system_prompt}\n\nUSER PROMPT:\n{user_prompt}"
        assert rows[0].source == "gemini-test"
        assert [t["status"] for t in rows[0].titles].count("active") == 1
        db.close()

    def test_service_error_fails_the_book_without_audit_row(
        self,
        session_factory: sessionmaker[Session],
        batch_request: Callable[..., object],
        text_client: MagicMock,
    ) -> None:
        batch_id, book_ids = _create_batch(session_factory, batch_request, 1)
        text_client.complete.side_effect = ServiceError("quota exceeded")

        counts = TitleStage(session_factory, text_client).run_batch(batch_id, MagicMock())

        assert counts["failed"] == 1
        db = session_factory()
        book = db.get(Book, book_ids[0])
        assert book is not None
        assert book.generation_status["title"] == {"status": "failed", "error_message": "quota exceeded"}
        assert db.query(GeneratedContent).count() == 0
        assert db.get(BookBatch, batch_id).status == "completed"  # type: ignore[union-attr]
        db.close()

    def test_only_requested_pending_books_are_processed(
        self,
        session_factory: sessionmaker[Session],
        batch_request: Callable[..., object],
        text_client: MagicMock,
        canned: dict[str, str],
    ) -> None:
        batch_id, book_ids = _create_batch(session_factory, batch_request, 3)
        text_client.complete.return_value = canned["title"]

        counts = TitleStage(session_factory, text_client).run_batch(
            batch_id, MagicMock(), book_ids=[book_ids[1]]
        )

        assert counts == {"completed": 1, "failed": 0, "skipped": 0}
        db = session_factory()
        statuses = [db.get(Book, i).stage_status("title") for i in book_ids]  # type: ignore[union-attr]
        assert statuses == ["pending", "completed", "pending"]
        db.close()

    def test_missing_batch_raises_critical_batch_error(
        self, session_factory: sessionmaker[Session], text_client: MagicMock
    ) -> None:
        with pytest.raises(CriticalBatchError):
            TitleStage(session_factory, text_client).run_batch(uuid.uuid4(), MagicMock())

    def test_error_outside_the_book_loop_marks_batch_failed(
        self,
        session_factory: sessionmaker[Session],
        batch_request: Callable[..., object],
        text_client: MagicMock,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        batch_id, _ = _create_batch(session_factory, batch_request, 1)
        stage = TitleStage(session_factory, text_client)
        monkeypatch.setattr(stage, "run", MagicMock(return_value=True))
        real_refresh = Session.refresh

        def broken_refresh(self: Session, instance: object, *args: object, **kwargs: object) -> None:
            if isinstance(instance, BookBatch):
                raise RuntimeError("connection reset")
            real_refresh(self, instance, *args, **kwargs)  # type: ignore[arg-type]

        monkeypatch.setattr(Session, "refresh", broken_refresh)

        with pytest.raises(CriticalBatchError, match="connection reset"):
            stage.run_batch(batch_id, MagicMock())

        monkeypatch.setattr(Session, "refresh", real_refresh)
        db = session_factory()
        batch = db.get(BookBatch, batch_id)
        assert batch is not None
        assert batch.status == "failed"
        assert batch.error_message == "connection reset"
        db.close()

    def test_handle_reads_batch_payload(
        self, session_factory: sessionmaker[Session], text_client: MagicMock, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        stage = TitleStage(session_factory, text_client)
        run_batch = MagicMock()
        monkeypatch.setattr(stage, "run_batch", run_batch)
        batch_id, book_id = uuid.uuid4(), uuid.uuid4()
        enqueue = MagicMock()

        stage.handle({"batch_id": str(batch_id), "book_ids": [str(book_id)]}, enqueue)

        run_batch.assert_called_once_with(batch_id, enqueue, [book_id])
