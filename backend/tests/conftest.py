"""Shared pytest fixtures."""

import json
import uuid
from collections.abc import Callable, Generator
from datetime import UTC, datetime
from pathlib import Path
from unittest.mock import MagicMock

import pytest
from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker

from bookgen.db import create_tables
from bookgen.models.batch import BookBatch
from bookgen.models.book import STAGES, Book, default_generation_status
# Every mapped class must be importable before any Book is constructed.
from bookgen.models.book_chapter import BookChapter  # noqa: F401
from bookgen.models.book_tag import book_tags  # noqa: F401
from bookgen.models.generated_content import GeneratedContent  # noqa: F401
from bookgen.models.instruction import Instruction  # noqa: F401
from bookgen.models.tag import Tag  # noqa: F401
from bookgen.models.taxonomy import (
    Author,
    Ending,
    Genre,
    GenreVariant,
    Location,
    Narrative,
    Plot,
    PlotChapter,
    SpiceLevel,
)
from bookgen.schemas.batch import BatchCreateRequest, BookSeed

TITLE_RESPONSE = json.dumps(
    {
        "poetic_metaphorical": ["Salt and Ember", "Harbor Light", "Tidewater Hearts"],
        "conversational_modern": ["Not Your Summer Fling", "Call Me Maybe Later", "Fine, Stay"],
        "ironic_bittersweet": ["Happily Never After", "Almost Ours", "Lost and Found Wanting"],
    }
)

CHAPTERS_RESPONSE = json.dumps(
    {
        "chapters": [
            {"title": "The Return", "prose": "Maren stepped off the ferry."},
            {"title": "Low Tide", "prose": "The storm kept them inside the lighthouse."},
            {"title": "Harbor Light", "prose": "She stayed."},
        ]
    }
)

TAGS_RESPONSE = json.dumps({"tropes": ["Second Chance", "small town"], "mood": ["Cozy ", "second chance"]})


@pytest.fixture()
def canned() -> dict[str, str]:
    """Well-formed model replies for the JSON-producing stages."""
    return {"title": TITLE_RESPONSE, "chapters": CHAPTERS_RESPONSE, "tags": TAGS_RESPONSE}


@pytest.fixture()
def engine(tmp_path: Path) -> Generator[Engine, None, None]:
    """File-backed SQLite engine so separate sessions see each other's commits."""
    eng = create_engine(
        f"sqlite:///{tmp_path / 'bookgen.db'}", connect_args={"check_same_thread": False}
    )
    create_tables(eng)
    yield eng
    eng.dispose()


@pytest.fixture()
def session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture()
def db(session_factory: sessionmaker[Session]) -> Generator[Session, None, None]:
    session = session_factory()
    yield session
    session.close()


@pytest.fixture()
def taxonomy(session_factory: sessionmaker[Session]) -> dict[str, uuid.UUID]:
    """Seed one entity of every taxonomy kind, plus a genre without variants."""
    session = session_factory()
    genre = Genre(title="Small-Town Romance", description="Cozy coastal small-town romance")
    genre.variants = [GenreVariant(name="Seasonal"), GenreVariant(name="Holiday")]
    bare_genre = Genre(title="Office Romance", description="Workplace romance")
    plot = Plot(title="Second Chance", description="Former lovers meet again")
    plot.chapters = [
        PlotChapter(name="Homecoming", description="She returns to town", order=1),
        PlotChapter(name="Storm", description="They are stranded together", order=2),
        PlotChapter(name="Choice", description="She decides to stay", order=3),
    ]
    author = Author(
        author_name="June Calloway",
        writing_style="Warm and witty",
        design_style="Soft watercolor with hand-lettered serif type",
    )
    narrative = Narrative(description="First person, past tense")
    spice = SpiceLevel(combo_name="Sweet", description="Closed door")
    ending = Ending(option_label="HEA", description="Happily ever after")
    location = Location(name="Maine")
    session.add_all([genre, bare_genre, plot, author, narrative, spice, ending, location])
    session.commit()
    ids = {
        "genre": genre.id,
        "bare_genre": bare_genre.id,
        "plot": plot.id,
        "author": author.id,
        "narrative": narrative.id,
        "spice_level": spice.id,
        "ending": ending.id,
        "location": location.id,
    }
    session.close()
    return ids


@pytest.fixture()
def text_client() -> MagicMock:
    """Stand-in for GeminiService; set complete.return_value / side_effect per test."""
    client = MagicMock()
    client.model = "gemini-test"
    return client


@pytest.fixture()
def batch_request(taxonomy: dict[str, uuid.UUID]) -> Callable[..., BatchCreateRequest]:
    def _make(count: int = 1, name: str = "Autumn list", owner_id: uuid.UUID | None = None) -> BatchCreateRequest:
        seed = BookSeed(
            author_ids=[taxonomy["author"]],
            genre_ids=[taxonomy["genre"]],
            plot_ids=[taxonomy["plot"]],
            narrative_ids=[taxonomy["narrative"]],
            spice_level_ids=[taxonomy["spice_level"]],
            ending_ids=[taxonomy["ending"]],
            location_ids=[taxonomy["location"]],
        )
        return BatchCreateRequest(name=name, books=[seed] * count, owner_id=owner_id or uuid.uuid4())

    return _make


@pytest.fixture()
def make_batch(session_factory: sessionmaker[Session]) -> Callable[..., uuid.UUID]:
    def _make(name: str = "Autumn list", status: str = "pending", book_count: int = 0) -> uuid.UUID:
        session = session_factory()
        batch = BookBatch(name=name, book_count=book_count, status=status, owner_id=uuid.uuid4())
        session.add(batch)
        session.commit()
        batch_id = batch.id
        session.close()
        return batch_id

    return _make


@pytest.fixture()
def make_book(
    session_factory: sessionmaker[Session], taxonomy: dict[str, uuid.UUID]
) -> Callable[..., uuid.UUID]:
    """Create a book directly; *statuses* maps stage -> status (others stay pending).

    In-progress stages are claimed at *claimed_at*, default now.
    """

    def _make(
        statuses: dict[str, str] | None = None,
        title: str = "Salt and Ember",
        description: str | None = "A lighthouse keeper's daughter comes home.",
        genre: str = "genre",
        batch_id: uuid.UUID | None = None,
        position: int = 0,
        claimed_at: datetime | None = None,
    ) -> uuid.UUID:
        generation_status = default_generation_status()
        for stage, status in (statuses or {}).items():
            assert stage in STAGES
            generation_status[stage] = {"status": status, "error_message": None}
            if status == "in_progress":
                generation_status[stage]["claimed_at"] = (claimed_at or datetime.now(UTC)).isoformat()
        session = session_factory()
        book = Book(
            batch_id=batch_id,
            owner_id=uuid.uuid4(),
            position=position,
            title=title,
            description=description,
            status="unpublished",
            author_ids=[str(taxonomy["author"])],
            genre_ids=[str(taxonomy[genre])],
            plot_ids=[str(taxonomy["plot"])],
            narrative_ids=[str(taxonomy["narrative"])],
            spice_level_ids=[str(taxonomy["spice_level"])],
            ending_ids=[str(taxonomy["ending"])],
            location_ids=[str(taxonomy["location"])],
            generation_status=generation_status,
        )
        session.add(book)
        session.commit()
        book_id = book.id
        session.close()
        return book_id

    return _make
