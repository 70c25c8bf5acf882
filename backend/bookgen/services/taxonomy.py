"""Read-only taxonomy lookups used to build generation prompts."""

import uuid
from collections.abc import Iterable
from typing import TypeVar

from sqlalchemy.orm import Session, selectinload

from bookgen.db import Base
from bookgen.models.instruction import Instruction
from bookgen.models.taxonomy import (
    Author,
    Ending,
    Genre,
    Location,
    Narrative,
    Plot,
    SpiceLevel,
)

T = TypeVar("T", bound=Base)

# Taxonomy kind -> model, keyed by the Book reference-list attribute it backs.
TAXONOMY_KINDS: dict[str, type[Base]] = {
    "author_ids": Author,
    "genre_ids": Genre,
    "plot_ids": Plot,
    "narrative_ids": Narrative,
    "spice_level_ids": SpiceLevel,
    "ending_ids": Ending,
    "location_ids": Location,
}


def _as_uuid(value: object) -> uuid.UUID | None:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


class TaxonomyRepository:
    """Explicit read-only access to reference data; the pipeline never writes here."""

    def __init__(self, db: Session) -> None:
        self._db = db

    def _get(self, model: type[T], entity_id: object) -> T | None:
        key = _as_uuid(entity_id)
        if key is None:
            return None
        return self._db.get(model, key)

    def _first(self, model: type[T], ids: Iterable[object]) -> T | None:
        for entity_id in ids:
            return self._get(model, entity_id)
        return None

    def first_genre(self, ids: Iterable[object]) -> Genre | None:
        """First referenced genre, with its variant list loaded."""
        for entity_id in ids:
            key = _as_uuid(entity_id)
            if key is None:
                return None
            return (
                self._db.query(Genre)
                .options(selectinload(Genre.variants))
                .filter(Genre.id == key)
                .first()
            )
        return None

    def first_plot(self, ids: Iterable[object]) -> Plot | None:
        """First referenced plot, with its chapter outline loaded in order."""
        for entity_id in ids:
            key = _as_uuid(entity_id)
            if key is None:
                return None
            return (
                self._db.query(Plot)
                .options(selectinload(Plot.chapters))
                .filter(Plot.id == key)
                .first()
            )
        return None

    def first_author(self, ids: Iterable[object]) -> Author | None:
        return self._first(Author, ids)

    def first_narrative(self, ids: Iterable[object]) -> Narrative | None:
        return self._first(Narrative, ids)

    def first_spice_level(self, ids: Iterable[object]) -> SpiceLevel | None:
        return self._first(SpiceLevel, ids)

    def first_ending(self, ids: Iterable[object]) -> Ending | None:
        return self._first(Ending, ids)

    def missing_ids(self, kind: str, ids: Iterable[object]) -> list[str]:
        """Return the ids in *ids* that do not reference an existing *kind* entity."""
        model = TAXONOMY_KINDS[kind]
        return [str(entity_id) for entity_id in ids if self._get(model, entity_id) is None]

    def active_instruction(self, name: str) -> Instruction | None:
        return (
            self._db.query(Instruction)
            .filter(Instruction.name == name, Instruction.is_active.is_(True))
            .first()
        )
