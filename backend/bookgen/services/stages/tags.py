"""Tag stage: discovery tags for one book. Last stage of the pipeline."""

import logging

from sqlalchemy.orm import Session

from bookgen.models.book import Book
from bookgen.models.tag import Tag
from bookgen.services.audit import record_attempt
from bookgen.services.errors import ParseError
from bookgen.services.gemini import extract_json_object, full_prompt
from bookgen.services.prompts import build_prompt, story_description
from bookgen.services.stages.base import Stage

logger = logging.getLogger(__name__)


def normalize_tags(categories: dict[str, object], prompt: str, raw: str) -> list[str]:
    """Flatten category -> tag lists in key order; stripped, lower-cased, de-duplicated."""
    tags: list[str] = []
    for values in categories.values():
        if not isinstance(values, list):
            continue
        for value in values:
            if not isinstance(value, str):
                continue
            tag = value.strip().lower()
            if tag and tag not in tags:
                tags.append(tag)
    if not tags:
        raise ParseError("AI response did not contain any tags.", prompt, raw)
    return tags


class TagStage(Stage):
    name = "tags"
    next_stage = None
    content_type = "tag"

    def generate(self, db: Session, book: Book) -> None:
        taxonomy = self._taxonomy_factory(db)
        genre = taxonomy.first_genre(book.genre_ids)
        plot = taxonomy.first_plot(book.plot_ids)
        spice = taxonomy.first_spice_level(book.spice_level_ids)
        ending = taxonomy.first_ending(book.ending_ids)

        story = ""
        if plot is not None:
            story = story_description(
                plot.title, plot.description, [(c.name, c.description) for c in plot.chapters]
            )
        system_prompt, user_prompt = build_prompt(
            "tags",
            {
                "story_description": story,
                "genre": genre.description if genre else "",
                "spice_level": spice.combo_name if spice else "",
                "ending": ending.option_label if ending else "",
            },
            taxonomy,
        )
        prompt = full_prompt(system_prompt, user_prompt)
        raw = self._text.complete(system_prompt, user_prompt)
        names = normalize_tags(extract_json_object(raw, prompt), prompt, raw)

        existing = {t.name: t for t in db.query(Tag).filter(Tag.name.in_(names)).all()}
        attached = {t.name for t in book.tags}
        for name in names:
            tag = existing.get(name)
            if tag is None:
                tag = Tag(name=name)
                db.add(tag)
                existing[name] = tag
            if name not in attached:
                book.tags.append(tag)
                attached.add(name)

        record_attempt(
            db,
            book_id=book.id,
            batch_id=book.batch_id,
            content_type="tag",
            prompt_used=prompt,
            raw_api_response=raw,
            source=self.source,
            tags=names,
        )
        logger.info("attached %d tags to book %s", len(names), book.id)
