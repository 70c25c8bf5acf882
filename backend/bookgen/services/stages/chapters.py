"""Chapter stage: writes the three chapters of one book, replacing any earlier set."""

import logging

from pydantic import BaseModel, ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from bookgen.models.book import Book
from bookgen.models.book_chapter import BookChapter
from bookgen.services.audit import record_attempt
from bookgen.services.errors import ParseError
from bookgen.services.gemini import extract_json_object, full_prompt
from bookgen.services.prompts import build_prompt
from bookgen.services.stages.base import Stage

logger = logging.getLogger(__name__)

CHAPTER_COUNT = 3


class ChapterDraft(BaseModel):
    title: str
    prose: str


def parse_chapters(data: dict[str, object], prompt: str, raw: str) -> list[ChapterDraft]:
    """Validate the ``{"chapters": [{title, prose}, ...]}`` shape; exactly three chapters."""
    items = data.get("chapters")
    if not isinstance(items, list) or len(items) != CHAPTER_COUNT:
        count = len(items) if isinstance(items, list) else 0
        raise ParseError(
            f"Expected exactly {CHAPTER_COUNT} chapters in AI response, got {count}.", prompt, raw
        )
    try:
        drafts = [ChapterDraft.model_validate(item) for item in items]
    except PydanticValidationError as exc:
        raise ParseError(f"Malformed chapter in AI response: {exc}", prompt, raw) from exc
    for i, draft in enumerate(drafts, start=1):
        if not draft.title.strip() or not draft.prose.strip():
            raise ParseError(f"Chapter {i} in AI response is missing a title or prose.", prompt, raw)
    return drafts


class ChapterStage(Stage):
    name = "chapters"
    next_stage = "cover"
    content_type = "chapter"

    def generate(self, db: Session, book: Book) -> None:
        taxonomy = self._taxonomy_factory(db)
        plot = taxonomy.first_plot(book.plot_ids)
        narrative = taxonomy.first_narrative(book.narrative_ids)
        spice = taxonomy.first_spice_level(book.spice_level_ids)
        ending = taxonomy.first_ending(book.ending_ids)

        beats = "\n".join(f"{c.name}: {c.description}" for c in plot.chapters) if plot else ""
        system_prompt, user_prompt = build_prompt(
            "chapters",
            {
                "title": book.title,
                "plot_title": plot.title if plot else "",
                "plot_description": plot.description if plot else "",
                "chapter_beats": beats,
                "narrative": narrative.description if narrative else "",
                "spice_level": f"{spice.combo_name} ({spice.description})" if spice else "",
                "ending": ending.option_label if ending else "",
            },
            taxonomy,
        )
        prompt = full_prompt(system_prompt, user_prompt)
        raw = self._text.complete(system_prompt, user_prompt)
        drafts = parse_chapters(extract_json_object(raw, prompt), prompt, raw)

        # Full replace: drop the old set before inserting so (book_id, order) stays unique.
        db.query(BookChapter).filter(BookChapter.book_id == book.id).delete(
            synchronize_session=False
        )
        db.flush()
        db.expire(book, ["chapters"])
        for order, draft in enumerate(drafts, start=1):
            db.add(
                BookChapter(
                    book_id=book.id,
                    title=draft.title.strip(),
                    content=draft.prose.strip(),
                    order=order,
                    status="published",
                )
            )
        record_attempt(
            db,
            book_id=book.id,
            batch_id=book.batch_id,
            content_type="chapter",
            prompt_used=prompt,
            raw_api_response=raw,
            source=self.source,
            content="\n\n".join(d.title.strip() for d in drafts),
        )
        logger.info("replaced chapters of book %s with %d new chapters", book.id, len(drafts))
