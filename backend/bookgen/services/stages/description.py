"""Description stage: writes the back-cover blurb for one book."""

import logging
import random
from collections.abc import Callable

from sqlalchemy.orm import Session

from bookgen.models.book import Book
from bookgen.services.audit import record_attempt
from bookgen.services.gemini import GeminiService, full_prompt
from bookgen.services.prompts import build_prompt
from bookgen.services.stages.base import Stage
from bookgen.services.taxonomy import TaxonomyRepository

logger = logging.getLogger(__name__)


class DescriptionStage(Stage):
    name = "description"
    next_stage = "chapters"
    content_type = "description"

    def __init__(
        self,
        session_factory: Callable[[], Session],
        text_client: GeminiService,
        taxonomy_factory: Callable[[Session], TaxonomyRepository] = TaxonomyRepository,
        rng: random.Random | None = None,
    ) -> None:
        super().__init__(session_factory, text_client, taxonomy_factory)
        self._rng = rng or random.Random()

    def generate(self, db: Session, book: Book) -> None:
        taxonomy = self._taxonomy_factory(db)
        genre = taxonomy.first_genre(book.genre_ids)
        plot = taxonomy.first_plot(book.plot_ids)

        # A genre without variants is fine: the prompt gets an empty variant.
        variants = [v.name for v in genre.variants] if genre else []
        variant = self._rng.choice(variants) if variants else ""
        summaries = "; ".join(c.description for c in plot.chapters) if plot else ""

        system_prompt, user_prompt = build_prompt(
            "description",
            {
                "title": book.title,
                "genre": genre.description if genre else "",
                "variant": variant,
                "plot_description": plot.description if plot else "",
                "chapter_summaries": summaries,
            },
            taxonomy,
        )
        raw = self._text.complete(system_prompt, user_prompt)
        description = raw.strip()

        record_attempt(
            db,
            book_id=book.id,
            batch_id=book.batch_id,
            content_type="description",
            prompt_used=full_prompt(system_prompt, user_prompt),
            raw_api_response=raw,
            source=self.source,
            content=description,
        )
        book.description = description
        logger.debug("description for book %s uses variant %r", book.id, variant)
