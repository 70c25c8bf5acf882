"""Cover stage: scene description, image generation and permanent storage of the cover."""

import json
import logging
import os
import re
from collections.abc import Callable

from sqlalchemy.orm import Session

from bookgen.models.book import Book
from bookgen.services import ideogram
from bookgen.services.audit import record_attempt
from bookgen.services.drive import DriveService
from bookgen.services.gemini import GeminiService, full_prompt
from bookgen.services.ideogram import IdeogramService
from bookgen.services.prompts import build_prompt
from bookgen.services.stages.base import Stage
from bookgen.services.taxonomy import TaxonomyRepository

logger = logging.getLogger(__name__)

_WHITESPACE_RE = re.compile(r"\s+")


def collapse_whitespace(text: str) -> str:
    return _WHITESPACE_RE.sub(" ", text).strip()


class CoverStage(Stage):
    name = "cover"
    next_stage = "tags"
    content_type = "cover_image_url"

    def __init__(
        self,
        session_factory: Callable[[], Session],
        text_client: GeminiService,
        image_client: IdeogramService,
        storage: DriveService,
        taxonomy_factory: Callable[[Session], TaxonomyRepository] = TaxonomyRepository,
        folder: str | None = None,
    ) -> None:
        super().__init__(session_factory, text_client, taxonomy_factory)
        self._images = image_client
        self._storage = storage
        self._folder = folder

    @property
    def folder(self) -> str | None:
        if self._folder is None:
            self._folder = os.environ.get("COVER_FOLDER_ID", "").strip() or None
        return self._folder

    def generate(self, db: Session, book: Book) -> Callable[[], None]:
        taxonomy = self._taxonomy_factory(db)
        genre = taxonomy.first_genre(book.genre_ids)
        plot = taxonomy.first_plot(book.plot_ids)
        author = taxonomy.first_author(book.author_ids)
        spice = taxonomy.first_spice_level(book.spice_level_ids)
        ending = taxonomy.first_ending(book.ending_ids)

        scene_system, scene_user = build_prompt(
            "cover_scene",
            {
                "description": book.description or "",
                "plot_description": plot.description if plot else "",
                "chapter_summaries": "; ".join(c.description for c in plot.chapters) if plot else "",
                "ending": ending.option_label if ending else "",
                "spice_level": spice.combo_name if spice else "",
            },
            taxonomy,
        )
        scene_raw = self._text.complete(scene_system, scene_user)
        scene = scene_raw.strip()
        record_attempt(
            db,
            book_id=book.id,
            batch_id=book.batch_id,
            content_type="cover_prompt",
            prompt_used=full_prompt(scene_system, scene_user),
            raw_api_response=scene_raw,
            source=self.source,
            content=scene,
        )

        image_system, image_user = build_prompt(
            "cover_image",
            {
                "title": book.title,
                "author_name": author.author_name if author else "",
                "scene": scene,
                "design_style": author.design_style if author else "",
                "genre": genre.description if genre else "",
            },
            taxonomy,
        )
        cover_prompt = collapse_whitespace(image_user)
        temporary_url = self._images.generate(cover_prompt)
        data = self._images.download(temporary_url)
        permanent_url = self._storage.upload(data, self.folder, f"cover-{book.id}.png")

        record_attempt(
            db,
            book_id=book.id,
            batch_id=book.batch_id,
            content_type="cover_image_url",
            prompt_used=full_prompt(image_system, cover_prompt),
            raw_api_response=json.dumps(
                {"temporary_url": temporary_url, "permanent_url": permanent_url}
            ),
            source=ideogram.SOURCE,
            content=permanent_url,
        )
        book.book_cover = permanent_url

        def discard_upload() -> None:
            logger.warning("discarding cover upload %s for book %s", permanent_url, book.id)
            self._storage.delete(permanent_url)

        return discard_upload
