"""Book ORM model."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import JSON, ForeignKey, Integer, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from bookgen.db import Base

if TYPE_CHECKING:
    from bookgen.models.batch import BookBatch
    from bookgen.models.book_chapter import BookChapter
    from bookgen.models.tag import Tag

# Pipeline order: each stage hands off to the next one on success.
STAGES = ("title", "description", "chapters", "cover", "tags")

BOOK_STATUSES = ("draft", "generating", "unpublished", "published", "archived")

PENDING_TITLE = "Title Generation Pending..."


def default_generation_status() -> dict[str, dict[str, Any]]:
    return {stage: {"status": "pending", "error_message": None} for stage in STAGES}


class Book(Base):
    __tablename__ = "books"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    batch_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("book_batches.id", ondelete="CASCADE"), nullable=True, index=True
    )
    owner_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    # Index of the book within its batch, preserving submission order.
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    book_cover: Mapped[str | None] = mapped_column(Text, nullable=True)
    # status: draft | generating | unpublished | published | archived
    status: Mapped[str] = mapped_column(Text, nullable=False, default="unpublished", index=True)

    # Ordered taxonomy references; the pipeline reads the first entry of each list.
    author_ids: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    genre_ids: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    plot_ids: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    narrative_ids: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    spice_level_ids: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    ending_ids: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    location_ids: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)

    # stage name -> {"status": pending | in_progress | completed | failed, "error_message": str | None}
    # plus "claimed_at" (ISO timestamp) while in_progress.
    # Always reassigned as a whole (see services.generation_state) so the ORM sees the change.
    generation_status: Mapped[dict[str, dict[str, Any]]] = mapped_column(
        JSON, nullable=False, default=default_generation_status
    )
    created_at: Mapped[datetime] = mapped_column(nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        nullable=False, server_default=func.now(), onupdate=func.now()
    )

    batch: Mapped[BookBatch | None] = relationship("BookBatch", back_populates="books")
    chapters: Mapped[list[BookChapter]] = relationship(
        "BookChapter",
        back_populates="book",
        cascade="all, delete-orphan",
        order_by="BookChapter.order",
    )
    tags: Mapped[list[Tag]] = relationship("Tag", secondary="book_tags", back_populates="books")

    def stage_status(self, stage: str) -> str:
        return str(self.generation_status.get(stage, {}).get("status", "pending"))
