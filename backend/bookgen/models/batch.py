"""BookBatch ORM model: a named group of books submitted together for generation."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Integer, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from bookgen.db import Base

if TYPE_CHECKING:
    from bookgen.models.book import Book

BATCH_STATUSES = ("pending", "processing", "completed", "failed")


class BookBatch(Base):
    __tablename__ = "book_batches"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    book_count: Mapped[int] = mapped_column(Integer, nullable=False)
    # status: pending | processing | completed | failed
    status: Mapped[str] = mapped_column(Text, nullable=False, default="pending", index=True)
    owner_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        nullable=False, server_default=func.now(), onupdate=func.now()
    )

    books: Mapped[list[Book]] = relationship(
        "Book", back_populates="batch", cascade="all, delete-orphan", order_by="Book.position"
    )
