"""Tag ORM model."""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

from sqlalchemy import Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from bookgen.db import Base

if TYPE_CHECKING:
    from bookgen.models.book import Book


class Tag(Base):
    __tablename__ = "tags"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(Text, nullable=False, unique=True)

    books: Mapped[list[Book]] = relationship("Book", secondary="book_tags", back_populates="tags")
