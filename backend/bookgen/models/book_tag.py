"""book_tags association table."""

from sqlalchemy import Column, ForeignKey, Table, Uuid

from bookgen.db import Base

book_tags = Table(
    "book_tags",
    Base.metadata,
    Column("book_id", Uuid, ForeignKey("books.id", ondelete="CASCADE"), primary_key=True),
    Column("tag_id", Uuid, ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True),
)
