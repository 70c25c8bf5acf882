"""Taxonomy ORM models: reference data joined into generation prompts.

The pipeline only reads these tables; they are maintained elsewhere.
"""

from __future__ import annotations

import uuid

from sqlalchemy import ForeignKey, Integer, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from bookgen.db import Base


class Genre(Base):
    __tablename__ = "genres"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    title: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")

    variants: Mapped[list[GenreVariant]] = relationship(
        "GenreVariant", back_populates="genre", order_by="GenreVariant.name"
    )


class GenreVariant(Base):
    __tablename__ = "genre_variants"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    genre_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("genres.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)

    genre: Mapped[Genre] = relationship("Genre", back_populates="variants")


class Plot(Base):
    __tablename__ = "plots"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")

    chapters: Mapped[list[PlotChapter]] = relationship(
        "PlotChapter", back_populates="plot", order_by="PlotChapter.order"
    )


class PlotChapter(Base):
    """One beat of a plot outline (not generated prose; see BookChapter)."""

    __tablename__ = "plot_chapters"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    plot_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("plots.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    order: Mapped[int] = mapped_column(Integer, nullable=False)

    plot: Mapped[Plot] = relationship("Plot", back_populates="chapters")


class Author(Base):
    __tablename__ = "authors"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    author_name: Mapped[str] = mapped_column(Text, nullable=False)
    writing_style: Mapped[str] = mapped_column(Text, nullable=False, default="")
    design_style: Mapped[str] = mapped_column(Text, nullable=False, default="")


class Narrative(Base):
    __tablename__ = "narratives"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    description: Mapped[str] = mapped_column(Text, nullable=False)


class SpiceLevel(Base):
    __tablename__ = "spice_levels"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    combo_name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")


class Ending(Base):
    __tablename__ = "endings"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    option_label: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")


class Location(Base):
    __tablename__ = "locations"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(Text, nullable=False)
