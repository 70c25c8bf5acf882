"""Instruction ORM model: stored prompt templates that override the built-in defaults."""

import uuid

from sqlalchemy import Boolean, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from bookgen.db import Base


class Instruction(Base):
    __tablename__ = "instructions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    # Prompt kind this template applies to, e.g. "title" or "cover_scene".
    name: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    system_template: Mapped[str] = mapped_column(Text, nullable=False, default="")
    user_template: Mapped[str] = mapped_column(Text, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
