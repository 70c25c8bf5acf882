"""GeneratedContent ORM model: append-only audit row for one generation attempt."""

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from bookgen.db import Base

CONTENT_TYPES = ("title", "description", "chapter", "cover_prompt", "cover_image_url", "tag")


class GeneratedContent(Base):
    __tablename__ = "generated_contents"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    # Plain indexed columns, not foreign keys: audit rows outlive the books they describe.
    book_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    batch_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True, index=True)
    content_type: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    prompt_used: Mapped[str] = mapped_column(Text, nullable=False)
    raw_api_response: Mapped[str] = mapped_column(Text, nullable=False, default="")
    content: Mapped[str | None] = mapped_column(Text, nullable=True)
    titles: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    tags: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    source: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False, server_default=func.now())
