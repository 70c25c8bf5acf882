"""Append-only audit trail of generation attempts.

Every attempt writes exactly one GeneratedContent row: successful attempts add
it inside the stage transaction, parse failures commit it in a transaction of
their own so it survives the rollback of the book update. Rows are never
updated or deleted.
"""

import logging
import uuid
from collections.abc import Callable
from typing import Any

from sqlalchemy.orm import Session

from bookgen.models.generated_content import CONTENT_TYPES, GeneratedContent
from bookgen.services.errors import ParseError

logger = logging.getLogger(__name__)


def record_attempt(
    db: Session,
    *,
    book_id: uuid.UUID,
    batch_id: uuid.UUID | None,
    content_type: str,
    prompt_used: str,
    raw_api_response: str,
    source: str | None,
    content: str | None = None,
    titles: list[dict[str, Any]] | None = None,
    tags: list[str] | None = None,
) -> GeneratedContent:
    """Add an audit row to *db*'s current transaction. The caller commits."""
    if content_type not in CONTENT_TYPES:
        raise ValueError(f"Unknown content type: {content_type!r}")
    row = GeneratedContent(
        id=uuid.uuid4(),
        book_id=book_id,
        batch_id=batch_id,
        content_type=content_type,
        prompt_used=prompt_used,
        raw_api_response=raw_api_response,
        content=content,
        titles=titles or [],
        tags=tags or [],
        source=source,
    )
    db.add(row)
    return row


def record_parse_failure(
    session_factory: Callable[[], Session],
    *,
    book_id: uuid.UUID,
    batch_id: uuid.UUID | None,
    content_type: str,
    error: ParseError,
    source: str | None = None,
) -> None:
    """Commit an audit row for a failed parse in its own transaction."""
    db = session_factory()
    try:
        record_attempt(
            db,
            book_id=book_id,
            batch_id=batch_id,
            content_type=content_type,
            prompt_used=error.prompt,
            raw_api_response=error.raw_response,
            source=source,
        )
        db.commit()
        logger.info("recorded %s parse failure for book %s", content_type, book_id)
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
