"""Pydantic schemas for batch endpoints."""

import uuid
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

StageName = Literal["title", "description", "chapters", "cover", "tags"]


class BookSeed(BaseModel):
    author_ids: list[uuid.UUID] = Field(..., min_length=1)
    genre_ids: list[uuid.UUID] = Field(..., min_length=1)
    plot_ids: list[uuid.UUID] = Field(..., min_length=1)
    narrative_ids: list[uuid.UUID] = Field(default_factory=list)
    spice_level_ids: list[uuid.UUID] = Field(default_factory=list)
    ending_ids: list[uuid.UUID] = Field(default_factory=list)
    location_ids: list[uuid.UUID] = Field(default_factory=list)


class BatchCreateRequest(BaseModel):
    name: str = Field(..., min_length=1)
    books: list[BookSeed]
    owner_id: uuid.UUID


class BatchSummary(BaseModel):
    id: uuid.UUID
    name: str
    book_count: int
    status: str
    error_message: str | None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class BookProgress(BaseModel):
    id: uuid.UUID
    position: int
    title: str
    status: str
    description: str | None
    book_cover: str | None
    generation_status: dict[str, dict[str, Any]]

    model_config = {"from_attributes": True}


class BatchDetail(BatchSummary):
    owner_id: uuid.UUID
    books: list[BookProgress]


class BatchListResponse(BaseModel):
    batches: list[BatchSummary]
    total: int
    page: int
    limit: int


class RegenerateRequest(BaseModel):
    stages: list[StageName] = Field(..., min_length=1)
    book_ids: list[uuid.UUID] | None = None
    include_completed: bool = False


class RegenerateResponse(BaseModel):
    batch_id: uuid.UUID
    queued: dict[str, int]


class ErrorResponse(BaseModel):
    error: str
    detail: str | None = None
