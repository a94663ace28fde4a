from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import Field

from gamemaster.memory.types import MemoryCategory
from gamemaster.schemas.common import APIModel


class MemoryCreateRequest(APIModel):
    """Payload for storing one memory."""

    content: str = Field(min_length=1, max_length=8000)
    category: MemoryCategory = MemoryCategory.GENERAL
    importance: Optional[int] = Field(default=None, ge=1, le=10)
    tags: list[str] = Field(default_factory=list)
    user_id: Optional[str] = Field(default=None, max_length=100)


class MemorySearchRequest(APIModel):
    query: str = Field(min_length=1, max_length=2000)
    category: Optional[MemoryCategory] = None
    user_id: Optional[str] = Field(default=None, max_length=100)
    min_importance: Optional[int] = Field(default=None, ge=1, le=10)
    limit: int = Field(default=10, ge=1, le=100)
    threshold: float = Field(default=0.8, ge=-1.0, le=1.0)


class MemoryCleanupRequest(APIModel):
    keep_count: Optional[int] = Field(default=None, ge=0, le=100000)
    min_importance: Optional[int] = Field(default=None, ge=1, le=10)


class MemoryEntryOut(APIModel):
    id: str
    campaign_id: Optional[str] = None
    user_id: Optional[str] = None
    content: str
    category: MemoryCategory
    importance: int
    tags: list[str]
    is_active: bool
    created_at: datetime
    updated_at: datetime


class SimilarityResultOut(APIModel):
    id: str
    content: str
    category: MemoryCategory
    importance: int
    tags: list[str]
    similarity: float
    created_at: datetime


class MemorySearchResponse(APIModel):
    results: list[SimilarityResultOut]


class MemoryListResponse(APIModel):
    items: list[MemoryEntryOut]
    total: int
    limit: int
    offset: int


class MemoryStatsResponse(APIModel):
    total_memories: int
    active_memories: int
    memories_by_category: dict[str, int]
    average_importance: float


class MemoryCleanupResponse(APIModel):
    deactivated: int
