from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


class MemoryCategory(str, Enum):
    """Fixed set of memory categories."""

    CHARACTER = "CHARACTER"
    LOCATION = "LOCATION"
    EVENT = "EVENT"
    RULE = "RULE"
    PREFERENCE = "PREFERENCE"
    STORY_BEAT = "STORY_BEAT"
    GENERAL = "GENERAL"

    @classmethod
    def parse(cls, value: "str | MemoryCategory") -> "MemoryCategory":
        if isinstance(value, MemoryCategory):
            return value
        normalized = str(value).strip().upper().replace("-", "_")
        return cls(normalized)


MIN_IMPORTANCE = 1
MAX_IMPORTANCE = 10


@dataclass(frozen=True)
class MemoryEntry:
    """One stored fact with its embedding."""

    id: str
    campaign_id: Optional[str]
    user_id: Optional[str]
    content: str
    category: MemoryCategory
    importance: int
    tags: tuple[str, ...]
    embedding: tuple[float, ...]
    is_active: bool
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class MemoryFilters:
    """Scope applied before similarity ranking."""

    campaign_id: Optional[str] = None
    user_id: Optional[str] = None
    category: Optional[MemoryCategory] = None
    min_importance: Optional[int] = None


@dataclass(frozen=True)
class SimilarityResult:
    """Search hit: entry projection plus cosine similarity."""

    id: str
    content: str
    category: MemoryCategory
    importance: int
    tags: tuple[str, ...]
    similarity: float
    created_at: datetime


@dataclass(frozen=True)
class MemoryStats:
    """Aggregate view over one campaign's memories."""

    total_memories: int
    active_memories: int
    memories_by_category: dict[str, int] = field(default_factory=dict)
    average_importance: float = 0.0


@dataclass(frozen=True)
class MemoryImportItem:
    """Input row for bulk imports."""

    content: str
    category: MemoryCategory = MemoryCategory.GENERAL
    importance: Optional[int] = None
    tags: tuple[str, ...] = ()
    campaign_id: Optional[str] = None
    user_id: Optional[str] = None
