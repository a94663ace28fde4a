from __future__ import annotations

import json
from abc import ABC, abstractmethod
from collections.abc import Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from gamemaster.memory.scoring import cosine_similarity
from gamemaster.memory.types import MemoryCategory, MemoryFilters, SimilarityResult
from gamemaster.repos.memory_repo import MemoryRepo
from gamemaster.utils.time_utils import ensure_utc


class VectorStore(ABC):
    """Similarity search over persisted memory embeddings."""

    @abstractmethod
    async def search(
        self,
        *,
        db: AsyncSession,
        filters: MemoryFilters,
        query_embedding: Sequence[float],
        limit: int,
        threshold: float,
    ) -> list[SimilarityResult]:
        """Return the top `limit` active entries scoring at least `threshold`."""


class SQLVectorStore(VectorStore):
    """Loads candidate rows through SQLAlchemy and ranks them in process.

    A campaign's memory set is bounded by retention cleanup, so scanning every
    active row per query is acceptable and keeps the store engine-agnostic.
    """

    async def search(
        self,
        *,
        db: AsyncSession,
        filters: MemoryFilters,
        query_embedding: Sequence[float],
        limit: int,
        threshold: float,
    ) -> list[SimilarityResult]:
        if limit <= 0:
            return []

        query = [float(value) for value in query_embedding]
        records = await MemoryRepo(db).list_active(filters)

        scored: list[SimilarityResult] = []
        for record in records:
            candidate = json.loads(record.embedding_json)
            score = cosine_similarity(query, candidate)
            if score < threshold:
                continue
            scored.append(
                SimilarityResult(
                    id=record.id,
                    content=record.content,
                    category=MemoryCategory.parse(record.category),
                    importance=record.importance,
                    tags=tuple(json.loads(record.tags_json or "[]")),
                    similarity=score,
                    created_at=ensure_utc(record.created_at),
                )
            )

        scored.sort(key=lambda row: (row.similarity, row.created_at), reverse=True)
        return scored[:limit]
