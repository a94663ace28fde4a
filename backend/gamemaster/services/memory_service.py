from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Iterable, Sequence
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import AsyncIterator, Optional

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gamemaster.core.config import Settings
from gamemaster.memory.embedder import DeterministicEmbedder, Embedder, OpenAIEmbedder
from gamemaster.memory.scoring import clamp_importance, estimate_importance, vector_norm
from gamemaster.memory.types import (
    MemoryCategory,
    MemoryEntry,
    MemoryFilters,
    MemoryImportItem,
    MemoryStats,
    SimilarityResult,
)
from gamemaster.memory.vector_store import SQLVectorStore, VectorStore
from gamemaster.repos.memory_repo import MemoryRepo, to_memory_entry
from gamemaster.utils.time_utils import utc_now

logger = logging.getLogger(__name__)

RECENT_WINDOW = timedelta(days=7)
DEFAULT_SEARCH_LIMIT = 10
DEFAULT_SEARCH_THRESHOLD = 0.8


class MemoryNotFoundError(LookupError):
    """Raised when a memory id does not exist."""


class MemoryService:
    """Durable, searchable long-term memory for campaigns."""

    def __init__(
        self,
        *,
        sessionmaker: async_sessionmaker[AsyncSession],
        embedder: Embedder,
        vector_store: Optional[VectorStore] = None,
    ) -> None:
        self._sessionmaker = sessionmaker
        self._embedder = embedder
        self._vector_store = vector_store or SQLVectorStore()

    @property
    def embedder(self) -> Embedder:
        return self._embedder

    async def create(
        self,
        content: str,
        category: MemoryCategory | str = MemoryCategory.GENERAL,
        importance: Optional[int] = None,
        tags: Sequence[str] = (),
        *,
        campaign_id: Optional[str] = None,
        user_id: Optional[str] = None,
        created_at: Optional[datetime] = None,
        db: Optional[AsyncSession] = None,
    ) -> MemoryEntry:
        """Embed and persist one memory entry."""

        parsed_category = MemoryCategory.parse(category)
        score = (
            clamp_importance(importance)
            if importance is not None
            else estimate_importance(content)
        )
        embedding = await self._embedder.embed(content)

        async with self._db_context(db) as active_db:
            record = await MemoryRepo(active_db).insert_entry(
                entry_id=uuid.uuid4().hex,
                campaign_id=campaign_id,
                user_id=user_id,
                content=content,
                category=parsed_category,
                importance=score,
                tags=[tag for tag in tags if tag],
                embedding=embedding,
                embedding_norm=vector_norm(embedding),
                embed_provider=self._embedder.provider,
                embed_model=self._embedder.model_name,
                created_at=created_at,
            )
            entry = to_memory_entry(record)

        logger.info(
            "Memory entry created id=%s campaign=%s category=%s importance=%s",
            entry.id,
            campaign_id,
            entry.category.value,
            entry.importance,
        )
        return entry

    async def get(self, memory_id: str) -> MemoryEntry:
        """Return an entry by id, including inactive ones."""

        async with self._db_context(None) as db:
            record = await MemoryRepo(db).get_entry(memory_id)
            if not record:
                raise MemoryNotFoundError(memory_id)
            return to_memory_entry(record)

    async def update(
        self,
        memory_id: str,
        *,
        content: Optional[str] = None,
        category: Optional[MemoryCategory | str] = None,
        importance: Optional[int] = None,
        tags: Optional[Sequence[str]] = None,
        is_active: Optional[bool] = None,
    ) -> MemoryEntry:
        """Patch an entry, re-embedding when the content changes."""

        embedding = await self._embedder.embed(content) if content is not None else None

        async with self._db_context(None) as db:
            repo = MemoryRepo(db)
            record = await repo.get_entry(memory_id)
            if not record:
                raise MemoryNotFoundError(memory_id)
            if content is not None and embedding is not None:
                record.content = content
                record.embedding_json = json.dumps(embedding, separators=(",", ":"))
                record.embedding_dim = len(embedding)
                record.embedding_norm = vector_norm(embedding)
                record.embed_provider = self._embedder.provider
                record.embed_model = self._embedder.model_name
            if category is not None:
                record.category = MemoryCategory.parse(category).value
            if importance is not None:
                record.importance = clamp_importance(importance)
            if tags is not None:
                record.tags_json = json.dumps([tag for tag in tags if tag])
            if is_active is not None:
                record.is_active = is_active
            record.updated_at = utc_now()
            await db.flush()
            entry = to_memory_entry(record)

        logger.info("Memory entry updated id=%s", memory_id)
        return entry

    async def deactivate(self, memory_id: str) -> None:
        """Soft-delete one entry."""

        async with self._db_context(None) as db:
            record = await MemoryRepo(db).set_active(memory_id, False)
            if not record:
                raise MemoryNotFoundError(memory_id)
        logger.info("Memory entry deactivated id=%s", memory_id)

    async def search(
        self,
        query: str,
        filters: Optional[MemoryFilters] = None,
        limit: int = DEFAULT_SEARCH_LIMIT,
        threshold: float = DEFAULT_SEARCH_THRESHOLD,
    ) -> list[SimilarityResult]:
        """Rank active entries by cosine similarity against the query."""

        cleaned = query.strip()
        if not cleaned or limit <= 0:
            return []

        query_embedding = await self._embedder.embed(cleaned)
        async with self._db_context(None) as db:
            results = await self._vector_store.search(
                db=db,
                filters=filters or MemoryFilters(),
                query_embedding=query_embedding,
                limit=limit,
                threshold=threshold,
            )

        logger.debug(
            "Memory search query=%r results=%d threshold=%.2f",
            cleaned[:50],
            len(results),
            threshold,
        )
        return results

    async def cleanup(self, campaign_id: str, keep_count: int, min_importance: int) -> int:
        """Deactivate everything outside the retained set; returns the count."""

        cutoff = utc_now() - RECENT_WINDOW
        async with self._db_context(None) as db:
            repo = MemoryRepo(db)
            keep_ids = await repo.select_retained_ids(
                campaign_id,
                min_importance=min_importance,
                recent_cutoff=cutoff,
                keep_count=keep_count,
            )
            deactivated = await repo.deactivate_except(campaign_id, keep_ids)

        logger.info(
            "Memory cleanup campaign=%s kept=%d deactivated=%d",
            campaign_id,
            len(keep_ids),
            deactivated,
        )
        return deactivated

    async def stats(self, campaign_id: str) -> MemoryStats:
        async with self._db_context(None) as db:
            rows = await MemoryRepo(db).category_importance_rows(campaign_id)

        by_category: dict[str, int] = {}
        active = 0
        importance_total = 0
        for category, importance, is_active in rows:
            if not is_active:
                continue
            active += 1
            importance_total += importance
            by_category[category] = by_category.get(category, 0) + 1

        return MemoryStats(
            total_memories=len(rows),
            active_memories=active,
            memories_by_category=by_category,
            average_importance=(importance_total / active) if active else 0.0,
        )

    async def list_campaign_memories(
        self,
        campaign_id: str,
        *,
        category: Optional[MemoryCategory | str] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[MemoryEntry], int]:
        parsed = MemoryCategory.parse(category) if category is not None else None
        async with self._db_context(None) as db:
            records, total = await MemoryRepo(db).list_campaign(
                campaign_id, category=parsed, limit=limit, offset=offset
            )
            return [to_memory_entry(record) for record in records], total

    async def bulk_import(self, items: Iterable[MemoryImportItem]) -> int:
        """Create several entries; individual failures are logged and skipped."""

        imported = 0
        total = 0
        for item in items:
            total += 1
            try:
                await self.create(
                    item.content,
                    item.category,
                    item.importance,
                    item.tags,
                    campaign_id=item.campaign_id,
                    user_id=item.user_id,
                )
            except Exception:  # noqa: BLE001
                logger.exception("Failed to import memory for campaign=%s", item.campaign_id)
                continue
            imported += 1

        logger.info("Bulk import completed: %d/%d successful", imported, total)
        return imported

    @asynccontextmanager
    async def _db_context(
        self, db: Optional[AsyncSession]
    ) -> AsyncIterator[AsyncSession]:
        if db is not None:
            yield db
            return
        async with self._sessionmaker() as local_db:
            async with local_db.begin():
                yield local_db


def get_memory_service(request: Request) -> MemoryService:
    """Dependency to access the memory service from app state."""

    return request.app.state.memory_service


def create_memory_service(
    *,
    sessionmaker: async_sessionmaker[AsyncSession],
    settings: Settings,
) -> MemoryService:
    """Build the memory service with the configured embedder."""

    return MemoryService(sessionmaker=sessionmaker, embedder=create_embedder(settings))


def create_embedder(settings: Settings) -> Embedder:
    provider = settings.embed_provider.strip().lower()
    if provider == "deterministic":
        model_name = settings.embed_model.strip() or "deterministic-v1"
        return DeterministicEmbedder(dimension=settings.embed_dim, model_name=model_name)

    if provider == "openai":
        api_key = settings.embed_openai_api_key.strip() or settings.llm_api_key.strip()
        if not api_key:
            logger.warning(
                "EMBED_PROVIDER=openai but no API key is configured; fallback to deterministic"
            )
            return DeterministicEmbedder(dimension=settings.embed_dim)
        model_name = settings.embed_model.strip()
        if not model_name or model_name == "deterministic-v1":
            model_name = "text-embedding-3-small"
        return OpenAIEmbedder(
            base_url=settings.openai_base_url,
            api_key=api_key,
            model_name=model_name,
            dimension=settings.embed_dim,
        )

    logger.warning("Unknown EMBED_PROVIDER=%s; fallback to deterministic", provider)
    return DeterministicEmbedder(dimension=settings.embed_dim)
