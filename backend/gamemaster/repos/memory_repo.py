from __future__ import annotations

import json
from datetime import datetime
from typing import Optional, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from gamemaster.db.models import MemoryEntryRecord
from gamemaster.memory.types import MemoryCategory, MemoryEntry, MemoryFilters
from gamemaster.utils.time_utils import ensure_utc, utc_now


class MemoryRepo:
    """Repository for memory entry persistence."""

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def insert_entry(
        self,
        *,
        entry_id: str,
        campaign_id: Optional[str],
        user_id: Optional[str],
        content: str,
        category: MemoryCategory,
        importance: int,
        tags: Sequence[str],
        embedding: Sequence[float],
        embedding_norm: float,
        embed_provider: str,
        embed_model: str,
        created_at: Optional[datetime] = None,
    ) -> MemoryEntryRecord:
        """Insert one active memory entry."""

        timestamp = created_at or utc_now()
        record = MemoryEntryRecord(
            id=entry_id,
            campaign_id=campaign_id,
            user_id=user_id,
            content=content,
            category=category.value,
            importance=importance,
            tags_json=json.dumps(list(tags)),
            embedding_json=json.dumps([float(value) for value in embedding], separators=(",", ":")),
            embedding_dim=len(embedding),
            embedding_norm=embedding_norm,
            embed_provider=embed_provider,
            embed_model=embed_model,
            is_active=True,
            created_at=timestamp,
            updated_at=timestamp,
        )
        self._db.add(record)
        await self._db.flush()
        return record

    async def get_entry(self, entry_id: str) -> Optional[MemoryEntryRecord]:
        """Fetch an entry by id, active or not."""

        result = await self._db.execute(
            select(MemoryEntryRecord).where(MemoryEntryRecord.id == entry_id)
        )
        return result.scalar_one_or_none()

    async def list_active(self, filters: MemoryFilters) -> list[MemoryEntryRecord]:
        """List every active entry matching the filters."""

        stmt = select(MemoryEntryRecord).where(MemoryEntryRecord.is_active.is_(True))
        if filters.campaign_id is not None:
            stmt = stmt.where(MemoryEntryRecord.campaign_id == filters.campaign_id)
        if filters.user_id is not None:
            stmt = stmt.where(MemoryEntryRecord.user_id == filters.user_id)
        if filters.category is not None:
            stmt = stmt.where(MemoryEntryRecord.category == filters.category.value)
        if filters.min_importance is not None:
            stmt = stmt.where(MemoryEntryRecord.importance >= filters.min_importance)
        stmt = stmt.order_by(MemoryEntryRecord.created_at.desc())
        result = await self._db.execute(stmt)
        return list(result.scalars())

    async def list_campaign(
        self,
        campaign_id: str,
        *,
        category: Optional[MemoryCategory],
        limit: int,
        offset: int,
    ) -> tuple[list[MemoryEntryRecord], int]:
        """Page through active entries for a campaign, newest first."""

        conditions = [
            MemoryEntryRecord.campaign_id == campaign_id,
            MemoryEntryRecord.is_active.is_(True),
        ]
        if category is not None:
            conditions.append(MemoryEntryRecord.category == category.value)

        rows = await self._db.execute(
            select(MemoryEntryRecord)
            .where(*conditions)
            .order_by(MemoryEntryRecord.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        total = await self._db.execute(
            select(func.count()).select_from(MemoryEntryRecord).where(*conditions)
        )
        return list(rows.scalars()), int(total.scalar_one())

    async def set_active(self, entry_id: str, is_active: bool) -> Optional[MemoryEntryRecord]:
        record = await self.get_entry(entry_id)
        if not record:
            return None
        record.is_active = is_active
        record.updated_at = utc_now()
        await self._db.flush()
        return record

    async def select_retained_ids(
        self,
        campaign_id: str,
        *,
        min_importance: int,
        recent_cutoff: datetime,
        keep_count: int,
    ) -> list[str]:
        """Ids of protected entries that survive a cleanup, best first."""

        if keep_count <= 0:
            return []
        result = await self._db.execute(
            select(MemoryEntryRecord.id)
            .where(
                MemoryEntryRecord.campaign_id == campaign_id,
                MemoryEntryRecord.is_active.is_(True),
                (MemoryEntryRecord.importance >= min_importance)
                | (MemoryEntryRecord.created_at >= recent_cutoff),
            )
            .order_by(MemoryEntryRecord.importance.desc(), MemoryEntryRecord.created_at.desc())
            .limit(keep_count)
        )
        return list(result.scalars())

    async def deactivate_except(self, campaign_id: str, keep_ids: Sequence[str]) -> int:
        """Soft-delete active entries for the campaign not listed in keep_ids."""

        stmt = (
            update(MemoryEntryRecord)
            .where(
                MemoryEntryRecord.campaign_id == campaign_id,
                MemoryEntryRecord.is_active.is_(True),
            )
            .values(is_active=False, updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        if keep_ids:
            stmt = stmt.where(MemoryEntryRecord.id.not_in(list(keep_ids)))
        result = await self._db.execute(stmt)
        return int(result.rowcount or 0)

    async def category_importance_rows(self, campaign_id: str) -> list[tuple[str, int, bool]]:
        """(category, importance, is_active) for every entry of the campaign."""

        result = await self._db.execute(
            select(
                MemoryEntryRecord.category,
                MemoryEntryRecord.importance,
                MemoryEntryRecord.is_active,
            ).where(MemoryEntryRecord.campaign_id == campaign_id)
        )
        return [(row[0], int(row[1]), bool(row[2])) for row in result.all()]


def to_memory_entry(record: MemoryEntryRecord) -> MemoryEntry:
    """Convert an ORM row into the immutable domain entry."""

    return MemoryEntry(
        id=record.id,
        campaign_id=record.campaign_id,
        user_id=record.user_id,
        content=record.content,
        category=MemoryCategory.parse(record.category),
        importance=record.importance,
        tags=tuple(json.loads(record.tags_json or "[]")),
        embedding=tuple(float(value) for value in json.loads(record.embedding_json)),
        is_active=record.is_active,
        created_at=ensure_utc(record.created_at),
        updated_at=ensure_utc(record.updated_at),
    )
