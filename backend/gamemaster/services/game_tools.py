from __future__ import annotations

import logging
import math
import random
import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Literal, Optional, Sequence

from fastapi import Request

from gamemaster.memory.types import MemoryCategory, MemoryFilters
from gamemaster.services.memory_service import MemoryService
from gamemaster.utils.time_utils import utc_now

logger = logging.getLogger(__name__)

TagType = Literal["buff", "debuff", "condition", "injury", "attribute"]
TagAction = Literal["add", "update", "remove"]

_DICE_PATTERN = re.compile(r"^\s*(\d*)d(\d*)\s*(?:([+-])\s*(\d+))?\s*$", re.IGNORECASE)
_MAX_DICE = 100
_MAX_SIDES = 1000

KNOWLEDGE_SEARCH_THRESHOLD = 0.7

_KNOWLEDGE_CATEGORIES = {
    "player": MemoryCategory.CHARACTER,
    "npc": MemoryCategory.CHARACTER,
    "character": MemoryCategory.CHARACTER,
    "conversation": MemoryCategory.EVENT,
    "game_action": MemoryCategory.EVENT,
    "event": MemoryCategory.EVENT,
    "location": MemoryCategory.LOCATION,
    "rule": MemoryCategory.RULE,
    "preference": MemoryCategory.PREFERENCE,
    "story_beat": MemoryCategory.STORY_BEAT,
    "general": MemoryCategory.GENERAL,
}


class DiceExpressionError(ValueError):
    """Raised for dice notation that does not match `<count>d<sides>[+|-<mod>]`."""


@dataclass(frozen=True)
class DiceRoll:
    """Result of one dice expression."""

    expression: str
    rolls: tuple[int, ...]
    total: int
    modifier: int
    final_total: int
    success: Optional[bool] = None
    critical_success: Optional[bool] = None
    critical_failure: Optional[bool] = None


@dataclass(frozen=True)
class StatusTagChange:
    """One requested mutation of an entity's status tags."""

    name: str
    description: str
    type: TagType
    action: TagAction
    value: Optional[float] = None
    duration: Optional[int] = None


@dataclass
class StatusTag:
    """Status tag currently attached to an entity."""

    id: str
    entity_id: str
    name: str
    description: str
    type: TagType
    created_at: datetime
    updated_at: datetime
    value: Optional[float] = None
    duration: Optional[int] = None


@dataclass(frozen=True)
class KnowledgeEntry:
    """Memory entry viewed through the knowledge-base vocabulary."""

    id: str
    category: str
    title: str
    content: str
    tags: tuple[str, ...]
    relevance: float
    created_at: datetime
    updated_at: datetime


def parse_dice_expression(expression: str) -> tuple[int, int, int]:
    """Return (count, sides, modifier) for a dice expression."""

    match = _DICE_PATTERN.match(expression or "")
    if not match:
        raise DiceExpressionError(f"Invalid dice notation: {expression!r}")
    count = int(match.group(1)) if match.group(1) else 1
    sides = int(match.group(2)) if match.group(2) else 6
    modifier = int(match.group(4)) if match.group(4) else 0
    if match.group(3) == "-":
        modifier = -modifier
    if not 1 <= count <= _MAX_DICE:
        raise DiceExpressionError(f"Dice count must be between 1 and {_MAX_DICE}")
    if not 2 <= sides <= _MAX_SIDES:
        raise DiceExpressionError(f"Dice sides must be between 2 and {_MAX_SIDES}")
    return count, sides, modifier


class GameToolService:
    """Named side-effecting operations the workflow phases call."""

    def __init__(self, memory_service: MemoryService, rng: Optional[random.Random] = None) -> None:
        self._memory_service = memory_service
        self._rng = rng or random.Random()
        self._status_tags: dict[str, StatusTag] = {}

    async def roll_dice(
        self,
        expression: str,
        difficulty: Optional[int] = None,
        advantage: bool = False,
        disadvantage: bool = False,
    ) -> DiceRoll:
        count, sides, modifier = parse_dice_expression(expression)
        rolls = [self._rng.randint(1, sides) for _ in range(count)]

        single_d20 = count == 1 and sides == 20
        if single_d20 and (advantage or disadvantage):
            # Advantage wins when both are requested.
            second = self._rng.randint(1, sides)
            kept = max(rolls[0], second) if advantage else min(rolls[0], second)
            rolls = [kept]

        total = sum(rolls)
        final_total = total + modifier
        success = critical_success = critical_failure = None
        if difficulty is not None:
            success = final_total >= difficulty
            if single_d20:
                critical_success = rolls[0] == 20
                critical_failure = rolls[0] == 1

        result = DiceRoll(
            expression=expression,
            rolls=tuple(rolls),
            total=total,
            modifier=modifier,
            final_total=final_total,
            success=success,
            critical_success=critical_success,
            critical_failure=critical_failure,
        )
        logger.info("Dice rolled %s -> %s (final %d)", expression, list(rolls), final_total)
        return result

    async def update_status_tags(
        self, entity_id: str, tags: Sequence[StatusTagChange]
    ) -> list[StatusTag]:
        """Apply tag mutations; returns the records that were added or updated."""

        updated: list[StatusTag] = []
        now = utc_now()
        for change in tags:
            tag_id = f"{entity_id}-{change.name}"
            if change.action == "remove":
                self._status_tags.pop(tag_id, None)
                logger.info("Status tag removed: %s for entity %s", change.name, entity_id)
                continue

            existing = self._status_tags.get(tag_id)
            tag = StatusTag(
                id=tag_id,
                entity_id=entity_id,
                name=change.name,
                description=change.description,
                type=change.type,
                value=change.value,
                duration=change.duration,
                created_at=existing.created_at if existing else now,
                updated_at=now,
            )
            self._status_tags[tag_id] = tag
            updated.append(tag)
            logger.info("Status tag %s: %s for entity %s", change.action, change.name, entity_id)
        return updated

    async def get_status_tags(self, entity_id: str) -> list[StatusTag]:
        return [tag for tag in self._status_tags.values() if tag.entity_id == entity_id]

    async def clear_expired_tags(self) -> int:
        now = utc_now()
        expired = [
            tag_id
            for tag_id, tag in self._status_tags.items()
            if tag.duration and tag.duration > 0
            and now > tag.created_at + timedelta(seconds=tag.duration)
        ]
        for tag_id in expired:
            tag = self._status_tags.pop(tag_id, None)
            if tag:
                logger.info("Expired status tag removed: %s", tag.name)
        return len(expired)

    async def store_knowledge(
        self,
        category: str,
        title: str,
        content: str,
        tags: Sequence[str] = (),
        relevance: float = 1.0,
        *,
        campaign_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> KnowledgeEntry:
        memory_category = _KNOWLEDGE_CATEGORIES.get(category.strip().lower(), MemoryCategory.GENERAL)
        entry = await self._memory_service.create(
            f"{title}: {content}",
            memory_category,
            importance=math.ceil(max(0.0, min(1.0, relevance)) * 10),
            tags=tags,
            campaign_id=campaign_id,
            user_id=user_id,
        )
        logger.info("Knowledge stored: %s in category %s", title, category)
        return KnowledgeEntry(
            id=entry.id,
            category=category,
            title=title,
            content=content,
            tags=entry.tags,
            relevance=relevance,
            created_at=entry.created_at,
            updated_at=entry.updated_at,
        )

    async def search_knowledge(
        self,
        query: str,
        *,
        category: Optional[str] = None,
        limit: int = 10,
        campaign_id: Optional[str] = None,
    ) -> list[KnowledgeEntry]:
        memory_category = (
            _KNOWLEDGE_CATEGORIES.get(category.strip().lower()) if category else None
        )
        results = await self._memory_service.search(
            query,
            MemoryFilters(campaign_id=campaign_id, category=memory_category),
            limit=limit,
            threshold=KNOWLEDGE_SEARCH_THRESHOLD,
        )
        entries: list[KnowledgeEntry] = []
        for result in results:
            title, _, body = result.content.partition(":")
            entries.append(
                KnowledgeEntry(
                    id=result.id,
                    category=result.category.value.lower(),
                    title=title.strip() or "Unknown",
                    content=body.strip() or result.content,
                    tags=result.tags,
                    relevance=result.similarity,
                    created_at=result.created_at,
                    updated_at=result.created_at,
                )
            )
        return entries


def get_game_tool_service(request: Request) -> GameToolService:
    """Dependency to access the tool invoker from app state."""

    return request.app.state.game_tools
