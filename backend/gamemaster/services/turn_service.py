from __future__ import annotations

import logging

from fastapi import Request

from gamemaster.memory.types import MemoryCategory, MemoryFilters
from gamemaster.services.memory_service import MemoryService
from gamemaster.workflow.engine import WorkflowEngine
from gamemaster.workflow.types import RetrievedMemory, TurnContext, WorkflowOutcome

logger = logging.getLogger(__name__)

TURN_MEMORY_IMPORTANCE = 5


class TurnOrchestrator:
    """Wraps a workflow run with memory retrieval and the turn summary write."""

    def __init__(
        self,
        engine: WorkflowEngine,
        memory_service: MemoryService,
        *,
        context_limit: int = 5,
        context_threshold: float = 0.1,
        auto_cleanup: bool = False,
        cleanup_keep_count: int = 200,
        cleanup_min_importance: int = 5,
    ) -> None:
        self._engine = engine
        self._memory_service = memory_service
        self._context_limit = context_limit
        self._context_threshold = context_threshold
        self._auto_cleanup = auto_cleanup
        self._cleanup_keep_count = cleanup_keep_count
        self._cleanup_min_importance = cleanup_min_importance

    async def process_game_action(self, context: TurnContext) -> WorkflowOutcome:
        """Run one turn. Never raises for workflow or memory failures."""

        memories = await self._retrieve_memories(context)
        outcome = await self._engine.run(context.with_memories(memories))
        await self._record_turn(context, outcome)
        logger.info(
            "Turn processed campaign=%s player=%s success=%s degraded=%s",
            context.campaign_id,
            context.player_id,
            outcome.success,
            outcome.degraded,
        )
        return outcome

    async def _retrieve_memories(self, context: TurnContext) -> tuple[RetrievedMemory, ...]:
        if not context.action.strip():
            return ()
        try:
            results = await self._memory_service.search(
                context.action,
                MemoryFilters(campaign_id=context.campaign_id),
                limit=self._context_limit,
                threshold=self._context_threshold,
            )
        except Exception:  # noqa: BLE001
            logger.exception("Memory context search failed for campaign=%s", context.campaign_id)
            return ()
        return tuple(
            RetrievedMemory(
                category=result.category,
                content=result.content,
                similarity=result.similarity,
                metadata={"id": result.id, "importance": result.importance},
            )
            for result in results
        )

    async def _record_turn(self, context: TurnContext, outcome: WorkflowOutcome) -> None:
        summary = f"Player action: {context.action}\nOutcome: {outcome.narrative}"
        tags = ["turn", "success" if outcome.success else "failure"]
        try:
            await self._memory_service.create(
                summary,
                MemoryCategory.EVENT,
                importance=TURN_MEMORY_IMPORTANCE,
                tags=tags,
                campaign_id=context.campaign_id,
                user_id=context.player_id,
            )
            if outcome.success and self._auto_cleanup:
                await self._memory_service.cleanup(
                    context.campaign_id,
                    keep_count=self._cleanup_keep_count,
                    min_importance=self._cleanup_min_importance,
                )
        except Exception:  # noqa: BLE001
            logger.exception("Failed to record turn memory for campaign=%s", context.campaign_id)


def get_turn_orchestrator(request: Request) -> TurnOrchestrator:
    """Dependency to access the turn orchestrator from app state."""

    return request.app.state.turn_orchestrator

