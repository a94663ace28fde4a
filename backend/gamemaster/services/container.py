from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gamemaster.core.config import Settings
from gamemaster.services.game_tools import GameToolService
from gamemaster.services.memory_service import MemoryService, create_memory_service
from gamemaster.services.provider_service import ProviderService, create_provider_service
from gamemaster.services.turn_service import TurnOrchestrator
from gamemaster.workflow.engine import WorkflowEngine, WorkflowOptions
from gamemaster.workflow.phases.analysis import ActionAnalysisHandler
from gamemaster.workflow.phases.judgment import JudgmentExecutionHandler
from gamemaster.workflow.phases.narrative import NarrativeGenerationHandler
from gamemaster.workflow.phases.state_update import StateUpdateHandler
from gamemaster.workflow.prompts import PromptBuilder


@dataclass
class ServiceContainer:
    """Every long-lived service of the process, built once at start-up."""

    memory_service: MemoryService
    provider_service: ProviderService
    game_tools: GameToolService
    workflow_engine: WorkflowEngine
    turn_orchestrator: TurnOrchestrator


def build_workflow_engine(
    settings: Settings,
    provider_service: ProviderService,
    game_tools: GameToolService,
) -> WorkflowEngine:
    prompts = PromptBuilder(memory_max_snippets=settings.memory_context_limit)
    handlers = (
        ActionAnalysisHandler(provider_service, prompts),
        JudgmentExecutionHandler(game_tools),
        NarrativeGenerationHandler(provider_service, prompts),
        StateUpdateHandler(),
    )
    return WorkflowEngine(handlers, WorkflowOptions.from_settings(settings))


def build_services(
    settings: Settings,
    sessionmaker: async_sessionmaker[AsyncSession],
    provider_service: Optional[ProviderService] = None,
) -> ServiceContainer:
    """Wire the services together; `provider_service` may be swapped in tests."""

    memory_service = create_memory_service(sessionmaker=sessionmaker, settings=settings)
    provider_service = provider_service or create_provider_service(settings)
    game_tools = GameToolService(memory_service, rng=random.Random(settings.dice_seed))
    engine = build_workflow_engine(settings, provider_service, game_tools)
    orchestrator = TurnOrchestrator(
        engine,
        memory_service,
        context_limit=settings.memory_context_limit,
        context_threshold=settings.memory_context_threshold,
        auto_cleanup=settings.memory_auto_cleanup,
        cleanup_keep_count=settings.memory_cleanup_keep_count,
        cleanup_min_importance=settings.memory_cleanup_min_importance,
    )
    return ServiceContainer(
        memory_service=memory_service,
        provider_service=provider_service,
        game_tools=game_tools,
        workflow_engine=engine,
        turn_orchestrator=orchestrator,
    )
