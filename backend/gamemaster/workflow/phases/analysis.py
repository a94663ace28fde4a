from __future__ import annotations

import logging

from gamemaster.services.provider_service import ProviderService
from gamemaster.workflow.decoding import ActionAnalysisPayload, decode_payload
from gamemaster.workflow.phases.base import PhaseHandler
from gamemaster.workflow.prompts import PromptBuilder
from gamemaster.workflow.types import (
    ActionAnalysis,
    ActionType,
    PhaseOutputs,
    TurnContext,
    WorkflowPhase,
)

logger = logging.getLogger(__name__)

_COMBAT_WORDS = ("attack", "fight")
_SOCIAL_WORDS = ("talk", "speak", "ask")


class ActionAnalysisHandler(PhaseHandler[ActionAnalysis]):
    """Classifies the player's action through the generation provider."""

    phase = WorkflowPhase.ANALYSIS
    has_fallback = True

    def __init__(self, provider: ProviderService, prompts: PromptBuilder) -> None:
        self._provider = provider
        self._prompts = prompts

    async def execute(self, context: TurnContext, prior: PhaseOutputs) -> ActionAnalysis:
        messages = self._prompts.build_analysis_messages(context)
        result = await self._provider.generate(messages)
        payload = decode_payload(result.content, ActionAnalysisPayload).unwrap()
        return payload.to_domain()

    def validate(self, result: ActionAnalysis) -> bool:
        return (
            isinstance(result.action_type, ActionType)
            and bool(result.intent and result.intent.strip())
            and isinstance(result.targets, tuple)
        )

    def fallback(
        self, context: TurnContext, prior: PhaseOutputs, error: Exception
    ) -> ActionAnalysis:
        lowered = context.action.lower()
        is_attack = any(word in lowered for word in _COMBAT_WORDS)
        is_talk = any(word in lowered for word in _SOCIAL_WORDS)
        if is_attack:
            action_type = ActionType.COMBAT
        elif is_talk:
            action_type = ActionType.SOCIAL
        else:
            action_type = ActionType.EXPLORATION
        logger.info("Keyword analysis for action classified as %s", action_type.value)
        return ActionAnalysis(
            action_type=action_type,
            targets=(),
            requires_check=is_attack,
            intent=f"Perform action: {context.action}",
            difficulty=15 if is_attack else 10,
            possible_consequences=("Success", "Failure"),
        )
