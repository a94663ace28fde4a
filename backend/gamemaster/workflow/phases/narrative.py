from __future__ import annotations

from gamemaster.services.provider_service import ProviderService
from gamemaster.workflow.decoding import NarrativePayload, decode_payload
from gamemaster.workflow.phases.base import PhaseHandler
from gamemaster.workflow.prompts import PromptBuilder
from gamemaster.workflow.types import (
    Mood,
    NarrativeResult,
    PhaseOutputs,
    TurnContext,
    WorkflowPhase,
)

FALLBACK_SUGGESTIONS = (
    "Look around carefully",
    "Try a different approach",
    "Ask for more information",
    "Wait and observe",
)


class NarrativeGenerationHandler(PhaseHandler[NarrativeResult]):
    """Asks the generation provider for the player-facing narrative."""

    phase = WorkflowPhase.NARRATIVE
    has_fallback = True

    def __init__(self, provider: ProviderService, prompts: PromptBuilder) -> None:
        self._provider = provider
        self._prompts = prompts

    async def execute(self, context: TurnContext, prior: PhaseOutputs) -> NarrativeResult:
        analysis = self._require(prior.analysis, "analysis")
        judgment = self._require(prior.judgment, "judgment")
        messages = self._prompts.build_narrative_messages(context, analysis, judgment)
        result = await self._provider.generate(messages)
        return decode_payload(result.content, NarrativePayload).unwrap().to_domain()

    def validate(self, result: NarrativeResult) -> bool:
        return (
            isinstance(result.narrative, str)
            and bool(result.narrative.strip())
            and isinstance(result.mood, Mood)
            and isinstance(result.suggested_actions, tuple)
        )

    def fallback(
        self, context: TurnContext, prior: PhaseOutputs, error: Exception
    ) -> NarrativeResult:
        action = context.action.strip()
        if action:
            narrative = (
                f"You attempt to {action}. "
                "The outcome remains uncertain as events unfold around you."
            )
        else:
            narrative = (
                "You hesitate, weighing your options. "
                "The outcome remains uncertain as events unfold around you."
            )
        return NarrativeResult(
            narrative=narrative,
            mood=Mood.MYSTERIOUS,
            suggested_actions=FALLBACK_SUGGESTIONS,
        )
