from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status

from gamemaster.core.security import sanitize_text
from gamemaster.schemas.turn import (
    DiceOutcomeOut,
    GameActionRequest,
    MemoryDraftOut,
    PhaseTraceOut,
    SceneIn,
    SceneOut,
    WorkflowOutcomeResponse,
)
from gamemaster.services.turn_service import TurnOrchestrator, get_turn_orchestrator
from gamemaster.workflow.types import (
    Environment,
    NpcState,
    PreviousAction,
    SceneSnapshot,
    TurnContext,
    WorkflowOutcome,
)

router = APIRouter(prefix="/api/campaigns", tags=["turns"])

MAX_ACTION_LEN = 2000
MAX_CAMPAIGN_ID_LEN = 100


@router.post("/{campaign_id}/actions", response_model=WorkflowOutcomeResponse)
async def process_action(
    campaign_id: str,
    payload: GameActionRequest,
    orchestrator: TurnOrchestrator = Depends(get_turn_orchestrator),
) -> WorkflowOutcomeResponse:
    """Run one player action through the turn workflow."""

    campaign_id = campaign_id.strip()
    if not campaign_id or len(campaign_id) > MAX_CAMPAIGN_ID_LEN:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid campaign id")

    context = TurnContext(
        campaign_id=campaign_id,
        player_id=payload.player_id,
        action=sanitize_text(payload.action, MAX_ACTION_LEN),
        scene=_to_scene(payload.scene),
        history=tuple(
            PreviousAction(action=item.action, result=item.result, timestamp=item.timestamp)
            for item in payload.previous_actions
        ),
    )
    outcome = await orchestrator.process_game_action(context)
    return _to_response(outcome)


def _to_scene(scene: SceneIn) -> SceneSnapshot:
    return SceneSnapshot(
        description=scene.description,
        player_status=tuple(scene.player_status),
        npcs=tuple(
            NpcState(name=npc.name, role=npc.role, status=tuple(npc.status)) for npc in scene.npcs
        ),
        environment=Environment(
            location=scene.environment.location,
            time_of_day=scene.environment.time_of_day,
            weather=scene.environment.weather,
        ),
    )


def _to_response(outcome: WorkflowOutcome) -> WorkflowOutcomeResponse:
    return WorkflowOutcomeResponse(
        success=outcome.success,
        narrative=outcome.narrative,
        scene=SceneOut.model_validate(outcome.scene),
        suggested_actions=list(outcome.suggested_actions),
        dice=DiceOutcomeOut.model_validate(outcome.dice) if outcome.dice else None,
        error=outcome.error,
        mood=outcome.mood.value if outcome.mood else None,
        session_status=outcome.session_status.value if outcome.session_status else None,
        new_memories=[
            MemoryDraftOut(
                category=draft.category.value,
                content=draft.content,
                metadata=draft.metadata,
            )
            for draft in outcome.new_memories
        ],
        trace=[
            PhaseTraceOut(
                phase=step.phase.value,
                attempts=step.attempts,
                used_fallback=step.used_fallback,
                error=step.error,
            )
            for step in outcome.trace
        ],
        degraded=outcome.degraded,
    )
