from __future__ import annotations

from dataclasses import replace
from typing import Iterable

from gamemaster.memory.types import MemoryCategory
from gamemaster.utils.time_utils import utc_now
from gamemaster.workflow.phases.base import PhaseHandler
from gamemaster.workflow.types import (
    ActionType,
    MemoryDraft,
    Mood,
    NarrativeResult,
    PhaseOutputs,
    SceneSnapshot,
    SessionStatus,
    StateUpdateResult,
    StatusChange,
    TurnContext,
    WorkflowPhase,
)

EXPLORED_MARKER = " (explored)"
COMPLETION_PHRASES = ("quest complete", "mission accomplished")


class StateUpdateHandler(PhaseHandler[StateUpdateResult]):
    """Folds the turn's consequences into a new scene snapshot."""

    phase = WorkflowPhase.STATE_UPDATE
    has_fallback = True

    async def execute(self, context: TurnContext, prior: PhaseOutputs) -> StateUpdateResult:
        analysis = self._require(prior.analysis, "analysis")
        judgment = self._require(prior.judgment, "judgment")
        narrative = self._require(prior.narrative, "narrative")

        scene = apply_status_changes(context.scene, judgment.status_changes)
        succeeded = judgment.dice.success if judgment.dice is not None else None
        if analysis.action_type is ActionType.EXPLORATION and succeeded:
            scene = replace(scene, description=scene.description + EXPLORED_MARKER)

        timestamp = utc_now().isoformat()
        drafts = (
            MemoryDraft(
                category=MemoryCategory.EVENT,
                content=f"Player action: {context.action}",
                metadata={
                    "action_type": analysis.action_type.value,
                    "success": True if succeeded is None else succeeded,
                    "timestamp": timestamp,
                },
            ),
            MemoryDraft(
                category=MemoryCategory.STORY_BEAT,
                content=narrative.narrative,
                metadata={"mood": narrative.mood.value, "timestamp": timestamp},
            ),
        )
        return StateUpdateResult(
            scene=scene,
            session_status=determine_session_status(narrative),
            new_memories=drafts,
        )

    def validate(self, result: StateUpdateResult) -> bool:
        return (
            isinstance(result.scene, SceneSnapshot)
            and isinstance(result.session_status, SessionStatus)
            and isinstance(result.new_memories, tuple)
        )

    def fallback(
        self, context: TurnContext, prior: PhaseOutputs, error: Exception
    ) -> StateUpdateResult:
        return StateUpdateResult(scene=context.scene, session_status=SessionStatus.ACTIVE)


def apply_status_changes(
    scene: SceneSnapshot, changes: Iterable[StatusChange]
) -> SceneSnapshot:
    """Return a new scene with each change folded into its target's status list."""

    player_status = scene.player_status
    npcs = list(scene.npcs)
    for change in changes:
        if change.target == "player":
            player_status = _fold(player_status, change)
            continue
        for index, npc in enumerate(npcs):
            if npc.name == change.target:
                npcs[index] = replace(npc, status=_fold(npc.status, change))
    return replace(scene, player_status=player_status, npcs=tuple(npcs))


def determine_session_status(narrative: NarrativeResult) -> SessionStatus:
    text = narrative.narrative.lower()
    if any(phrase in text for phrase in COMPLETION_PHRASES):
        return SessionStatus.COMPLETED
    if narrative.mood is Mood.CALM and any(
        "rest" in suggestion.lower() for suggestion in narrative.suggested_actions
    ):
        return SessionStatus.PAUSED
    return SessionStatus.ACTIVE


def _fold(status: tuple[str, ...], change: StatusChange) -> tuple[str, ...]:
    removed = set(change.removed)
    kept = [item for item in status if item not in removed]
    for item in change.added:
        if item not in kept:
            kept.append(item)
    return tuple(kept)
