from __future__ import annotations

import json
import logging
from dataclasses import asdict

from gamemaster.services.game_tools import DiceRoll, GameToolService, StatusTagChange
from gamemaster.utils.time_utils import utc_now
from gamemaster.workflow.phases.base import PhaseHandler
from gamemaster.workflow.types import (
    ActionAnalysis,
    ActionType,
    DiceOutcome,
    JudgmentResult,
    KnowledgeRecord,
    PhaseOutputs,
    StatusChange,
    ToolExecution,
    TurnContext,
    WorkflowPhase,
)

logger = logging.getLogger(__name__)

CHECK_DICE = "1d20"
DEFAULT_DIFFICULTY = 15
PLAYER_ENTITY = "player"

_TRIUMPH_TAGS = (
    StatusTagChange("empowered", "Feeling powerful", "buff", "add"),
    StatusTagChange("confident", "Confident in abilities", "buff", "add"),
    StatusTagChange("frightened", "Removed fear", "debuff", "remove"),
)
_SETBACK_TAGS = (
    StatusTagChange("vulnerable", "Exposed to attacks", "debuff", "add"),
    StatusTagChange("shaken", "Mentally disturbed", "debuff", "add"),
    StatusTagChange("confident", "Removed confidence", "buff", "remove"),
)


class JudgmentExecutionHandler(PhaseHandler[JudgmentResult]):
    """Applies the mechanical consequences of the analysed action."""

    phase = WorkflowPhase.JUDGMENT
    has_fallback = True

    def __init__(self, tools: GameToolService) -> None:
        self._tools = tools

    async def execute(self, context: TurnContext, prior: PhaseOutputs) -> JudgmentResult:
        analysis = self._require(prior.analysis, "analysis")
        executed: list[ToolExecution] = []
        status_changes: list[StatusChange] = []

        dice = None
        if analysis.requires_check:
            roll = await self._tools.roll_dice(
                CHECK_DICE, difficulty=analysis.difficulty or DEFAULT_DIFFICULTY
            )
            dice = _to_outcome(roll)
            executed.append(ToolExecution("roll_dice", _roll_payload(roll), True))

        tag_changes: tuple[StatusTagChange, ...] = ()
        if analysis.action_type is ActionType.COMBAT and dice is not None:
            if dice.success and dice.critical_success:
                tag_changes = _TRIUMPH_TAGS
            elif not dice.success and dice.critical_failure:
                tag_changes = _SETBACK_TAGS

        if tag_changes:
            updated = await self._tools.update_status_tags(PLAYER_ENTITY, tag_changes)
            status_changes.append(
                StatusChange(
                    target=PLAYER_ENTITY,
                    added=tuple(tag.name for tag in tag_changes if tag.action != "remove"),
                    removed=tuple(tag.name for tag in tag_changes if tag.action == "remove"),
                )
            )
            executed.append(
                ToolExecution(
                    "update_status_tags",
                    {"entity_id": PLAYER_ENTITY, "tags": [tag.name for tag in updated]},
                    True,
                )
            )

        knowledge, stored = await self._store_outcome(context, analysis, dice)
        executed.append(ToolExecution("store_knowledge", {"key": knowledge.key}, stored))

        return JudgmentResult(
            dice=dice,
            executed_tools=tuple(executed),
            status_changes=tuple(status_changes),
            knowledge_stored=(knowledge,) if stored else (),
        )

    def validate(self, result: JudgmentResult) -> bool:
        return isinstance(result.executed_tools, tuple) and isinstance(result.status_changes, tuple)

    def fallback(
        self, context: TurnContext, prior: PhaseOutputs, error: Exception
    ) -> JudgmentResult:
        return JudgmentResult()

    async def _store_outcome(
        self, context: TurnContext, analysis: ActionAnalysis, dice: DiceOutcome | None
    ) -> tuple[KnowledgeRecord, bool]:
        """Persist the action outcome; the roll and tags stand even if the write fails."""

        key = f"{analysis.action_type.value}_{int(utc_now().timestamp() * 1000)}"
        value = {
            "action": context.action,
            # No check means nothing could go wrong mechanically.
            "result": "success" if dice is None or dice.success else "failure",
            "consequences": list(analysis.possible_consequences),
        }
        record = KnowledgeRecord(key=key, value=value)
        try:
            await self._tools.store_knowledge(
                "game_action",
                key,
                json.dumps(value),
                tags=[analysis.action_type.value, "action_result"],
                relevance=0.8,
                campaign_id=context.campaign_id,
                user_id=context.player_id,
            )
        except Exception:  # noqa: BLE001
            logger.exception(
                "Failed to store action outcome %s for campaign=%s", key, context.campaign_id
            )
            return record, False
        logger.debug("Stored action outcome %s for campaign %s", key, context.campaign_id)
        return record, True


def _to_outcome(roll: DiceRoll) -> DiceOutcome:
    return DiceOutcome(
        roll=roll.rolls[0] if roll.rolls else roll.final_total,
        modifier=roll.modifier,
        total=roll.final_total,
        success=bool(roll.success),
        critical_success=bool(roll.critical_success),
        critical_failure=bool(roll.critical_failure),
    )


def _roll_payload(roll: DiceRoll) -> dict:
    payload = asdict(roll)
    payload["rolls"] = list(roll.rolls)
    return payload
