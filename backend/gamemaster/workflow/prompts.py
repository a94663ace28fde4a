from __future__ import annotations

from typing import Iterable, List

from gamemaster.providers.base import PHASE_MARKER_PREFIX
from gamemaster.workflow.types import (
    ActionAnalysis,
    JudgmentResult,
    RetrievedMemory,
    SceneSnapshot,
    TurnContext,
    WorkflowPhase,
)


class PromptBuilder:
    """Compose the provider messages for the generative phases."""

    def __init__(
        self,
        max_history: int = 5,
        memory_max_snippets: int = 5,
        memory_max_chars: int = 2000,
    ) -> None:
        self._max_history = max(0, max_history)
        self._memory_max_snippets = max(1, memory_max_snippets)
        self._memory_max_chars = max(200, memory_max_chars)

    def build_analysis_messages(self, context: TurnContext) -> List[dict]:
        system_prompt = (
            "You are the rules engine of a tabletop role-playing game. "
            "Classify the player's action and decide whether it needs a dice check. "
            "Output JSON with actionType (combat|exploration|social|puzzle|other), "
            "targets (list of strings), requiresCheck (boolean), difficulty (integer 1-30 "
            "or null), skills (list), intent (string), and possibleConsequences (list).\n"
            f"{PHASE_MARKER_PREFIX} {WorkflowPhase.ANALYSIS.value}"
        )
        user_prompt = (
            f"Player action: {context.action}\n\n"
            "Current scene:\n"
            f"{self._scene_text(context.scene)}\n\n"
            "Recent actions:\n"
            f"{self._history_text(context)}\n\n"
            "Return JSON only."
        )
        return [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ]

    def build_narrative_messages(
        self,
        context: TurnContext,
        analysis: ActionAnalysis,
        judgment: JudgmentResult,
    ) -> List[dict]:
        system_prompt = (
            "You are the Game Master narrating a tabletop role-playing game. "
            "Write a vivid narrative of two or three paragraphs that weaves in the dice result. "
            "Output JSON with narrative (string), mood "
            "(tense|calm|exciting|mysterious|dangerous), suggestedActions (3-4 strings), "
            "and optionally hiddenInformation (string for the GM only).\n"
            f"{PHASE_MARKER_PREFIX} {WorkflowPhase.NARRATIVE.value}"
        )
        memory_section = self._build_memory_section(context.memories) or "(none)"
        user_prompt = (
            f"Player action: {context.action}\n"
            f"Action type: {analysis.action_type.value}\n"
            f"Dice result: {self._dice_text(judgment)}\n\n"
            "Current scene:\n"
            f"{self._scene_text(context.scene)}\n\n"
            "Recent memories:\n"
            f"{memory_section}\n\n"
            "Status changes:\n"
            f"{self._status_text(judgment)}\n\n"
            "Return JSON only."
        )
        return [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ]

    def _build_memory_section(self, memories: Iterable[RetrievedMemory]) -> str:
        lines: list[str] = []
        seen: set[str] = set()
        total_chars = 0
        for memory in memories:
            text = " ".join(memory.content.split())
            if not text:
                continue
            dedupe_key = text.casefold()
            if dedupe_key in seen:
                continue
            if total_chars + len(text) > self._memory_max_chars:
                break
            lines.append(f"- [{memory.category.value}] {text}")
            seen.add(dedupe_key)
            total_chars += len(text)
            if len(lines) >= self._memory_max_snippets:
                break
        return "\n".join(lines)

    def _history_text(self, context: TurnContext) -> str:
        if not self._max_history:
            return "(none)"
        recent = list(context.history)[-self._max_history :]
        if not recent:
            return "(none)"
        return "\n".join(f"- {item.action} -> {item.result}" for item in recent)

    @staticmethod
    def _scene_text(scene: SceneSnapshot) -> str:
        env = scene.environment
        weather = f", {env.weather}" if env.weather else ""
        npc_lines = [
            f"  - {npc.name} ({npc.role}): {', '.join(npc.status) or 'normal'}"
            for npc in scene.npcs
        ]
        npc_text = "\n".join(npc_lines) if npc_lines else "  (none)"
        return (
            f"{scene.description}\n"
            f"Location: {env.location} ({env.time_of_day}{weather})\n"
            f"Player status: {', '.join(scene.player_status) or 'normal'}\n"
            f"NPCs:\n{npc_text}"
        )

    @staticmethod
    def _dice_text(judgment: JudgmentResult) -> str:
        dice = judgment.dice
        if dice is None:
            return "No roll required"
        verdict = "Success" if dice.success else "Failure"
        if dice.critical_success:
            verdict = "Critical success"
        elif dice.critical_failure:
            verdict = "Critical failure"
        return f"{verdict} ({dice.total})"

    @staticmethod
    def _status_text(judgment: JudgmentResult) -> str:
        lines = [
            f"{change.target}: +[{', '.join(change.added)}] -[{', '.join(change.removed)}]"
            for change in judgment.status_changes
        ]
        return "\n".join(lines) if lines else "(none)"
