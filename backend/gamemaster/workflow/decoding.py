from __future__ import annotations

import json
import re
from typing import Any, Optional, TypeVar

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from gamemaster.workflow.errors import PhaseDecodeError
from gamemaster.workflow.types import (
    ActionAnalysis,
    ActionType,
    Mood,
    NarrativeResult,
    PhaseFailure,
    PhaseResult,
    PhaseSuccess,
)

MAX_SUGGESTIONS = 4

PayloadT = TypeVar("PayloadT", bound=BaseModel)


class PhasePayload(BaseModel):
    """Base model for JSON produced by the generation provider."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True, str_strip_whitespace=True)


class ActionAnalysisPayload(PhasePayload):
    action_type: ActionType = Field(validation_alias=AliasChoices("actionType", "action_type"))
    targets: list[str] = Field(default_factory=list)
    requires_check: bool = Field(
        default=False,
        validation_alias=AliasChoices("requiresCheck", "requires_check", "requiresDiceRoll"),
    )
    difficulty: Optional[int] = Field(default=None, ge=1, le=40)
    skills: list[str] = Field(default_factory=list)
    intent: str = Field(min_length=1)
    possible_consequences: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("possibleConsequences", "possible_consequences"),
    )

    @field_validator("action_type", mode="before")
    @classmethod
    def _lower_action_type(cls, value: Any) -> Any:
        return value.strip().lower() if isinstance(value, str) else value

    def to_domain(self) -> ActionAnalysis:
        return ActionAnalysis(
            action_type=self.action_type,
            targets=tuple(self.targets),
            requires_check=self.requires_check,
            intent=self.intent,
            difficulty=self.difficulty,
            skills=tuple(self.skills),
            possible_consequences=tuple(self.possible_consequences),
        )


class NarrativePayload(PhasePayload):
    narrative: str = Field(min_length=1)
    mood: Mood
    suggested_actions: list[str] = Field(
        validation_alias=AliasChoices("suggestedActions", "suggested_actions")
    )
    hidden_information: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("hiddenInformation", "hidden_information")
    )

    @field_validator("mood", mode="before")
    @classmethod
    def _lower_mood(cls, value: Any) -> Any:
        return value.strip().lower() if isinstance(value, str) else value

    @field_validator("suggested_actions")
    @classmethod
    def _trim_suggestions(cls, value: list[str]) -> list[str]:
        cleaned = [item.strip() for item in value if item.strip()]
        return cleaned[:MAX_SUGGESTIONS]

    def to_domain(self) -> NarrativeResult:
        return NarrativeResult(
            narrative=self.narrative,
            mood=self.mood,
            suggested_actions=tuple(self.suggested_actions),
            hidden_information=self.hidden_information or None,
        )


def decode_payload(content: str, model: type[PayloadT]) -> PhaseResult[PayloadT]:
    """Decode generated text into `model`, or a PhaseFailure carrying the reason."""

    candidate = _sanitize_generated_text(content)
    extracted = _extract_json_object(candidate)
    if not extracted:
        return PhaseFailure(PhaseDecodeError(f"No JSON object found for {model.__name__}"))
    try:
        payload = json.loads(extracted)
    except json.JSONDecodeError as exc:
        return PhaseFailure(PhaseDecodeError(f"Invalid JSON for {model.__name__}: {exc.msg}"))
    if not isinstance(payload, dict):
        return PhaseFailure(PhaseDecodeError(f"Expected a JSON object for {model.__name__}"))
    try:
        return PhaseSuccess(model.model_validate(payload))
    except ValidationError as exc:
        fields = ", ".join(".".join(str(part) for part in err["loc"]) for err in exc.errors())
        return PhaseFailure(PhaseDecodeError(f"{model.__name__} schema mismatch: {fields}"))


def _sanitize_generated_text(content: str) -> str:
    raw = str(content or "").strip()
    if raw.startswith("```"):
        raw = re.sub(r"^```(?:json)?\s*", "", raw, flags=re.IGNORECASE)
        raw = re.sub(r"\s*```$", "", raw)
    return raw.strip()


def _extract_json_object(content: str) -> str:
    start = content.find("{")
    end = content.rfind("}")
    if start == -1 or end == -1 or end <= start:
        return ""
    return content[start : end + 1].strip()
