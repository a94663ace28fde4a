from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import Field

from gamemaster.schemas.common import APIModel


class NpcStateIn(APIModel):
    name: str = Field(min_length=1, max_length=100)
    role: str = Field(default="", max_length=100)
    status: list[str] = Field(default_factory=list)


class EnvironmentIn(APIModel):
    location: str = Field(default="", max_length=200)
    time_of_day: str = Field(default="", max_length=50)
    weather: Optional[str] = Field(default=None, max_length=100)


class SceneIn(APIModel):
    """Scene snapshot as sent by the client."""

    description: str = Field(default="", max_length=8000)
    player_status: list[str] = Field(default_factory=list)
    npcs: list[NpcStateIn] = Field(default_factory=list)
    environment: EnvironmentIn = Field(default_factory=EnvironmentIn)


class PreviousActionIn(APIModel):
    action: str
    result: str
    timestamp: datetime


class GameActionRequest(APIModel):
    """Payload for processing one player action."""

    player_id: str = Field(min_length=1, max_length=100)
    action: str = Field(default="", max_length=2000)
    scene: SceneIn
    previous_actions: list[PreviousActionIn] = Field(default_factory=list, max_length=20)


class DiceOutcomeOut(APIModel):
    roll: int
    modifier: int
    total: int
    success: bool
    critical_success: bool
    critical_failure: bool


class MemoryDraftOut(APIModel):
    category: str
    content: str
    metadata: dict[str, Any] = Field(default_factory=dict)


class PhaseTraceOut(APIModel):
    phase: str
    attempts: int
    used_fallback: bool
    error: Optional[str] = None


class NpcStateOut(APIModel):
    name: str
    role: str = ""
    status: list[str] = Field(default_factory=list)


class EnvironmentOut(APIModel):
    location: str = ""
    time_of_day: str = ""
    weather: Optional[str] = None


class SceneOut(APIModel):
    """Scene after the turn; unbounded since phases may extend the input."""

    description: str = ""
    player_status: list[str] = Field(default_factory=list)
    npcs: list[NpcStateOut] = Field(default_factory=list)
    environment: EnvironmentOut = Field(default_factory=EnvironmentOut)


class WorkflowOutcomeResponse(APIModel):
    """Result of one processed turn."""

    success: bool
    narrative: str
    scene: SceneOut
    suggested_actions: list[str]
    dice: Optional[DiceOutcomeOut] = None
    error: Optional[str] = None
    mood: Optional[str] = None
    session_status: Optional[str] = None
    new_memories: list[MemoryDraftOut] = Field(default_factory=list)
    trace: list[PhaseTraceOut] = Field(default_factory=list)
    degraded: bool = False
