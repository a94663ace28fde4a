from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Generic, Optional, TypeVar, Union

from gamemaster.memory.types import MemoryCategory

T = TypeVar("T")


class ActionType(str, Enum):
    COMBAT = "combat"
    EXPLORATION = "exploration"
    SOCIAL = "social"
    PUZZLE = "puzzle"
    OTHER = "other"


class Mood(str, Enum):
    TENSE = "tense"
    CALM = "calm"
    EXCITING = "exciting"
    MYSTERIOUS = "mysterious"
    DANGEROUS = "dangerous"


class SessionStatus(str, Enum):
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    COMPLETED = "COMPLETED"


class WorkflowPhase(str, Enum):
    """The four fixed steps of a turn, in execution order."""

    ANALYSIS = "action_analysis"
    JUDGMENT = "judgment_execution"
    NARRATIVE = "narrative_generation"
    STATE_UPDATE = "state_update"


class WorkflowState(str, Enum):
    ANALYSIS = "ANALYSIS"
    JUDGMENT = "JUDGMENT"
    NARRATIVE = "NARRATIVE"
    STATE_UPDATE = "STATE_UPDATE"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


PHASE_ORDER: tuple[WorkflowPhase, ...] = (
    WorkflowPhase.ANALYSIS,
    WorkflowPhase.JUDGMENT,
    WorkflowPhase.NARRATIVE,
    WorkflowPhase.STATE_UPDATE,
)

PHASE_STATES: dict[WorkflowPhase, WorkflowState] = {
    WorkflowPhase.ANALYSIS: WorkflowState.ANALYSIS,
    WorkflowPhase.JUDGMENT: WorkflowState.JUDGMENT,
    WorkflowPhase.NARRATIVE: WorkflowState.NARRATIVE,
    WorkflowPhase.STATE_UPDATE: WorkflowState.STATE_UPDATE,
}


@dataclass(frozen=True)
class NpcState:
    name: str
    role: str
    status: tuple[str, ...] = ()


@dataclass(frozen=True)
class Environment:
    location: str
    time_of_day: str
    weather: Optional[str] = None


@dataclass(frozen=True)
class SceneSnapshot:
    """Scene as seen by one turn. Phases derive new snapshots with `replace`."""

    description: str
    player_status: tuple[str, ...]
    npcs: tuple[NpcState, ...]
    environment: Environment


@dataclass(frozen=True)
class PreviousAction:
    action: str
    result: str
    timestamp: datetime


@dataclass(frozen=True)
class RetrievedMemory:
    category: MemoryCategory
    content: str
    similarity: float
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class TurnContext:
    """Immutable input to one workflow run."""

    campaign_id: str
    player_id: str
    action: str
    scene: SceneSnapshot
    history: tuple[PreviousAction, ...] = ()
    memories: tuple[RetrievedMemory, ...] = ()

    def with_memories(self, memories: tuple[RetrievedMemory, ...]) -> "TurnContext":
        return replace(self, memories=memories)


@dataclass(frozen=True)
class PhaseSuccess(Generic[T]):
    value: T

    @property
    def ok(self) -> bool:
        return True

    def unwrap(self) -> T:
        return self.value


@dataclass(frozen=True)
class PhaseFailure:
    error: Exception

    @property
    def ok(self) -> bool:
        return False

    def unwrap(self) -> Any:
        raise self.error


PhaseResult = Union[PhaseSuccess[T], PhaseFailure]


@dataclass(frozen=True)
class ActionAnalysis:
    action_type: ActionType
    targets: tuple[str, ...]
    requires_check: bool
    intent: str
    difficulty: Optional[int] = None
    skills: tuple[str, ...] = ()
    possible_consequences: tuple[str, ...] = ()


@dataclass(frozen=True)
class DiceOutcome:
    """Mechanical check result; `roll` is the natural die value."""

    roll: int
    modifier: int
    total: int
    success: bool
    critical_success: bool = False
    critical_failure: bool = False


@dataclass(frozen=True)
class ToolExecution:
    tool: str
    result: dict[str, Any]
    success: bool


@dataclass(frozen=True)
class StatusChange:
    target: str
    added: tuple[str, ...] = ()
    removed: tuple[str, ...] = ()


@dataclass(frozen=True)
class KnowledgeRecord:
    key: str
    value: dict[str, Any]


@dataclass(frozen=True)
class JudgmentResult:
    dice: Optional[DiceOutcome] = None
    executed_tools: tuple[ToolExecution, ...] = ()
    status_changes: tuple[StatusChange, ...] = ()
    knowledge_stored: tuple[KnowledgeRecord, ...] = ()


@dataclass(frozen=True)
class NarrativeResult:
    narrative: str
    mood: Mood
    suggested_actions: tuple[str, ...]
    hidden_information: Optional[str] = None


@dataclass(frozen=True)
class MemoryDraft:
    """Memory the turn wants persisted; written by the caller, not the phase."""

    category: MemoryCategory
    content: str
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class StateUpdateResult:
    scene: SceneSnapshot
    session_status: SessionStatus
    new_memories: tuple[MemoryDraft, ...] = ()


@dataclass(frozen=True)
class PhaseOutputs:
    """Outputs accumulated by the phases completed so far."""

    analysis: Optional[ActionAnalysis] = None
    judgment: Optional[JudgmentResult] = None
    narrative: Optional[NarrativeResult] = None
    state_update: Optional[StateUpdateResult] = None

    def with_output(self, phase: WorkflowPhase, value: Any) -> "PhaseOutputs":
        if phase is WorkflowPhase.ANALYSIS:
            return replace(self, analysis=value)
        if phase is WorkflowPhase.JUDGMENT:
            return replace(self, judgment=value)
        if phase is WorkflowPhase.NARRATIVE:
            return replace(self, narrative=value)
        return replace(self, state_update=value)


@dataclass(frozen=True)
class PhaseTrace:
    phase: WorkflowPhase
    attempts: int
    used_fallback: bool = False
    error: Optional[str] = None


@dataclass(frozen=True)
class WorkflowOutcome:
    """The single terminal artifact of a turn."""

    success: bool
    narrative: str
    scene: SceneSnapshot
    suggested_actions: tuple[str, ...]
    dice: Optional[DiceOutcome] = None
    error: Optional[str] = None
    mood: Optional[Mood] = None
    session_status: Optional[SessionStatus] = None
    new_memories: tuple[MemoryDraft, ...] = ()
    trace: tuple[PhaseTrace, ...] = ()

    @property
    def degraded(self) -> bool:
        return any(step.used_fallback for step in self.trace)
