from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Generic, Optional, TypeVar

from gamemaster.workflow.errors import PhaseError
from gamemaster.workflow.types import PhaseOutputs, TurnContext, WorkflowPhase

T = TypeVar("T")
V = TypeVar("V")


class PhaseHandler(ABC, Generic[T]):
    """One step of a turn.

    `execute` may call providers and tools; it returns a new value and never
    mutates the context. `fallback` must be deterministic and network-free, and
    is only consulted when `has_fallback` is set.
    """

    phase: WorkflowPhase
    has_fallback: bool = False

    @abstractmethod
    async def execute(self, context: TurnContext, prior: PhaseOutputs) -> T:
        """Produce this phase's output."""

    @abstractmethod
    def validate(self, result: T) -> bool:
        """Return False to send the attempt down the failure path."""

    def fallback(self, context: TurnContext, prior: PhaseOutputs, error: Exception) -> T:
        raise NotImplementedError(f"{type(self).__name__} has no fallback")

    def _require(self, value: Optional[V], name: str) -> V:
        if value is None:
            raise PhaseError(f"{self.phase.value} requires the {name} output", self.phase.value)
        return value
