from __future__ import annotations

from typing import Optional


class PhaseError(Exception):
    """A phase attempt failed; the engine decides between retry and fallback."""

    def __init__(self, message: str, phase: Optional[str] = None) -> None:
        super().__init__(message)
        self.phase = phase


class PhaseTimeoutError(PhaseError):
    """A phase attempt did not settle within the phase timeout."""


class PhaseValidationError(PhaseError):
    """A phase produced a value its validate() rejected."""


class PhaseDecodeError(PhaseError):
    """Generated text did not decode into the phase's schema."""


class WorkflowStateError(RuntimeError):
    """Illegal state machine transition."""
