from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Sequence

from gamemaster.core.config import Settings
from gamemaster.workflow.errors import PhaseTimeoutError, PhaseValidationError, WorkflowStateError
from gamemaster.workflow.phases.base import PhaseHandler
from gamemaster.workflow.types import (
    PHASE_ORDER,
    PHASE_STATES,
    PhaseFailure,
    PhaseOutputs,
    PhaseResult,
    PhaseSuccess,
    PhaseTrace,
    TurnContext,
    WorkflowOutcome,
    WorkflowState,
)

logger = logging.getLogger(__name__)

FAILURE_NARRATIVE = "An error occurred while processing your action. Please try again."
FAILURE_SUGGESTIONS = ("Try a different action", "Ask for help")

_STATE_ORDER = (
    WorkflowState.ANALYSIS,
    WorkflowState.JUDGMENT,
    WorkflowState.NARRATIVE,
    WorkflowState.STATE_UPDATE,
    WorkflowState.COMPLETED,
)
_TERMINAL_STATES = {WorkflowState.COMPLETED, WorkflowState.FAILED}


@dataclass(frozen=True)
class WorkflowOptions:
    """Retry and timeout policy applied to every phase."""

    max_retries: int = 3
    phase_timeout_sec: float = 30.0
    retry_backoff_sec: float = 0.0
    retry_backoff_max_sec: float = 8.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "WorkflowOptions":
        return cls(
            max_retries=settings.workflow_max_retries,
            phase_timeout_sec=settings.workflow_phase_timeout_sec,
            retry_backoff_sec=settings.workflow_retry_backoff_sec,
            retry_backoff_max_sec=settings.workflow_retry_backoff_max_sec,
        )

    @property
    def attempts(self) -> int:
        return max(1, self.max_retries)

    def backoff_delay(self, attempt: int) -> float:
        if self.retry_backoff_sec <= 0:
            return 0.0
        delay = self.retry_backoff_sec * (2 ** (attempt - 1))
        return min(delay, self.retry_backoff_max_sec)


class WorkflowStateMachine:
    """Forward-only progression through the phase states."""

    def __init__(self) -> None:
        self._state = WorkflowState.ANALYSIS

    @property
    def state(self) -> WorkflowState:
        return self._state

    def advance(self, target: WorkflowState) -> None:
        if self._state in _TERMINAL_STATES:
            raise WorkflowStateError(f"Workflow already finished in {self._state.value}")
        if target is WorkflowState.FAILED:
            self._state = target
            return
        current_index = _STATE_ORDER.index(self._state)
        if _STATE_ORDER.index(target) != current_index + 1:
            raise WorkflowStateError(
                f"Illegal transition {self._state.value} -> {target.value}"
            )
        self._state = target


class WorkflowEngine:
    """Runs the four phases of a turn with timeout, retry and fallback."""

    def __init__(
        self,
        handlers: Sequence[PhaseHandler[Any]],
        options: Optional[WorkflowOptions] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        phases = tuple(handler.phase for handler in handlers)
        if phases != PHASE_ORDER:
            raise ValueError(
                "Handlers must cover phases in order: "
                + ", ".join(phase.value for phase in PHASE_ORDER)
            )
        self._handlers = tuple(handlers)
        self._options = options or WorkflowOptions()
        self._sleep = sleep

    @property
    def options(self) -> WorkflowOptions:
        return self._options

    async def run(self, context: TurnContext) -> WorkflowOutcome:
        """Process one turn; failures become a `success=False` outcome."""

        machine = WorkflowStateMachine()
        outputs = PhaseOutputs()
        trace: list[PhaseTrace] = []

        for index, handler in enumerate(self._handlers):
            if index:
                machine.advance(PHASE_STATES[handler.phase])
            result, step = await self._run_phase(handler, context, outputs)
            trace.append(step)
            if isinstance(result, PhaseFailure):
                machine.advance(WorkflowState.FAILED)
                logger.error(
                    "Workflow failed campaign=%s phase=%s error=%s",
                    context.campaign_id,
                    handler.phase.value,
                    step.error,
                )
                return WorkflowOutcome(
                    success=False,
                    narrative=FAILURE_NARRATIVE,
                    scene=context.scene,
                    suggested_actions=FAILURE_SUGGESTIONS,
                    error=step.error,
                    trace=tuple(trace),
                )
            outputs = outputs.with_output(handler.phase, result.value)

        machine.advance(WorkflowState.COMPLETED)
        return self._assemble(outputs, tuple(trace))

    async def _run_phase(
        self,
        handler: PhaseHandler[Any],
        context: TurnContext,
        outputs: PhaseOutputs,
    ) -> tuple[PhaseResult[Any], PhaseTrace]:
        attempts = self._options.attempts
        last_error: Optional[Exception] = None

        for attempt in range(1, attempts + 1):
            result = await self._attempt(handler, context, outputs)
            if isinstance(result, PhaseSuccess):
                return result, PhaseTrace(
                    phase=handler.phase,
                    attempts=attempt,
                    error=_describe(last_error) if last_error else None,
                )
            last_error = result.error
            logger.warning(
                "Phase %s attempt %d/%d failed: %s",
                handler.phase.value,
                attempt,
                attempts,
                _describe(last_error),
            )
            if attempt < attempts:
                delay = self._options.backoff_delay(attempt)
                if delay > 0:
                    await self._sleep(delay)

        if not handler.has_fallback:
            return PhaseFailure(last_error), PhaseTrace(
                phase=handler.phase, attempts=attempts, error=_describe(last_error)
            )

        try:
            value = handler.fallback(context, outputs, last_error)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Fallback for phase %s raised", handler.phase.value)
            return PhaseFailure(exc), PhaseTrace(
                phase=handler.phase,
                attempts=attempts,
                used_fallback=True,
                error=_describe(exc),
            )

        logger.info("Phase %s completed with fallback", handler.phase.value)
        return PhaseSuccess(value), PhaseTrace(
            phase=handler.phase,
            attempts=attempts,
            used_fallback=True,
            error=_describe(last_error),
        )

    async def _attempt(
        self,
        handler: PhaseHandler[Any],
        context: TurnContext,
        outputs: PhaseOutputs,
    ) -> PhaseResult[Any]:
        timeout = self._options.phase_timeout_sec
        try:
            # wait_for cancels the execution on timeout, so it cannot deliver late.
            value = await asyncio.wait_for(
                handler.execute(context, outputs),
                timeout=timeout if timeout > 0 else None,
            )
            valid = handler.validate(value)
        except asyncio.TimeoutError:
            return PhaseFailure(
                PhaseTimeoutError(
                    f"{handler.phase.value} timed out after {timeout:g}s", handler.phase.value
                )
            )
        except Exception as exc:  # noqa: BLE001
            return PhaseFailure(exc)
        if not valid:
            return PhaseFailure(
                PhaseValidationError(
                    f"{handler.phase.value} produced an invalid result", handler.phase.value
                )
            )
        return PhaseSuccess(value)

    @staticmethod
    def _assemble(outputs: PhaseOutputs, trace: tuple[PhaseTrace, ...]) -> WorkflowOutcome:
        narrative = outputs.narrative
        state = outputs.state_update
        judgment = outputs.judgment
        if narrative is None or state is None or judgment is None:
            raise WorkflowStateError("Workflow completed without every phase output")
        return WorkflowOutcome(
            success=True,
            narrative=narrative.narrative,
            scene=state.scene,
            suggested_actions=narrative.suggested_actions,
            dice=judgment.dice,
            mood=narrative.mood,
            session_status=state.session_status,
            new_memories=state.new_memories,
            trace=trace,
        )


def _describe(error: BaseException) -> str:
    message = str(error).strip()
    return message or type(error).__name__
