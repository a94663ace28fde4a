from __future__ import annotations

import asyncio

import pytest

from gamemaster.workflow.engine import (
    FAILURE_NARRATIVE,
    FAILURE_SUGGESTIONS,
    WorkflowEngine,
    WorkflowOptions,
    WorkflowStateMachine,
)
from gamemaster.workflow.errors import PhaseError, PhaseTimeoutError, WorkflowStateError
from gamemaster.workflow.phases.base import PhaseHandler
from gamemaster.workflow.types import (
    ActionAnalysis,
    ActionType,
    JudgmentResult,
    Mood,
    NarrativeResult,
    SessionStatus,
    StateUpdateResult,
    WorkflowPhase,
    WorkflowState,
)


class ScriptedHandler(PhaseHandler):
    """Handler whose execute replays a list of values or exceptions."""

    def __init__(self, phase, script, *, fallback_value=None, valid=True, delay=0.0):
        self.phase = phase
        self.has_fallback = fallback_value is not None
        self._script = list(script)
        self._fallback_value = fallback_value
        self._valid = valid
        self._delay = delay
        self.calls = 0
        self.completed = 0

    async def execute(self, context, prior):
        self.calls += 1
        if self._delay:
            await asyncio.sleep(self._delay)
        item = self._script.pop(0) if self._script else RuntimeError("script exhausted")
        if isinstance(item, Exception):
            raise item
        self.completed += 1
        return item(context, prior) if callable(item) else item

    def validate(self, result):
        return self._valid

    def fallback(self, context, prior, error):
        if isinstance(self._fallback_value, Exception):
            raise self._fallback_value
        return self._fallback_value


ANALYSIS = ActionAnalysis(
    action_type=ActionType.EXPLORATION, targets=(), requires_check=False, intent="look"
)
JUDGMENT = JudgmentResult()
NARRATIVE = NarrativeResult(
    narrative="The corridor stretches on.", mood=Mood.CALM, suggested_actions=("Rest",)
)


def _state(context, prior):
    return StateUpdateResult(scene=context.scene, session_status=SessionStatus.PAUSED)


def _handlers(**overrides):
    handlers = {
        "analysis": ScriptedHandler(WorkflowPhase.ANALYSIS, [ANALYSIS]),
        "judgment": ScriptedHandler(WorkflowPhase.JUDGMENT, [JUDGMENT]),
        "narrative": ScriptedHandler(WorkflowPhase.NARRATIVE, [NARRATIVE]),
        "state": ScriptedHandler(WorkflowPhase.STATE_UPDATE, [_state]),
    }
    handlers.update(overrides)
    return handlers


def _engine(handlers, **options):
    ordered = [handlers["analysis"], handlers["judgment"], handlers["narrative"], handlers["state"]]
    return WorkflowEngine(ordered, WorkflowOptions(**options))


@pytest.mark.anyio
async def test_happy_path_assembles_outcome(make_context) -> None:
    handlers = _handlers()
    outcome = await _engine(handlers).run(make_context("look around"))

    assert outcome.success is True
    assert outcome.narrative == NARRATIVE.narrative
    assert outcome.suggested_actions == ("Rest",)
    assert outcome.session_status is SessionStatus.PAUSED
    assert outcome.dice is None
    assert outcome.error is None
    assert [step.attempts for step in outcome.trace] == [1, 1, 1, 1]
    assert outcome.degraded is False


@pytest.mark.anyio
async def test_retry_then_success_counts_attempts(make_context) -> None:
    analysis = ScriptedHandler(
        WorkflowPhase.ANALYSIS, [RuntimeError("flaky"), RuntimeError("flaky"), ANALYSIS]
    )
    outcome = await _engine(_handlers(analysis=analysis)).run(make_context("look"))

    assert outcome.success is True
    assert analysis.calls == 3
    assert outcome.trace[0].attempts == 3
    assert outcome.trace[0].used_fallback is False


@pytest.mark.anyio
async def test_exhausted_retries_use_fallback_without_validation(make_context) -> None:
    fallback = NarrativeResult(narrative="Fallback", mood=Mood.MYSTERIOUS, suggested_actions=())
    narrative = ScriptedHandler(
        WorkflowPhase.NARRATIVE,
        [NARRATIVE, NARRATIVE, NARRATIVE],
        fallback_value=fallback,
        valid=False,
    )
    outcome = await _engine(_handlers(narrative=narrative), max_retries=3).run(make_context("x"))

    assert narrative.calls == 3
    assert outcome.success is True
    assert outcome.narrative == "Fallback"
    assert outcome.trace[2].used_fallback is True
    assert "invalid result" in (outcome.trace[2].error or "")
    assert outcome.degraded is True


@pytest.mark.anyio
async def test_every_execute_failing_returns_failure_outcome(make_context) -> None:
    boom = [RuntimeError("boom")] * 5
    handlers = {
        "analysis": ScriptedHandler(WorkflowPhase.ANALYSIS, boom),
        "judgment": ScriptedHandler(WorkflowPhase.JUDGMENT, boom),
        "narrative": ScriptedHandler(WorkflowPhase.NARRATIVE, boom),
        "state": ScriptedHandler(WorkflowPhase.STATE_UPDATE, boom),
    }
    context = make_context("attack the goblin")
    outcome = await _engine(handlers).run(context)

    assert outcome.success is False
    assert outcome.narrative == FAILURE_NARRATIVE
    assert outcome.suggested_actions == FAILURE_SUGGESTIONS
    assert outcome.scene == context.scene
    assert outcome.error == "boom"
    assert handlers["judgment"].calls == 0
    assert len(outcome.trace) == 1


@pytest.mark.anyio
async def test_raising_fallback_fails_the_turn(make_context) -> None:
    state = ScriptedHandler(
        WorkflowPhase.STATE_UPDATE, [], fallback_value=ValueError("fallback broke")
    )
    outcome = await _engine(_handlers(state=state)).run(make_context("x"))

    assert outcome.success is False
    assert outcome.error == "fallback broke"
    assert outcome.new_memories == ()


@pytest.mark.anyio
async def test_timeout_cancels_late_execution(make_context) -> None:
    slow = ScriptedHandler(
        WorkflowPhase.ANALYSIS, [ANALYSIS, ANALYSIS], delay=0.2, fallback_value=ANALYSIS
    )
    outcome = await _engine(
        _handlers(analysis=slow), max_retries=2, phase_timeout_sec=0.01
    ).run(make_context("x"))

    await asyncio.sleep(0.3)
    assert outcome.success is True
    assert outcome.trace[0].used_fallback is True
    assert slow.calls == 2
    assert slow.completed == 0


@pytest.mark.anyio
async def test_backoff_sleeps_between_attempts(make_context) -> None:
    delays: list[float] = []

    async def fake_sleep(delay: float) -> None:
        delays.append(delay)

    analysis = ScriptedHandler(
        WorkflowPhase.ANALYSIS,
        [RuntimeError("a"), RuntimeError("b"), RuntimeError("c"), ANALYSIS],
    )
    handlers = _handlers(analysis=analysis)
    ordered = [handlers["analysis"], handlers["judgment"], handlers["narrative"], handlers["state"]]
    engine = WorkflowEngine(
        ordered,
        WorkflowOptions(max_retries=4, retry_backoff_sec=1.0, retry_backoff_max_sec=3.0),
        sleep=fake_sleep,
    )
    outcome = await engine.run(make_context("x"))

    assert outcome.success is True
    assert delays == [1.0, 2.0, 3.0]


@pytest.mark.anyio
async def test_caller_cancellation_propagates(make_context) -> None:
    slow = ScriptedHandler(WorkflowPhase.ANALYSIS, [ANALYSIS], delay=5)
    engine = _engine(_handlers(analysis=slow), phase_timeout_sec=10)
    task = asyncio.create_task(engine.run(make_context("x")))
    await asyncio.sleep(0.05)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task


def test_timeout_error_is_a_phase_error() -> None:
    assert issubclass(PhaseTimeoutError, PhaseError)


def test_state_machine_only_moves_forward() -> None:
    machine = WorkflowStateMachine()
    machine.advance(WorkflowState.JUDGMENT)
    with pytest.raises(WorkflowStateError):
        machine.advance(WorkflowState.ANALYSIS)
    with pytest.raises(WorkflowStateError):
        machine.advance(WorkflowState.STATE_UPDATE)
    machine.advance(WorkflowState.NARRATIVE)
    machine.advance(WorkflowState.STATE_UPDATE)
    machine.advance(WorkflowState.COMPLETED)
    with pytest.raises(WorkflowStateError):
        machine.advance(WorkflowState.FAILED)


def test_engine_requires_handlers_in_phase_order() -> None:
    handlers = _handlers()
    with pytest.raises(ValueError):
        WorkflowEngine([handlers["judgment"], handlers["analysis"]])
