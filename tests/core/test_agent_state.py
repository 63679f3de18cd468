"""Tests for core/agent_state.py - loop state machine and turn accounting."""

import pytest

from pi_runtime.core.agent_state import AgentRunState, InvalidTransition
from pi_runtime.core.domain_types import LoopState
from pi_runtime.core.errors import ProviderError, TurnLimitExceededError


def test_happy_path_transitions():
    s = AgentRunState(max_turns=2)
    s.await_model()
    s.begin_tool_dispatch()
    s.await_model()
    s.finish()
    assert s.state == LoopState.DONE
    assert s.turns == 1
    assert s.history == [
        LoopState.IDLE, LoopState.AWAITING_MODEL, LoopState.TOOL_DISPATCH,
        LoopState.AWAITING_MODEL, LoopState.DONE,
    ]
    assert s.is_terminal


def test_turn_limit_raises_on_turn_n_plus_one():
    s = AgentRunState(max_turns=2)
    for _ in range(2):
        s.await_model()
        s.begin_tool_dispatch()
    s.await_model()
    with pytest.raises(TurnLimitExceededError) as exc:
        s.begin_tool_dispatch()
    assert exc.value.max_turns == 2
    assert s.turns == 2
    assert s.state == LoopState.AWAITING_MODEL


def test_zero_max_turns_fails_first_dispatch():
    s = AgentRunState(max_turns=0)
    s.await_model()
    with pytest.raises(TurnLimitExceededError):
        s.begin_tool_dispatch()


def test_fail_records_error_and_is_terminal():
    s = AgentRunState(max_turns=1)
    s.await_model()
    err = ProviderError("down", status=503)
    s.fail(err)
    assert s.state == LoopState.FAILED
    assert s.error is err


def test_terminal_states_accept_no_transitions():
    s = AgentRunState(max_turns=1)
    s.await_model()
    s.finish()
    with pytest.raises(InvalidTransition):
        s.await_model()
    with pytest.raises(InvalidTransition):
        s.fail(ProviderError("late"))


def test_idle_cannot_dispatch_tools():
    with pytest.raises(InvalidTransition):
        AgentRunState(max_turns=1).begin_tool_dispatch()
