"""Agent State - the tool-loop state machine and turn accounting.

Invariants:
    - Transitions follow Idle -> AwaitingModel -> (ToolDispatch <-> AwaitingModel) -> Done,
      with Failed reachable from every non-terminal state
    - Done and Failed are terminal: no transition leaves them
    - A turn is one AwaitingModel -> ToolDispatch -> AwaitingModel cycle;
      entering ToolDispatch for turn max_turns + 1 raises TurnLimitExceededError
"""

from dataclasses import dataclass, field

from pi_runtime.core.domain_types import LoopState, TERMINAL_LOOP_STATES
from pi_runtime.core.errors import PiError, TurnLimitExceededError


_TRANSITIONS: dict[LoopState, frozenset[LoopState]] = {
    LoopState.IDLE: frozenset({LoopState.AWAITING_MODEL, LoopState.FAILED}),
    LoopState.AWAITING_MODEL: frozenset({
        LoopState.TOOL_DISPATCH, LoopState.DONE, LoopState.FAILED,
    }),
    LoopState.TOOL_DISPATCH: frozenset({LoopState.AWAITING_MODEL, LoopState.FAILED}),
    LoopState.DONE: frozenset(),
    LoopState.FAILED: frozenset(),
}


class InvalidTransition(RuntimeError):
    pass


@dataclass
class AgentRunState:
    max_turns: int
    state: LoopState = LoopState.IDLE
    turns: int = 0
    error: PiError | None = None
    history: list[LoopState] = field(default_factory=lambda: [LoopState.IDLE])

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_LOOP_STATES

    def transition(self, to: LoopState) -> None:
        if to not in _TRANSITIONS[self.state]:
            raise InvalidTransition(f"{self.state.value} -> {to.value}")
        self.state = to
        self.history.append(to)

    def await_model(self) -> None:
        self.transition(LoopState.AWAITING_MODEL)

    def begin_tool_dispatch(self) -> None:
        """Count the turn, or raise once the turn budget is spent."""
        if self.turns >= self.max_turns:
            raise TurnLimitExceededError(self.max_turns)
        self.transition(LoopState.TOOL_DISPATCH)
        self.turns += 1

    def finish(self) -> None:
        self.transition(LoopState.DONE)

    def fail(self, error: PiError) -> None:
        self.transition(LoopState.FAILED)
        self.error = error
