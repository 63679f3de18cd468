"""Stream Contract - checks that an event sequence is a valid canonical stream.

Invariants:
    - Exactly one StartEvent, and it comes first
    - Exactly one terminal event (EndEvent | ErrorEvent), and it comes last
    - Concatenated TextDeltaEvents equal the text of the EndEvent's message
"""

from typing import Iterable

from pydantic import BaseModel

from pi_runtime.schemas.stream import EndEvent, StartEvent, TextDeltaEvent, is_terminal


class StreamContractViolation(ValueError):
    pass


class StreamSequenceChecker:
    """Incremental checker; observe() raises on the first violating event."""

    def __init__(self) -> None:
        self.started = False
        self.terminated = False
        self._text: list[str] = []

    def observe(self, event: BaseModel) -> None:
        if self.terminated:
            raise StreamContractViolation(f"Event after terminal event: {event.type}")
        if isinstance(event, StartEvent):
            if self.started:
                raise StreamContractViolation("Duplicate start event")
            self.started = True
            return
        if not self.started:
            raise StreamContractViolation(f"{event.type} before start event")
        if isinstance(event, TextDeltaEvent):
            self._text.append(event.text)
        if isinstance(event, EndEvent) and event.response.text != "".join(self._text):
            raise StreamContractViolation("Text deltas do not match final message text")
        if is_terminal(event):
            self.terminated = True

    @property
    def text(self) -> str:
        return "".join(self._text)


def check_stream(events: Iterable[BaseModel]) -> None:
    checker = StreamSequenceChecker()
    for event in events:
        checker.observe(event)
    if not checker.terminated:
        raise StreamContractViolation("Stream has no terminal event")
