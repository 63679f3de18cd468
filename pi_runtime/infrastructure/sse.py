"""Server-Sent Events decoding for streaming HTTP providers.

Invariants:
    - Events are separated by a blank line; "\\n\\n" and "\\r\\n\\r\\n" are both accepted,
      including when a separator is split across network chunks
    - Multiple data: lines in one event are joined with "\\n"
    - Comment lines (leading ":") and events without data are skipped
"""

from dataclasses import dataclass
from typing import AsyncIterable, AsyncIterator


@dataclass(frozen=True)
class SSEEvent:
    data: str
    event: str | None = None


def parse_event_block(block: str) -> SSEEvent | None:
    data_lines: list[str] = []
    event_name = None
    for line in block.split("\n"):
        if not line or line.startswith(":"):
            continue
        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if field == "data":
            data_lines.append(value)
        elif field == "event":
            event_name = value
    if not data_lines:
        return None
    return SSEEvent(data="\n".join(data_lines), event=event_name)


class SSEDecoder:
    """Incremental decoder: feed text chunks, get complete events back."""

    def __init__(self) -> None:
        self._buffer = ""

    def feed(self, chunk: str) -> list[SSEEvent]:
        self._buffer = (self._buffer + chunk).replace("\r\n", "\n")
        events = []
        while "\n\n" in self._buffer:
            block, self._buffer = self._buffer.split("\n\n", 1)
            event = parse_event_block(block)
            if event is not None:
                events.append(event)
        return events

    def flush(self) -> list[SSEEvent]:
        """Emit a trailing event that was not terminated by a blank line."""
        block, self._buffer = self._buffer.strip("\r\n"), ""
        event = parse_event_block(block) if block else None
        return [event] if event is not None else []


async def iter_sse(chunks: AsyncIterable[str]) -> AsyncIterator[SSEEvent]:
    decoder = SSEDecoder()
    async for chunk in chunks:
        for event in decoder.feed(chunk):
            yield event
    for event in decoder.flush():
        yield event
