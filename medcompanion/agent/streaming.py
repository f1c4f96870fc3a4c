"""
Stream Deltas
=============

The completion stream is a sequence of chunks, each carrying a text
fragment, tool-call fragments, or both. Chunks are normalized into two
delta types:

    TextDelta(text)
    ToolCallDelta(index, id, name, arguments)   any fragment may be None

Tool calls arrive in pieces. A call is identified by the provider-assigned
index; fragments for one index are appended in arrival order, and fragments
for different indices may interleave freely. The ToolCallAccumulator keeps
one PendingToolCall per index and only produces parsed calls once the
stream segment has ended.
"""

import json
import time
from dataclasses import dataclass, field
from typing import Any, Union

from medcompanion.utils.logger import Logger

logger = Logger("Streaming")


@dataclass(frozen=True)
class TextDelta:
    """A fragment of assistant text."""
    text: str


@dataclass(frozen=True)
class ToolCallDelta:
    """A fragment of one tool call, addressed by index."""
    index: int
    id: str | None = None
    name: str | None = None
    arguments: str | None = None


StreamDelta = Union[TextDelta, ToolCallDelta]


def deltas_from_chunk(chunk: Any) -> list[StreamDelta]:
    """
    Normalize one OpenAI-style stream chunk into deltas.

    Chunks without choices (usage reports, keep-alives) produce nothing.
    """
    choices = getattr(chunk, "choices", None)
    if not choices:
        return []

    delta = getattr(choices[0], "delta", None)
    if delta is None:
        return []

    deltas: list[StreamDelta] = []

    content = getattr(delta, "content", None)
    if content:
        deltas.append(TextDelta(text=content))

    for tc in getattr(delta, "tool_calls", None) or []:
        index = getattr(tc, "index", None)
        if index is None:
            continue
        function = getattr(tc, "function", None)
        deltas.append(ToolCallDelta(
            index=index,
            id=getattr(tc, "id", None),
            name=getattr(function, "name", None) if function else None,
            arguments=getattr(function, "arguments", None) if function else None,
        ))

    return deltas


@dataclass
class PendingToolCall:
    """A tool call still being assembled from fragments."""
    index: int
    id: str
    name: str = ""
    arguments: str = ""
    synthetic_id: bool = False

    def to_record(self) -> dict[str, Any]:
        """The raw tool-call record echoed back in the assistant turn."""
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments},
        }


@dataclass(frozen=True)
class ParsedToolCall:
    """
    A finalized tool call.

    `error` is set when the arguments were not a JSON object; `arguments`
    is then empty.
    """
    id: str
    name: str
    arguments: dict[str, Any]
    raw_arguments: str
    error: str | None = None


@dataclass
class ToolCallAccumulator:
    """
    Per-index accumulator for streamed tool calls.

    Example:
        acc = ToolCallAccumulator()
        acc.add(ToolCallDelta(index=0, id="call_1", name="tool_se"))
        acc.add(ToolCallDelta(index=0, name="arch", arguments='{"que'))
        acc.add(ToolCallDelta(index=0, arguments='ry": "flu"}'))
        calls = acc.finalize()  # [ParsedToolCall(name="tool_search", ...)]
    """
    _calls: dict[int, PendingToolCall] = field(default_factory=dict)

    def add(self, delta: ToolCallDelta) -> None:
        """Merge one fragment into the call at its index."""
        call = self._calls.get(delta.index)
        if call is None:
            if delta.id:
                call = PendingToolCall(index=delta.index, id=delta.id)
            else:
                call = PendingToolCall(
                    index=delta.index,
                    id=f"call_{int(time.time() * 1000)}_{delta.index}",
                    synthetic_id=True,
                )
            self._calls[delta.index] = call
        elif delta.id and call.synthetic_id:
            # A provider id arriving after the first fragment wins
            call.id = delta.id
            call.synthetic_id = False

        if delta.name:
            call.name += delta.name
        if delta.arguments:
            call.arguments += delta.arguments

    def __bool__(self) -> bool:
        return bool(self._calls)

    def __len__(self) -> int:
        return len(self._calls)

    def pending(self) -> list[PendingToolCall]:
        """Calls in index order."""
        return [self._calls[i] for i in sorted(self._calls)]

    def finalize(self) -> list[ParsedToolCall]:
        """
        Parse every accumulated call.

        Only call this once the stream segment has ended.
        """
        parsed = []
        for call in self.pending():
            raw = call.arguments.strip()
            try:
                arguments = json.loads(raw) if raw else {}
                if not isinstance(arguments, dict):
                    raise ValueError("arguments must be a JSON object")
                parsed.append(ParsedToolCall(
                    id=call.id,
                    name=call.name,
                    arguments=arguments,
                    raw_arguments=call.arguments,
                ))
            except ValueError as e:
                logger.warning(f"Failed to parse arguments for {call.name or 'unnamed tool'}: {e}")
                parsed.append(ParsedToolCall(
                    id=call.id,
                    name=call.name,
                    arguments={},
                    raw_arguments=call.arguments,
                    error=f"Invalid arguments: {e}",
                ))
        return parsed
