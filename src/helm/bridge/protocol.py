"""Incremental parser for the assistant CLI's ``stream-json`` output.

The CLI writes one JSON object per line. Records of interest:

* ``{"type": "system", "subtype": "init", "tools": [...], "mcp_servers": [...]}``
* ``{"type": "assistant", "message": {"content": [...]}}`` where content items
  are ``tool_use`` or ``text`` blocks
* ``{"type": "result", "result": "...", "subtype": "success" | "error_max_turns"}``

Anything else is ignored. Lines that are not JSON (diagnostics, warnings) are
logged and skipped.
"""

from __future__ import annotations

import codecs
import json
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterable, AsyncIterator

from .tool_display import describe_tool, display_input
from .types import InitEvent, StreamEvent, ToolEvent

logger = logging.getLogger(__name__)

NO_RESPONSE_MESSAGE = "I processed your request but have no response."
MAX_TURNS_MESSAGE = (
    "I ran out of turns while working on this task. The request may be too "
    "complex for a single query. Try breaking it into smaller questions, or ask "
    "me to continue where I left off."
)
TOOL_KEY_INPUT_CHARS = 50
_LOG_PREVIEW_CHARS = 100


class JsonLineBuffer:
    """Reassemble newline-delimited JSON records from arbitrary byte chunks."""

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._pending = ""

    def feed(self, chunk: bytes) -> list[dict[str, Any]]:
        """Consume ``chunk`` and return every record completed by it."""

        self._pending += self._decoder.decode(chunk)
        *lines, self._pending = self._pending.split("\n")
        return self._parse_lines(lines)

    def flush(self) -> list[dict[str, Any]]:
        """Parse whatever is left once the stream has ended."""

        self._pending += self._decoder.decode(b"", final=True)
        remainder, self._pending = self._pending, ""
        return self._parse_lines([remainder])

    @property
    def pending(self) -> str:
        return self._pending

    def _parse_lines(self, lines: list[str]) -> list[dict[str, Any]]:
        records: list[dict[str, Any]] = []
        for line in lines:
            if not line.strip():
                continue
            try:
                parsed = json.loads(line)
            except json.JSONDecodeError:
                logger.warning("Failed to parse line: %s", line[:_LOG_PREVIEW_CHARS])
                continue
            if not isinstance(parsed, dict):
                logger.debug("Ignoring non-object record: %s", line[:_LOG_PREVIEW_CHARS])
                continue
            records.append(parsed)
        return records


async def iter_json_records(
    chunks: AsyncIterable[bytes],
) -> AsyncIterator[dict[str, Any]]:
    """Yield parsed records lazily as byte chunks arrive."""

    buffer = JsonLineBuffer()
    async for chunk in chunks:
        for record in buffer.feed(chunk):
            yield record
    for record in buffer.flush():
        yield record


@dataclass
class ProtocolState:
    """Per-session accumulator for tool dedup and answer resolution."""

    seen_tool_keys: set[str] = field(default_factory=set)
    last_text: str = ""
    final_result: str = ""

    def resolve_content(self) -> str:
        # A result record is authoritative; streamed text is only a fallback.
        return self.final_result or self.last_text or NO_RESPONSE_MESSAGE


def tool_call_key(name: str, tool_input: Any) -> str:
    serialized = json.dumps(
        tool_input or {}, separators=(",", ":"), ensure_ascii=False, default=str
    )
    return f"{name}-{serialized[:TOOL_KEY_INPUT_CHARS]}"


def _connected_servers(servers: Any) -> list[str]:
    if not isinstance(servers, list):
        return []
    return [
        server["name"]
        for server in servers
        if isinstance(server, dict)
        and server.get("status") == "connected"
        and isinstance(server.get("name"), str)
    ]


def _classify_content(items: list[Any], state: ProtocolState) -> list[StreamEvent]:
    events: list[StreamEvent] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        kind = item.get("type")
        if kind == "tool_use":
            name = str(item.get("name") or "")
            tool_input = item.get("input")
            key = tool_call_key(name, tool_input)
            if key in state.seen_tool_keys:
                continue
            state.seen_tool_keys.add(key)
            display = describe_tool(name, tool_input)
            events.append(
                ToolEvent(
                    name=name,
                    friendly_name=display.friendly_name,
                    icon=display.icon,
                    input=display_input(name, tool_input),
                )
            )
        elif kind == "text":
            text = item.get("text")
            if isinstance(text, str) and text:
                state.last_text = text
    return events


def classify_record(record: dict[str, Any], state: ProtocolState) -> list[StreamEvent]:
    """Translate one protocol record into zero or more stream events.

    Updates ``state`` in place. Terminal events are never produced here.
    """

    record_type = record.get("type")

    if record_type == "system" and record.get("subtype") == "init":
        tools = record.get("tools")
        return [
            InitEvent(
                tools=list(tools) if isinstance(tools, list) else [],
                mcp_servers=_connected_servers(record.get("mcp_servers")),
            )
        ]

    if record_type == "assistant":
        message = record.get("message")
        if isinstance(message, dict) and isinstance(message.get("content"), list):
            return _classify_content(message["content"], state)
        return []

    if record_type == "result":
        result = record.get("result")
        if isinstance(result, str) and result:
            state.final_result = result
        elif record.get("subtype") == "error_max_turns":
            state.final_result = MAX_TURNS_MESSAGE

    return []


__all__ = [
    "MAX_TURNS_MESSAGE",
    "NO_RESPONSE_MESSAGE",
    "JsonLineBuffer",
    "ProtocolState",
    "classify_record",
    "iter_json_records",
    "tool_call_key",
]
