"""Type definitions for the assistant streaming bridge.

`TextEvent` is part of the event vocabulary but is never published: streamed
text is folded into the final `DoneEvent` content by the protocol state.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union


@dataclass
class InitEvent:
    tools: list[str] = field(default_factory=list)
    mcp_servers: list[str] = field(default_factory=list)

    is_terminal = False

    def to_payload(self) -> dict[str, Any]:
        return {"type": "init", "tools": self.tools, "mcpServers": self.mcp_servers}


@dataclass
class ToolEvent:
    name: str
    friendly_name: str
    icon: str
    input: Any = None

    is_terminal = False

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "type": "tool",
            "name": self.name,
            "friendlyName": self.friendly_name,
            "icon": self.icon,
        }
        if self.input is not None:
            payload["input"] = self.input
        return payload


@dataclass
class TextEvent:
    content: str

    is_terminal = False

    def to_payload(self) -> dict[str, Any]:
        return {"type": "text", "content": self.content}


@dataclass
class DoneEvent:
    content: str
    # Staged uploads stay on disk so later turns can reference them.
    image_paths: list[str] | None = None

    is_terminal = True

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"type": "done", "content": self.content}
        if self.image_paths:
            payload["imagePaths"] = self.image_paths
        return payload


@dataclass
class ErrorEvent:
    message: str

    is_terminal = True

    def to_payload(self) -> dict[str, Any]:
        return {"type": "error", "message": self.message}


StreamEvent = Union[InitEvent, ToolEvent, TextEvent, DoneEvent, ErrorEvent]


__all__ = [
    "DoneEvent",
    "ErrorEvent",
    "InitEvent",
    "StreamEvent",
    "TextEvent",
    "ToolEvent",
]
