"""Assistant CLI process bridge."""

from .errors import BridgeError, ImageStagingError, ProcessTimeoutError, SpawnError
from .processes import ProcessManager, ProcessRegistry
from .session import ClaudeBridge, SessionState, StreamSession
from .types import DoneEvent, ErrorEvent, InitEvent, StreamEvent, TextEvent, ToolEvent

__all__ = [
    "BridgeError",
    "ClaudeBridge",
    "DoneEvent",
    "ErrorEvent",
    "ImageStagingError",
    "InitEvent",
    "ProcessManager",
    "ProcessRegistry",
    "ProcessTimeoutError",
    "SessionState",
    "SpawnError",
    "StreamEvent",
    "StreamSession",
    "TextEvent",
    "ToolEvent",
]
