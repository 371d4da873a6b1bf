"""Assemble the stdin prompt handed to the assistant CLI."""

from __future__ import annotations

import datetime as _dt
import re
from pathlib import Path
from typing import Sequence

from ..schemas.chat import ConversationEntry
from ..services.time_context import create_time_snapshot

DEFAULT_MAX_MESSAGE_LENGTH = 10_000
DEFAULT_HISTORY_LIMIT = 15

_SHELL_METACHARACTERS = re.compile(r"[`$\\]")


def sanitize_message(message: str, max_length: int = DEFAULT_MAX_MESSAGE_LENGTH) -> str:
    """Strip shell metacharacters and cap the message length."""

    return _SHELL_METACHARACTERS.sub("", message)[:max_length]


def format_time_context(
    timezone_name: str | None = None,
    *,
    now: _dt.datetime | None = None,
) -> str:
    snapshot = create_time_snapshot(timezone_name, now=now)
    return f"[Current time: {snapshot.human_readable()}]\n\n"


def format_history(
    history: Sequence[ConversationEntry] | None,
    limit: int = DEFAULT_HISTORY_LIMIT,
) -> str:
    """Render the most recent ``limit`` turns as plain-text context."""

    if not history or limit <= 0:
        return ""

    lines = ["[Previous conversation:]\n"]
    for entry in history[-limit:]:
        role = "User" if entry.role == "user" else "Assistant"
        content = entry.content
        if entry.image_paths:
            content += f" [Images available: {', '.join(entry.image_paths)}]"
        lines.append(f"{role}: {content}\n\n")
    lines.append("[Current message:]\n")
    return "".join(lines)


def format_image_instructions(image_paths: Sequence[Path | str]) -> str:
    if not image_paths:
        return ""

    lines = [
        "\n\n[The user has attached the following image(s). "
        "Please read and analyze them using the Read tool:]\n"
    ]
    lines.extend(f"- {path}\n" for path in image_paths)
    lines.append("\n")
    return "".join(lines)


def build_prompt(
    message: str,
    *,
    history: Sequence[ConversationEntry] | None = None,
    image_paths: Sequence[Path | str] = (),
    timezone_name: str | None = None,
    history_limit: int = DEFAULT_HISTORY_LIMIT,
    max_message_length: int = DEFAULT_MAX_MESSAGE_LENGTH,
    now: _dt.datetime | None = None,
) -> str:
    """Return the full prompt: time, history, message, then image paths."""

    return (
        format_time_context(timezone_name, now=now)
        + format_history(history, history_limit)
        + sanitize_message(message, max_message_length)
        + format_image_instructions(image_paths)
    )


__all__ = [
    "build_prompt",
    "format_history",
    "format_image_instructions",
    "format_time_context",
    "sanitize_message",
]
