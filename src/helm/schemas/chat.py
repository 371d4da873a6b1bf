"""Pydantic models and validation for chat stream requests."""

from __future__ import annotations

from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

DATA_URL_IMAGE_PREFIX = "data:image/"


class ChatRequestError(ValueError):
    """Raised when a chat payload is rejected before any work starts."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ConversationEntry(BaseModel):
    """One prior turn supplied by the browser for multi-turn context."""

    role: Literal["user", "assistant"]
    content: str
    image_paths: Optional[List[str]] = Field(default=None, alias="imagePaths")

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)


class ChatStreamRequest(BaseModel):
    """Validated chat payload handed to the bridge."""

    message: str = ""
    images: List[str] = Field(default_factory=list)
    conversation_history: List[ConversationEntry] = Field(
        default_factory=list, alias="conversationHistory"
    )

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


def parse_chat_request(
    body: Any,
    *,
    max_message_length: int = 10_000,
    max_images: int = 10,
) -> ChatStreamRequest:
    """Validate a raw JSON body, raising :class:`ChatRequestError` on failure."""

    if not isinstance(body, dict):
        raise ChatRequestError("Invalid request body")

    message = body.get("message")
    images = body.get("images")
    history = body.get("conversationHistory", body.get("conversation_history"))

    has_message = isinstance(message, str) and bool(message)
    if not has_message and not images:
        raise ChatRequestError("Message or images required")

    if isinstance(message, str) and len(message) > max_message_length:
        raise ChatRequestError("Message is too long")

    if images is not None:
        if not isinstance(images, list) or len(images) > max_images:
            raise ChatRequestError(f"Maximum {max_images} images allowed")
        for image in images:
            if not isinstance(image, str) or not image.startswith(DATA_URL_IMAGE_PREFIX):
                raise ChatRequestError("Invalid image format")

    try:
        return ChatStreamRequest(
            message=message if has_message else "",
            images=images or [],
            conversation_history=history or [],
        )
    except ValidationError as exc:
        raise ChatRequestError("Invalid request body") from exc


__all__ = [
    "ChatRequestError",
    "ChatStreamRequest",
    "ConversationEntry",
    "parse_chat_request",
]
