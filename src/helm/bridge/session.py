"""Per-request bridge between the assistant CLI and the SSE transport."""

from __future__ import annotations

import asyncio
import logging
import secrets
import string
import time
from enum import Enum
from pathlib import Path
from typing import AsyncIterator, Sequence

from ..schemas.chat import ConversationEntry
from .errors import ProcessTimeoutError
from .images import cleanup_temp_files, stage_images
from .processes import ClaudeProcess, ProcessManager
from .prompt import DEFAULT_HISTORY_LIMIT, DEFAULT_MAX_MESSAGE_LENGTH, build_prompt
from .protocol import ProtocolState, classify_record, iter_json_records
from .types import DoneEvent, ErrorEvent, StreamEvent

logger = logging.getLogger(__name__)

TIMEOUT_MESSAGE = (
    "Request timed out (10 minutes). Please try again with a simpler question."
)
GENERIC_ERROR_MESSAGE = "Sorry, there was an error connecting to Claude."

_ID_ALPHABET = string.ascii_lowercase + string.digits


class SessionState(str, Enum):
    IDLE = "idle"
    STAGING = "staging"
    RUNNING = "running"
    COMPLETING = "completing"
    TIMED_OUT = "timed_out"
    ERRORING = "erroring"
    CLOSED = "closed"


def new_request_id() -> str:
    """Return an opaque id such as ``1760912345678-k3v9q2a``."""

    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(7))
    return f"{int(time.time() * 1000)}-{suffix}"


class StreamSession:
    """One chat request, from image staging to its single terminal event."""

    def __init__(
        self,
        process_manager: ProcessManager,
        request_id: str,
        *,
        image_dir: Path,
        image_prefix: str,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
        max_message_length: int = DEFAULT_MAX_MESSAGE_LENGTH,
        timezone_name: str | None = None,
    ) -> None:
        self.request_id = request_id
        self.state = SessionState.IDLE
        self.image_paths: list[Path] = []
        self.protocol = ProtocolState()
        self._manager = process_manager
        self._image_dir = image_dir
        self._image_prefix = image_prefix
        self._history_limit = history_limit
        self._max_message_length = max_message_length
        self._timezone_name = timezone_name
        self._process: ClaudeProcess | None = None

    async def events(
        self,
        message: str = "",
        *,
        images: Sequence[str] | None = None,
        history: Sequence[ConversationEntry] | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """Yield ``init``/``tool`` events as they arrive, then one terminal event.

        Cancellation or closing the iterator early aborts the subprocess and
        yields nothing further.
        """

        if self.state is not SessionState.IDLE:
            raise RuntimeError(f"Session {self.request_id} already started")

        try:
            try:
                self.state = SessionState.STAGING
                self.image_paths = await stage_images(
                    images, directory=self._image_dir, prefix=self._image_prefix
                )
                prompt = build_prompt(
                    message,
                    history=history,
                    image_paths=self.image_paths,
                    timezone_name=self._timezone_name,
                    history_limit=self._history_limit,
                    max_message_length=self._max_message_length,
                )

                self.state = SessionState.RUNNING
                self._process = await self._manager.spawn(prompt, self.request_id)
                async for record in iter_json_records(self._process.chunks()):
                    for event in classify_record(record, self.protocol):
                        yield event
                await self._manager.wait(self._process)
            except ProcessTimeoutError:
                self.state = SessionState.TIMED_OUT
                cleanup_temp_files(self.image_paths)
                terminal: StreamEvent = ErrorEvent(TIMEOUT_MESSAGE)
            except (asyncio.CancelledError, GeneratorExit):
                self._abort()
                raise
            except Exception as exc:
                self.state = SessionState.ERRORING
                logger.exception("Error while streaming request %s", self.request_id)
                self._fail()
                terminal = ErrorEvent(str(exc) or GENERIC_ERROR_MESSAGE)
            else:
                self.state = SessionState.COMPLETING
                # Uploaded images are kept for follow-up turns; the periodic
                # sweep removes them later.
                terminal = DoneEvent(
                    content=self.protocol.resolve_content(),
                    image_paths=[str(path) for path in self.image_paths] or None,
                )
            yield terminal
        finally:
            self.state = SessionState.CLOSED

    def _abort(self) -> None:
        if self.state in (SessionState.STAGING, SessionState.RUNNING):
            logger.info("Request %s aborted", self.request_id)
            self._manager.abort(self.request_id)
            cleanup_temp_files(self.image_paths)

    def _fail(self) -> None:
        cleanup_temp_files(self.image_paths)
        if self._process is not None:
            self._manager.terminate(self._process)
        else:
            self._manager.abort(self.request_id)


class ClaudeBridge:
    """Factory for :class:`StreamSession` objects sharing one process manager."""

    def __init__(
        self,
        process_manager: ProcessManager,
        *,
        image_dir: Path,
        image_prefix: str = "helm-upload",
        history_limit: int = DEFAULT_HISTORY_LIMIT,
        max_message_length: int = DEFAULT_MAX_MESSAGE_LENGTH,
        timezone_name: str | None = None,
    ) -> None:
        self.process_manager = process_manager
        self._image_dir = image_dir
        self._image_prefix = image_prefix
        self._history_limit = history_limit
        self._max_message_length = max_message_length
        self._timezone_name = timezone_name

    def open_session(self, request_id: str | None = None) -> StreamSession:
        return StreamSession(
            self.process_manager,
            request_id or new_request_id(),
            image_dir=self._image_dir,
            image_prefix=self._image_prefix,
            history_limit=self._history_limit,
            max_message_length=self._max_message_length,
            timezone_name=self._timezone_name,
        )

    def stream(
        self,
        message: str = "",
        *,
        images: Sequence[str] | None = None,
        history: Sequence[ConversationEntry] | None = None,
        request_id: str | None = None,
    ) -> AsyncIterator[StreamEvent]:
        session = self.open_session(request_id)
        return session.events(message, images=images, history=history)

    async def ask(self, message: str, images: Sequence[str] | None = None) -> str:
        """Run a request to completion and return only the final text."""

        result = ""
        async for event in self.stream(message, images=images):
            if isinstance(event, DoneEvent):
                result = event.content
            elif isinstance(event, ErrorEvent):
                result = event.message
        return result


__all__ = [
    "GENERIC_ERROR_MESSAGE",
    "TIMEOUT_MESSAGE",
    "ClaudeBridge",
    "SessionState",
    "StreamSession",
    "new_request_id",
]
