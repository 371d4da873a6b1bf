"""Chat streaming API routes."""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import aclosing

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, Response
from sse_starlette.sse import EventSourceResponse

from ..bridge import ClaudeBridge, ErrorEvent, StreamEvent, StreamSession
from ..config import Settings, get_settings
from ..schemas.chat import ChatRequestError, ChatStreamRequest, parse_chat_request

router = APIRouter(prefix="/api", tags=["chat"])

logger = logging.getLogger(__name__)

STREAM_HEADERS = {"Cache-Control": "no-cache", "Connection": "keep-alive"}
STREAM_FAILURE_MESSAGE = "An error occurred while processing your request."


def _error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def _encode(event: StreamEvent) -> dict[str, str]:
    return {"data": json.dumps(event.to_payload(), ensure_ascii=False)}


@router.post("/chat", response_model=None, status_code=200)
async def stream_chat(
    request: Request,
    settings: Settings = Depends(get_settings),
) -> Response:
    """Run the assistant CLI for one message and stream its progress as SSE."""

    try:
        try:
            body = await request.json()
        except ValueError:
            return _error_response(400, "Invalid request body")

        try:
            payload = parse_chat_request(
                body,
                max_message_length=settings.max_message_length,
                max_images=settings.max_images,
            )
        except ChatRequestError as exc:
            return _error_response(400, exc.message)

        bridge: ClaudeBridge = request.app.state.chat_bridge
        session = bridge.open_session()
    except Exception:
        logger.exception("API error")
        return _error_response(500, "Internal server error")

    logger.info(
        "Chat request %s (%d chars, %d image(s), %d history entries)",
        session.request_id,
        len(payload.message),
        len(payload.images),
        len(payload.conversation_history),
    )
    return EventSourceResponse(
        _publish(bridge, session, payload),
        headers=STREAM_HEADERS,
        sep="\n",
    )


async def _publish(
    bridge: ClaudeBridge,
    session: StreamSession,
    payload: ChatStreamRequest,
):
    events = session.events(
        payload.message,
        images=payload.images,
        history=payload.conversation_history,
    )
    try:
        async with aclosing(events):
            async for event in events:
                yield _encode(event)
                if event.is_terminal:
                    return
    except asyncio.CancelledError:
        # Client closed the connection (tab closed, navigated away).
        logger.info("Client disconnected, aborting request %s", session.request_id)
        bridge.process_manager.abort(session.request_id)
        raise
    except Exception:
        logger.exception("Streaming error for request %s", session.request_id)
        yield _encode(ErrorEvent(STREAM_FAILURE_MESSAGE))


__all__ = ["router", "stream_chat"]
