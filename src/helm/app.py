"""Application factory for the FastAPI service."""

from __future__ import annotations

import asyncio
import logging
import os
from contextlib import asynccontextmanager, suppress
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .bridge import ClaudeBridge, ProcessManager, ProcessRegistry
from .config import get_settings
from .routers.chat import router as chat_router
from .services.image_cleanup import cleanup_expired_images

_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
_LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _configure_logging() -> None:
    """Configure logging based on LOG_LEVEL environment variable."""
    # Load .env file first to ensure LOG_FILE is available
    load_dotenv()

    log_level_str = os.getenv("LOG_LEVEL", "INFO").upper()
    log_level = getattr(logging, log_level_str, logging.INFO)

    log_file = os.getenv("LOG_FILE")
    handlers: list[logging.Handler] = []

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(_LOG_FORMAT, datefmt=_LOG_DATE_FORMAT))
        handlers.append(file_handler)

    # Always add console handler
    console_handler = logging.StreamHandler()
    console_handler.setFormatter(logging.Formatter(_LOG_FORMAT, datefmt=_LOG_DATE_FORMAT))
    handlers.append(console_handler)

    logging.basicConfig(
        level=log_level,
        handlers=handlers,
        force=True,  # Override any existing configuration
    )

    logging.getLogger("helm").setLevel(log_level)

    # Also capture uvicorn logs
    logging.getLogger("uvicorn").setLevel(log_level)
    logging.getLogger("uvicorn.access").setLevel(log_level)
    logging.getLogger("uvicorn.error").setLevel(log_level)

    # sse-starlette logs every ping at DEBUG
    if log_level > logging.DEBUG:
        logging.getLogger("sse_starlette").setLevel(logging.WARNING)


def create_app() -> FastAPI:
    # Configure logging first thing
    _configure_logging()

    settings = get_settings()

    registry = ProcessRegistry()
    process_manager = ProcessManager(
        registry,
        binary=settings.claude_binary,
        max_turns=settings.claude_max_turns,
        workdir=settings.claude_workdir,
        timeout=settings.request_timeout_seconds,
        post_exit_kill_delay=settings.post_exit_kill_delay_seconds,
    )

    image_dir = settings.image_temp_dir
    image_dir.mkdir(parents=True, exist_ok=True)

    bridge = ClaudeBridge(
        process_manager,
        image_dir=image_dir,
        image_prefix=settings.image_file_prefix,
        history_limit=settings.history_limit,
        max_message_length=settings.max_message_length,
        timezone_name=settings.prompt_timezone,
    )

    cleanup_task: asyncio.Task | None = None

    async def _run_image_cleanup() -> None:
        await asyncio.to_thread(
            cleanup_expired_images,
            image_dir,
            prefix=settings.image_file_prefix,
            max_age=settings.image_retention,
        )

    async def _image_cleanup_loop() -> None:
        while True:
            await asyncio.sleep(settings.image_cleanup_interval_seconds)
            try:
                await _run_image_cleanup()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logging.warning("Image cleanup run failed: %s", exc)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        nonlocal cleanup_task
        try:
            await _run_image_cleanup()
        except Exception as exc:
            logging.warning("Initial image cleanup failed: %s", exc)
        cleanup_task = asyncio.create_task(_image_cleanup_loop())
        try:
            yield
        finally:
            if cleanup_task is not None:
                cleanup_task.cancel()
                with suppress(asyncio.CancelledError):
                    await cleanup_task
            await process_manager.shutdown()

    app = FastAPI(
        title="Helm Chat Bridge",
        version="0.1.0",
        description="Streams assistant CLI activity to the browser over SSE.",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.process_registry = registry
    app.state.process_manager = process_manager
    app.state.chat_bridge = bridge

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(chat_router)

    @app.get("/health", tags=["health"])
    async def healthcheck() -> dict[str, str | int]:
        return {
            "status": "ok",
            "active_requests": len(registry),
        }

    return app


__all__ = ["create_app"]
