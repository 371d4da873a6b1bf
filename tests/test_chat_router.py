from __future__ import annotations

import asyncio
import base64
import json
import logging
from collections.abc import Callable, Generator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from helm.app import create_app
from helm.bridge import ClaudeBridge, ProcessManager
from helm.config import get_settings
from helm.routers.chat import _publish
from helm.schemas.chat import ChatStreamRequest

IMAGE = "data:image/jpeg;base64," + base64.b64encode(b"\xff\xd8\xff fake jpeg").decode("ascii")

CHAT_CLI = """
emit({"type": "system", "subtype": "init", "tools": ["Read"], "mcp_servers": []})
emit({"type": "assistant", "message": {"content": [
    {"type": "tool_use", "name": "WebSearch", "input": {"query": "weather", "allowed_domains": []}}
]}})
emit({"type": "result", "subtype": "success", "result": "Sunny, 21°C."})
"""


@pytest.fixture
def make_client(
    monkeypatch, tmp_path: Path, make_fake_cli
) -> Generator[Callable[..., TestClient], None, None]:
    """Return a factory producing a test client wired to a fake assistant CLI."""

    clients: list[TestClient] = []

    def _make(cli_body: str, **env: str) -> TestClient:
        monkeypatch.setenv("CLAUDE_BINARY", str(make_fake_cli(cli_body)))
        monkeypatch.setenv("CLAUDE_WORKDIR", str(tmp_path))
        monkeypatch.setenv("IMAGE_TEMP_DIR", str(tmp_path / "images"))
        monkeypatch.setenv("POST_EXIT_KILL_DELAY", "0.05")
        for name, value in env.items():
            monkeypatch.setenv(name, value)
        get_settings.cache_clear()

        client = TestClient(create_app())
        client.__enter__()
        clients.append(client)
        return client

    yield _make

    for client in clients:
        client.__exit__(None, None, None)
    get_settings.cache_clear()


def _events(body: str) -> list[dict]:
    return [
        json.loads(line[len("data: ") :])
        for line in body.splitlines()
        if line.startswith("data: ")
    ]


def test_chat_streams_init_tool_and_done(make_client) -> None:
    client = make_client(CHAT_CLI)

    response = client.post("/api/chat", json={"message": "What's the weather?"})

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    assert response.headers["cache-control"] == "no-cache"
    assert _events(response.text) == [
        {"type": "init", "tools": ["Read"], "mcpServers": []},
        {
            "type": "tool",
            "name": "WebSearch",
            "friendlyName": 'Searching: "weather"',
            "icon": "🌐",
            "input": {"query": "weather"},
        },
        {"type": "done", "content": "Sunny, 21°C."},
    ]


def test_chat_returns_staged_image_paths(make_client, tmp_path: Path) -> None:
    client = make_client(CHAT_CLI)

    response = client.post(
        "/api/chat",
        json={
            "message": "",
            "images": [IMAGE],
            "conversationHistory": [{"role": "user", "content": "hello"}],
        },
    )

    done = _events(response.text)[-1]
    assert done["type"] == "done"
    (image_path,) = done["imagePaths"]
    staged = Path(image_path)
    assert staged.parent == tmp_path / "images"
    assert staged.name.startswith("helm-upload-")
    assert staged.suffix == ".jpg"
    assert staged.read_bytes().startswith(b"\xff\xd8\xff")


def test_failures_arrive_as_error_events(make_client) -> None:
    client = make_client("time.sleep(60)\n", CLAUDE_TIMEOUT="0.5")

    response = client.post("/api/chat", json={"message": "hi"})

    assert response.status_code == 200
    assert _events(response.text) == [
        {
            "type": "error",
            "message": "Request timed out (10 minutes). Please try again with a simpler question.",
        }
    ]
    assert client.get("/health").json()["active_requests"] == 0


@pytest.mark.parametrize(
    ("payload", "message"),
    [
        ({}, "Message or images required"),
        ({"message": "x" * 10_001}, "Message is too long"),
        ({"message": "hi", "images": [IMAGE] * 11}, "Maximum 10 images allowed"),
        ({"images": ["not-a-data-url"]}, "Invalid image format"),
        ([1, 2, 3], "Invalid request body"),
    ],
)
def test_invalid_requests_are_rejected(make_client, payload, message: str) -> None:
    client = make_client(CHAT_CLI)

    response = client.post("/api/chat", json=payload)

    assert response.status_code == 400
    assert response.json() == {"error": message}


def test_malformed_json_is_rejected(make_client) -> None:
    client = make_client(CHAT_CLI)

    response = client.post(
        "/api/chat",
        content=b"{not json",
        headers={"content-type": "application/json"},
    )

    assert response.status_code == 400
    assert response.json() == {"error": "Invalid request body"}


def test_health_reports_active_requests(make_client) -> None:
    client = make_client(CHAT_CLI)

    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "active_requests": 0}


@pytest.mark.asyncio
async def test_client_disconnect_aborts_request(
    make_fake_cli, tmp_path: Path, caplog: pytest.LogCaptureFixture, is_alive
) -> None:
    cli = make_fake_cli(
        """
        emit({"type": "system", "subtype": "init", "tools": []})
        time.sleep(60)
        """
    )
    manager = ProcessManager(binary=str(cli))
    bridge = ClaudeBridge(manager, image_dir=tmp_path, timezone_name="UTC")
    session = bridge.open_session("req-disconnect")
    payload = ChatStreamRequest(message="hold on", images=[IMAGE])
    frames: list[dict[str, str]] = []
    first_frame = asyncio.Event()

    async def consume() -> None:
        async for frame in _publish(bridge, session, payload):
            frames.append(frame)
            first_frame.set()

    task = asyncio.create_task(consume())
    await asyncio.wait_for(first_frame.wait(), timeout=10)
    pid = manager.registry.get("req-disconnect")
    assert pid is not None

    with caplog.at_level(logging.INFO, logger="helm.routers.chat"):
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    assert "Client disconnected, aborting request req-disconnect" in caplog.text
    assert len(manager.registry) == 0
    assert not list(tmp_path.glob("helm-upload-*"))
    assert [json.loads(frame["data"])["type"] for frame in frames] == ["init"]
    for _ in range(100):
        if not is_alive(pid):
            break
        await asyncio.sleep(0.05)
    assert not is_alive(pid)
