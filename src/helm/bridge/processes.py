"""Spawn, track and tear down assistant CLI subprocesses.

Each chat request runs the CLI as the leader of its own process group so that
the CLI and anything it launches (MCP servers, shells, browsers) can be killed
together. The :class:`ProcessRegistry` maps request ids to pids so a client
disconnect handled elsewhere can find and kill the right group.
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
from pathlib import Path
from typing import AsyncIterator

from .errors import ProcessTimeoutError, SpawnError

logger = logging.getLogger(__name__)

STDOUT_CHUNK_SIZE = 64 * 1024


class ProcessRegistry:
    """Request id to pid table shared by every in-flight request.

    All mutations happen on the event loop thread, each in a single step, so
    no lock is needed.
    """

    def __init__(self) -> None:
        self._pids: dict[str, int] = {}

    def register(self, request_id: str, pid: int) -> None:
        self._pids[request_id] = pid

    def get(self, request_id: str) -> int | None:
        return self._pids.get(request_id)

    def pop(self, request_id: str) -> int | None:
        return self._pids.pop(request_id, None)

    def active(self) -> dict[str, int]:
        return dict(self._pids)

    def __contains__(self, request_id: object) -> bool:
        return request_id in self._pids

    def __len__(self) -> int:
        return len(self._pids)


def kill_process_tree(pid: int) -> bool:
    """SIGKILL the process group led by ``pid``, falling back to the pid itself.

    Returns ``False`` when neither target exists any more.
    """

    try:
        os.killpg(pid, signal.SIGKILL)
    except OSError:
        try:
            os.kill(pid, signal.SIGKILL)
        except OSError:
            logger.debug("Process %d already exited", pid)
            return False
    logger.info("Force killed process %d", pid)
    return True


class ClaudeProcess:
    """Handle for one running assistant CLI invocation."""

    def __init__(self, request_id: str, process: asyncio.subprocess.Process) -> None:
        self.request_id = request_id
        self.process = process
        self.timed_out = False
        self._watchdog: asyncio.TimerHandle | None = None
        self._stderr_task: asyncio.Task[None] | None = None

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def running(self) -> bool:
        return self.process.returncode is None

    async def chunks(self, size: int = STDOUT_CHUNK_SIZE) -> AsyncIterator[bytes]:
        """Yield raw stdout chunks until the CLI closes its output."""

        stdout = self.process.stdout
        if stdout is None:
            return
        while True:
            chunk = await stdout.read(size)
            if not chunk:
                break
            yield chunk

    def cancel_watchdog(self) -> None:
        if self._watchdog is not None:
            self._watchdog.cancel()
            self._watchdog = None


class ProcessManager:
    """Own the lifecycle of assistant CLI subprocesses."""

    def __init__(
        self,
        registry: ProcessRegistry | None = None,
        *,
        binary: str = "claude",
        max_turns: int = 30,
        workdir: Path | None = None,
        timeout: float = 600.0,
        post_exit_kill_delay: float = 0.5,
    ) -> None:
        self.registry = registry if registry is not None else ProcessRegistry()
        self._binary = binary
        self._max_turns = max_turns
        self._workdir = workdir
        self._timeout = timeout
        self._post_exit_kill_delay = post_exit_kill_delay
        self._handles: dict[str, ClaudeProcess] = {}
        self._pending_kills: set[asyncio.TimerHandle] = set()

    @property
    def timeout(self) -> float:
        return self._timeout

    def build_command(self) -> list[str]:
        return [
            self._binary,
            "-p",
            "-",
            "--output-format",
            "stream-json",
            "--verbose",
            "--dangerously-skip-permissions",
            "--max-turns",
            str(self._max_turns),
        ]

    async def spawn(self, prompt: str, request_id: str) -> ClaudeProcess:
        """Start the CLI, register it under ``request_id`` and send ``prompt``."""

        command = self.build_command()
        spawn_task = asyncio.ensure_future(
            asyncio.create_subprocess_exec(
                *command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(self._workdir) if self._workdir else None,
                env=dict(os.environ),
                start_new_session=True,
            )
        )
        try:
            process = await asyncio.shield(spawn_task)
        except FileNotFoundError as exc:
            raise SpawnError(f"Assistant CLI not found: {self._binary}") from exc
        except asyncio.CancelledError:
            # The request went away mid-spawn; make sure the child does not outlive it.
            spawn_task.add_done_callback(_kill_orphan)
            raise
        except OSError as exc:
            raise SpawnError(f"Failed to start assistant CLI: {exc}") from exc

        handle = ClaudeProcess(request_id, process)
        self.registry.register(request_id, process.pid)
        self._handles[request_id] = handle
        loop = asyncio.get_running_loop()
        handle._watchdog = loop.call_later(self._timeout, self._expire, handle)
        handle._stderr_task = asyncio.create_task(_drain_stderr(handle))
        logger.info("Started assistant CLI (PID: %d) for request %s", process.pid, request_id)

        await self._write_prompt(handle, prompt)
        return handle

    async def _write_prompt(self, handle: ClaudeProcess, prompt: str) -> None:
        stdin = handle.process.stdin
        if stdin is None:
            return
        try:
            stdin.write(prompt.encode("utf-8"))
            await stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as exc:
            logger.warning(
                "Assistant CLI closed stdin early for request %s: %s",
                handle.request_id,
                exc,
            )
        finally:
            stdin.close()

    def _expire(self, handle: ClaudeProcess) -> None:
        # Fires only while wait() has not returned. The CLI itself may already
        # have exited with a descendant still holding stdout, so the group is
        # killed either way.
        handle._watchdog = None
        handle.timed_out = True
        logger.warning(
            "Request %s exceeded %.0fs; killing process %d",
            handle.request_id,
            self._timeout,
            handle.pid,
        )
        kill_process_tree(handle.pid)
        self._release(handle.request_id)

    async def wait(self, handle: ClaudeProcess) -> int:
        """Wait for the CLI to exit.

        Raises :class:`ProcessTimeoutError` when the watchdog killed it first.
        """

        try:
            returncode = await handle.process.wait()
        finally:
            handle.cancel_watchdog()

        if handle.timed_out:
            raise ProcessTimeoutError(
                f"Request {handle.request_id} timed out after {self._timeout:.0f}s"
            )

        self._release(handle.request_id)
        if returncode != 0:
            logger.warning(
                "Assistant CLI for request %s exited with code %d",
                handle.request_id,
                returncode,
            )
        # The CLI does not always reap its own children.
        self._schedule_post_exit_kill(handle.pid)
        return returncode

    def abort(self, request_id: str) -> bool:
        """Kill the process group for ``request_id``; unknown ids are a no-op."""

        pid = self._release(request_id)
        if pid is None:
            return False
        logger.info(
            "Aborting assistant process %d for request %s (client disconnected)",
            pid,
            request_id,
        )
        kill_process_tree(pid)
        return True

    def terminate(self, handle: ClaudeProcess) -> None:
        """Error-path teardown: kill if still alive and drop the registry entry."""

        registered = self._release(handle.request_id) is not None
        if registered or handle.running:
            kill_process_tree(handle.pid)

    async def shutdown(self) -> None:
        """Kill every tracked process and cancel pending follow-up kills."""

        for timer in list(self._pending_kills):
            timer.cancel()
        self._pending_kills.clear()

        for request_id, pid in self.registry.active().items():
            logger.info("Shutting down assistant process %d (request %s)", pid, request_id)
            self._release(request_id)
            kill_process_tree(pid)

    def _release(self, request_id: str) -> int | None:
        handle = self._handles.pop(request_id, None)
        if handle is not None:
            handle.cancel_watchdog()
        return self.registry.pop(request_id)

    def _schedule_post_exit_kill(self, pid: int) -> None:
        loop = asyncio.get_running_loop()
        timer: asyncio.TimerHandle

        def _kill() -> None:
            self._pending_kills.discard(timer)
            kill_process_tree(pid)

        timer = loop.call_later(self._post_exit_kill_delay, _kill)
        self._pending_kills.add(timer)


def _kill_orphan(task: asyncio.Future[asyncio.subprocess.Process]) -> None:
    if task.cancelled() or task.exception() is not None:
        return
    kill_process_tree(task.result().pid)


async def _drain_stderr(handle: ClaudeProcess) -> None:
    stderr = handle.process.stderr
    if stderr is None:
        return
    try:
        async for line in stderr:
            text = line.decode("utf-8", errors="replace").rstrip()
            if text:
                logger.debug("[assistant %d] %s", handle.pid, text)
    except ValueError:
        # Overlong line; discard the rest so the pipe never fills up.
        logger.debug("Stopped mirroring stderr for process %d", handle.pid)
        while await stderr.read(STDOUT_CHUNK_SIZE):
            pass


__all__ = [
    "ClaudeProcess",
    "ProcessManager",
    "ProcessRegistry",
    "kill_process_tree",
]
