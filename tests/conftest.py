import pathlib
import signal
import sys
import textwrap
import time
from typing import Callable

import psutil
import pytest

PROJECT_ROOT = pathlib.Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))


# Prelude for the stand-in assistant CLI. Test bodies call ``emit(record)`` to
# write one stream-json line and can read the prompt from ``PROMPT``.
FAKE_CLI_PRELUDE = '''#!{python}
import json
import os
import subprocess
import sys
import time

ARGS = sys.argv[1:]
PROMPT = sys.stdin.read()


def emit(record):
    sys.stdout.write(json.dumps(record) + "\\n")
    sys.stdout.flush()


'''


@pytest.fixture
def make_fake_cli(tmp_path: pathlib.Path) -> Callable[[str], pathlib.Path]:
    """Return a factory writing an executable fake assistant CLI."""

    counter = iter(range(1000))

    def _make(body: str) -> pathlib.Path:
        path = tmp_path / f"fake-claude-{next(counter)}"
        path.write_text(
            FAKE_CLI_PRELUDE.format(python=sys.executable) + textwrap.dedent(body),
            encoding="utf-8",
        )
        path.chmod(0o755)
        return path

    return _make


@pytest.fixture(autouse=True)
def reset_sse_app_status():
    """sse-starlette keeps a class-level exit event bound to the first loop."""

    from sse_starlette.sse import AppStatus

    AppStatus.should_exit_event = None
    yield
    AppStatus.should_exit_event = None


@pytest.fixture(scope="session", autouse=True)
def cleanup_processes():
    """Kill any lingering child processes after all tests complete."""
    yield

    current_process = psutil.Process()
    children = current_process.children(recursive=True)

    if children:
        print(f"\n[CLEANUP] Found {len(children)} child processes, terminating...")

    for child in children:
        try:
            print(f"[CLEANUP] Terminating process {child.pid} ({child.name()})")
            child.send_signal(signal.SIGTERM)
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            pass

    # Give processes a moment to terminate gracefully
    time.sleep(0.5)

    for child in children:
        try:
            if child.is_running():
                print(f"[CLEANUP] Force killing process {child.pid}")
                child.kill()
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            pass


def process_alive(pid: int) -> bool:
    try:
        return psutil.Process(pid).status() != psutil.STATUS_ZOMBIE
    except psutil.NoSuchProcess:
        return False


@pytest.fixture
def is_alive() -> Callable[[int], bool]:
    return process_alive
