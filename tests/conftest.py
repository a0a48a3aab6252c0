"""Pytest configuration and shared fixtures.

The agent CLI is replaced by small Python scripts run with the current
interpreter. Conversation scripts answer each input line and finish every
response with ``END_MARKER``.
"""

import asyncio
import os
import signal
import sys
import textwrap
import time
from collections.abc import AsyncGenerator, Awaitable, Callable, Generator, Sequence
from pathlib import Path

import pytest
import pytest_asyncio

from agentproc.core.config import Settings, clear_settings_cache
from agentproc.core.options import ExecutionOptions
from agentproc.process.commands import CommandBuilder, LaunchSpec
from agentproc.process.launcher import ProcessLauncher
from agentproc.sessions.manager import SessionManager

# Set test environment
os.environ.setdefault("AGENTPROC_LOG_LEVEL", "DEBUG")

END_MARKER = "<<END>>"

AGENT_SCRIPTS: dict[str, str] = {
    # Echoes each message after an optional delay, with a per-process turn counter.
    "echo": """
        import sys, time
        delay = float(sys.argv[1]) if len(sys.argv) > 1 else 0.0
        count = 0
        for line in sys.stdin:
            count += 1
            if delay:
                time.sleep(delay)
            print(f"echo: {line.rstrip()}")
            print(f"count: {count}")
            print("<<END>>")
    """,
    # Reads one message and never answers.
    "hang": """
        import sys, time
        sys.stdin.readline()
        time.sleep(600)
    """,
    # Ignores SIGTERM, announces readiness, then hangs.
    "stubborn": """
        import signal, sys, time
        signal.signal(signal.SIGTERM, signal.SIG_IGN)
        print("ready")
        sys.stdin.readline()
        time.sleep(600)
    """,
    # Reads one message and exits without answering.
    "crash": """
        import sys
        sys.stdin.readline()
        sys.exit(3)
    """,
    # Exits immediately.
    "exit": """
        import sys
        sys.exit(0)
    """,
    # Reads the whole prompt and prints N numbered lines quoting it.
    "lines": """
        import sys
        count = int(sys.argv[1]) if len(sys.argv) > 1 else 3
        prompt = sys.stdin.read().strip()
        for i in range(count):
            print(f"line {i}: {prompt}")
    """,
    # Prints N lines, then keeps running.
    "slow_lines": """
        import sys, time
        count = int(sys.argv[1]) if len(sys.argv) > 1 else 3
        sys.stdin.read()
        for i in range(count):
            print(f"line {i}", flush=True)
        time.sleep(600)
    """,
    # Prints an error and exits with code 2.
    "fail": """
        import sys
        sys.stdin.read()
        print("boom")
        sys.exit(2)
    """,
    # Prints the environment entry and working directory it was started with.
    "env": """
        import os, sys
        sys.stdin.read()
        print(os.environ.get("AGENTPROC_TEST_VALUE", "<unset>"))
        print(os.path.realpath(os.getcwd()))
    """,
    # Starts a long-running child that inherits the pipes, then exits.
    "spawner": """
        import subprocess
        child = subprocess.Popen(["sleep", "600"])
        print(f"child: {child.pid}")
        print("<<END>>")
    """,
    # Rejects its arguments without reading the prompt.
    "reject": """
        import sys
        print("error: invalid model")
        sys.exit(1)
    """,
    # Prints a version string.
    "version": """
        print("1.2.3 (fake agent)")
    """,
}


def script_args(name: str, *args: str) -> tuple[str, ...]:
    """Interpreter arguments running the named agent script."""
    return ("-u", "-c", textwrap.dedent(AGENT_SCRIPTS[name]), *args)


def pid_running(pid: int) -> bool:
    """Check whether ``pid`` names a running (not zombie) process."""
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True

    try:
        stat = Path(f"/proc/{pid}/stat").read_text()
    except OSError:
        return True
    # The state field follows the parenthesised command name.
    return stat.rsplit(")", 1)[-1].split()[0] != "Z"


@pytest.fixture
def wait_for_exit() -> Generator[Callable[..., Awaitable[bool]], None, None]:
    """Wait for a descendant pid to exit; kill leftovers after the test."""
    pids: list[int] = []

    async def _wait(pid: int, timeout: float = 3.0) -> bool:
        pids.append(pid)
        deadline = time.monotonic() + timeout
        while pid_running(pid):
            if time.monotonic() >= deadline:
                return False
            await asyncio.sleep(0.05)
        return True

    yield _wait

    for pid in pids:
        try:
            os.kill(pid, signal.SIGKILL)
        except ProcessLookupError:
            pass


class ScriptCommandBuilder(CommandBuilder):
    """Command builder running the fake agent scripts."""

    def __init__(
        self,
        interactive: str = "echo",
        streaming: str = "lines",
        interactive_args: Sequence[str] = (),
        streaming_args: Sequence[str] = (),
        executable: str = sys.executable,
    ) -> None:
        self.interactive = interactive
        self.streaming = streaming
        self.interactive_args = tuple(interactive_args)
        self.streaming_args = tuple(streaming_args)
        self.executable = executable

    def streaming_spec(self, options: ExecutionOptions) -> LaunchSpec:
        return LaunchSpec(
            command=self.executable,
            args=script_args(self.streaming, *self.streaming_args),
            env=dict(options.env),
            cwd=options.working_directory,
        )

    def interactive_spec(self, session_id: str, options: ExecutionOptions) -> LaunchSpec:
        return LaunchSpec(
            command=self.executable,
            args=script_args(self.interactive, *self.interactive_args),
            env=dict(options.env),
            cwd=options.working_directory,
        )

    def version_spec(self) -> LaunchSpec:
        return LaunchSpec(command=self.executable, args=script_args("version"))

    def encode_message(self, text: str) -> str:
        return text

    def is_completion(self, line: str) -> bool:
        return line == END_MARKER


@pytest.fixture
def mock_settings() -> Generator[Settings, None, None]:
    """Provide fresh settings, clearing the cache around the test."""
    clear_settings_cache()
    yield Settings(
        agentproc_session_inactivity_timeout=60,
        agentproc_sweep_interval=60,
        agentproc_kill_grace_period=0.5,
    )
    clear_settings_cache()


@pytest.fixture
def launcher() -> ProcessLauncher:
    """Launcher with a short grace period."""
    return ProcessLauncher(kill_grace_seconds=0.5)


@pytest.fixture
def make_builder() -> Callable[..., ScriptCommandBuilder]:
    """Factory for command builders running the fake agent scripts."""
    return ScriptCommandBuilder


@pytest.fixture
def echo_builder() -> ScriptCommandBuilder:
    """Builder whose sessions echo messages."""
    return ScriptCommandBuilder()


@pytest_asyncio.fixture
async def manager(
    launcher: ProcessLauncher,
    echo_builder: ScriptCommandBuilder,
    mock_settings: Settings,
) -> AsyncGenerator[SessionManager, None]:
    """Session manager backed by the echo agent."""
    session_manager = SessionManager(
        launcher=launcher,
        command_builder=echo_builder,
        settings=mock_settings,
    )
    yield session_manager
    await session_manager.shutdown()


# Markers
def pytest_configure(config: pytest.Config) -> None:
    """Configure custom pytest markers."""
    config.addinivalue_line("markers", "unit: mark test as unit test")
    config.addinivalue_line("markers", "integration: mark test as integration test")
    config.addinivalue_line("markers", "slow: mark test as slow running")
