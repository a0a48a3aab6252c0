"""
Process launcher for agentproc.

Spawns agent subprocesses with asyncio and exposes line-oriented I/O,
a liveness check and SIGTERM -> SIGKILL termination. A ``ProcessHandle``
is exclusively owned by whoever launched it (a streaming result or a
conversation session); nothing else terminates it.
"""

import asyncio
import os
import signal
import time
from collections.abc import Sequence
from datetime import datetime, timezone

from loguru import logger

from agentproc.core.config import Settings
from agentproc.core.exceptions import CommunicationError, InputClosedError, LaunchError
from agentproc.process.commands import mask_path

DEFAULT_KILL_GRACE_SECONDS = 5.0
DEFAULT_STREAM_LIMIT = 16 * 1024 * 1024
EXIT_POLL_SECONDS = 0.05


# =============================================================================
# PROCESS HANDLE
# =============================================================================


class ProcessHandle:
    """
    One running agent subprocess.

    stderr is merged into stdout, so ``read_line`` sees everything the
    process prints. On POSIX the process leads its own process group and
    ``kill`` signals the whole group.

    Example:
        >>> handle = await ProcessLauncher().launch("cat")
        >>> await handle.write_line("hello")
        >>> await handle.read_line()
        'hello'
        >>> await handle.kill()
    """

    def __init__(
        self,
        process: asyncio.subprocess.Process,
        command: str,
        kill_grace_seconds: float = DEFAULT_KILL_GRACE_SECONDS,
        process_group: bool = True,
    ) -> None:
        self.process = process
        self.command = command
        self.kill_grace_seconds = kill_grace_seconds
        self.started_at = datetime.now(timezone.utc)
        self._process_group = process_group
        self._kill_lock = asyncio.Lock()
        self._killed = False

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def returncode(self) -> int | None:
        return self.process.returncode

    @property
    def killed(self) -> bool:
        """True once ``kill`` has completed."""
        return self._killed

    def is_alive(self) -> bool:
        """Check whether the process has not exited yet."""
        return self.process.returncode is None

    def is_group_alive(self) -> bool:
        """Check whether the process or any member of its process group is running.

        Descendants started by the agent (tool subprocesses, MCP servers)
        stay in the group and may hold the output pipe after the leader
        exits.
        """
        if self.is_alive():
            return True
        if not self._process_group or os.name == "nt":
            return False
        try:
            os.killpg(self.process.pid, 0)
        except OSError:
            return False
        return True

    async def wait(self, timeout: float | None = None) -> int | None:
        """Wait for the process to exit on its own.

        Returns:
            The exit code, or None if ``timeout`` elapsed first.
        """
        try:
            return await asyncio.wait_for(self._exited(), timeout=timeout)
        except TimeoutError:
            return None

    async def _exited(self) -> int:
        # Process.wait() also waits for the pipes to close, which a
        # descendant holding stdout can delay indefinitely.
        while self.process.returncode is None:
            await asyncio.sleep(EXIT_POLL_SECONDS)
        return self.process.returncode

    # -------------------------------------------------------------------------
    # I/O
    # -------------------------------------------------------------------------

    async def read_line(self) -> str | None:
        """
        Read one line of output.

        Returns:
            The line without its line terminator, or None at end of output.

        Raises:
            CommunicationError: If the read fails or the line exceeds the
                reader limit.
        """
        stdout = self.process.stdout
        if stdout is None:
            raise CommunicationError(f"Process {self.pid} has no output channel")

        try:
            raw = await stdout.readline()
        except (ValueError, OSError) as e:
            raise CommunicationError(f"Failed to read from process {self.pid}: {e}") from e

        if not raw:
            return None
        return raw.decode("utf-8", errors="replace").rstrip("\r\n")

    async def write(self, text: str) -> None:
        """Write raw text to the process input and flush it.

        Raises:
            InputClosedError: If the input channel is closed or the process
                stopped reading it.
            CommunicationError: On any other write failure.
        """
        stdin = self.process.stdin
        if stdin is None or stdin.is_closing():
            raise InputClosedError(f"Input channel of process {self.pid} is closed")

        try:
            stdin.write(text.encode("utf-8"))
            await stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            raise InputClosedError(f"Process {self.pid} stopped reading its input: {e}") from e
        except OSError as e:
            raise CommunicationError(f"Failed to write to process {self.pid}: {e}") from e

    async def write_line(self, text: str) -> None:
        """Write ``text`` followed by a newline."""
        await self.write(f"{text}\n")

    async def close_input(self) -> None:
        """Close the process input so it sees end of input."""
        stdin = self.process.stdin
        if stdin is None or stdin.is_closing():
            return

        stdin.close()
        try:
            await stdin.wait_closed()
        except OSError as e:
            # The child exited before reading everything; output is still readable.
            logger.debug(f"Input channel of process {self.pid} closed with error: {e}")

    # -------------------------------------------------------------------------
    # TERMINATION
    # -------------------------------------------------------------------------

    async def kill(self, grace_seconds: float | None = None) -> None:
        """
        Terminate the process.

        Sends SIGTERM, waits up to the grace period, then sends SIGKILL.
        On POSIX the whole process group is signalled, also when the leader
        has already exited but descendants remain. Idempotent: a second
        call (or a concurrent one, which waits for the first) returns
        without signalling again. Killing a handle whose whole group is gone
        only releases its pipes.

        Args:
            grace_seconds: Override of the handle's grace period.
        """
        grace = self.kill_grace_seconds if grace_seconds is None else grace_seconds

        async with self._kill_lock:
            if self._killed:
                return

            try:
                if self.is_group_alive():
                    await self._terminate(grace)
                else:
                    logger.debug(
                        f"Process {self.pid} already exited with code {self.process.returncode}"
                    )
                self._killed = True
            finally:
                self._release()

    async def _terminate(self, grace: float) -> None:
        logger.debug(f"Sending SIGTERM to process {self.pid}")
        self._send_signal(force=False)

        if not await self._wait_group_exit(grace):
            logger.warning(f"Process {self.pid} still alive after {grace}s, sending SIGKILL")
            self._send_signal(force=True)
            await self._exited()

        logger.debug(f"Process {self.pid} terminated with code {self.process.returncode}")

    async def _wait_group_exit(self, grace: float) -> bool:
        deadline = time.monotonic() + grace
        try:
            await asyncio.wait_for(self._exited(), timeout=grace)
        except TimeoutError:
            return False

        while self.is_group_alive():
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return False
            await asyncio.sleep(min(EXIT_POLL_SECONDS, remaining))
        return True

    def _send_signal(self, force: bool) -> None:
        try:
            if os.name == "nt":
                if force:
                    self.process.kill()
                else:
                    self.process.terminate()
            elif self._process_group:
                os.killpg(self.process.pid, signal.SIGKILL if force else signal.SIGTERM)
            else:
                self.process.send_signal(signal.SIGKILL if force else signal.SIGTERM)
        except ProcessLookupError:
            logger.debug(f"Process group of {self.pid} already gone")
        except PermissionError as e:
            logger.warning(f"Not permitted to signal process group of {self.pid}: {e}")

    def _release(self) -> None:
        stdin = self.process.stdin
        if stdin is not None and not stdin.is_closing():
            stdin.close()

    def __repr__(self) -> str:
        """String representation."""
        state = "alive" if self.is_alive() else f"exited({self.returncode})"
        return f"ProcessHandle(pid={self.pid}, command={mask_path(self.command)}, {state})"


# =============================================================================
# LAUNCHER
# =============================================================================


class ProcessLauncher:
    """
    Spawns agent subprocesses.

    Example:
        >>> launcher = ProcessLauncher(kill_grace_seconds=1.0)
        >>> handle = await launcher.launch("claude", ["-p"], env={"HOME": "/tmp"})
    """

    def __init__(
        self,
        kill_grace_seconds: float = DEFAULT_KILL_GRACE_SECONDS,
        stream_limit: int = DEFAULT_STREAM_LIMIT,
    ) -> None:
        """
        Initialize the launcher.

        Args:
            kill_grace_seconds: Wait between SIGTERM and SIGKILL.
            stream_limit: Maximum length in bytes of one output line.
        """
        self.kill_grace_seconds = kill_grace_seconds
        self.stream_limit = stream_limit

    @classmethod
    def from_settings(cls, settings: Settings) -> "ProcessLauncher":
        """Create a launcher configured from application settings."""
        return cls(
            kill_grace_seconds=settings.agentproc_kill_grace_period,
            stream_limit=settings.agentproc_stream_limit,
        )

    async def launch(
        self,
        command: str,
        args: Sequence[str] = (),
        env: dict[str, str] | None = None,
        cwd: str | None = None,
    ) -> ProcessHandle:
        """
        Start one subprocess.

        The child inherits the current environment updated with ``env``.

        Args:
            command: Executable to run.
            args: Command-line arguments.
            env: Environment entries added to the inherited environment.
            cwd: Working directory, or None to inherit.

        Returns:
            Handle owning the new process.

        Raises:
            LaunchError: If the executable cannot be started.
        """
        full_env = os.environ.copy()
        full_env.update(env or {})
        process_group = os.name != "nt"

        try:
            process = await asyncio.create_subprocess_exec(
                command,
                *args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                env=full_env,
                cwd=cwd,
                limit=self.stream_limit,
                start_new_session=process_group,
            )
        except (OSError, ValueError) as e:
            logger.error(f"Failed to launch {mask_path(command)}: {e}")
            raise LaunchError(f"Failed to launch {mask_path(command)}: {e}", command=command) from e

        logger.debug(f"Launched {mask_path(command)} with PID {process.pid}")
        return ProcessHandle(
            process,
            command,
            kill_grace_seconds=self.kill_grace_seconds,
            process_group=process_group,
        )
