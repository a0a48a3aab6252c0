"""
Streaming execution - single-shot agent runs consumed line by line.

A ``StreamingResult`` exclusively owns one subprocess. It must be released,
either by iterating to the end of output or by ``aclose()``; breaking out of
iteration early without closing leaves the process running until the
watchdog fires.
"""

import asyncio

from loguru import logger

from agentproc.core.exceptions import CommunicationError, ExecutionTimeoutError, InputClosedError
from agentproc.process.commands import LaunchSpec
from agentproc.process.launcher import ProcessHandle, ProcessLauncher

EXIT_WAIT_SECONDS = 1.0


class StreamingResult:
    """
    Lazy, finite, non-restartable async iterator over subprocess output lines.

    A watchdog task races consumption: if ``timeout_seconds`` elapse before
    end of output is reached, the process group is killed and the next pull
    raises ``ExecutionTimeoutError``. Intended for a single consumer.

    Example:
        >>> async with await executor.execute_streaming("List the files") as stream:
        ...     async for line in stream:
        ...         print(line)
    """

    def __init__(self, handle: ProcessHandle, timeout_seconds: float) -> None:
        """
        Initialize the result and start its watchdog.

        Must be called from a running event loop.

        Args:
            handle: Process whose output is streamed; ownership transfers here.
            timeout_seconds: Deadline for the process to exit.
        """
        self.handle = handle
        self.timeout_seconds = timeout_seconds
        self.lines_read = 0
        self._closed = False
        self._timed_out = False
        self._timeout_reported = False
        self._eof = False
        self._watchdog = asyncio.create_task(
            self._watch(), name=f"agentproc-stream-watchdog-{handle.pid}"
        )

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def timed_out(self) -> bool:
        return self._timed_out

    @property
    def returncode(self) -> int | None:
        return self.handle.returncode

    def is_alive(self) -> bool:
        """Check whether the backing process is still running."""
        return self.handle.is_alive()

    async def _watch(self) -> None:
        await asyncio.sleep(self.timeout_seconds)
        # A descendant may hold the output pipe open after the leader exits.
        if not self._eof and self.handle.is_group_alive():
            logger.warning(
                f"Streaming process {self.handle.pid} timed out after "
                f"{self.timeout_seconds}s, killing it"
            )
            self._timed_out = True
            await asyncio.shield(self.handle.kill())

    def _timeout_error(self) -> ExecutionTimeoutError:
        self._timeout_reported = True
        return ExecutionTimeoutError(
            f"Streaming execution timed out after {self.timeout_seconds}s",
            timeout_seconds=self.timeout_seconds,
        )

    async def deliver(self, prompt: str) -> None:
        """
        Write the prompt to the process input and close it.

        A process that exits or stops reading before taking the whole prompt
        is not an error here; its output and exit code stay readable.

        Raises:
            ExecutionTimeoutError: If the watchdog killed the process first.
            CommunicationError: If the prompt could not be written.
        """
        try:
            await self.handle.write(prompt)
        except InputClosedError as e:
            if self._timed_out:
                await self.aclose()
                raise self._timeout_error() from e
            logger.debug(f"Process {self.handle.pid} stopped reading its prompt: {e}")
        except CommunicationError as e:
            await self.aclose()
            if self._timed_out:
                raise self._timeout_error() from e
            raise

        await self.handle.close_input()

    # -------------------------------------------------------------------------
    # ITERATION
    # -------------------------------------------------------------------------

    def __aiter__(self) -> "StreamingResult":
        return self

    async def __anext__(self) -> str:
        if self._timed_out and not self._timeout_reported:
            await self.aclose()
            raise self._timeout_error()
        if self._closed:
            raise StopAsyncIteration

        try:
            line = await self.handle.read_line()
        except CommunicationError as e:
            await self.aclose()
            if self._timed_out:
                raise self._timeout_error() from e
            raise

        if self._timed_out:
            await self.aclose()
            raise self._timeout_error()

        if line is None:
            self._eof = True
            logger.debug(
                f"Streaming process {self.handle.pid} reached end of output "
                f"after {self.lines_read} lines"
            )
            # Let the process exit with its own code before any signal is sent.
            await self.handle.wait(timeout=EXIT_WAIT_SECONDS)
            await self.aclose()
            raise StopAsyncIteration

        self.lines_read += 1
        return line

    # -------------------------------------------------------------------------
    # RELEASE
    # -------------------------------------------------------------------------

    async def aclose(self) -> None:
        """
        Release the result, killing the process if it is still running.

        Idempotent; only the first call does any work.
        """
        if self._closed:
            return
        self._closed = True

        self._watchdog.cancel()
        try:
            await self._watchdog
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.error(f"Watchdog of streaming process {self.handle.pid} failed: {e}")

        # Teardown must finish even if the caller is cancelled meanwhile.
        await asyncio.shield(self.handle.kill())
        logger.debug(f"Streaming result for process {self.handle.pid} closed")

    async def __aenter__(self) -> "StreamingResult":
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        """Async context manager exit."""
        await self.aclose()


async def open_stream(
    launcher: ProcessLauncher,
    spec: LaunchSpec,
    prompt: str,
    timeout_seconds: float,
) -> StreamingResult:
    """
    Launch ``spec``, deliver ``prompt`` on stdin and return the output stream.

    Raises:
        LaunchError: If the process cannot be started.
        ExecutionTimeoutError: If the deadline passes while delivering the prompt.
        CommunicationError: If the prompt cannot be delivered.
    """
    handle = await launcher.launch(spec.command, spec.args, spec.env, spec.cwd)
    stream = StreamingResult(handle, timeout_seconds)
    await stream.deliver(prompt)
    return stream
