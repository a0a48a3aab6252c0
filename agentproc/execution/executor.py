"""
Agent executor - the caller-facing API of agentproc.

Combines single-shot execution (buffered or streaming) with conversational
sessions backed by a lazily created ``SessionManager``.
"""

from loguru import logger

from agentproc.core.config import Settings, get_settings
from agentproc.core.exceptions import (
    AgentProcError,
    ExecutionError,
    ManagerShutdownError,
    SessionNotFoundError,
    ValidationError,
)
from agentproc.core.options import ExecutionOptions
from agentproc.execution.streaming import StreamingResult, open_stream
from agentproc.process.commands import ClaudeCommandBuilder, CommandBuilder
from agentproc.process.launcher import ProcessLauncher
from agentproc.sessions.base import SessionStatistics
from agentproc.sessions.manager import SessionManager

VERSION_TIMEOUT_SECONDS = 10.0


def _validate_prompt(prompt: str | None) -> None:
    if prompt is None or not prompt.strip():
        raise ValidationError("Prompt cannot be null or empty")


class AgentExecutor:
    """
    Runs an agent CLI as single-shot invocations or conversational sessions.

    Example:
        >>> executor = AgentExecutor()
        >>> answer = await executor.execute("Summarise README.md")
        >>> session_id = await executor.create_session()
        >>> await executor.send_message(session_id, "Remember the number 7")
        >>> await executor.send_message(session_id, "Which number?")
        >>> await executor.shutdown()
    """

    def __init__(
        self,
        settings: Settings | None = None,
        launcher: ProcessLauncher | None = None,
        command_builder: CommandBuilder | None = None,
    ) -> None:
        """
        Initialize the executor.

        Args:
            settings: Application settings (defaults to ``get_settings()``).
            launcher: Process launcher (built from settings if None).
            command_builder: Agent CLI command builder (Claude CLI if None).
        """
        self.settings = settings or get_settings()
        self.launcher = launcher or ProcessLauncher.from_settings(self.settings)
        self.command_builder = command_builder or ClaudeCommandBuilder.from_settings(self.settings)
        self._session_manager: SessionManager | None = None
        self._shutdown = False

    # =========================================================================
    # SINGLE-SHOT EXECUTION
    # =========================================================================

    async def execute_streaming(
        self,
        prompt: str,
        options: ExecutionOptions | None = None,
    ) -> StreamingResult:
        """
        Start a single-shot run and stream its output.

        The returned result owns the subprocess and must be exhausted or
        closed (``aclose()`` or ``async with``).

        Raises:
            ValidationError: If the prompt is blank.
            LaunchError: If the process cannot be started.
        """
        _validate_prompt(prompt)
        options = options or ExecutionOptions()
        logger.debug(f"Starting streaming execution with prompt length {len(prompt)}, {options}")

        spec = self.command_builder.streaming_spec(options)
        return await open_stream(self.launcher, spec, prompt, options.timeout_seconds)

    async def execute(self, prompt: str, options: ExecutionOptions | None = None) -> str:
        """
        Run a prompt to completion and return the whole output.

        Raises:
            ValidationError: If the prompt is blank.
            LaunchError: If the process cannot be started.
            ExecutionTimeoutError: If the run exceeds ``options.timeout_seconds``.
            ExecutionError: If the process exits with a non-zero code.
        """
        lines: list[str] = []
        async with await self.execute_streaming(prompt, options) as stream:
            async for line in stream:
                lines.append(line)

        output = "\n".join(lines)
        if stream.returncode != 0:
            logger.error(f"Agent CLI failed with exit code {stream.returncode}")
            raise ExecutionError(
                f"Agent CLI failed with exit code {stream.returncode}",
                exit_code=stream.returncode,
                output=output,
            )

        logger.info(f"Agent CLI executed successfully, output length: {len(output)}")
        return output

    def is_available(self) -> bool:
        """Check whether the agent CLI can be launched with credentials."""
        return self.command_builder.is_available()

    async def get_version(self) -> str | None:
        """Return the agent CLI version string, or None if it cannot be read."""
        spec = self.command_builder.version_spec()
        if spec is None:
            return None

        try:
            lines: list[str] = []
            async with await open_stream(self.launcher, spec, "", VERSION_TIMEOUT_SECONDS) as stream:
                async for line in stream:
                    lines.append(line)
        except AgentProcError as e:
            logger.error(f"Failed to get agent CLI version: {e}")
            return None

        if stream.returncode != 0:
            return None
        return "\n".join(lines).strip() or None

    # =========================================================================
    # CONVERSATIONAL SESSIONS
    # =========================================================================

    @property
    def session_manager(self) -> SessionManager | None:
        return self._session_manager

    def _get_or_create_session_manager(self) -> SessionManager:
        if self._shutdown:
            raise ManagerShutdownError("AgentExecutor has been shut down")
        if self._session_manager is None:
            self._session_manager = SessionManager(
                launcher=self.launcher,
                command_builder=self.command_builder,
                settings=self.settings,
            )
        return self._session_manager

    async def create_session(self, options: ExecutionOptions | None = None) -> str:
        """
        Create a conversation session.

        Raises:
            ManagerShutdownError: If the executor has been shut down.
            LaunchError: If the process cannot be started.
        """
        manager = self._get_or_create_session_manager()
        session_id = await manager.create_session(options)
        logger.info(f"Created conversation session: {session_id}")
        return session_id

    async def send_message(self, session_id: str, message: str) -> str:
        """
        Send a message to a session.

        Raises:
            ValidationError: If the message is blank.
            SessionNotFoundError: If the session is unknown, expired or closed.
            CommunicationError: If I/O with the process fails.
            ExecutionTimeoutError: If the exchange exceeds its timeout.
        """
        if message is None or not message.strip():
            raise ValidationError("Message cannot be null or empty")
        if self._session_manager is None:
            raise SessionNotFoundError(f"Session not found: {session_id}", session_id=session_id)

        return await self._session_manager.send_message(session_id, message)

    async def close_session(self, session_id: str) -> None:
        """Close a session; unknown ids are ignored."""
        if self._session_manager is None:
            logger.debug(f"Session manager not initialized, session {session_id} may not exist")
            return
        await self._session_manager.close_session(session_id)

    def is_session_active(self, session_id: str) -> bool:
        """Check whether a session exists and is active."""
        if self._session_manager is None:
            return False
        return self._session_manager.is_session_active(session_id)

    def statistics(self) -> SessionStatistics:
        """Session statistics (all zero before the first session)."""
        if self._session_manager is None:
            return SessionStatistics(
                active_session_count=0,
                inactivity_timeout_seconds=self.settings.agentproc_session_inactivity_timeout,
                average_session_age_seconds=0.0,
            )
        return self._session_manager.statistics()

    async def shutdown(self) -> None:
        """Close every session and refuse new ones."""
        logger.info("Shutting down AgentExecutor")
        self._shutdown = True
        if self._session_manager is not None:
            await self._session_manager.shutdown()
        logger.info("AgentExecutor shutdown complete")
