"""
Conversation sessions - multi-turn exchanges with one long-lived agent process.

Each session owns exactly one subprocess for its whole lifetime. Messages
are written to the process input and the response is read back until the
command builder's completion marker. Exchanges on one session are
serialised by a FIFO lock; exchanges on different sessions are independent.
"""

import asyncio
import time
from datetime import datetime, timezone
from typing import Any

import anyio
from loguru import logger

from agentproc.core.exceptions import (
    CommunicationError,
    ExecutionTimeoutError,
    SessionClosedError,
    ValidationError,
)
from agentproc.core.options import ExecutionOptions
from agentproc.process.commands import CommandBuilder
from agentproc.process.launcher import ProcessHandle, ProcessLauncher
from agentproc.sessions.base import SessionState

DEFAULT_INACTIVITY_TIMEOUT_SECONDS = 1800.0


class ConversationSession:
    """
    A conversational session bound to one interactive agent process.

    Sessions are normally created through ``SessionManager.create_session``;
    ``start`` is the underlying factory.

    Example:
        >>> session = await ConversationSession.start(
        ...     "session-1", ExecutionOptions(), launcher, builder
        ... )
        >>> await session.send_message("My name is Ada.")
        >>> await session.send_message("What is my name?")
        >>> await session.close()
    """

    def __init__(
        self,
        session_id: str,
        handle: ProcessHandle,
        command_builder: CommandBuilder,
        options: ExecutionOptions | None = None,
        inactivity_timeout_seconds: float = DEFAULT_INACTIVITY_TIMEOUT_SECONDS,
    ) -> None:
        """
        Initialize the session around an already launched process.

        Args:
            session_id: Unique session identifier.
            handle: Interactive process; ownership transfers to the session.
            command_builder: Frames messages and detects end of response.
            options: Execution options (timeout per exchange).
            inactivity_timeout_seconds: Idle time before eviction is allowed.
        """
        self.session_id = session_id
        self.options = options or ExecutionOptions()
        self.inactivity_timeout_seconds = inactivity_timeout_seconds
        self.created_at = datetime.now(timezone.utc)
        self.last_activity = self.created_at
        self.closed_at: datetime | None = None
        self.message_count = 0

        self._handle = handle
        self._builder = command_builder
        self._state = SessionState.CREATED
        self._lock = asyncio.Lock()
        self._last_activity_monotonic = time.monotonic()

    @classmethod
    async def start(
        cls,
        session_id: str,
        options: ExecutionOptions,
        launcher: ProcessLauncher,
        command_builder: CommandBuilder,
        inactivity_timeout_seconds: float = DEFAULT_INACTIVITY_TIMEOUT_SECONDS,
    ) -> "ConversationSession":
        """
        Launch the interactive process and return an ACTIVE session.

        Raises:
            LaunchError: If the process cannot be started.
        """
        spec = command_builder.interactive_spec(session_id, options)
        handle = await launcher.launch(spec.command, spec.args, spec.env, spec.cwd)

        session = cls(
            session_id,
            handle,
            command_builder,
            options=options,
            inactivity_timeout_seconds=inactivity_timeout_seconds,
        )
        session._state = SessionState.ACTIVE
        logger.info(f"Conversation session {session_id} started with PID {handle.pid}")
        return session

    # -------------------------------------------------------------------------
    # STATE
    # -------------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def handle(self) -> ProcessHandle:
        return self._handle

    def is_active(self) -> bool:
        """True iff the session is ACTIVE and its process has not exited."""
        return self._state is SessionState.ACTIVE and self._handle.is_alive()

    def is_busy(self) -> bool:
        """True while an exchange holds the session lock."""
        return self._lock.locked()

    def idle_seconds(self, now: float | None = None) -> float:
        """Seconds since the last activity (monotonic clock)."""
        now = time.monotonic() if now is None else now
        return max(0.0, now - self._last_activity_monotonic)

    def is_expired(self, now: float | None = None) -> bool:
        """Check whether the session has been idle longer than its timeout.

        A session with an exchange in flight is never expired.
        """
        if self.is_busy():
            return False
        return self.idle_seconds(now) > self.inactivity_timeout_seconds

    def _touch(self) -> None:
        self._last_activity_monotonic = time.monotonic()
        self.last_activity = datetime.now(timezone.utc)

    def _ensure_active(self) -> None:
        if self._state is not SessionState.ACTIVE:
            raise SessionClosedError(
                f"Session {self.session_id} is not active (state: {self._state.value})",
                session_id=self.session_id,
            )

    # -------------------------------------------------------------------------
    # EXCHANGE
    # -------------------------------------------------------------------------

    async def send_message(self, text: str) -> str:
        """
        Send one message and wait for the complete response.

        Concurrent callers are served one at a time in lock-acquisition order.

        Args:
            text: Message to send.

        Returns:
            Response lines preceding the completion marker, joined by newlines.

        Raises:
            ValidationError: If the message is blank.
            SessionClosedError: If the session is (or gets) closed.
            CommunicationError: If I/O with the process fails; the session is closed.
            ExecutionTimeoutError: If no complete response arrives within
                ``options.timeout_seconds``; the session is closed.
        """
        if not text or not text.strip():
            raise ValidationError("Message cannot be empty")

        self._ensure_active()

        async with self._lock:
            # Another caller may have closed the session while we waited.
            self._ensure_active()
            self._touch()
            logger.debug(f"Sending {len(text)} chars to session {self.session_id}")

            try:
                with anyio.fail_after(self.options.timeout_seconds):
                    response = await self._exchange(text)
            except CommunicationError as e:
                if self._state is not SessionState.ACTIVE:
                    raise SessionClosedError(
                        f"Session {self.session_id} was closed during the exchange",
                        session_id=self.session_id,
                    ) from e
                logger.error(f"Session {self.session_id} failed: {e}")
                await self._close("communication failure")
                raise
            except TimeoutError:
                logger.warning(
                    f"Session {self.session_id} timed out after "
                    f"{self.options.timeout_seconds}s, killing its process"
                )
                await self._close("timeout")
                raise ExecutionTimeoutError(
                    f"Session {self.session_id} timed out after {self.options.timeout_seconds}s",
                    timeout_seconds=self.options.timeout_seconds,
                ) from None
            except asyncio.CancelledError:
                # A half-read response would be matched to the next request.
                logger.warning(f"Exchange on session {self.session_id} cancelled, closing session")
                await self._close("cancelled")
                raise

            self._touch()
            self.message_count += 1
            logger.debug(f"Session {self.session_id} responded with {len(response)} chars")
            return response

    async def _exchange(self, text: str) -> str:
        await self._handle.write_line(self._builder.encode_message(text))

        lines: list[str] = []
        while True:
            line = await self._handle.read_line()
            if line is None:
                raise CommunicationError(
                    f"Process {self._handle.pid} of session {self.session_id} "
                    f"ended before completing the response (exit code {self._handle.returncode})"
                )
            if self._builder.is_completion(line):
                return "\n".join(lines)
            lines.append(line)

    # -------------------------------------------------------------------------
    # CLOSE
    # -------------------------------------------------------------------------

    async def close(self) -> None:
        """
        Close the session and terminate its process.

        Idempotent: only the first caller tears down; concurrent and later
        calls return immediately. Does not wait for an in-flight exchange;
        killing the process makes that exchange fail with
        ``SessionClosedError``.
        """
        await self._close("closed")

    async def _close(self, reason: str) -> bool:
        # The check and the transition run without an intervening await,
        # so exactly one caller gets past here.
        if self._state in (SessionState.CLOSING, SessionState.CLOSED):
            return False
        self._state = SessionState.CLOSING

        logger.info(f"Closing conversation session {self.session_id} ({reason})")
        try:
            await asyncio.shield(self._handle.kill())
        finally:
            self._state = SessionState.CLOSED
            self.closed_at = datetime.now(timezone.utc)

        logger.debug(f"Session {self.session_id} closed after {self.message_count} messages")
        return True

    # -------------------------------------------------------------------------
    # INFO
    # -------------------------------------------------------------------------

    def info(self) -> dict[str, Any]:
        """Snapshot of the session for monitoring."""
        return {
            "session_id": self.session_id,
            "state": self._state.value,
            "pid": self._handle.pid,
            "alive": self._handle.is_alive(),
            "busy": self.is_busy(),
            "created_at": self.created_at.isoformat(),
            "last_activity": self.last_activity.isoformat(),
            "closed_at": self.closed_at.isoformat() if self.closed_at else None,
            "idle_seconds": self.idle_seconds(),
            "inactivity_timeout_seconds": self.inactivity_timeout_seconds,
            "message_count": self.message_count,
        }

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"ConversationSession(id={self.session_id}, state={self._state.value}, "
            f"messages={self.message_count})"
        )
