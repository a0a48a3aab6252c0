"""
Session Manager for agentproc.

Owns the registry of live conversation sessions, creates, looks up and
closes them, evicts idle sessions from a background sweep task and reports
aggregate statistics.
"""

import asyncio
import time
import uuid

from loguru import logger

from agentproc.core.config import Settings, get_settings
from agentproc.core.exceptions import ManagerShutdownError, SessionNotFoundError
from agentproc.core.options import ExecutionOptions
from agentproc.process.commands import ClaudeCommandBuilder, CommandBuilder
from agentproc.process.launcher import ProcessLauncher
from agentproc.sessions.base import SessionState, SessionStatistics
from agentproc.sessions.conversation import ConversationSession


class SessionManager:
    """
    Manages conversation sessions.

    The registry is a plain dict mutated only between awaits, so lookups,
    inserts and removals need no lock. Each session serialises its own
    exchanges; different sessions run fully in parallel.

    Example:
        >>> async with SessionManager(inactivity_timeout_seconds=600) as manager:
        ...     session_id = await manager.create_session()
        ...     reply = await manager.send_message(session_id, "Hello")
        ...     await manager.close_session(session_id)
    """

    def __init__(
        self,
        inactivity_timeout_seconds: float | None = None,
        sweep_interval_seconds: float | None = None,
        launcher: ProcessLauncher | None = None,
        command_builder: CommandBuilder | None = None,
        settings: Settings | None = None,
    ) -> None:
        """
        Initialize the session manager.

        Args:
            inactivity_timeout_seconds: Default idle time before eviction.
            sweep_interval_seconds: Seconds between background sweeps.
            launcher: Process launcher (built from settings if None).
            command_builder: Agent CLI command builder (Claude CLI if None).
            settings: Application settings (defaults to ``get_settings()``).
        """
        self.settings = settings or get_settings()
        self.inactivity_timeout_seconds = (
            inactivity_timeout_seconds
            if inactivity_timeout_seconds is not None
            else self.settings.agentproc_session_inactivity_timeout
        )
        self.sweep_interval_seconds = (
            sweep_interval_seconds
            if sweep_interval_seconds is not None
            else self.settings.agentproc_sweep_interval
        )
        if self.inactivity_timeout_seconds <= 0:
            raise ValueError("Inactivity timeout must be positive")
        if self.sweep_interval_seconds <= 0:
            raise ValueError("Sweep interval must be positive")

        self.launcher = launcher or ProcessLauncher.from_settings(self.settings)
        self.command_builder = command_builder or ClaudeCommandBuilder.from_settings(self.settings)

        self._sessions: dict[str, ConversationSession] = {}
        self._sweep_task: asyncio.Task | None = None
        self._shutdown = False

        logger.info(
            f"SessionManager initialized with inactivity timeout "
            f"{self.inactivity_timeout_seconds}s, sweep every {self.sweep_interval_seconds}s"
        )

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    @property
    def is_shutdown(self) -> bool:
        return self._shutdown

    def start(self) -> None:
        """Start the background sweep task (must run inside an event loop)."""
        self._ensure_not_shutdown()
        if self._sweep_task is None or self._sweep_task.done():
            self._sweep_task = asyncio.create_task(
                self._sweep_loop(), name="agentproc-session-sweep"
            )
            logger.debug("Session sweep task started")

    async def shutdown(self) -> None:
        """
        Stop the sweep task and close every session.

        Per-session failures are logged, not raised. After shutdown,
        ``create_session`` fails with ``ManagerShutdownError``. Idempotent.
        """
        if self._shutdown:
            logger.debug("SessionManager already shut down")
            return

        logger.info(f"Shutting down SessionManager (active sessions: {len(self._sessions)})")
        self._shutdown = True

        if self._sweep_task is not None:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None

        session_ids = list(self._sessions)
        await asyncio.gather(*(self.close_session(sid) for sid in session_ids))

        logger.info("SessionManager shut down complete")

    async def __aenter__(self) -> "SessionManager":
        """Async context manager entry."""
        self.start()
        return self

    async def __aexit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        """Async context manager exit."""
        await self.shutdown()

    def _ensure_not_shutdown(self) -> None:
        if self._shutdown:
            raise ManagerShutdownError("SessionManager has been shut down")

    # =========================================================================
    # SESSIONS
    # =========================================================================

    async def create_session(self, options: ExecutionOptions | None = None) -> str:
        """
        Create a session and start its process.

        Args:
            options: Execution options (defaults if None).

        Returns:
            The new session id.

        Raises:
            ManagerShutdownError: If the manager has been shut down.
            LaunchError: If the process cannot be started.
        """
        self._ensure_not_shutdown()
        self.start()

        options = options or ExecutionOptions()
        session_id = str(uuid.uuid4())
        while session_id in self._sessions:
            session_id = str(uuid.uuid4())

        session = await ConversationSession.start(
            session_id,
            options,
            self.launcher,
            self.command_builder,
            inactivity_timeout_seconds=(
                options.session_inactivity_timeout_seconds or self.inactivity_timeout_seconds
            ),
        )

        if self._shutdown:
            # Shutdown ran while the process was launching.
            await session.close()
            raise ManagerShutdownError("SessionManager was shut down during session creation")

        self._sessions[session_id] = session
        logger.info(f"Created conversation session {session_id} (total active: {len(self._sessions)})")
        return session_id

    async def get_session(self, session_id: str) -> ConversationSession:
        """
        Look up an active session.

        A registered session that is no longer active is evicted.

        Raises:
            SessionNotFoundError: If the id is unknown, expired or closed.
        """
        session = self._sessions.get(session_id)
        if session is None:
            logger.warning(f"Session not found: {session_id}")
            raise SessionNotFoundError(f"Session not found: {session_id}", session_id=session_id)

        if not session.is_active():
            logger.warning(f"Session {session_id} is not active (state: {session.state.value})")
            await self.close_session(session_id)
            raise SessionNotFoundError(f"Session is not active: {session_id}", session_id=session_id)

        return session

    async def send_message(self, session_id: str, text: str) -> str:
        """
        Send a message to a session and return its response.

        Raises:
            SessionNotFoundError: If the session is unknown, expired or closed.
            CommunicationError: If I/O with the process fails.
            ExecutionTimeoutError: If the exchange exceeds the session timeout.
        """
        session = await self.get_session(session_id)
        try:
            return await session.send_message(text)
        finally:
            if session.state is SessionState.CLOSED:
                # Timeouts and I/O failures close the session; drop the entry.
                self._remove(session_id, session)

    def is_session_active(self, session_id: str) -> bool:
        """Check whether a session exists and is active."""
        if self._shutdown:
            return False
        session = self._sessions.get(session_id)
        return session is not None and session.is_active()

    async def close_session(self, session_id: str) -> None:
        """
        Close and remove a session.

        Unknown ids are a no-op; close errors are logged, never raised.
        """
        session = self._sessions.pop(session_id, None)
        if session is None:
            logger.debug(f"Session {session_id} not found (already closed or never existed)")
            return

        logger.info(f"Closing conversation session {session_id} (remaining active: {len(self._sessions)})")
        try:
            await session.close()
        except Exception as e:
            logger.error(f"Error closing session {session_id}: {e}")

    def _remove(self, session_id: str, session: ConversationSession) -> None:
        if self._sessions.get(session_id) is session:
            del self._sessions[session_id]

    @property
    def active_session_count(self) -> int:
        return len(self._sessions)

    def active_session_ids(self) -> set[str]:
        """Get the ids of all registered sessions."""
        return set(self._sessions)

    # =========================================================================
    # SWEEP
    # =========================================================================

    async def sweep(self) -> int:
        """
        Evict sessions that are idle past their timeout or no longer alive.

        Returns:
            Number of sessions evicted.
        """
        if self._shutdown:
            return 0

        logger.debug(f"Running session sweep (active sessions: {len(self._sessions)})")

        now = time.monotonic()
        expired: list[str] = []
        for session_id, session in list(self._sessions.items()):
            try:
                if not session.is_active() or session.is_expired(now):
                    expired.append(session_id)
            except Exception as e:
                logger.error(f"Error checking session {session_id} for expiration: {e}")
                expired.append(session_id)

        if expired:
            logger.info(f"Evicting {len(expired)} idle session(s)")
            results = await asyncio.gather(
                *(self.close_session(sid) for sid in expired),
                return_exceptions=True,
            )
            for session_id, result in zip(expired, results):
                if isinstance(result, Exception):
                    logger.error(f"Error evicting session {session_id}: {result}")

        logger.debug(f"Sweep complete (remaining active: {len(self._sessions)})")
        return len(expired)

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval_seconds)
            try:
                await self.sweep()
            except Exception as e:
                logger.error(f"Session sweep failed: {e}")

    # =========================================================================
    # STATISTICS
    # =========================================================================

    def statistics(self) -> SessionStatistics:
        """
        Snapshot of the registry.

        ``average_session_age_seconds`` is the mean time since last activity
        of the active sessions in the snapshot (0.0 when there are none).
        """
        now = time.monotonic()
        sessions = [s for s in list(self._sessions.values()) if s.state is SessionState.ACTIVE]
        ages = [s.idle_seconds(now) for s in sessions]

        return SessionStatistics(
            active_session_count=len(sessions),
            inactivity_timeout_seconds=self.inactivity_timeout_seconds,
            average_session_age_seconds=sum(ages) / len(ages) if ages else 0.0,
        )
