"""Exception hierarchy for agentproc.

Every error raised by the package derives from ``AgentProcError``. Some
errors also derive from a builtin so callers can catch them generically
(``ExecutionTimeoutError`` is a ``TimeoutError``, ``ValidationError`` is a
``ValueError``).
"""


class AgentProcError(Exception):
    """Base exception for agentproc errors."""

    pass


class ValidationError(AgentProcError, ValueError):
    """Prompt or message rejected before any process was spawned."""

    pass


class LaunchError(AgentProcError):
    """The agent subprocess could not be started."""

    def __init__(self, message: str, command: str | None = None) -> None:
        super().__init__(message)
        self.command = command


class CommunicationError(AgentProcError):
    """I/O with the agent subprocess failed mid-exchange."""

    pass


class InputClosedError(CommunicationError):
    """The subprocess stopped reading its input (broken pipe)."""

    pass


class ExecutionTimeoutError(AgentProcError, TimeoutError):
    """An operation exceeded its configured duration.

    The backing process has always been killed by the time this is raised.
    """

    def __init__(self, message: str, timeout_seconds: float | None = None) -> None:
        super().__init__(message)
        self.timeout_seconds = timeout_seconds


class SessionNotFoundError(AgentProcError):
    """Unknown, expired or closed session id."""

    def __init__(self, message: str, session_id: str | None = None) -> None:
        super().__init__(message)
        self.session_id = session_id


class SessionClosedError(SessionNotFoundError):
    """The session was closed before or during the requested exchange."""

    pass


class ManagerShutdownError(AgentProcError, RuntimeError):
    """Operation attempted after the session manager was shut down."""

    pass


class ExecutionError(AgentProcError):
    """A buffered execution finished with a non-zero exit code."""

    def __init__(self, message: str, exit_code: int | None = None, output: str = "") -> None:
        super().__init__(message)
        self.exit_code = exit_code
        self.output = output
