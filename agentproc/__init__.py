"""
agentproc - lifecycle management for interactive agent CLI processes.

Single-shot streaming runs and multi-turn conversational sessions on top of
long-lived subprocesses, with timeouts, idle-session eviction and safe
termination.
"""

__version__ = "0.1.0"

from agentproc.core.exceptions import (
    AgentProcError,
    CommunicationError,
    ExecutionError,
    ExecutionTimeoutError,
    InputClosedError,
    LaunchError,
    ManagerShutdownError,
    SessionClosedError,
    SessionNotFoundError,
    ValidationError,
)
from agentproc.core.options import ExecutionOptions
from agentproc.execution.executor import AgentExecutor
from agentproc.execution.streaming import StreamingResult
from agentproc.sessions.base import SessionState, SessionStatistics
from agentproc.sessions.conversation import ConversationSession
from agentproc.sessions.manager import SessionManager

__all__ = [
    "AgentExecutor",
    "AgentProcError",
    "CommunicationError",
    "ConversationSession",
    "ExecutionError",
    "ExecutionOptions",
    "ExecutionTimeoutError",
    "InputClosedError",
    "LaunchError",
    "ManagerShutdownError",
    "SessionClosedError",
    "SessionManager",
    "SessionNotFoundError",
    "SessionState",
    "SessionStatistics",
    "StreamingResult",
    "ValidationError",
    "__version__",
]
