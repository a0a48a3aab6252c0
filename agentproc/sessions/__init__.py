"""Session management - conversational agent processes."""

from agentproc.sessions.base import SessionState, SessionStatistics
from agentproc.sessions.conversation import ConversationSession
from agentproc.sessions.manager import SessionManager

__all__ = [
    "ConversationSession",
    "SessionManager",
    "SessionState",
    "SessionStatistics",
]
