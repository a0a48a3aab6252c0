"""
Shared session types for agentproc.

Lifecycle states and the statistics snapshot reported by the session
manager.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

# =============================================================================
# ENUMS
# =============================================================================


class SessionState(str, Enum):
    """Lifecycle states of a conversation session.

    Transitions only move forward: CREATED -> ACTIVE -> CLOSING -> CLOSED.
    """

    CREATED = "created"
    ACTIVE = "active"
    CLOSING = "closing"
    CLOSED = "closed"


# =============================================================================
# DATA CLASSES
# =============================================================================


@dataclass(frozen=True)
class SessionStatistics:
    """Point-in-time view of the session registry."""

    active_session_count: int
    inactivity_timeout_seconds: float
    average_session_age_seconds: float
    captured_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "active_session_count": self.active_session_count,
            "inactivity_timeout_seconds": self.inactivity_timeout_seconds,
            "average_session_age_seconds": self.average_session_age_seconds,
            "captured_at": self.captured_at.isoformat(),
        }

    def __str__(self) -> str:
        return (
            f"SessionStatistics(active={self.active_session_count}, "
            f"timeout={self.inactivity_timeout_seconds}s, "
            f"avg_age={self.average_session_age_seconds:.2f}s)"
        )
