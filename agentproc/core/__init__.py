"""Core module - configuration, execution options and exceptions."""

from agentproc.core.config import Settings, clear_settings_cache, configure_logging, get_settings
from agentproc.core.options import ExecutionOptions

__all__ = [
    "ExecutionOptions",
    "Settings",
    "clear_settings_cache",
    "configure_logging",
    "get_settings",
]
