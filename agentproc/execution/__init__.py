"""Execution - single-shot runs and the caller-facing executor."""

from agentproc.execution.executor import AgentExecutor
from agentproc.execution.streaming import StreamingResult, open_stream

__all__ = ["AgentExecutor", "StreamingResult", "open_stream"]
