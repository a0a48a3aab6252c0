"""Process management - spawning agent subprocesses and assembling their commands."""

from agentproc.process.commands import ClaudeCommandBuilder, CommandBuilder, LaunchSpec
from agentproc.process.launcher import ProcessHandle, ProcessLauncher

__all__ = [
    "ClaudeCommandBuilder",
    "CommandBuilder",
    "LaunchSpec",
    "ProcessHandle",
    "ProcessLauncher",
]
