"""
Command assembly for agent subprocesses.

``CommandBuilder`` is the seam between the process lifecycle code and the
particular agent CLI being driven. It decides which executable and flags
to use, which environment to pass, how a message is framed on the input
channel, and which output line ends a conversational turn.
``ClaudeCommandBuilder`` drives the Claude Code CLI.
"""

import json
import os
import shutil
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from agentproc.core.config import Settings
from agentproc.core.options import ExecutionOptions

# =============================================================================
# DATA CLASSES
# =============================================================================


@dataclass(frozen=True)
class LaunchSpec:
    """Everything the launcher needs to start one subprocess."""

    command: str
    args: tuple[str, ...] = ()
    env: dict[str, str] = field(default_factory=dict)
    cwd: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary (environment values are not included)."""
        return {
            "command": mask_path(self.command),
            "args": list(self.args),
            "env": sorted(self.env),
            "cwd": self.cwd,
        }


def mask_path(path: str | None) -> str:
    """Keep only the last path component of an executable path for logging."""
    if path is None:
        return "None"
    head, sep, tail = path.rpartition("/")
    if sep and tail:
        return f".../{tail}"
    return path


# =============================================================================
# BUILDER INTERFACE
# =============================================================================


class CommandBuilder(ABC):
    """
    Builds launch specs and frames conversation messages for one agent CLI.

    Implementations:
    - ClaudeCommandBuilder: Claude Code CLI (print mode and stream-json)
    """

    @abstractmethod
    def streaming_spec(self, options: ExecutionOptions) -> LaunchSpec:
        """Launch spec for a single-shot run; the prompt arrives on stdin."""
        pass

    @abstractmethod
    def interactive_spec(self, session_id: str, options: ExecutionOptions) -> LaunchSpec:
        """Launch spec for a long-lived conversational process."""
        pass

    @abstractmethod
    def encode_message(self, text: str) -> str:
        """Frame one user message as a single input line (no newline)."""
        pass

    @abstractmethod
    def is_completion(self, line: str) -> bool:
        """Return True if ``line`` marks the end of a response."""
        pass

    def version_spec(self) -> LaunchSpec | None:
        """Launch spec printing the CLI version, or None if unsupported."""
        return None

    def is_available(self) -> bool:
        """Check that the CLI can be launched with usable credentials."""
        return True


# =============================================================================
# CLAUDE CODE CLI
# =============================================================================


class ClaudeCommandBuilder(CommandBuilder):
    """
    Command builder for the Claude Code CLI.

    Single-shot runs use print mode (``claude -p``) with the prompt on
    stdin. Conversations keep one process in stream-json mode; each message
    is a JSON user event and a ``{"type": "result", ...}`` event ends the
    turn.

    Example:
        >>> builder = ClaudeCommandBuilder(cli_path="/usr/local/bin/claude")
        >>> builder.streaming_spec(ExecutionOptions(model="sonnet")).args
        ('-p', '--dangerously-skip-permissions', '--model', 'sonnet')
    """

    def __init__(
        self,
        cli_path: str | None = None,
        api_key: str | None = None,
        oauth_token: str | None = None,
        home: str | None = None,
        node_extra_ca_certs: str | None = None,
    ) -> None:
        """
        Initialize the builder.

        Args:
            cli_path: Path to the claude CLI (auto-detected if None).
            api_key: Value for ANTHROPIC_API_KEY.
            oauth_token: Value for CLAUDE_CODE_OAUTH_TOKEN.
            home: HOME directory for the CLI (defaults to the current HOME).
            node_extra_ca_certs: Value for NODE_EXTRA_CA_CERTS.
        """
        self.cli_path = cli_path or self._find_claude_path()
        self.base_env = self._build_base_env(
            api_key=api_key,
            oauth_token=oauth_token,
            home=home or os.environ.get("HOME"),
            node_extra_ca_certs=node_extra_ca_certs,
        )
        logger.info(f"Using claude CLI at {mask_path(self.cli_path)}")

    @classmethod
    def from_settings(cls, settings: Settings) -> "ClaudeCommandBuilder":
        """Create a builder from application settings."""
        return cls(
            cli_path=settings.claude_cli_path,
            api_key=(
                settings.anthropic_api_key.get_secret_value()
                if settings.anthropic_api_key
                else None
            ),
            oauth_token=(
                settings.claude_code_oauth_token.get_secret_value()
                if settings.claude_code_oauth_token
                else None
            ),
            home=settings.home,
            node_extra_ca_certs=settings.node_extra_ca_certs,
        )

    def _find_claude_path(self) -> str:
        """Find the claude CLI executable."""
        # Check common locations
        locations = [
            "claude",  # In PATH
            "/usr/local/bin/claude",
            "/opt/homebrew/bin/claude",
            os.path.expanduser("~/.local/bin/claude"),
        ]

        for loc in locations:
            found = shutil.which(loc)
            if found:
                return found

        # Default to "claude" and let the launch fail if not found
        return "claude"

    @staticmethod
    def _build_base_env(
        api_key: str | None,
        oauth_token: str | None,
        home: str | None,
        node_extra_ca_certs: str | None,
    ) -> dict[str, str]:
        env: dict[str, str] = {}
        # The CLI accepts either credential
        if api_key:
            env["ANTHROPIC_API_KEY"] = api_key
        if oauth_token:
            env["CLAUDE_CODE_OAUTH_TOKEN"] = oauth_token
        if home:
            env["HOME"] = home
        if node_extra_ca_certs:
            env["NODE_EXTRA_CA_CERTS"] = node_extra_ca_certs
        return env

    def _common_flags(self, options: ExecutionOptions) -> list[str]:
        flags = []
        if options.dangerously_skip_permissions:
            flags.append("--dangerously-skip-permissions")
        if options.model:
            flags.extend(["--model", options.model])
        return flags

    def _env(self, options: ExecutionOptions) -> dict[str, str]:
        return {**self.base_env, **options.env}

    def streaming_spec(self, options: ExecutionOptions) -> LaunchSpec:
        return LaunchSpec(
            command=self.cli_path,
            args=("-p", *self._common_flags(options)),
            env=self._env(options),
            cwd=options.working_directory,
        )

    def interactive_spec(self, session_id: str, options: ExecutionOptions) -> LaunchSpec:
        args = [
            "-p",
            "--input-format",
            "stream-json",
            "--output-format",
            "stream-json",
            "--verbose",  # Required by the CLI for stream-json output
            "--session-id",
            session_id,
            *self._common_flags(options),
        ]
        return LaunchSpec(
            command=self.cli_path,
            args=tuple(args),
            env=self._env(options),
            cwd=options.working_directory,
        )

    def version_spec(self) -> LaunchSpec:
        return LaunchSpec(command=self.cli_path, args=("--version",), env=dict(self.base_env))

    def encode_message(self, text: str) -> str:
        return json.dumps(
            {"type": "user", "message": {"role": "user", "content": text}},
            ensure_ascii=False,
        )

    def is_completion(self, line: str) -> bool:
        if '"result"' not in line:
            return False
        try:
            event = json.loads(line)
        except json.JSONDecodeError:
            return False
        return isinstance(event, dict) and event.get("type") == "result"

    def is_available(self) -> bool:
        resolved = shutil.which(self.cli_path)
        if resolved is None:
            logger.warning(f"Claude CLI executable not found at: {mask_path(self.cli_path)}")
            return False

        if not (self.base_env.get("ANTHROPIC_API_KEY") or self.base_env.get("CLAUDE_CODE_OAUTH_TOKEN")):
            logger.warning("Neither ANTHROPIC_API_KEY nor CLAUDE_CODE_OAUTH_TOKEN is set")
            return False

        logger.debug("Claude Code CLI is available")
        return True
