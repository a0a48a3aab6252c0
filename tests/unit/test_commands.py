"""Unit tests for command assembly."""

import json
import os
import stat

import pytest
from pydantic import SecretStr

from agentproc.core.config import Settings
from agentproc.core.options import ExecutionOptions
from agentproc.process import commands
from agentproc.process.commands import ClaudeCommandBuilder, LaunchSpec, mask_path


@pytest.fixture
def builder() -> ClaudeCommandBuilder:
    """Create a builder with explicit configuration."""
    return ClaudeCommandBuilder(
        cli_path="/opt/tools/bin/claude",
        api_key="sk-ant-test",
        home="/home/agent",
        node_extra_ca_certs="/etc/ssl/ca.pem",
    )


class TestClaudeCommandBuilder:
    """Tests for ClaudeCommandBuilder."""

    def test_streaming_spec(self, builder: ClaudeCommandBuilder) -> None:
        """Test print-mode command with model and permission flags."""
        spec = builder.streaming_spec(ExecutionOptions(model="sonnet"))

        assert spec.command == "/opt/tools/bin/claude"
        assert spec.args == ("-p", "--dangerously-skip-permissions", "--model", "sonnet")
        assert spec.cwd is None

    def test_streaming_spec_without_optional_flags(self, builder: ClaudeCommandBuilder) -> None:
        """Test that disabled flags are omitted."""
        spec = builder.streaming_spec(ExecutionOptions(dangerously_skip_permissions=False))

        assert spec.args == ("-p",)

    def test_interactive_spec(self, builder: ClaudeCommandBuilder) -> None:
        """Test stream-json conversation command."""
        options = ExecutionOptions(working_directory="/srv/project")

        spec = builder.interactive_spec("session-42", options)

        assert spec.args[0] == "-p"
        assert "--input-format" in spec.args
        assert "--output-format" in spec.args
        assert "--verbose" in spec.args
        index = spec.args.index("--session-id")
        assert spec.args[index + 1] == "session-42"
        assert spec.cwd == "/srv/project"

    def test_environment(self, builder: ClaudeCommandBuilder) -> None:
        """Test base environment merged with option environment."""
        spec = builder.streaming_spec(
            ExecutionOptions(env={"EXTRA": "1", "HOME": "/override"})
        )

        assert spec.env["ANTHROPIC_API_KEY"] == "sk-ant-test"
        assert spec.env["NODE_EXTRA_CA_CERTS"] == "/etc/ssl/ca.pem"
        assert spec.env["EXTRA"] == "1"
        assert spec.env["HOME"] == "/override"
        assert "CLAUDE_CODE_OAUTH_TOKEN" not in spec.env

    def test_encode_message(self, builder: ClaudeCommandBuilder) -> None:
        """Test messages are framed as stream-json user events."""
        line = builder.encode_message("Hello\nworld")

        assert "\n" not in line
        event = json.loads(line)
        assert event["type"] == "user"
        assert event["message"] == {"role": "user", "content": "Hello\nworld"}

    @pytest.mark.parametrize(
        "line, expected",
        [
            ('{"type": "result", "subtype": "success", "result": "done"}', True),
            ('{"type": "assistant", "message": {"content": "result"}}', False),
            ("plain text mentioning \"result\"", False),
            ("", False),
        ],
    )
    def test_is_completion(self, builder: ClaudeCommandBuilder, line: str, expected: bool) -> None:
        """Test detection of the end-of-turn event."""
        assert builder.is_completion(line) is expected

    def test_version_spec(self, builder: ClaudeCommandBuilder) -> None:
        """Test version command."""
        spec = builder.version_spec()

        assert spec.args == ("--version",)

    def test_from_settings(self) -> None:
        """Test builder construction from settings."""
        settings = Settings(
            _env_file=None,
            claude_cli_path="/usr/bin/claude",
            anthropic_api_key=SecretStr("sk-one"),
            claude_code_oauth_token=SecretStr("oauth-two"),
        )

        builder = ClaudeCommandBuilder.from_settings(settings)

        assert builder.cli_path == "/usr/bin/claude"
        assert builder.base_env["ANTHROPIC_API_KEY"] == "sk-one"
        assert builder.base_env["CLAUDE_CODE_OAUTH_TOKEN"] == "oauth-two"

    def test_find_claude_path_fallback(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test default executable name when nothing is found."""
        monkeypatch.setattr(commands.shutil, "which", lambda _: None)

        builder = ClaudeCommandBuilder()

        assert builder.cli_path == "claude"

    def test_is_available_missing_cli(self) -> None:
        """Test availability with a missing executable."""
        builder = ClaudeCommandBuilder(cli_path="/nonexistent/claude", api_key="sk")

        assert builder.is_available() is False

    def test_is_available(self, tmp_path) -> None:
        """Test availability with an executable and credentials."""
        cli = tmp_path / "claude"
        cli.write_text("#!/bin/sh\necho ok\n")
        cli.chmod(cli.stat().st_mode | stat.S_IXUSR)

        without_credentials = ClaudeCommandBuilder(cli_path=str(cli))
        without_credentials.base_env.pop("ANTHROPIC_API_KEY", None)
        without_credentials.base_env.pop("CLAUDE_CODE_OAUTH_TOKEN", None)
        with_token = ClaudeCommandBuilder(cli_path=str(cli), oauth_token="oauth")

        if os.name != "nt":
            assert without_credentials.is_available() is False
            assert with_token.is_available() is True


class TestHelpers:
    """Tests for module helpers."""

    @pytest.mark.parametrize(
        "path, expected",
        [
            ("/usr/local/bin/claude", ".../claude"),
            ("claude", "claude"),
            ("/trailing/", "/trailing/"),
            (None, "None"),
        ],
    )
    def test_mask_path(self, path: str | None, expected: str) -> None:
        """Test that only the executable name is kept."""
        assert mask_path(path) == expected

    def test_launch_spec_to_dict(self) -> None:
        """Test that the dict form hides environment values."""
        spec = LaunchSpec(command="/bin/claude", args=("-p",), env={"ANTHROPIC_API_KEY": "sk"})

        data = spec.to_dict()

        assert data == {
            "command": ".../claude",
            "args": ["-p"],
            "env": ["ANTHROPIC_API_KEY"],
            "cwd": None,
        }
