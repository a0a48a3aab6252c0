"""Immutable per-call execution options."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_TIMEOUT_SECONDS = 180.0


class ExecutionOptions(BaseModel):
    """Options for one streaming invocation or one conversation session.

    All fields are optional. ``session_inactivity_timeout_seconds`` left as
    ``None`` means the session manager's default applies; ``working_directory``
    left as ``None`` means the child inherits the caller's directory.

    Example:
        >>> options = ExecutionOptions(timeout_seconds=60, model="sonnet")
        >>> options.with_overrides(model="opus").model
        'opus'
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    timeout_seconds: float = Field(
        default=DEFAULT_TIMEOUT_SECONDS,
        gt=0,
        description="Timeout for one invocation or one exchange",
    )
    model: str | None = Field(default=None, description="Model or variant selector")
    dangerously_skip_permissions: bool = Field(
        default=True,
        description="Skip interactive permission prompts",
    )
    env: dict[str, str] = Field(
        default_factory=dict,
        description="Additional environment variables for the subprocess",
    )
    session_inactivity_timeout_seconds: float | None = Field(
        default=None,
        gt=0,
        description="Idle time before the session becomes eligible for eviction",
    )
    working_directory: str | None = Field(
        default=None,
        description="Working directory of the subprocess",
    )

    @field_validator("working_directory")
    @classmethod
    def _working_directory_not_blank(cls, value: str | None) -> str | None:
        if value is not None and not value.strip():
            raise ValueError("working_directory cannot be blank")
        return value

    @classmethod
    def defaults(cls) -> "ExecutionOptions":
        """Return an instance with every field at its default."""
        return cls()

    def with_overrides(self, **changes: Any) -> "ExecutionOptions":
        """Return a validated copy with ``changes`` applied."""
        return self.__class__.model_validate({**self.model_dump(), **changes})

    def __str__(self) -> str:
        # Env values may carry credentials; only the keys are shown.
        return (
            f"ExecutionOptions(timeout={self.timeout_seconds}s, model={self.model!r}, "
            f"skip_permissions={self.dangerously_skip_permissions}, "
            f"env={sorted(self.env)}, "
            f"inactivity_timeout={self.session_inactivity_timeout_seconds}, "
            f"cwd={self.working_directory!r})"
        )
