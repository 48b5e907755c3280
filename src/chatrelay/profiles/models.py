"""Tool permission profiles for Claude invocations."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

PERMISSION_MODES = {"default", "acceptEdits", "bypassPermissions", "plan"}


class ToolProfile(BaseModel):
    """Permission and tool settings applied to every invocation that uses it."""

    id: str = Field(..., description="Unique identifier for the profile.")
    title: str = Field(default="", description="Display title for the profile.")
    permission_mode: str = Field(
        default="default",
        description="Value passed to --permission-mode; 'default' omits the flag.",
    )
    allowed_tools: list[str] = Field(
        default_factory=list,
        description="Tools the CLI may use without asking.",
    )
    disallowed_tools: list[str] = Field(
        default_factory=list,
        description="Tools the CLI must never use.",
    )
    skip_permissions: bool = Field(
        default=False,
        description="Pass --dangerously-skip-permissions.",
    )
    model: str | None = Field(default=None, description="Model override for this profile.")
    metadata: dict[str, Any] = Field(
        default_factory=dict,
        description="Arbitrary metadata for reporting.",
    )

    @field_validator("id")
    @classmethod
    def _normalize_id(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("Tool profile id must not be empty")
        return normalized

    @field_validator("permission_mode")
    @classmethod
    def _validate_permission_mode(cls, value: str) -> str:
        if value not in PERMISSION_MODES:
            raise ValueError(f"permission_mode must be one of {sorted(PERMISSION_MODES)}")
        return value

    @field_validator("allowed_tools", "disallowed_tools", mode="before")
    @classmethod
    def _ensure_list(cls, value: Any):  # type: ignore[override]
        if value is None:
            return []
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        if isinstance(value, (list, tuple)):
            return list(value)
        raise ValueError("Tool lists must be sequences of strings or comma-separated strings")

    @model_validator(mode="after")
    def _check_tool_overlap(self) -> "ToolProfile":
        overlap = sorted(set(self.allowed_tools) & set(self.disallowed_tools))
        if overlap:
            raise ValueError(f"Tools both allowed and disallowed: {', '.join(overlap)}")
        return self


__all__ = ["PERMISSION_MODES", "ToolProfile"]
