"""Domain-specific error types for gitgraph operations."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Supported error codes exposed by gitgraph tools."""

    PARSE_ERROR = "PARSE_ERROR"
    MISSING_PLACEHOLDER = "MISSING_PLACEHOLDER"
    UNKNOWN_TEMPLATE = "UNKNOWN_TEMPLATE"
    COMMAND_FAILED = "COMMAND_FAILED"
    IO_ERROR = "IO_ERROR"
    INVALID_REPOSITORY = "INVALID_REPOSITORY"
    INVALID_INPUT = "INVALID_INPUT"
    INTERNAL_ERROR = "INTERNAL_ERROR"


@dataclass
class GitGraphError(Exception):
    """Structured exception carrying a stable error contract."""

    code: ErrorCode
    message: str
    suggestion: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        return self.message

    def to_payload(self) -> dict[str, Any]:
        return {
            "status": "error",
            "error_code": self.code.value,
            "message": self.message,
            "suggestion": self.suggestion or "",
            "details": self.details,
        }


def missing_placeholder(name: str) -> GitGraphError:
    return GitGraphError(
        ErrorCode.MISSING_PLACEHOLDER,
        f"missing required placeholder value: {name}",
        "Provide the value via --param/--ctx or the action context.",
        {"placeholder": name},
    )


def command_failed(
    program: str,
    args: list[str],
    exit_code: int | None,
    stdout: str,
    stderr: str,
) -> GitGraphError:
    return GitGraphError(
        ErrorCode.COMMAND_FAILED,
        f"git command failed: `{program}` {args!r}, exit_code={exit_code}, stderr={stderr.strip()}",
        "Inspect details.stderr for the underlying git error.",
        {
            "program": program,
            "args": list(args),
            "exit_code": exit_code,
            "stdout": stdout,
            "stderr": stderr,
        },
    )
