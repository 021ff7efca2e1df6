"""Structured overlay errors shared by parser, merger, and file system."""

from __future__ import annotations

from typing import Any


class OverlayError(Exception):
    """Base error carrying a code, hint, and operator-facing context."""

    def __init__(
        self,
        code: str,
        message: str,
        hint: str = "",
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.hint = hint
        self.context: dict[str, Any] = dict(context or {})

    def to_dict(self) -> dict[str, Any]:
        """Serialize the error for logs and JSON output."""
        payload: dict[str, Any] = {
            "code": self.code,
            "message": self.message,
            "hint": self.hint,
        }
        if self.context:
            payload["context"] = dict(self.context)
        return payload

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"


class ParseError(OverlayError):
    """Raised when a diagnostic line carries a malformed line or column."""


class ReadError(OverlayError):
    """Raised when source text cannot be read while merging annotations."""


class UpstreamError(OverlayError):
    """Raised when the compiler or highlighter fails, aborting an open."""


class NotFoundError(OverlayError):
    """Raised when a path is absent from (or outside of) the base store."""


class ConfigError(OverlayError):
    """Raised by invalid startup configuration."""


def format_error(err: OverlayError) -> str:
    """Format an error into a stable human-readable line."""
    hint = f" Hint: {err.hint}" if err.hint else ""
    return f"{err.code}: {err.message}{hint}"
