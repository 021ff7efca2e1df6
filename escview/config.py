"""Runtime configuration built once at startup and passed explicitly."""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from escview.compiler import DEFAULT_GCFLAGS
from escview.errors import ConfigError


DEFAULT_ADDRESS = "localhost:9876"
DEFAULT_PATTERN = r"(?m)^.*escapes to heap:(?:\n\s+.*)*"
DEFAULT_SUFFIX = ".go"
DEFAULT_LANGUAGE = "go"
DEFAULT_STYLE = "monokai"


@dataclass(frozen=True)
class ServerConfig:
    """Everything the overlay server needs: where to listen, what to serve, what to show."""

    root: Path
    host: str = "localhost"
    port: int = 9876
    pattern: re.Pattern[str] = re.compile(DEFAULT_PATTERN)
    suffix: str = DEFAULT_SUFFIX
    language: str = DEFAULT_LANGUAGE
    style: str = DEFAULT_STYLE
    go: str = "go"
    gcflags: str = DEFAULT_GCFLAGS
    timeout: float | None = None

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "root": str(self.root),
            "address": self.address,
            "pattern": self.pattern.pattern,
            "suffix": self.suffix,
            "language": self.language,
            "style": self.style,
            "go": self.go,
            "gcflags": self.gcflags,
            "timeout": self.timeout,
        }


def parse_address(value: str) -> tuple[str, int]:
    """Split ``host:port`` (``[::1]:port`` for IPv6) into its parts."""
    host, sep, port_text = value.rpartition(":")
    if not sep:
        raise ConfigError(
            code="CFG001",
            message=f"Invalid listen address '{value}'.",
            hint="Use host:port, e.g. localhost:9876.",
        )
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    try:
        port = int(port_text)
    except ValueError as exc:
        raise ConfigError(
            code="CFG001",
            message=f"Invalid port in listen address '{value}'.",
            hint="Use host:port, e.g. localhost:9876.",
        ) from exc
    if not 0 <= port <= 65535:
        raise ConfigError(code="CFG001", message=f"Port {port} is out of range.", hint="Use a port in 0-65535.")
    return host, port


def compile_pattern(value: str) -> re.Pattern[str]:
    """Compile the annotation filter, reporting bad patterns as config errors."""
    try:
        return re.compile(value)
    except re.error as exc:
        raise ConfigError(
            code="CFG002",
            message=f"Invalid --grep pattern: {exc}",
            hint="Pass a Python regular expression.",
            context={"pattern": value},
        ) from exc
