"""Diagnostic location keys and path canonicalisation."""

from __future__ import annotations

import posixpath
from dataclasses import dataclass
from typing import Any


def normalize_path(path: str) -> str:
    """Return the canonical form of a slash-separated path.

    Mirrors the lexical cleaning the Go toolchain applies: redundant
    separators and ``.`` elements are dropped and ``..`` is resolved where
    possible, so ``./foo/bar.go`` and ``foo//bar.go`` both become
    ``foo/bar.go``. An empty path cleans to ``.``.
    """
    if not path:
        return "."
    cleaned = posixpath.normpath(path.replace("\\", "/"))
    # normpath keeps a POSIX "//" root; Go collapses it.
    if cleaned.startswith("//"):
        cleaned = "/" + cleaned.lstrip("/")
    return cleaned


@dataclass(frozen=True, order=True)
class LocationKey:
    """Identifies one source line in 1-based coordinates."""

    file: str
    line: int

    def to_dict(self) -> dict[str, Any]:
        """Serialize the key to a JSON-compatible mapping."""
        return {"file": self.file, "line": self.line}

    def __str__(self) -> str:
        return f"{self.file}:{self.line}"
