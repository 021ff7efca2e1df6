"""Diagnostic parser turning compiler output into a location index."""

from __future__ import annotations

import re
from collections.abc import Iterator, Mapping
from types import MappingProxyType
from typing import Any, Final

from escview.errors import ParseError
from escview.locations import LocationKey, normalize_path


# A diagnostic-shaped line: `<file>:<line>:<column>: <message>`. The numeric
# fields are captured loosely so malformed numbers fail loudly instead of the
# line being skipped as noise.
_DIAGNOSTIC_LINE: Final[re.Pattern[str]] = re.compile(r"^([^:\s][^:]*):([^:\s]*):([^:\s]*): (.*)$")
_NUMBER: Final[re.Pattern[str]] = re.compile(r"[0-9]+")

Fragments = tuple[tuple[int, str], ...]


class LocationIndex(Mapping[LocationKey, Fragments]):
    """Read-only table mapping (file, line) to column-ordered fragments."""

    def __init__(self, entries: Mapping[LocationKey, Mapping[int, str]] | None = None) -> None:
        frozen: dict[LocationKey, Fragments] = {}
        for key, by_column in (entries or {}).items():
            frozen[key] = tuple(sorted(by_column.items()))
        self._entries = MappingProxyType(frozen)

    def __getitem__(self, key: LocationKey) -> Fragments:
        return self._entries[key]

    def __iter__(self) -> Iterator[LocationKey]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def fragments(self, file: str, line: int) -> Fragments:
        """Return fragments for a line in ascending column order."""
        return self._entries.get(LocationKey(file=file, line=line), ())

    def files(self) -> list[str]:
        """Return the sorted set of files referenced by the index."""
        return sorted({key.file for key in self._entries})

    @property
    def fragment_count(self) -> int:
        return sum(len(items) for items in self._entries.values())

    def to_dict(self) -> dict[str, Any]:
        """Serialize the index, ordered by file and line."""
        return {
            "entries": [
                {
                    **key.to_dict(),
                    "fragments": [{"column": column, "text": text} for column, text in self._entries[key]],
                }
                for key in sorted(self._entries)
            ]
        }


class DiagnosticParser:
    """Groups location-tagged diagnostic lines into fragments."""

    def __init__(self, line_pattern: re.Pattern[str] = _DIAGNOSTIC_LINE) -> None:
        self.line_pattern = line_pattern

    def parse(self, raw: str | bytes) -> LocationIndex:
        """Parse raw diagnostic output and return its location index."""
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8", errors="replace")

        grouped: dict[LocationKey, dict[int, str]] = {}
        for text in raw.split("\n"):
            text = text.removesuffix("\r")
            match = self.line_pattern.match(text)
            if match is None:
                continue

            file_part, line_part, column_part, message = match.groups()
            line = self._number(line_part, "line number", text)
            column = self._number(column_part, "column", text)

            key = LocationKey(file=normalize_path(file_part), line=line)
            by_column = grouped.setdefault(key, {})
            existing = by_column.get(column)
            by_column[column] = message if existing is None else existing + "\n" + message

        return LocationIndex(grouped)

    @staticmethod
    def _number(value: str, field: str, text: str) -> int:
        if _NUMBER.fullmatch(value) is None:
            raise ParseError(
                code="PRS001",
                message=f"Invalid {field} {value!r} in diagnostic line.",
                hint="Diagnostics must look like <file>:<line>:<column>: <message>.",
                context={"line": text},
            )
        return int(value)


_DEFAULT_PARSER: Final[DiagnosticParser] = DiagnosticParser()


def parse_diagnostics(raw: str | bytes) -> LocationIndex:
    """Parse diagnostic text with the default line pattern."""
    return _DEFAULT_PARSER.parse(raw)
