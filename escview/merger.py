"""Merge location-indexed diagnostics into source text, line by line."""

from __future__ import annotations

import re
from collections.abc import Iterable, Iterator
from typing import IO, Final, Union

from escview.errors import ReadError
from escview.parser import LocationIndex


BLOCK_OPEN: Final[str] = "/**********\n"
BLOCK_CLOSE: Final[str] = "\n***********/\n"

Source = Union[str, bytes, IO[str], IO[bytes]]


class AnnotationMerger:
    """Interleaves filtered diagnostic fragments beneath their source lines.

    The filter pattern does double duty: a fragment is shown only when the
    pattern matches somewhere in it, and then only the first match is
    printed, so a narrow default keeps noisy diagnostics out while a wider
    pattern shows full detail.
    """

    def __init__(
        self,
        pattern: re.Pattern[str] | str,
        *,
        block_open: str = BLOCK_OPEN,
        block_close: str = BLOCK_CLOSE,
    ) -> None:
        self.pattern = re.compile(pattern) if isinstance(pattern, str) else pattern
        self.block_open = block_open
        self.block_close = block_close

    def merge(self, source: Source, file_key: str, index: LocationIndex) -> str:
        """Return annotated text for ``source`` whose canonical key is ``file_key``."""
        out: list[str] = []
        try:
            for number, line in enumerate(_iter_lines(source), start=1):
                out.append(line)
                shown = self.select(index.fragments(file_key, number))
                if not shown:
                    continue
                if not line.endswith("\n"):
                    out.append("\n")
                for text in shown:
                    out.append(self.block_open + text + self.block_close)
        except (OSError, UnicodeDecodeError) as exc:
            raise ReadError(
                code="RD001",
                message=f"Failed to read source for {file_key}: {exc}",
                hint="Check that the file is readable UTF-8 text.",
                context={"file": file_key},
            ) from exc
        return "".join(out)

    def select(self, fragments: Iterable[tuple[int, str]]) -> list[str]:
        """Return the first pattern match of each matching fragment, by column."""
        shown: list[str] = []
        for _column, text in sorted(fragments, key=lambda item: item[0]):
            match = self.pattern.search(text)
            if match is None:
                continue
            shown.append(match.group(0))
        return shown


def merge_annotations(
    source: Source,
    file_key: str,
    index: LocationIndex,
    pattern: re.Pattern[str] | str,
) -> str:
    """Merge ``index`` into ``source`` showing fragments that match ``pattern``."""
    return AnnotationMerger(pattern).merge(source, file_key, index)


def _iter_lines(source: Source) -> Iterator[str]:
    # Lines keep their terminators so an empty index round-trips exactly.
    if isinstance(source, bytes):
        source = source.decode("utf-8")
    if isinstance(source, str):
        parts = source.split("\n")
        for part in parts[:-1]:
            yield part + "\n"
        if parts[-1]:
            yield parts[-1]
        return

    for line in source:
        if isinstance(line, bytes):
            yield line.decode("utf-8")
        else:
            yield line
