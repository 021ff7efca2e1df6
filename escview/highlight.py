"""Syntax highlighting of annotated source into standalone HTML."""

from __future__ import annotations

import html

from pygments import highlight
from pygments.formatters import HtmlFormatter
from pygments.lexers import get_lexer_by_name
from pygments.styles import get_style_by_name
from pygments.util import ClassNotFound

from escview.errors import UpstreamError


class Highlighter:
    """Renders text as a self-contained HTML page with embedded styles."""

    def __init__(self, language: str = "go", style: str = "monokai") -> None:
        self.language = language
        self.style = style

    def render(self, text: str, title: str | None = None) -> str:
        try:
            lexer = get_lexer_by_name(self.language, stripnl=False, ensurenl=False)
        except ClassNotFound as exc:
            raise UpstreamError(
                code="HLT001",
                message=f"Unknown highlighter language '{self.language}'.",
                hint="Use a Pygments lexer alias such as 'go'.",
                context={"language": self.language},
            ) from exc
        try:
            style = get_style_by_name(self.style)
        except ClassNotFound as exc:
            raise UpstreamError(
                code="HLT002",
                message=f"Unknown highlighter style '{self.style}'.",
                hint="Use a Pygments style name such as 'monokai'.",
                context={"style": self.style},
            ) from exc

        formatter = HtmlFormatter(full=True, style=style, title=html.escape(title or ""))
        return highlight(text, lexer, formatter)
