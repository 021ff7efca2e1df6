"""Escape-analysis overlay viewer for Go sources."""

from __future__ import annotations

from typing import Any


__all__ = [
    "AnnotationMerger",
    "DiagnosticParser",
    "LocationIndex",
    "OverlayFileSystem",
    "VirtualFile",
    "merge_annotations",
    "parse_diagnostics",
]


def parse_diagnostics(*args: Any, **kwargs: Any):
    from escview.parser import parse_diagnostics as _parse_diagnostics

    return _parse_diagnostics(*args, **kwargs)


def merge_annotations(*args: Any, **kwargs: Any):
    from escview.merger import merge_annotations as _merge_annotations

    return _merge_annotations(*args, **kwargs)


def __getattr__(name: str):
    if name in ("DiagnosticParser", "LocationIndex"):
        from escview import parser

        return getattr(parser, name)
    if name == "AnnotationMerger":
        from escview.merger import AnnotationMerger

        return AnnotationMerger
    if name in ("OverlayFileSystem", "VirtualFile"):
        from escview import overlay

        return getattr(overlay, name)
    raise AttributeError(name)
