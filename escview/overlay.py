"""Overlay file system serving annotated, highlighted Go sources.

Directories and non-source files pass straight through from the base store.
Source files are read, the containing package is compiled for diagnostics,
and the merged, highlighted page is handed back as a :class:`VirtualFile`
whose metadata is that of the original file with the size replaced.
"""

from __future__ import annotations

import io
import logging
import os
import re
import stat as stat_module
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from pathlib import Path
from typing import IO, Any, Protocol

from escview.compiler import package_dir_for
from escview.errors import NotFoundError, ParseError, ReadError, UpstreamError
from escview.highlight import Highlighter
from escview.locations import normalize_path
from escview.merger import AnnotationMerger
from escview.parser import DiagnosticParser


logger = logging.getLogger(__name__)


class DiagnosticSource(Protocol):
    """Anything that can produce raw diagnostics for a package directory."""

    def diagnostics(self, package_dir: str) -> str: ...


@dataclass(frozen=True)
class FileInfo:
    """Metadata for an entry in the base store."""

    name: str
    size: int
    mode: int
    modified: float
    is_dir: bool

    @classmethod
    def from_stat(cls, name: str, result: os.stat_result) -> FileInfo:
        return cls(
            name=name,
            size=result.st_size,
            mode=result.st_mode,
            modified=result.st_mtime,
            is_dir=stat_module.S_ISDIR(result.st_mode),
        )

    def with_size(self, size: int) -> FileInfo:
        """Return a copy reporting ``size`` bytes."""
        return replace(self, size=size)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "size": self.size,
            "mode": self.mode,
            "modified": self.modified,
            "is_dir": self.is_dir,
        }


class OverlayFile(ABC):
    """File-like contract shared by stored and virtual files."""

    name: str

    @abstractmethod
    def read(self, size: int = -1) -> bytes:
        """Read up to ``size`` bytes from the cursor (all when negative)."""

    @abstractmethod
    def seek(self, offset: int, whence: int = io.SEEK_SET) -> int:
        """Move the cursor and return the new position."""

    @abstractmethod
    def stat(self) -> FileInfo:
        """Return metadata for the file."""

    @abstractmethod
    def readdir(self) -> list[FileInfo]:
        """List directory entries."""

    @abstractmethod
    def close(self) -> None:
        """Release the file."""

    def readinto(self, buffer: bytearray | memoryview) -> int:
        """Copy bytes into ``buffer`` and return how many were copied."""
        view = memoryview(buffer).cast("B")
        chunk = self.read(len(view))
        view[: len(chunk)] = chunk
        return len(chunk)

    def seek_to_start(self) -> None:
        self.seek(0, io.SEEK_SET)

    def __enter__(self) -> OverlayFile:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


class StoredFile(OverlayFile):
    """A file or directory opened directly from the base store."""

    def __init__(self, name: str, path: Path) -> None:
        self.name = name
        self.path = path
        self._info = FileInfo.from_stat(name, path.stat())
        self._handle: IO[bytes] | None = None if self._info.is_dir else path.open("rb")
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def read(self, size: int = -1) -> bytes:
        return self._file().read(size)

    def seek(self, offset: int, whence: int = io.SEEK_SET) -> int:
        return self._file().seek(offset, whence)

    def tell(self) -> int:
        return self._file().tell()

    def stat(self) -> FileInfo:
        self._check_open()
        return self._info

    def readdir(self) -> list[FileInfo]:
        self._check_open()
        if not self._info.is_dir:
            raise io.UnsupportedOperation(f"{self.name} is not a directory")
        entries: list[FileInfo] = []
        with os.scandir(self.path) as scanner:
            for entry in scanner:
                entries.append(FileInfo.from_stat(entry.name, entry.stat()))
        return sorted(entries, key=lambda info: info.name)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._handle is not None:
            self._handle.close()
            self._handle = None

    def _file(self) -> IO[bytes]:
        self._check_open()
        if self._handle is None:
            raise io.UnsupportedOperation(f"{self.name} is a directory")
        return self._handle

    def _check_open(self) -> None:
        if self._closed:
            raise ValueError("I/O operation on closed file.")


class VirtualFile(OverlayFile):
    """In-memory file over materialised bytes, posing as the original file.

    Only rewinding to the start is supported; any other seek raises
    :class:`io.UnsupportedOperation`.
    """

    def __init__(self, data: bytes, original: OverlayFile) -> None:
        self.name = original.name
        self._data: bytes | None = bytes(data)
        self._original: OverlayFile | None = original
        self._pos = 0

    @property
    def closed(self) -> bool:
        return self._data is None

    def read(self, size: int = -1) -> bytes:
        data = self._buffer()
        if size is None or size < 0:
            end = len(data)
        else:
            end = min(self._pos + size, len(data))
        chunk = data[self._pos : end]
        self._pos = end
        return chunk

    def seek(self, offset: int, whence: int = io.SEEK_SET) -> int:
        self._buffer()
        if whence != io.SEEK_SET or offset != 0:
            raise io.UnsupportedOperation("only seeking to the start is supported")
        self._pos = 0
        return 0

    def tell(self) -> int:
        self._buffer()
        return self._pos

    def stat(self) -> FileInfo:
        if self._data is None or self._original is None:
            raise ValueError("I/O operation on closed file.")
        return self._original.stat().with_size(len(self._data))

    def readdir(self) -> list[FileInfo]:
        self._buffer()
        raise io.UnsupportedOperation(f"{self.name} is not a directory")

    def close(self) -> None:
        if self._original is None:
            return
        original = self._original
        self._data = None
        self._original = None
        original.close()

    def _buffer(self) -> bytes:
        if self._data is None:
            raise ValueError("I/O operation on closed file.")
        return self._data


def store_key(name: str) -> str:
    """Return the root-relative key for a URL-style path, ``.`` for the root.

    Cleaning is anchored at ``/`` so ``..`` can never climb above the root;
    the same key locates the file and its diagnostics.
    """
    return normalize_path("/" + name).lstrip("/") or "."


class BaseFileStore:
    """Read-only view of a directory tree addressed by URL-style paths."""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root).resolve()

    def resolve(self, name: str) -> Path:
        """Map ``/foo/bar.go`` to a path under the root, refusing escapes."""
        if "\x00" in name:
            raise NotFoundError(code="FS400", message=f"Invalid path {name!r}.", context={"path": name})
        # Anchoring at "/" before cleaning keeps ".." from climbing out.
        relative = store_key(name)
        path = self.root if relative == "." else self.root / relative
        if path != self.root and self.root not in path.parents:
            raise NotFoundError(code="FS403", message=f"Path {name!r} is outside the root.", context={"path": name})
        return path

    def open(self, name: str) -> StoredFile:
        path = self.resolve(name)
        try:
            return StoredFile(name, path)
        except (FileNotFoundError, NotADirectoryError) as exc:
            raise NotFoundError(
                code="FS404",
                message=f"No such file: {name}",
                context={"path": name},
            ) from exc
        except OSError as exc:
            raise ReadError(
                code="RD003",
                message=f"Cannot open {name}: {exc.strerror or exc}",
                hint="Check file permissions under the served root.",
                context={"path": name, "errno": exc.errno},
            ) from exc


class OverlayFileSystem:
    """Serves annotated variants of source files over a base store."""

    def __init__(
        self,
        store: BaseFileStore,
        toolchain: DiagnosticSource,
        highlighter: Highlighter,
        pattern: re.Pattern[str] | str,
        *,
        suffix: str = ".go",
        parser: DiagnosticParser | None = None,
    ) -> None:
        self.store = store
        self.toolchain = toolchain
        self.highlighter = highlighter
        self.merger = AnnotationMerger(pattern)
        self.suffix = suffix
        self.parser = parser or DiagnosticParser()

    def intercepts(self, name: str, info: FileInfo) -> bool:
        """Return True when ``name`` should be annotated rather than passed through."""
        return not info.is_dir and name.endswith(self.suffix)

    def open(self, name: str) -> OverlayFile:
        stored = self.store.open(name)
        try:
            if not self.intercepts(name, stored.stat()):
                return stored
            file_key, annotated = self._annotate(stored)
            page = self.highlighter.render(annotated, title=file_key)
        except (ParseError, ReadError) as exc:
            stored.close()
            context = dict(exc.context)
            context["cause"] = exc.code
            raise UpstreamError(code="UPS001", message=exc.message, hint=exc.hint, context=context) from exc
        except BaseException:
            stored.close()
            raise
        return VirtualFile(page.encode("utf-8"), stored)

    def annotate(self, name: str) -> str:
        """Return the merged, unhighlighted text for a source file."""
        with self.store.open(name) as stored:
            return self._annotate(stored)[1]

    def _annotate(self, stored: StoredFile) -> tuple[str, str]:
        file_key = store_key(stored.name)
        try:
            source = stored.read()
        except OSError as exc:
            raise ReadError(
                code="RD002",
                message=f"Failed to read {file_key}: {exc}",
                context={"file": file_key},
            ) from exc

        package_dir = package_dir_for(file_key)
        raw = self.toolchain.diagnostics(package_dir)
        index = self.parser.parse(raw)
        annotated = self.merger.merge(source, file_key, index)
        logger.debug(
            "annotated %s: %d diagnostic lines across %d files",
            file_key,
            len(index),
            len(index.files()),
        )
        return file_key, annotated

