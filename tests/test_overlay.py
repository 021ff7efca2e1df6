from __future__ import annotations

import io
import shutil
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from escview.config import DEFAULT_PATTERN
from escview.errors import NotFoundError, ReadError, UpstreamError
from escview.highlight import Highlighter
from escview.overlay import BaseFileStore, OverlayFileSystem, StoredFile, VirtualFile, store_key

from support import GO_SOURCE, StubToolchain


class OverlayTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.root = Path(tempfile.mkdtemp())
        (self.root / "pkg").mkdir()
        (self.root / "pkg" / "util.go").write_text(GO_SOURCE, encoding="utf-8")
        (self.root / "README.md").write_bytes(b"# readme\n\xff raw bytes\n")
        self.store = BaseFileStore(self.root)

    def tearDown(self) -> None:
        shutil.rmtree(self.root, ignore_errors=True)

    def make_overlay(self, toolchain: StubToolchain) -> OverlayFileSystem:
        return OverlayFileSystem(self.store, toolchain, Highlighter(), DEFAULT_PATTERN)


class OverlayFileSystemTests(OverlayTestCase):
    def test_source_file_is_annotated_and_highlighted(self) -> None:
        toolchain = StubToolchain()
        with self.make_overlay(toolchain).open("/pkg/util.go") as opened:
            self.assertIsInstance(opened, VirtualFile)
            page = opened.read().decode("utf-8")
        self.assertEqual(toolchain.calls, ["pkg"])
        self.assertIn("<html", page)
        self.assertIn("<style", page)
        self.assertIn("escapes to heap", page)
        self.assertNotIn("can inline", page)

    def test_annotate_returns_merged_text(self) -> None:
        text = self.make_overlay(StubToolchain()).annotate("/pkg/util.go")
        self.assertIn(
            "\treturn &T{}\n/**********\n&T{} escapes to heap:\n  flow: ~r0 = &{storage for &T{}}:\n***********/\n",
            text,
        )

    def test_non_source_file_passes_through_without_compiling(self) -> None:
        toolchain = StubToolchain()
        with self.make_overlay(toolchain).open("/README.md") as opened:
            self.assertIsInstance(opened, StoredFile)
            self.assertEqual(opened.read(), (self.root / "README.md").read_bytes())
        self.assertEqual(toolchain.calls, [])

    def test_directory_passes_through(self) -> None:
        toolchain = StubToolchain()
        with self.make_overlay(toolchain).open("/pkg") as opened:
            self.assertTrue(opened.stat().is_dir)
            self.assertEqual([entry.name for entry in opened.readdir()], ["util.go"])
        self.assertEqual(toolchain.calls, [])

    def test_missing_path_is_not_found(self) -> None:
        with self.assertRaises(NotFoundError):
            self.make_overlay(StubToolchain()).open("/nope.go")

    def test_paths_cannot_escape_root(self) -> None:
        resolved = self.store.resolve("/../../etc/passwd")
        self.assertEqual(resolved, self.root.resolve() / "etc" / "passwd")

    def test_dot_dot_path_compiles_the_served_package(self) -> None:
        toolchain = StubToolchain()
        overlay = self.make_overlay(toolchain)
        with overlay.open("/../pkg/util.go") as opened:
            self.assertIn(b"escapes to heap", opened.read())
        self.assertIn("escapes to heap", overlay.annotate("/../../pkg/./util.go"))
        self.assertEqual(toolchain.calls, ["pkg", "pkg"])

    def test_store_key_matches_resolved_path(self) -> None:
        for name in ["/pkg/util.go", "/../pkg/util.go", "pkg//util.go", "/a/../pkg/util.go"]:
            with self.subTest(name=name):
                self.assertEqual(store_key(name), "pkg/util.go")
                self.assertEqual(self.store.resolve(name), self.store.root / store_key(name))
        self.assertEqual(store_key("/"), ".")
        self.assertEqual(self.store.resolve("/.."), self.store.root)

    def test_unopenable_file_is_read_error(self) -> None:
        denied = PermissionError(13, "Permission denied")
        with mock.patch.object(Path, "open", side_effect=denied):
            with self.assertRaises(ReadError) as ctx:
                self.make_overlay(StubToolchain()).annotate("/pkg/util.go")
        self.assertEqual(ctx.exception.code, "RD003")
        self.assertEqual(ctx.exception.context["errno"], 13)

    def test_compiler_failure_is_upstream_error_and_retry_is_independent(self) -> None:
        failing = StubToolchain(error=UpstreamError(code="CMP003", message="Compiler exited with status 1."))
        overlay = self.make_overlay(failing)
        with self.assertRaises(UpstreamError) as ctx:
            overlay.open("/pkg/util.go")
        self.assertEqual(ctx.exception.code, "CMP003")
        self.assertEqual((self.root / "pkg" / "util.go").read_text(encoding="utf-8"), GO_SOURCE)

        failing.error = None
        with overlay.open("/pkg/util.go") as opened:
            self.assertIn(b"escapes to heap", opened.read())

    def test_malformed_diagnostics_abort_open(self) -> None:
        overlay = self.make_overlay(StubToolchain(output="pkg/util.go:four:1: bad\n"))
        with self.assertRaises(UpstreamError) as ctx:
            overlay.open("/pkg/util.go")
        self.assertEqual(ctx.exception.context["cause"], "PRS001")

    def test_undecodable_source_aborts_open(self) -> None:
        (self.root / "pkg" / "bad.go").write_bytes(b"package util\n\xff\n")
        with self.assertRaises(UpstreamError) as ctx:
            self.make_overlay(StubToolchain()).open("/pkg/bad.go")
        self.assertEqual(ctx.exception.context["cause"], "RD001")

    def test_unknown_style_is_upstream_error(self) -> None:
        overlay = OverlayFileSystem(self.store, StubToolchain(), Highlighter(style="no-such-style"), DEFAULT_PATTERN)
        with self.assertRaises(UpstreamError) as ctx:
            overlay.open("/pkg/util.go")
        self.assertEqual(ctx.exception.code, "HLT002")

    def test_each_open_gets_its_own_buffer(self) -> None:
        overlay = self.make_overlay(StubToolchain())
        first = overlay.open("/pkg/util.go")
        second = overlay.open("/pkg/util.go")
        try:
            head = first.read(10)
            self.assertEqual(second.tell(), 0)
            self.assertEqual(second.read(10), head)
            self.assertEqual(first.read(), second.read())
        finally:
            first.close()
            second.close()


class VirtualFileTests(OverlayTestCase):
    def open_virtual(self) -> VirtualFile:
        opened = self.make_overlay(StubToolchain()).open("/pkg/util.go")
        assert isinstance(opened, VirtualFile)
        return opened

    def test_stat_reports_materialized_size(self) -> None:
        with self.open_virtual() as opened:
            data = opened.read()
            info = opened.stat()
        original = (self.root / "pkg" / "util.go").stat()
        self.assertEqual(info.size, len(data))
        self.assertNotEqual(info.size, original.st_size)
        self.assertEqual(info.name, "/pkg/util.go")
        self.assertEqual(info.mode, original.st_mode)
        self.assertFalse(info.is_dir)

    def test_read_advances_and_ends_with_empty_bytes(self) -> None:
        with self.open_virtual() as opened:
            size = opened.stat().size
            head = opened.read(16)
            rest = opened.read()
            self.assertEqual(len(head) + len(rest), size)
            self.assertEqual(opened.read(), b"")
            self.assertEqual(opened.read(8), b"")

    def test_readinto_copies_bytes(self) -> None:
        with self.open_virtual() as opened:
            buffer = bytearray(32)
            count = opened.readinto(buffer)
            opened.seek_to_start()
            self.assertEqual(bytes(buffer[:count]), opened.read(count))

    def test_only_rewind_is_supported(self) -> None:
        with self.open_virtual() as opened:
            first = opened.read()
            self.assertEqual(opened.seek(0), 0)
            self.assertEqual(opened.read(), first)
            with self.assertRaises(io.UnsupportedOperation):
                opened.seek(5)
            with self.assertRaises(io.UnsupportedOperation):
                opened.seek(0, io.SEEK_END)
            with self.assertRaises(io.UnsupportedOperation):
                opened.readdir()

    def test_operations_fail_after_close(self) -> None:
        opened = self.open_virtual()
        opened.close()
        self.assertTrue(opened.closed)
        opened.close()
        with self.assertRaises(ValueError):
            opened.read()
        with self.assertRaises(ValueError):
            opened.stat()
        with self.assertRaises(ValueError):
            opened.seek(0)


if __name__ == "__main__":
    unittest.main()
