from __future__ import annotations

import os
import stat
import sys
from pathlib import Path


GO_SOURCE = """package util

func New() *T {
\treturn &T{}
}
"""

DIAGNOSTICS = """# example.com/mod/pkg
pkg/util.go:4:9: &T{} escapes to heap:
pkg/util.go:4:9:   flow: ~r0 = &{storage for &T{}}:
pkg/util.go:3:6: can inline New
"""


class StubToolchain:
    """Records package directories and returns canned diagnostics."""

    def __init__(self, output: str = DIAGNOSTICS, error: Exception | None = None) -> None:
        self.output = output
        self.error = error
        self.calls: list[str] = []

    def diagnostics(self, package_dir: str) -> str:
        self.calls.append(package_dir)
        if self.error is not None:
            raise self.error
        return self.output


FAKE_GO_SCRIPT = """\
import json
import os
import sys

log = os.environ.get("FAKE_GO_LOG")
if log:
    with open(log, "a", encoding="utf-8") as handle:
        handle.write(json.dumps({"argv": sys.argv[1:], "cwd": os.getcwd()}) + "\\n")

if sys.argv[1:3] == ["list", "-m"]:
    print(os.getcwd())
    raise SystemExit(0)

sys.stdout.write(os.environ.get("FAKE_GO_STDOUT", ""))
sys.stdout.flush()
sys.stderr.write(os.environ.get("FAKE_GO_OUTPUT", ""))
raise SystemExit(int(os.environ.get("FAKE_GO_EXIT", "0")))
"""


def install_fake_go(directory: Path) -> Path:
    """Write an executable stand-in for the `go` command into ``directory``."""
    path = directory / "go"
    path.write_text(f"#!{sys.executable}\n" + FAKE_GO_SCRIPT, encoding="utf-8")
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


def supports_fake_go() -> bool:
    return os.name == "posix"
