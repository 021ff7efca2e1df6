"""Go toolchain invocation for escape-analysis diagnostics."""

from __future__ import annotations

import logging
import posixpath
import shlex
import subprocess
from pathlib import Path
from typing import Any

from escview.errors import UpstreamError


logger = logging.getLogger(__name__)

DEFAULT_GCFLAGS = "-m -m"


class GoToolchain:
    """Runs `go` synchronously, scoped to a module root.

    Every call blocks until the child process exits; there is no pooling or
    retry. Callers that need parallelism run independent opens.
    """

    def __init__(
        self,
        module_root: str | Path,
        *,
        go: str = "go",
        gcflags: str = DEFAULT_GCFLAGS,
        timeout: float | None = None,
    ) -> None:
        self.module_root = Path(module_root)
        self.go = go
        self.gcflags = gcflags
        self.timeout = timeout

    def build_command(self, package_dir: str) -> list[str]:
        """Return the argv used to compile one package with diagnostics on."""
        return [self.go, "build", "-gcflags", self.gcflags, "./" + package_dir]

    def diagnostics(self, package_dir: str) -> str:
        """Compile ``package_dir`` and return combined stdout/stderr text."""
        return _run(self.build_command(package_dir), cwd=self.module_root, timeout=self.timeout)


def package_dir_for(file_key: str) -> str:
    """Return the package directory of a canonical file key (``.`` at root)."""
    return posixpath.dirname(file_key) or "."


def find_module_root(directory: str | Path, *, go: str = "go", timeout: float | None = None) -> Path:
    """Return the absolute root of the Go module containing ``directory``."""
    output = _run([go, "list", "-m", "-f", "{{.Dir}}"], cwd=Path(directory), timeout=timeout, combined=False)
    root = output.strip()
    if not root:
        raise _upstream("CMP004", "go list returned an empty module root.", [go, "list", "-m"], Path(directory))
    return Path(root).resolve()


def _run(argv: list[str], *, cwd: Path, timeout: float | None, combined: bool = True) -> str:
    logger.debug("running %s in %s", shlex.join(argv), cwd)
    try:
        completed = subprocess.run(
            argv,
            cwd=cwd,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT if combined else subprocess.PIPE,
            timeout=timeout,
            check=False,
        )
    except FileNotFoundError as exc:
        raise _upstream(
            "CMP001",
            f"Compiler executable not found: {argv[0]}",
            argv,
            cwd,
            hint="Install Go or pass --go with the toolchain path.",
        ) from exc
    except subprocess.TimeoutExpired as exc:
        raise _upstream(
            "CMP002",
            f"Compiler timed out after {timeout}s.",
            argv,
            cwd,
            output=_decode(exc.output),
        ) from exc

    output = _decode(completed.stdout)
    if completed.returncode != 0:
        if not combined:
            output += _decode(completed.stderr)
        logger.error("%s: exit status %d\n%s", shlex.join(argv), completed.returncode, output)
        raise _upstream(
            "CMP003",
            f"Compiler exited with status {completed.returncode}.",
            argv,
            cwd,
            hint="Fix the build errors shown in the compiler output.",
            output=output,
            returncode=completed.returncode,
        )
    return output


def _upstream(
    code: str,
    message: str,
    argv: list[str],
    cwd: Path,
    *,
    hint: str = "",
    **extra: Any,
) -> UpstreamError:
    context: dict[str, Any] = {"command": shlex.join(argv), "cwd": str(cwd)}
    context.update(extra)
    return UpstreamError(code=code, message=message, hint=hint, context=context)


def _decode(data: bytes | str | None) -> str:
    if data is None:
        return ""
    if isinstance(data, str):
        return data
    return data.decode("utf-8", errors="replace")
