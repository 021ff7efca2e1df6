"""Command-line interface for the escape-analysis viewer."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from escview.compiler import DEFAULT_GCFLAGS, GoToolchain, find_module_root
from escview.config import (
    DEFAULT_ADDRESS,
    DEFAULT_PATTERN,
    DEFAULT_STYLE,
    ServerConfig,
    compile_pattern,
    parse_address,
)
from escview.errors import OverlayError, ReadError, format_error
from escview.highlight import Highlighter
from escview.overlay import BaseFileStore, OverlayFileSystem
from escview.parser import parse_diagnostics
from escview.server import run_server


_COMMANDS = ("serve", "annotate", "parse")


def build_parser() -> argparse.ArgumentParser:
    """Build argparse command tree for the escview CLI."""
    parser = argparse.ArgumentParser(prog="escview", description="Serve Go sources annotated with escape analysis")
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve_parser = subparsers.add_parser("serve", help="Serve a Go module over HTTP")
    serve_parser.add_argument("dir", nargs="?", default=".", help="Directory inside the module to serve")
    serve_parser.add_argument("--addr", default=DEFAULT_ADDRESS, help="Address to listen on")
    serve_parser.add_argument(
        "--no-module-root",
        action="store_true",
        help="Serve DIR itself instead of the enclosing module root.",
    )
    _add_overlay_arguments(serve_parser)

    annotate_parser = subparsers.add_parser("annotate", help="Print a source file with annotations merged in")
    annotate_parser.add_argument("file", help="Source file path, relative to --root")
    annotate_parser.add_argument("--root", default=".", help="Module root the file is relative to")
    _add_overlay_arguments(annotate_parser)

    parse_parser = subparsers.add_parser("parse", help="Print the location index of raw diagnostics as JSON")
    parse_parser.add_argument("input", nargs="?", help="Diagnostics file (stdin when omitted)")

    return parser


def _add_overlay_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--grep", default=DEFAULT_PATTERN, help="Show only annotations matching this regexp")
    parser.add_argument("--style", default=DEFAULT_STYLE, help="Pygments style for highlighting")
    parser.add_argument("--go", default="go", help="Go executable")
    parser.add_argument("--gcflags", default=DEFAULT_GCFLAGS, help="Compiler flags producing diagnostics")
    parser.add_argument("--timeout", type=float, default=None, help="Seconds to allow each compiler run")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log debug output to stderr")


def run(argv: list[str] | None = None) -> int:
    """Run CLI and return shell exit code."""
    if argv is None:
        argv = sys.argv[1:]
    # Bare `escview [DIR]` means serve.
    if not argv or (argv[0] not in _COMMANDS and argv[0] not in ("-h", "--help")):
        argv = ["serve", *argv]
    args = build_parser().parse_args(argv)
    configure_logging(getattr(args, "verbose", False))

    try:
        if args.command == "serve":
            root = Path(args.dir)
            if not args.no_module_root:
                root = find_module_root(root, go=args.go, timeout=args.timeout)
            host, port = parse_address(args.addr)
            config = ServerConfig(
                root=root.resolve(),
                host=host,
                port=port,
                pattern=compile_pattern(args.grep),
                style=args.style,
                go=args.go,
                gcflags=args.gcflags,
                timeout=args.timeout,
            )
            print(f"serving {config.root} on http://{config.address}")
            sys.stdout.flush()
            return run_server(config)

        if args.command == "annotate":
            root = Path(args.root).resolve()
            overlay = OverlayFileSystem(
                BaseFileStore(root),
                GoToolchain(root, go=args.go, gcflags=args.gcflags, timeout=args.timeout),
                Highlighter(style=args.style),
                compile_pattern(args.grep),
            )
            sys.stdout.write(overlay.annotate(args.file))
            return 0

        if args.command == "parse":
            if args.input:
                try:
                    raw = Path(args.input).read_text(encoding="utf-8")
                except (OSError, UnicodeDecodeError) as exc:
                    raise ReadError(
                        code="RD004",
                        message=f"Cannot read diagnostics file {args.input}: {exc}",
                        hint="Pass a readable UTF-8 file or pipe diagnostics on stdin.",
                        context={"path": args.input},
                    ) from exc
            else:
                raw = sys.stdin.read()
            print(json.dumps(parse_diagnostics(raw).to_dict(), indent=2))
            return 0

        raise argparse.ArgumentTypeError(f"Unsupported command '{args.command}'.")

    except OverlayError as err:
        print(format_error(err), file=sys.stderr)
        return 1
    except argparse.ArgumentTypeError as err:
        print(f"CLI001: {err} Hint: Run escview --help for usage.", file=sys.stderr)
        return 2
    except Exception as err:  # pragma: no cover - defensive fallback
        print(f"CLI999: Internal error: {err} Hint: Run with --verbose", file=sys.stderr)
        return 3


def configure_logging(verbose: bool = False) -> None:
    """Send escview logs to stderr."""
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    root = logging.getLogger("escview")
    root.handlers[:] = [handler]
    root.setLevel(logging.DEBUG if verbose else logging.INFO)
    root.propagate = False


def main() -> None:
    raise SystemExit(run())


if __name__ == "__main__":
    main()
