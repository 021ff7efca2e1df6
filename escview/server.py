"""HTTP adapter serving the overlay file system."""

from __future__ import annotations

import html
import logging
import mimetypes
import posixpath
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any
from urllib.parse import quote, unquote, urlsplit

from escview.compiler import GoToolchain
from escview.config import ServerConfig
from escview.errors import NotFoundError, OverlayError
from escview.highlight import Highlighter
from escview.overlay import BaseFileStore, OverlayFile, OverlayFileSystem, VirtualFile


logger = logging.getLogger(__name__)

NO_CACHE_HEADERS: tuple[tuple[str, str], ...] = (
    ("Cache-Control", "no-store, no-cache, must-revalidate, max-age=0"),
    ("Pragma", "no-cache"),
    ("Expires", "Thu, 01 Jan 1970 00:00:00 GMT"),
)


class OverlayHTTPServer(ThreadingHTTPServer):
    """Threaded HTTP server holding the overlay its handlers read from."""

    daemon_threads = True

    def __init__(self, address: tuple[str, int], overlay: OverlayFileSystem) -> None:
        self.overlay = overlay
        super().__init__(address, OverlayRequestHandler)


class OverlayRequestHandler(BaseHTTPRequestHandler):
    """Serves files through the overlay, annotated where applicable."""

    server_version = "escview/0.1"
    server: OverlayHTTPServer

    def do_GET(self) -> None:  # noqa: N802
        self._serve(send_body=True)

    def do_HEAD(self) -> None:  # noqa: N802
        self._serve(send_body=False)

    def _serve(self, send_body: bool) -> None:
        path = unquote(urlsplit(self.path).path) or "/"
        overlay = self.server.overlay
        try:
            opened = overlay.open(path)
        except NotFoundError:
            self._write_text(HTTPStatus.NOT_FOUND, "404 page not found\n", send_body)
            return
        except OverlayError as err:
            logger.error("open %s failed: %s %s", path, err, err.context)
            self._write_text(HTTPStatus.INTERNAL_SERVER_ERROR, f"500 {err.message}\n", send_body)
            return
        except OSError as err:
            logger.error("open %s failed: %s", path, err)
            self._write_text(HTTPStatus.INTERNAL_SERVER_ERROR, "500 internal server error\n", send_body)
            return

        with opened:
            info = opened.stat()
            if info.is_dir:
                self._serve_directory(path, opened, send_body)
                return

            if isinstance(opened, VirtualFile):
                content_type = "text/html; charset=utf-8"
            else:
                content_type = mimetypes.guess_type(path)[0] or "application/octet-stream"
            body = opened.read()

        self.send_response(HTTPStatus.OK.value)
        self.send_header("Content-Type", content_type)
        self.send_header("Content-Length", str(info.size))
        self._send_no_cache()
        self.end_headers()
        if send_body:
            self.wfile.write(body)

    def _serve_directory(self, path: str, directory: OverlayFile, send_body: bool) -> None:
        if not path.endswith("/"):
            self.send_response(HTTPStatus.MOVED_PERMANENTLY.value)
            self.send_header("Location", quote(path + "/"))
            self.send_header("Content-Length", "0")
            self._send_no_cache()
            self.end_headers()
            return

        entries = directory.readdir()
        if any(entry.name == "index.html" and not entry.is_dir for entry in entries):
            with self.server.overlay.open(posixpath.join(path, "index.html")) as index:
                body = index.read()
            self._write(HTTPStatus.OK, "text/html; charset=utf-8", body, send_body)
            return

        self._write(HTTPStatus.OK, "text/html; charset=utf-8", render_listing(entries).encode("utf-8"), send_body)

    def _write_text(self, status: HTTPStatus, text: str, send_body: bool) -> None:
        self._write(status, "text/plain; charset=utf-8", text.encode("utf-8"), send_body)

    def _write(self, status: HTTPStatus, content_type: str, body: bytes, send_body: bool) -> None:
        self.send_response(status.value)
        self.send_header("Content-Type", content_type)
        self.send_header("Content-Length", str(len(body)))
        self._send_no_cache()
        self.end_headers()
        if send_body:
            self.wfile.write(body)

    def _send_no_cache(self) -> None:
        for name, value in NO_CACHE_HEADERS:
            self.send_header(name, value)

    def log_message(self, format: str, *args: Any) -> None:  # noqa: A002
        logger.info("%s - %s", self.address_string(), format % args)


def render_listing(entries: list[Any]) -> str:
    """Render a minimal HTML directory listing."""
    lines = ["<!doctype html>", '<meta name="viewport" content="width=device-width">', "<pre>"]
    for entry in sorted(entries, key=lambda item: item.name):
        name = entry.name + "/" if entry.is_dir else entry.name
        lines.append(f'<a href="{html.escape(quote(name), quote=True)}">{html.escape(name)}</a>')
    lines.append("</pre>")
    return "\n".join(lines) + "\n"


def build_overlay(config: ServerConfig) -> OverlayFileSystem:
    """Wire the overlay collaborators from configuration."""
    return OverlayFileSystem(
        BaseFileStore(config.root),
        GoToolchain(config.root, go=config.go, gcflags=config.gcflags, timeout=config.timeout),
        Highlighter(language=config.language, style=config.style),
        config.pattern,
        suffix=config.suffix,
    )


def create_server(config: ServerConfig, overlay: OverlayFileSystem | None = None) -> OverlayHTTPServer:
    """Create an overlay HTTP server instance."""
    return OverlayHTTPServer((config.host, config.port), overlay or build_overlay(config))


def run_server(config: ServerConfig, overlay: OverlayFileSystem | None = None) -> int:
    """Serve until interrupted."""
    server = create_server(config, overlay)
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        pass
    finally:
        server.server_close()
    return 0
