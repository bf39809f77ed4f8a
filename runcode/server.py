"""
Local HTTP file server.

Serves files below a root directory. HTML responses have known CDN URLs
replaced with local ``/embedded-libs/...`` paths so pages work offline.
"""

from __future__ import annotations

import http.server
import logging
import mimetypes
from collections.abc import Mapping
from pathlib import Path
from urllib.parse import unquote, urlsplit

from runcode.config import DEFAULT_CDN_MAPPINGS

logger = logging.getLogger(__name__)

DEFAULT_HOST = "127.0.0.1"
INDEX_FILE = "index.html"

CONTENT_TYPES: dict[str, str] = {
    ".html": "text/html; charset=utf-8",
    ".htm": "text/html; charset=utf-8",
    ".js": "application/javascript; charset=utf-8",
    ".mjs": "application/javascript; charset=utf-8",
    ".css": "text/css; charset=utf-8",
    ".json": "application/json; charset=utf-8",
    ".svg": "image/svg+xml",
    ".woff": "font/woff",
    ".woff2": "font/woff2",
    ".ttf": "font/ttf",
    ".pdf": "application/pdf",
    ".xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
}


def rewrite_cdn_urls(html: str, mappings: Mapping[str, str] | None = None) -> str:
    # Longest first so a URL that prefixes another is not replaced early.
    table = DEFAULT_CDN_MAPPINGS if mappings is None else mappings
    for original in sorted(table, key=len, reverse=True):
        html = html.replace(original, table[original])
    return html


def safe_join(root: Path, rel: str) -> Path:
    """Resolve ``rel`` under ``root``; raise PermissionError if it escapes."""
    rel = rel.strip().replace("\\", "/").lstrip("/")
    r = root.resolve(strict=False)
    p = (r / rel).resolve(strict=False)
    if p != r and r not in p.parents:
        raise PermissionError("Path escapes root jail")
    return p


def content_type_for(path: Path) -> str:
    suffix = path.suffix.lower()
    if suffix in CONTENT_TYPES:
        return CONTENT_TYPES[suffix]
    return mimetypes.guess_type(path.name)[0] or "application/octet-stream"


def make_handler(root: Path, mappings: Mapping[str, str]) -> type[http.server.BaseHTTPRequestHandler]:
    class FileHandler(http.server.BaseHTTPRequestHandler):
        server_version = "RunCodeLocal/3.0"

        def log_message(self, format: str, *args: object) -> None:
            logger.info(f"🌐 {self.address_string()} {format % args}")

        def do_GET(self) -> None:
            self._serve(include_body=True)

        def do_HEAD(self) -> None:
            self._serve(include_body=False)

        def _serve(self, include_body: bool) -> None:
            rel = unquote(urlsplit(self.path).path)
            if rel in ("", "/"):
                rel = "/" + INDEX_FILE
            try:
                path = safe_join(root, rel)
            except PermissionError:
                self.send_error(403, "Forbidden")
                return
            if path.is_dir():
                path = path / INDEX_FILE
            if not path.is_file():
                self.send_error(404, "File not found")
                return

            try:
                body = path.read_bytes()
            except OSError as exc:
                logger.error(f"❌ Failed to read {path}: {exc}")
                self.send_error(500, "Internal server error")
                return

            ctype = content_type_for(path)
            if path.suffix.lower() in (".html", ".htm"):
                body = rewrite_cdn_urls(body.decode("utf-8", errors="replace"), mappings).encode("utf-8")

            self.send_response(200)
            self.send_header("Content-Type", ctype)
            self.send_header("Content-Length", str(len(body)))
            self.send_header("Cache-Control", "no-cache")
            self.end_headers()
            if include_body:
                self.wfile.write(body)

    return FileHandler


def build_server(
    port: int,
    root: str | Path = ".",
    mappings: Mapping[str, str] | None = None,
    host: str = DEFAULT_HOST,
) -> http.server.ThreadingHTTPServer:
    root_path = Path(root).resolve()
    table = dict(DEFAULT_CDN_MAPPINGS if mappings is None else mappings)
    server = http.server.ThreadingHTTPServer((host, port), make_handler(root_path, table))
    server.daemon_threads = True
    return server


def serve(
    port: int,
    root: str | Path = ".",
    mappings: Mapping[str, str] | None = None,
    host: str = DEFAULT_HOST,
) -> int:
    """Serve until interrupted. Returns the process exit code."""
    try:
        server = build_server(port, root, mappings, host)
    except OSError as exc:
        logger.error(f"❌ Cannot start local server on {host}:{port}: {exc}")
        return 1

    bound_host, bound_port = server.server_address[:2]
    logger.info(f"🌐 Local server running at http://{bound_host}:{bound_port}/", extra={"color": "GW"})
    logger.info(f"📁 Serving files from {Path(root).resolve()}")
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        logger.info("🛑 Local server stopped")
    finally:
        server.server_close()
    return 0
