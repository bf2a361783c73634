"""
localserve/server/static_files.py

Static file serving for one server instance.

Problem:
  - Request paths are untrusted. "..", absolute paths and symlinks inside the
    root can all point outside the directory the user chose to share.

Design:
  - resolve_request_path() canonicalizes root + request path first and only
    then checks containment against the (already canonical) root, so ".."
    segments and symlink escapes are judged on where they really land.
  - resolve_request_path(), list_directory() and guess_media_type() are pure
    functions over their inputs and can be tested without a listener.
  - StaticFileHandler is a plain ASGI app that turns those results into
    responses. Every per-request problem becomes a status code (403/404/405);
    OS error text never reaches the client. Directory URLs without a
    trailing slash are redirected (307) to the slashed form first.
"""

from __future__ import annotations

import html
import logging
import os
import stat
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Union
from urllib.parse import quote

from starlette.requests import Request
from starlette.responses import (
    FileResponse,
    HTMLResponse,
    JSONResponse,
    PlainTextResponse,
    RedirectResponse,
    Response,
)
from starlette.types import Receive, Scope, Send

logger = logging.getLogger(__name__)


# ============================================================================
# MIME Types
# ============================================================================
# Fixed table so responses do not depend on the host's mimetypes database.

MIME_TYPES: Dict[str, str] = {
    # Documents
    ".html": "text/html",
    ".htm": "text/html",
    ".css": "text/css",
    ".js": "text/javascript",
    ".mjs": "text/javascript",
    ".json": "application/json",
    ".map": "application/json",
    ".webmanifest": "application/manifest+json",
    ".xml": "application/xml",
    ".txt": "text/plain",
    ".md": "text/markdown",
    ".csv": "text/csv",
    ".pdf": "application/pdf",
    ".wasm": "application/wasm",
    # Images
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".avif": "image/avif",
    ".bmp": "image/bmp",
    ".svg": "image/svg+xml",
    ".ico": "image/x-icon",
    # Fonts
    ".woff": "font/woff",
    ".woff2": "font/woff2",
    ".ttf": "font/ttf",
    ".otf": "font/otf",
    # Audio / video
    ".mp3": "audio/mpeg",
    ".wav": "audio/wav",
    ".ogg": "audio/ogg",
    ".mp4": "video/mp4",
    ".webm": "video/webm",
    # Archives
    ".zip": "application/zip",
    ".gz": "application/gzip",
    ".tar": "application/x-tar",
}

DEFAULT_MIME_TYPE = "application/octet-stream"

INDEX_FILE = "index.html"


def guess_media_type(path: Union[str, Path]) -> str:
    return MIME_TYPES.get(Path(path).suffix.lower(), DEFAULT_MIME_TYPE)


# ============================================================================
# Path Containment
# ============================================================================

def canonical_root(root: Union[str, Path]) -> Path:
    return Path(os.path.realpath(os.path.expanduser(str(root))))


def resolve_request_path(root: Path, request_path: str) -> Optional[Path]:
    """
    Map a (percent-decoded) request path onto `root`.

    `root` must already be canonical (see canonical_root). Returns the
    canonical target path, or None when it falls outside the root.
    """
    if "\x00" in request_path:
        return None

    relative = request_path.lstrip("/\\")
    try:
        candidate = Path(os.path.realpath(os.path.join(root, relative)))
    except ValueError:
        return None

    if candidate == root or candidate.is_relative_to(root):
        return candidate
    return None


# ============================================================================
# Directory Listing
# ============================================================================

@dataclass(frozen=True)
class DirectoryEntry:
    name: str
    is_dir: bool
    size: Optional[int] = None  # files only

    def to_dict(self) -> Dict[str, object]:
        return {"name": self.name, "isDirectory": self.is_dir, "size": self.size}


def list_directory(path: Path) -> List[DirectoryEntry]:
    """
    Immediate children of `path`, sorted by name ascending.

    PermissionError from reading the directory itself propagates to the caller.
    """
    entries: List[DirectoryEntry] = []
    with os.scandir(path) as it:
        for entry in it:
            try:
                is_dir = entry.is_dir()
                size = None if is_dir else entry.stat().st_size
            except OSError:
                # Dangling symlink or a child we may not stat
                is_dir, size = False, None
            entries.append(DirectoryEntry(name=entry.name, is_dir=is_dir, size=size))
    entries.sort(key=lambda e: e.name)
    return entries


def render_listing_html(request_path: str, entries: List[DirectoryEntry]) -> str:
    base = "/" + request_path.strip("/")
    prefix = base.rstrip("/") + "/"
    title = html.escape(f"Index of {base}")

    rows = []
    if base != "/":
        parent = base.rsplit("/", 1)[0] or "/"
        rows.append(f'<tr><td><a href="{quote(parent)}">../</a></td><td></td></tr>')
    for entry in entries:
        href = quote(prefix + entry.name + ("/" if entry.is_dir else ""))
        label = html.escape(entry.name + ("/" if entry.is_dir else ""))
        size = "-" if entry.size is None else str(entry.size)
        rows.append(f'<tr><td><a href="{href}">{label}</a></td><td>{size}</td></tr>')

    return (
        "<!DOCTYPE html>\n"
        '<html lang="en">\n'
        f'<head><meta charset="utf-8"><title>{title}</title></head>\n'
        f"<body>\n<h1>{title}</h1>\n"
        "<table>\n<tr><th>Name</th><th>Size</th></tr>\n"
        + "\n".join(rows)
        + "\n</table>\n</body>\n</html>\n"
    )


# ============================================================================
# ASGI Handler
# ============================================================================

def _forbidden() -> Response:
    return PlainTextResponse("403 Forbidden", status_code=403)


def _not_found() -> Response:
    return PlainTextResponse("404 Not Found", status_code=404)


class StaticFileHandler:
    """Serves files below a fixed, canonical root."""

    ALLOWED_METHODS = ("GET", "HEAD")

    def __init__(self, root: Union[str, Path], *, directory_listing: bool = False, serve_index: bool = True):
        # Resolved exactly once; a later symlink swap of the root itself
        # cannot redirect serving elsewhere.
        self.root = canonical_root(root)
        self.directory_listing = directory_listing
        self.serve_index = serve_index

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] == "websocket":
            await send({"type": "websocket.close", "code": 1003})
            return
        if scope["type"] != "http":
            return

        request = Request(scope, receive)
        response = self.respond(request)
        await response(scope, receive, send)

    def respond(self, request: Request) -> Response:
        if request.method not in self.ALLOWED_METHODS:
            return PlainTextResponse(
                "405 Method Not Allowed",
                status_code=405,
                headers={"Allow": ", ".join(self.ALLOWED_METHODS)},
            )

        # scope["path"] is already percent-decoded; request.url.path would
        # re-parse it and mangle names containing "?" or "#".
        request_path = request.scope["path"]
        target = resolve_request_path(self.root, request_path)
        if target is None:
            logger.warning("[StaticFiles] Blocked path outside root: %r", request_path)
            return _forbidden()

        try:
            st = target.stat()
        except PermissionError:
            return _forbidden()
        except OSError:
            return _not_found()

        if stat.S_ISDIR(st.st_mode):
            if not request_path.endswith("/"):
                # Relative links in an index page resolve against the
                # directory only when the URL ends in "/"
                location = quote(request_path) + "/"
                query = request.scope.get("query_string", b"").decode("latin-1")
                if query:
                    location += "?" + query
                return RedirectResponse(location, status_code=307)
            return self._directory_response(request, request_path, target)
        if stat.S_ISREG(st.st_mode):
            return self._file_response(target, st)
        # Sockets, FIFOs, devices
        return _forbidden()

    def _file_response(self, path: Path, st: Optional[os.stat_result] = None) -> Response:
        if not os.access(path, os.R_OK):
            return _forbidden()
        try:
            st = st or path.stat()
        except PermissionError:
            return _forbidden()
        except OSError:
            return _not_found()
        return FileResponse(path, media_type=guess_media_type(path), stat_result=st)

    def _directory_response(self, request: Request, request_path: str, directory: Path) -> Response:
        if self.serve_index:
            index = directory / INDEX_FILE
            try:
                index_st = index.stat()
            except OSError:
                index_st = None
            if index_st is not None and stat.S_ISREG(index_st.st_mode):
                return self._file_response(index, index_st)

        if not self.directory_listing:
            return _forbidden()

        try:
            entries = list_directory(directory)
        except PermissionError:
            return _forbidden()
        except OSError:
            return _not_found()

        if "application/json" in request.headers.get("accept", ""):
            return JSONResponse(
                {"path": "/" + request_path.strip("/"), "entries": [e.to_dict() for e in entries]}
            )
        return HTMLResponse(render_listing_html(request_path, entries))
