"""
Header and MIME policy for upstream responses.

Decides which upstream headers reach the client and derives the content type
the browser will see. Browsers enforcing ``X-Content-Type-Options: nosniff``
reject scripts and stylesheets with a wrong type, so the extension table is
treated as authoritative whenever upstream metadata is missing or generic.
"""

import posixpath
from typing import Iterable, List, Optional, Tuple
from urllib.parse import urlparse

# Headers that would desynchronize the rewritten body or block embedding
BLOCKED_HEADERS = {
    "content-encoding",
    "content-length",
    "transfer-encoding",
    "content-security-policy",
    "content-security-policy-report-only",
    "x-frame-options",
    "strict-transport-security",
}

# Hop-by-hop headers that should NOT be forwarded (RFC 7230)
HOP_BY_HOP_HEADERS = {
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailers",
    "upgrade",
}

GENERIC_CONTENT_TYPES = {
    "",
    "application/octet-stream",
    "binary/octet-stream",
    "text/plain",
}

MIME_BY_EXTENSION = {
    ".js": "application/javascript",
    ".mjs": "application/javascript",
    ".cjs": "application/javascript",
    ".jsx": "application/javascript",
    ".ts": "application/typescript",
    ".tsx": "application/typescript",
    ".css": "text/css",
    ".less": "text/css",
    ".sass": "text/css",
    ".scss": "text/css",
    ".html": "text/html",
    ".htm": "text/html",
    ".json": "application/json",
    ".webmanifest": "application/json",
    ".manifest": "application/json",
    ".map": "application/json",
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".svg": "image/svg+xml",
    ".ico": "image/x-icon",
    ".woff2": "font/woff2",
    ".woff": "font/woff",
    ".ttf": "font/ttf",
    ".otf": "font/otf",
    ".mp3": "audio/mpeg",
    ".wav": "audio/wav",
    ".mp4": "video/mp4",
    ".webm": "video/webm",
    ".pdf": "application/pdf",
    ".wasm": "application/wasm",
}

# Asset classes whose absence breaks page rendering or script execution
EXECUTABLE_OR_RENDERED_EXTENSIONS = {
    ".js",
    ".mjs",
    ".cjs",
    ".jsx",
    ".ts",
    ".tsx",
    ".css",
    ".map",
    ".wasm",
    ".woff",
    ".woff2",
    ".ttf",
    ".otf",
}


def url_extension(url: str) -> str:
    """Lower-cased extension of the URL path, ignoring query and fragment."""
    return posixpath.splitext(urlparse(url).path)[1].lower()


def mime_for_url(url: str) -> Optional[str]:
    return MIME_BY_EXTENSION.get(url_extension(url))


def media_type(content_type: Optional[str]) -> str:
    """Return the bare media type (no parameters), lower-cased."""
    if not content_type:
        return ""
    return content_type.split(";", 1)[0].strip().lower()


def effective_content_type(url: str, declared: Optional[str]) -> Optional[str]:
    """
    Derive the content type sent to the client.

    Args:
        url: absolute upstream URL of the resource
        declared: upstream ``Content-Type`` header, if any

    Returns:
        The declared type, or the extension-table type when the declared one is
        absent, generic, or ``text/html`` for a non-HTML extension. ``.wasm``
        always yields ``application/wasm``.
    """
    by_extension = mime_for_url(url)
    if url_extension(url) == ".wasm":
        return "application/wasm"
    declared_type = media_type(declared)
    if by_extension and (
        declared_type in GENERIC_CONTENT_TYPES
        or (declared_type == "text/html" and by_extension != "text/html")
    ):
        return by_extension
    return declared or None


def is_executable_or_rendered(url: str) -> bool:
    return url_extension(url) in EXECUTABLE_OR_RENDERED_EXTENSIONS


def is_forwardable(name: str) -> bool:
    lowered = name.lower()
    return lowered not in BLOCKED_HEADERS and lowered not in HOP_BY_HOP_HEADERS


def forwardable_headers(
    headers: Iterable[Tuple[str, str]], exclude: Iterable[str] = ()
) -> List[Tuple[str, str]]:
    """
    Filter upstream headers down to the ones forwarded to the client.

    Repeated headers (e.g. several ``Set-Cookie``) are kept as separate
    entries. ``content-type`` is always dropped; callers set the effective one.
    """
    excluded = {"content-type"} | {name.lower() for name in exclude}
    return [
        (name, value)
        for name, value in headers
        if is_forwardable(name) and name.lower() not in excluded
    ]
