"""
URL canonicalization for the browse proxy.

Every URL found in proxied content is mapped to exactly one proxied form:
``route_prefix + percent_encode(absolute_url)``. The same rules are mirrored by
the client-side navigation shim (see ``nav_shim.py``); keep both in step.
"""

import re
from urllib.parse import quote, unquote

from app.models import UrlKind

SKIP_SCHEMES = ("#", "javascript:", "mailto:", "tel:", "data:")

# Characters encodeURIComponent leaves alone, besides alphanumerics and "_.-~"
_UNRESERVED_EXTRA = "!*'()"

_ABSOLUTE_RE = re.compile(r"^[a-z][a-z0-9+.\-]*://", re.IGNORECASE)


def should_skip(raw: str) -> bool:
    """Return True for values that must never be routed through the proxy."""
    if not raw:
        return True
    return raw.lower().startswith(SKIP_SCHEMES)


def classify(raw: str, route_prefix: str) -> UrlKind:
    """Classify a raw URL string. Total: every string maps to exactly one kind."""
    if should_skip(raw):
        return UrlKind.SKIP_SCHEME
    if raw.startswith(route_prefix):
        return UrlKind.ALREADY_PROXIED
    if _ABSOLUTE_RE.match(raw):
        return UrlKind.ABSOLUTE
    if raw.startswith("//"):
        return UrlKind.PROTOCOL_RELATIVE
    if raw.startswith("/"):
        return UrlKind.ROOT_RELATIVE
    return UrlKind.DOCUMENT_RELATIVE


def encode_once(url: str) -> str:
    """
    Percent-encode ``url`` exactly one level deep.

    The value is decoded first so that partially encoded input never ends up
    double encoded (``%2F`` stays ``%2F``). Input whose escapes do not decode
    to valid UTF-8 is encoded as-is, which keeps it recoverable by a single
    decode on the way back in.
    """
    try:
        decoded = unquote(url, errors="strict")
    except UnicodeDecodeError:
        decoded = url
    return quote(decoded, safe=_UNRESERVED_EXTRA)


def absolute_form(raw: str, kind: UrlKind, origin: str) -> str:
    if kind == UrlKind.PROTOCOL_RELATIVE:
        return "https:" + raw
    if kind == UrlKind.ROOT_RELATIVE:
        return origin + raw
    if kind == UrlKind.DOCUMENT_RELATIVE:
        return origin + "/" + raw
    return raw


def canonicalize(raw: str, origin: str, route_prefix: str) -> str:
    """
    Map ``raw`` to its proxied form, or return it unchanged when it must not be
    (or already is) proxied.

    Args:
        raw: URL string as found in content
        origin: upstream origin, ``scheme://host[:port]`` without trailing slash
        route_prefix: local route prefix, e.g. ``/browse/``

    Returns:
        ``route_prefix + encode_once(absolute)`` or ``raw`` itself
    """
    kind = classify(raw, route_prefix)
    if kind in (UrlKind.SKIP_SCHEME, UrlKind.ALREADY_PROXIED):
        return raw
    return route_prefix + encode_once(absolute_form(raw, kind, origin))


def proxied_base_href(raw: str, origin: str, route_prefix: str) -> str:
    """
    Build a ``<base href>`` value that browsers can resolve relative URLs
    against: the encoded directory followed by a literal ``/``.
    """
    kind = classify(raw, route_prefix)
    if kind in (UrlKind.SKIP_SCHEME, UrlKind.ALREADY_PROXIED):
        return raw
    absolute = absolute_form(raw, kind, origin)
    directory = absolute.split("?", 1)[0].split("#", 1)[0]
    if not directory.endswith("/"):
        # A base without a trailing slash names a document; resolve from its folder
        head, sep, _ = directory.rpartition("/")
        directory = head + sep if "://" in head else directory + "/"
    return route_prefix + encode_once(directory.rstrip("/")) + "/"


def origin_base_href(origin: str, route_prefix: str) -> str:
    return route_prefix + encode_once(origin) + "/"
