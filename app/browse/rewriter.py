"""
HTML rewriting for proxied documents.

Surface-level and best-effort: URL carriers are located with tokenizing
patterns (start tags, attributes, quoted literals) rather than a DOM, and any
candidate that cannot be classified confidently is left untouched. Script and
style bodies are masked out before any pass runs and are emitted unmodified.
"""

import html
import logging
import re
import secrets
from dataclasses import dataclass, field
from typing import Callable, List

from app.browse import nav_shim
from app.browse.canonicalizer import (
    canonicalize,
    origin_base_href,
    proxied_base_href,
)
from app.models import ProxyRoute

logger = logging.getLogger("uvicorn.error")

URL_ATTRIBUTES = {"href", "src", "action", "data-src"}
SRCSET_ATTRIBUTES = {"srcset"}

_ATTRS = r"""(?:"[^"]*"|'[^']*'|[^'">])*"""

_OPAQUE_BLOCK_RE = re.compile(
    rf"(<(script|style)(?=[\s/>]){_ATTRS}>)(.*?)(</\2\s*>)", re.IGNORECASE | re.DOTALL
)
_SRCSET_URL_RE = re.compile(r"(\s*)(\S+)")
_SRCSET_DESCRIPTOR_RE = re.compile(r"[^,]*")

_TAG_RE = re.compile(rf"<([a-zA-Z][^\s/>]*)({_ATTRS})>")
_ATTR_RE = re.compile(
    r"""(?P<lead>\s)(?P<name>[^\s"'>/=]+)(?P<eq>\s*=\s*)"""
    r"""(?:"(?P<dq>[^"]*)"|'(?P<sq>[^']*)'|(?P<uq>[^\s"'>]+))"""
)

_META_REFRESH_RE = re.compile(
    r"""^(?P<lead>\s*[\d.]*\s*[;,]\s*(?:url\s*=\s*)?)(?P<q>['"]?)(?P<url>[^'"]*)(?P=q)(?P<rest>.*)$""",
    re.IGNORECASE | re.DOTALL,
)
_CSS_URL_RE = re.compile(
    r"""url\(\s*(?P<q>["']?)(?P<url>[^"')]*?)(?P=q)\s*\)""", re.IGNORECASE
)

_INLINE_NAVIGATION_RES = [
    # location = "...", window.location.href = '...'
    re.compile(
        r"""(?P<head>(?<![\w$.\-])(?:(?:window|document|top|self|parent)\.)?location(?:\.href)?\s*=(?!=)\s*)"""
        r"""(?P<q>["'])(?P<url>[^"'\s]+)(?P=q)"""
    ),
    re.compile(
        r"""(?P<head>\blocation\.(?:assign|replace)\(\s*)(?P<q>["'])(?P<url>[^"'\s]+)(?P=q)"""
    ),
    re.compile(
        r"""(?P<head>\bfetch\(\s*)(?P<q>["'])(?P<url>(?:https?:)?/[^"'\s]*)(?P=q)""",
        re.IGNORECASE,
    ),
    # xhr.open("GET", "/path")
    re.compile(
        r"""(?P<head>\.open\(\s*(?P<mq>["'])(?:GET|POST|PUT|PATCH|DELETE|HEAD|OPTIONS)(?P=mq)\s*,\s*)"""
        r"""(?P<q>["'])(?P<url>(?:https?:)?/[^"'\s]*)(?P=q)""",
        re.IGNORECASE,
    ),
    # el.src = "/x.png"
    re.compile(
        r"""(?P<head>\.(?:src|href|action)\s*=(?!=)\s*)(?P<q>["'])(?P<url>(?:https?:)?/[^"'\s]*)(?P=q)"""
    ),
]

_ASSET_LITERAL_RE = re.compile(
    r"""(?P<q>["'])(?P<url>(?:https?://|/)[^"'\s<>]*?"""
    r"""\.(?:js|mjs|css|json|map|png|jpe?g|gif|webp|svg|ico|woff2?|ttf|otf|mp3|mp4|webm|wav|pdf|wasm)"""
    r"""(?:[?#][^"'\s<>]*)?)(?P=q)""",
    re.IGNORECASE,
)

_HEAD_OPEN_RE = re.compile(rf"<head(?=[\s/>]){_ATTRS}>", re.IGNORECASE)
_HEAD_CLOSE_RE = re.compile(r"</head\s*>", re.IGNORECASE)
_HTML_OPEN_RE = re.compile(rf"<html(?=[\s/>]){_ATTRS}>", re.IGNORECASE)
_DOCTYPE_RE = re.compile(r"^\s*<!doctype[^>]*>", re.IGNORECASE)
_BASE_TAG_RE = re.compile(r"<base(?=[\s/>])", re.IGNORECASE)


@dataclass
class RewriteContext:
    """Working state of one rewrite pass over one document."""

    route: ProxyRoute
    opaque_blocks: List[str] = field(default_factory=list)
    # Per-pass nonce; placeholders can never match text already in the document
    token: str = field(default_factory=lambda: secrets.token_hex(8))

    def url(self, raw: str) -> str:
        return canonicalize(raw, self.route.origin, self.route.route_prefix)

    def mask(self, text: str) -> str:
        """Replace script/style bodies with positional placeholders."""

        def _stash(match: re.Match) -> str:
            self.opaque_blocks.append(match.group(3))
            placeholder = f"\x00{self.token}:{len(self.opaque_blocks) - 1}\x00"
            return f"{match.group(1)}{placeholder}{match.group(4)}"

        return _OPAQUE_BLOCK_RE.sub(_stash, text)

    def restore(self, text: str) -> str:
        placeholder = re.compile(rf"\x00{self.token}:(\d+)\x00")
        return placeholder.sub(lambda m: self.opaque_blocks[int(m.group(1))], text)


def _escape_attribute(value: str, quote: str) -> str:
    value = value.replace("&", "&amp;")
    if quote == '"':
        return value.replace('"', "&quot;")
    if quote == "'":
        return value.replace("'", "&#39;")
    return value


def _attribute_value(match: re.Match):
    """Return ``(quote, raw_value)`` for an ``_ATTR_RE`` match."""
    if match.group("dq") is not None:
        return '"', match.group("dq")
    if match.group("sq") is not None:
        return "'", match.group("sq")
    return "", match.group("uq")


def _replace_attribute(
    match: re.Match, transform: Callable[[str], str]
) -> str:
    """Rewrite one attribute value, emitting the original text when unchanged."""
    quote, raw = _attribute_value(match)
    decoded = html.unescape(raw)
    rewritten = transform(decoded)
    if rewritten == decoded:
        return match.group(0)
    quote = quote or '"'
    return (
        f"{match.group('lead')}{match.group('name')}{match.group('eq')}"
        f"{quote}{_escape_attribute(rewritten, quote)}{quote}"
    )


def _attribute_names(attrs: str) -> set:
    return {m.group("name").lower() for m in _ATTR_RE.finditer(attrs)}


def rewrite_srcset(value: str, transform: Callable[[str], str]) -> str:
    """Rewrite each image candidate of a srcset, keeping its descriptors."""
    parts = []
    pos = 0
    while pos < len(value):
        match = _SRCSET_URL_RE.match(value, pos)
        if not match:
            parts.append(value[pos:])
            break
        lead, url = match.groups()
        pos = match.end()
        core = url.rstrip(",")
        if core != url:
            # Candidate ended at the commas glued to the URL
            parts.append(lead + transform(core) + url[len(core):])
            continue
        descriptor = _SRCSET_DESCRIPTOR_RE.match(value, pos).group(0)
        pos += len(descriptor)
        separator = ""
        if value.startswith(",", pos):
            separator = ","
            pos += 1
        parts.append(lead + transform(core) + descriptor + separator)
    return "".join(parts)


def _rewrite_url_attributes(text: str, ctx: RewriteContext) -> str:
    def _tag(match: re.Match) -> str:
        tag = match.group(1).lower()

        def _attr(attr: re.Match) -> str:
            name = attr.group("name").lower()
            if tag == "base" and name == "href":
                return _replace_attribute(
                    attr,
                    lambda v: proxied_base_href(
                        v, ctx.route.origin, ctx.route.route_prefix
                    ),
                )
            if name in URL_ATTRIBUTES:
                return _replace_attribute(attr, ctx.url)
            if name in SRCSET_ATTRIBUTES:
                return _replace_attribute(attr, lambda v: rewrite_srcset(v, ctx.url))
            return attr.group(0)

        return f"<{match.group(1)}{_ATTR_RE.sub(_attr, match.group(2))}>"

    return _TAG_RE.sub(_tag, text)


def _add_form_defaults(text: str, ctx: RewriteContext) -> str:
    def _tag(match: re.Match) -> str:
        if match.group(1).lower() != "form":
            return match.group(0)
        attrs = match.group(2)
        names = _attribute_names(attrs)
        extra = ""
        if "action" not in names:
            extra += f' action="{ctx.url(ctx.route.origin)}"'
        if "method" not in names:
            extra += ' method="GET"'
        if not extra:
            return match.group(0)
        return f"<{match.group(1)}{attrs.rstrip()}{extra}>"

    return _TAG_RE.sub(_tag, text)


def _rewrite_refresh_content(content: str, ctx: RewriteContext) -> str:
    match = _META_REFRESH_RE.match(content)
    if not match or not match.group("url").strip():
        return content
    url = match.group("url").strip()
    rewritten = ctx.url(url)
    if rewritten == url:
        return content
    return (
        f"{match.group('lead')}{match.group('q')}{rewritten}"
        f"{match.group('q')}{match.group('rest')}"
    )


def _rewrite_meta_refresh(text: str, ctx: RewriteContext) -> str:
    def _tag(match: re.Match) -> str:
        if match.group(1).lower() != "meta":
            return match.group(0)
        attrs = match.group(2)
        is_refresh = any(
            a.group("name").lower() == "http-equiv"
            and html.unescape(_attribute_value(a)[1]).strip().lower() == "refresh"
            for a in _ATTR_RE.finditer(attrs)
        )
        if not is_refresh:
            return match.group(0)

        def _attr(attr: re.Match) -> str:
            if attr.group("name").lower() != "content":
                return attr.group(0)
            return _replace_attribute(
                attr, lambda v: _rewrite_refresh_content(v, ctx)
            )

        return f"<{match.group(1)}{_ATTR_RE.sub(_attr, attrs)}>"

    return _TAG_RE.sub(_tag, text)


def _rewrite_inline_navigation(text: str, ctx: RewriteContext) -> str:
    def _expr(match: re.Match) -> str:
        url = html.unescape(match.group("url"))
        rewritten = ctx.url(url)
        if rewritten == url:
            return match.group(0)
        quote = match.group("q")
        return f"{match.group('head')}{quote}{rewritten}{quote}"

    for pattern in _INLINE_NAVIGATION_RES:
        text = pattern.sub(_expr, text)
    return text


def rewrite_css_urls(css: str, transform: Callable[[str], str]) -> str:
    def _url(match: re.Match) -> str:
        url = match.group("url").strip()
        rewritten = transform(url)
        if rewritten == url:
            return match.group(0)
        quote = match.group("q")
        return f"url({quote}{rewritten}{quote})"

    return _CSS_URL_RE.sub(_url, css)


def _rewrite_style_attributes(text: str, ctx: RewriteContext) -> str:
    def _tag(match: re.Match) -> str:
        def _attr(attr: re.Match) -> str:
            if attr.group("name").lower() != "style":
                return attr.group(0)
            return _replace_attribute(attr, lambda v: rewrite_css_urls(v, ctx.url))

        return f"<{match.group(1)}{_ATTR_RE.sub(_attr, match.group(2))}>"

    return _TAG_RE.sub(_tag, text)


def _rewrite_asset_literals(text: str, ctx: RewriteContext) -> str:
    def _literal(match: re.Match) -> str:
        url = html.unescape(match.group("url"))
        rewritten = ctx.url(url)
        if rewritten == url:
            return match.group(0)
        quote = match.group("q")
        return f"{quote}{rewritten}{quote}"

    return _ASSET_LITERAL_RE.sub(_literal, text)


def _ensure_head(text: str) -> str:
    if _HEAD_OPEN_RE.search(text):
        return text
    html_open = _HTML_OPEN_RE.search(text)
    if html_open:
        end = html_open.end()
    else:
        doctype = _DOCTYPE_RE.match(text)
        end = doctype.end() if doctype else 0
    return f"{text[:end]}<head></head>{text[end:]}"


def _inject_head_elements(text: str, ctx: RewriteContext, inject_shim: bool) -> str:
    text = _ensure_head(text)
    if not _BASE_TAG_RE.search(text):
        base = f'<base href="{origin_base_href(ctx.route.origin, ctx.route.route_prefix)}">'
        head_open = _HEAD_OPEN_RE.search(text)
        text = f"{text[:head_open.end()]}\n{base}{text[head_open.end():]}"

    if not inject_shim or nav_shim.SHIM_MARKER in text:
        return text
    shim = nav_shim.generate(ctx.route.origin, ctx.route.route_prefix)
    head_open = _HEAD_OPEN_RE.search(text)
    head_close = _HEAD_CLOSE_RE.search(text, head_open.end())
    if head_close:
        at = head_close.start()
        return f"{text[:at]}{shim}\n{text[at:]}"
    # Head end tag omitted: the shim still has to run before body scripts
    at = head_open.end()
    base = _BASE_TAG_RE.search(text, at)
    if base:
        at = text.index(">", base.end()) + 1
    return f"{text[:at]}\n{shim}{text[at:]}"


def rewrite(
    html_text: str, origin: str, route_prefix: str, inject_shim: bool = True
) -> str:
    """
    Rewrite every recognized URL in an HTML document to its proxied form.

    Passes run in a fixed order: mask opaque bodies, URL attributes (including
    srcset and base), form defaults, meta refresh, inline navigation
    expressions, inline style ``url()``, quoted asset literals, then base tag
    and navigation shim injection. Opaque bodies stay masked until the very
    end, so head and base lookups only ever see markup.

    Args:
        html_text: the decoded upstream document
        origin: upstream origin the document was fetched from
        route_prefix: local route prefix
        inject_shim: whether to add the client-side navigation shim

    Returns:
        The rewritten document
    """
    ctx = RewriteContext(route=ProxyRoute(route_prefix=route_prefix, origin=origin))
    text = ctx.mask(html_text)
    text = _rewrite_url_attributes(text, ctx)
    text = _add_form_defaults(text, ctx)
    text = _rewrite_meta_refresh(text, ctx)
    text = _rewrite_inline_navigation(text, ctx)
    text = _rewrite_style_attributes(text, ctx)
    text = _rewrite_asset_literals(text, ctx)
    text = _inject_head_elements(text, ctx, inject_shim)
    logger.debug(
        f"[Rewrite] Rewrote document for {origin}; "
        f"{len(ctx.opaque_blocks)} opaque blocks preserved"
    )
    return ctx.restore(text)
